import pytest

from services.curva_service import (
    construir_puntos_curva,
    parsear_porcentaje,
    valor_por_candidatos,
)


def _por_clave(puntos):
    return {p.clave: p for p in puntos}


def test_plan_mes_n_con_ancla_resuelve_mes_absoluto():
    puntos = construir_puntos_curva(
        [{"periodo": "Mes 2", "avance_acumulado_pct": 12.5}],
        [],
        curve_start_period="2024-01",
    )
    marzo = _por_clave(puntos)["2024-03"]
    assert marzo.label == "mar 2024"
    assert marzo.plan_value == 12.5


def test_ancla_siempre_presente_con_real_cero():
    puntos = construir_puntos_curva([{"periodo": "Mes 1", "avance_acumulado_pct": 5}], [], "2024-01")
    enero = _por_clave(puntos)["2024-01"]
    assert enero.actual_value == 0
    assert enero.plan_value is None
    assert puntos[0].clave == "2024-01"


def test_ancla_no_pisa_un_valor_real():
    puntos = construir_puntos_curva(
        [],
        [{"fecha_certificacion": "2024-01-31", "avance_fisico_acumulado_pct": 3}],
        "2024-01",
    )
    assert _por_clave(puntos)["2024-01"].actual_value == 3


def test_periodos_equivalentes_se_fusionan_con_orden_minimo():
    puntos = construir_puntos_curva(
        [{"periodo": "Mar-24", "avance_acumulado_pct": 10}],
        [{"periodo": "01/03/2024", "avance_fisico_acumulado_pct": 8}],
    )
    assert len(puntos) == 1
    assert puntos[0].plan_value == 10
    assert puntos[0].actual_value == 8


def test_opacos_con_misma_clave_conservan_orden_minimo():
    puntos = construir_puntos_curva(
        [{"periodo": "x", "avance_acumulado_pct": 1}, {"periodo": "Anticipo", "avance_acumulado_pct": 2}],
        [{"periodo": "Anticipo", "avance_fisico_acumulado_pct": 1}],
    )
    anticipo = _por_clave(puntos)["anticipo"]
    assert anticipo.sort_order == 0
    assert anticipo.actual_value == 1


def test_fusionar_con_real_no_pierde_puntos_del_plan():
    plan = [
        {"periodo": "Mes 0", "avance_acumulado_pct": 0},
        {"periodo": "Mes 1", "avance_acumulado_pct": 20},
        {"periodo": "Mes 2", "avance_acumulado_pct": 45},
        {"periodo": "Fuera de plazo", "avance_acumulado_pct": 100},
    ]
    real = [
        {"fecha_certificacion": "15/02/2024", "avance_fisico_acumulado_pct": "18,5%"},
        {"periodo": "04/2024", "avance_fisico_acumulado_pct": 50},
    ]

    solo_plan = _por_clave(construir_puntos_curva(plan, [], "2024-01"))
    combinada = _por_clave(construir_puntos_curva(plan, real, "2024-01"))

    for clave, punto in solo_plan.items():
        assert clave in combinada
        assert combinada[clave].plan_value == punto.plan_value
    assert len(combinada) == len(set(combinada))
    assert combinada["2024-02"].actual_value == 18.5
    assert combinada["2024-04"].actual_value == 50


def test_fecha_tiene_prioridad_sobre_periodo_en_real():
    puntos = construir_puntos_curva(
        [],
        [{"fecha_certificacion": "2024-05-10", "periodo": "Mes 1", "avance_fisico_acumulado_pct": 30}],
        "2024-01",
    )
    claves = _por_clave(puntos)
    assert claves["2024-05"].actual_value == 30
    assert "2024-02" not in claves


def test_real_usa_avance_generico_si_no_hay_fisico():
    puntos = construir_puntos_curva([], [{"periodo": "ene 2024", "avance_acumulado_pct": 7}])
    assert puntos[0].actual_value == 7


def test_puntos_ordenados_cronologicamente():
    puntos = construir_puntos_curva(
        [
            {"periodo": "mar 2024", "avance_acumulado_pct": 30},
            {"periodo": "ene 2024", "avance_acumulado_pct": 10},
            {"periodo": "feb 2024", "avance_acumulado_pct": 20},
        ],
        [],
    )
    assert [p.clave for p in puntos] == ["2024-01", "2024-02", "2024-03"]


def test_filas_vacias_se_ignoran():
    assert construir_puntos_curva([{"otra": "x"}], [{}]) == []


def test_filas_sin_avance_o_sin_periodo_no_generan_puntos():
    puntos = construir_puntos_curva(
        [
            {"periodo": "Mes 1", "avance_acumulado_pct": 10},
            {"periodo": "Mes 2", "avance_acumulado_pct": None},
            {"periodo": "", "avance_acumulado_pct": 50},
        ],
        [{"fecha_certificacion": "15/06/2024", "avance_fisico_acumulado_pct": ""}],
        "2024-01",
    )
    claves = _por_clave(puntos)
    assert set(claves) == {"2024-01", "2024-02"}
    assert claves["2024-02"].plan_value == 10
    assert all(p.plan_value is not None or p.actual_value is not None for p in puntos)


def test_periodo_vacio_no_se_mezcla_con_mes_n():
    puntos = construir_puntos_curva(
        [{"periodo": "Mes 1", "avance_acumulado_pct": 10}],
        [{"periodo": "", "avance_fisico_acumulado_pct": 5}],
    )
    assert len(puntos) == 1
    assert puntos[0].plan_value == 10
    assert puntos[0].actual_value is None


def test_columnas_de_fecha_y_periodo_por_tokens():
    puntos = construir_puntos_curva(
        [{"periodo_mensual": "Mes 1", "avance_acumulado_pct": 10}],
        [
            {"fecha_de_certificacion": "15/03/2024", "avance_fisico_acumulado_pct": 30},
            {"fecha_de_certificacion": "15/04/2024", "avance_fisico_acumulado_pct": 45},
        ],
        "2024-01",
    )
    claves = _por_clave(puntos)
    assert claves["2024-02"].plan_value == 10
    assert claves["2024-03"].actual_value == 30
    assert claves["2024-04"].actual_value == 45
    assert "mes 1" not in claves


@pytest.mark.parametrize("valor, esperado", [
    ("45,5 %", 45.5),
    ("120", 100.0),
    (-3, 0.0),
    ("n/d", None),
    (None, None),
])
def test_parsear_porcentaje(valor, esperado):
    assert parsear_porcentaje(valor) == esperado


def test_valor_por_candidatos_por_tokens():
    datos = {"Avance Acum. (%)": "45", "__docPath": "x"}
    assert valor_por_candidatos(datos, ["avance_acumulado_pct"], [["avance", "acum"]]) == "45"
