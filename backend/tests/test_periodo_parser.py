import pytest

from parsers.periodo_parser import TipoPeriodo, parsear_periodo, parsear_ancla, sumar_meses


@pytest.mark.parametrize("texto, clave, etiqueta", [
    ("2024-03-01", "2024-03", "mar 2024"),
    ("2024-03", "2024-03", "mar 2024"),
    ("15/03/2024", "2024-03", "mar 2024"),
    ("01/03/24", "2024-03", "mar 2024"),
    ("03/2024", "2024-03", "mar 2024"),
    ("Mar-24", "2024-03", "mar 2024"),
    ("mar. 2024", "2024-03", "mar 2024"),
    ("Sept 2023", "2023-09", "sept 2023"),
    ("Dec/2023", "2023-12", "dic 2023"),
    ("Marzo de 2024", "2024-03", "mar 2024"),
    ("mes de Septiembre 2023", "2023-09", "sept 2023"),
    ("March 2024", "2024-03", "mar 2024"),
    ("Diciembre 24", "2024-12", "dic 2024"),
])
def test_periodos_absolutos(texto, clave, etiqueta):
    periodo = parsear_periodo(texto, 0)
    assert periodo.tipo == TipoPeriodo.ABSOLUTO
    assert periodo.clave == clave
    assert periodo.etiqueta == etiqueta


def test_mes_relativo_sin_ancla():
    periodo = parsear_periodo("Mes 3", 7)
    assert periodo.tipo == TipoPeriodo.RELATIVO
    assert periodo.orden == 3
    assert periodo.etiqueta == "Mes 3"
    assert periodo.clave != parsear_periodo("Mes 3", 0).clave


def test_mes_relativo_con_ancla_se_vuelve_absoluto():
    periodo = parsear_periodo("Mes 2", 0, ancla="2024-01")
    assert periodo.tipo == TipoPeriodo.ABSOLUTO
    assert periodo.clave == "2024-03"
    assert periodo.etiqueta == "mar 2024"


def test_mes_relativo_cruza_de_anio():
    assert parsear_periodo("mes 3", 0, ancla="2024-11").clave == "2025-02"


def test_ancla_invalida_se_ignora():
    assert parsear_periodo("Mes 2", 0, ancla="enero").tipo == TipoPeriodo.RELATIVO


def test_mismo_mes_misma_clave_y_orden():
    a = parsear_periodo("Mar-24", 0)
    b = parsear_periodo("01/03/2024", 5)
    assert a.clave == b.clave
    assert a.orden == b.orden


def test_orden_cronologico():
    anteriores = parsear_periodo("dic 2023", 0)
    posteriores = parsear_periodo("ene 2024", 1)
    assert anteriores.orden < posteriores.orden


def test_texto_no_reconocido_es_opaco_con_orden_de_fila():
    periodo = parsear_periodo("Anticipo financiero", 4)
    assert periodo.tipo == TipoPeriodo.OPACO
    assert periodo.orden == 4
    assert periodo.etiqueta == "Anticipo financiero"


def test_vacio_es_opaco():
    periodo = parsear_periodo("  ", 2)
    assert periodo.clave != parsear_periodo("Mes 3", 0).clave
    assert periodo.tipo == TipoPeriodo.OPACO
    assert periodo.etiqueta == "Mes 3"


def test_mes_invalido_no_es_absoluto():
    assert parsear_periodo("13/2024", 0).tipo == TipoPeriodo.OPACO


def test_parsear_ancla():
    assert parsear_ancla("2024-01") == (2024, 1)
    assert parsear_ancla("2024-13") is None
    assert parsear_ancla(None) is None


def test_sumar_meses():
    assert sumar_meses(2024, 1, 2) == (2024, 3)
    assert sumar_meses(2024, 11, 3) == (2025, 2)
