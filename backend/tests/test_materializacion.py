from models import TablaColumna
from services.materializacion_service import (
    FiltroColumna,
    FiltrosVista,
    clasificar_condicional,
    filtrar,
    materializar,
    ordenar,
    totales,
)


def _columna(field_key, data_type="text", required=False, **config):
    return TablaColumna(label=field_key, field_key=field_key, data_type=data_type, required=required, config=config)


COLUMNAS = [
    _columna("descripcion", required=True),
    _columna("monto_total", "currency"),
    _columna("monto_certificado", "currency", conditional={"warnAbove": 500, "criticalAbove": 900}),
    _columna("saldo", "currency", formula="[monto_total]-[monto_certificado]"),
    _columna("aprobado", "boolean"),
    _columna("fecha", "date"),
]


def _fila(id, source="manual", **data):
    return {"id": id, "source": source, "data": data}


def test_formula_calculada_al_materializar():
    vista = materializar([_fila("1", monto_total=1000, monto_certificado=400)], COLUMNAS)[0]
    assert vista.valores["saldo"] == 600


def test_formula_ignora_valor_guardado_y_usa_valores_coercionados():
    vista = materializar(
        [_fila("1", monto_total="1.500,50", monto_certificado="$ 500,50", saldo=999)],
        COLUMNAS,
    )[0]
    assert vista.valores["monto_total"] == 1500.5
    assert vista.valores["saldo"] == 1000


def test_coercion_de_tipos():
    vista = materializar([_fila("1", aprobado="Sí", fecha="15/03/2024", descripcion=12)], COLUMNAS)[0]
    assert vista.valores["aprobado"] is True
    assert vista.valores["fecha"] == "2024-03-15"
    assert vista.valores["descripcion"] == "12"
    assert vista.valores["monto_total"] is None


def test_formula_invalida_deja_columna_editable():
    columnas = [_columna("a", "number"), _columna("b", "number", formula="[a] + hola")]
    vista = materializar([_fila("1", a=1, b=7)], columnas)[0]
    assert vista.valores["b"] == 7


def test_metadatos_y_claves_huerfanas():
    vista = materializar(
        [_fila("1", descripcion="x", columna_borrada=5, __docPath="1/certificados/a.pdf", __docFileName="a.pdf")],
        COLUMNAS,
    )[0]
    assert "columna_borrada" not in vista.valores
    assert vista.doc_path == "1/certificados/a.pdf"
    assert vista.to_dict()["docFileName"] == "a.pdf"


def test_requeridos_faltantes():
    vista = materializar([_fila("1", monto_total=1)], COLUMNAS)[0]
    assert vista.faltantes == ["descripcion"]


def test_estilos_condicionales():
    vistas = materializar(
        [_fila("1", monto_certificado=100), _fila("2", monto_certificado=600), _fila("3", monto_certificado=950)],
        COLUMNAS,
    )
    assert [v.estilos["monto_certificado"] for v in vistas] == ["none", "warn", "critical"]


def test_umbrales_critical_antes_que_warn():
    condicional = {"warnBelow": 10, "criticalBelow": 10}
    assert clasificar_condicional(10, condicional) == "critical"
    assert clasificar_condicional(11, condicional) == "none"
    assert clasificar_condicional("abc", condicional) == "none"
    assert clasificar_condicional(5, None) == "none"


def test_filtro_texto_sin_tildes_ni_mayusculas():
    vistas = materializar(
        [_fila("1", descripcion="Hormigón armado"), _fila("2", descripcion="Acero")],
        COLUMNAS,
    )
    resultado = filtrar(vistas, COLUMNAS, FiltrosVista(columnas={"descripcion": FiltroColumna(texto="HORMIGON")}))
    assert [v.id for v in resultado] == ["1"]


def test_filtro_rango_numerico_inclusivo_excluye_no_numericos():
    vistas = materializar(
        [_fila("1", monto_total=100), _fila("2", monto_total=200), _fila("3", monto_total="n/d")],
        COLUMNAS,
    )
    filtros = FiltrosVista(columnas={"monto_total": FiltroColumna(minimo=100, maximo=150)})
    assert [v.id for v in filtrar(vistas, COLUMNAS, filtros)] == ["1"]


def test_filtro_por_documento_de_origen():
    vistas = materializar(
        [
            _fila("1", source="ocr", __docPath="1/items/a.pdf"),
            _fila("2", source="ocr", __docPath="1/items/b.pdf"),
            _fila("3"),
        ],
        COLUMNAS,
    )
    resultado = filtrar(vistas, COLUMNAS, FiltrosVista(doc_path="1/items/a.pdf"))
    assert [v.id for v in resultado] == ["1"]


def test_busqueda_global():
    vistas = materializar(
        [_fila("1", descripcion="Excavación"), _fila("2", descripcion="Pintura", fecha="2024-03-01")],
        COLUMNAS,
    )
    assert [v.id for v in filtrar(vistas, COLUMNAS, FiltrosVista(busqueda="2024-03"))] == ["2"]


def test_ordenar_numerico_con_vacios_al_final():
    vistas = materializar(
        [_fila("1", monto_total=20), _fila("2"), _fila("3", monto_total=5), _fila("4", monto_total=100)],
        COLUMNAS,
    )
    assert [v.id for v in ordenar(vistas, COLUMNAS, "monto_total")] == ["3", "1", "4", "2"]
    assert [v.id for v in ordenar(vistas, COLUMNAS, "monto_total", descendente=True)] == ["4", "1", "3", "2"]


def test_totales_de_columnas_numericas():
    vistas = materializar(
        [_fila("1", monto_total=1000, monto_certificado=400), _fila("2", monto_total=500)],
        COLUMNAS,
    )
    resultado = totales(vistas, COLUMNAS)
    assert resultado["monto_total"] == 1500
    assert resultado["saldo"] == 1100
    assert "descripcion" not in resultado
