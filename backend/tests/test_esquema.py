import pytest

from models import DataInputMethod, OrigenFila
from services.errors import SchemaConflict
from services.esquema_service import EsquemaService, coercionar_datos_fila
from services.filas_service import FilasService


COLUMNAS_CERTIFICADO = [
    {"label": "Descripción", "data_type": "text", "required": True},
    {"label": "Monto Total", "data_type": "currency"},
    {"label": "Monto Certificado", "data_type": "currency"},
    {"label": "Saldo", "data_type": "currency", "config": {"formula": " [monto_total] - [monto_certificado] "}},
]


@pytest.fixture
def esquema(db):
    return EsquemaService(db)


@pytest.fixture
def tabla(esquema, obra):
    return esquema.crear_tabla(obra.id, "Certificados", COLUMNAS_CERTIFICADO, carpeta="Certificados/Mensuales")


def test_crear_tabla_normaliza_columnas(tabla):
    assert tabla.field_keys == ["descripcion", "monto_total", "monto_certificado", "saldo"]
    assert tabla.columnas[3].formula == "[monto_total] - [monto_certificado]"
    assert tabla.columnas[0].required is True
    assert tabla.data_input_method == DataInputMethod.BOTH


def test_crear_tabla_con_carpeta_crea_vinculo(tabla, manager, obra):
    vinculos = manager.listar_vinculos(obra.id)
    assert [(v.carpeta, v.tabla_id) for v in vinculos] == [("certificados/mensuales", tabla.id)]
    assert vinculos[0].carpeta_etiqueta == "Certificados/Mensuales"


def test_tipo_desconocido_es_texto(esquema, obra):
    tabla = esquema.crear_tabla(obra.id, "Notas", [{"label": "Nota", "data_type": "markdown"}])
    assert tabla.columnas[0].data_type == "text"


def test_clave_duplicada_no_escribe_nada(esquema, manager, obra):
    with pytest.raises(SchemaConflict) as error:
        esquema.crear_tabla(obra.id, "Dup", [
            {"label": "Monto Total"},
            {"label": "monto_total"},
        ], carpeta="dup")

    assert error.value.field_key == "monto_total"
    assert manager.listar_tablas(obra.id) == []
    assert manager.listar_vinculos(obra.id) == []


def test_formula_sobre_columna_calculada_es_conflicto(esquema, manager, obra):
    with pytest.raises(SchemaConflict) as error:
        esquema.crear_tabla(obra.id, "Encadenada", [
            {"label": "a", "data_type": "number"},
            {"label": "b", "data_type": "number", "config": {"formula": "[a] * 2"}},
            {"label": "c", "data_type": "number", "config": {"formula": "[b] + 1"}},
        ])

    assert error.value.field_key == "c"
    assert manager.listar_tablas(obra.id) == []


def test_coercionar_datos_fila_descarta_formulas_y_conserva_metadatos(tabla):
    datos = coercionar_datos_fila(tabla.columnas, {
        "monto_total": "1.000,50",
        "saldo": 5,
        "desconocida": "x",
        "__docPath": "1/certificados/a.pdf",
    })
    assert datos == {"monto_total": 1000.5, "__docPath": "1/certificados/a.pdf"}


def test_guardar_filas_altas_modificaciones_y_bajas(db, tabla):
    filas = FilasService(db)
    guardadas = filas.guardar_filas(tabla.id, rows=[
        {"id": "f1", "data": {"descripcion": "Excavación", "monto_total": "1000", "saldo": 1}},
        {"id": "f2", "data": {"descripcion": "Relleno"}},
    ])
    assert {f.id for f in guardadas} == {"f1", "f2"}
    f1 = next(f for f in guardadas if f.id == "f1")
    assert f1.data == {"descripcion": "Excavación", "monto_total": 1000.0}
    assert f1.source == OrigenFila.MANUAL

    guardadas = filas.guardar_filas(
        tabla.id,
        dirty_rows=[{"id": "f1", "data": {"monto_certificado": "400"}}],
        deleted_row_ids=["f2"],
    )
    assert [f.id for f in guardadas] == ["f1"]
    assert guardadas[0].data == {"descripcion": "Excavación", "monto_total": 1000.0, "monto_certificado": 400.0}


def test_guardar_filas_tabla_inexistente(db):
    assert FilasService(db).guardar_filas(999, rows=[{"data": {}}]) is None


def test_renombrar_columna_migra_valores(db, esquema, tabla, manager):
    FilasService(db).guardar_filas(tabla.id, rows=[
        {"id": "f1", "data": {"monto_total": 1000, "__docPath": "1/certificados/mensuales/a.pdf"}},
    ])
    columnas = [
        {"id": c.id, "label": c.label, "field_key": c.field_key, "data_type": c.data_type, "config": c.config}
        for c in tabla.columnas
    ]
    columnas[1].update(label="Importe", field_key="importe")
    columnas[3]["config"] = {"formula": "[importe] - [monto_certificado]"}

    esquema.actualizar_columnas(tabla.id, columnas)

    fila = manager.listar_todas_las_filas(tabla.id)[0]
    assert fila.data == {"importe": 1000, "__docPath": "1/certificados/mensuales/a.pdf"}
    assert manager.obtener_tabla(tabla.id).field_keys == ["descripcion", "importe", "monto_certificado", "saldo"]


def test_cambiar_tipo_recoerciona_valores(db, esquema, obra, manager):
    tabla = esquema.crear_tabla(obra.id, "Cantidades", [{"label": "Cantidad", "data_type": "text"}])
    FilasService(db).guardar_filas(tabla.id, rows=[{"id": "f1", "data": {"cantidad": "12,5"}}])

    columna = tabla.columnas[0]
    esquema.actualizar_columnas(tabla.id, [
        {"id": columna.id, "label": "Cantidad", "field_key": "cantidad", "data_type": "number"},
    ])

    assert manager.listar_todas_las_filas(tabla.id)[0].data == {"cantidad": 12.5}


def test_eliminar_columna_conserva_valores_en_filas(db, esquema, tabla, manager):
    FilasService(db).guardar_filas(tabla.id, rows=[{"id": "f1", "data": {"descripcion": "x", "monto_total": 5}}])
    primera = tabla.columnas[0]

    esquema.actualizar_columnas(tabla.id, [
        {"id": primera.id, "label": primera.label, "field_key": primera.field_key, "data_type": "text"},
        {"label": "Nueva", "data_type": "boolean"},
    ])

    assert manager.obtener_tabla(tabla.id).field_keys == ["descripcion", "nueva"]
    assert manager.listar_todas_las_filas(tabla.id)[0].data["monto_total"] == 5


def test_columna_ajena_es_error_y_no_cambia_nada(esquema, tabla, obra, manager):
    otra = esquema.crear_tabla(obra.id, "Otra", [{"label": "x"}])
    ajena = otra.columnas[0].id

    with pytest.raises(ValueError):
        esquema.actualizar_tabla(tabla.id, nombre="Renombrada", columnas=[{"id": ajena, "label": "x"}])

    actual = manager.obtener_tabla(tabla.id)
    assert actual.nombre == "Certificados"
    assert len(actual.columnas) == 4


def test_conflicto_al_actualizar_no_cambia_nada(esquema, tabla, manager):
    with pytest.raises(SchemaConflict):
        esquema.actualizar_columnas(tabla.id, [{"label": "a"}, {"label": "A"}])
    assert manager.obtener_tabla(tabla.id).field_keys == ["descripcion", "monto_total", "monto_certificado", "saldo"]


def test_actualizar_tabla_inexistente(esquema):
    assert esquema.actualizar_tabla(999, nombre="x") is None


def test_eliminar_tabla_en_cascada(esquema, tabla, manager, obra):
    assert esquema.eliminar_tabla(tabla.id) is True
    assert manager.listar_tablas(obra.id) == []
    assert manager.listar_vinculos(obra.id) == []
    assert esquema.eliminar_tabla(tabla.id) is False
