"""
Pruebas de la API completa con TestClient.

Solo se usa el cliente HTTP: cada petición abre su propia sesión sobre la
misma conexión SQLite en memoria.
"""

import json

import pytest

from services.documentos_service import firmar_url


CSV_CERTIFICADO = (
    "Item,Descripcion,Cantidad,Precio Unitario,Total\n"
    "1,Excavacion,10,100.5,1005\n"
    "2,Relleno,5,200,1000\n"
).encode("utf-8")


def _crear_obra(client, nombre="Obra", curve_start_period=None):
    response = client.post("/api/obras", json={"nombre": nombre, "curve_start_period": curve_start_period})
    assert response.status_code == 201
    return response.json()


def _crear_tabla(client, obra_id, nombre, columnas, **extra):
    response = client.post(f"/api/obras/{obra_id}/tablas", json={"nombre": nombre, "columnas": columnas, **extra})
    assert response.status_code == 201, response.text
    return response.json()


def _subir(client, obra_id, nombre, contenido, carpeta="certificados", **form):
    return client.post(
        f"/api/obras/{obra_id}/documentos",
        data={"carpeta": carpeta, **form},
        files={"file": (nombre, contenido, "text/csv")},
    )


@pytest.fixture
def obra_api(client):
    return _crear_obra(client, "Obra API", "2024-01")


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


# =====================================================
# OBRAS
# =====================================================

def test_crear_y_obtener_obra(client, obra_api):
    response = client.get(f"/api/obras/{obra_api['id']}")
    assert response.status_code == 200
    datos = response.json()
    assert datos["nombre"] == "Obra API"
    assert datos["curve_start_period"] == "2024-01"
    assert "estadisticas" in datos


def test_ancla_invalida_es_rechazada(client):
    response = client.post("/api/obras", json={"nombre": "X", "curve_start_period": "2024-13"})
    assert response.status_code == 422


def test_actualizar_obra(client, obra_api):
    response = client.patch(f"/api/obras/{obra_api['id']}", json={"curve_start_period": "2023-11"})
    assert response.status_code == 200
    assert response.json()["curve_start_period"] == "2023-11"


def test_obra_inexistente(client):
    assert client.get("/api/obras/999").status_code == 404
    assert client.get("/api/obras/999/tablas").status_code == 404
    assert client.patch("/api/obras/999", json={"nombre": "x"}).status_code == 404


# =====================================================
# TABLAS Y FÓRMULAS
# =====================================================

def test_formula_calculada_en_la_vista(client, obra_api):
    obra_id = obra_api["id"]
    tabla = _crear_tabla(client, obra_id, "Certificados", [
        {"label": "Monto Total", "dataType": "currency"},
        {"label": "Monto Certificado", "dataType": "currency",
         "config": {"conditional": {"warnAbove": 300}}},
        {"label": "Saldo", "dataType": "currency", "config": {"formula": "[monto_total]-[monto_certificado]"}},
    ])
    assert [c["field_key"] for c in tabla["columnas"]] == ["monto_total", "monto_certificado", "saldo"]

    response = client.post(f"/api/obras/{obra_id}/tablas/{tabla['id']}/rows", json={
        "rows": [{"id": "r1", "data": {"monto_total": 1000, "monto_certificado": 400, "saldo": 1}}],
    })
    assert response.status_code == 200
    guardada = response.json()["rows"][0]
    assert guardada["data"] == {"monto_total": 1000.0, "monto_certificado": 400.0}
    assert guardada["source"] == "manual"

    vista = client.get(f"/api/obras/{obra_id}/tablas/{tabla['id']}/vista").json()
    fila = vista["rows"][0]
    assert fila["values"]["saldo"] == 600
    assert fila["styles"]["monto_certificado"] == "warn"
    assert vista["totals"]["saldo"] == 600
    assert vista["columns"][2]["formula"] == "[monto_total]-[monto_certificado]"


def test_clave_duplicada_devuelve_409(client, obra_api):
    obra_id = obra_api["id"]
    response = client.post(f"/api/obras/{obra_id}/tablas", json={
        "nombre": "Dup",
        "columnas": [{"label": "Monto Total"}, {"label": "monto total"}],
        "carpeta": "dup",
    })

    assert response.status_code == 409
    assert response.json()["detail"]["fieldKey"] == "monto_total"
    assert client.get(f"/api/obras/{obra_id}/tablas").json() == []
    assert client.get(f"/api/obras/{obra_id}/vinculos").json() == []


def test_renombrar_columna_por_api_migra_filas(client, obra_api):
    obra_id = obra_api["id"]
    tabla = _crear_tabla(client, obra_id, "Items", [{"label": "Cantidad", "dataType": "text"}])
    base = f"/api/obras/{obra_id}/tablas/{tabla['id']}"
    client.post(f"{base}/rows", json={"rows": [{"id": "r1", "data": {"cantidad": "3,5"}}]})

    columna = tabla["columnas"][0]
    response = client.patch(base, json={
        "nombre": "Items de obra",
        "columnas": [{"id": columna["id"], "label": "Cant.", "fieldKey": "cant", "dataType": "number"}],
    })
    assert response.status_code == 200
    assert response.json()["nombre"] == "Items de obra"

    filas = client.get(f"{base}/rows").json()
    assert filas["rows"][0]["data"] == {"cant": 3.5}


def test_columna_ajena_devuelve_400(client, obra_api):
    obra_id = obra_api["id"]
    tabla = _crear_tabla(client, obra_id, "A", [{"label": "x"}])
    otra = _crear_tabla(client, obra_id, "B", [{"label": "y"}])

    response = client.patch(f"/api/obras/{obra_id}/tablas/{tabla['id']}", json={
        "columnas": [{"id": otra["columnas"][0]["id"], "label": "y"}],
    })
    assert response.status_code == 400


def test_eliminar_tabla(client, obra_api):
    obra_id = obra_api["id"]
    tabla = _crear_tabla(client, obra_id, "Temporal", [{"label": "x"}], carpeta="temp")

    assert client.delete(f"/api/obras/{obra_id}/tablas/{tabla['id']}").status_code == 204
    assert client.get(f"/api/obras/{obra_id}/tablas/{tabla['id']}").status_code == 404
    assert client.get(f"/api/obras/{obra_id}/vinculos").json() == []


def test_guardar_y_borrar_filas(client, obra_api):
    obra_id = obra_api["id"]
    tabla = _crear_tabla(client, obra_id, "Notas", [{"label": "Nota"}, {"label": "Hecho", "dataType": "boolean"}])
    base = f"/api/obras/{obra_id}/tablas/{tabla['id']}/rows"

    client.post(base, json={"rows": [
        {"id": "a", "data": {"nota": "uno"}},
        {"id": "b", "data": {"nota": "dos"}},
    ]})
    response = client.post(base, json={
        "dirtyRows": [{"id": "a", "data": {"hecho": "si"}}],
        "deletedRowIds": ["b"],
    })

    assert response.json()["total"] == 1
    assert response.json()["rows"][0]["data"] == {"nota": "uno", "hecho": True}


# =====================================================
# DOCUMENTOS E IMPORTACIÓN
# =====================================================

@pytest.fixture
def tablas_certificado(client, obra_api):
    obra_id = obra_api["id"]
    resumen = _crear_tabla(client, obra_id, "Resumen", [
        {"label": "Descripcion"},
        {"label": "Total", "dataType": "currency"},
    ], carpeta="Certificados", carpeta_etiqueta="Certificados")
    items = _crear_tabla(client, obra_id, "Items", [
        {"label": "Item", "dataType": "number"},
        {"label": "Cantidad", "dataType": "number"},
    ], carpeta="Certificados")
    return resumen, items


def test_subida_importa_en_cada_tabla_vinculada(client, obra_api, tablas_certificado):
    obra_id = obra_api["id"]
    resumen, items = tablas_certificado

    response = _subir(client, obra_id, "cert.csv", CSV_CERTIFICADO)

    assert response.status_code == 201
    cuerpo = response.json()
    assert cuerpo["documento"]["storage_path"] == f"{obra_id}/certificados/cert.csv"
    assert cuerpo["documento"]["estado"] == "completed"
    assert cuerpo["documento"]["filas_extraidas"] == 4
    assert {r["tablaId"]: r["inserted"] for r in cuerpo["resultados"]} == {resumen["id"]: 2, items["id"]: 2}

    filas = client.get(f"/api/obras/{obra_id}/tablas/{items['id']}/rows").json()
    assert filas["total"] == 2
    assert {f["data"]["cantidad"] for f in filas["rows"]} == {10.0, 5.0}
    assert all(f["source"] == "spreadsheet" for f in filas["rows"])


def test_filas_paginadas_por_documento(client, obra_api, tablas_certificado):
    obra_id = obra_api["id"]
    resumen, _ = tablas_certificado
    _subir(client, obra_id, "cert-1.csv", CSV_CERTIFICADO)
    _subir(client, obra_id, "cert-2.csv", CSV_CERTIFICADO)
    base = f"/api/obras/{obra_id}/tablas/{resumen['id']}/rows"

    assert client.get(base).json()["total"] == 4

    doc_path = f"{obra_id}/certificados/cert-2.csv"
    pagina = client.get(base, params={"docPath": doc_path, "limit": 1, "page": 2}).json()
    assert pagina["total"] == 2
    assert pagina["limit"] == 1
    assert len(pagina["rows"]) == 1
    assert pagina["rows"][0]["data"]["__docPath"] == doc_path

    vista = client.get(f"/api/obras/{obra_id}/tablas/{resumen['id']}/vista", params={"docPath": doc_path}).json()
    assert vista["total"] == 2
    assert all(r["docFileName"] == "cert-2.csv" for r in vista["rows"])


def test_vista_con_filtros_y_orden(client, obra_api, tablas_certificado):
    obra_id = obra_api["id"]
    resumen, _ = tablas_certificado
    _subir(client, obra_id, "cert.csv", CSV_CERTIFICADO)
    url = f"/api/obras/{obra_id}/tablas/{resumen['id']}/vista"

    filtrada = client.get(url, params={"filtros": json.dumps({"total": {"min": 1001}})}).json()
    assert [r["values"]["descripcion"] for r in filtrada["rows"]] == ["Excavacion"]

    ordenada = client.get(url, params={"sortBy": "total"}).json()
    assert [r["values"]["total"] for r in ordenada["rows"]] == [1000.0, 1005.0]

    buscada = client.get(url, params={"search": "RELL"}).json()
    assert buscada["total"] == 1

    assert client.get(url, params={"filtros": "{no es json"}).status_code == 400


def test_reimportar_por_api_reemplaza(client, obra_api, tablas_certificado):
    obra_id = obra_api["id"]
    resumen, _ = tablas_certificado
    documento = _subir(client, obra_id, "cert.csv", CSV_CERTIFICADO).json()["documento"]

    response = client.post(f"/api/obras/{obra_id}/import", json={
        "documentoId": documento["id"],
        "tablaIds": [resumen["id"]],
    })

    assert response.status_code == 200
    assert response.json()["resultados"] == [
        {**response.json()["resultados"][0], "ok": True, "inserted": 2, "replaced": 2},
    ]
    assert client.get(f"/api/obras/{obra_id}/tablas/{resumen['id']}/rows").json()["total"] == 2


def test_preview_por_api(client, obra_api, tablas_certificado):
    obra_id = obra_api["id"]
    documento = _subir(client, obra_id, "cert.csv", CSV_CERTIFICADO, importar="false").json()["documento"]

    response = client.post(f"/api/obras/{obra_id}/import", json={"documentoId": documento["id"], "preview": True})

    resultados = response.json()["resultados"]
    assert len(resultados) == 2
    assert all(r["preview"]["rowCount"] == 2 for r in resultados)
    assert client.get(f"/api/obras/{obra_id}/documentos").json()[0]["estado"] == "unprocessed"


def test_importar_documento_inexistente(client, obra_api):
    response = client.post(f"/api/obras/{obra_api['id']}/import", json={"documentoId": 999})
    assert response.status_code == 404


def test_arbol_de_documentos(client, obra_api, tablas_certificado):
    obra_id = obra_api["id"]
    resumen, items = tablas_certificado
    _subir(client, obra_id, "cert.csv", CSV_CERTIFICADO)
    _subir(client, obra_id, "foto.jpg", b"\xff\xd8", carpeta="fotos")

    arbol = client.get(f"/api/obras/{obra_id}/documents-tree", params={"rowsLimit": 1}).json()

    carpetas = {c["path"]: c for c in arbol["tree"]["children"]}
    assert set(carpetas) == {"certificados", "fotos"}
    certificados = carpetas["certificados"]
    assert certificados["label"] == "Certificados"
    assert sorted(certificados["tablaIds"]) == sorted([resumen["id"], items["id"]])
    archivo = certificados["files"][0]
    assert archivo["name"] == "cert.csv"
    assert len(archivo["procesamientos"]) == 2
    assert carpetas["fotos"]["files"][0]["tablaIds"] == []

    links = {link["tablaId"]: link for link in arbol["links"]}
    assert links[resumen["id"]]["totalRows"] == 2
    assert len(links[resumen["id"]]["rows"]) == 1


def test_descarga_con_url_firmada(client, obra_api):
    obra_id = obra_api["id"]
    storage_path = _subir(client, obra_id, "cert.csv", CSV_CERTIFICADO).json()["documento"]["storage_path"]

    firmada = client.get(f"/api/obras/{obra_id}/documentos/url-firmada", params={"path": storage_path}).json()
    assert firmada["path"] == storage_path

    descarga = client.get(firmada["url"])
    assert descarga.status_code == 200
    assert descarga.content == CSV_CERTIFICADO

    manipulada = firmada["url"].split("token=")[0] + "token=falsa"
    assert client.get(manipulada).status_code == 403

    respuesta = client.get(f"/api/obras/{obra_id}/documentos/url-firmada", params={"path": f"{obra_id}/otro.pdf"})
    assert respuesta.status_code == 404


def test_descarga_con_token_caducado_o_de_otra_ruta(client, obra_api):
    obra_id = obra_api["id"]
    storage_path = _subir(client, obra_id, "cert.csv", CSV_CERTIFICADO).json()["documento"]["storage_path"]

    caducada = firmar_url(storage_path, ttl=-60)
    assert client.get(caducada["url"]).status_code == 403

    token_ajeno = firmar_url(f"{obra_id}/otro.csv")["url"].split("token=")[1]
    response = client.get(f"/api/archivos/{storage_path}", params={"token": token_ajeno})
    assert response.status_code == 403

    assert client.get(f"/api/archivos/{storage_path}").status_code == 422


def test_subida_con_ruta_invalida(client, obra_api):
    response = _subir(client, obra_api["id"], "cert.csv", CSV_CERTIFICADO, carpeta="../fuera")
    assert response.status_code == 400


# =====================================================
# CURVA
# =====================================================

def test_curva_plan_vs_real(client, obra_api):
    obra_id = obra_api["id"]
    plan = _crear_tabla(client, obra_id, "Curva Plan", [
        {"label": "Periodo"},
        {"label": "Avance acumulado", "fieldKey": "avance_acumulado_pct", "dataType": "number"},
    ])
    real = _crear_tabla(client, obra_id, "PMC Resumen", [
        {"label": "Fecha certificación", "dataType": "date"},
        {"label": "Avance físico acumulado", "fieldKey": "avance_fisico_acumulado_pct", "dataType": "number"},
    ])
    client.post(f"/api/obras/{obra_id}/tablas/{plan['id']}/rows", json={"rows": [
        {"data": {"periodo": "Mes 1", "avance_acumulado_pct": 5}},
        {"data": {"periodo": "Mes 2", "avance_acumulado_pct": 12.5}},
    ]})
    client.post(f"/api/obras/{obra_id}/tablas/{real['id']}/rows", json={"rows": [
        {"data": {"fecha_certificacion": "29/02/2024", "avance_fisico_acumulado_pct": "4,5"}},
    ]})

    curva = client.get(f"/api/obras/{obra_id}/curva").json()

    assert curva["planTablaId"] == plan["id"]
    assert curva["realTablaId"] == real["id"]
    puntos = {p["clave"]: p for p in curva["points"]}
    assert [p["clave"] for p in curva["points"]] == ["2024-01", "2024-02", "2024-03"]
    assert puntos["2024-01"]["actual_value"] == 0
    assert puntos["2024-02"] == {**puntos["2024-02"], "plan_value": 5, "actual_value": 4.5}
    assert puntos["2024-03"]["label"] == "mar 2024"
    assert puntos["2024-03"]["plan_value"] == 12.5


def test_curva_con_tabla_ajena(client, obra_api):
    otra = _crear_obra(client, "Otra")
    ajena = _crear_tabla(client, otra["id"], "Curva Plan", [{"label": "Periodo"}])

    response = client.get(f"/api/obras/{obra_api['id']}/curva", params={"planTablaId": ajena["id"]})
    assert response.status_code == 400


def test_curva_obra_inexistente(client):
    assert client.get("/api/obras/999/curva").status_code == 404
