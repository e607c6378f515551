"""
Fila Routes - filas paginadas, guardado por lotes y vista materializada
"""

from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session
from typing import Optional, Dict
import json
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent.parent))

from api.dependencies import get_db, get_database_manager, get_obra
from api.schemas.fila import GuardarFilasRequest, FilaResponse, FilasPaginadas, FiltroColumnaInput
from config import settings
from database.manager import DatabaseManager
from models import Obra, Tabla
from services.filas_service import FilasService
from services.materializacion_service import (
    FiltroColumna,
    FiltrosVista,
    materializar,
    filtrar,
    ordenar,
    totales,
)

router = APIRouter()

_filtros_adapter = TypeAdapter(Dict[str, FiltroColumnaInput])


def _obtener_tabla(manager: DatabaseManager, obra: Obra, tabla_id: int) -> Tabla:
    tabla = manager.obtener_tabla(tabla_id, obra.id)
    if not tabla:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tabla {tabla_id} no encontrada"
        )
    return tabla


@router.get("/{obra_id}/tablas/{tabla_id}/rows", response_model=FilasPaginadas)
async def listar_filas(
    tabla_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(None, ge=1),
    doc_path: Optional[str] = Query(None, alias="docPath"),
    obra: Obra = Depends(get_obra),
    manager: DatabaseManager = Depends(get_database_manager)
):
    """
    Filas persistidas, paginadas y opcionalmente filtradas por documento.

    Args:
        page: Página (desde 1)
        limit: Filas por página (máximo ROWS_PAGE_MAX)
        doc_path: Solo filas producidas por ese documento
    """
    _obtener_tabla(manager, obra, tabla_id)
    limite = min(limit or settings.ROWS_PAGE_LIMIT, settings.ROWS_PAGE_MAX)

    filas, total = manager.listar_filas(tabla_id, page=page, limit=limite, doc_path=doc_path)
    return FilasPaginadas(
        rows=[FilaResponse.model_validate(f) for f in filas],
        total=total,
        page=page,
        limit=limite
    )


@router.post("/{obra_id}/tablas/{tabla_id}/rows")
async def guardar_filas(
    tabla_id: int,
    request: GuardarFilasRequest,
    obra: Obra = Depends(get_obra),
    db: Session = Depends(get_db)
):
    """
    Guarda altas, modificaciones y bajas en una sola transacción.

    Returns:
        {'ok': True, 'rows': [...], 'total': int}
    """
    try:
        filas = FilasService(db).guardar_filas(
            tabla_id,
            rows=[r.model_dump() for r in request.rows],
            dirty_rows=[r.model_dump() for r in request.dirty_rows],
            deleted_row_ids=request.deleted_row_ids,
            obra_id=obra.id
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if filas is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tabla {tabla_id} no encontrada"
        )

    return {
        'ok': True,
        'rows': [FilaResponse.model_validate(f).model_dump(mode='json') for f in filas],
        'total': len(filas),
    }


@router.get("/{obra_id}/tablas/{tabla_id}/vista")
async def vista_tabla(
    tabla_id: int,
    doc_path: Optional[str] = Query(None, alias="docPath"),
    search: Optional[str] = Query(None),
    filtros: Optional[str] = Query(None, description='JSON {field_key: {texto, min, max}}'),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_desc: bool = Query(False, alias="sortDesc"),
    obra: Obra = Depends(get_obra),
    manager: DatabaseManager = Depends(get_database_manager)
):
    """
    Filas materializadas: valores tipados, fórmulas calculadas, estilos
    condicionales, filtros, orden y totales de columnas numéricas.
    """
    tabla = _obtener_tabla(manager, obra, tabla_id)
    columnas = list(tabla.columnas)

    try:
        por_columna = _filtros_adapter.validate_python(json.loads(filtros)) if filtros else {}
    except (json.JSONDecodeError, ValidationError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Filtros inválidos: {e}")

    vistas = materializar(manager.listar_todas_las_filas(tabla_id), columnas)
    vistas = filtrar(vistas, columnas, FiltrosVista(
        columnas={
            clave: FiltroColumna(texto=f.texto, minimo=f.min, maximo=f.max)
            for clave, f in por_columna.items()
        },
        doc_path=doc_path,
        busqueda=search
    ))
    if sort_by:
        vistas = ordenar(vistas, columnas, sort_by, descendente=sort_desc)

    return {
        'tablaId': tabla.id,
        'columns': [
            {'fieldKey': c.field_key, 'label': c.label, 'dataType': c.data_type, 'formula': c.formula or None}
            for c in columnas
        ],
        'rows': [v.to_dict() for v in vistas],
        'totals': totales(vistas, columnas),
        'total': len(vistas),
    }
