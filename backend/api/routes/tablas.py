"""
Tabla Routes - registro de esquemas
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List
import sys
from pathlib import Path
import logging

sys.path.append(str(Path(__file__).parent.parent.parent))

from api.dependencies import get_db, get_database_manager, get_obra
from api.schemas.tabla import TablaCreate, TablaUpdate, TablaResponse
from database.manager import DatabaseManager
from models import Obra
from services.errors import SchemaConflict
from services.esquema_service import EsquemaService

logger = logging.getLogger(__name__)

router = APIRouter()


def _conflicto(e: SchemaConflict) -> HTTPException:
    detalle = {'error': str(e)}
    if e.field_key:
        detalle['fieldKey'] = e.field_key
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detalle)


def _tabla_no_encontrada(tabla_id: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Tabla {tabla_id} no encontrada"
    )


@router.get("/{obra_id}/tablas", response_model=List[TablaResponse])
async def listar_tablas(
    obra: Obra = Depends(get_obra),
    manager: DatabaseManager = Depends(get_database_manager)
):
    """List all tablas of an obra"""
    return [TablaResponse.model_validate(t) for t in manager.listar_tablas(obra.id)]


@router.post("/{obra_id}/tablas", response_model=TablaResponse, status_code=status.HTTP_201_CREATED)
async def crear_tabla(
    tabla_data: TablaCreate,
    obra: Obra = Depends(get_obra),
    db: Session = Depends(get_db)
):
    """
    Create a tabla and, if a folder is given, its extraction link.

    Raises:
        HTTPException: 409 si el esquema es inválido (clave duplicada,
            fórmula que referencia otra fórmula)
    """
    try:
        tabla = EsquemaService(db).crear_tabla(
            obra_id=obra.id,
            nombre=tabla_data.nombre,
            columnas=[c.model_dump() for c in tabla_data.columnas],
            carpeta=tabla_data.carpeta,
            carpeta_etiqueta=tabla_data.carpeta_etiqueta,
            data_input_method=tabla_data.data_input_method
        )
    except SchemaConflict as e:
        raise _conflicto(e)

    return TablaResponse.model_validate(tabla)


@router.get("/{obra_id}/tablas/{tabla_id}", response_model=TablaResponse)
async def obtener_tabla(
    tabla_id: int,
    obra: Obra = Depends(get_obra),
    db: Session = Depends(get_db)
):
    """Get a tabla with its columns"""
    tabla = EsquemaService(db).obtener_tabla(tabla_id, obra.id)
    if not tabla:
        raise _tabla_no_encontrada(tabla_id)
    return TablaResponse.model_validate(tabla)


@router.patch("/{obra_id}/tablas/{tabla_id}", response_model=TablaResponse)
async def actualizar_tabla(
    tabla_id: int,
    tabla_data: TablaUpdate,
    obra: Obra = Depends(get_obra),
    db: Session = Depends(get_db)
):
    """
    Update a tabla. If columns are sent, the schema evolves and stored rows
    are migrated (renamed keys move, retyped values are re-coerced).

    Raises:
        HTTPException: 404 tabla inexistente, 409 esquema inválido,
            400 columna con id ajeno a la tabla
    """
    columnas = None
    if tabla_data.columnas is not None:
        columnas = [c.model_dump() for c in tabla_data.columnas]

    try:
        tabla = EsquemaService(db).actualizar_tabla(
            tabla_id,
            nombre=tabla_data.nombre,
            data_input_method=tabla_data.data_input_method,
            columnas=columnas,
            obra_id=obra.id
        )
    except SchemaConflict as e:
        raise _conflicto(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not tabla:
        raise _tabla_no_encontrada(tabla_id)
    return TablaResponse.model_validate(tabla)


@router.delete("/{obra_id}/tablas/{tabla_id}", status_code=status.HTTP_204_NO_CONTENT)
async def eliminar_tabla(
    tabla_id: int,
    obra: Obra = Depends(get_obra),
    db: Session = Depends(get_db)
):
    """Delete a tabla with its rows, links and processing records"""
    servicio = EsquemaService(db)
    if not servicio.obtener_tabla(tabla_id, obra.id):
        raise _tabla_no_encontrada(tabla_id)
    servicio.eliminar_tabla(tabla_id)
    logger.info(f"🗑️ Tabla {tabla_id} eliminada de obra {obra.id}")
