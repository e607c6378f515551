"""
Obra Routes - ámbito propietario, árbol de documentos y vínculos
"""

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import List, Optional
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent.parent))

from api.dependencies import get_db, get_database_manager, get_obra
from api.schemas.obra import ObraCreate, ObraUpdate, ObraResponse, ObraCompleta
from api.schemas.tabla import VinculoResponse
from database.manager import DatabaseManager
from models import Obra
from services.documentos_service import DocumentosService
from services.obra_service import ObraService

router = APIRouter()


@router.post("", response_model=ObraResponse, status_code=status.HTTP_201_CREATED)
async def crear_obra(obra_data: ObraCreate, db: Session = Depends(get_db)):
    """
    Create a new obra.

    Args:
        obra_data: Nombre y ancla opcional de la curva ("YYYY-MM")
        db: Database session

    Returns:
        Created obra
    """
    try:
        obra = ObraService(db).crear_obra(obra_data.nombre, obra_data.curve_start_period)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return ObraResponse.model_validate(obra)


@router.get("/{obra_id}", response_model=ObraCompleta)
async def obtener_obra(obra_id: int, db: Session = Depends(get_db)):
    """
    Get an obra by ID with statistics.

    Raises:
        HTTPException: 404 si la obra no existe
    """
    completa = ObraService(db).obtener_obra_completa(obra_id)
    if not completa:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Obra {obra_id} no encontrada"
        )

    respuesta = ObraCompleta.model_validate(completa['obra'])
    respuesta.estadisticas = completa['estadisticas']
    return respuesta


@router.patch("/{obra_id}", response_model=ObraResponse)
async def actualizar_obra(obra_id: int, obra_data: ObraUpdate, db: Session = Depends(get_db)):
    """
    Update an obra (nombre, curve_start_period).

    Raises:
        HTTPException: 404 si la obra no existe, 400 si los datos son inválidos
    """
    try:
        obra = ObraService(db).actualizar_obra(obra_id, **obra_data.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not obra:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Obra {obra_id} no encontrada"
        )
    return ObraResponse.model_validate(obra)


@router.get("/{obra_id}/documents-tree")
async def obtener_arbol_documentos(
    obra_id: int,
    rows_limit: Optional[int] = Query(None, alias="rowsLimit", ge=1),
    db: Session = Depends(get_db)
):
    """
    Árbol de carpetas/archivos de la obra y vínculos con columnas y filas.

    Returns:
        {'obraId', 'tree', 'links'}
    """
    arbol = DocumentosService(db).obtener_arbol(obra_id, filas_por_tabla=rows_limit)
    if arbol is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Obra {obra_id} no encontrada"
        )
    return arbol


@router.get("/{obra_id}/vinculos", response_model=List[VinculoResponse])
async def listar_vinculos(
    obra: Obra = Depends(get_obra),
    manager: DatabaseManager = Depends(get_database_manager)
):
    """Vínculos carpeta → tabla de la obra"""
    return [VinculoResponse.model_validate(v) for v in manager.listar_vinculos(obra.id)]
