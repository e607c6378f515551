"""
Curva Routes - curva de avance plan vs real
"""

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import Optional
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent.parent))

from api.dependencies import get_db
from api.schemas.curva import CurvaResponse
from services.curva_service import CurvaService

router = APIRouter()


@router.get("/{obra_id}/curva", response_model=CurvaResponse)
async def obtener_curva(
    obra_id: int,
    plan_tabla_id: Optional[int] = Query(None, alias="planTablaId"),
    real_tabla_id: Optional[int] = Query(None, alias="realTablaId"),
    db: Session = Depends(get_db)
):
    """
    Curva de avance de la obra.

    Sin tablas explícitas se detectan la tabla plan ("curva plan") y la
    tabla real ("pmc resumen") por nombre o columnas.
    """
    try:
        curva = CurvaService(db).construir_curva(obra_id, plan_tabla_id, real_tabla_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if curva is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Obra {obra_id} no encontrada"
        )
    return curva
