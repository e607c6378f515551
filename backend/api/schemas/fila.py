"""
Pydantic schemas for filas y vistas materializadas
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

from models import OrigenFila


class FilaInput(BaseModel):
    """Fila entrante: data sin coercionar; el id es opcional en altas"""
    id: Optional[str] = None
    data: Dict[str, Any] = {}
    source: Optional[str] = None


class GuardarFilasRequest(BaseModel):
    """Lote de cambios de filas"""
    rows: List[FilaInput] = []
    dirty_rows: List[FilaInput] = Field([], alias='dirtyRows')
    deleted_row_ids: List[str] = Field([], alias='deletedRowIds')

    class Config:
        populate_by_name = True


class FilaResponse(BaseModel):
    id: str
    data: Dict[str, Any]
    source: OrigenFila

    class Config:
        from_attributes = True


class FilasPaginadas(BaseModel):
    rows: List[FilaResponse]
    total: int
    page: int
    limit: int


class FiltroColumnaInput(BaseModel):
    texto: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None


class VistaRequest(BaseModel):
    """Filtros y orden para la vista materializada"""
    filtros: Dict[str, FiltroColumnaInput] = {}
    doc_path: Optional[str] = Field(None, alias='docPath')
    search: Optional[str] = None
    sort_by: Optional[str] = Field(None, alias='sortBy')
    sort_desc: bool = Field(False, alias='sortDesc')

    class Config:
        populate_by_name = True
