"""
Pydantic schemas for Documento e importación
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from models import EstadoOCR


class DocumentoResponse(BaseModel):
    """Schema for documento response"""
    id: int
    obra_id: int
    storage_path: str
    nombre: str
    mimetype: Optional[str] = None
    tamano: Optional[int] = None
    carpeta_extraccion: Optional[str] = None
    estado: EstadoOCR
    filas_extraidas: int = 0
    error: Optional[str] = None
    fecha_creacion: datetime

    class Config:
        from_attributes = True


class ImportRequest(BaseModel):
    """Importación de un documento ya subido"""
    documento_id: int = Field(..., alias='documentoId')
    tabla_ids: Optional[List[int]] = Field(None, alias='tablaIds')
    preview: bool = False
    perfil: Optional[str] = None

    class Config:
        populate_by_name = True


class SubidaResponse(BaseModel):
    """Documento subido más el resultado de importarlo en cada tabla"""
    documento: DocumentoResponse
    resultados: List[Dict[str, Any]] = []


class UrlFirmadaResponse(BaseModel):
    url: str
    expires: int
    path: str
