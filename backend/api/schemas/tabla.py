"""
Pydantic schemas for Tabla / TablaColumna
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from models import DataInputMethod


class ColumnaInput(BaseModel):
    """Definición de columna entrante (alta o evolución de esquema)"""
    id: Optional[int] = None
    label: str
    field_key: Optional[str] = Field(None, alias='fieldKey')
    data_type: str = Field('text', alias='dataType')
    required: bool = False
    config: Dict[str, Any] = {}

    class Config:
        populate_by_name = True


class TablaCreate(BaseModel):
    """Schema for creating a tabla (y su vínculo opcional)"""
    nombre: str
    columnas: List[ColumnaInput] = []
    carpeta: Optional[str] = None
    carpeta_etiqueta: Optional[str] = None
    data_input_method: Optional[str] = None


class TablaUpdate(BaseModel):
    """Schema for updating a tabla"""
    nombre: Optional[str] = None
    data_input_method: Optional[str] = None
    columnas: Optional[List[ColumnaInput]] = None


class ColumnaResponse(BaseModel):
    id: int
    label: str
    field_key: str
    data_type: str
    required: bool = False
    posicion: int
    config: Dict[str, Any] = {}

    class Config:
        from_attributes = True


class TablaResponse(BaseModel):
    """Schema for tabla response"""
    id: int
    obra_id: int
    nombre: str
    data_input_method: DataInputMethod
    columnas: List[ColumnaResponse] = []
    fecha_creacion: datetime

    class Config:
        from_attributes = True


class VinculoResponse(BaseModel):
    """Vínculo carpeta → tabla"""
    id: int
    obra_id: int
    tabla_id: int
    carpeta: str
    carpeta_etiqueta: Optional[str] = None

    class Config:
        from_attributes = True
