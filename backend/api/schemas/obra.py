"""
Pydantic schemas for Obra
"""

from pydantic import BaseModel, field_validator
from typing import Optional, Dict, Any
from datetime import datetime
import re

PATRON_PERIODO = re.compile(r'^\d{4}-(0[1-9]|1[0-2])$')


def _validar_periodo(valor: Optional[str]) -> Optional[str]:
    if valor is None or not str(valor).strip():
        return None
    valor = str(valor).strip()
    if not PATRON_PERIODO.match(valor):
        raise ValueError("curve_start_period debe tener formato YYYY-MM")
    return valor


class ObraBase(BaseModel):
    """Base schema for Obra"""
    nombre: str
    curve_start_period: Optional[str] = None

    @field_validator('curve_start_period')
    @classmethod
    def validar_periodo(cls, v):
        return _validar_periodo(v)


class ObraCreate(ObraBase):
    """Schema for creating an obra"""
    pass


class ObraUpdate(BaseModel):
    """Schema for updating an obra"""
    nombre: Optional[str] = None
    curve_start_period: Optional[str] = None

    @field_validator('curve_start_period')
    @classmethod
    def validar_periodo(cls, v):
        return _validar_periodo(v)


class ObraResponse(ObraBase):
    """Schema for obra response"""
    id: int
    fecha_creacion: datetime
    fecha_actualizacion: datetime

    class Config:
        from_attributes = True


class ObraCompleta(ObraResponse):
    """Obra con estadísticas"""
    estadisticas: Dict[str, Any] = {}
