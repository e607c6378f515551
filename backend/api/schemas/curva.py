"""
Pydantic schemas for la curva de avance
"""

from pydantic import BaseModel
from typing import Optional, List


class PuntoCurvaResponse(BaseModel):
    clave: str
    label: str
    plan_value: Optional[float] = None
    actual_value: Optional[float] = None
    sort_order: int


class CurvaResponse(BaseModel):
    planTablaId: Optional[int] = None
    planTablaNombre: Optional[str] = None
    realTablaId: Optional[int] = None
    realTablaNombre: Optional[str] = None
    curveStartPeriod: Optional[str] = None
    points: List[PuntoCurvaResponse] = []
