"""
Modelos SQLAlchemy para Tablas de Obra
======================================

- Obra: ámbito propietario
- Tabla / TablaColumna / TablaFila: esquemas dinámicos y filas JSON
- VinculoExtraccion: carpeta → tabla (admite varias tablas por carpeta)
- Documento / ProcesamientoDocumento: archivos fuente y su extracción por tabla
"""

from .base import Base
from .obra import Obra
from .tabla import Tabla, TablaColumna, TablaFila, DataInputMethod, OrigenFila
from .vinculo import VinculoExtraccion
from .documento import Documento, ProcesamientoDocumento, EstadoOCR

__all__ = [
    'Base',
    'Obra',
    'Tabla',
    'TablaColumna',
    'TablaFila',
    'DataInputMethod',
    'OrigenFila',
    'VinculoExtraccion',
    'Documento',
    'ProcesamientoDocumento',
    'EstadoOCR',
]
