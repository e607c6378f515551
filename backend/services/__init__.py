"""
Services package - Lógica de negocio
"""

from .obra_service import ObraService
from .esquema_service import EsquemaService
from .filas_service import FilasService
from .importacion_service import ImportacionService
from .documentos_service import DocumentosService
from .curva_service import CurvaService

__all__ = [
    'ObraService',
    'EsquemaService',
    'FilasService',
    'ImportacionService',
    'DocumentosService',
    'CurvaService',
]
