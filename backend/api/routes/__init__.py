"""
API Routes Package
"""

from .obras import router as obras_router
from .tablas import router as tablas_router
from .filas import router as filas_router
from .documentos import router as documentos_router, archivos_router
from .curva import router as curva_router
