"""
Cliente async con caché para la API de Tablas de Obra
"""

from .cache import CacheTTL, CacheService
from .api_client import ClienteObras
from .almacen import AlmacenDocumentos, SeguidorSolicitudes

__all__ = ['CacheTTL', 'CacheService', 'ClienteObras', 'AlmacenDocumentos', 'SeguidorSolicitudes']
