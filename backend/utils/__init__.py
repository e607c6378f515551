"""
Utilidades para Tablas de Obra
"""

from .logger import setup_logger
from .normalizer import Normalizer

__all__ = [
    'setup_logger',
    'Normalizer',
]
