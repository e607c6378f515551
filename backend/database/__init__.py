"""
Database package para Tablas de Obra
"""

from .connection import engine, SessionLocal, get_db, create_tables, configurar_sqlite
from .manager import DatabaseManager
from .queries import QueryHelper

__all__ = ['engine', 'SessionLocal', 'get_db', 'create_tables', 'configurar_sqlite', 'DatabaseManager', 'QueryHelper']
