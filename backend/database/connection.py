"""
Conexión a base de datos (SQLite por defecto, cualquier URL de SQLAlchemy)
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator
import logging
import sys
from pathlib import Path

# Añadir el directorio backend al path para imports
sys.path.append(str(Path(__file__).parent.parent))

from config import settings
from models.base import Base

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


# Crear engine
engine = create_engine(
    settings.DATABASE_URL,
    echo=False,
    **_engine_kwargs(settings.DATABASE_URL)
)


def configurar_sqlite(sqlite_engine):
    """
    Activa claves foráneas y deja que SQLAlchemy emita BEGIN.

    pysqlite abre transacciones por su cuenta y eso rompe los SAVEPOINT que
    usa la importación por tabla.
    """
    @event.listens_for(sqlite_engine, "connect")
    def _al_conectar(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(sqlite_engine, "begin")
    def _al_comenzar(conn):
        conn.exec_driver_sql("BEGIN")

    return sqlite_engine


if settings.DATABASE_URL.startswith("sqlite"):
    configurar_sqlite(engine)


# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency para FastAPI que proporciona una sesión de base de datos.

    Uso:
        @app.get("/items")
        def get_items(db: Session = Depends(get_db)):
            return db.query(Item).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """
    Crea todas las tablas en la base de datos.

    NOTA: En producción, usar migrations (Alembic) en lugar de esto.
    """
    Base.metadata.create_all(bind=bind or engine)
    logger.info("✓ Tablas creadas exitosamente")


def drop_tables(bind=None):
    """
    PELIGRO: Elimina todas las tablas.
    Solo usar en desarrollo.
    """
    if settings.ENV == "production":
        raise Exception("No se puede eliminar tablas en producción")

    Base.metadata.drop_all(bind=bind or engine)
    logger.info("✓ Tablas eliminadas")
