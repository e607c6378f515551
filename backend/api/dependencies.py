"""
API Dependencies - Sesiones de base de datos y recursos comunes
"""

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import Generator
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent))

from database.connection import SessionLocal
from database.manager import DatabaseManager
from models import Obra
from services.extractor_service import ExtractorService, get_extractor_service


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_database_manager(db: Session = Depends(get_db)) -> DatabaseManager:
    """
    Dependency to get DatabaseManager instance.

    Args:
        db: Database session

    Returns:
        DatabaseManager instance
    """
    return DatabaseManager(db)


def get_obra(obra_id: int, manager: DatabaseManager = Depends(get_database_manager)) -> Obra:
    """
    Dependency que resuelve la obra de la ruta.

    Raises:
        HTTPException: 404 si la obra no existe
    """
    obra = manager.obtener_obra(obra_id)
    if not obra:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Obra {obra_id} no encontrada"
        )
    return obra


def get_extractor() -> ExtractorService:
    """Dependency del extractor externo (sustituible en tests)"""
    return get_extractor_service()
