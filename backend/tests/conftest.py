"""
Fixtures comunes: base de datos SQLite en memoria, almacenamiento temporal
y cliente HTTP de la API.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings
from database.connection import configurar_sqlite, create_tables
from database.manager import DatabaseManager
from api.dependencies import get_db, get_extractor
from services.extractor_service import ExtractorService


@pytest.fixture
def engine():
    test_engine = configurar_sqlite(create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    ))
    create_tables(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def manager(db):
    return DatabaseManager(db)


@pytest.fixture(autouse=True)
def storage(tmp_path, monkeypatch):
    """UPLOADS_DIR y CACHE_DIR en un directorio temporal"""
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    monkeypatch.setattr(settings, "UPLOADS_DIR", uploads)
    monkeypatch.setattr(settings, "CACHE_DIR", tmp_path / "cache")
    return uploads


@pytest.fixture
def extractor_sin_configurar():
    return ExtractorService(base_url="", api_key="")


@pytest.fixture
def client(engine, extractor_sin_configurar):
    from main import app

    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_extractor] = lambda: extractor_sin_configurar
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def obra(manager):
    return manager.crear_obra("Obra Test", curve_start_period="2024-01")
