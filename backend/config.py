"""
Configuración de Tablas de Obra Backend
"""

from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configuración de la aplicación"""

    # Entorno
    ENV: str = "development"  # development | production

    # API
    API_TITLE: str = "Tablas de Obra API"
    API_VERSION: str = "1.0.0"
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8005

    # Base de datos
    DATABASE_URL: str = "sqlite:///./tablas_obra.db"

    # CORS
    CORS_ORIGINS: list = [
        "http://localhost:3016",
    ]

    # Paths
    BASE_DIR: Path = Path(__file__).parent  # backend/
    UPLOADS_DIR: Path = BASE_DIR / "uploads"
    LOGS_DIR: Path = BASE_DIR / "logs"
    CACHE_DIR: Path = BASE_DIR / ".cache"

    # Logging
    LOG_LEVEL: str = "DEBUG"  # DEBUG | INFO | WARNING | ERROR
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Límites
    MAX_UPLOAD_SIZE: int = 50 * 1024 * 1024  # 50 MB
    ROWS_PAGE_LIMIT: int = 50
    ROWS_PAGE_MAX: int = 200
    CURVE_MAX_PAGES: int = 20
    TREE_ROWS_LIMIT: int = 500

    # Extractor externo (OCR / IA)
    EXTRACTOR_URL: str = ""
    EXTRACTOR_API_KEY: str = ""
    EXTRACTOR_TIMEOUT: float = 300.0

    # URLs firmadas
    SIGNING_SECRET: str = "dev-signing-secret-change-in-production"
    SIGNING_ALGORITHM: str = "HS256"
    SIGNED_URL_TTL_SECONDS: int = 60 * 60  # 1 hora

    # Fórmulas
    FORMULA_CACHE_SIZE: int = 512

    # Caché del cliente (segundos)
    BACKEND_URL: str = "http://localhost:8005"
    CACHE_SIGNED_URL_TTL: float = 55 * 60
    CACHE_BLOB_TTL: float = 30 * 60
    CACHE_FILE_TREE_TTL: float = 5 * 60
    CACHE_LINKS_TTL: float = 10 * 60
    CACHE_RATE_LIMIT_COOLDOWN: float = 60.0

    class Config:
        env_file = ".env"
        case_sensitive = True


# Instancia global de configuración
settings = Settings()

# Crear directorios si no existen
settings.UPLOADS_DIR.mkdir(exist_ok=True, parents=True)
settings.LOGS_DIR.mkdir(exist_ok=True, parents=True)
