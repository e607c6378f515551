"""
Tablas de Obra - FastAPI Main Application

Obras con tablas de esquema dinámico, documentos subidos por carpeta que se
extraen en cada tabla vinculada, columnas con fórmula y curva de avance.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from pathlib import Path
import sys

# Añadir backend al path
sys.path.append(str(Path(__file__).parent))

from config import settings

# Configurar logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT,
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(settings.LOGS_DIR / "backend.log", encoding="utf-8")
    ]
)

logger = logging.getLogger(__name__)

from api.routes import (
    obras_router,
    tablas_router,
    filas_router,
    documentos_router,
    archivos_router,
    curva_router
)

# (router, prefijo, tag); todo lo que cuelga de una obra comparte prefijo
ROUTERS = [
    (obras_router, "/api/obras", "Obras"),
    (tablas_router, "/api/obras", "Tablas"),
    (filas_router, "/api/obras", "Filas"),
    (documentos_router, "/api/obras", "Documentos"),
    (curva_router, "/api/obras", "Curva"),
    (archivos_router, "/api/archivos", "Archivos"),
]

app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    description="Extracción de documentos a tablas tipadas, fórmulas y curva de avance por obra",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router, prefix, tag in ROUTERS:
    app.include_router(router, prefix=prefix, tags=[tag])


# =====================================================
# STARTUP / SHUTDOWN
# =====================================================

@app.on_event("startup")
async def startup_event():
    """Verifica la base de datos, crea el esquema y prepara el almacenamiento"""
    database = settings.DATABASE_URL.split('@')[-1]
    logger.info("=" * 60)
    logger.info(f"🚀 {settings.API_TITLE} v{settings.API_VERSION} ({settings.ENV})")
    logger.info(f"   Database: {database}")
    logger.info(f"   Uploads: {settings.UPLOADS_DIR}")
    logger.info(f"   Extractor: {settings.EXTRACTOR_URL or 'no configurado (solo planillas y PDFs digitales)'}")
    logger.info("=" * 60)

    from sqlalchemy import text
    from database.connection import engine, create_tables

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        create_tables()
    except Exception as e:
        logger.error(f"❌ Base de datos no disponible ({database}): {e}")
        raise

    settings.UPLOADS_DIR.mkdir(parents=True, exist_ok=True)
    logger.info("✓ Base de datos y almacenamiento listos")


@app.on_event("shutdown")
async def shutdown_event():
    from database.connection import engine

    engine.dispose()
    logger.info("👋 Tablas de Obra detenido")


# =====================================================
# RUTAS BÁSICAS
# =====================================================

@app.get("/")
async def root():
    """Recursos montados y documentación"""
    return {
        "app": settings.API_TITLE,
        "version": settings.API_VERSION,
        "resources": sorted({prefix for _, prefix, _ in ROUTERS}),
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check con el estado del extractor externo"""
    return {
        "status": "healthy",
        "version": settings.API_VERSION,
        "environment": settings.ENV,
        "extractor": "configured" if settings.EXTRACTOR_URL else "disabled",
    }


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Cualquier error no controlado se devuelve como 500 JSON"""
    logger.error(f"Error no manejado en {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.ENV == "development" else "An error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.ENV == "development",
        log_level=settings.LOG_LEVEL.lower()
    )
