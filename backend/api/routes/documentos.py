"""
Documento Routes - subida con importación, importación manual y descargas firmadas
"""

from fastapi import APIRouter, Depends, HTTPException, status, UploadFile, File, Form, Query
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
from jose import JWTError
from typing import List, Optional
import sys
from pathlib import Path
import logging

sys.path.append(str(Path(__file__).parent.parent.parent))

from api.dependencies import get_db, get_database_manager, get_obra, get_extractor
from api.schemas.documento import DocumentoResponse, ImportRequest, SubidaResponse, UrlFirmadaResponse
from config import settings
from database.manager import DatabaseManager
from models import Obra
from services.documentos_service import firmar_url, verificar_token, ruta_local
from services.extractor_service import ExtractorService
from services.importacion_service import ImportacionService

logger = logging.getLogger(__name__)

router = APIRouter()
archivos_router = APIRouter()


@router.get("/{obra_id}/documentos", response_model=List[DocumentoResponse])
async def listar_documentos(
    obra: Obra = Depends(get_obra),
    manager: DatabaseManager = Depends(get_database_manager)
):
    """List documents of an obra"""
    return [DocumentoResponse.model_validate(d) for d in manager.listar_documentos(obra.id)]


@router.post("/{obra_id}/documentos", response_model=SubidaResponse, status_code=status.HTTP_201_CREATED)
async def subir_documento(
    file: UploadFile = File(...),
    carpeta: str = Form(''),
    carpeta_extraccion: Optional[str] = Form(None, alias="carpetaExtraccion"),
    importar: bool = Form(True),
    perfil: Optional[str] = Form(None),
    obra: Obra = Depends(get_obra),
    db: Session = Depends(get_db),
    extractor: ExtractorService = Depends(get_extractor)
):
    """
    Upload a document into a folder of the obra.

    If the folder (or its extraction tag) resolves to one or more linked
    tablas, the document is imported into each of them independently.

    Raises:
        HTTPException: 400 ruta inválida, 413 archivo demasiado grande
    """
    contenido = await file.read()

    if len(contenido) > settings.MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File size exceeds maximum allowed ({settings.MAX_UPLOAD_SIZE / 1024 / 1024} MB)"
        )

    try:
        documento, resultados = ImportacionService(db, extractor).subir_documento(
            obra_id=obra.id,
            carpeta=carpeta,
            nombre_archivo=file.filename,
            contenido=contenido,
            mimetype=file.content_type,
            carpeta_extraccion=carpeta_extraccion,
            importar=importar,
            perfil=perfil
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return SubidaResponse(
        documento=DocumentoResponse.model_validate(documento),
        resultados=[r.to_dict() for r in resultados]
    )


@router.post("/{obra_id}/import")
async def importar_documento(
    request: ImportRequest,
    obra: Obra = Depends(get_obra),
    db: Session = Depends(get_db),
    extractor: ExtractorService = Depends(get_extractor)
):
    """
    Import (or preview) an uploaded document into tablas.

    Without `tablaIds` the document goes to every tabla linked to its folder.
    Each tabla reports `inserted` or `error` on its own.
    """
    try:
        resultados = ImportacionService(db, extractor).importar_documento(
            obra.id,
            request.documento_id,
            tabla_ids=request.tabla_ids,
            preview=request.preview,
            perfil=request.perfil
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except FileNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Archivo del documento no encontrado en el almacenamiento"
        )

    if resultados is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Documento {request.documento_id} no encontrado"
        )

    return {
        'documentoId': request.documento_id,
        'preview': request.preview,
        'resultados': [r.to_dict() for r in resultados],
    }


@router.get("/{obra_id}/documentos/url-firmada", response_model=UrlFirmadaResponse)
async def obtener_url_firmada(
    path: str = Query(...),
    obra: Obra = Depends(get_obra),
    manager: DatabaseManager = Depends(get_database_manager)
):
    """Signed download URL for a document of the obra"""
    if not manager.obtener_documento_por_path(obra.id, path):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Documento no encontrado: {path}"
        )
    return firmar_url(path)


@archivos_router.get("/{storage_path:path}")
async def descargar_archivo(
    storage_path: str,
    token: str = Query(...)
):
    """
    Descarga con URL firmada.

    Raises:
        HTTPException: 403 token inválido, caducado o de otra ruta, 404 archivo inexistente
    """
    forbidden = HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Firma inválida o caducada")

    try:
        if not verificar_token(storage_path, token):
            raise forbidden
    except JWTError:
        raise forbidden

    try:
        ruta = ruta_local(storage_path)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not ruta.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Archivo no encontrado")

    return FileResponse(ruta, filename=ruta.name)
