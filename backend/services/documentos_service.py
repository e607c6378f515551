"""
Documentos Service - Almacenamiento local, URLs firmadas y árbol de documentos
"""

from sqlalchemy.orm import Session
from typing import Dict, Any, List, Optional
from pathlib import Path
from urllib.parse import quote
from jose import jwt
import logging
import sys
import time

sys.path.append(str(Path(__file__).parent.parent))

from config import settings
from database.manager import DatabaseManager
from models import Documento, VinculoExtraccion
from services.materializacion_service import materializar
from services.vinculos_service import ResolutorVinculos, carpeta_de_storage_path
from utils.normalizer import Normalizer

logger = logging.getLogger(__name__)


# =====================================================
# ALMACENAMIENTO LOCAL
# =====================================================

def _segmentos_seguros(ruta: str) -> List[str]:
    segmentos = [s.strip() for s in str(ruta or '').replace('\\', '/').split('/')]
    segmentos = [s for s in segmentos if s]
    if any(s in ('.', '..') for s in segmentos):
        raise ValueError(f"Ruta no permitida: {ruta}")
    return segmentos


def construir_storage_path(obra_id: int, carpeta: Optional[str], nombre_archivo: str) -> str:
    """
    "<obra_id>/<carpeta...>/<archivo>"

    Ejemplo:
        (12, "Certificados/Mensuales", "cert 03.pdf") -> "12/Certificados/Mensuales/cert 03.pdf"
    """
    nombre = Path(str(nombre_archivo or '').replace('\\', '/')).name
    if not nombre:
        raise ValueError("Nombre de archivo vacío")
    return '/'.join([str(obra_id)] + _segmentos_seguros(carpeta) + [nombre])


def ruta_local(storage_path: str) -> Path:
    """Ruta en disco de un storage_path (dentro de UPLOADS_DIR)"""
    return settings.UPLOADS_DIR.joinpath(*_segmentos_seguros(storage_path))


def guardar_archivo(storage_path: str, contenido: bytes) -> Path:
    destino = ruta_local(storage_path)
    destino.parent.mkdir(parents=True, exist_ok=True)
    destino.write_bytes(contenido)
    logger.info(f"💾 Archivo guardado: {storage_path} ({len(contenido)} bytes)")
    return destino


def leer_archivo(storage_path: str) -> bytes:
    """
    Raises:
        FileNotFoundError: si el archivo no existe
    """
    return ruta_local(storage_path).read_bytes()


# =====================================================
# URLS FIRMADAS
# =====================================================

def firmar_url(storage_path: str, ttl: int = None) -> Dict[str, Any]:
    """
    URL de descarga firmada con caducidad.

    El token es un JWT con la ruta en `sub` y la caducidad en `exp`.

    Returns:
        {'url': "/api/archivos/<path>?token=...", 'expires': epoch, 'path': storage_path}
    """
    expires = int(time.time()) + (ttl if ttl is not None else settings.SIGNED_URL_TTL_SECONDS)
    token = jwt.encode(
        {'sub': storage_path, 'exp': expires},
        settings.SIGNING_SECRET,
        algorithm=settings.SIGNING_ALGORITHM
    )
    url = f"/api/archivos/{quote(storage_path)}?token={token}"
    return {'url': url, 'expires': expires, 'path': storage_path}


def verificar_token(storage_path: str, token: str) -> bool:
    """
    True si el token es de esta ruta.

    Raises:
        JWTError: firma inválida o token caducado
    """
    payload = jwt.decode(token, settings.SIGNING_SECRET, algorithms=[settings.SIGNING_ALGORITHM])
    return payload.get('sub') == storage_path


# =====================================================
# ÁRBOL DE DOCUMENTOS
# =====================================================

def _nodo_carpeta(ruta: str, label: str) -> Dict[str, Any]:
    return {'path': ruta, 'label': label, 'children': [], 'files': [], 'tablaIds': []}


class DocumentosService:
    """
    Servicio para el árbol de documentos de una obra.

    Las carpetas salen tanto de las rutas de los documentos como de los
    vínculos (una carpeta vinculada existe aunque esté vacía).
    """

    def __init__(self, db: Session):
        self.db = db
        self.manager = DatabaseManager(db)

    def obtener_arbol(self, obra_id: int, filas_por_tabla: int = None) -> Optional[Dict[str, Any]]:
        """
        Árbol de carpetas y archivos más los vínculos con columnas y filas.

        Args:
            obra_id: ID de la obra
            filas_por_tabla: Máximo de filas materializadas por vínculo

        Returns:
            {'obraId', 'tree', 'links'} o None si la obra no existe
        """
        obra = self.manager.obtener_obra(obra_id)
        if not obra:
            return None

        limite = filas_por_tabla or settings.TREE_ROWS_LIMIT
        vinculos = self.manager.listar_vinculos(obra_id)
        documentos = self.manager.listar_documentos(obra_id)
        resolutor = ResolutorVinculos(vinculos)

        raiz = _nodo_carpeta('', obra.nombre)
        nodos: Dict[str, Dict[str, Any]] = {'': raiz}
        etiquetas = {
            Normalizer.normalizar_ruta_carpeta(v.carpeta): v.carpeta_etiqueta
            for v in vinculos if v.carpeta_etiqueta
        }

        def _asegurar(segmentos_crudos: List[str]) -> Dict[str, Any]:
            padre = raiz
            normalizados = []
            for crudo in segmentos_crudos:
                normalizado = Normalizer.normalizar_carpeta(crudo)
                if not normalizado:
                    continue
                normalizados.append(normalizado)
                ruta = '/'.join(normalizados)
                nodo = nodos.get(ruta)
                if nodo is None:
                    etiqueta = etiquetas.get(ruta)
                    if not etiqueta or '/' in etiqueta:
                        etiqueta = crudo if crudo != normalizado else Normalizer.humanizar_segmento(normalizado)
                    nodo = _nodo_carpeta(ruta, etiqueta)
                    nodos[ruta] = nodo
                    padre['children'].append(nodo)
                padre = nodo
            return padre

        for vinculo in vinculos:
            nodo = _asegurar(Normalizer.normalizar_ruta_carpeta(vinculo.carpeta).split('/'))
            if vinculo.tabla_id not in nodo['tablaIds']:
                nodo['tablaIds'].append(vinculo.tabla_id)

        procesamientos = {}
        for p in self.manager.listar_procesamientos(obra_id):
            procesamientos.setdefault(p.documento_id, []).append({
                'tablaId': p.tabla_id,
                'estado': p.estado.value if p.estado else None,
                'filasExtraidas': p.filas_extraidas,
                'error': p.error,
                'procesadoEn': p.procesado_en.isoformat() if p.procesado_en else None,
            })

        for documento in documentos:
            carpeta = carpeta_de_storage_path(documento.storage_path)
            nodo = _asegurar(carpeta.split('/') if carpeta else [])
            nodo['files'].append(self._archivo(documento, resolutor, procesamientos.get(documento.id, [])))

        return {
            'obraId': obra_id,
            'tree': raiz,
            'links': [self._vinculo(v, limite) for v in vinculos],
        }

    def _archivo(self, documento: Documento, resolutor: ResolutorVinculos, procesamientos: List[Dict]) -> Dict[str, Any]:
        return {
            'id': documento.id,
            'name': documento.nombre,
            'path': documento.storage_path,
            'mimetype': documento.mimetype,
            'size': documento.tamano,
            'estado': documento.estado.value if documento.estado else None,
            'filasExtraidas': documento.filas_extraidas or 0,
            'error': documento.error,
            'carpetaExtraccion': documento.carpeta_extraccion,
            'tablaIds': [v.tabla_id for v in resolutor.resolver_para_documento(documento)],
            'procesamientos': procesamientos,
        }

    def _vinculo(self, vinculo: VinculoExtraccion, limite: int) -> Dict[str, Any]:
        tabla = vinculo.tabla
        columnas = list(tabla.columnas)
        filas, total = self.manager.listar_filas(tabla.id, page=1, limit=limite)
        return {
            'id': vinculo.id,
            'carpeta': vinculo.carpeta,
            'carpetaEtiqueta': vinculo.carpeta_etiqueta,
            'tablaId': tabla.id,
            'tablaNombre': tabla.nombre,
            'dataInputMethod': tabla.data_input_method.value,
            'columns': [
                {
                    'id': c.id,
                    'label': c.label,
                    'fieldKey': c.field_key,
                    'dataType': c.data_type,
                    'required': c.required,
                    'config': c.config or {},
                }
                for c in columnas
            ],
            'rows': [v.to_dict() for v in materializar(filas, columnas)],
            'totalRows': total,
        }
