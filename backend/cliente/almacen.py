"""
Almacén de documentos del cliente: API + caché
"""

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from config import settings
from cliente.api_client import ClienteObras
from cliente.cache import CacheService, CACHE_ARBOLES, CACHE_BLOBS, CACHE_URLS, CACHE_VINCULOS
from services.errors import BackendUnavailable

logger = logging.getLogger(__name__)


class SeguidorSolicitudes:
    """
    Descarta respuestas de solicitudes superadas.

    Cada solicitud recibe un id creciente; solo la última se aplica. Con
    `visible = False` ninguna respuesta se aplica, pero las peticiones en
    curso terminan (y llenan la caché).
    """

    def __init__(self):
        self._ultima = 0
        self.visible = True

    def nueva(self) -> int:
        self._ultima += 1
        return self._ultima

    def es_vigente(self, solicitud_id: int) -> bool:
        return self.visible and solicitud_id == self._ultima

    async def ejecutar(self, operacion: Awaitable[Any], aplicar: Callable[[Any], None]) -> bool:
        """
        Espera `operacion` y llama a `aplicar` solo si sigue siendo la última.

        Returns:
            True si el resultado se aplicó
        """
        solicitud_id = self.nueva()
        resultado = await operacion
        if not self.es_vigente(solicitud_id):
            logger.debug(f"Respuesta {solicitud_id} descartada (última: {self._ultima})")
            return False
        aplicar(resultado)
        return True


class AlmacenDocumentos:
    """
    Lecturas cacheadas y escrituras con invalidación para una obra.

    Las lecturas nunca propagan fallos del backend: devuelven el último valor
    bueno o un valor por defecto. Las escrituras sí propagan errores, e
    invalidan árbol y vínculos de la obra antes de la siguiente lectura.
    """

    def __init__(self, obra_id: int, cliente: ClienteObras, cache: CacheService = None, blobs_dir: Path = None):
        self.obra_id = obra_id
        self.cliente = cliente
        self.cache = (cache or CacheService()).init(obra_id)
        self.blobs_dir = Path(blobs_dir or settings.CACHE_DIR / 'blobs')

    @property
    def _clave(self) -> str:
        return str(self.obra_id)

    # =====================================================
    # LECTURAS
    # =====================================================

    async def arbol(self, forzar: bool = False) -> Optional[Dict[str, Any]]:
        return await self.cache.obtener_o_cargar(
            CACHE_ARBOLES, self._clave, lambda: self.cliente.obtener_arbol(self.obra_id), None, forzar
        )

    async def vinculos(self, forzar: bool = False) -> List[Dict[str, Any]]:
        return await self.cache.obtener_o_cargar(
            CACHE_VINCULOS, self._clave, lambda: self.cliente.obtener_vinculos(self.obra_id), [], forzar
        )

    async def url_firmada(self, storage_path: str) -> Optional[str]:
        async def cargar():
            firmada = await self.cliente.obtener_url_firmada(self.obra_id, storage_path)
            return firmada.get('url')

        return await self.cache.obtener_o_cargar(CACHE_URLS, storage_path, cargar)

    async def blob(self, storage_path: str) -> Optional[Path]:
        """
        Copia local del documento, descargada una sola vez mientras no caduque.

        Returns:
            Ruta del archivo local, o None si no se pudo descargar
        """
        async def cargar():
            url = await self.url_firmada(storage_path)
            if not url:
                raise BackendUnavailable(f"Sin URL firmada para {storage_path}")
            contenido = await self.cliente.descargar(url)
            return self._escribir_blob(storage_path, contenido)

        return await self.cache.obtener_o_cargar(CACHE_BLOBS, storage_path, cargar)

    async def precargar(self, storage_paths: Iterable[str]) -> List[Optional[Path]]:
        """Descarga en segundo plano; las claves repetidas comparten petición"""
        return await asyncio.gather(*(self.blob(path) for path in storage_paths))

    async def filas(self, tabla_id: int, page: int = 1, limit: int = None, doc_path: str = None) -> Dict[str, Any]:
        """Filas paginadas (sin caché; siempre frescas)"""
        try:
            return await self.cliente.listar_filas(self.obra_id, tabla_id, page=page, limit=limit, doc_path=doc_path)
        except BackendUnavailable as e:
            logger.warning(f"⚠️ No se pudieron cargar filas de tabla {tabla_id}: {e}")
            return {'rows': [], 'total': 0, 'page': page}

    def _escribir_blob(self, storage_path: str, contenido: bytes) -> Path:
        digest = hashlib.sha256(f"{storage_path}:{len(contenido)}".encode('utf-8') + contenido[:4096]).hexdigest()[:16]
        destino = self.blobs_dir / f"{digest}_{Path(storage_path).name}"
        destino.parent.mkdir(parents=True, exist_ok=True)
        destino.write_bytes(contenido)
        return destino

    # =====================================================
    # ESCRITURAS
    # =====================================================

    async def guardar_filas(
        self,
        tabla_id: int,
        rows: List[Dict[str, Any]] = None,
        dirty_rows: List[Dict[str, Any]] = None,
        deleted_row_ids: List[str] = None
    ) -> Dict[str, Any]:
        try:
            return await self.cliente.guardar_filas(self.obra_id, tabla_id, rows, dirty_rows, deleted_row_ids)
        finally:
            self.cache.invalidar_ambito(self.obra_id)

    async def subir_documento(
        self,
        nombre_archivo: str,
        contenido: bytes,
        carpeta: str = '',
        mimetype: str = 'application/octet-stream'
    ) -> Dict[str, Any]:
        try:
            return await self.cliente.subir_documento(self.obra_id, nombre_archivo, contenido, carpeta, mimetype)
        finally:
            self.cache.invalidar_ambito(self.obra_id)
