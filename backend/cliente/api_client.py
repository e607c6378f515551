"""
Cliente HTTP asíncrono del backend de Tablas de Obra
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from config import settings
from services.errors import BackendUnavailable, RateLimited

logger = logging.getLogger(__name__)


def _retry_after(response: httpx.Response) -> Optional[float]:
    valor = response.headers.get('Retry-After')
    try:
        return float(valor) if valor is not None else None
    except ValueError:
        return None


class ClienteObras:
    """
    Cliente async (httpx) de la API.

    Errores:
        - 429 → RateLimited (con retry_after si viene en la cabecera)
        - red caída o 5xx → BackendUnavailable
        - otros 4xx → httpx.HTTPStatusError
    """

    def __init__(
        self,
        base_url: str = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport = None
    ):
        self.base_url = (base_url or settings.BACKEND_URL).rstrip('/')
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.cerrar()

    async def cerrar(self):
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise BackendUnavailable(f"Backend no disponible: {e}") from e

        if response.status_code == 429:
            raise RateLimited(f"Rate limited en {url}", retry_after=_retry_after(response))
        if response.status_code >= 500:
            raise BackendUnavailable(f"Error {response.status_code} en {url}")
        response.raise_for_status()
        return response

    # =====================================================
    # DOCUMENTOS
    # =====================================================

    async def obtener_arbol(self, obra_id: int) -> Dict[str, Any]:
        response = await self._request('GET', f"/api/obras/{obra_id}/documents-tree")
        return response.json()

    async def obtener_vinculos(self, obra_id: int) -> List[Dict[str, Any]]:
        response = await self._request('GET', f"/api/obras/{obra_id}/vinculos")
        return response.json()

    async def obtener_url_firmada(self, obra_id: int, storage_path: str) -> Dict[str, Any]:
        response = await self._request(
            'GET', f"/api/obras/{obra_id}/documentos/url-firmada", params={'path': storage_path}
        )
        return response.json()

    async def descargar(self, url: str) -> bytes:
        """Descarga una URL (relativa al backend o absoluta)"""
        response = await self._request('GET', url)
        return response.content

    async def subir_documento(
        self,
        obra_id: int,
        nombre_archivo: str,
        contenido: bytes,
        carpeta: str = '',
        mimetype: str = 'application/octet-stream'
    ) -> Dict[str, Any]:
        response = await self._request(
            'POST',
            f"/api/obras/{obra_id}/documentos",
            data={'carpeta': carpeta},
            files={'file': (nombre_archivo, contenido, mimetype)},
        )
        return response.json()

    # =====================================================
    # FILAS
    # =====================================================

    async def listar_filas(
        self,
        obra_id: int,
        tabla_id: int,
        page: int = 1,
        limit: int = None,
        doc_path: str = None
    ) -> Dict[str, Any]:
        params = {'page': page}
        if limit:
            params['limit'] = limit
        if doc_path:
            params['docPath'] = doc_path
        response = await self._request('GET', f"/api/obras/{obra_id}/tablas/{tabla_id}/rows", params=params)
        return response.json()

    async def guardar_filas(
        self,
        obra_id: int,
        tabla_id: int,
        rows: List[Dict[str, Any]] = None,
        dirty_rows: List[Dict[str, Any]] = None,
        deleted_row_ids: List[str] = None
    ) -> Dict[str, Any]:
        payload = {
            'rows': rows or [],
            'dirtyRows': dirty_rows or [],
            'deletedRowIds': deleted_row_ids or [],
        }
        response = await self._request('POST', f"/api/obras/{obra_id}/tablas/{tabla_id}/rows", json=payload)
        return response.json()
