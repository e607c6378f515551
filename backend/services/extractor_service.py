"""
Servicio de extracción con el extractor externo (OCR / IA)
"""

import base64
import logging
import json
import time
import httpx
from typing import Dict, Any, List, Optional

from config import settings
from models import Tabla
from services.errors import ExtractorError

logger = logging.getLogger(__name__)

# Directorio para respuestas del extractor
EXTRACCIONES_LOGS_DIR = settings.LOGS_DIR / "extracciones"


class ExtractorService:
    """
    Cliente del extractor externo.

    El extractor recibe el documento (base64) y la definición de una tabla y
    devuelve JSON: {"items": [...], <campos del documento>}. Cada item es una
    fila; los campos del documento se copian en todas las filas. Sin items,
    los campos del documento forman una única fila.
    """

    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        timeout: float = None,
        transport: httpx.BaseTransport = None
    ):
        self.base_url = (base_url if base_url is not None else settings.EXTRACTOR_URL).rstrip('/')
        self.api_key = api_key if api_key is not None else settings.EXTRACTOR_API_KEY
        self.timeout = timeout or settings.EXTRACTOR_TIMEOUT
        self.transport = transport

        if not self.base_url:
            logger.warning("⚠️ EXTRACTOR_URL no configurada. Solo se extraerán planillas y PDFs digitales.")

    @property
    def configurado(self) -> bool:
        return bool(self.base_url)

    def _definicion_tabla(self, tabla: Tabla) -> Dict[str, Any]:
        return {
            'name': tabla.nombre,
            'columns': [
                {
                    'fieldKey': c.field_key,
                    'label': c.label,
                    'dataType': c.data_type,
                    'required': bool(c.required),
                }
                for c in tabla.columnas if not c.formula
            ],
        }

    def extraer(
        self,
        contenido: bytes,
        nombre_archivo: str,
        mimetype: Optional[str],
        tabla: Tabla
    ) -> List[Dict[str, Any]]:
        """
        Extrae filas de un documento para una tabla.

        Args:
            contenido: Bytes del documento
            nombre_archivo: Nombre del archivo
            mimetype: Tipo MIME
            tabla: Tabla destino (define las columnas a extraer)

        Returns:
            Lista de filas {field_key: valor crudo}

        Raises:
            ExtractorError: si el extractor no está configurado o falla
        """
        if not self.configurado:
            raise ExtractorError("Extractor no configurado (falta EXTRACTOR_URL)")

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = {
            'document': {
                'name': nombre_archivo,
                'mimetype': mimetype or 'application/octet-stream',
                'content': base64.b64encode(contenido).decode('ascii'),
            },
            'table': self._definicion_tabla(tabla),
        }

        logger.info(f"🤖 Extrayendo '{nombre_archivo}' para tabla '{tabla.nombre}'")

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(f"{self.base_url}/extract", headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise ExtractorError(f"Extractor no disponible: {e}") from e

        if response.status_code != 200:
            error_text = response.text[:500]
            logger.error(f"Error en extractor: {response.status_code} - {error_text}")
            raise ExtractorError(f"Error del extractor: {response.status_code} - {error_text}")

        try:
            resultado = response.json()
        except json.JSONDecodeError as e:
            raise ExtractorError("Respuesta del extractor no es JSON válido") from e

        if not isinstance(resultado, dict):
            raise ExtractorError("Respuesta del extractor con formato inesperado")

        self._guardar_respuesta(tabla.id, nombre_archivo, resultado)

        filas = self.filas_desde_respuesta(resultado)
        logger.info(f"✓ Extractor devolvió {len(filas)} filas para tabla '{tabla.nombre}'")
        return filas

    @staticmethod
    def filas_desde_respuesta(resultado: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        {"items": [{a: 1}, {a: 2}], "fecha": "..."} -> [{fecha, a: 1}, {fecha, a: 2}]
        """
        items = resultado.get('items')
        padre = {k: v for k, v in resultado.items() if k != 'items' and not isinstance(v, (list, dict))}

        if isinstance(items, list) and items:
            return [{**padre, **item} for item in items if isinstance(item, dict)]
        return [padre] if padre else []

    def _guardar_respuesta(self, tabla_id: int, nombre_archivo: str, resultado: Dict[str, Any]):
        """Guarda la respuesta para depuración"""
        timestamp = int(time.time())
        nombre_safe = nombre_archivo.replace('/', '_').replace(' ', '_')
        response_file = EXTRACCIONES_LOGS_DIR / f"response_t{tabla_id}_{nombre_safe}_{timestamp}.json"
        try:
            EXTRACCIONES_LOGS_DIR.mkdir(parents=True, exist_ok=True)
            with open(response_file, 'w', encoding='utf-8') as f:
                json.dump(resultado, f, indent=2, ensure_ascii=False)
            logger.debug(f"💾 Respuesta del extractor guardada: {response_file}")
        except OSError as e:
            logger.warning(f"No se pudo guardar respuesta del extractor: {e}")


# Instancia singleton
_extractor_service = None


def get_extractor_service() -> ExtractorService:
    """Obtiene la instancia singleton del servicio de extracción"""
    global _extractor_service
    if _extractor_service is None:
        _extractor_service = ExtractorService()
    return _extractor_service
