"""
Normalizador de datos de tablas.
Claves de campo, rutas de carpeta, números con formato español y coerción de tipos.
"""

import math
import re
import unicodedata
import uuid
import logging
from datetime import date, datetime
from typing import Any, Optional

logger = logging.getLogger(__name__)

TIPOS_DATO = ('text', 'number', 'currency', 'boolean', 'date')
TIPOS_NUMERICOS = ('number', 'currency')

VALORES_VERDADEROS = {'true', '1', 'si', 'sí', 'yes', 'x'}

# Metadatos de trazabilidad guardados dentro de TablaFila.data
META_DOC_PATH = '__docPath'
META_DOC_NOMBRE = '__docFileName'
META_DOC_BUCKET = '__docBucket'


class Normalizer:
    """Normaliza textos, claves y valores de tablas"""

    @staticmethod
    def quitar_diacriticos(texto: str) -> str:
        """Elimina tildes y diéresis: "Certificación" -> "Certificacion" """
        descompuesto = unicodedata.normalize('NFD', texto)
        return ''.join(c for c in descompuesto if unicodedata.category(c) != 'Mn')

    @staticmethod
    def normalizar_texto(valor: Any) -> str:
        """
        Texto comparable: sin diacríticos, minúsculas y sin espacios extremos.

        Ejemplos:
            "  Marzo de 2024 " -> "marzo de 2024"
            "Período" -> "periodo"
        """
        if valor is None:
            return ''
        return Normalizer.quitar_diacriticos(str(valor)).lower().strip()

    @staticmethod
    def normalizar_field_key(valor: Optional[str]) -> str:
        """
        Convierte un label o clave en una clave de campo estable.

        Ejemplos:
            "Monto Total ($)" -> "monto_total"
            "Fecha Certificación" -> "fecha_certificacion"
            "1er avance" -> "c_1er_avance"
            "" -> "col_a1b2c3" (aleatorio)
        """
        fallback = f"col_{uuid.uuid4().hex[:6]}"
        if not valor:
            return fallback

        normalizado = Normalizer.quitar_diacriticos(str(valor))
        normalizado = re.sub(r'[^a-zA-Z0-9]+', '_', normalizado)
        normalizado = normalizado.strip('_').lower()

        if not normalizado:
            return fallback
        if normalizado[0].isdigit():
            return f"c_{normalizado}"
        return normalizado

    @staticmethod
    def normalizar_carpeta(valor: Optional[str]) -> str:
        """
        Nombre de carpeta "aplanado" (sin jerarquía).

        Ejemplos:
            "Certificados/Mensuales" -> "certificados-mensuales"
            "Órdenes de Compra" -> "ordenes-de-compra"
        """
        if not valor:
            return ''
        normalizado = Normalizer.quitar_diacriticos(str(valor))
        normalizado = re.sub(r'[^a-zA-Z0-9\-_]', '-', normalizado)
        normalizado = re.sub(r'-+', '-', normalizado)
        return normalizado.strip('-').lower()

    @staticmethod
    def normalizar_ruta_carpeta(valor: Optional[str]) -> str:
        """
        Ruta relativa normalizada segmento a segmento.

        Ejemplos:
            "/Certificados/ Mensuales/" -> "certificados/mensuales"
            "Curva Plan" -> "curva-plan"
        """
        if not valor:
            return ''
        segmentos = [Normalizer.normalizar_carpeta(s) for s in str(valor).replace('\\', '/').split('/')]
        return '/'.join(s for s in segmentos if s)

    @staticmethod
    def humanizar_segmento(segmento: str) -> str:
        """ "ordenes-de-compra" -> "Ordenes De Compra" """
        if not segmento:
            return segmento
        partes = re.split(r'[-_\s]+', segmento)
        return ' '.join(p[:1].upper() + p[1:] for p in partes if p)

    @staticmethod
    def limpiar_numero(valor: Any) -> Optional[float]:
        """
        Convierte números en formato español o inglés a float.

        Decide el separador decimal por la última aparición de coma o punto.

        Ejemplos:
            "1.605,90" -> 1605.90
            "1,605.90" -> 1605.90
            "45,5 %" -> 45.5
            "$ 1000" -> 1000.0
            "abc" -> None
        """
        if valor is None or isinstance(valor, bool):
            return None
        if isinstance(valor, (int, float)):
            return float(valor) if math.isfinite(valor) else None

        texto = re.sub(r'[%\s$]', '', str(valor))
        if not texto:
            return None

        ultimo_punto = texto.rfind('.')
        ultima_coma = texto.rfind(',')
        if ultima_coma > ultimo_punto:
            texto = texto.replace('.', '').replace(',', '.')
        elif ultimo_punto > ultima_coma:
            texto = texto.replace(',', '')

        try:
            numero = float(texto)
        except ValueError:
            return None

        return numero if math.isfinite(numero) else None

    @staticmethod
    def a_numero_finito(valor: Any, defecto: float = 0.0) -> float:
        """Como limpiar_numero pero nunca devuelve None"""
        numero = Normalizer.limpiar_numero(valor)
        return defecto if numero is None else numero

    @staticmethod
    def asegurar_tipo_dato(valor: Optional[str]) -> str:
        """Tipo de columna válido; cualquier valor desconocido es 'text'"""
        if not valor:
            return 'text'
        tipo = str(valor).lower()
        return tipo if tipo in TIPOS_DATO else 'text'

    @staticmethod
    def valor_por_defecto(tipo: str) -> Any:
        if tipo in TIPOS_NUMERICOS:
            return 0
        if tipo == 'boolean':
            return False
        return ''

    @staticmethod
    def parsear_fecha(valor: Any) -> Optional[date]:
        """
        Interpreta fechas ISO (2024-03-15, 2024-03-15T10:00:00) y DD/MM/YYYY.
        """
        if isinstance(valor, datetime):
            return valor.date()
        if isinstance(valor, date):
            return valor

        texto = str(valor).strip()
        if not texto:
            return None

        try:
            return datetime.fromisoformat(texto.replace('Z', '+00:00')).date()
        except ValueError:
            pass

        match = re.match(r'^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2,4})$', texto)
        if match:
            dia, mes, anio = (int(g) for g in match.groups())
            if anio < 100:
                anio += 2000
            try:
                return date(anio, mes, dia)
            except ValueError:
                return None

        return None

    @staticmethod
    def coercionar_valor(tipo: str, valor: Any) -> Any:
        """
        Ajusta un valor crudo al tipo de su columna.

        - number / currency -> float finito o None
        - boolean -> True / False (None -> False)
        - date -> "YYYY-MM-DD" o None
        - text -> str o None
        """
        if valor is None:
            return False if tipo == 'boolean' else None

        if tipo in TIPOS_NUMERICOS:
            return Normalizer.limpiar_numero(valor)

        if tipo == 'boolean':
            if isinstance(valor, bool):
                return valor
            return Normalizer.normalizar_texto(valor) in VALORES_VERDADEROS

        if tipo == 'date':
            fecha = Normalizer.parsear_fecha(valor)
            return fecha.isoformat() if fecha else None

        return str(valor)
