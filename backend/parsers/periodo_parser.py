"""
Parser de períodos para curvas de avance.

Los períodos llegan como texto heterogéneo: "Mes 3", "03/2024", "15/03/2024",
"mar-24", "Mar/2024", "marzo de 2024", "2024-03-01"... Se prueban patrones en
orden de prioridad y se devuelve un Periodo etiquetado:

- relativo: "Mes N" sin ancla → orden = N
- absoluto: mes calendario resuelto → orden = año*12 + (mes-1), clave "YYYY-MM"
- opaco: texto no reconocido → orden = índice de fila (estable, sin significado
  cronológico) para que la fila se muestre igualmente
"""

import re
import enum
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from utils.normalizer import Normalizer

logger = logging.getLogger(__name__)

# Índice de mes 1-12
MESES_ABREVIADOS = {
    'ene': 1, 'feb': 2, 'mar': 3, 'abr': 4, 'may': 5, 'jun': 6,
    'jul': 7, 'ago': 8, 'sep': 9, 'sept': 9, 'set': 9, 'oct': 10, 'nov': 11, 'dic': 12,
    'jan': 1, 'apr': 4, 'aug': 8, 'dec': 12,
}

MESES_COMPLETOS = {
    'enero': 1, 'febrero': 2, 'marzo': 3, 'abril': 4, 'mayo': 5, 'junio': 6,
    'julio': 7, 'agosto': 8, 'septiembre': 9, 'setiembre': 9, 'octubre': 10,
    'noviembre': 11, 'diciembre': 12,
    'january': 1, 'february': 2, 'march': 3, 'april': 4, 'june': 6, 'july': 7,
    'august': 8, 'september': 9, 'october': 10, 'november': 11, 'december': 12,
}

ETIQUETAS_MES = ('ene', 'feb', 'mar', 'abr', 'may', 'jun', 'jul', 'ago', 'sept', 'oct', 'nov', 'dic')

PATRON_ANCLA = re.compile(r'^(\d{4})-(\d{2})$')
PATRON_MES_N = re.compile(r'\bmes\s*(\d{1,3})\b')
PATRON_ISO = re.compile(r'\b(\d{4})[/-](\d{1,2})(?:[/-]\d{1,2})?\b')
PATRON_DMY = re.compile(r'\b(\d{1,2})[/-](\d{1,2})[/-](\d{2,4})\b')
PATRON_MY = re.compile(r'\b(\d{1,2})[/-](\d{4})\b')
PATRON_MES_ABREVIADO = re.compile(r'\b([a-z]{3,4})[-\s_/]*(\d{2}|\d{4})\b')
PATRON_MES_COMPLETO = re.compile(r'\b(?:mes\s+de\s+)?([a-z]{4,10})\s*(?:de(?:l)?\s+)?[-_/]?\s*(\d{2}|\d{4})\b')


class TipoPeriodo(str, enum.Enum):
    RELATIVO = "relativo"
    ABSOLUTO = "absoluto"
    OPACO = "opaco"


@dataclass
class Periodo:
    """Resultado de interpretar un texto de período"""
    tipo: TipoPeriodo
    orden: int
    etiqueta: str
    clave: str

    @property
    def es_absoluto(self) -> bool:
        return self.tipo == TipoPeriodo.ABSOLUTO


def _anio_completo(valor: str) -> int:
    anio = int(valor)
    return 2000 + anio if anio < 100 else anio


def orden_absoluto(anio: int, mes: int) -> int:
    """Orden cronológico de un mes (mes 1-12)"""
    return anio * 12 + (mes - 1)


def clave_mes(anio: int, mes: int) -> str:
    return f"{anio:04d}-{mes:02d}"


def etiqueta_mes(anio: int, mes: int) -> str:
    """
    Etiqueta corta en español: (2024, 3) -> "mar 2024"
    """
    return f"{ETIQUETAS_MES[mes - 1]} {anio}"


def parsear_ancla(valor: Optional[str]) -> Optional[Tuple[int, int]]:
    """ "2024-01" -> (2024, 1); cualquier otro formato -> None """
    if not isinstance(valor, str):
        return None
    match = PATRON_ANCLA.match(valor.strip())
    if not match:
        return None
    anio, mes = int(match.group(1)), int(match.group(2))
    if not 1 <= mes <= 12:
        return None
    return anio, mes


def sumar_meses(anio: int, mes: int, desplazamiento: int) -> Tuple[int, int]:
    """(2024, 1) + 2 -> (2024, 3); (2024, 11) + 3 -> (2025, 2)"""
    total = orden_absoluto(anio, mes) + desplazamiento
    return total // 12, total % 12 + 1


def _absoluto(anio: int, mes: int) -> Optional[Periodo]:
    if not 1 <= mes <= 12:
        return None
    return Periodo(
        tipo=TipoPeriodo.ABSOLUTO,
        orden=orden_absoluto(anio, mes),
        etiqueta=etiqueta_mes(anio, mes),
        clave=clave_mes(anio, mes),
    )


# =====================================================
# PATRONES (en orden de prioridad)
# =====================================================

def _probar_mes_relativo(texto: str, ancla: Optional[Tuple[int, int]]) -> Optional[Periodo]:
    match = PATRON_MES_N.search(texto)
    if not match:
        return None

    n = int(match.group(1))
    if ancla:
        return _absoluto(*sumar_meses(ancla[0], ancla[1], n))

    etiqueta = f"Mes {n}"
    return Periodo(
        tipo=TipoPeriodo.RELATIVO,
        orden=n,
        etiqueta=etiqueta,
        clave=Normalizer.normalizar_texto(etiqueta),
    )


def _probar_numerico(texto: str) -> Optional[Periodo]:
    match = PATRON_ISO.search(texto)
    if match:
        return _absoluto(int(match.group(1)), int(match.group(2)))

    match = PATRON_DMY.search(texto)
    if match:
        return _absoluto(_anio_completo(match.group(3)), int(match.group(2)))

    match = PATRON_MY.search(texto)
    if match:
        return _absoluto(int(match.group(2)), int(match.group(1)))

    return None


def _probar_mes_abreviado(texto: str) -> Optional[Periodo]:
    for match in PATRON_MES_ABREVIADO.finditer(texto):
        mes = MESES_ABREVIADOS.get(match.group(1))
        if mes:
            return _absoluto(_anio_completo(match.group(2)), mes)
    return None


def _probar_mes_completo(texto: str) -> Optional[Periodo]:
    for match in PATRON_MES_COMPLETO.finditer(texto):
        mes = MESES_COMPLETOS.get(match.group(1))
        if mes:
            return _absoluto(_anio_completo(match.group(2)), mes)
    return None


def parsear_periodo(valor, indice: int, ancla: Optional[str] = None) -> Periodo:
    """
    Interpreta un texto de período.

    Args:
        valor: texto crudo del período (o fecha)
        indice: posición de la fila; orden de respaldo para textos opacos
        ancla: "YYYY-MM" opcional para resolver "Mes N"

    Returns:
        Periodo (nunca None)
    """
    crudo = str(valor if valor is not None else '').strip()
    if not crudo:
        etiqueta = f"Mes {indice + 1}"
        # Clave propia de la fila: no debe coincidir con un "Mes N" real
        return Periodo(TipoPeriodo.OPACO, indice, etiqueta, f"sin-periodo-{indice}")

    texto = Normalizer.normalizar_texto(crudo).replace('.', '')
    ancla_resuelta = parsear_ancla(ancla)

    for probar in (
        lambda: _probar_mes_relativo(texto, ancla_resuelta),
        lambda: _probar_numerico(texto),
        lambda: _probar_mes_abreviado(texto),
        lambda: _probar_mes_completo(texto),
    ):
        periodo = probar()
        if periodo is not None:
            return periodo

    logger.debug(f"Período no reconocido, se usa como etiqueta opaca: '{crudo}'")
    return Periodo(TipoPeriodo.OPACO, indice, crudo, Normalizer.normalizar_texto(crudo))
