"""
Curva Service - Curva de avance plan vs. real

Combina una tabla "Curva Plan" (avance acumulado previsto por período) y una
tabla de certificados "PMC Resumen" (avance físico acumulado real) en una
única serie de puntos, uno por período.

Un plan "Mes 3" y un certificado del 15/03/2024 caen en el mismo punto si
el ancla de la obra los resuelve al mismo mes "YYYY-MM".
"""

from sqlalchemy.orm import Session
from dataclasses import dataclass, asdict
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence
import logging
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent))

from config import settings
from database.manager import DatabaseManager
from models import Tabla
from parsers.periodo_parser import (
    Periodo,
    TipoPeriodo,
    parsear_periodo,
    parsear_ancla,
    orden_absoluto,
    etiqueta_mes,
    clave_mes,
)
from services.materializacion_service import materializar
from utils.normalizer import Normalizer

logger = logging.getLogger(__name__)

# Columnas candidatas (por orden de preferencia)
CAMPOS_PERIODO = ['periodo', 'periodo_key', 'period', 'mes']
TOKENS_PERIODO = [['periodo'], ['mes']]

CAMPOS_FECHA_REAL = ['fecha_certificacion', 'fecha', 'issued_at', 'date']
TOKENS_FECHA_REAL = [['fecha', 'cert'], ['fecha']]

CAMPOS_AVANCE_PLAN = ['avance_acumulado_pct', 'avance_acum_pct', 'avance_acumulado', 'avance_pct']
TOKENS_AVANCE_PLAN = [['avance', 'acum'], ['acumulado']]

CAMPOS_AVANCE_FISICO = ['avance_fisico_acumulado_pct', 'avance_fisico_acum_pct', 'avance_fisico_acumulado']
TOKENS_AVANCE_FISICO = [['avance', 'fisico', 'acum']]


@dataclass
class PuntoCurva:
    """Punto de la curva; a lo sumo uno por clave de período"""
    clave: str
    label: str
    plan_value: Optional[float]
    actual_value: Optional[float]
    sort_order: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =====================================================
# LECTURA DE CAMPOS
# =====================================================

def _tiene_valor(valor: Any) -> bool:
    return valor is not None and not (isinstance(valor, str) and not valor.strip())


def valor_por_candidatos(
    datos: Mapping[str, Any],
    candidatos: Sequence[str],
    grupos_tokens: Sequence[Sequence[str]] = ()
) -> Any:
    """
    Primer valor no vacío entre varias claves candidatas.

    Busca por clave exacta, luego por clave normalizada y por último por
    grupos de tokens (una clave que contiene todos los tokens del grupo).

    Ejemplo:
        valor_por_candidatos({"Avance Acum. (%)": "45"}, ["avance_acumulado_pct"],
                             [["avance", "acum"]]) -> "45"
    """
    for candidato in candidatos:
        if _tiene_valor(datos.get(candidato)):
            return datos[candidato]

    normalizados = {}
    for clave, valor in datos.items():
        if isinstance(clave, str) and not clave.startswith('__') and _tiene_valor(valor):
            normalizados.setdefault(Normalizer.normalizar_field_key(clave), valor)

    for candidato in candidatos:
        if candidato in normalizados:
            return normalizados[candidato]

    for tokens in grupos_tokens:
        for clave, valor in normalizados.items():
            if all(token in clave for token in tokens):
                return valor

    return None


def parsear_porcentaje(valor: Any) -> Optional[float]:
    """
    Porcentaje acotado a [0, 100].

    Ejemplos:
        "45,5 %" -> 45.5
        "120" -> 100.0
        "n/d" -> None
    """
    numero = Normalizer.limpiar_numero(valor)
    if numero is None:
        return None
    return min(max(numero, 0.0), 100.0)


def _periodo_de_fecha(valor: Any) -> Optional[Periodo]:
    fecha = Normalizer.parsear_fecha(valor) if _tiene_valor(valor) else None
    if not isinstance(fecha, date):
        return None
    return Periodo(
        tipo=TipoPeriodo.ABSOLUTO,
        orden=orden_absoluto(fecha.year, fecha.month),
        etiqueta=etiqueta_mes(fecha.year, fecha.month),
        clave=clave_mes(fecha.year, fecha.month),
    )


# =====================================================
# CONSTRUCCIÓN DE LA CURVA
# =====================================================

class _AcumuladorCurva:
    def __init__(self):
        self.puntos: Dict[str, PuntoCurva] = {}

    def punto(self, periodo: Periodo) -> PuntoCurva:
        punto = self.puntos.get(periodo.clave)
        if punto is None:
            punto = PuntoCurva(
                clave=periodo.clave,
                label=periodo.etiqueta,
                plan_value=None,
                actual_value=None,
                sort_order=periodo.orden,
            )
            self.puntos[periodo.clave] = punto
        else:
            punto.sort_order = min(punto.sort_order, periodo.orden)
        return punto

    def ordenados(self) -> List[PuntoCurva]:
        con_valor = [
            p for p in self.puntos.values()
            if p.plan_value is not None or p.actual_value is not None
        ]
        return sorted(con_valor, key=lambda p: p.sort_order)


def construir_puntos_curva(
    filas_plan: Sequence[Mapping[str, Any]],
    filas_real: Sequence[Mapping[str, Any]],
    curve_start_period: Optional[str] = None
) -> List[PuntoCurva]:
    """
    Combina filas plan y real en una serie ordenada.

    Plan: período de texto libre + avance acumulado. Real: fecha de
    certificación (o período si no hay fecha) + avance físico acumulado
    (o avance acumulado genérico). Ambos pasos escriben sobre el mismo punto
    cuando la clave coincide. Si hay ancla, su mes siempre aparece con
    avance real 0 si ninguna fila real lo reclama.

    Args:
        filas_plan: Valores de las filas de la tabla plan
        filas_real: Valores de las filas de la tabla real
        curve_start_period: Ancla "YYYY-MM" opcional

    Returns:
        Lista de PuntoCurva ordenada por sort_order
    """
    acumulador = _AcumuladorCurva()

    # Filas sin período o sin avance no aportan punto
    for indice, fila in enumerate(filas_plan):
        valor = parsear_porcentaje(valor_por_candidatos(fila, CAMPOS_AVANCE_PLAN, TOKENS_AVANCE_PLAN))
        periodo_crudo = valor_por_candidatos(fila, CAMPOS_PERIODO, TOKENS_PERIODO)
        if valor is None or not _tiene_valor(periodo_crudo):
            continue

        periodo = parsear_periodo(periodo_crudo, indice, curve_start_period)
        acumulador.punto(periodo).plan_value = valor

    for indice, fila in enumerate(filas_real):
        valor = parsear_porcentaje(
            valor_por_candidatos(fila, CAMPOS_AVANCE_FISICO, TOKENS_AVANCE_FISICO)
        )
        if valor is None:
            valor = parsear_porcentaje(valor_por_candidatos(fila, CAMPOS_AVANCE_PLAN, TOKENS_AVANCE_PLAN))

        fecha_cruda = valor_por_candidatos(fila, CAMPOS_FECHA_REAL, TOKENS_FECHA_REAL)
        periodo_crudo = valor_por_candidatos(fila, CAMPOS_PERIODO, TOKENS_PERIODO)
        if valor is None or not (_tiene_valor(fecha_cruda) or _tiene_valor(periodo_crudo)):
            continue

        periodo = _periodo_de_fecha(fecha_cruda)
        if periodo is None:
            periodo = parsear_periodo(
                periodo_crudo if _tiene_valor(periodo_crudo) else fecha_cruda,
                indice,
                curve_start_period
            )

        acumulador.punto(periodo).actual_value = valor

    ancla = parsear_ancla(curve_start_period)
    if ancla:
        anio, mes = ancla
        punto = acumulador.punto(Periodo(
            tipo=TipoPeriodo.ABSOLUTO,
            orden=orden_absoluto(anio, mes),
            etiqueta=etiqueta_mes(anio, mes),
            clave=clave_mes(anio, mes),
        ))
        if punto.actual_value is None:
            punto.actual_value = 0.0

    return acumulador.ordenados()


# =====================================================
# DETECCIÓN DE TABLAS
# =====================================================

def _claves(tabla: Tabla) -> set:
    return set(tabla.field_keys)


def es_tabla_plan(tabla: Tabla) -> bool:
    """Curva Plan: periodo + avance mensual/acumulado, o nombre "curva plan" """
    if 'curva plan' in Normalizer.normalizar_texto(tabla.nombre):
        return True
    claves = _claves(tabla)
    return 'periodo' in claves and ('avance_mensual_pct' in claves or 'avance_acumulado_pct' in claves)


def es_tabla_real(tabla: Tabla) -> bool:
    """PMC Resumen: avance físico acumulado + periodo o fecha, o nombre "pmc resumen" """
    if 'pmc resumen' in Normalizer.normalizar_texto(tabla.nombre):
        return True
    claves = _claves(tabla)
    return 'avance_fisico_acumulado_pct' in claves and (
        'periodo' in claves or 'fecha_certificacion' in claves
    )


class CurvaService:
    """
    Servicio para construir la curva de avance de una obra.
    """

    def __init__(self, db: Session):
        self.db = db
        self.manager = DatabaseManager(db)

    def detectar_tablas(self, obra_id: int) -> Dict[str, Optional[Tabla]]:
        """
        Detecta la tabla plan y la tabla real de una obra.

        Returns:
            {'plan': Tabla | None, 'real': Tabla | None}
        """
        tablas = self.manager.listar_tablas(obra_id)
        plan = next((t for t in tablas if es_tabla_plan(t)), None)
        real = next((t for t in tablas if es_tabla_real(t) and t is not plan), None)
        return {'plan': plan, 'real': real}

    def _valores_completos(self, tabla: Tabla) -> List[Dict[str, Any]]:
        """Recorre todas las páginas de filas antes de materializar"""
        limite = settings.ROWS_PAGE_MAX
        filas = []
        for pagina in range(1, settings.CURVE_MAX_PAGES + 1):
            lote, total = self.manager.listar_filas(tabla.id, page=pagina, limit=limite)
            filas.extend(lote)
            if len(filas) >= total or not lote:
                break
        else:
            logger.warning(f"⚠️ Tabla {tabla.id}: se alcanzó el máximo de {settings.CURVE_MAX_PAGES} páginas")

        return [vista.valores for vista in materializar(filas, list(tabla.columnas))]

    def construir_curva(
        self,
        obra_id: int,
        plan_tabla_id: int = None,
        real_tabla_id: int = None
    ) -> Optional[Dict[str, Any]]:
        """
        Curva de avance de una obra.

        Args:
            obra_id: ID de la obra
            plan_tabla_id: Tabla plan explícita (si no, se detecta)
            real_tabla_id: Tabla real explícita (si no, se detecta)

        Returns:
            Dict con tablas usadas y puntos, o None si la obra no existe

        Raises:
            ValueError: si una tabla indicada no pertenece a la obra
        """
        obra = self.manager.obtener_obra(obra_id)
        if not obra:
            return None

        detectadas = self.detectar_tablas(obra_id) if not (plan_tabla_id and real_tabla_id) else {}

        def _resolver(tabla_id, rol):
            if tabla_id is None:
                return detectadas.get(rol)
            tabla = self.manager.obtener_tabla(tabla_id, obra_id)
            if tabla is None:
                raise ValueError(f"La tabla {tabla_id} no pertenece a la obra {obra_id}")
            return tabla

        plan = _resolver(plan_tabla_id, 'plan')
        real = _resolver(real_tabla_id, 'real')

        filas_plan = self._valores_completos(plan) if plan else []
        filas_real = self._valores_completos(real) if real else []

        puntos = construir_puntos_curva(filas_plan, filas_real, obra.curve_start_period)
        logger.info(
            f"📈 Curva obra {obra_id}: {len(filas_plan)} filas plan, {len(filas_real)} filas real, "
            f"{len(puntos)} puntos"
        )

        return {
            'planTablaId': plan.id if plan else None,
            'planTablaNombre': plan.nombre if plan else None,
            'realTablaId': real.id if real else None,
            'realTablaNombre': real.nombre if real else None,
            'curveStartPeriod': obra.curve_start_period,
            'points': [p.to_dict() for p in puntos],
        }
