"""
Materialización de filas: datos crudos → filas de vista tipadas.

Cada fila se proyecta sobre las columnas actuales por field_key, se
coerciona al tipo de cada columna, y las columnas con fórmula se recalculan
en cada lectura a partir de los valores no derivados de la misma fila. Las
claves huérfanas (columnas eliminadas) se ignoran; los metadatos "__*"
pasan sin cambios.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from parsers.formula_parser import compilar_formula
from utils.normalizer import Normalizer, TIPOS_NUMERICOS, META_DOC_PATH, META_DOC_NOMBRE

logger = logging.getLogger(__name__)

ESTILO_NINGUNO = 'none'
ESTILO_AVISO = 'warn'
ESTILO_CRITICO = 'critical'

# Orden de evaluación: el primer umbral que se cumple gana
UMBRALES = (
    ('criticalBelow', ESTILO_CRITICO, lambda valor, umbral: valor <= umbral),
    ('criticalAbove', ESTILO_CRITICO, lambda valor, umbral: valor >= umbral),
    ('warnBelow', ESTILO_AVISO, lambda valor, umbral: valor <= umbral),
    ('warnAbove', ESTILO_AVISO, lambda valor, umbral: valor >= umbral),
)


@dataclass
class FilaVista:
    """Fila lista para mostrar: valores tipados, estilos y metadatos"""
    id: str
    valores: Dict[str, Any]
    estilos: Dict[str, str] = field(default_factory=dict)
    metadatos: Dict[str, Any] = field(default_factory=dict)
    faltantes: List[str] = field(default_factory=list)
    source: Optional[str] = None

    @property
    def doc_path(self) -> Optional[str]:
        return self.metadatos.get(META_DOC_PATH)

    @property
    def doc_nombre(self) -> Optional[str]:
        return self.metadatos.get(META_DOC_NOMBRE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'values': self.valores,
            'styles': self.estilos,
            'metadata': self.metadatos,
            'missingRequired': self.faltantes,
            'source': self.source,
            'docPath': self.doc_path,
            'docFileName': self.doc_nombre,
        }


@dataclass
class FiltroColumna:
    """Filtro de una columna: texto para text/date/boolean, rango para number/currency"""
    texto: Optional[str] = None
    minimo: Optional[float] = None
    maximo: Optional[float] = None


@dataclass
class FiltrosVista:
    columnas: Dict[str, FiltroColumna] = field(default_factory=dict)
    doc_path: Optional[str] = None
    busqueda: Optional[str] = None


def clasificar_condicional(valor: Any, condicional: Optional[Mapping[str, Any]]) -> str:
    """
    Estilo de una celda según sus umbrales.

    Ejemplo con {warnAbove: 100, criticalAbove: 150}:
        120 -> "warn"
        160 -> "critical"
        "abc" -> "none"
    """
    if not condicional:
        return ESTILO_NINGUNO

    numero = Normalizer.limpiar_numero(valor)
    if numero is None:
        return ESTILO_NINGUNO

    for clave, estilo, cumple in UMBRALES:
        umbral = Normalizer.limpiar_numero(condicional.get(clave))
        if umbral is not None and cumple(numero, umbral):
            return estilo

    return ESTILO_NINGUNO


def _datos_fila(fila: Any) -> Mapping[str, Any]:
    if isinstance(fila, Mapping):
        return fila.get('data') or {}
    return fila.data or {}


def _atributo(fila: Any, nombre: str) -> Any:
    if isinstance(fila, Mapping):
        return fila.get(nombre)
    return getattr(fila, nombre, None)


def _texto_celda(valor: Any) -> str:
    if valor is None:
        return ''
    if isinstance(valor, bool):
        return 'true' if valor else 'false'
    if isinstance(valor, float) and valor.is_integer():
        valor = int(valor)
    return Normalizer.normalizar_texto(valor)


def materializar(filas: Iterable[Any], columnas: List[Any]) -> List[FilaVista]:
    """
    Proyecta filas crudas sobre las columnas.

    Args:
        filas: TablaFila o dicts {id, data, source}
        columnas: TablaColumna (o cualquier objeto con field_key, data_type,
            config, formula y required)

    Returns:
        Lista de FilaVista en el mismo orden
    """
    # Una fórmula que no compila deja la columna como editable normal
    compiladas = {c.field_key: compilar_formula(c.formula) for c in columnas if c.formula}
    normales = [c for c in columnas if compiladas.get(c.field_key) is None]
    calculadas = [(c, compiladas[c.field_key]) for c in columnas if compiladas.get(c.field_key) is not None]

    claves_base = {c.field_key for c in normales}
    for columna, compilada in calculadas:
        ausentes = [r for r in compilada.referencias
                    if r not in claves_base and Normalizer.normalizar_field_key(r) not in claves_base]
        if ausentes:
            logger.debug(f"Fórmula de '{columna.field_key}' referencia columnas inexistentes {ausentes}; valen 0")

    vistas = []
    for fila in filas:
        datos = _datos_fila(fila)

        valores: Dict[str, Any] = {}
        for columna in normales:
            valores[columna.field_key] = Normalizer.coercionar_valor(
                columna.data_type, datos.get(columna.field_key)
            )

        base = dict(valores)
        for columna, compilada in calculadas:
            valores[columna.field_key] = compilada.evaluar(base)

        estilos = {}
        faltantes = []
        for columna in columnas:
            config = columna.config or {}
            estilos[columna.field_key] = clasificar_condicional(
                valores.get(columna.field_key), config.get('conditional')
            )
            if columna.required and columna.field_key not in compiladas and valores.get(columna.field_key) in (None, ''):
                faltantes.append(columna.field_key)

        source = _atributo(fila, 'source')
        vistas.append(FilaVista(
            id=str(_atributo(fila, 'id')),
            valores=valores,
            estilos=estilos,
            metadatos={k: v for k, v in datos.items() if isinstance(k, str) and k.startswith('__')},
            faltantes=faltantes,
            source=getattr(source, 'value', source),
        ))

    return vistas


# =====================================================
# FILTROS, ORDEN Y TOTALES
# =====================================================

def _cumple_columna(valor: Any, tipo: str, filtro: FiltroColumna) -> bool:
    if tipo in TIPOS_NUMERICOS:
        if filtro.minimo is None and filtro.maximo is None:
            return True
        numero = Normalizer.limpiar_numero(valor)
        if numero is None:
            return False
        if filtro.minimo is not None and numero < filtro.minimo:
            return False
        if filtro.maximo is not None and numero > filtro.maximo:
            return False
        return True

    aguja = Normalizer.normalizar_texto(filtro.texto)
    if not aguja:
        return True
    return aguja in _texto_celda(valor)


def filtrar(vistas: Iterable[FilaVista], columnas: List[Any], filtros: Optional[FiltrosVista]) -> List[FilaVista]:
    """
    Aplica filtros por columna, por documento de origen y de búsqueda global.

    - text/date/boolean: subcadena sin distinguir mayúsculas ni tildes
    - number/currency: rango [min, max] inclusivo; si hay algún límite, las
      celdas no numéricas se excluyen
    - doc_path: solo filas producidas por ese documento
    - busqueda: subcadena en cualquier columna
    """
    vistas = list(vistas)
    if not filtros:
        return vistas

    tipos = {c.field_key: c.data_type for c in columnas}
    busqueda = Normalizer.normalizar_texto(filtros.busqueda)

    resultado = []
    for vista in vistas:
        if filtros.doc_path and vista.doc_path != filtros.doc_path:
            continue

        if not all(
            _cumple_columna(vista.valores.get(clave), tipos[clave], filtro)
            for clave, filtro in filtros.columnas.items()
            if clave in tipos
        ):
            continue

        if busqueda and not any(busqueda in _texto_celda(v) for v in vista.valores.values()):
            continue

        resultado.append(vista)

    return resultado


def ordenar(vistas: Iterable[FilaVista], columnas: List[Any], field_key: str, descendente: bool = False) -> List[FilaVista]:
    """
    Ordena por una columna. Números por valor, el resto como texto
    normalizado; los vacíos siempre al final.
    """
    vistas = list(vistas)
    tipo = next((c.data_type for c in columnas if c.field_key == field_key), None)
    if tipo is None:
        return vistas

    def clave(vista: FilaVista):
        valor = vista.valores.get(field_key)
        if tipo in TIPOS_NUMERICOS:
            return Normalizer.limpiar_numero(valor)
        texto = _texto_celda(valor)
        return texto or None

    con_valor = [v for v in vistas if clave(v) is not None]
    vacias = [v for v in vistas if clave(v) is None]
    return sorted(con_valor, key=clave, reverse=descendente) + vacias


def totales(vistas: Iterable[FilaVista], columnas: List[Any]) -> Dict[str, float]:
    """Suma de cada columna numérica (ignora celdas vacías)"""
    vistas = list(vistas)
    resultado = {}
    for columna in columnas:
        if columna.data_type not in TIPOS_NUMERICOS:
            continue
        resultado[columna.field_key] = sum(
            v.valores[columna.field_key] for v in vistas
            if isinstance(v.valores.get(columna.field_key), (int, float))
            and not isinstance(v.valores.get(columna.field_key), bool)
        )
    return resultado
