"""
Parser de planillas (Excel / CSV) para importar filas a tablas.

Pasos:
1. Leer todas las hojas como filas crudas (pandas)
2. Detectar la fila de encabezados (y encabezados compuestos de dos filas)
3. Elegir la hoja que mejor encaja con las columnas de la tabla
4. Mapear cada columna de la tabla a un encabezado por puntuación
   (label, field_key, excelKeywords y palabras del perfil "certificado")

Las hojas "Curva Plan" con columnas "Mes 1", "Mes 2"... se convierten en
una fila por mes con el avance mensual y el acumulado.
"""

import io
import math
import re
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from utils.normalizer import Normalizer

logger = logging.getLogger(__name__)

EXTENSIONES_EXCEL = ('.xlsx', '.xlsm', '.xls')
EXTENSIONES_CSV = ('.csv', '.txt')

FILAS_ESCANEO_ENCABEZADO = 25
PATRON_CELDA_NUMERICA = re.compile(r'^[\d.,$ %()-]+$')
PATRON_MES_N = re.compile(r'mes\s*\d+', re.IGNORECASE)

PERFIL_CERTIFICADO = 'certificado'

# Palabras clave extra del perfil "certificado" según lo que contenga la columna
PALABRAS_PERFIL_CERTIFICADO = (
    (('nro', 'numero'), ('nro', 'numero', 'certificado', 'n°', 'n')),
    (('fecha',), ('fecha', 'certificacion', 'emision', 'date')),
    (('obra', 'proyecto'), ('obra', 'proyecto')),
    (('proveedor',), ('proveedor',)),
    (('encargado', 'solicitante'), ('encargado', 'solicitante', 'pedido')),
    (('total', 'monto', 'importe'), ('total', 'monto', 'importe', 'certificado', 'acumulado')),
    (('cantidad',), ('cantidad', 'cant')),
    (('unidad',), ('unidad', 'u')),
    (('descripcion', 'detalle', 'material'), ('descripcion', 'detalle', 'material', 'rubro')),
    (('precio',), ('precio', 'unitario', 'importe')),
)


@dataclass
class HojaPlanilla:
    """Hoja leída con sus encabezados detectados"""
    nombre: str
    encabezados: List[str]
    filas_crudas: List[List[Any]]
    filas_datos: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class MapeoColumna:
    field_key: str
    label: str
    encabezado: Optional[str]
    puntuacion: float


@dataclass
class ResultadoPlanilla:
    """Resultado de mapear una planilla contra una tabla"""
    hoja: Optional[str]
    mapeos: List[MapeoColumna]
    filas: List[Dict[str, Any]]
    hojas_disponibles: List[str] = field(default_factory=list)

    def to_preview(self, max_filas: int = 20) -> Dict[str, Any]:
        return {
            'sheet': self.hoja,
            'sheets': self.hojas_disponibles,
            'mappings': [
                {
                    'fieldKey': m.field_key,
                    'label': m.label,
                    'excelHeader': m.encabezado,
                    'score': round(m.puntuacion, 3),
                }
                for m in self.mapeos
            ],
            'rowCount': len(self.filas),
            'sampleRows': self.filas[:max_filas],
        }


def normalizar_encabezado(valor: Any) -> str:
    """ "Avance Acum. (%)" -> "avance acum" """
    texto = Normalizer.quitar_diacriticos(str(valor if valor is not None else '')).lower()
    texto = re.sub(r'[^a-z0-9 ]', ' ', texto)
    return re.sub(r'\s+', ' ', texto).strip()


def _celda(valor: Any) -> Any:
    """Celda lista para JSON: sin NaN, fechas ISO y escalares numpy convertidos"""
    if valor is None or valor is pd.NaT:
        return None
    if isinstance(valor, (pd.Timestamp, datetime)):
        return valor.date().isoformat()
    if isinstance(valor, date):
        return valor.isoformat()
    if isinstance(valor, np.generic):
        valor = valor.item()
    if isinstance(valor, float) and math.isnan(valor):
        return None
    if isinstance(valor, str) and not valor.strip():
        return None
    return valor


def _texto(valor: Any) -> str:
    return str(valor).strip() if valor is not None else ''


# =====================================================
# DETECCIÓN DE ENCABEZADOS
# =====================================================

def puntuar_fila(fila: Sequence[Any]) -> float:
    """
    Probabilidad relativa de que una fila sea de encabezados: muchas celdas de
    texto distintas, pocas numéricas y pocas vacías.
    """
    if not fila:
        return 0.0

    textos = numericas = vacias = 0
    distintos = set()
    for celda in fila:
        valor = _texto(celda)
        if not valor:
            vacias += 1
        elif PATRON_CELDA_NUMERICA.match(valor):
            numericas += 1
        else:
            textos += 1
            distintos.add(valor.lower())

    total = len(fila)
    if textos < 3:
        return 0.0
    if len(distintos) == 1:
        return 0.0

    return (len(distintos) / total) * 100 - (numericas / total) * 50 - (vacias / total) * 20 + len(distintos) * 3


def detectar_encabezados(filas: List[List[Any]]) -> Tuple[List[str], int]:
    """
    Encuentra la fila de encabezados entre las primeras filas.

    Si la fila anterior o la siguiente también parece encabezado, combina
    ambas ("Monto" + "Anterior" -> "Monto Anterior"), rellenando celdas
    combinadas hacia la derecha.

    Returns:
        (encabezados, índice de la última fila de encabezado)
    """
    mejor_puntuacion = 0.0
    mejor_indice = 0
    for i, fila in enumerate(filas[:FILAS_ESCANEO_ENCABEZADO]):
        puntuacion = puntuar_fila(fila)
        if puntuacion > mejor_puntuacion:
            mejor_puntuacion = puntuacion
            mejor_indice = i

    if mejor_puntuacion == 0:
        for i, fila in enumerate(filas):
            if any(_texto(c) for c in fila):
                return [_texto(c) for c in fila], i
        return [], 0

    principal = filas[mejor_indice]
    anterior = filas[mejor_indice - 1] if mejor_indice > 0 else None
    siguiente = filas[mejor_indice + 1] if mejor_indice + 1 < len(filas) else None
    puntuacion_anterior = puntuar_fila(anterior) if anterior else 0
    puntuacion_siguiente = puntuar_fila(siguiente) if siguiente else 0

    superior = inferior = None
    inicio_datos = mejor_indice
    if anterior and puntuacion_anterior > 0 and puntuacion_anterior >= mejor_puntuacion * 0.2:
        superior, inferior = anterior, principal
    elif siguiente and puntuacion_siguiente > mejor_puntuacion * 0.4:
        superior, inferior = principal, siguiente
        inicio_datos = mejor_indice + 1

    if superior is None:
        return [_texto(c) for c in principal], mejor_indice

    ancho = max(len(superior), len(inferior))
    compuestos = []
    ultimo = ''
    for c in range(ancho):
        arriba = _texto(superior[c]) if c < len(superior) else ''
        if arriba:
            ultimo = arriba
        abajo = _texto(inferior[c]) if c < len(inferior) else ''
        if ultimo and abajo and ultimo != abajo:
            compuestos.append(f"{ultimo} {abajo}")
        else:
            compuestos.append(ultimo or abajo)

    vistos: Dict[str, int] = {}
    for i, encabezado in enumerate(compuestos):
        if not encabezado:
            continue
        repeticiones = vistos.get(encabezado, 0)
        vistos[encabezado] = repeticiones + 1
        if repeticiones:
            compuestos[i] = f"{encabezado} ({repeticiones + 1})"

    return compuestos, inicio_datos


def filas_a_objetos(filas: List[List[Any]], encabezados: List[str], indice_encabezado: int) -> List[Dict[str, Any]]:
    """Filas posteriores al encabezado como dicts; se descartan las vacías"""
    objetos = []
    for fila in filas[indice_encabezado + 1:]:
        objeto = {}
        no_vacias = 0
        for c, encabezado in enumerate(encabezados):
            if not encabezado:
                continue
            valor = fila[c] if c < len(fila) else None
            objeto[encabezado] = valor
            if _texto(valor):
                no_vacias += 1
        if no_vacias:
            objetos.append(objeto)
    return objetos


def hoja_desde_filas(nombre: str, filas: List[List[Any]]) -> HojaPlanilla:
    """Construye una hoja a partir de filas crudas (planilla o tabla de PDF)"""
    filas = [[_celda(c) for c in fila] for fila in filas]
    encabezados, indice = detectar_encabezados(filas)
    return HojaPlanilla(
        nombre=nombre,
        encabezados=encabezados,
        filas_crudas=filas,
        filas_datos=filas_a_objetos(filas, encabezados, indice),
    )


# =====================================================
# LECTURA
# =====================================================

def leer_planilla(contenido: bytes, nombre_archivo: str) -> List[HojaPlanilla]:
    """
    Lee un Excel (todas las hojas) o un CSV.

    Returns:
        Hojas con encabezados y al menos una fila de datos

    Raises:
        ValueError: formato no soportado
    """
    nombre = (nombre_archivo or '').lower()

    if nombre.endswith(EXTENSIONES_EXCEL):
        libros = pd.read_excel(io.BytesIO(contenido), sheet_name=None, header=None, dtype=object)
        crudas = {hoja: df.astype(object).values.tolist() for hoja, df in libros.items()}
    elif nombre.endswith(EXTENSIONES_CSV):
        texto = contenido.decode('utf-8-sig', errors='replace')
        df = pd.read_csv(
            io.StringIO(texto),
            header=None,
            dtype=str,
            keep_default_na=False,
            sep=None,
            engine='python'
        )
        crudas = {'csv': df.values.tolist()}
    else:
        raise ValueError(f"Formato de planilla no soportado: {nombre_archivo}")

    hojas = []
    for hoja, filas in crudas.items():
        resultado = hoja_desde_filas(str(hoja), filas)
        if resultado.encabezados and resultado.filas_datos:
            hojas.append(resultado)

    logger.info(f"📊 Planilla '{nombre_archivo}': {len(hojas)} hojas con datos")
    return hojas


# =====================================================
# MAPEO ENCABEZADO → COLUMNA
# =====================================================

def _palabras_perfil(perfil: Optional[str], columna) -> List[str]:
    if perfil != PERFIL_CERTIFICADO:
        return []
    unido = f"{normalizar_encabezado(columna.label)} {normalizar_encabezado(columna.field_key.replace('_', ' '))}"
    palabras = []
    for disparadores, extra in PALABRAS_PERFIL_CERTIFICADO:
        if any(d in unido for d in disparadores):
            palabras.extend(extra)
    return palabras


def puntuar_encabezado(encabezado: str, columna, perfil: Optional[str] = None) -> float:
    """
    Afinidad entre un encabezado y una columna en [0, 1].

    - 1.0 si coincide con el label
    - 0.95 si coincide con el field_key
    - hasta 0.9 por palabras clave contenidas
    - +0.2 si encaja con las palabras del perfil
    """
    h = normalizar_encabezado(encabezado)
    if not h:
        return 0.0

    label = normalizar_encabezado(columna.label)
    clave = normalizar_encabezado(columna.field_key.replace('_', ' '))

    if h == label:
        puntuacion = 1.0
    elif h == clave:
        puntuacion = 0.95
    else:
        extra = (columna.config or {}).get('excelKeywords') or []
        base = [columna.label, columna.field_key, Normalizer.normalizar_field_key(columna.label)]
        palabras = []
        for palabra in base + [k for k in extra if isinstance(k, str)]:
            normalizada = normalizar_encabezado(palabra)
            if normalizada and normalizada not in palabras:
                palabras.append(normalizada)

        coincidencias = sum(1 for p in palabras if p in h or h in p)
        puntuacion = min(0.9, coincidencias / len(palabras) * 0.9) if palabras and coincidencias else 0.0

    palabras_perfil = _palabras_perfil(perfil, columna)
    if palabras_perfil:
        if any(
            normalizar_encabezado(p) and (normalizar_encabezado(p) in h or h in normalizar_encabezado(p))
            for p in palabras_perfil
        ):
            puntuacion = min(1.0, puntuacion + 0.2)

    return puntuacion


def _umbral(perfil: Optional[str]) -> float:
    return 0.08 if perfil == PERFIL_CERTIFICADO else 0.15


def elegir_hoja(hojas: List[HojaPlanilla], columnas: List[Any], perfil: Optional[str] = None) -> Optional[HojaPlanilla]:
    """Hoja cuyos encabezados mejor cubren las columnas (media de mejores puntuaciones)"""
    mejor_hoja = None
    mejor_media = 0.0
    for hoja in hojas:
        if not hoja.encabezados or not columnas:
            continue
        puntuaciones = [
            max((puntuar_encabezado(e, columna, perfil) for e in hoja.encabezados), default=0.0)
            for columna in columnas
        ]
        media = sum(puntuaciones) / len(puntuaciones)
        if media > mejor_media:
            mejor_media = media
            mejor_hoja = hoja

    return mejor_hoja if mejor_media >= _umbral(perfil) else None


def construir_mapeos(hoja: HojaPlanilla, columnas: List[Any], perfil: Optional[str] = None) -> List[MapeoColumna]:
    """Asigna a cada columna su mejor encabezado libre por encima del umbral"""
    usados = set()
    mapeos = []
    for columna in columnas:
        mejor, mejor_puntuacion = None, 0.0
        for encabezado in hoja.encabezados:
            if not encabezado or encabezado in usados:
                continue
            puntuacion = puntuar_encabezado(encabezado, columna, perfil)
            if puntuacion > mejor_puntuacion:
                mejor, mejor_puntuacion = encabezado, puntuacion

        if mejor and mejor_puntuacion >= _umbral(perfil):
            usados.add(mejor)
            mapeos.append(MapeoColumna(columna.field_key, columna.label, mejor, mejor_puntuacion))
        else:
            mapeos.append(MapeoColumna(columna.field_key, columna.label, None, 0.0))
    return mapeos


# =====================================================
# CURVA PLAN
# =====================================================

def parsear_porcentaje_planilla(valor: Any) -> float:
    """
    Porcentaje de una celda de planilla, redondeado a 2 decimales.

    Sin "%" explícito, un valor entre -1 y 1 se interpreta como fracción.

    Ejemplos:
        "12,5%" -> 12.5
        0.125 -> 12.5
        "" -> 0.0
    """
    if valor is None:
        return 0.0
    tenia_porcentaje = '%' in str(valor)
    numero = Normalizer.limpiar_numero(valor)
    if numero is None:
        return 0.0
    if not tenia_porcentaje and 0 < abs(numero) < 1:
        numero *= 100
    return round(numero, 2)


def es_tabla_curva_plan(columnas: List[Any], nombre_tabla: str, perfil: Optional[str]) -> bool:
    if perfil != PERFIL_CERTIFICADO:
        return False
    claves = {c.field_key for c in columnas}
    if {'periodo', 'avance_mensual_pct', 'avance_acumulado_pct'} <= claves:
        return True
    return 'curva plan' in normalizar_encabezado(nombre_tabla)


def _buscar_columna(columnas: List[Any], clave: str, fragmento: str):
    return (
        next((c for c in columnas if c.field_key == clave), None)
        or next((c for c in columnas if fragmento in normalizar_encabezado(c.label)), None)
    )


def extraer_filas_curva_plan(hoja: HojaPlanilla, columnas: List[Any]) -> List[Dict[str, Any]]:
    """
    Convierte una hoja con columnas "Mes N" y una fila "Avance mensual" en
    una fila por mes con avance mensual y acumulado.
    """
    periodo = _buscar_columna(columnas, 'periodo', 'periodo')
    mensual = _buscar_columna(columnas, 'avance_mensual_pct', 'mensual')
    acumulado = _buscar_columna(columnas, 'avance_acumulado_pct', 'acumulado')
    if not (periodo and mensual and acumulado):
        return []

    meses = [e for e in hoja.encabezados if e and PATRON_MES_N.search(e)]
    if not meses:
        return []

    fila_mensual = None
    for fila in hoja.filas_datos:
        texto = ' '.join(normalizar_encabezado(v) for v in fila.values())
        if 'avance' in texto and 'mensual' in texto:
            fila_mensual = fila
            break
    if fila_mensual is None:
        return []

    filas = []
    total = 0.0
    for mes in meses:
        valor = parsear_porcentaje_planilla(fila_mensual.get(mes))
        total += valor
        filas.append({
            periodo.field_key: mes,
            mensual.field_key: valor,
            acumulado.field_key: round(total, 2),
        })
    return filas


# =====================================================
# PUNTO DE ENTRADA
# =====================================================

def mapear_hojas(
    hojas: List[HojaPlanilla],
    columnas: List[Any],
    nombre_tabla: str = '',
    perfil: Optional[str] = None
) -> ResultadoPlanilla:
    """
    Mapea hojas ya leídas contra las columnas de una tabla.

    Returns:
        ResultadoPlanilla con filas {field_key: valor crudo}
    """
    disponibles = [h.nombre for h in hojas]
    columnas = [c for c in columnas if not c.formula]

    if es_tabla_curva_plan(columnas, nombre_tabla, perfil):
        for hoja in hojas:
            filas = extraer_filas_curva_plan(hoja, columnas)
            if filas:
                logger.info(f"📈 Hoja '{hoja.nombre}' interpretada como curva plan ({len(filas)} meses)")
                return ResultadoPlanilla(hoja.nombre, [], filas, disponibles)

    hoja = elegir_hoja(hojas, columnas, perfil)
    if hoja is None:
        logger.warning(f"⚠️ Ninguna hoja encaja con la tabla '{nombre_tabla}'")
        return ResultadoPlanilla(None, [], [], disponibles)

    mapeos = construir_mapeos(hoja, columnas, perfil)
    activos = [m for m in mapeos if m.encabezado]

    filas = []
    for fila in hoja.filas_datos:
        datos = {m.field_key: fila.get(m.encabezado) for m in activos}
        if any(_texto(v) for v in datos.values()):
            filas.append(datos)

    logger.info(
        f"✓ Hoja '{hoja.nombre}' → tabla '{nombre_tabla}': "
        f"{len(activos)}/{len(mapeos)} columnas mapeadas, {len(filas)} filas"
    )
    return ResultadoPlanilla(hoja.nombre, mapeos, filas, disponibles)


def mapear_planilla(
    contenido: bytes,
    nombre_archivo: str,
    columnas: List[Any],
    nombre_tabla: str = '',
    perfil: Optional[str] = None
) -> ResultadoPlanilla:
    """Lee una planilla y la mapea contra las columnas de una tabla"""
    return mapear_hojas(leer_planilla(contenido, nombre_archivo), columnas, nombre_tabla, perfil)
