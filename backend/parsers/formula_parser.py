"""
Motor de fórmulas para columnas calculadas.

Las fórmulas son expresiones aritméticas sobre columnas hermanas de la misma
fila, p.ej. "[monto_total] - [monto_certificado]" o "([a] + [b]) * 0.21".

Nunca se evalúa código arbitrario: la expresión se valida por conjunto de
caracteres y luego un parser descendente recursivo construye un AST con
números, referencias, + - * /, signo unario y paréntesis, que se interpreta
directamente.

Cualquier error de compilación devuelve None (la columna se trata como
editable normal); cualquier error de evaluación devuelve None (celda vacía).
"""

import math
import re
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from config import settings
from utils.normalizer import Normalizer

logger = logging.getLogger(__name__)

PATRON_REFERENCIA = re.compile(r'\[([^\[\]]*)\]')
PATRON_PERMITIDO = re.compile(r'^[0-9+\-*/().\s]*$')
PATRON_TOKEN = re.compile(r'\s*(?:(\d+\.?\d*|\.\d+)|(@\d+)|([+\-*/()]))')



# =====================================================
# AST
# =====================================================

@dataclass(frozen=True)
class Numero:
    valor: float


@dataclass(frozen=True)
class Referencia:
    indice: int


@dataclass(frozen=True)
class Unario:
    operador: str
    operando: "Nodo"


@dataclass(frozen=True)
class Binario:
    operador: str
    izquierda: "Nodo"
    derecha: "Nodo"


Nodo = Union[Numero, Referencia, Unario, Binario]


class ErrorSintaxis(ValueError):
    """Expresión mal formada (nunca sale de este módulo)"""


# =====================================================
# PARSER
# =====================================================

def _tokenizar(expresion: str) -> List[Tuple[str, str]]:
    """
    Divide la expresión sustituida en tokens (tipo, texto).

    Tipos: 'num', 'ref', 'op'.
    """
    tokens = []
    posicion = 0
    expresion = expresion.rstrip()

    while posicion < len(expresion):
        match = PATRON_TOKEN.match(expresion, posicion)
        if not match or match.end() == posicion:
            raise ErrorSintaxis(f"Token inválido en posición {posicion}")

        numero, referencia, operador = match.groups()
        if numero is not None:
            tokens.append(('num', numero))
        elif referencia is not None:
            tokens.append(('ref', referencia))
        else:
            tokens.append(('op', operador))
        posicion = match.end()

    return tokens


class _Parser:
    """
    Gramática:
        expresion := termino (('+' | '-') termino)*
        termino   := factor (('*' | '/') factor)*
        factor    := ('+' | '-') factor | NUMERO | REF | '(' expresion ')'
    """

    def __init__(self, tokens: List[Tuple[str, str]], num_referencias: int):
        self.tokens = tokens
        self.pos = 0
        self.num_referencias = num_referencias

    def _actual(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _consumir_operador(self, *operadores: str) -> Optional[str]:
        token = self._actual()
        if token and token[0] == 'op' and token[1] in operadores:
            self.pos += 1
            return token[1]
        return None

    def parsear(self) -> Nodo:
        if not self.tokens:
            raise ErrorSintaxis("Expresión vacía")
        nodo = self._expresion()
        if self._actual() is not None:
            raise ErrorSintaxis(f"Token inesperado: {self._actual()[1]}")
        return nodo

    def _expresion(self) -> Nodo:
        nodo = self._termino()
        while True:
            operador = self._consumir_operador('+', '-')
            if operador is None:
                return nodo
            nodo = Binario(operador, nodo, self._termino())

    def _termino(self) -> Nodo:
        nodo = self._factor()
        while True:
            operador = self._consumir_operador('*', '/')
            if operador is None:
                return nodo
            nodo = Binario(operador, nodo, self._factor())

    def _factor(self) -> Nodo:
        operador = self._consumir_operador('+', '-')
        if operador is not None:
            return Unario(operador, self._factor())

        if self._consumir_operador('('):
            nodo = self._expresion()
            if not self._consumir_operador(')'):
                raise ErrorSintaxis("Falta ')'")
            return nodo

        token = self._actual()
        if token is None:
            raise ErrorSintaxis("Fin de expresión inesperado")

        tipo, texto = token
        if tipo == 'num':
            self.pos += 1
            return Numero(float(texto))
        if tipo == 'ref':
            indice = int(texto[1:])
            if indice >= self.num_referencias:
                raise ErrorSintaxis(f"Referencia fuera de rango: {texto}")
            self.pos += 1
            return Referencia(indice)

        raise ErrorSintaxis(f"Token inesperado: {texto}")


def _interpretar(nodo: Nodo, valores: List[float]) -> float:
    if isinstance(nodo, Numero):
        return nodo.valor
    if isinstance(nodo, Referencia):
        return valores[nodo.indice]
    if isinstance(nodo, Unario):
        operando = _interpretar(nodo.operando, valores)
        return -operando if nodo.operador == '-' else operando

    izquierda = _interpretar(nodo.izquierda, valores)
    derecha = _interpretar(nodo.derecha, valores)
    if nodo.operador == '+':
        return izquierda + derecha
    if nodo.operador == '-':
        return izquierda - derecha
    if nodo.operador == '*':
        return izquierda * derecha
    return izquierda / derecha


# =====================================================
# FÓRMULA COMPILADA
# =====================================================

class FormulaCompilada:
    """Fórmula validada y parseada, lista para evaluarse sobre una fila"""

    def __init__(self, fuente: str, referencias: List[str], ast: Nodo):
        self.fuente = fuente
        self.referencias = referencias
        self.ast = ast

    def __repr__(self):
        return f"<FormulaCompilada('{self.fuente}', refs={self.referencias})>"

    def _resolver(self, referencia: str, valores: Mapping[str, Any]) -> float:
        if referencia in valores:
            valor = valores[referencia]
        else:
            valor = valores.get(Normalizer.normalizar_field_key(referencia))
        return Normalizer.a_numero_finito(valor)

    def evaluar(self, valores: Mapping[str, Any]) -> Optional[float]:
        """
        Evalúa la fórmula con los valores actuales de la fila.

        Las referencias ausentes o no numéricas valen 0. División por cero,
        desbordamiento o resultado no finito devuelven None.

        Args:
            valores: {field_key: valor} de la fila

        Returns:
            float o None
        """
        try:
            numeros = [self._resolver(ref, valores) for ref in self.referencias]
            resultado = _interpretar(self.ast, numeros)
        except (ArithmeticError, RecursionError) as e:
            logger.debug(f"Evaluación fallida de '{self.fuente}': {e}")
            return None

        if not math.isfinite(resultado):
            logger.debug(f"Resultado no finito en '{self.fuente}'")
            return None
        return resultado


def extraer_referencias(expresion: str) -> List[str]:
    """
    Referencias [campo] en orden de primera aparición, sin duplicados.

    Ejemplo:
        "[a] + [b] * [a]" -> ["a", "b"]
    """
    vistas: List[str] = []
    for match in PATRON_REFERENCIA.finditer(expresion or ''):
        nombre = match.group(1).strip()
        if nombre not in vistas:
            vistas.append(nombre)
    return vistas


class CompiladorFormulas:
    """
    Compila fórmulas con caché por texto recortado.

    El caché también guarda los fallos (None), así que recompilar la misma
    expresión en cada fila es O(1) tras la primera vez. Cambiar el texto de
    la fórmula produce otra clave y por tanto una compilación nueva.
    """

    def __init__(self, max_entradas: int = 512):
        self.max_entradas = max_entradas
        self._cache: Dict[str, Optional[FormulaCompilada]] = {}

    def __len__(self):
        return len(self._cache)

    def limpiar(self):
        self._cache.clear()

    def compilar(self, expresion: Optional[str]) -> Optional[FormulaCompilada]:
        """
        Compila una expresión o devuelve None si no es válida o segura.

        Args:
            expresion: texto de la fórmula

        Returns:
            FormulaCompilada o None
        """
        if not isinstance(expresion, str):
            return None

        fuente = expresion.strip()
        if not fuente:
            return None

        if fuente in self._cache:
            return self._cache[fuente]

        compilada = self._compilar_sin_cache(fuente)

        if len(self._cache) >= self.max_entradas:
            # Descarta la entrada más antigua (orden de inserción)
            self._cache.pop(next(iter(self._cache)))
        self._cache[fuente] = compilada
        return compilada

    def _compilar_sin_cache(self, fuente: str) -> Optional[FormulaCompilada]:
        referencias = extraer_referencias(fuente)
        indices = {ref: i for i, ref in enumerate(referencias)}

        def _marcador(match: re.Match) -> str:
            return f" @{indices[match.group(1).strip()]} "

        sustituida = PATRON_REFERENCIA.sub(_marcador, fuente)

        # Validación por conjunto de caracteres con las referencias fuera
        sin_referencias = PATRON_REFERENCIA.sub(" ", fuente)
        if not PATRON_PERMITIDO.match(sin_referencias) or any(not ref for ref in referencias):
            logger.debug(f"Fórmula rechazada por caracteres no permitidos: '{fuente}'")
            return None

        try:
            ast = _Parser(_tokenizar(sustituida), len(referencias)).parsear()
        except (ErrorSintaxis, RecursionError) as e:
            logger.debug(f"Fórmula rechazada por sintaxis: '{fuente}' ({e})")
            return None

        return FormulaCompilada(fuente, referencias, ast)


# Compilador compartido por defecto
compilador_formulas = CompiladorFormulas(settings.FORMULA_CACHE_SIZE)


def compilar_formula(expresion: Optional[str]) -> Optional[FormulaCompilada]:
    """Atajo sobre el compilador compartido"""
    return compilador_formulas.compilar(expresion)


def evaluar_formula(expresion: Optional[str], valores: Mapping[str, Any]) -> Optional[float]:
    """Compila (con caché) y evalúa; None si la fórmula no es válida"""
    compilada = compilar_formula(expresion)
    if compilada is None:
        return None
    return compilada.evaluar(valores)
