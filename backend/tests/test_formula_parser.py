import pytest

from parsers.formula_parser import (
    CompiladorFormulas,
    compilar_formula,
    evaluar_formula,
    extraer_referencias,
)


def test_extraer_referencias_en_orden_y_sin_duplicados():
    assert extraer_referencias("[a] + [b] * [a] - [ c ]") == ["a", "b", "c"]


@pytest.mark.parametrize("expresion, valores, esperado", [
    ("[monto_total]-[monto_certificado]", {"monto_total": 1000, "monto_certificado": 400}, 600),
    ("([a] + [b]) * 2", {"a": 1, "b": 2}, 6),
    ("-[a] + +[b]", {"a": 3, "b": 5}, 2),
    ("[a] / 4", {"a": "10"}, 2.5),
    ("1.5 * .5", {}, 0.75),
])
def test_evaluar_aritmetica(expresion, valores, esperado):
    assert evaluar_formula(expresion, valores) == pytest.approx(esperado)


def test_referencias_ausentes_o_no_numericas_valen_cero():
    assert evaluar_formula("[a] + [b] + [c]", {"a": 2, "b": "no es número"}) == 2


def test_referencia_por_clave_normalizada():
    assert evaluar_formula("[Monto Total] * 2", {"monto_total": 21}) == 42


def test_division_por_cero_devuelve_none():
    assert evaluar_formula("[a] / [b]", {"a": 1, "b": 0}) is None


def test_resultado_no_finito_devuelve_none():
    assert evaluar_formula("[a] * [a] * [a] * [a]", {"a": 1e100}) is None


@pytest.mark.parametrize("expresion", [
    "[a] + alert(1)",
    "[a]; [b]",
    "__import__('os')",
    "[a] ** 2",
    "([a] + 1",
    "[a] +",
    "[] + 1",
    "2 [a]",
])
def test_expresiones_invalidas_no_compilan(expresion):
    assert compilar_formula(expresion) is None
    assert evaluar_formula(expresion, {"a": 1}) is None


def test_vacio_y_no_texto_no_compilan():
    assert compilar_formula("   ") is None
    assert compilar_formula(None) is None
    assert compilar_formula(42) is None


def test_compilar_es_idempotente_por_texto_recortado():
    compilador = CompiladorFormulas()
    primera = compilador.compilar("[x] + 1")
    segunda = compilador.compilar("  [x] + 1  ")
    assert primera is segunda
    assert len(compilador) == 1


def test_cambiar_el_texto_recompila():
    compilador = CompiladorFormulas()
    antes = compilador.compilar("[x] + 1")
    despues = compilador.compilar("[x] + 2")
    assert antes is not despues
    assert despues.evaluar({"x": 1}) == 3


def test_los_fallos_tambien_se_cachean():
    compilador = CompiladorFormulas()
    assert compilador.compilar("[a] & [b]") is None
    assert compilador.compilar("[a] & [b]") is None
    assert len(compilador) == 1


def test_cache_acotado():
    compilador = CompiladorFormulas(max_entradas=2)
    compilador.compilar("[a] + 1")
    compilador.compilar("[a] + 2")
    compilador.compilar("[a] + 3")
    assert len(compilador) == 2
