"""
Parsers package: fórmulas, períodos, planillas y PDFs digitales
"""

from .formula_parser import compilar_formula, evaluar_formula, FormulaCompilada
from .periodo_parser import parsear_periodo, Periodo, TipoPeriodo
from .planilla_parser import leer_planilla, mapear_hojas, mapear_planilla, HojaPlanilla
from .pdf_extractor import PDFExtractor

__all__ = [
    'compilar_formula',
    'evaluar_formula',
    'FormulaCompilada',
    'parsear_periodo',
    'Periodo',
    'TipoPeriodo',
    'leer_planilla',
    'mapear_hojas',
    'mapear_planilla',
    'HojaPlanilla',
    'PDFExtractor',
]
