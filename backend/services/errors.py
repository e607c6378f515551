"""
Excepciones de dominio
"""


class SchemaConflict(Exception):
    """
    Esquema de tabla inválido: field_key duplicado tras normalizar o fórmula
    que referencia otra columna calculada. La operación se aborta sin
    escrituras parciales.
    """

    def __init__(self, mensaje: str, field_key: str = None):
        super().__init__(mensaje)
        self.field_key = field_key


class BackendUnavailable(Exception):
    """El backend no respondió (red caída o error 5xx)"""


class RateLimited(BackendUnavailable):
    """El backend devolvió 429; hay que esperar antes de reintentar"""

    def __init__(self, mensaje: str = "Rate limited", retry_after: float = None):
        super().__init__(mensaje)
        self.retry_after = retry_after


class ExtractorError(Exception):
    """Fallo del extractor externo al procesar un documento"""
