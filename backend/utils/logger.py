"""
Logging utilities
"""

import logging
from typing import Optional

from config import settings


def setup_logger(name: str, log_file: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    """
    Configura un logger con salida a archivo dentro de LOGS_DIR.

    Los mensajes siguen propagándose al logger raíz (consola configurada en
    main.py), así que aquí solo se añade el archivo dedicado.

    Args:
        name: Nombre del logger
        log_file: Archivo relativo a LOGS_DIR (opcional)
        level: Nivel explícito; por defecto settings.LOG_LEVEL

    Returns:
        Logger configurado
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper()))

    if not log_file:
        return logger

    file_path = settings.LOGS_DIR / log_file
    ya_configurado = any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == str(file_path.resolve())
        for handler in logger.handlers
    )
    if ya_configurado:
        return logger

    file_handler = logging.FileHandler(file_path, encoding='utf-8')
    file_handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))
    logger.addHandler(file_handler)

    return logger
