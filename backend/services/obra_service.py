"""
Obra Service - Lógica de negocio para obras
"""

from sqlalchemy.orm import Session
from typing import Optional, Dict, Any
import logging
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent))

from database.manager import DatabaseManager
from models import Obra
from parsers.periodo_parser import parsear_ancla

logger = logging.getLogger(__name__)


class ObraService:
    """
    Servicio para gestionar obras (ámbito propietario de tablas y documentos).
    """

    def __init__(self, db: Session):
        self.db = db
        self.manager = DatabaseManager(db)

    def crear_obra(self, nombre: str, curve_start_period: str = None) -> Obra:
        """
        Crea una obra.

        Raises:
            ValueError: si el ancla de la curva no es "YYYY-MM"
        """
        nombre = (nombre or '').strip()
        if not nombre:
            raise ValueError("El nombre de la obra es obligatorio")
        self._validar_ancla(curve_start_period)
        return self.manager.crear_obra(nombre, curve_start_period)

    def actualizar_obra(self, obra_id: int, **campos) -> Optional[Obra]:
        """
        Actualiza nombre y/o ancla de la curva.

        Returns:
            Obra actualizada o None si no existe
        """
        if 'curve_start_period' in campos:
            self._validar_ancla(campos['curve_start_period'])
        if 'nombre' in campos:
            if not (campos['nombre'] or '').strip():
                raise ValueError("El nombre de la obra es obligatorio")
            campos['nombre'] = campos['nombre'].strip()
        return self.manager.actualizar_obra(obra_id, **campos)

    def obtener_obra_completa(self, obra_id: int) -> Optional[Dict[str, Any]]:
        """
        Obra con sus estadísticas.

        Returns:
            {
                'obra': Obra,
                'estadisticas': {'num_tablas', 'num_filas', 'documentos'}
            }
        """
        obra = self.manager.obtener_obra(obra_id)
        if not obra:
            return None

        return {
            'obra': obra,
            'estadisticas': self.manager.queries.obtener_estadisticas_obra(obra_id),
        }

    @staticmethod
    def _validar_ancla(valor: Optional[str]):
        if valor and parsear_ancla(valor) is None:
            raise ValueError(f"Período inicial inválido (se espera YYYY-MM): {valor}")
