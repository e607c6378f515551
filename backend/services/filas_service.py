"""
Filas Service - Guardado por lotes de filas de una tabla
"""

from sqlalchemy.orm import Session
from typing import List, Dict, Any, Optional
import logging
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent))

from database.manager import DatabaseManager
from models import TablaFila, OrigenFila
from services.esquema_service import coercionar_datos_fila

logger = logging.getLogger(__name__)


class FilasService:
    """
    Servicio de escritura de filas.

    Un guardado combina altas, modificaciones y bajas en una sola
    transacción; los valores se coercionan al tipo de cada columna y las
    columnas con fórmula nunca se persisten.
    """

    def __init__(self, db: Session):
        self.db = db
        self.manager = DatabaseManager(db)

    def guardar_filas(
        self,
        tabla_id: int,
        rows: List[Dict[str, Any]] = None,
        dirty_rows: List[Dict[str, Any]] = None,
        deleted_row_ids: List[str] = None,
        obra_id: int = None
    ) -> Optional[List[TablaFila]]:
        """
        Aplica un lote de cambios sobre las filas de una tabla.

        Args:
            tabla_id: ID de la tabla
            rows: Filas nuevas [{id?, data}] (si el id ya existe se actualiza)
            dirty_rows: Filas existentes modificadas [{id, data}]
            deleted_row_ids: IDs de filas a eliminar
            obra_id: Obra propietaria (opcional, para acotar)

        Returns:
            Todas las filas persistidas de la tabla, o None si la tabla no existe
        """
        tabla = self.manager.obtener_tabla(tabla_id, obra_id)
        if not tabla:
            return None

        columnas = list(tabla.columnas)
        entrantes = list(rows or []) + list(dirty_rows or [])
        existentes = self.manager.obtener_filas(tabla_id, [r.get('id') for r in entrantes])
        eliminar = set(str(i) for i in (deleted_row_ids or []))

        insertadas = actualizadas = 0
        try:
            for entrada in entrantes:
                fila_id = entrada.get('id')
                if fila_id is not None and str(fila_id) in eliminar:
                    continue

                datos = entrada.get('data') or {}
                fila = existentes.get(str(fila_id)) if fila_id is not None else None

                if fila is not None:
                    fila.data = coercionar_datos_fila(columnas, datos, base=fila.data)
                    actualizadas += 1
                else:
                    source = OrigenFila(entrada.get('source') or OrigenFila.MANUAL.value)
                    self.manager.agregar_fila(
                        tabla_id,
                        coercionar_datos_fila(columnas, datos),
                        source=source,
                        fila_id=str(fila_id) if fila_id is not None else None
                    )
                    insertadas += 1

            eliminadas = self.manager.eliminar_filas(tabla_id, eliminar)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"✓ Filas guardadas en tabla {tabla_id}: "
            f"{insertadas} nuevas, {actualizadas} actualizadas, {eliminadas} eliminadas"
        )
        return self.manager.listar_todas_las_filas(tabla_id)
