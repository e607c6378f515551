"""
Query Helper - Queries de filas, páginas y estadísticas
"""

from sqlalchemy.orm import Session, Query
from sqlalchemy import func
from typing import List, Dict, Any, Optional, Tuple

from models import Tabla, TablaFila, Documento, EstadoOCR
from utils.normalizer import META_DOC_PATH


class QueryHelper:
    """
    Helper para queries compuestas.

    Proporciona métodos para:
    - Paginar filas con filtro por documento de origen
    - Localizar las filas producidas por un documento
    - Estadísticas de una obra

    El filtro por documento se aplica sobre el JSON ya cargado para no
    depender de las funciones JSON de cada motor.
    """

    def __init__(self, session: Session):
        self.session = session

    def filas_ordenadas(self, tabla_id: int) -> Query:
        return (
            self.session.query(TablaFila)
            .filter(TablaFila.tabla_id == tabla_id)
            .order_by(TablaFila.fecha_creacion, TablaFila.id)
        )

    def filas_de_documento(self, tabla_id: int, doc_path: str) -> List[TablaFila]:
        """Filas cuyo data["__docPath"] es exactamente doc_path"""
        return [
            fila for fila in self.filas_ordenadas(tabla_id).all()
            if (fila.data or {}).get(META_DOC_PATH) == doc_path
        ]

    def paginar_filas(
        self,
        tabla_id: int,
        page: int = 1,
        limit: int = 50,
        doc_path: Optional[str] = None
    ) -> Tuple[List[TablaFila], int]:
        """
        Página de filas (page empieza en 1).

        Returns:
            (filas de la página, total de filas que cumplen el filtro)
        """
        page = max(page, 1)
        offset = (page - 1) * limit

        if doc_path:
            filas = self.filas_de_documento(tabla_id, doc_path)
            return filas[offset:offset + limit], len(filas)

        query = self.filas_ordenadas(tabla_id)
        total = query.count()
        return query.offset(offset).limit(limit).all(), total

    def contar_filas_por_tabla(self, obra_id: int) -> Dict[int, int]:
        """{tabla_id: número de filas} para las tablas de una obra"""
        resultado = (
            self.session.query(TablaFila.tabla_id, func.count(TablaFila.id))
            .join(Tabla, Tabla.id == TablaFila.tabla_id)
            .filter(Tabla.obra_id == obra_id)
            .group_by(TablaFila.tabla_id)
            .all()
        )
        return {tabla_id: total for tabla_id, total in resultado}

    def obtener_estadisticas_obra(self, obra_id: int) -> Dict[str, Any]:
        """
        Estadísticas básicas de una obra.

        Returns:
            Dict con número de tablas, filas y documentos por estado
        """
        filas_por_tabla = self.contar_filas_por_tabla(obra_id)
        num_tablas = self.session.query(func.count(Tabla.id)).filter(Tabla.obra_id == obra_id).scalar()

        documentos_por_estado = {estado.value: 0 for estado in EstadoOCR}
        for estado, total in (
            self.session.query(Documento.estado, func.count(Documento.id))
            .filter(Documento.obra_id == obra_id)
            .group_by(Documento.estado)
            .all()
        ):
            documentos_por_estado[EstadoOCR(estado).value] = total

        return {
            'num_tablas': num_tablas or 0,
            'num_filas': sum(filas_por_tabla.values()),
            'documentos': documentos_por_estado,
        }
