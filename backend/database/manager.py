"""
Database Manager - CRUD operations para Tablas de Obra
"""

from sqlalchemy.orm import Session
from typing import List, Optional, Dict, Any, Iterable, Tuple
from datetime import datetime
import logging
import sys
from pathlib import Path

# Añadir el directorio backend al path
sys.path.append(str(Path(__file__).parent.parent))

from models import (
    Obra,
    Tabla,
    TablaFila,
    OrigenFila,
    VinculoExtraccion,
    Documento,
    ProcesamientoDocumento,
    EstadoOCR,
)
from database.queries import QueryHelper

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Gestor de base de datos para Tablas de Obra.

    Los métodos de lectura y los de escritura simple hacen commit; los que se
    usan dentro de una transacción mayor (esquemas, importaciones) solo hacen
    flush y dejan el commit al servicio que los orquesta.
    """

    def __init__(self, session: Session):
        self.session = session
        self.queries = QueryHelper(session)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.session.rollback()
        self.session.close()

    # =====================================================
    # OBRAS
    # =====================================================

    def crear_obra(self, nombre: str, curve_start_period: str = None) -> Obra:
        """
        Crea una nueva obra.

        Args:
            nombre: Nombre de la obra
            curve_start_period: Ancla "YYYY-MM" opcional para la curva de avance

        Returns:
            Obra creada
        """
        obra = Obra(nombre=nombre, curve_start_period=curve_start_period)
        self.session.add(obra)
        self.session.commit()
        logger.info(f"✓ Obra creada: {obra.id} - {nombre}")
        return obra

    def obtener_obra(self, obra_id: int) -> Optional[Obra]:
        """Obtiene una obra por ID"""
        return self.session.query(Obra).filter_by(id=obra_id).first()

    def actualizar_obra(self, obra_id: int, **campos) -> Optional[Obra]:
        """
        Actualiza campos de una obra.

        Returns:
            Obra actualizada o None si no existe
        """
        obra = self.obtener_obra(obra_id)
        if not obra:
            return None

        for campo, valor in campos.items():
            if hasattr(obra, campo):
                setattr(obra, campo, valor)

        self.session.commit()
        logger.info(f"✓ Obra actualizada: {obra_id}")
        return obra

    # =====================================================
    # TABLAS
    # =====================================================

    def obtener_tabla(self, tabla_id: int, obra_id: int = None) -> Optional[Tabla]:
        """Obtiene una tabla por ID, opcionalmente acotada a una obra"""
        query = self.session.query(Tabla).filter_by(id=tabla_id)
        if obra_id is not None:
            query = query.filter_by(obra_id=obra_id)
        return query.first()

    def listar_tablas(self, obra_id: int) -> List[Tabla]:
        """Lista las tablas de una obra por orden de creación"""
        return (
            self.session.query(Tabla)
            .filter_by(obra_id=obra_id)
            .order_by(Tabla.fecha_creacion, Tabla.id)
            .all()
        )

    def eliminar_tabla(self, tabla_id: int) -> bool:
        """
        Elimina una tabla con sus columnas, filas, vínculos y procesamientos (cascade).

        Returns:
            True si se eliminó, False si no existía
        """
        tabla = self.obtener_tabla(tabla_id)
        if not tabla:
            return False

        self.session.delete(tabla)
        self.session.commit()
        logger.info(f"✓ Tabla eliminada: {tabla_id}")
        return True

    # =====================================================
    # FILAS
    # =====================================================

    def listar_filas(
        self,
        tabla_id: int,
        page: int = 1,
        limit: int = 50,
        doc_path: str = None
    ) -> Tuple[List[TablaFila], int]:
        """
        Página de filas de una tabla.

        Returns:
            (filas, total)
        """
        return self.queries.paginar_filas(tabla_id, page=page, limit=limit, doc_path=doc_path)

    def listar_todas_las_filas(self, tabla_id: int) -> List[TablaFila]:
        """Todas las filas de una tabla en orden de creación"""
        return self.queries.filas_ordenadas(tabla_id).all()

    def agregar_fila(
        self,
        tabla_id: int,
        data: Dict[str, Any],
        source: OrigenFila = OrigenFila.MANUAL,
        fila_id: str = None
    ) -> TablaFila:
        """Añade una fila a la sesión (sin commit)"""
        fila = TablaFila(tabla_id=tabla_id, data=data, source=source)
        if fila_id:
            fila.id = fila_id
        self.session.add(fila)
        return fila

    def obtener_filas(self, tabla_id: int, fila_ids: Iterable[str]) -> Dict[str, TablaFila]:
        """Filas existentes de la tabla indexadas por id"""
        ids = [str(i) for i in fila_ids if i]
        if not ids:
            return {}
        filas = (
            self.session.query(TablaFila)
            .filter(TablaFila.tabla_id == tabla_id, TablaFila.id.in_(ids))
            .all()
        )
        return {f.id: f for f in filas}

    def eliminar_filas(self, tabla_id: int, fila_ids: Iterable[str]) -> int:
        """Elimina filas por id (sin commit). Devuelve cuántas se eliminaron"""
        ids = [str(i) for i in fila_ids if i]
        if not ids:
            return 0
        return (
            self.session.query(TablaFila)
            .filter(TablaFila.tabla_id == tabla_id, TablaFila.id.in_(ids))
            .delete(synchronize_session=False)
        )

    def eliminar_filas_de_documento(self, tabla_id: int, doc_path: str) -> int:
        """Elimina (sin commit) las filas que una extracción previa del documento dejó en la tabla"""
        filas = self.queries.filas_de_documento(tabla_id, doc_path)
        for fila in filas:
            self.session.delete(fila)
        return len(filas)

    # =====================================================
    # VÍNCULOS
    # =====================================================

    def crear_vinculo(
        self,
        obra_id: int,
        tabla_id: int,
        carpeta: str,
        carpeta_etiqueta: str = None
    ) -> VinculoExtraccion:
        """Añade un vínculo carpeta → tabla a la sesión (sin commit)"""
        vinculo = VinculoExtraccion(
            obra_id=obra_id,
            tabla_id=tabla_id,
            carpeta=carpeta,
            carpeta_etiqueta=carpeta_etiqueta
        )
        self.session.add(vinculo)
        return vinculo

    def listar_vinculos(self, obra_id: int) -> List[VinculoExtraccion]:
        """Todos los vínculos de una obra"""
        return (
            self.session.query(VinculoExtraccion)
            .filter_by(obra_id=obra_id)
            .order_by(VinculoExtraccion.carpeta, VinculoExtraccion.id)
            .all()
        )

    # =====================================================
    # DOCUMENTOS
    # =====================================================

    def registrar_documento(
        self,
        obra_id: int,
        storage_path: str,
        nombre: str,
        mimetype: str = None,
        tamano: int = None,
        carpeta_extraccion: str = None
    ) -> Documento:
        """
        Crea el documento o actualiza el existente con la misma ruta.

        Returns:
            Documento (estado unprocessed)
        """
        documento = self.obtener_documento_por_path(obra_id, storage_path)
        if documento is None:
            documento = Documento(obra_id=obra_id, storage_path=storage_path)
            self.session.add(documento)

        documento.nombre = nombre
        documento.mimetype = mimetype
        documento.tamano = tamano
        documento.carpeta_extraccion = carpeta_extraccion
        documento.estado = EstadoOCR.UNPROCESSED
        documento.error = None

        self.session.commit()
        logger.info(f"✓ Documento registrado: {storage_path}")
        return documento

    def obtener_documento(self, documento_id: int, obra_id: int = None) -> Optional[Documento]:
        """Obtiene un documento por ID"""
        query = self.session.query(Documento).filter_by(id=documento_id)
        if obra_id is not None:
            query = query.filter_by(obra_id=obra_id)
        return query.first()

    def obtener_documento_por_path(self, obra_id: int, storage_path: str) -> Optional[Documento]:
        """Obtiene un documento por su ruta de almacenamiento"""
        return (
            self.session.query(Documento)
            .filter_by(obra_id=obra_id, storage_path=storage_path)
            .first()
        )

    def listar_documentos(self, obra_id: int) -> List[Documento]:
        """Documentos de una obra ordenados por ruta"""
        return (
            self.session.query(Documento)
            .filter_by(obra_id=obra_id)
            .order_by(Documento.storage_path)
            .all()
        )

    # =====================================================
    # PROCESAMIENTOS
    # =====================================================

    def registrar_procesamiento(
        self,
        documento_id: int,
        tabla_id: int,
        estado: EstadoOCR,
        filas_extraidas: int = 0,
        error: str = None,
        duracion_ms: int = None
    ) -> ProcesamientoDocumento:
        """
        Crea o actualiza el procesamiento (documento, tabla) sin commit.

        Cada nuevo intento sobre un registro existente incrementa reintentos.
        """
        procesamiento = (
            self.session.query(ProcesamientoDocumento)
            .filter_by(documento_id=documento_id, tabla_id=tabla_id)
            .first()
        )
        if procesamiento is None:
            procesamiento = ProcesamientoDocumento(
                documento_id=documento_id,
                tabla_id=tabla_id,
                reintentos=0
            )
            self.session.add(procesamiento)
        else:
            procesamiento.reintentos = (procesamiento.reintentos or 0) + 1

        procesamiento.estado = estado
        procesamiento.filas_extraidas = filas_extraidas
        procesamiento.error = error
        procesamiento.duracion_ms = duracion_ms
        procesamiento.procesado_en = datetime.utcnow()
        self.session.flush()
        return procesamiento

    def listar_procesamientos(self, obra_id: int) -> List[ProcesamientoDocumento]:
        """Procesamientos de todos los documentos de una obra"""
        return (
            self.session.query(ProcesamientoDocumento)
            .join(Documento, ProcesamientoDocumento.documento_id == Documento.id)
            .filter(Documento.obra_id == obra_id)
            .all()
        )
