"""
Importacion Service - Extracción de documentos hacia una o varias tablas
"""

from sqlalchemy.orm import Session
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Tuple
import sys
import time
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent))

from database.manager import DatabaseManager
from models import Documento, Tabla, EstadoOCR, OrigenFila, DataInputMethod
from parsers.planilla_parser import (
    HojaPlanilla,
    EXTENSIONES_EXCEL,
    EXTENSIONES_CSV,
    leer_planilla,
    mapear_hojas,
)
from parsers.pdf_extractor import PDFExtractor
from services.documentos_service import construir_storage_path, guardar_archivo, leer_archivo
from services.errors import ExtractorError
from services.esquema_service import coercionar_datos_fila
from services.extractor_service import ExtractorService, get_extractor_service
from services.vinculos_service import ResolutorVinculos
from utils.logger import setup_logger
from utils.normalizer import Normalizer, META_DOC_PATH, META_DOC_NOMBRE, META_DOC_BUCKET

logger = setup_logger(__name__, log_file="importaciones.log")

BUCKET_LOCAL = "local"


@dataclass
class ResultadoImportacion:
    """Resultado de importar un documento en una tabla"""
    tabla_id: int
    tabla_nombre: str
    insertados: Optional[int] = None
    reemplazados: int = 0
    error: Optional[str] = None
    preview: Optional[Dict[str, Any]] = None
    duracion_ms: int = 0

    @property
    def exito(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        resultado = {
            'tablaId': self.tabla_id,
            'tablaNombre': self.tabla_nombre,
            'ok': self.exito,
            'duracionMs': self.duracion_ms,
        }
        if self.error is not None:
            resultado['error'] = self.error
        if self.insertados is not None:
            resultado['inserted'] = self.insertados
            resultado['replaced'] = self.reemplazados
        if self.preview is not None:
            resultado['preview'] = self.preview
        return resultado


@dataclass
class _Fuente:
    """Contenido del documento preparado una sola vez para todas las tablas"""
    tipo: str                                   # planilla | pdf | imagen
    contenido: bytes
    hojas: Optional[List[HojaPlanilla]] = None
    error: Optional[str] = None


def _tipo_documento(nombre: str, mimetype: Optional[str]) -> str:
    nombre = (nombre or '').lower()
    if nombre.endswith(EXTENSIONES_EXCEL + EXTENSIONES_CSV):
        return 'planilla'
    if nombre.endswith('.pdf') or mimetype == 'application/pdf':
        return 'pdf'
    return 'imagen'


class ImportacionService:
    """
    Servicio de importación con fan-out.

    Un documento se extrae en cada tabla vinculada a su carpeta. Cada tabla
    se importa dentro de su propio SAVEPOINT: el fallo de una no deshace las
    demás. Reimportar un documento reemplaza las filas que ese mismo
    documento dejó antes en cada tabla.
    """

    def __init__(self, db: Session, extractor: ExtractorService = None):
        self.db = db
        self.manager = DatabaseManager(db)
        self.extractor = extractor or get_extractor_service()

    # =====================================================
    # SUBIDA
    # =====================================================

    def subir_documento(
        self,
        obra_id: int,
        carpeta: Optional[str],
        nombre_archivo: str,
        contenido: bytes,
        mimetype: str = None,
        carpeta_extraccion: str = None,
        importar: bool = True,
        perfil: str = None
    ) -> Tuple[Documento, List[ResultadoImportacion]]:
        """
        Guarda un documento y, si su carpeta tiene vínculos, lo importa en
        cada tabla vinculada.

        Returns:
            (documento, resultados por tabla)
        """
        storage_path = construir_storage_path(obra_id, carpeta, nombre_archivo)
        guardar_archivo(storage_path, contenido)

        documento = self.manager.registrar_documento(
            obra_id=obra_id,
            storage_path=storage_path,
            nombre=Path(storage_path).name,
            mimetype=mimetype,
            tamano=len(contenido),
            carpeta_extraccion=carpeta_extraccion
        )

        if not importar:
            return documento, []

        resultados = self.importar_documento(obra_id, documento.id, perfil=perfil)
        return documento, resultados

    # =====================================================
    # IMPORTACIÓN
    # =====================================================

    def _tablas_destino(self, documento: Documento, tabla_ids: Optional[List[int]]) -> List[Tabla]:
        if tabla_ids:
            ids = list(dict.fromkeys(tabla_ids))
        else:
            resolutor = ResolutorVinculos.para_obra(self.manager, documento.obra_id)
            ids = list(dict.fromkeys(v.tabla_id for v in resolutor.resolver_para_documento(documento)))

        tablas = []
        for tabla_id in ids:
            tabla = self.manager.obtener_tabla(tabla_id, documento.obra_id)
            if tabla is None:
                raise ValueError(f"La tabla {tabla_id} no pertenece a la obra {documento.obra_id}")
            tablas.append(tabla)
        return tablas

    def importar_documento(
        self,
        obra_id: int,
        documento_id: int,
        tabla_ids: List[int] = None,
        preview: bool = False,
        perfil: str = None
    ) -> Optional[List[ResultadoImportacion]]:
        """
        Extrae un documento en una o varias tablas.

        Args:
            obra_id: ID de la obra
            documento_id: ID del documento
            tabla_ids: Tablas destino; por defecto las vinculadas a su carpeta
            preview: Solo devuelve el mapeo detectado, sin escribir filas
            perfil: Perfil de mapeo de planillas ("certificado")

        Returns:
            Un resultado por tabla, o None si el documento no existe

        Raises:
            ValueError: tabla que no pertenece a la obra
            FileNotFoundError: el archivo del documento no está en el almacenamiento
        """
        documento = self.manager.obtener_documento(documento_id, obra_id)
        if documento is None:
            return None

        tablas = self._tablas_destino(documento, tabla_ids)
        if not tablas:
            logger.info(f"📂 Documento sin tablas vinculadas: {documento.storage_path}")
            return []

        fuente = self._preparar_fuente(documento, leer_archivo(documento.storage_path))

        logger.info(
            f"🚀 Importando '{documento.storage_path}' en {len(tablas)} tablas"
            f"{' (preview)' if preview else ''}"
        )

        if not preview:
            documento.estado = EstadoOCR.PROCESSING
            self.db.commit()

        resultados = [self._importar_en_tabla(documento, tabla, fuente, preview, perfil) for tabla in tablas]

        if not preview:
            exitos = [r for r in resultados if r.exito]
            errores = [f"{r.tabla_nombre}: {r.error}" for r in resultados if not r.exito]
            documento.estado = EstadoOCR.COMPLETED if exitos else EstadoOCR.FAILED
            documento.filas_extraidas = sum(r.insertados or 0 for r in exitos)
            documento.error = '; '.join(errores) or None
            self.db.commit()

            logger.info(
                f"✅ Importación de '{documento.storage_path}': {len(exitos)}/{len(resultados)} tablas, "
                f"{documento.filas_extraidas} filas"
            )

        return resultados

    def _preparar_fuente(self, documento: Documento, contenido: bytes) -> _Fuente:
        tipo = _tipo_documento(documento.nombre, documento.mimetype)
        fuente = _Fuente(tipo=tipo, contenido=contenido)

        try:
            if tipo == 'planilla':
                fuente.hojas = leer_planilla(contenido, documento.nombre)
            elif tipo == 'pdf' and not self.extractor.configurado:
                fuente.hojas = PDFExtractor(contenido, documento.nombre).extraer_hojas()
        except Exception as e:
            logger.error(f"❌ No se pudo leer '{documento.nombre}': {e}")
            fuente.error = f"No se pudo leer el documento: {e}"

        return fuente

    def _extraer_filas(
        self,
        documento: Documento,
        tabla: Tabla,
        fuente: _Fuente,
        perfil: Optional[str]
    ) -> Tuple[List[Dict[str, Any]], OrigenFila, Optional[Dict[str, Any]]]:
        if fuente.error:
            raise ExtractorError(fuente.error)

        if fuente.hojas is not None:
            resultado = mapear_hojas(fuente.hojas, list(tabla.columnas), tabla.nombre, perfil)
            origen = OrigenFila.SPREADSHEET if fuente.tipo == 'planilla' else OrigenFila.OCR
            return resultado.filas, origen, resultado.to_preview()

        filas = self.extractor.extraer(fuente.contenido, documento.nombre, documento.mimetype, tabla)
        claves = set(tabla.field_keys)
        mapeadas = [
            {(k if k in claves else Normalizer.normalizar_field_key(k)): v for k, v in fila.items()}
            for fila in filas
        ]
        return mapeadas, OrigenFila.OCR, {'rowCount': len(mapeadas), 'sampleRows': mapeadas[:20]}

    def _importar_en_tabla(
        self,
        documento: Documento,
        tabla: Tabla,
        fuente: _Fuente,
        preview: bool,
        perfil: Optional[str]
    ) -> ResultadoImportacion:
        inicio = time.monotonic()
        resultado = ResultadoImportacion(tabla_id=tabla.id, tabla_nombre=tabla.nombre)

        def _duracion() -> int:
            return int((time.monotonic() - inicio) * 1000)

        if tabla.data_input_method == DataInputMethod.MANUAL:
            resultado.error = "La tabla solo admite carga manual"
        else:
            try:
                filas, origen, vista_previa = self._extraer_filas(documento, tabla, fuente, perfil)
            except Exception as e:
                logger.error(f"❌ Extracción fallida para tabla '{tabla.nombre}': {e}")
                resultado.error = str(e)

        if resultado.error is not None:
            resultado.duracion_ms = _duracion()
            if not preview:
                self.manager.registrar_procesamiento(
                    documento.id, tabla.id, EstadoOCR.FAILED, error=resultado.error, duracion_ms=resultado.duracion_ms
                )
                self.db.commit()
            return resultado

        if preview:
            resultado.preview = vista_previa
            resultado.duracion_ms = _duracion()
            return resultado

        metadatos = {
            META_DOC_PATH: documento.storage_path,
            META_DOC_NOMBRE: documento.nombre,
            META_DOC_BUCKET: BUCKET_LOCAL,
        }
        columnas = list(tabla.columnas)

        savepoint = self.db.begin_nested()
        try:
            reemplazados = self.manager.eliminar_filas_de_documento(tabla.id, documento.storage_path)
            for fila in filas:
                self.manager.agregar_fila(
                    tabla.id,
                    coercionar_datos_fila(columnas, {**fila, **metadatos}),
                    source=origen
                )
            self.db.flush()
            savepoint.commit()
            resultado.insertados = len(filas)
            resultado.reemplazados = reemplazados
        except Exception as e:
            savepoint.rollback()
            logger.error(f"❌ Error guardando filas en tabla '{tabla.nombre}': {e}", exc_info=True)
            resultado.error = f"Error guardando filas: {e}"

        resultado.duracion_ms = _duracion()
        self.manager.registrar_procesamiento(
            documento.id,
            tabla.id,
            EstadoOCR.COMPLETED if resultado.exito else EstadoOCR.FAILED,
            filas_extraidas=resultado.insertados or 0,
            error=resultado.error,
            duracion_ms=resultado.duracion_ms
        )
        self.db.commit()

        logger.info(
            f"✓ Tabla '{tabla.nombre}': {resultado.insertados or 0} filas insertadas, "
            f"{resultado.reemplazados} reemplazadas"
        )
        return resultado
