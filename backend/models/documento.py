"""
Modelos Documento y ProcesamientoDocumento - Archivos fuente y su extracción
"""

from sqlalchemy import Column, Integer, String, ForeignKey, Text, DateTime, Index, UniqueConstraint, Enum
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from .base import Base


class EstadoOCR(str, enum.Enum):
    """Estado de procesamiento de un documento"""
    UNPROCESSED = "unprocessed"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Documento(Base):
    """
    Documento fuente subido a una carpeta de la obra.

    La relación fila → documento es por igualdad de ruta (data["__docPath"]),
    no por clave foránea: renombrar o mover el documento no rompe las filas
    ya extraídas hasta la siguiente extracción.
    """
    __tablename__ = 'documentos'
    __table_args__ = (
        Index('idx_documento_obra', 'obra_id'),
        UniqueConstraint('obra_id', 'storage_path', name='uq_documento_obra_path'),
    )

    id = Column(Integer, primary_key=True)
    obra_id = Column(Integer, ForeignKey('obras.id'), nullable=False)

    # "<obra_id>/<carpeta...>/<archivo>"
    storage_path = Column(String(1000), nullable=False)
    nombre = Column(String(300), nullable=False)
    mimetype = Column(String(100))
    tamano = Column(Integer)

    # Carpeta de extracción explícita (tiene prioridad sobre la ruta)
    carpeta_extraccion = Column(String(500))

    estado = Column(Enum(EstadoOCR), default=EstadoOCR.UNPROCESSED, nullable=False)
    filas_extraidas = Column(Integer, default=0)
    error = Column(Text)

    fecha_creacion = Column(DateTime, default=datetime.utcnow)
    fecha_actualizacion = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    obra = relationship("Obra", back_populates="documentos")
    procesamientos = relationship("ProcesamientoDocumento", back_populates="documento", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Documento(id={self.id}, path='{self.storage_path}', estado={self.estado})>"


class ProcesamientoDocumento(Base):
    """
    Resultado de extraer un documento en una tabla concreta.

    Un documento en una carpeta con N vínculos tiene N procesamientos
    independientes; el fallo de uno no afecta a los demás.
    """
    __tablename__ = 'procesamientos_documento'
    __table_args__ = (
        UniqueConstraint('tabla_id', 'documento_id', name='uq_procesamiento_tabla_documento'),
    )

    id = Column(Integer, primary_key=True)
    documento_id = Column(Integer, ForeignKey('documentos.id'), nullable=False)
    tabla_id = Column(Integer, ForeignKey('tablas.id'), nullable=False)

    estado = Column(Enum(EstadoOCR), default=EstadoOCR.PENDING, nullable=False)
    filas_extraidas = Column(Integer, default=0)
    error = Column(Text)
    duracion_ms = Column(Integer)
    reintentos = Column(Integer, default=0)
    procesado_en = Column(DateTime)

    documento = relationship("Documento", back_populates="procesamientos")
    tabla = relationship("Tabla", back_populates="procesamientos")

    def __repr__(self):
        return f"<ProcesamientoDocumento(documento_id={self.documento_id}, tabla_id={self.tabla_id}, estado={self.estado})>"
