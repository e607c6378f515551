"""
Modelos Tabla, TablaColumna y TablaFila - Esquemas dinámicos y sus filas
"""

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, JSON, Enum, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
import uuid
from .base import Base


class DataInputMethod(str, enum.Enum):
    """Cómo se cargan las filas de una tabla"""
    OCR = "ocr"          # Solo extracción de documentos
    MANUAL = "manual"    # Solo carga manual
    BOTH = "both"        # Mixto

    @classmethod
    def normalizar(cls, valor) -> "DataInputMethod":
        """Cualquier valor desconocido se interpreta como mixto"""
        if isinstance(valor, cls):
            return valor
        try:
            return cls(str(valor).lower())
        except ValueError:
            return cls.BOTH


class OrigenFila(str, enum.Enum):
    """Origen de una fila"""
    MANUAL = "manual"
    OCR = "ocr"
    SPREADSHEET = "spreadsheet"


class Tabla(Base):
    """
    Tabla de datos de una obra con columnas tipadas.

    Las filas guardan sus valores en un JSON indexado por field_key; las
    columnas con fórmula nunca se persisten como valor, se recalculan al leer.
    """
    __tablename__ = 'tablas'
    __table_args__ = (
        Index('idx_tabla_obra', 'obra_id'),
    )

    id = Column(Integer, primary_key=True)
    obra_id = Column(Integer, ForeignKey('obras.id'), nullable=False)
    nombre = Column(String(200), nullable=False)
    data_input_method = Column(Enum(DataInputMethod), default=DataInputMethod.BOTH, nullable=False)

    fecha_creacion = Column(DateTime, default=datetime.utcnow)
    fecha_actualizacion = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relaciones
    obra = relationship("Obra", back_populates="tablas")
    columnas = relationship("TablaColumna",
                            back_populates="tabla",
                            cascade="all, delete-orphan",
                            order_by="TablaColumna.posicion")
    filas = relationship("TablaFila", back_populates="tabla", cascade="all, delete-orphan")
    vinculos = relationship("VinculoExtraccion", back_populates="tabla", cascade="all, delete-orphan")
    procesamientos = relationship("ProcesamientoDocumento", back_populates="tabla", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Tabla(id={self.id}, nombre='{self.nombre}', columnas={len(self.columnas)})>"

    @property
    def field_keys(self):
        return [c.field_key for c in self.columnas]


class TablaColumna(Base):
    """
    Columna tipada de una tabla.

    config puede contener:
    - formula: expresión sobre columnas hermanas, p.ej. "[monto_total]-[monto_certificado]"
    - conditional: {warnBelow, warnAbove, criticalBelow, criticalAbove}
    - excelKeywords: palabras clave extra para mapear encabezados de planillas
    """
    __tablename__ = 'tabla_columnas'
    __table_args__ = (
        Index('idx_columna_tabla', 'tabla_id'),
    )

    id = Column(Integer, primary_key=True)
    tabla_id = Column(Integer, ForeignKey('tablas.id'), nullable=False)
    label = Column(String(200), nullable=False)
    field_key = Column(String(100), nullable=False)
    data_type = Column(String(20), nullable=False, default='text')
    required = Column(Boolean, default=False)
    posicion = Column(Integer, nullable=False, default=0)
    config = Column(JSON, default=dict)

    tabla = relationship("Tabla", back_populates="columnas")

    def __repr__(self):
        return f"<TablaColumna(field_key='{self.field_key}', tipo={self.data_type})>"

    @property
    def formula(self) -> str:
        """Texto de fórmula recortado o cadena vacía"""
        valor = (self.config or {}).get('formula')
        return valor.strip() if isinstance(valor, str) else ''

    @property
    def es_calculada(self) -> bool:
        return bool(self.formula)


class TablaFila(Base):
    """
    Fila de una tabla. data = {field_key: valor, "__docPath": ..., "__docFileName": ...}
    """
    __tablename__ = 'tabla_filas'
    __table_args__ = (
        Index('idx_fila_tabla', 'tabla_id'),
        Index('idx_fila_tabla_creacion', 'tabla_id', 'fecha_creacion'),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tabla_id = Column(Integer, ForeignKey('tablas.id'), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    source = Column(Enum(OrigenFila), default=OrigenFila.MANUAL, nullable=False)

    fecha_creacion = Column(DateTime, default=datetime.utcnow)
    fecha_actualizacion = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tabla = relationship("Tabla", back_populates="filas")

    def __repr__(self):
        return f"<TablaFila(id={self.id}, tabla_id={self.tabla_id})>"
