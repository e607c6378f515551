"""
Modelo Obra - Ámbito propietario de tablas, documentos y vínculos
"""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime
from .base import Base


class Obra(Base):
    """
    Obra de construcción (contenedor principal).

    Una obra contiene:
    - Tablas de datos (esquemas dinámicos + filas)
    - Vínculos carpeta → tabla para extracción
    - Documentos subidos
    """
    __tablename__ = 'obras'

    id = Column(Integer, primary_key=True)
    nombre = Column(String(200), nullable=False)

    # Ancla "YYYY-MM" para convertir "Mes N" de la curva plan en meses absolutos
    curve_start_period = Column(String(7))

    fecha_creacion = Column(DateTime, default=datetime.utcnow)
    fecha_actualizacion = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relaciones
    tablas = relationship("Tabla", back_populates="obra", cascade="all, delete-orphan")
    documentos = relationship("Documento", back_populates="obra", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Obra(id={self.id}, nombre='{self.nombre}')>"
