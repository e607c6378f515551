"""
Modelo VinculoExtraccion - Asocia una carpeta de documentos con una tabla
"""

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from .base import Base


class VinculoExtraccion(Base):
    """
    Vínculo carpeta → tabla.

    Una misma carpeta puede tener varios vínculos (fan-out): un certificado
    subido a "certificados" se extrae a la vez en "Resumen" e "Items".
    No hay restricción de unicidad por carpeta.
    """
    __tablename__ = 'vinculos_extraccion'
    __table_args__ = (
        Index('idx_vinculo_obra', 'obra_id'),
        Index('idx_vinculo_carpeta', 'obra_id', 'carpeta'),
    )

    id = Column(Integer, primary_key=True)
    obra_id = Column(Integer, ForeignKey('obras.id'), nullable=False)
    tabla_id = Column(Integer, ForeignKey('tablas.id'), nullable=False)

    # Ruta relativa normalizada ("certificados/mensuales")
    carpeta = Column(String(500), nullable=False)
    carpeta_etiqueta = Column(String(200))

    fecha_creacion = Column(DateTime, default=datetime.utcnow)

    tabla = relationship("Tabla", back_populates="vinculos")

    def __repr__(self):
        return f"<VinculoExtraccion(carpeta='{self.carpeta}', tabla_id={self.tabla_id})>"
