"""
Resolución de vínculos de extracción carpeta → tablas.

Una carpeta puede alimentar varias tablas a la vez (fan-out), así que toda
resolución devuelve una lista; una lista vacía significa "sin esquema
asociado" y no es un error.

Orden de búsqueda para carpetas:
1. Ruta relativa normalizada exacta ("certificados/mensuales")
2. Nombre aplanado ("certificados-mensuales"), para vínculos registrados
   sin jerarquía
3. Ancestros: se recorta el último segmento y se repiten 1 y 2

Los documentos usan su etiqueta de carpeta explícita si la tienen, o la
carpeta derivada de su ruta, con los pasos 1 y 2 solamente.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from models import VinculoExtraccion, Documento
from utils.normalizer import Normalizer

logger = logging.getLogger(__name__)


def carpeta_de_storage_path(storage_path: Optional[str]) -> str:
    """
    Carpeta contenedora de un documento: todos los segmentos salvo la raíz
    de la obra y el nombre del archivo.

    Ejemplos:
        "12/certificados/mensuales/cert-03.pdf" -> "certificados/mensuales"
        "12/cert-03.pdf" -> ""
    """
    if not storage_path:
        return ''
    segmentos = [s for s in str(storage_path).replace('\\', '/').split('/') if s]
    if len(segmentos) <= 2:
        return ''
    return '/'.join(segmentos[1:-1])


class ResolutorVinculos:
    """
    Índice de vínculos de una obra con búsqueda por capas.

    Se construye una vez con todos los vínculos y se consulta en memoria.
    """

    def __init__(self, vinculos: Iterable[VinculoExtraccion]):
        self._por_ruta: Dict[str, List[VinculoExtraccion]] = defaultdict(list)
        self._por_nombre: Dict[str, List[VinculoExtraccion]] = defaultdict(list)

        for vinculo in vinculos:
            ruta = Normalizer.normalizar_ruta_carpeta(vinculo.carpeta)
            if not ruta:
                continue
            self._por_ruta[ruta].append(vinculo)
            self._por_nombre[Normalizer.normalizar_carpeta(ruta)].append(vinculo)

    @classmethod
    def para_obra(cls, manager, obra_id: int) -> "ResolutorVinculos":
        """Resolutor con los vínculos actuales de una obra"""
        return cls(manager.listar_vinculos(obra_id))

    def __len__(self):
        return sum(len(v) for v in self._por_ruta.values())

    def _buscar(self, ruta: str) -> List[VinculoExtraccion]:
        exactos = self._por_ruta.get(ruta)
        if exactos:
            return list(exactos)

        aplanados = self._por_nombre.get(Normalizer.normalizar_carpeta(ruta))
        if aplanados:
            return list(aplanados)

        return []

    def resolver_para_carpeta(self, ruta: Optional[str]) -> List[VinculoExtraccion]:
        """
        Vínculos que aplican a una carpeta.

        Args:
            ruta: Ruta relativa de la carpeta (sin normalizar)

        Returns:
            Lista de vínculos (vacía si no hay ninguno)
        """
        ruta_normalizada = Normalizer.normalizar_ruta_carpeta(ruta)
        segmentos = ruta_normalizada.split('/') if ruta_normalizada else []

        while segmentos:
            candidatos = self._buscar('/'.join(segmentos))
            if candidatos:
                return candidatos
            segmentos.pop()

        return []

    def resolver_para_documento(self, documento: Documento) -> List[VinculoExtraccion]:
        """
        Vínculos que aplican a un documento.

        La etiqueta carpeta_extraccion tiene prioridad sobre la carpeta
        derivada de storage_path. Sin recorrido de ancestros.

        Returns:
            Lista de vínculos (vacía si no hay ninguno)
        """
        etiqueta = (documento.carpeta_extraccion or '').strip()
        carpeta = etiqueta or carpeta_de_storage_path(documento.storage_path)

        ruta = Normalizer.normalizar_ruta_carpeta(carpeta)
        if not ruta:
            return []

        vinculos = self._buscar(ruta)
        if not vinculos:
            logger.debug(f"Documento sin vínculos de extracción: {documento.storage_path}")
        return vinculos
