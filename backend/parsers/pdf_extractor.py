"""
Extractor de tablas desde PDFs digitales.
Utiliza pdfplumber para extraer las tablas de cada página y las entrega como
hojas para el mismo mapeo de columnas que las planillas.

Los PDFs escaneados (sin capa de texto) no producen tablas: esos documentos
necesitan el extractor externo.
"""

import io
import logging
from pathlib import Path
from typing import List, Dict, Optional, Union

import pdfplumber

from parsers.planilla_parser import HojaPlanilla, hoja_desde_filas

logger = logging.getLogger(__name__)


class PDFExtractor:
    """Extrae tablas y texto desde PDFs digitales"""

    def __init__(self, origen: Union[str, Path, bytes], nombre: Optional[str] = None):
        """
        Args:
            origen: Ruta al archivo PDF o su contenido en bytes
            nombre: Nombre visible para logs
        """
        if isinstance(origen, (bytes, bytearray)):
            self._contenido = bytes(origen)
            self.pdf_path = None
        else:
            self.pdf_path = Path(origen)
            if not self.pdf_path.exists():
                raise FileNotFoundError(f"PDF no encontrado: {origen}")
            self._contenido = None

        self.nombre = nombre or (self.pdf_path.name if self.pdf_path else 'documento.pdf')

    def _abrir(self):
        if self._contenido is not None:
            return pdfplumber.open(io.BytesIO(self._contenido))
        return pdfplumber.open(self.pdf_path)

    def extraer_tablas(self) -> List[Dict]:
        """
        Extrae tablas detectadas en el PDF.

        Una tabla que continúa en la página siguiente con el mismo encabezado
        se une a la anterior sin repetir el encabezado.

        Returns:
            lista de tablas {'pagina', 'tabla_num', 'data'} (data es lista de listas)
        """
        tablas: List[Dict] = []

        with self._abrir() as pdf:
            for i, page in enumerate(pdf.pages, start=1):
                for j, tabla in enumerate(page.extract_tables() or []):
                    filas = [fila for fila in tabla if fila and any(c not in (None, '') for c in fila)]
                    if not filas:
                        continue

                    anterior = tablas[-1] if tablas else None
                    if anterior and anterior['pagina'] == i - 1 and anterior['data'][0] == filas[0]:
                        anterior['data'].extend(filas[1:])
                        anterior['pagina'] = i
                        logger.debug(f"  Tabla continuada en página {i}")
                        continue

                    tablas.append({
                        'pagina': i,
                        'tabla_num': j + 1,
                        'data': filas
                    })

        logger.info(f"✓ Extraídas {len(tablas)} tablas de {self.nombre}")
        return tablas

    def extraer_texto(self) -> str:
        """Texto plano de todas las páginas"""
        with self._abrir() as pdf:
            paginas = [page.extract_text() or '' for page in pdf.pages]
        return '\n'.join(paginas)

    def extraer_hojas(self) -> List[HojaPlanilla]:
        """
        Tablas del PDF como hojas con encabezados detectados.

        Returns:
            Hojas con al menos una fila de datos
        """
        hojas = []
        for tabla in self.extraer_tablas():
            limpia = [[(c or '').replace('\n', ' ').strip() if isinstance(c, str) else c for c in fila]
                      for fila in tabla['data']]
            hoja = hoja_desde_filas(f"pagina {tabla['pagina']} tabla {tabla['tabla_num']}", limpia)
            if hoja.encabezados and hoja.filas_datos:
                hojas.append(hoja)
        return hojas
