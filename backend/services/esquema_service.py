"""
Esquema Service - Registro de tablas y columnas tipadas
"""

from sqlalchemy.orm import Session
from typing import List, Optional, Dict, Any
import logging
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent))

from database.manager import DatabaseManager
from models import Tabla, TablaColumna, DataInputMethod
from parsers.formula_parser import compilar_formula, extraer_referencias
from services.errors import SchemaConflict
from utils.normalizer import Normalizer

logger = logging.getLogger(__name__)


def es_metadato(clave: str) -> bool:
    """Las claves con prefijo "__" son metadatos (documento de origen, bucket...)"""
    return isinstance(clave, str) and clave.startswith('__')


def coercionar_datos_fila(
    columnas: List[TablaColumna],
    datos: Dict[str, Any],
    base: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Prepara el JSON de una fila para persistirlo.

    - Columnas normales: valor coercionado a su tipo
    - Columnas con fórmula válida: nunca se guardan
    - Metadatos "__*": se conservan tal cual
    - Claves desconocidas: se ignoran

    Args:
        columnas: Columnas de la tabla
        datos: Valores entrantes {field_key: valor}
        base: JSON actual de la fila (para actualizaciones parciales)

    Returns:
        Nuevo dict de datos
    """
    resultado = dict(base or {})
    datos = datos or {}

    for columna in columnas:
        if compilar_formula(columna.formula) is not None:
            resultado.pop(columna.field_key, None)
            continue
        if columna.field_key in datos:
            resultado[columna.field_key] = Normalizer.coercionar_valor(
                columna.data_type, datos[columna.field_key]
            )

    for clave, valor in datos.items():
        if es_metadato(clave):
            resultado[clave] = valor

    return resultado


class EsquemaService:
    """
    Servicio para crear y evolucionar esquemas de tablas.

    Toda operación es atómica: un conflicto o error deja el esquema y las
    filas como estaban.
    """

    def __init__(self, db: Session):
        self.db = db
        self.manager = DatabaseManager(db)

    # =====================================================
    # VALIDACIÓN
    # =====================================================

    def _preparar_columnas(self, columnas: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Normaliza las definiciones de columnas y valida el conjunto.

        Raises:
            SchemaConflict: field_key duplicado o fórmula sobre otra columna calculada
        """
        preparadas = []
        claves = set()

        for posicion, columna in enumerate(columnas):
            label = (columna.get('label') or '').strip()
            field_key = Normalizer.normalizar_field_key(columna.get('field_key') or label)

            if field_key in claves:
                raise SchemaConflict(f"Clave de campo duplicada: '{field_key}'", field_key=field_key)
            claves.add(field_key)

            config = dict(columna.get('config') or {})
            formula = config.get('formula')
            if isinstance(formula, str) and formula.strip():
                config['formula'] = formula.strip()
            else:
                config.pop('formula', None)

            preparadas.append({
                'id': columna.get('id'),
                'label': label or field_key,
                'field_key': field_key,
                'data_type': Normalizer.asegurar_tipo_dato(columna.get('data_type')),
                'required': bool(columna.get('required', False)),
                'posicion': posicion,
                'config': config,
            })

        calculadas = {c['field_key'] for c in preparadas if c['config'].get('formula')}
        for columna in preparadas:
            formula = columna['config'].get('formula')
            if not formula:
                continue
            for referencia in extraer_referencias(formula):
                if not referencia:
                    continue
                clave = referencia if referencia in claves else Normalizer.normalizar_field_key(referencia)
                if clave in calculadas:
                    raise SchemaConflict(
                        f"La fórmula de '{columna['field_key']}' referencia la columna calculada '{clave}'",
                        field_key=columna['field_key']
                    )

        return preparadas

    # =====================================================
    # TABLAS
    # =====================================================

    def crear_tabla(
        self,
        obra_id: int,
        nombre: str,
        columnas: List[Dict[str, Any]],
        carpeta: str = None,
        carpeta_etiqueta: str = None,
        data_input_method: str = None
    ) -> Tabla:
        """
        Crea una tabla con sus columnas y, si se indica carpeta, su vínculo
        de extracción, todo en una transacción.

        Args:
            obra_id: ID de la obra
            nombre: Nombre de la tabla
            columnas: Definiciones [{label, field_key, data_type, required, config}]
            carpeta: Carpeta vinculada (opcional, se normaliza)
            carpeta_etiqueta: Etiqueta visible de la carpeta
            data_input_method: ocr | manual | both

        Returns:
            Tabla creada

        Raises:
            SchemaConflict: si el esquema es inválido
        """
        preparadas = self._preparar_columnas(columnas)

        try:
            tabla = Tabla(
                obra_id=obra_id,
                nombre=nombre.strip(),
                data_input_method=DataInputMethod.normalizar(data_input_method)
            )
            self.db.add(tabla)
            self.db.flush()

            for definicion in preparadas:
                definicion.pop('id', None)
                tabla.columnas.append(TablaColumna(**definicion))

            ruta = Normalizer.normalizar_ruta_carpeta(carpeta)
            if ruta:
                self.manager.crear_vinculo(obra_id, tabla.id, ruta, carpeta_etiqueta or carpeta)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"✓ Tabla creada: {tabla.id} - {tabla.nombre} ({len(preparadas)} columnas)")
        return tabla

    def obtener_tabla(self, tabla_id: int, obra_id: int = None) -> Optional[Tabla]:
        """Obtiene una tabla con sus columnas"""
        return self.manager.obtener_tabla(tabla_id, obra_id)

    def eliminar_tabla(self, tabla_id: int) -> bool:
        """Elimina una tabla (filas, vínculos y procesamientos en cascada)"""
        return self.manager.eliminar_tabla(tabla_id)

    def actualizar_tabla(
        self,
        tabla_id: int,
        nombre: str = None,
        data_input_method: str = None,
        columnas: List[Dict[str, Any]] = None,
        obra_id: int = None
    ) -> Optional[Tabla]:
        """
        Actualiza metadatos y, si se indican, columnas de una tabla.

        Returns:
            Tabla actualizada o None si no existe
        """
        tabla = self.manager.obtener_tabla(tabla_id, obra_id)
        if not tabla:
            return None

        try:
            if nombre is not None and nombre.strip():
                tabla.nombre = nombre.strip()
            if data_input_method is not None:
                tabla.data_input_method = DataInputMethod.normalizar(data_input_method)
            if columnas is not None:
                self._aplicar_columnas(tabla, columnas)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        return tabla

    def actualizar_columnas(self, tabla_id: int, columnas: List[Dict[str, Any]], obra_id: int = None) -> Optional[Tabla]:
        """
        Evoluciona el esquema de una tabla.

        Las columnas con id conservan su identidad: si cambia su field_key
        el valor de cada fila se mueve a la nueva clave; si cambia su tipo el
        valor se recoerciona. Las columnas sin id se crean. Las columnas
        ausentes se eliminan pero sus valores quedan en las filas.

        Returns:
            Tabla actualizada o None si no existe

        Raises:
            SchemaConflict: esquema inválido
            ValueError: id de columna que no pertenece a la tabla
        """
        return self.actualizar_tabla(tabla_id, columnas=columnas, obra_id=obra_id)

    def _aplicar_columnas(self, tabla: Tabla, columnas: List[Dict[str, Any]]):
        preparadas = self._preparar_columnas(columnas)
        existentes = {c.id: c for c in tabla.columnas}

        renombres: Dict[str, str] = {}
        retipos: Dict[str, str] = {}
        conservadas = set()

        for definicion in preparadas:
            columna_id = definicion.pop('id', None)
            if columna_id is None:
                tabla.columnas.append(TablaColumna(**definicion))
                continue

            try:
                columna = existentes[int(columna_id)]
            except (KeyError, TypeError, ValueError):
                raise ValueError(f"La columna {columna_id} no pertenece a la tabla {tabla.id}")

            if columna.field_key != definicion['field_key']:
                renombres[columna.field_key] = definicion['field_key']
            if columna.data_type != definicion['data_type'] and not definicion['config'].get('formula'):
                retipos[definicion['field_key']] = definicion['data_type']

            for campo, valor in definicion.items():
                setattr(columna, campo, valor)
            conservadas.add(columna.id)

        for columna_id, columna in existentes.items():
            if columna_id not in conservadas:
                tabla.columnas.remove(columna)

        if renombres or retipos:
            migradas = self._migrar_filas(tabla, renombres, retipos)
            logger.info(
                f"🔄 Tabla {tabla.id}: {len(renombres)} renombres, {len(retipos)} cambios de tipo, "
                f"{migradas} filas migradas"
            )

        self.db.flush()

    def _migrar_filas(self, tabla: Tabla, renombres: Dict[str, str], retipos: Dict[str, str]) -> int:
        migradas = 0
        for fila in tabla.filas:
            datos = dict(fila.data or {})

            movidos = {anterior: datos.pop(anterior) for anterior in renombres if anterior in datos}
            for anterior, valor in movidos.items():
                datos[renombres[anterior]] = valor

            for clave, tipo in retipos.items():
                if clave in datos:
                    datos[clave] = Normalizer.coercionar_valor(tipo, datos[clave])

            if datos != fila.data:
                fila.data = datos
                migradas += 1
        return migradas
