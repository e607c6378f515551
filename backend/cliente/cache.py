"""
Caché del cliente
=================

Cachés con TTL independientes para URLs firmadas, blobs descargados,
árboles de documentos y vínculos de extracción.

- Las recargas concurrentes de una misma clave comparten una única petición.
- Cada clave lleva una versión de escritura: una recarga iniciada antes de
  una escritura nunca pisa el valor escrito.
- Tras un 429 del backend no se recarga nada durante el cooldown; se sirve
  el último valor bueno (o el valor por defecto).
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from config import settings
from services.errors import BackendUnavailable, RateLimited

logger = logging.getLogger(__name__)

CACHE_URLS = 'urls'
CACHE_BLOBS = 'blobs'
CACHE_ARBOLES = 'arboles'
CACHE_VINCULOS = 'vinculos'

Reloj = Callable[[], float]


@dataclass
class _Entrada:
    valor: Any
    expira_en: float


def liberar_archivo(ruta: Any):
    """Libera un blob local (equivalente a revocar su URL)"""
    try:
        Path(ruta).unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"No se pudo liberar blob {ruta}: {e}")


class CacheTTL:
    """
    Caché clave → valor con caducidad.

    Las entradas caducadas se conservan como último valor bueno, salvo que
    la caché tenga `al_liberar`: entonces se liberan y se borran al caducar
    o al ser reemplazadas.
    """

    def __init__(
        self,
        nombre: str,
        ttl: float,
        reloj: Reloj = time.monotonic,
        al_liberar: Callable[[Any], None] = None
    ):
        self.nombre = nombre
        self.ttl = ttl
        self.reloj = reloj
        self.al_liberar = al_liberar
        self._entradas: Dict[str, _Entrada] = {}
        self._versiones: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entradas)

    def __contains__(self, clave: str) -> bool:
        return self.obtener(clave) is not None

    def version(self, clave: str) -> int:
        return self._versiones.get(clave, 0)

    def obtener(self, clave: str) -> Optional[Any]:
        """Valor vigente o None"""
        entrada = self._entradas.get(clave)
        if entrada is None:
            return None
        if entrada.expira_en > self.reloj():
            return entrada.valor
        if self.al_liberar is not None:
            self._borrar(clave)
        return None

    def obtener_obsoleto(self, clave: str, por_defecto: Any = None) -> Any:
        """Último valor guardado aunque haya caducado"""
        entrada = self._entradas.get(clave)
        return entrada.valor if entrada is not None else por_defecto

    def guardar(self, clave: str, valor: Any, escritura: bool = False):
        """
        Args:
            clave: Clave
            valor: Valor a guardar
            escritura: True si es una escritura (incrementa la versión)
        """
        anterior = self._entradas.get(clave)
        if anterior is not None and self.al_liberar is not None and anterior.valor != valor:
            self.al_liberar(anterior.valor)
        self._entradas[clave] = _Entrada(valor, self.reloj() + self.ttl)
        if escritura:
            self._versiones[clave] = self.version(clave) + 1

    def eliminar(self, clave: str):
        self._borrar(clave)
        self._versiones[clave] = self.version(clave) + 1

    def _borrar(self, clave: str):
        entrada = self._entradas.pop(clave, None)
        if entrada is not None and self.al_liberar is not None:
            self.al_liberar(entrada.valor)

    def limpiar(self):
        for clave in list(self._entradas):
            self._borrar(clave)
        self._versiones.clear()


class CacheService:
    """
    Conjunto de cachés del cliente con ciclo de vida explícito.

    Uso:
        cache = CacheService()
        cache.init(obra_id)
        arbol = await cache.obtener_o_cargar(CACHE_ARBOLES, str(obra_id), cargar_arbol, por_defecto=None)
        ...
        cache.dispose()
    """

    def __init__(self, reloj: Reloj = time.monotonic, cooldown: float = None):
        self.reloj = reloj
        self.cooldown = cooldown if cooldown is not None else settings.CACHE_RATE_LIMIT_COOLDOWN
        self.ambito: Optional[str] = None
        self.caches: Dict[str, CacheTTL] = {}
        self._en_vuelo: Dict[Tuple[str, str], asyncio.Future] = {}
        self._cooldown_hasta = 0.0

    # =====================================================
    # CICLO DE VIDA
    # =====================================================

    def init(self, ambito: Any) -> 'CacheService':
        """
        Activa la caché para un ámbito (obra). Volver a llamar con el mismo
        ámbito conserva las entradas.
        """
        ambito = str(ambito)
        if not self.caches:
            self.caches = {
                CACHE_URLS: CacheTTL(CACHE_URLS, settings.CACHE_SIGNED_URL_TTL, self.reloj),
                CACHE_BLOBS: CacheTTL(CACHE_BLOBS, settings.CACHE_BLOB_TTL, self.reloj, al_liberar=liberar_archivo),
                CACHE_ARBOLES: CacheTTL(CACHE_ARBOLES, settings.CACHE_FILE_TREE_TTL, self.reloj),
                CACHE_VINCULOS: CacheTTL(CACHE_VINCULOS, settings.CACHE_LINKS_TTL, self.reloj),
            }
        if self.ambito != ambito:
            logger.debug(f"🗂️ Caché activa para ámbito {ambito}")
        self.ambito = ambito
        return self

    def dispose(self):
        """Libera blobs y vacía todas las cachés"""
        for cache in self.caches.values():
            cache.limpiar()
        self.caches = {}
        self._en_vuelo.clear()
        self._cooldown_hasta = 0.0
        self.ambito = None

    @property
    def activo(self) -> bool:
        return bool(self.caches)

    def cache(self, nombre: str) -> CacheTTL:
        if not self.caches:
            raise RuntimeError("CacheService no inicializado: llamar a init() antes de usarlo")
        return self.caches[nombre]

    # =====================================================
    # LECTURA / ESCRITURA
    # =====================================================

    @property
    def en_cooldown(self) -> bool:
        return self.reloj() < self._cooldown_hasta

    def obtener(self, nombre: str, clave: str) -> Optional[Any]:
        return self.cache(nombre).obtener(clave)

    def escribir(self, nombre: str, clave: str, valor: Any):
        """Escritura local: gana sobre cualquier recarga en curso"""
        self.cache(nombre).guardar(clave, valor, escritura=True)
        self._en_vuelo.pop((nombre, clave), None)

    def invalidar(self, nombre: str, clave: str):
        """Borra la entrada; la siguiente lectura vuelve al backend"""
        self.cache(nombre).eliminar(clave)
        self._en_vuelo.pop((nombre, clave), None)

    def invalidar_ambito(self, obra_id: Any):
        """Borra árbol y vínculos de una obra tras una escritura en ella"""
        clave = str(obra_id)
        self.invalidar(CACHE_ARBOLES, clave)
        self.invalidar(CACHE_VINCULOS, clave)
        logger.debug(f"🧹 Caché invalidada para obra {clave}")

    async def obtener_o_cargar(
        self,
        nombre: str,
        clave: str,
        cargador: Callable[[], Awaitable[Any]],
        por_defecto: Any = None,
        forzar: bool = False
    ) -> Any:
        """
        Devuelve el valor vigente o lo recarga con `cargador`.

        Args:
            nombre: Caché (CACHE_URLS, CACHE_BLOBS, ...)
            clave: Clave dentro de la caché
            cargador: Corrutina que obtiene el valor del backend
            por_defecto: Valor si no hay nada que servir
            forzar: Ignora el valor vigente (prefetch / refresco manual)

        Returns:
            Valor vigente, recargado, obsoleto o por defecto. Nunca propaga
            BackendUnavailable ni RateLimited.
        """
        cache = self.cache(nombre)

        if not forzar:
            valor = cache.obtener(clave)
            if valor is not None:
                return valor

        if self.en_cooldown:
            logger.debug(f"⏸️ Cooldown activo, sirviendo {nombre}:{clave} desde caché")
            return cache.obtener_obsoleto(clave, por_defecto)

        llave = (nombre, clave)
        tarea = self._en_vuelo.get(llave)
        if tarea is None:
            tarea = asyncio.ensure_future(
                self._recargar(cache, clave, cargador, por_defecto, cache.version(clave))
            )
            self._en_vuelo[llave] = tarea
            tarea.add_done_callback(lambda t: self._terminar(llave, t))

        return await asyncio.shield(tarea)

    def _terminar(self, llave: Tuple[str, str], tarea: asyncio.Future):
        if self._en_vuelo.get(llave) is tarea:
            del self._en_vuelo[llave]

    async def _recargar(
        self,
        cache: CacheTTL,
        clave: str,
        cargador: Callable[[], Awaitable[Any]],
        por_defecto: Any,
        version: int
    ) -> Any:
        try:
            valor = await cargador()
        except RateLimited as e:
            espera = e.retry_after if e.retry_after is not None else self.cooldown
            self._cooldown_hasta = self.reloj() + espera
            logger.warning(f"⚠️ Backend limitado, sin recargas durante {espera:.0f}s")
            return cache.obtener_obsoleto(clave, por_defecto)
        except BackendUnavailable as e:
            logger.warning(f"⚠️ Backend no disponible ({cache.nombre}:{clave}): {e}")
            return cache.obtener_obsoleto(clave, por_defecto)

        if self.caches.get(cache.nombre) is not cache:
            # dispose() durante la carga: nadie más va a liberar este valor
            logger.debug(f"Recarga terminada tras dispose: {cache.nombre}:{clave}")
            if valor is not None and cache.al_liberar is not None:
                cache.al_liberar(valor)
            return por_defecto

        if cache.version(clave) != version:
            logger.debug(f"Recarga descartada por escritura posterior: {cache.nombre}:{clave}")
            if valor is not None and cache.al_liberar is not None and valor != cache.obtener_obsoleto(clave):
                cache.al_liberar(valor)
            return cache.obtener_obsoleto(clave, por_defecto)

        if valor is None:
            return por_defecto

        cache.guardar(clave, valor)
        return valor
