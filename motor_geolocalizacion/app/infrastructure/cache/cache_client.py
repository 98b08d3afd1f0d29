"""
cache_client.py
---------------
Interfaz de caché clave/valor que consumen los servicios del motor.

Implementaciones:
  - RedisCache   (redis_client.py)  → producción, compartida entre procesos
  - MemoryCache  (memory_cache.py)  → desarrollo y tests

Los backends lanzan CacheUnavailableException cuando no pueden operar.
remember() es el único lugar donde ese fallo se convierte en
"calcular directo sin caché": ningún servicio repite ese try/except.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from app.core.exceptions import CacheUnavailableException

logger = logging.getLogger(__name__)


class KeyValueCache(ABC):

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int) -> None:
        ...

    @abstractmethod
    async def increment(self, key: str, ttl: Optional[int] = None) -> int:
        """
        Incrementa un contador de forma atómica y retorna el nuevo valor.
        Si ttl viene, la expiración se fija solo cuando el contador nace,
        así la ventana no se extiende con cada incremento.
        """

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> None:
        ...

    @abstractmethod
    async def forget(self, *keys: str) -> None:
        ...

    async def remember(
        self,
        key: str,
        ttl: int,
        compute: Callable[[], Awaitable[Any]],
        should_cache: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        """
        Lee `key`; si no está, ejecuta `compute`, guarda el resultado
        (JSON) y lo retorna.

        Si la caché no está disponible, el valor se calcula directo.
        should_cache permite no persistir resultados vacíos o degradados.
        """
        try:
            raw = await self.get(key)
        except CacheUnavailableException as e:
            logger.warning(f"[Cache] Caché no disponible, cálculo directo  key={key}  error={e.message}")
            return await compute()

        if raw is not None:
            try:
                return json.loads(raw)
            except ValueError:
                logger.warning(f"[Cache] Valor corrupto descartado  key={key}")

        value = await compute()

        if should_cache is None or should_cache(value):
            try:
                await self.set(key, json.dumps(value), ttl)
            except CacheUnavailableException as e:
                logger.warning(f"[Cache] No se pudo guardar  key={key}  error={e.message}")

        return value
