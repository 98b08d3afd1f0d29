"""
memory_cache.py
---------------
Caché en memoria del proceso con expiración por clave.

Se usa cuando no hay REDIS_URL configurado y en los tests. El reloj
es inyectable para poder simular la expiración de TTL sin esperar.
Las operaciones no hacen await entre leer y escribir, por lo que son
atómicas dentro del event loop.
"""

import time
from typing import Callable, Optional

from app.infrastructure.cache.cache_client import KeyValueCache


class MemoryCache(KeyValueCache):

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, Optional[float]]] = {}

    def _alive(self, key: str) -> Optional[tuple[str, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        entry = self._alive(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._data[key] = (value, self._clock() + ttl)

    async def increment(self, key: str, ttl: Optional[int] = None) -> int:
        entry = self._alive(key)
        if entry is None:
            expires_at = self._clock() + ttl if ttl else None
            self._data[key] = ("1", expires_at)
            return 1
        value, expires_at = entry
        new_value = int(value) + 1
        self._data[key] = (str(new_value), expires_at)
        return new_value

    async def expire(self, key: str, ttl: int) -> None:
        entry = self._alive(key)
        if entry is not None:
            self._data[key] = (entry[0], self._clock() + ttl)

    async def forget(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)
