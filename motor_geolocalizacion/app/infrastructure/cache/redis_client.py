"""
redis_client.py
---------------
Cliente Redis del Motor de Geolocalización.

Provee:
  - RedisManager → ciclo de vida del pool (connect / disconnect / ping)
  - RedisCache   → implementación de KeyValueCache sobre ese pool

Keys que usa el motor:
  ip_geo:{ip}                  → consenso del ensemble (TTL 1h)
  rdap:{ip}                    → resultado RDAP (TTL 24h)
  circuit:{name}:failures      → contador de fallos del circuit breaker
  circuit:{name}:open_until    → timestamp hasta el que el circuito está abierto

Cualquier error de Redis se traduce a CacheUnavailableException para
que KeyValueCache.remember() haga el cálculo directo.
"""

import asyncio
import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import BusyLoadingError, ConnectionError, RedisError, TimeoutError

from app.core.exceptions import CacheUnavailableException
from app.infrastructure.cache.cache_client import KeyValueCache

logger = logging.getLogger(__name__)


class RedisManager:
    """
    Gestor del pool Redis con health check.

    Timeouts cortos a propósito: el motor completo trabaja con un
    presupuesto de ~700ms (p95), una caché lenta es peor que ninguna.
      socket_timeout=0.3         → máx 300ms por operación
      socket_connect_timeout=1.0 → máx 1s para conectar
    """

    def __init__(self, url: Optional[str] = None):
        self.url = url
        self.client: redis.Redis | None = None
        self._connected: bool = False

    @property
    def is_connected(self) -> bool:
        return self._connected and self.client is not None

    async def connect(self) -> None:
        """
        Inicializa el pool y verifica que Redis responda.
        Lanza ConnectionError si Redis no está disponible.
        """
        logger.info(f"[Redis] Conectando a {self.url} ...")

        retry = Retry(
            backoff          = ExponentialBackoff(cap=0.2, base=0.05),
            retries          = 2,
            supported_errors = (ConnectionError, TimeoutError, BusyLoadingError),
        )

        self.client = redis.Redis.from_url(
            self.url,
            max_connections        = 100,
            socket_timeout         = 0.3,
            socket_connect_timeout = 1.0,
            socket_keepalive       = True,
            health_check_interval  = 30,
            retry                  = retry,
            retry_on_timeout       = True,
            # Todo lo que guarda el motor es JSON en texto
            decode_responses       = True,
        )

        await self._health_check(raise_on_fail=True)
        self._connected = True
        logger.info("[Redis] Conexión establecida y verificada")

    async def disconnect(self) -> None:
        if self.client:
            try:
                await self.client.aclose()
                self._connected = False
                logger.info("[Redis] Conexiones cerradas")
            except RedisError as e:
                logger.error(f"[Redis] Error al cerrar conexiones: {e}")

    async def _health_check(self, raise_on_fail: bool = False) -> bool:
        try:
            response = await asyncio.wait_for(self.client.ping(), timeout=2.0)
            if response:
                return True
            raise ConnectionError("Redis PING retornó False")

        except asyncio.TimeoutError:
            msg = "[Redis] Health check timeout (2s)"
            logger.error(msg)
            if raise_on_fail:
                raise ConnectionError(msg)
            return False

        except (RedisError, OSError) as e:
            logger.error(f"[Redis] Health check falló: {e}")
            if raise_on_fail:
                raise
            return False

    async def ping(self) -> bool:
        """Health check público para /health."""
        if not self.client:
            return False
        return await self._health_check(raise_on_fail=False)


class RedisCache(KeyValueCache):
    """KeyValueCache respaldada por un RedisManager."""

    def __init__(self, manager: RedisManager):
        self.manager = manager

    def _client(self) -> redis.Redis:
        if self.manager.client is None:
            raise CacheUnavailableException("Redis no inicializado")
        return self.manager.client

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client().get(key)
        except (RedisError, OSError) as e:
            raise CacheUnavailableException(f"GET {key}: {e}") from e

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._client().set(key, value, ex=ttl)
        except (RedisError, OSError) as e:
            raise CacheUnavailableException(f"SET {key}: {e}") from e

    async def increment(self, key: str, ttl: Optional[int] = None) -> int:
        # INCR + EXPIRE NX en una transacción MULTI/EXEC: el contador
        # nunca queda sin TTL aunque dos requests fallen a la vez
        try:
            async with self._client().pipeline(transaction=True) as pipe:
                pipe.incr(key)
                if ttl:
                    pipe.expire(key, ttl, nx=True)
                results = await pipe.execute()
            return int(results[0])
        except (RedisError, OSError) as e:
            raise CacheUnavailableException(f"INCR {key}: {e}") from e

    async def expire(self, key: str, ttl: int) -> None:
        try:
            await self._client().expire(key, ttl)
        except (RedisError, OSError) as e:
            raise CacheUnavailableException(f"EXPIRE {key}: {e}") from e

    async def forget(self, *keys: str) -> None:
        if not keys:
            return
        try:
            await self._client().delete(*keys)
        except (RedisError, OSError) as e:
            raise CacheUnavailableException(f"DEL {keys}: {e}") from e
