"""
circuit_breaker.py
------------------
Circuit breaker del ensemble de APIs de geolocalización.

Estados:
  CLOSED → se llama a los proveedores normalmente
  OPEN   → se omiten todas las llamadas hasta que expire el TTL

Transiciones:
  CLOSED --(failure_count llega al umbral)--> OPEN
  OPEN   --(pasa ttl_seconds)--------------> CLOSED
  cualquier éxito                          → borra contador y apertura

Estado compartido en KeyValueCache (Redis en producción):
  circuit:{name}:failures    → contador con TTL fijado al nacer (INCR atómico)
  circuit:{name}:open_until  → epoch hasta el que el circuito está abierto

El contador usa increment() atómico: dos fallos concurrentes pueden
contarse los dos, pero nunca se pierde uno.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from app.core.config import settings
from app.core.exceptions import CacheUnavailableException, InvalidConfigurationException
from app.infrastructure.cache.cache_client import KeyValueCache

logger = logging.getLogger(__name__)


class CircuitStatus(str, Enum):
    CLOSED = "closed"
    OPEN   = "open"


@dataclass
class CircuitState:
    failure_count: int             = 0
    opened_until:  Optional[float] = None

    @property
    def status(self) -> CircuitStatus:
        return CircuitStatus.OPEN if self.opened_until is not None else CircuitStatus.CLOSED


class CircuitBreaker:

    def __init__(
        self,
        cache: KeyValueCache,
        name: str = "ensemble",
        failure_threshold: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.cache             = cache
        self.name              = name
        self.failure_threshold = failure_threshold if failure_threshold is not None else settings.CIRCUIT_FAILURE_THRESHOLD
        self.ttl_seconds       = ttl_seconds if ttl_seconds is not None else settings.CIRCUIT_TTL_SEC
        self._clock            = clock

        if self.failure_threshold < 1 or self.ttl_seconds < 1:
            raise InvalidConfigurationException(
                f"Circuit breaker '{name}': umbral y TTL deben ser positivos"
            )

    @property
    def _failures_key(self) -> str:
        return f"circuit:{self.name}:failures"

    @property
    def _open_until_key(self) -> str:
        return f"circuit:{self.name}:open_until"

    async def snapshot(self) -> CircuitState:
        failures   = await self.cache.get(self._failures_key)
        open_until = await self.cache.get(self._open_until_key)

        opened_until = float(open_until) if open_until is not None else None
        if opened_until is not None and opened_until <= self._clock():
            opened_until = None

        return CircuitState(
            failure_count = int(failures) if failures is not None else 0,
            opened_until  = opened_until,
        )

    async def is_open(self) -> bool:
        """
        True si hay que omitir las llamadas. Si la caché no responde,
        el circuito se considera cerrado (los proveedores se consultan).
        """
        try:
            state = await self.snapshot()
        except CacheUnavailableException as e:
            logger.warning(f"[Circuit] Estado no disponible, se asume cerrado  name={self.name}  error={e.message}")
            return False
        return state.status is CircuitStatus.OPEN

    async def record_failure(self) -> CircuitState:
        try:
            failures = await self.cache.increment(self._failures_key, ttl=self.ttl_seconds)
        except CacheUnavailableException as e:
            logger.warning(f"[Circuit] No se pudo registrar fallo  name={self.name}  error={e.message}")
            return CircuitState()

        state = CircuitState(failure_count=failures)

        if failures >= self.failure_threshold:
            opened_until = self._clock() + self.ttl_seconds
            try:
                await self.cache.set(self._open_until_key, str(opened_until), self.ttl_seconds)
            except CacheUnavailableException as e:
                logger.warning(f"[Circuit] No se pudo abrir el circuito  name={self.name}  error={e.message}")
                return state
            state.opened_until = opened_until
            logger.warning(
                f"[Circuit] ABIERTO  name={self.name}  failures={failures}  "
                f"ttl={self.ttl_seconds}s"
            )
        else:
            logger.info(f"[Circuit] Fallo registrado  name={self.name}  failures={failures}/{self.failure_threshold}")

        return state

    async def record_success(self) -> None:
        try:
            await self.cache.forget(self._failures_key, self._open_until_key)
        except CacheUnavailableException as e:
            logger.warning(f"[Circuit] No se pudo limpiar contador  name={self.name}  error={e.message}")
