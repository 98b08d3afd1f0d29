"""
range_store.py
--------------
Almacén de rangos IP aprendidos (CIDR → ciudad/estado).

Implementaciones:
  - SqlRangeStore    → PostgreSQL (tabla ip_range_learnings)
  - MemoryRangeStore → desarrollo y tests

Contrato:
  find_containing(ip, min_samples, min_success_rate)
      → el rango activo más muestreado que contiene la IP y supera
        ambos umbrales
  update_range(cidr, updater)
      → lectura-modificación-escritura serializada por CIDR; updater
        recibe el rango actual (o None) y retorna el nuevo estado
  upsert(range)
      → escritura directa, sin leer el estado previo

Los backends lanzan RangeStoreUnavailableException si la base no
responde dentro de DATABASE_TIMEOUT_SEC; IpRangeLearningStore
decide cómo degradar.
"""

import asyncio
import ipaddress
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Callable, Optional

from sqlalchemy import cast, select
from sqlalchemy.dialects.postgresql import CIDR, INET
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.exceptions import RangeStoreUnavailableException
from app.domain.learned_range import LearnedIpRange
from app.domain.models import IpRangeLearning

logger = logging.getLogger(__name__)

RangeUpdater = Callable[[Optional[LearnedIpRange]], LearnedIpRange]


class RangeStore(ABC):

    @abstractmethod
    async def find_containing(
        self,
        ip: str,
        min_samples: int,
        min_success_rate: float,
    ) -> Optional[LearnedIpRange]:
        ...

    @abstractmethod
    async def get(self, cidr: str) -> Optional[LearnedIpRange]:
        ...

    @abstractmethod
    async def update_range(self, cidr: str, updater: RangeUpdater) -> LearnedIpRange:
        ...

    @abstractmethod
    async def upsert(self, learned_range: LearnedIpRange) -> None:
        ...


# ─────────────────────────────────────────────────────────────────────
# En memoria
# ─────────────────────────────────────────────────────────────────────

class MemoryRangeStore(RangeStore):
    """
    Rangos en un dict del proceso.

    update_range no hace await entre leer y escribir, así que dos
    requests concurrentes sobre el mismo CIDR no pierden actualizaciones.
    Se retornan copias para que nadie modifique el estado guardado.
    """

    def __init__(self):
        self._ranges: dict[str, LearnedIpRange] = {}

    async def find_containing(
        self,
        ip: str,
        min_samples: int,
        min_success_rate: float,
    ) -> Optional[LearnedIpRange]:
        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return None

        candidates = [
            learned for learned in self._ranges.values()
            if learned.is_active
            and learned.sample_count >= min_samples
            and learned.success_rate >= min_success_rate
            and address.version == ipaddress.ip_network(learned.cidr).version
            and address in ipaddress.ip_network(learned.cidr)
        ]
        if not candidates:
            return None
        best = max(candidates, key=lambda learned: learned.sample_count)
        return replace(best)

    async def get(self, cidr: str) -> Optional[LearnedIpRange]:
        learned = self._ranges.get(cidr)
        return replace(learned) if learned else None

    async def update_range(self, cidr: str, updater: RangeUpdater) -> LearnedIpRange:
        current = self._ranges.get(cidr)
        updated = updater(replace(current) if current else None)
        self._ranges[cidr] = replace(updated)
        return updated

    async def upsert(self, learned_range: LearnedIpRange) -> None:
        self._ranges[learned_range.cidr] = replace(learned_range)


# ─────────────────────────────────────────────────────────────────────
# PostgreSQL
# ─────────────────────────────────────────────────────────────────────

def _to_domain(row: IpRangeLearning) -> LearnedIpRange:
    return LearnedIpRange(
        cidr                = str(row.ip_range),
        learned_city        = row.learned_city,
        learned_state       = row.learned_state,
        sample_count        = row.sample_count,
        success_rate        = float(row.success_rate),
        average_confidence  = float(row.average_confidence or 0.0),
        primary_isp         = row.primary_isp,
        primary_asn         = row.primary_asn,
        reverse_dns_pattern = row.reverse_dns_pattern,
        first_seen          = row.first_seen,
        last_seen           = row.last_seen,
        is_active           = row.is_active,
    )


def _apply(row: IpRangeLearning, learned: LearnedIpRange) -> None:
    row.learned_city        = learned.learned_city
    row.learned_state       = learned.learned_state
    row.sample_count        = learned.sample_count
    row.success_rate        = learned.success_rate
    row.average_confidence  = learned.average_confidence
    row.primary_isp         = learned.primary_isp
    row.primary_asn         = learned.primary_asn
    row.reverse_dns_pattern = learned.reverse_dns_pattern
    row.last_seen           = learned.last_seen
    row.is_active           = learned.is_active


class SqlRangeStore(RangeStore):
    """
    Rangos en PostgreSQL.

    update_range toma la fila con SELECT ... FOR UPDATE dentro de una
    transacción. Si dos requests crean el mismo CIDR a la vez, el
    segundo choca con el unique de ip_range y reintenta ya sobre la
    fila existente.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout_sec: float | None = None,
    ):
        self._session_factory = session_factory
        self.timeout_sec      = timeout_sec or settings.DATABASE_TIMEOUT_SEC

    async def _run(self, operation, description: str):
        try:
            return await asyncio.wait_for(operation(), timeout=self.timeout_sec)
        except asyncio.TimeoutError as e:
            raise RangeStoreUnavailableException(
                f"Timeout ({self.timeout_sec}s) en {description}"
            ) from e
        except (SQLAlchemyError, OSError) as e:
            raise RangeStoreUnavailableException(f"{description}: {e}") from e

    async def find_containing(
        self,
        ip: str,
        min_samples: int,
        min_success_rate: float,
    ) -> Optional[LearnedIpRange]:
        try:
            ipaddress.ip_address(ip)
        except ValueError:
            return None

        async def operation():
            async with self._session_factory() as session:
                stmt = (
                    select(IpRangeLearning)
                    .where(IpRangeLearning.ip_range.op(">>=")(cast(ip, INET)))
                    .where(IpRangeLearning.is_active.is_(True))
                    .where(IpRangeLearning.sample_count >= min_samples)
                    .where(IpRangeLearning.success_rate >= min_success_rate)
                    .order_by(IpRangeLearning.sample_count.desc())
                    .limit(1)
                )
                row = (await session.execute(stmt)).scalar_one_or_none()
                return _to_domain(row) if row else None

        return await self._run(operation, f"find_containing({ip})")

    async def get(self, cidr: str) -> Optional[LearnedIpRange]:
        async def operation():
            async with self._session_factory() as session:
                stmt = select(IpRangeLearning).where(
                    IpRangeLearning.ip_range == cast(cidr, CIDR)
                )
                row = (await session.execute(stmt)).scalar_one_or_none()
                return _to_domain(row) if row else None

        return await self._run(operation, f"get({cidr})")

    async def _update_once(self, cidr: str, updater: RangeUpdater) -> LearnedIpRange:
        async with self._session_factory() as session:
            async with session.begin():
                stmt = (
                    select(IpRangeLearning)
                    .where(IpRangeLearning.ip_range == cast(cidr, CIDR))
                    .with_for_update()
                )
                row = (await session.execute(stmt)).scalar_one_or_none()
                updated = updater(_to_domain(row) if row else None)

                if row is None:
                    row = IpRangeLearning(
                        ip_range   = cidr,
                        first_seen = updated.first_seen,
                    )
                    _apply(row, updated)
                    session.add(row)
                else:
                    _apply(row, updated)
            return updated

    async def update_range(self, cidr: str, updater: RangeUpdater) -> LearnedIpRange:
        async def operation():
            try:
                return await self._update_once(cidr, updater)
            except IntegrityError:
                logger.info(f"[Learning] Rango creado en paralelo, reintentando  cidr={cidr}")
                return await self._update_once(cidr, updater)

        return await self._run(operation, f"update_range({cidr})")

    async def upsert(self, learned_range: LearnedIpRange) -> None:
        await self.update_range(learned_range.cidr, lambda _current: learned_range)
