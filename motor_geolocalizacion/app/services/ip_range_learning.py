"""
ip_range_learning.py
--------------------
Aprendizaje de rangos IP: CIDR (/24 por defecto) → ciudad/estado.

learn(detection):
  - Solo aprende de detecciones con ciudad, confianza ≥
    LEARNING_MIN_CONFIDENCE y (por defecto) ubicación verificada por un
    canal externo.
  - Rango nuevo    → sample_count=1, success_rate=100, is_active=False.
    Un rango recién creado nunca es confiable de inmediato.
  - Misma ciudad   → consistent = round(rate × samples) + 1
                     rate = consistent / (samples + 1)
                     activo cuando samples ≥ MIN_SAMPLES y rate ≥ MIN_RATE
  - Otra ciudad    → consistent = round(rate × samples) (sin sumar)
                     rate = consistent / (samples + 1)
                     se desactiva si rate < LEARNING_DEACTIVATE_BELOW

check(ip):
  - Rango activo más muestreado que contiene la IP y cumple umbrales.

Las actualizaciones del mismo CIDR se serializan en el RangeStore
(FOR UPDATE en PostgreSQL). Si el store no responde, learn no hace
nada y check retorna None.
"""

import ipaddress
import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from app.core.config import settings
from app.core.exceptions import InvalidConfigurationException, RangeStoreUnavailableException
from app.domain.gazetteer import city_key
from app.domain.learned_range import LearnedIpRange
from app.domain.schemas import LearnedRangeMatch
from app.infrastructure.database.range_store import RangeStore

logger = logging.getLogger(__name__)


@dataclass
class DetectionRecord:
    ip:                   str
    city:                 Optional[str]
    state:                Optional[str]
    confidence:           int
    isp:                  Optional[str] = None
    asn:                  Optional[str] = None
    reverse_dns:          Optional[str] = None
    is_location_verified: bool          = False


def ip_to_cidr(ip: str, mask: int = 24) -> Optional[str]:
    """
    "49.36.128.77" → "49.36.128.0/24". Solo IPv4; cualquier otra
    entrada retorna None.
    """
    try:
        address = ipaddress.ip_address(ip.strip())
    except (ValueError, AttributeError):
        return None
    if address.version != 4:
        return None
    return str(ipaddress.ip_network(f"{address}/{mask}", strict=False))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IpRangeLearningStore:

    def __init__(
        self,
        store: RangeStore,
        enabled: Optional[bool] = None,
        min_confidence: Optional[int] = None,
        cidr_mask: Optional[int] = None,
        min_samples: Optional[int] = None,
        min_success_rate: Optional[float] = None,
        deactivate_below: Optional[float] = None,
        require_verified: Optional[bool] = None,
    ):
        self.store            = store
        self.enabled          = settings.LEARNING_ENABLED if enabled is None else enabled
        self.min_confidence   = settings.LEARNING_MIN_CONFIDENCE if min_confidence is None else min_confidence
        self.cidr_mask        = settings.LEARNING_CIDR_MASK if cidr_mask is None else cidr_mask
        self.min_samples      = settings.LEARNING_MIN_SAMPLES if min_samples is None else min_samples
        self.min_success_rate = settings.LEARNING_MIN_SUCCESS_RATE if min_success_rate is None else min_success_rate
        self.deactivate_below = settings.LEARNING_DEACTIVATE_BELOW if deactivate_below is None else deactivate_below
        self.require_verified = settings.LEARNING_REQUIRE_VERIFIED if require_verified is None else require_verified

        if not 8 <= self.cidr_mask <= 32:
            raise InvalidConfigurationException(f"LEARNING_CIDR_MASK fuera de rango: {self.cidr_mask}")
        if self.min_samples < 1:
            raise InvalidConfigurationException("LEARNING_MIN_SAMPLES debe ser positivo")

    def should_learn(self, detection: DetectionRecord) -> bool:
        # Aprender de las propias salidas del motor refuerza sus errores:
        # la compuerta de confianza y la de verificación externa no se
        # relajan sin revisar ese riesgo de retroalimentación.
        if not self.enabled or not detection.city:
            return False
        if detection.confidence < self.min_confidence:
            return False
        if self.require_verified and not detection.is_location_verified:
            return False
        return True

    async def learn(self, detection: DetectionRecord) -> Optional[LearnedIpRange]:
        if not self.should_learn(detection):
            return None

        cidr = ip_to_cidr(detection.ip, self.cidr_mask)
        if cidr is None:
            return None

        try:
            updated = await self.store.update_range(
                cidr, lambda current: self._next_state(cidr, current, detection)
            )
        except RangeStoreUnavailableException as e:
            logger.error(f"[Learning] No se pudo aprender {cidr}: {e.message}")
            return None

        logger.info(
            f"[Learning] cidr={cidr}  city={updated.learned_city}  samples={updated.sample_count}  "
            f"success_rate={updated.success_rate}  active={updated.is_active}"
        )
        return updated

    def _next_state(
        self,
        cidr: str,
        current: Optional[LearnedIpRange],
        detection: DetectionRecord,
    ) -> LearnedIpRange:
        now = _utcnow()

        if current is None:
            return LearnedIpRange(
                cidr                = cidr,
                learned_city        = detection.city,
                learned_state       = detection.state,
                sample_count        = 1,
                success_rate        = 100.0,
                average_confidence  = float(detection.confidence),
                primary_isp         = detection.isp,
                primary_asn         = detection.asn,
                reverse_dns_pattern = detection.reverse_dns,
                first_seen          = now,
                last_seen           = now,
                is_active           = False,
            )

        new_sample_count = current.sample_count + 1
        previous_consistent = _round_half_up(current.success_rate / 100 * current.sample_count)

        if city_key(current.learned_city) == city_key(detection.city):
            consistent       = previous_consistent + 1
            new_success_rate = round(consistent / new_sample_count * 100, 2)
            previous_average = current.average_confidence or float(detection.confidence)
            new_average      = (previous_average * current.sample_count + detection.confidence) / new_sample_count

            return replace(
                current,
                sample_count       = new_sample_count,
                success_rate       = new_success_rate,
                average_confidence = round(new_average, 2),
                last_seen          = now,
                is_active          = (
                    new_sample_count >= self.min_samples
                    and new_success_rate >= self.min_success_rate
                ),
            )

        new_success_rate = round(previous_consistent / new_sample_count * 100, 2)
        logger.info(
            f"[Learning] Conflicto en {cidr}: {current.learned_city} vs {detection.city}  "
            f"success_rate={new_success_rate}"
        )
        return replace(
            current,
            sample_count = new_sample_count,
            success_rate = new_success_rate,
            last_seen    = now,
            is_active    = current.is_active and new_success_rate >= self.deactivate_below,
        )

    async def check(self, ip: str) -> Optional[LearnedRangeMatch]:
        if not self.enabled:
            return None

        try:
            learned = await self.store.find_containing(ip, self.min_samples, self.min_success_rate)
        except RangeStoreUnavailableException as e:
            logger.warning(f"[Learning] No se pudo consultar rangos para {ip}: {e.message}")
            return None

        if learned is None:
            return None

        return LearnedRangeMatch(
            city         = learned.learned_city,
            state        = learned.learned_state,
            confidence   = int(learned.success_rate),
            sample_count = learned.sample_count,
        )
