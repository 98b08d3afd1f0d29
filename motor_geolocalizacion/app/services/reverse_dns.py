"""
reverse_dns.py
--------------
Ciudad a partir del hostname reverso (PTR) de la IP.

Los ISPs indios codifican la ciudad en el hostname con convenciones
propias (abts-ahm-dynamic-...airtelbroadband.in, x.surat.gtpl.net.in).
Los patrones se prueban en orden; el token capturado se resuelve:
  1. match exacto en la tabla de tokens de ciudad
  2. match por prefijo (token ≥ 3 caracteres), primera entrada que aplique
Si el token de un patrón no resuelve, se sigue con el siguiente patrón.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.core.config import settings
from app.domain.gazetteer import HOSTNAME_CITY_TOKENS, ISP_HOSTNAME_PATTERNS, state_for_city
from app.infrastructure.dns.reverse_lookup import DnsReverseLookup

logger = logging.getLogger(__name__)

MIN_PREFIX_LENGTH = 3


@dataclass
class ReverseDnsMatch:
    city:           str
    state:          Optional[str]
    confidence:     int
    source_pattern: str


def fuzzy_match_city(token: str) -> Optional[str]:
    normalized = token.strip().lower()
    if not normalized:
        return None

    if normalized in HOSTNAME_CITY_TOKENS:
        return HOSTNAME_CITY_TOKENS[normalized]

    if len(normalized) >= MIN_PREFIX_LENGTH:
        for alias, city in HOSTNAME_CITY_TOKENS.items():
            if alias.startswith(normalized):
                return city

    return None


class ReverseDnsResolver:

    def __init__(
        self,
        dns_lookup: Optional[DnsReverseLookup] = None,
        confidence: Optional[int] = None,
    ):
        self.dns_lookup = dns_lookup or DnsReverseLookup(settings.DNS_TIMEOUT_SEC)
        self.confidence = confidence or settings.REVERSE_DNS_CONFIDENCE

    async def hostname_for(self, ip: str) -> Optional[str]:
        return await self.dns_lookup.lookup(ip)

    def extract_city(self, hostname: Optional[str]) -> Optional[ReverseDnsMatch]:
        if not hostname:
            return None
        hostname = hostname.strip().lower()
        if not hostname or hostname == "localhost":
            return None

        for isp, pattern in ISP_HOSTNAME_PATTERNS:
            match = pattern.search(hostname)
            if not match:
                continue

            city = fuzzy_match_city(match.group(1))
            if city:
                logger.info(f"[ReverseDNS] {hostname} → {city} via patrón {isp}")
                return ReverseDnsMatch(
                    city           = city,
                    state          = state_for_city(city),
                    confidence     = self.confidence,
                    source_pattern = isp,
                )

        return None
