"""
rdap_resolver.py
----------------
Estado/ciudad a partir del registro RDAP de la IP.

Los ISPs indios nombran sus bloques con el código del círculo de
telecom (AIRTEL-GJ, ABTS-AHM-..., RJIO-IN-MH). Se concatena
nombre + handle + remarks en mayúsculas y se aplican los patrones en
orden. Un código puede denotar estado (CIRCLE_STATES) o ciudad
(CIRCLE_CITIES, el estado se deriva de la ciudad).

Registros en orden de prioridad (APNIC, luego ARIN); se detiene en el
primero que da datos utilizables. Resultado cacheado 24h en rdap:{ip}.

Confianza: 72 con ciudad, 65 solo estado.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Optional

from app.core.config import settings
from app.core.exceptions import ExternalApiUnavailableException
from app.domain.gazetteer import CIRCLE_CITIES, CIRCLE_STATES, RDAP_CIRCLE_PATTERNS, state_for_city
from app.infrastructure.cache.cache_client import KeyValueCache
from app.infrastructure.http.http_fetch import HttpFetch

logger = logging.getLogger(__name__)

CITY_CONFIDENCE  = 72
STATE_CONFIDENCE = 65


@dataclass
class RdapResult:
    state:        Optional[str]
    city:         Optional[str]
    network_name: Optional[str]
    isp_circle:   Optional[str]
    confidence:   int
    source:       str


def extract_circle(text: str) -> tuple[Optional[str], Optional[str], Optional[str]]:
    """→ (state, city, circle_code)"""
    for circle in RDAP_CIRCLE_PATTERNS:
        match = circle.pattern.search(text)
        if not match:
            continue

        code = match.group(1).strip().upper()

        if circle.kind == "city_code":
            city  = CIRCLE_CITIES.get(code)
            state = state_for_city(city) if city else None
            if city or state:
                return state, city, code

        if circle.kind == "state_code":
            state = CIRCLE_STATES.get(code)
            if state:
                return state, None, code
            # Algunos ISPs usan el código de ciudad en la misma posición
            city = CIRCLE_CITIES.get(code)
            if city:
                return state_for_city(city), city, code

    return None, None, None


def parse_rdap(data: dict, registry: str) -> Optional[RdapResult]:
    name   = str(data.get("name") or "").strip().upper()
    handle = str(data.get("handle") or "").strip().upper()

    remarks = []
    for remark in data.get("remarks") or []:
        if not isinstance(remark, dict):
            continue
        for line in remark.get("description") or []:
            remarks.append(str(line).upper())

    search_text = " ".join([name, handle, *remarks])
    state, city, circle_code = extract_circle(search_text)

    if not state and not city:
        return None

    return RdapResult(
        state        = state,
        city         = city,
        network_name = name or None,
        isp_circle   = circle_code,
        confidence   = CITY_CONFIDENCE if city else STATE_CONFIDENCE,
        source       = f"rdap_{registry}",
    )


class RdapResolver:

    def __init__(
        self,
        cache: KeyValueCache,
        http: Optional[HttpFetch] = None,
        endpoints: Optional[dict[str, str]] = None,
        timeout_sec: Optional[float] = None,
        connect_timeout_sec: Optional[float] = None,
        cache_ttl: Optional[int] = None,
    ):
        self.cache               = cache
        self.http                = http or HttpFetch()
        self.endpoints           = endpoints or settings.RDAP_ENDPOINTS
        self.timeout_sec         = timeout_sec or settings.RDAP_TIMEOUT_SEC
        self.connect_timeout_sec = connect_timeout_sec or settings.RDAP_CONNECT_TIMEOUT_SEC
        self.cache_ttl           = cache_ttl or settings.RDAP_CACHE_TTL

    async def lookup(self, ip: str) -> Optional[RdapResult]:
        data = await self.cache.remember(
            f"rdap:{ip}",
            self.cache_ttl,
            lambda: self._perform_lookup(ip),
            should_cache=lambda value: value is not None,
        )
        return RdapResult(**data) if data else None

    async def _perform_lookup(self, ip: str) -> Optional[dict]:
        for registry, base_url in self.endpoints.items():
            try:
                status, body = await self.http.get_json(
                    f"{base_url}{ip}",
                    connect_timeout = self.connect_timeout_sec,
                    timeout         = self.timeout_sec,
                    headers         = {"Accept": "application/rdap+json"},
                )
            except ExternalApiUnavailableException as e:
                logger.debug(f"[RDAP] [{registry}] falló para {ip}: {e.message}")
                continue

            if not 200 <= status < 300 or not isinstance(body, dict) or not body:
                continue

            result = parse_rdap(body, registry)
            if result:
                logger.info(
                    f"[RDAP] [{registry}] ip={ip}  name={result.network_name}  "
                    f"circle={result.isp_circle}  state={result.state}  city={result.city}"
                )
                return asdict(result)

        return None
