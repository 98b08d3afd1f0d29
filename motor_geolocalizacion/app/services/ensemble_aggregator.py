"""
ensemble_aggregator.py
----------------------
Consenso entre varias APIs gratuitas de geolocalización por IP.

Flujo de lookup(ip):
  1. Caché ip_geo:{ip} (1h). Si la caché cae, se calcula directo.
  2. Circuit breaker abierto → resultado vacío sin tocar la red.
  3. Fan-out concurrente a todos los proveedores habilitados con
     timeout de conexión y timeout total. Un proveedor lento o caído
     no cancela a los demás; lo que no llegó a tiempo se ignora.
  4. Cada JSON se normaliza con el normalizador de su esquema. Una
     respuesta que reporta su propio error normaliza a None.
  5. Ningún proveedor respondió → fallo del circuito + vacío.
     Al menos uno respondió → se limpia el contador de fallos.
  6. Pre-filtro de estado: si ≥3 fuentes coinciden en un estado, las
     que lo contradicen pesan ×0.3.
  7. Clustering geográfico (haversine contra el centroide del cluster).
  8. El cluster de mayor peso es el consenso; la confianza sale de una
     función escalonada de (agreement_count, weight_ratio).

Confianza del consenso:
  agreement ≥5 y ratio ≥0.8 → 95
  agreement ≥4 y ratio ≥0.7 → 90
  agreement ≥4              → 85
  agreement ≥3 y ratio ≥0.6 → 80
  agreement ≥3              → 75
  agreement ≥2 y ratio ≥0.5 → 70
  agreement ≥2              → 65
  ratio ≥0.3                → 55
  resto                     → 45
  agreement < ENSEMBLE_MIN_SOURCES → tope 54
  confianza < 55 → ciudad None
"""

import asyncio
import logging
import math
from collections import defaultdict
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Callable, Optional

from app.core.config import ProviderConfig, settings
from app.core.exceptions import ExternalApiUnavailableException, InvalidConfigurationException
from app.domain.evidence import Evidence, EvidenceSource
from app.domain.gazetteer import city_key, normalize_asn, normalize_city, normalize_state
from app.infrastructure.cache.cache_client import KeyValueCache
from app.infrastructure.http.http_fetch import HttpFetch
from app.services.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM          = 6371.0
STATE_OUTLIER_PENALTY    = 0.3
STATE_MAJORITY_SOURCES   = 3
PROVIDER_CONFIDENCE      = 50
MIN_CITY_CONFIDENCE      = 55
BELOW_MIN_SOURCES_CAP    = 54


@dataclass
class ConsensusResult:
    city:            Optional[str]   = None
    state:           Optional[str]   = None
    country:         Optional[str]   = None
    country_code:    Optional[str]   = None
    confidence:      int             = 0
    agreement_count: int             = 0
    total_sources:   int             = 0
    latitude:        Optional[float] = None
    longitude:       Optional[float] = None
    postal:          Optional[str]   = None
    isp:             Optional[str]   = None
    asn:             Optional[str]   = None
    connection_type: str             = "unknown"
    sources_data:    dict[str, str]  = field(default_factory=dict)
    alternatives:    list[dict]      = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.city is None and self.state is None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ConsensusResult":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


# ─────────────────────────────────────────────────────────────────────
# Normalizadores por esquema de proveedor
# Cada uno retorna un dict plano o None si la respuesta no sirve
# ─────────────────────────────────────────────────────────────────────

def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalized(
    city=None, state=None, country=None, country_code=None,
    postal=None, asn=None, isp=None, latitude=None, longitude=None,
) -> dict:
    return {
        "city":         _text(city),
        "state":        _text(state),
        "country":      _text(country),
        "country_code": _text(country_code),
        "postal":       _text(postal),
        "asn":          normalize_asn(asn),
        "isp":          _text(isp),
        "latitude":     _to_float(latitude),
        "longitude":    _to_float(longitude),
    }


def normalize_ipapi(data: dict) -> Optional[dict]:
    """ipapi.co"""
    if data.get("error"):
        return None
    return _normalized(
        city         = data.get("city"),
        state        = data.get("region"),
        country      = data.get("country_name"),
        country_code = data.get("country_code"),
        postal       = data.get("postal"),
        asn          = data.get("asn"),
        isp          = data.get("org"),
        latitude     = data.get("latitude"),
        longitude    = data.get("longitude"),
    )


def normalize_ip_api_com(data: dict) -> Optional[dict]:
    """ip-api.com"""
    if data.get("status") == "fail":
        return None
    as_field = _text(data.get("as"))
    return _normalized(
        city         = data.get("city"),
        state        = data.get("regionName"),
        country      = data.get("country"),
        country_code = data.get("countryCode"),
        postal       = data.get("zip"),
        asn          = as_field.split(" ")[0] if as_field else None,
        isp          = data.get("isp"),
        latitude     = data.get("lat"),
        longitude    = data.get("lon"),
    )


def normalize_geoplugin(data: dict) -> Optional[dict]:
    """geoplugin.net (coordenadas como string)"""
    if not data.get("geoplugin_city") and not data.get("geoplugin_region"):
        return None
    return _normalized(
        city         = data.get("geoplugin_city"),
        state        = data.get("geoplugin_region"),
        country      = data.get("geoplugin_countryName"),
        country_code = data.get("geoplugin_countryCode"),
        latitude     = data.get("geoplugin_latitude"),
        longitude    = data.get("geoplugin_longitude"),
    )


def normalize_ipwhois(data: dict) -> Optional[dict]:
    """ipwhois.app e ipwho.is comparten forma"""
    if data.get("success", True) is False:
        return None
    connection = data.get("connection") or {}
    if not isinstance(connection, dict):
        connection = {}
    return _normalized(
        city         = data.get("city"),
        state        = data.get("region"),
        country      = data.get("country"),
        country_code = data.get("country_code"),
        postal       = data.get("postal"),
        asn          = connection.get("asn"),
        isp          = connection.get("isp") or data.get("isp"),
        latitude     = data.get("latitude"),
        longitude    = data.get("longitude"),
    )


def normalize_freeipapi(data: dict) -> Optional[dict]:
    """freeipapi.com"""
    if not data.get("cityName") and not data.get("regionName"):
        return None
    return _normalized(
        city         = data.get("cityName"),
        state        = data.get("regionName"),
        country      = data.get("countryName"),
        country_code = data.get("countryCode"),
        postal       = data.get("zipCode"),
        latitude     = data.get("latitude"),
        longitude    = data.get("longitude"),
    )


NORMALIZERS: dict[str, Callable[[dict], Optional[dict]]] = {
    "ipapi":     normalize_ipapi,
    "ip-api":    normalize_ip_api_com,
    "geoplugin": normalize_geoplugin,
    "ipwhois":   normalize_ipwhois,
    "ipwho":     normalize_ipwhois,
    "freeipapi": normalize_freeipapi,
}


# ─────────────────────────────────────────────────────────────────────
# Geometría
# ─────────────────────────────────────────────────────────────────────

def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distancia de gran círculo en km."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi      = math.radians(lat2 - lat1)
    d_lambda   = math.radians(lon2 - lon1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def _centroid(cluster: list[Evidence]) -> Optional[tuple[float, float]]:
    located = [e for e in cluster if e.has_coordinates]
    if not located:
        return None
    return (
        sum(e.latitude for e in located) / len(located),
        sum(e.longitude for e in located) / len(located),
    )


def _weighted_votes(
    entries: list[Evidence],
    getter: Callable[[Evidence], Optional[str]],
    key: Callable[[str], str] = lambda value: value,
) -> dict[str, tuple[str, float]]:
    """clave → (primer valor visto, peso acumulado)"""
    votes: dict[str, tuple[str, float]] = {}
    for entry in entries:
        value = getter(entry)
        if not value:
            continue
        vote_key = key(value)
        shown, total = votes.get(vote_key, (value, 0.0))
        votes[vote_key] = (shown, total + entry.weight)
    return votes


def _heaviest_value(
    entries: list[Evidence],
    getter: Callable[[Evidence], Optional[str]],
    key: Callable[[str], str] = lambda value: value,
) -> Optional[str]:
    """Valor con mayor peso acumulado; empate → el que apareció primero."""
    votes = _weighted_votes(entries, getter, key)
    if not votes:
        return None
    best = max(votes, key=lambda vote_key: votes[vote_key][1])
    return votes[best][0]


def consensus_confidence(agreement_count: int, weight_ratio: float) -> int:
    if agreement_count >= 5 and weight_ratio >= 0.8:
        return 95
    if agreement_count >= 4 and weight_ratio >= 0.7:
        return 90
    if agreement_count >= 4:
        return 85
    if agreement_count >= 3 and weight_ratio >= 0.6:
        return 80
    if agreement_count >= 3:
        return 75
    if agreement_count >= 2 and weight_ratio >= 0.5:
        return 70
    if agreement_count >= 2:
        return 65
    if weight_ratio >= 0.3:
        return 55
    return 45


class EnsembleAggregator:

    def __init__(
        self,
        cache: KeyValueCache,
        http: Optional[HttpFetch] = None,
        providers: Optional[list[ProviderConfig]] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        timeout_sec: Optional[float] = None,
        connect_timeout_sec: Optional[float] = None,
        cluster_radius_km: Optional[float] = None,
        min_sources: Optional[int] = None,
        cache_ttl: Optional[int] = None,
        mobile_asns: Optional[list[str]] = None,
        default_country: Optional[str] = None,
    ):
        self.cache               = cache
        self.http                = http or HttpFetch()
        self.circuit_breaker     = circuit_breaker or CircuitBreaker(cache, name="ensemble")
        self.timeout_sec         = timeout_sec or settings.ENSEMBLE_TIMEOUT_SEC
        self.connect_timeout_sec = connect_timeout_sec or settings.ENSEMBLE_CONNECT_TIMEOUT_SEC
        self.cluster_radius_km   = cluster_radius_km or settings.ENSEMBLE_CLUSTER_RADIUS_KM
        self.min_sources         = min_sources if min_sources is not None else settings.ENSEMBLE_MIN_SOURCES
        self.cache_ttl           = cache_ttl or settings.ENSEMBLE_CACHE_TTL
        self.mobile_asns         = set(mobile_asns if mobile_asns is not None else settings.MOBILE_ASNS)
        self.default_country     = default_country or settings.DEFAULT_COUNTRY

        all_providers  = providers if providers is not None else settings.ENSEMBLE_PROVIDERS
        self.providers = [p for p in all_providers if p.enabled]
        self._validate()

    def _validate(self) -> None:
        for provider in self.providers:
            if "{ip}" not in provider.url_template:
                raise InvalidConfigurationException(
                    f"Proveedor '{provider.name}': url_template sin {{ip}}"
                )
            if provider.url_template.startswith("http://") and not provider.allow_insecure:
                raise InvalidConfigurationException(
                    f"Proveedor '{provider.name}': http:// requiere allow_insecure"
                )
            if (provider.schema_name or provider.name) not in NORMALIZERS:
                raise InvalidConfigurationException(
                    f"Proveedor '{provider.name}': esquema desconocido"
                )
            if provider.weight <= 0:
                raise InvalidConfigurationException(
                    f"Proveedor '{provider.name}': weight debe ser positivo"
                )
        if self.cluster_radius_km <= 0 or self.min_sources < 1:
            raise InvalidConfigurationException("Radio de cluster y mínimo de fuentes deben ser positivos")

    # ------------------------------------------------------------------ #
    #  API pública                                                         #
    # ------------------------------------------------------------------ #

    async def lookup(self, ip: str) -> ConsensusResult:
        data = await self.cache.remember(
            f"ip_geo:{ip}",
            self.cache_ttl,
            lambda: self._compute(ip),
            # Un consenso vacío (circuito abierto, proveedores caídos) no se cachea
            should_cache=lambda value: bool(value.get("city") or value.get("state")),
        )
        return ConsensusResult.from_dict(data)

    # ------------------------------------------------------------------ #
    #  Cálculo                                                             #
    # ------------------------------------------------------------------ #

    async def _compute(self, ip: str) -> dict:
        if await self.circuit_breaker.is_open():
            logger.warning(f"[Ensemble] Circuito abierto, se omiten proveedores  ip={ip}")
            return self._empty().to_dict()

        responded, entries = await self._fetch_all(ip)

        if responded == 0:
            logger.warning(f"[Ensemble] Ningún proveedor respondió  ip={ip}")
            await self.circuit_breaker.record_failure()
            return self._empty().to_dict()

        await self.circuit_breaker.record_success()

        if not entries:
            logger.warning(f"[Ensemble] Ninguna respuesta utilizable  ip={ip}  responded={responded}")
            return self._empty().to_dict()

        result = self.build_consensus(entries)
        logger.info(
            f"[Ensemble] ip={ip}  city={result.city}  state={result.state}  "
            f"confidence={result.confidence}  agreement={result.agreement_count}/{result.total_sources}"
        )
        return result.to_dict()

    async def _fetch_all(self, ip: str) -> tuple[int, list[Evidence]]:
        if not self.providers:
            return 0, []

        tasks = [
            asyncio.create_task(self._fetch_provider(provider, ip))
            for provider in self.providers
        ]
        done, pending = await asyncio.wait(tasks, timeout=self.timeout_sec)

        # Lo que no terminó dentro del timeout total se abandona
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"[Ensemble] {len(pending)} proveedor(es) excedieron {self.timeout_sec}s  ip={ip}")

        responded = 0
        entries: list[Evidence] = []
        # Se recorre en el orden de configuración para que los empates sean estables
        for task in tasks:
            if task not in done:
                continue
            ok, evidence = task.result()
            if ok:
                responded += 1
            if evidence is not None:
                entries.append(evidence)
        return responded, entries

    async def _fetch_provider(
        self,
        provider: ProviderConfig,
        ip: str,
    ) -> tuple[bool, Optional[Evidence]]:
        url = provider.url_template.replace("{ip}", ip)
        try:
            status, body = await self.http.get_json(
                url,
                connect_timeout = self.connect_timeout_sec,
                timeout         = self.timeout_sec,
            )
        except ExternalApiUnavailableException as e:
            logger.warning(f"[Ensemble] Proveedor {provider.name} no disponible  ip={ip}  error={e.message}")
            return False, None

        if not 200 <= status < 300:
            logger.warning(f"[Ensemble] Proveedor {provider.name} respondió {status}  ip={ip}")
            return False, None

        if not isinstance(body, dict) or not body:
            return True, None

        normalizer = NORMALIZERS[provider.schema_name or provider.name]
        try:
            normalized = normalizer(body)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"[Ensemble] Respuesta malformada de {provider.name}  ip={ip}  error={e}")
            return True, None

        if normalized is None:
            logger.debug(f"[Ensemble] {provider.name} reportó error propio  ip={ip}")
            return True, None

        return True, self._to_evidence(provider, normalized)

    @staticmethod
    def _to_evidence(provider: ProviderConfig, normalized: dict) -> Evidence:
        return Evidence(
            source     = EvidenceSource.IP_PROVIDER,
            confidence = PROVIDER_CONFIDENCE,
            weight     = provider.weight,
            city       = normalize_city(normalized["city"]),
            state      = normalized["state"],
            country    = normalized["country"],
            latitude   = normalized["latitude"],
            longitude  = normalized["longitude"],
            meta       = {
                "provider":     provider.name,
                "asn":          normalized["asn"],
                "isp":          normalized["isp"],
                "postal":       normalized["postal"],
                "country_code": normalized["country_code"],
            },
        )

    def _empty(self) -> ConsensusResult:
        return ConsensusResult(country=self.default_country)

    # ------------------------------------------------------------------ #
    #  Consenso                                                            #
    # ------------------------------------------------------------------ #

    def build_consensus(self, entries: list[Evidence]) -> ConsensusResult:
        if not entries:
            return self._empty()

        entries  = self._apply_state_prefilter(entries)
        clusters = self._cluster(entries)

        all_weight  = sum(e.weight for e in entries)
        best        = max(clusters, key=lambda cluster: sum(e.weight for e in cluster))
        best_weight = sum(e.weight for e in best)

        agreement_count = len(best)
        weight_ratio    = best_weight / all_weight if all_weight > 0 else 0.0

        confidence = consensus_confidence(agreement_count, weight_ratio)
        if agreement_count < self.min_sources:
            confidence = min(confidence, BELOW_MIN_SOURCES_CAP)

        city = _heaviest_value(best, lambda e: e.city, key=city_key)
        if confidence < MIN_CITY_CONFIDENCE:
            city = None

        latitude, longitude = self._weighted_coordinates(best)
        asn = _heaviest_value(entries, lambda e: e.meta.get("asn"))

        return ConsensusResult(
            city            = city,
            state           = _heaviest_value(best, lambda e: e.state, key=normalize_state),
            country         = _heaviest_value(best, lambda e: e.country) or self.default_country,
            country_code    = _heaviest_value(best, lambda e: e.meta.get("country_code")),
            confidence      = confidence,
            agreement_count = agreement_count,
            total_sources   = len(entries),
            latitude        = latitude,
            longitude       = longitude,
            postal          = _heaviest_value(entries, lambda e: e.meta.get("postal")),
            isp             = _heaviest_value(entries, lambda e: e.meta.get("isp")),
            asn             = asn,
            connection_type = self._connection_type(asn),
            sources_data    = {e.meta.get("provider", "?"): e.city or "unknown" for e in entries},
            alternatives    = self._alternatives(entries),
        )

    def _apply_state_prefilter(self, entries: list[Evidence]) -> list[Evidence]:
        weights: dict[str, float] = defaultdict(float)
        counts:  dict[str, int]   = defaultdict(int)
        for entry in entries:
            key = normalize_state(entry.state)
            if key:
                weights[key] += entry.weight
                counts[key]  += 1

        if not weights:
            return entries

        top_state = max(weights, key=weights.get)
        if counts[top_state] < STATE_MAJORITY_SOURCES:
            return entries

        filtered = []
        for entry in entries:
            key = normalize_state(entry.state)
            if key and key != top_state:
                entry = replace(entry, weight=entry.weight * STATE_OUTLIER_PENALTY)
            filtered.append(entry)
        return filtered

    def _cluster(self, entries: list[Evidence]) -> list[list[Evidence]]:
        clusters: list[list[Evidence]] = []

        for entry in (e for e in entries if e.has_coordinates):
            for cluster in clusters:
                center = _centroid(cluster)
                if center and haversine_km(center[0], center[1], entry.latitude, entry.longitude) <= self.cluster_radius_km:
                    cluster.append(entry)
                    break
            else:
                clusters.append([entry])

        # Sin coordenadas: se une a un cluster solo si comparte ciudad
        for entry in (e for e in entries if not e.has_coordinates):
            key = city_key(entry.city)
            for cluster in clusters:
                if key and any(city_key(member.city) == key for member in cluster):
                    cluster.append(entry)
                    break
            else:
                clusters.append([entry])

        return clusters

    @staticmethod
    def _weighted_coordinates(cluster: list[Evidence]) -> tuple[Optional[float], Optional[float]]:
        located = [e for e in cluster if e.has_coordinates and e.weight > 0]
        total   = sum(e.weight for e in located)
        if not located or total <= 0:
            return None, None
        latitude  = sum(e.latitude * e.weight for e in located) / total
        longitude = sum(e.longitude * e.weight for e in located) / total
        return round(latitude, 6), round(longitude, 6)

    @staticmethod
    def _alternatives(entries: list[Evidence]) -> list[dict]:
        votes = _weighted_votes(entries, lambda e: e.city, key=city_key)
        total = sum(weight for _, weight in votes.values())
        if total <= 0:
            return []
        ranked = sorted(votes.values(), key=lambda vote: vote[1], reverse=True)[:3]
        return [
            {"city": city, "probability": round(weight / total * 100)}
            for city, weight in ranked
        ]

    def _connection_type(self, asn: Optional[str]) -> str:
        if not asn:
            return "unknown"
        return "mobile" if asn in self.mobile_asns else "broadband"
