"""
fusion_engine.py
----------------
Fusión de todas las señales pasivas en una sola predicción de ubicación.

Ninguna señal se cree sola: la confianza sale del acuerdo entre fuentes.

Orden de recolección de evidencia (fijo):
  1. Headers geográficos del edge   city → conf 88 / peso 50
                                    solo región → conf 70 / peso 35
  2. Probe de red del navegador     (FUSION_USE_NETWORK_PROBE)
  3. Idioma del navegador           solo estado(s)
  4. Fuentes regionales             solo estado
  5. Base GeoIP local
  6. DNS reverso
  7. RDAP                           (FUSION_USE_RDAP)
  8. Ensemble de APIs               solo si peso total < 30 o no hay ciudad

Algoritmo:
  - Estado: cada evidencia suma su peso a su estado y 0.3× a cada
    estado alterno que declare. Gana el de mayor peso.
  - Ciudad: cada evidencia con ciudad suma su peso, ×1.5 si su estado
    coincide con el estado ganador. method = fuente de mayor peso
    entre las que votaron por la ciudad ganadora.
  - Confianza: 30 + 50 × (peso que coincide con el estado / peso total)
      +10 si ≥2 fuentes coinciden en la ciudad, +5 más si ≥3
      +8  si ≥3 tipos de fuente distintos coinciden en el estado
      piso 85 si el edge aportó ciudad
      -8 / -4 si el segundo estado pesa ≥0.6 / ≥0.4 del primero
        (se aplica después del piso, así que puede bajar de 85)
      clamp [10, 98]
"""

import ipaddress
import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import unquote

from app.core.config import settings
from app.domain.evidence import Evidence, EvidenceSource
from app.domain.gazetteer import city_key, expand_country_code, normalize_city, normalize_state
from app.domain.schemas import (
    CityAlternative,
    ConfidenceBucket,
    EdgeGeoHeaders,
    FallbackReason,
    FusionTelemetry,
    LocationPrediction,
    LocationSignals,
)
from app.infrastructure.geoip.local_geo_db import LocalGeoDatabaseReader
from app.services.ensemble_aggregator import EnsembleAggregator
from app.services.language_mapper import LanguageStateMapper
from app.services.network_probe import NetworkProbeInterpreter
from app.services.rdap_resolver import RdapResolver
from app.services.reverse_dns import ReverseDnsResolver

logger = logging.getLogger(__name__)

EDGE_CITY_CONFIDENCE   = 88
EDGE_REGION_CONFIDENCE = 70
EDGE_CONFIDENCE_FLOOR  = 85
ALT_STATE_FACTOR       = 0.3
STATE_MATCH_BOOST      = 1.5


@dataclass
class _Vote:
    display: str
    weight:  float = 0.0
    sources: list[EvidenceSource] = field(default_factory=list)


def _title(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    decoded = unquote(value).strip()
    if not decoded:
        return None
    # ucwords sobre minúsculas: "NEW DELHI" → "New Delhi"
    return " ".join(word.capitalize() for word in decoded.lower().split(" "))


def _valid_ip(ip: Optional[str]) -> bool:
    if not ip:
        return False
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        return False
    return True


class FusionEngine:

    def __init__(
        self,
        language_mapper: LanguageStateMapper,
        local_geo_db: Optional[LocalGeoDatabaseReader],
        reverse_dns: ReverseDnsResolver,
        ensemble: EnsembleAggregator,
        network_probe: Optional[NetworkProbeInterpreter] = None,
        rdap: Optional[RdapResolver] = None,
        use_network_probe: Optional[bool] = None,
        use_rdap: Optional[bool] = None,
        min_evidence_weight: Optional[float] = None,
        default_country: Optional[str] = None,
    ):
        self.language_mapper     = language_mapper
        self.local_geo_db        = local_geo_db
        self.reverse_dns         = reverse_dns
        self.ensemble            = ensemble
        self.network_probe       = network_probe or NetworkProbeInterpreter()
        self.rdap                = rdap
        self.use_network_probe   = settings.FUSION_USE_NETWORK_PROBE if use_network_probe is None else use_network_probe
        self.use_rdap            = settings.FUSION_USE_RDAP if use_rdap is None else use_rdap
        self.min_evidence_weight = min_evidence_weight if min_evidence_weight is not None else settings.FUSION_MIN_EVIDENCE_WEIGHT
        self.default_country     = default_country or settings.DEFAULT_COUNTRY

    # ------------------------------------------------------------------ #
    #  API pública                                                         #
    # ------------------------------------------------------------------ #

    async def infer(self, ip: Optional[str], signals: LocationSignals) -> LocationPrediction:
        evidence: list[Evidence] = []
        probe_indicators: list[str] = []
        hostname: Optional[str] = None
        has_ip = _valid_ip(ip)

        edge = self.from_edge_headers(signals.edge_headers)
        if edge:
            evidence.append(edge)

        if self.use_network_probe and signals.network_probes is not None:
            probe = self.network_probe.process(signals.network_probes, ip)
            probe_indicators = probe.vpn_indicators
            if probe.location_evidence:
                evidence.append(probe.location_evidence)

        language = self.from_language(signals)
        if language:
            evidence.append(language)

        fonts = self.from_fonts(signals)
        if fonts:
            evidence.append(fonts)

        if has_ip:
            local = self.from_local_geoip(ip)
            if local:
                evidence.append(local)

            hostname = await self.reverse_dns.hostname_for(ip)
            dns = self.from_reverse_dns(hostname)
            if dns:
                evidence.append(dns)

            if self.use_rdap and self.rdap is not None:
                rdap = await self.from_rdap(ip)
                if rdap:
                    evidence.append(rdap)

        # Sin IP no hay ensemble que consultar: la razón solo se registra si se usa
        fallback_reason = self.fallback_reason(evidence) if has_ip else None
        if fallback_reason is not None:
            ensemble = await self.from_ensemble(ip)
            if ensemble:
                evidence.append(ensemble)

        prediction = self.fuse(evidence)
        prediction.reverse_dns_hostname = hostname
        prediction.probe_vpn_indicators = probe_indicators
        prediction.telemetry = self._telemetry(evidence, prediction.confidence, fallback_reason)

        logger.info(
            f"[Fusion] ip={ip}  sources={len(evidence)}  city={prediction.city}  "
            f"state={prediction.state}  confidence={prediction.confidence}  "
            f"method={prediction.method}  fallback={fallback_reason.value if fallback_reason else None}"
        )
        return prediction

    def fallback_reason(self, evidence: list[Evidence]) -> Optional[FallbackReason]:
        total_weight = sum(e.weight for e in evidence)
        if total_weight < self.min_evidence_weight:
            return FallbackReason.LOW_EVIDENCE_WEIGHT
        if not any(e.city for e in evidence):
            return FallbackReason.NO_CITY_EVIDENCE
        return None

    # ------------------------------------------------------------------ #
    #  Extractores → Evidence                                             #
    # ------------------------------------------------------------------ #

    def from_edge_headers(self, headers: Optional[EdgeGeoHeaders]) -> Optional[Evidence]:
        if headers is None:
            return None

        city  = normalize_city(_title(headers.city))
        state = _title(headers.region)
        if not city and not state:
            return None

        logger.debug(f"[Fusion] Edge geo  city={city}  region={state}  country={headers.country}")
        return Evidence(
            source     = EvidenceSource.EDGE_HEADERS,
            city       = city,
            state      = state,
            country    = expand_country_code(headers.country),
            latitude   = headers.latitude,
            longitude  = headers.longitude,
            confidence = EDGE_CITY_CONFIDENCE if city else EDGE_REGION_CONFIDENCE,
            weight     = settings.WEIGHT_EDGE_CITY if city else settings.WEIGHT_EDGE_REGION,
            meta       = {
                "timezone":        headers.timezone,
                "as_organization": headers.as_organization,
            },
        )

    def from_language(self, signals: LocationSignals) -> Optional[Evidence]:
        result = self.language_mapper.infer_from_languages(signals)
        if result is None:
            return None
        return Evidence(
            source     = EvidenceSource.LANGUAGE,
            state      = result.primary_state,
            states_alt = result.states,
            confidence = result.confidence,
            weight     = settings.WEIGHT_LANGUAGE,
            meta       = {"language": result.language, "code": result.code},
        )

    def from_fonts(self, signals: LocationSignals) -> Optional[Evidence]:
        result = self.language_mapper.infer_from_fonts(signals)
        if result is None:
            return None
        return Evidence(
            source     = EvidenceSource.FONTS,
            state      = result.state,
            confidence = result.confidence,
            weight     = settings.WEIGHT_FONTS,
            meta       = {"font_count": result.font_count},
        )

    def from_local_geoip(self, ip: str) -> Optional[Evidence]:
        if self.local_geo_db is None or not self.local_geo_db.is_available:
            return None
        record = self.local_geo_db.lookup(ip)
        if record is None:
            return None
        return Evidence(
            source     = EvidenceSource.LOCAL_GEOIP,
            city       = record.city,
            state      = record.state,
            country    = record.country or self.default_country,
            latitude   = record.latitude,
            longitude  = record.longitude,
            confidence = record.confidence,
            weight     = settings.WEIGHT_LOCAL_GEOIP,
            meta       = {
                "asn":                record.asn,
                "isp":                record.isp,
                "accuracy_radius_km": record.accuracy_radius_km,
            },
        )

    def from_reverse_dns(self, hostname: Optional[str]) -> Optional[Evidence]:
        match = self.reverse_dns.extract_city(hostname)
        if match is None:
            return None
        return Evidence(
            source     = EvidenceSource.REVERSE_DNS,
            city       = match.city,
            state      = match.state,
            country    = self.default_country,
            confidence = match.confidence,
            weight     = settings.WEIGHT_REVERSE_DNS,
            meta       = {"hostname": hostname, "isp_pattern": match.source_pattern},
        )

    async def from_rdap(self, ip: str) -> Optional[Evidence]:
        result = await self.rdap.lookup(ip)
        if result is None:
            return None
        return Evidence(
            source     = EvidenceSource.RDAP,
            city       = result.city,
            state      = result.state,
            country    = self.default_country,
            confidence = result.confidence,
            weight     = settings.WEIGHT_RDAP,
            meta       = {
                "network_name": result.network_name,
                "isp_circle":   result.isp_circle,
                "registry":     result.source,
            },
        )

    async def from_ensemble(self, ip: str) -> Optional[Evidence]:
        result = await self.ensemble.lookup(ip)
        if result.is_empty:
            return None
        return Evidence(
            source     = EvidenceSource.ENSEMBLE,
            city       = result.city,
            state      = result.state,
            country    = result.country or self.default_country,
            latitude   = result.latitude,
            longitude  = result.longitude,
            confidence = result.confidence,
            weight     = settings.WEIGHT_ENSEMBLE,
            meta       = {
                "agreement":       result.agreement_count,
                "total_sources":   result.total_sources,
                "asn":             result.asn,
                "isp":             result.isp,
                "connection_type": result.connection_type,
                "sources_data":    result.sources_data,
            },
        )

    # ------------------------------------------------------------------ #
    #  Fusión                                                              #
    # ------------------------------------------------------------------ #

    def fuse(self, evidence: list[Evidence]) -> LocationPrediction:
        if not evidence:
            return LocationPrediction(country=self.default_country, confidence=0, method="none")

        state_votes = self._state_votes(evidence)
        best_state  = max(state_votes, key=lambda key: state_votes[key].weight) if state_votes else None

        city_votes = self._city_votes(evidence, best_state)
        best_city  = max(city_votes, key=lambda key: city_votes[key].weight) if city_votes else None

        method = "signal_fusion"
        if best_city is not None:
            voters = [
                e for e in evidence
                if e.city and city_key(e.city) == best_city
            ]
            method = max(voters, key=lambda e: self._city_weight(e, best_state)).source.value

        confidence = self._confidence(evidence, best_state, best_city)
        latitude, longitude = self._coordinates(evidence)

        asn = isp = None
        for e in evidence:
            if e.meta.get("asn"):
                asn = e.meta["asn"]
            if e.meta.get("isp"):
                isp = e.meta["isp"]

        return LocationPrediction(
            city         = city_votes[best_city].display if best_city else None,
            state        = state_votes[best_state].display if best_state else None,
            country      = self._country(evidence),
            confidence   = confidence,
            method       = method,
            latitude     = latitude,
            longitude    = longitude,
            asn          = asn,
            isp          = isp,
            alternatives = self._alternatives(city_votes),
        )

    @staticmethod
    def _state_votes(evidence: list[Evidence]) -> dict[str, _Vote]:
        votes: dict[str, _Vote] = {}
        for e in evidence:
            key = normalize_state(e.state)
            if not key:
                continue
            vote = votes.setdefault(key, _Vote(display=e.state))
            vote.weight += e.weight
            vote.sources.append(e.source)

            # Idiomas hablados en varios estados
            for alt in e.states_alt:
                alt_key = normalize_state(alt)
                if not alt_key or alt_key == key:
                    continue
                votes.setdefault(alt_key, _Vote(display=alt)).weight += e.weight * ALT_STATE_FACTOR
        return votes

    @staticmethod
    def _city_weight(e: Evidence, best_state: Optional[str]) -> float:
        if best_state and normalize_state(e.state) == best_state:
            return e.weight * STATE_MATCH_BOOST
        return e.weight

    def _city_votes(self, evidence: list[Evidence], best_state: Optional[str]) -> dict[str, _Vote]:
        votes: dict[str, _Vote] = {}
        for e in evidence:
            if not e.city:
                continue
            vote = votes.setdefault(city_key(e.city), _Vote(display=normalize_city(e.city)))
            vote.weight += self._city_weight(e, best_state)
            vote.sources.append(e.source)
        return votes

    @staticmethod
    def _confidence(evidence: list[Evidence], best_state: Optional[str], best_city: Optional[str]) -> int:
        total_weight     = sum(e.weight for e in evidence)
        state_agreers    = [e for e in evidence if best_state and normalize_state(e.state) == best_state]
        agreeing_weight  = sum(e.weight for e in state_agreers)
        city_agreers     = sum(1 for e in evidence if best_city and city_key(e.city) == best_city)

        ratio      = agreeing_weight / total_weight if total_weight > 0 else 0.0
        confidence = 30 + ratio * 50

        if city_agreers >= 2:
            confidence += 10
        if city_agreers >= 3:
            confidence += 5

        if len({e.source for e in state_agreers}) >= 3:
            confidence += 8

        if any(e.source is EvidenceSource.EDGE_HEADERS and e.city for e in evidence):
            confidence = max(confidence, EDGE_CONFIDENCE_FLOOR)

        state_weights: dict[str, float] = {}
        for e in evidence:
            key = normalize_state(e.state)
            if key:
                state_weights[key] = state_weights.get(key, 0.0) + e.weight
        if len(state_weights) > 1:
            top, second = sorted(state_weights.values(), reverse=True)[:2]
            split = second / top if top > 0 else 0.0
            if split >= 0.6:
                confidence -= 8
            elif split >= 0.4:
                confidence -= 4

        return min(98, max(10, int(confidence)))

    @staticmethod
    def _coordinates(evidence: list[Evidence]) -> tuple[Optional[float], Optional[float]]:
        for e in evidence:
            if e.source is EvidenceSource.EDGE_HEADERS and e.has_coordinates:
                return e.latitude, e.longitude
        for e in evidence:
            if e.has_coordinates:
                return e.latitude, e.longitude
        return None, None

    def _country(self, evidence: list[Evidence]) -> str:
        votes: dict[str, _Vote] = {}
        for e in evidence:
            if not e.country:
                continue
            key = e.country.strip().upper()
            votes.setdefault(key, _Vote(display=e.country)).weight += e.weight
        if not votes:
            return self.default_country
        return max(votes.values(), key=lambda vote: vote.weight).display

    @staticmethod
    def _alternatives(city_votes: dict[str, _Vote]) -> list[CityAlternative]:
        total = sum(vote.weight for vote in city_votes.values())
        if total <= 0:
            return []
        ranked = sorted(city_votes.values(), key=lambda vote: vote.weight, reverse=True)[:3]
        return [
            CityAlternative(city=vote.display, probability=round(vote.weight / total * 100))
            for vote in ranked
        ]

    @staticmethod
    def _telemetry(
        evidence: list[Evidence],
        confidence: int,
        fallback_reason: Optional[FallbackReason],
    ) -> FusionTelemetry:
        states = {normalize_state(e.state) for e in evidence if e.state}
        cities = {city_key(e.city) for e in evidence if e.city}
        return FusionTelemetry(
            state_disagreement_count = max(0, len(states) - 1),
            city_disagreement_count  = max(0, len(cities) - 1),
            fallback_reason          = fallback_reason,
            confidence_bucket        = ConfidenceBucket.for_confidence(confidence),
            source_participation     = [e.source.value for e in evidence],
            total_sources            = len(evidence),
        )
