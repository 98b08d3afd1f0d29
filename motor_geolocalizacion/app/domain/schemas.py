"""
schemas.py
----------
Schemas Pydantic de entrada (señales pasivas) y salida (predicción).
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, IPvAnyAddress, field_validator


# ─────────────────────────────────────────────────────────────────────
# ENUMS
# ─────────────────────────────────────────────────────────────────────

class ConfidenceBucket(str, Enum):
    HIGH     = "high"
    MEDIUM   = "medium"
    LOW      = "low"
    VERY_LOW = "very_low"

    @classmethod
    def for_confidence(cls, confidence: int) -> "ConfidenceBucket":
        if confidence >= 85:
            return cls.HIGH
        if confidence >= 70:
            return cls.MEDIUM
        if confidence >= 55:
            return cls.LOW
        return cls.VERY_LOW


class FallbackReason(str, Enum):
    LOW_EVIDENCE_WEIGHT = "low_evidence_weight"
    NO_CITY_EVIDENCE    = "no_city_evidence"


class Recommendation(str, Enum):
    SOFT_PROMPT = "soft_prompt"   # pedir al usuario que confirme su ciudad


# ─────────────────────────────────────────────────────────────────────
# SEÑALES (recolectadas por el SDK del navegador y el edge)
# ─────────────────────────────────────────────────────────────────────

class RegionalLanguage(BaseModel):
    code:     str
    position: int           = Field(0, ge=0)   # índice en navigator.languages
    language: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class LanguageAnalysis(BaseModel):
    regional: list[RegionalLanguage] = []

    model_config = ConfigDict(extra="ignore")


class CfTraceProbe(BaseModel):
    """Resultado de /cdn-cgi/trace pedido desde el navegador."""
    colo:   Optional[str]   = None
    rtt_ms: Optional[float] = Field(None, ge=0)
    ip:     Optional[str]   = None

    model_config = ConfigDict(extra="ignore")


class WebRtcProbe(BaseModel):
    local_ips:       list[str]     = []
    connection_type: Optional[str] = None   # cgn_cellular | private_wifi | unknown

    model_config = ConfigDict(extra="ignore")


class NetworkProbes(BaseModel):
    cf_trace: Optional[CfTraceProbe] = None
    webrtc:   Optional[WebRtcProbe]  = None

    model_config = ConfigDict(extra="ignore")


class EdgeGeoHeaders(BaseModel):
    """Headers geográficos inyectados por el edge (Cloudflare Worker)."""
    city:            Optional[str]   = None
    region:          Optional[str]   = None
    country:         Optional[str]   = None
    latitude:        Optional[float] = Field(None, ge=-90,  le=90)
    longitude:       Optional[float] = Field(None, ge=-180, le=180)
    timezone:        Optional[str]   = None
    as_organization: Optional[str]   = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class LocationSignals(BaseModel):
    language_analysis: Optional[LanguageAnalysis] = None
    regional_fonts:    list[str]                  = []
    network_probes:    Optional[NetworkProbes]    = None
    edge_headers:      Optional[EdgeGeoHeaders]   = None
    timezone:          Optional[str]              = None
    language:          Optional[str]              = None

    model_config = ConfigDict(extra="ignore")


# ─────────────────────────────────────────────────────────────────────
# SALIDA DEL MOTOR
# ─────────────────────────────────────────────────────────────────────

class CityAlternative(BaseModel):
    city:        str
    probability: int = Field(..., ge=0, le=100)


class FusionTelemetry(BaseModel):
    state_disagreement_count: int                      = 0
    city_disagreement_count:  int                      = 0
    fallback_reason:          Optional[FallbackReason] = None
    confidence_bucket:        ConfidenceBucket         = ConfidenceBucket.VERY_LOW
    source_participation:     list[str]                = []
    total_sources:            int                      = 0


class LocationPrediction(BaseModel):
    city:                 Optional[str]   = None
    state:                Optional[str]   = None
    country:              Optional[str]   = None
    confidence:           int             = Field(0, ge=0, le=100)
    method:               str             = "none"
    latitude:             Optional[float] = None
    longitude:            Optional[float] = None
    asn:                  Optional[str]   = None
    isp:                  Optional[str]   = None
    reverse_dns_hostname: Optional[str]   = None
    alternatives:         list[CityAlternative] = []
    telemetry:            FusionTelemetry = Field(default_factory=FusionTelemetry)
    # Indicadores de VPN que salieron del probe de red del navegador
    probe_vpn_indicators: list[str]       = []


class VpnAssessment(BaseModel):
    is_vpn:     bool
    confidence: int       = Field(..., ge=0, le=100)
    score:      int       = Field(..., ge=0)
    indicators: list[str] = []


class LearnedRangeMatch(BaseModel):
    city:         str
    state:        Optional[str] = None
    confidence:   int
    sample_count: int


class DetectionResponse(BaseModel):
    location:           LocationPrediction
    vpn:                VpnAssessment
    recommendation:     Optional[Recommendation] = None
    alternatives:       list[CityAlternative]    = []
    learned_range_used: bool                     = False
    processing_time_ms: int                      = 0


# ─────────────────────────────────────────────────────────────────────
# REQUESTS DE LA API
# ─────────────────────────────────────────────────────────────────────

class InferRequest(BaseModel):
    ip:                Optional[IPvAnyAddress] = None   # default: IP del request
    signals:           LocationSignals         = Field(default_factory=LocationSignals)
    # Solo True cuando la ubicación fue confirmada por un canal externo
    location_verified: bool                    = False

    model_config = ConfigDict(extra="ignore")


class VpnCheckRequest(BaseModel):
    ip:               IPvAnyAddress
    asn:              Optional[str] = None
    hostname:         Optional[str] = None
    as_organization:  Optional[str] = None
    probe_indicators: list[str]     = []

    model_config = ConfigDict(extra="ignore")
