"""
evidence.py
-----------
Forma común que emite cada extractor de señales antes de la fusión.

Una Evidence es el reclamo de ubicación de UNA fuente más el peso de
confianza que la fusión le asigna. `city` solo se llena cuando el
extractor observó la ciudad directamente, nunca con un mero candidato.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class EvidenceSource(str, Enum):
    EDGE_HEADERS  = "cloudflare"
    NETWORK_PROBE = "network_probe"
    WEBRTC_CGN    = "webrtc_cgn"
    LANGUAGE      = "language"
    FONTS         = "fonts"
    LOCAL_GEOIP   = "local_geoip"
    REVERSE_DNS   = "reverse_dns"
    RDAP          = "rdap"
    ENSEMBLE      = "ensemble_ip"
    IP_PROVIDER   = "ip_provider"   # una respuesta individual dentro del ensemble


@dataclass
class Evidence:
    source:     EvidenceSource
    confidence: int
    weight:     float
    city:       Optional[str]   = None
    state:      Optional[str]   = None
    states_alt: list[str]       = field(default_factory=list)
    country:    Optional[str]   = None
    latitude:   Optional[float] = None
    longitude:  Optional[float] = None
    meta:       dict[str, Any]  = field(default_factory=dict)

    def __post_init__(self):
        self.confidence = max(0, min(100, int(self.confidence)))

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None
