"""
vpn_scorer.py
-------------
Score heurístico de VPN/proxy. Suma puntos por cada indicador:

  datacenter_asn        +40  ASN en la lista de datacenters
  vpn_hostname          +50  palabra de VPN/proxy en el hostname reverso
  hosting_provider      +25  palabra de hosting en hostname o ASN
  suspicious_ip_range   +20  IP privada/reservada fuera de entornos de confianza
  vpn_organization      +60  palabra de VPN en la AS-organization del edge
  hosting_provider      +25  hosting en la AS-organization (si no se marcó antes)
  foreign_cf_colo       +55  el navegador llegó a un PoP fuera de India
  split_tunnel_proxy    +45  IP del navegador ≠ IP del servidor

is_vpn = score ≥ 50
confidence = min(95, score) si es VPN, si no max(5, 100 - score)
"""

import ipaddress
import logging
from typing import Optional

from app.core.config import settings
from app.domain.gazetteer import HOSTING_KEYWORDS, VPN_KEYWORDS, normalize_asn
from app.domain.schemas import VpnAssessment

logger = logging.getLogger(__name__)

VPN_THRESHOLD = 50

PROBE_INDICATOR_SCORES = {
    "foreign_cf_colo":    55,
    "split_tunnel_proxy": 45,
}


def _contains_any(text: Optional[str], keywords: tuple[str, ...]) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)


def is_private_or_reserved(ip: str) -> bool:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return True
    return (
        address.is_private
        or address.is_reserved
        or address.is_loopback
        or address.is_link_local
        or address.is_multicast
        or address.is_unspecified
    )


class VpnScorer:

    def __init__(
        self,
        datacenter_asns: Optional[list[str]] = None,
        environment: Optional[str] = None,
        trusted_environments: Optional[list[str]] = None,
    ):
        asns = datacenter_asns if datacenter_asns is not None else settings.DATACENTER_ASNS
        self.datacenter_asns      = {normalize_asn(asn) for asn in asns}
        self.environment          = environment or settings.ENVIRONMENT
        self.trusted_environments = set(
            trusted_environments if trusted_environments is not None else settings.TRUSTED_ENVIRONMENTS
        )

    def detect(
        self,
        ip: str,
        asn: Optional[str] = None,
        hostname: Optional[str] = None,
        as_organization: Optional[str] = None,
        probe_indicators: Optional[list[str]] = None,
    ) -> VpnAssessment:
        score = 0
        indicators: list[str] = []

        if asn and normalize_asn(asn) in self.datacenter_asns:
            score += 40
            indicators.append("datacenter_asn")

        if _contains_any(hostname, VPN_KEYWORDS):
            score += 50
            indicators.append("vpn_hostname")

        if _contains_any(f"{hostname or ''} {asn or ''}", HOSTING_KEYWORDS):
            score += 25
            indicators.append("hosting_provider")

        if is_private_or_reserved(ip) and self.environment not in self.trusted_environments:
            score += 20
            indicators.append("suspicious_ip_range")

        if _contains_any(as_organization, VPN_KEYWORDS):
            score += 60
            indicators.append("vpn_organization")

        if "hosting_provider" not in indicators and _contains_any(as_organization, HOSTING_KEYWORDS):
            score += 25
            indicators.append("hosting_provider")

        for indicator in probe_indicators or []:
            if indicator in indicators:
                continue
            probe_score = PROBE_INDICATOR_SCORES.get(indicator, 0)
            if probe_score > 0:
                score += probe_score
                indicators.append(indicator)

        is_vpn     = score >= VPN_THRESHOLD
        confidence = min(95, score) if is_vpn else max(5, 100 - score)

        if is_vpn:
            logger.info(f"[VPN] Detectado  ip={ip}  score={score}  indicators={','.join(indicators)}")
        else:
            logger.debug(f"[VPN] ip={ip}  score={score}")

        return VpnAssessment(
            is_vpn     = is_vpn,
            confidence = confidence,
            score      = score,
            indicators = indicators,
        )
