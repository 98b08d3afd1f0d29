"""
network_probe.py
----------------
Interpreta las mediciones de red hechas desde el navegador.

Señales:
  - cf_trace: PoP del edge al que llegó el navegador (colo), RTT medido
    y la IP que el edge vio desde el navegador.
  - webrtc:   IPs locales del dispositivo. En 4G la IP local es CGN
    (100.64.0.0/10) y el /24 identifica el gateway del operador, lo
    que permite distinguir ciudades dentro del mismo círculo.

Reglas del PoP:
  - IP del navegador ≠ IP del servidor → split_tunnel_proxy
  - colo fuera de la tabla de PoPs indios → foreign_cf_colo (y se detiene)
  - RTT ≤ PROBE_RTT_CITY_MS  → ciudad del PoP (city 72 / state 88)
  - RTT ≤ PROBE_RTT_STATE_MS → solo estado (78)
  - RTT mayor               → solo estado (60)
  - sin RTT                 → solo estado (65)

La evidencia CGN con ciudad tiene prioridad sobre la del PoP; los
chequeos de VPN del PoP corren igual.
"""

import ipaddress
import logging
from dataclasses import dataclass, field
from typing import Optional

from app.core.config import settings
from app.domain.evidence import Evidence, EvidenceSource
from app.domain.gazetteer import CGN_SUBNETS, EDGE_POPS
from app.domain.schemas import CfTraceProbe, NetworkProbes, WebRtcProbe

logger = logging.getLogger(__name__)

CGN_NETWORK = ipaddress.ip_network("100.64.0.0/10")

CITY_RTT_CITY_CONFIDENCE  = 72
CITY_RTT_STATE_CONFIDENCE = 88
STATE_RTT_CONFIDENCE      = 78
FAR_RTT_CONFIDENCE        = 60
NO_RTT_CONFIDENCE         = 65


@dataclass
class ProbeResult:
    location_evidence: Optional[Evidence] = None
    vpn_indicators:    list[str]          = field(default_factory=list)
    candidates:        list[str]          = field(default_factory=list)
    colo:              Optional[str]      = None
    rtt_ms:            Optional[int]      = None


class NetworkProbeInterpreter:

    def __init__(
        self,
        rtt_city_ms: Optional[int] = None,
        rtt_state_ms: Optional[int] = None,
        cgn_weight: Optional[float] = None,
        default_country: Optional[str] = None,
    ):
        self.rtt_city_ms     = rtt_city_ms or settings.PROBE_RTT_CITY_MS
        self.rtt_state_ms    = rtt_state_ms or settings.PROBE_RTT_STATE_MS
        self.cgn_weight      = cgn_weight or settings.WEIGHT_WEBRTC_CGN
        self.default_country = default_country or settings.DEFAULT_COUNTRY

    def process(self, probes: Optional[NetworkProbes], server_ip: Optional[str]) -> ProbeResult:
        result = ProbeResult()
        if probes is None:
            return result

        if probes.webrtc is not None and probes.webrtc.local_ips:
            result.location_evidence = self._from_cgn_local_ip(probes.webrtc)

        trace = probes.cf_trace
        if trace is None or not trace.colo:
            return result

        colo     = trace.colo.strip().upper()
        rtt_ms   = int(trace.rtt_ms) if trace.rtt_ms is not None else None
        trace_ip = (trace.ip or "").strip()

        result.colo   = colo
        result.rtt_ms = rtt_ms

        if self._is_split_tunnel(trace_ip, server_ip):
            result.vpn_indicators.append("split_tunnel_proxy")
            logger.info(f"[NetworkProbe] Split tunnel  server_ip={server_ip}  browser_ip={trace_ip}")

        pop = EDGE_POPS.get(colo)
        if pop is None:
            result.vpn_indicators.append("foreign_cf_colo")
            logger.info(f"[NetworkProbe] colo={colo} fuera de India, probable VPN/proxy")
            return result

        claimed_city     = None
        city_confidence  = 0
        state_confidence = NO_RTT_CONFIDENCE

        if rtt_ms is not None:
            if rtt_ms <= self.rtt_city_ms:
                claimed_city     = pop.city
                city_confidence  = CITY_RTT_CITY_CONFIDENCE
                state_confidence = CITY_RTT_STATE_CONFIDENCE
            elif rtt_ms <= self.rtt_state_ms:
                state_confidence = STATE_RTT_CONFIDENCE
            else:
                state_confidence = FAR_RTT_CONFIDENCE

        confidence = max(city_confidence, state_confidence) if claimed_city else state_confidence
        result.candidates = list(pop.candidates)

        has_cgn_city = result.location_evidence is not None and result.location_evidence.city
        if not has_cgn_city:
            result.location_evidence = Evidence(
                source     = EvidenceSource.NETWORK_PROBE,
                city       = claimed_city,
                state      = pop.state,
                country    = self.default_country,
                confidence = confidence,
                weight     = pop.weight,
                meta       = {
                    "colo":             colo,
                    "rtt_ms":           rtt_ms,
                    "candidates":       list(pop.candidates),
                    "city_confidence":  city_confidence,
                    "state_confidence": state_confidence,
                },
            )

        logger.info(
            f"[NetworkProbe] colo={colo}  rtt={rtt_ms}ms  state={pop.state}  "
            f"claimed_city={claimed_city}  state_conf={state_confidence}  city_conf={city_confidence}"
        )
        return result

    @staticmethod
    def _is_split_tunnel(trace_ip: str, server_ip: Optional[str]) -> bool:
        if not trace_ip or not server_ip:
            return False
        try:
            return ipaddress.ip_address(trace_ip) != ipaddress.ip_address(server_ip)
        except ValueError:
            return False

    def _from_cgn_local_ip(self, webrtc: WebRtcProbe) -> Optional[Evidence]:
        for local_ip in webrtc.local_ips:
            try:
                address = ipaddress.ip_address(local_ip.strip())
            except ValueError:
                continue
            if address.version != 4 or address not in CGN_NETWORK:
                continue

            prefix  = ".".join(str(address).split(".")[:3])
            gateway = CGN_SUBNETS.get(prefix)
            if gateway is None:
                continue

            logger.info(
                f"[NetworkProbe] CGN  ip={local_ip}  prefix={prefix}  "
                f"city={gateway.city}  isp={gateway.isp}"
            )
            return Evidence(
                source     = EvidenceSource.WEBRTC_CGN,
                city       = gateway.city,
                state      = gateway.state,
                country    = self.default_country,
                confidence = gateway.confidence,
                weight     = self.cgn_weight,
                meta       = {
                    "cgn_ip":          local_ip,
                    "cgn_prefix":      prefix,
                    "isp":             gateway.isp,
                    "connection_type": webrtc.connection_type,
                },
            )

        return None
