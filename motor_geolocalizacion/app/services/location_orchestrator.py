"""
location_orchestrator.py
------------------------
Orquestador del Motor de Geolocalización.

No contiene lógica de inferencia propia: delega en FusionEngine,
VpnScorer e IpRangeLearningStore y arma la respuesta final.

Flujo de detect():
  1. FusionEngine.infer            → predicción de ciudad/estado
  2. VpnScorer.detect              → ASN, hostname, AS-org del edge, probe
  3. Penalización por VPN          → -VPN_CONFIDENCE_PENALTY
  4. Rango aprendido               → solo si la fusión no dio ciudad
  5. Confianza < MIN_CITY_CONFIDENCE o sin ciudad
                                   → se quita la ciudad y se recomienda
                                     soft_prompt con alternativas
  6. Aprendizaje en background     → fire-and-forget, solo con confianza
                                     ≥ umbral Y ubicación verificada
"""

import asyncio
import logging
import time
from typing import Optional

from app.core.config import settings
from app.domain.learned_range import LearnedIpRange
from app.domain.schemas import (
    ConfidenceBucket,
    DetectionResponse,
    LearnedRangeMatch,
    LocationPrediction,
    LocationSignals,
    Recommendation,
    VpnAssessment,
)
from app.services.fusion_engine import FusionEngine
from app.services.ip_range_learning import DetectionRecord, IpRangeLearningStore
from app.services.vpn_scorer import VpnScorer

logger = logging.getLogger(__name__)


class LocationOrchestrator:

    def __init__(
        self,
        fusion: FusionEngine,
        vpn_scorer: VpnScorer,
        learning: IpRangeLearningStore,
        vpn_penalty: Optional[int] = None,
        min_city_confidence: Optional[int] = None,
    ):
        self.fusion              = fusion
        self.vpn_scorer          = vpn_scorer
        self.learning            = learning
        self.vpn_penalty         = vpn_penalty if vpn_penalty is not None else settings.VPN_CONFIDENCE_PENALTY
        self.min_city_confidence = min_city_confidence if min_city_confidence is not None else settings.MIN_CITY_CONFIDENCE
        self._background_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    #  Operaciones expuestas                                              #
    # ------------------------------------------------------------------ #

    async def infer(self, ip: Optional[str], signals: LocationSignals) -> LocationPrediction:
        return await self.fusion.infer(ip, signals)

    def detect_vpn(
        self,
        ip: str,
        asn: Optional[str] = None,
        hostname: Optional[str] = None,
        as_organization: Optional[str] = None,
        probe_indicators: Optional[list[str]] = None,
    ) -> VpnAssessment:
        return self.vpn_scorer.detect(
            ip,
            asn              = asn,
            hostname         = hostname,
            as_organization  = as_organization,
            probe_indicators = probe_indicators,
        )

    async def learn_from(self, detection: DetectionRecord) -> Optional[LearnedIpRange]:
        return await self.learning.learn(detection)

    async def check_learned(self, ip: str) -> Optional[LearnedRangeMatch]:
        return await self.learning.check(ip)

    # ------------------------------------------------------------------ #
    #  Flujo completo                                                      #
    # ------------------------------------------------------------------ #

    async def detect(
        self,
        ip: Optional[str],
        signals: LocationSignals,
        location_verified: bool = False,
    ) -> DetectionResponse:
        start_time = time.perf_counter()

        prediction = await self.infer(ip, signals)

        edge = signals.edge_headers
        vpn = self.detect_vpn(
            ip or "",
            asn              = prediction.asn,
            hostname         = prediction.reverse_dns_hostname,
            as_organization  = edge.as_organization if edge else None,
            probe_indicators = prediction.probe_vpn_indicators,
        )

        if vpn.is_vpn and prediction.confidence > 0:
            prediction.confidence = max(0, prediction.confidence - self.vpn_penalty)

        learned_range_used = False
        if not prediction.city and ip:
            learned = await self.check_learned(ip)
            if learned:
                prediction.city       = learned.city
                prediction.state      = learned.state or prediction.state
                prediction.confidence = learned.confidence
                prediction.method     = "ip_range_learning"
                learned_range_used    = True
                logger.info(
                    f"[Orchestrator] Rango aprendido  ip={ip}  city={learned.city}  "
                    f"samples={learned.sample_count}"
                )

        recommendation = None
        alternatives   = []
        if prediction.confidence < self.min_city_confidence or not prediction.city:
            recommendation = Recommendation.SOFT_PROMPT
            alternatives   = prediction.alternatives
            if prediction.confidence < self.min_city_confidence:
                prediction.city = None

        prediction.telemetry.confidence_bucket = ConfidenceBucket.for_confidence(prediction.confidence)

        if ip and prediction.city and location_verified:
            self._schedule_learning(DetectionRecord(
                ip                   = ip,
                city                 = prediction.city,
                state                = prediction.state,
                confidence           = prediction.confidence,
                isp                  = prediction.isp,
                asn                  = prediction.asn,
                reverse_dns          = prediction.reverse_dns_hostname,
                is_location_verified = location_verified,
            ))

        processing_ms = int((time.perf_counter() - start_time) * 1000)
        logger.info(
            f"[Orchestrator] ip={ip}  city={prediction.city}  confidence={prediction.confidence}  "
            f"vpn={vpn.is_vpn}  recommendation={recommendation.value if recommendation else None}  "
            f"time={processing_ms}ms"
        )

        return DetectionResponse(
            location           = prediction,
            vpn                = vpn,
            recommendation     = recommendation,
            alternatives       = alternatives,
            learned_range_used = learned_range_used,
            processing_time_ms = processing_ms,
        )

    # ------------------------------------------------------------------ #
    #  Background                                                          #
    # ------------------------------------------------------------------ #

    def _schedule_learning(self, detection: DetectionRecord) -> None:
        if not self.learning.should_learn(detection):
            return
        # Se guarda la referencia para que el GC no cancele la tarea
        task = asyncio.create_task(self._background_learn(detection))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _background_learn(self, detection: DetectionRecord) -> None:
        try:
            await self.learn_from(detection)
        except Exception as exc:
            # Fire-and-forget: la respuesta ya fue enviada
            logger.error(f"[Orchestrator] Error aprendiendo rango  ip={detection.ip}: {exc}")

    async def wait_for_background(self) -> None:
        """Espera las tareas de aprendizaje pendientes (shutdown y tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
