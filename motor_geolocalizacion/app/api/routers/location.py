"""
location.py — Router del Motor de Geolocalización
-------------------------------------------------
Expone:
  POST /v1/location/infer         → predicción de ciudad/estado + VPN
  POST /v1/location/vpn           → solo el score de VPN
  GET  /v1/location/learned/{ip}  → rango aprendido que contiene la IP
"""

import ipaddress
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies import get_client_ip, get_edge_headers, get_orchestrator
from app.domain.schemas import (
    DetectionResponse,
    EdgeGeoHeaders,
    InferRequest,
    LearnedRangeMatch,
    VpnAssessment,
    VpnCheckRequest,
)
from app.services.location_orchestrator import LocationOrchestrator

router = APIRouter(prefix="/v1/location", tags=["Location"])


# ── POST /v1/location/infer ───────────────────────────────────────────

@router.post(
    "/infer",
    response_model = DetectionResponse,
    summary        = "Inferir ciudad y estado a partir de señales pasivas",
)
async def infer_location(
    body:         InferRequest,
    client_ip:    Optional[str]            = Depends(get_client_ip),
    edge_headers: Optional[EdgeGeoHeaders] = Depends(get_edge_headers),
    orchestrator: LocationOrchestrator     = Depends(get_orchestrator),
) -> DetectionResponse:
    ip = str(body.ip) if body.ip else client_ip

    # Los headers del edge que vienen en el body ganan sobre los del request
    signals = body.signals
    if signals.edge_headers is None and edge_headers is not None:
        signals = signals.model_copy(update={"edge_headers": edge_headers})

    return await orchestrator.detect(ip, signals, location_verified=body.location_verified)


# ── POST /v1/location/vpn ─────────────────────────────────────────────

@router.post(
    "/vpn",
    response_model = VpnAssessment,
    summary        = "Score heurístico de VPN/proxy",
)
async def check_vpn(
    body:         VpnCheckRequest,
    orchestrator: LocationOrchestrator = Depends(get_orchestrator),
) -> VpnAssessment:
    return orchestrator.detect_vpn(
        str(body.ip),
        asn              = body.asn,
        hostname         = body.hostname,
        as_organization  = body.as_organization,
        probe_indicators = body.probe_indicators,
    )


# ── GET /v1/location/learned/{ip} ─────────────────────────────────────

@router.get(
    "/learned/{ip}",
    response_model = LearnedRangeMatch,
    summary        = "Rango IP aprendido que contiene la IP",
)
async def get_learned_range(
    ip:           str,
    orchestrator: LocationOrchestrator = Depends(get_orchestrator),
) -> LearnedRangeMatch:
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        raise HTTPException(
            status_code = status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail      = f"IP inválida: {ip}",
        )

    match = await orchestrator.check_learned(ip)
    if match is None:
        raise HTTPException(
            status_code = status.HTTP_404_NOT_FOUND,
            detail      = "No hay un rango aprendido activo para esta IP",
        )
    return match
