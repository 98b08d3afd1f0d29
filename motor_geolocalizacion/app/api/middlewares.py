"""
middlewares.py
--------------
Middlewares del Motor de Geolocalización.

Middlewares incluidos:
  1. EdgeGeoHeadersMiddleware → lee los headers geográficos del edge
  2. SecurityHeadersMiddleware → headers de seguridad HTTP
  3. setup_cors()              → CORS para el SDK del navegador

El EdgeGeoHeadersMiddleware inyecta en request.state:
  - request.state.client_ip    → IP real del cliente
  - request.state.edge_headers → EdgeGeoHeaders o None si el edge no
                                 mandó ningún dato geográfico

El router usa estos valores cuando el body no trae IP ni edge_headers.
"""

import logging
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from app.domain.schemas import EdgeGeoHeaders

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# 1. Edge Geo Headers Middleware
# ─────────────────────────────────────────────────────────────────────

class EdgeGeoHeadersMiddleware(BaseHTTPMiddleware):
    """
    El Worker del edge reenvía la geolocalización de Cloudflare como
    headers. Se aceptan los nombres nativos (CF-IPCity) y los que pone
    el Worker (X-CF-City); el nativo tiene prioridad.
    """

    ENRICH_PREFIX = "/v1/location"

    HEADER_NAMES = {
        "city":            ("CF-IPCity",      "X-CF-City"),
        "region":          ("CF-IPRegion",    "X-CF-Region"),
        "country":         ("CF-IPCountry",   "X-CF-Country"),
        "latitude":        ("CF-IPLatitude",  "X-CF-Latitude"),
        "longitude":       ("CF-IPLongitude", "X-CF-Longitude"),
        "timezone":        ("CF-Timezone",    "X-CF-Timezone"),
        "as_organization": ("CF-ASOrg",       "X-CF-ASOrg"),
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(self.ENRICH_PREFIX):
            request.state.client_ip    = self._client_ip(request)
            request.state.edge_headers = self._edge_headers(request)

        return await call_next(request)

    @staticmethod
    def _client_ip(request: Request) -> Optional[str]:
        connecting_ip = request.headers.get("CF-Connecting-IP")
        if connecting_ip:
            return connecting_ip.strip()

        # Primera IP de la lista: la del cliente original
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        return request.client.host if request.client else None

    def _edge_headers(self, request: Request) -> Optional[EdgeGeoHeaders]:
        values = {}
        for field_name, header_names in self.HEADER_NAMES.items():
            for header_name in header_names:
                value = request.headers.get(header_name)
                if value and value.strip():
                    values[field_name] = value.strip()
                    break

        if not values:
            return None

        try:
            return EdgeGeoHeaders(**values)
        except ValidationError as e:
            # Coordenadas corruptas: se conserva el resto de los headers
            logger.warning(f"[EdgeHeaders] Headers inválidos, se ignoran coordenadas: {e.error_count()} errores")
            values.pop("latitude", None)
            values.pop("longitude", None)
            return EdgeGeoHeaders(**values) if values else None


# ─────────────────────────────────────────────────────────────────────
# 2. Security Headers Middleware
# ─────────────────────────────────────────────────────────────────────

class SecurityHeadersMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"]        = "DENY"
        response.headers["Referrer-Policy"]        = "strict-origin-when-cross-origin"

        # La ubicación inferida es dato personal: no se cachea
        response.headers["Cache-Control"] = "no-store, private"

        return response


# ─────────────────────────────────────────────────────────────────────
# 3. CORS
# ─────────────────────────────────────────────────────────────────────

def setup_cors(app: FastAPI, allowed_origins: list[str]) -> None:
    """
    El SDK corre en el navegador del usuario y hace POST con JSON.
    Llamar desde main.py antes de registrar otros middlewares.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins     = allowed_origins,
        allow_credentials = False,
        allow_methods     = ["GET", "POST", "OPTIONS"],
        allow_headers     = ["Content-Type", "X-Request-ID"],
        max_age           = 600,
    )
