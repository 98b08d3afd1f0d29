"""
http_fetch.py
-------------
GET de JSON con timeouts estrictos para los proveedores externos
(APIs de geolocalización por IP y registros RDAP).

Contrato:
  get_json(url, connect_timeout, timeout) → (status_code, body | None)

  - Un body que no es JSON válido se retorna como None, no como error.
  - Timeout o error de red → ExternalApiUnavailableException; el
    llamador decide si eso cuenta como fallo del proveedor.

El transport de httpx es inyectable: los tests usan httpx.MockTransport.
"""

import logging
from typing import Any, Optional

import httpx

from app.core.exceptions import ExternalApiUnavailableException

logger = logging.getLogger(__name__)

USER_AGENT = "motor-geolocalizacion/1.0"


class HttpFetch:

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    async def get_json(
        self,
        url: str,
        connect_timeout: float,
        timeout: float,
        headers: Optional[dict[str, str]] = None,
    ) -> tuple[int, Optional[Any]]:
        request_headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if headers:
            request_headers.update(headers)

        try:
            async with httpx.AsyncClient(
                timeout   = httpx.Timeout(timeout, connect=connect_timeout),
                transport = self._transport,
                follow_redirects = True,
            ) as client:
                response = await client.get(url, headers=request_headers)

        except httpx.TimeoutException as e:
            raise ExternalApiUnavailableException(f"Timeout consultando {url}") from e
        except httpx.HTTPError as e:
            raise ExternalApiUnavailableException(f"Error de red consultando {url}: {e}") from e

        try:
            body = response.json()
        except ValueError:
            logger.debug(f"[HTTP] Respuesta no JSON  url={url}  status={response.status_code}")
            body = None

        return response.status_code, body
