"""
dependencies.py
---------------
Dependencias reutilizables para inyectar en los routers de FastAPI.

El orquestador se construye una sola vez en el lifespan de main.py y
queda en app.state; los routers lo piden con Depends(get_orchestrator).
"""

from typing import Optional

from fastapi import Request

from app.core.exceptions import InvalidConfigurationException
from app.domain.schemas import EdgeGeoHeaders
from app.services.location_orchestrator import LocationOrchestrator


def get_orchestrator(request: Request) -> LocationOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise InvalidConfigurationException("El orquestador no fue inicializado")
    return orchestrator


def get_client_ip(request: Request) -> Optional[str]:
    return getattr(request.state, "client_ip", None)


def get_edge_headers(request: Request) -> Optional[EdgeGeoHeaders]:
    return getattr(request.state, "edge_headers", None)
