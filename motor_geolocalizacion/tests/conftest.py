"""
Fixtures compartidas: caché y almacén de rangos en memoria, DNS falso,
lector GeoIP falso y un transport httpx que simula a los proveedores.
"""

from types import SimpleNamespace
from typing import Callable, Optional

import geoip2.errors
import httpx
import pytest

from app.infrastructure.cache.memory_cache import MemoryCache
from app.infrastructure.database.range_store import MemoryRangeStore
from app.infrastructure.geoip.local_geo_db import LocalGeoDatabaseReader
from app.infrastructure.http.http_fetch import HttpFetch
from app.services.ensemble_aggregator import EnsembleAggregator
from app.services.fusion_engine import FusionEngine
from app.services.ip_range_learning import IpRangeLearningStore
from app.services.language_mapper import LanguageStateMapper
from app.services.location_orchestrator import LocationOrchestrator
from app.services.reverse_dns import ReverseDnsResolver
from app.services.vpn_scorer import VpnScorer


# ─────────────────────────────────────────────────────────────────────
# Respuestas de proveedores (Bangalore con ambos nombres)
# ─────────────────────────────────────────────────────────────────────

BANGALORE_RESPONSES = {
    "ip-api.com": {
        "status": "success", "city": "Bengaluru", "regionName": "Karnataka",
        "country": "India", "countryCode": "IN", "lat": 12.97, "lon": 77.59,
        "isp": "Reliance Jio", "as": "AS55836 Reliance Jio Infocomm",
    },
    "ipwho.is": {
        "success": True, "city": "Bangalore", "region": "Karnataka",
        "country": "India", "country_code": "IN", "latitude": 12.98, "longitude": 77.60,
        "connection": {"asn": 55836, "isp": "Reliance Jio"},
    },
    "ipapi.co": {
        "city": "Bengaluru", "region": "Karnataka", "country_name": "India",
        "country_code": "IN", "latitude": 12.97, "longitude": 77.58,
        "asn": "AS55836", "org": "Reliance Jio",
    },
    "ipwhois.app": {
        "success": True, "city": "Bangalore", "region": "Karnataka",
        "country": "India", "country_code": "IN", "latitude": 12.96, "longitude": 77.59,
        "connection": {"asn": "AS55836", "isp": "Reliance Jio"},
    },
    "freeipapi.com": {
        "cityName": "Bangalore", "regionName": "Karnataka", "countryName": "India",
        "countryCode": "IN", "latitude": 12.96, "longitude": 77.57,
    },
    "www.geoplugin.net": {
        "geoplugin_city": "Bengaluru", "geoplugin_region": "Karnataka",
        "geoplugin_countryName": "India", "geoplugin_countryCode": "IN",
        "geoplugin_latitude": "12.97", "geoplugin_longitude": "77.59",
    },
}

# Cada proveedor en una ciudad distinta, a cientos de km entre sí
DISPERSED_RESPONSES = {
    "ip-api.com": {
        "status": "success", "city": "Mumbai", "regionName": "Maharashtra",
        "country": "India", "countryCode": "IN", "lat": 19.07, "lon": 72.87,
    },
    "ipwho.is": {
        "success": True, "city": "Delhi", "region": "Delhi",
        "country": "India", "latitude": 28.61, "longitude": 77.20,
    },
    "ipapi.co": {
        "city": "Chennai", "region": "Tamil Nadu", "country_name": "India",
        "latitude": 13.08, "longitude": 80.27,
    },
    "ipwhois.app": {
        "success": True, "city": "Kolkata", "region": "West Bengal",
        "country": "India", "latitude": 22.57, "longitude": 88.36,
    },
    "freeipapi.com": {
        "cityName": "Bangalore", "regionName": "Karnataka", "countryName": "India",
        "latitude": 12.97, "longitude": 77.59,
    },
    "www.geoplugin.net": {
        "geoplugin_city": "Hyderabad", "geoplugin_region": "Telangana",
        "geoplugin_countryName": "India",
        "geoplugin_latitude": "17.38", "geoplugin_longitude": "78.48",
    },
}


class RecordingTransport(httpx.MockTransport):
    """MockTransport que además guarda cada request recibido."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: list[httpx.Request] = []

        def recording_handler(request: httpx.Request):
            self.requests.append(request)
            return handler(request)

        super().__init__(recording_handler)


def provider_transport(responses: dict[str, dict], status_code: int = 200) -> RecordingTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        body = responses.get(request.url.host)
        if body is None:
            return httpx.Response(404, json={"error": True})
        return httpx.Response(status_code, json=body)

    return RecordingTransport(handler)


def failing_transport() -> RecordingTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return RecordingTransport(handler)


# ─────────────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────────────

class FakeDnsLookup:

    def __init__(self, hostname: Optional[str] = None):
        self.hostname = hostname
        self.calls: list[str] = []

    async def lookup(self, ip: str) -> Optional[str]:
        self.calls.append(ip)
        return self.hostname


def fake_geo_record(
    city: Optional[str] = "Bengaluru",
    state: Optional[str] = "Karnataka",
    accuracy_radius: Optional[int] = 5,
    asn: Optional[int] = 55836,
):
    return SimpleNamespace(
        city         = SimpleNamespace(name=city),
        subdivisions = SimpleNamespace(most_specific=SimpleNamespace(name=state)),
        country      = SimpleNamespace(name="India", iso_code="IN"),
        postal       = SimpleNamespace(code="560001"),
        location     = SimpleNamespace(
            latitude        = 12.9716,
            longitude       = 77.5946,
            accuracy_radius = accuracy_radius,
            time_zone       = "Asia/Kolkata",
        ),
        traits       = SimpleNamespace(isp="Reliance Jio", autonomous_system_number=asn),
    )


class FakeGeoReader:
    """Misma forma que geoip2.database.Reader para lo que usa el motor."""

    def __init__(self, record=None):
        self.record = record
        self.closed = False

    def city(self, ip: str):
        if self.record is None:
            raise geoip2.errors.AddressNotFoundError(f"{ip} not found")
        return self.record

    def metadata(self):
        return SimpleNamespace(
            database_type              = "GeoLite2-City",
            build_epoch                = 1700000000,
            ip_version                 = 6,
            node_count                 = 1000,
            binary_format_major_version = 2,
            binary_format_minor_version = 0,
        )

    def close(self):
        self.closed = True


# ─────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def range_store():
    return MemoryRangeStore()


@pytest.fixture
def unavailable_geo_db():
    return LocalGeoDatabaseReader(database_path=None)


@pytest.fixture
def bangalore_http():
    return HttpFetch(transport=provider_transport(BANGALORE_RESPONSES))


def build_test_orchestrator(cache, range_store, transport=None, hostname=None, geo_record=None):
    """Orquestador completo sin red: proveedores, DNS y GeoIP falsos."""
    fusion = FusionEngine(
        language_mapper = LanguageStateMapper(),
        local_geo_db    = LocalGeoDatabaseReader(reader=FakeGeoReader(geo_record)) if geo_record else None,
        reverse_dns     = ReverseDnsResolver(dns_lookup=FakeDnsLookup(hostname)),
        ensemble        = EnsembleAggregator(cache, http=HttpFetch(transport=transport or failing_transport())),
        use_rdap        = False,
    )
    return LocationOrchestrator(
        fusion     = fusion,
        vpn_scorer = VpnScorer(environment="production"),
        learning   = IpRangeLearningStore(range_store),
    )
