"""
Tests for RDAP network-name parsing and registry fallback.
"""

import httpx

from conftest import RecordingTransport

from app.infrastructure.http.http_fetch import HttpFetch
from app.services.rdap_resolver import RdapResolver, extract_circle, parse_rdap

ENDPOINTS = {
    "apnic": "https://rdap.apnic.net/ip/",
    "arin":  "https://rdap.arin.net/registry/ip/",
}


class TestExtractCircle:
    """Tests for telecom circle patterns."""

    def test_airtel_state_code(self):
        """AIRTEL-GJ names the Gujarat circle."""
        assert extract_circle("AIRTEL-GJ") == ("Gujarat", None, "GJ")

    def test_abts_city_code(self):
        """ABTS-AHM- names the Ahmedabad city."""
        assert extract_circle("ABTS-AHM-STATIC") == ("Gujarat", "Ahmedabad", "AHM")

    def test_jio_with_country_infix(self):
        """RJIO-IN-MH skips the country token."""
        state, city, code = extract_circle("RJIO-IN-MH")

        assert state == "Maharashtra"
        assert city is None
        assert code == "MH"

    def test_unknown_text(self):
        """Unrelated network names give nothing."""
        assert extract_circle("AMAZON-AES") == (None, None, None)


class TestParseRdap:
    """Tests for RDAP document parsing."""

    def test_remarks_are_searched(self):
        """Circle codes inside remarks are found."""
        data = {
            "name":    "EXAMPLE-NET",
            "handle":  "H-1",
            "remarks": [{"description": ["Allocated to BSNL-KAR customers"]}],
        }

        result = parse_rdap(data, "apnic")

        assert result.state == "Karnataka"
        assert result.confidence == 65
        assert result.source == "rdap_apnic"

    def test_city_gets_higher_confidence(self):
        """City-level circles are more confident than state-level."""
        result = parse_rdap({"name": "ABTS-BLR-DSL"}, "apnic")

        assert result.city == "Bangalore"
        assert result.confidence == 72

    def test_nothing_usable(self):
        """Documents without a circle parse to None."""
        assert parse_rdap({"name": "LEVEL3"}, "arin") is None


class TestRdapResolver:
    """Tests for registry fallback and caching."""

    async def test_falls_back_to_next_registry(self, cache):
        """A failing APNIC lookup continues with ARIN."""
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "rdap.apnic.net":
                return httpx.Response(404, json={"errorCode": 404})
            return httpx.Response(200, json={"name": "RJIO-IN-MH"})

        transport = RecordingTransport(handler)
        resolver  = RdapResolver(cache, http=HttpFetch(transport=transport), endpoints=ENDPOINTS)

        result = await resolver.lookup("49.36.128.77")

        assert result.state == "Maharashtra"
        assert result.source == "rdap_arin"
        assert [r.url.host for r in transport.requests] == ["rdap.apnic.net", "rdap.arin.net"]
        assert transport.requests[0].headers["Accept"] == "application/rdap+json"

    async def test_result_is_cached(self, cache):
        """A second lookup is served from the cache."""
        transport = RecordingTransport(lambda request: httpx.Response(200, json={"name": "AIRTEL-TN"}))
        resolver  = RdapResolver(cache, http=HttpFetch(transport=transport), endpoints=ENDPOINTS)

        await resolver.lookup("49.36.128.77")
        cached = await resolver.lookup("49.36.128.77")

        assert cached.state == "Tamil Nadu"
        assert len(transport.requests) == 1

    async def test_network_errors_give_none(self, cache):
        """All registries down yields None, not an error."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        resolver = RdapResolver(cache, http=HttpFetch(transport=RecordingTransport(handler)), endpoints=ENDPOINTS)

        assert await resolver.lookup("49.36.128.77") is None
