"""
Tests for the IP-geolocation provider ensemble: normalizers, clustering,
consensus confidence, caching and the circuit breaker integration.
"""

import asyncio

import httpx
import pytest

from conftest import (
    BANGALORE_RESPONSES,
    DISPERSED_RESPONSES,
    RecordingTransport,
    failing_transport,
    provider_transport,
)

from app.core.config import ProviderConfig
from app.core.exceptions import InvalidConfigurationException
from app.domain.evidence import Evidence, EvidenceSource
from app.infrastructure.http.http_fetch import HttpFetch
from app.services.circuit_breaker import CircuitBreaker
from app.services.ensemble_aggregator import (
    EnsembleAggregator,
    consensus_confidence,
    haversine_km,
    normalize_geoplugin,
    normalize_ip_api_com,
    normalize_ipwhois,
)

IP = "49.36.128.77"


def provider_entry(city, state, lat, lon, weight=1.0, name="p"):
    return Evidence(
        source     = EvidenceSource.IP_PROVIDER,
        confidence = 50,
        weight     = weight,
        city       = city,
        state      = state,
        country    = "India",
        latitude   = lat,
        longitude  = lon,
        meta       = {"provider": name},
    )


class TestNormalizers:
    """Tests for per-provider response normalization."""

    def test_ip_api_failure_is_none(self):
        """ip-api's own error status normalizes to None."""
        assert normalize_ip_api_com({"status": "fail", "message": "reserved range"}) is None

    def test_ip_api_asn_from_as_field(self):
        """The ASN comes from the first token of the 'as' field."""
        normalized = normalize_ip_api_com(BANGALORE_RESPONSES["ip-api.com"])

        assert normalized["asn"] == "AS55836"
        assert normalized["state"] == "Karnataka"

    def test_geoplugin_string_coordinates(self):
        """geoplugin coordinates arrive as strings and are parsed."""
        normalized = normalize_geoplugin(BANGALORE_RESPONSES["www.geoplugin.net"])

        assert normalized["latitude"] == pytest.approx(12.97)
        assert normalized["longitude"] == pytest.approx(77.59)

    def test_ipwhois_success_false_is_none(self):
        """ipwho.is with success=false is rejected."""
        assert normalize_ipwhois({"success": False, "message": "Invalid IP"}) is None


class TestConsensusMath:
    """Tests for haversine and the stepped confidence table."""

    def test_haversine_mumbai_pune(self):
        """Mumbai to Pune is roughly 120 km."""
        assert 110 < haversine_km(19.07, 72.87, 18.52, 73.85) < 130

    @pytest.mark.parametrize(
        "agreement, ratio, expected",
        [(5, 0.8, 95), (4, 0.7, 90), (4, 0.2, 85), (3, 0.6, 80), (3, 0.1, 75),
         (2, 0.5, 70), (2, 0.1, 65), (1, 0.3, 55), (1, 0.1, 45)],
    )
    def test_confidence_steps(self, agreement, ratio, expected):
        """Each agreement/ratio tier maps to its confidence."""
        assert consensus_confidence(agreement, ratio) == expected


class TestBuildConsensus:
    """Tests for clustering and the winning cluster."""

    def make(self, cache, **kwargs):
        return EnsembleAggregator(cache, http=HttpFetch(transport=failing_transport()), **kwargs)

    def test_empty_entries_give_empty_result(self, cache):
        """No entries means no city and no state."""
        result = self.make(cache).build_consensus([])

        assert result.is_empty
        assert result.country == "India"

    def test_single_source_capped_below_city_threshold(self, cache):
        """One source alone can never produce a city."""
        result = self.make(cache).build_consensus([
            provider_entry("Surat", "Gujarat", 21.17, 72.83, weight=1.5),
        ])

        assert result.confidence <= 54
        assert result.city is None
        assert result.state == "Gujarat"

    def test_state_outliers_lose_weight(self, cache):
        """Three sources agreeing on a state demote a heavier outlier cluster."""
        entries = [
            provider_entry("Kolkata", "West Bengal", 22.57, 88.36, weight=2.0, name="a"),
            provider_entry("Surat", "Gujarat", 21.17, 72.83, weight=1.0, name="b"),
            provider_entry("Surat", "Gujarat", 21.18, 72.84, weight=0.8, name="c"),
            provider_entry("Ahmedabad", "Gujarat", 23.02, 72.57, weight=0.6, name="d"),
        ]

        result = self.make(cache).build_consensus(entries)

        assert result.city == "Surat"
        assert result.state == "Gujarat"
        assert result.agreement_count == 2

    def test_entry_without_coordinates_joins_by_city(self, cache):
        """A coordinate-less entry joins the cluster sharing its city."""
        entries = [
            provider_entry("Pune", "Maharashtra", 18.52, 73.85, name="a"),
            provider_entry("Pune", "Maharashtra", 18.53, 73.86, name="b"),
            provider_entry("Pune", "Maharashtra", None, None, name="c"),
        ]

        result = self.make(cache).build_consensus(entries)

        assert result.agreement_count == 3
        assert result.city == "Pune"


class TestEnsembleLookup:
    """Tests for the full lookup over mocked providers."""

    async def test_six_providers_agree_on_bangalore(self, cache, bangalore_http):
        """Bengaluru and Bangalore spellings form one high-confidence cluster."""
        ensemble = EnsembleAggregator(cache, http=bangalore_http)

        result = await ensemble.lookup(IP)

        assert result.city == "Bangalore"
        assert result.state == "Karnataka"
        assert result.confidence >= 90
        assert result.agreement_count == 6
        assert result.total_sources == 6
        assert result.connection_type == "mobile"
        assert len(result.sources_data) == 6

    async def test_dispersed_providers_give_no_city(self, cache):
        """Six different cities hundreds of km apart do not agree."""
        ensemble = EnsembleAggregator(cache, http=HttpFetch(transport=provider_transport(DISPERSED_RESPONSES)))

        result = await ensemble.lookup(IP)

        assert result.agreement_count == 1
        assert result.confidence <= 55
        assert result.city is None
        assert len(result.alternatives) == 3

    async def test_result_is_cached(self, cache):
        """A second lookup for the same IP does not hit the network."""
        transport = provider_transport(BANGALORE_RESPONSES)
        ensemble  = EnsembleAggregator(cache, http=HttpFetch(transport=transport))

        await ensemble.lookup(IP)
        calls = len(transport.requests)
        cached = await ensemble.lookup(IP)

        assert len(transport.requests) == calls
        assert cached.city == "Bangalore"

    async def test_partial_failures_still_produce_consensus(self, cache):
        """Providers returning errors are skipped, the rest still vote."""
        responses = {
            host: body for host, body in BANGALORE_RESPONSES.items()
            if host in ("ip-api.com", "ipwho.is", "ipapi.co")
        }
        ensemble = EnsembleAggregator(cache, http=HttpFetch(transport=provider_transport(responses)))

        result = await ensemble.lookup(IP)

        assert result.city == "Bangalore"
        assert result.agreement_count == 3

    async def test_slow_provider_is_abandoned(self, cache):
        """A hanging provider does not delay the rest past the timeout."""
        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "ip-api.com":
                await asyncio.sleep(5)
            body = BANGALORE_RESPONSES.get(request.url.host)
            return httpx.Response(200, json=body)

        ensemble = EnsembleAggregator(
            cache,
            http        = HttpFetch(transport=RecordingTransport(handler)),
            timeout_sec = 0.3,
        )

        result = await asyncio.wait_for(ensemble.lookup(IP), timeout=2)

        assert result.city == "Bangalore"
        assert result.agreement_count == 5


class TestEnsembleCircuit:
    """Tests for circuit breaker bookkeeping."""

    async def test_all_failures_open_the_circuit(self, cache):
        """After the threshold of all-failed lookups no provider is called."""
        transport = failing_transport()
        breaker   = CircuitBreaker(cache, name="ensemble", failure_threshold=2, ttl_seconds=60)
        ensemble  = EnsembleAggregator(cache, http=HttpFetch(transport=transport), circuit_breaker=breaker)

        first  = await ensemble.lookup(IP)
        second = await ensemble.lookup("49.36.128.78")
        calls  = len(transport.requests)
        third  = await ensemble.lookup("49.36.128.79")

        assert first.is_empty and second.is_empty and third.is_empty
        assert await breaker.is_open() is True
        assert len(transport.requests) == calls

    async def test_empty_result_is_not_cached(self, cache):
        """A failed lookup is retried on the next request."""
        transport = failing_transport()
        ensemble  = EnsembleAggregator(cache, http=HttpFetch(transport=transport))

        await ensemble.lookup(IP)
        calls = len(transport.requests)
        await ensemble.lookup(IP)

        assert len(transport.requests) == 2 * calls

    async def test_success_clears_failures(self, cache):
        """One responding provider resets the failure counter."""
        breaker  = CircuitBreaker(cache, name="ensemble", failure_threshold=5, ttl_seconds=60)
        failing  = EnsembleAggregator(cache, http=HttpFetch(transport=failing_transport()), circuit_breaker=breaker)
        healthy  = EnsembleAggregator(
            cache,
            http            = HttpFetch(transport=provider_transport(BANGALORE_RESPONSES)),
            circuit_breaker = breaker,
        )

        await failing.lookup(IP)
        assert (await breaker.snapshot()).failure_count == 1

        await healthy.lookup("49.36.128.90")
        assert (await breaker.snapshot()).failure_count == 0


class TestEnsembleConfiguration:
    """Tests for provider validation."""

    def test_template_without_ip_rejected(self, cache):
        """A URL template must contain {ip}."""
        with pytest.raises(InvalidConfigurationException):
            EnsembleAggregator(cache, providers=[
                ProviderConfig(name="ipapi", url_template="https://ipapi.co/json/"),
            ])

    def test_insecure_url_requires_flag(self, cache):
        """Plain http:// needs allow_insecure."""
        with pytest.raises(InvalidConfigurationException):
            EnsembleAggregator(cache, providers=[
                ProviderConfig(name="ip-api", url_template="http://ip-api.com/json/{ip}"),
            ])

    def test_disabled_providers_are_skipped(self, cache):
        """Disabled providers are not validated nor called."""
        ensemble = EnsembleAggregator(cache, providers=[
            ProviderConfig(name="unknown", url_template="ftp://nowhere", enabled=False),
            ProviderConfig(name="ipapi", url_template="https://ipapi.co/{ip}/json/"),
        ])

        assert [p.name for p in ensemble.providers] == ["ipapi"]
