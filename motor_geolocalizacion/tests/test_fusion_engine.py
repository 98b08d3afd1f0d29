"""
Tests for multi-signal fusion: evidence gathering order, state and city
voting, confidence rules, ensemble fallback and telemetry.
"""

import httpx

from conftest import (
    BANGALORE_RESPONSES,
    FakeDnsLookup,
    FakeGeoReader,
    RecordingTransport,
    failing_transport,
    fake_geo_record,
    provider_transport,
)

from app.domain.evidence import Evidence, EvidenceSource
from app.domain.schemas import (
    CfTraceProbe,
    EdgeGeoHeaders,
    FallbackReason,
    LanguageAnalysis,
    LocationSignals,
    NetworkProbes,
    RegionalLanguage,
)
from app.infrastructure.geoip.local_geo_db import LocalGeoDatabaseReader
from app.infrastructure.http.http_fetch import HttpFetch
from app.services.ensemble_aggregator import EnsembleAggregator
from app.services.fusion_engine import FusionEngine
from app.services.language_mapper import LanguageStateMapper
from app.services.rdap_resolver import RdapResolver
from app.services.reverse_dns import ReverseDnsResolver

IP = "49.36.128.77"


def make_engine(cache, transport=None, hostname=None, geo_record=None, **kwargs):
    transport = transport or failing_transport()
    local_db  = LocalGeoDatabaseReader(reader=FakeGeoReader(geo_record)) if geo_record else None
    engine = FusionEngine(
        language_mapper = LanguageStateMapper(),
        local_geo_db    = local_db,
        reverse_dns     = ReverseDnsResolver(dns_lookup=FakeDnsLookup(hostname)),
        ensemble        = EnsembleAggregator(cache, http=HttpFetch(transport=transport)),
        **kwargs,
    )
    return engine, transport


def languages(*codes):
    return LanguageAnalysis(regional=[
        RegionalLanguage(code=code, position=position) for position, code in enumerate(codes)
    ])


class TestEdgeHeaders:
    """Tests for edge geo header evidence."""

    async def test_edge_city_gets_confidence_floor(self, cache):
        """Edge city alone yields exactly the 85 floor."""
        engine, _ = make_engine(cache)
        signals = LocationSignals(edge_headers=EdgeGeoHeaders(city="Surat", region="Gujarat", country="IN"))

        prediction = await engine.infer(None, signals)

        assert prediction.city == "Surat"
        assert prediction.state == "Gujarat"
        assert prediction.country == "India"
        assert prediction.confidence == 85
        assert prediction.method == "cloudflare"

    async def test_edge_values_are_decoded_and_title_cased(self, cache):
        """URL-encoded upper-case values are cleaned and aliased."""
        engine, _ = make_engine(cache)
        signals = LocationSignals(edge_headers=EdgeGeoHeaders(city="NEW%20DELHI", region="DELHI"))

        prediction = await engine.infer(None, signals)

        assert prediction.city == "Delhi"
        assert prediction.state == "Delhi"

    async def test_state_split_lowers_edge_floor(self, cache):
        """A contradicting language is penalised after the 85 floor."""
        engine, _ = make_engine(cache)
        signals = LocationSignals(
            edge_headers      = EdgeGeoHeaders(city="Surat", region="Gujarat"),
            language_analysis = languages("ta"),
        )

        prediction = await engine.infer(None, signals)

        assert prediction.city == "Surat"
        assert prediction.confidence == 81
        assert prediction.telemetry.state_disagreement_count >= 1

    def test_strong_split_takes_eight_points_off_floor(self):
        """A second state at 60% of the top weight costs 8 points below 85."""
        evidence = [
            Evidence(EvidenceSource.EDGE_HEADERS, 88, 50, city="Surat", state="Gujarat"),
            Evidence(EvidenceSource.LANGUAGE, 85, 30, state="Tamil Nadu"),
        ]

        assert FusionEngine._confidence(evidence, "gujarat", "surat") == 77


class TestFusionAgreement:
    """Tests for the confidence bonuses when sources agree."""

    async def test_four_agreeing_sources_clamp_at_98(self, cache):
        """Edge, language, local DB and reverse DNS on Bangalore hit the cap."""
        engine, transport = make_engine(
            cache,
            hostname   = "abts-blr-dynamic-77.128.36.49.airtelbroadband.in",
            geo_record = fake_geo_record(),
        )
        signals = LocationSignals(
            edge_headers      = EdgeGeoHeaders(city="Bengaluru", region="Karnataka", country="IN"),
            language_analysis = languages("kn"),
        )

        prediction = await engine.infer(IP, signals)

        assert prediction.city == "Bangalore"
        assert prediction.state == "Karnataka"
        assert prediction.confidence == 98
        assert prediction.method == "cloudflare"
        assert prediction.asn == "AS55836"
        assert prediction.reverse_dns_hostname.endswith("airtelbroadband.in")
        assert prediction.telemetry.source_participation == [
            "cloudflare", "language", "local_geoip", "reverse_dns",
        ]
        assert prediction.telemetry.fallback_reason is None
        assert transport.requests == []

    async def test_disagreement_is_reported(self, cache):
        """Conflicting cities show up in telemetry and alternatives."""
        engine, _ = make_engine(cache, geo_record=fake_geo_record())
        signals = LocationSignals(edge_headers=EdgeGeoHeaders(city="Surat", region="Gujarat"))

        prediction = await engine.infer(IP, signals)

        assert prediction.city == "Surat"
        assert prediction.telemetry.city_disagreement_count == 1
        assert prediction.telemetry.state_disagreement_count == 1
        assert [alt.city for alt in prediction.alternatives] == ["Surat", "Bangalore"]
        assert prediction.alternatives[0].probability > prediction.alternatives[1].probability


class TestEnsembleFallback:
    """Tests for when the provider ensemble is consulted."""

    async def test_low_weight_triggers_ensemble(self, cache):
        """With no other evidence the ensemble decides the city."""
        engine, _ = make_engine(cache, transport=provider_transport(BANGALORE_RESPONSES))

        prediction = await engine.infer(IP, LocationSignals())

        assert prediction.city == "Bangalore"
        assert prediction.method == "ensemble_ip"
        assert prediction.confidence == 80
        assert prediction.asn == "AS55836"
        assert prediction.telemetry.fallback_reason is FallbackReason.LOW_EVIDENCE_WEIGHT

    async def test_state_only_evidence_triggers_ensemble(self, cache):
        """Enough weight but no city still consults the ensemble."""
        engine, transport = make_engine(cache, transport=provider_transport(BANGALORE_RESPONSES))
        signals = LocationSignals(
            language_analysis = languages("gu"),
            regional_fonts    = ["Shruti", "Lohit Gujarati"],
        )

        prediction = await engine.infer(IP, signals)

        assert prediction.telemetry.fallback_reason is FallbackReason.NO_CITY_EVIDENCE
        assert "ensemble_ip" in prediction.telemetry.source_participation
        assert transport.requests

    async def test_no_ip_never_calls_ensemble(self, cache):
        """Without an IP the ensemble is skipped and no reason is recorded."""
        engine, transport = make_engine(cache, transport=provider_transport(BANGALORE_RESPONSES))

        prediction = await engine.infer(None, LocationSignals(language_analysis=languages("gu")))

        assert prediction.city is None
        assert prediction.state == "Gujarat"
        assert prediction.method == "signal_fusion"
        assert prediction.telemetry.fallback_reason is None
        assert transport.requests == []

    async def test_no_evidence_at_all(self, cache):
        """Nothing to go on yields the empty prediction."""
        engine, _ = make_engine(cache)

        prediction = await engine.infer(IP, LocationSignals())

        assert prediction.city is None
        assert prediction.state is None
        assert prediction.confidence == 0
        assert prediction.method == "none"
        assert prediction.country == "India"


class TestOptionalSources:
    """Tests for the network probe and RDAP sources."""

    async def test_probe_city_from_fast_rtt(self, cache):
        """A low RTT to an Indian PoP produces city evidence."""
        engine, _ = make_engine(cache)
        signals = LocationSignals(
            network_probes=NetworkProbes(cf_trace=CfTraceProbe(colo="BLR", rtt_ms=5)),
        )

        prediction = await engine.infer(None, signals)

        assert prediction.city == "Bangalore"
        assert prediction.method == "network_probe"
        assert prediction.probe_vpn_indicators == []

    async def test_probe_vpn_indicators_are_reported(self, cache):
        """A foreign PoP is surfaced on the prediction."""
        engine, _ = make_engine(cache)
        signals = LocationSignals(
            network_probes=NetworkProbes(cf_trace=CfTraceProbe(colo="FRA", rtt_ms=140)),
        )

        prediction = await engine.infer(None, signals)

        assert prediction.probe_vpn_indicators == ["foreign_cf_colo"]

    async def test_probe_disabled_is_ignored(self, cache):
        """With the probe turned off its data is not used."""
        engine, _ = make_engine(cache, use_network_probe=False)
        signals = LocationSignals(
            network_probes=NetworkProbes(cf_trace=CfTraceProbe(colo="BLR", rtt_ms=5)),
        )

        prediction = await engine.infer(None, signals)

        assert prediction.method == "none"

    async def test_rdap_evidence_when_enabled(self, cache):
        """RDAP circle codes contribute state evidence after reverse DNS."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"name": "AIRTEL-GJ", "handle": "IN-AIRTEL-1"})

        rdap = RdapResolver(
            cache,
            http      = HttpFetch(transport=RecordingTransport(handler)),
            endpoints = {"apnic": "https://rdap.apnic.net/ip/"},
        )
        engine, _ = make_engine(cache, rdap=rdap, use_rdap=True)

        prediction = await engine.infer(IP, LocationSignals())

        assert "rdap" in prediction.telemetry.source_participation
        assert prediction.state == "Gujarat"
