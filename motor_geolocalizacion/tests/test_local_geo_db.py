"""
Tests for the local GeoLite2 reader wrapper.
"""

from conftest import FakeGeoReader, fake_geo_record

from app.infrastructure.geoip.local_geo_db import LocalGeoDatabaseReader


class TestLookup:
    """Tests for record mapping and confidence."""

    def test_precise_city_record(self):
        reader = LocalGeoDatabaseReader(reader=FakeGeoReader(fake_geo_record()))

        record = reader.lookup("49.36.128.77")

        assert record.city == "Bangalore"
        assert record.state == "Karnataka"
        assert record.country_code == "IN"
        assert record.asn == "AS55836"
        assert record.isp == "Reliance Jio"
        assert record.confidence == 95

    def test_state_only_wide_radius(self):
        """Missing city and a wide radius both lower confidence."""
        reader = LocalGeoDatabaseReader(reader=FakeGeoReader(fake_geo_record(city=None, accuracy_radius=1000)))

        record = reader.lookup("49.36.128.77")

        assert record.city is None
        assert record.confidence == 37

    def test_medium_radius_keeps_base(self):
        reader = LocalGeoDatabaseReader(reader=FakeGeoReader(fake_geo_record(accuracy_radius=50)))

        assert reader.lookup("49.36.128.77").confidence == 92

    def test_address_not_found(self):
        reader = LocalGeoDatabaseReader(reader=FakeGeoReader(None))

        assert reader.lookup("10.0.0.1") is None


class TestAvailability:
    """Tests for a missing database file and lifecycle."""

    def test_missing_file_is_unavailable(self, tmp_path):
        reader = LocalGeoDatabaseReader(database_path=str(tmp_path / "GeoLite2-City.mmdb"))

        assert reader.is_available is False
        assert reader.lookup("49.36.128.77") is None
        assert reader.database_info() is None

    def test_database_info(self):
        reader = LocalGeoDatabaseReader(reader=FakeGeoReader(fake_geo_record()))

        info = reader.database_info()

        assert info["type"] == "GeoLite2-City"
        assert info["binary_format"] == "2.0"
        assert info["build_epoch"].startswith("2023-11-14")

    def test_close_releases_reader(self):
        fake   = FakeGeoReader(fake_geo_record())
        reader = LocalGeoDatabaseReader(reader=fake)

        reader.close()

        assert fake.closed is True
        assert reader.is_available is False
