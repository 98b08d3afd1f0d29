"""
local_geo_db.py
---------------
Lector de la base MaxMind GeoLite2-City local (~1ms, sin HTTP).

Si el archivo .mmdb no existe o está corrupto, el lector se reporta
como no disponible y la fusión simplemente omite esta señal.

Confianza del registro (base 92):
  - sin ciudad              → -30
  - sin estado              → -15
  - accuracy_radius ≤ 10km  → +3 (tope 98)
  - accuracy_radius ≤ 50km  →  sin ajuste
  - accuracy_radius ≤ 200km → -5
  - accuracy_radius ≤ 500km → -15
  - mayor                   → -25
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import geoip2.database
import geoip2.errors
from maxminddb import InvalidDatabaseError

from app.domain.gazetteer import normalize_asn, normalize_city

logger = logging.getLogger(__name__)


@dataclass
class LocalGeoRecord:
    city:               Optional[str]
    state:              Optional[str]
    country:            Optional[str]
    country_code:       Optional[str]
    postal:             Optional[str]
    latitude:           Optional[float]
    longitude:          Optional[float]
    timezone:           Optional[str]
    accuracy_radius_km: Optional[int]
    isp:                Optional[str]
    asn:                Optional[str]
    confidence:         int


class LocalGeoDatabaseReader:
    """
    Envuelve geoip2.database.Reader.

    `reader` se puede inyectar (tests); debe exponer .city(ip) y
    .metadata() con la misma forma que el lector de geoip2.
    """

    def __init__(
        self,
        database_path: Optional[str] = None,
        base_confidence: int = 92,
        reader: Any = None,
    ):
        self.database_path   = database_path
        self.base_confidence = base_confidence
        self._reader         = reader

        if self._reader is None and database_path:
            self._open(database_path)

    def _open(self, database_path: str) -> None:
        if not Path(database_path).exists():
            logger.warning(f"[GeoIP] Base no encontrada en {database_path}")
            return
        try:
            self._reader = geoip2.database.Reader(database_path)
            logger.info(f"[GeoIP] Base cargada: {database_path}")
        except (InvalidDatabaseError, OSError, ValueError) as e:
            logger.error(f"[GeoIP] No se pudo abrir {database_path}: {e}")
            self._reader = None

    @property
    def is_available(self) -> bool:
        return self._reader is not None

    def lookup(self, ip: str) -> Optional[LocalGeoRecord]:
        if self._reader is None:
            return None

        try:
            record = self._reader.city(ip)
        except geoip2.errors.AddressNotFoundError:
            logger.info(f"[GeoIP] IP {ip} no está en la base")
            return None
        except (ValueError, InvalidDatabaseError, OSError) as e:
            logger.error(f"[GeoIP] Lookup falló para {ip}: {e}")
            return None

        city     = normalize_city(record.city.name)
        state    = record.subdivisions.most_specific.name
        location = record.location
        radius   = location.accuracy_radius

        # Los traits de ISP/ASN solo vienen en bases comerciales
        traits = getattr(record, "traits", None)
        isp    = getattr(traits, "isp", None) or getattr(traits, "organization", None)
        asn    = normalize_asn(getattr(traits, "autonomous_system_number", None))

        confidence = self._confidence(city, state, radius)

        result = LocalGeoRecord(
            city               = city,
            state              = state,
            country            = record.country.name,
            country_code       = record.country.iso_code,
            postal             = record.postal.code,
            latitude           = round(location.latitude, 6)  if location.latitude  is not None else None,
            longitude          = round(location.longitude, 6) if location.longitude is not None else None,
            timezone           = location.time_zone,
            accuracy_radius_km = radius,
            isp                = isp,
            asn                = asn,
            confidence         = confidence,
        )

        logger.info(
            f"[GeoIP] ip={ip}  city={city}  state={state}  "
            f"radius={radius}km  confidence={confidence}"
        )
        return result

    def _confidence(
        self,
        city: Optional[str],
        state: Optional[str],
        accuracy_radius: Optional[int],
    ) -> int:
        confidence = self.base_confidence

        if not city:
            confidence -= 30
        if not state:
            confidence -= 15

        if accuracy_radius is not None:
            if accuracy_radius <= 10:
                confidence = min(98, confidence + 3)
            elif accuracy_radius <= 50:
                pass
            elif accuracy_radius <= 200:
                confidence -= 5
            elif accuracy_radius <= 500:
                confidence -= 15
            else:
                confidence -= 25

        return max(0, min(100, confidence))

    def database_info(self) -> Optional[dict]:
        """Metadatos de la base cargada (tipo, fecha de build, versión)."""
        if self._reader is None:
            return None
        try:
            metadata = self._reader.metadata()
        except (InvalidDatabaseError, OSError, AttributeError) as e:
            logger.warning(f"[GeoIP] No se pudieron leer metadatos: {e}")
            return None

        return {
            "type":          metadata.database_type,
            "build_epoch":   datetime.fromtimestamp(metadata.build_epoch, tz=timezone.utc).isoformat(),
            "ip_version":    metadata.ip_version,
            "node_count":    metadata.node_count,
            "binary_format": f"{metadata.binary_format_major_version}.{metadata.binary_format_minor_version}",
        }

    def close(self) -> None:
        if self._reader is not None:
            try:
                self._reader.close()
            except (OSError, AttributeError) as e:
                logger.debug(f"[GeoIP] Error al cerrar la base: {e}")
            self._reader = None
