"""
config.py
---------
Configuración del Motor de Geolocalización.

Todas las constantes ajustables del motor viven aquí para poder
cambiarlas por variable de entorno o .env sin redespliegue.
Los componentes reciben sus valores por constructor (con default
en `settings`), así los tests pueden construirlos con valores propios.
"""

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderConfig(BaseModel):
    """Una fuente HTTP de geolocalización por IP usada por el ensemble."""
    name:           str
    url_template:   str               # debe contener {ip}
    weight:         float = 1.0       # confiabilidad relativa de la fuente
    enabled:        bool  = True
    allow_insecure: bool  = False     # permite http:// (planes gratuitos sin TLS)
    schema_name:    str | None = None # normalizador a usar; default = name


DEFAULT_PROVIDERS: list[ProviderConfig] = [
    ProviderConfig(
        name           = "ip-api",
        url_template   = "http://ip-api.com/json/{ip}?fields=status,message,country,countryCode,region,regionName,city,zip,lat,lon,timezone,isp,org,as",
        weight         = 1.5,
        allow_insecure = True,
    ),
    ProviderConfig(name="ipwho",     url_template="https://ipwho.is/{ip}",             weight=1.3),
    ProviderConfig(name="ipapi",     url_template="https://ipapi.co/{ip}/json/",        weight=1.0),
    ProviderConfig(name="ipwhois",   url_template="https://ipwhois.app/json/{ip}",      weight=1.0),
    ProviderConfig(name="freeipapi", url_template="https://freeipapi.com/api/json/{ip}", weight=0.8),
    ProviderConfig(
        name           = "geoplugin",
        url_template   = "http://www.geoplugin.net/json.gp?ip={ip}",
        weight         = 0.6,
        allow_insecure = True,
    ),
]


class Settings(BaseSettings):
    # Configuracion general
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    DEFAULT_COUNTRY: str = "India"

    # Entornos donde una IP privada no cuenta como indicador de VPN
    TRUSTED_ENVIRONMENTS: list[str] = ["local", "testing"]

    # Redis (opcional; sin REDIS_URL se usa caché en memoria del proceso)
    REDIS_URL: str | None = None

    # PostgreSQL (opcional; sin DATABASE_URL los rangos aprendidos viven en memoria)
    DATABASE_URL: str | None = None
    DATABASE_TIMEOUT_SEC: float = 2.0

    # CORS
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ── Ensemble de APIs de geolocalización ───────────────────────────
    ENSEMBLE_PROVIDERS: list[ProviderConfig] = DEFAULT_PROVIDERS
    ENSEMBLE_TIMEOUT_SEC: float = 3.0
    ENSEMBLE_CONNECT_TIMEOUT_SEC: float = 2.0
    ENSEMBLE_CLUSTER_RADIUS_KM: float = 50.0
    ENSEMBLE_MIN_SOURCES: int = 2
    ENSEMBLE_CACHE_TTL: int = 3600

    # ── Circuit breaker del ensemble ──────────────────────────────────
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_TTL_SEC: int = 60

    # ── RDAP ──────────────────────────────────────────────────────────
    RDAP_ENDPOINTS: dict[str, str] = {
        "apnic": "https://rdap.apnic.net/ip/",
        "arin":  "https://rdap.arin.net/registry/ip/",
    }
    RDAP_TIMEOUT_SEC: float = 3.0
    RDAP_CONNECT_TIMEOUT_SEC: float = 2.0
    RDAP_CACHE_TTL: int = 86400

    # ── DNS reverso ───────────────────────────────────────────────────
    DNS_TIMEOUT_SEC: float = 1.0
    REVERSE_DNS_CONFIDENCE: int = 88

    # ── Base GeoIP local (MaxMind GeoLite2-City) ──────────────────────
    GEOIP_DATABASE_PATH: str = "storage/geoip/GeoLite2-City.mmdb"
    GEOIP_BASE_CONFIDENCE: int = 92

    # ── Pesos de cada señal en la fusión ──────────────────────────────
    WEIGHT_EDGE_CITY: float = 50
    WEIGHT_EDGE_REGION: float = 35
    WEIGHT_LANGUAGE: float = 25
    WEIGHT_FONTS: float = 8
    WEIGHT_LOCAL_GEOIP: float = 18
    WEIGHT_REVERSE_DNS: float = 15
    WEIGHT_ENSEMBLE: float = 20
    WEIGHT_WEBRTC_CGN: float = 28
    WEIGHT_RDAP: float = 12

    # ── Fusión ────────────────────────────────────────────────────────
    FUSION_MIN_EVIDENCE_WEIGHT: float = 30
    FUSION_USE_NETWORK_PROBE: bool = True
    FUSION_USE_RDAP: bool = False

    # ── Network probe (RTT al PoP del edge) ───────────────────────────
    PROBE_RTT_CITY_MS: int = 10
    PROBE_RTT_STATE_MS: int = 30

    # ── VPN ───────────────────────────────────────────────────────────
    DATACENTER_ASNS: list[str] = [
        "AS16509", "AS14061", "AS16276", "AS13335", "AS8075",
        "AS15169", "AS396982", "AS20473", "AS63949", "AS24940",
        "AS9009", "AS174", "AS6939", "AS209", "AS3223",
        "AS62563", "AS398101", "AS46606", "AS36352", "AS55286",
    ]
    MOBILE_ASNS: list[str] = [
        "AS55836", "AS24560", "AS9829", "AS45609",
        "AS38266", "AS17762", "AS18101", "AS45820",
    ]
    VPN_CONFIDENCE_PENALTY: int = 20

    # ── Aprendizaje de rangos IP ──────────────────────────────────────
    LEARNING_ENABLED: bool = True
    LEARNING_MIN_CONFIDENCE: int = 80
    LEARNING_CIDR_MASK: int = 24
    LEARNING_MIN_SAMPLES: int = 10
    LEARNING_MIN_SUCCESS_RATE: float = 70
    LEARNING_DEACTIVATE_BELOW: float = 60
    LEARNING_REQUIRE_VERIFIED: bool = True

    # Confianza mínima para devolver ciudad en la respuesta final
    MIN_CITY_CONFIDENCE: int = 55

    @field_validator("ALLOWED_ORIGINS", "DATACENTER_ASNS", "MOBILE_ASNS", "TRUSTED_ENVIRONMENTS", mode="before")
    @classmethod
    def parse_csv_list(cls, v):
        """Permite definir listas como string separado por comas en .env"""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    model_config = SettingsConfigDict(
        env_file          = ".env",
        env_file_encoding = "utf-8",
        case_sensitive    = True,
        extra             = "ignore",
    )


settings = Settings()
