"""
main.py
-------
Entry point del Motor de Geolocalización.

Orden de registro de middlewares (se ejecutan al revés):
  1. CORS            → primero en registrarse, último en ejecutarse
  2. SecurityHeaders → headers de seguridad en todas las respuestas
  3. EdgeGeoHeaders  → lee IP real y headers geográficos del edge

El lifespan arma el grafo de componentes una sola vez:
  - Redis si hay REDIS_URL y responde; si no, MemoryCache
  - PostgreSQL si hay DATABASE_URL; si no, MemoryRangeStore
  - Base GeoIP local (opcional, el motor funciona sin ella)
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from app.api.middlewares import EdgeGeoHeadersMiddleware, SecurityHeadersMiddleware, setup_cors
from app.api.routers import location
from app.core.config import settings
from app.core.exceptions import GeoEngineException
from app.core.logging_config import setup_logging
from app.infrastructure.cache.cache_client import KeyValueCache
from app.infrastructure.cache.memory_cache import MemoryCache
from app.infrastructure.cache.redis_client import RedisCache, RedisManager
from app.infrastructure.database.range_store import MemoryRangeStore, RangeStore, SqlRangeStore
from app.infrastructure.database.session import build_engine, build_session_factory, init_db
from app.infrastructure.geoip.local_geo_db import LocalGeoDatabaseReader
from app.services.circuit_breaker import CircuitBreaker
from app.services.ensemble_aggregator import EnsembleAggregator
from app.services.fusion_engine import FusionEngine
from app.services.ip_range_learning import IpRangeLearningStore
from app.services.language_mapper import LanguageStateMapper
from app.services.location_orchestrator import LocationOrchestrator
from app.services.network_probe import NetworkProbeInterpreter
from app.services.rdap_resolver import RdapResolver
from app.services.reverse_dns import ReverseDnsResolver
from app.services.vpn_scorer import VpnScorer

setup_logging(settings.DEBUG)
logger = logging.getLogger(__name__)


def build_orchestrator(
    cache: KeyValueCache,
    range_store: RangeStore,
    local_geo_db: Optional[LocalGeoDatabaseReader],
) -> LocationOrchestrator:
    ensemble = EnsembleAggregator(
        cache           = cache,
        circuit_breaker = CircuitBreaker(cache, name="ensemble"),
    )
    fusion = FusionEngine(
        language_mapper = LanguageStateMapper(),
        local_geo_db    = local_geo_db,
        reverse_dns     = ReverseDnsResolver(),
        ensemble        = ensemble,
        network_probe   = NetworkProbeInterpreter(),
        rdap            = RdapResolver(cache),
    )
    return LocationOrchestrator(
        fusion     = fusion,
        vpn_scorer = VpnScorer(),
        learning   = IpRangeLearningStore(range_store),
    )


async def _connect_cache(app: FastAPI) -> KeyValueCache:
    if not settings.REDIS_URL:
        logger.info("[Startup] Sin REDIS_URL, usando caché en memoria")
        return MemoryCache()

    manager = RedisManager(settings.REDIS_URL)
    try:
        await manager.connect()
    except (RedisError, OSError) as e:
        logger.warning(f"[Startup] Redis no disponible, usando caché en memoria: {e}")
        return MemoryCache()

    app.state.redis_manager = manager
    return RedisCache(manager)


async def _connect_range_store(app: FastAPI) -> RangeStore:
    if not settings.DATABASE_URL:
        logger.info("[Startup] Sin DATABASE_URL, rangos aprendidos en memoria")
        return MemoryRangeStore()

    engine = build_engine(settings.DATABASE_URL)
    if settings.DEBUG:
        await init_db(engine)
    app.state.db_engine = engine
    return SqlRangeStore(build_session_factory(engine))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ── Startup ───────────────────────────────────────────────────────
    cache        = await _connect_cache(app)
    range_store  = await _connect_range_store(app)
    local_geo_db = LocalGeoDatabaseReader(
        settings.GEOIP_DATABASE_PATH,
        base_confidence = settings.GEOIP_BASE_CONFIDENCE,
    )

    app.state.local_geo_db = local_geo_db
    app.state.orchestrator = build_orchestrator(cache, range_store, local_geo_db)
    yield
    # ── Shutdown ──────────────────────────────────────────────────────
    await app.state.orchestrator.wait_for_background()
    local_geo_db.close()
    redis_manager = getattr(app.state, "redis_manager", None)
    if redis_manager:
        await redis_manager.disconnect()
    db_engine = getattr(app.state, "db_engine", None)
    if db_engine:
        await db_engine.dispose()


app = FastAPI(
    title    = "Motor de Geolocalización API",
    version  = "1.0.0",
    docs_url = "/docs"  if settings.DEBUG else None,
    redoc_url= "/redoc" if settings.DEBUG else None,
    lifespan = lifespan,
)

# ── Middlewares (registrar en este orden exacto) ──────────────────────
setup_cors(app, allowed_origins=settings.ALLOWED_ORIGINS)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(EdgeGeoHeadersMiddleware)

# ── Routers ───────────────────────────────────────────────────────────
app.include_router(location.router)

# ── Handler global de excepciones ────────────────────────────────────
@app.exception_handler(GeoEngineException)
async def geo_exception_handler(
    request: Request, exc: GeoEngineException
) -> JSONResponse:
    return JSONResponse(
        status_code = exc.status_code,
        content     = {"error": exc.message},
    )

# ── Health check ──────────────────────────────────────────────────────
@app.get("/health")
async def health_check(request: Request):
    redis_manager = getattr(request.app.state, "redis_manager", None)
    if redis_manager is None:
        redis_status = "memory"
    else:
        redis_status = "ok" if await redis_manager.ping() else "degraded"

    local_geo_db = getattr(request.app.state, "local_geo_db", None)
    geoip_ok     = local_geo_db is not None and local_geo_db.is_available

    return {
        "status":      "ok",
        "environment": settings.ENVIRONMENT,
        "redis":       redis_status,
        "geoip_db":    "ok" if geoip_ok else "unavailable",
    }
