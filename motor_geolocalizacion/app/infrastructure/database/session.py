"""
session.py
----------
Configuración de la conexión asíncrona a PostgreSQL.

La base de datos es opcional: solo guarda los rangos IP aprendidos.
Sin DATABASE_URL el motor usa MemoryRangeStore y nada de este módulo
se ejecuta.

Provee:
  - build_engine: motor SQLAlchemy async con pool y timeouts de asyncpg
  - build_session_factory: fábrica de sesiones
  - init_db: crea tablas en desarrollo (en producción usa Alembic)
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import settings


def _clean_url(url: str) -> str:
    # asyncpg no acepta ?sslmode= en la URL
    if "?sslmode=" in url:
        return url.split("?sslmode=")[0]
    return url


# ── Motor de base de datos ────────────────────────────────────────────
def build_engine(url: str, timeout_sec: float | None = None) -> AsyncEngine:
    timeout_sec = timeout_sec or settings.DATABASE_TIMEOUT_SEC
    return create_async_engine(
        _clean_url(url),
        echo           = settings.DEBUG,   # Loggea SQL solo en desarrollo
        pool_pre_ping  = True,             # Verifica conexión antes de usarla
        pool_size      = 10,
        max_overflow   = 20,
        pool_timeout   = timeout_sec,
        # Ninguna consulta del motor puede colgar el request
        connect_args   = {
            "timeout":         timeout_sec,
            "command_timeout": timeout_sec,
        },
    )


# ── Fábrica de sesiones ───────────────────────────────────────────────
def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind             = engine,
        class_           = AsyncSession,
        expire_on_commit = False,
        autoflush        = False,
    )


# ── Init para desarrollo ─────────────────────────────────────────────
async def init_db(engine: AsyncEngine) -> None:
    """
    Crea todas las tablas definidas en models.py.
    Solo usar en desarrollo; en producción usar Alembic.
    Se llama desde el lifespan de main.py si settings.DEBUG es True.
    """
    from app.domain.models import Base
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
