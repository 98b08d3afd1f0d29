"""
models.py
---------
Modelos SQLAlchemy del Motor de Geolocalización.

Tablas:
  - IpRangeLearning → rangos CIDR aprendidos (ciudad/estado reforzados)

Principios de diseño:
  - ip_range como CIDR nativo de PostgreSQL → permite `ip_range >>= ip`
  - Un solo registro por CIDR (unique) → las actualizaciones concurrentes
    se serializan con SELECT ... FOR UPDATE sobre esa fila
  - Timestamps siempre con timezone=True
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.dialects.postgresql import CIDR, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ─────────────────────────────────────────────────────────────────────
# RANGOS IP APRENDIDOS
# Una fila por CIDR (/24 por defecto). success_rate sube cuando las
# detecciones confirman la ciudad y baja cuando la contradicen.
# ─────────────────────────────────────────────────────────────────────
class IpRangeLearning(Base):
    __tablename__ = "ip_range_learnings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    ip_range: Mapped[str] = mapped_column(CIDR, nullable=False, unique=True)

    learned_city: Mapped[str] = mapped_column(String(100), nullable=False)
    learned_state: Mapped[str] = mapped_column(String(100), nullable=True)

    sample_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="1"
    )
    # 0.00 – 100.00
    success_rate: Mapped[float] = mapped_column(
        Numeric(5, 2, asdecimal=False), nullable=False, server_default="100"
    )
    average_confidence: Mapped[float] = mapped_column(
        Numeric(5, 2, asdecimal=False), nullable=True
    )

    primary_isp: Mapped[str] = mapped_column(String(255), nullable=True)
    primary_asn: Mapped[str] = mapped_column(String(20), nullable=True)
    # Hostname reverso visto al crear el rango (auditoría)
    reverse_dns_pattern: Mapped[str] = mapped_column(String(255), nullable=True)

    first_seen: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    last_seen: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_ip_range_learnings_active", "is_active", "sample_count"),
    )
