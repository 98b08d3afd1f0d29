"""
learned_range.py
----------------
Registro de un rango IP aprendido (CIDR → ciudad/estado).

Lo crea y actualiza exclusivamente IpRangeLearningStore. El núcleo
nunca borra rangos; la retención es tarea de un job externo.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LearnedIpRange:
    cidr:                str
    learned_city:        str
    learned_state:       Optional[str]
    sample_count:        int   = 1
    success_rate:        float = 100.0
    average_confidence:  float = 0.0
    primary_isp:         Optional[str] = None
    primary_asn:         Optional[str] = None
    reverse_dns_pattern: Optional[str] = None
    first_seen:          datetime = field(default_factory=_utcnow)
    last_seen:           datetime = field(default_factory=_utcnow)
    is_active:           bool  = False
