"""
language_mapper.py
------------------
Estado probable a partir de los idiomas regionales del navegador y de
las fuentes tipográficas regionales instaladas.

Idiomas: el primero de navigator.languages pesa más. Cada posición
resta 5 puntos de confianza (máximo 20). Gana el de mayor confianza
ajustada; por debajo de 15 no se reporta nada.

Fuentes: gana el estado con más fuentes reconocidas;
confianza = min(70, 30 + 15 × fuentes).
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from app.domain.gazetteer import FONT_STATES, LANGUAGE_STATES
from app.domain.schemas import LocationSignals

logger = logging.getLogger(__name__)

MIN_LANGUAGE_CONFIDENCE = 15
POSITION_PENALTY        = 5
MAX_POSITION_PENALTY    = 20


@dataclass
class LanguageInference:
    states:        list[str]
    primary_state: str
    confidence:    int
    language:      Optional[str]
    code:          str


@dataclass
class FontInference:
    state:      str
    confidence: int
    font_count: int
    fonts:      list[str] = field(default_factory=list)


class LanguageStateMapper:

    def infer_from_languages(self, signals: LocationSignals) -> Optional[LanguageInference]:
        analysis = signals.language_analysis
        if analysis is None or not analysis.regional:
            return None

        best: Optional[LanguageInference] = None
        best_confidence = 0

        for info in analysis.regional:
            code    = info.code.split("-")[0].strip().lower()
            profile = LANGUAGE_STATES.get(code)
            if profile is None:
                continue

            penalty  = min(info.position * POSITION_PENALTY, MAX_POSITION_PENALTY)
            adjusted = profile.confidence - penalty

            if adjusted > best_confidence:
                best_confidence = adjusted
                best = LanguageInference(
                    states        = list(profile.states),
                    primary_state = profile.states[0],
                    confidence    = adjusted,
                    language      = info.language,
                    code          = code,
                )

        if best is None or best_confidence < MIN_LANGUAGE_CONFIDENCE:
            return None

        logger.info(
            f"[Language] {best.language} ({best.code}) → {'/'.join(best.states)}  "
            f"confidence={best.confidence}"
        )
        return best

    def infer_from_fonts(self, signals: LocationSignals) -> Optional[FontInference]:
        fonts = signals.regional_fonts
        if not fonts:
            return None

        counts = Counter(
            FONT_STATES[font] for font in fonts
            if FONT_STATES.get(font)
        )
        if not counts:
            return None

        state, font_count = counts.most_common(1)[0]
        confidence = min(70, 30 + font_count * 15)

        logger.info(f"[Language] {font_count} fuente(s) regional(es) → {state}  confidence={confidence}")
        return FontInference(
            state      = state,
            confidence = confidence,
            font_count = font_count,
            fonts      = list(fonts),
        )
