"""
Tests for state inference from browser languages and regional fonts.
"""

from app.domain.schemas import LanguageAnalysis, LocationSignals, RegionalLanguage
from app.services.language_mapper import LanguageStateMapper


def signals_for(*codes, fonts=None):
    analysis = LanguageAnalysis(regional=[
        RegionalLanguage(code=code, position=position, language=code)
        for position, code in enumerate(codes)
    ])
    return LocationSignals(language_analysis=analysis, regional_fonts=fonts or [])


class TestLanguages:
    """Tests for navigator.languages mapping."""

    def test_primary_regional_language(self):
        """Gujarati in first position points to Gujarat."""
        result = LanguageStateMapper().infer_from_languages(signals_for("gu-IN"))

        assert result.primary_state == "Gujarat"
        assert result.confidence == 85
        assert result.code == "gu"

    def test_position_penalty_changes_winner(self):
        """A weak first language loses to a strong second one."""
        result = LanguageStateMapper().infer_from_languages(signals_for("hi", "ta"))

        assert result.primary_state == "Tamil Nadu"
        assert result.confidence == 80
        assert result.states == ["Tamil Nadu", "Puducherry"]

    def test_penalised_below_minimum(self):
        """Hindi far down the list is not reported."""
        result = LanguageStateMapper().infer_from_languages(signals_for("en", "xx", "hi"))

        assert result is None

    def test_no_languages(self):
        """Missing analysis yields None."""
        assert LanguageStateMapper().infer_from_languages(LocationSignals()) is None


class TestFonts:
    """Tests for regional font mapping."""

    def test_most_common_state_wins(self):
        """Two Gujarati fonts beat one Tamil font."""
        fonts  = ["Shruti", "Lohit Gujarati", "Lohit Tamil"]
        result = LanguageStateMapper().infer_from_fonts(signals_for(fonts=fonts))

        assert result.state == "Gujarat"
        assert result.font_count == 2
        assert result.confidence == 60

    def test_unknown_fonts(self):
        """Fonts outside the table give nothing."""
        result = LanguageStateMapper().infer_from_fonts(signals_for(fonts=["Arial", "Helvetica"]))

        assert result is None
