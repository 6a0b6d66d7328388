"""Tests for the Tier 1 keyword screen."""

import pytest

from keyword_screener import (
    KEYWORD_SEVERITY_ORDER,
    KeywordScreener,
    aggregate_keyword_results,
    stem_keyword,
)
from models import ContentItem, FindingType


@pytest.fixture(scope="module")
def screener():
    return KeywordScreener()


class TestScreening:

    def test_flags_alcohol_and_partying(self, screener):
        result = screener.screen("Check out my new video about alcohol and partying 🍺")
        assert "alcohol" in result.flagged_terms
        assert "partying" in result.flagged_terms
        assert result.overall_risk == "low"

    def test_neutral_text_flags_nothing(self, screener):
        result = screener.screen("Had a great workout today, feeling strong! 💪")
        assert result.flagged_terms == []
        assert result.overall_risk == "none"

    def test_flagged_text_rates_above_neutral(self, screener):
        flagged = screener.screen("Check out my new video about alcohol and partying 🍺")
        neutral = screener.screen("Had a great workout today, feeling strong! 💪")
        assert KEYWORD_SEVERITY_ORDER[flagged.overall_risk] > KEYWORD_SEVERITY_ORDER[neutral.overall_risk]

    def test_screen_is_pure(self, screener):
        text = "Vodka night, total hangover, then a casino trip"
        first = screener.screen(text)
        for _ in range(5):
            again = screener.screen(text)
            assert again.overall_risk == first.overall_risk
            assert again.flagged_terms == first.flagged_terms

    def test_word_boundaries(self, screener):
        # "method" must not match "meth", "skill" must not match "kill"
        assert screener.screen("A new method to build skill").flagged_terms == []

    def test_case_insensitive(self, screener):
        assert "cocaine" in screener.screen("COCAINE documentary").flagged_terms

    def test_stem_match(self, screener):
        result = screener.screen("Too many gambles at the table")
        match = next(m for m in result.matches if m.keyword == "gambling")
        assert match.match_type == "stem"

    def test_highest_severity_first(self, screener):
        result = screener.screen("beer, a gun, and a racist rant")
        assert result.overall_risk == "critical"
        assert result.matches[0].keyword == "racist"

    def test_empty_text(self, screener):
        assert screener.screen("").overall_risk == "none"
        assert screener.screen("   ").matches == []


class TestCustomKeywords:

    def test_custom_terms_default_to_high(self):
        screener = KeywordScreener(custom_keywords=["crypto pump"], include_defaults=False)
        result = screener.screen("Join my crypto  pump group")
        assert result.flagged_terms == ["crypto pump"]
        assert result.overall_risk == "high"

    def test_custom_severities(self):
        screener = KeywordScreener(custom_keywords={"energy drink": "low"}, include_defaults=False)
        assert screener.keyword_count == 1
        assert screener.screen("energy drink haul").overall_risk == "low"

    def test_unknown_severity_rejected(self):
        with pytest.raises(ValueError):
            KeywordScreener(custom_keywords={"x": "extreme"})


class TestStemming:

    def test_stem_keyword(self):
        assert stem_keyword("drugs") == "drug"
        assert stem_keyword("partying") == "party"
        assert stem_keyword("white supremacy") == "white supremacy"
        assert stem_keyword("gun") == "gun"


class TestFindings:

    def test_findings_keep_keyword_severity(self, screener):
        item = ContentItem(id="p1", platform="tiktok", handle="sam", permalink="https://tiktok.com/@sam/video/1")
        result = screener.screen("Terrorist propaganda clip")
        findings = result.to_findings(item)
        by_term = {f.title: f for f in findings}
        critical = by_term["Flagged term 'terrorist' in tiktok post"]
        assert critical.severity == "critical"
        assert critical.type == FindingType.SOCIAL_CONTROVERSY
        assert critical.source == "https://tiktok.com/@sam/video/1"
        assert critical.item_id == "p1"

    def test_aggregate_counts(self, screener):
        results = [
            screener.screen("beer and wine"),
            screener.screen("beer and a weapon"),
            screener.screen("nothing to see"),
        ]
        summary = aggregate_keyword_results(results)
        assert summary["counts"]["low"] == 3
        assert summary["counts"]["medium"] == 1
        assert summary["flagged_terms"] == ["beer", "wine", "weapon"]
        assert summary["overall_risk"] == "medium"
