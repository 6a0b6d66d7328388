"""Tests for Tier 2 brand/ad detection and competitor matching."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from brand_detector import (
    BrandDetectionResult,
    BrandDetector,
    BrandMention,
    aggregate_brands,
    detect_ad_indicators,
    find_competitor_mentions,
    sponsor_evidence,
)
from errors import AnalysisError
from models import LogoAppearance, LogoDetection


def _ai_client(response=None, error=None):
    client = MagicMock()
    client.is_ai_enabled = True
    client.provider = "anthropic"
    client.complete = AsyncMock(return_value=response, side_effect=error)
    return client


def _heuristic_client():
    client = MagicMock()
    client.is_ai_enabled = False
    client.provider = "heuristic"
    client.complete = AsyncMock()
    return client


class TestAdIndicators:

    def test_hashtags_and_phrases(self):
        indicators = detect_ad_indicators("Loving this serum #AD #gifted, use code JANE10")
        assert indicators[:2] == ["#ad", "#gifted"]
        assert "use code" in indicators

    def test_foreign_disclosures(self):
        assert detect_ad_indicators("Neue Schuhe #werbung") == ["#werbung"]

    def test_unrelated_hashtags_ignored(self):
        assert detect_ad_indicators("#adventure #travel") == []


class TestDetect:

    @pytest.mark.asyncio
    async def test_heuristic_mode_uses_local_disclosures_only(self):
        client = _heuristic_client()
        detector = BrandDetector(client)
        result = await detector.detect("Sponsored by Acme! #ad", "instagram")
        assert result.is_ad is True
        assert result.brands == []
        assert result.method == "heuristic"
        client.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_model_brands_parsed(self):
        response = """[
            {"brand": "Nike", "context": "my new Nike shoes", "isSponsored": true, "confidence": "high"},
            {"brand": "Starbucks", "context": "coffee run", "isSponsored": false, "confidence": "weird"},
            {"brand": "X", "context": "too short"}
        ]"""
        detector = BrandDetector(_ai_client(response))
        result = await detector.detect("my new Nike shoes and a Starbucks coffee run", "tiktok")
        assert [b.brand for b in result.brands] == ["Nike", "Starbucks"]
        assert result.brands[1].confidence == "medium"
        assert result.sponsored_brands == ["Nike"]
        assert result.is_ad is True
        assert result.method == "anthropic"
        assert "1 sponsored brand(s): Nike" in result.summary

    @pytest.mark.asyncio
    async def test_model_failure_is_conservative(self):
        detector = BrandDetector(_ai_client(error=AnalysisError("provider down")))
        result = await detector.detect("Thanks to Acme for this trip", "youtube")
        assert result.brands == []
        assert result.method == "error"
        assert result.is_ad is True          # "thanks to" disclosure still counts

    @pytest.mark.asyncio
    async def test_unparseable_response(self):
        detector = BrandDetector(_ai_client("I found no brands."))
        result = await detector.detect("plain post", "youtube")
        assert result.method == "error"
        assert result.is_ad is False

    @pytest.mark.asyncio
    async def test_empty_text(self):
        client = _ai_client("[]")
        result = await BrandDetector(client).detect("   ")
        assert result.is_ad is False
        client.complete.assert_not_awaited()


class TestAggregation:

    def test_aggregate_brands(self):
        results = [
            BrandDetectionResult(is_ad=True, brands=[BrandMention("Nike", is_sponsored=True)]),
            BrandDetectionResult(is_ad=False, brands=[BrandMention("nike"), BrandMention("Adidas")]),
        ]
        summary = aggregate_brands(results)
        assert summary["all_brands"] == ["Nike", "Adidas"]
        assert summary["sponsored_brands"] == ["Nike"]
        assert summary["ad_posts"] == 1
        assert summary["brand_counts"]["Nike"] == 2

    def test_competitor_mentions(self):
        brand_results = [
            ("p1", BrandDetectionResult(is_ad=True, brands=[BrandMention("Pepsi", "Pepsi all day", is_sponsored=True)])),
            ("p2", BrandDetectionResult(is_ad=False, brands=[BrandMention("pepsi")])),
        ]
        logos = [("v1", LogoDetection(
            brand="PEPSI",
            appearances=[LogoAppearance(start_time=5, end_time=9, confidence=0.9, prominence="primary")],
            total_duration=4,
        ))]
        evidence, partnerships = find_competitor_mentions(brand_results, logos, ["Pepsi", "  "])
        assert [e.severity for e in evidence] == ["high", "medium", "medium"]
        assert all(e.category == "competitor" for e in evidence)
        assert evidence[2].timestamp == 5
        assert partnerships == ["Pepsi"]

    def test_no_competitors_configured(self):
        assert find_competitor_mentions([], [], []) == ([], [])

    def test_sponsor_evidence_is_low(self):
        brand_results = [("p1", BrandDetectionResult(is_ad=True, brands=[BrandMention("Acme", is_sponsored=True)]))]
        evidence = sponsor_evidence(brand_results)
        assert len(evidence) == 1
        assert evidence[0].severity == "low"
        assert evidence[0].category == "sponsor"
        assert evidence[0].item_id == "p1"
