"""Tests for risk aggregation: dedupe, ordering, risk level and summary."""

from models import Evidence, Finding, FindingType, RiskLevel
from risk_aggregator import (
    NO_CONCERNS_SUMMARY,
    NOT_ANALYZED_SUMMARY,
    aggregate,
    calculate_risk_level,
    deduplicate_findings,
    evidence_to_finding,
    generate_summary,
    sort_findings,
)


def _finding(severity, title="Issue", finding_type=FindingType.NEWS_ARTICLE, source=None):
    return Finding(type=finding_type, severity=severity, title=title, source=source)


class TestRiskLevel:

    def test_highest_severity_wins(self):
        findings = [_finding("low"), _finding("high"), _finding("medium")]
        assert calculate_risk_level(findings, analysis_completed=True) == RiskLevel.HIGH

    def test_critical_only_from_critical_findings(self):
        many_high = [_finding("high", title=f"Issue {i}") for i in range(20)]
        assert calculate_risk_level(many_high, analysis_completed=True) == RiskLevel.HIGH
        assert calculate_risk_level(many_high + [_finding("critical")], True) == RiskLevel.CRITICAL

    def test_clean_analysis_is_low(self):
        assert calculate_risk_level([], analysis_completed=True) == RiskLevel.LOW

    def test_nothing_analyzed_is_unknown(self):
        assert calculate_risk_level([], analysis_completed=False) == RiskLevel.UNKNOWN


class TestDedupeAndSort:

    def test_duplicates_keep_most_severe(self):
        findings = [
            _finding("medium", "Jane sued", source="https://a.example.com"),
            _finding("high", "  jane SUED ", source="https://a.example.com"),
            _finding("low", "Jane sued", source="https://b.example.com"),
        ]
        kept = deduplicate_findings(findings)
        assert len(kept) == 2
        assert kept[0].severity == "high"

    def test_sort_is_stable_within_severity(self):
        findings = [_finding("low", "a"), _finding("critical", "b"), _finding("low", "c"), _finding("critical", "d")]
        assert [f.title for f in sort_findings(findings)] == ["b", "d", "a", "c"]


class TestEvidence:

    def test_evidence_becomes_other_finding(self):
        evidence = Evidence(
            category="profanity", severity="medium", source="audio",
            timestamp=75, end_timestamp=80, quote="damn", description="Mild swearing", item_id="v1",
        )
        finding = evidence_to_finding(evidence, {"v1": "https://youtube.com/watch?v=v1"})
        assert finding.type == FindingType.OTHER
        assert finding.severity == "medium"
        assert finding.title == "Profanity: Mild swearing"
        assert finding.summary == 'At 1:15-1:20 (audio): "damn"'
        assert finding.source == "https://youtube.com/watch?v=v1"
        assert finding.item_id == "v1"

    def test_evidence_without_timestamp_or_source_map(self):
        finding = evidence_to_finding(Evidence(category="sponsor", severity="low", item_id="p1"))
        assert finding.title == "Sponsored content: sponsor"
        assert finding.summary == "Detected in visual"
        assert finding.source == "p1"


class TestAggregate:

    def test_combined_assessment(self):
        evidence = [Evidence(category="substances", severity="high", description="Beer bong", item_id="v1")]
        findings = [
            _finding("medium", "Backlash", FindingType.NEWS_ARTICLE),
            _finding("low", "Old tweet", FindingType.SOCIAL_CONTROVERSY),
            _finding("medium", "Backlash", FindingType.NEWS_ARTICLE),
        ]
        assessment = aggregate(evidence, findings, analysis_completed=True)

        assert assessment.risk_level == RiskLevel.HIGH
        assert [f.severity for f in assessment.findings] == ["high", "medium", "low"]
        assert assessment.summary == (
            "Significant concerns: Found 1 news article, 1 social media incident, 1 content flag."
        )

    def test_aggregate_is_deterministic(self):
        evidence = [Evidence(category="violence", severity="high", description="Fight", item_id="v1")]
        findings = [_finding("critical", "Arrested")]
        first = aggregate(evidence, findings, analysis_completed=True)
        second = aggregate(evidence, findings, analysis_completed=True)
        assert first == second

    def test_empty_summaries(self):
        assert generate_summary([], RiskLevel.LOW) == NO_CONCERNS_SUMMARY
        assert generate_summary([], RiskLevel.UNKNOWN) == NOT_ANALYZED_SUMMARY
        assert aggregate([], [], analysis_completed=False).risk_level == RiskLevel.UNKNOWN

    def test_plural_nouns(self):
        findings = [_finding("low", "a", FindingType.COURT_CASE), _finding("low", "b", FindingType.COURT_CASE)]
        assert generate_summary(findings, RiskLevel.LOW) == "Minor concerns: Found 2 legal issues."
