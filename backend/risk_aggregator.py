"""Creator Vetting Pipeline - Risk Aggregator
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Pure functions turning a creator's Evidence and Findings into a
deduplicated, severity-sorted Finding list, a risk level and a summary.
No I/O: identical input always yields an identical assessment.
"""

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from models import SEVERITY_ORDER, Evidence, Finding, FindingType, RiskLevel

SEVERITY_TO_RISK = {
    "critical": RiskLevel.CRITICAL,
    "high": RiskLevel.HIGH,
    "medium": RiskLevel.MEDIUM,
    "low": RiskLevel.LOW,
}

RISK_DESCRIPTIONS = {
    RiskLevel.LOW: "Minor concerns",
    RiskLevel.MEDIUM: "Moderate concerns",
    RiskLevel.HIGH: "Significant concerns",
    RiskLevel.CRITICAL: "Critical concerns",
    RiskLevel.UNKNOWN: "Unknown risk",
}

NO_CONCERNS_SUMMARY = "No significant brand safety concerns found."
NOT_ANALYZED_SUMMARY = "No analysis completed; risk could not be assessed."

# Finding type -> (singular, plural) for the summary sentence
SUMMARY_NOUNS = (
    (FindingType.COURT_CASE, "legal issue", "legal issues"),
    (FindingType.NEWS_ARTICLE, "news article", "news articles"),
    (FindingType.SOCIAL_CONTROVERSY, "social media incident", "social media incidents"),
    (FindingType.OTHER, "content flag", "content flags"),
)

CATEGORY_TITLES = {
    "profanity": "Profanity",
    "violence": "Violence",
    "adult": "Adult content",
    "substances": "Substance use",
    "controversial": "Controversial content",
    "dangerous": "Dangerous activity",
    "political": "Political content",
    "competitor": "Competitor association",
    "sponsor": "Sponsored content",
}
MAX_TITLE_DETAIL = 80


@dataclass
class RiskAssessment:
    risk_level: RiskLevel
    summary: str
    findings: list[Finding] = field(default_factory=list)


def _format_timestamp(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"


def evidence_to_finding(evidence: Evidence, sources: Optional[Mapping[str, str]] = None) -> Finding:
    """
    Lift one piece of content Evidence into a reportable Finding.

    Args:
        evidence: the evidence item
        sources: item id -> permalink, used as the finding source when known
    """
    detail = evidence.description or evidence.quote or evidence.category
    title = f"{CATEGORY_TITLES.get(evidence.category, evidence.category)}: {detail[:MAX_TITLE_DETAIL]}"

    parts = []
    if evidence.timestamp is not None:
        span = _format_timestamp(evidence.timestamp)
        if evidence.end_timestamp is not None and evidence.end_timestamp > evidence.timestamp:
            span += f"-{_format_timestamp(evidence.end_timestamp)}"
        parts.append(f"At {span} ({evidence.source})")
    else:
        parts.append(f"Detected in {evidence.source}")
    if evidence.quote:
        parts.append(f'"{evidence.quote}"')
    if evidence.description and evidence.description != detail[:MAX_TITLE_DETAIL]:
        parts.append(evidence.description)

    source = None
    if evidence.item_id:
        source = (sources or {}).get(evidence.item_id) or evidence.item_id

    return Finding(
        type=FindingType.OTHER,
        severity=evidence.severity,
        title=title,
        summary=": ".join(parts[:2]) if len(parts) > 1 else parts[0],
        source=source,
        item_id=evidence.item_id,
    )


def _finding_key(finding: Finding) -> tuple:
    return (finding.type, finding.title.strip().lower(), finding.source or "")


def deduplicate_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Collapse findings with the same type, title and source, keeping the most severe."""
    kept: dict[tuple, Finding] = {}
    for finding in findings:
        key = _finding_key(finding)
        existing = kept.get(key)
        if existing is None or SEVERITY_ORDER[finding.severity] > SEVERITY_ORDER[existing.severity]:
            kept[key] = finding
    return list(kept.values())


def sort_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Most severe first; ties keep their input order."""
    return sorted(findings, key=lambda f: -SEVERITY_ORDER[f.severity])


def calculate_risk_level(findings: Iterable[Finding], analysis_completed: bool) -> RiskLevel:
    """
    Highest finding severity.

    LOW when analysis completed without findings, UNKNOWN when no tier completed.
    """
    if not analysis_completed:
        return RiskLevel.UNKNOWN
    severities = [f.severity for f in findings]
    if not severities:
        return RiskLevel.LOW
    highest = max(severities, key=lambda s: SEVERITY_ORDER[s])
    return SEVERITY_TO_RISK[highest]


def generate_summary(findings: list[Finding], risk_level: RiskLevel) -> str:
    if not findings:
        return NOT_ANALYZED_SUMMARY if risk_level == RiskLevel.UNKNOWN else NO_CONCERNS_SUMMARY

    parts = []
    for finding_type, singular, plural in SUMMARY_NOUNS:
        count = sum(1 for f in findings if f.type == finding_type)
        if count:
            parts.append(f"{count} {singular if count == 1 else plural}")

    return f"{RISK_DESCRIPTIONS[risk_level]}: Found {', '.join(parts)}."


def aggregate(
    evidence: Iterable[Evidence],
    findings: Iterable[Finding],
    analysis_completed: bool,
    sources: Optional[Mapping[str, str]] = None,
) -> RiskAssessment:
    """Combine content evidence and direct findings into one assessment."""
    combined = [evidence_to_finding(e, sources) for e in evidence]
    combined.extend(findings)
    final = sort_findings(deduplicate_findings(combined))
    risk_level = calculate_risk_level(final, analysis_completed)
    return RiskAssessment(
        risk_level=risk_level,
        summary=generate_summary(final, risk_level),
        findings=final,
    )
