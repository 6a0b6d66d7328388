"""Creator Vetting Pipeline - Keyword Screener
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Tier 1: zero-cost dictionary screen of captions and transcripts.

Matching runs in two passes over word-bounded patterns:
  1. exact keyword matches
  2. inflected forms of the keyword stem (drug -> drugs, party -> partying)
Results are deduplicated per keyword keeping the highest severity.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from models import ContentItem, Finding, FindingType

logger = logging.getLogger(__name__)

MAX_SCREEN_TEXT_LENGTH = 50000      # Truncation before matching (ReDoS prevention)
CUSTOM_KEYWORD_SEVERITY = "high"    # Severity for custom terms given without one

KEYWORD_SEVERITY_ORDER = {"critical": 4, "high": 3, "medium": 2, "low": 1, "none": 0}

# severity -> evidence category -> terms
DEFAULT_KEYWORDS: dict[str, dict[str, list[str]]] = {
    "critical": {
        "controversial": [
            "racist", "racism", "slur", "hate", "nazi", "white supremacy",
            "supremacist", "genocide", "ethnic cleansing",
        ],
        "violence": ["terrorist", "terrorism"],
        "adult": ["pedophile", "pedophilia", "child abuse"],
    },
    "high": {
        "substances": ["drugs", "cocaine", "heroin", "meth", "methamphetamine", "fentanyl"],
        "violence": ["violence", "violent", "abuse", "assault", "murder", "kill", "killing"],
        "controversial": ["fraud", "scam", "trafficking", "illegal", "crime", "criminal"],
        "dangerous": ["suicide", "self-harm", "eating disorder", "anorexia", "bulimia"],
    },
    "medium": {
        "controversial": ["controversial", "conspiracy", "misinformation", "fake news", "propaganda"],
        "political": ["political"],
        "adult": ["explicit", "sex", "sexual", "nude", "nudity", "porn", "pornography"],
        "dangerous": ["gambling", "casino", "betting"],
        "violence": ["weapon", "gun", "firearm", "rifle"],
    },
    "low": {
        "substances": [
            "alcohol", "beer", "wine", "vodka", "whiskey", "drunk", "hangover", "partying",
            "tobacco", "cigarette", "vape", "vaping", "nicotine",
            "cannabis", "marijuana", "weed", "thc", "cbd",
        ],
        "adult": ["mature", "adult"],
        "profanity": ["profanity", "swear", "curse"],
    },
}

# Suffixes stripped to find a stem, longest first
STEM_SUFFIXES = ("ing", "ers", "ies", "ied", "es", "ed", "er", "s")
INFLECTION_PATTERN = r"(?:s|es|d|ed|er|ers|ing)?"
MIN_STEM_LENGTH = 3


@dataclass(frozen=True)
class KeywordMatch:
    keyword: str
    severity: str
    category: str
    matched_text: str
    match_type: str             # "exact" or "stem"
    position: int


@dataclass
class KeywordScreenResult:
    overall_risk: str           # critical | high | medium | low | none
    matches: list[KeywordMatch] = field(default_factory=list)

    @property
    def flagged_terms(self) -> list[str]:
        return [m.keyword for m in self.matches]

    def to_findings(self, item: Optional[ContentItem] = None) -> list[Finding]:
        """One finding per flagged term, keeping the keyword severity."""
        platform = item.platform if item is not None else "social"
        findings = []
        for match in self.matches:
            findings.append(Finding(
                type=FindingType.SOCIAL_CONTROVERSY,
                severity=match.severity,
                title=f"Flagged term '{match.keyword}' in {platform} post",
                summary=f"{match.category.capitalize()} language detected: \"{match.matched_text}\"",
                source=(item.permalink or item.id) if item is not None else None,
                item_id=item.id if item is not None else None,
            ))
        return findings


def _term_pattern(term: str) -> str:
    return r"\s+".join(re.escape(word) for word in term.split())


def stem_keyword(keyword: str) -> str:
    """Crude suffix stripping for single-word keywords."""
    if " " in keyword or "-" in keyword:
        return keyword
    for suffix in STEM_SUFFIXES:
        if keyword.endswith(suffix) and len(keyword) - len(suffix) >= MIN_STEM_LENGTH:
            stem = keyword[: -len(suffix)]
            if suffix in ("ies", "ied"):
                stem += "y"
            return stem
    return keyword


def _stem_pattern(stem: str) -> str:
    if stem.endswith("y") and len(stem) > MIN_STEM_LENGTH:
        # party -> parties, partied, partying
        return re.escape(stem[:-1]) + r"(?:y|ies|ied|ying)"
    if stem.endswith("e"):
        return re.escape(stem[:-1]) + r"(?:e|es|ed|er|ers|ing)"
    return re.escape(stem) + INFLECTION_PATTERN


@dataclass(frozen=True)
class _CompiledKeyword:
    keyword: str
    severity: str
    category: str
    exact: re.Pattern
    stem: Optional[re.Pattern]


class KeywordScreener:
    """
    Stateless sensitive-term matcher. Identical input text always yields
    an identical result.
    """

    def __init__(
        self,
        custom_keywords: Optional[Union[Iterable[str], dict[str, str]]] = None,
        include_defaults: bool = True,
        custom_category: str = "controversial",
    ):
        entries: list[tuple[str, str, str]] = []
        if include_defaults:
            for severity, categories in DEFAULT_KEYWORDS.items():
                for category, terms in categories.items():
                    entries.extend((term, severity, category) for term in terms)

        if custom_keywords:
            if isinstance(custom_keywords, dict):
                custom_items = custom_keywords.items()
            else:
                custom_items = ((term, CUSTOM_KEYWORD_SEVERITY) for term in custom_keywords)
            for term, severity in custom_items:
                term = term.strip().lower()
                if not term:
                    continue
                if severity not in KEYWORD_SEVERITY_ORDER or severity == "none":
                    raise ValueError(f"Unknown keyword severity: {severity!r}")
                entries.append((term, severity, custom_category))

        self._keywords = [self._compile(term, severity, category) for term, severity, category in entries]

    @staticmethod
    def _compile(term: str, severity: str, category: str) -> _CompiledKeyword:
        exact = re.compile(r"(?<!\w)" + _term_pattern(term) + r"(?!\w)", re.IGNORECASE)
        stem = stem_keyword(term)
        stem_re = None
        if " " not in term and "-" not in term:
            stem_re = re.compile(r"(?<!\w)" + _stem_pattern(stem) + r"(?!\w)", re.IGNORECASE)
        return _CompiledKeyword(term, severity, category, exact, stem_re)

    @property
    def keyword_count(self) -> int:
        return len(self._keywords)

    def screen(self, text: str) -> KeywordScreenResult:
        """Match `text` against all keywords."""
        text = (text or "")[:MAX_SCREEN_TEXT_LENGTH]
        if not text.strip():
            return KeywordScreenResult(overall_risk="none")

        found: dict[str, KeywordMatch] = {}

        # Pass 1: exact
        for kw in self._keywords:
            match = kw.exact.search(text)
            if match:
                self._keep(found, KeywordMatch(kw.keyword, kw.severity, kw.category, match.group(), "exact", match.start()))

        # Pass 2: inflected forms of the stem
        for kw in self._keywords:
            if kw.stem is None or kw.keyword in found:
                continue
            match = kw.stem.search(text)
            if match:
                self._keep(found, KeywordMatch(kw.keyword, kw.severity, kw.category, match.group(), "stem", match.start()))

        matches = sorted(
            found.values(),
            key=lambda m: (-KEYWORD_SEVERITY_ORDER[m.severity], m.position, m.keyword),
        )
        overall = matches[0].severity if matches else "none"
        return KeywordScreenResult(overall_risk=overall, matches=matches)

    @staticmethod
    def _keep(found: dict[str, KeywordMatch], match: KeywordMatch) -> None:
        existing = found.get(match.keyword)
        if existing is None or KEYWORD_SEVERITY_ORDER[match.severity] > KEYWORD_SEVERITY_ORDER[existing.severity]:
            found[match.keyword] = match


def aggregate_keyword_results(results: Iterable[KeywordScreenResult]) -> dict:
    """Severity counts and unique flagged terms across many items."""
    counts = {"critical": 0, "high": 0, "medium": 0, "low": 0}
    terms: list[str] = []
    overall = "none"
    for result in results:
        for match in result.matches:
            counts[match.severity] += 1
            if match.keyword not in terms:
                terms.append(match.keyword)
        if KEYWORD_SEVERITY_ORDER[result.overall_risk] > KEYWORD_SEVERITY_ORDER[overall]:
            overall = result.overall_risk
    return {
        "counts": counts,
        "flagged_terms": terms,
        "overall_risk": overall,
        "total_matches": sum(counts.values()),
    }
