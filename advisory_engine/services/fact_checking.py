"""
Fact checking against the research corpus.

``FactCheckProvider`` is the seam for an external (LLM-backed) checker.
``CorpusFactChecker`` is the built-in implementation: it compares the
numeric figures in each claim with those in the corpus and falls back to
key-term overlap for claims without figures.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import FrozenSet, List, Protocol, Sequence, Set, Tuple

import structlog

from ..logging_config import configure_logging
from ..models.base import ClaimStatus
from ..models.quality import Claim, Verdict

configure_logging()
logger = structlog.get_logger(__name__)

FIGURE_RE = re.compile(
    r"(?<![\w.])(?P<cur>[$€£])?\s?(?P<num>\d[\d,]*(?:\.\d+)?)\s?"
    r"(?P<unit>%|percent\b|trillion\b|billion\b|million\b|thousand\b|bn\b|tn\b|mm\b|[kmbt]\b|x\b)?",
    re.IGNORECASE,
)
WORD_RE = re.compile(r"[a-z][a-z0-9\-]{3,}")

_MULTIPLIERS = {
    "k": 1e3,
    "thousand": 1e3,
    "m": 1e6,
    "mm": 1e6,
    "million": 1e6,
    "b": 1e9,
    "bn": 1e9,
    "billion": 1e9,
    "t": 1e12,
    "tn": 1e12,
    "trillion": 1e12,
}

STOPWORDS: FrozenSet[str] = frozenset(
    {
        "about", "across", "after", "also", "been", "being", "between", "both",
        "could", "does", "each", "from", "have", "into", "more", "most", "much",
        "only", "other", "over", "same", "should", "some", "such", "than", "that",
        "their", "them", "then", "there", "these", "they", "this", "those",
        "through", "under", "very", "were", "what", "when", "where", "which",
        "while", "will", "with", "within", "would", "your",
    }
)

# Share of claim terms that must appear in the corpus for figure-free claims
TERM_SUPPORT_THRESHOLD = 0.5

Figure = Tuple[str, float]


class FactCheckProvider(Protocol):
    async def validate_claim_batch(self, claims: Sequence[Claim], corpus: str) -> List[Verdict]: ...


def extract_figures(text: str) -> Set[Figure]:
    """Normalised ``(kind, value)`` figures; bare years are treated as context."""
    figures: Set[Figure] = set()
    for match in FIGURE_RE.finditer(text or ""):
        try:
            value = float(match.group("num").replace(",", ""))
        except ValueError:
            continue
        unit = (match.group("unit") or "").lower()
        if match.group("cur"):
            kind = "currency"
        elif unit in ("%", "percent"):
            kind = "percent"
        elif unit == "x":
            kind = "multiple"
        else:
            kind = "number"
        value *= _MULTIPLIERS.get(unit, 1.0)
        if kind == "number" and not unit and value.is_integer() and 1900 <= value <= 2100:
            continue
        figures.add((kind, round(value, 6)))
    return figures


def _stem(word: str) -> str:
    if len(word) > 4 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def key_terms(text: str) -> Set[str]:
    return {_stem(w) for w in WORD_RE.findall((text or "").lower()) if w not in STOPWORDS}


@dataclass
class CorpusProfile:
    figures: Set[Figure] = field(default_factory=set)
    terms: Set[str] = field(default_factory=set)

    @property
    def figure_kinds(self) -> Set[str]:
        return {kind for kind, _ in self.figures}

    @classmethod
    def from_text(cls, corpus: str) -> "CorpusProfile":
        return cls(figures=extract_figures(corpus), terms=key_terms(corpus))


def term_overlap(claim_terms: Set[str], profile: CorpusProfile) -> float:
    if not claim_terms:
        return 0.0
    return len(claim_terms & profile.terms) / len(claim_terms)


def judge_claim(claim: Claim, profile: CorpusProfile) -> Verdict:
    figures = extract_figures(claim.text)
    overlap = term_overlap(key_terms(claim.text), profile)

    if figures:
        missing = figures - profile.figures
        if not missing:
            return Verdict(claim_id=claim.id, status=ClaimStatus.VERIFIED, explanation="all figures found in corpus")
        shared_kinds = {kind for kind, _ in missing} & profile.figure_kinds
        if shared_kinds and overlap > 0:
            return Verdict(
                claim_id=claim.id,
                status=ClaimStatus.MISMATCHED,
                explanation=f"corpus covers the topic with different {', '.join(sorted(shared_kinds))} figures",
            )
        return Verdict(claim_id=claim.id, status=ClaimStatus.HALLUCINATED, explanation="no supporting figures in corpus")

    if overlap >= TERM_SUPPORT_THRESHOLD:
        return Verdict(claim_id=claim.id, status=ClaimStatus.VERIFIED, explanation=f"term overlap {overlap:.2f}")
    if overlap > 0:
        return Verdict(claim_id=claim.id, status=ClaimStatus.UNVERIFIED, explanation=f"partial term overlap {overlap:.2f}")
    return Verdict(claim_id=claim.id, status=ClaimStatus.HALLUCINATED, explanation="no supporting terms in corpus")


class CorpusFactChecker:
    """Deterministic fact checker used when no external provider is configured."""

    async def validate_claim_batch(self, claims: Sequence[Claim], corpus: str) -> List[Verdict]:
        if not (corpus or "").strip():
            return [
                Verdict(claim_id=c.id, status=ClaimStatus.UNVERIFIED, explanation="no research corpus available")
                for c in claims
            ]
        profile = CorpusProfile.from_text(corpus)
        verdicts = [judge_claim(c, profile) for c in claims]
        logger.debug(
            "fact_check.batch_judged",
            claims=len(claims),
            verified=sum(1 for v in verdicts if v.status == ClaimStatus.VERIFIED),
        )
        return verdicts
