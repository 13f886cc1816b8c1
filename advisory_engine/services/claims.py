"""
Claim extraction

Turns report text into a deduplicated, ordered list of checkable claims:
sentences (and table cells) carrying numbers, percentages, currency amounts
or explicit superlatives. Detection sits behind the ``ClaimDetector``
protocol so the heuristic can be tuned or replaced without touching the
validation pipeline.
"""

from __future__ import annotations

import hashlib
import re
from typing import Iterator, List, Optional, Protocol, Set, Tuple

from ..models.base import ClaimKind
from ..models.quality import Claim

# Segment boundaries: whitespace after terminal punctuation, or line breaks
SEGMENT_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+|\n+")
TABLE_SEPARATOR_RE = re.compile(r"^\|?(\s*:?-+:?\s*\|)+\s*:?-*:?\s*$")
MARKDOWN_PREFIX_RE = re.compile(r"^(?:#{1,6}\s+|>\s*|[-*+]\s+|\d+[.)]\s+)+")
EMPHASIS_RE = re.compile(r"[*_`]+")
FILLER_CELL_RE = re.compile(r"^[\s\-–—:./|]*$")
ALNUM_RE = re.compile(r"[A-Za-z0-9]")

PERCENT_RE = re.compile(r"\d+(?:\.\d+)?\s?(?:%|percent\b)", re.IGNORECASE)
CURRENCY_RE = re.compile(
    r"[$€£]\s?\d|\b\d[\d,]*(?:\.\d+)?\s?(?:usd|eur|gbp|dollars)\b", re.IGNORECASE
)
NUMBER_RE = re.compile(r"\b\d[\d,]*(?:\.\d+)?")
SUPERLATIVE_RE = re.compile(
    r"\b(?:largest|biggest|fastest(?:-growing)?|highest|lowest|leading|"
    r"best-selling|number one|world's first|most (?:popular|widely|trusted|profitable|used))\b"
    r"|#1\b",
    re.IGNORECASE,
)

MIN_SEGMENT_CHARS = 10
MIN_CELL_CHARS = 15


class ClaimDetector(Protocol):
    def detect(self, text: str) -> List[Claim]: ...


def normalize_claim_text(text: str) -> str:
    """Lower-case, strip markdown emphasis, collapse whitespace and trailing punctuation."""
    cleaned = EMPHASIS_RE.sub("", text or "").lower()
    cleaned = " ".join(cleaned.split())
    return cleaned.rstrip(" .!?;:,")


def claim_id(normalized: str) -> str:
    return hashlib.sha1(normalized.encode("utf-8")).hexdigest()[:16]


def classify_claim_text(text: str) -> Optional[ClaimKind]:
    """Return the kind of checkable assertion in ``text``, or None."""
    if CURRENCY_RE.search(text):
        return ClaimKind.CURRENCY
    if PERCENT_RE.search(text) or NUMBER_RE.search(text):
        return ClaimKind.STATISTIC
    if SUPERLATIVE_RE.search(text):
        return ClaimKind.SUPERLATIVE
    return None


def iter_segments(text: str) -> Iterator[Tuple[int, str]]:
    """Yield ``(offset, segment)`` pairs with surrounding whitespace removed."""
    start = 0
    for boundary in SEGMENT_BOUNDARY_RE.finditer(text):
        yield from _trimmed(text, start, boundary.start())
        start = boundary.end()
    yield from _trimmed(text, start, len(text))


def _trimmed(text: str, start: int, end: int) -> Iterator[Tuple[int, str]]:
    raw = text[start:end]
    stripped = raw.strip()
    if stripped:
        yield start + (len(raw) - len(raw.lstrip())), stripped


def _is_filler_cell(cell: str) -> bool:
    return bool(FILLER_CELL_RE.match(cell)) or not ALNUM_RE.search(cell)


class HeuristicClaimDetector:
    """Regex-based detector; pure and deterministic."""

    def __init__(self, min_segment_chars: int = MIN_SEGMENT_CHARS, min_cell_chars: int = MIN_CELL_CHARS):
        self.min_segment_chars = min_segment_chars
        self.min_cell_chars = min_cell_chars

    def detect(self, text: str) -> List[Claim]:
        claims: List[Claim] = []
        seen: Set[str] = set()
        for offset, segment in iter_segments(text or ""):
            if TABLE_SEPARATOR_RE.match(segment):
                continue
            if segment.startswith("|"):
                candidates = self._table_cells(offset, segment)
            else:
                candidates = self._sentence(offset, segment)
            for cand_offset, cand_text in candidates:
                kind = classify_claim_text(cand_text)
                if kind is None:
                    continue
                normalized = normalize_claim_text(cand_text)
                if not normalized or normalized in seen:
                    continue
                seen.add(normalized)
                claims.append(
                    Claim(
                        id=claim_id(normalized),
                        text=cand_text,
                        normalized=normalized,
                        source_offset=cand_offset,
                        kind=kind,
                    )
                )
        return claims

    def _sentence(self, offset: int, segment: str) -> List[Tuple[int, str]]:
        prefix = MARKDOWN_PREFIX_RE.match(segment)
        if prefix:
            offset += prefix.end()
            segment = segment[prefix.end():]
        if len(segment) < self.min_segment_chars:
            return []
        return [(offset, segment)]

    def _table_cells(self, offset: int, row: str) -> List[Tuple[int, str]]:
        cells: List[Tuple[int, str]] = []
        cursor = 0
        for raw_cell in row.split("|"):
            cell = raw_cell.strip()
            position = row.find(cell, cursor) if cell else cursor
            cursor = position + len(cell) if cell else cursor + len(raw_cell) + 1
            if len(cell) <= self.min_cell_chars or _is_filler_cell(cell):
                continue
            cells.append((offset + position, cell))
        return cells


_default_detector = HeuristicClaimDetector()


def extract_claims(text: str, detector: Optional[ClaimDetector] = None) -> List[Claim]:
    """Extract claims from ``text``; identical input yields an identical list."""
    return (detector or _default_detector).detect(text)
