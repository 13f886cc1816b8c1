"""
Quality Control Validator

Post-hoc fact validation of a generated report against the research corpus:

1. extract claims (no claims is a success: score 100, tag ``no-claims``)
2. validate in fixed-size batches with bounded parallelism and per-batch
   retries; a batch that keeps failing leaves its claims Unverified
3. score = verified / total * 100
4. below threshold, or with any hallucination, request a correction that
   touches only the flagged sentences and never adds new claims
"""

from __future__ import annotations

import asyncio
import re
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

from ..core import config
from ..core.exceptions import ValidationBatchFailed
from ..logging_config import configure_logging
from ..models.base import ClaimStatus
from ..models.quality import (
    QC_TAG_CORRECTED,
    QC_TAG_NEEDS_REVIEW,
    QC_TAG_PASSED,
    Claim,
    QCResult,
    SectionScreening,
    SuspiciousStatement,
    Verdict,
)
from ..utils.retry import build_async_retrying
from .claims import ClaimDetector, HeuristicClaimDetector, iter_segments
from .fact_checking import CorpusFactChecker, FactCheckProvider, extract_figures
from .metrics import metrics
from .providers import CorrectionProvider

configure_logging()
logger = structlog.get_logger(__name__)

FLAGGED_STATUSES = (ClaimStatus.HALLUCINATED, ClaimStatus.MISMATCHED)

SUSPICIOUS_PATTERNS: Tuple[Tuple[re.Pattern, str], ...] = (
    (
        re.compile(r"\d+(?:\.\d+)?%\s+(?:increase|decrease|growth|reduction|decline|rise)", re.IGNORECASE),
        "percentage change",
    ),
    (re.compile(r"\$\s?\d[\d,.]*\s?[KMB]?\b", re.IGNORECASE), "currency amount"),
    (re.compile(r"\b\d[\d,.]*\s+(?:million|billion|thousand)\b", re.IGNORECASE), "large quantity"),
)
EMPTY_LIST_ITEM_RE = re.compile(r"^\s*(?:[-*+>]|\d+[.)])?\s*$")
CELL_REPLACEMENT = "n/a"


def _chunks(items: Sequence[Claim], size: int) -> List[List[Claim]]:
    size = max(1, size)
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def _coerce_verdict(raw: Any) -> Optional[Verdict]:
    if isinstance(raw, Verdict):
        return raw
    if isinstance(raw, Mapping):
        try:
            return Verdict.model_validate(raw)
        except ValueError:
            return None
    return None


def _claim_spans(report: str, claim: Claim) -> List[Tuple[int, int]]:
    spans = [(m.start(), m.end()) for m in re.finditer(re.escape(claim.text), report)]
    if not spans:
        logger.debug("qc.redact_span_missing", claim_id=claim.id)
    return spans


def redact_flagged_claims(report: str, flagged: Sequence[Claim]) -> str:
    """Remove flagged sentences (and blank flagged table cells), leaving every other byte intact."""
    spans: List[Tuple[int, int]] = []
    for claim in flagged:
        for start, end in _claim_spans(report, claim):
            if any(start < s_end and s_start < end for s_start, s_end in spans):
                continue
            spans.append((start, end))
    if not spans:
        return report

    out: List[str] = []
    line_start = 0
    for line in report.splitlines(keepends=True):
        line_end = line_start + len(line)
        hits = sorted((s, e) for s, e in spans if line_start <= s < line_end)
        if not hits:
            out.append(line)
            line_start = line_end
            continue

        is_table_row = line.lstrip().startswith("|")
        body = line
        for start, end in reversed(hits):
            rel_start, rel_end = start - line_start, min(end, line_end) - line_start
            if is_table_row:
                body = body[:rel_start] + CELL_REPLACEMENT + body[rel_end:]
                continue
            while rel_end < len(body) and body[rel_end] in " \t":
                rel_end += 1
            body = body[:rel_start] + body[rel_end:]

        content = body.rstrip("\r\n")
        if not is_table_row and EMPTY_LIST_ITEM_RE.match(content):
            line_start = line_end
            continue
        newline = body[len(content):]
        out.append(content.rstrip(" \t") + newline)
        line_start = line_end
    return "".join(out)


class QualityControlValidator:
    """Extract, validate, score and (when needed) correct a report."""

    def __init__(
        self,
        fact_checker: Optional[FactCheckProvider] = None,
        corrector: Optional[CorrectionProvider] = None,
        detector: Optional[ClaimDetector] = None,
        *,
        batch_size: int = config.QC_BATCH_SIZE,
        max_retries: int = config.QC_BATCH_MAX_RETRIES,
        max_parallel: int = config.QC_MAX_PARALLEL_BATCHES,
        threshold: float = config.QC_SCORE_THRESHOLD,
        correction_enabled: bool = config.QC_CORRECTION_ENABLED,
        backoff_min: Optional[float] = None,
        backoff_max: Optional[float] = None,
    ):
        self.fact_checker = fact_checker or CorpusFactChecker()
        self.corrector = corrector
        self.detector = detector or HeuristicClaimDetector()
        self.batch_size = max(1, batch_size)
        self.max_retries = max(0, max_retries)
        self.max_parallel = max(1, max_parallel)
        self.threshold = threshold
        self.correction_enabled = correction_enabled
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max

    async def validate(
        self,
        report: str,
        corpus: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> QCResult:
        log = logger.bind(**{k: v for k, v in (context or {}).items() if isinstance(v, (str, int, float))})
        started = time.perf_counter()

        claims = self.detector.detect(report or "")
        if not claims:
            log.info("qc.no_claims")
            result = QCResult.no_claims()
            self._record(result, started, corrected=False)
            return result

        verdicts = await self._validate_all(claims, corpus or "", log)
        classified = [self._apply_verdict(c, verdicts.get(c.id)) for c in claims]

        total = len(classified)
        verified = sum(1 for c in classified if c.status == ClaimStatus.VERIFIED)
        raw_score = verified / total * 100
        issues = [c for c in classified if c.status != ClaimStatus.VERIFIED]
        hallucinated = any(c.status == ClaimStatus.HALLUCINATED for c in classified)
        flagged = [c for c in classified if c.status in FLAGGED_STATUSES]

        corrected_text: Optional[str] = None
        tag = QC_TAG_PASSED
        if raw_score < self.threshold or hallucinated:
            tag = QC_TAG_NEEDS_REVIEW
            if flagged and self.correction_enabled:
                candidate = await self._correct(report, claims, flagged, log)
                if candidate != report:
                    corrected_text = candidate
                    tag = QC_TAG_CORRECTED

        result = QCResult(
            score=round(raw_score, 1),
            verified_claims=verified,
            total_claims=total,
            issues=issues,
            corrected_text=corrected_text,
            tag=tag,
        )
        log.info(
            "qc.completed",
            score=result.score,
            total_claims=total,
            verified_claims=verified,
            flagged=len(flagged),
            hallucinated=result.hallucinated_claims,
            mismatched=result.mismatched_claims,
            tag=tag,
        )
        self._record(result, started, corrected=corrected_text is not None)
        return result

    def unverified_result(self, report: str) -> QCResult:
        """Result for a report whose claims could not be checked in time."""
        claims = self.detector.detect(report or "")
        if not claims:
            return QCResult.no_claims()
        return QCResult(
            score=0.0,
            verified_claims=0,
            total_claims=len(claims),
            issues=[self._apply_verdict(c, None) for c in claims],
            tag=QC_TAG_NEEDS_REVIEW,
        )

    async def _validate_all(self, claims: Sequence[Claim], corpus: str, log) -> Dict[str, Verdict]:
        semaphore = asyncio.Semaphore(self.max_parallel)

        async def _bounded(index: int, batch: List[Claim]) -> Dict[str, Verdict]:
            async with semaphore:
                return await self._validate_batch(index, batch, corpus, log)

        results = await asyncio.gather(
            *(_bounded(i, batch) for i, batch in enumerate(_chunks(claims, self.batch_size)))
        )
        merged: Dict[str, Verdict] = {}
        for batch_result in results:
            merged.update(batch_result)
        return merged

    async def _validate_batch(self, index: int, batch: List[Claim], corpus: str, log) -> Dict[str, Verdict]:
        batch_ids = {c.id for c in batch}
        try:
            async for attempt in build_async_retrying(
                self.max_retries + 1, min_wait=self.backoff_min, max_wait=self.backoff_max
            ):
                with attempt:
                    raw = await self.fact_checker.validate_claim_batch(batch, corpus)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            failure = ValidationBatchFailed(str(e), batch_index=index)
            log.warning(
                "qc.batch_failed",
                batch_index=index,
                claims=len(batch),
                code=failure.code,
                error=str(e),
            )
            metrics.increment("qc_batch_failures")
            return {}

        verdicts: Dict[str, Verdict] = {}
        for item in raw or []:
            verdict = _coerce_verdict(item)
            if verdict is not None and verdict.claim_id in batch_ids:
                verdicts[verdict.claim_id] = verdict
        return verdicts

    @staticmethod
    def _apply_verdict(claim: Claim, verdict: Optional[Verdict]) -> Claim:
        if verdict is None:
            return claim.model_copy(update={"status": ClaimStatus.UNVERIFIED, "explanation": "not checked"})
        return claim.model_copy(update={"status": verdict.status, "explanation": verdict.explanation})

    async def _correct(self, report: str, claims: Sequence[Claim], flagged: Sequence[Claim], log) -> str:
        if self.corrector is not None:
            candidate: Optional[str] = None
            try:
                candidate = await self.corrector.generate_correction(report, list(flagged))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning("qc.correction_failed", error=str(e))

            if candidate and candidate.strip():
                known = {c.normalized for c in claims}
                introduced = [c for c in self.detector.detect(candidate) if c.normalized not in known]
                if not introduced:
                    return candidate
                log.warning("qc.correction_rejected", introduced_claims=len(introduced))

        return redact_flagged_claims(report, flagged)

    def screen_section(self, text: str, corpus: str) -> SectionScreening:
        """Quick scan of a streamed window for statistics the corpus does not back."""
        screening = SectionScreening()
        has_corpus = bool((corpus or "").strip())
        if not has_corpus:
            screening.warnings.append("no research corpus; statistics cannot be verified")
        corpus_figures = extract_figures(corpus) if has_corpus else set()

        for _, segment in iter_segments(text or ""):
            for pattern, reason in SUSPICIOUS_PATTERNS:
                match = pattern.search(segment)
                if not match:
                    continue
                if has_corpus and extract_figures(match.group(0)) <= corpus_figures:
                    continue
                screening.suspicious.append(SuspiciousStatement(text=segment, reason=reason))
                break
        return screening

    @staticmethod
    def _record(result: QCResult, started: float, corrected: bool) -> None:
        metrics.record_stage("quality_control", (time.perf_counter() - started) * 1000)
        metrics.record_qc(
            score=result.score,
            total_claims=result.total_claims,
            hallucinated=result.hallucinated_claims,
            corrected=corrected,
        )
