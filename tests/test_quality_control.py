import asyncio

import pytest

from advisory_engine.models import (
    QC_TAG_CORRECTED,
    QC_TAG_NEEDS_REVIEW,
    QC_TAG_NO_CLAIMS,
    QC_TAG_PASSED,
    ClaimStatus,
    Verdict,
)
from advisory_engine.services.claims import extract_claims
from advisory_engine.services.metrics import metrics
from advisory_engine.services.quality_control import QualityControlValidator, redact_flagged_claims

from conftest import RESEARCH_CORPUS, FakeProvider

MIXED_REPORT = "Revenue grew 45% year-over-year. The market is worth $50B. Teams value speed."
REDACTED_REPORT = "Revenue grew 45% year-over-year. Teams value speed."


class FailingChecker:
    def __init__(self):
        self.calls = 0

    async def validate_claim_batch(self, claims, corpus):
        self.calls += 1
        raise RuntimeError("fact checker offline")


class RecordingChecker:
    def __init__(self):
        self.batch_sizes = []

    async def validate_claim_batch(self, claims, corpus):
        self.batch_sizes.append(len(claims))
        return [Verdict(claim_id=c.id, status=ClaimStatus.VERIFIED) for c in claims]


@pytest.mark.asyncio
async def test_report_without_claims_scores_100():
    result = await QualityControlValidator().validate("Teams value speed and clarity.", RESEARCH_CORPUS)

    assert result.score == 100.0
    assert result.total_claims == 0
    assert result.tag == QC_TAG_NO_CLAIMS
    assert result.corrected_text is None


@pytest.mark.asyncio
async def test_supported_claim_passes():
    result = await QualityControlValidator().validate("Revenue grew 45% year-over-year.", RESEARCH_CORPUS)

    assert result.score == 100.0
    assert result.verified_claims == 1
    assert result.total_claims == 1
    assert result.tag == QC_TAG_PASSED
    assert result.issues == []


@pytest.mark.asyncio
async def test_hallucinated_sentence_is_redacted_without_corrector():
    result = await QualityControlValidator().validate(
        MIXED_REPORT, RESEARCH_CORPUS, context={"session_id": "ses_test"}
    )

    assert result.score == 50.0
    assert result.hallucinated_claims == 1
    assert result.issues[0].text == "The market is worth $50B."
    assert result.corrected_text == REDACTED_REPORT
    assert result.tag == QC_TAG_CORRECTED
    assert metrics.get_quality_metrics()["correction_rate"] == 1.0


@pytest.mark.asyncio
async def test_provider_correction_is_used_when_it_adds_no_claims():
    corrector = FakeProvider(correction=lambda report, flagged: report.replace("The market is worth $50B. ", ""))
    result = await QualityControlValidator(corrector=corrector).validate(MIXED_REPORT, RESEARCH_CORPUS)

    assert corrector.calls["correction"] == 1
    assert result.corrected_text == REDACTED_REPORT
    assert result.tag == QC_TAG_CORRECTED


@pytest.mark.asyncio
async def test_correction_that_introduces_claims_is_rejected():
    corrector = FakeProvider(correction=MIXED_REPORT.replace("$50B", "$80B"))
    result = await QualityControlValidator(corrector=corrector).validate(MIXED_REPORT, RESEARCH_CORPUS)

    assert result.corrected_text == REDACTED_REPORT


@pytest.mark.asyncio
async def test_correction_disabled_only_tags_for_review():
    result = await QualityControlValidator(correction_enabled=False).validate(MIXED_REPORT, RESEARCH_CORPUS)

    assert result.tag == QC_TAG_NEEDS_REVIEW
    assert result.corrected_text is None


@pytest.mark.asyncio
async def test_failed_batch_leaves_claims_unverified():
    checker = FailingChecker()
    validator = QualityControlValidator(fact_checker=checker, max_retries=1, backoff_min=0, backoff_max=0)
    result = await validator.validate(MIXED_REPORT, RESEARCH_CORPUS)

    assert checker.calls == 2
    assert result.score == 0.0
    assert result.total_claims == 2
    assert {c.status for c in result.issues} == {ClaimStatus.UNVERIFIED}
    assert result.tag == QC_TAG_NEEDS_REVIEW
    assert result.corrected_text is None
    assert metrics.get_counters()["qc_batch_failures"] == {"": 1}


@pytest.mark.asyncio
async def test_claims_are_validated_in_batches():
    report = "Revenue grew 45% year-over-year. Churn fell to 12% last year. Margins reached 30% in Europe."
    checker = RecordingChecker()
    result = await QualityControlValidator(fact_checker=checker, batch_size=2).validate(report, RESEARCH_CORPUS)

    assert sorted(checker.batch_sizes) == [1, 2]
    assert result.score == 100.0
    assert result.tag == QC_TAG_PASSED


@pytest.mark.asyncio
async def test_verdicts_for_unknown_claims_are_ignored():
    claims = extract_claims(MIXED_REPORT)

    class PartialChecker:
        async def validate_claim_batch(self, batch, corpus):
            return [
                {"claim_id": claims[0].id, "status": "verified"},
                {"claim_id": "not-a-claim", "status": "hallucinated"},
            ]

    result = await QualityControlValidator(fact_checker=PartialChecker()).validate(MIXED_REPORT, RESEARCH_CORPUS)

    assert result.verified_claims == 1
    assert result.total_claims == 2
    assert result.issues[0].status == ClaimStatus.UNVERIFIED
    assert result.issues[0].explanation == "not checked"
    assert result.corrected_text is None


def test_redaction_blanks_table_cells():
    report = "| Segment | Figure |\n|---|---|\n| Enterprise buyers | Spend reached $50B in total |\n"
    flagged = extract_claims(report)

    redacted = redact_flagged_claims(report, flagged)

    assert "| Enterprise buyers | n/a |\n" in redacted
    assert "$50B" not in redacted
    assert redacted.startswith("| Segment | Figure |\n|---|---|\n")


def test_redaction_drops_emptied_list_items():
    report = "- The market is worth $50B.\n- Teams value speed.\n"
    flagged = extract_claims(report)

    assert redact_flagged_claims(report, flagged) == "- Teams value speed.\n"


def test_screen_section_flags_unbacked_statistics():
    validator = QualityControlValidator()

    screening = validator.screen_section("Sales saw a 30% increase last quarter.", "")
    assert screening.warnings
    assert [s.reason for s in screening.suspicious] == ["percentage change"]

    backed = validator.screen_section("Sales saw a 30% increase last quarter.", "Survey: 30% growth")
    assert backed.clean


class ConcurrencyChecker:
    def __init__(self):
        self.active = 0
        self.peak = 0
        self.calls = 0

    async def validate_claim_batch(self, claims, corpus):
        self.calls += 1
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.01)
        finally:
            self.active -= 1
        return [Verdict(claim_id=c.id, status=ClaimStatus.VERIFIED) for c in claims]


@pytest.mark.asyncio
async def test_batch_checks_respect_max_parallel():
    report = (
        "Revenue grew 45% year-over-year. Churn fell to 12% last year. "
        "Margins reached 30% in Europe. Renewals rose to 88% in 2023."
    )
    checker = ConcurrencyChecker()
    validator = QualityControlValidator(fact_checker=checker, batch_size=1, max_parallel=2)

    result = await validator.validate(report, RESEARCH_CORPUS)

    assert checker.calls == 4
    assert checker.peak == 2
    assert result.verified_claims == 4


@pytest.mark.asyncio
async def test_mismatched_claims_are_counted_and_flagged():
    class MismatchChecker:
        async def validate_claim_batch(self, claims, corpus):
            return [Verdict(claim_id=c.id, status=ClaimStatus.MISMATCHED) for c in claims]

    validator = QualityControlValidator(fact_checker=MismatchChecker(), correction_enabled=False)
    result = await validator.validate("Revenue grew 60% year-over-year.", RESEARCH_CORPUS)

    assert result.mismatched_claims == 1
    assert result.hallucinated_claims == 0
    assert result.tag == QC_TAG_NEEDS_REVIEW


def test_unverified_result_leaves_every_claim_unchecked():
    validator = QualityControlValidator()

    result = validator.unverified_result(MIXED_REPORT)
    assert (result.score, result.verified_claims, result.total_claims) == (0.0, 0, 2)
    assert {c.status for c in result.issues} == {ClaimStatus.UNVERIFIED}
    assert result.tag == QC_TAG_NEEDS_REVIEW

    assert validator.unverified_result("Teams value speed.").tag == QC_TAG_NO_CLAIMS
