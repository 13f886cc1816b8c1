from advisory_engine.models import ClaimKind
from advisory_engine.services.claims import (
    HeuristicClaimDetector,
    classify_claim_text,
    extract_claims,
    iter_segments,
    normalize_claim_text,
)


def test_iter_segments_reports_offsets():
    text = "One. Two!\nThree"
    assert list(iter_segments(text)) == [(0, "One."), (5, "Two!"), (10, "Three")]


def test_extract_claims_picks_statistics_and_skips_plain_sentences():
    report = "Revenue grew 45% year-over-year. Teams value speed."
    claims = extract_claims(report)

    assert len(claims) == 1
    claim = claims[0]
    assert claim.kind == ClaimKind.STATISTIC
    assert claim.text == "Revenue grew 45% year-over-year."
    assert claim.source_offset == 0
    assert claim.normalized == "revenue grew 45% year-over-year"


def test_currency_outranks_statistic():
    assert classify_claim_text("The market is worth $50B.") == ClaimKind.CURRENCY
    assert classify_claim_text("Spend hit 40 dollars per seat") == ClaimKind.CURRENCY
    assert classify_claim_text("We are the leading vendor") == ClaimKind.SUPERLATIVE
    assert classify_claim_text("Teams value speed") is None


def test_duplicate_claims_are_collapsed():
    report = "Churn fell to 12% last year.\n\n**Churn fell to 12% last year.**"
    claims = extract_claims(report)
    assert len(claims) == 1
    assert claims[0].source_offset == 0


def test_markdown_prefix_is_stripped_from_claim_text():
    report = "## Summary\n- Largest vendor in the region by installs"
    claims = extract_claims(report)

    assert len(claims) == 1
    claim = claims[0]
    assert claim.kind == ClaimKind.SUPERLATIVE
    assert claim.text == "Largest vendor in the region by installs"
    assert report[claim.source_offset:].startswith(claim.text)


def test_table_rows_yield_cell_claims_and_skip_separators():
    report = (
        "| Metric | Value |\n"
        "|---|---|\n"
        "| Market share in region | 32% of buyers surveyed |\n"
    )
    claims = extract_claims(report)

    assert [c.text for c in claims] == ["32% of buyers surveyed"]
    assert report[claims[0].source_offset:].startswith("32% of buyers surveyed")


def test_short_segments_are_ignored():
    assert extract_claims("Up 5%.") == []
    assert HeuristicClaimDetector(min_segment_chars=3).detect("Up 5%.")[0].text == "Up 5%."


def test_extraction_is_deterministic():
    report = "Revenue grew 45% year-over-year. The market is worth $50B. Acme is the fastest-growing rival."
    first = extract_claims(report)
    second = extract_claims(report)
    assert [c.model_dump() for c in first] == [c.model_dump() for c in second]
    assert [c.kind for c in first] == [ClaimKind.STATISTIC, ClaimKind.CURRENCY, ClaimKind.SUPERLATIVE]


def test_normalize_claim_text():
    assert normalize_claim_text("  **Revenue**   grew 45%!  ") == "revenue grew 45%"
