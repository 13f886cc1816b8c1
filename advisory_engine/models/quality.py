"""
Quality-control data contracts: extracted claims, fact-check verdicts and
the scored QC result merged into a session.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from .base import ClaimKind, ClaimStatus

QC_TAG_NO_CLAIMS = "no-claims"
QC_TAG_PASSED = "passed"
QC_TAG_CORRECTED = "corrected"
QC_TAG_NEEDS_REVIEW = "needs-review"


class Claim(BaseModel):
    id: str
    text: str
    normalized: str
    source_offset: int = Field(..., ge=0)
    kind: ClaimKind = ClaimKind.STATISTIC
    status: ClaimStatus = ClaimStatus.UNVERIFIED
    explanation: str = ""


class Verdict(BaseModel):
    """One fact-checker decision, matched to its claim by ``claim_id``."""

    claim_id: str
    status: ClaimStatus
    explanation: str = ""


class QCResult(BaseModel):
    score: float = Field(100.0, ge=0.0, le=100.0)
    verified_claims: int = 0
    total_claims: int = 0
    issues: List[Claim] = Field(default_factory=list)
    corrected_text: Optional[str] = None
    tag: Optional[str] = None

    @classmethod
    def no_claims(cls) -> "QCResult":
        return cls(score=100.0, verified_claims=0, total_claims=0, issues=[], tag=QC_TAG_NO_CLAIMS)

    @property
    def hallucinated_claims(self) -> int:
        return sum(1 for c in self.issues if c.status == ClaimStatus.HALLUCINATED)

    @property
    def mismatched_claims(self) -> int:
        return sum(1 for c in self.issues if c.status == ClaimStatus.MISMATCHED)


class SuspiciousStatement(BaseModel):
    text: str
    reason: str


class SectionScreening(BaseModel):
    suspicious: List[SuspiciousStatement] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.suspicious and not self.warnings
