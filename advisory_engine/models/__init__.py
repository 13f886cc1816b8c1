"""Pydantic models and enums for the advisory engine."""

from .base import (
    ArtifactStatus,
    ArtifactType,
    ClaimKind,
    ClaimStatus,
    SessionStage,
    STAGE_ORDER,
    TERMINAL_STAGES,
)
from .board import (
    AnalysisStreamResult,
    BoardMember,
    DecisionMakingProcess,
    DecisionPhase,
    ICPProfile,
    Persona,
    PersonaSet,
    Roster,
    SignalAttribute,
    TitleGroup,
    UseCaseFit,
)
from .quality import (
    Claim,
    QCResult,
    QC_TAG_CORRECTED,
    QC_TAG_NEEDS_REVIEW,
    QC_TAG_NO_CLAIMS,
    QC_TAG_PASSED,
    SectionScreening,
    SuspiciousStatement,
    Verdict,
)
from .request import FileAttachment, SessionRequest
from .session import (
    Checkpoint,
    DEFAULT_CHECKPOINT_TITLE,
    GenerationArtifact,
    RecoveryPrompt,
    SessionError,
    SessionStatus,
    SessionWarning,
)

__all__ = [
    "ArtifactStatus",
    "ArtifactType",
    "ClaimKind",
    "ClaimStatus",
    "SessionStage",
    "STAGE_ORDER",
    "TERMINAL_STAGES",
    "AnalysisStreamResult",
    "BoardMember",
    "DecisionMakingProcess",
    "DecisionPhase",
    "ICPProfile",
    "Persona",
    "PersonaSet",
    "Roster",
    "SignalAttribute",
    "TitleGroup",
    "UseCaseFit",
    "Claim",
    "QCResult",
    "QC_TAG_CORRECTED",
    "QC_TAG_NEEDS_REVIEW",
    "QC_TAG_NO_CLAIMS",
    "QC_TAG_PASSED",
    "SectionScreening",
    "SuspiciousStatement",
    "Verdict",
    "FileAttachment",
    "SessionRequest",
    "Checkpoint",
    "DEFAULT_CHECKPOINT_TITLE",
    "GenerationArtifact",
    "RecoveryPrompt",
    "SessionError",
    "SessionStatus",
    "SessionWarning",
]
