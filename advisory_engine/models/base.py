"""
Base enums shared across the advisory engine models
"""

from enum import Enum
from typing import Dict


class SessionStage(str, Enum):
    CREATED = "created"
    ROSTER_GENERATING = "roster_generating"
    BOARD_READY = "board_ready"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"


class ArtifactType(str, Enum):
    ROSTER = "roster"
    ICP_PROFILE = "icp_profile"
    PERSONA_SET = "persona_set"
    ANALYSIS_REPORT = "analysis_report"


class ArtifactStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    DEGRADED = "degraded"  # placeholder substituted after retries
    FAILED = "failed"


class ClaimStatus(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    MISMATCHED = "mismatched"
    HALLUCINATED = "hallucinated"


class ClaimKind(str, Enum):
    STATISTIC = "statistic"
    CURRENCY = "currency"
    SUPERLATIVE = "superlative"


# Ordering used to tell forward transitions from resets
STAGE_ORDER: Dict[SessionStage, int] = {
    SessionStage.CREATED: 0,
    SessionStage.ROSTER_GENERATING: 1,
    SessionStage.BOARD_READY: 2,
    SessionStage.ANALYZING: 3,
    SessionStage.COMPLETE: 4,
    SessionStage.ERROR: 4,
}

TERMINAL_STAGES = frozenset({SessionStage.COMPLETE, SessionStage.ERROR})
