"""
Session, artifact and checkpoint models.

A ``Checkpoint`` is the durable form of a session; ``SessionStatus`` is the
read-only snapshot returned to callers and listeners.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from ..utils.date_utils import get_current_utc
from .base import ArtifactStatus, ArtifactType, SessionStage
from .quality import QCResult
from .request import SessionRequest

DEFAULT_CHECKPOINT_TITLE = "Draft Session"


class GenerationArtifact(BaseModel):
    type: ArtifactType
    status: ArtifactStatus = ArtifactStatus.PENDING
    content: Any = None
    fingerprint: Optional[str] = None
    cached: bool = False
    created_at: datetime = Field(default_factory=get_current_utc)
    updated_at: datetime = Field(default_factory=get_current_utc)

    @model_validator(mode="after")
    def _report_never_degraded(self) -> "GenerationArtifact":
        if self.type == ArtifactType.ANALYSIS_REPORT and self.status == ArtifactStatus.DEGRADED:
            raise ValueError("analysis report cannot be degraded")
        return self

    @property
    def ready(self) -> bool:
        return self.status in (ArtifactStatus.COMPLETE, ArtifactStatus.DEGRADED)


class SessionWarning(BaseModel):
    code: str
    message: str
    artifact_type: Optional[ArtifactType] = None
    at: datetime = Field(default_factory=get_current_utc)


class SessionError(BaseModel):
    code: str
    message: str
    at: datetime = Field(default_factory=get_current_utc)


class Checkpoint(BaseModel):
    session_id: str
    user_id: str
    stage: SessionStage
    request: SessionRequest
    artifacts: Dict[ArtifactType, GenerationArtifact] = Field(default_factory=dict)
    qc_result: Optional[QCResult] = None
    warnings: List[SessionWarning] = Field(default_factory=list)
    error: Optional[SessionError] = None
    completed: bool = False
    title: str = DEFAULT_CHECKPOINT_TITLE
    created_at: datetime = Field(default_factory=get_current_utc)
    updated_at: datetime = Field(default_factory=get_current_utc)

    @property
    def live(self) -> bool:
        return not self.completed

    def artifact(self, artifact_type: ArtifactType) -> Optional[GenerationArtifact]:
        return self.artifacts.get(artifact_type)


class SessionStatus(BaseModel):
    session_id: str
    user_id: str
    stage: SessionStage
    artifacts: Dict[ArtifactType, GenerationArtifact] = Field(default_factory=dict)
    qc_result: Optional[QCResult] = None
    warnings: List[SessionWarning] = Field(default_factory=list)
    error: Optional[SessionError] = None
    updated_at: datetime = Field(default_factory=get_current_utc)

    @property
    def report_text(self) -> str:
        report = self.artifacts.get(ArtifactType.ANALYSIS_REPORT)
        return report.content if report and isinstance(report.content, str) else ""

    def warning_codes(self) -> List[str]:
        return [w.code for w in self.warnings]


class RecoveryPrompt(BaseModel):
    """Advisory notice that a session looks stuck; the caller decides what to do."""

    session_id: str
    stage: SessionStage
    elapsed_seconds: float
    checkpoint: Optional[Checkpoint] = None
    message: str = "Report generation appears stuck. Resume from the last saved draft or start over."
