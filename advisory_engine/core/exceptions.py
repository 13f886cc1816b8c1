"""
Error taxonomy for the generation pipeline.

Only a few of these ever escape the public API (``RosterFailed``,
``SessionNotFound``, ``InvalidSessionState``). The rest are raised inside
stage tasks and absorbed by the orchestrator into session warnings or an
explicit ``error`` stage, using ``code`` as the stable identifier.
"""

from typing import Optional


class AdvisoryEngineError(Exception):
    """Base class for every pipeline error."""

    code = "advisory_error"
    fatal = False

    def __init__(self, message: Optional[str] = None, *, session_id: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.session_id = session_id


class RosterFailed(AdvisoryEngineError):
    """Roster generation failed after exhausting retries."""

    code = "roster_failed"
    fatal = True


class StageDegraded(AdvisoryEngineError):
    """A non-fatal stage fell back to a placeholder artifact."""

    code = "stage_degraded"

    def __init__(self, message: Optional[str] = None, *, artifact_type: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.artifact_type = artifact_type


class AnalysisEmpty(AdvisoryEngineError):
    """Analysis was forced to finish before any text streamed."""

    code = "analysis_empty"


class AnalysisPartial(AdvisoryEngineError):
    """Analysis stream failed after producing partial text."""

    code = "analysis_partial"


class AnalysisFailed(AdvisoryEngineError):
    """Analysis stream failed without producing any text."""

    code = "analysis_failed"
    fatal = True


class ValidationBatchFailed(AdvisoryEngineError):
    """A claim validation batch failed after exhausting retries."""

    code = "validation_batch_failed"

    def __init__(self, message: Optional[str] = None, *, batch_index: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.batch_index = batch_index


class QualityControlTimeout(AdvisoryEngineError):
    """Claim validation did not finish within the analysis time limit."""

    code = "qc_timeout"


class CheckpointWriteFailed(AdvisoryEngineError):
    """Checkpoint persistence failed; logged only."""

    code = "checkpoint_write_failed"


class SessionCancelled(AdvisoryEngineError):
    """Session was cancelled by the caller."""

    code = "cancelled"
    fatal = True


class SessionNotFound(AdvisoryEngineError, KeyError):
    """No session with the given id is known to this orchestrator."""

    code = "session_not_found"

    def __str__(self) -> str:
        return Exception.__str__(self)


class InvalidSessionState(AdvisoryEngineError):
    """Operation is not allowed in the session's current stage."""

    code = "invalid_session_state"


class InvalidCheckpoint(AdvisoryEngineError, ValueError):
    """Checkpoint payload failed validation."""

    code = "invalid_checkpoint"


__all__ = [
    "AdvisoryEngineError",
    "RosterFailed",
    "StageDegraded",
    "AnalysisEmpty",
    "AnalysisPartial",
    "AnalysisFailed",
    "ValidationBatchFailed",
    "QualityControlTimeout",
    "CheckpointWriteFailed",
    "SessionCancelled",
    "SessionNotFound",
    "InvalidSessionState",
    "InvalidCheckpoint",
]
