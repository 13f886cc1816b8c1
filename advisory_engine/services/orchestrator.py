"""
Generation Orchestrator

Top-level coordinator for an advisory session:

    created -> roster_generating -> board_ready -> analyzing -> complete | error

Every stage transition writes a checkpoint before listeners are notified.
The analyzing stage runs three concurrent tasks (streamed report, ICP
profile, persona set) under a timeout supervisor; ICP and persona stages are
cached and degrade to placeholders independently, and never hold up the
report. Quality control runs on the final (or partial) report text.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel

from ..core import config
from ..core.exceptions import (
    AnalysisEmpty,
    AnalysisFailed,
    AnalysisPartial,
    InvalidSessionState,
    QualityControlTimeout,
    RosterFailed,
    SessionCancelled,
    SessionNotFound,
    StageDegraded,
)
from ..logging_config import bind_session_context, clear_session_context, configure_logging
from ..models.base import (
    TERMINAL_STAGES,
    ArtifactStatus,
    ArtifactType,
    SessionStage,
)
from ..models.board import AnalysisStreamResult, ICPProfile, PersonaSet, Roster
from ..models.quality import QCResult
from ..models.request import SessionRequest
from ..models.session import (
    Checkpoint,
    GenerationArtifact,
    RecoveryPrompt,
    SessionError,
    SessionStatus,
    SessionWarning,
)
from ..utils.date_utils import get_current_utc
from ..utils.fingerprint import fingerprint_for
from ..utils.retry import instrumented_retry
from .cache import ArtifactCache
from .checkpoint_store import CheckpointStore
from .fact_checking import FactCheckProvider
from .metrics import metrics
from .placeholders import normalize_persona_set, placeholder_icp_profile, placeholder_persona_set
from .providers import ChunkSink, GenerationProvider, coerce_stream_result
from .quality_control import QualityControlValidator
from .task_supervisor import TaskPriority, TaskSupervisor, maybe_await
from .timeout_supervisor import TimeoutSupervisor

configure_logging()
logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

Listener = Callable[[SessionStatus], Any]
RecoveryCallback = Callable[[RecoveryPrompt], Any]

SIDE_STAGES = (ArtifactType.ICP_PROFILE, ArtifactType.PERSONA_SET)
ANALYSIS_STUCK_CODE = "analysis_stuck"


def _coerce_model(model_cls: Type[M], raw: Any) -> M:
    if isinstance(raw, model_cls):
        return raw
    return model_cls.model_validate(raw)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


@dataclass
class _Session:
    session_id: str
    request: SessionRequest
    stage: SessionStage = SessionStage.CREATED
    artifacts: Dict[ArtifactType, GenerationArtifact] = field(default_factory=dict)
    qc_result: Optional[QCResult] = None
    warnings: List[SessionWarning] = field(default_factory=list)
    error: Optional[SessionError] = None
    created_at: datetime = field(default_factory=get_current_utc)
    updated_at: datetime = field(default_factory=get_current_utc)
    run_id: int = 0
    cancel_requested: bool = False
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    report_chunks: List[str] = field(default_factory=list)
    report_chars: int = 0
    corpus: str = ""
    stream_open: bool = False
    next_checkpoint_at: int = 0
    screened_upto: int = 0

    @property
    def user_id(self) -> str:
        return self.request.user_id

    @property
    def report_text(self) -> str:
        return "".join(self.report_chunks)

    @property
    def roster(self) -> Optional[Roster]:
        artifact = self.artifacts.get(ArtifactType.ROSTER)
        if artifact is None or artifact.content is None:
            return None
        return Roster.model_validate(artifact.content)

    def reset_stream(self, interval: int) -> None:
        self.report_chunks = []
        self.report_chars = 0
        self.corpus = ""
        self.stream_open = False
        self.next_checkpoint_at = interval
        self.screened_upto = 0

    def warn(self, code: str, message: str, artifact_type: Optional[ArtifactType] = None) -> None:
        self.warnings.append(SessionWarning(code=code, message=message, artifact_type=artifact_type))

    def set_artifact(self, artifact_type: ArtifactType, status: ArtifactStatus, content: Any = None, **extra) -> None:
        previous = self.artifacts.get(artifact_type)
        self.artifacts[artifact_type] = GenerationArtifact(
            type=artifact_type,
            status=status,
            content=content,
            created_at=previous.created_at if previous else get_current_utc(),
            **extra,
        )

    @classmethod
    def from_checkpoint(cls, checkpoint: Checkpoint) -> "_Session":
        return cls(
            session_id=checkpoint.session_id,
            request=checkpoint.request,
            stage=checkpoint.stage,
            artifacts={k: v.model_copy(deep=True) for k, v in checkpoint.artifacts.items()},
            qc_result=checkpoint.qc_result,
            warnings=list(checkpoint.warnings),
            created_at=checkpoint.created_at,
        )


@dataclass
class AnalysisHandle:
    """Handle on a running analysis; ``wait()`` returns the settled status."""

    session_id: str
    run_id: int
    task: asyncio.Task
    _status: Callable[[], SessionStatus]

    def done(self) -> bool:
        return self.task.done()

    async def wait(self) -> SessionStatus:
        await asyncio.shield(self.task)
        return self._status()


class GenerationOrchestrator:
    """Drives sessions through roster generation, analysis and quality control."""

    def __init__(
        self,
        provider: GenerationProvider,
        *,
        cache: Optional[ArtifactCache] = None,
        checkpoints: Optional[CheckpointStore] = None,
        validator: Optional[QualityControlValidator] = None,
        fact_checker: Optional[FactCheckProvider] = None,
        tasks: Optional[TaskSupervisor] = None,
        hard_timeout: float = config.ANALYSIS_HARD_TIMEOUT_SECONDS,
        stuck_timeout: float = config.ANALYSIS_STUCK_TIMEOUT_SECONDS,
        qc_timeout: float = config.QC_TIMEOUT_SECONDS,
        roster_max_retries: int = config.ROSTER_MAX_RETRIES,
        stage_max_retries: int = config.STAGE_MAX_RETRIES,
        retry_base_delay: Optional[float] = None,
        checkpoint_interval_chars: int = config.CHECKPOINT_STREAM_INTERVAL_CHARS,
        persona_count: int = config.PERSONA_TARGET_COUNT,
        on_recovery_prompt: Optional[RecoveryCallback] = None,
    ):
        self.provider = provider
        self.cache = cache or ArtifactCache()
        self.checkpoints = checkpoints or CheckpointStore()
        self.validator = validator or QualityControlValidator(fact_checker=fact_checker, corrector=provider)
        self.tasks = tasks or TaskSupervisor()
        self.hard_timeout = hard_timeout
        self.stuck_timeout = stuck_timeout
        self.qc_timeout = qc_timeout
        self.roster_max_retries = roster_max_retries
        self.stage_max_retries = stage_max_retries
        self.retry_base_delay = retry_base_delay
        self.checkpoint_interval_chars = max(1, checkpoint_interval_chars)
        self.persona_count = persona_count
        self.on_recovery_prompt = on_recovery_prompt
        self._sessions: Dict[str, _Session] = {}
        self._listeners: List[Listener] = []

    # ──────────────────────────────────────────────────────────
    #  Listeners, status and persistence
    # ──────────────────────────────────────────────────────────

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _get(self, session_id: str) -> _Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"unknown session {session_id}", session_id=session_id)
        return session

    def _is_current(self, session: _Session) -> bool:
        return self._sessions.get(session.session_id) is session

    def _snapshot(self, session: _Session) -> SessionStatus:
        artifacts = {k: v.model_copy(deep=True) for k, v in session.artifacts.items()}
        report = artifacts.get(ArtifactType.ANALYSIS_REPORT)
        if report is not None and report.status == ArtifactStatus.IN_PROGRESS:
            report.content = session.report_text
        return SessionStatus(
            session_id=session.session_id,
            user_id=session.user_id,
            stage=session.stage,
            artifacts=artifacts,
            qc_result=session.qc_result,
            warnings=list(session.warnings),
            error=session.error,
            updated_at=session.updated_at,
        )

    def get_session_status(self, session_id: str) -> SessionStatus:
        return self._snapshot(self._get(session_id))

    def _build_checkpoint(self, session: _Session) -> Checkpoint:
        status = self._snapshot(session)
        return Checkpoint(
            session_id=session.session_id,
            user_id=session.user_id,
            stage=session.stage,
            request=session.request,
            artifacts=status.artifacts,
            qc_result=session.qc_result,
            warnings=status.warnings,
            error=session.error,
            completed=session.stage == SessionStage.COMPLETE,
            created_at=session.created_at,
        )

    async def _persist(self, session: _Session) -> bool:
        if not self._is_current(session):
            return False
        return await self.checkpoints.save(self._build_checkpoint(session))

    async def _notify(self, session: _Session) -> None:
        if not self._is_current(session) or not self._listeners:
            return
        status = self._snapshot(session)
        for listener in list(self._listeners):
            try:
                await maybe_await(listener(status))
            except Exception as e:
                logger.warning("orchestrator.listener_failed", session_id=session.session_id, error=str(e))

    async def _transition(self, session: _Session, stage: SessionStage) -> None:
        previous = session.stage
        session.stage = stage
        session.updated_at = get_current_utc()
        logger.info(
            "orchestrator.transition",
            session_id=session.session_id,
            from_stage=previous.value,
            to_stage=stage.value,
        )
        await self._persist(session)
        await self._notify(session)

    async def _fail(self, session: _Session, code: str, message: str) -> None:
        session.error = SessionError(code=code, message=message)
        await self._transition(session, SessionStage.ERROR)

    async def _finish_cancelled(self, session: _Session) -> None:
        if session.stage == SessionStage.ERROR:
            return
        cancelled = SessionCancelled("Session cancelled by caller", session_id=session.session_id)
        await self._fail(session, cancelled.code, str(cancelled))

    # ──────────────────────────────────────────────────────────
    #  Roster
    # ──────────────────────────────────────────────────────────

    async def start_session(self, request: SessionRequest) -> str:
        """Create a session and generate its roster.

        A roster failure leaves the session in ``error`` with code
        ``roster_failed``; the session id is returned either way.
        """
        session = _Session(session_id=f"ses_{uuid.uuid4().hex}", request=request)
        self._sessions[session.session_id] = session
        bind_session_context(session_id=session.session_id, user_id=request.user_id)
        await self._transition(session, SessionStage.CREATED)
        try:
            await self.start_roster(session.session_id)
        except RosterFailed:
            pass
        return session.session_id

    async def _generate_roster(self, request: SessionRequest) -> Roster:
        return _coerce_model(Roster, await self.provider.generate_roster(request))

    async def start_roster(self, session_id: str) -> Optional[Roster]:
        """Cache-first roster generation with retries.

        Returns None when the session was cancelled meanwhile; raises
        ``RosterFailed`` once retries are exhausted.
        """
        session = self._get(session_id)
        if session.stage not in (SessionStage.CREATED, SessionStage.ERROR) or session.roster is not None:
            raise InvalidSessionState(
                f"roster cannot start from {session.stage.value}", session_id=session_id
            )
        session.error = None
        await self._transition(session, SessionStage.ROSTER_GENERATING)
        if session.cancel_requested:
            await self._finish_cancelled(session)
            return None

        started = time.perf_counter()
        fingerprint = fingerprint_for(ArtifactType.ROSTER, session.request)
        entry = await self.cache.get(ArtifactType.ROSTER, fingerprint)
        cached = entry is not None
        if entry is not None:
            roster = Roster.model_validate(entry.content)
        else:
            try:
                roster = await instrumented_retry(
                    self._generate_roster,
                    session.request,
                    max_attempts=self.roster_max_retries + 1,
                    base_delay=self.retry_base_delay,
                    on_retry=lambda attempt, exc, delay: metrics.increment("provider_retries", "roster"),
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                failure = RosterFailed(f"roster generation failed: {e}", session_id=session_id)
                metrics.record_stage("roster", _elapsed_ms(started), success=False)
                logger.error("orchestrator.roster_failed", session_id=session_id, error=str(e))
                await self._fail(session, failure.code, str(failure))
                raise failure from e
            await self.cache.put(ArtifactType.ROSTER, fingerprint, roster.model_dump(mode="json"))

        if session.cancel_requested or not self._is_current(session):
            logger.info("orchestrator.stale_result_discarded", session_id=session_id, artifact_type="roster")
            await self._finish_cancelled(session)
            return None

        session.set_artifact(
            ArtifactType.ROSTER,
            ArtifactStatus.COMPLETE,
            roster.model_dump(mode="json"),
            fingerprint=fingerprint,
            cached=cached,
        )
        metrics.record_stage("roster", _elapsed_ms(started), success=True, cached=cached)
        await self._transition(session, SessionStage.BOARD_READY)
        return roster

    # ──────────────────────────────────────────────────────────
    #  Analysis
    # ──────────────────────────────────────────────────────────

    async def start_analysis(
        self,
        session_id: str,
        sink: Optional[ChunkSink] = None,
        on_recovery_prompt: Optional[RecoveryCallback] = None,
    ) -> AnalysisHandle:
        """Launch the report stream plus ICP and persona generation.

        ICP profile and persona set are skipped when already complete (for
        example after resuming from a checkpoint).
        """
        session = self._get(session_id)
        roster = session.roster
        if session.stage != SessionStage.BOARD_READY or roster is None:
            raise InvalidSessionState(
                f"analysis cannot start from {session.stage.value}", session_id=session_id
            )

        session.run_id += 1
        run_id = session.run_id
        session.reset_stream(self.checkpoint_interval_chars)
        session.qc_result = None
        session.set_artifact(ArtifactType.ANALYSIS_REPORT, ArtifactStatus.IN_PROGRESS, "")
        pending_side = []
        for artifact_type in SIDE_STAGES:
            current = session.artifacts.get(artifact_type)
            if current is not None and current.status == ArtifactStatus.COMPLETE:
                continue
            session.set_artifact(artifact_type, ArtifactStatus.IN_PROGRESS)
            pending_side.append(artifact_type)

        await self._transition(session, SessionStage.ANALYZING)
        task = self.tasks.spawn(
            self._drive_analysis(session, run_id, roster, sink, pending_side, on_recovery_prompt),
            name="analysis_driver",
            session_id=session_id,
            priority=TaskPriority.HIGH,
        )
        return AnalysisHandle(
            session_id=session_id,
            run_id=run_id,
            task=task,
            _status=lambda: self._snapshot(session),
        )

    async def run_analysis(self, session_id: str, sink: Optional[ChunkSink] = None) -> SessionStatus:
        handle = await self.start_analysis(session_id, sink)
        return await handle.wait()

    async def _drive_analysis(
        self,
        session: _Session,
        run_id: int,
        roster: Roster,
        sink: Optional[ChunkSink],
        pending_side: List[ArtifactType],
        on_recovery_prompt: Optional[RecoveryCallback],
    ) -> None:
        bind_session_context(session_id=session.session_id, user_id=session.user_id)
        started = time.perf_counter()
        forced = asyncio.Event()
        supervisor = TimeoutSupervisor(
            content_length=lambda: session.report_chars,
            on_hard_timeout=forced.set,
            on_stuck=lambda elapsed: self._on_stuck(session, run_id, elapsed, on_recovery_prompt),
            hard_limit=self.hard_timeout,
            stuck_limit=self.stuck_timeout,
            session_id=session.session_id,
        )
        supervisor.arm()

        stream_task = self.tasks.spawn(
            self._stream_report(session, run_id, roster, sink),
            name="analysis_stream",
            session_id=session.session_id,
        )
        stage_tasks = {stream_task}
        for artifact_type in pending_side:
            stage_tasks.add(
                self.tasks.spawn(
                    self._side_stage(session, artifact_type, roster),
                    name=f"{artifact_type.value}_stage",
                    session_id=session.session_id,
                    on_result=lambda artifact: self._merge_artifact(session, run_id, artifact),
                )
            )

        waiters = {
            asyncio.create_task(forced.wait()),
            asyncio.create_task(session.cancel_event.wait()),
        }
        try:
            pending = set(stage_tasks)
            while pending and not forced.is_set() and not session.cancel_requested:
                await asyncio.wait(pending | waiters, return_when=asyncio.FIRST_COMPLETED)
                pending = {t for t in pending if not t.done()}

            if session.cancel_requested or session.run_id != run_id:
                # the provider call runs to completion; on_chunk and the run id discard its output
                if session.run_id == run_id:
                    await self._finish_cancelled(session)
                return

            if forced.is_set():
                session.stream_open = False
                if not stream_task.done():
                    stream_task.cancel()
                result = await self._forced_result(session)
                if result is None:
                    metrics.record_stage("analysis", _elapsed_ms(started), success=False, fallback=True)
                    return
            else:
                result = await self._stream_outcome(session, stream_task)
                if result is None:
                    metrics.record_stage("analysis", _elapsed_ms(started), success=False)
                    return

            await self._finalize(session, run_id, result, forced)
            metrics.record_stage(
                "analysis",
                _elapsed_ms(started),
                success=True,
                fallback=forced.is_set(),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("orchestrator.analysis_crashed", session_id=session.session_id)
            if session.run_id == run_id and session.stage not in TERMINAL_STAGES:
                await self._fail(session, "internal_error", f"analysis crashed: {e}")
        finally:
            supervisor.disarm()
            for waiter in waiters:
                waiter.cancel()
            clear_session_context()

    async def _forced_result(self, session: _Session) -> Optional[AnalysisStreamResult]:
        """Hard limit reached: keep the partial text, or return to board_ready when empty."""
        text = session.report_text
        if text.strip():
            partial = AnalysisPartial("time limit reached; finalizing the partial report", session_id=session.session_id)
            session.warn(partial.code, str(partial), ArtifactType.ANALYSIS_REPORT)
            return AnalysisStreamResult(full_text=text, research_corpus=session.corpus)

        empty = AnalysisEmpty(
            "Report generation was cancelled by the time limit. You can try again.",
            session_id=session.session_id,
        )
        logger.warning("orchestrator.analysis_empty", session_id=session.session_id)
        session.set_artifact(ArtifactType.ANALYSIS_REPORT, ArtifactStatus.PENDING, "")
        session.qc_result = QCResult.no_claims()
        session.warn(empty.code, str(empty), ArtifactType.ANALYSIS_REPORT)
        await self._transition(session, SessionStage.BOARD_READY)
        return None

    async def _stream_outcome(self, session: _Session, stream_task: asyncio.Task) -> Optional[AnalysisStreamResult]:
        """Normal completion: success, success-with-warning, or fatal when nothing streamed."""
        error = stream_task.exception()
        if error is None:
            result = stream_task.result()
            if result.full_text.strip():
                return result
            error = AnalysisFailed("analysis stream returned no content")

        text = session.report_text
        if text.strip():
            partial = AnalysisPartial(f"analysis stream failed after partial output: {error}", session_id=session.session_id)
            logger.warning("orchestrator.analysis_partial", session_id=session.session_id, chars=len(text), error=str(error))
            session.warn(partial.code, str(partial), ArtifactType.ANALYSIS_REPORT)
            return AnalysisStreamResult(full_text=text, research_corpus=session.corpus)

        failure = error if isinstance(error, AnalysisFailed) else AnalysisFailed(f"analysis stream failed: {error}")
        logger.error("orchestrator.analysis_failed", session_id=session.session_id, error=str(error))
        session.set_artifact(ArtifactType.ANALYSIS_REPORT, ArtifactStatus.FAILED, "")
        await self._fail(session, failure.code, str(failure))
        return None

    async def _run_quality_control(self, session: _Session, text: str, forced: asyncio.Event) -> QCResult:
        """Validate ``text`` without outliving the hard limit.

        Before the limit fires, validation races the ``forced`` event; once it
        has fired, validation gets ``qc_timeout`` seconds. On expiry every claim
        is left Unverified.
        """
        validation = asyncio.create_task(
            self.validator.validate(text, session.corpus, context={"session_id": session.session_id}),
            name=f"quality_control:{session.session_id}",
        )
        try:
            if forced.is_set():
                done, _ = await asyncio.wait({validation}, timeout=self.qc_timeout)
            else:
                forced_wait = asyncio.create_task(forced.wait())
                try:
                    done, _ = await asyncio.wait({validation, forced_wait}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    forced_wait.cancel()
        except asyncio.CancelledError:
            validation.cancel()
            raise

        if validation in done:
            return validation.result()

        validation.cancel()
        timeout = QualityControlTimeout(
            "claim validation did not finish before the time limit; claims left unverified",
            session_id=session.session_id,
        )
        logger.warning("orchestrator.qc_timeout", session_id=session.session_id, code=timeout.code)
        metrics.increment("qc_timeouts")
        session.warn(timeout.code, str(timeout), ArtifactType.ANALYSIS_REPORT)
        return self.validator.unverified_result(text)

    async def _finalize(
        self,
        session: _Session,
        run_id: int,
        result: AnalysisStreamResult,
        forced: asyncio.Event,
    ) -> None:
        session.corpus = result.research_corpus or session.corpus
        session.set_artifact(ArtifactType.ANALYSIS_REPORT, ArtifactStatus.COMPLETE, result.full_text)
        qc = await self._run_quality_control(session, result.full_text, forced)
        if session.cancel_requested or session.run_id != run_id:
            logger.info("orchestrator.stale_result_discarded", session_id=session.session_id, artifact_type="qc")
            await self._finish_cancelled(session)
            return
        if qc.corrected_text:
            session.set_artifact(ArtifactType.ANALYSIS_REPORT, ArtifactStatus.COMPLETE, qc.corrected_text)
        session.qc_result = qc
        await self._transition(session, SessionStage.COMPLETE)

    async def _stream_report(
        self,
        session: _Session,
        run_id: int,
        roster: Roster,
        sink: Optional[ChunkSink],
    ) -> AnalysisStreamResult:
        async def on_chunk(chunk: str) -> None:
            if not chunk or session.cancel_requested or not session.stream_open or session.run_id != run_id:
                return
            session.report_chunks.append(chunk)
            session.report_chars += len(chunk)
            if sink is not None:
                try:
                    await maybe_await(sink(chunk))
                except Exception as e:
                    logger.warning("orchestrator.sink_failed", session_id=session.session_id, error=str(e))
            if session.report_chars >= session.next_checkpoint_at:
                interval = self.checkpoint_interval_chars
                session.next_checkpoint_at = (session.report_chars // interval + 1) * interval
                await self._stream_checkpoint(session)

        session.stream_open = True
        try:
            raw = await self.provider.stream_analysis(session.request, roster, on_chunk)
        finally:
            if session.run_id == run_id:
                session.stream_open = False
        result = coerce_stream_result(raw, session.report_text)
        if session.run_id == run_id and not session.cancel_requested:
            session.corpus = result.research_corpus
        return result

    async def _stream_checkpoint(self, session: _Session) -> None:
        text = session.report_text
        screening = self.validator.screen_section(text[session.screened_upto:], session.corpus)
        session.screened_upto = len(text)
        if screening.suspicious:
            metrics.increment("suspicious_statements", amount=len(screening.suspicious))
            logger.info(
                "orchestrator.suspicious_statements",
                session_id=session.session_id,
                count=len(screening.suspicious),
                reasons=sorted({s.reason for s in screening.suspicious}),
            )
        await self._persist(session)

    async def _on_stuck(
        self,
        session: _Session,
        run_id: int,
        elapsed: float,
        callback: Optional[RecoveryCallback],
    ) -> None:
        if session.run_id != run_id or session.stage != SessionStage.ANALYZING or session.report_chars:
            return
        checkpoint = await self.checkpoints.load_latest(session.user_id)
        if checkpoint is not None and checkpoint.session_id != session.session_id:
            checkpoint = None
        prompt = RecoveryPrompt(
            session_id=session.session_id,
            stage=session.stage,
            elapsed_seconds=elapsed,
            checkpoint=checkpoint,
        )
        session.warn(ANALYSIS_STUCK_CODE, prompt.message, ArtifactType.ANALYSIS_REPORT)
        handler = callback or self.on_recovery_prompt
        if handler is not None:
            await maybe_await(handler(prompt))

    # ──────────────────────────────────────────────────────────
    #  ICP profile and persona set
    # ──────────────────────────────────────────────────────────

    async def _side_stage(self, session: _Session, artifact_type: ArtifactType, roster: Roster) -> GenerationArtifact:
        request = session.request
        if artifact_type == ArtifactType.ICP_PROFILE:
            fingerprint = fingerprint_for(artifact_type, request)

            async def generate_icp_profile() -> BaseModel:
                return _coerce_model(ICPProfile, await self.provider.generate_icp_profile(request))

            return await self._cached_stage(
                session, artifact_type, fingerprint, generate_icp_profile, placeholder_icp_profile
            )

        fingerprint = fingerprint_for(artifact_type, request, roster)

        async def generate_persona_set() -> BaseModel:
            raw = _coerce_model(PersonaSet, await self.provider.generate_persona_set(request, roster))
            return normalize_persona_set(raw, roster, self.persona_count)

        return await self._cached_stage(
            session,
            artifact_type,
            fingerprint,
            generate_persona_set,
            lambda: placeholder_persona_set(roster, self.persona_count),
        )

    async def _cached_stage(
        self,
        session: _Session,
        artifact_type: ArtifactType,
        fingerprint: str,
        generate: Callable[[], Awaitable[BaseModel]],
        placeholder: Callable[[], BaseModel],
    ) -> GenerationArtifact:
        started = time.perf_counter()
        entry = await self.cache.get(artifact_type, fingerprint)
        if entry is not None:
            metrics.record_stage(artifact_type.value, _elapsed_ms(started), cached=True)
            return GenerationArtifact(
                type=artifact_type,
                status=ArtifactStatus.COMPLETE,
                content=entry.content,
                fingerprint=fingerprint,
                cached=True,
            )

        try:
            model = await instrumented_retry(
                generate,
                max_attempts=self.stage_max_retries + 1,
                base_delay=self.retry_base_delay,
                on_retry=lambda attempt, exc, delay: metrics.increment("provider_retries", artifact_type.value),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            degraded = StageDegraded(f"{artifact_type.value} generation failed: {e}", artifact_type=artifact_type.value)
            logger.warning(
                "orchestrator.stage_degraded",
                session_id=session.session_id,
                artifact_type=artifact_type.value,
                code=degraded.code,
                error=str(e),
            )
            metrics.record_stage(artifact_type.value, _elapsed_ms(started), success=False, fallback=True)
            return GenerationArtifact(
                type=artifact_type,
                status=ArtifactStatus.DEGRADED,
                content=placeholder().model_dump(mode="json"),
                fingerprint=fingerprint,
            )

        content = model.model_dump(mode="json")
        await self.cache.put(artifact_type, fingerprint, content)
        metrics.record_stage(artifact_type.value, _elapsed_ms(started))
        return GenerationArtifact(
            type=artifact_type,
            status=ArtifactStatus.COMPLETE,
            content=content,
            fingerprint=fingerprint,
        )

    async def _merge_artifact(self, session: _Session, run_id: int, artifact: GenerationArtifact) -> None:
        if session.run_id != run_id or session.cancel_requested or not self._is_current(session):
            logger.info(
                "orchestrator.stale_result_discarded",
                session_id=session.session_id,
                artifact_type=artifact.type.value,
            )
            return
        previous = session.artifacts.get(artifact.type)
        if previous is not None:
            artifact = artifact.model_copy(update={"created_at": previous.created_at})
        session.artifacts[artifact.type] = artifact
        if artifact.status == ArtifactStatus.DEGRADED:
            session.warn(
                StageDegraded.code,
                f"{artifact.type.value} unavailable; placeholder substituted",
                artifact.type,
            )
        session.updated_at = get_current_utc()
        await self._persist(session)
        await self._notify(session)

    # ──────────────────────────────────────────────────────────
    #  Cancel, recovery and shutdown
    # ──────────────────────────────────────────────────────────

    async def cancel(self, session_id: str) -> bool:
        """Request cooperative cancellation; in-flight provider calls finish and are discarded."""
        session = self._get(session_id)
        if session.stage in TERMINAL_STAGES or session.cancel_requested:
            return False
        session.cancel_requested = True
        session.cancel_event.set()
        logger.info("orchestrator.cancel_requested", session_id=session_id, stage=session.stage.value)
        if session.stage in (SessionStage.CREATED, SessionStage.BOARD_READY):
            await self._finish_cancelled(session)
        return True

    async def recover_latest_draft(self, user_id: str) -> Optional[Checkpoint]:
        return await self.checkpoints.load_latest(user_id)

    async def resume_session(self, checkpoint: Checkpoint) -> str:
        """Rehydrate a session from ``checkpoint``.

        With a roster the session resumes at ``board_ready`` keeping every
        stored artifact; without one the roster is generated again.
        """
        if checkpoint.completed or checkpoint.stage == SessionStage.COMPLETE:
            raise InvalidSessionState("completed sessions cannot be resumed", session_id=checkpoint.session_id)

        previous = self._sessions.get(checkpoint.session_id)
        if previous is not None:
            previous.cancel_requested = True
            previous.cancel_event.set()

        session = _Session.from_checkpoint(checkpoint)
        for artifact_type in SIDE_STAGES:
            artifact = session.artifacts.get(artifact_type)
            if artifact is not None and artifact.status == ArtifactStatus.IN_PROGRESS:
                session.set_artifact(artifact_type, ArtifactStatus.PENDING)
        self._sessions[session.session_id] = session
        bind_session_context(session_id=session.session_id, user_id=session.user_id)
        logger.info(
            "orchestrator.resumed",
            session_id=session.session_id,
            checkpoint_stage=checkpoint.stage.value,
            artifacts=sorted(a.value for a in session.artifacts),
        )

        roster_artifact = session.artifacts.get(ArtifactType.ROSTER)
        if roster_artifact is not None and roster_artifact.status == ArtifactStatus.COMPLETE and session.roster:
            await self._transition(session, SessionStage.BOARD_READY)
            return session.session_id

        session.stage = SessionStage.CREATED
        try:
            await self.start_roster(session.session_id)
        except RosterFailed:
            pass
        return session.session_id

    async def shutdown(self, timeout: float = config.TASK_SHUTDOWN_TIMEOUT_SECONDS) -> Dict[str, str]:
        return await self.tasks.graceful_shutdown(timeout)
