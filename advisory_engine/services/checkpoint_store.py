"""
Checkpoint Store
Durable session snapshots for resuming crashed or timed-out sessions.

One store interface, two backends: ``MemoryCheckpointBackend`` (local,
process-lifetime) and ``RedisCheckpointBackend`` (remote). The backend is
picked once at construction; callers never branch on it.

Writes are best-effort: ``save``/``mark_complete``/``delete`` log failures
and return False instead of raising.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Optional, Protocol

import redis.asyncio as redis
import structlog
from pydantic import ValidationError

from ..core import config
from ..core.exceptions import CheckpointWriteFailed, InvalidCheckpoint
from ..logging_config import configure_logging
from ..models.base import STAGE_ORDER, ArtifactType, SessionStage
from ..models.board import Roster
from ..models.session import DEFAULT_CHECKPOINT_TITLE, Checkpoint
from ..utils.date_utils import get_current_utc
from .metrics import metrics

configure_logging()
logger = structlog.get_logger(__name__)


class CheckpointBackend(Protocol):
    name: str

    async def get(self, session_id: str) -> Optional[Checkpoint]: ...

    async def upsert(self, checkpoint: Checkpoint) -> None: ...

    async def live_session_for_user(self, user_id: str) -> Optional[str]: ...

    async def delete(self, session_id: str) -> None: ...

    async def close(self) -> None: ...


class MemoryCheckpointBackend:
    """Local backend; checkpoints are stored serialized so callers never share state."""

    name = "local"

    def __init__(self):
        self._records: Dict[str, str] = {}
        self._user_live: Dict[str, str] = {}

    async def get(self, session_id: str) -> Optional[Checkpoint]:
        raw = self._records.get(session_id)
        return Checkpoint.model_validate_json(raw) if raw else None

    async def upsert(self, checkpoint: Checkpoint) -> None:
        self._records[checkpoint.session_id] = checkpoint.model_dump_json()
        if checkpoint.completed:
            if self._user_live.get(checkpoint.user_id) == checkpoint.session_id:
                self._user_live.pop(checkpoint.user_id, None)
        else:
            self._user_live[checkpoint.user_id] = checkpoint.session_id

    async def live_session_for_user(self, user_id: str) -> Optional[str]:
        return self._user_live.get(user_id)

    async def delete(self, session_id: str) -> None:
        raw = self._records.pop(session_id, None)
        if raw is None:
            return
        user_id = Checkpoint.model_validate_json(raw).user_id
        if self._user_live.get(user_id) == session_id:
            self._user_live.pop(user_id, None)

    async def close(self) -> None:
        return None


class RedisCheckpointBackend:
    """Remote backend: one JSON key per session plus a per-user live pointer."""

    name = "remote"

    def __init__(
        self,
        redis_url: Optional[str] = None,
        *,
        client=None,
        key_prefix: str = config.CHECKPOINT_KEY_PREFIX,
        ttl_seconds: int = config.CHECKPOINT_TTL_SECONDS,
    ):
        self.redis_url = redis_url or config.REDIS_URL or "redis://localhost:6379"
        self.redis_client = client or redis.from_url(self.redis_url, decode_responses=True)
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    def _user_key(self, user_id: str) -> str:
        return f"{self.key_prefix}user:{user_id}"

    async def ping(self) -> bool:
        return bool(await self.redis_client.ping())

    async def get(self, session_id: str) -> Optional[Checkpoint]:
        raw = await self.redis_client.get(self._key(session_id))
        return Checkpoint.model_validate_json(raw) if raw else None

    async def upsert(self, checkpoint: Checkpoint) -> None:
        user_key = self._user_key(checkpoint.user_id)
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.set(self._key(checkpoint.session_id), checkpoint.model_dump_json(), ex=self.ttl_seconds)
            if not checkpoint.completed:
                pipe.set(user_key, checkpoint.session_id, ex=self.ttl_seconds)
            await pipe.execute()
        if checkpoint.completed:
            if await self.redis_client.get(user_key) == checkpoint.session_id:
                await self.redis_client.delete(user_key)

    async def live_session_for_user(self, user_id: str) -> Optional[str]:
        return await self.redis_client.get(self._user_key(user_id))

    async def delete(self, session_id: str) -> None:
        existing = await self.get(session_id)
        await self.redis_client.delete(self._key(session_id))
        if existing is not None:
            user_key = self._user_key(existing.user_id)
            if await self.redis_client.get(user_key) == session_id:
                await self.redis_client.delete(user_key)

    async def close(self) -> None:
        await self.redis_client.aclose()


def checkpoint_title(feedback_item: Optional[str]) -> str:
    text = (feedback_item or "").strip()
    return text[: config.CHECKPOINT_TITLE_MAX_CHARS] if text else DEFAULT_CHECKPOINT_TITLE


def validate_checkpoint(checkpoint: Checkpoint) -> None:
    """Raise ``InvalidCheckpoint`` when a snapshot cannot be resumed from."""
    if not checkpoint.session_id or not checkpoint.user_id:
        raise InvalidCheckpoint("checkpoint requires session_id and user_id")

    needs_roster = (
        checkpoint.stage != SessionStage.ERROR
        and STAGE_ORDER[checkpoint.stage] >= STAGE_ORDER[SessionStage.BOARD_READY]
    )
    roster = checkpoint.artifact(ArtifactType.ROSTER)
    if needs_roster and (roster is None or roster.content is None):
        raise InvalidCheckpoint(f"stage {checkpoint.stage.value} requires a roster")
    if roster is not None and roster.content is not None:
        try:
            Roster.model_validate(roster.content)
        except ValidationError as e:
            raise InvalidCheckpoint(f"roster members are incomplete: {e.error_count()} errors") from e

    report = checkpoint.artifact(ArtifactType.ANALYSIS_REPORT)
    if report is not None and report.content is not None and not isinstance(report.content, str):
        raise InvalidCheckpoint("analysis report content must be text")


class CheckpointStore:
    """Session checkpoint persistence with at most one live draft per user."""

    def __init__(self, backend: Optional[CheckpointBackend] = None):
        self.backend = backend or MemoryCheckpointBackend()
        self._lock = asyncio.Lock()

    @property
    def backend_name(self) -> str:
        return getattr(self.backend, "name", type(self.backend).__name__)

    def _write_failed(self, operation: str, session_id: str, error: Exception) -> None:
        failure = CheckpointWriteFailed(str(error), session_id=session_id)
        logger.error(
            "checkpoint.write_failed",
            operation=operation,
            session_id=session_id,
            backend=self.backend_name,
            code=failure.code,
            error=str(error),
        )
        metrics.increment("checkpoint_write_failures", operation)

    async def save(self, checkpoint: Checkpoint) -> bool:
        """Idempotent upsert keyed by ``session_id``.

        Saving a live checkpoint retires any other live checkpoint of the
        same user. Returns False when validation or the backend fails.
        """
        try:
            validate_checkpoint(checkpoint)
        except InvalidCheckpoint as e:
            logger.warning("checkpoint.invalid", session_id=checkpoint.session_id, error=str(e))
            metrics.increment("checkpoint_invalid", checkpoint.stage.value)
            return False

        try:
            async with self._lock:
                existing = await self.backend.get(checkpoint.session_id)
                record = checkpoint.model_copy(
                    update={
                        "title": checkpoint_title(checkpoint.request.feedback_item),
                        "created_at": existing.created_at if existing else checkpoint.created_at,
                        "updated_at": get_current_utc(),
                    }
                )
                if not record.completed:
                    previous = await self.backend.live_session_for_user(record.user_id)
                    if previous and previous != record.session_id:
                        await self.backend.delete(previous)
                        logger.info(
                            "checkpoint.superseded",
                            user_id=record.user_id,
                            previous_session_id=previous,
                            session_id=record.session_id,
                        )
                await self.backend.upsert(record)
        except Exception as e:
            self._write_failed("save", checkpoint.session_id, e)
            return False

        logger.debug(
            "checkpoint.saved",
            session_id=checkpoint.session_id,
            stage=checkpoint.stage.value,
            completed=checkpoint.completed,
        )
        return True

    async def get(self, session_id: str) -> Optional[Checkpoint]:
        try:
            return await self.backend.get(session_id)
        except Exception as e:
            logger.error("checkpoint.read_failed", session_id=session_id, error=str(e))
            return None

    async def load_latest(self, user_id: str) -> Optional[Checkpoint]:
        """Most recent non-complete checkpoint for ``user_id``, if any."""
        try:
            session_id = await self.backend.live_session_for_user(user_id)
            if not session_id:
                return None
            checkpoint = await self.backend.get(session_id)
        except Exception as e:
            logger.error("checkpoint.read_failed", user_id=user_id, error=str(e))
            return None
        if checkpoint is None or checkpoint.completed:
            return None
        return checkpoint

    async def mark_complete(self, session_id: str) -> bool:
        try:
            async with self._lock:
                checkpoint = await self.backend.get(session_id)
                if checkpoint is None:
                    logger.warning("checkpoint.mark_complete_missing", session_id=session_id)
                    return False
                await self.backend.upsert(
                    checkpoint.model_copy(update={"completed": True, "updated_at": get_current_utc()})
                )
        except Exception as e:
            self._write_failed("mark_complete", session_id, e)
            return False
        return True

    async def delete(self, session_id: str) -> bool:
        try:
            async with self._lock:
                await self.backend.delete(session_id)
        except Exception as e:
            self._write_failed("delete", session_id, e)
            return False
        return True

    async def close(self) -> None:
        await self.backend.close()


async def create_checkpoint_store(redis_url: Optional[str] = None) -> CheckpointStore:
    """Pick the remote backend when Redis answers a ping, otherwise local."""
    url = redis_url or config.REDIS_URL
    if url:
        backend = RedisCheckpointBackend(url)
        try:
            await backend.ping()
            logger.info("checkpoint.remote_ready", url=url)
            return CheckpointStore(backend)
        except Exception as e:
            logger.warning("checkpoint.remote_unavailable", url=url, error=str(e))
            await backend.close()
    return CheckpointStore(MemoryCheckpointBackend())
