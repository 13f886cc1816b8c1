import pytest

from advisory_engine.models import (
    ArtifactStatus,
    ArtifactType,
    Checkpoint,
    DEFAULT_CHECKPOINT_TITLE,
    GenerationArtifact,
    SessionStage,
)
from advisory_engine.services.checkpoint_store import (
    CheckpointStore,
    MemoryCheckpointBackend,
    RedisCheckpointBackend,
    create_checkpoint_store,
)
from advisory_engine.services.metrics import metrics

from conftest import ROSTER_PAYLOAD, make_request


def make_checkpoint(session_id="ses_1", stage=SessionStage.BOARD_READY, roster=True, **overrides):
    request = overrides.pop("request", None) or make_request()
    artifacts = {}
    if roster:
        artifacts[ArtifactType.ROSTER] = GenerationArtifact(
            type=ArtifactType.ROSTER, status=ArtifactStatus.COMPLETE, content=ROSTER_PAYLOAD
        )
    return Checkpoint(
        session_id=session_id,
        user_id=request.user_id,
        stage=stage,
        request=request,
        artifacts=artifacts,
        **overrides,
    )


class FailingBackend(MemoryCheckpointBackend):
    async def upsert(self, checkpoint):
        raise ConnectionError("database unavailable")


@pytest.mark.asyncio
async def test_save_and_load_latest():
    store = CheckpointStore()
    assert await store.save(make_checkpoint())

    latest = await store.load_latest("user-1")

    assert latest is not None
    assert latest.session_id == "ses_1"
    assert latest.stage == SessionStage.BOARD_READY
    assert latest.title == "Pricing page redesign"
    assert latest.artifact(ArtifactType.ROSTER).content == ROSTER_PAYLOAD
    assert store.backend_name == "local"


@pytest.mark.asyncio
async def test_title_is_truncated_or_defaulted():
    store = CheckpointStore()
    await store.save(make_checkpoint(request=make_request(feedback_item="x" * 150)))
    assert len((await store.get("ses_1")).title) == 100

    await store.save(make_checkpoint(request=make_request(feedback_item="   ")))
    assert (await store.get("ses_1")).title == DEFAULT_CHECKPOINT_TITLE


@pytest.mark.asyncio
async def test_one_live_checkpoint_per_user():
    store = CheckpointStore()
    await store.save(make_checkpoint("ses_1"))
    await store.save(make_checkpoint("ses_2"))

    assert await store.get("ses_1") is None
    assert (await store.load_latest("user-1")).session_id == "ses_2"


@pytest.mark.asyncio
async def test_completed_checkpoints_are_not_drafts():
    store = CheckpointStore()
    await store.save(make_checkpoint())
    assert await store.mark_complete("ses_1")

    assert await store.load_latest("user-1") is None
    assert (await store.get("ses_1")).completed
    assert await store.mark_complete("missing") is False


@pytest.mark.asyncio
async def test_created_at_survives_upserts():
    store = CheckpointStore()
    await store.save(make_checkpoint(stage=SessionStage.CREATED, roster=False))
    first = await store.get("ses_1")

    await store.save(make_checkpoint(stage=SessionStage.BOARD_READY))
    second = await store.get("ses_1")

    assert second.created_at == first.created_at
    assert second.updated_at >= first.updated_at


@pytest.mark.asyncio
async def test_invalid_checkpoint_is_rejected():
    store = CheckpointStore()

    assert await store.save(make_checkpoint(roster=False)) is False
    assert await store.get("ses_1") is None

    broken = make_checkpoint()
    broken.artifacts[ArtifactType.ROSTER] = GenerationArtifact(
        type=ArtifactType.ROSTER, status=ArtifactStatus.COMPLETE, content={"members": [{"id": "m1"}]}
    )
    assert await store.save(broken) is False


@pytest.mark.asyncio
async def test_error_checkpoint_without_roster_is_kept():
    store = CheckpointStore()

    assert await store.save(make_checkpoint(stage=SessionStage.ERROR, roster=False))
    assert (await store.load_latest("user-1")).stage == SessionStage.ERROR


@pytest.mark.asyncio
async def test_write_failure_is_logged_not_raised():
    store = CheckpointStore(FailingBackend())

    assert await store.save(make_checkpoint()) is False
    assert metrics.get_counters()["checkpoint_write_failures"] == {"save": 1}


@pytest.mark.asyncio
async def test_delete():
    store = CheckpointStore()
    await store.save(make_checkpoint())

    assert await store.delete("ses_1")
    assert await store.load_latest("user-1") is None


@pytest.mark.asyncio
async def test_remote_backend(fake_redis):
    backend = RedisCheckpointBackend(client=fake_redis, key_prefix="cp:", ttl_seconds=600)
    store = CheckpointStore(backend)

    await store.save(make_checkpoint("ses_1"))
    assert fake_redis.data["cp:user:user-1"] == "ses_1"
    assert fake_redis.expiry["cp:ses_1"] == 600

    await store.save(make_checkpoint("ses_2"))
    assert "cp:ses_1" not in fake_redis.data
    assert (await store.load_latest("user-1")).session_id == "ses_2"

    await store.mark_complete("ses_2")
    assert "cp:user:user-1" not in fake_redis.data
    assert await store.load_latest("user-1") is None
    assert (await store.get("ses_2")).completed

    await store.close()
    assert fake_redis.closed
    assert store.backend_name == "remote"


@pytest.mark.asyncio
async def test_factory_without_redis_uses_local(monkeypatch):
    async def refuse(self):
        raise ConnectionError("connection refused")

    monkeypatch.setattr(RedisCheckpointBackend, "ping", refuse)

    store = await create_checkpoint_store("redis://localhost:6379/0")
    assert store.backend_name == "local"
