"""Shared fixtures and fakes for the advisory engine tests.

``FakeProvider`` stands in for the hosted generation model and
``FakeRedis`` for a redis.asyncio client; neither touches the network.
"""

from __future__ import annotations

import asyncio
import fnmatch
from collections import Counter
from typing import Any, Callable, Dict, List, Optional

import pytest

from advisory_engine.models import SessionRequest
from advisory_engine.services.metrics import metrics

ROSTER_PAYLOAD: Dict[str, Any] = {
    "members": [
        {"id": "m1", "name": "Dana Reyes", "role": "Chief Revenue Officer", "company_type": "SaaS"},
        {"id": "m2", "name": "Arjun Patel", "role": "VP Procurement", "company_type": "Manufacturing"},
        {"id": "m3", "name": "Mia Chen", "role": "Head of Operations", "company_type": "Logistics"},
    ]
}

ICP_PAYLOAD: Dict[str, Any] = {
    "titles": [{"department": "Finance", "roles": ["CFO", "Controller"]}],
    "use_case_fit": [{"use_case": "Spend visibility", "description": "Consolidated reporting"}],
    "buying_triggers": ["New fiscal year"],
}

PERSONA_PAYLOAD: Dict[str, Any] = {
    "personas": [
        {"persona_name": "Budget Owner", "persona_title": "Chief Financial Officer", "buyer_type": "Economic"},
        {"persona_name": "Operator", "persona_title": "Head of Operations", "buyer_type": "Technical"},
    ]
}

SUPPORTED_REPORT = "Revenue grew 45% year-over-year. Teams value speed."
RESEARCH_CORPUS = "Industry survey: 45% YoY growth in revenue across vendors."


def make_request(**overrides) -> SessionRequest:
    payload: Dict[str, Any] = {
        "user_id": "user-1",
        "industry": "B2B Software",
        "icp_titles": "CFO, Controller",
        "feedback_item": "Pricing page redesign",
        "feedback_type": "concept",
        "circumstances": "Launching next quarter",
        "competitors": "Acme, Globex",
    }
    payload.update(overrides)
    return SessionRequest(**payload)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


class FakeProvider:
    """Scriptable generation provider; counts calls per operation."""

    def __init__(
        self,
        *,
        roster: Any = None,
        icp: Any = None,
        personas: Any = None,
        chunks: Optional[List[str]] = None,
        corpus: str = RESEARCH_CORPUS,
        roster_failures: int = 0,
        roster_error: Optional[Exception] = None,
        icp_error: Optional[Exception] = None,
        persona_error: Optional[Exception] = None,
        stream_error: Optional[Exception] = None,
        correction: Any = None,
    ):
        self.roster = ROSTER_PAYLOAD if roster is None else roster
        self.icp = ICP_PAYLOAD if icp is None else icp
        self.personas = PERSONA_PAYLOAD if personas is None else personas
        self.chunks = [SUPPORTED_REPORT] if chunks is None else chunks
        self.corpus = corpus
        self.roster_failures = roster_failures
        self.roster_error = roster_error
        self.icp_error = icp_error
        self.persona_error = persona_error
        self.stream_error = stream_error
        self.stream_cancelled = False
        self.stream_finished = False
        self.correction = correction
        self.icp_gate: Optional[asyncio.Event] = None
        self.persona_gate: Optional[asyncio.Event] = None
        self.stream_gate: Optional[asyncio.Event] = None
        self.calls: Counter = Counter()

    async def generate_roster(self, request):
        self.calls["roster"] += 1
        if self.roster_error is not None:
            raise self.roster_error
        if self.roster_failures > 0:
            self.roster_failures -= 1
            raise RuntimeError("provider unavailable")
        return self.roster

    async def generate_icp_profile(self, request):
        self.calls["icp"] += 1
        if self.icp_gate is not None:
            await self.icp_gate.wait()
        if self.icp_error is not None:
            raise self.icp_error
        return self.icp

    async def generate_persona_set(self, request, roster):
        self.calls["persona"] += 1
        if self.persona_gate is not None:
            await self.persona_gate.wait()
        if self.persona_error is not None:
            raise self.persona_error
        return self.personas

    async def stream_analysis(self, request, roster, on_chunk):
        self.calls["stream"] += 1
        try:
            for chunk in self.chunks:
                await on_chunk(chunk)
                await asyncio.sleep(0)
            if self.stream_gate is not None:
                await self.stream_gate.wait()
        except asyncio.CancelledError:
            self.stream_cancelled = True
            raise
        self.stream_finished = True
        if self.stream_error is not None:
            raise self.stream_error
        return {"full_text": "".join(self.chunks), "research_corpus": self.corpus}

    async def generate_correction(self, report, flagged_claims):
        self.calls["correction"] += 1
        if self.correction is None:
            raise RuntimeError("correction unavailable")
        if callable(self.correction):
            return self.correction(report, flagged_claims)
        return self.correction


class FakePipeline:
    def __init__(self, client: "FakeRedis"):
        self.client = client
        self.ops: List[tuple] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def set(self, key, value, ex=None):
        self.ops.append((key, value, ex))
        return self

    async def execute(self):
        results = []
        for key, value, ex in self.ops:
            results.append(await self.client.set(key, value, ex=ex))
        self.ops = []
        return results


class FakeRedis:
    """In-memory subset of the redis.asyncio client API."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.expiry: Dict[str, int] = {}
        self.closed = False

    async def ping(self):
        return True

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        if ex is not None:
            self.expiry[key] = ex
        return True

    async def setex(self, key, ttl, value):
        return await self.set(key, value, ex=ttl)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed

    async def scan_iter(self, match=None):
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def aclose(self):
        self.closed = True


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def request_payload() -> SessionRequest:
    return make_request()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
