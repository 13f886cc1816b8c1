"""
Generation provider contract.

The concrete provider is a hosted language model reached over the network;
the pipeline only depends on this protocol. Providers may return either the
pydantic models or plain dicts with the same shape.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence, Union

from ..models.board import AnalysisStreamResult, ICPProfile, PersonaSet, Roster
from ..models.quality import Claim
from ..models.request import SessionRequest

ChunkSink = Callable[[str], Optional[Awaitable[None]]]


class GenerationProvider(Protocol):
    async def generate_roster(self, request: SessionRequest) -> Union[Roster, dict]: ...

    async def generate_icp_profile(self, request: SessionRequest) -> Union[ICPProfile, dict]: ...

    async def generate_persona_set(self, request: SessionRequest, roster: Roster) -> Union[PersonaSet, dict]: ...

    async def stream_analysis(
        self,
        request: SessionRequest,
        roster: Roster,
        on_chunk: Callable[[str], Awaitable[None]],
    ) -> Union[AnalysisStreamResult, dict]:
        """Stream the report through ``on_chunk`` in order and return the final text and corpus."""
        ...

    async def generate_correction(self, report: str, flagged_claims: Sequence[Claim]) -> str: ...


class CorrectionProvider(Protocol):
    async def generate_correction(self, report: str, flagged_claims: Sequence[Claim]) -> str: ...


def coerce_stream_result(result: Any, accumulated: str) -> AnalysisStreamResult:
    """Normalise a provider stream result; falls back to the streamed text."""
    if isinstance(result, AnalysisStreamResult):
        parsed = result
    elif isinstance(result, dict):
        parsed = AnalysisStreamResult.model_validate(result)
    elif isinstance(result, (tuple, list)) and len(result) == 2:
        parsed = AnalysisStreamResult(full_text=result[0] or "", research_corpus=result[1] or "")
    elif isinstance(result, str):
        parsed = AnalysisStreamResult(full_text=result)
    else:
        parsed = AnalysisStreamResult()
    if not parsed.full_text:
        parsed = parsed.model_copy(update={"full_text": accumulated})
    return parsed
