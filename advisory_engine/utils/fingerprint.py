"""
Deterministic request fingerprints used as artifact cache keys.

Each artifact type hashes only the request fields that influence it, so two
requests that differ in an unrelated field still share a roster but not,
for example, an ICP profile. Values are canonicalised (lower-cased, trimmed,
empties dropped) and serialised as sorted, compact JSON before hashing.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Iterable, Optional, Tuple

from ..models.base import ArtifactType
from ..models.board import Roster
from ..models.request import SessionRequest

FINGERPRINT_VERSION = 1

_ROSTER_FIELDS: Tuple[str, ...] = (
    "industry",
    "icp_titles",
    "company_size",
    "company_revenue",
    "competitors",
    "seo_keywords",
)

FINGERPRINT_FIELDS: Dict[ArtifactType, Tuple[str, ...]] = {
    ArtifactType.ROSTER: _ROSTER_FIELDS,
    ArtifactType.ICP_PROFILE: _ROSTER_FIELDS + ("company_website", "solutions", "core_problems"),
    ArtifactType.PERSONA_SET: ("industry", "icp_titles", "company_size", "company_revenue"),
}


def stable_json_dumps(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, ensure_ascii=True, separators=(",", ":"))


def hash_payload(payload: Any) -> str:
    return hashlib.sha256(stable_json_dumps(payload).encode("utf-8")).hexdigest()


def _normalize(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        cleaned = value.strip().lower()
        return cleaned or None
    if isinstance(value, (list, tuple)):
        items = [_normalize(v) for v in value]
        items = [v for v in items if v is not None]
        return items or None
    return value


def _collect(request: SessionRequest, fields: Iterable[str]) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    for name in fields:
        value = _normalize(getattr(request, name, None))
        if value is not None:
            payload[name] = value
    return payload


def fingerprint_for(
    artifact_type: ArtifactType,
    request: SessionRequest,
    roster: Optional[Roster] = None,
) -> str:
    """Return the sha256 fingerprint of ``request`` for ``artifact_type``.

    Raises ``ValueError`` for the analysis report, which is never cached,
    and for a persona set requested without its roster.
    """
    fields = FINGERPRINT_FIELDS.get(artifact_type)
    if fields is None:
        raise ValueError(f"{artifact_type.value} artifacts are not fingerprinted")

    payload = _collect(request, fields)
    if artifact_type == ArtifactType.PERSONA_SET:
        if roster is None:
            raise ValueError("persona set fingerprint requires a roster")
        payload["member_count"] = len(roster.members)
        payload["lead_role"] = _normalize(roster.members[0].role)

    return hash_payload(
        {"artifact": artifact_type.value, "v": FINGERPRINT_VERSION, "fields": payload}
    )
