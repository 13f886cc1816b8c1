"""
Placeholder artifacts for degraded stages, and persona set normalization.

A degraded ICP profile or persona set is still well-formed so downstream
rendering never has to special-case a missing artifact.
"""

from __future__ import annotations

from typing import List, Optional, Set

from ..core import config
from ..models.board import (
    DecisionMakingProcess,
    DecisionPhase,
    ICPProfile,
    Persona,
    PersonaSet,
    Roster,
)

DEFAULT_BUYER_TYPE = "Decision Maker"
DEFAULT_AGE_RANGE = "35 - 55"


def placeholder_icp_profile() -> ICPProfile:
    return ICPProfile(titles=[], use_case_fit=[], signals_and_attributes=[])


def _placeholder_persona(name: str, role: str) -> Persona:
    return Persona(
        persona_name=name,
        persona_title=(role or "Board Member").upper(),
        buyer_type=DEFAULT_BUYER_TYPE,
        age_range=DEFAULT_AGE_RANGE,
        preferred_communication_channels=["Email", "Video calls", "In-person meetings"],
        titles=[role or "Board Member"],
        attributes=["Analytical", "Strategic", "Results-driven"],
        jobs_to_be_done=[
            "Make informed strategic decisions",
            "Drive business growth",
            "Mitigate risks",
        ],
        challenges=[
            "Balancing innovation with stability",
            "Managing stakeholder expectations",
            "Optimizing resource allocation",
        ],
        decision_making_process=DecisionMakingProcess(
            research=DecisionPhase(
                description="Gathers comprehensive information before making decisions.",
                items=["Industry reports", "Peer insights", "Customer feedback"],
            ),
            evaluation=DecisionPhase(
                description="Evaluates options based on strategic fit and ROI.",
                items=["Cost-benefit analysis", "Strategic alignment", "Risk assessment"],
            ),
            purchase=DecisionPhase(
                description="Makes purchase decisions based on value and fit.",
                items=["Clear value proposition", "Proven results", "Strong support"],
            ),
        ),
        placeholder=True,
    )


def placeholder_personas(roster: Optional[Roster], count: Optional[int] = None) -> List[Persona]:
    """Roster-derived placeholders, padded with generic ones when the roster is short."""
    count = config.PERSONA_TARGET_COUNT if count is None else count
    members = roster.members if roster else []
    personas: List[Persona] = []
    for idx in range(count):
        if idx < len(members):
            member = members[idx]
            personas.append(_placeholder_persona(member.name or f"Persona {idx + 1}", member.role))
        else:
            personas.append(_placeholder_persona(f"Persona {idx + 1}", f"Board Member {idx + 1}"))
    return personas


def placeholder_persona_set(roster: Optional[Roster], count: Optional[int] = None) -> PersonaSet:
    return PersonaSet(personas=placeholder_personas(roster, count))


def normalize_persona_set(
    persona_set: PersonaSet,
    roster: Optional[Roster],
    count: Optional[int] = None,
) -> PersonaSet:
    """Exactly ``count`` personas, unique by upper-cased title, padded from the roster."""
    count = config.PERSONA_TARGET_COUNT if count is None else count
    seen: Set[str] = set()
    personas: List[Persona] = []
    for persona in persona_set.personas:
        title = persona.persona_title.strip().upper()
        if not title or title in seen:
            continue
        seen.add(title)
        personas.append(persona.model_copy(update={"persona_title": title}))
        if len(personas) == count:
            return PersonaSet(personas=personas)

    members = len(roster.members) if roster else 0
    for filler in placeholder_personas(roster, members + count):
        if len(personas) == count:
            break
        if filler.persona_title in seen:
            continue
        seen.add(filler.persona_title)
        personas.append(filler)
    return PersonaSet(personas=personas)
