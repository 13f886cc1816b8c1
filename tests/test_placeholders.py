from advisory_engine.models import ICPProfile, Persona, PersonaSet, Roster
from advisory_engine.services.placeholders import (
    normalize_persona_set,
    placeholder_icp_profile,
    placeholder_persona_set,
)

from conftest import ROSTER_PAYLOAD

ROSTER = Roster.model_validate(ROSTER_PAYLOAD)


def test_placeholder_personas_follow_the_roster():
    persona_set = placeholder_persona_set(ROSTER, 5)

    assert len(persona_set.personas) == 5
    assert all(p.placeholder for p in persona_set.personas)
    assert persona_set.personas[0].persona_name == "Dana Reyes"
    assert persona_set.personas[0].persona_title == "CHIEF REVENUE OFFICER"
    assert persona_set.personas[4].persona_name == "Persona 5"


def test_placeholder_icp_profile_is_valid_and_empty():
    profile = placeholder_icp_profile()
    assert ICPProfile.model_validate(profile.model_dump()) == profile
    assert profile.titles == []


def test_normalize_dedupes_titles_and_pads():
    raw = PersonaSet(
        personas=[
            Persona(persona_name="A", persona_title="Chief Financial Officer"),
            Persona(persona_name="B", persona_title="chief financial officer "),
            Persona(persona_name="C", persona_title="Head of Operations"),
        ]
    )

    normalized = normalize_persona_set(raw, ROSTER, 5)
    titles = [p.persona_title for p in normalized.personas]

    assert len(titles) == 5
    assert len(set(titles)) == 5
    assert titles[:2] == ["CHIEF FINANCIAL OFFICER", "HEAD OF OPERATIONS"]
    assert [p.placeholder for p in normalized.personas] == [False, False, True, True, True]


def test_normalize_truncates_extra_personas():
    raw = PersonaSet(personas=[Persona(persona_name=str(i), persona_title=f"Title {i}") for i in range(8)])
    assert len(normalize_persona_set(raw, ROSTER, 5).personas) == 5
