import pytest

from advisory_engine.models import ArtifactType, Roster
from advisory_engine.utils.fingerprint import fingerprint_for, stable_json_dumps

from conftest import ROSTER_PAYLOAD, make_request

ROSTER = Roster.model_validate(ROSTER_PAYLOAD)


def test_fingerprint_is_stable_under_case_and_whitespace():
    a = make_request(industry="B2B Software", competitors="Acme, Globex")
    b = make_request(industry="  b2b software ", competitors=["ACME", "Globex", ""])

    assert fingerprint_for(ArtifactType.ROSTER, a) == fingerprint_for(ArtifactType.ROSTER, b)


def test_unrelated_fields_do_not_change_the_fingerprint():
    a = make_request(feedback_item="Pricing page", circumstances="Q3 launch")
    b = make_request(feedback_item="Onboarding flow", circumstances="Rebrand")

    for artifact_type in (ArtifactType.ROSTER, ArtifactType.ICP_PROFILE):
        assert fingerprint_for(artifact_type, a) == fingerprint_for(artifact_type, b)
    assert fingerprint_for(ArtifactType.PERSONA_SET, a, ROSTER) == fingerprint_for(ArtifactType.PERSONA_SET, b, ROSTER)


def test_icp_fingerprint_tracks_solution_fields():
    a = make_request(solutions="Spend analytics")
    b = make_request(solutions="Contract management")

    assert fingerprint_for(ArtifactType.ROSTER, a) == fingerprint_for(ArtifactType.ROSTER, b)
    assert fingerprint_for(ArtifactType.ICP_PROFILE, a) != fingerprint_for(ArtifactType.ICP_PROFILE, b)


def test_artifact_types_never_share_fingerprints():
    request = make_request()
    fingerprints = {
        fingerprint_for(ArtifactType.ROSTER, request),
        fingerprint_for(ArtifactType.ICP_PROFILE, request),
        fingerprint_for(ArtifactType.PERSONA_SET, request, ROSTER),
    }
    assert len(fingerprints) == 3


def test_persona_fingerprint_depends_on_roster_shape():
    request = make_request()
    other = Roster.model_validate({"members": [{"id": "x", "name": "Lee Park", "role": "CTO"}]})

    assert fingerprint_for(ArtifactType.PERSONA_SET, request, ROSTER) != fingerprint_for(
        ArtifactType.PERSONA_SET, request, other
    )


def test_unsupported_fingerprints_raise():
    request = make_request()
    with pytest.raises(ValueError):
        fingerprint_for(ArtifactType.ANALYSIS_REPORT, request)
    with pytest.raises(ValueError):
        fingerprint_for(ArtifactType.PERSONA_SET, request)


def test_stable_json_dumps_sorts_keys():
    assert stable_json_dumps({"b": 1, "a": [2, 1]}) == '{"a":[2,1],"b":1}'
