import asyncio
from uuid import uuid4

import pytest
from fastapi import HTTPException

from family_health.routes.members import get_member, require_uuid, update_member_profile
from family_health.schemas import MemberProfileUpdate
from supabase_fakes import FakeSupabase, make_auth, member_row


def test_require_uuid_rejects_garbage() -> None:
    with pytest.raises(HTTPException) as exc:
        require_uuid("not-a-uuid", "member_id")
    assert exc.value.status_code == 400


def test_get_member_includes_profile() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="viewer")
    member = member_row(auth)
    fake.select_queue["family_members"] = [[member]]
    fake.select_queue["health_profiles"] = [
        [{"id": str(uuid4()), "family_member_id": member["id"], "blood_type": "A+"}]
    ]

    result = asyncio.run(get_member(member["id"], auth=auth))

    assert result.name == "Alya"
    assert result.health_profile.blood_type == "A+"


def test_update_splits_member_and_profile_fields() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="parent")
    member = member_row(auth)
    fake.select_queue["family_members"] = [[member]]
    fake.update_queue["family_members"] = [[{**member, "name": "Alya Putri"}]]
    fake.select_queue["health_profiles"] = [[]]

    result = asyncio.run(
        update_member_profile(
            member["id"],
            MemberProfileUpdate(name="Alya Putri", blood_type="B+", allergies=[]),
            auth=auth,
        )
    )

    _, _, member_changes, params = fake.calls_for("update", "family_members")[0]
    assert member_changes == {"name": "Alya Putri"}
    assert params["family_id"] == f"eq.{auth.family_id}"
    _, _, profile_row, _ = fake.calls_for("insert", "health_profiles")[0]
    assert profile_row == {"family_member_id": member["id"], "blood_type": "B+", "allergies": None}
    assert result.name == "Alya Putri"
    assert result.health_profile.blood_type == "B+"


def test_update_existing_profile_is_patched() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="admin")
    member = member_row(auth)
    profile_id = str(uuid4())
    fake.select_queue["family_members"] = [[member]]
    fake.select_queue["health_profiles"] = [[{"id": profile_id, "family_member_id": member["id"]}]]

    asyncio.run(update_member_profile(member["id"], MemberProfileUpdate(conditions=["asthma"]), auth=auth))

    assert not fake.calls_for("update", "family_members")
    _, _, changes, params = fake.calls_for("update", "health_profiles")[0]
    assert changes == {"conditions": ["asthma"]}
    assert params == {"id": f"eq.{profile_id}"}


def test_viewer_cannot_update_profile() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="viewer")

    with pytest.raises(HTTPException) as exc:
        asyncio.run(update_member_profile(str(uuid4()), MemberProfileUpdate(name="X"), auth=auth))

    assert exc.value.status_code == 403
