import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from fastapi import HTTPException

from family_health.routes.emergency import get_or_create_emergency_token, read_emergency_card
from supabase_fakes import FakeSupabase, make_auth, member_row


def test_expired_or_unknown_token_is_refused() -> None:
    fake = FakeSupabase()

    with pytest.raises(HTTPException) as exc:
        asyncio.run(read_emergency_card("expired-token", supabase=fake))

    assert exc.value.status_code == 404
    _, _, params = fake.calls_for("select", "emergency_tokens")[0]
    assert params["token"] == "eq.expired-token"
    assert params["expires_at"].startswith("gt.")
    assert not fake.calls_for("update")


def test_card_returns_emergency_subset_and_counts_access() -> None:
    token_id = str(uuid4())
    fake = FakeSupabase(
        select_queue={
            "emergency_tokens": [
                [
                    {
                        "id": token_id,
                        "family_member_id": "member-1",
                        "expires_at": "2099-01-01T00:00:00+00:00",
                        "access_count": 2,
                        "family_members": {
                            "id": "member-1",
                            "name": "Alya",
                            "avatar_url": None,
                            "birth_date": "2020-05-01",
                            "health_profiles": [
                                {
                                    "blood_type": "O+",
                                    "allergies": ["peanuts"],
                                    "conditions": None,
                                    "emergency_contact_name": "Rina",
                                    "emergency_contact_phone": "+62 812 0000",
                                    "emergency_contact_relationship": "Mother",
                                }
                            ],
                        },
                    }
                ]
            ]
        }
    )

    card = asyncio.run(read_emergency_card("live-token", supabase=fake))

    assert card.name == "Alya"
    assert card.blood_type == "O+"
    assert card.allergies == ["peanuts"]
    assert card.emergency_contact_phone == "+62 812 0000"
    assert not hasattr(card, "insurance_number")
    _, table, payload, params = fake.calls_for("update")[0]
    assert table == "emergency_tokens"
    assert payload["access_count"] == 3
    assert "last_accessed_at" in payload
    assert params == {"id": f"eq.{token_id}"}


def test_existing_unexpired_token_is_reused() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="parent")
    member = member_row(auth)
    expires_at = (datetime.now(timezone.utc) + timedelta(days=30)).isoformat()
    fake.select_queue["family_members"] = [[member]]
    fake.select_queue["emergency_tokens"] = [[{"token": "abc123", "expires_at": expires_at}]]

    result = asyncio.run(get_or_create_emergency_token(member["id"], auth=auth))

    assert result.token == "abc123"
    assert result.url.endswith("/e/abc123")
    assert not fake.calls_for("insert")


def test_new_token_expires_in_a_year() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="admin")
    member = member_row(auth)
    fake.select_queue["family_members"] = [[member]]

    before = datetime.now(timezone.utc)
    result = asyncio.run(get_or_create_emergency_token(member["id"], auth=auth))

    _, table, payload, _ = fake.calls_for("insert")[0]
    assert table == "emergency_tokens"
    assert payload["token"] == result.token
    assert len(result.token) >= 40
    assert result.expires_at - before >= timedelta(days=364)


def test_viewer_cannot_create_token() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="viewer")

    with pytest.raises(HTTPException) as exc:
        asyncio.run(get_or_create_emergency_token(str(uuid4()), auth=auth))

    assert exc.value.status_code == 403
