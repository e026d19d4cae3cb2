import asyncio
from uuid import uuid4

import pytest
from fastapi import HTTPException

from family_health.routes.medications import (
    calculate_adherence,
    create_medication,
    delete_medication,
    list_today_medications,
    log_medication,
)
from family_health.schemas import MedicationCreate, MedicationLogCreate, MedicationLogStatus
from supabase_fakes import FakeSupabase, make_auth, member_row


def _medication(auth, **overrides):
    row = {
        "id": str(uuid4()),
        "family_id": auth.family_id,
        "member_id": str(uuid4()),
        "name": "Amoxicillin",
        "dosage": "250 mg",
        "is_active": True,
    }
    row.update(overrides)
    return row


def test_adherence_counts_taken_and_late() -> None:
    logs = [
        {"status": "taken"},
        {"status": "taken"},
        {"status": "late"},
        {"status": "skipped"},
        {"status": "skipped"},
        {"status": "taken"},
    ]
    stats = calculate_adherence(logs)
    assert stats.total == 6
    assert stats.taken == 3
    assert stats.late == 1
    assert stats.skipped == 2
    assert stats.adherence_rate == 67


def test_adherence_is_zero_without_logs() -> None:
    stats = calculate_adherence([])
    assert stats.total == 0
    assert stats.adherence_rate == 0


def test_log_dose_defaults_taken_at_to_now() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="parent")
    medication = _medication(auth)
    fake.select_queue["medications"] = [[medication]]

    log = asyncio.run(log_medication(medication["id"], MedicationLogCreate(), auth=auth))

    _, table, payload, _ = fake.calls_for("insert")[0]
    assert table == "medication_logs"
    assert payload["status"] == MedicationLogStatus.TAKEN.value
    assert payload["logged_by"] == auth.user_id
    assert payload["taken_at"]
    assert log.medication_id == medication["id"]


def test_today_attaches_logs_to_their_medication() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake)
    first = _medication(auth, name="Iron drops")
    second = _medication(auth, name="Vitamin D")
    fake.select_queue["medications"] = [[first, second]]
    fake.select_queue["medication_logs"] = [
        [
            {
                "id": str(uuid4()),
                "medication_id": second["id"],
                "taken_at": "2025-06-15T08:00:00+00:00",
                "status": "taken",
            }
        ]
    ]

    today = asyncio.run(list_today_medications(member_id=None, auth=auth))

    assert [item.name for item in today] == ["Iron drops", "Vitamin D"]
    assert today[0].logs == []
    assert len(today[1].logs) == 1
    _, _, params = fake.calls_for("select", "medications")[0]
    assert params["is_active"] == "eq.true"
    assert params["or"].startswith("(end_date.is.null,")


def test_viewer_cannot_create_medication() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="viewer")

    with pytest.raises(HTTPException) as exc:
        asyncio.run(create_medication(MedicationCreate(member_id=str(uuid4()), name="Zinc"), auth=auth))

    assert exc.value.status_code == 403
    assert not fake.calls


def test_create_defaults_start_date() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="parent")
    member = member_row(auth)
    fake.select_queue["family_members"] = [[member]]

    created = asyncio.run(create_medication(MedicationCreate(member_id=member["id"], name="Zinc"), auth=auth))

    _, _, payload, _ = fake.calls_for("insert", "medications")[0]
    assert payload["start_date"]
    assert payload["family_id"] == auth.family_id
    assert created.name == "Zinc"


def test_delete_missing_medication_is_404() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="admin")

    with pytest.raises(HTTPException) as exc:
        asyncio.run(delete_medication(str(uuid4()), auth=auth))

    assert exc.value.status_code == 404
