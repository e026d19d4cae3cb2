import asyncio
from datetime import date
from uuid import uuid4

import pytest
from fastapi import HTTPException

from family_health.routes.vaccinations import (
    delete_vaccination,
    find_due_vaccines,
    get_schedule_status,
    get_vaccination_status,
    list_due_vaccines,
    summarize,
    update_vaccination,
)
from family_health.schemas import VaccinationStatus, VaccinationUpdate
from supabase_fakes import FakeSupabase, make_auth, member_row

TODAY = date(2025, 6, 15)


def _schedule_item(name, dose, min_age, max_age=None):
    return {
        "id": str(uuid4()),
        "vaccine_name": name,
        "dose_number": dose,
        "age_months_min": min_age,
        "age_months_max": max_age,
        "is_mandatory": True,
    }


def test_record_status_by_due_date() -> None:
    assert get_vaccination_status({"date_given": "2025-01-01"}, TODAY) == VaccinationStatus.COMPLETED
    assert get_vaccination_status({"date_due": "2025-06-01"}, TODAY) == VaccinationStatus.OVERDUE
    assert get_vaccination_status({"date_due": "2025-07-01"}, TODAY) == VaccinationStatus.DUE
    assert get_vaccination_status({"date_due": "2025-09-01"}, TODAY) == VaccinationStatus.UPCOMING
    assert get_vaccination_status({}, TODAY) == VaccinationStatus.UPCOMING


def test_summary_counts_each_status() -> None:
    records = [
        {"date_given": "2025-01-01"},
        {"date_due": "2025-05-01"},
        {"date_due": "2025-06-20"},
        {"date_due": "2026-01-01"},
        {"date_due": "2026-02-01"},
    ]
    summary = summarize(records, TODAY)
    assert summary.total == 5
    assert summary.completed == 1
    assert summary.overdue == 1
    assert summary.due == 1
    assert summary.upcoming == 2


def test_schedule_status_uses_grace_when_no_max_age() -> None:
    item = _schedule_item("MMR", 1, 9)
    assert get_schedule_status(item, 8) == VaccinationStatus.UPCOMING
    assert get_schedule_status(item, 10) == VaccinationStatus.DUE
    assert get_schedule_status(item, 13) == VaccinationStatus.OVERDUE


def test_due_vaccines_skip_given_doses_and_out_of_window_items() -> None:
    schedule = [
        _schedule_item("Hepatitis B", 1, 0, 1),
        _schedule_item("DTP", 1, 2, 4),
        _schedule_item("DTP", 2, 3, 5),
        _schedule_item("MMR", 1, 9, 12),
    ]
    given = [{"vaccine_name": "DTP", "dose_number": 1, "date_given": "2025-03-01"}]

    due = find_due_vaccines(schedule, given, age_months=4)

    names = [(item.schedule.vaccine_name, item.schedule.dose_number) for item in due]
    assert ("DTP", 1) not in names
    assert ("MMR", 1) not in names
    assert ("Hepatitis B", 1) in names
    assert ("DTP", 2) in names
    statuses = {item.schedule.vaccine_name: item.status for item in due}
    assert statuses["Hepatitis B"] == VaccinationStatus.OVERDUE
    assert statuses["DTP"] == VaccinationStatus.DUE


def test_due_endpoint_without_birth_date_is_empty() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="parent")
    member = member_row(auth, birth_date=None)
    fake.select_queue["family_members"] = [[member]]

    due = asyncio.run(list_due_vaccines(member["id"], auth=auth))

    assert due == []
    assert not fake.calls_for("select", "vaccination_schedule")


def test_update_resets_reminder_when_due_date_changes() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="parent")
    vaccination_id = str(uuid4())
    existing = {
        "id": vaccination_id,
        "family_id": auth.family_id,
        "member_id": str(uuid4()),
        "vaccine_name": "Polio",
        "date_due": "2025-07-01",
        "reminder_sent": True,
    }
    fake.select_queue["vaccinations"] = [[existing]]
    fake.update_queue["vaccinations"] = [[{**existing, "date_due": "2025-08-01", "reminder_sent": False}]]

    result = asyncio.run(
        update_vaccination(vaccination_id, VaccinationUpdate(date_due=date(2025, 8, 1)), auth=auth)
    )

    _, _, payload, params = fake.calls_for("update", "vaccinations")[0]
    assert payload["reminder_sent"] is False
    assert "updated_at" in payload
    assert params["family_id"] == f"eq.{auth.family_id}"
    assert result.reminder_sent is False


def test_parent_cannot_delete_vaccination() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="parent")

    with pytest.raises(HTTPException) as exc:
        asyncio.run(delete_vaccination(str(uuid4()), auth=auth))

    assert exc.value.status_code == 403
    assert not fake.calls_for("delete")
