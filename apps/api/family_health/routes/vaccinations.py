from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..growth import calculate_age_in_months
from ..schemas import (
    DueVaccine,
    Vaccination,
    VaccinationCreate,
    VaccinationScheduleItem,
    VaccinationStatus,
    VaccinationSummary,
    VaccinationUpdate,
)
from ..supabase import AuthContext, get_auth_context, require_admin, require_editor
from .members import load_member, require_uuid

router = APIRouter(prefix="/api/v1/vaccinations", tags=["vaccinations"])
logger = logging.getLogger(__name__)

VACCINATION_SELECT = "*,family_members(id,name,avatar_url)"
# months past the schedule window a dose is still offered
GRACE_MONTHS = 3


def _add_months(value: date, months: int) -> date:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _as_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def get_vaccination_status(record: Dict[str, Any], today: Optional[date] = None) -> VaccinationStatus:
    today = today or date.today()
    if record.get("date_given"):
        return VaccinationStatus.COMPLETED
    due = _as_date(record.get("date_due"))
    if due is None:
        return VaccinationStatus.UPCOMING
    if due < today:
        return VaccinationStatus.OVERDUE
    if due < _add_months(today, 1):
        return VaccinationStatus.DUE
    return VaccinationStatus.UPCOMING


def get_schedule_status(item: Dict[str, Any], age_months: int) -> VaccinationStatus:
    min_age = item["age_months_min"]
    max_age = item.get("age_months_max")
    overdue_after = max_age if max_age is not None else min_age + GRACE_MONTHS
    if age_months > overdue_after:
        return VaccinationStatus.OVERDUE
    if age_months >= min_age:
        return VaccinationStatus.DUE
    return VaccinationStatus.UPCOMING


def find_due_vaccines(
    schedule: List[Dict[str, Any]],
    given: List[Dict[str, Any]],
    age_months: int,
) -> List[DueVaccine]:
    """Schedule entries not yet given whose age window (plus grace) covers ``age_months``."""
    done = {(row.get("vaccine_name"), row.get("dose_number")) for row in given if row.get("date_given")}
    due: List[DueVaccine] = []
    for item in schedule:
        if (item.get("vaccine_name"), item.get("dose_number")) in done:
            continue
        max_age = item.get("age_months_max")
        upper = (max_age if max_age is not None else 999) + GRACE_MONTHS
        if not item["age_months_min"] <= age_months <= upper:
            continue
        due.append(
            DueVaccine(
                schedule=VaccinationScheduleItem.model_validate(item),
                status=get_schedule_status(item, age_months),
            )
        )
    return due


def summarize(records: List[Dict[str, Any]], today: Optional[date] = None) -> VaccinationSummary:
    summary = VaccinationSummary(total=len(records))
    for record in records:
        status = get_vaccination_status(record, today)
        setattr(summary, status.value, getattr(summary, status.value) + 1)
    return summary


def _with_status(row: Dict[str, Any]) -> Vaccination:
    return Vaccination.model_validate({**row, "status": get_vaccination_status(row)})


async def _load_vaccination(auth: AuthContext, vaccination_id: str) -> Dict[str, Any]:
    vaccination_uuid = require_uuid(vaccination_id, "vaccination_id")
    rows = await auth.supabase.select(
        "vaccinations",
        params={
            "select": VACCINATION_SELECT,
            "id": f"eq.{vaccination_uuid}",
            "family_id": f"eq.{auth.family_id}",
            "limit": "1",
        },
    )
    if not rows:
        raise HTTPException(status_code=404, detail="Vaccination not found")
    return rows[0]


async def _list_rows(auth: AuthContext, member_id: Optional[str]) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {
        "select": VACCINATION_SELECT,
        "family_id": f"eq.{auth.family_id}",
        "order": "date_given.desc.nullsfirst",
    }
    if member_id:
        params["member_id"] = f"eq.{require_uuid(member_id, 'member_id')}"
    return await auth.supabase.select("vaccinations", params=params)


@router.get("", response_model=List[Vaccination])
async def list_vaccinations(
    member_id: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_auth_context),
) -> List[Vaccination]:
    return [_with_status(row) for row in await _list_rows(auth, member_id)]


@router.get("/schedule", response_model=List[VaccinationScheduleItem])
async def list_schedule(auth: AuthContext = Depends(get_auth_context)) -> List[VaccinationScheduleItem]:
    rows = await auth.supabase.select(
        "vaccination_schedule",
        params={"select": "*", "order": "sort_order.asc"},
    )
    return [VaccinationScheduleItem.model_validate(row) for row in rows]


@router.get("/summary", response_model=VaccinationSummary)
async def get_summary(
    member_id: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_auth_context),
) -> VaccinationSummary:
    return summarize(await _list_rows(auth, member_id))


@router.get("/due/{member_id}", response_model=List[DueVaccine])
async def list_due_vaccines(
    member_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> List[DueVaccine]:
    member = await load_member(auth, member_id)
    birth_date = _as_date(member.get("birth_date"))
    if birth_date is None:
        return []
    schedule = await auth.supabase.select(
        "vaccination_schedule",
        params={"select": "*", "order": "sort_order.asc"},
    )
    given = await auth.supabase.select(
        "vaccinations",
        params={
            "select": "vaccine_name,dose_number,date_given",
            "member_id": f"eq.{member['id']}",
            "date_given": "not.is.null",
        },
    )
    return find_due_vaccines(schedule, given, calculate_age_in_months(birth_date))


@router.get("/{vaccination_id}", response_model=Vaccination)
async def get_vaccination(
    vaccination_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> Vaccination:
    return _with_status(await _load_vaccination(auth, vaccination_id))


@router.post("", response_model=Vaccination, status_code=201)
async def create_vaccination(
    payload: VaccinationCreate,
    auth: AuthContext = Depends(get_auth_context),
) -> Vaccination:
    require_editor(auth)
    member = await load_member(auth, payload.member_id)
    row = payload.model_dump(mode="json")
    row.update(
        {
            "family_id": auth.family_id,
            "member_id": member["id"],
            "reminder_sent": False,
            "created_by": auth.user_id,
        }
    )
    created = await auth.supabase.insert("vaccinations", row, params={"select": VACCINATION_SELECT})
    if not created:
        raise HTTPException(status_code=500, detail="Vaccination was not saved")
    logger.info("vaccination recorded", extra={"member_id": member["id"]})
    return _with_status(created[0])


@router.patch("/{vaccination_id}", response_model=Vaccination)
async def update_vaccination(
    vaccination_id: str,
    payload: VaccinationUpdate,
    auth: AuthContext = Depends(get_auth_context),
) -> Vaccination:
    require_editor(auth)
    existing = await _load_vaccination(auth, vaccination_id)
    changes = payload.model_dump(mode="json", exclude_unset=True)
    if not changes:
        return _with_status(existing)
    if "date_due" in changes:
        changes["reminder_sent"] = False
    changes["updated_at"] = datetime.now(timezone.utc).isoformat()
    updated = await auth.supabase.update(
        "vaccinations",
        changes,
        params={
            "id": f"eq.{existing['id']}",
            "family_id": f"eq.{auth.family_id}",
            "select": VACCINATION_SELECT,
        },
    )
    return _with_status((updated or [existing])[0])


@router.delete("/{vaccination_id}", status_code=204)
async def delete_vaccination(
    vaccination_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> None:
    require_admin(auth)
    vaccination_uuid = require_uuid(vaccination_id, "vaccination_id")
    deleted = await auth.supabase.delete(
        "vaccinations",
        params={"id": f"eq.{vaccination_uuid}", "family_id": f"eq.{auth.family_id}"},
    )
    if not deleted:
        raise HTTPException(status_code=404, detail="Vaccination not found")
    return None
