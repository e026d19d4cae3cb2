from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..health import round_half_up
from ..schemas import (
    AdherenceStats,
    Medication,
    MedicationCreate,
    MedicationLog,
    MedicationLogCreate,
    MedicationLogStatus,
    MedicationUpdate,
    TodayMedication,
)
from ..supabase import AuthContext, get_auth_context, require_admin, require_editor
from .members import load_member, require_uuid

router = APIRouter(prefix="/api/v1/medications", tags=["medications"])
logger = logging.getLogger(__name__)

MEDICATION_SELECT = "*,family_members(id,name,avatar_url)"


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def calculate_adherence(logs: Iterable[Dict[str, Any]]) -> AdherenceStats:
    stats = AdherenceStats()
    for log in logs:
        stats.total += 1
        status = log.get("status")
        if status == MedicationLogStatus.TAKEN.value:
            stats.taken += 1
        elif status == MedicationLogStatus.SKIPPED.value:
            stats.skipped += 1
        elif status == MedicationLogStatus.LATE.value:
            stats.late += 1
    if stats.total:
        stats.adherence_rate = round_half_up((stats.taken + stats.late) / stats.total * 100)
    return stats


async def _load_medication(auth: AuthContext, medication_id: str) -> Dict[str, Any]:
    medication_uuid = require_uuid(medication_id, "medication_id")
    rows = await auth.supabase.select(
        "medications",
        params={
            "select": MEDICATION_SELECT,
            "id": f"eq.{medication_uuid}",
            "family_id": f"eq.{auth.family_id}",
            "limit": "1",
        },
    )
    if not rows:
        raise HTTPException(status_code=404, detail="Medication not found")
    return rows[0]


@router.get("", response_model=List[Medication])
async def list_medications(
    member_id: Optional[str] = Query(None),
    active_only: bool = Query(False),
    auth: AuthContext = Depends(get_auth_context),
) -> List[Medication]:
    params: Dict[str, Any] = {
        "select": MEDICATION_SELECT,
        "family_id": f"eq.{auth.family_id}",
        "order": "created_at.desc",
    }
    if member_id:
        params["member_id"] = f"eq.{require_uuid(member_id, 'member_id')}"
    if active_only:
        params["is_active"] = "eq.true"
    rows = await auth.supabase.select("medications", params=params)
    return [Medication.model_validate(row) for row in rows]


@router.get("/today", response_model=List[TodayMedication])
async def list_today_medications(
    member_id: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_auth_context),
) -> List[TodayMedication]:
    """Active medications that have started and not ended, with today's logs."""
    now = datetime.now(timezone.utc)
    today = now.date().isoformat()
    params: Dict[str, Any] = {
        "select": MEDICATION_SELECT,
        "family_id": f"eq.{auth.family_id}",
        "is_active": "eq.true",
        "start_date": f"lte.{today}",
        "or": f"(end_date.is.null,end_date.gte.{today})",
        "order": "name.asc",
    }
    if member_id:
        params["member_id"] = f"eq.{require_uuid(member_id, 'member_id')}"
    medications = await auth.supabase.select("medications", params=params)
    if not medications:
        return []

    ids = ",".join(row["id"] for row in medications)
    logs = await auth.supabase.select(
        "medication_logs",
        params={
            "select": "*",
            "medication_id": f"in.({ids})",
            "taken_at": f"gte.{start_of_day(now).isoformat()}",
            "order": "taken_at.desc",
        },
    )
    by_medication: Dict[str, List[Dict[str, Any]]] = {}
    for log in logs:
        by_medication.setdefault(log["medication_id"], []).append(log)
    return [
        TodayMedication.model_validate({**row, "logs": by_medication.get(row["id"], [])})
        for row in medications
    ]


@router.get("/{medication_id}", response_model=Medication)
async def get_medication(
    medication_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> Medication:
    return Medication.model_validate(await _load_medication(auth, medication_id))


@router.get("/{medication_id}/logs", response_model=List[MedicationLog])
async def list_medication_logs(
    medication_id: str,
    limit: int = Query(30, ge=1, le=200),
    auth: AuthContext = Depends(get_auth_context),
) -> List[MedicationLog]:
    medication = await _load_medication(auth, medication_id)
    rows = await auth.supabase.select(
        "medication_logs",
        params={
            "select": "*",
            "medication_id": f"eq.{medication['id']}",
            "order": "taken_at.desc",
            "limit": str(limit),
        },
    )
    return [MedicationLog.model_validate(row) for row in rows]


@router.get("/{medication_id}/adherence", response_model=AdherenceStats)
async def get_adherence(
    medication_id: str,
    days: int = Query(30, ge=1, le=365),
    auth: AuthContext = Depends(get_auth_context),
) -> AdherenceStats:
    medication = await _load_medication(auth, medication_id)
    since = datetime.now(timezone.utc) - timedelta(days=days)
    rows = await auth.supabase.select(
        "medication_logs",
        params={
            "select": "status",
            "medication_id": f"eq.{medication['id']}",
            "taken_at": f"gte.{since.isoformat()}",
        },
    )
    return calculate_adherence(rows)


@router.post("", response_model=Medication, status_code=201)
async def create_medication(
    payload: MedicationCreate,
    auth: AuthContext = Depends(get_auth_context),
) -> Medication:
    require_editor(auth)
    member = await load_member(auth, payload.member_id)
    row = payload.model_dump(mode="json")
    row.update(
        {
            "family_id": auth.family_id,
            "member_id": member["id"],
            "start_date": row.get("start_date") or date.today().isoformat(),
            "created_by": auth.user_id,
        }
    )
    created = await auth.supabase.insert("medications", row, params={"select": MEDICATION_SELECT})
    if not created:
        raise HTTPException(status_code=500, detail="Medication was not saved")
    logger.info("medication created", extra={"member_id": member["id"]})
    return Medication.model_validate(created[0])


@router.patch("/{medication_id}", response_model=Medication)
async def update_medication(
    medication_id: str,
    payload: MedicationUpdate,
    auth: AuthContext = Depends(get_auth_context),
) -> Medication:
    require_editor(auth)
    existing = await _load_medication(auth, medication_id)
    changes = payload.model_dump(mode="json", exclude_unset=True)
    if not changes:
        return Medication.model_validate(existing)
    changes["updated_at"] = datetime.now(timezone.utc).isoformat()
    updated = await auth.supabase.update(
        "medications",
        changes,
        params={
            "id": f"eq.{existing['id']}",
            "family_id": f"eq.{auth.family_id}",
            "select": MEDICATION_SELECT,
        },
    )
    return Medication.model_validate((updated or [existing])[0])


@router.delete("/{medication_id}", status_code=204)
async def delete_medication(
    medication_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> None:
    require_admin(auth)
    medication_uuid = require_uuid(medication_id, "medication_id")
    deleted = await auth.supabase.delete(
        "medications",
        params={"id": f"eq.{medication_uuid}", "family_id": f"eq.{auth.family_id}"},
    )
    if not deleted:
        raise HTTPException(status_code=404, detail="Medication not found")
    return None


@router.post("/{medication_id}/logs", response_model=MedicationLog, status_code=201)
async def log_medication(
    medication_id: str,
    payload: MedicationLogCreate,
    auth: AuthContext = Depends(get_auth_context),
) -> MedicationLog:
    require_editor(auth)
    medication = await _load_medication(auth, medication_id)
    taken_at = payload.taken_at or datetime.now(timezone.utc)
    created = await auth.supabase.insert(
        "medication_logs",
        {
            "medication_id": medication["id"],
            "taken_at": taken_at.isoformat(),
            "status": payload.status.value,
            "notes": payload.notes,
            "logged_by": auth.user_id,
        },
    )
    if not created:
        raise HTTPException(status_code=500, detail="Medication log was not saved")
    return MedicationLog.model_validate(created[0])
