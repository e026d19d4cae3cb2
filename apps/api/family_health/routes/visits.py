from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..schemas import DoctorVisit, DoctorVisitCreate, DoctorVisitUpdate, VisitStatus
from ..supabase import AuthContext, get_auth_context, require_admin, require_editor
from .members import load_member, require_uuid

router = APIRouter(prefix="/api/v1/visits", tags=["visits"])
logger = logging.getLogger(__name__)

VISIT_SELECT = "*,family_members(id,name,avatar_url)"


async def _load_visit(auth: AuthContext, visit_id: str) -> Dict[str, Any]:
    visit_uuid = require_uuid(visit_id, "visit_id")
    rows = await auth.supabase.select(
        "doctor_visits",
        params={
            "select": VISIT_SELECT,
            "id": f"eq.{visit_uuid}",
            "family_id": f"eq.{auth.family_id}",
            "limit": "1",
        },
    )
    if not rows:
        raise HTTPException(status_code=404, detail="Doctor visit not found")
    return rows[0]


@router.get("", response_model=List[DoctorVisit])
async def list_visits(
    member_id: Optional[str] = Query(None),
    status: Optional[VisitStatus] = Query(None),
    auth: AuthContext = Depends(get_auth_context),
) -> List[DoctorVisit]:
    params: Dict[str, Any] = {
        "select": VISIT_SELECT,
        "family_id": f"eq.{auth.family_id}",
        "order": "visit_date.desc",
    }
    if member_id:
        params["member_id"] = f"eq.{require_uuid(member_id, 'member_id')}"
    if status:
        params["status"] = f"eq.{status.value}"
    rows = await auth.supabase.select("doctor_visits", params=params)
    return [DoctorVisit.model_validate(row) for row in rows]


@router.get("/upcoming", response_model=List[DoctorVisit])
async def list_upcoming_visits(
    member_id: Optional[str] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    auth: AuthContext = Depends(get_auth_context),
) -> List[DoctorVisit]:
    today = datetime.now(timezone.utc).date().isoformat()
    params: Dict[str, Any] = {
        "select": VISIT_SELECT,
        "family_id": f"eq.{auth.family_id}",
        "status": f"eq.{VisitStatus.SCHEDULED.value}",
        "visit_date": f"gte.{today}",
        "order": "visit_date.asc",
        "limit": str(limit),
    }
    if member_id:
        params["member_id"] = f"eq.{require_uuid(member_id, 'member_id')}"
    rows = await auth.supabase.select("doctor_visits", params=params)
    return [DoctorVisit.model_validate(row) for row in rows]


@router.get("/{visit_id}", response_model=DoctorVisit)
async def get_visit(
    visit_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> DoctorVisit:
    return DoctorVisit.model_validate(await _load_visit(auth, visit_id))


@router.post("", response_model=DoctorVisit, status_code=201)
async def create_visit(
    payload: DoctorVisitCreate,
    auth: AuthContext = Depends(get_auth_context),
) -> DoctorVisit:
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
    created = await auth.supabase.insert("doctor_visits", row, params={"select": VISIT_SELECT})
    if not created:
        raise HTTPException(status_code=500, detail="Doctor visit was not saved")
    logger.info("doctor visit created", extra={"member_id": member["id"]})
    return DoctorVisit.model_validate(created[0])


@router.patch("/{visit_id}", response_model=DoctorVisit)
async def update_visit(
    visit_id: str,
    payload: DoctorVisitUpdate,
    auth: AuthContext = Depends(get_auth_context),
) -> DoctorVisit:
    require_editor(auth)
    existing = await _load_visit(auth, visit_id)
    changes = payload.model_dump(mode="json", exclude_unset=True)
    if not changes:
        return DoctorVisit.model_validate(existing)
    if "visit_date" in changes:
        changes["reminder_sent"] = False
    changes["updated_at"] = datetime.now(timezone.utc).isoformat()
    updated = await auth.supabase.update(
        "doctor_visits",
        changes,
        params={
            "id": f"eq.{existing['id']}",
            "family_id": f"eq.{auth.family_id}",
            "select": VISIT_SELECT,
        },
    )
    return DoctorVisit.model_validate((updated or [existing])[0])


@router.delete("/{visit_id}", status_code=204)
async def delete_visit(
    visit_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> None:
    require_admin(auth)
    visit_uuid = require_uuid(visit_id, "visit_id")
    deleted = await auth.supabase.delete(
        "doctor_visits",
        params={"id": f"eq.{visit_uuid}", "family_id": f"eq.{auth.family_id}"},
    )
    if not deleted:
        raise HTTPException(status_code=404, detail="Doctor visit not found")
    return None
