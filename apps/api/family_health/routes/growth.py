from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..growth import (
    COMMON_MILESTONES,
    MAX_AGE_MONTHS,
    calculate_age_in_months,
    calculate_percentile,
    generate_growth_chart_data,
)
from ..health import calculate_bmi
from ..schemas import (
    ChartPoint,
    Gender,
    GrowthMeasurement,
    GrowthRecord,
    GrowthRecordCreate,
    Milestone,
    MilestoneCreate,
)
from ..supabase import AuthContext, get_auth_context, require_editor
from .members import load_health_profile, load_member

router = APIRouter(prefix="/api/v1/growth", tags=["growth"])
logger = logging.getLogger(__name__)

_MEASUREMENT_COLUMNS = {
    GrowthMeasurement.HEIGHT: "height_cm",
    GrowthMeasurement.WEIGHT: "weight_kg",
    GrowthMeasurement.BMI: "bmi",
    GrowthMeasurement.HEAD_CIRCUMFERENCE: "head_circumference_cm",
}


def _birth_date(member: Dict[str, Any]) -> Optional[date]:
    value = member.get("birth_date")
    if not value:
        return None
    return value if isinstance(value, date) else date.fromisoformat(str(value)[:10])


async def _member_gender(auth: AuthContext, member_id: str) -> Gender:
    profile = await load_health_profile(auth, member_id)
    gender = (profile or {}).get("gender")
    return Gender(gender) if gender in (Gender.MALE.value, Gender.FEMALE.value) else Gender.FEMALE


def compute_growth_fields(
    payload: GrowthRecordCreate,
    age_months: Optional[int],
    gender: Gender,
) -> Dict[str, Any]:
    """Derive BMI and WHO percentiles; percentiles need a known age of at most 60 months."""
    fields: Dict[str, Any] = {
        "age_months": age_months,
        "bmi": None,
        "height_percentile": None,
        "weight_percentile": None,
        "bmi_percentile": None,
        "head_circumference_percentile": None,
    }
    if payload.height_cm and payload.weight_kg:
        fields["bmi"] = round(calculate_bmi(payload.weight_kg, payload.height_cm), 2)
    if age_months is None or age_months > MAX_AGE_MONTHS:
        return fields
    if payload.height_cm:
        fields["height_percentile"] = calculate_percentile(
            payload.height_cm, age_months, gender, GrowthMeasurement.HEIGHT
        )
    if payload.weight_kg:
        fields["weight_percentile"] = calculate_percentile(
            payload.weight_kg, age_months, gender, GrowthMeasurement.WEIGHT
        )
    if fields["bmi"] is not None:
        fields["bmi_percentile"] = calculate_percentile(
            fields["bmi"], age_months, gender, GrowthMeasurement.BMI
        )
    if payload.head_circumference_cm:
        fields["head_circumference_percentile"] = calculate_percentile(
            payload.head_circumference_cm, age_months, gender, GrowthMeasurement.HEAD_CIRCUMFERENCE
        )
    return fields


@router.get("/milestones/common")
async def list_common_milestones() -> Dict[str, List[Dict[str, Any]]]:
    return {
        milestone_type.value: [
            {"name": name, "typical_age_months": months} for name, months in items
        ]
        for milestone_type, items in COMMON_MILESTONES.items()
    }


@router.get("/{member_id}/records", response_model=List[GrowthRecord])
async def list_growth_records(
    member_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> List[GrowthRecord]:
    member = await load_member(auth, member_id)
    rows = await auth.supabase.select(
        "health_growth_records",
        params={
            "select": "*",
            "member_id": f"eq.{member['id']}",
            "order": "measured_at.asc",
        },
    )
    return [GrowthRecord.model_validate(row) for row in rows]


@router.post("/records", response_model=GrowthRecord, status_code=201)
async def create_growth_record(
    payload: GrowthRecordCreate,
    auth: AuthContext = Depends(get_auth_context),
) -> GrowthRecord:
    require_editor(auth)
    if not (payload.height_cm or payload.weight_kg or payload.head_circumference_cm):
        raise HTTPException(status_code=400, detail="At least one measurement is required")
    member = await load_member(auth, payload.member_id)
    measured_at = payload.measured_at or date.today()
    birth_date = _birth_date(member)
    age_months = calculate_age_in_months(birth_date, on=measured_at) if birth_date else None
    gender = await _member_gender(auth, member["id"])

    row = {
        "family_id": auth.family_id,
        "member_id": member["id"],
        "measured_at": measured_at.isoformat(),
        "height_cm": payload.height_cm,
        "weight_kg": payload.weight_kg,
        "head_circumference_cm": payload.head_circumference_cm,
        "notes": payload.notes,
        "created_by": auth.user_id,
        **compute_growth_fields(payload, age_months, gender),
    }
    created = await auth.supabase.insert("health_growth_records", row)
    if not created:
        raise HTTPException(status_code=500, detail="Growth record was not saved")
    logger.info(
        "growth record created",
        extra={"member_id": member["id"], "age_months": age_months},
    )
    return GrowthRecord.model_validate(created[0])


@router.get("/{member_id}/chart", response_model=List[ChartPoint])
async def get_growth_chart(
    member_id: str,
    measurement: GrowthMeasurement = Query(GrowthMeasurement.WEIGHT),
    max_age_months: int = Query(MAX_AGE_MONTHS, ge=0, le=MAX_AGE_MONTHS),
    auth: AuthContext = Depends(get_auth_context),
) -> List[ChartPoint]:
    member = await load_member(auth, member_id)
    gender = await _member_gender(auth, member["id"])
    column = _MEASUREMENT_COLUMNS[measurement]
    rows = await auth.supabase.select(
        "health_growth_records",
        params={
            "select": f"age_months,{column}",
            "member_id": f"eq.{member['id']}",
            "age_months": "not.is.null",
            column: "not.is.null",
            "order": "measured_at.asc",
        },
    )
    points = [(row["age_months"], row[column]) for row in rows]
    return generate_growth_chart_data(points, gender, measurement, max_age_months)


@router.get("/{member_id}/milestones", response_model=List[Milestone])
async def list_milestones(
    member_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> List[Milestone]:
    member = await load_member(auth, member_id)
    rows = await auth.supabase.select(
        "health_milestones",
        params={
            "select": "*",
            "member_id": f"eq.{member['id']}",
            "order": "achieved_date.desc",
        },
    )
    return [Milestone.model_validate(row) for row in rows]


@router.post("/milestones", response_model=Milestone, status_code=201)
async def create_milestone(
    payload: MilestoneCreate,
    auth: AuthContext = Depends(get_auth_context),
) -> Milestone:
    require_editor(auth)
    member = await load_member(auth, payload.member_id)
    age_months = payload.age_months
    birth_date = _birth_date(member)
    if age_months is None and birth_date:
        age_months = calculate_age_in_months(birth_date, on=payload.achieved_date)
    created = await auth.supabase.insert(
        "health_milestones",
        {
            "family_id": auth.family_id,
            "member_id": member["id"],
            "milestone_type": payload.milestone_type.value,
            "milestone_name": payload.milestone_name,
            "achieved_date": payload.achieved_date.isoformat(),
            "age_months": age_months,
            "notes": payload.notes,
            "created_by": auth.user_id,
        },
    )
    if not created:
        raise HTTPException(status_code=500, detail="Milestone was not saved")
    return Milestone.model_validate(created[0])
