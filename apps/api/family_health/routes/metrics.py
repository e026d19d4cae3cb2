from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..health import describe_metric_types, get_metric_unit, validate_metric_value
from ..schemas import HealthMetric, HealthMetricCreate, HealthMetricUpdate, MetricType, MetricTypeInfo
from ..supabase import AuthContext, get_auth_context, require_admin, require_editor
from .members import load_member, require_uuid

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])
logger = logging.getLogger(__name__)

METRIC_SELECT = "*,family_members(id,name,avatar_url)"
REQUIRED_FIELDS = ("value_primary", "unit", "measured_at")


def _raise_if_invalid(metric_type: MetricType, primary: float, secondary: Optional[float]) -> None:
    errors = validate_metric_value(metric_type, primary, secondary)
    if errors:
        raise HTTPException(status_code=400, detail=errors)


async def _load_metric(auth: AuthContext, metric_id: str) -> Dict[str, Any]:
    metric_uuid = require_uuid(metric_id, "metric_id")
    rows = await auth.supabase.select(
        "health_metrics",
        params={
            "select": METRIC_SELECT,
            "id": f"eq.{metric_uuid}",
            "family_id": f"eq.{auth.family_id}",
            "limit": "1",
        },
    )
    if not rows:
        raise HTTPException(status_code=404, detail="Health metric not found")
    return rows[0]


@router.get("", response_model=List[HealthMetric])
async def list_metrics(
    member_id: Optional[str] = Query(None),
    metric_type: Optional[MetricType] = Query(None),
    start: Optional[datetime] = Query(None, description="Measured at or after"),
    end: Optional[datetime] = Query(None, description="Measured at or before"),
    limit: int = Query(100, ge=1, le=500),
    auth: AuthContext = Depends(get_auth_context),
) -> List[HealthMetric]:
    params: Dict[str, Any] = {
        "select": METRIC_SELECT,
        "family_id": f"eq.{auth.family_id}",
        "order": "measured_at.desc",
        "limit": str(limit),
    }
    if member_id:
        params["member_id"] = f"eq.{require_uuid(member_id, 'member_id')}"
    if metric_type:
        params["metric_type"] = f"eq.{metric_type.value}"
    bounds = []
    if start:
        bounds.append(f"measured_at.gte.{start.isoformat()}")
    if end:
        bounds.append(f"measured_at.lte.{end.isoformat()}")
    if bounds:
        params["and"] = f"({','.join(bounds)})"
    rows = await auth.supabase.select("health_metrics", params=params)
    return [HealthMetric.model_validate(row) for row in rows]


@router.get("/types", response_model=List[MetricTypeInfo])
async def list_metric_types() -> List[MetricTypeInfo]:
    """Input bounds and reference ranges for every metric type."""
    return describe_metric_types()


@router.get("/{metric_id}", response_model=HealthMetric)
async def get_metric(
    metric_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> HealthMetric:
    return HealthMetric.model_validate(await _load_metric(auth, metric_id))


@router.post("", response_model=HealthMetric, status_code=201)
async def create_metric(
    payload: HealthMetricCreate,
    auth: AuthContext = Depends(get_auth_context),
) -> HealthMetric:
    require_editor(auth)
    member = await load_member(auth, payload.member_id)
    _raise_if_invalid(payload.metric_type, payload.value_primary, payload.value_secondary)

    measured_at = payload.measured_at or datetime.now(timezone.utc)
    row = {
        "family_id": auth.family_id,
        "member_id": member["id"],
        "metric_type": payload.metric_type.value,
        "value_primary": payload.value_primary,
        "value_secondary": payload.value_secondary,
        "unit": payload.unit or get_metric_unit(payload.metric_type),
        "measured_at": measured_at.isoformat(),
        "notes": payload.notes,
        "source": payload.source,
        "created_by": auth.user_id,
    }
    created = await auth.supabase.insert("health_metrics", row, params={"select": METRIC_SELECT})
    if not created:
        raise HTTPException(status_code=500, detail="Health metric was not saved")
    logger.info(
        "health metric created",
        extra={"member_id": member["id"], "metric_type": payload.metric_type.value},
    )
    return HealthMetric.model_validate(created[0])


@router.patch("/{metric_id}", response_model=HealthMetric)
async def update_metric(
    metric_id: str,
    payload: HealthMetricUpdate,
    auth: AuthContext = Depends(get_auth_context),
) -> HealthMetric:
    require_editor(auth)
    existing = await _load_metric(auth, metric_id)
    changes = payload.model_dump(mode="json", exclude_unset=True)
    if not changes:
        return HealthMetric.model_validate(existing)

    cleared = [field for field in REQUIRED_FIELDS if field in changes and changes[field] is None]
    if cleared:
        raise HTTPException(status_code=400, detail=[f"{field} cannot be empty" for field in cleared])
    if "value_primary" in changes or "value_secondary" in changes:
        _raise_if_invalid(
            MetricType(existing["metric_type"]),
            changes.get("value_primary", existing.get("value_primary")),
            changes.get("value_secondary", existing.get("value_secondary")),
        )
    changes["updated_at"] = datetime.now(timezone.utc).isoformat()
    updated = await auth.supabase.update(
        "health_metrics",
        changes,
        params={
            "id": f"eq.{existing['id']}",
            "family_id": f"eq.{auth.family_id}",
            "select": METRIC_SELECT,
        },
    )
    return HealthMetric.model_validate((updated or [existing])[0])


@router.delete("/{metric_id}", status_code=204)
async def delete_metric(
    metric_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> None:
    require_admin(auth)
    metric_uuid = require_uuid(metric_id, "metric_id")
    deleted = await auth.supabase.delete(
        "health_metrics",
        params={"id": f"eq.{metric_uuid}", "family_id": f"eq.{auth.family_id}"},
    )
    if not deleted:
        raise HTTPException(status_code=404, detail="Health metric not found")
    logger.info("health metric deleted", extra={"metric_id": metric_uuid})
    return None
