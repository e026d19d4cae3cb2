from __future__ import annotations

import logging
import math
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends

from ..garmin.sync import SOURCE as GARMIN_SOURCE
from ..health import calculate_bmi, format_metric_value, get_bmi_category, get_metric_status, get_metric_unit
from ..schemas import (
    ActivityItem,
    DashboardAlert,
    FamilyMember,
    HealthMetric,
    MemberHealthSummary,
    MemberOverview,
    MetricSummary,
    MetricType,
)
from ..supabase import AuthContext, embedded, get_auth_context
from .members import MEMBER_COLUMNS, load_member

router = APIRouter(prefix="/api/v1/dashboard", tags=["dashboard"])
logger = logging.getLogger(__name__)

ALERT_WINDOW_DAYS = 7
ACTIVITY_LIMIT = 10
_SECONDS_PER_DAY = 86400

METRIC_LABELS = {
    MetricType.WEIGHT: "weight",
    MetricType.HEIGHT: "height",
    MetricType.BLOOD_PRESSURE: "blood pressure",
    MetricType.BLOOD_SUGAR: "blood sugar",
    MetricType.HEART_RATE: "heart rate",
    MetricType.TEMPERATURE: "temperature",
    MetricType.OXYGEN_SATURATION: "oxygen saturation",
    MetricType.BMI: "BMI",
}
LOG_VERBS = {"taken": "took", "skipped": "skipped", "late": "took late"}


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def days_until(target: Any, now: datetime) -> int:
    """Whole days from now until target, rounded up."""
    if isinstance(target, date) and not isinstance(target, datetime):
        moment = datetime(target.year, target.month, target.day, tzinfo=timezone.utc)
    elif isinstance(target, str) and len(target) == 10:
        moment = _parse_datetime(f"{target}T00:00:00+00:00")
    else:
        moment = _parse_datetime(target)
    return math.ceil((moment - now).total_seconds() / _SECONDS_PER_DAY)


async def _member_names(auth: AuthContext) -> Dict[str, str]:
    rows = await auth.supabase.select(
        "family_members",
        params={"select": "id,name", "family_id": f"eq.{auth.family_id}"},
    )
    return {row["id"]: row.get("name") or "Unknown" for row in rows}


def medication_alerts(
    medications: List[Dict[str, Any]],
    names: Dict[str, str],
    now: datetime,
) -> List[DashboardAlert]:
    alerts = []
    for med in medications:
        if not med.get("end_date"):
            continue
        remaining = days_until(med["end_date"], now)
        if 0 < remaining <= ALERT_WINDOW_DAYS:
            alerts.append(
                DashboardAlert(
                    kind="medication_ending",
                    member_id=med["member_id"],
                    member_name=names.get(med["member_id"], "Unknown"),
                    title=med["name"],
                    message=f"{med['name']} runs out in {remaining} day{'s' if remaining != 1 else ''}",
                    days_until=remaining,
                    entity_id=med["id"],
                )
            )
    return alerts


def visit_alerts(
    visits: List[Dict[str, Any]],
    names: Dict[str, str],
    now: datetime,
) -> List[DashboardAlert]:
    alerts = []
    for visit in visits:
        remaining = days_until(visit["visit_date"], now)
        if remaining > ALERT_WINDOW_DAYS:
            continue
        doctor = visit.get("doctor_name") or "the doctor"
        message = f"Appointment with {doctor}"
        if visit.get("reason"):
            message = f"{message}: {visit['reason']}"
        alerts.append(
            DashboardAlert(
                kind="upcoming_visit",
                member_id=visit["member_id"],
                member_name=names.get(visit["member_id"], "Unknown"),
                title=doctor,
                message=message,
                days_until=max(remaining, 0),
                entity_id=visit["id"],
            )
        )
    return alerts


@router.get("/overview", response_model=List[MemberOverview])
async def get_family_overview(auth: AuthContext = Depends(get_auth_context)) -> List[MemberOverview]:
    members = await auth.supabase.select(
        "family_members",
        params={
            "select": MEMBER_COLUMNS,
            "family_id": f"eq.{auth.family_id}",
            "order": "name.asc",
        },
    )
    overview = []
    for member in members:
        metrics = await auth.supabase.select(
            "health_metrics",
            params={
                "select": "*",
                "member_id": f"eq.{member['id']}",
                "order": "measured_at.desc",
                "limit": "3",
            },
        )
        overview.append(MemberOverview.model_validate({**member, "latest_metrics": metrics}))
    return overview


@router.get("/alerts", response_model=List[DashboardAlert])
async def get_alerts(auth: AuthContext = Depends(get_auth_context)) -> List[DashboardAlert]:
    """Medications running out and doctor visits within the next week."""
    now = datetime.now(timezone.utc)
    names = await _member_names(auth)
    medications = await auth.supabase.select(
        "medications",
        params={
            "select": "id,member_id,name,end_date",
            "family_id": f"eq.{auth.family_id}",
            "is_active": "eq.true",
            "end_date": "not.is.null",
        },
    )
    visits = await auth.supabase.select(
        "doctor_visits",
        params={
            "select": "id,member_id,doctor_name,visit_date,reason",
            "family_id": f"eq.{auth.family_id}",
            "status": "eq.scheduled",
            "visit_date": f"gte.{now.date().isoformat()}",
            "order": "visit_date.asc",
            "limit": "5",
        },
    )
    return medication_alerts(medications, names, now) + visit_alerts(visits, names, now)


@router.get("/activity", response_model=List[ActivityItem])
async def get_recent_activity(auth: AuthContext = Depends(get_auth_context)) -> List[ActivityItem]:
    names = await _member_names(auth)
    items: List[ActivityItem] = []

    metrics = await auth.supabase.select(
        "health_metrics",
        params={
            "select": "id,member_id,metric_type,value_primary,value_secondary,created_at",
            "family_id": f"eq.{auth.family_id}",
            "order": "created_at.desc",
            "limit": "5",
        },
    )
    for metric in metrics:
        metric_type = MetricType(metric["metric_type"])
        value = format_metric_value(metric_type, metric["value_primary"], metric.get("value_secondary"))
        member_name = names.get(metric["member_id"], "Unknown")
        items.append(
            ActivityItem(
                kind="metric",
                id=metric["id"],
                title=f"{member_name} recorded {METRIC_LABELS[metric_type]}: {value}",
                occurred_at=metric["created_at"],
                member_name=member_name,
                details={"metric_type": metric_type.value, "value": value},
            )
        )

    documents = await auth.supabase.select(
        "medical_documents",
        params={
            "select": "id,member_id,title,document_type,created_at",
            "family_id": f"eq.{auth.family_id}",
            "order": "created_at.desc",
            "limit": "3",
        },
    )
    for document in documents:
        member_name = names.get(document["member_id"], "Unknown")
        items.append(
            ActivityItem(
                kind="document",
                id=document["id"],
                title=f"{member_name} uploaded {document['title']}",
                occurred_at=document["created_at"],
                member_name=member_name,
                details={"document_type": document.get("document_type")},
            )
        )

    logs = await auth.supabase.select(
        "medication_logs",
        params={
            "select": "id,medication_id,taken_at,status,medications!inner(id,member_id,name,family_id)",
            "medications.family_id": f"eq.{auth.family_id}",
            "order": "taken_at.desc",
            "limit": "5",
        },
    )
    for log in logs:
        medication = embedded(log, "medications")
        if not medication:
            continue
        member_name = names.get(medication["member_id"], "Unknown")
        verb = LOG_VERBS.get(log.get("status"), "took")
        items.append(
            ActivityItem(
                kind="medication_log",
                id=log["id"],
                title=f"{member_name} {verb} {medication['name']}",
                occurred_at=log["taken_at"],
                member_name=member_name,
                details={"medication_id": log["medication_id"], "status": log.get("status")},
            )
        )

    items.sort(key=lambda item: item.occurred_at, reverse=True)
    return items[:ACTIVITY_LIMIT]


def summarize_metrics(rows: List[Dict[str, Any]]) -> List[MetricSummary]:
    """Newest reading per metric type; rows must be ordered newest first.

    Garmin steps and sleep rows share the heart_rate type; only rows in the
    type's own unit count as readings of that type.
    """
    seen: Dict[MetricType, MetricSummary] = {}
    for row in rows:
        metric = HealthMetric.model_validate(row)
        if metric.metric_type in seen:
            continue
        if metric.source == GARMIN_SOURCE and metric.unit != get_metric_unit(metric.metric_type):
            continue
        seen[metric.metric_type] = MetricSummary(
            metric_type=metric.metric_type,
            value=format_metric_value(metric.metric_type, metric.value_primary, metric.value_secondary),
            measured_at=metric.measured_at,
            status=get_metric_status(metric.metric_type, metric.value_primary, metric.value_secondary),
        )
    return list(seen.values())


def _latest_value(rows: List[Dict[str, Any]], metric_type: MetricType) -> Optional[float]:
    for row in rows:
        if row.get("metric_type") == metric_type.value:
            return row.get("value_primary")
    return None


@router.get("/members/{member_id}/summary", response_model=MemberHealthSummary)
async def get_member_summary(
    member_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> MemberHealthSummary:
    member = await load_member(auth, member_id)
    rows = await auth.supabase.select(
        "health_metrics",
        params={
            "select": "*",
            "member_id": f"eq.{member['id']}",
            "order": "measured_at.desc",
            "limit": "50",
        },
    )
    weight = _latest_value(rows, MetricType.WEIGHT)
    height = _latest_value(rows, MetricType.HEIGHT)
    bmi = None
    if weight and height:
        bmi = get_bmi_category(calculate_bmi(weight, height))
    return MemberHealthSummary(
        member=FamilyMember.model_validate(member),
        metrics=summarize_metrics(rows),
        bmi=bmi,
    )
