"""Reminder scheduling and web-push delivery."""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pywebpush import WebPushException, webpush

from .config import AppConfig, get_config
from .schemas import NotificationPreferences, NotificationRunResult
from .supabase import SupabaseClient

logger = logging.getLogger(__name__)

PushSender = Callable[[Dict[str, Any], str], None]

VACCINATION_REMINDER = "vaccination_reminder"
MEDICATION_REMINDER = "medication_reminder"
APPOINTMENT_REMINDER = "appointment_reminder"


@dataclass
class PendingNotification:
    user_id: str
    notification_type: str
    title: str
    body: str
    url: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None

    def payload(self) -> str:
        return json.dumps(
            {"title": self.title, "body": self.body, "url": self.url, "tag": self.notification_type}
        )


class WebPushSender:
    """Callable that delivers one payload to one subscription via VAPID."""

    def __init__(self, private_key: str, subject: str) -> None:
        self.private_key = private_key
        self.subject = subject

    def __call__(self, subscription_info: Dict[str, Any], data: str) -> None:
        webpush(
            subscription_info=subscription_info,
            data=data,
            vapid_private_key=self.private_key,
            vapid_claims={"sub": self.subject},
        )


def default_sender(config: Optional[AppConfig] = None) -> WebPushSender:
    config = config or get_config()
    if not config.vapid_private_key:
        raise RuntimeError("Missing VAPID_PRIVATE_KEY for web push.")
    return WebPushSender(config.vapid_private_key, config.vapid_subject)


def preferences_from_row(row: Optional[Dict[str, Any]]) -> NotificationPreferences:
    if not row:
        return NotificationPreferences()
    values = {key: value for key, value in row.items() if value is not None}
    return NotificationPreferences.model_validate(values)


def _parse_clock(value: Optional[str]) -> Optional[time]:
    if not value:
        return None
    parts = [int(part) for part in value.split(":")]
    return time(parts[0], parts[1] if len(parts) > 1 else 0)


def in_quiet_hours(prefs: NotificationPreferences, local_now: datetime) -> bool:
    """Quiet hours may wrap past midnight (22:00-07:00)."""
    start = _parse_clock(prefs.quiet_hours_start)
    end = _parse_clock(prefs.quiet_hours_end)
    if start is None or end is None or start == end:
        return False
    current = local_now.time().replace(tzinfo=None)
    if start < end:
        return start <= current < end
    return current >= start or current < end


def _resolve_tz(name: Optional[str]) -> tzinfo:
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("unknown timezone for quiet hours: %s", name)
        return timezone.utc


def _in_filter(values: List[str]) -> str:
    return f"in.({','.join(values)})"


async def _family_members(supabase: SupabaseClient, user_id: str) -> Dict[str, str]:
    memberships = await supabase.select(
        "family_members",
        params={"select": "family_id", "user_id": f"eq.{user_id}"},
    )
    family_ids = sorted({row["family_id"] for row in memberships if row.get("family_id")})
    if not family_ids:
        return {}
    members = await supabase.select(
        "family_members",
        params={"select": "id,name", "family_id": _in_filter(family_ids)},
    )
    return {row["id"]: row.get("name") or "" for row in members}


async def _vaccination_reminders(
    supabase: SupabaseClient,
    user_id: str,
    members: Dict[str, str],
    window_date: str,
) -> List[PendingNotification]:
    rows = await supabase.select(
        "vaccinations",
        params={
            "select": "id,member_id,vaccine_name",
            "member_id": _in_filter(list(members)),
            "date_given": "is.null",
            "date_due": f"lte.{window_date}",
            "reminder_enabled": "eq.true",
            "reminder_sent": "eq.false",
        },
    )
    pending = []
    for row in rows:
        pending.append(
            PendingNotification(
                user_id=user_id,
                notification_type=VACCINATION_REMINDER,
                title="Vaccination reminder",
                body=f"{members.get(row['member_id'], '')} is due for {row['vaccine_name']}",
                url="/vaccinations",
                entity_type="vaccination",
                entity_id=row["id"],
            )
        )
        await supabase.update("vaccinations", {"reminder_sent": True}, params={"id": f"eq.{row['id']}"})
    return pending


async def _medication_reminders(
    supabase: SupabaseClient,
    user_id: str,
    members: Dict[str, str],
    day_start: str,
) -> List[PendingNotification]:
    medications = await supabase.select(
        "medications",
        params={
            "select": "id,member_id,name",
            "member_id": _in_filter(list(members)),
            "is_active": "eq.true",
        },
    )
    if not medications:
        return []
    logs = await supabase.select(
        "medication_logs",
        params={
            "select": "medication_id",
            "medication_id": _in_filter([row["id"] for row in medications]),
            "taken_at": f"gte.{day_start}",
        },
    )
    logged = {row["medication_id"] for row in logs}
    return [
        PendingNotification(
            user_id=user_id,
            notification_type=MEDICATION_REMINDER,
            title="Medication reminder",
            body=f"Don't forget {row['name']} for {members.get(row['member_id'], '')}",
            url="/medications",
            entity_type="medication",
            entity_id=row["id"],
        )
        for row in medications
        if row["id"] not in logged
    ]


async def _appointment_reminders(
    supabase: SupabaseClient,
    user_id: str,
    members: Dict[str, str],
    window_end: str,
) -> List[PendingNotification]:
    rows = await supabase.select(
        "doctor_visits",
        params={
            "select": "id,member_id,doctor_name,visit_date",
            "member_id": _in_filter(list(members)),
            "status": "eq.scheduled",
            "visit_date": f"lte.{window_end}",
            "reminder_enabled": "eq.true",
            "reminder_sent": "eq.false",
        },
    )
    pending = []
    for row in rows:
        doctor = row.get("doctor_name") or "the doctor"
        pending.append(
            PendingNotification(
                user_id=user_id,
                notification_type=APPOINTMENT_REMINDER,
                title="Doctor visit reminder",
                body=f"{members.get(row['member_id'], '')} has an appointment with {doctor}",
                url="/visits",
                entity_type="visit",
                entity_id=row["id"],
            )
        )
        await supabase.update("doctor_visits", {"reminder_sent": True}, params={"id": f"eq.{row['id']}"})
    return pending


async def _log_delivery(
    supabase: SupabaseClient,
    notification: PendingNotification,
    status: str,
    error: Optional[str] = None,
) -> None:
    row = {
        "user_id": notification.user_id,
        "notification_type": notification.notification_type,
        "title": notification.title,
        "body": notification.body,
        "url": notification.url,
        "entity_type": notification.entity_type,
        "entity_id": notification.entity_id,
        "status": status,
    }
    if error:
        row["error_message"] = error
    await supabase.insert("notification_logs", row)


async def dispatch(
    supabase: SupabaseClient,
    notifications: List[PendingNotification],
    sender: PushSender,
    result: NotificationRunResult,
) -> None:
    """Send each notification to every active subscription of its user."""
    if not notifications:
        return
    user_id = notifications[0].user_id
    subscriptions = await supabase.select(
        "push_subscriptions",
        params={
            "select": "id,endpoint,p256dh,auth",
            "user_id": f"eq.{user_id}",
            "is_active": "eq.true",
        },
    )
    if not subscriptions:
        logger.info("no active push subscriptions", extra={"user_id": user_id})
        return

    for notification in notifications:
        for sub in subscriptions:
            info = {"endpoint": sub["endpoint"], "keys": {"p256dh": sub["p256dh"], "auth": sub["auth"]}}
            try:
                await asyncio.to_thread(sender, info, notification.payload())
            except Exception as exc:
                result.failed += 1
                logger.warning(
                    "push delivery failed",
                    extra={"user_id": user_id, "subscription_id": sub.get("id"), "error": str(exc)},
                )
                await _log_delivery(supabase, notification, "failed", str(exc))
                status = None
                if isinstance(exc, WebPushException):
                    status = getattr(exc.response, "status_code", None)
                if status in (404, 410):
                    await supabase.update(
                        "push_subscriptions",
                        {"is_active": False},
                        params={"id": f"eq.{sub['id']}"},
                    )
                continue
            result.sent += 1
            await _log_delivery(supabase, notification, "sent")


async def run_notification_schedule(
    supabase: SupabaseClient,
    *,
    sender: Optional[PushSender] = None,
    now: Optional[datetime] = None,
    config: Optional[AppConfig] = None,
) -> NotificationRunResult:
    """Build and deliver vaccination, medication and appointment reminders.

    Runs with the service-role client. Users inside their quiet hours are left
    untouched so the next run picks their reminders up.
    """
    config = config or get_config()
    sender = sender or default_sender(config)
    now = now or datetime.now(timezone.utc)
    result = NotificationRunResult()

    rows = await supabase.select("health_notification_preferences", params={"select": "*"})
    for row in rows:
        user_id = row.get("user_id")
        if not user_id:
            continue
        prefs = preferences_from_row(row)
        local_now = now.astimezone(_resolve_tz(row.get("timezone") or config.default_timezone))
        if in_quiet_hours(prefs, local_now):
            result.skipped_quiet_hours += 1
            continue

        try:
            members = await _family_members(supabase, user_id)
            if not members:
                continue
            window = now + timedelta(days=prefs.reminder_days_before)
            pending: List[PendingNotification] = []
            if prefs.vaccination_reminders:
                items = await _vaccination_reminders(supabase, user_id, members, window.date().isoformat())
                result.vaccination_reminders += len(items)
                pending.extend(items)
            if prefs.medication_reminders:
                day_start = now.replace(hour=0, minute=0, second=0, microsecond=0).isoformat()
                items = await _medication_reminders(supabase, user_id, members, day_start)
                result.medication_reminders += len(items)
                pending.extend(items)
            if prefs.appointment_reminders:
                window_end = f"{window.date().isoformat()}T23:59:59+00:00"
                items = await _appointment_reminders(supabase, user_id, members, window_end)
                result.appointment_reminders += len(items)
                pending.extend(items)
            await dispatch(supabase, pending, sender, result)
        except Exception:
            logger.exception("notification run failed for user", extra={"user_id": user_id})

    logger.info("notification run finished", extra=result.model_dump())
    return result
