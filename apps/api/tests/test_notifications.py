import asyncio
import json
from datetime import datetime, timezone
from types import SimpleNamespace

from pywebpush import WebPushException

from family_health.config import AppConfig
from family_health import notifications
from family_health.notifications import in_quiet_hours, preferences_from_row, run_notification_schedule
from family_health.routes.notifications import get_preferences, subscribe, unsubscribe, update_preferences
from family_health.schemas import (
    NotificationPreferences,
    NotificationPreferencesUpdate,
    PushSubscriptionCreate,
    PushSubscriptionDelete,
    PushSubscriptionKeys,
)
from family_health.supabase import UserContext
from supabase_fakes import FakeSupabase

CONFIG = AppConfig(vapid_private_key="test-key", default_timezone="UTC")


class RecordingSender:
    def __init__(self, gone_endpoints=(), unreachable_endpoints=()):
        self.gone_endpoints = set(gone_endpoints)
        self.unreachable_endpoints = set(unreachable_endpoints)
        self.sent = []

    def __call__(self, subscription_info, data):
        if subscription_info["endpoint"] in self.unreachable_endpoints:
            raise ConnectionError("dns failure")
        if subscription_info["endpoint"] in self.gone_endpoints:
            raise WebPushException("Push failed: 410 Gone", response=SimpleNamespace(status_code=410, text="gone"))
        self.sent.append((subscription_info["endpoint"], json.loads(data)))


def _user(fake) -> UserContext:
    return UserContext(
        user_id="user-1",
        user_email="parent@example.com",
        access_token="test-token",
        supabase=fake,
        memberships=[],
    )


def test_quiet_hours_wrap_midnight() -> None:
    prefs = NotificationPreferences()
    assert in_quiet_hours(prefs, datetime(2025, 6, 15, 23, 30))
    assert in_quiet_hours(prefs, datetime(2025, 6, 15, 6, 59))
    assert not in_quiet_hours(prefs, datetime(2025, 6, 15, 7, 0))
    assert not in_quiet_hours(prefs, datetime(2025, 6, 15, 12, 0))


def test_quiet_hours_within_one_day_and_disabled() -> None:
    prefs = NotificationPreferences(quiet_hours_start="13:00", quiet_hours_end="15:00")
    assert in_quiet_hours(prefs, datetime(2025, 6, 15, 14, 0))
    assert not in_quiet_hours(prefs, datetime(2025, 6, 15, 16, 0))
    assert not in_quiet_hours(NotificationPreferences(quiet_hours_start=None), datetime(2025, 6, 15, 23, 0))


def test_preferences_fill_defaults_for_null_columns() -> None:
    prefs = preferences_from_row({"user_id": "u", "reminder_days_before": 5, "quiet_hours_start": None})
    assert prefs.reminder_days_before == 5
    assert prefs.quiet_hours_start == "22:00"
    assert preferences_from_row(None) == NotificationPreferences()


def test_user_in_quiet_hours_is_skipped() -> None:
    fake = FakeSupabase(select_queue={"health_notification_preferences": [[{"user_id": "user-1"}]]})
    sender = RecordingSender()

    result = asyncio.run(
        run_notification_schedule(
            fake,
            sender=sender,
            now=datetime(2025, 6, 15, 23, 0, tzinfo=timezone.utc),
            config=CONFIG,
        )
    )

    assert result.skipped_quiet_hours == 1
    assert result.sent == 0
    assert not fake.calls_for("update")
    assert not sender.sent


def test_quiet_hours_follow_user_timezone() -> None:
    fake = FakeSupabase(
        select_queue={
            "health_notification_preferences": [[{"user_id": "user-1", "timezone": "Asia/Jakarta"}]],
        }
    )

    result = asyncio.run(
        run_notification_schedule(
            fake,
            sender=RecordingSender(),
            now=datetime(2025, 6, 15, 16, 0, tzinfo=timezone.utc),
            config=CONFIG,
        )
    )

    assert result.skipped_quiet_hours == 1


def test_schedule_sends_reminders_and_deactivates_gone_subscriptions() -> None:
    fake = FakeSupabase(
        select_queue={
            "health_notification_preferences": [[{"user_id": "user-1", "reminder_days_before": 3}]],
            "family_members": [[{"family_id": "family-1"}], [{"id": "member-1", "name": "Alya"}]],
            "vaccinations": [[{"id": "vac-1", "member_id": "member-1", "vaccine_name": "MMR"}]],
            "medications": [
                [
                    {"id": "med-1", "member_id": "member-1", "name": "Iron drops"},
                    {"id": "med-2", "member_id": "member-1", "name": "Vitamin D"},
                ]
            ],
            "medication_logs": [[{"medication_id": "med-2"}]],
            "doctor_visits": [[]],
            "push_subscriptions": [
                [
                    {"id": "sub-1", "endpoint": "https://push.example/1", "p256dh": "k1", "auth": "a1"},
                    {"id": "sub-2", "endpoint": "https://push.example/2", "p256dh": "k2", "auth": "a2"},
                ]
            ],
        }
    )
    sender = RecordingSender(gone_endpoints={"https://push.example/2"})

    result = asyncio.run(
        run_notification_schedule(
            fake,
            sender=sender,
            now=datetime(2025, 6, 15, 10, 0, tzinfo=timezone.utc),
            config=CONFIG,
        )
    )

    assert result.vaccination_reminders == 1
    assert result.medication_reminders == 1
    assert result.appointment_reminders == 0
    assert result.sent == 2
    assert result.failed == 2
    titles = sorted(payload["title"] for _, payload in sender.sent)
    assert titles == ["Medication reminder", "Vaccination reminder"]

    _, _, vaccination_params = fake.calls_for("select", "vaccinations")[0]
    assert vaccination_params["date_due"] == "lte.2025-06-18"
    assert vaccination_params["member_id"] == "in.(member-1)"
    marked = fake.calls_for("update", "vaccinations")
    assert marked[0][2] == {"reminder_sent": True}
    deactivated = fake.calls_for("update", "push_subscriptions")
    assert deactivated and all(call[3] == {"id": "eq.sub-2"} for call in deactivated)
    statuses = sorted(call[2]["status"] for call in fake.calls_for("insert", "notification_logs"))
    assert statuses == ["failed", "failed", "sent", "sent"]


def test_preferences_default_when_missing() -> None:
    fake = FakeSupabase()
    prefs = asyncio.run(get_preferences(user=_user(fake)))
    assert prefs == NotificationPreferences()


def test_preferences_update_upserts_on_user() -> None:
    fake = FakeSupabase()
    prefs = asyncio.run(
        update_preferences(NotificationPreferencesUpdate(medication_reminders=False), user=_user(fake))
    )
    _, table, payload, on_conflict = fake.calls_for("upsert")[0]
    assert table == "health_notification_preferences"
    assert on_conflict == "user_id"
    assert payload["medication_reminders"] is False
    assert "vaccination_reminders" not in payload
    assert prefs.medication_reminders is False


def test_subscribe_and_unsubscribe() -> None:
    fake = FakeSupabase()
    user = _user(fake)
    payload = PushSubscriptionCreate(
        endpoint="https://push.example/1",
        keys=PushSubscriptionKeys(p256dh="key", auth="secret"),
    )

    subscription = asyncio.run(subscribe(payload, user=user))
    asyncio.run(unsubscribe(PushSubscriptionDelete(endpoint="https://push.example/1"), user=user))

    assert subscription.is_active is True
    _, _, row, on_conflict = fake.calls_for("upsert")[0]
    assert on_conflict == "endpoint"
    assert row["p256dh"] == "key"
    _, _, changes, params = fake.calls_for("update", "push_subscriptions")[0]
    assert changes == {"is_active": False}
    assert params["endpoint"] == "eq.https://push.example/1"


def _two_users_with_due_vaccinations():
    prefs = {"reminder_days_before": 3, "medication_reminders": False, "appointment_reminders": False}
    return FakeSupabase(
        select_queue={
            "health_notification_preferences": [
                [{"user_id": "user-1", **prefs}, {"user_id": "user-2", **prefs}]
            ],
            "family_members": [
                [{"family_id": "family-1"}],
                [{"id": "member-1", "name": "Alya"}],
                [{"family_id": "family-2"}],
                [{"id": "member-2", "name": "Bima"}],
            ],
            "vaccinations": [
                [{"id": "vac-1", "member_id": "member-1", "vaccine_name": "MMR"}],
                [{"id": "vac-2", "member_id": "member-2", "vaccine_name": "DTaP"}],
            ],
            "push_subscriptions": [
                [{"id": "sub-1", "endpoint": "https://push.example/1", "p256dh": "k1", "auth": "a1"}],
                [{"id": "sub-2", "endpoint": "https://push.example/2", "p256dh": "k2", "auth": "a2"}],
            ],
        }
    )


def test_network_error_is_logged_and_next_user_still_notified() -> None:
    fake = _two_users_with_due_vaccinations()
    sender = RecordingSender(unreachable_endpoints={"https://push.example/1"})

    result = asyncio.run(
        run_notification_schedule(
            fake,
            sender=sender,
            now=datetime(2025, 6, 15, 10, 0, tzinfo=timezone.utc),
            config=CONFIG,
        )
    )

    assert result.vaccination_reminders == 2
    assert result.failed == 1
    assert result.sent == 1
    assert [endpoint for endpoint, _ in sender.sent] == ["https://push.example/2"]
    logs = [call[2] for call in fake.calls_for("insert", "notification_logs")]
    assert [(row["user_id"], row["status"]) for row in logs] == [("user-1", "failed"), ("user-2", "sent")]
    assert logs[0]["error_message"] == "dns failure"
    assert not fake.calls_for("update", "push_subscriptions")


def test_unexpected_error_for_one_user_does_not_stop_the_run(monkeypatch) -> None:
    fake = _two_users_with_due_vaccinations()
    real_dispatch = notifications.dispatch
    seen = []

    async def flaky_dispatch(supabase, pending, sender, result):
        seen.append(pending[0].user_id)
        if pending[0].user_id == "user-1":
            raise RuntimeError("unexpected payload")
        await real_dispatch(supabase, pending, sender, result)

    monkeypatch.setattr(notifications, "dispatch", flaky_dispatch)
    sender = RecordingSender()

    result = asyncio.run(
        run_notification_schedule(
            fake,
            sender=sender,
            now=datetime(2025, 6, 15, 10, 0, tzinfo=timezone.utc),
            config=CONFIG,
        )
    )

    assert seen == ["user-1", "user-2"]
    assert result.sent == 1
    assert len(sender.sent) == 1
