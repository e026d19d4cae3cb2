import asyncio

from fastapi import HTTPException

from family_health.garmin.client import GarminAPIError, GarminDailySummary, GarminSleepSummary, GarminTokens
from family_health.garmin.sync import map_daily_summary, map_sleep, sleep_quality_score, sync_garmin_data
from supabase_fakes import FakeSupabase


class StubGarmin:
    def __init__(self, dailies=None, sleeps=None, fail_sleep=False):
        self.dailies = dailies or []
        self.sleeps = sleeps or []
        self.fail_sleep = fail_sleep

    async def get_daily_summaries(self, tokens, start, end):
        return self.dailies

    async def get_sleep_data(self, tokens, start, end):
        if self.fail_sleep:
            raise GarminAPIError("Garmin API error: 503 Service Unavailable", status_code=503)
        return self.sleeps


def _daily(summary_id="d1", steps=9000, rhr=60):
    return GarminDailySummary(
        summaryId=summary_id,
        calendarDate="2025-06-14",
        steps=steps,
        restingHeartRateInBeatsPerMinute=rhr,
    )


def _sleep(summary_id="s1"):
    return GarminSleepSummary(
        summaryId=summary_id,
        calendarDate="2025-06-14",
        durationInSeconds=8 * 3600,
        deepSleepDurationInSeconds=2 * 3600,
        remSleepInSeconds=2 * 3600,
        awakeDurationInSeconds=1800,
    )


def _run(fake, garmin):
    return asyncio.run(
        sync_garmin_data(
            fake,
            garmin,
            "account-1",
            GarminTokens("access", "secret"),
            "family-1",
            "member-1",
            "user-1",
        )
    )


def test_daily_summary_maps_steps_and_resting_heart_rate() -> None:
    rows = map_daily_summary(_daily(), "family-1", "member-1", "user-1")
    assert [row["source_id"] for row in rows] == ["d1-steps", "d1-rhr"]
    assert rows[0]["unit"] == "steps"
    assert rows[0]["measured_at"] == "2025-06-14T12:00:00+00:00"
    assert all(row["source"] == "garmin" for row in rows)


def test_zero_values_are_not_mapped() -> None:
    assert map_daily_summary(_daily(steps=0, rhr=0), "f", "m", "u") == []


def test_sleep_maps_minutes_and_quality() -> None:
    rows = map_sleep(_sleep(), "family-1", "member-1", "user-1")
    assert rows[0]["value_primary"] == 480
    assert rows[0]["unit"] == "minutes"
    assert rows[0]["source_id"] == "s1-sleep"
    assert rows[0]["notes"] == "Slept 8h 0m (Garmin)"
    assert sleep_quality_score(_sleep()) == 100


def test_existing_source_ids_are_not_reinserted() -> None:
    fake = FakeSupabase(select_queue={"health_metrics": [[{"id": "existing"}], []]})

    result = _run(fake, StubGarmin(dailies=[_daily()]))

    assert result.success is True
    assert result.metrics_skipped == 1
    assert result.metrics_inserted == 1
    inserted = [call[2]["source_id"] for call in fake.calls_for("insert", "health_metrics")]
    assert inserted == ["d1-rhr"]
    _, _, payload, params = fake.calls_for("update", "health_connected_accounts")[0]
    assert payload["last_sync_status"] == "success"
    assert params == {"id": "eq.account-1"}


def test_fetch_failure_marks_partial_sync() -> None:
    fake = FakeSupabase()

    result = _run(fake, StubGarmin(dailies=[_daily(rhr=0)], fail_sleep=True))

    assert result.success is False
    assert result.metrics_inserted == 1
    assert any("sleep" in error for error in result.errors)
    _, _, payload, _ = fake.calls_for("update", "health_connected_accounts")[0]
    assert payload["last_sync_status"] == "partial"
    assert "503" in payload["last_sync_error"]


def test_insert_failure_is_recorded_not_raised() -> None:
    fake = FakeSupabase(
        insert_queue={"health_metrics": [HTTPException(status_code=409, detail="duplicate key value")]}
    )

    result = _run(fake, StubGarmin(dailies=[_daily()]))

    assert result.success is False
    assert result.metrics_inserted == 1
    assert result.errors == ["Failed to store metric d1-steps: duplicate key value"]
    _, _, payload, _ = fake.calls_for("update", "health_connected_accounts")[0]
    assert payload["last_sync_status"] == "partial"
    assert payload["last_sync_error"] == "Failed to store metric d1-steps: duplicate key value"


def test_unexpected_failure_marks_account_failed() -> None:
    fake = FakeSupabase(select_queue={"health_metrics": [RuntimeError("connection reset")]})

    result = _run(fake, StubGarmin(dailies=[_daily()]))

    assert result.success is False
    assert result.metrics_inserted == 0
    assert result.errors == ["Sync error: connection reset"]
    assert not fake.calls_for("insert")
    _, _, payload, params = fake.calls_for("update", "health_connected_accounts")[0]
    assert payload["last_sync_status"] == "failed"
    assert payload["last_sync_error"] == "connection reset"
    assert params == {"id": "eq.account-1"}
