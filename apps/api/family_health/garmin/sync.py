"""Map Garmin daily/sleep summaries into health_metrics rows."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
from fastapi import HTTPException

from ..health import round_half_up
from ..schemas import MetricType
from ..supabase import SupabaseClient
from .client import GarminAPIError, GarminClient, GarminDailySummary, GarminSleepSummary, GarminTokens

logger = logging.getLogger(__name__)

SOURCE = "garmin"
# health_metrics has no steps/sleep type yet, so Garmin rows reuse heart_rate
# and are told apart by unit and the source_id suffix.
PLACEHOLDER_TYPE = MetricType.HEART_RATE.value


@dataclass
class SyncResult:
    success: bool = False
    metrics_inserted: int = 0
    metrics_skipped: int = 0
    errors: List[str] = field(default_factory=list)


def _base_row(family_id: str, member_id: str, user_id: str) -> Dict[str, Any]:
    return {
        "family_id": family_id,
        "member_id": member_id,
        "metric_type": PLACEHOLDER_TYPE,
        "source": SOURCE,
        "created_by": user_id,
    }


def map_daily_summary(
    summary: GarminDailySummary,
    family_id: str,
    member_id: str,
    user_id: str,
) -> List[Dict[str, Any]]:
    measured_at = f"{summary.calendar_date}T12:00:00+00:00"
    rows: List[Dict[str, Any]] = []
    if summary.steps > 0:
        rows.append(
            {
                **_base_row(family_id, member_id, user_id),
                "value_primary": summary.steps,
                "unit": "steps",
                "measured_at": measured_at,
                "notes": "Daily steps from Garmin",
                "source_id": f"{summary.summary_id}-steps",
            }
        )
    if summary.resting_heart_rate > 0:
        rows.append(
            {
                **_base_row(family_id, member_id, user_id),
                "value_primary": summary.resting_heart_rate,
                "unit": "bpm",
                "measured_at": measured_at,
                "notes": "Resting heart rate from Garmin",
                "source_id": f"{summary.summary_id}-rhr",
            }
        )
    return rows


def sleep_quality_score(sleep: GarminSleepSummary) -> int:
    total = sleep.duration_in_seconds
    deep = sleep.deep_sleep_seconds / total * 100
    rem = sleep.rem_sleep_seconds / total * 100
    awake = sleep.awake_seconds / total * 100
    return min(100, round_half_up(deep * 2 + rem * 1.5 - awake * 2 + 50))


def map_sleep(
    sleep: GarminSleepSummary,
    family_id: str,
    member_id: str,
    user_id: str,
) -> List[Dict[str, Any]]:
    minutes = round_half_up(sleep.duration_in_seconds / 60)
    if minutes <= 0:
        return []
    return [
        {
            **_base_row(family_id, member_id, user_id),
            "value_primary": minutes,
            "value_secondary": sleep_quality_score(sleep),
            "unit": "minutes",
            "measured_at": f"{sleep.calendar_date}T06:00:00+00:00",
            "notes": f"Slept {minutes // 60}h {minutes % 60}m (Garmin)",
            "source_id": f"{sleep.summary_id}-sleep",
        }
    ]


async def _already_synced(supabase: SupabaseClient, source_id: str) -> bool:
    rows = await supabase.select(
        "health_metrics",
        params={
            "select": "id",
            "source": f"eq.{SOURCE}",
            "source_id": f"eq.{source_id}",
            "limit": "1",
        },
    )
    return bool(rows)


async def _mark_account(
    supabase: SupabaseClient,
    account_id: str,
    status: str,
    error: Optional[str],
) -> None:
    now = datetime.now(timezone.utc).isoformat()
    await supabase.update(
        "health_connected_accounts",
        {
            "last_sync_at": now,
            "last_sync_status": status,
            "last_sync_error": error,
            "updated_at": now,
        },
        params={"id": f"eq.{account_id}"},
    )


async def sync_garmin_data(
    supabase: SupabaseClient,
    client: GarminClient,
    account_id: str,
    tokens: GarminTokens,
    family_id: str,
    member_id: str,
    user_id: str,
    days_back: int = 7,
) -> SyncResult:
    """Pull the trailing ``days_back`` window from Garmin and store new rows.

    Rows are inserted one by one and skipped when a garmin row with the same
    ``source_id`` already exists. The check and the insert are not atomic, so
    two concurrent syncs of one account can still store a duplicate.
    """
    result = SyncResult()
    end = datetime.now(timezone.utc)
    start = end - timedelta(days=days_back)

    try:
        dailies: List[GarminDailySummary] = []
        try:
            dailies = await client.get_daily_summaries(tokens, start, end)
        except (GarminAPIError, httpx.HTTPError) as exc:
            result.errors.append(f"Failed to fetch daily summaries: {exc}")

        sleeps: List[GarminSleepSummary] = []
        try:
            sleeps = await client.get_sleep_data(tokens, start, end)
        except (GarminAPIError, httpx.HTTPError) as exc:
            result.errors.append(f"Failed to fetch sleep data: {exc}")

        rows: List[Dict[str, Any]] = []
        for summary in dailies:
            rows.extend(map_daily_summary(summary, family_id, member_id, user_id))
        for sleep in sleeps:
            rows.extend(map_sleep(sleep, family_id, member_id, user_id))

        for row in rows:
            if await _already_synced(supabase, row["source_id"]):
                result.metrics_skipped += 1
                continue
            try:
                await supabase.insert("health_metrics", row)
            except HTTPException as exc:
                result.errors.append(f"Failed to store metric {row['source_id']}: {exc.detail}")
            else:
                result.metrics_inserted += 1

        status = "success" if not result.errors else "partial"
        await _mark_account(
            supabase,
            account_id,
            status,
            "; ".join(result.errors) if result.errors else None,
        )
        result.success = not result.errors
    except Exception as exc:
        logger.exception("garmin sync failed", extra={"account_id": account_id})
        result.errors.append(f"Sync error: {exc}")
        await _mark_account(supabase, account_id, "failed", str(exc))

    logger.info(
        "garmin sync finished",
        extra={
            "account_id": account_id,
            "inserted": result.metrics_inserted,
            "skipped": result.metrics_skipped,
            "errors": len(result.errors),
        },
    )
    return result
