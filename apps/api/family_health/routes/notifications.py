from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from ..config import get_config
from ..notifications import preferences_from_row
from ..schemas import (
    NotificationPreferences,
    NotificationPreferencesUpdate,
    PushSubscription,
    PushSubscriptionCreate,
    PushSubscriptionDelete,
)
from ..supabase import UserContext, first_or_none, get_user_context

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])
logger = logging.getLogger(__name__)

PREFERENCES_TABLE = "health_notification_preferences"
SUBSCRIPTION_COLUMNS = "id,user_id,endpoint,is_active,last_used_at"


@router.get("/preferences", response_model=NotificationPreferences)
async def get_preferences(user: UserContext = Depends(get_user_context)) -> NotificationPreferences:
    rows = await user.supabase.select(
        PREFERENCES_TABLE,
        params={"select": "*", "user_id": f"eq.{user.user_id}", "limit": "1"},
    )
    return preferences_from_row(first_or_none(rows))


@router.put("/preferences", response_model=NotificationPreferences)
async def update_preferences(
    payload: NotificationPreferencesUpdate,
    user: UserContext = Depends(get_user_context),
) -> NotificationPreferences:
    changes = payload.model_dump(exclude_unset=True)
    row = {
        "user_id": user.user_id,
        **changes,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    saved = await user.supabase.upsert(PREFERENCES_TABLE, row, on_conflict="user_id")
    logger.info("notification preferences saved", extra={"user_id": user.user_id, "fields": sorted(changes)})
    return preferences_from_row(first_or_none(saved) or row)


@router.get("/vapid-public-key")
async def get_vapid_public_key() -> dict:
    key = get_config().vapid_public_key
    if not key:
        raise HTTPException(status_code=503, detail="Push notifications are not configured.")
    return {"public_key": key}


@router.get("/subscriptions", response_model=List[PushSubscription])
async def list_subscriptions(user: UserContext = Depends(get_user_context)) -> List[PushSubscription]:
    rows = await user.supabase.select(
        "push_subscriptions",
        params={
            "select": SUBSCRIPTION_COLUMNS,
            "user_id": f"eq.{user.user_id}",
            "is_active": "eq.true",
            "order": "last_used_at.desc.nullslast",
        },
    )
    return [PushSubscription.model_validate(row) for row in rows]


@router.post("/subscriptions", response_model=PushSubscription, status_code=201)
async def subscribe(
    payload: PushSubscriptionCreate,
    user: UserContext = Depends(get_user_context),
) -> PushSubscription:
    """Register a browser push endpoint; re-subscribing the same endpoint reactivates it."""
    saved = await user.supabase.upsert(
        "push_subscriptions",
        {
            "user_id": user.user_id,
            "endpoint": payload.endpoint,
            "p256dh": payload.keys.p256dh,
            "auth": payload.keys.auth,
            "is_active": True,
            "last_used_at": datetime.now(timezone.utc).isoformat(),
        },
        on_conflict="endpoint",
    )
    row = first_or_none(saved)
    if row is None:
        raise HTTPException(status_code=500, detail="Push subscription was not saved")
    return PushSubscription.model_validate(row)


@router.delete("/subscriptions", status_code=204)
async def unsubscribe(
    payload: PushSubscriptionDelete,
    user: UserContext = Depends(get_user_context),
) -> None:
    await user.supabase.update(
        "push_subscriptions",
        {"is_active": False},
        params={"user_id": f"eq.{user.user_id}", "endpoint": f"eq.{payload.endpoint}"},
    )
    return None
