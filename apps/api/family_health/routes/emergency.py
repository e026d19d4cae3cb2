from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException

from ..config import get_config
from ..schemas import EmergencyCard, EmergencyTokenResponse
from ..supabase import AuthContext, SupabaseClient, embedded, get_admin_supabase, get_auth_context, require_editor
from .members import load_member

router = APIRouter(prefix="/api/v1", tags=["emergency"])
logger = logging.getLogger(__name__)

TOKEN_TTL = timedelta(days=365)
CARD_SELECT = (
    "id,family_member_id,expires_at,access_count,"
    "family_members(id,name,avatar_url,birth_date,"
    "health_profiles(blood_type,allergies,conditions,"
    "emergency_contact_name,emergency_contact_phone,emergency_contact_relationship))"
)


def generate_token() -> str:
    return secrets.token_urlsafe(32)


def _card_url(token: str) -> str:
    return f"{get_config().app_url.rstrip('/')}/e/{token}"


@router.post("/emergency/{member_id}/token", response_model=EmergencyTokenResponse)
async def get_or_create_emergency_token(
    member_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> EmergencyTokenResponse:
    """Return the newest unexpired card token for the member, creating one if needed."""
    require_editor(auth)
    member = await load_member(auth, member_id)
    now = datetime.now(timezone.utc)
    existing = await auth.supabase.select(
        "emergency_tokens",
        params={
            "select": "token,expires_at",
            "family_member_id": f"eq.{member['id']}",
            "expires_at": f"gt.{now.isoformat()}",
            "order": "created_at.desc",
            "limit": "1",
        },
    )
    if existing:
        row = existing[0]
        return EmergencyTokenResponse(token=row["token"], expires_at=row["expires_at"], url=_card_url(row["token"]))

    token = generate_token()
    expires_at = now + TOKEN_TTL
    await auth.supabase.insert(
        "emergency_tokens",
        {
            "family_member_id": member["id"],
            "token": token,
            "expires_at": expires_at.isoformat(),
            "created_by": auth.user_id,
        },
    )
    logger.info("emergency token created", extra={"member_id": member["id"]})
    return EmergencyTokenResponse(token=token, expires_at=expires_at, url=_card_url(token))


@router.get("/e/{token}", response_model=EmergencyCard)
async def read_emergency_card(
    token: str,
    supabase: SupabaseClient = Depends(get_admin_supabase),
) -> EmergencyCard:
    """Public card lookup; only the emergency subset of the profile leaves this route."""
    now = datetime.now(timezone.utc)
    rows = await supabase.select(
        "emergency_tokens",
        params={
            "select": CARD_SELECT,
            "token": f"eq.{token}",
            "expires_at": f"gt.{now.isoformat()}",
            "limit": "1",
        },
    )
    if not rows:
        raise HTTPException(status_code=404, detail="Emergency card not found or expired")
    row = rows[0]
    member = embedded(row, "family_members")
    if not member:
        raise HTTPException(status_code=404, detail="Emergency card not found or expired")

    await supabase.update(
        "emergency_tokens",
        {"access_count": (row.get("access_count") or 0) + 1, "last_accessed_at": now.isoformat()},
        params={"id": f"eq.{row['id']}"},
    )
    logger.info("emergency card viewed", extra={"member_id": member.get("id")})

    profile = embedded(member, "health_profiles") or {}
    return EmergencyCard(
        name=member["name"],
        birth_date=member.get("birth_date"),
        avatar_url=member.get("avatar_url"),
        blood_type=profile.get("blood_type"),
        allergies=profile.get("allergies"),
        conditions=profile.get("conditions"),
        emergency_contact_name=profile.get("emergency_contact_name"),
        emergency_contact_phone=profile.get("emergency_contact_phone"),
        emergency_contact_relationship=profile.get("emergency_contact_relationship"),
    )
