from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException

from ..schemas import FamilyMember, HealthProfile, MemberProfileUpdate, MemberWithProfile
from ..supabase import AuthContext, first_or_none, get_auth_context, require_editor, resolve_optional_uuid

router = APIRouter(prefix="/api/v1/members", tags=["members"])
logger = logging.getLogger(__name__)

MEMBER_COLUMNS = "id,family_id,user_id,name,role,avatar_url,birth_date"
MEMBER_FIELDS = {"name", "birth_date", "avatar_url"}
LIST_FIELDS = {"allergies", "conditions"}


def require_uuid(value: str, label: str) -> str:
    resolved = resolve_optional_uuid(value, label)
    if not resolved:
        raise HTTPException(status_code=400, detail=f"Invalid {label}")
    return resolved


async def load_member(auth: AuthContext, member_id: str) -> Dict[str, Any]:
    """Fetch a member of the caller's active family or raise 404."""
    member_uuid = require_uuid(member_id, "member_id")
    rows = await auth.supabase.select(
        "family_members",
        params={
            "select": MEMBER_COLUMNS,
            "id": f"eq.{member_uuid}",
            "family_id": f"eq.{auth.family_id}",
            "limit": "1",
        },
    )
    if not rows:
        raise HTTPException(status_code=404, detail="Family member not found")
    return rows[0]


async def load_health_profile(auth: AuthContext, member_id: str) -> Optional[Dict[str, Any]]:
    rows = await auth.supabase.select(
        "health_profiles",
        params={"select": "*", "family_member_id": f"eq.{member_id}", "limit": "1"},
    )
    return first_or_none(rows)


@router.get("", response_model=List[FamilyMember])
async def list_members(auth: AuthContext = Depends(get_auth_context)) -> List[FamilyMember]:
    rows = await auth.supabase.select(
        "family_members",
        params={
            "select": MEMBER_COLUMNS,
            "family_id": f"eq.{auth.family_id}",
            "order": "created_at.asc",
        },
    )
    return [FamilyMember.model_validate(row) for row in rows]


@router.get("/{member_id}", response_model=MemberWithProfile)
async def get_member(
    member_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> MemberWithProfile:
    member = await load_member(auth, member_id)
    profile = await load_health_profile(auth, member["id"])
    return MemberWithProfile(
        **member,
        health_profile=HealthProfile.model_validate(profile) if profile else None,
    )


@router.patch("/{member_id}", response_model=MemberWithProfile)
async def update_member_profile(
    member_id: str,
    payload: MemberProfileUpdate,
    auth: AuthContext = Depends(get_auth_context),
) -> MemberWithProfile:
    """Update the member row and create or update its health profile."""
    require_editor(auth)
    member = await load_member(auth, member_id)
    changes = payload.model_dump(mode="json", exclude_unset=True)

    member_changes = {key: value for key, value in changes.items() if key in MEMBER_FIELDS}
    if member_changes:
        updated = await auth.supabase.update(
            "family_members",
            member_changes,
            params={"id": f"eq.{member['id']}", "family_id": f"eq.{auth.family_id}"},
        )
        if updated:
            member = updated[0]

    profile_changes = {key: value for key, value in changes.items() if key not in MEMBER_FIELDS}
    for key in LIST_FIELDS & profile_changes.keys():
        if not profile_changes[key]:
            profile_changes[key] = None

    profile = await load_health_profile(auth, member["id"])
    if profile_changes:
        if profile:
            rows = await auth.supabase.update(
                "health_profiles",
                profile_changes,
                params={"id": f"eq.{profile['id']}"},
            )
        else:
            rows = await auth.supabase.insert(
                "health_profiles",
                {"family_member_id": member["id"], **profile_changes},
            )
        profile = first_or_none(rows) or profile

    logger.info(
        "member profile updated",
        extra={"member_id": member["id"], "fields": sorted(changes)},
    )
    return MemberWithProfile(
        **member,
        health_profile=HealthProfile.model_validate(profile) if profile else None,
    )
