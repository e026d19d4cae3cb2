from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import jwt
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from ..config import get_config
from ..garmin.client import GarminAPIError, GarminClient, GarminTokens, get_garmin_client
from ..garmin.sync import SOURCE, sync_garmin_data
from ..schemas import (
    ConnectedAccount,
    FitnessMetrics,
    GarminConnectRequest,
    GarminConnectResponse,
    HealthMetric,
    SyncResponse,
)
from ..supabase import AuthContext, SupabaseClient, embedded, get_admin_supabase, get_auth_context
from .members import load_member, require_uuid

router = APIRouter(prefix="/api/v1/fitness", tags=["fitness"])
callback_router = APIRouter(tags=["fitness"])
logger = logging.getLogger(__name__)

PROVIDER = "garmin"
STATE_TTL = timedelta(minutes=15)
STATE_AUDIENCE = "garmin-connect"
ACCOUNT_COLUMNS = (
    "id,user_id,family_member_id,provider,sync_enabled,last_sync_at,"
    "last_sync_status,last_sync_error,created_at"
)
_METRIC_SUFFIXES = {"-steps": "steps", "-rhr": "heart_rate", "-sleep": "sleep"}


def encode_state(
    user_id: str,
    family_id: str,
    member_id: str,
    request_token: str,
    request_token_secret: str,
    now: Optional[datetime] = None,
) -> str:
    now = now or datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "aud": STATE_AUDIENCE,
        "fid": family_id,
        "mid": member_id,
        "rt": request_token,
        "rts": request_token_secret,
        "iat": now,
        "exp": now + STATE_TTL,
    }
    return jwt.encode(payload, get_config().state_signing_key, algorithm="HS256")


def decode_state(state: str) -> Dict[str, Any]:
    return jwt.decode(
        state,
        get_config().state_signing_key,
        algorithms=["HS256"],
        audience=STATE_AUDIENCE,
    )


def _fitness_redirect(**query: str) -> RedirectResponse:
    base = get_config().app_url.rstrip("/")
    suffix = "&".join(f"{key}={quote(value)}" for key, value in query.items())
    return RedirectResponse(url=f"{base}/fitness?{suffix}", status_code=302)


def group_fitness_metrics(rows: List[Dict[str, Any]]) -> FitnessMetrics:
    grouped = FitnessMetrics()
    for row in rows:
        source_id = row.get("source_id") or ""
        for suffix, bucket in _METRIC_SUFFIXES.items():
            if source_id.endswith(suffix):
                getattr(grouped, bucket).append(HealthMetric.model_validate(row))
                break
    return grouped


async def _load_account(auth: AuthContext, account_id: str) -> Dict[str, Any]:
    account_uuid = require_uuid(account_id, "account_id")
    rows = await auth.supabase.select(
        "health_connected_accounts",
        params={
            "select": "*,family_members(id,family_id)",
            "id": f"eq.{account_uuid}",
            "user_id": f"eq.{auth.user_id}",
            "limit": "1",
        },
    )
    if not rows:
        raise HTTPException(status_code=404, detail="Connected account not found")
    return rows[0]


def _tokens(account: Dict[str, Any]) -> Optional[GarminTokens]:
    if not account.get("access_token") or not account.get("access_token_secret"):
        return None
    return GarminTokens(
        access_token=account["access_token"],
        access_token_secret=account["access_token_secret"],
    )


@router.post("/garmin/connect", response_model=GarminConnectResponse)
async def start_garmin_connect(
    payload: Optional[GarminConnectRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    garmin: GarminClient = Depends(get_garmin_client),
) -> GarminConnectResponse:
    """Start the OAuth 1.0a handshake and return the Garmin authorize URL."""
    member_id = payload.member_id if payload else auth.member_id
    if member_id != auth.member_id and not auth.can_edit:
        raise HTTPException(status_code=403, detail="You can only connect your own Garmin account.")
    member = await load_member(auth, member_id)
    try:
        request_token = await garmin.get_request_token(get_config().garmin_callback_url)
    except GarminAPIError as exc:
        logger.warning("garmin request token failed", extra={"error": str(exc)})
        raise HTTPException(status_code=502, detail="Could not start the Garmin connection.") from exc

    state = encode_state(
        auth.user_id,
        auth.family_id,
        member["id"],
        request_token.oauth_token,
        request_token.oauth_token_secret,
    )
    return GarminConnectResponse(authorize_url=f"{request_token.authorize_url}&state={quote(state)}")


@callback_router.get("/api/garmin/callback", include_in_schema=False)
async def garmin_callback(
    oauth_token: Optional[str] = Query(None),
    oauth_verifier: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    supabase: SupabaseClient = Depends(get_admin_supabase),
    garmin: GarminClient = Depends(get_garmin_client),
) -> RedirectResponse:
    """Finish the handshake; the browser redirect carries no bearer token."""
    if not oauth_token or not oauth_verifier or not state:
        return _fitness_redirect(error="missing_params")
    try:
        claims = decode_state(state)
    except jwt.PyJWTError:
        logger.warning("garmin callback with invalid state")
        return _fitness_redirect(error="invalid_state")
    if claims.get("rt") != oauth_token:
        return _fitness_redirect(error="token_mismatch")

    try:
        tokens = await garmin.get_access_token(oauth_token, claims["rts"], oauth_verifier)
    except GarminAPIError as exc:
        logger.warning("garmin access token exchange failed", extra={"error": str(exc)})
        return _fitness_redirect(error="exchange_failed")

    try:
        await supabase.upsert(
            "health_connected_accounts",
            {
                "user_id": claims["sub"],
                "family_member_id": claims["mid"],
                "provider": PROVIDER,
                "access_token": tokens.access_token,
                "access_token_secret": tokens.access_token_secret,
                "sync_enabled": True,
                "last_sync_status": None,
            },
            on_conflict="user_id,family_member_id,provider",
        )
    except HTTPException:
        logger.exception("garmin account save failed", extra={"user_id": claims["sub"]})
        return _fitness_redirect(error="save_failed")

    logger.info("garmin account connected", extra={"user_id": claims["sub"], "member_id": claims["mid"]})
    return _fitness_redirect(connected=PROVIDER)


@router.get("/accounts", response_model=List[ConnectedAccount])
async def list_connected_accounts(auth: AuthContext = Depends(get_auth_context)) -> List[ConnectedAccount]:
    rows = await auth.supabase.select(
        "health_connected_accounts",
        params={
            "select": f"{ACCOUNT_COLUMNS},family_members(id,name,avatar_url)",
            "user_id": f"eq.{auth.user_id}",
            "order": "created_at.desc",
        },
    )
    return [ConnectedAccount.model_validate(row) for row in rows]


@router.post("/accounts/{account_id}/sync", response_model=SyncResponse)
async def trigger_sync(
    account_id: str,
    days: int = Query(7, ge=1, le=30),
    auth: AuthContext = Depends(get_auth_context),
    garmin: GarminClient = Depends(get_garmin_client),
) -> SyncResponse:
    account = await _load_account(auth, account_id)
    tokens = _tokens(account)
    if tokens is None:
        raise HTTPException(status_code=400, detail="Garmin account is missing its access token.")
    member = embedded(account, "family_members") or {}
    family_id = member.get("family_id") or auth.family_id
    result = await sync_garmin_data(
        auth.supabase,
        garmin,
        account["id"],
        tokens,
        family_id,
        account["family_member_id"],
        auth.user_id,
        days_back=days,
    )
    return SyncResponse(
        success=result.success,
        metrics_inserted=result.metrics_inserted,
        metrics_skipped=result.metrics_skipped,
        errors=result.errors,
    )


@router.delete("/accounts/{account_id}", status_code=204)
async def disconnect_account(
    account_id: str,
    auth: AuthContext = Depends(get_auth_context),
    garmin: GarminClient = Depends(get_garmin_client),
) -> None:
    account = await _load_account(auth, account_id)
    tokens = _tokens(account)
    if tokens is not None:
        try:
            await garmin.deregister_user(tokens)
        except GarminAPIError as exc:
            logger.warning("garmin deregistration failed", extra={"account_id": account["id"], "error": str(exc)})
    await auth.supabase.delete(
        "health_connected_accounts",
        params={"id": f"eq.{account['id']}", "user_id": f"eq.{auth.user_id}"},
    )
    return None


@router.get("/metrics", response_model=FitnessMetrics)
async def get_fitness_metrics(
    member_id: str = Query(...),
    days: int = Query(7, ge=1, le=90),
    auth: AuthContext = Depends(get_auth_context),
) -> FitnessMetrics:
    member = await load_member(auth, member_id)
    since = datetime.now(timezone.utc) - timedelta(days=days)
    rows = await auth.supabase.select(
        "health_metrics",
        params={
            "select": "*",
            "member_id": f"eq.{member['id']}",
            "source": f"eq.{SOURCE}",
            "measured_at": f"gte.{since.isoformat()}",
            "order": "measured_at.asc",
        },
    )
    return group_fitness_metrics(rows)
