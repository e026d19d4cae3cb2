from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional
from urllib.parse import quote
from uuid import UUID

import httpx
import jwt
from fastapi import Header, HTTPException
from jwt import PyJWKClient

from .config import get_config

logger = logging.getLogger(__name__)

EDITOR_ROLES = {"admin", "parent"}
MEMBERSHIP_SELECT = "id,family_id,user_id,name,role,avatar_url,birth_date"
RETURN_ROWS = "return=representation"


@lru_cache
def _supabase_config() -> tuple[str, str]:
    config = get_config()
    if not config.supabase_url or not config.supabase_anon_key:
        raise RuntimeError("Missing SUPABASE_URL/SUPABASE_ANON_KEY for API access.")
    return config.supabase_url.rstrip("/"), config.supabase_anon_key


@lru_cache
def _service_role_key() -> str:
    key = get_config().supabase_service_role_key
    if not key:
        raise RuntimeError("Missing SUPABASE_SERVICE_ROLE_KEY for admin access.")
    return key


@lru_cache
def _jwks_client() -> PyJWKClient:
    base_url, _ = _supabase_config()
    return PyJWKClient(f"{base_url}/auth/v1/.well-known/jwks.json")


def _parse_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization token.")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization token.")
    return parts[1]


def _parse_uuid(value: Optional[str], label: str) -> str:
    if not value:
        raise HTTPException(status_code=400, detail=f"Missing {label}.")
    try:
        return str(UUID(value))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label}.") from exc


def resolve_optional_uuid(value: Optional[str], label: str) -> Optional[str]:
    if not value:
        return None
    return _parse_uuid(value, label)


def first_or_none(rows: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    return rows[0] if rows else None


def embedded(row: Dict[str, Any], key: str) -> Optional[Dict[str, Any]]:
    """Return an embedded PostgREST relation that may come back as a list or object."""
    value = row.get(key)
    if isinstance(value, list):
        return value[0] if value else None
    return value


async def _describe_response(resp: httpx.Response) -> str:
    try:
        return resp.text or "<empty response>"
    except Exception:
        return "<unable to read response>"


async def _raise_supabase_error(
    resp: httpx.Response,
    action: str,
    *,
    object_label: Optional[str] = None,
) -> None:
    detail = await _describe_response(resp)
    label = f" ({object_label})" if object_label else ""
    status = resp.status_code if resp.status_code >= 400 else 500
    logger.warning(
        "supabase request failed",
        extra={"action": action, "object": object_label, "status": resp.status_code},
    )
    raise HTTPException(
        status_code=status,
        detail=f"Supabase {action} failed{label}: status={resp.status_code}, body={detail}",
    )


def _decode_with_jwks(token: str, audience: Optional[str]) -> Optional[Dict[str, Any]]:
    try:
        signing_key = _jwks_client().get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256", "ES256"],
            audience=audience or None,
            options={"verify_aud": bool(audience)},
        )
    except jwt.PyJWTError as exc:
        logger.debug("jwks verification unavailable: %s", exc)
        return None


def _decode_with_secret(token: str, secret: str, audience: Optional[str]) -> Dict[str, Any]:
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=audience or None,
            options={"verify_aud": bool(audience)},
        )
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid or expired token.") from exc


async def _fetch_auth_user(token: str) -> Dict[str, Any]:
    """Ask GoTrue who owns the token when it cannot be verified locally."""
    base_url, anon_key = _supabase_config()
    async with httpx.AsyncClient(timeout=10.0) as client:
        resp = await client.get(f"{base_url}/auth/v1/user", headers=_auth_headers(anon_key, token))
    data = resp.json() if resp.status_code < 400 and resp.content else {}
    if not data.get("id"):
        raise HTTPException(status_code=401, detail="Invalid or expired token.")
    return {"sub": data["id"], "email": data.get("email")}


async def _verify_access_token(token: str) -> Dict[str, Any]:
    config = get_config()
    claims = _decode_with_jwks(token, config.supabase_jwt_aud)
    if claims is not None:
        return claims
    if config.supabase_jwt_secret:
        return _decode_with_secret(token, config.supabase_jwt_secret, config.supabase_jwt_aud)
    return await _fetch_auth_user(token)


def _auth_headers(api_key: str, token: str) -> Dict[str, str]:
    return {"apikey": api_key, "Authorization": f"Bearer {token}"}


def _rows(resp: httpx.Response) -> List[Dict[str, Any]]:
    return resp.json() if resp.content else []


@dataclass
class SupabaseClient:
    """PostgREST access on behalf of one bearer token."""

    base_url: str
    anon_key: str
    access_token: str

    async def request(
        self,
        method: str,
        path: str,
        action: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> httpx.Response:
        headers = {
            **_auth_headers(self.anon_key, self.access_token),
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        async with httpx.AsyncClient(timeout=15.0) as client:
            resp = await client.request(
                method,
                f"{self.base_url}/rest/v1/{path}",
                params=params,
                json=json,
                headers=headers,
            )
        if resp.status_code >= 400:
            await _raise_supabase_error(resp, action, object_label=path)
        return resp

    async def select(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        return (await self.request("GET", table, "select", params=params)).json()

    async def insert(
        self,
        table: str,
        payload: Dict[str, Any],
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        resp = await self.request(
            "POST", table, "insert", params=params, json=payload, prefer=RETURN_ROWS
        )
        return _rows(resp)

    async def upsert(self, table: str, payload: Dict[str, Any], *, on_conflict: str) -> List[Dict[str, Any]]:
        resp = await self.request(
            "POST",
            table,
            "upsert",
            params={"on_conflict": on_conflict},
            json=payload,
            prefer=f"resolution=merge-duplicates,{RETURN_ROWS}",
        )
        return _rows(resp)

    async def update(self, table: str, payload: Dict[str, Any], params: Dict[str, Any]) -> List[Dict[str, Any]]:
        return _rows(await self.request("PATCH", table, "update", params=params, json=payload, prefer=RETURN_ROWS))

    async def delete(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        return _rows(await self.request("DELETE", table, "delete", params=params, prefer=RETURN_ROWS))

    async def rpc(self, fn: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        resp = await self.request("POST", f"rpc/{fn}", "rpc", json=payload)
        return resp.json() if resp.content else None


@dataclass
class SupabaseStorage:
    """Thin wrapper over the Supabase Storage object API."""

    base_url: str
    anon_key: str
    access_token: str

    def _object_url(self, *parts: str) -> str:
        return "/".join([f"{self.base_url}/storage/v1/object", *parts])

    async def create_signed_url(self, bucket: str, path: str, expires_in: int = 3600) -> str:
        async with httpx.AsyncClient(timeout=15.0) as client:
            resp = await client.post(
                self._object_url("sign", bucket, quote(path)),
                json={"expiresIn": expires_in},
                headers=_auth_headers(self.anon_key, self.access_token),
            )
        if resp.status_code >= 400:
            await _raise_supabase_error(resp, "sign", object_label=f"bucket={bucket}")
        signed = resp.json().get("signedURL") or resp.json().get("signedUrl")
        if not signed:
            raise HTTPException(status_code=502, detail="Storage did not return a signed URL.")
        return f"{self.base_url}/storage/v1{signed}"

    async def remove(self, bucket: str, paths: List[str]) -> None:
        async with httpx.AsyncClient(timeout=15.0) as client:
            resp = await client.request(
                "DELETE",
                self._object_url(bucket),
                json={"prefixes": paths},
                headers=_auth_headers(self.anon_key, self.access_token),
            )
        if resp.status_code >= 400:
            await _raise_supabase_error(resp, "remove", object_label=f"bucket={bucket}")


@lru_cache
def get_admin_client() -> SupabaseClient:
    base_url, _ = _supabase_config()
    service_role = _service_role_key()
    return SupabaseClient(base_url=base_url, anon_key=service_role, access_token=service_role)


def get_admin_supabase() -> SupabaseClient:
    """Dependency for routes that run without a user session."""
    return get_admin_client()


@dataclass
class AuthContext:
    user_id: str
    user_email: Optional[str]
    family_id: str
    member_id: str
    role: str
    access_token: str
    supabase: SupabaseClient
    memberships: List[Dict[str, Any]]

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def can_edit(self) -> bool:
        return self.role in EDITOR_ROLES

    def storage(self) -> SupabaseStorage:
        return SupabaseStorage(
            base_url=self.supabase.base_url,
            anon_key=self.supabase.anon_key,
            access_token=self.access_token,
        )


@dataclass
class UserContext:
    user_id: str
    user_email: Optional[str]
    access_token: str
    supabase: SupabaseClient
    memberships: List[Dict[str, Any]]


def require_editor(auth: AuthContext) -> None:
    if not auth.can_edit:
        raise HTTPException(status_code=403, detail="You do not have permission to change health records.")


def require_admin(auth: AuthContext) -> None:
    if not auth.is_admin:
        raise HTTPException(status_code=403, detail="Only admins can delete records.")


async def _user_supabase(authorization: Optional[str]) -> tuple[Dict[str, Any], str, SupabaseClient]:
    token = _parse_bearer_token(authorization)
    payload = await _verify_access_token(token)
    base_url, anon_key = _supabase_config()
    supabase = SupabaseClient(base_url=base_url, anon_key=anon_key, access_token=token)
    return payload, token, supabase


async def get_auth_context(
    authorization: Optional[str] = Header(None),
    family_id: Optional[str] = Header(None, alias="X-Family-Id"),
) -> AuthContext:
    payload, token, supabase = await _user_supabase(authorization)
    user_id = _parse_uuid(payload.get("sub"), "user_id")
    user_email = payload.get("email") if isinstance(payload, dict) else None

    memberships = await supabase.select(
        "family_members",
        params={"select": MEMBERSHIP_SELECT, "user_id": f"eq.{user_id}"},
    )
    if not memberships:
        raise HTTPException(status_code=403, detail="No family found for this account.")

    if family_id:
        resolved_family_id = _parse_uuid(family_id, "family_id")
        membership = next(
            (row for row in memberships if row.get("family_id") == resolved_family_id), None
        )
        if membership is None:
            raise HTTPException(status_code=403, detail="Family access denied.")
    elif len({row.get("family_id") for row in memberships}) == 1:
        membership = memberships[0]
    else:
        raise HTTPException(
            status_code=409,
            detail={"error": "family_required", "count": len(memberships)},
        )

    return AuthContext(
        user_id=user_id,
        user_email=user_email,
        family_id=membership["family_id"],
        member_id=membership["id"],
        role=membership.get("role") or "viewer",
        access_token=token,
        supabase=supabase,
        memberships=memberships,
    )


async def get_user_context(
    authorization: Optional[str] = Header(None),
) -> UserContext:
    payload, token, supabase = await _user_supabase(authorization)
    user_id = _parse_uuid(payload.get("sub"), "user_id")
    user_email = payload.get("email") if isinstance(payload, dict) else None

    memberships = await supabase.select(
        "family_members",
        params={"select": MEMBERSHIP_SELECT, "user_id": f"eq.{user_id}"},
    )

    return UserContext(
        user_id=user_id,
        user_email=user_email,
        access_token=token,
        supabase=supabase,
        memberships=memberships,
    )
