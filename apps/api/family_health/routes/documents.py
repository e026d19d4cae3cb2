from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query

from ..schemas import (
    DocumentCategory,
    DocumentPathRequest,
    DocumentPathResponse,
    MedicalDocument,
    MedicalDocumentCreate,
    MedicalDocumentUpdate,
    SignedUrlResponse,
)
from ..supabase import AuthContext, get_auth_context, require_admin, require_editor
from .members import load_member, require_uuid

router = APIRouter(prefix="/api/v1/documents", tags=["documents"])
logger = logging.getLogger(__name__)

BUCKET = "health-documents"
SIGNED_URL_TTL = 3600
DOCUMENT_SELECT = "*,family_members(id,name,avatar_url),health_document_categories(id,name,icon,color)"

_UNSAFE_FILENAME = re.compile(r"[^a-zA-Z0-9.-]")
_UNSAFE_SEARCH = re.compile(r"[,()*%]")


def sanitize_file_name(name: str) -> str:
    return _UNSAFE_FILENAME.sub("_", name)


def build_document_path(
    family_id: str,
    member_id: str,
    file_name: str,
    now: Optional[datetime] = None,
) -> str:
    """Storage key: ``<family>/<member>/<epoch millis>-<sanitized name>``."""
    now = now or datetime.now(timezone.utc)
    stamp = int(now.timestamp() * 1000)
    return f"{family_id}/{member_id}/{stamp}-{sanitize_file_name(file_name)}"


async def _load_document(auth: AuthContext, document_id: str) -> Dict[str, Any]:
    document_uuid = require_uuid(document_id, "document_id")
    rows = await auth.supabase.select(
        "medical_documents",
        params={
            "select": DOCUMENT_SELECT,
            "id": f"eq.{document_uuid}",
            "family_id": f"eq.{auth.family_id}",
            "limit": "1",
        },
    )
    if not rows:
        raise HTTPException(status_code=404, detail="Document not found")
    return rows[0]


@router.get("", response_model=List[MedicalDocument])
async def list_documents(
    member_id: Optional[str] = Query(None),
    category_id: Optional[str] = Query(None),
    q: Optional[str] = Query(None, description="Search title and notes"),
    auth: AuthContext = Depends(get_auth_context),
) -> List[MedicalDocument]:
    params: Dict[str, Any] = {
        "select": DOCUMENT_SELECT,
        "family_id": f"eq.{auth.family_id}",
        "order": "document_date.desc.nullslast,created_at.desc",
    }
    if member_id:
        params["member_id"] = f"eq.{require_uuid(member_id, 'member_id')}"
    if category_id:
        params["category_id"] = f"eq.{require_uuid(category_id, 'category_id')}"
    term = _UNSAFE_SEARCH.sub(" ", q or "").strip()
    if term:
        params["or"] = f"(title.ilike.*{term}*,notes.ilike.*{term}*)"
    rows = await auth.supabase.select("medical_documents", params=params)
    return [MedicalDocument.model_validate(row) for row in rows]


@router.get("/categories", response_model=List[DocumentCategory])
async def list_categories(auth: AuthContext = Depends(get_auth_context)) -> List[DocumentCategory]:
    rows = await auth.supabase.select(
        "health_document_categories",
        params={
            "select": "*",
            "family_id": f"eq.{auth.family_id}",
            "order": "sort_order.asc",
        },
    )
    return [DocumentCategory.model_validate(row) for row in rows]


@router.post("/categories/seed", response_model=List[DocumentCategory])
async def seed_categories(auth: AuthContext = Depends(get_auth_context)) -> List[DocumentCategory]:
    """Create the default categories for the family if they are missing."""
    require_editor(auth)
    await auth.supabase.rpc("seed_document_categories", {"p_family_id": auth.family_id})
    return await list_categories(auth)


@router.post("/upload-path", response_model=DocumentPathResponse)
async def create_upload_path(
    payload: DocumentPathRequest,
    auth: AuthContext = Depends(get_auth_context),
) -> DocumentPathResponse:
    require_editor(auth)
    member = await load_member(auth, payload.member_id)
    return DocumentPathResponse(
        bucket=BUCKET,
        file_path=build_document_path(auth.family_id, member["id"], payload.file_name),
    )


@router.get("/{document_id}", response_model=MedicalDocument)
async def get_document(
    document_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> MedicalDocument:
    return MedicalDocument.model_validate(await _load_document(auth, document_id))


@router.get("/{document_id}/url", response_model=SignedUrlResponse)
async def get_document_url(
    document_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> SignedUrlResponse:
    document = await _load_document(auth, document_id)
    url = await auth.storage().create_signed_url(BUCKET, document["file_path"], SIGNED_URL_TTL)
    return SignedUrlResponse(url=url, expires_in=SIGNED_URL_TTL)


@router.post("", response_model=MedicalDocument, status_code=201)
async def create_document(
    payload: MedicalDocumentCreate,
    auth: AuthContext = Depends(get_auth_context),
) -> MedicalDocument:
    """Register a file the client already uploaded to the documents bucket."""
    require_editor(auth)
    member = await load_member(auth, payload.member_id)
    if not payload.file_path.startswith(f"{auth.family_id}/{member['id']}/"):
        raise HTTPException(status_code=400, detail="file_path is outside the member's folder")
    row = payload.model_dump(mode="json")
    row.update(
        {
            "family_id": auth.family_id,
            "member_id": member["id"],
            "uploaded_by": auth.user_id,
        }
    )
    if not row.get("file_name"):
        row["file_name"] = payload.file_path.rsplit("/", 1)[-1]
    created = await auth.supabase.insert("medical_documents", row, params={"select": DOCUMENT_SELECT})
    if not created:
        raise HTTPException(status_code=500, detail="Document was not saved")
    logger.info("document registered", extra={"member_id": member["id"], "path": payload.file_path})
    return MedicalDocument.model_validate(created[0])


@router.patch("/{document_id}", response_model=MedicalDocument)
async def update_document(
    document_id: str,
    payload: MedicalDocumentUpdate,
    auth: AuthContext = Depends(get_auth_context),
) -> MedicalDocument:
    require_editor(auth)
    existing = await _load_document(auth, document_id)
    changes = payload.model_dump(mode="json", exclude_unset=True)
    if not changes:
        return MedicalDocument.model_validate(existing)
    changes["updated_at"] = datetime.now(timezone.utc).isoformat()
    updated = await auth.supabase.update(
        "medical_documents",
        changes,
        params={
            "id": f"eq.{existing['id']}",
            "family_id": f"eq.{auth.family_id}",
            "select": DOCUMENT_SELECT,
        },
    )
    return MedicalDocument.model_validate((updated or [existing])[0])


@router.delete("/{document_id}", status_code=204)
async def delete_document(
    document_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> None:
    require_admin(auth)
    document = await _load_document(auth, document_id)
    try:
        await auth.storage().remove(BUCKET, [document["file_path"]])
    except (HTTPException, httpx.HTTPError) as exc:
        logger.warning(
            "document file removal failed",
            extra={"document_id": document["id"], "error": str(exc)},
        )
    await auth.supabase.delete(
        "medical_documents",
        params={"id": f"eq.{document['id']}", "family_id": f"eq.{auth.family_id}"},
    )
    return None
