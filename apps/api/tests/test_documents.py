import asyncio
from datetime import datetime, timezone
from uuid import uuid4

import httpx
import pytest
from fastapi import HTTPException

from family_health.routes import documents
from family_health.routes.documents import (
    build_document_path,
    create_document,
    delete_document,
    list_documents,
    sanitize_file_name,
)
from family_health.schemas import MedicalDocumentCreate
from family_health.supabase import SupabaseStorage
from supabase_fakes import FakeSupabase, make_auth, member_row


def test_file_names_are_sanitized() -> None:
    assert sanitize_file_name("lab result (1).pdf") == "lab_result__1_.pdf"


def test_document_path_is_scoped_to_family_and_member() -> None:
    now = datetime(2025, 6, 15, 8, 30, tzinfo=timezone.utc)
    path = build_document_path("family-1", "member-1", "x ray.png", now)
    assert path == f"family-1/member-1/{int(now.timestamp() * 1000)}-x_ray.png"


def test_create_rejects_path_outside_member_folder() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="parent")
    member = member_row(auth)
    fake.select_queue["family_members"] = [[member]]
    payload = MedicalDocumentCreate(member_id=member["id"], title="Lab", file_path="other-family/x/1-lab.pdf")

    with pytest.raises(HTTPException) as exc:
        asyncio.run(create_document(payload, auth=auth))

    assert exc.value.status_code == 400
    assert not fake.calls_for("insert")


def test_create_registers_uploaded_file() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="parent")
    member = member_row(auth)
    fake.select_queue["family_members"] = [[member]]
    path = f"{auth.family_id}/{member['id']}/1718440200000-lab.pdf"

    document = asyncio.run(
        create_document(MedicalDocumentCreate(member_id=member["id"], title="Lab", file_path=path), auth=auth)
    )

    _, _, row, _ = fake.calls_for("insert", "medical_documents")[0]
    assert row["file_name"] == "1718440200000-lab.pdf"
    assert row["uploaded_by"] == auth.user_id
    assert document.file_path == path


def test_search_term_is_stripped_of_filter_syntax() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="viewer")

    asyncio.run(list_documents(member_id=None, category_id=None, q="blood, (test)*", auth=auth))

    _, _, params = fake.calls_for("select", "medical_documents")[0]
    assert params["or"] == "(title.ilike.*blood   test*,notes.ilike.*blood   test*)"


def test_delete_removes_row_even_when_storage_fails(monkeypatch) -> None:
    document_id = str(uuid4())
    fake = FakeSupabase()
    auth = make_auth(fake, role="admin")
    fake.select_queue["medical_documents"] = [
        [
            {
                "id": document_id,
                "family_id": auth.family_id,
                "member_id": str(uuid4()),
                "title": "Lab",
                "file_path": "f/m/1-lab.pdf",
            }
        ]
    ]

    async def failing_remove(self, bucket, paths):
        raise httpx.ConnectError("storage down")

    monkeypatch.setattr(SupabaseStorage, "remove", failing_remove)

    asyncio.run(delete_document(document_id, auth=auth))

    _, table, params = fake.calls_for("delete")[0]
    assert table == "medical_documents"
    assert params["id"] == f"eq.{document_id}"
    assert documents.BUCKET == "health-documents"


def test_parent_cannot_delete_document() -> None:
    fake = FakeSupabase()
    auth = make_auth(fake, role="parent")

    with pytest.raises(HTTPException) as exc:
        asyncio.run(delete_document(str(uuid4()), auth=auth))

    assert exc.value.status_code == 403
    assert not fake.calls
