from datetime import datetime

import pytest

from conftest import ADMIN_HEADERS, add_investor, add_signature, build_sold_property, investor_headers
from fopd.crypto import generate_hash
from fopd.documents import (
    download_signed_document,
    generate_document_filename,
    generate_signed_document,
    list_signed_documents,
)
from fopd.doctypes import DocumentType
from fopd.errors import IntegrityFailure, NotFound, SigningIncomplete, ValidationFailed
from fopd.models import SignedDocument

NOW = datetime(2026, 10, 19, 12, 0, 0)


def test_filename_is_sanitized():
    name = generate_document_filename(DocumentType.POWER_OF_ATTORNEY, "Sara O'Neil", 3, NOW.date())
    assert name == "power_of_attorney_Sara_O_Neil_3_2026-10-19.pdf"


def test_generate_stores_and_records_the_copy(session, mock_storage):
    prop, _, investors = build_sold_property(session)
    document, pdf = generate_signed_document(session, prop.id, "co_ownership", investors[0].id, now=NOW)
    assert pdf.startswith(b"%PDF")
    assert document.file_path == f"signed-documents/property-{prop.id}/en/co_ownership_Aisha_Rahman_{prop.id}_2026-10-19.pdf"
    assert mock_storage[document.file_path] == pdf
    assert document.file_hash == generate_hash(pdf)
    assert document.all_signatures_complete
    assert document.investor_id == investors[0].id
    assert [d.id for d in list_signed_documents(session, prop.id)] == [document.id]


def test_generate_arabic_copy(session, mock_storage):
    prop, _, investors = build_sold_property(session)
    document, _ = generate_signed_document(session, prop.id, DocumentType.JOP_DECLARATION, investors[1].id, language="ar", now=NOW)
    assert "/ar/" in document.file_path


def test_generate_requires_a_signature(session, mock_storage):
    prop, templates, investors = build_sold_property(session, sign=False)
    with pytest.raises(SigningIncomplete):
        generate_signed_document(session, prop.id, "co_ownership", investors[0].id, now=NOW)

    add_signature(session, investors[0], templates[DocumentType.CO_OWNERSHIP], prop)
    document, _ = generate_signed_document(session, prop.id, "co_ownership", investors[0].id, now=NOW)
    assert not document.all_signatures_complete


def test_generate_rejects_bad_input(session, mock_storage):
    prop, _, investors = build_sold_property(session)
    with pytest.raises(ValidationFailed):
        generate_signed_document(session, prop.id, "co_ownership", investors[0].id, language="fr")
    with pytest.raises(ValidationFailed):
        generate_signed_document(session, prop.id, "lease", investors[0].id)
    with pytest.raises(NotFound):
        generate_signed_document(session, prop.id, "co_ownership", 999)
    with pytest.raises(NotFound):
        generate_signed_document(session, 999, "co_ownership", investors[0].id)


def test_download_detects_altered_objects(session, mock_storage):
    prop, _, investors = build_sold_property(session)
    document, pdf = generate_signed_document(session, prop.id, "power_of_attorney", investors[2].id, now=NOW)
    assert download_signed_document(session, document.id)[1] == pdf

    mock_storage[document.file_path] = pdf + b"%tampered"
    with pytest.raises(IntegrityFailure):
        download_signed_document(session, document.id)
    with pytest.raises(NotFound):
        download_signed_document(session, 999)


def test_generate_endpoint_scopes_investors_to_their_own_copy(client, session):
    prop, _, investors = build_sold_property(session)
    body = {"property_id": prop.id, "document_type": "co_ownership"}

    r = client.post("/api/documents/generate", json=body, headers=investor_headers(investors[0]))
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    document_id = r.headers["x-document-id"]

    other = client.post(
        "/api/documents/generate",
        json={**body, "investor_id": investors[1].id},
        headers=investor_headers(investors[0]),
    )
    assert other.status_code == 403

    assert client.post("/api/documents/generate", json=body, headers=ADMIN_HEADERS).status_code == 400
    r = client.post("/api/documents/generate", json={**body, "investor_id": investors[1].id}, headers=ADMIN_HEADERS)
    assert r.status_code == 200

    download = client.get(f"/api/documents/{document_id}/download", headers=investor_headers(investors[0]))
    assert download.status_code == 200
    assert download.headers["x-document-hash"] == generate_hash(download.content)
    assert client.get(f"/api/documents/{document_id}/download", headers=investor_headers(investors[1])).status_code == 403

    listed = client.get(f"/api/documents/property/{prop.id}", headers=ADMIN_HEADERS).json()["documents"]
    assert len(listed) == 2


def test_generate_endpoint_for_unsigned_investor(client, session):
    prop, _, _ = build_sold_property(session, sign=False)
    outsider = add_investor(session, name="Noor Saleh")
    r = client.post(
        "/api/documents/generate",
        json={"property_id": prop.id, "document_type": "co_ownership"},
        headers=investor_headers(outsider),
    )
    assert r.status_code == 409


def test_download_checks_ownership_before_reading_storage(client, session, mock_storage):
    prop, _, investors = build_sold_property(session)
    r = client.post(
        "/api/documents/generate",
        json={"property_id": prop.id, "document_type": "co_ownership"},
        headers=investor_headers(investors[0]),
    )
    document = session.get(SignedDocument, int(r.headers["x-document-id"]))
    mock_storage[document.file_path] = b"altered"

    url = f"/api/documents/{document.id}/download"
    assert client.get(url, headers=investor_headers(investors[1])).status_code == 403
    assert client.get(url, headers=investor_headers(investors[0])).status_code == 422
    assert client.get("/api/documents/999/download", headers=ADMIN_HEADERS).status_code == 404
