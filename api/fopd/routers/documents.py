from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlmodel import Session

from ..auth import AccessContext, require_admin_access, resolve_access_context
from ..bundle import get_export_history, orchestrate_bundle_creation
from ..db import get_session
from ..documents import download_signed_document, generate_signed_document, get_signed_document, list_signed_documents
from ..schemas import GenerateDocumentRequest

router = APIRouter()


def _serialize_document(doc):
    return {
        "id": doc.id,
        "property_id": doc.property_id,
        "document_type": doc.document_type,
        "investor_id": doc.investor_id,
        "language": doc.language,
        "file_hash": doc.file_hash,
        "template_version": doc.template_version,
        "all_signatures_complete": doc.all_signatures_complete,
        "generated_at": doc.generated_at,
    }


@router.post("/generate")
def generate_document(
    body: GenerateDocumentRequest,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    if ctx.role == "admin":
        if body.investor_id is None:
            raise HTTPException(status.HTTP_400_BAD_REQUEST, "investor_id is required")
        investor_id = body.investor_id
    else:
        if body.investor_id is not None and body.investor_id != ctx.investor_id:
            raise HTTPException(status.HTTP_403_FORBIDDEN, "You can only generate your own documents")
        investor_id = ctx.investor_id
    document, pdf = generate_signed_document(
        session, body.property_id, body.document_type, investor_id, language=body.language
    )
    filename = document.file_path.rsplit("/", 1)[-1]
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Document-Id": str(document.id),
            "X-Document-Hash": document.file_hash,
        },
    )


@router.get("/property/{property_id}")
def property_documents(
    property_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_admin_access),
):
    return {"documents": [_serialize_document(d) for d in list_signed_documents(session, property_id)]}


@router.get("/{document_id}/download")
def download_document(
    document_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    document = get_signed_document(session, document_id)
    if ctx.role != "admin" and document.investor_id != ctx.investor_id:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Access denied for this document")
    document, data = download_signed_document(session, document_id)
    filename = document.file_path.rsplit("/", 1)[-1]
    return Response(
        content=data,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Document-Hash": document.file_hash,
        },
    )


@router.post("/export-dld-bundle/{property_id}")
def export_dld_bundle(
    property_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_admin_access),
):
    result = orchestrate_bundle_creation(session, property_id, requested_by=ctx.actor)
    return Response(
        content=result.zip_bytes,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "X-Bundle-Hash": result.bundle_hash,
            "X-Export-Id": str(result.export_id),
        },
    )


@router.get("/exports/{property_id}")
def export_history(
    property_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_admin_access),
):
    return {"exports": get_export_history(session, property_id)}
