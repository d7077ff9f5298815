import logging
from datetime import date, datetime
from typing import List, Optional, Tuple

from sqlmodel import Session, select

from . import storage
from .audit import AuditEvent, append_audit
from .crypto import generate_hash
from .dld_csv import co_owner_roster, get_property
from .doctypes import DocumentType
from .errors import IntegrityFailure, NotFound, SigningIncomplete, ValidationFailed
from .layout import SignerEntry
from .models import Investor, SignedDocument
from .rendering import render_single_signed
from .signatures import check_duplicate, decrypt_signature_image, get_property_signature_status
from .templates import active_template_for
from .utils import sanitize_name, utcnow

logger = logging.getLogger(__name__)

LANGUAGES = ("en", "ar")


def generate_document_filename(doc_type: DocumentType, investor_name: str, property_id: int, today: date) -> str:
    return f"{doc_type.value}_{sanitize_name(investor_name)}_{property_id}_{today.isoformat()}.pdf"


def generate_signed_document(
    session: Session,
    property_id: int,
    document_type,
    investor_id: int,
    language: str = "en",
    now: Optional[datetime] = None,
) -> Tuple[SignedDocument, bytes]:
    """Render, store and record one investor's personal signed copy."""
    now = now or utcnow()
    if language not in LANGUAGES:
        raise ValidationFailed(f"unsupported language {language!r}", field="language")
    try:
        doc_type = DocumentType.parse(document_type)
    except ValueError as exc:
        raise ValidationFailed(str(exc), field="document_type") from None

    prop = get_property(session, property_id)
    investor = session.get(Investor, investor_id)
    if not investor:
        raise NotFound(f"Investor {investor_id} not found")
    template = active_template_for(session, doc_type)
    if template is None:
        raise NotFound(f"No active template for {doc_type.value}")
    signature = check_duplicate(session, investor.id, template.id, prop.id)
    if signature is None:
        raise SigningIncomplete(f"{investor.full_name} has not signed the {doc_type.display_name}")

    try:
        image = decrypt_signature_image(signature)
    except IntegrityFailure as exc:
        # drawn as "[signature unavailable]"
        logger.error("%s; rendering without image", exc.message)
        image = None
    signer = SignerEntry(
        investor=investor,
        image=image,
        signed_at=signature.signed_at,
        server_timestamp=signature.server_timestamp,
        ip_address=signature.ip_address,
        signature_hash=signature.signature_hash,
    )
    co_owners = [owner for owner, _ in co_owner_roster(session, prop.id)] if doc_type.names_co_owners else None
    pdf = render_single_signed(template, investor, prop, signer, language, co_owners=co_owners, today=now.date())

    filename = generate_document_filename(doc_type, investor.full_name, prop.id, now.date())
    key = f"signed-documents/property-{prop.id}/{language}/{filename}"
    storage.put_bytes(key, pdf, "application/pdf")

    complete = get_property_signature_status(session, prop.id)["all_complete"]
    document = SignedDocument(
        property_id=prop.id,
        document_type=doc_type.value,
        investor_id=investor.id,
        language=language,
        file_path=key,
        file_hash=generate_hash(pdf),
        template_version=template.version,
        all_signatures_complete=complete,
        sealed_at=now,
        generated_at=now,
    )
    session.add(document)
    session.flush()
    append_audit(
        session,
        AuditEvent.DOCUMENT_SEALED,
        investor_id=investor.id,
        property_id=prop.id,
        meta={
            "document_id": document.id,
            "document_type": doc_type.value,
            "language": language,
            "file_hash": document.file_hash,
            "template_version": template.version,
            "signature_hash": signature.signature_hash,
        },
        commit=False,
    )
    session.commit()
    session.refresh(document)
    return document, pdf


def list_signed_documents(session: Session, property_id: int) -> List[SignedDocument]:
    return session.exec(
        select(SignedDocument).where(SignedDocument.property_id == property_id).order_by(SignedDocument.id)
    ).all()


def get_signed_document(session: Session, document_id: int) -> SignedDocument:
    document = session.get(SignedDocument, document_id)
    if not document:
        raise NotFound("Document not found")
    return document


def download_signed_document(session: Session, document_id: int) -> Tuple[SignedDocument, bytes]:
    """Fetch the stored PDF; a hash mismatch means the object was altered."""
    document = get_signed_document(session, document_id)
    data = storage.get_bytes(document.file_path)
    if generate_hash(data) != document.file_hash:
        logger.error("stored PDF for document %s does not match its recorded hash", document.id)
        raise IntegrityFailure("Stored document does not match its recorded hash")
    return document, data
