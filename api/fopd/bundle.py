"""DLD export bundle: three aggregated PDFs, the co-owner CSV and a manifest.

An export runs validate, gather, render, tabulate, describe, package and
record in that order. Nothing is recorded unless the archive was fully
assembled, hashed and stored; the audit trail notes every attempt either way.
"""
import base64
import json
import logging
import zipfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Dict, List, Optional

from sqlmodel import Session, select

from . import storage
from .audit import AuditEvent, append_audit
from .crypto import generate_hash
from .dld_csv import build_csv, co_owner_roster, get_property, validate_export
from .doctypes import DocumentType
from .errors import ExportFailed, IntegrityFailure, PreconditionFailed, SigningError, SigningIncomplete
from .layout import SignerEntry
from .models import AgreementTemplate, DldExport, Investor, InvestorSignature, Property, SignedDocument
from .rendering import render_aggregated
from .signatures import decrypt_signature_image, get_property_signatures
from .templates import require_active_templates
from .utils import utcnow

logger = logging.getLogger(__name__)

# 1x1 half-transparent green PNG drawn in place of a signature that fails its integrity check
PLACEHOLDER_SIGNATURE_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="
)
RENDER_WORKERS = 3
DECRYPT_WORKERS = 4


@dataclass
class BundleResult:
    zip_bytes: bytes
    bundle_hash: str
    export_id: int
    filename: str
    file_path: str


def bundle_filename(property_id: int, now: datetime) -> str:
    return f"property-{property_id}-dld-bundle-{now:%Y%m%d}.zip"


def csv_filename(property_id: int) -> str:
    return f"property-{property_id}-co-owners.csv"


def _signer_entry(signature: InvestorSignature, investor: Investor) -> SignerEntry:
    intact = True
    try:
        image = decrypt_signature_image(signature)
    except IntegrityFailure as exc:
        logger.error("%s; drawing placeholder image", exc.message)
        image = PLACEHOLDER_SIGNATURE_PNG
        intact = False
    return SignerEntry(
        investor=investor,
        image=image,
        signed_at=signature.signed_at,
        server_timestamp=signature.server_timestamp,
        ip_address=signature.ip_address,
        signature_hash=signature.signature_hash,
        intact=intact,
    )


def _render_document(
    template: AgreementTemplate,
    prop: Property,
    signatures: List[InvestorSignature],
    investors: List[Investor],
    language: str,
) -> bytes:
    by_id = {i.id: i for i in investors}
    with ThreadPoolExecutor(max_workers=DECRYPT_WORKERS) as pool:
        entries = list(pool.map(lambda s: _signer_entry(s, by_id[s.investor_id]), signatures))
    return render_aggregated(template, prop, entries, investors, language)


def _manifest(
    prop: Property,
    requested_by: str,
    now: datetime,
    investors: List[Investor],
    signature_count: int,
    documents: Dict[DocumentType, str],
    csv_hash: str,
) -> str:
    manifest = {
        "property_id": prop.id,
        "property_title": prop.title,
        "generated_at": now.isoformat() + "Z",
        "generated_by": requested_by,
        "total_investors": len(investors),
        "total_signatures": signature_count,
        "documents": {
            doc_type.value: {"filename": f"documents/{doc_type.bundle_filename}", "sha256": digest}
            for doc_type, digest in documents.items()
        },
        "data": {
            "co_owners_csv": {"filename": f"data/{csv_filename(prop.id)}", "sha256": csv_hash},
        },
        "investors": [
            {"investor_id": i.id, "full_name": i.full_name, "email": i.email} for i in investors
        ],
    }
    return json.dumps(manifest, indent=2, ensure_ascii=False)


def _package(property_id: int, pdfs: Dict[DocumentType, bytes], csv_text: str, manifest: str) -> bytes:
    buf = BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for doc_type in DocumentType:
            zf.writestr(f"documents/{doc_type.bundle_filename}", pdfs[doc_type])
        zf.writestr(f"data/{csv_filename(property_id)}", csv_text)
        zf.writestr("manifest.json", manifest)
    return buf.getvalue()


def _record_failure(session: Session, property_id: int, requested_by: str, error: SigningError) -> None:
    session.rollback()
    append_audit(
        session,
        AuditEvent.BUNDLE_EXPORT_FAILED,
        property_id=property_id,
        meta={
            "requested_by": requested_by,
            "status_code": error.status_code,
            "reasons": getattr(error, "reasons", [error.message]),
        },
    )


def orchestrate_bundle_creation(
    session: Session,
    property_id: int,
    requested_by: str,
    language: str = "en",
    now: Optional[datetime] = None,
) -> BundleResult:
    now = now or utcnow()
    get_property(session, property_id)
    append_audit(
        session,
        AuditEvent.BUNDLE_EXPORT_STARTED,
        property_id=property_id,
        meta={"requested_by": requested_by},
    )
    try:
        return _create_bundle(session, property_id, requested_by, language, now)
    except SigningError as exc:
        _record_failure(session, property_id, requested_by, exc)
        raise
    except Exception as exc:
        logger.exception("bundle export failed for property %s", property_id)
        error = ExportFailed(f"Failed to generate DLD bundle: {exc.__class__.__name__}")
        _record_failure(session, property_id, requested_by, error)
        raise error from exc


def _create_bundle(session: Session, property_id: int, requested_by: str, language: str, now: datetime) -> BundleResult:
    # validate
    reasons, signatures_short = validate_export(session, property_id)
    if reasons:
        raise PreconditionFailed(reasons, status_code=409 if signatures_short else 400)

    # gather
    prop = get_property(session, property_id)
    investors = [investor for investor, _ in co_owner_roster(session, property_id)]
    signatures = get_property_signatures(session, property_id)
    templates = require_active_templates(session)
    per_type = {}
    for doc_type in DocumentType:
        template = templates[doc_type]
        doc_signatures = [s for s in signatures if s.template_id == template.id]
        signed_by = {s.investor_id for s in doc_signatures}
        if len(signed_by) < prop.total_fractions:
            raise SigningIncomplete(
                f"Not all investors signed {doc_type.value}: {len(signed_by)}/{prop.total_fractions}",
                document_type=doc_type.value,
            )
        unknown = signed_by - {i.id for i in investors}
        if unknown:
            raise IntegrityFailure(
                f"signatures for {doc_type.value} from investors without a fraction: {sorted(unknown)}"
            )
        per_type[doc_type] = (template, doc_signatures)

    # render, one document type per worker
    with ThreadPoolExecutor(max_workers=RENDER_WORKERS) as pool:
        futures = {
            doc_type: pool.submit(_render_document, template, prop, doc_signatures, investors, language)
            for doc_type, (template, doc_signatures) in per_type.items()
        }
        pdfs = {doc_type: future.result() for doc_type, future in futures.items()}
    pdf_hashes = {doc_type: generate_hash(pdf) for doc_type, pdf in pdfs.items()}

    # tabulate
    csv_text = build_csv(session, property_id)
    csv_hash = generate_hash(csv_text)

    # describe and package
    manifest = _manifest(prop, requested_by, now, investors, len(signatures), pdf_hashes, csv_hash)
    zip_bytes = _package(property_id, pdfs, csv_text, manifest)
    bundle_hash = generate_hash(zip_bytes)

    # record
    filename = bundle_filename(property_id, now)
    file_path = f"exports/{filename}"
    document_paths = {}
    for doc_type, pdf in pdfs.items():
        key = f"signed-documents/property-{property_id}/{now:%Y%m%d}-{doc_type.bundle_filename}"
        storage.put_bytes(key, pdf, "application/pdf")
        document_paths[doc_type] = key
    storage.put_bytes(file_path, zip_bytes, "application/zip")

    for doc_type, (template, _) in per_type.items():
        session.add(SignedDocument(
            property_id=property_id,
            document_type=doc_type.value,
            language=language,
            file_path=document_paths[doc_type],
            file_hash=pdf_hashes[doc_type],
            template_version=template.version,
            all_signatures_complete=True,
            sealed_at=now,
            generated_at=now,
        ))
    export = DldExport(
        property_id=property_id,
        requested_by=requested_by,
        bundle_hash=bundle_hash,
        file_path=file_path,
        generated_at=now,
    )
    session.add(export)
    session.flush()
    append_audit(
        session,
        AuditEvent.BUNDLE_EXPORTED,
        property_id=property_id,
        meta={
            "export_id": export.id,
            "requested_by": requested_by,
            "bundle_hash": bundle_hash,
            "documents": {t.value: h for t, h in pdf_hashes.items()},
            "csv_hash": csv_hash,
        },
        commit=False,
    )
    session.commit()
    session.refresh(export)
    logger.info("DLD bundle %s exported for property %s (%s)", filename, property_id, bundle_hash)
    return BundleResult(
        zip_bytes=zip_bytes,
        bundle_hash=bundle_hash,
        export_id=export.id,
        filename=filename,
        file_path=file_path,
    )


def get_export_history(session: Session, property_id: int) -> List[DldExport]:
    return session.exec(
        select(DldExport).where(DldExport.property_id == property_id).order_by(DldExport.generated_at.desc(), DldExport.id.desc())
    ).all()
