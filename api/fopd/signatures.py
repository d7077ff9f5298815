"""Encrypted signature persistence and co-owner completion queries."""
import binascii
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .audit import AuditEvent, append_audit
from .config import REQUIRED_CO_OWNERS
from .crypto import DecryptionError, decrypt_data, encrypt_data, generate_hash, server_timestamp
from .doctypes import DocumentType
from .errors import IntegrityFailure, SignatureConflict, ValidationFailed
from .models import AgreementTemplate, InvestorSignature
from .sessions import SIGNED, advance_status, require_verified_session
from .templates import active_templates_by_type
from .utils import b64png_to_bytes, utcnow

logger = logging.getLogger(__name__)

MAX_SIGNATURE_BYTES = 2 * 1024 * 1024


def check_duplicate(session: Session, investor_id: int, template_id: int, property_id: int) -> Optional[InvestorSignature]:
    return session.exec(
        select(InvestorSignature).where(
            InvestorSignature.investor_id == investor_id,
            InvestorSignature.template_id == template_id,
            InvestorSignature.property_id == property_id,
        )
    ).first()


def _validate_data_url(signature_data_url: str) -> None:
    if not signature_data_url or not signature_data_url.startswith("data:image/"):
        raise ValidationFailed("signature must be an image data URL", field="signature_data_url")
    try:
        raw = b64png_to_bytes(signature_data_url)
    except (binascii.Error, ValueError):
        raise ValidationFailed("signature image is not valid base64", field="signature_data_url") from None
    if not raw:
        raise ValidationFailed("signature image is empty", field="signature_data_url")
    if len(raw) > MAX_SIGNATURE_BYTES:
        raise ValidationFailed("signature image is too large", field="signature_data_url")


def save_signature(
    session: Session,
    session_token: str,
    signature_data_url: str,
    consent_given: bool,
    client_ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    now: Optional[datetime] = None,
) -> InvestorSignature:
    """Capture a signature against a verified session.

    Investor, template and property always come from the session row. The
    unique constraint on (investor, template, property) is the final guard:
    the losing side of a concurrent race gets :class:`SignatureConflict`.
    """
    now = now or utcnow()
    sess = require_verified_session(session, session_token, now=now)
    if not consent_given:
        raise ValidationFailed("explicit consent is required to sign", field="consent_given")
    _validate_data_url(signature_data_url)

    existing = check_duplicate(session, sess.investor_id, sess.template_id, sess.property_id)
    if existing:
        raise SignatureConflict(
            "Duplicate signature: This investor has already signed this document for this property",
            existing_signature_id=existing.id,
        )

    signature = InvestorSignature(
        session_id=sess.id,
        investor_id=sess.investor_id,
        template_id=sess.template_id,
        property_id=sess.property_id,
        encrypted_signature_data=encrypt_data(signature_data_url),
        signature_hash=generate_hash(signature_data_url),
        ip_address=client_ip,
        user_agent=user_agent,
        signed_at=now,
        consent_given=True,
        server_timestamp=server_timestamp(now),
    )
    session.add(signature)
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        logger.warning(
            "concurrent duplicate signature rejected: investor=%s template=%s property=%s",
            sess.investor_id, sess.template_id, sess.property_id,
        )
        raise SignatureConflict("Duplicate signature: This signature has already been recorded") from None

    advance_status(sess, SIGNED)
    session.add(sess)
    append_audit(
        session,
        AuditEvent.SIGNATURE_CAPTURED,
        investor_id=signature.investor_id,
        session_id=sess.id,
        property_id=signature.property_id,
        meta={
            "signature_hash": signature.signature_hash,
            "server_timestamp": signature.server_timestamp,
            "template_id": signature.template_id,
            "consent_given": signature.consent_given,
        },
        ip=client_ip,
        ua=user_agent,
        commit=False,
    )
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise SignatureConflict("Duplicate signature: This signature has already been recorded") from None
    session.refresh(signature)
    return signature


def get_investor_signatures(session: Session, investor_id: int, property_id: Optional[int] = None) -> List[InvestorSignature]:
    stmt = select(InvestorSignature).where(InvestorSignature.investor_id == investor_id)
    if property_id is not None:
        stmt = stmt.where(InvestorSignature.property_id == property_id)
    return session.exec(stmt.order_by(InvestorSignature.signed_at)).all()


def get_property_signatures(session: Session, property_id: int) -> List[InvestorSignature]:
    return session.exec(
        select(InvestorSignature).where(InvestorSignature.property_id == property_id).order_by(InvestorSignature.id)
    ).all()


def get_investor_signature_status(session: Session, investor_id: int) -> List[Dict]:
    rows = []
    for sig in get_investor_signatures(session, investor_id):
        template = session.get(AgreementTemplate, sig.template_id)
        rows.append({
            "template_id": sig.template_id,
            "property_id": sig.property_id,
            "document_type": template.template_type if template else None,
            "signed_at": sig.signed_at,
        })
    return rows


def get_property_signature_status(session: Session, property_id: int) -> Dict:
    """Count distinct signing investors per active template.

    Distinct counting holds even if duplicate rows ever slipped past the
    unique constraint.
    """
    templates = active_templates_by_type(session)
    signatures = get_property_signatures(session, property_id)
    per_template = {}
    for doc_type in DocumentType:
        template = templates.get(doc_type)
        if template is None:
            per_template[doc_type.value] = {
                "template_id": None,
                "template_name": None,
                "signed_count": 0,
                "required_count": REQUIRED_CO_OWNERS,
                "is_complete": False,
                "signed_investor_ids": [],
            }
            continue
        investors = sorted({s.investor_id for s in signatures if s.template_id == template.id})
        per_template[doc_type.value] = {
            "template_id": template.id,
            "template_name": template.name,
            "signed_count": len(investors),
            "required_count": REQUIRED_CO_OWNERS,
            "is_complete": len(investors) >= REQUIRED_CO_OWNERS,
            "signed_investor_ids": investors,
        }
    return {
        "property_id": property_id,
        "per_template": per_template,
        "all_complete": all(entry["is_complete"] for entry in per_template.values()),
    }


def decrypt_signature(signature: InvestorSignature) -> str:
    """Return the plaintext data URL, checked against the stored hash."""
    try:
        plain = decrypt_data(signature.encrypted_signature_data)
    except DecryptionError as exc:
        raise IntegrityFailure(f"signature {signature.id} could not be decrypted: {exc}") from exc
    if generate_hash(plain) != signature.signature_hash:
        raise IntegrityFailure(f"signature {signature.id} does not match its recorded hash")
    return plain


def decrypt_signature_image(signature: InvestorSignature) -> bytes:
    plain = decrypt_signature(signature)
    try:
        return b64png_to_bytes(plain)
    except (binascii.Error, ValueError) as exc:
        raise IntegrityFailure(f"signature {signature.id} is not a valid image payload") from exc


def verify_signature_integrity(signature: InvestorSignature) -> bool:
    try:
        decrypt_signature(signature)
    except IntegrityFailure:
        return False
    return True
