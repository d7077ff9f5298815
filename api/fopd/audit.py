"""Append-only, hash-chained audit trail for signing activity."""
from enum import Enum
from typing import Optional, Tuple

from sqlalchemy import update
from sqlmodel import Session, select

from .models import AuditChainLock, SignatureAuditLog
from .utils import canonical_json, sha256_text

GENESIS_HASH = "0" * 64


class AuditEvent(str, Enum):
    SESSION_CREATED = "session_created"
    OTP_VERIFIED = "otp_verified"
    SIGNATURE_CAPTURED = "signature_captured"
    DOCUMENT_SEALED = "document_sealed"
    TEMPLATE_UPDATED = "template_updated"
    BUNDLE_EXPORT_STARTED = "bundle_export_started"
    BUNDLE_EXPORT_FAILED = "bundle_export_failed"
    BUNDLE_EXPORTED = "bundle_exported"
    PAYMENT_CAPTURED = "payment_captured"
    RESERVATION_CREATED = "reservation_created"
    INVITATIONS_SENT = "invitations_sent"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_DECLINED = "invitation_declined"


def _entry_payload(entry: SignatureAuditLog) -> str:
    return canonical_json({
        "event_type": entry.event_type,
        "investor_id": entry.investor_id,
        "session_id": entry.session_id,
        "property_id": entry.property_id,
        "meta": entry.meta_json,
        "ip": entry.ip_address,
        "ua": entry.user_agent,
        "at": entry.timestamp.isoformat(),
    })


def _lock_chain(session: Session) -> None:
    # writing the lock row holds the database write lock (SQLite) or the row
    # lock (Postgres) until the caller commits, so appends link one at a time
    bumped = session.execute(
        update(AuditChainLock).where(AuditChainLock.id == 1).values(appended=AuditChainLock.appended + 1)
    )
    if bumped.rowcount == 0:
        session.add(AuditChainLock(id=1, appended=1))
        session.flush()


def _chain_tail(session: Session) -> Optional[SignatureAuditLog]:
    return session.exec(select(SignatureAuditLog).order_by(SignatureAuditLog.id.desc())).first()


def append_audit(
    session: Session,
    event_type: AuditEvent,
    *,
    investor_id: Optional[int] = None,
    session_id: Optional[int] = None,
    property_id: Optional[int] = None,
    meta: Optional[dict] = None,
    ip: Optional[str] = None,
    ua: Optional[str] = None,
    commit: bool = True,
) -> SignatureAuditLog:
    """Append one entry to the trail.

    ``meta`` must never carry plaintext signature data or OTP codes; callers
    pass hashes and ids only. With ``commit=False`` the entry joins the
    caller's transaction instead of committing on its own.
    """
    _lock_chain(session)
    last = _chain_tail(session)
    prev_hash = last.hash if last and last.hash else GENESIS_HASH
    entry = SignatureAuditLog(
        event_type=AuditEvent(event_type).value,
        investor_id=investor_id,
        session_id=session_id,
        property_id=property_id,
        meta_json=canonical_json(meta or {}),
        ip_address=ip,
        user_agent=ua,
        prev_hash=prev_hash,
    )
    entry.hash = sha256_text(prev_hash + _entry_payload(entry))
    session.add(entry)
    if commit:
        session.commit()
    else:
        session.flush()
    return entry


def verify_audit_chain(session: Session) -> Tuple[bool, Optional[int]]:
    """Walk the trail in insertion order; return ``(ok, first_broken_id)``."""
    prev_hash = GENESIS_HASH
    for entry in session.exec(select(SignatureAuditLog).order_by(SignatureAuditLog.id)).all():
        if entry.prev_hash != prev_hash:
            return False, entry.id
        if entry.hash != sha256_text(prev_hash + _entry_payload(entry)):
            return False, entry.id
        prev_hash = entry.hash
    return True, None


def list_audit_entries(session: Session, property_id: Optional[int] = None, event_type: Optional[str] = None):
    stmt = select(SignatureAuditLog)
    if property_id is not None:
        stmt = stmt.where(SignatureAuditLog.property_id == property_id)
    if event_type is not None:
        stmt = stmt.where(SignatureAuditLog.event_type == event_type)
    return session.exec(stmt.order_by(SignatureAuditLog.id)).all()
