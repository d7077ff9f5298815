"""Signing sessions: the OTP-gated credential for one signature attempt.

A session moves ``pending -> verified -> signed`` and never backwards.
Expiry is evaluated whenever a session is consumed; nothing sweeps stale
rows, and they are kept as evidence.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlmodel import Session, select

from .audit import AuditEvent, append_audit
from .config import SESSION_TTL_MINUTES
from .crypto import generate_secure_token
from .errors import NotFound, Unauthorized, ValidationFailed
from .models import AgreementTemplate, Investor, Property, SignatureSession
from .otp import OtpStore
from .utils import utcnow

logger = logging.getLogger(__name__)

PENDING = "pending"
VERIFIED = "verified"
SIGNED = "signed"
EXPIRED = "expired"

_TRANSITIONS = {
    PENDING: (VERIFIED, EXPIRED),
    VERIFIED: (SIGNED, EXPIRED),
    SIGNED: (),
    EXPIRED: (),
}


def advance_status(sess: SignatureSession, new_status: str) -> None:
    if new_status not in _TRANSITIONS[sess.status]:
        raise ValidationFailed(f"session cannot move from {sess.status} to {new_status}")
    sess.status = new_status


def is_expired(sess: SignatureSession, now: Optional[datetime] = None) -> bool:
    return (now or utcnow()) >= sess.expires_at


def create_session(
    session: Session,
    otp_store: OtpStore,
    investor_id: int,
    property_id: int,
    template_id: int,
    client_ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    now: Optional[datetime] = None,
    deliver=None,
) -> SignatureSession:
    """Open a pending session and issue its one-time code.

    ``deliver(destination, code, template)`` hands the code to the
    out-of-band channel; it is fire-and-forget and runs after the row is
    committed.
    """
    now = now or utcnow()
    investor = session.get(Investor, investor_id)
    if not investor:
        raise NotFound("investor not found")
    if not session.get(Property, property_id):
        raise NotFound("property not found")
    template = session.get(AgreementTemplate, template_id)
    if not template:
        raise NotFound("template not found")
    if not template.is_active:
        raise ValidationFailed("template is not active")

    sess = SignatureSession(
        investor_id=investor_id,
        property_id=property_id,
        template_id=template_id,
        session_token=generate_secure_token(48),
        status=PENDING,
        ip_address=client_ip,
        user_agent=user_agent,
        expires_at=now + timedelta(minutes=SESSION_TTL_MINUTES),
        created_at=now,
    )
    session.add(sess)
    session.flush()
    append_audit(
        session,
        AuditEvent.SESSION_CREATED,
        investor_id=investor_id,
        session_id=sess.id,
        property_id=property_id,
        meta={"template_id": template_id, "expires_at": sess.expires_at.isoformat()},
        ip=client_ip,
        ua=user_agent,
    )
    session.refresh(sess)

    code = otp_store.issue(sess.session_token, now=now)
    if deliver is not None:
        try:
            deliver(investor.email, code, template)
        except Exception:
            logger.exception("OTP delivery failed for session %s", sess.id)
    return sess


def get_session_by_token(session: Session, session_token: str) -> Optional[SignatureSession]:
    if not session_token:
        return None
    return session.exec(select(SignatureSession).where(SignatureSession.session_token == session_token)).first()


def verify_session(
    session: Session,
    otp_store: OtpStore,
    session_token: str,
    otp: str,
    now: Optional[datetime] = None,
) -> SignatureSession:
    now = now or utcnow()
    # the code is checked first so NotFound/Expired/Mismatch come from the OTP itself
    otp_store.verify(session_token, otp, now=now)
    sess = get_session_by_token(session, session_token)
    if not sess:
        raise NotFound("Session not found")
    if is_expired(sess, now):
        _mark_expired(session, sess)
        raise Unauthorized("Session has expired")
    if sess.status != PENDING:
        raise Unauthorized(f"Session is already {sess.status}")
    advance_status(sess, VERIFIED)
    sess.otp_verified = True
    session.add(sess)
    session.flush()
    append_audit(
        session,
        AuditEvent.OTP_VERIFIED,
        investor_id=sess.investor_id,
        session_id=sess.id,
        property_id=sess.property_id,
    )
    session.refresh(sess)
    return sess


def require_verified_session(session: Session, session_token: str, now: Optional[datetime] = None) -> SignatureSession:
    """Return the session only if it is ``verified`` and not yet expired."""
    now = now or utcnow()
    sess = get_session_by_token(session, session_token)
    if not sess:
        raise Unauthorized("Unauthorized: Invalid or expired session token")
    if sess.status != VERIFIED or is_expired(sess, now):
        if sess.status in (PENDING, VERIFIED) and is_expired(sess, now):
            _mark_expired(session, sess)
        raise Unauthorized("Unauthorized: Session not verified or has expired")
    return sess


def _mark_expired(session: Session, sess: SignatureSession) -> None:
    if sess.status in (PENDING, VERIFIED):
        advance_status(sess, EXPIRED)
        session.add(sess)
        session.commit()
