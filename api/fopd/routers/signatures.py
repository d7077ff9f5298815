from typing import Optional
from fastapi import APIRouter, Depends, Request, status
from sqlmodel import Session

from ..auth import AccessContext, require_investor, require_investor_or_admin, resolve_access_context
from ..config import OTP_TTL_MINUTES
from ..db import get_session
from ..email import send_otp_email
from ..otp import OtpStore, get_otp_store
from ..schemas import CreateSessionRequest, SubmitSignatureRequest, VerifySessionRequest
from ..sessions import create_session, verify_session
from ..signatures import get_investor_signature_status, get_investor_signatures, get_property_signature_status, save_signature

router = APIRouter()


def _client(request: Request):
    ip = request.client.host if request.client else None
    return ip, request.headers.get("user-agent")


def _deliver_otp(destination, code, template):
    send_otp_email(destination, code, template.name, OTP_TTL_MINUTES)


@router.post("/create-session")
def create_signing_session(
    body: CreateSessionRequest,
    request: Request,
    session: Session = Depends(get_session),
    otp_store: OtpStore = Depends(get_otp_store),
    ctx: AccessContext = Depends(require_investor),
):
    ip, ua = _client(request)
    sess = create_session(
        session,
        otp_store,
        investor_id=ctx.investor_id,
        property_id=body.property_id,
        template_id=body.template_id,
        client_ip=ip,
        user_agent=ua,
        deliver=_deliver_otp,
    )
    return {
        "session_token": sess.session_token,
        "expires_at": sess.expires_at,
        "status": sess.status,
        "message": "A one-time code has been sent to your registered email",
    }


@router.post("/verify-session")
def verify_signing_session(
    body: VerifySessionRequest,
    session: Session = Depends(get_session),
    otp_store: OtpStore = Depends(get_otp_store),
):
    sess = verify_session(session, otp_store, body.session_token, body.otp)
    return {"success": True, "status": sess.status, "expires_at": sess.expires_at}


@router.post("/submit-signature", status_code=status.HTTP_201_CREATED)
def submit_signature(
    body: SubmitSignatureRequest,
    request: Request,
    session: Session = Depends(get_session),
):
    # the session token is the credential; ids come from the session row
    ip, ua = _client(request)
    signature = save_signature(
        session,
        body.session_token,
        body.signature_data_url,
        body.consent_given,
        client_ip=ip,
        user_agent=ua,
    )
    return {
        "success": True,
        "signature_id": signature.id,
        "signature_hash": signature.signature_hash,
        "server_timestamp": signature.server_timestamp,
    }


@router.get("/investor/{investor_id}")
def investor_signatures(
    investor_id: int,
    property_id: Optional[int] = None,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_investor_or_admin),
):
    rows = get_investor_signatures(session, investor_id, property_id)
    return [
        {
            "id": s.id,
            "template_id": s.template_id,
            "property_id": s.property_id,
            "signature_hash": s.signature_hash,
            "signed_at": s.signed_at,
            "server_timestamp": s.server_timestamp,
            "consent_given": s.consent_given,
        }
        for s in rows
    ]


@router.get("/investor/{investor_id}/status")
def investor_status(
    investor_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_investor_or_admin),
):
    return {"investor_id": investor_id, "signatures": get_investor_signature_status(session, investor_id)}


@router.get("/property/{property_id}/status")
def property_status(
    property_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    return get_property_signature_status(session, property_id)
