from typing import Optional
from fastapi import APIRouter, Depends, Header, Request
from sqlmodel import Session

from ..db import get_session
from ..payments import handle_webhook

router = APIRouter()


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_tap_signature: Optional[str] = Header(default=None, alias="X-Tap-Signature"),
    session: Session = Depends(get_session),
):
    # the signature covers the raw bytes, so the body is read before any parsing
    raw = await request.body()
    return handle_webhook(session, raw, x_tap_signature)
