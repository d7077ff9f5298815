from typing import Optional
from fastapi import Depends, Header, HTTPException, Query, status
from pydantic import BaseModel
from sqlmodel import Session

from .config import ADMIN_ACCESS_TOKEN
from .db import get_session
from .models import Investor
from .utils import read_token


class AccessContext(BaseModel):
    role: str
    investor_id: Optional[int] = None
    actor: str = ""


def resolve_access_context(
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
    token: Optional[str] = Query(default=None),
    session: Session = Depends(get_session),
) -> AccessContext:
    candidate = x_access_token or token
    if not candidate:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing access token")
    if ADMIN_ACCESS_TOKEN and candidate == ADMIN_ACCESS_TOKEN:
        return AccessContext(role="admin", actor="admin")
    payload = read_token(candidate)
    investor_id = payload.get("investor_id") if isinstance(payload, dict) else None
    if investor_id is not None:
        investor = session.get(Investor, investor_id)
        if investor:
            return AccessContext(role="investor", investor_id=investor.id, actor=investor.email)
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid access token")


def require_admin_access(context: AccessContext = Depends(resolve_access_context)) -> AccessContext:
    if context.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return context


def require_investor(context: AccessContext = Depends(resolve_access_context)) -> AccessContext:
    if context.role != "investor":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Investor access required")
    return context


def require_investor_or_admin(
    investor_id: int,
    context: AccessContext = Depends(resolve_access_context),
) -> AccessContext:
    if context.role == "admin":
        return context
    if context.role == "investor" and context.investor_id == investor_id:
        return context
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only access your own records")
