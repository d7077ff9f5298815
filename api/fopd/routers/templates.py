from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, select

from ..auth import AccessContext, require_admin_access
from ..db import get_session
from ..models import AgreementTemplate
from ..schemas import TemplateCreate, TemplateUpdate
from ..templates import create_template, update_template

router = APIRouter()


@router.get("")
def list_templates(
    active_only: bool = False,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_admin_access),
):
    stmt = select(AgreementTemplate)
    if active_only:
        stmt = stmt.where(AgreementTemplate.is_active == True)  # noqa: E712
    return session.exec(stmt.order_by(AgreementTemplate.template_type, AgreementTemplate.version.desc())).all()


@router.get("/{template_id}")
def get_template(
    template_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_admin_access),
):
    template = session.get(AgreementTemplate, template_id)
    if not template:
        raise HTTPException(404, "template not found")
    return template


@router.post("", status_code=status.HTTP_201_CREATED)
def create_agreement_template(
    body: TemplateCreate,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_admin_access),
):
    return create_template(
        session,
        name=body.name,
        template_type=body.template_type,
        content=body.content,
        content_arabic=body.content_arabic,
        is_active=body.is_active,
    )


@router.patch("/{template_id}")
def update_agreement_template(
    template_id: int,
    body: TemplateUpdate,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_admin_access),
):
    return update_template(session, template_id, body.model_dump(exclude_unset=True), actor=ctx.actor)
