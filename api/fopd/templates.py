import logging
from typing import Dict, Optional

from sqlmodel import Session, select

from .audit import AuditEvent, append_audit
from .crypto import generate_hash
from .doctypes import DocumentType
from .errors import NotFound, PreconditionFailed
from .models import AgreementTemplate
from .utils import utcnow

logger = logging.getLogger(__name__)


def create_template(
    session: Session,
    name: str,
    template_type,
    content: str,
    content_arabic: str,
    is_active: bool = True,
) -> AgreementTemplate:
    doc_type = DocumentType.parse(template_type)
    template = AgreementTemplate(
        name=name,
        template_type=doc_type.value,
        content=content,
        content_hash=generate_hash(content),
        content_arabic=content_arabic,
        content_hash_arabic=generate_hash(content_arabic),
        version=1,
        is_active=is_active,
    )
    session.add(template)
    session.commit()
    session.refresh(template)
    return template


def update_template(session: Session, template_id: int, changes: Dict, actor: Optional[str] = None) -> AgreementTemplate:
    """Apply an administrative edit.

    A change to either language body bumps the shared version counter once
    and recomputes that body's hash; renames and activation toggles do not.
    """
    template = session.get(AgreementTemplate, template_id)
    if not template:
        raise NotFound("template not found")
    content_changed = False
    if "content" in changes and changes["content"] is not None and changes["content"] != template.content:
        template.content = changes["content"]
        template.content_hash = generate_hash(template.content)
        content_changed = True
    if (
        "content_arabic" in changes
        and changes["content_arabic"] is not None
        and changes["content_arabic"] != template.content_arabic
    ):
        template.content_arabic = changes["content_arabic"]
        template.content_hash_arabic = generate_hash(template.content_arabic)
        content_changed = True
    if changes.get("name"):
        template.name = changes["name"]
    if changes.get("is_active") is not None:
        template.is_active = bool(changes["is_active"])
    if content_changed:
        template.version += 1
    template.updated_at = utcnow()
    session.add(template)
    session.flush()
    append_audit(
        session,
        AuditEvent.TEMPLATE_UPDATED,
        meta={
            "template_id": template.id,
            "version": template.version,
            "content_hash": template.content_hash,
            "content_hash_arabic": template.content_hash_arabic,
            "actor": actor,
        },
    )
    session.refresh(template)
    return template


def active_template_for(session: Session, doc_type: DocumentType) -> Optional[AgreementTemplate]:
    """Resolve the active template of ``doc_type``.

    Several rows may be active at once; the highest version wins, then the
    most recently created one.
    """
    candidates = session.exec(
        select(AgreementTemplate)
        .where(AgreementTemplate.template_type == doc_type.value, AgreementTemplate.is_active == True)  # noqa: E712
        .order_by(AgreementTemplate.version.desc(), AgreementTemplate.created_at.desc(), AgreementTemplate.id.desc())
    ).all()
    if not candidates:
        return None
    if len(candidates) > 1:
        logger.warning(
            "%d active templates for %s; using template %s v%s",
            len(candidates), doc_type.value, candidates[0].id, candidates[0].version,
        )
    return candidates[0]


def active_templates_by_type(session: Session) -> Dict[DocumentType, AgreementTemplate]:
    resolved = {}
    for doc_type in DocumentType:
        template = active_template_for(session, doc_type)
        if template is not None:
            resolved[doc_type] = template
    return resolved


def require_active_templates(session: Session) -> Dict[DocumentType, AgreementTemplate]:
    resolved = active_templates_by_type(session)
    missing = [t.value for t in DocumentType if t not in resolved]
    if missing:
        raise PreconditionFailed([f"Template not found for document type: {m}" for m in missing])
    return resolved
