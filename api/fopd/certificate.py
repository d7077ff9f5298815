from datetime import datetime
from io import BytesIO
from typing import Optional

from reportlab.pdfgen import canvas

from .arabic import format_datetime
from .doctypes import DocumentType
from .layout import (
    LIGHT, MUTED, PAGE_HEIGHT, PAGE_WIDTH,
    PageWriter, SignerEntry, draw_footer, localized_number,
)
from .models import AgreementTemplate, Property
from .utils import utcnow

HASH_PREVIEW = 16


def _hash_preview(signature_hash: str) -> str:
    if len(signature_hash) <= HASH_PREVIEW * 2:
        return signature_hash
    return f"{signature_hash[:HASH_PREVIEW]}...{signature_hash[-HASH_PREVIEW:]}"


def render_certificate(
    template: AgreementTemplate,
    prop: Property,
    signer: SignerEntry,
    signer_index: int,
    signer_total: int,
    page_number: int,
    total_pages: int,
    language: str = "en",
    generated_at: Optional[datetime] = None,
) -> bytes:
    """One-page signing certificate for ``signer``.

    Page numbers are passed in because certificates are rendered separately
    and appended after the document body.
    """
    generated_at = generated_at or utcnow()
    doc_type = DocumentType.parse(template.template_type)
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=(PAGE_WIDTH, PAGE_HEIGHT))
    w = PageWriter(c, language)
    text = w.text
    investor = signer.investor

    w.heading(text["certificate_title"], size=16, gap=22)
    document = doc_type.display_name_arabic if language == "ar" else doc_type.display_name
    w.heading(
        text["certificate_subtitle"].format(
            document=document,
            index=localized_number(signer_index, language),
            total=localized_number(signer_total, language),
        ),
        size=11,
        color=MUTED,
        gap=30,
    )

    rows = [
        (text["property"], f"{prop.title} (#{prop.id})"),
        (text["template"], f"{template.name} v{template.version}"),
        (text["name"], investor.full_name),
        (text["investor_id"], str(investor.id)),
        (text["email"], investor.email),
        (text["phone"], investor.phone or "-"),
        (text["signed_at"], signer.server_timestamp),
        (text["ip_address"], signer.ip_address or "-"),
        (text["signature_hash"], _hash_preview(signer.signature_hash)),
        (text["consent"], text["consent_given"]),
    ]
    for label, value in rows:
        w.draw_line(f"{label}: {value}", w.fonts.body, 10)
        w.y -= 16

    w.y -= 14
    w.heading(text["signature"], size=11, gap=12)
    w.signature(signer.image)
    if not signer.intact:
        w.y -= 6
        w.draw_line(text["integrity_failed"], w.fonts.bold, 9, MUTED)
        w.y -= 14

    w.y -= 10
    w.paragraph(
        text["certified"].format(date=format_datetime(generated_at, language)),
        size=8,
        color=LIGHT,
        font=w.fonts.meta,
        reserve=0,
    )
    draw_footer(c, template, language, page_number, total_pages)
    c.showPage()
    c.save()
    return buf.getvalue()
