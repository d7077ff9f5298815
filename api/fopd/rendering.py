"""Agreement PDFs: one investor's signed copy and the all-parties copy.

The aggregated copy is the document body followed by one certificate page
per signer. Certificates are rendered concurrently as separate PDFs and
merged after the body, whose footer already counts them.
"""
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from io import BytesIO
from typing import List, Optional, Sequence, Tuple

from pypdf import PdfReader, PdfWriter

from .arabic import format_datetime
from .certificate import render_certificate
from .doctypes import DocumentType
from .layout import (
    DARK, LIGHT, MARGIN, MUTED, PAGE_HEIGHT, PAGE_WIDTH, SIGNATURE_BLOCK_HEIGHT,
    NumberedCanvas, PageWriter, SignerEntry, draw_footer, localized_number,
)
from .models import AgreementTemplate, Investor, Property
from .placeholders import fill_placeholders, placeholder_values
from .utils import utcnow

logger = logging.getLogger(__name__)

CERTIFICATE_WORKERS = 4
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def _content_for(template: AgreementTemplate, language: str) -> str:
    if language == "ar":
        return template.content_arabic
    return template.content


def _numbered_canvas(buf, template: AgreementTemplate, language: str, extra_pages: int = 0) -> NumberedCanvas:
    return NumberedCanvas(
        buf,
        pagesize=(PAGE_WIDTH, PAGE_HEIGHT),
        footer=lambda c, page, total: draw_footer(c, template, language, page, total),
        extra_pages=extra_pages,
    )


def _write_header(w: PageWriter, template: AgreementTemplate) -> None:
    w.heading(w.text["brand"], size=10, color=MUTED, gap=20)
    w.heading(template.name, size=16, gap=12)
    w.c.setStrokeColorRGB(*LIGHT)
    w.c.line(MARGIN, w.y, PAGE_WIDTH - MARGIN, w.y)
    w.y -= 25


def _write_body(w: PageWriter, body: str) -> None:
    for block in _PARAGRAPH_BREAK.split(body.strip()):
        if block.strip():
            w.paragraph(block)


def _write_signature_block(w: PageWriter, signer: SignerEntry) -> None:
    w.ensure_space(SIGNATURE_BLOCK_HEIGHT)
    w.y -= 10
    w.heading(w.text["signed_heading"], size=12, gap=20)
    w.signature(signer.image)
    meta = w.fonts.meta
    w.draw_line(w.text["signed_by"].format(name=signer.investor.full_name), meta, 10, DARK)
    w.y -= 14
    w.draw_line(w.text["date"].format(date=format_datetime(signer.signed_at, w.language)), meta, 10, DARK)
    w.y -= 14
    w.draw_line(w.text["ip"].format(ip=signer.ip_address or "-"), meta, 10, DARK)
    w.y -= 14


def render_single_signed(
    template: AgreementTemplate,
    investor: Investor,
    prop: Property,
    signer: SignerEntry,
    language: str = "en",
    co_owners: Optional[Sequence[Investor]] = None,
    today: Optional[date] = None,
) -> bytes:
    doc_type = DocumentType.parse(template.template_type)
    values = placeholder_values(doc_type, investor, prop, language, co_owners=co_owners, today=today)
    body = fill_placeholders(_content_for(template, language), values)

    buf = BytesIO()
    c = _numbered_canvas(buf, template, language)
    w = PageWriter(c, language)
    _write_header(w, template)
    _write_body(w, body)
    _write_signature_block(w, signer)
    c.showPage()
    c.save()
    return buf.getvalue()


def _party_values(doc_type: DocumentType, prop: Property, investors: Sequence[Investor],
                  language: str, today: Optional[date]) -> dict:
    values = placeholder_values(doc_type, None, prop, language, co_owners=investors, today=today)
    # the all-parties copy names every co-owner where a single investor would go
    values["INVESTOR_NAME"] = ", ".join(i.full_name for i in investors)
    values["INVESTOR_EMAIL"] = ", ".join(i.email for i in investors)
    values["INVESTOR_PHONE"] = ", ".join(i.phone for i in investors if i.phone) or "-"
    values["INVESTOR_ID"] = ", ".join(str(i.id) for i in investors)
    return values


def _render_aggregated_body(
    template: AgreementTemplate,
    prop: Property,
    signers: Sequence[SignerEntry],
    all_investors: Sequence[Investor],
    language: str,
    today: Optional[date],
) -> Tuple[bytes, int]:
    doc_type = DocumentType.parse(template.template_type)
    body = fill_placeholders(
        _content_for(template, language),
        _party_values(doc_type, prop, all_investors, language, today),
    )
    total_parties = max(len(all_investors), len(signers))

    buf = BytesIO()
    c = _numbered_canvas(buf, template, language, extra_pages=len(signers))
    w = PageWriter(c, language)
    _write_header(w, template)
    w.paragraph(
        w.text["notice"].format(
            signed=localized_number(len(signers), language),
            total=localized_number(total_parties, language),
        ),
        size=10,
        color=MUTED,
        font=w.fonts.bold,
    )
    _write_body(w, body)

    w.ensure_space(SIGNATURE_BLOCK_HEIGHT)
    w.y -= 10
    w.heading(w.text["signatories"], size=12, gap=20)
    for index, signer in enumerate(signers, start=1):
        w.paragraph(
            w.text["signatory_line"].format(
                index=localized_number(index, language),
                name=signer.investor.full_name,
                date=format_datetime(signer.signed_at, language),
            ),
            size=10,
            color=DARK,
            font=w.fonts.meta,
            reserve=0,
        )
    c.showPage()
    c.save()
    return buf.getvalue(), c.page_count


def render_aggregated(
    template: AgreementTemplate,
    prop: Property,
    signers: Sequence[SignerEntry],
    all_investors: Sequence[Investor],
    language: str = "en",
    today: Optional[date] = None,
) -> bytes:
    """Render the all-parties copy with a certificate page per signer.

    Every page, certificates included, is numbered against the combined
    total.
    """
    body, body_pages = _render_aggregated_body(template, prop, signers, all_investors, language, today)
    if not signers:
        return body

    total_pages = body_pages + len(signers)
    generated_at = utcnow()

    def _certificate(indexed):
        index, signer = indexed
        return render_certificate(
            template,
            prop,
            signer,
            signer_index=index,
            signer_total=len(signers),
            page_number=body_pages + index,
            total_pages=total_pages,
            language=language,
            generated_at=generated_at,
        )

    with ThreadPoolExecutor(max_workers=min(CERTIFICATE_WORKERS, len(signers))) as pool:
        certificates: List[bytes] = list(pool.map(_certificate, enumerate(signers, start=1)))

    writer = PdfWriter()
    for part in [body] + certificates:
        for page in PdfReader(BytesIO(part)).pages:
            writer.add_page(page)
    out = BytesIO()
    writer.write(out)
    logger.info(
        "rendered %s for property %s: %d body pages, %d certificates",
        template.template_type, prop.id, body_pages, len(certificates),
    )
    return out.getvalue()
