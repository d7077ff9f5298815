"""Page geometry, fonts and line layout shared by every generated PDF."""
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import List, Optional

from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from .arabic import shape_arabic, to_eastern_digits
from .config import ARABIC_FONT_PATH
from .models import AgreementTemplate, Investor

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 50
CONTENT_WIDTH = PAGE_WIDTH - 2 * MARGIN
FOOTER_Y = 30
SIGNATURE_BLOCK_HEIGHT = 150
SIGNATURE_WIDTH = 200
SIGNATURE_HEIGHT = 80
BLACK = (0, 0, 0)
DARK = (0.2, 0.2, 0.2)
MUTED = (0.3, 0.3, 0.3)
LIGHT = (0.5, 0.5, 0.5)
FAINT = (0.6, 0.6, 0.6)

ARABIC_FONT_NAME = "FopdArabic"
ARABIC_FONT_CANDIDATES = (
    "/usr/share/fonts/truetype/noto/NotoNaskhArabic-Regular.ttf",
    "/usr/share/fonts/truetype/noto/NotoSansArabic-Regular.ttf",
    "/usr/share/fonts/opentype/fonts-hosny-amiri/Amiri-Regular.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/Library/Fonts/Arial Unicode.ttf",
)

LABELS = {
    "en": {
        "brand": "FRACTIONAL OFF-PLAN DUBAI (FOPD)",
        "signed_heading": "ELECTRONICALLY SIGNED",
        "signature_unavailable": "[signature unavailable]",
        "integrity_failed": "Integrity check failed: the stored signature does not match its recorded hash.",
        "signed_by": "Signed by: {name}",
        "date": "Date: {date}",
        "ip": "IP Address: {ip}",
        "notice": "This document has been signed by {signed} of {total} parties.",
        "signatories": "SIGNATORIES",
        "signatory_line": "{index}. {name} | signed {date}",
        "footer_left": "Document ID: {template_id} | Version {version}",
        "footer_right": "Page {page} of {total}",
        "certificate_title": "Certificate of Signature",
        "certificate_subtitle": "{document} | Signer {index} of {total}",
        "property": "Property",
        "template": "Template",
        "name": "Signer name",
        "investor_id": "Investor ID",
        "email": "Email",
        "phone": "Phone",
        "signed_at": "Signed at (server time)",
        "ip_address": "IP address",
        "signature_hash": "Signature hash (SHA-256)",
        "consent": "Consent",
        "consent_given": "Given",
        "signature": "Signature",
        "certified": "Certificate generated {date}. The signature hash can be verified against the platform audit log.",
    },
    "ar": {
        "brand": "الملكية الجزئية على الخارطة - دبي",
        "signed_heading": "موقّع إلكترونياً",
        "signature_unavailable": "[التوقيع غير متوفر]",
        "integrity_failed": "فشل التحقق من السلامة: التوقيع المخزن لا يطابق البصمة المسجلة.",
        "signed_by": "وقّع بواسطة: {name}",
        "date": "التاريخ: {date}",
        "ip": "عنوان IP: {ip}",
        "notice": "تم توقيع هذه الوثيقة من قبل {signed} من أصل {total} أطراف.",
        "signatories": "الموقّعون",
        "signatory_line": "{index}. {name} | وقّع في {date}",
        "footer_left": "معرّف المستند: {template_id} | الإصدار {version}",
        "footer_right": "صفحة {page} من {total}",
        "certificate_title": "شهادة التوقيع",
        "certificate_subtitle": "{document} | الموقّع {index} من {total}",
        "property": "العقار",
        "template": "النموذج",
        "name": "اسم الموقّع",
        "investor_id": "رقم المستثمر",
        "email": "البريد الإلكتروني",
        "phone": "الهاتف",
        "signed_at": "وقت التوقيع (توقيت الخادم)",
        "ip_address": "عنوان IP",
        "signature_hash": "بصمة التوقيع (SHA-256)",
        "consent": "الموافقة",
        "consent_given": "تم منحها",
        "signature": "التوقيع",
        "certified": "أُنشئت هذه الشهادة في {date}. يمكن التحقق من بصمة التوقيع مقابل سجل التدقيق في المنصة.",
    },
}


@dataclass
class SignerEntry:
    """One co-owner's signature, already decrypted, ready to draw."""

    investor: Investor
    image: Optional[bytes]
    signed_at: datetime
    server_timestamp: str
    ip_address: Optional[str]
    signature_hash: str
    intact: bool = True


def labels(language: str) -> dict:
    return LABELS["ar" if language == "ar" else "en"]


def localized_number(value, language: str) -> str:
    return to_eastern_digits(str(value)) if language == "ar" else str(value)


_font_lock = threading.Lock()
_arabic_font: Optional[str] = None


def arabic_font() -> str:
    global _arabic_font
    with _font_lock:
        if _arabic_font is None:
            _arabic_font = _register_arabic_font()
    return _arabic_font


def _register_arabic_font() -> str:
    for path in (ARABIC_FONT_PATH,) + ARABIC_FONT_CANDIDATES:
        if path and os.path.exists(path):
            pdfmetrics.registerFont(TTFont(ARABIC_FONT_NAME, path))
            return ARABIC_FONT_NAME
    logger.warning("no Arabic-capable font found; set ARABIC_FONT_PATH. Arabic glyphs will not render")
    return "Helvetica"


@dataclass(frozen=True)
class Fonts:
    body: str
    bold: str
    meta: str


def fonts_for(language: str) -> Fonts:
    if language == "ar":
        name = arabic_font()
        return Fonts(name, name, name)
    return Fonts("Times-Roman", "Times-Bold", "Helvetica")


class NumberedCanvas(canvas.Canvas):
    """Canvas that stamps a footer once the final page count is known.

    ``extra_pages`` accounts for pages appended after this canvas is saved.
    """

    def __init__(self, *args, footer=None, extra_pages: int = 0, **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_page_states = []
        self._footer = footer
        self._extra_pages = extra_pages

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        total = len(self._saved_page_states) + self._extra_pages
        for index, state in enumerate(self._saved_page_states):
            self.__dict__.update(state)
            if self._footer is not None:
                self._footer(self, index + 1, total)
            canvas.Canvas.showPage(self)
        canvas.Canvas.save(self)

    @property
    def page_count(self) -> int:
        return len(self._saved_page_states)


def draw_footer(c, template: AgreementTemplate, language: str, page: int, total: int) -> None:
    text = labels(language)
    fonts = fonts_for(language)
    left = text["footer_left"].format(
        template_id=template.id, version=localized_number(template.version, language)
    )
    right = text["footer_right"].format(
        page=localized_number(page, language), total=localized_number(total, language)
    )
    c.setFont(fonts.meta, 8)
    c.setFillColorRGB(*FAINT)
    if language == "ar":
        c.drawRightString(PAGE_WIDTH - MARGIN, FOOTER_Y, shape_arabic(left))
        c.drawString(MARGIN, FOOTER_Y, shape_arabic(right))
    else:
        c.drawString(MARGIN, FOOTER_Y, left)
        c.drawRightString(PAGE_WIDTH - MARGIN, FOOTER_Y, right)


def draw_signature_image(c, image: Optional[bytes], x: float, y: float,
                         width: float = SIGNATURE_WIDTH, height: float = SIGNATURE_HEIGHT) -> bool:
    """Draw ``image`` with its lower-left corner at (x, y); False if it cannot be embedded."""
    if not image:
        return False
    try:
        reader = ImageReader(BytesIO(image))
        reader.getSize()
        reader.getRGBData()
        c.drawImage(reader, x, y, width=width, height=height, mask="auto", preserveAspectRatio=True)
    except Exception as exc:
        logger.warning("signature image could not be embedded: %s", exc.__class__.__name__)
        return False
    return True


class PageWriter:
    """Top-down text flow on a canvas, left-to-right or right-to-left."""

    def __init__(self, c, language: str = "en"):
        self.c = c
        self.language = language
        self.rtl = language == "ar"
        self.fonts = fonts_for(language)
        self.text = labels(language)
        self.y = PAGE_HEIGHT - MARGIN

    def visual(self, text: str) -> str:
        return shape_arabic(text) if self.rtl else text

    def width_of(self, text: str, font: str, size: float) -> float:
        return pdfmetrics.stringWidth(self.visual(text), font, size)

    def new_page(self) -> None:
        self.c.showPage()
        self.y = PAGE_HEIGHT - MARGIN

    def ensure_space(self, needed: float) -> None:
        if self.y - needed < MARGIN:
            self.new_page()

    def wrap(self, text: str, font: str, size: float, width: float = CONTENT_WIDTH) -> List[str]:
        lines = []
        line = ""
        for word in text.split():
            candidate = f"{line} {word}" if line else word
            if line and self.width_of(candidate, font, size) > width:
                lines.append(line)
                line = word
            else:
                line = candidate
        if line:
            lines.append(line)
        return lines

    def draw_line(self, text: str, font: str, size: float, color=BLACK) -> None:
        self.c.setFont(font, size)
        self.c.setFillColorRGB(*color)
        if self.rtl:
            self.c.drawRightString(PAGE_WIDTH - MARGIN, self.y, self.visual(text))
        else:
            self.c.drawString(MARGIN, self.y, text)

    def heading(self, text: str, size: float = 14, color=BLACK, gap: float = 25) -> None:
        self.draw_line(text, self.fonts.bold, size, color)
        self.y -= gap

    def paragraph(self, text: str, size: float = 11, color=BLACK, font: Optional[str] = None,
                  reserve: float = SIGNATURE_BLOCK_HEIGHT) -> None:
        """Flow ``text``; a page break happens once less than ``reserve`` remains."""
        font = font or self.fonts.body
        leading = size * 1.4
        for raw_line in text.split("\n"):
            for line in self.wrap(raw_line, font, size):
                self.draw_line(line, font, size, color)
                self.y -= leading
                if self.y < MARGIN + reserve:
                    self.new_page()
        self.y -= leading * 0.5

    def signature(self, image: Optional[bytes]) -> bool:
        x = PAGE_WIDTH - MARGIN - SIGNATURE_WIDTH if self.rtl else MARGIN
        embedded = draw_signature_image(self.c, image, x, self.y - SIGNATURE_HEIGHT)
        if embedded:
            self.y -= SIGNATURE_HEIGHT + 15
        else:
            self.draw_line(self.text["signature_unavailable"], self.fonts.meta, 10, LIGHT)
            self.y -= 20
        return embedded
