"""Locale formatting and visual shaping for Arabic text.

Numbers are formatted first (grouping, decimals) and only then mapped to
Eastern Arabic glyphs. Shaping happens in two steps: letters are joined into
their contextual forms, then the Unicode bidi algorithm produces the visual
order, which keeps digit runs left-to-right inside right-to-left text.
Reversing the string instead would flip every number.
"""
import re
from datetime import date, datetime
from typing import Union

import arabic_reshaper
from bidi.algorithm import get_display

EASTERN_DIGITS = "٠١٢٣٤٥٦٧٨٩"
ARABIC_THOUSANDS_SEPARATOR = "٬"
ARABIC_DECIMAL_SEPARATOR = "٫"

_NUMBER_GLYPHS = str.maketrans(
    {
        **{str(i): EASTERN_DIGITS[i] for i in range(10)},
        ",": ARABIC_THOUSANDS_SEPARATOR,
        ".": ARABIC_DECIMAL_SEPARATOR,
    }
)
_DIGITS_ONLY = str.maketrans({str(i): EASTERN_DIGITS[i] for i in range(10)})
_ARABIC_RANGE = re.compile(r"[\u0600-\u06FF\u0750-\u077F\u08A0-\u08FF\uFB50-\uFDFF\uFE70-\uFEFF]")

ENGLISH_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
ARABIC_MONTHS = (
    "يناير", "فبراير", "مارس", "أبريل", "مايو", "يونيو",
    "يوليو", "أغسطس", "سبتمبر", "أكتوبر", "نوفمبر", "ديسمبر",
)


def contains_arabic(text: str) -> bool:
    return bool(text) and _ARABIC_RANGE.search(text) is not None


def to_eastern_digits(text: str) -> str:
    return text.translate(_DIGITS_ONLY)


def format_number(value: Union[int, float], language: str = "en", decimals: int = 0) -> str:
    formatted = f"{value:,.{decimals}f}"
    if language == "ar":
        return formatted.translate(_NUMBER_GLYPHS)
    return formatted


def format_currency(value: Union[int, float], language: str = "en", currency: str = "AED") -> str:
    decimals = 0 if float(value).is_integer() else 2
    amount = format_number(value, language, decimals)
    if language == "ar":
        return f"{amount} درهم"
    return f"{currency} {amount}"


def format_date(value: Union[date, datetime], language: str = "en") -> str:
    if language == "ar":
        return to_eastern_digits(f"{value.day} {ARABIC_MONTHS[value.month - 1]} {value.year}")
    return f"{ENGLISH_MONTHS[value.month - 1]} {value.day}, {value.year}"


def format_datetime(value: datetime, language: str = "en") -> str:
    clock = value.strftime("%H:%M UTC")
    if language == "ar":
        return f"{format_date(value, language)} {to_eastern_digits(clock)}"
    return f"{format_date(value, language)} {clock}"


def shape_arabic(text: str) -> str:
    """Return ``text`` in visual order with joined letterforms."""
    if not text:
        return text
    return get_display(arabic_reshaper.reshape(text), base_dir="R")
