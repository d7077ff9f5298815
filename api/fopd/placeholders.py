import re
from datetime import date
from typing import Dict, Optional, Sequence

from .arabic import format_currency, format_date, format_number
from .config import MAX_CO_OWNER_SLOTS
from .doctypes import DocumentType
from .models import Investor, Property

# accepts both {NAME} and {{NAME}}
PLACEHOLDER_PATTERN = re.compile(r"\{\{?([A-Z][A-Z0-9_]*)\}?\}")

NOT_AVAILABLE = {"en": "N/A", "ar": "غير متوفر"}
AREA_UNIT = {"en": "sq ft", "ar": "قدم مربع"}
EMPTY_SLOT = "-"


def placeholder_values(
    doc_type: DocumentType,
    investor: Optional[Investor],
    prop: Property,
    language: str = "en",
    co_owners: Optional[Sequence[Investor]] = None,
    today: Optional[date] = None,
) -> Dict[str, str]:
    na = NOT_AVAILABLE.get(language, NOT_AVAILABLE["en"])
    today = today or date.today()
    values = {
        "PROPERTY_TITLE": prop.title,
        "PROPERTY_LOCATION": prop.location,
        "PROPERTY_PRICE": format_currency(prop.total_price, language),
        "FRACTION_PRICE": format_currency(prop.price_per_fraction, language),
        "BEDROOMS": format_number(prop.bedrooms, language) if prop.bedrooms is not None else na,
        "BATHROOMS": format_number(prop.bathrooms, language) if prop.bathrooms is not None else na,
        "AREA": f"{format_number(prop.area, language)} {AREA_UNIT[language]}" if prop.area else na,
        "CURRENT_DATE": format_date(today, language),
    }
    if investor is not None:
        values.update({
            "INVESTOR_NAME": investor.full_name,
            "INVESTOR_EMAIL": investor.email,
            "INVESTOR_PHONE": investor.phone or na,
            "INVESTOR_ID": str(investor.id),
        })
    if doc_type.names_co_owners:
        owners = list(co_owners or [])
        for i in range(MAX_CO_OWNER_SLOTS):
            owner = owners[i] if i < len(owners) else None
            values[f"CO_OWNER_{i + 1}_NAME"] = owner.full_name if owner else EMPTY_SLOT
            values[f"CO_OWNER_{i + 1}_EMAIL"] = owner.email if owner else EMPTY_SLOT
    allowed = set(doc_type.placeholders(MAX_CO_OWNER_SLOTS))
    return {k: v for k, v in values.items() if k in allowed}


def fill_placeholders(content: str, values: Dict[str, str]) -> str:
    """Substitute known placeholders; unknown names are left as written."""

    def _sub(match):
        name = match.group(1)
        if name in values:
            return values[name]
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_sub, content)
