"""The three legal document types a co-owned property is filed with.

Each member carries everything that varies per type: its titles, the file
name it gets inside an export bundle, and whether it names the co-owners.
Adding a fourth type means adding a member here; every consumer iterates
``DocumentType`` rather than hard-coding strings.
"""
from enum import Enum
from typing import Tuple

INVESTOR_PLACEHOLDERS = ("INVESTOR_NAME", "INVESTOR_EMAIL", "INVESTOR_PHONE", "INVESTOR_ID")
PROPERTY_PLACEHOLDERS = (
    "PROPERTY_TITLE",
    "PROPERTY_LOCATION",
    "PROPERTY_PRICE",
    "FRACTION_PRICE",
    "BEDROOMS",
    "BATHROOMS",
    "AREA",
)
DATE_PLACEHOLDERS = ("CURRENT_DATE",)


def co_owner_placeholders(slots: int) -> Tuple[str, ...]:
    names = []
    for i in range(1, slots + 1):
        names.append(f"CO_OWNER_{i}_NAME")
        names.append(f"CO_OWNER_{i}_EMAIL")
    return tuple(names)


class DocumentType(str, Enum):
    CO_OWNERSHIP = "co_ownership"
    POWER_OF_ATTORNEY = "power_of_attorney"
    JOP_DECLARATION = "jop_declaration"

    @property
    def display_name(self) -> str:
        return _TITLES[self][0]

    @property
    def display_name_arabic(self) -> str:
        return _TITLES[self][1]

    @property
    def bundle_filename(self) -> str:
        return _BUNDLE_FILENAMES[self]

    @property
    def names_co_owners(self) -> bool:
        return self is DocumentType.JOP_DECLARATION

    def placeholders(self, co_owner_slots: int = 4) -> Tuple[str, ...]:
        base = INVESTOR_PLACEHOLDERS + PROPERTY_PLACEHOLDERS + DATE_PLACEHOLDERS
        if self.names_co_owners:
            return base + co_owner_placeholders(co_owner_slots)
        return base

    @classmethod
    def parse(cls, value) -> "DocumentType":
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise ValueError(f"unknown document type {value!r}; expected one of: {allowed}") from None


_TITLES = {
    DocumentType.CO_OWNERSHIP: ("Co-Ownership Agreement", "اتفاقية الملكية المشتركة"),
    DocumentType.POWER_OF_ATTORNEY: ("Power of Attorney", "توكيل رسمي"),
    DocumentType.JOP_DECLARATION: ("Joint Ownership Property Declaration", "إقرار الملكية المشتركة للعقار"),
}

_BUNDLE_FILENAMES = {
    DocumentType.CO_OWNERSHIP: "co-ownership-agreement.pdf",
    DocumentType.POWER_OF_ATTORNEY: "power-of-attorney.pdf",
    DocumentType.JOP_DECLARATION: "jop-declaration.pdf",
}
