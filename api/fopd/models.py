from typing import Optional
from datetime import datetime
from sqlalchemy import Index, UniqueConstraint, text
from sqlmodel import SQLModel, Field as ORMField

from .utils import utcnow

ACTIVE_RESERVATION_STATUSES = ("draft", "invitations_sent", "all_signed", "payment_pending")
_ACTIVE_RESERVATION_SQL = "reservation_status IN ('draft', 'invitations_sent', 'all_signed', 'payment_pending')"


class Investor(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    email: str = ORMField(index=True, unique=True)
    full_name: str
    phone: str = ""
    fractions_purchased: int = 0
    total_invested: float = 0.0
    kyc_status: str = "pending"
    payment_status: str = "pending"
    passport_number: Optional[str] = None
    emirates_id: Optional[str] = None
    preferred_language: str = "en"
    created_at: datetime = ORMField(default_factory=utcnow)


class Property(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    title: str
    location: str
    total_price: float
    price_per_fraction: float
    total_fractions: int = 4
    fractions_sold: int = 0
    description: Optional[str] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    area: Optional[int] = None
    is_pilot: bool = False
    escrow_iban: Optional[str] = None
    handover_date: Optional[datetime] = None
    created_at: datetime = ORMField(default_factory=utcnow)


class Fraction(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("property_id", "fraction_number", name="uq_property_fraction"),)

    id: Optional[int] = ORMField(default=None, primary_key=True)
    investor_id: int = ORMField(index=True)
    property_id: int = ORMField(index=True)
    fraction_number: int
    purchase_price: float
    payment_status: str = "pending"
    gateway_charge_id: Optional[str] = None
    purchased_at: datetime = ORMField(default_factory=utcnow)


class Payment(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    investor_id: int
    fraction_id: int
    amount: float
    currency: str = "AED"
    gateway_charge_id: str = ORMField(unique=True)  # idempotency key of the upstream event
    status: str = "pending"
    payment_method: Optional[str] = None
    created_at: datetime = ORMField(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class AgreementTemplate(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    name: str
    template_type: str = ORMField(index=True)  # co_ownership|power_of_attorney|jop_declaration
    content: str
    content_hash: str
    content_arabic: str
    content_hash_arabic: str
    version: int = 1
    is_active: bool = True
    created_at: datetime = ORMField(default_factory=utcnow)
    updated_at: datetime = ORMField(default_factory=utcnow)


class SignatureSession(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    investor_id: int = ORMField(index=True)
    property_id: int
    template_id: int
    session_token: str = ORMField(index=True, unique=True)
    otp_verified: bool = False
    status: str = "pending"  # pending|verified|signed|expired
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    expires_at: datetime
    created_at: datetime = ORMField(default_factory=utcnow)


class InvestorSignature(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("investor_id", "template_id", "property_id", name="uq_investor_signature"),
    )

    id: Optional[int] = ORMField(default=None, primary_key=True)
    session_id: Optional[int] = None
    investor_id: int = ORMField(index=True)
    template_id: int
    property_id: int = ORMField(index=True)
    encrypted_signature_data: str
    signature_hash: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    signed_at: datetime = ORMField(default_factory=utcnow)
    consent_given: bool = True
    server_timestamp: str


class SignedDocument(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    property_id: int = ORMField(index=True)
    document_type: str
    investor_id: Optional[int] = None  # set for single-investor copies
    language: str = "en"
    file_path: str
    file_hash: str
    template_version: int
    all_signatures_complete: bool = False
    sealed_at: Optional[datetime] = None
    generated_at: datetime = ORMField(default_factory=utcnow)


class SignatureAuditLog(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    event_type: str
    investor_id: Optional[int] = None
    session_id: Optional[int] = None
    property_id: Optional[int] = None
    meta_json: str = "{}"
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime = ORMField(default_factory=utcnow)
    prev_hash: Optional[str] = ORMField(default=None, unique=True)  # one successor per entry
    hash: Optional[str] = None


class AuditChainLock(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    appended: int = 0


class DldExport(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    property_id: int = ORMField(index=True)
    generated_at: datetime = ORMField(default_factory=utcnow)
    requested_by: str
    bundle_hash: str
    file_path: str


class PropertyReservation(SQLModel, table=True):
    __table_args__ = (
        Index(
            "uq_active_reservation_property",
            "property_id",
            unique=True,
            sqlite_where=text(_ACTIVE_RESERVATION_SQL),
            postgresql_where=text(_ACTIVE_RESERVATION_SQL),
        ),
    )

    id: Optional[int] = ORMField(default=None, primary_key=True)
    property_id: int
    initiator_investor_id: int
    reservation_status: str = "draft"  # draft|invitations_sent|all_signed|payment_pending|payment_complete|cancelled
    total_slots_reserved: int = 1
    created_at: datetime = ORMField(default_factory=utcnow)
    updated_at: datetime = ORMField(default_factory=utcnow)


class CoOwnerSlot(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("reservation_id", "slot_number", name="uq_reservation_slot"),)

    id: Optional[int] = ORMField(default=None, primary_key=True)
    reservation_id: int = ORMField(index=True)
    slot_number: int
    investor_id: Optional[int] = None
    share_percentage: float
    invitation_status: str = "reserved"  # reserved|invited|accepted|declined
    invitation_email: Optional[str] = None
    created_at: datetime = ORMField(default_factory=utcnow)


class CoOwnerInvitation(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    reservation_id: int = ORMField(index=True)
    slot_id: int = ORMField(unique=True)
    invited_email: str
    invited_by_investor_id: int
    invitation_token: str = ORMField(unique=True)
    status: str = "pending"  # pending|accepted|declined|expired
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: datetime = ORMField(default_factory=utcnow)
