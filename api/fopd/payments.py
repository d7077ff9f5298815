"""Captured-payment bookkeeping fed by the gateway webhook.

Each upstream charge is processed at most once: the charge id is a unique
column on ``Payment``, so a replayed or concurrently delivered event resolves
to the payment recorded the first time.
"""
import hashlib
import hmac
import json
import logging
import re
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .audit import AuditEvent, append_audit
from .config import PAYMENT_WEBHOOK_SECRET
from .errors import Conflict, NotFound, Unauthorized, ValidationFailed
from .models import Fraction, Investor, Payment, Property
from .utils import utcnow

logger = logging.getLogger(__name__)

_SIGNATURE_FORMAT = re.compile(r"^[a-f0-9]{64}$")


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str] = None) -> None:
    if not signature:
        raise Unauthorized("Missing webhook signature")
    if not _SIGNATURE_FORMAT.match(signature):
        raise Unauthorized("Invalid signature format")
    key = (PAYMENT_WEBHOOK_SECRET if secret is None else secret).encode("utf-8")
    expected = hmac.new(key, raw_body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature):
        logger.warning("payment webhook rejected: signature mismatch")
        raise Unauthorized("Invalid webhook signature")


def get_payment_by_charge(session: Session, charge_id: str) -> Optional[Payment]:
    return session.exec(select(Payment).where(Payment.gateway_charge_id == charge_id)).first()


def _next_fraction_number(session: Session, property_id: int) -> int:
    current = session.exec(
        select(func.max(Fraction.fraction_number)).where(Fraction.property_id == property_id)
    ).one()
    return (current or 0) + 1


def record_captured_payment(
    session: Session,
    charge_id: str,
    investor_id: int,
    property_id: int,
    amount: float,
    payment_method: str = "card",
    now: Optional[datetime] = None,
) -> Tuple[Payment, bool]:
    """Allocate a fraction and record the payment for one captured charge.

    Returns ``(payment, created)``; ``created`` is False for a replay.
    """
    now = now or utcnow()
    existing = get_payment_by_charge(session, charge_id)
    if existing:
        logger.info("payment event %s already processed as payment %s", charge_id, existing.id)
        return existing, False

    investor = session.get(Investor, investor_id)
    if not investor:
        raise NotFound(f"Investor {investor_id} not found")
    prop = session.get(Property, property_id)
    if not prop:
        raise NotFound(f"Property {property_id} not found")
    if prop.fractions_sold >= prop.total_fractions:
        raise Conflict(f"Property {property_id} is sold out")

    fraction = Fraction(
        investor_id=investor.id,
        property_id=prop.id,
        fraction_number=_next_fraction_number(session, prop.id),
        purchase_price=amount,
        payment_status="completed",
        gateway_charge_id=charge_id,
        purchased_at=now,
    )
    try:
        session.add(fraction)
        session.flush()
        payment = Payment(
            investor_id=investor.id,
            fraction_id=fraction.id,
            amount=amount,
            currency="AED",
            gateway_charge_id=charge_id,
            status="completed",
            payment_method=payment_method,
            created_at=now,
            completed_at=now,
        )
        session.add(payment)
        investor.fractions_purchased += 1
        investor.total_invested += amount
        investor.payment_status = "completed"
        prop.fractions_sold += 1
        session.add(investor)
        session.add(prop)
        session.flush()
        append_audit(
            session,
            AuditEvent.PAYMENT_CAPTURED,
            investor_id=investor.id,
            property_id=prop.id,
            meta={
                "charge_id": charge_id,
                "payment_id": payment.id,
                "fraction_number": fraction.fraction_number,
                "amount": amount,
            },
            commit=False,
        )
        session.commit()
    except IntegrityError:
        session.rollback()
        replay = get_payment_by_charge(session, charge_id)
        if replay:
            return replay, False
        raise Conflict("Fraction allocation conflicted with a concurrent purchase; retry the event") from None
    session.refresh(payment)
    logger.info("payment %s captured for investor %s on property %s", payment.id, investor_id, property_id)
    return payment, True


def handle_webhook(session: Session, raw_body: bytes, signature: Optional[str]) -> dict:
    verify_webhook_signature(raw_body, signature)
    try:
        charge = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise ValidationFailed("webhook body is not valid JSON") from None
    if not isinstance(charge, dict):
        raise ValidationFailed("webhook body must be a JSON object")

    if charge.get("status") != "CAPTURED":
        return {"received": True, "processed": False}

    metadata = charge.get("metadata") or {}
    source = charge.get("source") or {}
    if not isinstance(metadata, dict) or not isinstance(source, dict):
        raise ValidationFailed("webhook metadata and source must be JSON objects")
    investor_id = metadata.get("investorId")
    property_id = metadata.get("propertyId")
    if not investor_id or not property_id or not charge.get("id"):
        raise ValidationFailed(
            "Missing required metadata",
            received={"investorId": investor_id, "propertyId": property_id},
        )
    try:
        amount = float(charge.get("amount", 0))
        investor_id, property_id = int(investor_id), int(property_id)
    except (TypeError, ValueError):
        raise ValidationFailed("webhook carries malformed identifiers or amount") from None

    payment, created = record_captured_payment(
        session,
        charge_id=str(charge["id"]),
        investor_id=investor_id,
        property_id=property_id,
        amount=amount,
        payment_method=source.get("payment_method", "card"),
    )
    return {"received": True, "processed": created, "payment_id": payment.id}
