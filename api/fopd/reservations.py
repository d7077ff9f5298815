"""Co-ownership reservations, their slots and the invitations that fill them.

Multi-row writes here (a reservation with its slots, a batch of invitations
with the slot and reservation updates) commit as one transaction or not at
all.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .audit import AuditEvent, append_audit
from .config import INVITATION_TTL_DAYS, MAX_CO_OWNER_SLOTS
from .errors import Forbidden, InvitationConflict, NotFound, ReservationConflict, ValidationFailed
from .models import CoOwnerInvitation, CoOwnerSlot, Investor, Property, PropertyReservation
from .utils import utcnow

logger = logging.getLogger(__name__)

DRAFT = "draft"
INVITATIONS_SENT = "invitations_sent"
ALL_SIGNED = "all_signed"
PAYMENT_PENDING = "payment_pending"
PAYMENT_COMPLETE = "payment_complete"
CANCELLED = "cancelled"
RESERVATION_STATUSES = (DRAFT, INVITATIONS_SENT, ALL_SIGNED, PAYMENT_PENDING, PAYMENT_COMPLETE, CANCELLED)

SHARE_TOLERANCE = 0.01


def validate_slots(total_slots: int, slots: Sequence[Dict]) -> None:
    errors = []
    if not 1 <= total_slots <= MAX_CO_OWNER_SLOTS:
        errors.append(f"Total slots must be between 1 and {MAX_CO_OWNER_SLOTS}")
    if len(slots) != total_slots:
        errors.append("Number of slots must match total_slots_reserved")
    numbers = [s["slot_number"] for s in slots]
    if len(set(numbers)) != len(numbers):
        errors.append("Slot numbers must be unique")
    if any(not 1 <= n <= MAX_CO_OWNER_SLOTS for n in numbers):
        errors.append(f"Slot number must be between 1 and {MAX_CO_OWNER_SLOTS}")
    total = sum(float(s["share_percentage"]) for s in slots)
    if abs(total - 100) >= SHARE_TOLERANCE:
        errors.append("Share percentages must add up to 100%")
    if errors:
        raise ValidationFailed("; ".join(errors), errors=errors, field="slots")


def create_reservation(
    session: Session,
    initiator_id: int,
    property_id: int,
    total_slots: int,
    slots: Sequence[Dict],
):
    """Create a reservation and all of its slots atomically.

    A property holds at most one active reservation; the partial unique
    index decides concurrent attempts and the loser gets
    :class:`ReservationConflict`.
    """
    if not session.get(Property, property_id):
        raise NotFound(f"Property {property_id} not found")
    if not session.get(Investor, initiator_id):
        raise NotFound(f"Investor {initiator_id} not found")
    validate_slots(total_slots, slots)

    reservation = PropertyReservation(
        property_id=property_id,
        initiator_investor_id=initiator_id,
        total_slots_reserved=total_slots,
    )
    created = []
    try:
        session.add(reservation)
        session.flush()
        for spec in sorted(slots, key=lambda s: s["slot_number"]):
            slot = CoOwnerSlot(
                reservation_id=reservation.id,
                slot_number=spec["slot_number"],
                share_percentage=float(spec["share_percentage"]),
                investor_id=spec.get("investor_id"),
                invitation_email=spec.get("invitation_email"),
                invitation_status="accepted" if spec.get("investor_id") else "reserved",
            )
            session.add(slot)
            created.append(slot)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ReservationConflict("An active reservation already exists for this property") from None

    append_audit(
        session,
        AuditEvent.RESERVATION_CREATED,
        investor_id=initiator_id,
        property_id=property_id,
        meta={"reservation_id": reservation.id, "slots": len(created)},
    )
    session.refresh(reservation)
    for slot in created:
        session.refresh(slot)
    return reservation, created


def get_reservation(session: Session, reservation_id: int) -> PropertyReservation:
    reservation = session.get(PropertyReservation, reservation_id)
    if not reservation:
        raise NotFound("Reservation not found")
    return reservation


def get_slots(session: Session, reservation_id: int) -> List[CoOwnerSlot]:
    return session.exec(
        select(CoOwnerSlot).where(CoOwnerSlot.reservation_id == reservation_id).order_by(CoOwnerSlot.slot_number)
    ).all()


def get_invitations(session: Session, reservation_id: int) -> List[CoOwnerInvitation]:
    return session.exec(
        select(CoOwnerInvitation).where(CoOwnerInvitation.reservation_id == reservation_id).order_by(CoOwnerInvitation.id)
    ).all()


def get_reservation_with_slots(session: Session, reservation_id: int) -> Dict:
    reservation = get_reservation(session, reservation_id)
    return {
        "reservation": reservation,
        "slots": get_slots(session, reservation_id),
        "invitations": get_invitations(session, reservation_id),
    }


def get_reservations_by_investor(session: Session, investor_id: int) -> List[PropertyReservation]:
    return session.exec(
        select(PropertyReservation)
        .where(PropertyReservation.initiator_investor_id == investor_id)
        .order_by(PropertyReservation.created_at.desc())
    ).all()


def update_reservation_status(session: Session, reservation_id: int, status: str) -> PropertyReservation:
    if status not in RESERVATION_STATUSES:
        raise ValidationFailed(
            f"Invalid status. Must be one of: {', '.join(RESERVATION_STATUSES)}", field="status"
        )
    reservation = get_reservation(session, reservation_id)
    reservation.reservation_status = status
    reservation.updated_at = utcnow()
    session.add(reservation)
    try:
        session.commit()
    except IntegrityError:
        # reactivating while another active reservation holds the property
        session.rollback()
        raise ReservationConflict("An active reservation already exists for this property") from None
    session.refresh(reservation)
    return reservation


def cancel_reservation(session: Session, reservation_id: int) -> PropertyReservation:
    """Cancel and expire outstanding invitations; the property is free again."""
    reservation = get_reservation(session, reservation_id)
    reservation.reservation_status = CANCELLED
    reservation.updated_at = utcnow()
    session.add(reservation)
    for invitation in get_invitations(session, reservation_id):
        if invitation.status == "pending":
            invitation.status = "expired"
            session.add(invitation)
    session.commit()
    session.refresh(reservation)
    logger.info("reservation %s cancelled", reservation_id)
    return reservation


def send_invitations(
    session: Session,
    reservation_id: int,
    initiator_id: int,
    invitations: Sequence[Dict],
    now: Optional[datetime] = None,
    notify=None,
) -> List[CoOwnerInvitation]:
    """Invite co-owners into open slots; only the initiator may do this.

    ``notify(invitation)`` is called for each invitation after the batch
    commits. Delivery problems are logged, never raised.
    """
    now = now or utcnow()
    reservation = get_reservation(session, reservation_id)
    if reservation.initiator_investor_id != initiator_id:
        raise Forbidden("Only the reservation initiator can send invitations")
    if reservation.reservation_status not in (DRAFT, INVITATIONS_SENT):
        raise InvitationConflict(f"Reservation is {reservation.reservation_status}; invitations are closed")
    if not invitations:
        raise ValidationFailed("At least one invitation is required", field="invitations")

    slots = {slot.id: slot for slot in get_slots(session, reservation_id)}
    requested = [inv["slot_id"] for inv in invitations]
    if len(set(requested)) != len(requested):
        raise ValidationFailed("Each slot can only be invited once", field="invitations")
    for slot_id in requested:
        slot = slots.get(slot_id)
        if slot is None:
            raise ValidationFailed(f"Slot {slot_id} does not belong to this reservation", field="invitations")
        if slot.investor_id is not None or slot.invitation_status in ("invited", "accepted"):
            raise InvitationConflict(f"Slot {slot.slot_number} is already taken or invited")

    created = []
    try:
        for inv in invitations:
            slot = slots[inv["slot_id"]]
            invitation = CoOwnerInvitation(
                reservation_id=reservation.id,
                slot_id=slot.id,
                invited_email=inv["invited_email"],
                invited_by_investor_id=initiator_id,
                invitation_token=secrets.token_hex(16),
                expires_at=now + timedelta(days=INVITATION_TTL_DAYS),
                created_at=now,
            )
            slot.invitation_status = "invited"
            slot.invitation_email = inv["invited_email"]
            session.add(slot)
            session.add(invitation)
            created.append(invitation)
        reservation.reservation_status = INVITATIONS_SENT
        reservation.updated_at = now
        session.add(reservation)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise InvitationConflict("An invitation already exists for this slot") from None

    append_audit(
        session,
        AuditEvent.INVITATIONS_SENT,
        investor_id=initiator_id,
        property_id=reservation.property_id,
        meta={"reservation_id": reservation_id, "invitation_ids": [i.id for i in created]},
    )
    for invitation in created:
        session.refresh(invitation)
        if notify is not None:
            try:
                notify(invitation)
            except Exception:
                logger.exception("invitation %s could not be delivered", invitation.id)
    return created


def get_invitation_by_token(session: Session, token: str) -> CoOwnerInvitation:
    invitation = session.exec(select(CoOwnerInvitation).where(CoOwnerInvitation.invitation_token == token)).first()
    if not invitation:
        raise NotFound("Invitation not found")
    return invitation


def _open_invitation(session: Session, token: str, now: datetime) -> CoOwnerInvitation:
    invitation = get_invitation_by_token(session, token)
    if invitation.status != "pending":
        raise InvitationConflict("Invitation has already been processed")
    if now >= invitation.expires_at:
        invitation.status = "expired"
        session.add(invitation)
        session.commit()
        raise ValidationFailed("Invitation has expired", field="invitation_token")
    return invitation


def accept_invitation(session: Session, token: str, investor_id: int, now: Optional[datetime] = None) -> CoOwnerInvitation:
    now = now or utcnow()
    invitation = _open_invitation(session, token, now)
    if not session.get(Investor, investor_id):
        raise NotFound(f"Investor {investor_id} not found")
    slots = get_slots(session, invitation.reservation_id)
    if any(s.investor_id == investor_id for s in slots):
        raise InvitationConflict("Investor already holds a slot in this reservation")

    slot = next(s for s in slots if s.id == invitation.slot_id)
    invitation.status = "accepted"
    invitation.accepted_at = now
    slot.investor_id = investor_id
    slot.invitation_status = "accepted"
    session.add(invitation)
    session.add(slot)

    reservation = get_reservation(session, invitation.reservation_id)
    if all(s.investor_id is not None for s in slots):
        reservation.reservation_status = ALL_SIGNED
    reservation.updated_at = now
    session.add(reservation)
    session.commit()

    append_audit(
        session,
        AuditEvent.INVITATION_ACCEPTED,
        investor_id=investor_id,
        property_id=reservation.property_id,
        meta={"reservation_id": reservation.id, "slot_number": slot.slot_number},
    )
    session.refresh(invitation)
    return invitation


def decline_invitation(session: Session, token: str, now: Optional[datetime] = None) -> CoOwnerInvitation:
    now = now or utcnow()
    invitation = _open_invitation(session, token, now)
    invitation.status = "declined"
    slot = session.get(CoOwnerSlot, invitation.slot_id)
    if slot is not None:
        slot.invitation_status = "declined"
        session.add(slot)
    session.add(invitation)
    session.commit()

    reservation = get_reservation(session, invitation.reservation_id)
    append_audit(
        session,
        AuditEvent.INVITATION_DECLINED,
        property_id=reservation.property_id,
        meta={"reservation_id": reservation.id, "invitation_id": invitation.id},
    )
    session.refresh(invitation)
    return invitation
