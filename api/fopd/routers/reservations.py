from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session

from ..auth import AccessContext, require_investor, resolve_access_context
from ..db import get_session
from ..email import send_invitation_email
from ..models import Investor, Property
from ..reservations import (
    accept_invitation,
    cancel_reservation,
    create_reservation,
    decline_invitation,
    get_invitation_by_token,
    get_reservation,
    get_reservation_with_slots,
    get_reservations_by_investor,
    send_invitations,
    update_reservation_status,
)
from ..schemas import AcceptInvitation, DeclineInvitation, ReservationCreate, ReservationStatusUpdate, SendInvitations

router = APIRouter()
invitations_router = APIRouter()


def _require_participant(ctx: AccessContext, reservation) -> None:
    if ctx.role != "admin" and reservation.initiator_investor_id != ctx.investor_id:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Only the reservation initiator can do this")


@router.post("", status_code=status.HTTP_201_CREATED)
def create(
    body: ReservationCreate,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_investor),
):
    reservation, slots = create_reservation(
        session,
        initiator_id=ctx.investor_id,
        property_id=body.property_id,
        total_slots=body.total_slots_reserved,
        slots=[s.model_dump() for s in body.slots],
    )
    return {"success": True, "reservation": reservation, "slots": slots}


@router.get("/investor")
def my_reservations(
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_investor),
):
    return {"reservations": get_reservations_by_investor(session, ctx.investor_id)}


@router.get("/{reservation_id}")
def reservation_details(
    reservation_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    return get_reservation_with_slots(session, reservation_id)


@router.patch("/{reservation_id}/status")
def change_status(
    reservation_id: int,
    body: ReservationStatusUpdate,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    _require_participant(ctx, get_reservation(session, reservation_id))
    return {"success": True, "reservation": update_reservation_status(session, reservation_id, body.status)}


@router.delete("/{reservation_id}")
def cancel(
    reservation_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    _require_participant(ctx, get_reservation(session, reservation_id))
    return {"success": True, "reservation": cancel_reservation(session, reservation_id)}


@router.post("/{reservation_id}/invite")
def invite(
    reservation_id: int,
    body: SendInvitations,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_investor),
):
    inviter = session.get(Investor, ctx.investor_id)
    reservation = get_reservation(session, reservation_id)
    prop = session.get(Property, reservation.property_id)

    def _notify(invitation):
        send_invitation_email(
            invitation.invited_email,
            inviter.full_name,
            prop.title if prop else f"property {reservation.property_id}",
            invitation.invitation_token,
            invitation.expires_at,
        )

    created = send_invitations(
        session,
        reservation_id,
        ctx.investor_id,
        [inv.model_dump() for inv in body.invitations],
        notify=_notify,
    )
    return {
        "success": True,
        "invitations": [
            {
                "id": inv.id,
                "slot_id": inv.slot_id,
                "invited_email": inv.invited_email,
                "invitation_token": inv.invitation_token,
                "expires_at": inv.expires_at,
            }
            for inv in created
        ],
    }


@invitations_router.get("/{token}")
def invitation_details(token: str, session: Session = Depends(get_session)):
    invitation = get_invitation_by_token(session, token)
    data = get_reservation_with_slots(session, invitation.reservation_id)
    slot = next((s for s in data["slots"] if s.id == invitation.slot_id), None)
    return {"invitation": invitation, "reservation": data["reservation"], "slot": slot}


@invitations_router.post("/accept")
def accept(
    body: AcceptInvitation,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_investor),
):
    if body.investor_id is not None and body.investor_id != ctx.investor_id:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "You can only accept invitations for yourself")
    invitation = accept_invitation(session, body.invitation_token, ctx.investor_id)
    return {"success": True, "message": "Invitation accepted successfully", "invitation": invitation}


@invitations_router.post("/decline")
def decline(body: DeclineInvitation, session: Session = Depends(get_session)):
    invitation = decline_invitation(session, body.invitation_token)
    return {"success": True, "message": "Invitation declined", "invitation": invitation}
