from datetime import timedelta

import pytest
from sqlmodel import select

from conftest import add_investor, add_property, fixed_now, investor_headers
from fopd.errors import Forbidden, InvitationConflict, ReservationConflict, ValidationFailed
from fopd.models import CoOwnerSlot, PropertyReservation
from fopd.reservations import (
    ALL_SIGNED,
    CANCELLED,
    INVITATIONS_SENT,
    accept_invitation,
    cancel_reservation,
    create_reservation,
    decline_invitation,
    get_invitations,
    get_slots,
    send_invitations,
    update_reservation_status,
    validate_slots,
)

QUARTERS = [{"slot_number": n, "share_percentage": 25} for n in range(1, 5)]


@pytest.fixture
def reserved(session):
    initiator = add_investor(session, name="Aisha Rahman")
    prop = add_property(session)
    slots = [dict(QUARTERS[0], investor_id=initiator.id)] + QUARTERS[1:]
    reservation, created = create_reservation(session, initiator.id, prop.id, 4, slots)
    return initiator, prop, reservation, created


def test_slot_validation_reports_every_problem():
    with pytest.raises(ValidationFailed) as exc:
        validate_slots(5, [{"slot_number": 1, "share_percentage": 60}, {"slot_number": 1, "share_percentage": 30}])
    errors = exc.value.extra["errors"]
    assert "Total slots must be between 1 and 4" in errors
    assert "Number of slots must match total_slots_reserved" in errors
    assert "Slot numbers must be unique" in errors
    assert "Share percentages must add up to 100%" in errors
    validate_slots(3, [
        {"slot_number": 1, "share_percentage": 33.33},
        {"slot_number": 2, "share_percentage": 33.33},
        {"slot_number": 3, "share_percentage": 33.34},
    ])


def test_create_reservation_with_initiator_slot(reserved):
    initiator, _, reservation, slots = reserved
    assert reservation.reservation_status == "draft"
    assert [s.slot_number for s in slots] == [1, 2, 3, 4]
    assert slots[0].investor_id == initiator.id
    assert slots[0].invitation_status == "accepted"
    assert {s.invitation_status for s in slots[1:]} == {"reserved"}


def test_one_active_reservation_per_property(session, reserved):
    initiator, prop, reservation, _ = reserved
    other = add_investor(session, name="Omar Haddad")
    with pytest.raises(ReservationConflict):
        create_reservation(session, other.id, prop.id, 4, QUARTERS)
    assert len(session.exec(select(PropertyReservation)).all()) == 1
    # no orphan slots from the failed attempt
    assert len(session.exec(select(CoOwnerSlot)).all()) == 4

    cancel_reservation(session, reservation.id)
    replacement, _ = create_reservation(session, other.id, prop.id, 4, QUARTERS)
    assert replacement.id != reservation.id
    with pytest.raises(ReservationConflict):
        update_reservation_status(session, reservation.id, "draft")
    with pytest.raises(ValidationFailed):
        update_reservation_status(session, replacement.id, "archived")


def test_invitations_fill_the_reservation(session, reserved):
    initiator, _, reservation, slots = reserved
    notified = []
    invitations = send_invitations(
        session,
        reservation.id,
        initiator.id,
        [{"slot_id": s.id, "invited_email": f"co{s.slot_number}@example.com"} for s in slots[1:]],
        now=fixed_now(),
        notify=notified.append,
    )
    assert len(invitations) == 3
    assert len(notified) == 3
    assert all(len(i.invitation_token) == 32 for i in invitations)
    assert invitations[0].expires_at == fixed_now() + timedelta(days=7)
    session.refresh(reservation)
    assert reservation.reservation_status == INVITATIONS_SENT
    assert {s.invitation_status for s in get_slots(session, reservation.id)[1:]} == {"invited"}

    co_owners = [add_investor(session, name=f"Co Owner {n}") for n in range(3)]
    for invitation, investor in zip(invitations, co_owners):
        accept_invitation(session, invitation.invitation_token, investor.id, now=fixed_now())
    session.refresh(reservation)
    assert reservation.reservation_status == ALL_SIGNED
    assert {s.investor_id for s in get_slots(session, reservation.id)} == {initiator.id} | {i.id for i in co_owners}


def test_only_the_initiator_invites_open_slots(session, reserved):
    initiator, _, reservation, slots = reserved
    stranger = add_investor(session, name="Li Wei")
    with pytest.raises(Forbidden):
        send_invitations(session, reservation.id, stranger.id, [{"slot_id": slots[1].id, "invited_email": "a@b.co"}])
    with pytest.raises(InvitationConflict):
        send_invitations(session, reservation.id, initiator.id, [{"slot_id": slots[0].id, "invited_email": "a@b.co"}])
    with pytest.raises(ValidationFailed):
        send_invitations(session, reservation.id, initiator.id, [
            {"slot_id": slots[1].id, "invited_email": "a@b.co"},
            {"slot_id": slots[1].id, "invited_email": "c@d.co"},
        ])
    with pytest.raises(ValidationFailed):
        send_invitations(session, reservation.id, initiator.id, [{"slot_id": 999, "invited_email": "a@b.co"}])


def test_notification_failures_do_not_undo_invitations(session, reserved):
    initiator, _, reservation, slots = reserved

    def broken(invitation):
        raise RuntimeError("smtp down")

    created = send_invitations(
        session, reservation.id, initiator.id,
        [{"slot_id": slots[1].id, "invited_email": "co@example.com"}], notify=broken,
    )
    assert [i.id for i in get_invitations(session, reservation.id)] == [created[0].id]


def test_invitation_lifecycle_edges(session, reserved):
    initiator, _, reservation, slots = reserved
    invitations = send_invitations(
        session, reservation.id, initiator.id,
        [
            {"slot_id": slots[1].id, "invited_email": "a@example.com"},
            {"slot_id": slots[2].id, "invited_email": "b@example.com"},
            {"slot_id": slots[3].id, "invited_email": "c@example.com"},
        ],
        now=fixed_now(),
    )
    # the initiator already holds a slot
    with pytest.raises(InvitationConflict):
        accept_invitation(session, invitations[0].invitation_token, initiator.id, now=fixed_now())

    declined = decline_invitation(session, invitations[1].invitation_token, now=fixed_now())
    assert declined.status == "declined"
    assert session.get(CoOwnerSlot, slots[2].id).invitation_status == "declined"
    with pytest.raises(InvitationConflict):
        decline_invitation(session, invitations[1].invitation_token, now=fixed_now())

    late = fixed_now() + timedelta(days=7)
    with pytest.raises(ValidationFailed):
        accept_invitation(session, invitations[2].invitation_token, initiator.id, now=late)
    session.refresh(invitations[2])
    assert invitations[2].status == "expired"


def test_cancel_expires_pending_invitations(session, reserved):
    initiator, _, reservation, slots = reserved
    send_invitations(session, reservation.id, initiator.id, [{"slot_id": slots[1].id, "invited_email": "a@example.com"}])
    cancelled = cancel_reservation(session, reservation.id)
    assert cancelled.reservation_status == CANCELLED
    assert [i.status for i in get_invitations(session, reservation.id)] == ["expired"]
    with pytest.raises(InvitationConflict):
        send_invitations(session, reservation.id, initiator.id, [{"slot_id": slots[2].id, "invited_email": "b@example.com"}])


def test_reservation_endpoints(client, session, sent_emails):
    initiator = add_investor(session, name="Aisha Rahman")
    invitee = add_investor(session, name="Omar Haddad")
    prop = add_property(session, title="Palm Residences")
    headers = investor_headers(initiator)

    bad = client.post("/api/reservations", json={"property_id": prop.id, "total_slots_reserved": 2, "slots": [
        {"slot_number": 1, "share_percentage": 50},
        {"slot_number": 2, "share_percentage": 40},
    ]}, headers=headers)
    assert bad.status_code == 422

    r = client.post("/api/reservations", json={"property_id": prop.id, "total_slots_reserved": 2, "slots": [
        {"slot_number": 1, "share_percentage": 50, "investor_id": initiator.id},
        {"slot_number": 2, "share_percentage": 50},
    ]}, headers=headers)
    assert r.status_code == 201
    reservation_id = r.json()["reservation"]["id"]
    open_slot = r.json()["slots"][1]["id"]

    r = client.post(
        f"/api/reservations/{reservation_id}/invite",
        json={"invitations": [{"slot_id": open_slot, "invited_email": invitee.email}]},
        headers=headers,
    )
    assert r.status_code == 200
    token = r.json()["invitations"][0]["invitation_token"]
    assert sent_emails[0]["to"] == invitee.email
    assert "Palm Residences" in sent_emails[0]["subject"]
    assert token in sent_emails[0]["text"]

    details = client.get(f"/api/invitations/{token}").json()
    assert details["slot"]["slot_number"] == 2

    r = client.post("/api/invitations/accept", json={"invitation_token": token}, headers=investor_headers(invitee))
    assert r.status_code == 200
    assert client.get(f"/api/reservations/{reservation_id}", headers=headers).json()["reservation"]["reservation_status"] == "all_signed"

    assert client.delete(f"/api/reservations/{reservation_id}", headers=investor_headers(invitee)).status_code == 403
    mine = client.get("/api/reservations/investor", headers=headers).json()["reservations"]
    assert [m["id"] for m in mine] == [reservation_id]
