import hashlib
import hmac
import json

import pytest
from sqlmodel import select

from conftest import add_fraction, add_investor, add_property
from fopd.errors import Conflict, Unauthorized, ValidationFailed
from fopd.models import Fraction, Payment
from fopd.payments import handle_webhook, record_captured_payment, verify_webhook_signature

SECRET = "webhook-test-secret"


def _sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _charge(investor_id, property_id, charge_id="chg_001", status="CAPTURED"):
    return json.dumps({
        "id": charge_id,
        "status": status,
        "amount": 900000,
        "metadata": {"investorId": str(investor_id), "propertyId": str(property_id)},
        "source": {"payment_method": "VISA"},
    }).encode()


def test_signature_verification():
    body = b'{"id":"chg_1"}'
    verify_webhook_signature(body, _sign(body), secret=SECRET)
    with pytest.raises(Unauthorized):
        verify_webhook_signature(body, None, secret=SECRET)
    with pytest.raises(Unauthorized):
        verify_webhook_signature(body, "not-hex", secret=SECRET)
    with pytest.raises(Unauthorized):
        verify_webhook_signature(body, _sign(body, "other"), secret=SECRET)
    with pytest.raises(Unauthorized):
        verify_webhook_signature(body + b" ", _sign(body), secret=SECRET)


def test_capture_allocates_the_next_fraction(session):
    investor = add_investor(session)
    prop = add_property(session)
    add_fraction(session, add_investor(session, name="Omar Haddad"), prop, 1)
    prop.fractions_sold = 1
    session.add(prop)
    session.commit()

    payment, created = record_captured_payment(session, "chg_001", investor.id, prop.id, 900000.0)
    assert created
    fraction = session.get(Fraction, payment.fraction_id)
    assert fraction.fraction_number == 2
    assert fraction.gateway_charge_id == "chg_001"
    session.refresh(prop)
    session.refresh(investor)
    assert prop.fractions_sold == 2
    assert investor.fractions_purchased == 1
    assert investor.total_invested == 900000.0


def test_replayed_charge_is_processed_once(session):
    investor = add_investor(session)
    prop = add_property(session)
    first, created = record_captured_payment(session, "chg_001", investor.id, prop.id, 900000.0)
    again, created_again = record_captured_payment(session, "chg_001", investor.id, prop.id, 900000.0)
    assert created and not created_again
    assert again.id == first.id
    assert len(session.exec(select(Payment)).all()) == 1
    assert len(session.exec(select(Fraction)).all()) == 1


def test_sold_out_property_rejects_capture(session):
    investor = add_investor(session)
    prop = add_property(session, total_fractions=4, fractions_sold=4)
    with pytest.raises(Conflict):
        record_captured_payment(session, "chg_009", investor.id, prop.id, 900000.0)


def test_webhook_endpoint(client, session):
    investor = add_investor(session)
    prop = add_property(session)
    body = _charge(investor.id, prop.id)

    r = client.post("/api/payments/webhook", content=body, headers={"X-Tap-Signature": _sign(body)})
    assert r.status_code == 200
    assert r.json()["processed"] is True

    replay = client.post("/api/payments/webhook", content=body, headers={"X-Tap-Signature": _sign(body)})
    assert replay.json() == {"received": True, "processed": False, "payment_id": r.json()["payment_id"]}

    assert client.post("/api/payments/webhook", content=body).status_code == 401
    assert client.post("/api/payments/webhook", content=body, headers={"X-Tap-Signature": _sign(body, "x")}).status_code == 401

    pending = _charge(investor.id, prop.id, charge_id="chg_002", status="INITIATED")
    r = client.post("/api/payments/webhook", content=pending, headers={"X-Tap-Signature": _sign(pending)})
    assert r.json() == {"received": True, "processed": False}

    broken = b'{"id": "chg_003", "status": "CAPTURED", "metadata": {}}'
    r = client.post("/api/payments/webhook", content=broken, headers={"X-Tap-Signature": _sign(broken)})
    assert r.status_code == 400


@pytest.mark.parametrize(
    "body",
    [
        b'["chg_004", "CAPTURED"]',
        b'"CAPTURED"',
        b'{"id": "chg_005", "status": "CAPTURED", "metadata": ["1", "2"]}',
        b'{"id": "chg_006", "status": "CAPTURED", "metadata": {"investorId": "1", "propertyId": "1"}, "source": "VISA"}',
    ],
)
def test_webhook_rejects_bodies_of_the_wrong_shape(client, session, body):
    with pytest.raises(ValidationFailed):
        handle_webhook(session, body, _sign(body))
    r = client.post("/api/payments/webhook", content=body, headers={"X-Tap-Signature": _sign(body)})
    assert r.status_code == 400
    assert session.exec(select(Payment)).all() == []
