import base64
import io
import os
from datetime import datetime, timedelta
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlmodel import SQLModel, Session, create_engine

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ADMIN_ACCESS_TOKEN", "admin-test-token")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "webhook-test-secret")

from fopd.main import app  # noqa: E402
from fopd import db as db_module  # noqa: E402
from fopd.db import get_session  # noqa: E402
from fopd import storage as storage_module  # noqa: E402
from fopd import email as email_module  # noqa: E402
from fopd.crypto import encrypt_data, generate_hash, server_timestamp  # noqa: E402
from fopd.doctypes import DocumentType  # noqa: E402
from fopd.models import Fraction, Investor, InvestorSignature, Property  # noqa: E402
from fopd.otp import OtpStore, get_otp_store  # noqa: E402
from fopd.templates import create_template  # noqa: E402
from fopd.utils import make_token  # noqa: E402

ADMIN_HEADERS = {"X-Access-Token": os.getenv("ADMIN_ACCESS_TOKEN", "admin-test-token")}

TEMPLATE_BODIES = {
    DocumentType.CO_OWNERSHIP: (
        "CO-OWNERSHIP AGREEMENT\n\n"
        "This agreement is made on {{CURRENT_DATE}} between {{INVESTOR_NAME}} ({{INVESTOR_EMAIL}}) "
        "and the other co-owners of {{PROPERTY_TITLE}}, {{PROPERTY_LOCATION}}.\n\n"
        "The property is valued at {{PROPERTY_PRICE}} and each fraction at {{FRACTION_PRICE}}. "
        "It has {{BEDROOMS}} bedrooms, {{BATHROOMS}} bathrooms and {{AREA}}.",
        "اتفاقية الملكية المشتركة\n\n"
        "أبرمت هذه الاتفاقية بتاريخ {{CURRENT_DATE}} بين {{INVESTOR_NAME}} وبقية الملاك في {{PROPERTY_TITLE}}.\n\n"
        "قيمة العقار {{PROPERTY_PRICE}} وقيمة الحصة {{FRACTION_PRICE}}.",
    ),
    DocumentType.POWER_OF_ATTORNEY: (
        "POWER OF ATTORNEY\n\nI, {INVESTOR_NAME}, holder of investor id {INVESTOR_ID}, appoint the "
        "property manager of {PROPERTY_TITLE} as my attorney.",
        "توكيل رسمي\n\nأنا {INVESTOR_NAME} أوكل مدير العقار {PROPERTY_TITLE}.",
    ),
    DocumentType.JOP_DECLARATION: (
        "JOINT OWNERSHIP PROPERTY DECLARATION\n\n"
        "Co-owners: {{CO_OWNER_1_NAME}}, {{CO_OWNER_2_NAME}}, {{CO_OWNER_3_NAME}}, {{CO_OWNER_4_NAME}}.\n\n"
        "Property: {{PROPERTY_TITLE}}.",
        "إقرار الملكية المشتركة\n\nالملاك: {{CO_OWNER_1_NAME}}، {{CO_OWNER_2_NAME}}، {{CO_OWNER_3_NAME}}، {{CO_OWNER_4_NAME}}.",
    ),
}


class FakeRedis:
    """The subset of redis-py that the OTP store uses."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    def set(self, name, value, ex=None, keepttl=False):
        self.data[name] = value
        if ex is not None:
            self.ttls[name] = ex
        elif not keepttl:
            self.ttls.pop(name, None)
        return True

    def get(self, name):
        return self.data.get(name)

    def delete(self, *names):
        removed = 0
        for name in names:
            if self.data.pop(name, None) is not None:
                removed += 1
            self.ttls.pop(name, None)
        return removed


def make_png(width=40, height=16, color=(20, 20, 120)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def png_data_url(png: bytes = None) -> str:
    return "data:image/png;base64," + base64.b64encode(png or make_png()).decode("ascii")


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    return engine


@pytest.fixture
def setup_db(test_engine):
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def session(test_engine, setup_db):
    with Session(test_engine) as s:
        yield s


@pytest.fixture
def mock_storage(monkeypatch) -> Dict[str, bytes]:
    store: Dict[str, bytes] = {}

    def fake_put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
        store[key] = bytes(data)

    def fake_get_bytes(key: str) -> bytes:
        if key not in store:
            raise KeyError(key)
        return store[key]

    monkeypatch.setattr(storage_module, "put_bytes", fake_put_bytes)
    monkeypatch.setattr(storage_module, "get_bytes", fake_get_bytes)
    return store


@pytest.fixture
def sent_emails(monkeypatch):
    messages = []

    def fake_send_email(to, subject, body, html_body=None, attachments=None, sender_name=None, reply_to=None):
        messages.append(
            {
                "to": to,
                "subject": subject,
                "text": body,
                "html": html_body,
                "sender_name": sender_name,
            }
        )

    monkeypatch.setattr(email_module, "send_email", fake_send_email)
    return messages


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def otp_store(fake_redis):
    return OtpStore(client=fake_redis)


@pytest.fixture
def client(test_engine, setup_db, mock_storage, sent_emails, otp_store):
    db_module.engine = test_engine

    def override_session():
        with Session(test_engine) as s:
            yield s

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_otp_store] = lambda: otp_store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ---------- factories ----------

def add_investor(session, name="Aisha Rahman", email=None, kyc=True, **extra) -> Investor:
    investor = Investor(
        full_name=name,
        email=email or f"{name.lower().replace(' ', '.')}@example.com",
        phone=extra.pop("phone", "+971500000001"),
        passport_number="P1234567" if kyc else None,
        emirates_id="784-1990-1234567-1" if kyc else None,
        kyc_status="approved" if kyc else "pending",
        **extra,
    )
    session.add(investor)
    session.commit()
    session.refresh(investor)
    return investor


def add_property(session, title="Marina Vista 2BR", total_fractions=4, fractions_sold=0, **extra) -> Property:
    prop = Property(
        title=title,
        location=extra.pop("location", "Dubai Marina"),
        total_price=extra.pop("total_price", 3600000.0),
        price_per_fraction=extra.pop("price_per_fraction", 900000.0),
        total_fractions=total_fractions,
        fractions_sold=fractions_sold,
        bedrooms=extra.pop("bedrooms", 2),
        bathrooms=extra.pop("bathrooms", 2),
        area=extra.pop("area", 1250),
        handover_date=extra.pop("handover_date", datetime(2027, 3, 31)),
        **extra,
    )
    session.add(prop)
    session.commit()
    session.refresh(prop)
    return prop


def add_templates(session) -> Dict[DocumentType, object]:
    templates = {}
    for doc_type, (content, content_ar) in TEMPLATE_BODIES.items():
        templates[doc_type] = create_template(
            session, doc_type.display_name, doc_type, content, content_ar
        )
    return templates


def add_fraction(session, investor, prop, number) -> Fraction:
    fraction = Fraction(
        investor_id=investor.id,
        property_id=prop.id,
        fraction_number=number,
        purchase_price=prop.price_per_fraction,
        payment_status="completed",
    )
    session.add(fraction)
    session.commit()
    session.refresh(fraction)
    return fraction


def add_signature(session, investor, template, prop, data_url=None, signed_at=None, ip="10.0.0.1") -> InvestorSignature:
    data_url = data_url or png_data_url()
    signed_at = signed_at or datetime(2026, 10, 1, 9, 30)
    signature = InvestorSignature(
        investor_id=investor.id,
        template_id=template.id,
        property_id=prop.id,
        encrypted_signature_data=encrypt_data(data_url),
        signature_hash=generate_hash(data_url),
        ip_address=ip,
        user_agent="pytest",
        signed_at=signed_at,
        consent_given=True,
        server_timestamp=server_timestamp(signed_at),
    )
    session.add(signature)
    session.commit()
    session.refresh(signature)
    return signature


def build_sold_property(session, owners=4, kyc_missing=(), sign=True):
    """A fully sold property with ``owners`` co-owners holding one fraction each."""
    prop = add_property(session, fractions_sold=owners, total_fractions=owners)
    templates = add_templates(session)
    names = ["Aisha Rahman", "Omar Haddad", "Li Wei", "Sara O'Neil"]
    investors = []
    for i in range(owners):
        investor = add_investor(session, name=names[i], kyc=i not in kyc_missing)
        add_fraction(session, investor, prop, i + 1)
        investors.append(investor)
    if sign:
        for investor in investors:
            for template in templates.values():
                add_signature(session, investor, template, prop)
    return prop, templates, investors


def investor_headers(investor) -> Dict[str, str]:
    return {"X-Access-Token": make_token({"investor_id": investor.id})}


def fixed_now() -> datetime:
    return datetime(2026, 10, 19, 12, 0, 0)


def minutes(n) -> timedelta:
    return timedelta(minutes=n)
