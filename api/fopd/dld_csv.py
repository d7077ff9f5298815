"""Co-owner register for DLD filing, one row per signed (investor, document)."""
import csv
import io
import logging
from datetime import timedelta
from typing import List, Tuple

from sqlmodel import Session, select

from .config import HANDOVER_GRACE_DAYS
from .doctypes import DocumentType
from .errors import IntegrityFailure, NotFound
from .models import Fraction, Investor, Property
from .signatures import get_property_signatures
from .templates import active_templates_by_type
from .utils import utcnow

logger = logging.getLogger(__name__)

CSV_HEADERS = (
    "property_id",
    "property_title",
    "handover_deadline",
    "document_type",
    "owner_index",
    "investor_id",
    "full_name",
    "email",
    "phone",
    "passport_number",
    "emirates_id",
    "fraction_number",
    "ownership_percent",
    "signature_timestamp",
    "signature_ip",
    "signature_hash",
)


def get_property(session: Session, property_id: int) -> Property:
    prop = session.get(Property, property_id)
    if not prop:
        raise NotFound(f"Property {property_id} not found")
    return prop


def property_fractions(session: Session, property_id: int) -> List[Fraction]:
    return session.exec(
        select(Fraction).where(Fraction.property_id == property_id).order_by(Fraction.fraction_number)
    ).all()


def co_owner_roster(session: Session, property_id: int) -> List[Tuple[Investor, Fraction]]:
    """Co-owners in fraction order, each with the first fraction they hold."""
    roster = []
    seen = set()
    for fraction in property_fractions(session, property_id):
        if fraction.investor_id in seen:
            continue
        investor = session.get(Investor, fraction.investor_id)
        if investor is None:
            logger.warning("fraction %s references missing investor %s", fraction.id, fraction.investor_id)
            continue
        seen.add(fraction.investor_id)
        roster.append((investor, fraction))
    return roster


def missing_kyc(investors) -> List[Investor]:
    return [i for i in investors if not i.passport_number or not i.emirates_id]


def handover_deadline(prop: Property) -> str:
    start = prop.handover_date or utcnow()
    return (start + timedelta(days=HANDOVER_GRACE_DAYS)).date().isoformat()


def ownership_percent(prop: Property) -> str:
    return f"{100 / prop.total_fractions:.2f}%"


def build_csv(session: Session, property_id: int) -> str:
    """Return the CSV text for ``property_id``.

    Raises :class:`IntegrityFailure` when any co-owner lacks a passport
    number or Emirates ID; no partial register is ever produced.
    """
    prop = get_property(session, property_id)
    roster = co_owner_roster(session, property_id)
    if not roster:
        raise IntegrityFailure(f"No co-owners found for property {property_id}")

    incomplete = missing_kyc(investor for investor, _ in roster)
    if incomplete:
        raise IntegrityFailure(
            "KYC data missing for investors: "
            + ", ".join(f"{i.full_name} ({i.email})" for i in incomplete),
            investor_ids=[i.id for i in incomplete],
        )

    templates = active_templates_by_type(session)
    signatures = get_property_signatures(session, property_id)
    deadline = handover_deadline(prop)
    share = ownership_percent(prop)

    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow(CSV_HEADERS)
    for doc_type in DocumentType:
        template = templates.get(doc_type)
        if template is None:
            logger.warning("no active template for %s; skipped in CSV for property %s", doc_type.value, property_id)
            continue
        signed = {s.investor_id: s for s in signatures if s.template_id == template.id}
        for owner_index, (investor, fraction) in enumerate(roster, start=1):
            signature = signed.get(investor.id)
            if signature is None:
                continue
            writer.writerow([
                prop.id,
                prop.title,
                deadline,
                doc_type.value,
                owner_index,
                investor.id,
                investor.full_name,
                investor.email,
                investor.phone,
                investor.passport_number,
                investor.emirates_id,
                fraction.fraction_number,
                share,
                signature.server_timestamp,
                signature.ip_address or "N/A",
                signature.signature_hash,
            ])
    return out.getvalue()


def validate_export(session: Session, property_id: int) -> Tuple[List[str], bool]:
    """Collect every reason ``property_id`` cannot be exported yet.

    Returns ``(reasons, signatures_short)``; the flag tells a missing-signature
    problem apart from data problems an admin has to correct.
    """
    prop = get_property(session, property_id)
    reasons = []

    if prop.fractions_sold < prop.total_fractions:
        reasons.append(f"Only {prop.fractions_sold} of {prop.total_fractions} fractions sold")

    fractions = property_fractions(session, property_id)
    if len(fractions) < prop.total_fractions:
        reasons.append(f"Only {len(fractions)} fractions found, expected {prop.total_fractions}")

    investors = [investor for investor, _ in co_owner_roster(session, property_id)]
    incomplete = missing_kyc(investors)
    if incomplete:
        reasons.append("Missing KYC data for investors: " + ", ".join(i.full_name for i in incomplete))

    templates = active_templates_by_type(session)
    missing_types = [t.value for t in DocumentType if t not in templates]
    if missing_types:
        reasons.append("No active template for: " + ", ".join(missing_types))

    signature_count = len(get_property_signatures(session, property_id))
    required = prop.total_fractions * len(DocumentType)
    signatures_short = signature_count < required
    if signatures_short:
        reasons.append(f"Only {signature_count} of {required} signatures completed")

    return reasons, signatures_short
