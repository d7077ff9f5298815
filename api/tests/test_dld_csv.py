import csv
import io

import pytest

from conftest import add_signature, build_sold_property
from fopd.dld_csv import CSV_HEADERS, build_csv, handover_deadline, ownership_percent, validate_export
from fopd.doctypes import DocumentType
from fopd.errors import IntegrityFailure, NotFound


def _rows(text):
    return list(csv.DictReader(io.StringIO(text)))


def test_one_row_per_signed_investor_and_document(session):
    prop, _, investors = build_sold_property(session)
    text = build_csv(session, prop.id)
    assert text.splitlines()[0] == ",".join(CSV_HEADERS)
    rows = _rows(text)
    assert len(rows) == 12
    assert [r["document_type"] for r in rows[:4]] == ["co_ownership"] * 4
    assert [r["full_name"] for r in rows[:4]] == [i.full_name for i in investors]
    assert {r["ownership_percent"] for r in rows} == {"25.00%"}
    assert {r["handover_deadline"] for r in rows} == {"2027-05-30"}
    assert rows[0]["signature_timestamp"] == "2026-10-01T09:30:00.000Z"
    assert rows[0]["passport_number"] == "P1234567"
    assert rows[3]["fraction_number"] == "4"


def test_fields_are_quoted_per_rfc_4180(session):
    prop, _, investors = build_sold_property(session)
    prop.title = "Creek Harbour, Tower 2"
    investors[3].full_name = 'Sara "Sal" O\'Neil'
    session.add(prop)
    session.add(investors[3])
    session.commit()

    text = build_csv(session, prop.id)
    assert '"Creek Harbour, Tower 2"' in text
    assert '"Sara ""Sal"" O\'Neil"' in text
    assert text.endswith("\r\n")
    rows = _rows(text)
    assert rows[3]["full_name"] == 'Sara "Sal" O\'Neil'
    assert rows[0]["property_title"] == "Creek Harbour, Tower 2"


def test_missing_kyc_blocks_the_whole_register(session):
    prop, _, investors = build_sold_property(session, kyc_missing=(1, 2))
    with pytest.raises(IntegrityFailure) as exc:
        build_csv(session, prop.id)
    assert "Omar Haddad" in exc.value.message
    assert "Li Wei" in exc.value.message
    assert exc.value.extra["investor_ids"] == [investors[1].id, investors[2].id]


def test_unsigned_documents_are_left_out(session):
    prop, templates, investors = build_sold_property(session, sign=False)
    add_signature(session, investors[0], templates[DocumentType.POWER_OF_ATTORNEY], prop, ip=None)
    rows = _rows(build_csv(session, prop.id))
    assert len(rows) == 1
    assert rows[0]["document_type"] == "power_of_attorney"
    assert rows[0]["signature_ip"] == "N/A"


def test_unknown_property(session):
    with pytest.raises(NotFound):
        build_csv(session, 404)


def test_validation_collects_every_reason(session):
    prop, templates, investors = build_sold_property(session, kyc_missing=(0,), sign=False)
    prop.fractions_sold = 3
    session.add(prop)
    session.commit()
    add_signature(session, investors[0], templates[DocumentType.CO_OWNERSHIP], prop)

    reasons, short = validate_export(session, prop.id)
    assert short
    assert "Only 3 of 4 fractions sold" in reasons
    assert "Missing KYC data for investors: Aisha Rahman" in reasons
    assert "Only 1 of 12 signatures completed" in reasons


def test_ready_property_has_no_reasons(session):
    prop, _, _ = build_sold_property(session)
    assert validate_export(session, prop.id) == ([], False)


def test_helpers(session):
    prop, _, _ = build_sold_property(session, sign=False)
    assert ownership_percent(prop) == "25.00%"
    assert handover_deadline(prop) == "2027-05-30"
