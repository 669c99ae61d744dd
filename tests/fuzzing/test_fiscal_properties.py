"""
Hypothesis-based property tests for the pure fiscal rules.

Properties checked:
- Document numbers: formatting and parsing agree for every valid pair
- RUC: exactly one check digit validates each eight-digit base
- Modification window: privileged roles inside the window are the only
  allowed actors
- Calendar months: rollover lands in the next month, day clamped
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from fiscal_kernel.domain.document_number import (
    MAX_SEQUENCE,
    format_document_number,
    parse_document_number,
)
from fiscal_kernel.domain.dtos import FiscalDocument
from fiscal_kernel.domain.modification_window import DenialReason, ModificationWindowGuard
from fiscal_kernel.domain.ruc import validate_ruc
from fiscal_kernel.services.usage_quota_tracker import add_one_month, month_index

codes = st.from_regex(r"\A[0-9]{3}\Z")
sequences = st.integers(min_value=1, max_value=MAX_SEQUENCE)
moments = st.datetimes(
    min_value=datetime(2000, 1, 1), max_value=datetime(2099, 12, 31)
).map(lambda d: d.replace(tzinfo=timezone.utc))

ISSUED_AT = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def _document() -> FiscalDocument:
    return FiscalDocument(
        id=uuid4(),
        document_number="001-001-0000001",
        establishment_code="001",
        point_of_sale_code="001",
        sequence=1,
        permit_number_used="12345678",
        issued_at=ISSUED_AT,
        issued_by=uuid4(),
    )


@given(codes, codes, sequences)
def test_document_number_shape(establishment, point_of_sale, sequence):
    number = format_document_number(establishment, point_of_sale, sequence)

    assert len(number) == 15
    parsed = parse_document_number(number)
    assert (parsed.establishment_code, parsed.point_of_sale_code, parsed.sequence) == (
        establishment,
        point_of_sale,
        sequence,
    )


@given(st.from_regex(r"\A[0-9]{8}\Z"))
def test_exactly_one_check_digit(base):
    valid = [d for d in range(10) if validate_ruc(f"{base}-{d}")]

    assert len(valid) == 1


@settings(max_examples=200)
@given(
    minutes=st.integers(min_value=0, max_value=24 * 60 * 10),
    role=st.sampled_from(["admin", "user", "auditor"]),
)
def test_window_decision(minutes, role):
    guard = ModificationWindowGuard(max_hours=24)
    decision = guard.authorize(_document(), role, ISSUED_AT + timedelta(minutes=minutes))

    assert decision.allowed == (role == "admin" and minutes <= 24 * 60)
    if role != "admin":
        assert decision.reason is DenialReason.ROLE
    elif not decision.allowed:
        assert decision.reason is DenialReason.WINDOW


@given(moments)
def test_add_one_month(moment):
    later = add_one_month(moment)

    assert month_index(later) == month_index(moment) + 1
    assert later.day <= moment.day
    assert (later.hour, later.minute, later.second) == (
        moment.hour,
        moment.minute,
        moment.second,
    )
