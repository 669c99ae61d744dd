"""Modification window: role first, then elapsed hours."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from fiscal_kernel.domain.dtos import ActorRole, FiscalDocument
from fiscal_kernel.domain.modification_window import DenialReason, ModificationWindowGuard
from fiscal_kernel.exceptions import (
    FiscalComplianceError,
    InsufficientRoleError,
    ModificationWindowClosedError,
)

ISSUED_AT = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def document() -> FiscalDocument:
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


@pytest.fixture
def guard() -> ModificationWindowGuard:
    return ModificationWindowGuard()


class TestAuthorize:
    def test_admin_within_window(self, guard, document):
        decision = guard.authorize(document, ActorRole.ADMIN, ISSUED_AT + timedelta(hours=23))

        assert decision.allowed
        assert decision.reason is None
        assert decision.hours_elapsed == pytest.approx(23)
        assert decision.max_hours == 24

    def test_admin_at_boundary_allowed(self, guard, document):
        decision = guard.authorize(document, "admin", ISSUED_AT + timedelta(hours=24))

        assert decision.allowed

    def test_admin_past_window_denied(self, guard, document):
        decision = guard.authorize(document, ActorRole.ADMIN, ISSUED_AT + timedelta(hours=25))

        assert not decision.allowed
        assert decision.reason is DenialReason.WINDOW
        assert decision.hours_elapsed == pytest.approx(25)

    def test_just_past_boundary_denied(self, guard, document):
        decision = guard.authorize(
            document, ActorRole.ADMIN, ISSUED_AT + timedelta(hours=24, seconds=1)
        )

        assert decision.reason is DenialReason.WINDOW

    @pytest.mark.parametrize("role", [ActorRole.USER, ActorRole.READONLY, "auditor"])
    def test_non_privileged_denied_even_when_fresh(self, guard, document, role):
        decision = guard.authorize(document, role, ISSUED_AT + timedelta(hours=1))

        assert not decision.allowed
        assert decision.reason is DenialReason.ROLE
        assert decision.hours_elapsed == pytest.approx(1)

    def test_role_checked_before_window(self, guard, document):
        decision = guard.authorize(document, ActorRole.USER, ISSUED_AT + timedelta(hours=48))

        assert decision.reason is DenialReason.ROLE

    def test_custom_window_and_roles(self, document):
        guard = ModificationWindowGuard(max_hours=2, privileged_roles=["admin", "accountant"])

        assert guard.authorize(document, "accountant", ISSUED_AT + timedelta(hours=1)).allowed
        assert (
            guard.authorize(document, "accountant", ISSUED_AT + timedelta(hours=3)).reason
            is DenialReason.WINDOW
        )


class TestViolations:
    def test_window_violation_payload(self, guard, document):
        decision = guard.authorize(
            document, ActorRole.ADMIN, ISSUED_AT + timedelta(hours=25, minutes=40)
        )
        violation = decision.to_violation()

        assert isinstance(violation, ModificationWindowClosedError)
        assert isinstance(violation, FiscalComplianceError)
        payload = violation.to_payload()
        assert payload["code"] == "FISCAL_COMPLIANCE_VIOLATION"
        assert payload["hoursElapsed"] == 26
        assert payload["maxHours"] == 24
        assert "24 horas" in payload["details"]

    def test_role_violation_payload(self, guard, document):
        decision = guard.authorize(document, ActorRole.USER, ISSUED_AT + timedelta(hours=1))
        violation = decision.to_violation()

        assert isinstance(violation, InsufficientRoleError)
        assert violation.actor_role == "user"
        assert violation.to_payload()["hoursElapsed"] == 1

    def test_allowed_decision_has_no_violation(self, guard, document):
        decision = guard.authorize(document, ActorRole.ADMIN, ISSUED_AT)

        with pytest.raises(ValueError):
            decision.to_violation()
