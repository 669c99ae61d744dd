"""
FiscalPermitService tests.

Configuration validates the timbrado before it supersedes the current
one; status reports the current permit without raising.
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from fiscal_kernel.domain.dtos import AuditAction
from fiscal_kernel.domain.permit_validator import PermitState
from fiscal_kernel.exceptions import PermitConfigurationError
from fiscal_kernel.services.auditor_service import AuditorService, PERMIT_ENTITY
from fiscal_kernel.services.fiscal_permit_service import FiscalPermitService


class TestConfigure:
    def test_first_permit(self, core, clock, permit_factory, admin_id):
        result = core.permits.configure(permit_factory(clock.today()), admin_id)

        assert result.permit.id is not None
        assert result.superseded_id is None
        assert result.warning is None
        assert core.permits.current() == result.permit

    def test_second_permit_supersedes(self, core, clock, permit_factory, admin_id):
        first = core.permits.configure(permit_factory(clock.today()), admin_id)
        second = core.permits.configure(
            permit_factory(clock.today(), permit_number="87654321"), admin_id
        )

        assert second.superseded_id == first.permit.id
        assert core.permits.current().permit_number == "87654321"

    def test_audited(self, core, clock, permit_factory, admin_id):
        result = core.permits.configure(permit_factory(clock.today()), admin_id)

        trace = core.auditor.get_trace(PERMIT_ENTITY, result.permit.id)
        assert trace.actions == (AuditAction.PERMIT_CONFIGURED,)
        assert trace.entries[0].actor_id == admin_id

    def test_near_expiry_saved_with_warning(self, core, clock, permit_factory, admin_id):
        result = core.permits.configure(
            permit_factory(clock.today(), days_valid=10), admin_id
        )

        assert result.warning.startswith("El timbrado vence en menos de 30 días")
        assert core.permits.current() is not None

    def test_rejection_saves_nothing(self, core, clock, permit_factory, admin_id):
        with pytest.raises(PermitConfigurationError):
            core.permits.configure(
                permit_factory(clock.today(), establishment_code="1"), admin_id
            )

        assert core.permits.current() is None
        with core.store.transaction() as uow:
            assert uow.list_audit_events() == []


class TestValidation:
    @pytest.mark.parametrize("number", [None, "", "   "])
    def test_number_required(self, core, clock, permit_factory, admin_id, number):
        permit = replace(permit_factory(clock.today()), permit_number=number)

        with pytest.raises(PermitConfigurationError) as exc_info:
            core.permits.configure(permit, admin_id)

        assert exc_info.value.field == "permit_number"
        assert exc_info.value.code == "PERMIT_CONFIGURATION_INVALID"

    def test_dates_required(self, core, clock, permit_factory, admin_id):
        permit = replace(permit_factory(clock.today()), valid_to=None)

        with pytest.raises(PermitConfigurationError) as exc_info:
            core.permits.configure(permit, admin_id)

        assert "obligatorias" in exc_info.value.details

    def test_end_before_start(self, core, clock, permit_factory, admin_id):
        permit = replace(
            permit_factory(clock.today()), valid_to=clock.today() - timedelta(days=1)
        )

        with pytest.raises(PermitConfigurationError) as exc_info:
            core.permits.configure(permit, admin_id)

        assert exc_info.value.details == (
            "La fecha de vencimiento debe ser posterior a la fecha de inicio"
        )

    def test_start_too_old(self, core, clock, permit_factory, admin_id):
        old_start = clock.today().replace(year=clock.today().year - 6)
        permit = replace(permit_factory(clock.today()), valid_from=old_start)

        with pytest.raises(PermitConfigurationError) as exc_info:
            core.permits.configure(permit, admin_id)

        assert "5 años" in exc_info.value.details

    def test_already_expired(self, core, clock, permit_factory, admin_id):
        start = clock.today() - timedelta(days=90)
        permit = replace(
            permit_factory(start), valid_to=clock.today() - timedelta(days=1)
        )

        with pytest.raises(PermitConfigurationError) as exc_info:
            core.permits.configure(permit, admin_id)

        assert "ya ha vencido" in exc_info.value.details

    @pytest.mark.parametrize(
        "field,value",
        [
            ("establishment_code", "01"),
            ("establishment_code", "ABC"),
            ("point_of_sale_code", "0001"),
            ("point_of_sale_code", None),
            ("establishment_code", "001\n"),
            ("point_of_sale_code", "\u0661\u0662\u0663"),
        ],
    )
    def test_codes_must_be_three_digits(
        self, core, clock, permit_factory, admin_id, field, value
    ):
        permit = replace(permit_factory(clock.today()), **{field: value})

        with pytest.raises(PermitConfigurationError) as exc_info:
            core.permits.configure(permit, admin_id)

        assert exc_info.value.field == field

    def test_ruc_lenient_by_default(self, core, clock, permit_factory, admin_id):
        result = core.permits.configure(
            permit_factory(clock.today(), ruc="12345678-0"), admin_id
        )

        assert result.permit.ruc == "12345678-0"

    def test_strict_ruc(self, store, clock, permit_factory, admin_id):
        service = FiscalPermitService(
            store, AuditorService(store, clock), clock, strict_ruc_validation=True
        )

        with pytest.raises(PermitConfigurationError) as exc_info:
            service.configure(permit_factory(clock.today(), ruc="12345678-0"), admin_id)
        assert exc_info.value.field == "ruc"

        result = service.configure(permit_factory(clock.today(), ruc="12345678-4"), admin_id)
        assert result.permit.ruc == "12345678-4"

    def test_custom_warning_window(self, store, clock, permit_factory, admin_id):
        service = FiscalPermitService(
            store, AuditorService(store, clock), clock, expiry_warning_days=5
        )

        result = service.configure(permit_factory(clock.today(), days_valid=10), admin_id)

        assert result.warning is None


class TestStatus:
    def test_without_permit(self, core):
        report = core.permits.status()

        assert report.status is None
        assert report.verdict.blocks_issuance
        payload = report.to_payload()
        assert payload["isValid"] is False
        assert "status" not in payload

    def test_valid_permit(self, core, configured_permit):
        payload = core.permits.status().to_payload()

        assert payload == {
            "isValid": True,
            "blocksIssuance": False,
            "daysLeft": 60,
            "status": {
                "status": "valid",
                "daysLeft": 60,
                "message": "Timbrado válido por 60 días más",
            },
        }

    def test_warning_then_expired(self, core, clock, configured_permit):
        warning = core.permits.status(as_of=clock.today() + timedelta(days=45))
        assert warning.status.state is PermitState.WARNING
        assert not warning.verdict.blocks_issuance

        expired = core.permits.status(as_of=clock.today() + timedelta(days=61))
        assert expired.status.state is PermitState.EXPIRED
        assert expired.verdict.blocks_issuance
        assert expired.status.message == "Timbrado vencido hace 1 días"
