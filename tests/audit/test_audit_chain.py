"""
Audit chain validation tests.

Verifies:
- Every compliance-relevant change appends one hash-chained event
- seq comes from the locked counter: contiguous, no gaps after rollback
- Tamper detection on payload, hash, and linkage
"""

import json
from contextlib import contextmanager
from dataclasses import replace
from uuid import uuid4

import pytest
from sqlalchemy import select, text
from sqlalchemy.orm import Session

from fiscal_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from fiscal_kernel.domain.dtos import ActorRole, AuditAction
from fiscal_kernel.exceptions import AuditChainBrokenError
from fiscal_kernel.models.audit_event import AuditEvent
from fiscal_kernel.services.auditor_service import DOCUMENT_ENTITY, PERMIT_ENTITY
from fiscal_kernel.services.core import FiscalCore


@contextmanager
def disabled_immutability():
    """
    Disable the ORM immutability listeners.

    Use this for tests that need to simulate tampering with audit data.
    """
    unregister_immutability_listeners()
    try:
        yield
    finally:
        register_immutability_listeners()


def _events(store):
    with store.transaction() as uow:
        return uow.list_audit_events()


@pytest.fixture
def sqlite_core(sqlite_store, vault, clock):
    return FiscalCore(sqlite_store, vault, clock=clock)


class TestChainStructure:
    def test_chain_valid_after_operations(self, core, configured_permit, make_account, admin_id):
        account = make_account()
        document = core.issuance.issue(account.account_id).unwrap()
        core.modifications.edit(
            document.id, admin_id, ActorRole.ADMIN, {"details": {"note": "x"}}
        )
        core.modifications.delete(document.id, admin_id, ActorRole.USER)

        assert core.auditor.validate_chain()
        actions = [e.action for e in _events(core.store)]
        assert actions == [
            AuditAction.PERMIT_CONFIGURED,
            AuditAction.DOCUMENT_ISSUED,
            AuditAction.DOCUMENT_EDITED,
            AuditAction.MODIFICATION_DENIED,
        ]

    def test_seq_contiguous_and_linked(self, core, configured_permit, make_account):
        account = make_account()
        for _ in range(3):
            core.issuance.issue(account.account_id)

        events = _events(core.store)

        assert [e.seq for e in events] == [1, 2, 3, 4]
        assert events[0].is_genesis
        for prev, event in zip(events, events[1:]):
            assert event.prev_hash == prev.hash
            assert not event.is_genesis

    def test_rollback_leaves_no_gap(self, core, configured_permit, make_account):
        account = make_account()

        with pytest.raises(RuntimeError):
            with core.store.transaction() as uow:
                core.issuance.issue(account.account_id, uow=uow)
                raise RuntimeError("abort")
        core.issuance.issue(account.account_id)

        assert [e.seq for e in _events(core.store)] == [1, 2]
        assert core.auditor.validate_chain()

    def test_empty_chain_is_valid(self, core):
        assert core.auditor.validate_chain()

    def test_permit_trace(self, core, clock, permit_factory, admin_id):
        first = core.permits.configure(permit_factory(clock.today()), admin_id)
        second = core.permits.configure(
            permit_factory(clock.today(), permit_number="87654321"), admin_id
        )

        trace = core.auditor.get_trace(PERMIT_ENTITY, second.permit.id)

        assert trace.actions == (AuditAction.PERMIT_CONFIGURED,)
        assert trace.entries[0].payload["superseded_id"] == str(first.permit.id)
        assert trace.entries[0].payload["permit"]["permit_number"] == "87654321"

    def test_trace_of_unknown_entity_is_empty(self, core):
        trace = core.auditor.get_trace(DOCUMENT_ENTITY, uuid4())

        assert trace.is_empty
        assert trace.first_action is None
        assert trace.last_action is None


class TestTamperDetection:
    def test_memory_payload_tamper(self, memory_store, vault, clock, permit_factory, admin_id):
        core = FiscalCore(memory_store, vault, clock=clock)
        core.permits.configure(permit_factory(clock.today()), admin_id)
        account_id = uuid4()
        core.quota.open_account(account_id)
        core.issuance.issue(account_id)

        events = memory_store._state.audit_events
        target = events[1]
        events[1] = replace(target, payload={**target.payload, "usage_count": 0})

        with pytest.raises(AuditChainBrokenError) as exc_info:
            core.auditor.validate_chain()

        assert exc_info.value.audit_event_id == str(target.id)

    def test_sqlite_payload_tamper_via_raw_sql(
        self, sqlite_core, sqlite_store, permit_factory, admin_id, clock, captured_logs
    ):
        sqlite_core.permits.configure(permit_factory(clock.today()), admin_id)
        account_id = uuid4()
        sqlite_core.quota.open_account(account_id)
        sqlite_core.issuance.issue(account_id)

        # Raw SQL bypasses the ORM listeners.
        with sqlite_store.engine.begin() as conn:
            conn.execute(
                text("UPDATE audit_events SET payload = :payload WHERE seq = 2"),
                {"payload": json.dumps({"document_number": "001-001-0009999"})},
            )

        with pytest.raises(AuditChainBrokenError):
            sqlite_core.auditor.validate_chain()

        broken = [r for r in captured_logs() if r["message"] == "audit_chain_broken"]
        assert broken[0]["level"] == "CRITICAL"
        assert broken[0]["seq"] == 2

    def test_sqlite_hash_tamper_via_orm(
        self, sqlite_core, sqlite_store, permit_factory, admin_id, clock
    ):
        sqlite_core.permits.configure(permit_factory(clock.today()), admin_id)
        sqlite_core.permits.configure(
            permit_factory(clock.today(), permit_number="87654321"), admin_id
        )

        with disabled_immutability():
            with Session(sqlite_store.engine) as session:
                row = session.execute(
                    select(AuditEvent).where(AuditEvent.seq == 1)
                ).scalar_one()
                row.hash = "0" * 64
                session.commit()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            sqlite_core.auditor.validate_chain()

        assert exc_info.value.actual_hash == "0" * 64

    def test_sqlite_link_tamper(self, sqlite_core, sqlite_store, permit_factory, admin_id, clock):
        for number in ("11111111", "22222222", "33333333"):
            sqlite_core.permits.configure(
                permit_factory(clock.today(), permit_number=number), admin_id
            )

        with sqlite_store.engine.begin() as conn:
            conn.execute(text("UPDATE audit_events SET prev_hash = NULL WHERE seq = 3"))

        with pytest.raises(AuditChainBrokenError):
            sqlite_core.auditor.validate_chain()
