"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Issued fiscal documents and the audit trail are legal records.  The services
only ever change a document's ``details`` (inside the modification window) and
never touch audit rows, but a stray ORM write elsewhere must not be able to
rewrite history either.  These listeners fire BEFORE the SQL is sent:

    session.flush()
         |
         v
    [before_update event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity           | Rule
-----------------|------------------------------------------------------------
AuditEvent       | ALWAYS immutable, never deleted
FiscalDocument   | Identity fields (number, codes, sequence, permit, issued_*)
                 | never change; rows may be deleted (windowed admin delete)
FiscalPermit     | Never deleted, only superseded

===============================================================================
USAGE
===============================================================================

    from fiscal_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # db.engine.create_tables() does this

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from fiscal_kernel.domain.dtos import DOCUMENT_IDENTITY_FIELDS
from fiscal_kernel.exceptions import ImmutabilityViolationError
from fiscal_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_audit_event_update(mapper, connection, target):
    raise _blocked(
        "AuditEvent",
        target.id,
        "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    raise _blocked("AuditEvent", target.id, "DELETE", "Audit events cannot be deleted")


def _check_fiscal_document_update(mapper, connection, target):
    state = inspect(target)
    changed = tuple(
        name
        for name in DOCUMENT_IDENTITY_FIELDS
        if name != "id" and state.attrs[name].history.has_changes()
    )
    if changed:
        raise _blocked(
            "FiscalDocument",
            target.id,
            "UPDATE",
            f"Identity fields are immutable: {', '.join(changed)}",
        )


def _check_fiscal_permit_delete(mapper, connection, target):
    raise _blocked(
        "FiscalPermit",
        target.id,
        "DELETE",
        "Fiscal permits are superseded, never deleted",
    )


def _listeners():
    from fiscal_kernel.models.audit_event import AuditEvent
    from fiscal_kernel.models.fiscal_document import FiscalDocumentModel
    from fiscal_kernel.models.fiscal_permit import FiscalPermitModel

    return (
        (AuditEvent, "before_update", _check_audit_event_update),
        (AuditEvent, "before_delete", _check_audit_event_delete),
        (FiscalDocumentModel, "before_update", _check_fiscal_document_update),
        (FiscalPermitModel, "before_delete", _check_fiscal_permit_delete),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability listeners.

    WARNING: Only use this in tests that deliberately tamper with rows.
    """
    for target, event_name, fn in _listeners():
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)
