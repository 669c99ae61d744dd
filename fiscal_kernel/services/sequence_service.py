"""
SequenceService -- monotonic sequence allocation via locked counters.

Responsibility:
    Provides strictly increasing values for named sequences such as the
    audit chain seq.  The counter is read under lock and advanced inside the
    caller's unit of work.  InvoiceNumberAllocator follows the same
    discipline through get_highest_sequence / set_highest_sequence.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by AuditorService.

Invariants enforced:
    - The locked counter is the sole source of truth for the next value.
      The aggregate-max-plus-one pattern over existing rows is FORBIDDEN.
    - Transactional: the increment becomes visible only when the caller's
      unit of work commits.  On rollback the value is not consumed.

Failure modes:
    - ConcurrencyConflictError from the store on lock contention.
"""

from fiscal_kernel.logging_config import get_logger
from fiscal_kernel.storage.protocol import FiscalUnitOfWork

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Usage:
        with store.transaction() as uow:
            seq = SequenceService(uow).next_value(SequenceService.AUDIT_EVENT)
    """

    # Well-known sequence names
    AUDIT_EVENT = "audit_event"

    def __init__(self, uow: FiscalUnitOfWork):
        self._uow = uow

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the named counter, advance it by one, and return the new value.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously committed for ``sequence_name``.
        """
        value = self._uow.get_counter(sequence_name) + 1
        self._uow.set_counter(sequence_name, value)
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value
