"""
InvoiceNumberAllocator -- fiscal document numbers ``EEE-PPP-NNNNNNN``.

Responsibility:
    Produces the next document number for an establishment / point-of-sale
    pair.  The sequence is the pair's highest allocated sequence plus one.

Architecture position:
    Kernel > Services.  Called by IssuanceService inside the issuance unit
    of work, after the quota and permit gates have passed.

Invariants enforced:
    - Per-pair sequences start at 1, never repeat, and never skip once the
      issuing transaction commits.  A rolled-back issuance returns its
      number because the counter advance rolls back with it.
    - Concurrent allocations for the same pair serialize on the counter
      lock held by the unit of work.  Reading the last number and adding
      one in application memory without that lock is a correctness bug.

Failure modes:
    - ValueError for malformed codes or an exhausted 7-digit sequence.
    - ConcurrencyConflictError from the store on lock contention.
"""

from fiscal_kernel.domain.document_number import (
    MAX_SEQUENCE,
    DocumentNumber,
    is_valid_code,
)
from fiscal_kernel.logging_config import get_logger
from fiscal_kernel.services.base import BaseService
from fiscal_kernel.storage.protocol import FiscalUnitOfWork

logger = get_logger("services.invoice_number")


class InvoiceNumberAllocator(BaseService):
    def next(
        self,
        establishment_code: str,
        point_of_sale_code: str,
        uow: FiscalUnitOfWork | None = None,
    ) -> DocumentNumber:
        """
        Allocate the next number for the pair.

        Called without ``uow`` the allocation commits on its own, which
        consumes a number with no document behind it; issuance always
        passes its unit of work.
        """
        if not is_valid_code(establishment_code):
            raise ValueError(f"Invalid establishment code: {establishment_code!r}")
        if not is_valid_code(point_of_sale_code):
            raise ValueError(f"Invalid point of sale code: {point_of_sale_code!r}")

        with self._unit(uow) as unit:
            highest = unit.get_highest_sequence(establishment_code, point_of_sale_code)
            sequence = highest + 1
            if sequence > MAX_SEQUENCE:
                raise ValueError(
                    f"Sequence exhausted for {establishment_code}-{point_of_sale_code}"
                )
            unit.set_highest_sequence(establishment_code, point_of_sale_code, sequence)

        number = DocumentNumber(establishment_code, point_of_sale_code, sequence)
        logger.info(
            "invoice_number_allocated",
            extra={"document_number": str(number), "sequence": sequence},
        )
        return number
