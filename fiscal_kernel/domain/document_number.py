"""Fiscal document number formatting: ``EEE-PPP-NNNNNNN``."""

import re
from dataclasses import dataclass

SEQUENCE_WIDTH = 7
MAX_SEQUENCE = 10**SEQUENCE_WIDTH - 1

_CODE_RE = re.compile(r"[0-9]{3}")
_NUMBER_RE = re.compile(r"([0-9]{3})-([0-9]{3})-([0-9]{7})")


def is_valid_code(code: str | None) -> bool:
    """Establishment and point-of-sale codes are exactly three digits."""
    return isinstance(code, str) and _CODE_RE.fullmatch(code) is not None


@dataclass(frozen=True)
class DocumentNumber:
    establishment_code: str
    point_of_sale_code: str
    sequence: int

    def __str__(self) -> str:
        return format_document_number(
            self.establishment_code, self.point_of_sale_code, self.sequence
        )


def format_document_number(
    establishment_code: str, point_of_sale_code: str, sequence: int
) -> str:
    if not is_valid_code(establishment_code):
        raise ValueError(f"Invalid establishment code: {establishment_code!r}")
    if not is_valid_code(point_of_sale_code):
        raise ValueError(f"Invalid point of sale code: {point_of_sale_code!r}")
    if not 1 <= sequence <= MAX_SEQUENCE:
        raise ValueError(f"Sequence out of range: {sequence}")
    return f"{establishment_code}-{point_of_sale_code}-{sequence:0{SEQUENCE_WIDTH}d}"


def parse_document_number(value: str) -> DocumentNumber:
    match = _NUMBER_RE.fullmatch(value or "")
    if match is None:
        raise ValueError(f"Malformed document number: {value!r}")
    est, pos, seq = match.groups()
    return DocumentNumber(est, pos, int(seq))


def counter_name(establishment_code: str, point_of_sale_code: str) -> str:
    """Name of the persisted sequence counter for a numbering pair."""
    return f"invoice:{establishment_code}-{point_of_sale_code}"
