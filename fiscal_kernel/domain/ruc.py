"""
RUC (Registro Único del Contribuyente) check-digit validation.

Format ``NNNNNNNN-D``: eight digits, a dash, and a modulo-11 check digit.
"""

import re

_RUC_RE = re.compile(r"[0-9]{8}-[0-9]")
_MULTIPLIERS = (2, 3, 4, 5, 6, 7, 2, 3)


def ruc_check_digit(base: str) -> int:
    total = sum(int(digit) * weight for digit, weight in zip(base, _MULTIPLIERS))
    remainder = total % 11
    if remainder < 2:
        return 0
    return 11 - remainder


def validate_ruc(ruc: str | None) -> bool:
    if not ruc or not isinstance(ruc, str):
        return False
    clean = ruc.strip()
    if not _RUC_RE.fullmatch(clean):
        return False
    base, check = clean.split("-")
    return ruc_check_digit(base) == int(check)
