"""Utility modules for the fiscal kernel."""

from fiscal_kernel.utils.hashing import (
    canonical_json,
    event_chain_hash,
    hash_payload,
    to_json_safe,
)

__all__ = [
    "canonical_json",
    "event_chain_hash",
    "hash_payload",
    "to_json_safe",
]
