"""
Canonical JSON and SHA-256 digests for the audit chain.

Audit payloads are normalized to plain JSON values before they are hashed
and stored, so the hash computed at append time is reproducible from the
stored payload alone, whichever backend stored it.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_MARKER = "GENESIS"


def _plain(value: Any) -> Any:
    """Recursively convert ``value`` to str/int/float/bool/None/list/dict."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return _plain(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value.normalize())
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_plain(v) for v in value]
        return sorted(items, key=repr) if isinstance(value, (set, frozenset)) else items
    raise TypeError(f"Cannot store {type(value).__name__} in an audit payload")


def to_json_safe(data: Any) -> Any:
    """Value suitable for a JSON column; equal data gives equal output."""
    return _plain(data)


def canonical_json(data: Any) -> str:
    """Sorted keys, no whitespace."""
    return json.dumps(_plain(data), sort_keys=True, separators=(",", ":"))


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict) -> str:
    return _sha256(canonical_json(payload))


def event_chain_hash(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Link hash of one audit event.

    Covers the event's identity, its payload hash and the previous event's
    hash; the first event in the chain uses ``GENESIS_MARKER`` instead.
    """
    return _sha256(
        "|".join(
            (entity_type, str(entity_id), action, payload_hash, prev_hash or GENESIS_MARKER)
        )
    )
