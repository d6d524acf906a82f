"""
Canonical hashing for audit chains and configuration checksums.

Two hashes make up a record's audit chain:

    payload_hash = sha256(canonical JSON of the event's fields)
    hash         = sha256("record_id|seq|action|payload_hash|prev_hash")

with ``prev_hash`` replaced by ``GENESIS`` for the first event of a record.
Canonical JSON sorts keys and drops whitespace, so the same content always
hashes the same regardless of dict ordering.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    # datetime is a date subclass
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"cannot canonicalize {type(value).__name__}")


def canonicalize_json(data: Any) -> str:
    """Sorted-key, whitespace-free JSON.

    Raises:
        TypeError: For values with no canonical form.
    """
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def hash_payload(payload: dict[str, Any]) -> str:
    """64-char hex SHA-256 of ``canonicalize_json(payload)``."""
    return _sha256(canonicalize_json(payload))


def hash_audit_event(
    record_id: str,
    seq: int,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Chained hash of one audit event.

    Covering ``seq`` and ``prev_hash`` makes edits, deletions and
    reordering within a record's trail detectable.
    """
    return _sha256("|".join((record_id, str(seq), action, payload_hash, prev_hash or GENESIS)))
