"""
Canonical JSON and SHA-256 helpers.

Idempotency request hashes, stored response hashes and the audit chain all
hash the same canonical form, so two payloads that mean the same thing hash
the same: keys sorted, no whitespace, ``Decimal("6.00")`` equal to
``Decimal("6")``, UUIDs and dates as strings.
"""

import hashlib
import json
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_HASH = "GENESIS"


def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value.normalize())
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    raise TypeError(f"cannot canonicalize {type(value).__name__}")


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: Any) -> str:
    """SHA-256 of the canonical JSON form of ``payload``."""
    return sha256_hex(canonicalize_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: Any,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Link one audit event to its predecessor.

    ``prev_hash`` is None for the first event of an organization, which
    chains to ``GENESIS_HASH``.
    """
    return sha256_hex(
        "|".join((entity_type, str(entity_id), action, payload_hash, prev_hash or GENESIS_HASH))
    )
