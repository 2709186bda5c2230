"""
Deterministic hashing utilities.

All hashing in the ledger kernel must be deterministic and reproducible.
Audit records store two digests produced here: a hash of the JSON payload
and a record hash binding that payload to its table, row, operation and
actor.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Normalized so "10.50" and "10.5" hash identically
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of special types (Decimal, datetime, UUID)
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def to_json_safe(data: Any) -> Any:
    """Round-trip through canonical JSON so the value fits a JSON column."""
    return json.loads(canonicalize_json(data))


def hash_payload(payload: dict | list | None) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_audit_record(
    table_name: str,
    record_id: str,
    operation: str,
    payload_hash: str,
    actor_id: str,
) -> str:
    """
    Compute the hash that seals one audit record.

    Args:
        table_name: Audited table.
        record_id: Primary key of the audited row.
        operation: Audit operation (insert, update, post, ...).
        payload_hash: Hash of the before/after payload.
        actor_id: User who performed the mutation.

    Returns:
        Hex-encoded SHA-256 hash.
    """
    components = [
        table_name,
        str(record_id),
        operation,
        payload_hash,
        str(actor_id),
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
