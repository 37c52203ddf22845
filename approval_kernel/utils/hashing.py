"""
Deterministic hashing utilities.

All hashing in the approval kernel must be deterministic and reproducible.
This module provides the canonical hashing functions used throughout:
the audit hash chain, the operation checksum recorded at approval and
consumption time, and the deep snapshot taken of an approved payload.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

OPERATION_CHECKSUM_LENGTH = 32


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Normalize so 10.50 and 10.5 hash the same
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.hex()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _snapshot_serializer(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    return _json_serializer(obj)


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted recursively
    - No whitespace
    - Consistent handling of special types (Decimal, datetime, UUID)
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def snapshot_payload(data: dict) -> dict:
    """
    Deep, JSON-native copy of an operation payload.

    The result shares no references with ``data`` and survives a JSON
    column round trip unchanged, so checksums computed on it are stable.
    Decimals are kept as their exact string form.
    """
    return json.loads(json.dumps(data, default=_snapshot_serializer))


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def operation_checksum(data: dict) -> str:
    """
    Fingerprint of an operation payload for forensic comparison.

    SHA-256 over the canonical JSON form, truncated to 32 hex characters
    for storage.
    """
    return hash_payload(data)[:OPERATION_CHECKSUM_LENGTH]


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute hash for an audit event.

    The hash includes all key fields plus the previous event's hash,
    creating a tamper-evident chain.

    Args:
        entity_type: Type of entity being audited.
        entity_id: ID of the entity.
        action: Action being recorded.
        payload_hash: Hash of the event payload.
        prev_hash: Hash of the previous audit event (None for genesis).

    Returns:
        Hex-encoded SHA-256 hash.
    """
    components = [
        entity_type,
        str(entity_id),
        action,
        payload_hash,
        prev_hash or "GENESIS",
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
