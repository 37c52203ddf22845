"""Utility functions for the approval kernel."""

from approval_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_event,
    hash_payload,
    operation_checksum,
    snapshot_payload,
)

__all__ = [
    "canonicalize_json",
    "hash_audit_event",
    "hash_payload",
    "operation_checksum",
    "snapshot_payload",
]
