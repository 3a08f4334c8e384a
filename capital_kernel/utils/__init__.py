"""Utility modules for the capital kernel."""

from capital_kernel.utils.hashing import canonicalize_json, hash_payload, to_json_safe
from capital_kernel.utils.idempotency import idempotency_scope, normalize_idempotency_key

__all__ = [
    "canonicalize_json",
    "hash_payload",
    "to_json_safe",
    "idempotency_scope",
    "normalize_idempotency_key",
]
