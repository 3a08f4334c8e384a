"""
Idempotency key utilities.

A client-supplied key is scoped to (organization, deal) before it is
compared, so the same key sent for two different deals creates two calls.
"""

from uuid import UUID

from capital_kernel.exceptions import ValidationError

MAX_IDEMPOTENCY_KEY_LENGTH = 255


def normalize_idempotency_key(key: str | None) -> str | None:
    """
    Strip a client key; blank means "no key".

    Raises:
        ValidationError: If the key is longer than the storage column.
    """
    if key is None:
        return None
    if not isinstance(key, str):
        raise ValidationError("idempotency_key", "must be a string", key)
    key = key.strip()
    if not key:
        return None
    if len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise ValidationError(
            "idempotency_key",
            f"must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters",
            key,
        )
    return key


def idempotency_scope(organization_id: str, deal_id: UUID | str, key: str) -> str:
    """
    Human-readable scope label used in logs and DuplicateKeyError.

    Format: organization_id:deal_id:key
    """
    return f"{organization_id}:{deal_id}:{key}"
