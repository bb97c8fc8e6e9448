"""
Idempotency key generation utilities.

Idempotency keys ensure that replaying the same request against the payment
processor returns the original charge instead of creating a second one.
"""

import hashlib
from typing import Any
from uuid import UUID


def generate_idempotency_key(
    producer: str,
    event_type: str,
    event_id: UUID | str,
) -> str:
    """
    Generate an idempotency key.

    Format: producer:event_type:event_id

    Example:
        >>> generate_idempotency_key("installments", "first_charge", digest)
        "installments:first_charge:3f1c..."
    """
    return f"{producer}:{event_type}:{event_id}"


def parse_idempotency_key(key: str) -> tuple[str, str, str]:
    """
    Parse an idempotency key into its components.

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 2)
    if len(parts) != 3:
        raise ValueError(f"Invalid idempotency key format: {key}")
    return parts[0], parts[1], parts[2]


def fingerprint(*parts: Any) -> str:
    """
    Stable digest of the request facts that identify one logical charge.

    Values are stringified in order, so Decimal("10.00") and Decimal("10.0")
    differ; callers pass amounts already rounded to cents.
    """
    joined = "|".join(str(p) for p in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:32]
