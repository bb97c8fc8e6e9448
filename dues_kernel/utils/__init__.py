"""Kernel utilities."""

from dues_kernel.utils.idempotency import (
    fingerprint,
    generate_idempotency_key,
    parse_idempotency_key,
)

__all__ = ["generate_idempotency_key", "parse_idempotency_key", "fingerprint"]
