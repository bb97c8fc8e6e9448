"""
Late Fee Domain Models (``dues_modules.late_fees.models``).

Frozen result objects returned by ``LateFeeService``.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class LateFeeSweepResult:
    """Outcome of one sweep over a configuration."""
    configuration_id: UUID
    as_of: date
    applied: int
    skipped: int
    total_fees: Decimal
    obligation_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class CustomLateFeePreview:
    """Obligations an administrator-chosen late fee would hit."""
    configuration_id: UUID
    amount: Decimal
    tier_names: tuple[str, ...]
    exclude_partial: bool
    obligation_ids: tuple[UUID, ...]
    total_fees: Decimal

    @property
    def affected_count(self) -> int:
        return len(self.obligation_ids)
