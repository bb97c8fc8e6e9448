"""
Dues engine settings schema.

Frozen dataclasses that hold every tunable constant of the engine: processor
fee rates, installment-plan limits and custom late-fee limits.  Values are
parsed from YAML by ``dues_config.loader`` and validated here in
``__post_init__`` so a bad file fails at load time, not mid-charge.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Self

from dues_kernel.logging_config import get_logger

logger = get_logger("config.schema")


@dataclass(frozen=True)
class FeeSchedule:
    """
    Processor and platform fee constants.

    card_rate / card_fixed_fee: percentage + fixed fee added on top of a card
        charge so the payer covers it.
    ach_rate / ach_fee_cap: bank-transfer fee absorbed by the organization.
    platform_rate: share of the base amount kept by the platform on every
        charge.
    """

    card_rate: Decimal = Decimal("0.029")
    card_fixed_fee: Decimal = Decimal("0.30")
    ach_rate: Decimal = Decimal("0.008")
    ach_fee_cap: Decimal = Decimal("5.00")
    platform_rate: Decimal = Decimal("0.01")

    def __post_init__(self):
        for name in ("card_rate", "ach_rate", "platform_rate"):
            rate = getattr(self, name)
            if rate < 0 or rate >= 1:
                raise ValueError(f"{name} must be in [0, 1), got {rate}")
        if self.card_fixed_fee < 0:
            raise ValueError("card_fixed_fee cannot be negative")
        if self.ach_fee_cap < 0:
            raise ValueError("ach_fee_cap cannot be negative")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(**{k: Decimal(str(v)) for k, v in data.items()})


@dataclass(frozen=True)
class InstallmentPolicy:
    """Bounds on plan size and the plan sizes granted when none are listed."""

    min_installments: int = 2
    max_installments: int = 12
    default_allowed_sizes: tuple[int, ...] = (2, 3)

    def __post_init__(self):
        if self.min_installments < 2:
            raise ValueError("min_installments must be at least 2")
        if self.max_installments < self.min_installments:
            raise ValueError(
                f"max_installments ({self.max_installments}) cannot be below "
                f"min_installments ({self.min_installments})"
            )
        for size in self.default_allowed_sizes:
            if not self.min_installments <= size <= self.max_installments:
                raise ValueError(
                    f"default_allowed_sizes entry {size} outside "
                    f"[{self.min_installments}, {self.max_installments}]"
                )

    def accepts(self, num_installments: int) -> bool:
        return self.min_installments <= num_installments <= self.max_installments

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        data = dict(data)
        if "default_allowed_sizes" in data:
            data["default_allowed_sizes"] = tuple(int(s) for s in data["default_allowed_sizes"])
        return cls(**data)


@dataclass(frozen=True)
class BalanceTier:
    """A named balance band used to target custom late fees."""

    name: str
    min_balance: Decimal
    max_balance: Decimal | None = None  # None = unbounded

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("balance tier name cannot be empty")
        if self.min_balance < 0:
            raise ValueError(f"tier {self.name}: min_balance cannot be negative")
        if self.max_balance is not None and self.max_balance < self.min_balance:
            raise ValueError(f"tier {self.name}: max_balance below min_balance")

    def contains(self, balance: Decimal) -> bool:
        if balance < self.min_balance:
            return False
        return self.max_balance is None or balance < self.max_balance


_DEFAULT_TIERS = (
    BalanceTier("under_100", Decimal("0.01"), Decimal("100")),
    BalanceTier("100_to_500", Decimal("100"), Decimal("500")),
    BalanceTier("500_to_1000", Decimal("500"), Decimal("1000")),
    BalanceTier("over_1000", Decimal("1000"), None),
)


@dataclass(frozen=True)
class LateFeeLimits:
    """Limits applied to administrator-chosen (custom) late fees."""

    max_custom_late_fee: Decimal = Decimal("500.00")
    balance_tiers: tuple[BalanceTier, ...] = _DEFAULT_TIERS

    def __post_init__(self):
        if self.max_custom_late_fee <= 0:
            raise ValueError("max_custom_late_fee must be positive")
        names = [t.name for t in self.balance_tiers]
        if len(names) != len(set(names)):
            raise ValueError("balance tier names must be unique")

    def tier(self, name: str) -> BalanceTier:
        for t in self.balance_tiers:
            if t.name == name:
                return t
        raise KeyError(name)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        data = dict(data)
        if "max_custom_late_fee" in data:
            data["max_custom_late_fee"] = Decimal(str(data["max_custom_late_fee"]))
        if "balance_tiers" in data:
            data["balance_tiers"] = tuple(
                BalanceTier(
                    name=t["name"],
                    min_balance=Decimal(str(t["min_balance"])),
                    max_balance=(
                        Decimal(str(t["max_balance"]))
                        if t.get("max_balance") is not None
                        else None
                    ),
                )
                for t in data["balance_tiers"]
            )
        return cls(**data)


@dataclass(frozen=True)
class DuesSettings:
    """
    Root settings object.

    Build one explicitly in tests to substitute alternate policies:

        settings = DuesSettings(fees=FeeSchedule(card_rate=Decimal("0.03")))
    """

    fees: FeeSchedule = field(default_factory=FeeSchedule)
    installments: InstallmentPolicy = field(default_factory=InstallmentPolicy)
    late_fees: LateFeeLimits = field(default_factory=LateFeeLimits)
    currency: str = "USD"

    def __post_init__(self):
        if self.currency != "USD":
            raise ValueError(f"Only USD is supported, got '{self.currency}'")

    @classmethod
    def with_defaults(cls) -> Self:
        logger.info("dues_settings_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create settings from a parsed YAML mapping."""
        logger.info(
            "dues_settings_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(
            fees=FeeSchedule.from_dict(data.get("fees") or {}),
            installments=InstallmentPolicy.from_dict(data.get("installments") or {}),
            late_fees=LateFeeLimits.from_dict(data.get("late_fees") or {}),
            currency=data.get("currency", "USD"),
        )
