"""
dues_config -- single public entrypoint for engine settings.

Responsibility:
    ``get_settings()`` is the only way runtime code obtains fee rates,
    installment limits and late-fee limits.  Settings come from the packaged
    ``defaults.yaml`` with an optional override file named by the
    ``DUES_SETTINGS_FILE`` environment variable.

Architecture position:
    Configuration -- sits above ``dues_kernel`` and below ``dues_engines`` /
    ``dues_modules`` / ``dues_services``.  The kernel never imports from here.
"""

import os
import threading
from pathlib import Path

from dues_config.loader import load_settings
from dues_config.schema import (
    BalanceTier,
    DuesSettings,
    FeeSchedule,
    InstallmentPolicy,
    LateFeeLimits,
)
from dues_kernel.logging_config import get_logger

__all__ = [
    "get_settings",
    "reset_settings",
    "DuesSettings",
    "FeeSchedule",
    "InstallmentPolicy",
    "LateFeeLimits",
    "BalanceTier",
]

SETTINGS_ENV_VAR = "DUES_SETTINGS_FILE"

logger = get_logger("config")

_settings: DuesSettings | None = None
_lock = threading.Lock()


def get_settings() -> DuesSettings:
    """
    Return the process-wide settings, loading them on first use.

    Raises:
        FileNotFoundError: if DUES_SETTINGS_FILE names a missing file.
        ValueError: if validation fails.
    """
    global _settings
    with _lock:
        if _settings is None:
            override = os.environ.get(SETTINGS_ENV_VAR)
            _settings = load_settings(Path(override) if override else None)
            logger.info(
                "dues_settings_loaded",
                extra={
                    "override_file": override,
                    "card_rate": _settings.fees.card_rate,
                    "ach_rate": _settings.fees.ach_rate,
                    "max_installments": _settings.installments.max_installments,
                },
            )
        return _settings


def reset_settings() -> None:
    """Drop cached settings. FOR TESTING ONLY."""
    global _settings
    with _lock:
        _settings = None
