"""
Late Fee Module.

Late-fee sweep over a configuration and administrator-chosen custom late fees.
"""

from dues_modules.late_fees.models import CustomLateFeePreview, LateFeeSweepResult

__all__ = ["CustomLateFeePreview", "LateFeeSweepResult"]
