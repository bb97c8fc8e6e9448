"""
Dues Module.

Organizations, members, dues configurations and member obligations.
"""

from dues_modules.dues.models import (
    AssignmentFilters,
    BulkAssignmentResult,
    ConfigurationStats,
    DuesConfiguration,
    Member,
    MemberObligation,
    MemberStatus,
    ObligationSummary,
    Organization,
)

__all__ = [
    "AssignmentFilters",
    "BulkAssignmentResult",
    "ConfigurationStats",
    "DuesConfiguration",
    "Member",
    "MemberObligation",
    "MemberStatus",
    "ObligationSummary",
    "Organization",
]
