"""
Dues Modules.

Thin orchestration layers over the kernel and the pure engines.  Each module
contains domain models (frozen dataclasses), ORM models and a service that
owns its transaction boundary:

- dues: organizations, roster, configurations, obligation assignment,
  administrative edits and the export read model
- late_fees: on-demand late-fee sweep and custom late fees
- payments: the payment recorder
- installments: eligibility, plan orchestration, settlement and servicing

Balance and status are always computed by ``dues_engines.status``.
"""
