"""
Module ORM Registry (``dues_modules._orm_registry``).

Responsibility
--------------
Ensure every module-level SQLAlchemy ORM model is imported so that
``Base.metadata`` contains its table definition before tables are created.
``create_all_tables()`` is the single entry point scripts and
``tests/conftest.py`` use to get the complete schema.

Architecture position
---------------------
**Modules layer** -- utility.  Imports sibling ``dues_modules`` packages and
``dues_kernel.db.engine`` (allowed: modules -> kernel).  The kernel never
imports this registry; it only creates what is already on ``Base.metadata``.
"""


def import_all_orm_models() -> None:
    """Import every ``dues_modules.*.orm`` module.  Idempotent."""
    # fmt: off
    import dues_modules.dues.orm  # noqa: F401
    import dues_modules.installments.orm  # noqa: F401
    import dues_modules.payments.orm  # noqa: F401
    # fmt: on


def create_all_tables() -> None:
    """
    Create every table.

    Preconditions:
        Engine must be initialized via ``init_engine_from_url()``.
    """
    from dues_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()
