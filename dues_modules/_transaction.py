"""
Transaction boundary helper shared by the module services.

Module services own the transaction: they commit on success and roll back on
failure.  When one service is composed inside another (the installment
orchestrator settling a payment through the payment recorder) the inner
service is built with ``auto_commit=False`` and only flushes, so the outer
service's single transaction covers every write.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from dues_kernel.exceptions import OptimisticLockError
from dues_kernel.logging_config import get_logger

logger = get_logger("modules.transaction")


@contextmanager
def transaction_boundary(
    session: Session,
    auto_commit: bool,
    operation: str,
    entity_type: str = "member_obligation",
    entity_id: Any = None,
) -> Iterator[None]:
    """
    Commit (or flush) on normal exit, roll back on any exception.

    A lost optimistic update surfaces as ``OptimisticLockError``.
    """
    try:
        yield
        if auto_commit:
            session.commit()
        else:
            session.flush()
    except StaleDataError as exc:
        if auto_commit:
            session.rollback()
        logger.warning(
            "optimistic_lock_conflict",
            extra={"operation": operation, "entity_type": entity_type, "entity_id": str(entity_id)},
        )
        raise OptimisticLockError(entity_type, entity_id) from exc
    except Exception:
        if auto_commit:
            session.rollback()
        raise
