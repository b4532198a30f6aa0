"""
Unit of work for invoice mutations.

Every create/update/delete runs inside one `unit_of_work` block: the block
commits when it exits cleanly and rolls back every write on any exception,
whatever stage the mutation had reached. Storage errors are translated into
the application's exception types on the way out.

    START -> VALIDATE_TENANT_OWNERSHIP -> VALIDATE_LINES -> COMPUTE_DELTAS
          -> APPLY_STOCK_DELTAS -> PERSIST_LINES -> RECOMPUTE_TOTAL -> COMMIT
    any failure -> ABORTED
"""
import enum
import logging
from contextlib import contextmanager
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from billing.exceptions import (
    BillingError, DuplicateInvoiceNumberError, InsufficientStockError,
    StorageConflictError, InternalError
)
from billing.services.metrics_service import (
    record_invoice_mutation, OUTCOME_COMMITTED, OUTCOME_ABORTED, OUTCOME_INSUFFICIENT_STOCK
)

logger = logging.getLogger(__name__)

# PostgreSQL deadlock_detected / serialization_failure
RETRYABLE_SQLSTATES = ('40P01', '40001')


class Stage(enum.Enum):
    START = "start"
    VALIDATE_TENANT_OWNERSHIP = "validate_tenant_ownership"
    VALIDATE_LINES = "validate_lines"
    COMPUTE_DELTAS = "compute_deltas"
    APPLY_STOCK_DELTAS = "apply_stock_deltas"
    PERSIST_LINES = "persist_lines"
    RECOMPUTE_TOTAL = "recompute_total"
    COMMIT = "commit"
    COMMITTED = "committed"
    ABORTED = "aborted"


class UnitOfWork:
    """Tracks the stage one mutation has reached."""

    def __init__(self, session, operation: str, tenant_id: int):
        self.session = session
        self.operation = operation
        self.tenant_id = tenant_id
        self.stage = Stage.START
        self.invoice_id: Optional[int] = None
        self.invoice_number: Optional[str] = None
        self._after_commit: List[Callable[[], None]] = []

    def advance(self, stage: Stage) -> None:
        logger.debug(f"[UOW] {self.operation} tenant={self.tenant_id}: {self.stage.value} -> {stage.value}")
        self.stage = stage

    def after_commit(self, callback: Callable[[], None]) -> None:
        """Run callback once the transaction has committed (never on abort)."""
        self._after_commit.append(callback)

    def _run_after_commit(self) -> None:
        for callback in self._after_commit:
            try:
                callback()
            except Exception as e:
                # Hooks are best effort (cache invalidation)
                logger.warning(f"[UOW] after-commit hook failed for {self.operation}: {e}")


def _translate_integrity_error(error: IntegrityError, uow: UnitOfWork) -> BillingError:
    message = str(error.orig).lower()
    if 'invoice_number' in message or 'uq_invoice_tenant_number' in message:
        return DuplicateInvoiceNumberError(uow.invoice_number)
    if 'stock_quantity' in message or 'ck_item_stock_non_negative' in message:
        return InsufficientStockError('one or more items', None, None)
    return StorageConflictError()


@contextmanager
def unit_of_work(session, operation: str, tenant_id: int):
    """
    Run one invoice mutation atomically.

    Args:
        session: SQLAlchemy session; committed or rolled back on exit
        operation: name used in logs ('create_invoice', ...)
        tenant_id: Tenant ID, for logging

    Yields:
        UnitOfWork to record stage progress and after-commit hooks
    """
    uow = UnitOfWork(session, operation, tenant_id)
    try:
        yield uow
        uow.advance(Stage.COMMIT)
        session.commit()
    except BillingError as e:
        _abort(uow, e)
        raise
    except IntegrityError as e:
        error = _translate_integrity_error(e, uow)
        _abort(uow, error)
        raise error from e
    except OperationalError as e:
        _abort(uow, e)
        if getattr(e.orig, 'pgcode', None) in RETRYABLE_SQLSTATES:
            logger.warning(f"[UOW] {operation} lost a lock race (sqlstate {e.orig.pgcode})")
            raise StorageConflictError() from e
        logger.exception(f"[UOW] Storage failure in {operation}")
        raise InternalError() from e
    except SQLAlchemyError as e:
        _abort(uow, e)
        logger.exception(f"[UOW] Storage failure in {operation}")
        raise InternalError() from e
    except Exception as e:
        _abort(uow, e)
        raise

    uow.advance(Stage.COMMITTED)
    record_invoice_mutation(operation, OUTCOME_COMMITTED)
    logger.info(f"[UOW] {operation} committed: tenant={tenant_id} invoice={uow.invoice_id}")
    uow._run_after_commit()


def _abort(uow: UnitOfWork, error: Exception) -> None:
    failed_stage = uow.stage
    uow.session.rollback()
    uow.stage = Stage.ABORTED
    if isinstance(error, InsufficientStockError):
        record_invoice_mutation(uow.operation, OUTCOME_INSUFFICIENT_STOCK)
    else:
        record_invoice_mutation(uow.operation, OUTCOME_ABORTED)
    logger.info(
        f"[UOW] {uow.operation} aborted at {failed_stage.value}: "
        f"tenant={uow.tenant_id} invoice={uow.invoice_id} error={error.__class__.__name__}"
    )
