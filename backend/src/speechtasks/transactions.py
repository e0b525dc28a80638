"""
Emulated transactions over a store without client-driven multi-statement
transactions.

run_transaction() brackets a unit of work with the store's begin/commit/rollback
markers. Those markers give no isolation, so every step that changes state
registers a compensating action; on failure the compensations run in reverse
order before the rollback marker is issued. Nothing below the granularity of a
single conditional row update is actually atomic.
"""
from typing import Any, Callable, Dict, List, Optional, Tuple

from .logging import logger
from .utils import failure_from_exception, success_result


class TransactionContext:
    """Handle passed to the transaction body; collects compensating actions."""

    def __init__(self, store, token: str):
        self.store = store
        self.token = token
        self._compensations: List[Tuple[str, Callable[[], Any]]] = []

    def add_compensation(self, description: str, compensation: Callable[[], Any]) -> None:
        """Register an action that undoes a step which has already been applied."""
        self._compensations.append((description, compensation))

    def step(
        self,
        description: str,
        action: Callable[[], Any],
        compensation: Optional[Callable[[Any], Any]] = None
    ) -> Any:
        """
        Apply one step and register its compensation.

        Args:
            description: Human-readable step name used in logs
            action: Callable performing the step
            compensation: Callable receiving the step's return value and undoing it

        Returns:
            Whatever `action` returned
        """
        result = action()
        if compensation is not None:
            self.add_compensation(description, lambda: compensation(result))
        return result

    def compensate(self) -> List[str]:
        """
        Run registered compensations in reverse order.

        Failures are logged and skipped so that the remaining compensations
        still run. Returns the descriptions of compensations that failed.
        """
        failed = []
        while self._compensations:
            description, compensation = self._compensations.pop()
            try:
                compensation()
                logger.info(f"Transaction {self.token}: compensated '{description}'")
            except Exception as e:
                logger.error(f"Transaction {self.token}: compensation '{description}' failed: {e}")
                failed.append(description)
        return failed


class TransactionCoordinator:
    """Runs units of work with begin/commit/rollback markers and compensation."""

    def __init__(self, store):
        self.store = store

    def run_transaction(self, fn: Callable[[TransactionContext], Any]) -> Dict[str, Any]:
        """
        Execute `fn` as an emulated transaction.

        Args:
            fn: Callable receiving a TransactionContext

        Returns:
            {success, data, error, code}; on failure `error`/`code` describe the
            original error raised by `fn` or by the commit marker
        """
        try:
            token = self.store.begin_transaction()
        except Exception as e:
            logger.error(f"Failed to start transaction: {e}")
            return failure_from_exception(e)

        tx = TransactionContext(self.store, token)
        try:
            data = fn(tx)
            self.store.commit_transaction(token)
            return success_result(data)
        except Exception as e:
            logger.error(f"Transaction {token} failed: {e}")
            failed = tx.compensate()
            if failed:
                logger.error(f"Transaction {token} left {len(failed)} steps uncompensated: {failed}")
            try:
                self.store.rollback_transaction(token)
            except Exception as rollback_error:
                logger.error(f"Failed to rollback transaction {token}: {rollback_error}")
            return failure_from_exception(e)
