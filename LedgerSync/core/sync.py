"""Sync orchestration between the local store and the remote store.

The local store is the source of truth for the running session:

1. On startup the remote state is pulled once and every slice it defines replaces
   the local slice.
2. Every mutation is applied and persisted locally first, then a full snapshot is
   pushed in the background. Pushes are never awaited and never retried.
3. A manual sync pushes the same snapshot in the foreground after confirmation.

Background pushes run on independent workers, so two overlapping pushes may reach
the remote store in either order, and the last one to acquire the remote lock
wins. Each push carries a sequence number that is only used for logging. A failed
push after a delete leaves the entity in the remote store, and the next pull
brings it back.
"""
import itertools
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from PySide6 import QtCore

from . import models
from .client import RemoteClient
from .database import Key, LocalStore
from ..settings import lib
from ..signals import signals
from ..status import status


def default_client_factory() -> RemoteClient:
    """Build a client for the configured remote url."""
    return RemoteClient(lib.settings.remote_url, timeout=lib.settings.remote_timeout)


class PushWorker(QtCore.QRunnable):
    """Pushes one snapshot to the remote store. Errors are logged and reported, never raised."""

    def __init__(self, seq: int, payload: Dict[str, Any], client_factory: Callable[[], Any]) -> None:
        super().__init__()
        self.seq = seq
        self.payload = payload
        self.client_factory = client_factory
        self.setAutoDelete(True)

    def run(self) -> None:
        signals.pushStarted.emit(self.seq)
        try:
            self.client_factory().push(self.payload)
        except status.BaseStatusException as ex:
            logging.error(f'Push #{self.seq} failed: {ex}')
            signals.pushFinished.emit(self.seq, False, str(ex))
            return
        except Exception as ex:
            logging.error(f'Push #{self.seq} failed unexpectedly: {ex}', exc_info=True)
            signals.pushFinished.emit(self.seq, False, str(ex))
            return

        logging.info(f'Push #{self.seq} finished.')
        signals.pushFinished.emit(self.seq, True, '')


class SyncAPI(QtCore.QObject):
    """Owns the working copy of the ledger and keeps the remote store in step with it.

    Args:
        store: Local store. Defaults to one at the configured database path.
        client_factory: Callable returning a remote client. Called once per request.
        pool: Thread pool for background pushes.
        parent: Optional Qt parent.
    """

    def __init__(
            self,
            store: Optional[LocalStore] = None,
            client_factory: Optional[Callable[[], Any]] = None,
            pool: Optional[QtCore.QThreadPool] = None,
            parent: Optional[QtCore.QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.store = store or LocalStore()
        self.state: models.LedgerState = self.store.load()

        self._client_factory = client_factory or default_client_factory
        self._pool = pool or QtCore.QThreadPool(self)
        self._sequence = itertools.count(1)
        self._pulled = False

    @property
    def remote_configured(self) -> bool:
        return bool(lib.settings.remote_url)

    def _next_seq(self) -> int:
        return next(self._sequence)

    def _persist(self, *keys: Key) -> None:
        values = LocalStore.slices(self.state)
        for key in keys:
            self.store.persist_slice(key, values[key])

    def _emit_changed(self, *keys: Key) -> None:
        for key in keys:
            signals.stateChanged.emit(key.value)
            if key == Key.Transactions:
                signals.transactionsChanged.emit([t.to_dict() for t in self.state.transactions])
            elif key == Key.Savings:
                signals.savingsChanged.emit(list(self.state.savings.completed_days))
            elif key == Key.ExpenseCategories:
                signals.categoriesChanged.emit(str(models.TransactionType.Expense), list(self.state.expense_categories))
            elif key == Key.IncomeCategories:
                signals.categoriesChanged.emit(str(models.TransactionType.Income), list(self.state.income_categories))

    def pull(self) -> bool:
        """Pull the remote state once per session.

        Does nothing when no remote url is configured or when already pulled.
        Failures are logged and the local state is kept.

        Returns:
            bool: True if a remote payload was applied.
        """
        if self._pulled:
            logging.debug('Remote state already pulled this session.')
            return False
        self._pulled = True

        if not self.remote_configured:
            logging.debug('No remote url configured, using the local state only.')
            return False

        signals.dataAboutToBePulled.emit()
        try:
            data = self._client_factory().fetch()
        except status.BaseStatusException as ex:
            logging.warning(f'Pull failed, keeping the local state: {ex}')
            return False

        self.apply_remote(data)
        return True

    def apply_remote(self, data: Dict[str, Any]) -> List[Key]:
        """Replace every local slice the payload defines, then persist them.

        A slice that is missing, null or of the wrong shape leaves the local slice
        untouched. An empty list is a defined value.

        Returns:
            list: The keys of the adopted slices.
        """
        adopted: List[Key] = []

        transactions = data.get('transactions')
        if isinstance(transactions, list):
            self.state.transactions = [models.Transaction.from_dict(t) for t in transactions if isinstance(t, dict)]
            adopted.append(Key.Transactions)
        elif transactions is not None:
            logging.warning(f'Ignoring remote transactions of type {type(transactions).__name__}.')

        for key, attr, name in (
                (Key.ExpenseCategories, 'expense_categories', 'expenseCategories'),
                (Key.IncomeCategories, 'income_categories', 'incomeCategories'),
        ):
            value = data.get(name)
            if isinstance(value, list):
                setattr(self.state, attr, models.normalize_categories(value))
                adopted.append(key)
            elif value is not None:
                logging.warning(f'Ignoring remote {name} of type {type(value).__name__}.')

        savings = data.get('savings')
        if isinstance(savings, dict):
            self.state.savings = models.SavingsState.from_dict(savings)
            adopted.append(Key.Savings)
        elif savings is not None:
            logging.warning(f'Ignoring remote savings of type {type(savings).__name__}.')

        self._persist(*adopted)
        self._emit_changed(*adopted)
        signals.dataPulled.emit(self.state.copy())

        logging.info(f'Adopted remote slices: {", ".join(k.value for k in adopted) or "none"}')
        return adopted

    def push(self) -> int:
        """Push a full snapshot of the current state in the background.

        Returns:
            int: The sequence number of the push, 0 when no remote url is configured.
        """
        if not self.remote_configured:
            logging.debug('No remote url configured, skipping push.')
            return 0

        seq = self._next_seq()
        worker = PushWorker(seq, self.state.to_payload(), self._client_factory)
        logging.debug(f'Dispatching push #{seq} ({len(self.state.transactions)} transactions).')
        self._pool.start(worker)
        return seq

    def wait_for_pushes(self, msecs: int = -1) -> bool:
        """Block until the background pushes finish.

        Returns:
            bool: False if the wait timed out.
        """
        return self._pool.waitForDone(msecs)

    def sync_now(self, confirm: Callable[[], bool]) -> bool:
        """Overwrite the remote store with the local state after confirmation.

        Args:
            confirm: Asked before anything is sent. Returning False cancels the sync.

        Returns:
            bool: True if pushed, False if cancelled.

        Raises:
            status.RemoteNotConfiguredException: If no remote url is configured.
            status.ServiceUnavailableException, status.RemoteErrorException: If the push fails.
        """
        if not self.remote_configured:
            raise status.RemoteNotConfiguredException

        if not confirm():
            logging.info('Manual sync cancelled.')
            return False

        seq = self._next_seq()
        signals.pushStarted.emit(seq)
        try:
            self._client_factory().push(self.state.to_payload())
        except status.BaseStatusException as ex:
            signals.pushFinished.emit(seq, False, str(ex))
            raise

        logging.info(f'Manual sync #{seq} finished.')
        signals.pushFinished.emit(seq, True, '')
        return True

    def add_transaction(
            self,
            _type: Union[models.TransactionType, str],
            date: Any,
            category: str,
            amount: Any,
            note: str = '',
    ) -> models.Transaction:
        """Validate and record a new transaction, then push.

        Raises:
            status.InvalidAmountException, status.InvalidCategoryException, status.InvalidDateException:
                If the input is invalid. Nothing is changed in that case.
        """
        categories = self.state.categories(_type) if _type in set(models.TransactionType) else None
        transaction = models.new_transaction(_type, date, category, amount, note=note, categories=categories)

        self.state.transactions.insert(0, transaction)
        self._persist(Key.Transactions)
        self._emit_changed(Key.Transactions)
        logging.debug(f'Added transaction {transaction.id}')

        self.push()
        return transaction

    def delete_transaction(self, transaction_id: str) -> bool:
        """Delete one transaction, then push.

        Returns:
            bool: False if no transaction has the given id.
        """
        return self.delete_transactions([transaction_id]) > 0

    def delete_transactions(self, transaction_ids: Iterable[str]) -> int:
        """Delete transactions, then push.

        Returns:
            int: Number of deleted transactions.
        """
        ids = set(transaction_ids)
        before = len(self.state.transactions)
        self.state.transactions = [t for t in self.state.transactions if t.id not in ids]
        removed = before - len(self.state.transactions)
        if not removed:
            logging.debug('No matching transactions to delete.')
            return 0

        self._persist(Key.Transactions)
        self._emit_changed(Key.Transactions)
        logging.debug(f'Deleted {removed} transaction(s).')

        self.push()
        return removed

    def toggle_savings_day(self, day: int) -> bool:
        """Mark or unmark a savings challenge day, then push.

        Returns:
            bool: True if the day is now completed.

        Raises:
            status.InvalidSavingsDayException: If the day is not within [1, 365].
        """
        completed = self.state.savings.toggle(day)
        self._persist(Key.Savings)
        self._emit_changed(Key.Savings)

        self.push()
        return completed

    def _category_key(self, _type: Union[models.TransactionType, str]) -> Key:
        if models.TransactionType(_type) == models.TransactionType.Expense:
            return Key.ExpenseCategories
        return Key.IncomeCategories

    def add_category(self, _type: Union[models.TransactionType, str], name: str) -> List[str]:
        """Add a category to the list of the given type. The change rides on the next push.

        Raises:
            status.InvalidCategoryException: If the name is empty.
            status.CategoryExistsException: If the category already exists.
        """
        key = self._category_key(_type)
        categories = models.add_category(self.state.categories(_type), name)
        self._set_categories(key, categories)
        return categories

    def remove_category(self, _type: Union[models.TransactionType, str], name: str) -> List[str]:
        """Remove a category from the list of the given type. Transactions are not touched."""
        key = self._category_key(_type)
        categories = models.remove_category(self.state.categories(_type), name)
        self._set_categories(key, categories)
        return categories

    def _set_categories(self, key: Key, categories: List[str]) -> None:
        if key == Key.ExpenseCategories:
            self.state.expense_categories = categories
        else:
            self.state.income_categories = categories
        self._persist(key)
        self._emit_changed(key)
