"""Tests for LedgerSync.core.sync: pull, push and the mutation flows.

The remote endpoint is replaced by :class:`LoopbackClient`, which feeds requests
straight into the endpoint handlers over an in-memory spreadsheet.
"""
import threading
import unittest
from typing import Any, Dict, List, Optional

from PySide6 import QtCore

from LedgerSync.core import database
from LedgerSync.core import endpoint
from LedgerSync.core import models
from LedgerSync.core import service
from LedgerSync.core import sync
from LedgerSync.core import tables
from LedgerSync.settings import lib
from LedgerSync.signals import signals
from LedgerSync.status import status
from tests.base import BaseTestCase, FakeSheetsService, mute_signals


class LoopbackClient:
    """Remote client answering from an in-memory spreadsheet through the endpoint handlers."""

    def __init__(self, remote: service.SheetsStore) -> None:
        self.remote = remote
        self.fetch_error: Optional[Exception] = None
        self.push_error: Optional[Exception] = None
        self.fetch_count = 0
        self.pushes: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def fetch(self) -> Dict[str, Any]:
        self.fetch_count += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        data = endpoint.handle_get(self.remote)
        if data.get('error'):
            raise status.RemoteErrorException(data['error'])
        return data

    def push(self, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.pushes.append(payload)
        if self.push_error is not None:
            raise self.push_error
        result = endpoint.handle_post(self.remote, dict(payload, action='sync'))
        if result['result'] == 'error':
            raise status.RemoteErrorException(result['error'])


class HeldFirstPushClient(LoopbackClient):
    """Loopback client that holds the first push until ``release_first`` is set."""

    def __init__(self, remote: service.SheetsStore) -> None:
        super().__init__(remote)
        self.first_waiting = threading.Event()
        self.release_first = threading.Event()
        self.later_done = threading.Event()
        self._first_taken = False

    def push(self, payload: Dict[str, Any]) -> None:
        with self._lock:
            first = not self._first_taken
            self._first_taken = True
        if first:
            self.first_waiting.set()
            self.release_first.wait(5)
            super().push(payload)
            return
        super().push(payload)
        self.later_done.set()


class SyncTestCase(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.set_remote_url()
        self.fake = FakeSheetsService()
        self.remote = service.SheetsStore(spreadsheet_id='sheet', service=self.fake, lock_timeout=5.0)
        self.client = LoopbackClient(self.remote)
        self.apis: List[sync.SyncAPI] = []

    def tearDown(self) -> None:
        for api in self.apis:
            api.wait_for_pushes()
        super().tearDown()

    def make_api(self) -> sync.SyncAPI:
        api = sync.SyncAPI(store=self.store, client_factory=lambda: self.client)
        self.apis.append(api)
        return api

    def seed_local(self, **kwargs: Any) -> None:
        state = models.LedgerState(
            transactions=kwargs.get('transactions', []),
            expense_categories=kwargs.get('expense_categories', ['食物']),
            income_categories=kwargs.get('income_categories', ['薪水']),
            savings=kwargs.get('savings', models.SavingsState()),
        )
        self.store.persist(state)


class EndToEndTest(SyncTestCase):

    def test_add_transaction_reaches_the_remote_table(self):
        self.seed_local()
        api = self.make_api()

        transaction = api.add_transaction('expense', '2024-01-01', '食物', 100, note='')
        self.assertTrue(api.wait_for_pushes(5000))

        self.assertEqual(len(api.state.transactions), 1)
        self.assertTrue(transaction.id)
        self.assertEqual(self.store.load_transactions(), [transaction])

        self.assertEqual(len(self.client.pushes), 1)
        pushed = self.client.pushes[0]['transactions']
        self.assertEqual(len(pushed), 1)
        self.assertEqual(pushed[0]['id'], transaction.id)
        self.assertEqual(pushed[0]['amount'], 100)

        rows = self.fake.sheet(tables.Table.Transactions.value).body
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0][0], transaction.id)
        self.assertEqual(rows[0][2:6], ['2024/01/01', '支出', '食物', '100'])

    def test_second_session_pulls_what_the_first_pushed(self):
        self.seed_local()
        first = self.make_api()
        first.add_transaction('expense', '2024-01-01', '食物', 100)
        # Pushes are unordered, let the first land before the second is sent
        self.assertTrue(first.wait_for_pushes(5000))
        first.toggle_savings_day(7)
        self.assertTrue(first.wait_for_pushes(5000))

        self.store.reset()
        second = self.make_api()
        self.assertTrue(second.pull())

        self.assertEqual([t.id for t in second.state.transactions], [t.id for t in first.state.transactions])
        self.assertEqual(second.state.savings.completed_days, [7])
        self.assertEqual(second.state.expense_categories, ['食物'])
        self.assertEqual(self.store.load_savings().completed_days, [7])


class PullTest(SyncTestCase):

    def test_partial_pull_keeps_undefined_slices(self):
        local = models.new_transaction('expense', '2024-01-01', '食物', 5)
        self.seed_local(transactions=[local], income_categories=['薪水', '獎金'], savings=models.SavingsState([2]))
        api = self.make_api()

        adopted = api.apply_remote({
            'transactions': [],
            'expenseCategories': ['交通'],
            'incomeCategories': None,
        })

        self.assertEqual(set(adopted), {database.Key.Transactions, database.Key.ExpenseCategories})
        self.assertEqual(api.state.transactions, [])
        self.assertEqual(api.state.expense_categories, ['交通'])
        self.assertEqual(api.state.income_categories, ['薪水', '獎金'])
        self.assertEqual(api.state.savings.completed_days, [2])

        restored = self.store.load()
        self.assertEqual(restored.transactions, [])
        self.assertEqual(restored.expense_categories, ['交通'])
        self.assertEqual(restored.income_categories, ['薪水', '獎金'])

    def test_wrongly_shaped_slices_are_ignored(self):
        self.seed_local(savings=models.SavingsState([4]))
        api = self.make_api()
        with self.assertLogs(level='WARNING'):
            adopted = api.apply_remote({'transactions': {'a': 1}, 'savings': [1, 2]})
        self.assertEqual(adopted, [])
        self.assertEqual(api.state.savings.completed_days, [4])

    def test_pull_failure_keeps_local_state(self):
        local = models.new_transaction('expense', '2024-01-01', '食物', 5)
        self.seed_local(transactions=[local])
        self.client.fetch_error = status.ServiceUnavailableException('offline')
        api = self.make_api()

        with mute_signals(), self.assertLogs(level='WARNING'):
            self.assertFalse(api.pull())
        self.assertEqual(api.state.transactions, [local])

    def test_remote_error_marker_keeps_local_state(self):
        self.seed_local(expense_categories=['食物', '飲料'])
        self.fake.fail_with = TimeoutError('timed out')
        api = self.make_api()

        with mute_signals(), self.assertLogs(level='WARNING'):
            self.assertFalse(api.pull())
        self.assertEqual(api.state.expense_categories, ['食物', '飲料'])

    def test_pull_happens_once_per_session(self):
        self.seed_local()
        api = self.make_api()
        self.assertTrue(api.pull())
        self.assertFalse(api.pull())
        self.assertEqual(self.client.fetch_count, 1)

    def test_no_remote_url_is_local_only(self):
        section = lib.settings.get_section('remote')
        section['url'] = ''
        lib.settings.set_section('remote', section)
        self.seed_local()
        api = sync.SyncAPI(store=self.store, client_factory=lambda: self.fail('client must not be created'))

        self.assertFalse(api.remote_configured)
        self.assertFalse(api.pull())
        api.add_transaction('income', '2024-01-02', '薪水', 10)
        self.assertEqual(api.push(), 0)
        self.assertTrue(api.wait_for_pushes(1000))
        self.assertEqual(len(self.store.load_transactions()), 1)

    def test_pull_emits_signals(self):
        self.seed_local()
        received = []

        def on_state_changed(key):
            received.append(key)

        signals.stateChanged.connect(on_state_changed)
        self.addCleanup(signals.stateChanged.disconnect, on_state_changed)

        api = self.make_api()
        api.apply_remote({'savings': {'completedDays': [1]}})
        self.assertEqual(received, [database.Key.Savings.value])


class MutationTest(SyncTestCase):

    def test_add_validation_changes_nothing(self):
        self.seed_local()
        api = self.make_api()
        with mute_signals():
            with self.assertRaises(status.InvalidAmountException):
                api.add_transaction('expense', '2024-01-01', '食物', 0)
            with self.assertRaises(status.InvalidCategoryException):
                api.add_transaction('expense', '2024-01-01', '薪水', 10)
            with self.assertRaises(status.InvalidDateException):
                api.add_transaction('expense', '2024-02-30', '食物', 10)
        api.wait_for_pushes()
        self.assertEqual(api.state.transactions, [])
        self.assertEqual(self.client.pushes, [])

    def test_new_transactions_are_prepended(self):
        self.seed_local()
        api = self.make_api()
        first = api.add_transaction('expense', '2024-01-01', '食物', 1)
        second = api.add_transaction('expense', '2023-12-01', '食物', 2)
        self.assertEqual([t.id for t in api.state.transactions], [second.id, first.id])

    def test_delete_pushes_only_when_something_was_removed(self):
        local = models.new_transaction('expense', '2024-01-01', '食物', 5)
        self.seed_local(transactions=[local])
        api = self.make_api()

        self.assertFalse(api.delete_transaction('missing'))
        self.assertTrue(api.wait_for_pushes(5000))
        self.assertEqual(self.client.pushes, [])

        self.assertTrue(api.delete_transaction(local.id))
        self.assertTrue(api.wait_for_pushes(5000))
        self.assertEqual(len(self.client.pushes), 1)
        self.assertEqual(self.client.pushes[0]['transactions'], [])
        self.assertEqual(self.store.load_transactions(), [])

    def test_toggle_savings_day(self):
        self.seed_local()
        api = self.make_api()
        self.assertTrue(api.toggle_savings_day(10))
        self.assertFalse(api.toggle_savings_day(10))
        self.assertTrue(api.toggle_savings_day(3))
        self.assertTrue(api.wait_for_pushes(5000))

        self.assertEqual(api.state.savings.completed_days, [3])
        self.assertEqual(self.store.load_savings().completed_days, [3])
        self.assertEqual(len(self.client.pushes), 3)

        with mute_signals():
            with self.assertRaises(status.InvalidSavingsDayException):
                api.toggle_savings_day(366)

    def test_category_removal_does_not_cascade_or_push(self):
        local = models.new_transaction('expense', '2024-01-01', '食物', 5)
        self.seed_local(transactions=[local], expense_categories=['食物', '飲料'])
        api = self.make_api()

        self.assertEqual(api.remove_category('expense', '食物'), ['飲料'])
        self.assertEqual(api.add_category('income', '獎金'), ['薪水', '獎金'])
        self.assertTrue(api.wait_for_pushes(5000))

        self.assertEqual(api.state.transactions, [local])
        self.assertEqual(self.store.load_expense_categories(), ['飲料'])
        self.assertEqual(self.store.load_income_categories(), ['薪水', '獎金'])
        self.assertEqual(self.client.pushes, [])

        api.toggle_savings_day(1)
        self.assertTrue(api.wait_for_pushes(5000))
        self.assertEqual(self.client.pushes[-1]['expenseCategories'], ['飲料'])

    def test_push_failure_is_logged_not_raised(self):
        self.seed_local()
        self.client.push_error = status.ServiceUnavailableException('offline')
        api = self.make_api()

        with self.assertLogs(level='ERROR') as logs:
            transaction = api.add_transaction('expense', '2024-01-01', '食物', 10)
            self.assertTrue(api.wait_for_pushes(5000))
        self.assertTrue(any('Push #1 failed' in line for line in logs.output))
        self.assertEqual(api.state.transactions, [transaction])
        self.assertEqual(self.store.load_transactions(), [transaction])

    def test_push_sequence_numbers_increase(self):
        self.seed_local()
        api = self.make_api()
        self.assertEqual(api.push(), 1)
        self.assertEqual(api.push(), 2)
        self.assertTrue(api.wait_for_pushes(5000))
        self.assertEqual(len(self.client.pushes), 2)

    def test_overlapping_pushes_are_not_ordered(self):
        self.seed_local()
        self.client = HeldFirstPushClient(self.remote)
        pool = QtCore.QThreadPool()
        pool.setMaxThreadCount(2)
        api = sync.SyncAPI(store=self.store, client_factory=lambda: self.client, pool=pool)
        self.apis.append(api)

        api.toggle_savings_day(1)
        self.assertTrue(self.client.first_waiting.wait(5))
        api.toggle_savings_day(2)
        self.assertTrue(self.client.later_done.wait(5))
        self.assertEqual(self.remote.read().savings.completed_days, [1, 2])

        self.client.release_first.set()
        self.assertTrue(api.wait_for_pushes(5000))

        # The older snapshot lands last and wins
        self.assertEqual(self.remote.read().savings.completed_days, [1])
        self.assertEqual(api.state.savings.completed_days, [1, 2])
        self.assertEqual(self.store.load_savings().completed_days, [1, 2])


class SyncNowTest(SyncTestCase):

    def test_confirmed(self):
        self.seed_local(savings=models.SavingsState([1, 2]))
        api = self.make_api()
        self.assertTrue(api.sync_now(lambda: True))
        self.assertEqual(len(self.client.pushes), 1)
        self.assertEqual(self.remote.read().savings.completed_days, [1, 2])

    def test_declined(self):
        self.seed_local()
        api = self.make_api()
        self.assertFalse(api.sync_now(lambda: False))
        self.assertEqual(self.client.pushes, [])

    def test_failure_is_raised(self):
        self.seed_local()
        self.client.push_error = status.ServiceUnavailableException('offline')
        api = self.make_api()
        with mute_signals():
            with self.assertRaises(status.ServiceUnavailableException):
                api.sync_now(lambda: True)

    def test_requires_remote_url(self):
        section = lib.settings.get_section('remote')
        section['url'] = ''
        lib.settings.set_section('remote', section)
        api = self.make_api()
        asked = []
        with mute_signals():
            with self.assertRaises(status.RemoteNotConfiguredException):
                api.sync_now(lambda: asked.append(1) or True)
        self.assertEqual(asked, [])


if __name__ == '__main__':
    unittest.main()
