"""Tests for LedgerSync.data.data: month summary, totals and the per-day views."""
import datetime
import unittest

from LedgerSync.core import models
from LedgerSync.data import data
from LedgerSync.settings import locale
from tests.base import BaseTestCase

TAIPEI = locale.get_tzinfo('Asia/Taipei')

Expense = models.TransactionType.Expense
Income = models.TransactionType.Income


def t(_id, date, _type, amount, created_at='2024-01-01T04:00:00.000Z', category='食物'):
    return models.Transaction(_id, date, created_at, _type, category, amount)


class MonthTest(unittest.TestCase):

    def setUp(self) -> None:
        self.transactions = [
            t('a', '2024-01-01', Expense, 100),
            t('b', '2024-01-01', Income, 250),
            t('c', '2024-01-15', Expense, 40.5),
            t('d', '2024-02-01', Expense, 999),
            t('e', 'not a date', Expense, 1),
        ]

    def test_month_summary(self):
        with self.assertLogs(level='WARNING'):
            summary = data.get_month_summary(self.transactions, 2024, 1)
        self.assertEqual(summary, {1: 150.0, 15: -40.5})

    def test_empty_month(self):
        self.assertEqual(data.get_month_summary([], 2024, 1), {})
        with self.assertLogs(level='WARNING'):
            self.assertEqual(data.get_month_summary(self.transactions, 2023, 12), {})

    def test_totals(self):
        with self.assertLogs(level='WARNING'):
            totals = data.get_totals(self.transactions, 2024, 1)
        self.assertEqual(totals, {'income': 250.0, 'expense': 140.5, 'net': 109.5})
        self.assertEqual(data.get_totals([], 2024, 1), {'income': 0.0, 'expense': 0.0, 'net': 0.0})


class DayTest(BaseTestCase):

    def test_day_transactions_keep_collection_order(self):
        transactions = [
            t('a', '2024-01-02', Expense, 1),
            t('b', '2024-01-01', Expense, 2),
            t('c', '2024-01-02', Income, 3),
        ]
        self.assertEqual([x.id for x in data.get_day_transactions(transactions, '2024-01-02')], ['a', 'c'])
        self.assertEqual([x.id for x in data.get_day_transactions(transactions, datetime.date(2024, 1, 1))], ['b'])
        self.assertEqual(data.get_day_transactions(transactions, '2024-03-01'), [])

    def test_today_operations_use_local_recording_day(self):
        transactions = [
            # 2024-01-01 23:30 in Taipei
            t('late', '2023-12-31', Expense, 1, created_at='2024-01-01T15:30:00.000Z'),
            # 2024-01-02 00:10 in Taipei
            t('next-day', '2024-01-01', Expense, 2, created_at='2024-01-01T16:10:00.000Z'),
            # 2024-01-01 08:00 in Taipei
            t('early', '2024-01-05', Income, 3, created_at='2024-01-01T00:00:00.000Z'),
            t('unknown', '2024-01-01', Expense, 4, created_at=''),
        ]
        today = data.get_today_operations(transactions, today=datetime.date(2024, 1, 1), tz=TAIPEI)
        self.assertEqual([x.id for x in today], ['late', 'early'])

    def test_today_operations_limit(self):
        transactions = [
            t(str(i), '2024-01-01', Expense, i, created_at=f'2024-01-01T0{i}:00:00.000Z')
            for i in range(5)
        ]
        today = data.get_today_operations(transactions, today=datetime.date(2024, 1, 1), limit=2, tz=TAIPEI)
        self.assertEqual([x.id for x in today], ['4', '3'])

    def test_today_operations_default_timezone(self):
        created = models.now_iso()
        transactions = [t('now', '2024-01-01', Expense, 1, created_at=created)]
        self.assertEqual([x.id for x in data.get_today_operations(transactions)], ['now'])


class SavingsProgressTest(unittest.TestCase):

    def test_progress(self):
        progress = data.get_savings_progress(models.SavingsState([1, 2, 5]))
        self.assertEqual(progress['total'], 8)
        self.assertEqual(progress['target'], 66795)
        self.assertEqual(progress['completed'], 3)
        self.assertEqual(progress['remaining'], 362)
        self.assertAlmostEqual(progress['percent'], 0.01)

    def test_complete(self):
        progress = data.get_savings_progress(models.SavingsState(list(range(1, 366))))
        self.assertEqual(progress['percent'], 100.0)
        self.assertEqual(progress['remaining'], 0)


if __name__ == '__main__':
    unittest.main()
