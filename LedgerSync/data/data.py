"""Derived views over the ledger.

Pure functions computing the calendar month summary, the per-day and today's
transaction lists, monthly totals and the savings challenge progress. Nothing
here is persisted; every view is recomputed from the entity model.
"""
import datetime
import logging
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from ..core import models
from ..settings import lib
from ..settings import locale

TRANSACTION_COLUMNS: List[str] = ['id', 'date', 'createdAt', 'type', 'category', 'amount', 'note']

TODAY_OPERATIONS_LIMIT: int = 10


def _to_frame(transactions: List[models.Transaction]) -> pd.DataFrame:
    """Build a DataFrame of the transactions, keeping their collection position in 'position'."""
    df = pd.DataFrame([t.to_dict() for t in transactions], columns=TRANSACTION_COLUMNS)
    df['position'] = range(len(df))
    return df


def _conform_date_column(df: pd.DataFrame) -> pd.DataFrame:
    """Convert 'date' to datetime and drop rows whose ledger date cannot be parsed.

    Args:
        df (pd.DataFrame): DataFrame with a 'date' column.

    Returns:
        pd.DataFrame: DataFrame with valid datetime entries.
    """
    df['date'] = pd.to_datetime(df['date'], format=models.DATE_FORMAT, errors='coerce')
    clean_df = df.dropna(subset=['date'])

    if len(df) != len(clean_df):
        logging.warning(f'Dropped {len(df) - len(clean_df)} transactions with an invalid ledger date.')
    return clean_df


def _conform_amount_column(df: pd.DataFrame) -> pd.DataFrame:
    """Convert 'amount' to float and add 'signed', positive for income and negative for expenses."""
    df['amount'] = pd.to_numeric(df['amount'], errors='coerce').fillna(0.0).astype(float)
    sign = df['type'].map({str(models.TransactionType.Income): 1.0}).fillna(-1.0)
    df['signed'] = df['amount'] * sign
    return df


def _conform_period(df: pd.DataFrame, year: int, month: int) -> pd.DataFrame:
    period = pd.Period(year=year, month=month, freq='M')
    return df[df['date'].dt.to_period('M') == period]


def _month_frame(transactions: List[models.Transaction], year: int, month: int) -> pd.DataFrame:
    return (
        _to_frame(transactions)
        .pipe(_conform_date_column)
        .pipe(_conform_amount_column)
        .pipe(_conform_period, year, month)
    )


def get_month_summary(transactions: List[models.Transaction], year: int, month: int) -> Dict[int, float]:
    """Net amount per day of a month.

    Args:
        transactions: The transaction collection.
        year: Calendar year.
        month: Calendar month, 1 to 12.

    Returns:
        dict: Day of month to net amount, income positive and expenses negative.
            Days without transactions are absent.
    """
    if not transactions:
        return {}

    df = _month_frame(transactions, year, month)
    if df.empty:
        return {}

    summary = df.groupby(df['date'].dt.day)['signed'].sum()
    return {int(day): float(net) for day, net in summary.items()}


def get_totals(transactions: List[models.Transaction], year: int, month: int) -> Dict[str, float]:
    """Income, expense and net totals of a month."""
    totals = {'income': 0.0, 'expense': 0.0, 'net': 0.0}
    if not transactions:
        return totals

    df = _month_frame(transactions, year, month)
    if df.empty:
        return totals

    by_type = df.groupby('type')['amount'].sum()
    totals['income'] = float(by_type.get(str(models.TransactionType.Income), 0.0))
    totals['expense'] = float(by_type.get(str(models.TransactionType.Expense), 0.0))
    totals['net'] = totals['income'] - totals['expense']
    return totals


def get_day_transactions(
        transactions: List[models.Transaction],
        date: Union[str, datetime.date]
) -> List[models.Transaction]:
    """Transactions attributed to a ledger date, in collection order."""
    day = models.parse_entry_date(date)
    return [t for t in transactions if t.date == day]


def _local_timezone(tz: Optional[datetime.tzinfo]) -> datetime.tzinfo:
    if tz is not None:
        return tz
    return locale.get_tzinfo(lib.settings['timezone'])


def get_today_operations(
        transactions: List[models.Transaction],
        today: Optional[datetime.date] = None,
        limit: int = TODAY_OPERATIONS_LIMIT,
        tz: Optional[datetime.tzinfo] = None,
) -> List[models.Transaction]:
    """Transactions recorded on a given local day, most recent first.

    Args:
        transactions: The transaction collection.
        today: The local day. Defaults to the current day in the configured time zone.
        limit: Maximum number of records returned.
        tz: Local time zone. Defaults to the configured time zone.
    """
    tz = _local_timezone(tz)
    if today is None:
        today = datetime.datetime.now(tz).date()
    if not transactions:
        return []

    df = _to_frame(transactions)
    created = pd.to_datetime(df['createdAt'], utc=True, errors='coerce', format='ISO8601')
    df['created'] = created.dt.tz_convert(tz)
    df = df.dropna(subset=['created'])
    df = df[df['created'].dt.date == today]
    df = df.sort_values(by='created', ascending=False, kind='stable').head(limit)
    return [transactions[int(i)] for i in df['position']]


def get_savings_progress(savings: models.SavingsState) -> Dict[str, Any]:
    """Progress of the savings challenge.

    Returns:
        dict: 'total' saved, the 'target', 'percent' of the target reached,
            'completed' and 'remaining' day counts.
    """
    total = savings.total
    completed = len(savings.completed_days)
    return {
        'total': total,
        'target': models.TARGET_SAVINGS_AMOUNT,
        'percent': round(total / models.TARGET_SAVINGS_AMOUNT * 100.0, 2),
        'completed': completed,
        'remaining': models.CHALLENGE_DAYS - completed,
    }
