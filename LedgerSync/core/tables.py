"""Row codecs for the remote spreadsheet tables.

Each table has one pure parse step (display rows to entities) and one format step
(entities to display rows). The transaction table has been written in two layouts
over time, and :func:`detect_row_format` decides the layout of every row on its own:

- current: ``ID, 錄入時間, 帳目時間, 分類, 類別, 金額, 備註``
- legacy: ``錄入時間, 帳目時間, 分類, 類別, 金額, 備註`` (no id column)

"""
import datetime
import decimal
import enum
import logging
import math
from typing import Any, Dict, List, Optional, Tuple, Union

from babel import UnknownLocaleError, numbers

from . import models
from ..settings import locale


class Table(enum.StrEnum):
    """Worksheet titles of the remote store."""
    Categories = '分類'
    Transactions = '記帳紀錄'
    Savings = '365實行計畫'


HEADERS: Dict[Table, List[str]] = {
    Table.Categories: ['分類', '類別'],
    Table.Transactions: ['ID', '錄入時間', '帳目時間', '分類', '類別', '金額', '備註'],
    Table.Savings: ['紀錄時間', '金額'],
}

#: Zero-based columns written as plain text so values like '7-11' are kept verbatim
TEXT_COLUMNS: Dict[Table, Tuple[int, ...]] = {
    Table.Categories: (1,),
    Table.Transactions: (0, 4, 6),
    Table.Savings: (),
}

#: Zero-based columns holding display dates and timestamps, and their number formats
DATE_COLUMNS: Dict[Table, Dict[int, Dict[str, str]]] = {
    Table.Categories: {},
    Table.Transactions: {
        1: {'type': 'DATE_TIME', 'pattern': locale.TIMESTAMP_PATTERN},
        2: {'type': 'DATE', 'pattern': locale.DATE_PATTERN},
    },
    Table.Savings: {
        0: {'type': 'DATE_TIME', 'pattern': locale.TIMESTAMP_PATTERN},
    },
}

TRANSACTION_COLUMNS: int = len(HEADERS[Table.Transactions])
LEGACY_TRANSACTION_COLUMNS: int = TRANSACTION_COLUMNS - 1


class RowFormat(enum.StrEnum):
    """Layout of a transaction row."""
    Current = 'current'
    Legacy = 'legacy'


def to_cells(row: List[Any], width: Optional[int] = None) -> List[str]:
    """Convert a row to strings, padded or truncated to the given width."""
    cells = ['' if v is None else str(v) for v in row]
    if width is None:
        return cells
    cells = cells[:width]
    return cells + [''] * (width - len(cells))


def is_blank(row: List[Any]) -> bool:
    return not any(str(v).strip() for v in row if v is not None)


def detect_row_format(row: List[Any]) -> RowFormat:
    """Decide the layout of a single transaction row.

    A row is in the current layout when it has at least 7 cells, or when its fourth
    cell is a transaction type label, ignoring surrounding whitespace. Anything else
    is read as legacy.
    """
    if len(row) >= TRANSACTION_COLUMNS:
        return RowFormat.Current
    if len(row) >= 4 and models.is_type_label(row[3]):
        return RowFormat.Current
    return RowFormat.Legacy


def parse_amount(value: Any, locale_name: str = 'zh_TW') -> Union[int, float]:
    """Parse a display amount.

    Grouping separators are dropped following the conventions of the given locale.
    Anything that does not parse to a finite number reads as 0.

    Args:
        value: Cell value, e.g. '1,234' or 1234.5.
        locale_name: Babel locale of the spreadsheet.

    Returns:
        int or float: The amount, int when integral.
    """
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return models.coerce_amount(value)

    text = '' if value is None else str(value).strip()
    if not text:
        return 0

    try:
        number = locale.parse_decimal(text, locale_name)
    except (numbers.NumberFormatError, UnknownLocaleError, decimal.InvalidOperation) as ex:
        logging.debug(f'Could not parse amount "{text}", reading as 0: {ex}')
        return 0

    if not number.is_finite():
        return 0
    if number == number.to_integral_value():
        return int(number)
    result = float(number)
    return result if math.isfinite(result) else 0


def parse_timestamp(value: Any, tz: datetime.tzinfo) -> str:
    """Convert a display timestamp to ISO-8601 UTC. Unparseable values are returned unchanged."""
    text = '' if value is None else str(value)
    if not text.strip():
        return text
    try:
        return models.to_iso(locale.parse_display_timestamp(text, tz))
    except ValueError:
        logging.debug(f'Keeping unparseable timestamp "{text}" as is.')
        return text


def parse_ledger_date(value: Any) -> str:
    """Convert a display date to YYYY-MM-DD. Unparseable values are returned unchanged."""
    text = '' if value is None else str(value)
    if not text.strip():
        return text
    try:
        return locale.parse_display_date(text).isoformat()
    except ValueError:
        logging.debug(f'Keeping unparseable date "{text}" as is.')
        return text


def format_timestamp(value: str, tz: datetime.tzinfo) -> str:
    """Convert an ISO-8601 timestamp to its display form. Unparseable values are returned unchanged."""
    if not value:
        return ''
    try:
        parsed = datetime.datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return value
    return locale.format_timestamp(parsed, tz)


def format_ledger_date(value: str) -> str:
    """Convert a YYYY-MM-DD date to its display form. Unparseable values are returned unchanged."""
    if not value:
        return ''
    try:
        return locale.format_ledger_date(locale.parse_display_date(value))
    except ValueError:
        return value


def transaction_table_width(rows: List[List[Any]]) -> int:
    """Width of the transaction table: its widest row, capped at the current schema."""
    widest = max((len(r) for r in rows), default=0)
    return min(widest, TRANSACTION_COLUMNS)


def parse_transaction_row(
        row: List[Any],
        tz: datetime.tzinfo,
        locale_name: str = 'zh_TW'
) -> models.Transaction:
    """Parse one transaction row in either layout.

    Legacy rows, and current rows with an empty id cell, get a fresh id.

    Args:
        row: The row cells as read. Missing trailing cells are treated as empty.
        tz: Time zone of the spreadsheet, used for naive display timestamps.
        locale_name: Babel locale of the spreadsheet, used for amounts.
    """
    cells = to_cells(row)
    row_format = detect_row_format(cells)

    if row_format == RowFormat.Current:
        cells = to_cells(cells, TRANSACTION_COLUMNS)
        _id = cells[0].strip() or models.new_id()
        created_at, date, label, category, amount, note = cells[1:]
    else:
        cells = to_cells(cells, LEGACY_TRANSACTION_COLUMNS)
        _id = models.new_id()
        created_at, date, label, category, amount, note = cells

    return models.Transaction(
        id=_id,
        date=parse_ledger_date(date),
        created_at=parse_timestamp(created_at, tz),
        type=models.type_from_label(label),
        category=category,
        amount=parse_amount(amount, locale_name=locale_name),
        note=note,
    )


def parse_transaction_rows(
        rows: List[List[Any]],
        tz: datetime.tzinfo,
        locale_name: str = 'zh_TW',
        width: Optional[int] = None,
) -> List[models.Transaction]:
    """Parse the body rows of the transaction table, skipping blank rows.

    Args:
        rows: Body rows, header excluded, with trailing empty cells trimmed as the API returns them.
        tz: Time zone of the spreadsheet.
        locale_name: Babel locale of the spreadsheet.
        width: Table width, cells beyond it are dropped. Defaults to the width of the widest row.
    """
    if width is None:
        width = transaction_table_width(rows)

    transactions = []
    for row in rows:
        if is_blank(row):
            continue
        transactions.append(parse_transaction_row(to_cells(row)[:width], tz, locale_name=locale_name))
    return transactions


def parse_category_rows(rows: List[List[Any]]) -> Tuple[List[str], List[str]]:
    """Split the category table rows by type label, keeping row order.

    Returns:
        tuple: The expense and income category lists.
    """
    expense: List[str] = []
    income: List[str] = []
    for row in rows:
        cells = to_cells(row, 2)
        label, name = cells[0].strip(), cells[1]
        if not name.strip():
            continue
        if label == models.TYPE_LABELS[models.TransactionType.Expense]:
            expense.append(name)
        elif label == models.TYPE_LABELS[models.TransactionType.Income]:
            income.append(name)
    return expense, income


def parse_savings_rows(rows: List[List[Any]], locale_name: str = 'zh_TW') -> List[int]:
    """Project the day column of the savings table, discarding non-numeric rows.

    Days are parsed with the same locale rules as amounts.
    """
    days = []
    for row in rows:
        cells = to_cells(row, 2)
        text = cells[1].strip()
        try:
            number = locale.parse_decimal(text, locale_name)
        except (numbers.NumberFormatError, UnknownLocaleError, decimal.InvalidOperation) as ex:
            logging.debug(f'Skipping savings row with non-numeric day "{cells[1]}": {ex}')
            continue
        if number.is_finite():
            days.append(number)
    return models.normalize_days(days)



def format_transaction_row(transaction: models.Transaction, tz: datetime.tzinfo) -> List[Any]:
    return [
        transaction.id or models.new_id(),
        format_timestamp(transaction.created_at, tz),
        format_ledger_date(transaction.date),
        models.type_to_label(transaction.type),
        transaction.category,
        models.as_number(transaction.amount),
        transaction.note or '',
    ]


def format_transaction_rows(transactions: List[models.Transaction], tz: datetime.tzinfo) -> List[List[Any]]:
    """Format transactions for writing, newest ledger date first."""
    ordered = sorted(transactions, key=lambda t: t.date, reverse=True)
    return [format_transaction_row(t, tz) for t in ordered]


def format_category_rows(expense: List[str], income: List[str]) -> List[List[str]]:
    expense_label = models.TYPE_LABELS[models.TransactionType.Expense]
    income_label = models.TYPE_LABELS[models.TransactionType.Income]
    return [[expense_label, c] for c in expense] + [[income_label, c] for c in income]


def format_savings_rows(
        savings: models.SavingsState,
        tz: datetime.tzinfo,
        now: Optional[datetime.datetime] = None
) -> List[List[Any]]:
    """Format the completed days, each stamped with the time of writing."""
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    stamp = locale.format_timestamp(now, tz)
    return [[stamp, day] for day in sorted(savings.completed_days)]
