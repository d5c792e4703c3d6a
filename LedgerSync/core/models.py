"""Entity model for the ledger: transactions, category lists and the savings challenge.

The wire form of every entity uses camelCase keys (``createdAt``, ``completedDays``,
``expenseCategories``) so payloads stay compatible with the remote endpoint.
"""
import dataclasses
import datetime
import enum
import logging
import math
import uuid
from typing import Any, Dict, Iterable, List, Optional, Union

from ..status import status

CHALLENGE_DAYS: int = 365

#: The challenge total when every day is marked, 1 + 2 + ... + 365
TARGET_SAVINGS_AMOUNT: int = CHALLENGE_DAYS * (CHALLENGE_DAYS + 1) // 2

DATE_FORMAT = '%Y-%m-%d'

DEFAULT_EXPENSE_CATEGORIES: List[str] = ['食物', '飲料', '交通', '購物', '娛樂', '居家', '醫療', '其他']
DEFAULT_INCOME_CATEGORIES: List[str] = ['薪水', '獎金', '投資', '其他']


class TransactionType(enum.StrEnum):
    """Enum for transaction types."""
    Expense = 'expense'
    Income = 'income'


#: Labels used for the transaction type in the remote tables
TYPE_LABELS: Dict[TransactionType, str] = {
    TransactionType.Expense: '支出',
    TransactionType.Income: '收入',
}


def type_to_label(_type: Union[TransactionType, str]) -> str:
    """Return the remote label of a transaction type."""
    return TYPE_LABELS[TransactionType(_type)]


def type_from_label(label: str) -> TransactionType:
    """Return the transaction type of a remote label. Anything but the expense label reads as income."""
    if str(label).strip() == TYPE_LABELS[TransactionType.Expense]:
        return TransactionType.Expense
    return TransactionType.Income


def is_type_label(value: Any) -> bool:
    return isinstance(value, str) and value.strip() in TYPE_LABELS.values()


def now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string with millisecond precision.

    Returns:
        str: e.g. '2024-01-01T04:00:00.000Z'.
    """
    return to_iso(datetime.datetime.now(datetime.timezone.utc))


def to_iso(value: datetime.datetime) -> str:
    """Convert an aware datetime to the canonical UTC ISO-8601 form."""
    value = value.astimezone(datetime.timezone.utc)
    return value.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def new_id() -> str:
    return str(uuid.uuid4())


def as_number(value: Union[int, float]) -> Union[int, float]:
    """Return integral values as int so they serialize as 100 rather than 100.0."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def coerce_amount(value: Any) -> Union[int, float]:
    """Coerce a wire value to a finite number, 0 when that is not possible."""
    if isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return as_number(number)


@dataclasses.dataclass
class Transaction:
    """One expense or income record."""
    id: str
    date: str  # Ledger date, YYYY-MM-DD
    created_at: str  # ISO-8601 timestamp of the record creation
    type: TransactionType
    category: str
    amount: Union[int, float]
    note: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'date': self.date,
            'createdAt': self.created_at,
            'type': str(self.type),
            'category': self.category,
            'amount': as_number(self.amount),
            'note': self.note,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        """Build a transaction from its wire form.

        Values are taken as they are, except the type and the amount which are coerced
        to a valid type and a finite number. A missing id is synthesized.
        """
        try:
            _type = TransactionType(data.get('type', TransactionType.Expense))
        except ValueError:
            logging.warning(f'Unknown transaction type "{data.get("type")}", reading as income.')
            _type = TransactionType.Income

        return cls(
            id=str(data.get('id') or new_id()),
            date=str(data.get('date') or ''),
            created_at=str(data.get('createdAt') or ''),
            type=_type,
            category=str(data.get('category') or ''),
            amount=coerce_amount(data.get('amount', 0)),
            note=str(data.get('note') or ''),
        )


@dataclasses.dataclass
class SavingsState:
    """Completed days of the 365-day savings challenge.

    Day N contributes N to the saved total. Days are unique, within [1, 365] and kept
    sorted ascending.
    """
    completed_days: List[int] = dataclasses.field(default_factory=list)

    def __post_init__(self) -> None:
        self.completed_days = normalize_days(self.completed_days)

    @property
    def total(self) -> int:
        return sum(self.completed_days)

    def is_completed(self, day: int) -> bool:
        return day in self.completed_days

    def toggle(self, day: int) -> bool:
        """Mark or unmark a day.

        Returns:
            bool: True if the day is now completed.

        Raises:
            status.InvalidSavingsDayException: If the day is out of range.
        """
        if isinstance(day, bool) or not isinstance(day, int) or not 1 <= day <= CHALLENGE_DAYS:
            raise status.InvalidSavingsDayException(f'Got "{day}".')

        if day in self.completed_days:
            self.completed_days = [d for d in self.completed_days if d != day]
            return False
        self.completed_days = sorted(self.completed_days + [day])
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {'completedDays': list(self.completed_days)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'SavingsState':
        if not isinstance(data, dict):
            return cls()
        return cls(completed_days=data.get('completedDays') or [])


def normalize_days(days: Iterable[Any]) -> List[int]:
    """Return the unique integer days within [1, 365], sorted ascending."""
    result = set()
    for value in days:
        if isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            logging.debug(f'Skipping non-numeric savings day "{value}".')
            continue
        if not number.is_integer() or not 1 <= number <= CHALLENGE_DAYS:
            logging.debug(f'Skipping out of range savings day "{value}".')
            continue
        result.add(int(number))
    return sorted(result)


def normalize_categories(values: Iterable[Any]) -> List[str]:
    """Return the non-empty category names with duplicates removed, keeping their order."""
    result: List[str] = []
    for value in values:
        if value is None:
            continue
        name = str(value).strip()
        if name and name not in result:
            result.append(name)
    return result


@dataclasses.dataclass
class LedgerState:
    """The complete working copy: transactions, both category lists and the savings state."""
    transactions: List[Transaction] = dataclasses.field(default_factory=list)
    expense_categories: List[str] = dataclasses.field(default_factory=list)
    income_categories: List[str] = dataclasses.field(default_factory=list)
    savings: SavingsState = dataclasses.field(default_factory=SavingsState)

    def categories(self, _type: Union[TransactionType, str]) -> List[str]:
        if TransactionType(_type) == TransactionType.Expense:
            return self.expense_categories
        return self.income_categories

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return next((t for t in self.transactions if t.id == transaction_id), None)

    def copy(self) -> 'LedgerState':
        return LedgerState(
            transactions=[dataclasses.replace(t) for t in self.transactions],
            expense_categories=list(self.expense_categories),
            income_categories=list(self.income_categories),
            savings=SavingsState(list(self.savings.completed_days)),
        )

    def to_payload(self) -> Dict[str, Any]:
        """Return the full snapshot in its wire form."""
        return {
            'expenseCategories': list(self.expense_categories),
            'incomeCategories': list(self.income_categories),
            'transactions': [t.to_dict() for t in self.transactions],
            'savings': self.savings.to_dict(),
        }

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> 'LedgerState':
        """Build a state from a wire payload. Missing or null slices are empty."""
        transactions = [
            Transaction.from_dict(t) for t in (data.get('transactions') or []) if isinstance(t, dict)
        ]
        return cls(
            transactions=transactions,
            expense_categories=normalize_categories(data.get('expenseCategories') or []),
            income_categories=normalize_categories(data.get('incomeCategories') or []),
            savings=SavingsState.from_dict(data.get('savings')),
        )


def parse_entry_amount(value: Any) -> Union[int, float]:
    """Validate an entered amount.

    Raises:
        status.InvalidAmountException: If the amount is missing, not a number, not finite or not positive.
    """
    if value is None or isinstance(value, bool) or (isinstance(value, str) and not value.strip()):
        raise status.InvalidAmountException('No amount given.')
    try:
        number = float(value)
    except (TypeError, ValueError) as ex:
        raise status.InvalidAmountException(f'"{value}" is not a number.') from ex
    if not math.isfinite(number) or number <= 0:
        raise status.InvalidAmountException(f'"{value}" must be greater than zero.')
    return as_number(number)


def parse_entry_date(value: Any) -> str:
    """Validate an entered ledger date.

    Raises:
        status.InvalidDateException: If the value is not a YYYY-MM-DD calendar date.
    """
    if isinstance(value, datetime.datetime):
        value = value.date()
    if isinstance(value, datetime.date):
        return value.strftime(DATE_FORMAT)
    try:
        return datetime.datetime.strptime(str(value).strip(), DATE_FORMAT).strftime(DATE_FORMAT)
    except ValueError as ex:
        raise status.InvalidDateException(f'Got "{value}".') from ex


def new_transaction(
        _type: Union[TransactionType, str],
        date: Any,
        category: str,
        amount: Any,
        note: str = '',
        categories: Optional[List[str]] = None,
) -> Transaction:
    """Validate user input and create a new transaction with a fresh id and creation time.

    Args:
        _type: 'expense' or 'income'.
        date: Ledger date, YYYY-MM-DD or a date object.
        category: Category name. Must be one of `categories` when a list is given.
        amount: Positive amount.
        note: Optional free text.
        categories: The category list of the matching type.

    Raises:
        status.InvalidAmountException, status.InvalidCategoryException, status.InvalidDateException
    """
    try:
        _type = TransactionType(_type)
    except ValueError as ex:
        raise status.InvalidCategoryException(f'Unknown transaction type "{_type}".') from ex

    parsed_amount = parse_entry_amount(amount)

    category = (category or '').strip()
    if not category:
        raise status.InvalidCategoryException
    if categories is not None and category not in categories:
        raise status.InvalidCategoryException(f'"{category}" is not a known {_type} category.')

    return Transaction(
        id=new_id(),
        date=parse_entry_date(date),
        created_at=now_iso(),
        type=_type,
        category=category,
        amount=parsed_amount,
        note=note or '',
    )


def add_category(categories: List[str], name: str) -> List[str]:
    """Append a category name to a list.

    Args:
        categories: The current expense or income category list.
        name: Name of the new category. Surrounding whitespace is dropped.

    Returns:
        list: A new list with the name appended.

    Raises:
        status.InvalidCategoryException: If the name is empty.
        status.CategoryExistsException: If the name is already in the list.
    """
    name = (name or '').strip()
    if not name:
        raise status.InvalidCategoryException
    if name in categories:
        raise status.CategoryExistsException(f'"{name}" already exists.')
    return list(categories) + [name]


def remove_category(categories: List[str], name: str) -> List[str]:
    """Return a new list without the given category. Transactions are not touched."""
    if name not in categories:
        logging.debug(f'Category "{name}" not in list, nothing to remove.')
    return [c for c in categories if c != name]
