"""
Module for formatting and parsing display dates, timestamps and amounts using Babel.

The remote spreadsheet stores timestamps as ``yyyy/MM/dd HH:mm`` and ledger dates as
``yyyy/MM/dd`` in the spreadsheet's time zone. The patterns below are LDML patterns,
the same syntax the spreadsheet uses for its number formats.
"""
import datetime
import decimal
import logging
from typing import List

from babel import Locale, UnknownLocaleError, numbers
from babel.dates import format_date, format_datetime, get_timezone

TIMESTAMP_PATTERN: str = 'yyyy/MM/dd HH:mm'
DATE_PATTERN: str = 'yyyy/MM/dd'

#: Pattern locale. The display patterns are numeric, so the locale only matters for digits.
PATTERN_LOCALE: str = 'en_US'

TIMESTAMP_PARSE_FORMATS: List[str] = [
    '%Y/%m/%d %H:%M',
    '%Y/%m/%d %H:%M:%S',
    '%Y-%m-%d %H:%M',
    '%Y-%m-%d %H:%M:%S',
    '%Y/%m/%d',
]

DATE_PARSE_FORMATS: List[str] = [
    '%Y/%m/%d',
    '%Y-%m-%d',
]


def get_tzinfo(name: str) -> datetime.tzinfo:
    """
    Resolve a time zone name, falling back to UTC.

    Args:
        name (str): IANA time zone name, e.g. 'Asia/Taipei'.

    Returns:
        datetime.tzinfo: The time zone.
    """
    try:
        return get_timezone(name)
    except LookupError:
        logging.warning(f'Unknown time zone "{name}", using UTC.')
        return datetime.timezone.utc


def format_timestamp(value: datetime.datetime, tz: datetime.tzinfo) -> str:
    """
    Format an aware datetime in the display form of the remote store.

    Args:
        value (datetime.datetime): Timestamp. Naive values are taken as UTC.
        tz (datetime.tzinfo): Time zone of the remote store.

    Returns:
        str: e.g. '2024/01/01 12:00'.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return format_datetime(value, TIMESTAMP_PATTERN, tzinfo=tz, locale=PATTERN_LOCALE)


def format_ledger_date(value: datetime.date) -> str:
    """
    Format a ledger date in the display form of the remote store, e.g. '2024/01/01'.
    """
    return format_date(value, DATE_PATTERN, locale=PATTERN_LOCALE)


def localize(value: datetime.datetime, tz: datetime.tzinfo) -> datetime.datetime:
    """
    Attach a time zone to a naive datetime.

    Babel returns pytz zones when pytz is installed, and those must be attached with
    ``localize`` to get the right offset.
    """
    if hasattr(tz, 'localize'):
        return tz.localize(value)
    return value.replace(tzinfo=tz)


def parse_display_timestamp(text: str, tz: datetime.tzinfo) -> datetime.datetime:
    """
    Parse a display timestamp, interpreting naive values in the given time zone.

    Raises:
        ValueError: If none of the known display forms match.
    """
    text = text.strip()
    for fmt in TIMESTAMP_PARSE_FORMATS:
        try:
            naive = datetime.datetime.strptime(text, fmt)
        except ValueError:
            continue
        return localize(naive, tz)

    # Canonical values written by an older client may already be ISO-8601
    parsed = datetime.datetime.fromisoformat(text.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = localize(parsed, tz)
    return parsed


def parse_display_date(text: str) -> datetime.date:
    """
    Parse a display or canonical ledger date.

    Raises:
        ValueError: If none of the known forms match.
    """
    text = text.strip()
    for fmt in DATE_PARSE_FORMATS:
        try:
            return datetime.datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f'Unrecognized date "{text}"')


def parse_decimal(text: str, locale: str) -> decimal.Decimal:
    """
    Parse a locale-formatted number, dropping grouping separators.

    Args:
        text (str): Display value, e.g. '1,234.5'.
        locale (str): Locale string, e.g. 'zh_TW'.

    Raises:
        numbers.NumberFormatError: If the value is not a number.
    """
    return numbers.parse_decimal(text.strip(), locale=Locale.parse(locale))


def format_float(value: float, locale: str) -> str:
    """
    Format a float as a decimal string according to the locale conventions.

    Args:
        value (float): The numeric value to be formatted.
        locale (str): Locale string, e.g. 'en_US'.

    Returns:
        str: The formatted decimal string.
    """
    try:
        locale_obj = Locale.parse(locale)
        return numbers.format_decimal(value, locale=locale_obj)
    except (ValueError, TypeError, UnknownLocaleError) as ex:
        logging.debug(f'Failed to format "{value}" for locale "{locale}": {ex}')
        return str(value)
