"""Status definitions and exceptions for LedgerSync.

This module provides:
    - Status: enumeration of possible application states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - Specific exceptions (e.g., ServiceUnavailableException) for error handling in services
"""
import enum
import logging
from typing import Dict


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Config status
    SettingsNotFound = enum.auto()
    SettingsInvalid = enum.auto()

    # Authentication status
    ClientSecretNotFound = enum.auto()
    ClientSecretInvalid = enum.auto()
    CredsNotFound = enum.auto()
    CredsInvalid = enum.auto()
    NotAuthenticated = enum.auto()

    # Spreadsheet access status
    SpreadsheetIdNotConfigured = enum.auto()

    # Remote sync status
    RemoteNotConfigured = enum.auto()
    ServiceUnavailable = enum.auto()
    RemotePayloadInvalid = enum.auto()
    RemoteError = enum.auto()
    LockTimeout = enum.auto()

    # Local store status
    CacheInvalid = enum.auto()

    # User input status
    InvalidAmount = enum.auto()
    InvalidCategory = enum.auto()
    InvalidDate = enum.auto()
    InvalidSavingsDay = enum.auto()
    CategoryExists = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status. Please check the settings.',
    Status.Okay: 'Everything is okay.',

    Status.SettingsNotFound: 'Could not find the settings file.',
    Status.SettingsInvalid: 'The settings seem to be incomplete, or contain invalid values.',

    Status.ClientSecretNotFound: 'Could not find the google client secret. Have you set up a valid Google client secret?',
    Status.ClientSecretInvalid: 'Could not verify the client secret. Have you set up a valid Google client secret?',
    Status.CredsNotFound: 'Could not find the credentials. Please sign in to your Google account.',
    Status.CredsInvalid: 'Could not verify the credentials. Please sign in again to your Google account.',
    Status.NotAuthenticated: 'Authentication error. Try signing in again to your Google account.',

    Status.SpreadsheetIdNotConfigured: 'Could not find a valid spreadsheet id. Have you set up a valid spreadsheet id in the settings?',

    Status.RemoteNotConfigured: 'No remote sync url is set. Set "remote.url" in the settings to enable cloud backup.',
    Status.ServiceUnavailable: 'The remote store is unavailable. Please check your connection.',
    Status.RemotePayloadInvalid: 'The remote store returned data that could not be read.',
    Status.RemoteError: 'The remote store reported an error.',
    Status.LockTimeout: 'The remote store is busy. Try again in a moment.',

    Status.CacheInvalid: 'The local store is invalid. Try resetting it.',

    Status.InvalidAmount: 'Please enter a valid amount.',
    Status.InvalidCategory: 'Please select or add a category.',
    Status.InvalidDate: 'Please enter a valid date (YYYY-MM-DD).',
    Status.InvalidSavingsDay: 'Savings challenge days must be between 1 and 365.',
    Status.CategoryExists: 'The category already exists.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


class BaseStatusException(Exception):
    """Base exception for status-based errors in LedgerSync.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        self.message = message
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.error(exception_message)

        from ..signals import signals
        signals.error.emit(message or self.status_message)


class UnknownException(BaseStatusException):
    """Exception for an unknown error during status processing."""
    pass


class SettingsNotFoundException(BaseStatusException):
    """Exception raised when the settings file cannot be found."""
    status = Status.SettingsNotFound


class SettingsInvalidException(BaseStatusException):
    """Exception raised when the settings are invalid or malformed."""
    status = Status.SettingsInvalid


class ClientSecretNotFoundException(BaseStatusException):
    """Exception raised when the Google OAuth client secret file cannot be found."""
    status = Status.ClientSecretNotFound


class ClientSecretInvalidException(BaseStatusException):
    """Exception raised when the Google OAuth client secret is invalid or malformed."""
    status = Status.ClientSecretInvalid


class CredsNotFoundException(BaseStatusException):
    """Exception raised when stored Google credentials cannot be found."""
    status = Status.CredsNotFound


class CredsInvalidException(BaseStatusException):
    """Exception raised when stored Google credentials are invalid or expired."""
    status = Status.CredsInvalid


class AuthenticationException(BaseStatusException):
    """Exception raised when user is not authenticated with Google services."""
    status = Status.NotAuthenticated


class SpreadsheetIdNotConfiguredException(BaseStatusException):
    """Exception raised when the spreadsheet ID is not configured in settings."""
    status = Status.SpreadsheetIdNotConfigured


class RemoteNotConfiguredException(BaseStatusException):
    """Exception raised when a user-initiated sync is requested without a remote url."""
    status = Status.RemoteNotConfigured


class ServiceUnavailableException(BaseStatusException):
    """Exception raised when the remote store or the Sheets API cannot be reached."""
    status = Status.ServiceUnavailable


class RemotePayloadInvalidException(BaseStatusException):
    """Exception raised when a remote response cannot be decoded."""
    status = Status.RemotePayloadInvalid


class RemoteErrorException(BaseStatusException):
    """Exception raised when the remote store answers with an explicit error marker."""
    status = Status.RemoteError


class LockTimeoutException(BaseStatusException):
    """Exception raised when the remote store lock cannot be acquired in time."""
    status = Status.LockTimeout


class CacheInvalidException(BaseStatusException):
    """Exception raised when the local store database is corrupted or cannot be removed."""
    status = Status.CacheInvalid


class InvalidAmountException(BaseStatusException):
    """Exception raised when an entered amount is not a positive number."""
    status = Status.InvalidAmount


class InvalidCategoryException(BaseStatusException):
    """Exception raised when an entered category is empty or unknown."""
    status = Status.InvalidCategory


class InvalidDateException(BaseStatusException):
    """Exception raised when an entered ledger date is not a valid calendar date."""
    status = Status.InvalidDate


class InvalidSavingsDayException(BaseStatusException):
    """Exception raised when a savings challenge day is out of range."""
    status = Status.InvalidSavingsDay


class CategoryExistsException(BaseStatusException):
    """Exception raised when adding a category that is already in the list."""
    status = Status.CategoryExists
