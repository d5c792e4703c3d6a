"""
Google credentials for the spreadsheet backend.

Two kinds of credentials are supported:

- a service account key file, configured in the ``spreadsheet.credentials`` setting,
  for unattended use by the HTTP endpoint;
- authorized user credentials obtained once with the installed-app OAuth flow
  (:func:`authenticate`) and stored in the application's auth directory.

"""

import json
import logging
import threading
from typing import Any, Optional

import google.auth.exceptions
import google.auth.transport.requests
import google.oauth2.credentials
import google.oauth2.service_account
import google_auth_oauthlib.flow

from ..status import status

DEFAULT_SCOPES = ['https://www.googleapis.com/auth/spreadsheets', ]


class AuthManager:
    """Manages Google credentials with thread-safe refresh."""

    def __init__(self):
        self._lock = threading.Lock()
        self._creds: Optional[Any] = None

    def clear(self) -> None:
        with self._lock:
            self._creds = None

    def get_valid_credentials(self) -> Any:
        """
        Return valid credentials without user interaction.

        Raises:
            status.AuthenticationException: If no credentials are available or a refresh fails.
            status.CredsInvalidException: If the stored or configured credentials are corrupt.
        """
        from ..settings import lib

        with self._lock:
            if self._creds is None:
                key_path = lib.settings.get_section('spreadsheet').get('credentials', '')
                if key_path:
                    self._creds = _load_service_account(key_path)
                else:
                    self._creds = _load_authorized_user()

            if not self._creds.valid:
                if isinstance(self._creds, google.oauth2.credentials.Credentials) and not self._creds.refresh_token:
                    raise status.AuthenticationException(
                        'Credentials expired; run "ledgersync auth" to sign in again.')
                try:
                    self._creds.refresh(google.auth.transport.requests.Request())
                except google.auth.exceptions.GoogleAuthError as ex:
                    raise status.AuthenticationException(f'Failed to refresh credentials: {ex}') from ex

                if isinstance(self._creds, google.oauth2.credentials.Credentials):
                    save_creds(self._creds)

            return self._creds


auth_manager = AuthManager()


def _load_service_account(key_path: str) -> google.oauth2.service_account.Credentials:
    logging.debug(f'Loading service account credentials from {key_path}...')
    try:
        return google.oauth2.service_account.Credentials.from_service_account_file(
            key_path, scopes=DEFAULT_SCOPES)
    except FileNotFoundError as ex:
        raise status.CredsNotFoundException(f'Service account file "{key_path}" not found.') from ex
    except (ValueError, json.JSONDecodeError) as ex:
        raise status.CredsInvalidException(f'Invalid service account file "{key_path}": {ex}') from ex


def _load_authorized_user() -> google.oauth2.credentials.Credentials:
    from ..settings import lib

    if not lib.settings.creds_path.exists():
        raise status.AuthenticationException(
            'No credentials found; configure a service account or run "ledgersync auth".')
    try:
        logging.debug(f'Loading credentials from {lib.settings.creds_path}...')
        return google.oauth2.credentials.Credentials.from_authorized_user_file(
            str(lib.settings.creds_path), scopes=DEFAULT_SCOPES)
    except (ValueError, json.JSONDecodeError) as ex:
        logging.error(f'Failed to load credentials, removing them: {ex}')
        lib.settings.creds_path.unlink(missing_ok=True)
        raise status.CredsInvalidException('Failed to load credentials') from ex


def save_creds(creds: google.oauth2.credentials.Credentials) -> None:
    """
    Save OAuth2 credentials to the configured token file.

    Args:
        creds (google.oauth2.credentials.Credentials): Credentials to save.
    """
    from ..settings import lib
    with open(lib.settings.creds_path, 'w', encoding='utf-8') as token_file:
        token_file.write(creds.to_json())

    logging.debug(f'Credentials saved to {lib.settings.creds_path}.')


def authenticate() -> google.oauth2.credentials.Credentials:
    """
    Run the installed-app OAuth flow in a local browser and store the credentials.

    Returns:
        google.oauth2.credentials.Credentials: The authenticated credentials.

    Raises:
        status.ClientSecretNotFoundException: If the client secret file is not found.
        status.ClientSecretInvalidException: If the client secret is missing required fields.
        status.AuthenticationException: If authentication fails or is cancelled.
        status.CredsInvalidException: If the credentials returned are invalid.
    """
    from ..settings import lib

    client_config = lib.settings.load_client_secret()

    logging.debug('Starting OAuth flow...')
    flow = google_auth_oauthlib.flow.InstalledAppFlow.from_client_config(client_config, scopes=DEFAULT_SCOPES)
    try:
        creds = flow.run_local_server(port=0)
    except Exception as ex:
        raise status.AuthenticationException(f'OAuth flow failed: {ex}') from ex

    if not creds:
        raise status.AuthenticationException('Authentication was cancelled or no credentials obtained.')
    if not creds.valid:
        raise status.CredsInvalidException('Invalid credentials returned from OAuth flow.')

    save_creds(creds)
    auth_manager.clear()
    return creds


def sign_out() -> None:
    """
    Delete stored credentials to sign out the user.
    """
    from ..settings import lib
    auth_manager.clear()
    if lib.settings.creds_path.exists():
        logging.debug(f'Deleting {lib.settings.creds_path}...')
        lib.settings.creds_path.unlink()
        logging.debug('Successfully signed out.')
    else:
        logging.debug('No credentials file found. No action taken.')
