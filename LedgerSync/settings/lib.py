"""Settings library for the remote sync and spreadsheet configuration.

Provides:
    - Schema validation and enforcement for the settings.json structure.
    - Loading, saving, reverting, and managing application settings.
    - Application paths for the settings, credentials and the local store database.
"""

import copy
import json
import logging
import os
import pathlib
from typing import Dict, Any, Optional, List

from PySide6 import QtCore

from ..status import status

app_name: str = 'LedgerSync'

#: Environment variable that overrides the configured remote url
REMOTE_URL_ENV_KEY: str = 'LEDGERSYNC_REMOTE_URL'

DEFAULT_LOCK_TIMEOUT: float = 10.0

METADATA_KEYS: List[str] = [
    'locale',
    'timezone',
]

SETTINGS_SCHEMA: Dict[str, Any] = {
    'remote': {
        'type': dict,
        'required': True,
        'item_schema': {
            'url': {'type': str, 'required': True},
            'timeout': {'type': (int, float), 'required': False},
            'lock_timeout': {'type': (int, float), 'required': False},
        }
    },
    'spreadsheet': {
        'type': dict,
        'required': True,
        'item_schema': {
            'id': {'type': str, 'required': True},
            'credentials': {'type': str, 'required': False},
        }
    },
    'metadata': {
        'type': dict,
        'required': True,
        'item_schema': {
            'locale': {'type': str, 'required': True},
            'timezone': {'type': str, 'required': True},
        }
    },
}

DEFAULT_SETTINGS: Dict[str, Any] = {
    'remote': {
        'url': '',
        'timeout': 0,
        'lock_timeout': DEFAULT_LOCK_TIMEOUT,
    },
    'spreadsheet': {
        'id': '',
        'credentials': '',
    },
    'metadata': {
        'locale': 'zh_TW',
        'timezone': 'Asia/Taipei',
    },
}


def _validate_section(section_name: str, section: Dict[str, Any], item_schema: Dict[str, Any]) -> None:
    """Validate one settings section against its item schema.

    Args:
        section_name: Name of the section, used in error messages.
        section: The section data.
        item_schema: Dict describing the fields, their types and whether they are required.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If a required field is missing.
    """
    logging.debug(f'Validating "{section_name}" section.')
    for field, field_specs in item_schema.items():
        if field_specs['required'] and field not in section:
            msg = f'Section "{section_name}" missing "{field}".'
            logging.error(msg)
            raise ValueError(msg)
        if field not in section:
            continue
        value = section[field]
        if isinstance(value, bool) or not isinstance(value, field_specs['type']):
            msg = (
                f'Section "{section_name}" field "{field}" must be {field_specs["type"]}, '
                f'got {type(value)}.'
            )
            logging.error(msg)
            raise TypeError(msg)


class ConfigPaths:
    """Manage application file paths and ensure default settings and directories exist.

    Paths live in the Qt application data directory unless an explicit root is given.
    """

    def __init__(self, root: Optional[str] = None) -> None:
        """Set up application paths and ensure required directories and defaults exist.

        Args:
            root: Optional directory used instead of the platform's app data location.
        """
        QtCore.QCoreApplication.setApplicationName(app_name)
        QtCore.QCoreApplication.setOrganizationName('')
        logging.debug(f'Setting application name: {app_name}')

        if root:
            app_data_dir = pathlib.Path(root)
        else:
            p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
            app_data_dir = pathlib.Path(p)
        logging.debug(f'Using app data directory: {app_data_dir}')

        self.config_dir: pathlib.Path = app_data_dir / 'config'
        self.auth_dir: pathlib.Path = self.config_dir / 'auth'
        self.db_dir: pathlib.Path = self.config_dir / 'db'

        self.settings_path: pathlib.Path = self.config_dir / 'settings.json'
        self.client_secret_path: pathlib.Path = self.config_dir / 'client_secret.json'
        self.creds_path: pathlib.Path = self.auth_dir / 'creds.json'
        self.db_path: pathlib.Path = self.db_dir / 'ledger.db'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Create missing config, auth and db directories and write default settings if absent."""
        for path in (self.config_dir, self.auth_dir, self.db_dir):
            if not path.exists():
                logging.debug(f'Creating directory: {path}')
                path.mkdir(parents=True, exist_ok=True)

        if not self.settings_path.exists():
            logging.debug(f'Writing default settings to {self.settings_path}')
            self.revert_settings_to_default()

    def revert_settings_to_default(self) -> None:
        """Restore settings.json from the built-in defaults."""
        with self.settings_path.open('w', encoding='utf-8') as f:
            json.dump(DEFAULT_SETTINGS, f, indent=4, ensure_ascii=False)


class SettingsAPI(ConfigPaths):
    """
    Provides an interface to get/set/revert/save settings.json sections and to read
    client_secret.json for the interactive Google sign-in.
    """
    required_client_secret_keys: List[str] = ['client_id', 'project_id', 'client_secret', 'auth_uri', 'token_uri']

    def __init__(self, root: Optional[str] = None, settings_path: Optional[str] = None) -> None:
        """Initialize SettingsAPI and load the settings data.

        Args:
            root: Optional directory used instead of the platform's app data location.
            settings_path: Optional path to a custom settings.json file.
        """
        super().__init__(root=root)

        if settings_path:
            self.settings_path = pathlib.Path(settings_path)

        self.settings_data: Dict[str, Any] = copy.deepcopy(DEFAULT_SETTINGS)
        self.client_secret_data: Dict[str, Any] = {}

        self.load_settings()

    def __getitem__(self, key: str) -> Any:
        """Retrieve a metadata value using dictionary-style access.

        Args:
            key: Metadata key to retrieve.

        Raises:
            KeyError: If key is not in METADATA_KEYS.
        """
        if key not in METADATA_KEYS:
            raise KeyError(f'Invalid metadata key: {key}, must be one of {METADATA_KEYS}')
        return self.settings_data['metadata'].get(key, DEFAULT_SETTINGS['metadata'][key])

    def __setitem__(self, key: str, value: Any) -> None:
        """Assign a metadata value using dictionary-style access and persist it."""
        if key not in METADATA_KEYS:
            raise KeyError(f'Invalid metadata key: {key}, must be one of {METADATA_KEYS}')
        if not isinstance(value, str):
            logging.warning(f'Metadata key "{key}" is not of type {str}, got {type(value)}.')
            value = str(value)

        self.settings_data['metadata'][key] = value
        self.save_section('metadata')

        from ..signals import signals
        signals.configSectionChanged.emit('metadata')

    @property
    def remote_url(self) -> str:
        """The remote sync endpoint. An empty string means local-only mode."""
        env_url = os.environ.get(REMOTE_URL_ENV_KEY, '').strip()
        if env_url:
            return env_url
        return self.settings_data['remote'].get('url', '').strip()

    @property
    def remote_timeout(self) -> Optional[float]:
        """Client-side request timeout in seconds, or None for the transport default."""
        v = self.settings_data['remote'].get('timeout', 0)
        return float(v) if v else None

    @property
    def lock_timeout(self) -> float:
        """Bounded wait for the remote store lock, in seconds."""
        v = self.settings_data['remote'].get('lock_timeout', DEFAULT_LOCK_TIMEOUT)
        return float(v) if v else DEFAULT_LOCK_TIMEOUT

    def load_settings(self) -> Dict[str, Any]:
        """Load settings.json from disk and validate against schema.

        Returns:
            The loaded settings data dictionary.

        Raises:
            status.SettingsNotFoundException: If settings.json file is missing.
            status.SettingsInvalidException: If JSON parsing or validation fails.
        """
        logging.debug(f'Loading settings from "{self.settings_path}"')
        if not self.settings_path.exists():
            raise status.SettingsNotFoundException

        try:
            with self.settings_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
            self.validate_settings_data(data)
        except status.SettingsInvalidException:
            raise
        except (ValueError, TypeError, json.JSONDecodeError) as ex:
            raise status.SettingsInvalidException(str(ex)) from ex

        self.settings_data = data
        return self.settings_data

    def validate_settings_data(self, data: Dict[str, Any] = None) -> None:
        """Validate settings data against the defined SETTINGS_SCHEMA.

        Args:
            data (dict, optional): Settings data to validate. Defaults to self.settings_data.

        Raises:
            status.SettingsInvalidException: If a required section is missing or has the wrong type.
            ValueError, TypeError: If a field inside a section fails validation.
        """
        if data is None:
            data = self.settings_data

        logging.debug('Validating settings data against schema.')
        for field, specs in SETTINGS_SCHEMA.items():
            if specs.get('required') and field not in data:
                raise status.SettingsInvalidException(f'Missing required field: {field}')
            if field not in data:
                continue
            if not isinstance(data[field], specs['type']):
                raise status.SettingsInvalidException(
                    f'Field "{field}" must be {specs["type"]}, got {type(data[field])}.'
                )
            _validate_section(field, data[field], specs['item_schema'])

        logging.debug('Settings data is valid.')

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Retrieve a copy of configuration data for a settings or client_secret section.

        Raises:
            KeyError: If section_name is unknown.
        """
        if section_name == 'client_secret':
            return self.client_secret_data.copy()

        return self.settings_data[section_name].copy()

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Replace, validate and persist a settings section.

        Raises:
            ValueError: If section_name is unknown or new_data fails validation.
            TypeError: If new_data has fields of the wrong type.
        """
        if section_name not in SETTINGS_SCHEMA:
            msg: str = f'Unknown section_name for set: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        if not isinstance(new_data, dict):
            msg = f'{section_name} must be a dict.'
            logging.error(msg)
            raise TypeError(msg)

        current_section_data: Dict[str, Any] = self.settings_data[section_name].copy()
        self.settings_data[section_name] = new_data
        try:
            _validate_section(section_name, new_data, SETTINGS_SCHEMA[section_name]['item_schema'])
        except (ValueError, TypeError) as e:
            logging.error(f'Validation error on set_section("{section_name}"): {e}')
            self.settings_data[section_name] = current_section_data
            raise

        self.save_section(section_name)

        from ..signals import signals
        signals.configSectionChanged.emit(section_name)

    def revert_section(self, section_name: str) -> None:
        """Revert a settings section to its built-in default and save.

        Raises:
            ValueError: If section_name is unknown.
        """
        if section_name not in DEFAULT_SETTINGS:
            msg: str = f'Unknown section_name for revert: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        self.settings_data[section_name] = copy.deepcopy(DEFAULT_SETTINGS[section_name])
        self.save_section(section_name)

        from ..signals import signals
        signals.configSectionChanged.emit(section_name)

    def save_section(self, section_name: str) -> None:
        """Persist a single settings section, leaving the other sections on disk untouched.

        Raises:
            ValueError: If section_name is not recognized.
        """
        if section_name not in SETTINGS_SCHEMA:
            msg: str = f'Unknown section_name for save: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        try:
            with self.settings_path.open('r', encoding='utf-8') as f:
                original_data: Dict[str, Any] = json.load(f)
        except (OSError, json.JSONDecodeError) as ex:
            logging.warning(f'Could not read "{self.settings_path}", rewriting it: {ex}')
            original_data = copy.deepcopy(self.settings_data)

        new_data: Dict[str, Any] = original_data.copy()
        new_data[section_name] = self.settings_data[section_name]

        with self.settings_path.open('w', encoding='utf-8') as f:
            json.dump(new_data, f, indent=4, ensure_ascii=False)

    def load_client_secret(self) -> Dict[str, Any]:
        """Load client_secret.json from disk and validate required OAuth fields.

        Raises:
            status.ClientSecretNotFoundException: If client_secret.json file is missing.
            status.ClientSecretInvalidException: If JSON parsing or required fields are missing.
        """
        logging.debug(f'Loading client_secret from "{self.client_secret_path}"')
        if not self.client_secret_path.exists():
            raise status.ClientSecretNotFoundException
        try:
            with self.client_secret_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
        except (ValueError, json.JSONDecodeError) as ex:
            raise status.ClientSecretInvalidException from ex

        self.validate_client_secret(data)
        self.client_secret_data = data
        return self.client_secret_data

    def validate_client_secret(self, data=None) -> str:
        """Validate that the client configuration contains required OAuth credentials.

        Returns:
            str: Section key used ('installed' or 'web').

        Raises:
            status.ClientSecretInvalidException: If no valid client_secret section exists or required fields are missing.
        """
        if data is None:
            data = self.client_secret_data

        key = next((k for k in ('installed', 'web') if k in data), None)
        if not key:
            raise status.ClientSecretInvalidException('Missing "installed" or "web" section in client_secret.')

        config_section: Dict[str, Any] = data[key]
        missing: List[str] = [k for k in self.required_client_secret_keys if k not in config_section]
        if missing:
            raise status.ClientSecretInvalidException(
                f'Missing required fields in the \'{key}\' section: {missing}.'
            )
        return key


settings: SettingsAPI = SettingsAPI()
