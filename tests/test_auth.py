import json
from unittest.mock import Mock, patch

import google.auth.exceptions
import google.oauth2.credentials as cred_mod
import google.oauth2.service_account as sa_mod
import google_auth_oauthlib.flow

from LedgerSync.core import auth
from LedgerSync.settings import lib
from LedgerSync.status import status
from tests.base import CLIENT_SECRET, BaseTestCase, mute_signals


def make_creds(valid=True, refresh_token='rt'):
    creds = Mock(spec=cred_mod.Credentials)
    creds.valid = valid
    creds.refresh_token = refresh_token
    creds.to_json.return_value = json.dumps({'token': 'abc', 'refresh_token': refresh_token})
    return creds


class TestAuthManager(BaseTestCase):
    """Unit tests for the AuthManager behavior."""

    def setUp(self) -> None:
        super().setUp()
        self.manager = auth.AuthManager()

    def write_creds_file(self) -> None:
        lib.settings.creds_path.write_text(json.dumps({'token': 'stored'}), encoding='utf-8')

    def test_missing_credentials_raises(self):
        with mute_signals():
            with self.assertRaises(status.AuthenticationException):
                self.manager.get_valid_credentials()

    def test_invalid_credentials_file_is_removed(self):
        lib.settings.creds_path.write_text('not a json', encoding='utf-8')
        with mute_signals():
            with self.assertRaises(status.CredsInvalidException):
                self.manager.get_valid_credentials()
        self.assertFalse(lib.settings.creds_path.exists())

    def test_valid_credentials_are_cached(self):
        self.write_creds_file()
        creds = make_creds()
        with patch.object(cred_mod.Credentials, 'from_authorized_user_file', return_value=creds) as load:
            self.assertIs(self.manager.get_valid_credentials(), creds)
            self.assertIs(self.manager.get_valid_credentials(), creds)
        load.assert_called_once()
        creds.refresh.assert_not_called()

        self.manager.clear()
        with patch.object(cred_mod.Credentials, 'from_authorized_user_file', return_value=creds) as load:
            self.manager.get_valid_credentials()
        load.assert_called_once()

    def test_expired_credentials_are_refreshed_and_saved(self):
        self.write_creds_file()
        creds = make_creds(valid=False)

        def refresh(request):
            creds.valid = True

        creds.refresh.side_effect = refresh
        with patch.object(cred_mod.Credentials, 'from_authorized_user_file', return_value=creds):
            self.assertIs(self.manager.get_valid_credentials(), creds)

        creds.refresh.assert_called_once()
        saved = json.loads(lib.settings.creds_path.read_text(encoding='utf-8'))
        self.assertEqual(saved['token'], 'abc')

    def test_expired_without_refresh_token(self):
        self.write_creds_file()
        creds = make_creds(valid=False, refresh_token=None)
        with patch.object(cred_mod.Credentials, 'from_authorized_user_file', return_value=creds):
            with mute_signals():
                with self.assertRaises(status.AuthenticationException):
                    self.manager.get_valid_credentials()
        creds.refresh.assert_not_called()

    def test_refresh_failure(self):
        self.write_creds_file()
        creds = make_creds(valid=False)
        creds.refresh.side_effect = google.auth.exceptions.RefreshError('revoked')
        with patch.object(cred_mod.Credentials, 'from_authorized_user_file', return_value=creds):
            with mute_signals():
                with self.assertRaises(status.AuthenticationException):
                    self.manager.get_valid_credentials()

    def test_service_account_is_preferred(self):
        self.write_creds_file()
        key_path = str(lib.settings.config_dir / 'service_account.json')
        lib.settings.set_section('spreadsheet', {'id': 'sheet', 'credentials': key_path})

        sa_creds = Mock(spec=sa_mod.Credentials)
        sa_creds.valid = True
        with patch.object(sa_mod.Credentials, 'from_service_account_file', return_value=sa_creds) as load:
            self.assertIs(self.manager.get_valid_credentials(), sa_creds)
        load.assert_called_once_with(key_path, scopes=auth.DEFAULT_SCOPES)

    def test_missing_service_account_file(self):
        lib.settings.set_section('spreadsheet', {'id': 'sheet', 'credentials': '/nonexistent/key.json'})
        with mute_signals():
            with self.assertRaises(status.CredsNotFoundException):
                self.manager.get_valid_credentials()


class TestAuthFlow(BaseTestCase):

    def test_authenticate_saves_credentials(self):
        lib.settings.client_secret_path.write_text(json.dumps(CLIENT_SECRET), encoding='utf-8')
        creds = make_creds()
        flow = Mock()
        flow.run_local_server.return_value = creds

        with patch.object(google_auth_oauthlib.flow.InstalledAppFlow, 'from_client_config',
                          return_value=flow) as from_config:
            self.assertIs(auth.authenticate(), creds)

        from_config.assert_called_once_with(CLIENT_SECRET, scopes=auth.DEFAULT_SCOPES)
        self.assertTrue(lib.settings.creds_path.exists())

    def test_authenticate_requires_client_secret(self):
        with mute_signals():
            with self.assertRaises(status.ClientSecretNotFoundException):
                auth.authenticate()

    def test_cancelled_flow(self):
        lib.settings.client_secret_path.write_text(json.dumps(CLIENT_SECRET), encoding='utf-8')
        flow = Mock()
        flow.run_local_server.side_effect = RuntimeError('browser closed')
        with patch.object(google_auth_oauthlib.flow.InstalledAppFlow, 'from_client_config', return_value=flow):
            with mute_signals():
                with self.assertRaises(status.AuthenticationException):
                    auth.authenticate()
        self.assertFalse(lib.settings.creds_path.exists())

    def test_sign_out(self):
        lib.settings.creds_path.write_text('{}', encoding='utf-8')
        auth.sign_out()
        self.assertFalse(lib.settings.creds_path.exists())
        auth.sign_out()
