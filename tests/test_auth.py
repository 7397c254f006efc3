from unittest.mock import MagicMock

import pytest
from google.auth.exceptions import RefreshError

from activity_tracker.core import auth
from activity_tracker.core.auth import SCOPES, GoogleCredentialProvider
from activity_tracker.tracker.errors import MirrorUnavailableError


@pytest.fixture
def token_path(tmp_path):
    return tmp_path / "google_token.json"


def _creds(valid=True, expired=False, refresh_token="refresh"):
    creds = MagicMock(valid=valid, expired=expired, refresh_token=refresh_token)
    creds.to_json.return_value = '{"token": "abc"}'
    return creds


def test_cached_valid_token_is_reused(monkeypatch, tmp_path, token_path):
    token_path.write_text("{}", encoding="utf-8")
    cached = _creds()
    loader = MagicMock(return_value=cached)
    monkeypatch.setattr(auth.Credentials, "from_authorized_user_file", loader)

    provider = GoogleCredentialProvider(tmp_path / "secrets.json", token_path)

    assert provider.acquire() is cached
    loader.assert_called_once_with(str(token_path), SCOPES)


def test_expired_token_is_refreshed_and_saved(monkeypatch, tmp_path, token_path):
    token_path.write_text("{}", encoding="utf-8")
    cached = _creds(valid=False, expired=True)
    monkeypatch.setattr(auth.Credentials, "from_authorized_user_file", MagicMock(return_value=cached))

    provider = GoogleCredentialProvider(tmp_path / "secrets.json", token_path)

    assert provider.acquire() is cached
    cached.refresh.assert_called_once()
    assert token_path.read_text(encoding="utf-8") == '{"token": "abc"}'


def test_refresh_failure_is_unavailable(monkeypatch, tmp_path, token_path):
    token_path.write_text("{}", encoding="utf-8")
    cached = _creds(valid=False, expired=True)
    cached.refresh.side_effect = RefreshError("revoked")
    monkeypatch.setattr(auth.Credentials, "from_authorized_user_file", MagicMock(return_value=cached))

    with pytest.raises(MirrorUnavailableError):
        GoogleCredentialProvider(tmp_path / "secrets.json", token_path).acquire()


def test_missing_client_secrets(tmp_path, token_path):
    provider = GoogleCredentialProvider(tmp_path / "secrets.json", token_path)
    with pytest.raises(MirrorUnavailableError):
        provider.acquire()


def test_first_sign_in_runs_installed_app_flow(monkeypatch, tmp_path, token_path):
    secrets = tmp_path / "secrets.json"
    secrets.write_text("{}", encoding="utf-8")
    fresh = _creds()
    flow = MagicMock()
    flow.run_local_server.return_value = fresh
    factory = MagicMock(return_value=flow)
    monkeypatch.setattr(auth.InstalledAppFlow, "from_client_secrets_file", factory)

    provider = GoogleCredentialProvider(secrets, token_path)

    assert provider.acquire() is fresh
    factory.assert_called_once_with(str(secrets), SCOPES)
    flow.run_local_server.assert_called_once_with(port=0)
    assert token_path.exists()
