"""Delegated Google identity for the Sheets mirror.

The OAuth client secrets file is downloaded from the Google Cloud console
and configured via ``google_client_secrets``. The authorized user token is
cached under the application directory so later connects do not prompt.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from ..tracker.errors import MirrorUnavailableError

LOGGER = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",
]


class GoogleCredentialProvider:
    """Acquire and cache Google user credentials."""

    def __init__(self, client_secrets: Path, token_path: Path) -> None:
        self.client_secrets = Path(client_secrets).expanduser()
        self.token_path = Path(token_path)

    def _load_cached(self) -> Optional[Credentials]:
        if not self.token_path.exists():
            return None
        try:
            return Credentials.from_authorized_user_file(str(self.token_path), SCOPES)
        except (ValueError, OSError):
            LOGGER.exception("Cached Google token unreadable; requesting a new one")
            return None

    def _save(self, creds: Credentials) -> None:
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        self.token_path.write_text(creds.to_json(), encoding="utf-8")

    def acquire(self) -> Credentials:
        """Return valid credentials, refreshing or prompting as needed."""

        creds = self._load_cached()
        try:
            if creds and creds.valid:
                return creds
            if creds and creds.expired and creds.refresh_token:
                creds.refresh(Request())
            else:
                if not self.client_secrets.exists():
                    raise MirrorUnavailableError(
                        f"Google client secrets not found at {self.client_secrets}"
                    )
                flow = InstalledAppFlow.from_client_secrets_file(str(self.client_secrets), SCOPES)
                creds = flow.run_local_server(port=0)
        except (GoogleAuthError, OSError) as exc:
            raise MirrorUnavailableError(f"Google sign-in failed: {exc}") from exc
        self._save(creds)
        LOGGER.info("Google credentials acquired")
        return creds

