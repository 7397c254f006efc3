"""Mirror backend for a Google Sheets spreadsheet in the user's Drive."""
from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from google.auth.exceptions import GoogleAuthError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..core.auth import GoogleCredentialProvider
from ..tracker.errors import MirrorDocumentMissingError, MirrorUnavailableError
from .schema import HEADERS, LAST_SYNC_KEY, METADATA_TABLE, SCHEMA_VERSION, TABLES, VERSION_KEY, Row

LOGGER = logging.getLogger(__name__)

SPREADSHEET_MIME = "application/vnd.google-apps.spreadsheet"


class GoogleSheetsBackend:
    def __init__(self, credentials: GoogleCredentialProvider) -> None:
        self.credentials = credentials
        self._sheets: Any = None
        self._drive: Any = None

    def authorize(self) -> None:
        creds = self.credentials.acquire()
        self._sheets = build("sheets", "v4", credentials=creds, cache_discovery=False)
        self._drive = build("drive", "v3", credentials=creds, cache_discovery=False)

    @property
    def sheets(self) -> Any:
        if self._sheets is None:
            raise MirrorUnavailableError("Google Sheets is not authorized")
        return self._sheets

    @property
    def drive(self) -> Any:
        if self._drive is None:
            raise MirrorUnavailableError("Google Drive is not authorized")
        return self._drive

    def _execute(self, request: Any, document_id: Optional[str] = None) -> Any:
        try:
            return request.execute()
        except HttpError as exc:
            if exc.resp.status == 404 and document_id is not None:
                raise MirrorDocumentMissingError(f"Spreadsheet {document_id} not found") from exc
            raise MirrorUnavailableError(f"Google API error {exc.resp.status}: {exc}") from exc
        except (GoogleAuthError, OSError) as exc:
            raise MirrorUnavailableError(f"Google API unreachable: {exc}") from exc

    @staticmethod
    def _range(table: str, cells: str) -> str:
        return f"'{table}'!{cells}"

    def exists(self, document_id: str) -> bool:
        try:
            meta = self._execute(
                self.drive.files().get(fileId=document_id, fields="id, trashed"), document_id
            )
        except MirrorDocumentMissingError:
            return False
        return not meta.get("trashed", False)

    def find(self, name: str) -> Optional[str]:
        escaped = name.replace("\\", "\\\\").replace("'", "\\'")
        query = f"name = '{escaped}' and mimeType = '{SPREADSHEET_MIME}' and trashed = false"
        response = self._execute(
            self.drive.files().list(q=query, spaces="drive", fields="files(id, name)", pageSize=10)
        )
        files = response.get("files", [])
        if len(files) > 1:
            LOGGER.warning("Found %s spreadsheets named %s; using the first", len(files), name)
        return files[0]["id"] if files else None

    def create(self, name: str) -> str:
        body = {
            "properties": {"title": name},
            "sheets": [{"properties": {"title": table}} for table in TABLES],
        }
        created = self._execute(self.sheets.spreadsheets().create(body=body, fields="spreadsheetId"))
        document_id = created["spreadsheetId"]
        data = [{"range": self._range(table, "A1"), "values": [HEADERS[table]]} for table in TABLES]
        data.append(
            {
                "range": self._range(METADATA_TABLE, "A2"),
                "values": [[VERSION_KEY, SCHEMA_VERSION], [LAST_SYNC_KEY, ""]],
            }
        )
        self._execute(
            self.sheets.spreadsheets().values().batchUpdate(
                spreadsheetId=document_id, body={"valueInputOption": "RAW", "data": data}
            ),
            document_id,
        )
        return document_id

    def clear_rows(self, document_id: str, table: str) -> None:
        self._execute(
            self.sheets.spreadsheets().values().clear(
                spreadsheetId=document_id, range=self._range(table, "A2:Z"), body={}
            ),
            document_id,
        )

    def append_rows(self, document_id: str, table: str, rows: Sequence[Row]) -> None:
        if not rows:
            return
        self._execute(
            self.sheets.spreadsheets().values().append(
                spreadsheetId=document_id,
                range=self._range(table, "A1"),
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": [list(row) for row in rows]},
            ),
            document_id,
        )

    def replace_rows(self, document_id: str, table: str, rows: Sequence[Row]) -> None:
        self.clear_rows(document_id, table)
        if not rows:
            return
        self._execute(
            self.sheets.spreadsheets().values().update(
                spreadsheetId=document_id,
                range=self._range(table, "A2"),
                valueInputOption="RAW",
                body={"values": [list(row) for row in rows]},
            ),
            document_id,
        )

    def set_metadata(self, document_id: str, key: str, value: str) -> None:
        response = self._execute(
            self.sheets.spreadsheets().values().get(
                spreadsheetId=document_id, range=self._range(METADATA_TABLE, "A:A")
            ),
            document_id,
        )
        keys = [row[0] if row else "" for row in response.get("values", [])]
        if key in keys:
            target = self._range(METADATA_TABLE, f"A{keys.index(key) + 1}")
            request = self.sheets.spreadsheets().values().update(
                spreadsheetId=document_id,
                range=target,
                valueInputOption="RAW",
                body={"values": [[key, value]]},
            )
        else:
            request = self.sheets.spreadsheets().values().append(
                spreadsheetId=document_id,
                range=self._range(METADATA_TABLE, "A1"),
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": [[key, value]]},
            )
        self._execute(request, document_id)

    def close(self) -> None:
        self._sheets = None
        self._drive = None
