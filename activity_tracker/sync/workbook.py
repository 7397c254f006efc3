"""Mirror backend writing an Excel workbook into a user-owned folder.

The folder is typically one that a desktop client keeps in sync with a
cloud drive. The document id is the workbook path relative to that folder.
"""
from __future__ import annotations

import logging
import os
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Sequence

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ..tracker.errors import MirrorDocumentMissingError, MirrorUnavailableError
from .schema import (
    ACTIVITIES_TABLE,
    HEADERS,
    LAST_SYNC_KEY,
    METADATA_TABLE,
    SCHEMA_VERSION,
    SESSIONS_TABLE,
    VERSION_KEY,
    Row,
)

LOGGER = logging.getLogger(__name__)

SUFFIX = ".xlsx"


class WorkbookBackend:
    def __init__(self, folder: Path) -> None:
        self.folder = Path(folder).expanduser()

    def authorize(self) -> None:
        if not self.folder.is_dir():
            raise MirrorUnavailableError(f"Mirror folder {self.folder} is not available")
        if not os.access(self.folder, os.W_OK):
            raise MirrorUnavailableError(f"Mirror folder {self.folder} is not writable")

    def _path(self, document_id: str) -> Path:
        return self.folder / document_id

    @contextmanager
    def _document(self, document_id: str) -> Iterator[Path]:
        path = self._path(document_id)
        if not path.is_file():
            raise MirrorDocumentMissingError(f"Workbook {path} does not exist")
        try:
            yield path
        except FileNotFoundError as exc:
            raise MirrorDocumentMissingError(f"Workbook {path} does not exist") from exc
        except (OSError, KeyError, ValueError, zipfile.BadZipFile, InvalidFileException) as exc:
            raise MirrorUnavailableError(f"Cannot update workbook {path}: {exc}") from exc

    def exists(self, document_id: str) -> bool:
        return self._path(document_id).is_file()

    def find(self, name: str) -> Optional[str]:
        try:
            matches = sorted(self.folder.rglob(f"{name}{SUFFIX}"))
        except OSError as exc:
            raise MirrorUnavailableError(f"Cannot search {self.folder}: {exc}") from exc
        if not matches:
            return None
        return matches[0].relative_to(self.folder).as_posix()

    def create(self, name: str) -> str:
        document_id = f"{name}{SUFFIX}"
        path = self._path(document_id)
        try:
            with pd.ExcelWriter(path, engine="openpyxl", mode="w") as writer:
                for table in (ACTIVITIES_TABLE, SESSIONS_TABLE):
                    pd.DataFrame(columns=HEADERS[table]).to_excel(writer, sheet_name=table, index=False)
                meta_df = pd.DataFrame(
                    [[VERSION_KEY, SCHEMA_VERSION], [LAST_SYNC_KEY, ""]],
                    columns=HEADERS[METADATA_TABLE],
                )
                meta_df.to_excel(writer, sheet_name=METADATA_TABLE, index=False)
        except OSError as exc:
            raise MirrorUnavailableError(f"Cannot create workbook {path}: {exc}") from exc
        LOGGER.info("Created mirror workbook %s", path)
        return document_id

    def clear_rows(self, document_id: str, table: str) -> None:
        with self._document(document_id) as path:
            workbook = load_workbook(path)
            sheet = workbook[table]
            if sheet.max_row > 1:
                sheet.delete_rows(2, sheet.max_row - 1)
            workbook.save(path)

    def append_rows(self, document_id: str, table: str, rows: Sequence[Row]) -> None:
        with self._document(document_id) as path:
            workbook = load_workbook(path)
            sheet = workbook[table]
            for row in rows:
                sheet.append(list(row))
            workbook.save(path)

    def replace_rows(self, document_id: str, table: str, rows: Sequence[Row]) -> None:
        frame = pd.DataFrame([list(row) for row in rows], columns=HEADERS[table])
        with self._document(document_id) as path:
            with pd.ExcelWriter(path, engine="openpyxl", mode="a", if_sheet_exists="replace") as writer:
                frame.to_excel(writer, sheet_name=table, index=False)
        LOGGER.debug("Rewrote %s rows in %s", len(frame), table)

    def set_metadata(self, document_id: str, key: str, value: str) -> None:
        with self._document(document_id) as path:
            workbook = load_workbook(path)
            sheet = workbook[METADATA_TABLE]
            for row in sheet.iter_rows(min_row=2):
                if row[0].value == key:
                    row[1].value = value
                    break
            else:
                sheet.append([key, value])
            workbook.save(path)

    def close(self) -> None:
        pass
