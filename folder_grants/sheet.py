from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from googleapiclient.errors import HttpError
from httplib2 import HttpLib2Error

from .errors import SheetSchemaError
from .google_api import WorkspaceApi
from .models import ParticipantRecord

LOGGER = logging.getLogger(__name__)

NAME_SYNONYMS = (
    "nama peserta",
    "nama",
    "nama lengkap",
    "name",
    "full name",
    "participant name",
)
EMAIL_SYNONYMS = (
    "email address",
    "email",
    "e-mail",
    "gmail",
    "participant email",
)

FOLDER_ID_COLUMN = "FolderId"
IS_SHARED_COLUMN = "isShared"
IS_FOLDER_EXISTS_COLUMN = "isFolderExists"
LAST_LOG_COLUMN = "LastLog"
STATUS_COLUMNS = (FOLDER_ID_COLUMN, IS_SHARED_COLUMN, IS_FOLDER_EXISTS_COLUMN, LAST_LOG_COLUMN)

DATA_RANGE = "A:ZZ"


def _normalize_header(header: object) -> str:
    text = str(header or "").strip().lower().replace("_", " ")
    return re.sub(r"\s+", " ", text)


def column_letter(index: int) -> str:
    """Convert a zero-based column index to its A1 letters."""

    if index < 0:
        raise ValueError("column index must not be negative")
    letters = ""
    number = index + 1
    while number > 0:
        number, remainder = divmod(number - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


def quote_sheet_name(sheet_name: str) -> str:
    escaped = sheet_name.replace("'", "''")
    return f"'{escaped}'"


def _find_column(normalized: Sequence[str], candidates: Sequence[str]) -> Optional[int]:
    for candidate in candidates:
        key = _normalize_header(candidate)
        if key in normalized:
            return normalized.index(key)
    return None


@dataclass(frozen=True)
class SheetSchema:
    """Column positions of the participant sheet, resolved from its header."""

    name: int
    email: int
    folder_id: int
    is_shared: int
    is_folder_exists: int
    last_log: int

    @classmethod
    def from_header(cls, header: Sequence[str]) -> "SheetSchema":
        normalized = [_normalize_header(cell) for cell in header]
        name_idx = _find_column(normalized, NAME_SYNONYMS)
        email_idx = _find_column(normalized, EMAIL_SYNONYMS)
        if name_idx is None or email_idx is None:
            available = ", ".join(str(cell) for cell in header)
            msg = f"Name/email columns not found. Available columns: {available}"
            raise SheetSchemaError(msg)

        positions: Dict[str, int] = {}
        for column in STATUS_COLUMNS:
            idx = _find_column(normalized, (column,))
            if idx is None:
                raise SheetSchemaError(f"Column '{column}' not found in header")
            positions[column] = idx

        return cls(
            name=name_idx,
            email=email_idx,
            folder_id=positions[FOLDER_ID_COLUMN],
            is_shared=positions[IS_SHARED_COLUMN],
            is_folder_exists=positions[IS_FOLDER_EXISTS_COLUMN],
            last_log=positions[LAST_LOG_COLUMN],
        )

    def field_index(self, column: str) -> int:
        mapping = {
            FOLDER_ID_COLUMN: self.folder_id,
            IS_SHARED_COLUMN: self.is_shared,
            IS_FOLDER_EXISTS_COLUMN: self.is_folder_exists,
            LAST_LOG_COLUMN: self.last_log,
        }
        if column not in mapping:
            raise KeyError(f"'{column}' is not a writable status column")
        return mapping[column]


def missing_status_columns(header: Sequence[str]) -> List[str]:
    normalized = {_normalize_header(cell) for cell in header}
    return [column for column in STATUS_COLUMNS if _normalize_header(column) not in normalized]


def build_records(values: List[List[str]], schema: SheetSchema) -> List[ParticipantRecord]:
    """Turn raw sheet values (header row first) into participant records."""

    records: List[ParticipantRecord] = []
    for offset, row in enumerate(values[1:]):

        def _get(idx: int) -> str:
            if idx < len(row) and row[idx] is not None:
                return str(row[idx])
            return ""

        records.append(
            ParticipantRecord(
                row_index=offset + 2,
                name=_get(schema.name),
                email=_get(schema.email),
                folder_id=_get(schema.folder_id).strip() or None,
                is_shared=_get(schema.is_shared),
                is_folder_exists=_get(schema.is_folder_exists),
                last_log=_get(schema.last_log),
            )
        )
    return records


class ParticipantSheet:
    """Reads participant rows and writes per-row status back to the sheet."""

    def __init__(self, client: WorkspaceApi, spreadsheet_id: str, sheet_name: str) -> None:
        self._client = client
        self._spreadsheet_id = spreadsheet_id
        self._sheet_name = sheet_name
        self._schema: SheetSchema | None = None

    @property
    def schema(self) -> SheetSchema:
        if self._schema is None:
            raise SheetSchemaError("Sheet schema has not been loaded yet")
        return self._schema

    def _range(self, cells: str) -> str:
        return f"{quote_sheet_name(self._sheet_name)}!{cells}"

    def ensure_schema(self) -> SheetSchema:
        """Resolve header columns, appending missing status columns once."""

        header_rows = self._client.get_values(self._spreadsheet_id, self._range("1:1"))
        header = list(header_rows[0]) if header_rows else []
        if not any(str(cell).strip() for cell in header):
            raise SheetSchemaError("Sheet is empty or the header row is missing")

        missing = missing_status_columns(header)
        schema = SheetSchema.from_header(header + missing)
        if missing:
            start = column_letter(len(header))
            self._client.update_values(
                self._spreadsheet_id, self._range(f"{start}1"), [missing]
            )
            LOGGER.info("Added missing columns: %s", ", ".join(missing))

        self._schema = schema
        return schema

    def load_records(self) -> List[ParticipantRecord]:
        schema = self.ensure_schema()
        values = self._client.get_values(self._spreadsheet_id, self._range(DATA_RANGE))
        if len(values) <= 1:
            raise SheetSchemaError("No participant rows found (only the header)")
        return build_records(values, schema)

    def write(self, row_index: int, updates: Mapping[str, str]) -> bool:
        """Write status cells for one row; return False when the write failed."""

        if row_index < 2:
            raise ValueError(f"Row {row_index} is not a data row")
        cells = {
            self._range(f"{column_letter(self.schema.field_index(column))}{row_index}"): value
            for column, value in updates.items()
        }
        try:
            self._client.batch_update_values(self._spreadsheet_id, cells)
        except (HttpError, HttpLib2Error, OSError) as exc:
            LOGGER.warning("Could not update row %s (%s): %s", row_index, ", ".join(updates), exc)
            return False
        return True
