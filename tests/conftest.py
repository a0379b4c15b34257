from __future__ import annotations

import json
import random
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httplib2
import pytest
from googleapiclient.errors import HttpError

from folder_grants.config import AppConfig
from folder_grants.events import CollectingEventSink
from folder_grants.pipeline import ParticipantPipeline

_CELL_RE = re.compile(r"!([A-Z]+)(\d+)$")
_PARENT_RE = re.compile(r"'((?:[^'\\]|\\.)*)' in parents")
_CONTAINS_RE = re.compile(r"name contains '((?:[^'\\]|\\.)*)'")


def http_error(status: int, reason: str | None = None, message: str = "boom") -> HttpError:
    errors = [{"domain": "usageLimits", "reason": reason, "message": message}] if reason else []
    content = json.dumps({"error": {"code": status, "message": message, "errors": errors}})
    return HttpError(httplib2.Response({"status": status}), content.encode("utf-8"))


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


def _column_index(letters: str) -> int:
    number = 0
    for char in letters:
        number = number * 26 + (ord(char) - 64)
    return number - 1


class FakeWorkspace:
    """In-memory Drive folders, permissions and a single sheet tab."""

    def __init__(self, rows: Sequence[Sequence[str]] | None = None) -> None:
        self.rows: List[List[str]] = [list(row) for row in rows or []]
        self.folders: Dict[str, Dict[str, Any]] = {}
        self.permissions: Dict[str, List[Dict[str, Any]]] = {}
        self.listed_parents: List[str] = []
        self.queries: List[str] = []
        self.permission_lists: List[str] = []
        self.created: List[tuple] = []
        self.failures: Dict[str, List[Optional[Exception]]] = {}

    # Fixture helpers ---------------------------------------------------------
    def add_folder(self, folder_id: str, name: str, parent: Optional[str] = None) -> str:
        self.folders[folder_id] = {"id": folder_id, "name": name, "parent": parent}
        return folder_id

    def fail(self, key: str, *errors: Optional[Exception]) -> None:
        """Queue outcomes for the next calls of ``key``; ``None`` lets a call through."""

        self.failures.setdefault(key, []).extend(errors)

    def _maybe_fail(self, key: str) -> None:
        pending = self.failures.get(key)
        if pending:
            error = pending.pop(0)
            if error is not None:
                raise error

    def header(self) -> List[str]:
        return self.rows[0] if self.rows else []

    def cell(self, row_index: int, column: str) -> str:
        idx = self.header().index(column)
        row = self.rows[row_index - 1]
        return row[idx] if idx < len(row) else ""

    def _set(self, row_number: int, col: int, value: str) -> None:
        while len(self.rows) < row_number:
            self.rows.append([])
        row = self.rows[row_number - 1]
        while len(row) <= col:
            row.append("")
        row[col] = value

    # Drive -------------------------------------------------------------------
    def list_folders(
        self, query: str, *, page_size: int = 100, page_token: Optional[str] = None
    ) -> Dict[str, Any]:
        self.queries.append(query)
        parent_match = _PARENT_RE.search(query)
        if parent_match:
            parent = _unescape(parent_match.group(1))
            self.listed_parents.append(parent)
            self._maybe_fail(f"list:{parent}")
            matches = [f for f in self.folders.values() if f["parent"] == parent]
        else:
            self._maybe_fail("search")
            needle = _unescape(_CONTAINS_RE.search(query).group(1)).lower()
            matches = [f for f in self.folders.values() if needle in f["name"].lower()]

        start = int(page_token or 0)
        page = matches[start : start + page_size]
        response: Dict[str, Any] = {
            "files": [{"id": f["id"], "name": f["name"]} for f in page]
        }
        if start + page_size < len(matches):
            response["nextPageToken"] = str(start + page_size)
        return response

    def list_permissions(self, file_id: str) -> List[Dict[str, Any]]:
        self.permission_lists.append(file_id)
        self._maybe_fail("permissions.list")
        return [dict(p) for p in self.permissions.get(file_id, [])]

    def create_permission(self, file_id: str, email: str, role: str) -> Dict[str, Any]:
        self._maybe_fail("permissions.create")
        self.created.append((file_id, email, role))
        entry = {"id": f"perm-{len(self.created)}", "emailAddress": email, "role": role}
        self.permissions.setdefault(file_id, []).append(entry)
        return entry

    # Sheets ------------------------------------------------------------------
    def get_values(self, spreadsheet_id: str, cell_range: str) -> List[List[str]]:
        if cell_range.endswith("!1:1"):
            return [list(self.rows[0])] if self.rows and self.rows[0] else []
        return [list(row) for row in self.rows]

    def update_values(
        self, spreadsheet_id: str, cell_range: str, rows: Sequence[Sequence[str]]
    ) -> None:
        match = _CELL_RE.search(cell_range)
        start_col = _column_index(match.group(1))
        start_row = int(match.group(2))
        for r_offset, values in enumerate(rows):
            for c_offset, value in enumerate(values):
                self._set(start_row + r_offset, start_col + c_offset, value)

    def batch_update_values(self, spreadsheet_id: str, updates: Mapping[str, str]) -> None:
        self._maybe_fail("sheets.batch")
        for cell_range, value in updates.items():
            self.update_values(spreadsheet_id, cell_range, [[value]])


def make_config(**overrides: Any) -> AppConfig:
    data: Dict[str, Any] = {
        "sheets": {"spreadsheet_id": "sheet-1", "sheet_name": "participants"},
        "drive": {"parent_folder_id": "root"},
        "throttle_ms": 0,
    }
    data.update(overrides)
    return AppConfig.model_validate(data)


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def events() -> CollectingEventSink:
    return CollectingEventSink()


@pytest.fixture
def build_pipeline(sleeper: SleepRecorder, events: CollectingEventSink):
    def _build(workspace: FakeWorkspace, **overrides: Any) -> ParticipantPipeline:
        return ParticipantPipeline(
            make_config(**overrides),
            workspace,
            events=events,
            sleep=sleeper,
            rng=random.Random(7),
        )

    return _build
