from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

import logging
import ssl
import time

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import Resource
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import HttpRequest
from httplib2 import HttpLib2Error

SCOPES = [
    "https://www.googleapis.com/auth/drive",
    "https://www.googleapis.com/auth/spreadsheets",
]

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

LOGGER = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_MAX_RETRY_ATTEMPTS = 4
_INITIAL_BACKOFF_SECONDS = 1.0
_MAX_BACKOFF_SECONDS = 8.0
_RETRYABLE_EXCEPTIONS = (ssl.SSLEOFError, HttpLib2Error)


class WorkspaceApi(Protocol):
    """Operations the participant pipeline needs from Drive and Sheets."""

    def list_folders(
        self, query: str, *, page_size: int = 100, page_token: Optional[str] = None
    ) -> Dict[str, Any]: ...

    def list_permissions(self, file_id: str) -> List[Dict[str, Any]]: ...

    def create_permission(self, file_id: str, email: str, role: str) -> Dict[str, Any]: ...

    def get_values(self, spreadsheet_id: str, cell_range: str) -> List[List[str]]: ...

    def update_values(
        self, spreadsheet_id: str, cell_range: str, rows: Sequence[Sequence[str]]
    ) -> None: ...

    def batch_update_values(self, spreadsheet_id: str, updates: Mapping[str, str]) -> None: ...


class GoogleWorkspaceClient:
    """Thin wrapper around the Drive v3 and Sheets v4 APIs for this project.

    Drive calls are executed once; rate-limit handling for them belongs to
    :class:`folder_grants.retry.RetryPolicy`. Sheets calls retry transient
    failures on their own.
    """

    def __init__(self, credentials_file: str, *, credentials: Credentials | None = None) -> None:
        self._credentials_file = str(credentials_file)
        self._credentials = credentials
        self._drive: Resource | None = None
        self._sheets: Resource | None = None

    @property
    def service_account_email(self) -> str | None:
        return getattr(self._load_credentials(), "service_account_email", None)

    def _load_credentials(self) -> Credentials:
        if self._credentials is None:
            self._credentials = Credentials.from_service_account_file(
                self._credentials_file, scopes=SCOPES
            )
        return self._credentials

    def _drive_client(self) -> Resource:
        if self._drive is None:
            self._drive = build(
                "drive", "v3", credentials=self._load_credentials(), cache_discovery=False
            )
        return self._drive

    def _sheets_client(self) -> Resource:
        if self._sheets is None:
            self._sheets = build(
                "sheets", "v4", credentials=self._load_credentials(), cache_discovery=False
            )
        return self._sheets

    # Drive -------------------------------------------------------------------
    def list_folders(
        self, query: str, *, page_size: int = 100, page_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """Run one page of a ``files.list`` query across all drives."""

        params: Dict[str, Any] = {
            "q": query,
            "spaces": "drive",
            "fields": "nextPageToken, files(id,name,parents)",
            "includeItemsFromAllDrives": True,
            "supportsAllDrives": True,
            "pageSize": page_size,
        }
        if page_token:
            params["pageToken"] = page_token
        return self._drive_client().files().list(**params).execute()

    def list_permissions(self, file_id: str) -> List[Dict[str, Any]]:
        result = (
            self._drive_client()
            .permissions()
            .list(
                fileId=file_id,
                fields="permissions(emailAddress,role)",
                supportsAllDrives=True,
            )
            .execute()
        )
        return result.get("permissions", [])

    def create_permission(self, file_id: str, email: str, role: str) -> Dict[str, Any]:
        return (
            self._drive_client()
            .permissions()
            .create(
                fileId=file_id,
                sendNotificationEmail=False,
                supportsAllDrives=True,
                body={"type": "user", "role": role, "emailAddress": email},
            )
            .execute()
        )

    # Sheets ------------------------------------------------------------------
    def get_values(self, spreadsheet_id: str, cell_range: str) -> List[List[str]]:
        """Load values for an A1 range."""

        def _build_request() -> HttpRequest:
            service = self._sheets_client()
            return (
                service.spreadsheets()
                .values()
                .get(spreadsheetId=spreadsheet_id, range=cell_range)
            )

        result = self._execute_with_retry(_build_request, operation=f"read {cell_range}")
        return result.get("values", [])

    def update_values(
        self, spreadsheet_id: str, cell_range: str, rows: Sequence[Sequence[str]]
    ) -> None:
        payload = {"values": [list(row) for row in rows]}

        def _update_request() -> HttpRequest:
            service = self._sheets_client()
            return (
                service.spreadsheets()
                .values()
                .update(
                    spreadsheetId=spreadsheet_id,
                    range=cell_range,
                    valueInputOption="RAW",
                    body=payload,
                )
            )

        self._execute_with_retry(_update_request, operation=f"update {cell_range}")

    def batch_update_values(self, spreadsheet_id: str, updates: Mapping[str, str]) -> None:
        """Write single cells keyed by their A1 reference."""

        if not updates:
            return

        data = [
            {"range": cell, "majorDimension": "ROWS", "values": [[value]]}
            for cell, value in updates.items()
        ]

        def _batch_update_request() -> HttpRequest:
            service = self._sheets_client()
            return (
                service.spreadsheets()
                .values()
                .batchUpdate(
                    spreadsheetId=spreadsheet_id,
                    body={"valueInputOption": "RAW", "data": data},
                )
            )

        self._execute_with_retry(_batch_update_request, operation="update cells")

    # Internal ----------------------------------------------------------------
    def _reset_sheets_service(self) -> None:
        self._sheets = None

    def _execute_with_retry(
        self,
        request_builder: Callable[[], HttpRequest],
        *,
        operation: str,
    ) -> dict:
        """Execute a Sheets API request with retries for transient failures."""

        backoff = _INITIAL_BACKOFF_SECONDS
        last_exc: Exception | None = None

        for attempt in range(1, _MAX_RETRY_ATTEMPTS + 1):
            try:
                return request_builder().execute()
            except _RETRYABLE_EXCEPTIONS as exc:
                last_exc = exc
            except HttpError as exc:
                status = getattr(exc.resp, "status", None)
                if status not in _RETRYABLE_STATUS_CODES:
                    raise
                last_exc = exc

            if attempt == _MAX_RETRY_ATTEMPTS:
                raise last_exc

            wait_time = min(backoff, _MAX_BACKOFF_SECONDS)
            LOGGER.warning(
                "Sheets API %s failed on attempt %s/%s (%s); retrying in %.1f seconds",
                operation,
                attempt,
                _MAX_RETRY_ATTEMPTS,
                last_exc,
                wait_time,
            )
            self._reset_sheets_service()
            time.sleep(wait_time)
            backoff *= 2

        raise RuntimeError("Sheets API request failed without capturing an exception")
