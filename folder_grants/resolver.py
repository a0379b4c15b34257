from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from .google_api import FOLDER_MIME_TYPE, WorkspaceApi
from .retry import SEARCH_MAX_ATTEMPTS, RetryPolicy, is_rate_limited

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 3
GLOBAL_SEARCH_PAGE_SIZE = 10
CHILD_PAGE_SIZE = 100
SOFT_RETRY_PAUSE_SECONDS = 1.0
MAX_SOFT_RETRIES = 5


def escape_query_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _same_name(candidate: Dict[str, Any], target_lower: str) -> bool:
    return str(candidate.get("name") or "").lower() == target_lower


class FolderResolver:
    """Finds the Drive folder that belongs to a participant name."""

    def __init__(
        self,
        client: WorkspaceApi,
        retry: RetryPolicy,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        self._client = client
        self._retry = retry
        self._max_depth = max_depth
        self._sleep = sleep

    def resolve(self, name: str, parent_id: Optional[str] = None) -> Optional[str]:
        target = (name or "").strip()
        if not target:
            return None
        if not parent_id:
            return self._search_everywhere(target)
        return self._search_below(target, parent_id)

    def _search_everywhere(self, target: str) -> Optional[str]:
        # name equality in Drive queries is exact; ask for
        # "contains" and compare case-insensitively here.
        query = (
            f"mimeType='{FOLDER_MIME_TYPE}' and name contains '{escape_query_value(target)}'"
            " and trashed=false"
        )
        response = self._retry.call(
            "drive.files.list",
            lambda: self._client.list_folders(query, page_size=GLOBAL_SEARCH_PAGE_SIZE),
            context={"query": query},
            max_attempts=SEARCH_MAX_ATTEMPTS,
        )
        target_lower = target.lower()
        for candidate in response.get("files", []) or []:
            if _same_name(candidate, target_lower):
                return candidate.get("id")
        return None

    def _list_children(self, parent_id: str) -> List[Dict[str, Any]]:
        query = (
            f"'{escape_query_value(parent_id)}' in parents and mimeType='{FOLDER_MIME_TYPE}'"
            " and trashed=false"
        )
        children: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            self._retry.governor.acquire()
            response = self._client.list_folders(
                query, page_size=CHILD_PAGE_SIZE, page_token=page_token
            )
            children.extend(response.get("files", []) or [])
            page_token = response.get("nextPageToken")
            if not page_token:
                return children

    def _search_below(self, target: str, parent_id: str) -> Optional[str]:
        """Breadth-first search; folders at ``max_depth`` are matched but never listed."""

        target_lower = target.lower()
        queue: Deque[Tuple[str, int]] = deque([(parent_id, 0)])
        soft_retries: Dict[str, int] = {}

        while queue:
            folder_id, depth = queue.popleft()
            if depth >= self._max_depth:
                continue
            try:
                children = self._list_children(folder_id)
            except Exception as exc:
                if is_rate_limited(exc):
                    attempts = soft_retries.get(folder_id, 0) + 1
                    soft_retries[folder_id] = attempts
                    if attempts <= MAX_SOFT_RETRIES:
                        LOGGER.debug(
                            "Rate limited listing %s (soft retry %s/%s)",
                            folder_id,
                            attempts,
                            MAX_SOFT_RETRIES,
                        )
                        self._sleep(SOFT_RETRY_PAUSE_SECONDS)
                        queue.append((folder_id, depth))
                        continue
                LOGGER.debug("Abandoning folder branch %s: %s", folder_id, exc)
                continue

            for child in children:
                if _same_name(child, target_lower):
                    return child.get("id")
            if depth + 1 >= self._max_depth:
                continue
            for child in children:
                child_id = child.get("id")
                if child_id:
                    queue.append((child_id, depth + 1))

        return None
