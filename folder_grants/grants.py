from __future__ import annotations

import logging

from .errors import ApiCallError
from .google_api import WorkspaceApi
from .models import GRANT_ROLE, GrantResult
from .retry import PERMISSION_CREATE_MAX_ATTEMPTS, PERMISSION_LIST_MAX_ATTEMPTS, RetryPolicy

LOGGER = logging.getLogger(__name__)


class GrantEngine:
    """Checks and creates reader permissions on participant folders."""

    def __init__(self, client: WorkspaceApi, retry: RetryPolicy, *, dry_run: bool = False) -> None:
        self._client = client
        self._retry = retry
        self._dry_run = dry_run

    def has_grant(self, folder_id: str, email: str, role: str = GRANT_ROLE) -> bool:
        """Return whether ``email`` already holds ``role`` on the folder.

        A listing that keeps failing counts as "no grant"; the grant is then
        attempted again, which is harmless for an existing permission.
        """

        try:
            permissions = self._retry.call(
                "drive.permissions.list",
                lambda: self._client.list_permissions(folder_id),
                context={"fileId": folder_id, "email": email, "role": role},
                max_attempts=PERMISSION_LIST_MAX_ATTEMPTS,
            )
        except ApiCallError as exc:
            LOGGER.warning("Could not list permissions, assuming none: %s", exc)
            return False

        wanted = email.lower()
        return any(
            str(permission.get("emailAddress") or "").lower() == wanted
            and permission.get("role") == role
            for permission in permissions or []
        )

    def grant(self, folder_id: str, email: str) -> GrantResult:
        if self._dry_run:
            LOGGER.debug("Dry run: skipping permission create for %s on %s", email, folder_id)
            return GrantResult(tag="DRY_RUN")

        permission = self._retry.call(
            "drive.permissions.create",
            lambda: self._client.create_permission(folder_id, email, GRANT_ROLE),
            context={"fileId": folder_id, "email": email, "role": GRANT_ROLE},
            max_attempts=PERMISSION_CREATE_MAX_ATTEMPTS,
        )
        return GrantResult(tag="GRANTED", permission=dict(permission or {}))
