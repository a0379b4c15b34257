from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple


class FolderGrantsError(Exception):
    """Base error for all folder_grants exceptions."""


class ConfigurationError(FolderGrantsError):
    """Raised when configuration is invalid or incomplete."""


class SheetSchemaError(FolderGrantsError):
    """Raised when the participant sheet cannot be used for a pass."""


@dataclass(frozen=True)
class ErrorDetail:
    """Diagnostic context for a failed Drive API call."""

    operation: str
    context: Dict[str, Any] = field(default_factory=dict)
    status: int | None = None
    reasons: Tuple[str, ...] = ()
    message: str = ""

    def summary(self) -> str:
        reason_text = "|".join(self.reasons) if self.reasons else "unknown"
        status_text = self.status if self.status is not None else "n/a"
        return f"[HTTP {status_text}] {reason_text} - {self.message}"

    def describe(self) -> str:
        context_text = json.dumps(self.context, ensure_ascii=False, sort_keys=True)
        return f"op={self.operation} ctx={context_text} {self.summary()}"


class ApiCallError(FolderGrantsError):
    """Terminal failure of an API operation, after retries where applicable."""

    def __init__(self, detail: ErrorDetail) -> None:
        super().__init__(detail.describe())
        self.detail = detail
