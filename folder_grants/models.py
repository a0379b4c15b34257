from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

GRANT_ROLE = "reader"


def is_true(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


@dataclass(slots=True)
class ParticipantRecord:
    """Normalized data for a single participant row coming from Google Sheets."""

    row_index: int  # spreadsheet 1-based row number (including header)
    name: str
    email: str
    folder_id: Optional[str] = None
    is_shared: str = ""
    is_folder_exists: str = ""
    last_log: str = ""

    @property
    def already_shared(self) -> bool:
        return is_true(self.is_shared)

    @property
    def dedup_key(self) -> str:
        return f"{self.name.lower()}|{self.email.lower()}"


class OutcomeState(str, Enum):
    SKIPPED = "skipped"
    FOLDER_NOT_FOUND = "folder_not_found"
    ALREADY_GRANTED = "already_granted"
    GRANTED = "granted"
    ERROR = "error"


@dataclass(slots=True)
class RecordOutcome:
    """Terminal state reached by one record during a pass."""

    row_index: int
    state: OutcomeState
    detail: str = ""


@dataclass(slots=True)
class GrantResult:
    tag: str  # GRANTED or DRY_RUN
    permission: Dict[str, Any] = field(default_factory=dict)

    @property
    def simulated(self) -> bool:
        return self.tag == "DRY_RUN"


@dataclass(slots=True)
class RunStatistics:
    """Counters for a single pass over the participant sheet."""

    total: int = 0
    done: int = 0
    skipped: int = 0
    errors: int = 0
    aborted: Optional[str] = None

    @property
    def success_rate(self) -> float:
        if not self.total:
            return 0.0
        return round(self.done / self.total * 100, 1)

    def record(self, outcome: RecordOutcome) -> None:
        self.total += 1
        if outcome.state is OutcomeState.GRANTED:
            self.done += 1
        elif outcome.state in (OutcomeState.SKIPPED, OutcomeState.ALREADY_GRANTED):
            self.skipped += 1
        else:
            self.errors += 1

    def summary_line(self) -> str:
        return (
            f"total={self.total} done={self.done} skipped={self.skipped} "
            f"errors={self.errors} successRate={self.success_rate}%"
        )
