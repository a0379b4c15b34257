from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from .models import OutcomeState, RecordOutcome, RunStatistics

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PipelineEvent:
    """A record transition or an end-of-pass summary."""

    kind: str  # "record" or "summary"
    row_index: Optional[int] = None
    state: Optional[OutcomeState] = None
    detail: str = ""
    statistics: Optional[RunStatistics] = field(default=None)

    @classmethod
    def for_outcome(cls, outcome: RecordOutcome) -> "PipelineEvent":
        return cls(
            kind="record",
            row_index=outcome.row_index,
            state=outcome.state,
            detail=outcome.detail,
        )

    @classmethod
    def summary(cls, statistics: RunStatistics) -> "PipelineEvent":
        return cls(kind="summary", detail=statistics.summary_line(), statistics=statistics)


class EventSink(Protocol):
    def emit(self, event: PipelineEvent) -> None: ...


class LoggingEventSink:
    """Renders pipeline events through the standard logging module."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def emit(self, event: PipelineEvent) -> None:
        if event.kind == "summary":
            stats = event.statistics
            if stats is not None and stats.aborted:
                self._logger.error("Pass aborted: %s", stats.aborted)
            self._logger.info("Summary: %s", event.detail)
            return

        level = logging.INFO
        if event.state in (OutcomeState.ERROR, OutcomeState.FOLDER_NOT_FOUND):
            level = logging.ERROR
        state = event.state.value if event.state is not None else "-"
        self._logger.log(level, "Row %s %s: %s", event.row_index, state.upper(), event.detail)


class CollectingEventSink:
    """Keeps emitted events in memory."""

    def __init__(self) -> None:
        self.events: List[PipelineEvent] = []

    def emit(self, event: PipelineEvent) -> None:
        self.events.append(event)

    @property
    def outcomes(self) -> List[PipelineEvent]:
        return [event for event in self.events if event.kind == "record"]
