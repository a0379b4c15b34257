from __future__ import annotations

import logging
import random
import threading
import time
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Set
from zoneinfo import ZoneInfo

from .config import AppConfig
from .errors import ApiCallError, ErrorDetail, SheetSchemaError
from .events import EventSink, LoggingEventSink, PipelineEvent
from .google_api import WorkspaceApi
from .grants import GrantEngine
from .models import GRANT_ROLE, OutcomeState, ParticipantRecord, RecordOutcome, RunStatistics
from .resolver import FolderResolver
from .retry import RetryPolicy, error_detail
from .sharding import select_shard
from .sheet import (
    FOLDER_ID_COLUMN,
    IS_FOLDER_EXISTS_COLUMN,
    IS_SHARED_COLUMN,
    LAST_LOG_COLUMN,
    ParticipantSheet,
)
from .throttle import RateGovernor

LOGGER = logging.getLogger("folder_grants.pipeline")

TIMESTAMP_FORMAT = "%d/%m/%Y %H.%M.%S"
INTER_RECORD_JITTER_MS = 200


def normalize_records(records: Iterable[ParticipantRecord]) -> List[ParticipantRecord]:
    """Trim names, trim and lower-case emails, drop rows missing either."""

    normalized: List[ParticipantRecord] = []
    for record in records:
        name = (record.name or "").strip()
        email = (record.email or "").strip().lower()
        if not name or not email:
            continue
        record.name = name
        record.email = email
        normalized.append(record)
    return normalized


def prepare_batch(records: Iterable[ParticipantRecord], config: AppConfig) -> List[ParticipantRecord]:
    """Select the records this worker handles in one pass, in sheet order."""

    pending = [record for record in normalize_records(records) if not record.already_shared]
    if config.shard is not None:
        before = len(pending)
        pending = select_shard(pending, config.shard.index, config.shard.total)
        LOGGER.info(
            "Sharding applied: %s/%s records for shard %s/%s",
            len(pending),
            before,
            config.shard.index,
            config.shard.total - 1,
        )
    return pending[: config.max_per_run]


class ParticipantPipeline:
    """Drives participant rows through folder lookup, grant and write-back."""

    def __init__(
        self,
        config: AppConfig,
        client: WorkspaceApi,
        *,
        events: EventSink | None = None,
        governor: RateGovernor | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._events = events or LoggingEventSink()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._governor = governor or RateGovernor(config.throttle_ms, sleep=sleep, rng=self._rng)
        self._retry = RetryPolicy(self._governor, sleep=sleep, rng=self._rng)
        self._resolver = FolderResolver(
            client, self._retry, max_depth=config.drive.search_depth, sleep=sleep
        )
        self._grants = GrantEngine(client, self._retry, dry_run=config.dry_run)
        self._sheet = ParticipantSheet(
            client, config.sheets.spreadsheet_id, config.sheets.sheet_name
        )
        tz = ZoneInfo(config.timezone)
        self._now = now or (lambda: datetime.now(tz))

    def _stamp(self, message: str) -> str:
        return f"[{self._now().strftime(TIMESTAMP_FORMAT)}] {message}"

    def run_one_pass(self) -> RunStatistics:
        stats = RunStatistics()
        try:
            records = self._sheet.load_records()
        except SheetSchemaError as exc:
            stats.aborted = str(exc)
            self._events.emit(PipelineEvent.summary(stats))
            return stats

        batch = prepare_batch(records, self._config)
        parent_id = self._config.drive.parent_folder_id
        if not parent_id:
            LOGGER.warning(
                "No parent folder configured; folder names are matched across the whole drive"
            )
        LOGGER.info(
            "Processing %s participants (parent folder: %s, mode: %s)",
            len(batch),
            parent_id or "all folders",
            "dry run" if self._config.dry_run else "production",
        )

        seen: Set[str] = set()
        for record in batch:
            outcome = self.process_record(record, seen)
            stats.record(outcome)
            self._events.emit(PipelineEvent.for_outcome(outcome))

        self._events.emit(PipelineEvent.summary(stats))
        return stats

    def process_record(self, record: ParticipantRecord, seen: Set[str]) -> RecordOutcome:
        """Move one record to a terminal state, writing its status as it goes."""

        row = record.row_index
        if "@" not in record.email:
            message = f"SKIP: INVALID EMAIL '{record.email}'"
            self._sheet.write(
                row, {IS_SHARED_COLUMN: "FALSE", LAST_LOG_COLUMN: self._stamp(message)}
            )
            return RecordOutcome(row, OutcomeState.SKIPPED, message)

        if record.dedup_key in seen:
            message = "SKIP: Duplicate entry"
            self._sheet.write(row, {LAST_LOG_COLUMN: self._stamp(message)})
            return RecordOutcome(row, OutcomeState.SKIPPED, message)
        seen.add(record.dedup_key)

        if record.already_shared:
            message = "SKIP: Already shared"
            self._sheet.write(row, {LAST_LOG_COLUMN: self._stamp(message)})
            return RecordOutcome(row, OutcomeState.SKIPPED, message)

        try:
            return self._provision(record)
        except Exception as exc:
            if isinstance(exc, ApiCallError):
                detail = exc.detail
            else:
                LOGGER.debug("Unexpected failure for row %s", row, exc_info=True)
                detail = error_detail(
                    "process", {"row": row, "email": record.email}, exc
                )
            return self._fail(record, detail)

    def _provision(self, record: ParticipantRecord) -> RecordOutcome:
        row = record.row_index
        folder_id = record.folder_id or self._resolver.resolve(
            record.name, self._config.drive.parent_folder_id
        )
        if not folder_id:
            message = f"FOLDER NOT FOUND: '{record.name}'"
            self._sheet.write(
                row,
                {IS_FOLDER_EXISTS_COLUMN: "FALSE", LAST_LOG_COLUMN: self._stamp(message)},
            )
            return RecordOutcome(row, OutcomeState.FOLDER_NOT_FOUND, message)

        found = {IS_FOLDER_EXISTS_COLUMN: "TRUE"}
        if not record.folder_id:
            found[FOLDER_ID_COLUMN] = folder_id
        self._sheet.write(row, found)
        record.folder_id = folder_id
        record.is_folder_exists = "TRUE"

        if self._grants.has_grant(folder_id, record.email, GRANT_ROLE):
            message = f"SKIP: Already has {GRANT_ROLE} access"
            self._sheet.write(
                row, {IS_SHARED_COLUMN: "TRUE", LAST_LOG_COLUMN: self._stamp(message)}
            )
            return RecordOutcome(row, OutcomeState.ALREADY_GRANTED, message)

        result = self._grants.grant(folder_id, record.email)
        message = f"{result.tag} {GRANT_ROLE} → {record.email}"
        self._sheet.write(row, {IS_SHARED_COLUMN: "TRUE", LAST_LOG_COLUMN: self._stamp(message)})
        record.is_shared = "TRUE"

        pause_ms = self._config.throttle_ms // 2 + self._rng.randint(0, INTER_RECORD_JITTER_MS)
        self._sleep(pause_ms / 1000.0)
        return RecordOutcome(row, OutcomeState.GRANTED, message)

    def _fail(self, record: ParticipantRecord, detail: ErrorDetail) -> RecordOutcome:
        message = f"ERROR: {detail.describe()}"
        self._sheet.write(
            record.row_index,
            {IS_SHARED_COLUMN: "FALSE", LAST_LOG_COLUMN: self._stamp(message)},
        )
        return RecordOutcome(record.row_index, OutcomeState.ERROR, message)


def run_one_pass(
    config: AppConfig,
    client: WorkspaceApi,
    *,
    events: EventSink | None = None,
) -> RunStatistics:
    """Process one batch of participants and return the pass statistics."""

    return ParticipantPipeline(config, client, events=events).run_one_pass()


def run_polling(
    config: AppConfig,
    client: WorkspaceApi,
    stop: threading.Event,
    *,
    events: EventSink | None = None,
    pipeline: Optional[ParticipantPipeline] = None,
) -> int:
    """Run passes until ``stop`` is set; the token is checked between passes only."""

    pipeline = pipeline or ParticipantPipeline(config, client, events=events)
    passes = 0
    LOGGER.info("Polling mode enabled. Interval=%ss", config.poll_interval)
    while not stop.is_set():
        try:
            pipeline.run_one_pass()
        except Exception:
            LOGGER.exception("Pass failed; retrying after the poll interval")
        passes += 1
        if stop.wait(config.poll_interval):
            break
    LOGGER.info("Polling stopped after %s passes", passes)
    return passes
