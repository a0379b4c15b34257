from __future__ import annotations

import json
import logging
import random
import time
from typing import Any, Callable, Dict, Mapping, Tuple, TypeVar

from googleapiclient.errors import HttpError

from .errors import ApiCallError, ErrorDetail
from .throttle import RateGovernor

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

BACKOFF_CAP_MS = 60_000
BACKOFF_JITTER_MS = 500
SEARCH_MAX_ATTEMPTS = 5
PERMISSION_LIST_MAX_ATTEMPTS = 5
PERMISSION_CREATE_MAX_ATTEMPTS = 6

_RATE_LIMIT_REASONS = (
    "rateLimitExceeded",
    "userRateLimitExceeded",
    "sharingRateLimitExceeded",
)


def _error_payload(exc: HttpError) -> Dict[str, Any]:
    content = getattr(exc, "content", b"") or b""
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    try:
        data = json.loads(content)
    except ValueError:
        return {}
    if not isinstance(data, dict):
        return {}
    error = data.get("error")
    return error if isinstance(error, dict) else {}


def describe_error(exc: BaseException) -> Tuple[int | None, Tuple[str, ...], str]:
    """Return ``(status, reasons, message)`` for an API exception."""

    if isinstance(exc, HttpError):
        status = getattr(exc.resp, "status", None)
        try:
            status = int(status) if status is not None else None
        except (TypeError, ValueError):
            status = None
        payload = _error_payload(exc)
        items = payload.get("errors")
        reasons: Tuple[str, ...] = ()
        if isinstance(items, list):
            reasons = tuple(
                str(item["reason"])
                for item in items
                if isinstance(item, dict) and item.get("reason")
            )
        message = payload.get("message") or exc.reason or str(exc)
        return status, reasons, str(message)
    return None, (), str(exc) or exc.__class__.__name__


def is_rate_limited(exc: BaseException) -> bool:
    """Whether the error is a quota rejection worth retrying."""

    status, reasons, _ = describe_error(exc)
    if status == 429:
        return True
    if status == 403:
        joined = " ".join(reasons)
        return any(reason in joined for reason in _RATE_LIMIT_REASONS)
    return False


def backoff_ms(attempt: int, cap_ms: int = BACKOFF_CAP_MS) -> int:
    """Base wait before retrying after the given 1-based failed attempt."""

    if attempt < 1:
        raise ValueError("attempt numbers are 1-based")
    return min(cap_ms, (2 ** attempt) * 1000)


def error_detail(
    operation: str, context: Mapping[str, Any], exc: BaseException
) -> ErrorDetail:
    status, reasons, message = describe_error(exc)
    return ErrorDetail(
        operation=operation,
        context=dict(context),
        status=status,
        reasons=reasons,
        message=message,
    )


class RetryPolicy:
    """Runs Drive calls through the rate governor with exponential backoff."""

    def __init__(
        self,
        governor: RateGovernor,
        *,
        cap_ms: int = BACKOFF_CAP_MS,
        jitter_ms: int = BACKOFF_JITTER_MS,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._governor = governor
        self._cap_ms = cap_ms
        self._jitter_ms = jitter_ms
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def governor(self) -> RateGovernor:
        return self._governor

    def call(
        self,
        operation: str,
        func: Callable[[], T],
        *,
        context: Mapping[str, Any] | None = None,
        max_attempts: int = SEARCH_MAX_ATTEMPTS,
    ) -> T:
        """Invoke ``func`` until it succeeds, fails terminally, or hits ``max_attempts``."""

        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        context = context or {}

        attempt = 0
        while True:
            self._governor.acquire()
            try:
                return func()
            except ApiCallError:
                raise
            except Exception as exc:
                attempt += 1
                detail = error_detail(operation, context, exc)
                LOGGER.debug("%s failed on attempt %s/%s: %s", operation, attempt, max_attempts, detail.summary())
                if not is_rate_limited(exc) or attempt >= max_attempts:
                    raise ApiCallError(detail) from exc

                wait_ms = backoff_ms(attempt, self._cap_ms) + self._rng.randint(0, self._jitter_ms)
                LOGGER.warning(
                    "%s rate limited on attempt %s/%s (%s); retrying in %.1f seconds",
                    operation,
                    attempt,
                    max_attempts,
                    detail.summary(),
                    wait_ms / 1000.0,
                )
                self._sleep(wait_ms / 1000.0)
