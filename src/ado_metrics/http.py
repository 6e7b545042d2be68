"""Resilient JSON fetch layer for Azure DevOps REST calls.

Every call goes through :meth:`AdoHttp.fetch_json`, which:

- injects PAT Basic auth and ``Accept: application/json`` unless supplied,
- admits at most ``max_concurrency`` calls at a time process-wide, in arrival order,
- bounds each whole attempt with the configured timeout (timeouts are not retried),
- retries 429/5xx responses with ``Retry-After`` or exponential backoff.
"""

from __future__ import annotations

import base64
import email.utils
import json
import logging
import random
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Mapping, Optional, Tuple

import requests
from requests.structures import CaseInsensitiveDict

from .config import Config
from .errors import (
    AdoTimeoutError,
    HttpError,
    RequestCancelledError,
    TransientRemoteError,
)

logger = logging.getLogger(__name__)


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Parse a ``Retry-After`` header as seconds or an HTTP date.

    Fractional seconds are truncated to whole seconds. Returns the delay in
    seconds (never negative) or ``None`` when the header is missing or
    unparseable.
    """
    if not value:
        return None

    raw = value.strip()
    try:
        return max(0.0, float(int(float(raw))))
    except (ValueError, OverflowError):
        pass

    try:
        retry_at = email.utils.parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if retry_at is None:
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    reference = now or datetime.now(timezone.utc)
    return max(0.0, (retry_at - reference).total_seconds())


class FifoSlots:
    """Counting semaphore that admits waiters strictly in arrival order.

    A released permit is handed directly to the oldest waiter, so a caller
    arriving later can never take a slot ahead of one already queued.
    """

    POLL_SECONDS = 0.05

    def __init__(self, permits: int) -> None:
        if permits < 1:
            raise ValueError("permits must be at least 1")
        self._permits = permits
        self._available = permits
        self._lock = threading.Lock()
        self._waiters: Deque[threading.Event] = deque()

    @property
    def waiting(self) -> int:
        with self._lock:
            return len(self._waiters)

    def acquire(self, cancel: Optional[threading.Event] = None) -> bool:
        """Take a permit, blocking in FIFO order.

        Returns ``False`` if ``cancel`` is set while waiting; the waiter then
        leaves the queue without holding a permit.
        """
        with self._lock:
            if self._available > 0 and not self._waiters:
                self._available -= 1
                return True
            ticket = threading.Event()
            self._waiters.append(ticket)

        if cancel is None:
            ticket.wait()
            return True

        while not ticket.wait(self.POLL_SECONDS):
            if not cancel.is_set():
                continue
            with self._lock:
                granted = ticket.is_set()
                if not granted:
                    self._waiters.remove(ticket)
            if granted:
                # handed over while cancelling; pass it on
                self.release()
            return False
        return True

    def release(self) -> None:
        with self._lock:
            if self._waiters:
                self._waiters.popleft().set()
                return
            if self._available >= self._permits:
                raise ValueError("FifoSlots released too many times")
            self._available += 1


class AdoHttp:
    """Authenticated, rate-limited JSON transport shared by all API callers."""

    MAX_ATTEMPTS = 4
    BASE_DELAY_SECONDS = 0.3
    MAX_JITTER_SECONDS = 0.1
    SNIPPET_LIMIT = 512
    CHUNK_SIZE = 64 * 1024

    def __init__(
        self,
        pat: str,
        max_concurrency: int = 6,
        timeout_ms: int = 60_000,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the transport.

        Args:
            pat: Azure DevOps personal access token.
            max_concurrency: Maximum number of calls admitted concurrently.
            timeout_ms: Deadline for one whole attempt, in milliseconds.
            session: Optional pre-built ``requests.Session``.
            clock: Monotonic clock in seconds, used for attempt deadlines.
        """
        token = base64.b64encode(f":{pat}".encode("utf-8")).decode("ascii")
        self._authorization = f"Basic {token}"
        self._timeout_seconds = timeout_ms / 1000.0
        self._max_concurrency = max_concurrency
        self._slots = FifoSlots(max_concurrency)
        self._session = session or requests.Session()
        self._clock = clock

    @classmethod
    def from_config(cls, config: Config) -> "AdoHttp":
        return cls(
            pat=config.pat,
            max_concurrency=config.max_concurrency,
            timeout_ms=config.request_timeout_ms,
        )

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "AdoHttp":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _build_headers(self, headers: Optional[Mapping[str, str]]) -> CaseInsensitiveDict:
        merged: CaseInsensitiveDict = CaseInsensitiveDict(headers or {})
        if "Authorization" not in merged:
            merged["Authorization"] = self._authorization
        if "Accept" not in merged:
            merged["Accept"] = "application/json"
        return merged

    def _backoff_seconds(self, response: requests.Response, attempt: int) -> float:
        """Compute the wait before the next attempt, honoring ``Retry-After``."""
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        if retry_after is not None:
            return retry_after
        jitter = random.uniform(0, self.MAX_JITTER_SECONDS)
        return self.BASE_DELAY_SECONDS * (2 ** attempt) + jitter

    def _wait(
        self,
        seconds: float,
        url: str,
        method: str,
        attempt: int,
        cancel: Optional[threading.Event],
    ) -> None:
        if cancel is None:
            time.sleep(seconds)
            return
        if cancel.wait(seconds):
            raise RequestCancelledError(url=url, method=method, attempt=attempt)

    def _timed_out(self, url: str, method: str, attempt: int) -> AdoTimeoutError:
        logger.warning(
            "Azure DevOps request timed out",
            extra={"url": url, "method": method, "attempt": attempt},
        )
        return AdoTimeoutError(url=url, method=method, attempt=attempt)

    def _read_body(
        self,
        response: requests.Response,
        deadline: float,
        url: str,
        method: str,
        attempt: int,
        cancel: Optional[threading.Event],
    ) -> bytes:
        """Read the streamed body, giving up once ``deadline`` passes."""
        chunks = []
        try:
            if self._clock() >= deadline:
                raise self._timed_out(url, method, attempt)
            for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                if chunk:
                    chunks.append(chunk)
                if self._clock() >= deadline:
                    raise self._timed_out(url, method, attempt)
                if cancel is not None and cancel.is_set():
                    raise RequestCancelledError(url=url, method=method, attempt=attempt)
        except requests.RequestException as exc:
            # urllib3 read timeouts surface here as ConnectionError
            if isinstance(exc, requests.Timeout) or self._clock() >= deadline:
                raise self._timed_out(url, method, attempt) from exc
            raise HttpError(status=0, url=url, method=method, attempt=attempt) from exc
        finally:
            response.close()
        return b"".join(chunks)

    def _snippet(self, body: bytes) -> str:
        text = body[: self.SNIPPET_LIMIT * 4].decode("utf-8", errors="replace")
        return text[: self.SNIPPET_LIMIT]

    def fetch_json(
        self,
        url: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Any:
        """Execute a request and return the parsed JSON body.

        Raises:
            AdoTimeoutError: If an attempt exceeds the configured timeout.
            TransientRemoteError: If 429/5xx responses persist for every attempt.
            RequestCancelledError: If ``cancel`` is set before the call settles.
            HttpError: For other HTTP failures, invalid JSON or transport errors.
        """
        payload, _ = self.fetch_json_with_headers(
            url,
            method=method,
            params=params,
            json_body=json_body,
            headers=headers,
            cancel=cancel,
        )
        return payload

    def fetch_json_with_headers(
        self,
        url: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[Any, CaseInsensitiveDict]:
        """Like :meth:`fetch_json`, also returning the successful response's headers."""
        verb = method.upper()
        request_headers = self._build_headers(headers)

        if cancel is not None and cancel.is_set():
            raise RequestCancelledError(url=url, method=verb, attempt=0)

        if not self._slots.acquire(cancel):
            raise RequestCancelledError(url=url, method=verb, attempt=0)
        try:
            return self._fetch_with_retries(url, verb, params, json_body, request_headers, cancel)
        finally:
            self._slots.release()

    def _fetch_with_retries(
        self,
        url: str,
        method: str,
        params: Optional[Dict[str, Any]],
        json_body: Any,
        headers: CaseInsensitiveDict,
        cancel: Optional[threading.Event],
    ) -> Tuple[Any, CaseInsensitiveDict]:
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            if cancel is not None and cancel.is_set():
                raise RequestCancelledError(url=url, method=method, attempt=attempt)

            deadline = self._clock() + self._timeout_seconds
            try:
                response = self._session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=headers,
                    timeout=self._timeout_seconds,
                    stream=True,
                )
            except requests.Timeout as exc:
                raise self._timed_out(url, method, attempt) from exc
            except requests.RequestException as exc:
                raise HttpError(status=0, url=url, method=method, attempt=attempt) from exc

            status_code = response.status_code
            body = self._read_body(response, deadline, url, method, attempt, cancel)

            if 200 <= status_code < 300:
                try:
                    return json.loads(body), CaseInsensitiveDict(response.headers or {})
                except ValueError as exc:
                    raise HttpError(
                        status=status_code,
                        url=url,
                        method=method,
                        attempt=attempt,
                        body_snippet=self._snippet(body),
                    ) from exc

            snippet = self._snippet(body)
            is_retryable = status_code == 429 or status_code >= 500
            if not is_retryable:
                raise HttpError(
                    status=status_code,
                    url=url,
                    method=method,
                    attempt=attempt,
                    body_snippet=snippet,
                )

            if attempt == self.MAX_ATTEMPTS:
                logger.warning(
                    "Azure DevOps request failed after retries",
                    extra={"url": url, "method": method, "status": status_code, "attempt": attempt},
                )
                raise TransientRemoteError(
                    status=status_code,
                    url=url,
                    method=method,
                    attempt=attempt,
                    body_snippet=snippet,
                )

            delay = self._backoff_seconds(response, attempt)
            logger.warning(
                "Retrying Azure DevOps request",
                extra={
                    "url": url,
                    "method": method,
                    "status": status_code,
                    "attempt": attempt,
                    "delay_seconds": delay,
                },
            )
            self._wait(delay, url, method, attempt, cancel)

        raise HttpError(status=500, url=url, method=method, attempt=self.MAX_ATTEMPTS)
