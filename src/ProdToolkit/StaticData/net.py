# === NAVMAP v1 ===
# {
#   "module": "ProdToolkit.StaticData.net",
#   "purpose": "Shared HTTPX client, Tenacity retry helper, JSON and streaming fetches",
#   "sections": [
#     {"id": "client", "name": "get_http_client", "anchor": "function-get-http-client", "kind": "function"},
#     {"id": "retry", "name": "retry_with_backoff", "anchor": "function-retry-with-backoff", "kind": "function"},
#     {"id": "fetch-json", "name": "fetch_json", "anchor": "function-fetch-json", "kind": "function"},
#     {"id": "stream", "name": "stream_to_file", "anchor": "function-stream-to-file", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Shared HTTPX client used by every static data pipeline.

The client is a lazily created, process-wide singleton so connection pools
are shared between the concurrent constant and image fetches.  Transient
failures (connect errors, timeouts, 429 and 5xx responses) are retried per
request with Tenacity, honouring ``Retry-After``.  Pipelines never retry as a
whole; this layer only smooths over flaky transport.

Tests install a client backed by ``httpx.MockTransport`` through
:func:`configure_http_client` (see :mod:`ProdToolkit.StaticData.testing`).
"""

from __future__ import annotations

import email.utils
import logging
import os
import random
import ssl
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

import certifi
import httpx
from tenacity import Retrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from ._version import __version__
from .progress import ProgressSink, report_progress
from .settings import APP_NAME, HttpSettings

LOGGER = logging.getLogger("ProdToolkit.StaticData.net")

T = TypeVar("T")

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
_CLIENT_LOCK = threading.RLock()
_HTTP_CLIENT: Optional[httpx.Client] = None
_CLIENT_PID: Optional[int] = None


def _build_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    return context


def default_user_agent() -> str:
    return f"{APP_NAME}/{__version__} (+https://github.com/RCVolus/prod-toolkit)"


def _create_http_client(http: HttpSettings) -> httpx.Client:
    return httpx.Client(
        timeout=httpx.Timeout(http.timeout_sec, connect=http.connect_timeout_sec),
        limits=httpx.Limits(
            max_connections=http.max_connections,
            max_keepalive_connections=http.max_connections,
        ),
        headers={"User-Agent": http.user_agent or default_user_agent()},
        follow_redirects=True,
        verify=_build_ssl_context(),
    )


def get_http_client(http: Optional[HttpSettings] = None) -> httpx.Client:
    """Get or create the shared HTTPX client.

    The first call binds the client to ``http`` (or default settings).  A
    forked child detects the PID change and rebuilds the client instead of
    sharing sockets with its parent.
    """
    global _HTTP_CLIENT, _CLIENT_PID  # noqa: PLW0603

    with _CLIENT_LOCK:
        if _HTTP_CLIENT is not None and _CLIENT_PID == os.getpid():
            return _HTTP_CLIENT
        if _HTTP_CLIENT is not None:
            LOGGER.debug("Process forked; rebuilding HTTP client")
        _HTTP_CLIENT = _create_http_client(http or HttpSettings())
        _CLIENT_PID = os.getpid()
        LOGGER.debug("HTTP client initialized", extra={"pid": _CLIENT_PID})
        return _HTTP_CLIENT


def configure_http_client(client: httpx.Client) -> None:
    """Install ``client`` as the shared client, replacing any existing one."""

    global _HTTP_CLIENT, _CLIENT_PID  # noqa: PLW0603

    with _CLIENT_LOCK:
        _HTTP_CLIENT = client
        _CLIENT_PID = os.getpid()


def reset_http_client() -> None:
    """Close and forget the shared client; safe to call repeatedly."""

    global _HTTP_CLIENT, _CLIENT_PID  # noqa: PLW0603

    with _CLIENT_LOCK:
        client, _HTTP_CLIENT, _CLIENT_PID = _HTTP_CLIENT, None, None
    if client is not None:
        client.close()


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Convert a Retry-After header value into a delay in seconds."""
    if not value:
        return None
    try:
        delay = float(int(value))
    except ValueError:
        try:
            dt = email.utils.parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        delay = (dt - datetime.now(timezone.utc)).total_seconds()
    return max(0.0, delay)


def retry_after_hint(exc: BaseException) -> Optional[float]:
    if isinstance(exc, httpx.HTTPStatusError):
        return _parse_retry_after(exc.response.headers.get("Retry-After"))
    return None


def is_retryable_error(exc: BaseException) -> bool:
    """Return ``True`` for transport failures worth another attempt."""

    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS
    return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))


def retry_with_backoff(
    func: Callable[[], T],
    *,
    retryable: Callable[[BaseException], bool] = is_retryable_error,
    max_attempts: int = 3,
    backoff_base: float = 0.5,
    jitter: float = 0.5,
    callback: Optional[Callable[[int, BaseException, float], None]] = None,
    retry_after: Optional[Callable[[BaseException], Optional[float]]] = retry_after_hint,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Execute ``func`` with exponential backoff until it succeeds.

    The final failure is re-raised unchanged rather than wrapped in a
    ``tenacity.RetryError``.
    """

    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    class _BackoffWait(wait_base):
        def __call__(self, retry_state) -> float:  # type: ignore[override]
            outcome = retry_state.outcome
            exc = outcome.exception() if outcome is not None and outcome.failed else None
            delay = backoff_base * (2 ** (max(retry_state.attempt_number, 1) - 1))
            if retry_after is not None and exc is not None:
                hint = retry_after(exc)
                if hint is not None:
                    delay = hint
            if jitter > 0:
                delay += random.uniform(0.0, jitter)
            return max(delay, 0.0)

    def _before_sleep(retry_state) -> None:
        if callback is None or retry_state.outcome is None:
            return
        exc = retry_state.outcome.exception()
        if exc is None:
            return
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        callback(retry_state.attempt_number, exc, delay)

    controller = Retrying(
        retry=retry_if_exception(retryable),
        wait=_BackoffWait(),
        stop=stop_after_attempt(max_attempts),
        sleep=sleep,
        reraise=True,
        before_sleep=_before_sleep,
    )
    return controller(func)


def _log_retry(url: str, stage: str) -> Callable[[int, BaseException, float], None]:
    def _callback(attempt: int, exc: BaseException, delay: float) -> None:
        LOGGER.warning(
            "request failed, retrying",
            extra={
                "stage": stage,
                "url": url,
                "attempt": attempt,
                "sleep_sec": round(delay, 2),
                "error": str(exc),
            },
        )

    return _callback


def fetch_json(url: str, *, http: Optional[HttpSettings] = None, stage: str = "fetch") -> Any:
    """GET ``url`` and decode the JSON body.

    Raises:
        httpx.HTTPError: On transport failures or non-2xx responses.
        ValueError: When the body is not valid JSON.
    """
    http = http or HttpSettings()
    client = get_http_client(http)

    def _perform() -> httpx.Response:
        response = client.get(url)
        response.raise_for_status()
        return response

    response = retry_with_backoff(
        _perform,
        max_attempts=http.max_retries,
        backoff_base=http.backoff_factor,
        jitter=http.backoff_factor,
        callback=_log_retry(url, stage),
    )
    return response.json()


def fetch_bytes(url: str, *, http: Optional[HttpSettings] = None, stage: str = "fetch") -> bytes:
    """GET ``url`` and return the raw body."""

    http = http or HttpSettings()
    client = get_http_client(http)

    def _perform() -> bytes:
        response = client.get(url)
        response.raise_for_status()
        return response.content

    return retry_with_backoff(
        _perform,
        max_attempts=http.max_retries,
        backoff_base=http.backoff_factor,
        jitter=http.backoff_factor,
        callback=_log_retry(url, stage),
    )


def stream_to_file(
    url: str,
    destination: Path,
    *,
    http: Optional[HttpSettings] = None,
    progress: Optional[ProgressSink] = None,
    label: str = "Downloading",
) -> int:
    """Stream ``url`` into ``destination`` and return the number of bytes written.

    The body is written to ``<destination>.part`` and renamed on completion.
    A non-2xx status aborts before anything is written.  When the server sends
    ``Content-Length`` the progress sink receives ``(fraction, label)``
    updates as bytes arrive.
    """
    http = http or HttpSettings()
    client = get_http_client(http)
    destination.parent.mkdir(parents=True, exist_ok=True)
    part_path = destination.with_name(destination.name + ".part")
    timeout = httpx.Timeout(http.download_timeout_sec, connect=http.connect_timeout_sec)
    high_water = 0.0

    def _report(fraction: float) -> None:
        # Retried attempts restart at zero; the sink only sees forward movement.
        nonlocal high_water
        if fraction < high_water:
            return
        high_water = fraction
        report_progress(progress, fraction, label)

    def _attempt() -> int:
        with client.stream("GET", url, timeout=timeout) as response:
            response.raise_for_status()
            length_header = response.headers.get("Content-Length")
            total = int(length_header) if length_header and length_header.isdigit() else None
            written = 0
            _report(0.0)
            try:
                with part_path.open("wb") as stream:
                    for chunk in response.iter_bytes(http.chunk_size):
                        if not chunk:
                            continue
                        stream.write(chunk)
                        written += len(chunk)
                        if total:
                            _report(min(written / total, 1.0))
            except BaseException:
                part_path.unlink(missing_ok=True)
                raise
        os.replace(part_path, destination)
        _report(1.0)
        return written

    return retry_with_backoff(
        _attempt,
        max_attempts=http.max_retries,
        backoff_base=http.backoff_factor,
        jitter=http.backoff_factor,
        callback=_log_retry(url, "download"),
    )


__all__ = [
    "get_http_client",
    "configure_http_client",
    "reset_http_client",
    "default_user_agent",
    "is_retryable_error",
    "retry_with_backoff",
    "fetch_json",
    "fetch_bytes",
    "stream_to_file",
]
