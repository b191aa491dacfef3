"""Send the compressed payload to the coverage service with bounded retries.

Retry policy, per attempt ``n`` (starting at 1):

* ``201``: success, stop.
* ``5xx``: retryable; sleep ``backoff_unit * n`` and try again, unless ``n``
  was the last allowed attempt.
* anything else (``4xx``, connection failure, malformed response):
  terminal immediately.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, TypeAlias
from urllib.parse import quote

import httpx

from covship._meta import __version__, logger
from covship.core.config import BACKOFF_UNIT, DEFAULT_MAX_ATTEMPTS, HTTP_TIMEOUT

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from types import TracebackType

    from covship.core.metadata import BuildMetadata

PACKAGE = f"covship-py-{__version__}"
CREATED = 201
# Reported when the request never produced an HTTP status.
NO_STATUS = 0

UPLOAD_HEADERS: Mapping[str, str] = {
    "Content-Type": "text/plain",
    "Content-Encoding": "gzip",
    "X-Content-Encoding": "gzip",
    "Accept": "text/plain",
}

_TOKEN_RE = re.compile(r"token=[^&]+")


# --------------------------------------------------------------------------- #
# Query string                                                                #
# --------------------------------------------------------------------------- #


def encode(value: str) -> str:
    """Percent-encode *value* byte-wise; only ``A-Za-z0-9-_.~`` pass through."""
    return quote(value, safe="", encoding="utf-8", errors="surrogateescape")


def build_query(metadata: BuildMetadata, token: str, *, package: str = PACKAGE) -> str:
    """``token`` and ``package`` first, then every metadata field in order."""
    pairs = [("token", token), ("package", package), *metadata.as_pairs()]
    query = "&".join(f"{encode(key)}={encode(value)}" for key, value in pairs)
    return "".join(query.split())


def redact(query: str) -> str:
    return _TOKEN_RE.sub("token=<secret>", query)


def upload_url(endpoint: str, query: str) -> str:
    return f"{endpoint.rstrip('/')}/coverage?{query}"


# --------------------------------------------------------------------------- #
# Outcomes                                                                    #
# --------------------------------------------------------------------------- #


@dataclass(frozen=True, slots=True)
class Success:
    report_url: str
    elapsed_seconds: float
    attempts: int = 1


@dataclass(frozen=True, slots=True)
class RetryableFailure:
    http_status: int


@dataclass(frozen=True, slots=True)
class TerminalFailure:
    http_status: int
    body: str
    attempts: int = 1
    reason: str = ""


UploadOutcome: TypeAlias = Success | RetryableFailure | TerminalFailure


@dataclass(frozen=True, slots=True)
class TransportResponse:
    """What one POST produced: body text, HTTP status and elapsed seconds."""

    body: str
    status: int
    elapsed: float


def classify(response: TransportResponse, *, attempt: int = 1) -> UploadOutcome:
    if response.status == CREATED:
        report_url = next((ln.strip() for ln in response.body.splitlines() if ln.strip()), "")
        if not report_url:
            return TerminalFailure(CREATED, response.body, attempt, "malformed response: no report URL")
        return Success(report_url, response.elapsed, attempt)
    if 500 <= response.status <= 599:  # noqa: PLR2004
        return RetryableFailure(response.status)
    if response.status == NO_STATUS:
        return TerminalFailure(NO_STATUS, response.body, attempt, "connection failed")
    return TerminalFailure(response.status, response.body, attempt, f"server responded with HTTP {response.status}")


# --------------------------------------------------------------------------- #
# Transport                                                                   #
# --------------------------------------------------------------------------- #


class Transport(Protocol):
    def __call__(self, url: str, body: bytes, headers: Mapping[str, str]) -> TransportResponse: ...


class HttpxTransport:
    """POST through an :class:`httpx.Client`; connection errors become status 0."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        timeout: float = HTTP_TIMEOUT,
        verify: bool | str = True,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, verify=verify)

    def __call__(self, url: str, body: bytes, headers: Mapping[str, str]) -> TransportResponse:
        started = time.monotonic()
        try:
            res = self._client.post(url, content=body, headers=dict(headers))
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.debug("transport failure: %r", exc)
            return TransportResponse(body=str(exc), status=NO_STATUS, elapsed=time.monotonic() - started)
        return TransportResponse(body=res.text, status=res.status_code, elapsed=time.monotonic() - started)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> HttpxTransport:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


# --------------------------------------------------------------------------- #
# Upload loop                                                                 #
# --------------------------------------------------------------------------- #


def upload(
    metadata: BuildMetadata,
    payload: bytes,
    endpoint: str,
    token: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    *,
    transport: Transport | None = None,
    sleep: Callable[[float], None] = time.sleep,
    backoff_unit: float = BACKOFF_UNIT,
) -> Success | TerminalFailure:
    """POST *payload* and return the terminal outcome of the retry loop."""
    if max_attempts < 1:
        msg = "max_attempts must be at least 1"
        raise ValueError(msg)

    url = upload_url(endpoint, build_query(metadata, token))
    logger.info("Uploading to %s", endpoint)
    logger.debug("query: %s", redact(url.partition("?")[2]))

    own = transport is None
    send: Transport = HttpxTransport() if transport is None else transport
    try:
        last = RetryableFailure(NO_STATUS)
        for attempt in range(1, max_attempts + 1):
            logger.info("Pinging server (attempt %d/%d)", attempt, max_attempts)
            outcome = classify(send(url, payload, UPLOAD_HEADERS), attempt=attempt)
            if not isinstance(outcome, RetryableFailure):
                return outcome
            last = outcome
            if attempt < max_attempts:
                delay = backoff_unit * attempt
                logger.warning("Server error HTTP %d, retrying in %gs", outcome.http_status, delay)
                sleep(delay)
        return TerminalFailure(
            last.http_status,
            "",
            max_attempts,
            f"could not upload after {max_attempts} tries (last status HTTP {last.http_status})",
        )
    finally:
        if own and isinstance(send, HttpxTransport):
            send.close()


__all__ = [
    "PACKAGE",
    "UPLOAD_HEADERS",
    "HttpxTransport",
    "RetryableFailure",
    "Success",
    "TerminalFailure",
    "Transport",
    "TransportResponse",
    "UploadOutcome",
    "build_query",
    "classify",
    "encode",
    "redact",
    "upload",
    "upload_url",
]
