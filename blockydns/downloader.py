"""Download of list files over HTTP, with retries and a pause between attempts."""

from __future__ import annotations

import io
import logging
import socket
import time
from typing import BinaryIO, Iterator, Optional, Protocol

import requests

from blockydns.events import CACHING_FAILED_DOWNLOAD_CHANGED, bus

_logger = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_TIMEOUT = 1.0
DEFAULT_DOWNLOAD_ATTEMPTS = 1
DEFAULT_DOWNLOAD_COOLDOWN = 0.5

_HTTP_OK = 200


class DownloadError(Exception):
    """Raised when a file cannot be downloaded."""


class TransientError(DownloadError):
    """A temporary failure such as a timeout; retrying later may succeed."""

    def __init__(self, inner: BaseException) -> None:
        super().__init__(f"temporary error occurred: {inner}")
        self.inner = inner


class FileDownloader(Protocol):
    def download_file(self, link: str) -> BinaryIO: ...


def _causes(error: BaseException) -> Iterator[BaseException]:
    """Yield the error and everything it was caused by or wraps."""
    seen: set[int] = set()
    pending: list[Optional[BaseException]] = [error]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        pending.append(current.__cause__)
        pending.append(current.__context__)
        reason = getattr(current, "reason", None)
        if isinstance(reason, BaseException):
            pending.append(reason)
        pending.extend(arg for arg in current.args if isinstance(arg, BaseException))


def _name_resolution_error(error: BaseException) -> Optional[socket.gaierror]:
    for cause in _causes(error):
        if isinstance(cause, socket.gaierror):
            return cause
    return None


class HTTPDownloader:
    """Downloads files over HTTP, retrying failed attempts.

    ``attempts`` of 0 retries until the download succeeds.
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_DOWNLOAD_TIMEOUT,
        attempts: int = DEFAULT_DOWNLOAD_ATTEMPTS,
        cooldown: float = DEFAULT_DOWNLOAD_COOLDOWN,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.timeout = timeout
        self.attempts = attempts
        self.cooldown = cooldown
        self.session = session if session is not None else requests.Session()

    def download_file(self, link: str) -> BinaryIO:
        """Return the content behind link as a binary stream."""
        _logger.info("starting download: %s", link)
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._fetch(link)
            except DownloadError as error:
                self._on_failure(link, attempt, error)
                if self.attempts and attempt >= self.attempts:
                    raise
            time.sleep(self.cooldown)

    def _fetch(self, link: str) -> BinaryIO:
        try:
            response = self.session.get(link, timeout=self.timeout)
            with response:
                if response.status_code != _HTTP_OK:
                    raise DownloadError(f"got status code {response.status_code}")
                return io.BytesIO(response.content)
        except requests.Timeout as error:
            raise TransientError(error) from error
        except requests.RequestException as error:
            raise DownloadError(str(error)) from error

    def _on_failure(self, link: str, attempt: int, error: DownloadError) -> None:
        where = f"(link={link}, attempt={attempt}/{self.attempts})"
        if isinstance(error, TransientError):
            _logger.warning("Temporary network err / Timeout occurred: %s %s", error, where)
        elif (resolution := _name_resolution_error(error)) is not None:
            _logger.warning(
                "Name resolution err: %s %s", resolution.strerror or resolution, where
            )
        else:
            _logger.warning("Can't download file: %s %s", error, where)
        bus().publish(CACHING_FAILED_DOWNLOAD_CHANGED, link)