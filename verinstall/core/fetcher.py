"""Artifact fetcher — streams a remote file to a temporary path.

The body is written chunk by chunk so memory use does not grow with the
artifact.  Transient failures (connection errors, timeouts, 5xx) are retried
with exponential backoff; 4xx responses are permanent and surface at once.
Every request carries an explicit timeout so a hung connection cannot stall
the pipeline.

On success the caller owns the returned temp file and must remove it.  On
failure no temp file survives.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
from collections.abc import Callable
from pathlib import Path
from urllib.parse import urlsplit
from urllib.request import url2pathname

import requests
import urllib3

from verinstall import __version__
from verinstall.config import InstallerSettings
from verinstall.core.errors import (
    FetchError,
    FetchTimeoutError,
    HttpStatusError,
    NetworkError,
    filesystem_error,
)
from verinstall.models.pipeline import DownloadedFile

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
"""Called as ``progress(bytes_done, total_bytes)``; total is 0 when unknown."""


def _remove_quietly(path: str | Path) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


class Fetcher:
    """Downloads artifacts with bounded retry.

    Parameters
    ----------
    session:
        A ``requests.Session`` (or compatible object).  A new session is
        created when omitted.
    timeout:
        Seconds to wait for the connection and for each read.
    max_retries:
        Total attempt budget.  A fetch that fails transiently N times and
        then succeeds returns only if ``N < max_retries``.
    backoff_base, backoff_max:
        Delay before retry *k* is ``min(backoff_base * 2**(k-1), backoff_max)``.
    sleep:
        Injected for tests; defaults to ``time.sleep``.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        chunk_size: int = 64 * 1024,
        user_agent: str = f"verinstall/{__version__}",
        tmp_dir: Path | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._session = session or requests.Session()
        self._owns_session = session is None
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._chunk_size = chunk_size
        self._headers = {"User-Agent": user_agent}
        self._tmp_dir = tmp_dir
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: InstallerSettings,
        session: requests.Session | None = None,
        **overrides,
    ) -> Fetcher:
        """Build a fetcher from ``InstallerSettings``; keyword overrides win."""
        options = {
            "timeout": settings.timeout_seconds,
            "max_retries": settings.max_retries,
            "backoff_base": settings.backoff_base_seconds,
            "backoff_max": settings.backoff_max_seconds,
            "chunk_size": settings.chunk_size,
            "user_agent": settings.user_agent,
            "tmp_dir": settings.tmp_dir,
        }
        options.update({k: v for k, v in overrides.items() if v is not None})
        return cls(session, **options)

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def backoff_delay(self, attempt: int) -> float:
        """Delay to wait after failed attempt number *attempt* (1-based)."""
        return min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)

    def fetch(
        self,
        url: str,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        progress: ProgressCallback | None = None,
    ) -> DownloadedFile:
        """Download *url* into a temp file, retrying transient failures.

        Raises
        ------
        HttpStatusError
            Immediately on 4xx; after the retry budget on 5xx.
        FetchTimeoutError, NetworkError
            After the retry budget is exhausted.
        """
        timeout = self.timeout if timeout is None else timeout
        attempts = self.max_retries if max_retries is None else max_retries
        if attempts < 1:
            raise ValueError("max_retries must be >= 1")

        attempt = 1
        while True:
            try:
                return self._attempt(url, timeout, attempt, progress)
            except FetchError as exc:
                if not exc.transient:
                    logger.error("Permanent fetch failure for %s: %s", url, exc)
                    raise
                if attempt == attempts:
                    logger.error(
                        "Giving up on %s after %d attempt(s): %s", url, attempts, exc
                    )
                    raise
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "Attempt %d/%d for %s failed: %s; retrying in %.2fs",
                    attempt,
                    attempts,
                    url,
                    exc,
                    delay,
                )
                self._sleep(delay)
                attempt += 1

    # ------------------------------------------------------------------
    # Single attempt
    # ------------------------------------------------------------------

    def _attempt(
        self,
        url: str,
        timeout: float,
        attempt: int,
        progress: ProgressCallback | None,
    ) -> DownloadedFile:
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix="verinstall-", suffix=".download", dir=self._tmp_dir
            )
        except OSError as exc:
            where = self._tmp_dir or tempfile.gettempdir()
            raise filesystem_error("creating download file in", where, exc) from exc
        try:
            with os.fdopen(fd, "wb") as fh:
                if urlsplit(url).scheme == "file":
                    size = self._copy_local(url, fh, progress)
                else:
                    size = self._stream_http(url, fh, timeout, progress)
        except OSError as exc:
            _remove_quietly(tmp_name)
            raise filesystem_error("writing", tmp_name, exc) from exc
        except BaseException:
            _remove_quietly(tmp_name)
            raise

        logger.debug("Fetched %s (%d bytes) to %s", url, size, tmp_name)
        return DownloadedFile(
            path=Path(tmp_name), url=url, size_bytes=size, attempts=attempt
        )

    def _stream_http(self, url, fh, timeout: float, progress) -> int:
        try:
            with self._session.get(
                url, stream=True, timeout=timeout, headers=self._headers
            ) as response:
                status = response.status_code
                if status >= 400:
                    raise HttpStatusError(url, status, getattr(response, "reason", "") or "")

                total = int(response.headers.get("Content-Length") or 0)
                size = 0
                # Content-Encoding is left applied: the digest covers the bytes as served.
                for chunk in response.raw.stream(self._chunk_size, decode_content=False):
                    if not chunk:
                        continue
                    fh.write(chunk)
                    size += len(chunk)
                    if progress:
                        progress(size, total)
        except requests.exceptions.Timeout as exc:
            raise FetchTimeoutError(f"Timed out after {timeout}s fetching {url}: {exc}") from exc
        except urllib3.exceptions.ReadTimeoutError as exc:
            raise FetchTimeoutError(f"Timed out after {timeout}s reading {url}: {exc}") from exc
        except (requests.exceptions.RequestException, urllib3.exceptions.HTTPError) as exc:
            raise NetworkError(f"Network error fetching {url}: {exc}") from exc

        if total and size != total:
            raise NetworkError(
                f"Truncated download from {url}: got {size} of {total} bytes"
            )
        return size

    def _copy_local(self, url: str, fh, progress) -> int:
        path = Path(url2pathname(urlsplit(url).path))
        try:
            total = path.stat().st_size
            with path.open("rb") as src:
                shutil.copyfileobj(src, fh, self._chunk_size)
        except OSError as exc:
            raise FetchError(f"Cannot read {url}: {exc}") from exc
        if progress:
            progress(total, total)
        return total


def fetch(
    url: str,
    timeout: float = 30.0,
    max_retries: int = 3,
    **options,
) -> DownloadedFile:
    """One-shot fetch with a throwaway ``Fetcher``."""
    fetcher = Fetcher(timeout=timeout, max_retries=max_retries, **options)
    try:
        return fetcher.fetch(url)
    finally:
        fetcher.close()
