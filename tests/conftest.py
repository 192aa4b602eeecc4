"""Shared test fixtures for verinstall."""

from __future__ import annotations

import hashlib
import io
import json
import tarfile
import threading
import zipfile
from collections.abc import Callable, Iterator
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

import pytest

from verinstall.config import InstallerSettings
from verinstall.core.fetcher import Fetcher
from verinstall.models.manifest import Manifest

VOICETERM_BINARY = b"#!/bin/sh\necho 'voiceterm 0.1.5'\n"


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def make_tarball(members: dict[str, bytes], *, root: str | None = None) -> bytes:
    """Build a .tar.gz in memory; ``root`` wraps members in a top-level dir."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(f"{root}/{name}" if root else name)
            info.size = len(data)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def make_zip(members: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Fake requests session
# ---------------------------------------------------------------------------


class DummyResponse:
    """Stands in for a streamed ``requests.Response``; ``raw`` is itself."""

    def __init__(
        self,
        status_code: int = 200,
        body: bytes = b"",
        *,
        headers: dict[str, str] | None = None,
        reason: str = "",
        raise_during_stream: Exception | None = None,
    ) -> None:
        self.status_code = status_code
        self.reason = reason
        self.headers = headers if headers is not None else {"Content-Length": str(len(body))}
        self._body = body
        self._raise = raise_during_stream
        self.decode_content: bool | None = None
        self.closed = False

    @property
    def raw(self) -> DummyResponse:
        return self

    def stream(self, amt: int = 2**16, decode_content: bool | None = None) -> Iterator[bytes]:
        self.decode_content = decode_content
        for start in range(0, len(self._body), amt):
            yield self._body[start:start + amt]
        if self._raise is not None:
            raise self._raise

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> DummyResponse:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class DummySession:
    """Replays queued outcomes: a ``DummyResponse`` or an exception to raise."""

    def __init__(self, outcomes: list[DummyResponse | Exception]) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    def get(self, url: str, **kwargs: Any) -> DummyResponse:
        self.calls.append({"url": url, **kwargs})
        if not self._outcomes:
            raise AssertionError("no more responses queued")
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self) -> None:
        pass


@pytest.fixture
def dummy_session() -> Callable[..., DummySession]:
    """Factory fixture: ``dummy_session(DummyResponse(...), requests.Timeout(), ...)``."""

    def _factory(*outcomes: DummyResponse | Exception) -> DummySession:
        return DummySession(list(outcomes))

    return _factory


@pytest.fixture
def sleeps() -> list[float]:
    """Records backoff delays instead of sleeping."""
    return []


@pytest.fixture
def make_fetcher(tmp_path: Path, sleeps: list[float]) -> Callable[..., Fetcher]:
    """Factory fixture: a Fetcher over a DummySession that never really sleeps."""
    download_dir = tmp_path / "downloads"
    download_dir.mkdir()

    def _factory(session: DummySession, **overrides: Any) -> Fetcher:
        options: dict[str, Any] = {
            "timeout": 5.0,
            "max_retries": 3,
            "backoff_base": 0.5,
            "backoff_max": 8.0,
            "chunk_size": 4,
            "tmp_dir": download_dir,
            "sleep": sleeps.append,
        }
        options.update(overrides)
        return Fetcher(session, **options)

    return _factory


# ---------------------------------------------------------------------------
# Local HTTP server
# ---------------------------------------------------------------------------


class ArtifactServer:
    """Threaded HTTP server with per-path scripted responses.

    ``routes[path]`` is either bytes (always 200) or a list of
    ``(status, body)`` tuples consumed one per request; the last entry
    repeats once the list is down to one.  ``headers[path]`` adds response
    headers, e.g. a ``Content-Encoding`` label.
    """

    def __init__(self) -> None:
        self.routes: dict[str, bytes | list[tuple[int, bytes]]] = {}
        self.hits: dict[str, int] = {}
        self.headers: dict[str, dict[str, str]] = {}
        server = self

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:  # noqa: N802
                server.hits[self.path] = server.hits.get(self.path, 0) + 1
                route = server.routes.get(self.path)
                if route is None:
                    status, body = 404, b"not found"
                elif isinstance(route, bytes):
                    status, body = 200, route
                else:
                    status, body = route.pop(0) if len(route) > 1 else route[0]
                self.send_response(status)
                self.send_header("Content-Length", str(len(body)))
                self.send_header("Content-Type", "application/octet-stream")
                for key, value in server.headers.get(self.path, {}).items():
                    self.send_header(key, value)
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format: str, *args: Any) -> None:
                pass

        self._httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self._thread = threading.Thread(target=self._httpd.serve_forever, daemon=True)

    @property
    def base_url(self) -> str:
        host, port = self._httpd.server_address[:2]
        return f"http://{host}:{port}"

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._httpd.shutdown()
        self._httpd.server_close()
        self._thread.join(timeout=2)


@pytest.fixture
def artifact_server(monkeypatch: pytest.MonkeyPatch) -> Iterator[ArtifactServer]:
    # Keep requests from routing loopback traffic through an ambient proxy.
    monkeypatch.setenv("NO_PROXY", "127.0.0.1,localhost")
    monkeypatch.setenv("no_proxy", "127.0.0.1,localhost")
    server = ArtifactServer()
    server.start()
    try:
        yield server
    finally:
        server.stop()


# ---------------------------------------------------------------------------
# Settings and manifests
# ---------------------------------------------------------------------------


@pytest.fixture
def prefix(tmp_path: Path) -> Path:
    """Install root for a test."""
    return tmp_path / "prefix"


@pytest.fixture
def settings(tmp_path: Path, prefix: Path) -> InstallerSettings:
    """Fast settings: no backoff delay, short timeout, private scratch dir."""
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    return InstallerSettings(
        prefix=prefix,
        timeout_seconds=5.0,
        max_retries=3,
        backoff_base_seconds=0.0,
        backoff_max_seconds=0.0,
        tmp_dir=scratch,
    )


@pytest.fixture
def make_manifest() -> Callable[..., Manifest]:
    """Factory fixture: build a Manifest with sensible defaults."""

    def _factory(
        url: str = "https://example.com/releases/download/v0.1.5/voiceterm.tar.gz",
        sha256: str = "0" * 64,
        **overrides: Any,
    ) -> Manifest:
        defaults: dict[str, Any] = {
            "name": "voiceterm",
            "desc": "A voice-powered AI terminal assistant",
            "homepage": "https://github.com/devglyph1/homebrew-voiceterm",
            "url": url,
            "sha256": sha256,
            "version": "0.1.5",
        }
        defaults.update(overrides)
        return Manifest(**defaults)

    return _factory


@pytest.fixture
def write_manifest(tmp_path: Path) -> Callable[..., Path]:
    """Factory fixture: write manifest records to a JSON file and return its path."""

    def _factory(*records: dict[str, Any], filename: str = "manifest.json") -> Path:
        path = tmp_path / filename
        payload: Any = records[0] if len(records) == 1 else list(records)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path

    return _factory

