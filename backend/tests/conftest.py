from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Ensure `backend/` is on sys.path so `import sse_reply.*` works when running tests from repo root.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sse_reply.core.config import Settings, get_settings  # noqa: E402
from sse_reply.core.errors import SinkClosedError  # noqa: E402
from sse_reply.main import create_app  # noqa: E402


@pytest.fixture()
def settings() -> Settings:
    return Settings(env="test")


@pytest.fixture()
def app():
    # ensure fresh settings per test session
    get_settings.cache_clear()
    os.environ["ENV"] = "test"
    return create_app()


class RecordingSink:
    """In-memory EventSink: keeps headers, chunks and whether it was closed."""

    def __init__(self, *, fail_after: int | None = None, fail_on_close: bool = False) -> None:
        self.headers: dict[str, str] = {}
        self.chunks: list[bytes] = []
        self.closed = False
        self._fail_after = fail_after
        self._fail_on_close = fail_on_close

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    async def write(self, chunk: bytes) -> None:
        if self._fail_after is not None and len(self.chunks) >= self._fail_after:
            raise SinkClosedError("client disconnected")
        self.chunks.append(chunk)

    async def close(self) -> None:
        if self._fail_on_close:
            raise SinkClosedError("client disconnected")
        self.closed = True

    @property
    def body(self) -> bytes:
        return b"".join(self.chunks)


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def make_sink():
    return RecordingSink
