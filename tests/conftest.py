"""Shared fakes and fixtures: a scripted backend, a scripted transcription
source, and a temp-dir session store."""

import asyncio
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from colloquy.backend.base import GenerationBackend, TranscriptionSource
from colloquy.chat.errors import GenerationError, GenerationErrorKind
from colloquy.core.metrics import metrics
from colloquy.session.persistence import PersistenceManager
from colloquy.session.store import SessionStore


class FakeBackend(GenerationBackend):
    """
    Scripted generation backend.

    respond(): pops the next queued result for the schema name (None = text).
    stream():  pops the next queued script (a list of items) for the schema.
    Exceptions in a queue or inside a script are raised at that point.
    """

    def __init__(self) -> None:
        self.responses: dict = {}
        self.streams: dict = {}
        self.calls: list[tuple[str, str | None, list[dict]]] = []
        self.create_error: Exception | None = None
        self.started = False
        self.gates: dict = {}

    def queue_response(self, schema_name, *items) -> None:
        self.responses.setdefault(schema_name, []).extend(items)

    def queue_stream(self, schema_name, items) -> None:
        self.streams.setdefault(schema_name, []).append(list(items))

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    def check_ready(self) -> None:
        if self.create_error is not None:
            raise self.create_error

    async def respond(self, messages, schema=None, options=None):
        name = schema.name if schema else None
        self.calls.append(("respond", name, list(messages)))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        queue = self.responses.get(name) or []
        if not queue:
            raise GenerationError(GenerationErrorKind.OTHER, f"nothing scripted for {name}")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def stream(self, messages, schema=None, options=None):
        name = schema.name if schema else None
        self.calls.append(("stream", name, list(messages)))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        scripts = self.streams.get(name) or []
        if not scripts:
            raise GenerationError(GenerationErrorKind.OTHER, f"nothing scripted for {name}")
        for item in scripts.pop(0):
            if isinstance(item, Exception):
                raise item
            yield item


class FakeTranscriptionSource(TranscriptionSource):
    def __init__(self, granted: bool = True) -> None:
        self.granted = granted
        self.opened = 0
        self.closed = 0
        self._open = False
        self._queue: asyncio.Queue = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self._open

    async def request_permissions(self) -> bool:
        return self.granted

    async def open(self) -> None:
        self._queue = asyncio.Queue()
        self._open = True
        self.opened += 1

    def emit(self, text: str) -> None:
        self._queue.put_nowait(text)

    def fail(self, error: Exception) -> None:
        self._queue.put_nowait(error)

    async def transcripts(self):
        while True:
            item = await self._queue.get()
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        self._open = False
        self.closed += 1


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def source():
    return FakeTranscriptionSource()


@pytest_asyncio.fixture
async def store():
    """A SessionStore on a temp DB for each test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        s = SessionStore(db_path=Path(tmpdir) / "test_sessions.db")
        await s.start()
        yield s
        await s.stop()


@pytest_asyncio.fixture
async def persistence():
    """A PersistenceManager (not yet started) on a temp DB."""
    with tempfile.TemporaryDirectory() as tmpdir:
        manager = PersistenceManager(SessionStore(db_path=Path(tmpdir) / "p.db"))
        yield manager
        await manager.stop()
