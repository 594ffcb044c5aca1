# File: tests/conftest.py

"""Shared fakes for the unit tests: a store, a console host and a client factory."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from rustowl_client.config.loader import ConfigStore
from rustowl_client.editor.console import ConsoleHost
from rustowl_client.editor.host import TextDocument, TextEditor
from rustowl_client.lsp.protocol import Position
from rustowl_client.server.bootstrap import Origin, ServerLocation

FINISHED_RESPONSE = {
    "is_analyzed": True,
    "status": "finished",
    "decorations": [
        {
            "type": "lifetime",
            "range": {"start": {"line": 1, "character": 4}, "end": {"line": 3, "character": 1}},
            "hover_text": "lifetime of `x`",
            "overlapped": False,
        },
        {
            "type": "imm_borrow",
            "range": {"start": {"line": 2, "character": 8}, "end": {"line": 2, "character": 10}},
            "overlapped": False,
        },
    ],
}


class FakeClient:
    """Stands in for `OwlLspClient`; records lifecycle calls in a shared log."""

    def __init__(self, command, cwd, timeout, event_sink, generation, factory):
        self.command = command
        self.cwd = cwd
        self.timeout = timeout
        self.event_sink = event_sink
        self.generation = generation
        self._factory = factory
        self.started = False
        self.closed = False
        self.cursor = AsyncMock(return_value=factory.cursor_result)
        self.analyze = AsyncMock(return_value=None)
        self.toggle_ownership = AsyncMock(return_value=None)

    @property
    def is_running(self):
        return self.started and not self.closed

    async def start_server(self):
        self._factory.log.append(("start", self.generation))
        self.started = True

    async def initialize(self):
        if self._factory.fail_initialize:
            raise ConnectionError("LSP Initialization failed: boom")
        self._factory.log.append(("initialize", self.generation))
        return {}

    async def close(self):
        self._factory.log.append(("close", self.generation))
        self.closed = True

    def emit(self, event):
        self.event_sink(event)


class FakeClientFactory:
    def __init__(self):
        self.clients = []
        self.log = []
        self.cursor_result = FINISHED_RESPONSE
        self.fail_initialize = False

    def __call__(self, command, cwd, timeout, event_sink, generation):
        self.log.append(("create", generation))
        client = FakeClient(command, cwd, timeout, event_sink, generation, self)
        self.clients.append(client)
        return client

    @property
    def live(self):
        return [c for c in self.clients if c.is_running]

    @property
    def latest(self):
        return self.clients[-1]


@pytest.fixture
def store(tmp_path):
    return ConfigStore(data={"display": {"delay_ms": 20}}, path=tmp_path / "config.yml")


@pytest.fixture
def editor():
    return TextEditor(
        document=TextDocument(uri="file:///work/src/main.rs", language_id="rust"),
        selection=Position(2, 8),
    )


@pytest.fixture
def host(editor):
    return ConsoleHost(editor=editor, echo=lambda line: None)


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def resolver():
    fake = MagicMock()
    fake.resolve = AsyncMock(return_value=ServerLocation("/opt/rustowl/bin/rustowl", Origin.CONFIGURED))
    return fake
