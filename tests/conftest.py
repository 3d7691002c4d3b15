"""Shared pytest fixtures."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

import pytest

from contextguard.ai.tools.errors import ToolServerConnectionError
from contextguard.services import telemetry
from contextguard.services.settings import ToolServerSettings


class FakeToolHandle:
    """In-memory stand-in for a tool server connection."""

    def __init__(
        self,
        server: str,
        tool_names: Iterable[str] = (),
        *,
        list_error: Exception | None = None,
        close_error: Exception | None = None,
    ) -> None:
        self.server = server
        self.tool_names = list(tool_names)
        self.list_error = list_error
        self.close_error = close_error
        self.closed = False
        self.close_calls = 0

    async def list_tool_names(self) -> list[str]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.tool_names)

    async def tools(self, schemas: Any = None) -> Mapping[str, Callable[..., Any]]:
        async def call(**arguments: Any) -> Any:
            return arguments

        names = [name for name in self.tool_names if schemas is None or name in schemas]
        return {name: call for name in names}

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeConnector:
    """Connector returning :class:`FakeToolHandle` objects keyed by server name."""

    def __init__(
        self,
        live: Mapping[str, Iterable[str]],
        *,
        unreachable: Iterable[str] = (),
        handle_options: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> None:
        self.live = {name: list(tools) for name, tools in live.items()}
        self.unreachable = set(unreachable)
        self.handle_options = dict(handle_options or {})
        self.handles: list[FakeToolHandle] = []
        self.calls: list[str] = []

    async def __call__(self, server: ToolServerSettings) -> FakeToolHandle:
        self.calls.append(server.name)
        if server.name in self.unreachable:
            raise ToolServerConnectionError(
                message=f"Failed to connect to tool server '{server.name}'",
                server=server.name,
                url=server.endpoint,
            )
        handle = FakeToolHandle(
            server.name,
            self.live.get(server.name, ()),
            **self.handle_options.get(server.name, {}),
        )
        self.handles.append(handle)
        return handle


def make_server(name: str, url: str | None = None) -> ToolServerSettings:
    return ToolServerSettings(key=name, url=url or f"https://{name}.example.com/sse")


@pytest.fixture(autouse=True)
def _reset_telemetry_listeners():
    telemetry.clear_event_listeners()
    yield
    telemetry.clear_event_listeners()


@pytest.fixture
def fake_connector_factory() -> Callable[..., FakeConnector]:
    return FakeConnector


@pytest.fixture
def server_factory() -> Callable[..., ToolServerSettings]:
    return make_server


@pytest.fixture
def restore_root_logging(monkeypatch: pytest.MonkeyPatch):
    """Undo handler and level changes made through ``setup_logging``."""
    monkeypatch.delenv("CONTEXTGUARD_LOG_DIR", raising=False)
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
