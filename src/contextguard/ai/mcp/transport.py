"""Tool server connections over the Model Context Protocol."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import AsyncExitStack
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence, runtime_checkable

import httpx
from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ...services.settings import ToolServerSettings, redact_headers
from ..tools.errors import ToolServerConnectionError
from .catalog import SchemaCatalog

LOGGER = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 15.0
DEFAULT_CONNECT_RETRIES = 3

RemoteTool = Callable[..., Awaitable[Any]]


class ToolCallFailed(RuntimeError):
    """Raised by a remote tool callable when the server reports an error result."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(message or f"Tool '{tool_name}' reported an error")
        self.tool_name = tool_name


class InvalidToolArguments(ValueError):
    """Raised before forwarding a call whose arguments violate the trusted schema."""

    def __init__(self, tool_name: str, errors: Sequence[str]) -> None:
        super().__init__(f"Invalid arguments for tool '{tool_name}': {'; '.join(errors)}")
        self.tool_name = tool_name
        self.errors = list(errors)


@runtime_checkable
class ToolHandle(Protocol):
    """Minimal surface the reconciler and model loop need from a server connection."""

    server: str

    async def list_tool_names(self) -> list[str]:
        ...

    async def tools(self, schemas: SchemaCatalog | None = None) -> Mapping[str, RemoteTool]:
        ...

    async def close(self) -> None:
        ...


class McpToolHandle:
    """A live MCP client session bound to one tool server.

    The handle must be closed from the task that opened it; the underlying
    transports hold task-scoped cancel scopes.
    """

    def __init__(self, server: str, session: ClientSession, exit_stack: AsyncExitStack) -> None:
        self.server = server
        self._session = session
        self._exit_stack = exit_stack
        self._listed: list[Any] | None = None
        self._closed = False

    @classmethod
    async def open(
        cls,
        settings: ToolServerSettings,
        *,
        timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> "McpToolHandle":
        """Connect and initialize a session for ``settings``."""

        stack = AsyncExitStack()
        try:
            streams = await stack.enter_async_context(_transport_context(settings, timeout))
            read_stream, write_stream = streams[0], streams[1]
            session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
            await asyncio.wait_for(session.initialize(), timeout=timeout)
        except BaseException:
            await stack.aclose()
            raise
        LOGGER.debug("Connected to tool server %s via %s", settings.name, settings.transport)
        return cls(settings.name, session, stack)

    @property
    def closed(self) -> bool:
        return self._closed

    async def list_tool_names(self) -> list[str]:
        return [tool.name for tool in await self._list_tools(refresh=True)]

    async def tools(self, schemas: SchemaCatalog | None = None) -> dict[str, RemoteTool]:
        """Return callables for the server's tools.

        With ``schemas``, only tools present in the trusted catalog are exposed
        and their arguments are validated against it before each call.
        """

        listed = await self._list_tools()
        exposed: dict[str, RemoteTool] = {}
        for tool in listed:
            descriptor = None
            if schemas is not None:
                descriptor = schemas.get(tool.name)
                if descriptor is None:
                    LOGGER.debug("Skipping untrusted tool %s on %s", tool.name, self.server)
                    continue
            exposed[tool.name] = self._remote_tool(tool.name, descriptor)
        return exposed

    async def call(self, tool_name: str, arguments: Mapping[str, Any] | None = None) -> Any:
        result = await self._session.call_tool(tool_name, arguments=dict(arguments or {}))
        return _unwrap_result(tool_name, result)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._exit_stack.aclose()
        LOGGER.debug("Closed tool server %s", self.server)

    async def __aenter__(self) -> "McpToolHandle":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _list_tools(self, *, refresh: bool = False) -> list[Any]:
        if self._listed is None or refresh:
            result = await self._session.list_tools()
            self._listed = list(result.tools)
        return self._listed

    def _remote_tool(self, tool_name: str, descriptor: Any) -> RemoteTool:
        async def remote(**arguments: Any) -> Any:
            if descriptor is not None:
                errors = descriptor.validate(arguments)
                if errors:
                    raise InvalidToolArguments(tool_name, errors)
            return await self.call(tool_name, arguments)

        remote.__name__ = tool_name
        remote.__qualname__ = f"{self.server}.{tool_name}"
        return remote


def _transport_context(settings: ToolServerSettings, timeout: float) -> Any:
    if settings.transport == "stdio":
        params = StdioServerParameters(
            command=settings.command or "",
            args=list(settings.args),
            env=dict(settings.env) or None,
        )
        return stdio_client(params)
    headers = dict(settings.headers) or None
    if settings.transport == "streamable-http":
        return streamablehttp_client(settings.url or "", headers=headers, timeout=timeout)
    return sse_client(settings.url or "", headers=headers, timeout=timeout)


def _unwrap_result(tool_name: str, result: Any) -> Any:
    """Convert a ``CallToolResult`` into plain data for the governor."""

    structured = getattr(result, "structuredContent", None)
    parts: list[Any] = []
    for item in getattr(result, "content", None) or ():
        text = getattr(item, "text", None)
        if isinstance(text, str):
            parts.append(text)
        elif hasattr(item, "model_dump"):
            parts.append(item.model_dump(mode="json", exclude_none=True))
        else:
            parts.append(str(item))
    if getattr(result, "isError", False):
        message = "\n".join(part if isinstance(part, str) else json.dumps(part) for part in parts)
        raise ToolCallFailed(tool_name, message)
    if structured is not None:
        return structured
    if len(parts) == 1:
        return parts[0]
    if all(isinstance(part, str) for part in parts):
        return "\n".join(parts)
    return parts


# -----------------------------------------------------------------------------
# Connection with retries
# -----------------------------------------------------------------------------

_TRANSIENT_ERRORS = (OSError, ConnectionError, asyncio.TimeoutError, httpx.TransportError)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, _TRANSIENT_ERRORS):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    nested = getattr(exc, "exceptions", None)
    if nested:
        return all(_is_transient(inner) for inner in nested)
    return False


Opener = Callable[[ToolServerSettings], Awaitable[ToolHandle]]


async def connect_tool_server(
    settings: ToolServerSettings,
    *,
    timeout: float = DEFAULT_CONNECT_TIMEOUT,
    retries: int = DEFAULT_CONNECT_RETRIES,
    retry_min_seconds: float = 0.5,
    retry_max_seconds: float = 6.0,
    opener: Opener | None = None,
) -> ToolHandle:
    """Open a handle for ``settings``, retrying transient failures.

    Raises:
        ToolServerConnectionError: When every attempt fails or the failure is not transient.
    """

    async def default_opener(target: ToolServerSettings) -> ToolHandle:
        return await McpToolHandle.open(target, timeout=timeout)

    open_handle = opener or default_opener
    retrying = AsyncRetrying(
        reraise=True,
        stop=stop_after_attempt(max(1, retries)),
        wait=wait_exponential(multiplier=retry_min_seconds, max=retry_max_seconds),
        retry=retry_if_exception(_is_transient),
    )
    try:
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    LOGGER.info(
                        "Retrying connection to %s (attempt %d)",
                        settings.name,
                        attempt.retry_state.attempt_number,
                        extra={"server": settings.name},
                    )
                return await open_handle(settings)
    except asyncio.CancelledError:
        raise
    except ToolServerConnectionError:
        raise
    except Exception as exc:
        LOGGER.warning(
            "Could not connect to tool server %s at %s (headers=%s): %s",
            settings.name,
            settings.endpoint,
            redact_headers(settings.headers),
            exc,
            extra={"server": settings.name},
        )
        raise ToolServerConnectionError(
            message=f"Failed to connect to tool server '{settings.name}': {exc or exc.__class__.__name__}",
            details={"transport": settings.transport, "error_type": exc.__class__.__name__},
            server=settings.name,
            url=settings.endpoint,
        ) from exc


__all__ = [
    "DEFAULT_CONNECT_RETRIES",
    "DEFAULT_CONNECT_TIMEOUT",
    "InvalidToolArguments",
    "McpToolHandle",
    "Opener",
    "RemoteTool",
    "ToolCallFailed",
    "ToolHandle",
    "connect_tool_server",
]
