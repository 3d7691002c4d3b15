"""Drift detection between trusted tool schemas and live tool servers.

``reconcile`` is a pure comparison. :class:`ReconciliationSession` owns the
connections needed to fetch live tool lists, and :func:`audit_servers` runs
one reconciliation per configured server.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Mapping, Sequence

from ...services import telemetry as telemetry_service
from ...services.settings import ToolServerSettings
from ..tools.errors import SchemaDriftError, ToolServerConnectionError
from .catalog import MalformedSchema, SchemaCatalog
from .transport import ToolHandle, connect_tool_server

LOGGER = logging.getLogger(__name__)

Connector = Callable[[ToolServerSettings], Awaitable[ToolHandle]]


# -----------------------------------------------------------------------------
# Pure comparison
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ReconciliationReport:
    """Differences between a server's live tools and its trusted catalog."""

    server: str
    missing: tuple[str, ...] = ()
    orphaned: tuple[str, ...] = ()
    malformed: tuple[MalformedSchema, ...] = ()
    live_count: int = 0
    catalog_count: int = 0

    @property
    def passed(self) -> bool:
        return not (self.missing or self.orphaned or self.malformed)

    def as_dict(self) -> dict[str, Any]:
        return {
            "server": self.server,
            "passed": self.passed,
            "missing": list(self.missing),
            "orphaned": list(self.orphaned),
            "malformed": [item.as_dict() for item in self.malformed],
            "live_count": self.live_count,
            "catalog_count": self.catalog_count,
        }


def reconcile(catalog: SchemaCatalog, live_tools: Iterable[str]) -> ReconciliationReport:
    """Compare ``live_tools`` against ``catalog``.

    ``missing`` lists live tools with no trusted schema, in live order.
    ``orphaned`` lists trusted schemas the server no longer exposes, in catalog
    order. Malformed catalog entries are reported separately and still count as
    known names.
    """

    live: list[str] = []
    for name in live_tools:
        if name not in live:
            live.append(name)
    known = catalog.names()
    known_set = set(known)
    live_set = set(live)
    return ReconciliationReport(
        server=catalog.server,
        missing=tuple(name for name in live if name not in known_set),
        orphaned=tuple(name for name in known if name not in live_set),
        malformed=tuple(catalog.malformed),
        live_count=len(live),
        catalog_count=len(known),
    )


# -----------------------------------------------------------------------------
# Audit results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class AuditTarget:
    """A server to audit together with its trusted catalog."""

    server: ToolServerSettings
    catalog: SchemaCatalog

    @property
    def name(self) -> str:
        return self.server.name


@dataclass(slots=True, frozen=True)
class ServerAuditOutcome:
    """Result of auditing one server: a report, or the connection error that prevented it."""

    server: str
    report: ReconciliationReport | None = None
    error: ToolServerConnectionError | None = None
    duration_ms: float = 0.0

    @property
    def status(self) -> str:
        if self.error is not None:
            return "error"
        return "pass" if self.report is not None and self.report.passed else "drift"

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "server": self.server,
            "status": self.status,
            "duration_ms": round(self.duration_ms, 3),
        }
        if self.report is not None:
            payload["report"] = self.report.as_dict()
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        return payload


@dataclass(slots=True, frozen=True)
class AuditResult:
    """Outcomes for every audited server, in input order."""

    outcomes: tuple[ServerAuditOutcome, ...] = field(default_factory=tuple)

    @property
    def passed(self) -> bool:
        return all(outcome.status == "pass" for outcome in self.outcomes)

    @property
    def drifted(self) -> tuple[ServerAuditOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if outcome.status == "drift")

    @property
    def errors(self) -> tuple[ServerAuditOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if outcome.status == "error")

    def outcome_for(self, server: str) -> ServerAuditOutcome | None:
        for outcome in self.outcomes:
            if outcome.server == server:
                return outcome
        return None

    def raise_for_drift(self) -> None:
        """Raise :class:`SchemaDriftError` for the first drifted server, if any."""

        for outcome in self.drifted:
            report = outcome.report
            assert report is not None
            raise SchemaDriftError(
                message=f"Tool schemas for server '{report.server}' have drifted",
                details=report.as_dict(),
                server=report.server,
                missing=report.missing,
                orphaned=report.orphaned,
                malformed=tuple(item.name for item in report.malformed),
            )

    def as_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "servers": [outcome.as_dict() for outcome in self.outcomes],
        }


# -----------------------------------------------------------------------------
# Session
# -----------------------------------------------------------------------------


class ReconciliationSession:
    """Owns the tool server handles opened during an audit.

    Example:
        async with ReconciliationSession() as session:
            report = await session.reconcile_server(server, catalog)
    """

    def __init__(
        self,
        connector: Connector | None = None,
        *,
        timeout: float | None = None,
        retries: int | None = None,
    ) -> None:
        self._connector = connector or self._default_connector(timeout, retries)
        self._handles: list[ToolHandle] = []
        self._closed = False

    async def __aenter__(self) -> "ReconciliationSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @property
    def open_handles(self) -> tuple[ToolHandle, ...]:
        return tuple(self._handles)

    async def open(self, server: ToolServerSettings) -> ToolHandle:
        """Connect to ``server``; the handle stays open until :meth:`aclose`."""

        if self._closed:
            raise RuntimeError("ReconciliationSession is closed")
        try:
            handle = await self._connector(server)
        except ToolServerConnectionError:
            raise
        except Exception as exc:
            raise ToolServerConnectionError(
                message=f"Failed to connect to tool server '{server.name}': {exc}",
                details={"error_type": exc.__class__.__name__},
                server=server.name,
                url=server.endpoint,
            ) from exc
        self._handles.append(handle)
        return handle

    @asynccontextmanager
    async def connection(self, server: ToolServerSettings) -> AsyncIterator[ToolHandle]:
        """Open ``server`` for the duration of the block, closing it in the same task."""

        handle = await self.open(server)
        try:
            yield handle
        finally:
            await self._close_handle(handle)

    async def fetch_live_tools(self, server: ToolServerSettings) -> list[str]:
        async with self.connection(server) as handle:
            try:
                return list(await handle.list_tool_names())
            except Exception as exc:
                raise ToolServerConnectionError(
                    message=f"Failed to list tools on '{server.name}': {exc}",
                    details={"error_type": exc.__class__.__name__},
                    server=server.name,
                    url=server.endpoint,
                ) from exc

    async def reconcile_server(self, server: ToolServerSettings, catalog: SchemaCatalog) -> ReconciliationReport:
        live = await self.fetch_live_tools(server)
        return reconcile(catalog, live)

    async def aclose(self) -> None:
        self._closed = True
        while self._handles:
            await self._close_handle(self._handles[-1])

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _close_handle(self, handle: ToolHandle) -> None:
        if handle in self._handles:
            self._handles.remove(handle)
        try:
            await handle.close()
        except Exception:
            LOGGER.warning("Failed to close tool server handle %s", getattr(handle, "server", handle), exc_info=True)

    @staticmethod
    def _default_connector(timeout: float | None, retries: int | None) -> Connector:
        async def connect(server: ToolServerSettings) -> ToolHandle:
            kwargs: dict[str, Any] = {}
            if timeout is not None:
                kwargs["timeout"] = timeout
            if retries is not None:
                kwargs["retries"] = retries
            return await connect_tool_server(server, **kwargs)

        return connect


# -----------------------------------------------------------------------------
# Audit entry point
# -----------------------------------------------------------------------------


async def audit_servers(
    targets: Sequence[AuditTarget],
    connector: Connector | None = None,
    *,
    concurrent: bool = True,
    timeout: float | None = None,
    retries: int | None = None,
    telemetry_emitter: Callable[[str, Mapping[str, Any]], Any] | None = None,
) -> AuditResult:
    """Reconcile every target, isolating connection failures per server."""

    emit = telemetry_emitter or telemetry_service.emit

    async with ReconciliationSession(connector, timeout=timeout, retries=retries) as session:

        async def audit_one(target: AuditTarget) -> ServerAuditOutcome:
            start = time.perf_counter()
            try:
                report = await session.reconcile_server(target.server, target.catalog)
            except ToolServerConnectionError as exc:
                outcome = ServerAuditOutcome(
                    server=target.name,
                    error=exc,
                    duration_ms=(time.perf_counter() - start) * 1000,
                )
                LOGGER.warning(
                    "Schema audit for %s could not connect: %s",
                    target.name,
                    exc.message,
                    extra={"server": target.name},
                )
            else:
                outcome = ServerAuditOutcome(
                    server=target.name,
                    report=report,
                    duration_ms=(time.perf_counter() - start) * 1000,
                )
                if report.passed:
                    LOGGER.info(
                        "Schema audit for %s passed (%d tools)",
                        target.name,
                        report.live_count,
                        extra={"server": target.name},
                    )
                else:
                    LOGGER.warning(
                        "Schema audit for %s found drift: missing=%s orphaned=%s malformed=%s",
                        target.name,
                        list(report.missing),
                        list(report.orphaned),
                        [item.name for item in report.malformed],
                        extra={"server": target.name},
                    )
            audited = outcome.report
            emit(
                "schema_audit.server",
                {
                    "server": outcome.server,
                    "status": outcome.status,
                    "missing": len(audited.missing) if audited is not None else 0,
                    "orphaned": len(audited.orphaned) if audited is not None else 0,
                    "malformed": len(audited.malformed) if audited is not None else 0,
                    "duration_ms": round(outcome.duration_ms, 3),
                },
            )
            return outcome

        if concurrent:
            outcomes = await asyncio.gather(*(audit_one(target) for target in targets))
        else:
            outcomes = [await audit_one(target) for target in targets]

    return AuditResult(outcomes=tuple(outcomes))


__all__ = [
    "AuditResult",
    "AuditTarget",
    "Connector",
    "ReconciliationReport",
    "ReconciliationSession",
    "ServerAuditOutcome",
    "audit_servers",
    "reconcile",
]
