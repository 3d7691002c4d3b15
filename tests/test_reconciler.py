"""Tests for schema drift reconciliation and auditing."""

from __future__ import annotations

import json

import pytest

from contextguard.ai.mcp.catalog import SchemaCatalog
from contextguard.ai.mcp.reconciler import (
    AuditResult,
    AuditTarget,
    ReconciliationSession,
    audit_servers,
    reconcile,
)
from contextguard.ai.tools.errors import SchemaDriftError, ToolServerConnectionError
from contextguard.services.telemetry import EventRecorder

OBJECT = {"inputSchema": {"type": "object"}}


def catalog_for(server: str, *names: str, malformed: tuple[str, ...] = ()) -> SchemaCatalog:
    tools = {name: OBJECT for name in names}
    tools.update({name: {"inputSchema": {"type": "string"}} for name in malformed})
    return SchemaCatalog.from_mapping(server, tools)


# -----------------------------------------------------------------------------
# Tests: reconcile
# -----------------------------------------------------------------------------


class TestReconcile:
    """Tests for the pure comparison."""

    def test_missing_and_orphaned(self) -> None:
        report = reconcile(catalog_for("docs", "a", "b", "d"), ["a", "b", "c"])
        assert report.missing == ("c",)
        assert report.orphaned == ("d",)
        assert report.malformed == ()
        assert report.passed is False

    def test_exact_match_passes(self) -> None:
        report = reconcile(catalog_for("docs", "a", "b"), ["b", "a"])
        assert report.passed is True
        assert report.live_count == 2
        assert report.catalog_count == 2

    def test_order_follows_sources(self) -> None:
        report = reconcile(catalog_for("docs", "z", "y", "x"), ["c", "b", "a"])
        assert report.missing == ("c", "b", "a")
        assert report.orphaned == ("z", "y", "x")

    def test_duplicate_live_names_reported_once(self) -> None:
        report = reconcile(catalog_for("docs"), ["c", "c"])
        assert report.missing == ("c",)

    def test_malformed_entry_fails_but_is_not_missing(self) -> None:
        report = reconcile(catalog_for("docs", "a", malformed=("b",)), ["a", "b"])
        assert report.missing == ()
        assert [item.name for item in report.malformed] == ["b"]
        assert report.passed is False

    def test_empty_server(self) -> None:
        report = reconcile(catalog_for("docs", "a"), [])
        assert report.orphaned == ("a",)

    def test_as_dict(self) -> None:
        data = reconcile(catalog_for("docs", "a", "d"), ["a", "c"]).as_dict()
        assert data["server"] == "docs"
        assert data["missing"] == ["c"]
        assert data["orphaned"] == ["d"]
        json.dumps(data)


# -----------------------------------------------------------------------------
# Tests: ReconciliationSession
# -----------------------------------------------------------------------------


class TestReconciliationSession:
    """Tests for handle ownership."""

    @pytest.mark.asyncio
    async def test_fetch_closes_handle(self, fake_connector_factory, server_factory) -> None:
        connector = fake_connector_factory({"docs": ["a", "b"]})
        async with ReconciliationSession(connector) as session:
            tools = await session.fetch_live_tools(server_factory("docs"))
            assert tools == ["a", "b"]
            assert session.open_handles == ()
        assert connector.handles[0].closed is True
        assert connector.handles[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_list_failure_closes_and_raises(self, fake_connector_factory, server_factory) -> None:
        connector = fake_connector_factory(
            {"docs": ["a"]},
            handle_options={"docs": {"list_error": RuntimeError("stream reset")}},
        )
        async with ReconciliationSession(connector) as session:
            with pytest.raises(ToolServerConnectionError) as exc_info:
                await session.fetch_live_tools(server_factory("docs"))
        assert exc_info.value.server == "docs"
        assert "stream reset" in exc_info.value.message
        assert connector.handles[0].closed is True

    @pytest.mark.asyncio
    async def test_close_failure_is_logged_not_raised(self, fake_connector_factory, server_factory, caplog) -> None:
        connector = fake_connector_factory(
            {"docs": ["a"]},
            handle_options={"docs": {"close_error": RuntimeError("already gone")}},
        )
        async with ReconciliationSession(connector) as session:
            assert await session.fetch_live_tools(server_factory("docs")) == ["a"]
        assert "Failed to close" in caplog.text

    @pytest.mark.asyncio
    async def test_open_handles_closed_on_exit(self, fake_connector_factory, server_factory) -> None:
        connector = fake_connector_factory({"docs": ["a"], "search": ["b"]})
        with pytest.raises(KeyError):
            async with ReconciliationSession(connector) as session:
                await session.open(server_factory("docs"))
                await session.open(server_factory("search"))
                assert len(session.open_handles) == 2
                raise KeyError("boom")
        assert all(handle.closed for handle in connector.handles)

    @pytest.mark.asyncio
    async def test_connector_errors_are_wrapped(self, server_factory) -> None:
        async def broken(_server):
            raise OSError("connection refused")

        async with ReconciliationSession(broken) as session:
            with pytest.raises(ToolServerConnectionError) as exc_info:
                await session.open(server_factory("docs"))
        assert exc_info.value.url == "https://docs.example.com/sse"

    @pytest.mark.asyncio
    async def test_closed_session_rejects_open(self, fake_connector_factory, server_factory) -> None:
        session = ReconciliationSession(fake_connector_factory({}))
        await session.aclose()
        with pytest.raises(RuntimeError):
            await session.open(server_factory("docs"))


# -----------------------------------------------------------------------------
# Tests: audit_servers
# -----------------------------------------------------------------------------


class TestAuditServers:
    """Tests for the multi-server audit."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("concurrent", [True, False])
    async def test_connection_error_is_isolated(self, fake_connector_factory, server_factory, concurrent) -> None:
        connector = fake_connector_factory({"docs": ["a", "b", "c"], "search": ["q"]}, unreachable={"offline"})
        targets = [
            AuditTarget(server_factory("docs"), catalog_for("docs", "a", "b", "d")),
            AuditTarget(server_factory("offline"), catalog_for("offline", "x")),
            AuditTarget(server_factory("search"), catalog_for("search", "q")),
        ]
        result = await audit_servers(targets, connector, concurrent=concurrent)

        assert [outcome.server for outcome in result.outcomes] == ["docs", "offline", "search"]
        assert [outcome.status for outcome in result.outcomes] == ["drift", "error", "pass"]
        docs = result.outcome_for("docs")
        assert docs.report.missing == ("c",)
        assert docs.report.orphaned == ("d",)
        assert isinstance(result.outcome_for("offline").error, ToolServerConnectionError)
        assert result.passed is False
        assert all(handle.closed for handle in connector.handles)

    @pytest.mark.asyncio
    async def test_all_pass(self, fake_connector_factory, server_factory) -> None:
        connector = fake_connector_factory({"docs": ["a"]})
        result = await audit_servers([AuditTarget(server_factory("docs"), catalog_for("docs", "a"))], connector)
        assert result.passed is True
        result.raise_for_drift()

    @pytest.mark.asyncio
    async def test_emits_event_per_server(self, fake_connector_factory, server_factory) -> None:
        connector = fake_connector_factory({"docs": ["a", "b"]}, unreachable={"offline"})
        targets = [
            AuditTarget(server_factory("docs"), catalog_for("docs", "a")),
            AuditTarget(server_factory("offline"), catalog_for("offline", "a")),
        ]
        with EventRecorder("schema_audit.server") as recorder:
            await audit_servers(targets, connector)
        events = {event["server"]: event for event in recorder.events()}
        assert events["docs"]["status"] == "drift"
        assert events["docs"]["missing"] == 1
        assert events["offline"]["status"] == "error"
        assert events["offline"]["missing"] == 0


class TestAuditResult:
    """Tests for AuditResult helpers."""

    @pytest.mark.asyncio
    async def test_raise_for_drift(self, fake_connector_factory, server_factory) -> None:
        connector = fake_connector_factory({"docs": ["a", "c"]})
        result = await audit_servers([AuditTarget(server_factory("docs"), catalog_for("docs", "a", "d"))], connector)
        with pytest.raises(SchemaDriftError) as exc_info:
            result.raise_for_drift()
        assert exc_info.value.server == "docs"
        assert tuple(exc_info.value.missing) == ("c",)
        assert tuple(exc_info.value.orphaned) == ("d",)

    def test_empty_result_passes(self) -> None:
        result = AuditResult()
        assert result.passed is True
        assert result.as_dict() == {"passed": True, "servers": []}
