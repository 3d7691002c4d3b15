"""CLI gate that compares trusted tool schemas with live tool servers.

Exit codes: 0 when every server matches its catalog, 1 when any server has
drifted, 2 when a server could not be reached or the configuration is invalid.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Mapping, Sequence

from ..ai.mcp.catalog import SchemaCatalog
from ..ai.mcp.reconciler import AuditResult, AuditTarget, Connector, audit_servers
from ..ai.tools.errors import MalformedSchemaError
from ..services.settings import SettingsStore, ToolServerSettings
from ..utils.logging import configure_from_settings

EXIT_PASS = 0
EXIT_DRIFT = 1
EXIT_ERROR = 2

LOGGER = logging.getLogger(__name__)


class AuditConfigError(ValueError):
    """Raised when the audit configuration cannot be turned into targets."""


def main(argv: Sequence[str] | None = None, *, connector: Connector | None = None) -> int:
    parser = argparse.ArgumentParser(description="Audit tool servers for schema drift.")
    parser.add_argument(
        "--config",
        type=Path,
        help="JSON file listing servers and their catalogs. Defaults to the tool servers in settings.",
    )
    parser.add_argument("--settings", type=Path, help="Settings file to read when --config is omitted.")
    parser.add_argument("--server", action="append", default=[], help="Only audit the named server (repeatable).")
    parser.add_argument("--format", choices=("text", "json"), default="text", help="Report format.")
    parser.add_argument("--sequential", action="store_true", help="Audit servers one at a time.")
    parser.add_argument("--timeout", type=float, help="Connection timeout in seconds.")
    parser.add_argument("--retries", type=int, help="Connection attempts per server.")
    parser.add_argument("--verbose", action="store_true", help="Log progress to stderr.")
    parser.add_argument("--log-dir", type=Path, help="Also write a rotating log file to this directory.")
    args = parser.parse_args(argv)

    store = SettingsStore(args.settings) if args.settings else SettingsStore()
    settings = store.load()
    if args.verbose or args.log_dir or settings.debug_logging:
        configure_from_settings(settings, verbose=args.verbose, log_dir=args.log_dir)
    timeout = args.timeout if args.timeout is not None else settings.connect_timeout
    retries = args.retries if args.retries is not None else settings.connect_retries

    try:
        if args.config:
            targets = load_targets(args.config)
        else:
            targets = targets_from_settings(settings.tool_servers)
    except (AuditConfigError, MalformedSchemaError, OSError, json.JSONDecodeError) as exc:
        print(f"Invalid audit configuration: {exc}", file=sys.stderr)
        return EXIT_ERROR

    if args.server:
        wanted = set(args.server)
        targets = [target for target in targets if target.server.key in wanted or target.name in wanted]
    if not targets:
        print("No tool servers configured for audit.", file=sys.stderr)
        return EXIT_ERROR

    result = asyncio.run(
        audit_servers(
            targets,
            connector,
            concurrent=not args.sequential,
            timeout=timeout,
            retries=retries,
        )
    )

    if args.format == "json":
        print(json.dumps(result.as_dict(), indent=2))
    else:
        print(format_report(result))
    return exit_code(result)


def exit_code(result: AuditResult) -> int:
    if result.errors:
        return EXIT_ERROR
    if result.drifted:
        return EXIT_DRIFT
    return EXIT_PASS


def format_report(result: AuditResult) -> str:
    lines: list[str] = []
    for outcome in result.outcomes:
        lines.append(f"[{outcome.status.upper()}] {outcome.server}")
        if outcome.error is not None:
            lines.append(f"  error: {outcome.error.message}")
            continue
        report = outcome.report
        if report is None:
            continue
        lines.append(f"  live tools: {report.live_count}, trusted schemas: {report.catalog_count}")
        for name in report.missing:
            lines.append(f"  missing schema: {name}")
        for name in report.orphaned:
            lines.append(f"  orphaned schema: {name}")
        for item in report.malformed:
            lines.append(f"  malformed schema: {item.name} ({item.reason})")
    summary = "passed" if result.passed else "failed"
    lines.append(f"Audit {summary}: {len(result.outcomes)} server(s), "
                 f"{len(result.drifted)} drifted, {len(result.errors)} unreachable")
    return "\n".join(lines)


def load_targets(path: Path) -> list[AuditTarget]:
    """Read ``{"servers": {key: {..., "catalog": path | "tools": {...}}}}`` from ``path``."""

    payload = json.loads(path.read_text(encoding="utf-8"))
    servers = payload.get("servers") if isinstance(payload, Mapping) else None
    if not isinstance(servers, Mapping) or not servers:
        raise AuditConfigError(f"{path} must contain a non-empty 'servers' object")
    base_dir = path.parent
    targets: list[AuditTarget] = []
    for key, entry in servers.items():
        if not isinstance(entry, Mapping):
            raise AuditConfigError(f"Server '{key}' must be an object")
        server_fields = {name: value for name, value in entry.items() if name not in ("catalog", "tools")}
        if "catalog" in entry:
            server_fields["catalog_path"] = str(_resolve(base_dir, entry["catalog"]))
        try:
            server = ToolServerSettings.from_mapping(str(key), server_fields)
        except (TypeError, ValueError) as exc:
            raise AuditConfigError(str(exc)) from exc
        targets.append(AuditTarget(server=server, catalog=_catalog_for(server, entry)))
    return targets


def targets_from_settings(servers: Sequence[ToolServerSettings]) -> list[AuditTarget]:
    targets: list[AuditTarget] = []
    for server in servers:
        if not server.catalog_path:
            LOGGER.warning("Skipping %s: no catalog_path configured", server.name)
            continue
        catalog = SchemaCatalog.from_json_file(server.name, server.catalog_path)
        targets.append(AuditTarget(server=server, catalog=catalog))
    return targets


def _catalog_for(server: ToolServerSettings, entry: Mapping[str, Any]) -> SchemaCatalog:
    if "tools" in entry:
        return SchemaCatalog.from_mapping(server.name, entry["tools"])
    if server.catalog_path:
        return SchemaCatalog.from_json_file(server.name, server.catalog_path)
    raise AuditConfigError(f"Server '{server.key}' needs either 'catalog' or 'tools'")


def _resolve(base_dir: Path, value: Any) -> Path:
    candidate = Path(str(value)).expanduser()
    return candidate if candidate.is_absolute() else base_dir / candidate


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
