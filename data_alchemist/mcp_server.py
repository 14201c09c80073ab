"""data-alchemist MCP server.

Exposes tools to load client/worker/task tables, validate them, manage
allocation rules and priority weights, preview allocations, use the
assistant for search, bulk edits and rule suggestions, and export results.
One workspace is held per server process and replaced on every change.
"""
from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from alchemist_core import workspace as store
from alchemist_core.allocator import worker_load_overview
from alchemist_core.assistant import HeuristicAssistant
from alchemist_core.io import (
    load_table as _load_table,
    load_workspace,
    remap_headers,
    render_report_xlsx,
    write_workspace,
)
from alchemist_core.io.reader import header_of
from alchemist_core.rules import RuleSuggestion, make_rule
from alchemist_core.schemas import ENTITIES
from alchemist_core.validation import summarize
from alchemist_core.workspace import Workspace

from .config import build_assistant, load_env, runtime_config

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "data-alchemist",
    host=os.getenv("HOST", "127.0.0.1"),
    port=int(os.getenv("PORT", "8000")),
    instructions=(
        "Data curation workspace for client, worker and task tables. "
        "Load tables, validate them, keep allocation rules and priority weights, "
        "and preview a ranked task-to-worker allocation. "
        "Assistant tools fall back to deterministic heuristics when no model is configured."
    ),
)

_ENV_FILE: str | None = None
_WORKSPACE = Workspace()
_ASSISTANT: HeuristicAssistant | None = None
_SUGGESTIONS: list[RuleSuggestion] = []


def _env() -> None:
    load_env(_ENV_FILE or os.getenv("ALCHEMIST_ENV_FILE"))


def _assistant() -> HeuristicAssistant:
    global _ASSISTANT
    if _ASSISTANT is None:
        _env()
        _ASSISTANT = build_assistant()
    return _ASSISTANT


def _commit(ws: Workspace) -> Workspace:
    global _WORKSPACE
    _WORKSPACE = ws
    return ws


def _check_entity(entity: str) -> str:
    if entity not in ENTITIES:
        raise ValueError(f"Unknown entity: {entity!r}. Choose from {ENTITIES}")
    return entity


def _with_notice(result: dict[str, Any], assistant: HeuristicAssistant) -> dict[str, Any]:
    if assistant.last_notice:
        result["notice"] = assistant.last_notice
    return result


def _state(ws: Workspace) -> dict[str, Any]:
    return {
        "counts": ws.counts(),
        "validation": summarize(store.validate_workspace(ws)),
        "last_modified": dict(ws.last_modified),
    }


# -- Loading --

@mcp.tool()
def load_tables(directory: str | None = None, map_headers: bool = True) -> dict[str, Any]:
    """Load clients, workers and tasks (.csv or .xlsx) plus optional rules.json from a directory.

    Uses ALCHEMIST_DATA_DIR when directory is omitted. Replaces the current workspace.
    """
    _env()
    target = Path(directory) if directory else runtime_config().data_dir
    assistant = _assistant()
    ws = _commit(load_workspace(target, assistant=assistant if map_headers else None))
    _SUGGESTIONS.clear()
    return _with_notice({"directory": str(target), **_state(ws)}, assistant)


@mcp.tool()
def load_table(entity: str, path: str, map_headers: bool = True) -> dict[str, Any]:
    """Load one table file (clients, workers or tasks) and replace that table."""
    _check_entity(entity)
    assistant = _assistant()
    rows = _load_table(Path(path))
    original = header_of(rows)
    if map_headers and rows:
        rows = remap_headers(rows, assistant.map_headers(original, entity))
    ws = _commit(store.with_table(_WORKSPACE, entity, rows))
    return _with_notice({
        "entity": entity,
        "rows": len(rows),
        "headers": header_of(rows),
        "original_headers": original,
        **_state(ws),
    }, assistant)


# -- Validation and allocation --

@mcp.tool()
def validate_tables(entity: str | None = None) -> dict[str, Any]:
    """Validate the loaded tables. Optionally restrict the returned issues to one entity."""
    issues = store.validate_workspace(_WORKSPACE)
    if entity is not None:
        _check_entity(entity)
        issues = [i for i in issues if i.entity == entity]
    return {"summary": summarize(issues), "issues": [i.to_dict() for i in issues]}


@mcp.tool()
def preview_allocation(limit: int = 20) -> dict[str, Any]:
    """Rank client/task/worker pairings by the current weights (top 20 by default)."""
    candidates = store.preview_allocation(_WORKSPACE, limit=limit)
    return {
        "weights": _WORKSPACE.weights.to_dict(),
        "candidates": [c.to_dict() for c in candidates],
        "worker_load": worker_load_overview(candidates),
    }


@mcp.tool()
def review_with_model(entity: str) -> dict[str, Any]:
    """Ask the assistant for advisory findings on one table. Does not replace validate_tables."""
    _check_entity(entity)
    assistant = _assistant()
    findings = assistant.validate_with_external_model(_WORKSPACE.table(entity), entity)
    return _with_notice({"entity": entity, "findings": [f.to_dict() for f in findings]}, assistant)


# -- Rules and weights --

def _rules_payload(ws: Workspace) -> list[dict[str, Any]]:
    return [{"index": i, **r.to_dict()} for i, r in enumerate(store.list_rules(ws))]


@mcp.tool()
def list_rules() -> list[dict[str, Any]]:
    """List allocation rules in insertion order with their indices."""
    return _rules_payload(_WORKSPACE)


@mcp.tool()
def add_rule(rule_type: str, text: str = "") -> list[dict[str, Any]]:
    """Append a rule. freeForm rules store text as description, other types as input."""
    ws = _commit(store.add_rule(_WORKSPACE, make_rule(rule_type, text)))
    return _rules_payload(ws)


@mcp.tool()
def add_rule_from_text(text: str) -> dict[str, Any]:
    """Parse a natural-language rule with the assistant and append it."""
    if not text.strip():
        raise ValueError("rule text is empty")
    assistant = _assistant()
    context = {entity: _WORKSPACE.table(entity) for entity in ENTITIES}
    rule = assistant.parse_rule(text, context)
    ws = _commit(store.add_rule(_WORKSPACE, rule))
    return _with_notice({"rule": rule.to_dict(), "rules": _rules_payload(ws)}, assistant)


@mcp.tool()
def remove_rule(index: int) -> list[dict[str, Any]]:
    """Remove the rule at index."""
    ws = _commit(store.remove_rule(_WORKSPACE, index))
    return _rules_payload(ws)


@mcp.tool()
def set_weight(key: str, value: float) -> dict[str, float]:
    """Set one priority weight (0-100). Keys: priorityLevel, requestedTaskFulfillment, fairness, cost, workload."""
    ws = _commit(store.set_weight(_WORKSPACE, key, value))
    return store.current_weights(ws).to_dict()


@mcp.tool()
def current_weights() -> dict[str, float]:
    """Return the current priority weights."""
    return store.current_weights(_WORKSPACE).to_dict()


@mcp.tool()
def recommend_rules() -> dict[str, Any]:
    """Suggest rules from patterns in the loaded data. Accept one with accept_suggestion."""
    assistant = _assistant()
    suggestions = assistant.recommend_rules(_WORKSPACE.clients, _WORKSPACE.workers, _WORKSPACE.tasks)
    _SUGGESTIONS[:] = suggestions
    return _with_notice({
        "suggestions": [{"index": i, **s.to_dict()} for i, s in enumerate(suggestions)],
    }, assistant)


@mcp.tool()
def accept_suggestion(index: int) -> list[dict[str, Any]]:
    """Append the suggestion at index (from the last recommend_rules call) as a rule."""
    if not 0 <= index < len(_SUGGESTIONS):
        raise IndexError(f"suggestion index out of range: {index} (have {len(_SUGGESTIONS)})")
    suggestion = _SUGGESTIONS.pop(index)
    ws = _commit(store.add_rule(_WORKSPACE, suggestion.to_rule()))
    return _rules_payload(ws)


# -- Assistant data tools --

@mcp.tool()
def search_rows(entity: str, query: str) -> dict[str, Any]:
    """Filter one table with a natural-language query, e.g. 'priority high' or 'Duration > 2'."""
    _check_entity(entity)
    assistant = _assistant()
    rows = assistant.query_data(query, _WORKSPACE.table(entity), entity)
    return _with_notice({"entity": entity, "count": len(rows), "rows": rows}, assistant)


@mcp.tool()
def modify_rows(entity: str, command: str, apply: bool = False) -> dict[str, Any]:
    """Run a bulk edit command such as 'increase priority'. Preview only unless apply is true."""
    _check_entity(entity)
    assistant = _assistant()
    before = _WORKSPACE.table(entity)
    after = assistant.modify_data(command, before)
    changed = sum(1 for a, b in zip(before, after) if a != b)
    if apply and changed:
        _commit(store.with_table(_WORKSPACE, entity, after))
    return _with_notice({
        "entity": entity,
        "applied": bool(apply and changed),
        "changed_rows": changed,
        "rows": after,
    }, assistant)


@mcp.tool()
def suggest_corrections(entity: str) -> dict[str, Any]:
    """Suggest cell corrections for one table. Apply one with apply_correction."""
    _check_entity(entity)
    assistant = _assistant()
    corrections = assistant.suggest_corrections(_WORKSPACE.table(entity), entity)
    return _with_notice({"entity": entity, "corrections": [c.to_dict() for c in corrections]}, assistant)


@mcp.tool()
def apply_correction(entity: str, row_index: int, column: str, value: str | int | float) -> dict[str, Any]:
    """Set one cell (0-based row index) and return the updated row and validation summary."""
    _check_entity(entity)
    ws = _commit(store.apply_correction(_WORKSPACE, entity, row_index, column, value))
    return {"row": ws.table(entity)[row_index], **_state(ws)}


# -- Export --

@mcp.tool()
def export_workspace(directory: str | None = None) -> dict[str, str]:
    """Write clients.csv, workers.csv, tasks.csv and rules.json. Defaults to ALCHEMIST_EXPORT_DIR."""
    _env()
    target = Path(directory) if directory else runtime_config().export_dir
    return {name: str(p) for name, p in write_workspace(_WORKSPACE, target).items()}


@mcp.tool()
def export_report(path: str | None = None) -> dict[str, str]:
    """Render an XLSX report with the tables, validation issues and allocation preview."""
    _env()
    target = Path(path) if path else runtime_config().export_dir / "report.xlsx"
    return {"path": str(render_report_xlsx(_WORKSPACE, target))}


# -- Server entrypoints --

async def _run_http() -> None:
    import uvicorn
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.responses import JSONResponse, PlainTextResponse
    from starlette.routing import Route

    api_key = os.getenv("MCP_API_KEY")

    class BearerAuth(BaseHTTPMiddleware):
        async def dispatch(self, request, call_next):
            if request.url.path == "/health":
                return await call_next(request)
            auth = request.headers.get("authorization", "")
            if not auth.startswith("Bearer ") or auth[7:] != api_key:
                return JSONResponse({"error": "unauthorized"}, status_code=401)
            return await call_next(request)

    starlette_app = mcp.streamable_http_app()

    if api_key:
        starlette_app.add_middleware(BearerAuth)

    starlette_app.routes.append(
        Route("/health", lambda r: PlainTextResponse("ok"))
    )

    config = uvicorn.Config(
        starlette_app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
        log_level=runtime_config().log_level.lower(),
    )
    await uvicorn.Server(config).serve()


def main() -> None:
    global _ENV_FILE

    parser = argparse.ArgumentParser(description="Run data-alchemist MCP server")
    parser.add_argument("--env-file", default=None, help="Path to .env file")
    parser.add_argument(
        "--transport",
        default=None,
        choices=["stdio", "sse", "streamable-http"],
        help="MCP transport (default: streamable-http when PORT is set, else stdio)",
    )
    args = parser.parse_args()
    _ENV_FILE = args.env_file
    _env()

    logging.basicConfig(
        level=runtime_config().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    transport = args.transport
    if transport is None:
        transport = "streamable-http" if os.getenv("PORT") else "stdio"

    if transport == "streamable-http":
        import anyio
        anyio.run(_run_http)
    else:
        mcp.run(transport=transport)


if __name__ == "__main__":
    main()
