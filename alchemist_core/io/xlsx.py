"""Render a workspace to a multi-sheet XLSX report."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from alchemist_core.schemas import CLIENTS, ENTITIES, TASKS, WORKERS, expected_columns
from alchemist_core.validation import ERROR, WARNING, summarize
from alchemist_core.workspace import Workspace, preview_allocation, validate_workspace

SHEET_TITLES = {
    CLIENTS: "Clients",
    WORKERS: "Workers",
    TASKS: "Tasks",
}

VALIDATION_COLS = ["entity", "row", "column", "severity", "message"]
PREVIEW_COLS = ["rank", "client", "task", "worker", "score", "reason"]
RULES_COLS = ["index", "type", "created", "description", "input", "tasks", "worker", "parameters", "ai_parsed"]

_ERROR_FILL = "F8CBAD"
_WARNING_FILL = "FFE699"


def _get_openpyxl():
    try:
        from openpyxl import Workbook
        from openpyxl.styles import Font, PatternFill
        return Workbook, Font, PatternFill
    except ImportError as exc:
        raise ImportError("openpyxl is required for XLSX export: pip install openpyxl") from exc


def _style_headers(worksheets):
    """Apply bold + blue fill to header row of each worksheet."""
    _, Font, PatternFill = _get_openpyxl()
    header_font = Font(bold=True)
    header_fill = PatternFill(start_color="D9E1F2", end_color="D9E1F2", fill_type="solid")
    for ws in worksheets:
        for cell in ws[1]:
            cell.font = header_font
            cell.fill = header_fill


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (list, dict, tuple)):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _table_columns(rows: list[dict[str, Any]], entity: str) -> list[str]:
    columns = list(expected_columns(entity))
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)
    return columns


def render_report_xlsx(ws: Workspace, path: Path) -> Path:
    """Render the workspace to an XLSX workbook.

    Sheets: Overview, Clients, Workers, Tasks, Validation, Allocation Preview, Rules.
    Cells with validation issues are shaded red (error) or amber (warning).
    """
    Workbook, Font, PatternFill = _get_openpyxl()
    path = Path(path)

    issues = validate_workspace(ws)
    candidates = preview_allocation(ws)
    summary = summarize(issues)

    wb = Workbook()

    # --- Overview sheet ---
    ws_overview = wb.active
    ws_overview.title = "Overview"
    ws_overview.append(["Field", "Value"])
    for field, value in ws.counts().items():
        ws_overview.append([field, value])
    ws_overview.append(["errors", summary["errors"]])
    ws_overview.append(["warnings", summary["warnings"]])
    for key, value in ws.weights.to_dict().items():
        ws_overview.append([f"weight.{key}", value])

    all_sheets = [ws_overview]

    # --- One sheet per table ---
    column_index: dict[str, dict[str, int]] = {}
    table_sheets = {}
    for entity in ENTITIES:
        rows = ws.table(entity)
        columns = _table_columns(rows, entity)
        column_index[entity] = {c: i + 1 for i, c in enumerate(columns)}
        sheet = wb.create_sheet(SHEET_TITLES[entity])
        sheet.append(columns)
        for row in rows:
            sheet.append([_cell(row.get(c)) for c in columns])
        table_sheets[entity] = sheet
        all_sheets.append(sheet)

    fills = {
        ERROR: PatternFill(start_color=_ERROR_FILL, end_color=_ERROR_FILL, fill_type="solid"),
        WARNING: PatternFill(start_color=_WARNING_FILL, end_color=_WARNING_FILL, fill_type="solid"),
    }
    flagged: dict[tuple[str, int, str], str] = {}
    for issue in issues:
        if issue.row_index is None or issue.column is None:
            continue
        key = (issue.entity, issue.row_index, issue.column)
        # errors win over warnings on the same cell
        if flagged.get(key) != ERROR:
            flagged[key] = issue.severity
    for (entity, row_index, column), severity in flagged.items():
        col = column_index.get(entity, {}).get(column)
        if col is not None:
            table_sheets[entity].cell(row=row_index + 2, column=col).fill = fills.get(severity, fills[WARNING])

    # --- Validation sheet ---
    ws_val = wb.create_sheet("Validation")
    ws_val.append(VALIDATION_COLS)
    for issue in issues:
        ws_val.append([
            issue.entity,
            issue.row_index + 1 if issue.row_index is not None else "",
            issue.column or "",
            issue.severity,
            issue.message,
        ])
    all_sheets.append(ws_val)

    # --- Allocation Preview sheet ---
    ws_alloc = wb.create_sheet("Allocation Preview")
    ws_alloc.append(PREVIEW_COLS)
    for rank, c in enumerate(candidates, start=1):
        ws_alloc.append([rank, c.client, c.task, c.worker, round(c.score, 4), c.reason])
    all_sheets.append(ws_alloc)

    # --- Rules sheet ---
    ws_rules = wb.create_sheet("Rules")
    ws_rules.append(RULES_COLS)
    for i, rule in enumerate(ws.rules):
        ws_rules.append([
            i,
            rule.type,
            rule.created,
            rule.description or "",
            rule.input or "",
            ", ".join(rule.tasks),
            rule.worker or "",
            _cell(rule.parameters) if rule.parameters else "",
            rule.ai_parsed,
        ])
    all_sheets.append(ws_rules)

    _style_headers(all_sheets)

    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(str(path))
    return path
