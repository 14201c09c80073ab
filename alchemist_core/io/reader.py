"""Read client/worker/task tables and rules.json into a Workspace."""

from __future__ import annotations

import csv
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

from alchemist_core.rules import Rule, Weights
from alchemist_core.schemas import ENTITIES
from alchemist_core.workspace import Workspace, with_table

logger = logging.getLogger(__name__)

TABLE_SUFFIXES = (".csv", ".xlsx", ".xlsm")
RULES_FILE = "rules.json"


def load_table(path: Path) -> list[dict[str, Any]]:
    """Read one CSV or XLSX file into a list of row dicts.

    XLSX: first sheet, first row is the header, empty cells become ``""``.
    Raises FileNotFoundError for a missing file and ValueError for an
    unsupported extension.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Table file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        rows = _read_csv(path)
    elif suffix in (".xlsx", ".xlsm"):
        rows = _read_xlsx(path)
    else:
        raise ValueError(f"Unsupported table format {suffix!r} for {path.name}; expected .csv or .xlsx")

    logger.debug("Read %d rows from %s", len(rows), path)
    return rows


def header_of(rows: list[dict[str, Any]]) -> list[str]:
    return list(rows[0].keys()) if rows else []


def remap_headers(rows: list[dict[str, Any]], headers: list[str]) -> list[dict[str, Any]]:
    """Relabel columns positionally: the i-th existing column becomes ``headers[i]``."""
    current = header_of(rows)
    if len(headers) != len(current):
        raise ValueError(f"Expected {len(current)} headers, got {len(headers)}")
    return [{new: row.get(old, "") for old, new in zip(current, headers)} for row in rows]


def find_table_file(directory: Path, entity: str) -> Path | None:
    for suffix in TABLE_SUFFIXES:
        candidate = Path(directory) / f"{entity}{suffix}"
        if candidate.exists():
            return candidate
    return None


def load_rules_and_weights(text: str) -> tuple[list[Rule], Weights]:
    """Parse an exported ``{"rules": [...], "weights": {...}}`` document.

    Raises ValueError when the document is not JSON, has the wrong shape or
    contains a rule of unknown type.
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("rules document must be a JSON object")
    raw_rules = data.get("rules") or []
    if not isinstance(raw_rules, list) or not all(isinstance(r, dict) for r in raw_rules):
        raise ValueError("'rules' must be a list of objects")
    weights = data.get("weights")
    if weights is not None and not isinstance(weights, dict):
        raise ValueError("'weights' must be an object")
    return [Rule.from_dict(r) for r in raw_rules], Weights.from_dict(weights)


def load_workspace(directory: Path, assistant: Any = None) -> Workspace:
    """Build a Workspace from ``clients``/``workers``/``tasks`` files and ``rules.json``.

    Missing table files leave that table empty. When an *assistant* is given,
    its ``map_headers`` relabels each table's columns before loading.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Data directory not found: {directory}")

    ws = Workspace()
    for entity in ENTITIES:
        path = find_table_file(directory, entity)
        if path is None:
            logger.info("No %s table in %s", entity, directory)
            continue
        rows = load_table(path)
        if assistant is not None and rows:
            rows = remap_headers(rows, assistant.map_headers(header_of(rows), entity))
        ws = with_table(ws, entity, rows)

    rules_path = directory / RULES_FILE
    if rules_path.exists():
        rules, weights = load_rules_and_weights(rules_path.read_text(encoding="utf-8"))
        ws = replace(ws, rules=tuple(rules), weights=weights)
        logger.info("Loaded %d rules from %s", len(rules), rules_path)

    return ws


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _read_csv(path: Path) -> list[dict[str, str]]:
    with open(path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        return [
            {key: ("" if value is None else value) for key, value in row.items() if key is not None}
            for row in reader
        ]


def _read_xlsx(path: Path) -> list[dict[str, Any]]:
    from openpyxl import load_workbook

    wb = load_workbook(str(path), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        rows_iter = ws.iter_rows(values_only=True)
        header = next(rows_iter, None)
        if not header:
            return []
        columns = [str(h).strip() if h is not None else f"Column{i + 1}" for i, h in enumerate(header)]
        rows = []
        for values in rows_iter:
            if values is None or all(v is None or v == "" for v in values):
                continue
            padded = list(values) + [None] * (len(columns) - len(values))
            rows.append({col: ("" if v is None else v) for col, v in zip(columns, padded)})
        return rows
    finally:
        wb.close()
