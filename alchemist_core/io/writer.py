"""Export tables as CSV and rules/weights as rules.json."""

from __future__ import annotations

import csv
import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from alchemist_core.rules import Rule, Weights
from alchemist_core.schemas import ENTITIES, expected_columns
from alchemist_core.workspace import Workspace

from .reader import RULES_FILE

logger = logging.getLogger(__name__)


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (list, dict, tuple)):
        return json.dumps(value, ensure_ascii=False)
    return value


def _columns(rows: list[dict[str, Any]]) -> list[str]:
    """Union of row keys in first-seen order."""
    seen: dict[str, None] = {}
    for row in rows:
        for key in row:
            seen.setdefault(key, None)
    return list(seen)


def export_csv(rows: Iterable[dict[str, Any]], path: Path, *, columns: list[str] | None = None) -> Path:
    """Write rows to CSV with a header. Nested values are JSON-encoded."""
    rows = list(rows)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fieldnames = columns or _columns(rows)

    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow({c: _cell(row.get(c)) for c in fieldnames})

    logger.debug("Wrote %d rows to %s", len(rows), path)
    return path


def _plain_number(value: float) -> float | int:
    return int(value) if float(value).is_integer() else value


def dump_rules_and_weights(rules: Iterable[Rule], weights: Weights) -> str:
    """Serialise rules and weights as the ``rules.json`` document (2-space indent)."""
    doc = {
        "rules": [r.to_dict() for r in rules],
        "weights": {k: _plain_number(v) for k, v in weights.to_dict().items()},
    }
    return json.dumps(doc, indent=2, ensure_ascii=False)


def write_workspace(ws: Workspace, directory: Path) -> dict[str, Path]:
    """Write ``clients.csv``, ``workers.csv``, ``tasks.csv`` and ``rules.json``.

    Returns ``{filename: Path}`` for every file written.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    written: dict[str, Path] = {}
    for entity in ENTITIES:
        rows = ws.table(entity)
        name = f"{entity}.csv"
        written[name] = export_csv(rows, directory / name, columns=_columns(rows) or expected_columns(entity))

    rules_path = directory / RULES_FILE
    rules_path.write_text(dump_rules_and_weights(ws.rules, ws.weights) + "\n", encoding="utf-8")
    written[RULES_FILE] = rules_path

    logger.info("Exported workspace to %s (%s)", directory, ", ".join(written))
    return written
