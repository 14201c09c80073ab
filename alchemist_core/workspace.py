"""Immutable session context: tables, rules, weights and modification times.

Every operation takes a ``Workspace`` and returns a new one. Validation and
allocation are recomputed from the current state on each call.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from . import allocator, validation
from .allocator import AllocationCandidate
from .rules import Rule, Weights, now_utc_iso
from .schemas import CLIENTS, ENTITIES, TASKS, WORKERS
from .validation import ValidationIssue

logger = logging.getLogger(__name__)

RULES_KEY = "rules"
WEIGHTS_KEY = "weights"


@dataclass(frozen=True)
class Workspace:
    clients: tuple[dict[str, Any], ...] = ()
    workers: tuple[dict[str, Any], ...] = ()
    tasks: tuple[dict[str, Any], ...] = ()
    rules: tuple[Rule, ...] = ()
    weights: Weights = field(default_factory=Weights)
    last_modified: Mapping[str, str] = field(default_factory=dict, hash=False)

    def table(self, entity: str) -> list[dict[str, Any]]:
        if entity not in ENTITIES:
            raise ValueError(f"Unknown entity: {entity!r}. Choose from {ENTITIES}")
        return [dict(row) for row in getattr(self, entity)]

    def counts(self) -> dict[str, int]:
        return {
            CLIENTS: len(self.clients),
            WORKERS: len(self.workers),
            TASKS: len(self.tasks),
            RULES_KEY: len(self.rules),
        }


def _touch(ws: Workspace, key: str, **changes: Any) -> Workspace:
    stamps = dict(ws.last_modified)
    stamps[key] = now_utc_iso()
    return replace(ws, last_modified=stamps, **changes)


def with_table(ws: Workspace, entity: str, rows: Iterable[Mapping[str, Any]]) -> Workspace:
    """Replace one table. Rows are copied so later caller edits do not leak in."""
    if entity not in ENTITIES:
        raise ValueError(f"Unknown entity: {entity!r}. Choose from {ENTITIES}")
    copied = tuple(dict(row) for row in rows)
    logger.info("Loaded %d %s rows", len(copied), entity)
    return _touch(ws, entity, **{entity: copied})


# ---------------------------------------------------------------------------
# Rule/weight store
# ---------------------------------------------------------------------------

def add_rule(ws: Workspace, rule: Rule) -> Workspace:
    return _touch(ws, RULES_KEY, rules=ws.rules + (rule,))


def remove_rule(ws: Workspace, index: int) -> Workspace:
    if not 0 <= index < len(ws.rules):
        raise IndexError(f"rule index out of range: {index} (have {len(ws.rules)} rules)")
    return _touch(ws, RULES_KEY, rules=ws.rules[:index] + ws.rules[index + 1:])


def set_weight(ws: Workspace, key: str, value: float) -> Workspace:
    return _touch(ws, WEIGHTS_KEY, weights=ws.weights.with_value(key, value))


def list_rules(ws: Workspace) -> list[Rule]:
    return list(ws.rules)


def current_weights(ws: Workspace) -> Weights:
    return ws.weights


# ---------------------------------------------------------------------------
# Recompute on demand
# ---------------------------------------------------------------------------

def validate_workspace(ws: Workspace) -> list[ValidationIssue]:
    return validation.validate(ws.clients, ws.workers, ws.tasks)


def preview_allocation(ws: Workspace, *, limit: int = allocator.MAX_CANDIDATES) -> list[AllocationCandidate]:
    return allocator.score(ws.clients, ws.workers, ws.tasks, ws.weights, limit=limit)


def apply_correction(ws: Workspace, entity: str, row_index: int, column: str, value: Any) -> Workspace:
    """Set one cell and return the updated workspace."""
    rows = ws.table(entity)
    if not 0 <= row_index < len(rows):
        raise IndexError(f"{entity} row index out of range: {row_index} (have {len(rows)} rows)")
    rows[row_index][column] = value
    return with_table(ws, entity, rows)
