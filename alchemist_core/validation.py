"""Validation engine for the client/worker/task tables.

``validate()`` runs an ordered battery of independent checks and returns a
flat list of ``ValidationIssue`` records. Structural checks look at one table
at a time; referential checks compare tables against each other.

``validate()`` never raises. Missing columns and non-mapping rows are
skipped, and a check that raises is logged and the remaining checks still run.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable, Mapping
from dataclasses import asdict, dataclass
from typing import Any

from .fields import (
    SLOTS_NON_POSITIVE,
    SLOTS_NOT_ARRAY,
    SLOTS_NOT_JSON,
    decode_slot_list,
    format_number,
    is_integral,
    parse_json_blob,
    parse_phase_set,
    parse_slot_array,
    split_tags,
    to_number,
)
from .schemas import (
    CLIENTS,
    ENTITIES,
    EXPECTED_COLUMNS,
    GROUP_TAGS,
    ID_COLUMNS,
    ID_PREFIXES,
    PRIORITY_MAX,
    PRIORITY_MIN,
    TASKS,
    WORKERS,
    id_matches,
)

logger = logging.getLogger(__name__)

ERROR = "error"
WARNING = "warning"

Row = Mapping[str, Any]


@dataclass(frozen=True)
class ValidationIssue:
    entity: str
    row_index: int | None
    message: str
    severity: str = ERROR
    column: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


SLOT_FAILURE_MESSAGES = {
    SLOTS_NOT_JSON: "Malformed AvailableSlots (should be JSON array)",
    SLOTS_NOT_ARRAY: "AvailableSlots must be a JSON array",
    SLOTS_NON_POSITIVE: "AvailableSlots must contain only positive numbers",
}


# ---- Row access helpers ----------------------------------------------------

def _rows(table: Iterable[Any] | None) -> list[Row]:
    """Normalise a table to a list of mappings, keeping row positions."""
    if table is None or isinstance(table, (str, bytes, Mapping)):
        return []
    try:
        items = list(table)
    except TypeError:
        logger.warning("Ignoring table of type %s: not iterable", type(table).__name__)
        return []
    return [row if isinstance(row, Mapping) else {} for row in items]


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _skill_set(row: Row, column: str) -> set[str]:
    return set(split_tags(row.get(column)))


# ---- Structural checks -----------------------------------------------------

def _check_required_columns(entity: str, rows: list[Row]) -> list[ValidationIssue]:
    if not rows:
        return []
    present = set(rows[0].keys())
    return [
        ValidationIssue(entity, None, f"Missing required column: {col}", column=col)
        for col in EXPECTED_COLUMNS[entity]
        if col not in present
    ]


def _check_duplicate_ids(entity: str, rows: list[Row]) -> list[ValidationIssue]:
    id_col = ID_COLUMNS[entity]
    seen: set[str] = set()
    issues = []
    for i, row in enumerate(rows):
        key = _text(row.get(id_col))
        if not key:
            continue
        if key in seen:
            issues.append(ValidationIssue(entity, i, f"Duplicate ID: {key}", column=id_col))
        seen.add(key)
    return issues


def _check_id_format(entity: str, rows: list[Row]) -> list[ValidationIssue]:
    id_col = ID_COLUMNS[entity]
    prefix = ID_PREFIXES[entity]
    issues = []
    for i, row in enumerate(rows):
        if id_col not in row:
            continue
        value = row.get(id_col)
        if not id_matches(entity, value):
            issues.append(ValidationIssue(
                entity, i,
                f"Invalid {id_col} '{_text(value)}' (expected {prefix}<digits>)",
                column=id_col,
            ))
    return issues


def _check_available_slots(rows: list[Row]) -> list[ValidationIssue]:
    issues = []
    for i, row in enumerate(rows):
        if "AvailableSlots" not in row:
            continue
        parsed = parse_slot_array(row.get("AvailableSlots"))
        if not parsed.ok:
            issues.append(ValidationIssue(
                WORKERS, i, SLOT_FAILURE_MESSAGES[parsed.failure], column="AvailableSlots",
            ))
    return issues


def _check_integer_range(
    entity: str,
    rows: list[Row],
    column: str,
    *,
    minimum: int,
    maximum: int | None,
    message: str,
) -> list[ValidationIssue]:
    issues = []
    for i, row in enumerate(rows):
        if column not in row:
            continue
        value = to_number(row.get(column))
        in_range = (
            value is not None
            and is_integral(value)
            and value >= minimum
            and (maximum is None or value <= maximum)
        )
        if not in_range:
            issues.append(ValidationIssue(entity, i, message, column=column))
    return issues


def _check_attributes_json(rows: list[Row]) -> list[ValidationIssue]:
    issues = []
    for i, row in enumerate(rows):
        value = row.get("AttributesJSON")
        if isinstance(value, str) and not parse_json_blob(value):
            issues.append(ValidationIssue(
                CLIENTS, i, "Malformed JSON in AttributesJSON", column="AttributesJSON",
            ))
    return issues


def _check_client_names(rows: list[Row]) -> list[ValidationIssue]:
    return [
        ValidationIssue(CLIENTS, i, "ClientName must not be empty", column="ClientName")
        for i, row in enumerate(rows)
        if "ClientName" in row and not _text(row.get("ClientName"))
    ]


def _check_preferred_phases(rows: list[Row]) -> list[ValidationIssue]:
    return [
        ValidationIssue(
            TASKS, i,
            "PreferredPhases must be a JSON array, a range like 1-3, "
            "or a comma list of positive phase numbers",
            column="PreferredPhases",
        )
        for i, row in enumerate(rows)
        if "PreferredPhases" in row and not parse_phase_set(row.get("PreferredPhases"))
    ]


def _check_group_tags(rows: list[Row]) -> list[ValidationIssue]:
    allowed = ", ".join(GROUP_TAGS)
    issues = []
    for i, row in enumerate(rows):
        if "GroupTag" not in row:
            continue
        tag = _text(row.get("GroupTag"))
        if tag not in GROUP_TAGS:
            issues.append(ValidationIssue(
                CLIENTS, i, f"GroupTag '{tag}' is not one of {allowed}",
                severity=WARNING, column="GroupTag",
            ))
    return issues


# ---- Cross-table checks ----------------------------------------------------

def _check_unknown_task_refs(clients: list[Row], tasks: list[Row]) -> list[ValidationIssue]:
    if not tasks:
        return []
    known = {_text(t.get("TaskID")) for t in tasks}
    issues = []
    for i, row in enumerate(clients):
        for ref in split_tags(row.get("RequestedTaskIDs")):
            if ref not in known:
                issues.append(ValidationIssue(
                    CLIENTS, i, f"Unknown TaskID referenced: {ref}", column="RequestedTaskIDs",
                ))
    return issues


def _check_task_ref_format(clients: list[Row]) -> list[ValidationIssue]:
    issues = []
    for i, row in enumerate(clients):
        for ref in split_tags(row.get("RequestedTaskIDs")):
            if not id_matches(TASKS, ref):
                issues.append(ValidationIssue(
                    CLIENTS, i,
                    f"Malformed TaskID in RequestedTaskIDs: {ref} (expected T<digits>)",
                    column="RequestedTaskIDs",
                ))
    return issues


def _check_skill_coverage(workers: list[Row], tasks: list[Row]) -> list[ValidationIssue]:
    if not workers:
        return []
    covered: set[str] = set()
    for w in workers:
        covered |= _skill_set(w, "Skills")

    issues = []
    for i, row in enumerate(tasks):
        missing = list(dict.fromkeys(
            s for s in split_tags(row.get("RequiredSkills")) if s not in covered
        ))
        if missing:
            issues.append(ValidationIssue(
                TASKS, i,
                f"No worker covers required skill(s): {', '.join(missing)}",
                column="RequiredSkills",
            ))
    return issues


def _check_max_concurrency(workers: list[Row], tasks: list[Row]) -> list[ValidationIssue]:
    if not workers:
        return []
    skill_sets = [_skill_set(w, "Skills") for w in workers]
    issues = []
    for i, row in enumerate(tasks):
        cap = to_number(row.get("MaxConcurrent"))
        if cap is None:
            continue
        required = _skill_set(row, "RequiredSkills")
        qualified = sum(1 for skills in skill_sets if required <= skills)
        if cap > qualified:
            issues.append(ValidationIssue(
                TASKS, i,
                f"MaxConcurrent ({format_number(cap)}) exceeds qualified workers ({qualified})",
                severity=WARNING, column="MaxConcurrent",
            ))
    return issues


def _check_overloaded_workers(workers: list[Row]) -> list[ValidationIssue]:
    issues = []
    for i, row in enumerate(workers):
        slots = decode_slot_list(row.get("AvailableSlots"))
        load = to_number(row.get("MaxLoadPerPhase"))
        if slots is None or load is None:
            continue
        if load > len(slots):
            issues.append(ValidationIssue(
                WORKERS, i,
                f"MaxLoadPerPhase ({format_number(load)}) exceeds available slots ({len(slots)})",
                severity=WARNING, column="MaxLoadPerPhase",
            ))
    return issues


def _check_phase_saturation(workers: list[Row], tasks: list[Row]) -> list[ValidationIssue]:
    capacity: dict[float, float] = defaultdict(float)
    for w in workers:
        parsed = parse_slot_array(w.get("AvailableSlots"))
        if not parsed.ok:
            continue
        load = to_number(w.get("MaxLoadPerPhase")) or 0.0
        for phase in set(parsed.slots):
            capacity[phase] += load

    demand_rows = [
        (parse_phase_set(t.get("PreferredPhases")), to_number(t.get("Duration")) or 0.0)
        for t in tasks
    ]

    issues = []
    for phase in sorted(capacity):
        demand = sum(duration for phases, duration in demand_rows if phase in phases)
        if demand > capacity[phase]:
            issues.append(ValidationIssue(
                TASKS, None,
                f"Phase {format_number(phase)} is oversubscribed: total task duration "
                f"{format_number(demand)} exceeds worker capacity {format_number(capacity[phase])}",
                severity=WARNING,
            ))
    return issues


# ---- Public API ------------------------------------------------------------

def _battery(
    clients: list[Row], workers: list[Row], tasks: list[Row],
) -> list[tuple[str, Callable[[], list[ValidationIssue]]]]:
    tables = {CLIENTS: clients, WORKERS: workers, TASKS: tasks}
    checks: list[tuple[str, Callable[[], list[ValidationIssue]]]] = []
    for entity in ENTITIES:
        rows = tables[entity]
        checks.append((f"{entity}:required_columns", lambda e=entity, r=rows: _check_required_columns(e, r)))
        checks.append((f"{entity}:duplicate_ids", lambda e=entity, r=rows: _check_duplicate_ids(e, r)))
        checks.append((f"{entity}:id_format", lambda e=entity, r=rows: _check_id_format(e, r)))

    checks += [
        ("workers:available_slots", lambda: _check_available_slots(workers)),
        ("clients:priority_range", lambda: _check_integer_range(
            CLIENTS, clients, "PriorityLevel", minimum=PRIORITY_MIN, maximum=PRIORITY_MAX,
            message=f"PriorityLevel must be an integer between {PRIORITY_MIN} and {PRIORITY_MAX}",
        )),
        ("tasks:duration_range", lambda: _check_integer_range(
            TASKS, tasks, "Duration", minimum=1, maximum=None,
            message="Duration must be an integer >= 1",
        )),
        ("workers:max_load_range", lambda: _check_integer_range(
            WORKERS, workers, "MaxLoadPerPhase", minimum=1, maximum=None,
            message="MaxLoadPerPhase must be an integer >= 1",
        )),
        ("clients:attributes_json", lambda: _check_attributes_json(clients)),
        ("clients:client_name", lambda: _check_client_names(clients)),
        ("tasks:preferred_phases", lambda: _check_preferred_phases(tasks)),
        ("clients:group_tag", lambda: _check_group_tags(clients)),
        ("clients:unknown_task_refs", lambda: _check_unknown_task_refs(clients, tasks)),
        ("clients:task_ref_format", lambda: _check_task_ref_format(clients)),
        ("tasks:skill_coverage", lambda: _check_skill_coverage(workers, tasks)),
        ("tasks:max_concurrency", lambda: _check_max_concurrency(workers, tasks)),
        ("workers:overloaded", lambda: _check_overloaded_workers(workers)),
        ("tasks:phase_saturation", lambda: _check_phase_saturation(workers, tasks)),
    ]
    return checks


def validate(
    clients: Iterable[Any] | None,
    workers: Iterable[Any] | None,
    tasks: Iterable[Any] | None,
) -> list[ValidationIssue]:
    """Validate the three tables and return every issue found.

    Never raises. Missing tables are treated as empty; a check that fails
    unexpectedly is logged and contributes no issues.
    """
    client_rows, worker_rows, task_rows = _rows(clients), _rows(workers), _rows(tasks)

    issues: list[ValidationIssue] = []
    for name, check in _battery(client_rows, worker_rows, task_rows):
        try:
            issues.extend(check())
        except Exception:
            logger.exception("Validation check %s failed; continuing with remaining checks", name)

    logger.debug(
        "Validated %d clients, %d workers, %d tasks: %d issues",
        len(client_rows), len(worker_rows), len(task_rows), len(issues),
    )
    return issues


def issues_for_cell(
    issues: Iterable[ValidationIssue],
    entity: str,
    row_index: int,
    column: str,
) -> list[ValidationIssue]:
    """Issues attached to one cell, including table-level issues on that column."""
    return [
        i for i in issues
        if i.entity == entity
        and i.column == column
        and (i.row_index == row_index or i.row_index is None)
    ]


def summarize(issues: Iterable[ValidationIssue]) -> dict[str, Any]:
    """Count issues per severity and per entity."""
    issues = list(issues)
    by_entity: dict[str, dict[str, int]] = {
        entity: {ERROR: 0, WARNING: 0} for entity in ENTITIES
    }
    for issue in issues:
        by_entity.setdefault(issue.entity, {ERROR: 0, WARNING: 0})
        by_entity[issue.entity][issue.severity] = by_entity[issue.entity].get(issue.severity, 0) + 1

    severities = Counter(i.severity for i in issues)
    return {
        "total": len(issues),
        "errors": severities.get(ERROR, 0),
        "warnings": severities.get(WARNING, 0),
        "by_entity": by_entity,
    }
