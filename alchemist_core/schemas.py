"""Expected columns, identifier formats and categorical values per entity."""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Entity names
# ---------------------------------------------------------------------------

CLIENTS = "clients"
WORKERS = "workers"
TASKS = "tasks"

ENTITIES = (CLIENTS, WORKERS, TASKS)

# ---------------------------------------------------------------------------
# Input column names
# ---------------------------------------------------------------------------

CLIENTS_COLS = [
    "ClientID",
    "ClientName",
    "PriorityLevel",
    "RequestedTaskIDs",
    "GroupTag",
    "AttributesJSON",
]

WORKERS_COLS = [
    "WorkerID",
    "WorkerName",
    "Skills",
    "AvailableSlots",
    "MaxLoadPerPhase",
    "WorkerGroup",
    "QualificationLevel",
]

TASKS_COLS = [
    "TaskID",
    "TaskName",
    "Category",
    "Duration",
    "RequiredSkills",
    "PreferredPhases",
    "MaxConcurrent",
]

EXPECTED_COLUMNS: dict[str, list[str]] = {
    CLIENTS: CLIENTS_COLS,
    WORKERS: WORKERS_COLS,
    TASKS: TASKS_COLS,
}

# ---------------------------------------------------------------------------
# Primary keys and their formats
# ---------------------------------------------------------------------------

ID_COLUMNS: dict[str, str] = {
    CLIENTS: "ClientID",
    WORKERS: "WorkerID",
    TASKS: "TaskID",
}

NAME_COLUMNS: dict[str, str] = {
    CLIENTS: "ClientName",
    WORKERS: "WorkerName",
    TASKS: "TaskName",
}

ID_PREFIXES: dict[str, str] = {
    CLIENTS: "C",
    WORKERS: "W",
    TASKS: "T",
}

ID_PATTERNS: dict[str, re.Pattern[str]] = {
    entity: re.compile(rf"{prefix}\d+") for entity, prefix in ID_PREFIXES.items()
}

# ---------------------------------------------------------------------------
# Categorical values
# ---------------------------------------------------------------------------

GROUP_TAGS = ("GroupA", "GroupB", "GroupC")

PRIORITY_MIN = 1
PRIORITY_MAX = 5

# Upper bound on the end of an "a-b" phase range.
MAX_PHASE = 1000


def expected_columns(entity: str) -> list[str]:
    """Return the expected column list for *entity*.

    Raises ValueError for an unknown entity name.
    """
    try:
        return list(EXPECTED_COLUMNS[entity])
    except KeyError:
        raise ValueError(f"Unknown entity: {entity!r}. Choose from {ENTITIES}") from None


def id_matches(entity: str, value: object) -> bool:
    """True when *value* is a well-formed primary key for *entity* (e.g. ``C12``)."""
    if value is None or isinstance(value, bool):
        return False
    return ID_PATTERNS[entity].fullmatch(str(value).strip()) is not None
