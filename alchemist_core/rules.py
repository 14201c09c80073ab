"""Allocation rules, priority weights and rule suggestions.

Rules are append-only records tagged by ``type``; weights are five
percentage dials consumed by the scoring engine. Both serialise with the
camelCase keys used in exported ``rules.json`` files.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any

from .fields import split_tags

logger = logging.getLogger(__name__)

UTC = timezone.utc

RULE_TYPES = (
    "coRun",
    "slotRestriction",
    "loadLimit",
    "phaseWindow",
    "patternMatch",
    "precedenceOverride",
    "freeForm",
)


def now_utc_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _check_rule_type(rule_type: str) -> None:
    if rule_type not in RULE_TYPES:
        raise ValueError(f"Unknown rule type: {rule_type!r}. Choose from {RULE_TYPES}")


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Rule:
    type: str
    created: str = field(default_factory=now_utc_iso)
    input: str | None = None
    description: str | None = None
    tasks: tuple[str, ...] = ()
    worker: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict, hash=False)
    ai_parsed: bool = False

    def __post_init__(self) -> None:
        _check_rule_type(self.type)
        object.__setattr__(self, "tasks", tuple(split_tags(self.tasks)))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "created": self.created}
        if self.input is not None:
            out["input"] = self.input
        if self.description is not None:
            out["description"] = self.description
        if self.tasks:
            out["tasks"] = list(self.tasks)
        if self.worker:
            out["worker"] = self.worker
        if self.parameters:
            out["parameters"] = dict(self.parameters)
        if self.ai_parsed:
            out["aiParsed"] = True
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Rule:
        params = data.get("parameters") or {}
        if not isinstance(params, Mapping):
            raise ValueError(f"Rule parameters must be an object, got {type(params).__name__}")
        kwargs: dict[str, Any] = {
            "type": str(data.get("type") or ""),
            "input": data.get("input"),
            "description": data.get("description"),
            "tasks": tuple(split_tags(data.get("tasks"))),
            "worker": data.get("worker") or None,
            "parameters": dict(params),
            "ai_parsed": bool(data.get("aiParsed", data.get("ai_parsed", False))),
        }
        if data.get("created"):
            kwargs["created"] = str(data["created"])
        return cls(**kwargs)


def make_rule(rule_type: str, text: str = "") -> Rule:
    """Build a manually entered rule: free-form text is a description, anything else is input."""
    _check_rule_type(rule_type)
    if rule_type == "freeForm":
        return Rule(type=rule_type, description=text)
    return Rule(type=rule_type, input=text)


@dataclass(frozen=True)
class RuleSuggestion:
    type: str
    reason: str
    tasks: tuple[str, ...] = ()
    worker: str | None = None

    def __post_init__(self) -> None:
        _check_rule_type(self.type)
        object.__setattr__(self, "tasks", tuple(split_tags(self.tasks)))

    def to_rule(self) -> Rule:
        return Rule(type=self.type, description=self.reason, tasks=self.tasks, worker=self.worker)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "reason": self.reason}
        if self.tasks:
            out["tasks"] = list(self.tasks)
        if self.worker:
            out["worker"] = self.worker
        return out


# ---------------------------------------------------------------------------
# Weights
# ---------------------------------------------------------------------------

WEIGHT_MIN = 0.0
WEIGHT_MAX = 100.0
DEFAULT_WEIGHT = 5.0

# snake_case attribute -> camelCase export key
WEIGHT_KEYS: dict[str, str] = {
    "priority_level": "priorityLevel",
    "requested_task_fulfillment": "requestedTaskFulfillment",
    "fairness": "fairness",
    "cost": "cost",
    "workload": "workload",
}
_CAMEL_TO_SNAKE = {camel: snake for snake, camel in WEIGHT_KEYS.items()}


def normalize_weight_key(key: str) -> str:
    """Map a snake_case or camelCase weight name to the attribute name."""
    if key in WEIGHT_KEYS:
        return key
    if key in _CAMEL_TO_SNAKE:
        return _CAMEL_TO_SNAKE[key]
    raise ValueError(f"Unknown weight: {key!r}. Choose from {tuple(WEIGHT_KEYS.values())}")


def _check_weight(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Weight {name} must be a number, got {value!r}")
    value = float(value)
    if not WEIGHT_MIN <= value <= WEIGHT_MAX:
        raise ValueError(f"Weight {name} must be between {WEIGHT_MIN:g} and {WEIGHT_MAX:g}, got {value:g}")
    return value


@dataclass(frozen=True)
class Weights:
    priority_level: float = DEFAULT_WEIGHT
    requested_task_fulfillment: float = DEFAULT_WEIGHT
    fairness: float = DEFAULT_WEIGHT
    cost: float = DEFAULT_WEIGHT
    workload: float = DEFAULT_WEIGHT

    def __post_init__(self) -> None:
        for f in fields(self):
            object.__setattr__(self, f.name, _check_weight(f.name, getattr(self, f.name)))

    def with_value(self, key: str, value: float) -> Weights:
        return replace(self, **{normalize_weight_key(key): value})

    def to_dict(self) -> dict[str, float]:
        return {camel: getattr(self, snake) for snake, camel in WEIGHT_KEYS.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> Weights:
        """Build weights from exported keys; missing dials keep their default."""
        kwargs: dict[str, Any] = {}
        for key, value in (data or {}).items():
            try:
                kwargs[normalize_weight_key(str(key))] = value
            except ValueError:
                logger.warning("Ignoring unknown weight key %r", key)
        return cls(**kwargs)
