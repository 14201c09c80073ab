"""Assistant collaborators: header mapping, search, bulk edits, rule parsing,
rule recommendation, correction suggestions and model-backed validation.

Two implementations share one contract:
  1. HeuristicAssistant -- deterministic regex/keyword rules, no network
  2. ClaudeAssistant    -- asks Claude, falls back to the heuristic on any
                           CollaboratorError and records a transient notice

Neither replaces the validation engine; model findings are advisory.
"""

from __future__ import annotations

import json
import logging
import operator
import os
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import asdict, dataclass
from typing import Any

from .fields import decode_slot_list, is_integral, split_tags, to_number
from .rules import RULE_TYPES, Rule, RuleSuggestion
from .schemas import (
    CLIENTS,
    GROUP_TAGS,
    ID_COLUMNS,
    ID_PREFIXES,
    PRIORITY_MAX,
    PRIORITY_MIN,
    TASKS,
    WORKERS,
    expected_columns,
    id_matches,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_TIMEOUT_S = 60.0
DEFAULT_MAX_TOKENS = 2000

# Rows sent to the model per request.
MAX_PROMPT_ROWS = 200


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DataCorrection:
    row_index: int
    column: str
    current_value: Any
    suggested_value: Any
    reason: str
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ModelFinding:
    field: str
    message: str
    severity: str = "warning"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

ERROR_MESSAGES = {
    "auth": "Invalid API key. Please check your Anthropic API key and try again.",
    "rate_limit": "Rate limit exceeded. Please wait a moment and try again.",
    "bad_request": "Invalid request. Please check your input and try again.",
    "forbidden": "Access denied. Please check your Anthropic account status and billing.",
    "unavailable": "The model service is temporarily unavailable. Please try again later.",
    "network": "Failed to reach the model service. Please check your connection and try again.",
    "invalid_response": "The model returned a response that could not be used.",
    "not_configured": "ANTHROPIC_API_KEY not set; using built-in heuristics.",
}


class CollaboratorError(RuntimeError):
    """A model call failed. ``kind`` is one of the ERROR_MESSAGES keys."""

    def __init__(self, kind: str, detail: str | None = None):
        self.kind = kind
        self.detail = detail
        super().__init__(ERROR_MESSAGES.get(kind, detail or kind))

    @property
    def message(self) -> str:
        return str(self)


def classify_status(status_code: int) -> str:
    if status_code == 401:
        return "auth"
    if status_code == 403:
        return "forbidden"
    if status_code == 429:
        return "rate_limit"
    if status_code >= 500:
        return "unavailable"
    return "bad_request"


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------

def _rows(table: Iterable[Any] | None) -> list[dict[str, Any]]:
    return [dict(row) for row in (table or []) if isinstance(row, Mapping)]


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _resolve_column(name: str, rows: list[dict[str, Any]]) -> str | None:
    wanted = name.lower()
    for row in rows:
        for key in row:
            if str(key).lower() == wanted:
                return key
    return None


_OPS: dict[str, Callable[[float, float], bool]] = {
    ">=": operator.ge,
    "<=": operator.le,
    "!=": operator.ne,
    "==": operator.eq,
    "=": operator.eq,
    ">": operator.gt,
    "<": operator.lt,
}

_PRIORITY_HIGH_RE = re.compile(r"priority.*high", re.IGNORECASE)
_PRIORITY_LOW_RE = re.compile(r"priority.*low", re.IGNORECASE)
_COMPARISON_RE = re.compile(r"(\w+)\s*(>=|<=|!=|==|=|>|<)\s*(-?\d+(?:\.\d+)?)")
_SKILLS_RE = re.compile(
    r"\bskills?\b\W*(?:(?:includes|including|include|containing|contains|with|has)\b)?\s*([\w+#.\-]+)",
    re.IGNORECASE,
)

_SET_PRIORITY_RE = re.compile(r"set all.*priority\w*\s+to\s+(\d+)", re.IGNORECASE)
_INCREASE_PRIORITY_RE = re.compile(r"increase.*priority", re.IGNORECASE)
_DECREASE_PRIORITY_RE = re.compile(r"decrease.*priority", re.IGNORECASE)
_SET_GROUP_RE = re.compile(r"set.*group.*\bto\s+(.+)", re.IGNORECASE)

_TASK_ID_RE = re.compile(r"\bT\d+\b")
_WORKER_ID_RE = re.compile(r"\bW\d+\b")
_PHASE_WINDOW_RE = re.compile(r"phases?\s+(\d+)\s*(?:-|to)\s*(\d+)", re.IGNORECASE)
_LOAD_LIMIT_RE = re.compile(r"max(?:imum)?\s+(\d+)\s+(?:slots?|load|tasks?)", re.IGNORECASE)


def _compare(value: Any, op: Callable[[float, float], bool], bound: float) -> bool:
    number = to_number(value)
    return number is not None and op(number, bound)


def _clamp_priority(value: float) -> int:
    return int(min(PRIORITY_MAX, max(PRIORITY_MIN, round(value))))


# ---------------------------------------------------------------------------
# Heuristic collaborator
# ---------------------------------------------------------------------------

class HeuristicAssistant:
    """Deterministic collaborator. Same input, same output; never calls out."""

    def __init__(self) -> None:
        self.last_notice: str | None = None

    # -- headers ------------------------------------------------------------

    def map_headers(self, headers: list[str], entity: str) -> list[str]:
        headers = [str(h) for h in headers]
        try:
            expected = expected_columns(entity)
        except ValueError:
            logger.warning("map_headers: unknown entity %r, headers left as-is", entity)
            return headers

        mapped = []
        for header in headers:
            key = re.sub(r"[\s_]", "", header.lower())
            mapped.append(next((col for col in expected if col.lower() == key), header))
        return mapped

    # -- search -------------------------------------------------------------

    def query_data(self, query: str, rows: Iterable[Any], entity: str | None = None) -> list[dict[str, Any]]:
        data = _rows(rows)
        q = (query or "").strip()
        if not q:
            return data

        if _PRIORITY_HIGH_RE.search(q):
            return [r for r in data if _compare(r.get("PriorityLevel"), operator.ge, 4)]
        if _PRIORITY_LOW_RE.search(q):
            return [r for r in data if _compare(r.get("PriorityLevel"), operator.le, 2)]

        m = _COMPARISON_RE.search(q)
        if m:
            column = _resolve_column(m.group(1), data)
            if column is not None:
                op, bound = _OPS[m.group(2)], float(m.group(3))
                return [r for r in data if _compare(r.get(column), op, bound)]

        m = _SKILLS_RE.search(q)
        if m:
            tag = m.group(1).lower()
            return [
                r for r in data
                if tag in _text(r.get("Skills")).lower() or tag in _text(r.get("RequiredSkills")).lower()
            ]

        needle = q.lower()
        return [
            r for r in data
            if any(needle in _text(v).lower() for v in r.values() if v is not None)
        ]

    # -- bulk edits ---------------------------------------------------------

    def modify_data(self, command: str, rows: Iterable[Any]) -> list[dict[str, Any]]:
        data = _rows(rows)
        cmd = (command or "").strip()
        if not cmd:
            return data

        m = _SET_PRIORITY_RE.search(cmd)
        if m:
            return [{**r, "PriorityLevel": int(m.group(1))} for r in data]

        if _INCREASE_PRIORITY_RE.search(cmd):
            return [
                {**r, "PriorityLevel": _clamp_priority((to_number(r.get("PriorityLevel")) or 1) + 1)}
                for r in data
            ]
        if _DECREASE_PRIORITY_RE.search(cmd):
            return [
                {**r, "PriorityLevel": _clamp_priority((to_number(r.get("PriorityLevel")) or 1) - 1)}
                for r in data
            ]

        m = _SET_GROUP_RE.search(cmd)
        if m and m.group(1).strip():
            return [{**r, "GroupTag": m.group(1).strip()} for r in data]

        logger.warning("No matching modification pattern for %r; rows unchanged", cmd)
        return data

    # -- rules --------------------------------------------------------------

    def parse_rule(self, text: str, context: Mapping[str, Any] | None = None) -> Rule:
        text = (text or "").strip()
        task_ids = list(dict.fromkeys(_TASK_ID_RE.findall(text)))

        if re.search(r"run together", text, re.IGNORECASE):
            return Rule(type="coRun", description=text, tasks=tuple(task_ids), ai_parsed=True)

        m = _PHASE_WINDOW_RE.search(text)
        if m and task_ids:
            lo, hi = int(m.group(1)), int(m.group(2))
            if 1 <= lo <= hi:
                return Rule(
                    type="phaseWindow", description=text, tasks=tuple(task_ids),
                    parameters={"allowedPhases": list(range(lo, hi + 1))}, ai_parsed=True,
                )

        m = _LOAD_LIMIT_RE.search(text)
        if m:
            worker = _WORKER_ID_RE.search(text)
            return Rule(
                type="loadLimit", description=text,
                worker=worker.group(0) if worker else None,
                parameters={"maxSlotsPerPhase": int(m.group(1))}, ai_parsed=True,
            )

        return Rule(type="freeForm", description=text, ai_parsed=True)

    def recommend_rules(
        self,
        clients: Iterable[Any] | None,
        workers: Iterable[Any] | None,
        tasks: Iterable[Any] | None = None,
    ) -> list[RuleSuggestion]:
        suggestions: list[RuleSuggestion] = []
        try:
            for client in _rows(clients):
                requested = split_tags(client.get("RequestedTaskIDs"))
                if len(requested) > 1:
                    who = _text(client.get("ClientName")) or _text(client.get("ClientID"))
                    suggestions.append(RuleSuggestion(
                        type="coRun", tasks=tuple(requested),
                        reason=f"Client {who} always requests these tasks together.",
                    ))

            for worker in _rows(workers):
                slots = decode_slot_list(worker.get("AvailableSlots"))
                load = to_number(worker.get("MaxLoadPerPhase"))
                if slots is not None and load is not None and load > len(slots):
                    who = _text(worker.get("WorkerName")) or _text(worker.get("WorkerID"))
                    suggestions.append(RuleSuggestion(
                        type="loadLimit", worker=who,
                        reason=f"Worker {who} is often overloaded.",
                    ))
        except Exception:
            logger.exception("Rule recommendation heuristics failed")
        return suggestions

    # -- corrections and advisory validation --------------------------------

    def suggest_corrections(self, rows: Iterable[Any], entity: str) -> list[DataCorrection]:
        data = _rows(rows)
        corrections: list[DataCorrection] = []
        id_col = ID_COLUMNS.get(entity)
        prefix = ID_PREFIXES.get(entity)

        for i, row in enumerate(data):
            if id_col and id_col in row and not id_matches(entity, row[id_col]):
                candidate = re.sub(r"\s+", "", _text(row[id_col])).upper()
                if id_matches(entity, candidate):
                    corrections.append(DataCorrection(
                        i, id_col, row[id_col], candidate,
                        f"{id_col} should look like {prefix}<digits>", 0.8,
                    ))

            if entity == CLIENTS:
                corrections.extend(self._client_corrections(i, row))
            elif entity == WORKERS:
                corrections.extend(_at_least_one(i, row, "MaxLoadPerPhase"))
            elif entity == TASKS:
                corrections.extend(_at_least_one(i, row, "Duration"))
        return corrections

    @staticmethod
    def _client_corrections(i: int, row: dict[str, Any]) -> list[DataCorrection]:
        out = []
        if "PriorityLevel" in row:
            value = to_number(row["PriorityLevel"])
            if value is not None and not (is_integral(value) and PRIORITY_MIN <= value <= PRIORITY_MAX):
                out.append(DataCorrection(
                    i, "PriorityLevel", row["PriorityLevel"], _clamp_priority(value),
                    f"PriorityLevel should be {PRIORITY_MIN}-{PRIORITY_MAX}", 0.9,
                ))
        if "GroupTag" in row:
            tag = _text(row["GroupTag"])
            if tag not in GROUP_TAGS:
                folded = tag.replace(" ", "").casefold()
                match = next((g for g in GROUP_TAGS if g.casefold() == folded), None)
                if match:
                    out.append(DataCorrection(
                        i, "GroupTag", row["GroupTag"], match,
                        f"GroupTag should be one of {', '.join(GROUP_TAGS)}", 0.9,
                    ))
        return out

    def validate_with_external_model(self, rows: Iterable[Any], entity: str) -> list[ModelFinding]:
        return []


def _at_least_one(i: int, row: dict[str, Any], column: str) -> list[DataCorrection]:
    if column not in row:
        return []
    value = to_number(row[column])
    if value is None or value >= 1:
        return []
    return [DataCorrection(i, column, row[column], 1, f"{column} must be >= 1", 0.7)]


# ---------------------------------------------------------------------------
# Claude-backed collaborator
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You help curate spreadsheet data about clients, workers and tasks for a \
resource allocation tool. Answer with JSON only, no prose and no code fences.\
"""

_MAP_HEADERS_PROMPT = """\
Expected headers for {entity}: {expected}

Given headers: {headers}

Map each given header to the expected header it most likely means, keeping \
the order. Leave a header unchanged if nothing fits. Return a JSON array of \
exactly {count} strings.\
"""

_QUERY_PROMPT = """\
Query: "{query}"

Rows of {entity} data, each with its 0-based index under "_index":
{rows}

Return a JSON array of the indices of rows matching the query, e.g. [0, 2, 4].\
"""

_MODIFY_PROMPT = """\
Command: "{command}"

Current rows:
{rows}

Apply the command to every row and return the complete modified data as a \
JSON array with exactly {count} objects, in the same order, keeping every column.\
"""

_PARSE_RULE_PROMPT = """\
Convert this natural language allocation rule to a structured rule:
"{text}"

Context: {clients} clients, {workers} workers, {tasks} tasks.

Return a JSON object like:
{{"type": "{types}", "description": "...", "tasks": ["T1", "T2"], \
"worker": "W1", "parameters": {{"maxSlotsPerPhase": 2}}}}\
"""

_RECOMMEND_PROMPT = """\
Suggest allocation rules based on patterns in this data.

Clients: {clients}
Workers: {workers}
Tasks: {tasks}

Return a JSON array like:
[{{"type": "coRun|loadLimit|slotRestriction|phaseWindow", "tasks": ["T1", "T2"], \
"worker": "WorkerName", "reason": "why this rule helps"}}]
Return [] if nothing stands out.\
"""

_CORRECTIONS_PROMPT = """\
Find likely data errors in these {entity} rows and suggest corrections.
Look for invalid ID formats, out-of-range numbers, malformed JSON and \
inconsistent categorical values.

{rows}

Return a JSON array like:
[{{"rowIndex": 0, "column": "PriorityLevel", "currentValue": "6", \
"suggestedValue": 5, "reason": "PriorityLevel should be 1-5", "confidence": 0.9}}]\
"""

_VALIDATE_PROMPT = """\
Review these {entity} rows for type mismatches, business logic violations, \
format inconsistencies and missing dependencies.

{rows}

Return a JSON array like:
[{{"field": "PriorityLevel", "message": "Value 6 is out of range (1-5)", "severity": "error"}}]\
"""


def _extract_json(text: str) -> Any:
    """Extract the first JSON object or array from model output."""
    text = (text or "").strip()
    try:
        return json.loads(text)
    except ValueError:
        pass
    m = re.search(r"```(?:json)?\s*\n(.*?)```", text, re.DOTALL)
    if m:
        return json.loads(m.group(1).strip())

    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        raise ValueError("No JSON found in model response")
    start = min(starts)
    opening = text[start]
    closing = "}" if opening == "{" else "]"
    depth = 0
    for i in range(start, len(text)):
        ch = text[i]
        if ch == opening:
            depth += 1
        elif ch == closing:
            depth -= 1
            if depth == 0:
                return json.loads(text[start : i + 1])
    raise ValueError("Unbalanced JSON in model response")


def _dump_rows(rows: list[dict[str, Any]], *, indexed: bool = False) -> str:
    payload = rows[:MAX_PROMPT_ROWS]
    if indexed:
        payload = [{"_index": i, **r} for i, r in enumerate(payload)]
    return json.dumps(payload, ensure_ascii=False, default=str)


class ClaudeAssistant(HeuristicAssistant):
    """Claude-backed collaborator.

    Every method tries the model first. On a CollaboratorError it logs a
    warning, stores the user-facing message in ``last_notice`` and returns
    the heuristic result instead.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        client: Any = None,
    ) -> None:
        super().__init__()
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self.model = model or os.getenv("ANTHROPIC_MODEL", DEFAULT_MODEL)
        self.timeout_s = timeout_s
        self.max_tokens = max_tokens
        self._client = client

    # -- transport ----------------------------------------------------------

    def _get_client(self):
        if self._client is not None:
            return self._client
        if not self.api_key:
            raise CollaboratorError("not_configured")
        import anthropic
        self._client = anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout_s)
        return self._client

    def _complete(self, prompt: str) -> str:
        import anthropic

        client = self._get_client()
        try:
            message = client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0.1,
                system=_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIStatusError as exc:
            raise CollaboratorError(classify_status(exc.status_code), str(exc)) from exc
        except anthropic.APIConnectionError as exc:
            raise CollaboratorError("network", str(exc)) from exc
        return message.content[0].text if message.content else ""

    def _ask_json(self, prompt: str) -> Any:
        raw = self._complete(prompt)
        try:
            return _extract_json(raw)
        except ValueError as exc:
            raise CollaboratorError("invalid_response", str(exc)) from exc

    def _with_fallback(self, name: str, ask: Callable[[], Any], fallback: Callable[[], Any]) -> Any:
        try:
            result = ask()
        except CollaboratorError as exc:
            logger.warning("%s via model failed (%s), using heuristics", name, exc.kind)
            self.last_notice = exc.message
            return fallback()
        self.last_notice = None
        return result

    # -- collaborator contract ----------------------------------------------

    def map_headers(self, headers: list[str], entity: str) -> list[str]:
        headers = [str(h) for h in headers]

        def ask() -> list[str]:
            try:
                expected = expected_columns(entity)
            except ValueError as exc:
                raise CollaboratorError("bad_request", str(exc)) from exc
            mapped = self._ask_json(_MAP_HEADERS_PROMPT.format(
                entity=entity, expected=", ".join(expected),
                headers=", ".join(headers), count=len(headers),
            ))
            if not isinstance(mapped, list) or len(mapped) != len(headers):
                raise CollaboratorError("invalid_response", "header count mismatch")
            return [str(h) for h in mapped]

        return self._with_fallback("map_headers", ask, lambda: HeuristicAssistant.map_headers(self, headers, entity))

    def query_data(self, query: str, rows: Iterable[Any], entity: str | None = None) -> list[dict[str, Any]]:
        data = _rows(rows)
        if not (query or "").strip():
            return data

        def ask() -> list[dict[str, Any]]:
            indices = self._ask_json(_QUERY_PROMPT.format(
                query=query.strip(), entity=entity or "table", rows=_dump_rows(data, indexed=True),
            ))
            if not isinstance(indices, list):
                raise CollaboratorError("invalid_response", "expected a list of row indices")
            picked = dict.fromkeys(
                i for i in indices
                if isinstance(i, int) and not isinstance(i, bool) and 0 <= i < len(data)
            )
            return [data[i] for i in picked]

        return self._with_fallback(
            "query_data", ask, lambda: HeuristicAssistant.query_data(self, query, data, entity),
        )

    def modify_data(self, command: str, rows: Iterable[Any]) -> list[dict[str, Any]]:
        data = _rows(rows)
        if not (command or "").strip():
            return data

        def ask() -> list[dict[str, Any]]:
            if len(data) > MAX_PROMPT_ROWS:
                raise CollaboratorError("bad_request", "table too large to modify via model")
            modified = self._ask_json(_MODIFY_PROMPT.format(
                command=command.strip(), rows=_dump_rows(data), count=len(data),
            ))
            if (
                not isinstance(modified, list)
                or len(modified) != len(data)
                or not all(isinstance(r, dict) for r in modified)
            ):
                raise CollaboratorError("invalid_response", "modified rows do not line up")
            return [dict(r) for r in modified]

        return self._with_fallback(
            "modify_data", ask, lambda: HeuristicAssistant.modify_data(self, command, data),
        )

    def parse_rule(self, text: str, context: Mapping[str, Any] | None = None) -> Rule:
        text = (text or "").strip()
        context = context or {}

        def ask() -> Rule:
            parsed = self._ask_json(_PARSE_RULE_PROMPT.format(
                text=text,
                clients=len(context.get(CLIENTS) or ()),
                workers=len(context.get(WORKERS) or ()),
                tasks=len(context.get(TASKS) or ()),
                types="|".join(RULE_TYPES),
            ))
            if not isinstance(parsed, dict) or parsed.get("type") not in RULE_TYPES:
                raise CollaboratorError("invalid_response", "rule type missing or unknown")
            params = parsed.get("parameters")
            return Rule(
                type=parsed["type"],
                description=_text(parsed.get("description")) or text,
                tasks=tuple(split_tags(parsed.get("tasks"))),
                worker=_text(parsed.get("worker")) or None,
                parameters=dict(params) if isinstance(params, dict) else {},
                ai_parsed=True,
            )

        return self._with_fallback(
            "parse_rule", ask, lambda: HeuristicAssistant.parse_rule(self, text, context),
        )

    def recommend_rules(
        self,
        clients: Iterable[Any] | None,
        workers: Iterable[Any] | None,
        tasks: Iterable[Any] | None = None,
    ) -> list[RuleSuggestion]:
        client_rows, worker_rows, task_rows = _rows(clients), _rows(workers), _rows(tasks)

        def ask() -> list[RuleSuggestion]:
            items = self._ask_json(_RECOMMEND_PROMPT.format(
                clients=_dump_rows(client_rows), workers=_dump_rows(worker_rows), tasks=_dump_rows(task_rows),
            ))
            if not isinstance(items, list):
                raise CollaboratorError("invalid_response", "expected a list of suggestions")
            suggestions = []
            for item in items:
                if not isinstance(item, dict) or item.get("type") not in RULE_TYPES:
                    logger.debug("Skipping unusable rule suggestion: %r", item)
                    continue
                suggestions.append(RuleSuggestion(
                    type=item["type"],
                    reason=_text(item.get("reason")),
                    tasks=tuple(split_tags(item.get("tasks"))),
                    worker=_text(item.get("worker")) or None,
                ))
            return suggestions

        return self._with_fallback(
            "recommend_rules", ask,
            lambda: HeuristicAssistant.recommend_rules(self, client_rows, worker_rows, task_rows),
        )

    def suggest_corrections(self, rows: Iterable[Any], entity: str) -> list[DataCorrection]:
        data = _rows(rows)

        def ask() -> list[DataCorrection]:
            items = self._ask_json(_CORRECTIONS_PROMPT.format(entity=entity, rows=_dump_rows(data, indexed=True)))
            if not isinstance(items, list):
                raise CollaboratorError("invalid_response", "expected a list of corrections")
            corrections = []
            for item in items:
                if not isinstance(item, dict):
                    continue
                idx = item.get("rowIndex", item.get("row_index"))
                column = _text(item.get("column"))
                if not isinstance(idx, int) or isinstance(idx, bool) or not 0 <= idx < len(data) or not column:
                    logger.debug("Skipping unusable correction: %r", item)
                    continue
                confidence = to_number(item.get("confidence"))
                corrections.append(DataCorrection(
                    row_index=idx,
                    column=column,
                    current_value=data[idx].get(column),
                    suggested_value=item.get("suggestedValue", item.get("suggested_value")),
                    reason=_text(item.get("reason")),
                    confidence=min(1.0, max(0.0, confidence)) if confidence is not None else 0.5,
                ))
            return corrections

        return self._with_fallback(
            "suggest_corrections", ask,
            lambda: HeuristicAssistant.suggest_corrections(self, data, entity),
        )

    def validate_with_external_model(self, rows: Iterable[Any], entity: str) -> list[ModelFinding]:
        data = _rows(rows)

        def ask() -> list[ModelFinding]:
            items = self._ask_json(_VALIDATE_PROMPT.format(entity=entity, rows=_dump_rows(data)))
            if not isinstance(items, list):
                raise CollaboratorError("invalid_response", "expected a list of findings")
            return [
                ModelFinding(
                    field=_text(item.get("field")),
                    message=_text(item.get("message")),
                    severity="error" if item.get("severity") == "error" else "warning",
                )
                for item in items
                if isinstance(item, dict) and _text(item.get("message"))
            ]

        return self._with_fallback(
            "validate_with_external_model", ask,
            lambda: HeuristicAssistant.validate_with_external_model(self, data, entity),
        )
