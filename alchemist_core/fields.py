"""Cell-level parsers turning raw spreadsheet values into typed values.

None of these functions raise on malformed input: a failure is part of the
return value so the validation engine can report it as an issue.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from .schemas import MAX_PHASE

_RANGE_RE = re.compile(r"\s*(\d+)\s*-\s*(\d+)\s*")
_POSITIVE_INT_RE = re.compile(r"\+?\d+")

SLOTS_NOT_JSON = "not_json"
SLOTS_NOT_ARRAY = "not_array"
SLOTS_NON_POSITIVE = "non_positive"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _decode_json(raw: Any) -> tuple[bool, Any]:
    """Decode *raw* as JSON. Already-decoded lists/dicts pass through."""
    if isinstance(raw, (list, dict)):
        return True, raw
    if not isinstance(raw, str):
        return False, None
    try:
        return True, json.loads(raw)
    except (TypeError, ValueError):
        return False, None


def to_number(value: Any) -> float | None:
    """Coerce a cell to float. Blank, bool and non-numeric values -> None."""
    if value is None or isinstance(value, bool):
        return None
    if _is_number(value):
        try:
            number = float(value)
        except OverflowError:
            return None
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if number != number:  # NaN
        return None
    return number


def is_integral(value: float | None) -> bool:
    return value is not None and value not in (float("inf"), float("-inf")) and value == int(value)


def split_tags(raw: Any) -> list[str]:
    """Split a comma-separated cell into trimmed, non-empty tags.

    Lists (already decoded cells) are stringified element-wise.
    """
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        parts = [str(v) for v in raw if v is not None]
    else:
        parts = str(raw).split(",")
    return [p.strip() for p in parts if p.strip()]


def parse_json_blob(raw: Any) -> bool:
    """Syntax check for an opaque JSON cell. The decoded value is discarded."""
    ok, _ = _decode_json(raw)
    return ok


def parse_phase_set(raw: Any) -> frozenset[int]:
    """Parse a phase preference into a set of positive phase numbers.

    Accepted shapes, in order:
      1. JSON array -> positive integral numbers are kept, anything else dropped
      2. ``"a-b"`` range with 1 <= a <= b -> {a, ..., b}
      3. comma list where every token is a positive integer

    Returns an empty set when nothing usable was found, including ranges
    ending above ``MAX_PHASE``.
    """
    if raw is None or isinstance(raw, bool):
        return frozenset()

    ok, decoded = _decode_json(raw)
    if ok and isinstance(decoded, list):
        phases = (_phase_number(v) for v in decoded)
        return frozenset(p for p in phases if p is not None)

    if _is_number(raw):
        phase = _phase_number(raw)
        return frozenset() if phase is None else frozenset({phase})

    text = str(raw).strip()
    if not text:
        return frozenset()

    try:
        m = _RANGE_RE.fullmatch(text)
        if m:
            lo, hi = int(m.group(1)), int(m.group(2))
            if 1 <= lo <= hi <= MAX_PHASE:
                return frozenset(range(lo, hi + 1))
            return frozenset()

        tokens = [token.strip() for token in text.split(",")]
        if not all(_POSITIVE_INT_RE.fullmatch(token) for token in tokens):
            return frozenset()
        phases = {int(token) for token in tokens}
    except ValueError:
        # int() refuses digit strings past the interpreter's conversion limit
        return frozenset()
    if min(phases) <= 0:
        return frozenset()
    return frozenset(phases)


def _phase_number(value: Any) -> int | None:
    """A positive integral phase number, or None."""
    if not _is_number(value) or value <= 0:
        return None
    try:
        if not is_integral(float(value)):
            return None
    except (OverflowError, ValueError):
        return None
    return int(value)


@dataclass(frozen=True)
class SlotParse:
    slots: tuple[float, ...] = ()
    failure: str | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def parse_slot_array(raw: Any) -> SlotParse:
    """Parse ``AvailableSlots``: a JSON array whose elements are all numbers > 0."""
    ok, decoded = _decode_json(raw)
    if not ok:
        return SlotParse(failure=SLOTS_NOT_JSON)
    if not isinstance(decoded, list):
        return SlotParse(failure=SLOTS_NOT_ARRAY)
    if not all(_is_number(v) and v > 0 for v in decoded):
        return SlotParse(failure=SLOTS_NON_POSITIVE)
    return SlotParse(slots=tuple(decoded))


def decode_slot_list(raw: Any) -> list[Any] | None:
    """Lenient slot decode: any JSON array, whatever its elements."""
    ok, decoded = _decode_json(raw)
    if ok and isinstance(decoded, list):
        return decoded
    return None


def format_number(value: float) -> str:
    """Render a number the way spreadsheets show it (``5`` not ``5.0``)."""
    if is_integral(value):
        return str(int(value))
    return str(value)
