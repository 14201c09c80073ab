from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from .fields import format_number, parse_slot_array, split_tags, to_number
from .rules import Weights

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 20


@dataclass(frozen=True)
class AllocationCandidate:
    client: str
    task: str
    worker: str
    client_id: str
    task_id: str
    worker_id: str
    score: float
    reason: str
    score_detail: dict[str, float] = field(default_factory=dict, hash=False)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _as_rows(table: Iterable[Any] | None) -> list[Mapping[str, Any]]:
    return [row for row in (table or []) if isinstance(row, Mapping)]


def _coerce_weights(weights: Weights | Mapping[str, Any] | None) -> Weights:
    if isinstance(weights, Weights):
        return weights
    return Weights.from_dict(weights)


def _task_index(tasks: list[Mapping[str, Any]]) -> dict[str, Mapping[str, Any]]:
    index: dict[str, Mapping[str, Any]] = {}
    for task in tasks:
        task_id = _text(task.get("TaskID"))
        if task_id:
            index.setdefault(task_id, task)
    return index


def _score_pair(
    *,
    client: Mapping[str, Any],
    task: Mapping[str, Any],
    worker: Mapping[str, Any],
    weights: Weights,
    current_load: int,
) -> AllocationCandidate:
    reasons: list[str] = []

    priority = to_number(client.get("PriorityLevel")) or 1.0
    priority_score = priority * (weights.priority_level / 100)
    reasons.append(f"Priority {format_number(priority)} ({priority_score:.2f} pts)")

    fairness_score = (1 / (current_load + 1)) * (weights.fairness / 100)
    reasons.append(f"Fairness {fairness_score:.2f} pts")

    slots = parse_slot_array(worker.get("AvailableSlots"))
    if slots.ok:
        workload_score = (len(slots.slots) / 10) * (weights.workload / 100)
        reasons.append(f"Workload {workload_score:.2f} pts")
    else:
        workload_score = 0.0
        reasons.append("Workload 0 pts (invalid slots)")

    qualification = to_number(worker.get("QualificationLevel")) or 1.0
    cost_score = (1 / qualification) * (weights.cost / 100)
    reasons.append(f"Cost {cost_score:.2f} pts")

    score_detail = {
        "priority": priority_score,
        "fairness": fairness_score,
        "workload": workload_score,
        "cost": cost_score,
    }
    return AllocationCandidate(
        client=_text(client.get("ClientName")),
        task=_text(task.get("TaskName")),
        worker=_text(worker.get("WorkerName")),
        client_id=_text(client.get("ClientID")),
        task_id=_text(task.get("TaskID")),
        worker_id=_text(worker.get("WorkerID")),
        score=sum(score_detail.values()),
        reason=", ".join(reasons),
        score_detail=score_detail,
    )


def score(
    clients: Iterable[Any] | None,
    workers: Iterable[Any] | None,
    tasks: Iterable[Any] | None,
    weights: Weights | Mapping[str, Any] | None = None,
    *,
    limit: int = MAX_CANDIDATES,
) -> list[AllocationCandidate]:
    """Rank client/task/worker pairings by weighted score.

    Enumerates clients in order, each client's requested tasks in order and
    every qualified worker in table order. The fairness term depends on how
    many candidates the worker already received earlier in this pass, so the
    result is order-dependent. Sorting is stable: ties keep enumeration order.

    ``requestedTaskFulfillment`` is carried by the weights but not scored.
    """
    weights = _coerce_weights(weights)
    client_rows, worker_rows = _as_rows(clients), _as_rows(workers)
    task_by_id = _task_index(_as_rows(tasks))
    worker_skills = [set(split_tags(w.get("Skills"))) for w in worker_rows]

    candidates: list[AllocationCandidate] = []
    # keyed by worker row position; IDs may be blank or repeated
    load: Counter[int] = Counter()

    for client in client_rows:
        for task_id in split_tags(client.get("RequestedTaskIDs")):
            task = task_by_id.get(task_id)
            if task is None:
                logger.debug("Client %s requests unknown task %s; skipped",
                             _text(client.get("ClientID")), task_id)
                continue

            required = set(split_tags(task.get("RequiredSkills")))
            for position, (worker, skills) in enumerate(zip(worker_rows, worker_skills)):
                if not required <= skills:
                    continue
                candidate = _score_pair(
                    client=client, task=task, worker=worker,
                    weights=weights, current_load=load[position],
                )
                candidates.append(candidate)
                load[position] += 1

    candidates.sort(key=lambda c: c.score, reverse=True)
    logger.debug("Scored %d candidates, keeping top %d", len(candidates), limit)
    return candidates[: max(limit, 0)]


def explain_candidate(candidates: list[AllocationCandidate], index: int) -> dict[str, Any]:
    if not 0 <= index < len(candidates):
        raise IndexError(f"candidate index out of range: {index}")
    c = candidates[index]
    return {
        "rank": index + 1,
        "client": {"id": c.client_id, "name": c.client},
        "task": {"id": c.task_id, "name": c.task},
        "worker": {"id": c.worker_id, "name": c.worker},
        "score": round(c.score, 4),
        "reasons": c.reason.split(", "),
        "score_detail": {k: round(v, 4) for k, v in c.score_detail.items()},
    }


def worker_load_overview(candidates: Iterable[AllocationCandidate]) -> list[dict[str, Any]]:
    """Candidate count and summed score per worker, busiest first."""
    per_worker: dict[str, dict[str, Any]] = {}
    for c in candidates:
        item = per_worker.setdefault(
            c.worker_id, {"worker_id": c.worker_id, "worker": c.worker, "candidates": 0, "total_score": 0.0},
        )
        item["candidates"] += 1
        item["total_score"] += c.score

    result = list(per_worker.values())
    for item in result:
        item["total_score"] = round(item["total_score"], 4)
    result.sort(key=lambda row: row["candidates"], reverse=True)
    return result
