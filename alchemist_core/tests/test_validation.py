"""Tests for the validation engine."""

from __future__ import annotations

import pytest

from alchemist_core import validation
from alchemist_core.validation import (
    ERROR,
    WARNING,
    ValidationIssue,
    issues_for_cell,
    summarize,
    validate,
)


def _client(**overrides):
    row = {
        "ClientID": "C1",
        "ClientName": "Acme",
        "PriorityLevel": "3",
        "RequestedTaskIDs": "T1",
        "GroupTag": "GroupA",
        "AttributesJSON": "{}",
    }
    row.update(overrides)
    return row


def _worker(**overrides):
    row = {
        "WorkerID": "W1",
        "WorkerName": "Alice",
        "Skills": "python,sql",
        "AvailableSlots": "[1,2,3]",
        "MaxLoadPerPhase": "2",
        "WorkerGroup": "GroupA",
        "QualificationLevel": "2",
    }
    row.update(overrides)
    return row


def _task(**overrides):
    row = {
        "TaskID": "T1",
        "TaskName": "ETL",
        "Category": "Data",
        "Duration": "1",
        "RequiredSkills": "python",
        "PreferredPhases": "[1,2]",
        "MaxConcurrent": "1",
    }
    row.update(overrides)
    return row


def _messages(issues, entity=None):
    return [i.message for i in issues if entity is None or i.entity == entity]


class TestCleanData:
    def test_valid_tables_have_no_issues(self):
        assert validate([_client()], [_worker()], [_task()]) == []

    def test_empty_tables(self):
        assert validate([], [], []) == []
        assert validate(None, None, None) == []

    def test_deterministic(self):
        clients = [_client(PriorityLevel="9"), _client(ClientID="C1")]
        first = validate(clients, [_worker()], [_task()])
        second = validate(clients, [_worker()], [_task()])
        assert first == second

    def test_does_not_mutate_input(self):
        clients = [_client(PriorityLevel="9")]
        snapshot = [dict(r) for r in clients]
        validate(clients, [_worker()], [_task()])
        assert clients == snapshot


class TestStructuralChecks:
    def test_missing_required_column(self):
        row = _client()
        del row["GroupTag"]
        issues = validate([row], [], [])
        missing = [i for i in issues if i.message == "Missing required column: GroupTag"]
        assert len(missing) == 1
        assert missing[0].row_index is None
        assert missing[0].severity == ERROR

    def test_missing_column_reported_once_not_per_row(self):
        rows = [_client(ClientID=f"C{i}") for i in range(1, 4)]
        for r in rows:
            del r["AttributesJSON"]
        issues = validate(rows, [], [])
        assert _messages(issues).count("Missing required column: AttributesJSON") == 1

    def test_duplicate_ids_flag_later_occurrences(self):
        clients = [_client(ClientID="C1"), _client(ClientID="C2"), _client(ClientID="C1")]
        dups = [i for i in validate(clients, [], []) if i.message.startswith("Duplicate ID")]
        assert [(i.row_index, i.message) for i in dups] == [(2, "Duplicate ID: C1")]

    def test_blank_ids_are_not_duplicates(self):
        clients = [_client(ClientID=""), _client(ClientID="")]
        assert not [i for i in validate(clients, [], []) if i.message.startswith("Duplicate ID")]

    def test_malformed_id(self):
        issues = validate([_client(ClientID="X7")], [], [])
        fmt = [i for i in issues if i.column == "ClientID"]
        assert len(fmt) == 1
        assert "X7" in fmt[0].message

    def test_id_with_surrounding_spaces_is_valid(self):
        assert validate([_client(ClientID=" C4 ")], [], []) == []

    def test_slots_not_json(self):
        issues = validate([], [_worker(AvailableSlots="not json")], [])
        slot = [i for i in issues if i.column == "AvailableSlots"]
        assert len(slot) == 1
        assert "JSON" in slot[0].message
        assert slot[0].severity == ERROR

    def test_slots_not_array(self):
        issues = validate([], [_worker(AvailableSlots='{"a": 1}')], [])
        assert [i.message for i in issues if i.column == "AvailableSlots"] == [
            "AvailableSlots must be a JSON array"
        ]

    def test_slots_with_negative(self):
        issues = validate([], [_worker(AvailableSlots="[1,2,-3]")], [])
        slot = [i for i in issues if i.column == "AvailableSlots"]
        assert len(slot) == 1
        assert "positive numbers" in slot[0].message

    @pytest.mark.parametrize("value", ["0", "6", "2.5", "", "high"])
    def test_priority_out_of_range(self, value):
        issues = validate([_client(PriorityLevel=value)], [], [])
        assert [i.column for i in issues] == ["PriorityLevel"]

    @pytest.mark.parametrize("value", ["1", "5", 3])
    def test_priority_in_range(self, value):
        assert validate([_client(PriorityLevel=value)], [], []) == []

    def test_duration_below_one(self):
        issues = validate([], [], [_task(Duration="0")])
        assert [(i.entity, i.row_index, i.column) for i in issues] == [("tasks", 0, "Duration")]

    def test_max_load_below_one(self):
        issues = validate([], [_worker(MaxLoadPerPhase="0")], [])
        assert [i.column for i in issues if i.severity == ERROR] == ["MaxLoadPerPhase"]

    def test_malformed_attributes_json(self):
        issues = validate([_client(AttributesJSON="{not json")], [], [])
        assert _messages(issues) == ["Malformed JSON in AttributesJSON"]

    def test_empty_client_name(self):
        issues = validate([_client(ClientName="  ")], [], [])
        assert [i.column for i in issues] == ["ClientName"]

    def test_bad_preferred_phases(self):
        issues = validate([], [], [_task(PreferredPhases="3-1")])
        assert [i.column for i in issues] == ["PreferredPhases"]

    def test_unknown_group_tag_is_warning(self):
        issues = validate([_client(GroupTag="GroupZ")], [], [])
        assert len(issues) == 1
        assert issues[0].severity == WARNING
        assert issues[0].column == "GroupTag"


class TestCrossTableChecks:
    def test_unknown_task_reference(self):
        issues = validate([_client(RequestedTaskIDs="T1,T9")], [_worker()], [_task()])
        assert _messages(issues) == ["Unknown TaskID referenced: T9"]

    def test_unknown_reference_skipped_without_tasks(self):
        issues = validate([_client(RequestedTaskIDs="T9")], [], [])
        assert not [m for m in _messages(issues) if m.startswith("Unknown TaskID")]

    def test_malformed_task_reference(self):
        issues = validate([_client(RequestedTaskIDs="T1,task2")], [], [])
        assert len(issues) == 1
        assert "task2" in issues[0].message
        assert issues[0].column == "RequestedTaskIDs"

    def test_uncovered_skill(self):
        issues = validate([], [_worker(Skills="python")], [_task(RequiredSkills="welding")])
        coverage = [i for i in issues if i.column == "RequiredSkills"]
        assert len(coverage) == 1
        assert coverage[0].severity == ERROR
        assert coverage[0].row_index == 0
        assert "welding" in coverage[0].message

    def test_skill_coverage_skipped_without_workers(self):
        assert validate([], [], [_task(RequiredSkills="welding")]) == []

    def test_max_concurrency_exceeds_qualified_workers(self):
        workers = [_worker(WorkerID="W1"), _worker(WorkerID="W2", Skills="sql")]
        issues = validate([], workers, [_task(MaxConcurrent="3")])
        warn = [i for i in issues if i.column == "MaxConcurrent"]
        assert len(warn) == 1
        assert warn[0].severity == WARNING
        assert "(1)" in warn[0].message

    def test_overloaded_worker(self):
        issues = validate([], [_worker(AvailableSlots="[1,2]", MaxLoadPerPhase="3")], [])
        assert [(i.column, i.severity) for i in issues] == [("MaxLoadPerPhase", WARNING)]

    def test_phase_saturation(self):
        workers = [_worker(AvailableSlots="[1]", MaxLoadPerPhase="1")]
        tasks = [
            _task(TaskID="T1", Duration="2", PreferredPhases="[1]"),
            _task(TaskID="T2", Duration="1", PreferredPhases="1"),
        ]
        issues = validate([], workers, tasks)
        saturation = [i for i in issues if "oversubscribed" in i.message]
        assert len(saturation) == 1
        assert saturation[0].entity == "tasks"
        assert saturation[0].row_index is None
        assert saturation[0].severity == WARNING
        assert "Phase 1" in saturation[0].message
        assert "3" in saturation[0].message

    def test_phase_within_capacity(self):
        workers = [_worker(AvailableSlots="[1,2]", MaxLoadPerPhase="2")]
        tasks = [_task(Duration="2", PreferredPhases="[1,2]")]
        assert not [i for i in validate([], workers, tasks) if "oversubscribed" in i.message]


class TestTotality:
    def test_crashing_check_does_not_stop_others(self, monkeypatch):
        def boom(rows):
            raise RuntimeError("boom")

        monkeypatch.setattr(validation, "_check_attributes_json", boom)
        issues = validate([_client(PriorityLevel="9", AttributesJSON="{bad")], [], [])
        assert [i.column for i in issues] == ["PriorityLevel"]

    def test_oversized_phase_cell_does_not_hide_other_rows(self):
        workers = [_worker(AvailableSlots="[1]", MaxLoadPerPhase="1")]
        tasks = [
            _task(PreferredPhases="abc"),
            _task(TaskID="T2", PreferredPhases="[" + "1" * 400 + "]"),
            _task(TaskID="T3", PreferredPhases="1-20240101"),
            _task(TaskID="T4", PreferredPhases="[1]", Duration="2"),
        ]
        issues = validate([], workers, tasks)
        assert [i.row_index for i in issues if i.column == "PreferredPhases"] == [0, 1, 2]
        assert [i.message for i in issues if "oversubscribed" in i.message] == [
            "Phase 1 is oversubscribed: total task duration 2 exceeds worker capacity 1"
        ]

    def test_non_mapping_rows_are_ignored(self):
        issues = validate(["junk", None, _client()], [], [])
        assert all(isinstance(i, ValidationIssue) for i in issues)

    def test_issues_are_hashable(self):
        issues = validate([_client(PriorityLevel="9"), _client(ClientID="C1")], [], [])
        assert len(set(issues)) == len(issues)


class TestHelpers:
    def test_issues_for_cell(self):
        issues = validate([_client(), _client(ClientID="C2", PriorityLevel="0")], [], [])
        assert issues_for_cell(issues, "clients", 1, "PriorityLevel")
        assert issues_for_cell(issues, "clients", 0, "PriorityLevel") == []

    def test_summarize(self):
        issues = validate([_client(PriorityLevel="9", GroupTag="Other")], [], [])
        summary = summarize(issues)
        assert summary["total"] == 2
        assert summary["errors"] == 1
        assert summary["warnings"] == 1
        assert summary["by_entity"]["clients"] == {"error": 1, "warning": 1}
        assert summary["by_entity"]["tasks"] == {"error": 0, "warning": 0}

    def test_to_dict(self):
        issue = ValidationIssue("clients", 0, "x", column="ClientID")
        assert issue.to_dict() == {
            "entity": "clients",
            "row_index": 0,
            "message": "x",
            "severity": "error",
            "column": "ClientID",
        }
