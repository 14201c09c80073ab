"""Tests for the rule/weight store and the workspace context object."""

from __future__ import annotations

import pytest

from alchemist_core.rules import RULE_TYPES, Rule, RuleSuggestion, Weights, make_rule
from alchemist_core.workspace import (
    Workspace,
    add_rule,
    apply_correction,
    current_weights,
    list_rules,
    preview_allocation,
    remove_rule,
    set_weight,
    validate_workspace,
    with_table,
)


class TestRules:
    def test_freeform_text_is_description(self):
        rule = make_rule("freeForm", "keep Alice off nights")
        assert rule.description == "keep Alice off nights"
        assert rule.input is None

    def test_structured_text_is_input(self):
        rule = make_rule("coRun", "T1,T2")
        assert rule.input == "T1,T2"
        assert rule.description is None

    def test_created_is_utc_iso(self):
        assert make_rule("loadLimit").created.endswith("Z")

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            make_rule("teleport")
        with pytest.raises(ValueError):
            Rule(type="")

    def test_all_types_accepted(self):
        for rule_type in RULE_TYPES:
            assert Rule(type=rule_type).type == rule_type

    def test_to_dict_uses_export_keys(self):
        rule = Rule(type="coRun", created="2024-01-01T00:00:00.000Z", description="x",
                    tasks=("T1", "T2"), ai_parsed=True)
        assert rule.to_dict() == {
            "type": "coRun",
            "created": "2024-01-01T00:00:00.000Z",
            "description": "x",
            "tasks": ["T1", "T2"],
            "aiParsed": True,
        }

    def test_from_dict_accepts_comma_task_list(self):
        rule = Rule.from_dict({"type": "coRun", "tasks": "T1, T2", "created": "2024-01-01T00:00:00Z"})
        assert rule.tasks == ("T1", "T2")
        assert rule.created == "2024-01-01T00:00:00Z"

    def test_from_dict_rejects_non_object_parameters(self):
        with pytest.raises(ValueError):
            Rule.from_dict({"type": "loadLimit", "parameters": [2]})
        with pytest.raises(ValueError):
            Rule.from_dict({"type": "loadLimit", "parameters": "max 2"})

    def test_suggestion_to_rule(self):
        suggestion = RuleSuggestion(type="loadLimit", reason="Worker Bob is often overloaded.", worker="Bob")
        rule = suggestion.to_rule()
        assert rule.type == "loadLimit"
        assert rule.description == "Worker Bob is often overloaded."
        assert rule.worker == "Bob"


class TestWeights:
    def test_defaults(self):
        assert Weights().to_dict() == {
            "priorityLevel": 5.0,
            "requestedTaskFulfillment": 5.0,
            "fairness": 5.0,
            "cost": 5.0,
            "workload": 5.0,
        }

    @pytest.mark.parametrize("value", [-1, 100.5, float("nan"), "10", True])
    def test_invalid_values(self, value):
        with pytest.raises(ValueError):
            Weights(fairness=value)

    def test_bounds_inclusive(self):
        assert Weights(cost=0, workload=100).workload == 100.0

    def test_from_dict_ignores_unknown_keys(self):
        weights = Weights.from_dict({"fairness": 30, "speed": 99})
        assert weights.fairness == 30.0
        assert weights.cost == 5.0


class TestStore:
    def test_add_and_list_rules(self):
        ws = add_rule(Workspace(), make_rule("coRun", "T1,T2"))
        ws = add_rule(ws, make_rule("freeForm", "note"))
        assert [r.type for r in list_rules(ws)] == ["coRun", "freeForm"]
        assert "rules" in ws.last_modified

    def test_operations_return_new_workspace(self):
        ws = Workspace()
        updated = add_rule(ws, make_rule("coRun"))
        assert ws.rules == ()
        assert len(updated.rules) == 1

    def test_remove_rule_keeps_order(self):
        ws = Workspace()
        for text in ("a", "b", "c"):
            ws = add_rule(ws, make_rule("freeForm", text))
        ws = remove_rule(ws, 1)
        assert [r.description for r in ws.rules] == ["a", "c"]

    def test_remove_rule_out_of_range(self):
        ws = add_rule(Workspace(), make_rule("coRun"))
        with pytest.raises(IndexError):
            remove_rule(ws, 1)
        with pytest.raises(IndexError):
            remove_rule(ws, -1)

    def test_set_weight_camel_and_snake(self):
        ws = set_weight(Workspace(), "priorityLevel", 40)
        ws = set_weight(ws, "workload", 0)
        ws = set_weight(ws, "requested_task_fulfillment", 70)
        weights = current_weights(ws)
        assert weights.priority_level == 40.0
        assert weights.workload == 0.0
        assert weights.requested_task_fulfillment == 70.0
        assert "weights" in ws.last_modified

    def test_set_weight_rejects_bad_input(self):
        with pytest.raises(ValueError):
            set_weight(Workspace(), "speed", 10)
        with pytest.raises(ValueError):
            set_weight(Workspace(), "cost", 101)


class TestTables:
    def test_with_table_copies_rows(self):
        rows = [{"ClientID": "C1"}]
        ws = with_table(Workspace(), "clients", rows)
        rows[0]["ClientID"] = "C9"
        assert ws.table("clients") == [{"ClientID": "C1"}]
        assert "clients" in ws.last_modified

    def test_unknown_entity(self):
        with pytest.raises(ValueError):
            with_table(Workspace(), "robots", [])

    def test_apply_correction(self):
        ws = with_table(Workspace(), "clients", [{"ClientID": "C1", "PriorityLevel": "9"}])
        ws = apply_correction(ws, "clients", 0, "PriorityLevel", 5)
        assert ws.table("clients")[0]["PriorityLevel"] == 5

    def test_apply_correction_out_of_range(self):
        with pytest.raises(IndexError):
            apply_correction(Workspace(), "clients", 0, "PriorityLevel", 5)

    def test_recomputed_on_demand(self):
        client = {"ClientID": "C1", "ClientName": "Acme", "PriorityLevel": "9",
                  "RequestedTaskIDs": "T1", "GroupTag": "GroupA", "AttributesJSON": "{}"}
        task = {"TaskID": "T1", "TaskName": "ETL", "Category": "Data", "Duration": "1",
                "RequiredSkills": "", "PreferredPhases": "1", "MaxConcurrent": "1"}
        worker = {"WorkerID": "W1", "WorkerName": "Alice", "Skills": "python", "AvailableSlots": "[1]",
                  "MaxLoadPerPhase": "1", "WorkerGroup": "A", "QualificationLevel": "1"}
        ws = with_table(Workspace(), "clients", [client])
        ws = with_table(ws, "tasks", [task])
        ws = with_table(ws, "workers", [worker])

        assert [i.column for i in validate_workspace(ws)] == ["PriorityLevel"]
        ws = apply_correction(ws, "clients", 0, "PriorityLevel", "5")
        assert validate_workspace(ws) == []

        before = preview_allocation(ws)[0].score
        ws = set_weight(ws, "priorityLevel", 50)
        assert preview_allocation(ws)[0].score > before
