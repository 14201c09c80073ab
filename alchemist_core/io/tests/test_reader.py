"""Reader tests: CSV/XLSX tables, header remapping and rules.json."""

from __future__ import annotations

from pathlib import Path

import pytest

from alchemist_core.assistant import HeuristicAssistant
from alchemist_core.io.reader import (
    find_table_file,
    header_of,
    load_rules_and_weights,
    load_table,
    load_workspace,
    remap_headers,
)
from alchemist_core.validation import summarize
from alchemist_core.workspace import preview_allocation, validate_workspace

FIXTURES_DIR = Path(__file__).parent / "fixtures" / "minimal"


@pytest.fixture
def workspace():
    """Load the minimal fixture directory."""
    return load_workspace(FIXTURES_DIR)


class TestLoadTable:
    def test_csv_rows_are_strings(self):
        rows = load_table(FIXTURES_DIR / "clients.csv")
        assert len(rows) == 3
        assert rows[0]["ClientID"] == "C1"
        assert rows[0]["RequestedTaskIDs"] == "T1,T2"
        assert rows[0]["AttributesJSON"] == '{"budget": 1000}'

    def test_xlsx_first_sheet(self, tmp_path):
        from openpyxl import Workbook

        wb = Workbook()
        sheet = wb.active
        sheet.append(["TaskID", "TaskName", "Duration"])
        sheet.append(["T1", "ETL", 2])
        sheet.append([None, None, None])
        sheet.append(["T2", None, 1])
        wb.create_sheet("Ignored").append(["x"])
        path = tmp_path / "tasks.xlsx"
        wb.save(str(path))

        rows = load_table(path)
        assert rows == [
            {"TaskID": "T1", "TaskName": "ETL", "Duration": 2},
            {"TaskID": "T2", "TaskName": "", "Duration": 1},
        ]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_table(tmp_path / "nope.csv")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "clients.json"
        path.write_text("[]")
        with pytest.raises(ValueError):
            load_table(path)

    def test_find_table_file(self, tmp_path):
        assert find_table_file(FIXTURES_DIR, "workers") == FIXTURES_DIR / "workers.csv"
        assert find_table_file(tmp_path, "workers") is None


class TestHeaders:
    def test_remap_is_positional(self):
        rows = [{"client id": "C1", "name": "Acme"}]
        assert remap_headers(rows, ["ClientID", "ClientName"]) == [{"ClientID": "C1", "ClientName": "Acme"}]

    def test_remap_length_mismatch(self):
        with pytest.raises(ValueError):
            remap_headers([{"a": 1}], ["A", "B"])

    def test_header_of_empty(self):
        assert header_of([]) == []

    def test_load_workspace_maps_headers(self, tmp_path):
        (tmp_path / "clients.csv").write_text(
            "client id,client_name,priority level\nC1,Acme,3\n", encoding="utf-8",
        )
        ws = load_workspace(tmp_path, assistant=HeuristicAssistant())
        assert ws.clients == ({"ClientID": "C1", "ClientName": "Acme", "PriorityLevel": "3"},)
        assert ws.workers == ()


class TestRulesDocument:
    def test_load_rules_and_weights(self):
        rules, weights = load_rules_and_weights((FIXTURES_DIR / "rules.json").read_text())
        assert [r.type for r in rules] == ["coRun", "loadLimit"]
        assert rules[0].ai_parsed
        assert rules[1].parameters == {"maxSlotsPerPhase": 1}
        assert weights.priority_level == 40.0

    def test_missing_weights_use_defaults(self):
        rules, weights = load_rules_and_weights('{"rules": []}')
        assert rules == []
        assert weights.fairness == 5.0

    @pytest.mark.parametrize("text", [
        "[]",
        '{"rules": {}}',
        '{"rules": [1]}',
        '{"rules": [{"type": "teleport"}]}',
        '{"rules": [{"type": "coRun", "parameters": [1, 2]}]}',
        '{"weights": [1, 2]}',
        '{"weights": {"cost": 500}}',
        "not json",
    ])
    def test_rejects_bad_documents(self, text):
        with pytest.raises(ValueError):
            load_rules_and_weights(text)


class TestLoadWorkspace:
    def test_counts(self, workspace):
        assert workspace.counts() == {"clients": 3, "workers": 3, "tasks": 3, "rules": 2}
        assert set(workspace.last_modified) == {"clients", "workers", "tasks"}

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_workspace(tmp_path / "missing")

    def test_validation_of_fixture(self, workspace):
        issues = validate_workspace(workspace)
        summary = summarize(issues)
        assert (summary["errors"], summary["warnings"]) == (5, 2)
        flagged = {(i.entity, i.row_index, i.column) for i in issues}
        assert flagged == {
            ("clients", 2, "PriorityLevel"),
            ("clients", 2, "RequestedTaskIDs"),
            ("clients", 2, "AttributesJSON"),
            ("clients", 2, "GroupTag"),
            ("workers", 2, "AvailableSlots"),
            ("workers", 1, "MaxLoadPerPhase"),
            ("tasks", 2, "Duration"),
        }

    def test_allocation_of_fixture(self, workspace):
        candidates = preview_allocation(workspace)
        assert len(candidates) == 6
        assert candidates[0].client_id == "C3"
        assert "T9" not in {c.task_id for c in candidates}
