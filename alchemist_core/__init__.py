"""Validation, allocation scoring and rule store for client/worker/task data."""

from .allocator import AllocationCandidate, explain_candidate, score, worker_load_overview
from .assistant import ClaudeAssistant, CollaboratorError, DataCorrection, HeuristicAssistant, ModelFinding
from .rules import Rule, RuleSuggestion, Weights, make_rule
from .validation import ValidationIssue, issues_for_cell, summarize, validate
from .workspace import (
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

# io module -- openpyxl is only imported when a report is rendered
from .io import load_workspace, render_report_xlsx, write_workspace

__all__ = [
    "AllocationCandidate",
    "ClaudeAssistant",
    "CollaboratorError",
    "DataCorrection",
    "HeuristicAssistant",
    "ModelFinding",
    "Rule",
    "RuleSuggestion",
    "ValidationIssue",
    "Weights",
    "Workspace",
    "add_rule",
    "apply_correction",
    "current_weights",
    "explain_candidate",
    "issues_for_cell",
    "list_rules",
    "load_workspace",
    "make_rule",
    "preview_allocation",
    "remove_rule",
    "render_report_xlsx",
    "score",
    "set_weight",
    "summarize",
    "validate",
    "validate_workspace",
    "with_table",
    "worker_load_overview",
    "write_workspace",
]
