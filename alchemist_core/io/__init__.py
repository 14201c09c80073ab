"""Input/output layer for the curation workspace.

Public API:
    load_table(path)                  -- CSV/XLSX file -> list of row dicts
    remap_headers(rows, headers)      -- positional column relabel
    load_workspace(directory)         -- tables + rules.json -> Workspace
    load_rules_and_weights(text)      -- rules.json text -> (rules, weights)
    export_csv(rows, path)            -- rows -> CSV file
    dump_rules_and_weights(r, w)      -- (rules, weights) -> rules.json text
    write_workspace(ws, directory)    -- Workspace -> CSVs + rules.json
    render_report_xlsx(ws, path)      -- Workspace -> multi-sheet report.xlsx
"""

from .reader import load_rules_and_weights, load_table, load_workspace, remap_headers
from .writer import dump_rules_and_weights, export_csv, write_workspace

__all__ = [
    "dump_rules_and_weights",
    "export_csv",
    "load_rules_and_weights",
    "load_table",
    "load_workspace",
    "remap_headers",
    "write_workspace",
]

# Lazy import for the optional openpyxl report dependency.
def render_report_xlsx(*args, **kwargs):
    from .xlsx import render_report_xlsx as _fn
    return _fn(*args, **kwargs)
