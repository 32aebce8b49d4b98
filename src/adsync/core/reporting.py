"""
Reporting helpers (table or JSON) for an Analysis.

`print_actions` produces a compact table that fits CLI usage; JSON output
is also supported for machine consumption.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from .models import Action, Analysis
from .summary import format_summary

_COLUMNS = ("row", "kind", "object", "path", "message")
_MAX_WIDTH = {"path": 60, "message": 70}


def _row_of(action: Action) -> Dict[str, Any]:
    return {
        "row": "—" if action.row_index is None else action.row_index,
        "kind": action.kind.value,
        "object": action.object_name or "—",
        "path": action.path or "—",
        "message": action.message or "—",
    }


def _fmt(value: Any, col: str) -> str:
    s = "—" if value is None or value == "" else str(value)
    limit = _MAX_WIDTH.get(col)
    if limit and len(s) > limit:
        return s[: limit - 1] + "…"
    return s


def render_table(actions: List[Action]) -> str:
    rows = [_row_of(a) for a in actions]
    widths = {c: len(c) for c in _COLUMNS}
    for r in rows:
        for c in _COLUMNS:
            widths[c] = max(widths[c], len(_fmt(r[c], c)))
    lines = [
        "| " + " | ".join(c.ljust(widths[c]) for c in _COLUMNS) + " |",
        "| " + " | ".join("-" * widths[c] for c in _COLUMNS) + " |",
    ]
    for r in rows:
        lines.append("| " + " | ".join(_fmt(r[c], c).ljust(widths[c]) for c in _COLUMNS) + " |")
    return "\n".join(lines)


def print_actions(analysis: Analysis, fmt: str = "table", out: Optional[Any] = None) -> None:
    """Render an Analysis as a table followed by its summary, or as JSON."""
    if fmt == "json":
        print(json.dumps(analysis.to_dict(), indent=2, ensure_ascii=False), file=out)
        return
    if analysis.actions:
        print(render_table(list(analysis.actions)), file=out)
    else:
        print("No actions planned.", file=out)
    print(format_summary(analysis.summary), file=out)


def write_analysis(analysis: Analysis, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(analysis.to_dict(), f, indent=2, ensure_ascii=False)
