"""Summary aggregation over planned actions."""

from __future__ import annotations

from collections import Counter
from typing import Iterable

from .models import Action, ActionKind, Summary

# stable order for readability
_DISPLAY_ORDER = (
    ActionKind.CREATE_OU,
    ActionKind.CREATE_GROUP,
    ActionKind.CREATE_USER,
    ActionKind.UPDATE_USER,
    ActionKind.MOVE_USER,
    ActionKind.ADD_USER_TO_GROUP,
    ActionKind.DELETE_USER,
    ActionKind.DELETE_OU,
    ActionKind.CREATE_STUDENT_FOLDER,
    ActionKind.CREATE_CLASS_GROUP_FOLDER,
    ActionKind.CREATE_TEAM,
    ActionKind.ERROR,
)


def summarize(actions: Iterable[Action], total_objects: int) -> Summary:
    """Counts per kind, derived from the actions only."""
    counts = Counter(a.kind for a in actions)
    return Summary(total_objects=total_objects, counts=dict(counts))


def format_summary(summary: Summary) -> str:
    parts = [f"rows={summary.total_objects}"]
    parts += [f"{kind.value}={summary.count(kind)}" for kind in _DISPLAY_ORDER]
    return " | ".join(parts)
