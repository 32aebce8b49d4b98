"""
Data model for adsync.

- Row: immutable, case-insensitive view over one input record.
- ActionKind / Action: planned (not executed) directory mutations.
- Summary / Analysis: the immutable result of one `analyze()` call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple


class Row(Mapping[str, str]):
    """
    One input record: ordered columns, case-insensitive lookups, string values.

    `None` cells are stored as "". Unknown columns are simply absent,
    so `row.get(col, "")` is the lenient lookup used by the resolver.
    """

    __slots__ = ("_values", "_lookup", "index")

    def __init__(self, values: Mapping[str, Any], index: int = 0) -> None:
        ordered: Dict[str, str] = {}
        for k, v in values.items():
            name = str(k).strip()
            if not name:
                continue
            ordered[name] = "" if v is None else str(v)
        self._values = ordered
        # first occurrence wins on case-insensitive clashes
        lookup: Dict[str, str] = {}
        for name in ordered:
            lookup.setdefault(name.casefold(), name)
        self._lookup = lookup
        self.index = index

    def __getitem__(self, key: str) -> str:
        name = self._lookup.get(str(key).strip().casefold())
        if name is None:
            raise KeyError(key)
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Row(index={self.index}, values={self._values!r})"

    def as_dict(self) -> Dict[str, str]:
        return dict(self._values)


class ActionKind(str, Enum):
    CREATE_OU = "CreateOU"
    CREATE_USER = "CreateUser"
    UPDATE_USER = "UpdateUser"
    MOVE_USER = "MoveUser"
    DELETE_USER = "DeleteUser"
    DELETE_OU = "DeleteOU"
    CREATE_GROUP = "CreateGroup"
    ADD_USER_TO_GROUP = "AddUserToGroup"
    CREATE_STUDENT_FOLDER = "CreateStudentFolder"
    CREATE_CLASS_GROUP_FOLDER = "CreateClassGroupFolder"
    CREATE_TEAM = "CreateTeam"
    ERROR = "Error"

    @classmethod
    def parse(cls, value: Any) -> "ActionKind":
        """
        Accept "CreateOU", "createou" or "CREATE_OU" style names.
        Raises ValueError for anything else.
        """
        if isinstance(value, ActionKind):
            return value
        wanted = str(value or "").replace("_", "").strip().lower()
        for kind in cls:
            if kind.value.lower() == wanted:
                return kind
        raise ValueError(f"Unknown action kind: {value!r}")


@dataclass(frozen=True)
class Action:
    """One planned directory mutation."""
    kind: ActionKind
    object_name: str
    path: str = ""
    message: str = ""
    # mappingproxy is unhashable; equality still compares it
    attributes: Mapping[str, str] = field(default_factory=dict, hash=False)
    row_index: Optional[int] = None

    def __post_init__(self) -> None:
        # freeze the attribute map; values are always strings
        frozen = MappingProxyType(
            {str(k): "" if v is None else str(v) for k, v in dict(self.attributes).items()}
        )
        object.__setattr__(self, "attributes", frozen)
        object.__setattr__(self, "object_name", (self.object_name or "").strip())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "object_name": self.object_name,
            "path": self.path,
            "message": self.message,
            "attributes": dict(self.attributes),
            "row_index": self.row_index,
        }


@dataclass(frozen=True)
class Summary:
    """Counts per action kind; build it with `core.summary.summarize`."""
    total_objects: int
    counts: Mapping[ActionKind, int] = field(hash=False)

    def __post_init__(self) -> None:
        full = {kind: int(self.counts.get(kind, 0)) for kind in ActionKind}
        object.__setattr__(self, "counts", MappingProxyType(full))

    def count(self, kind: ActionKind) -> int:
        return self.counts[kind]

    @property
    def total_actions(self) -> int:
        return sum(self.counts.values())

    @property
    def error_count(self) -> int:
        return self.counts[ActionKind.ERROR]

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"total_objects": self.total_objects}
        out.update({kind.value: n for kind, n in self.counts.items()})
        return out


@dataclass(frozen=True)
class Analysis:
    """Ordered planned actions plus their summary. Never mutated after creation."""
    actions: Tuple[Action, ...]
    summary: Summary
    run_id: str = ""
    duration_sec: float = 0.0

    def of_kind(self, kind: ActionKind) -> Tuple[Action, ...]:
        return tuple(a for a in self.actions if a.kind is kind)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "duration_sec": round(self.duration_sec, 3),
            "summary": self.summary.to_dict(),
            "actions": [a.to_dict() for a in self.actions],
        }
