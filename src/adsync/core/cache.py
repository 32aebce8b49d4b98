"""
Per-call shared planning state.

ExistenceCache memoizes OU existence (known, missing, scheduled) so each
distinct path is queried at most once per analysis. PlanningContext owns
the cache plus the only other cross-row state: OU/group actions scheduled
ahead of the rows, the group-by-OU index, and one-per-batch claims.
One context is created per `analyze()` call and dropped afterwards.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, Set, Tuple

from .logging_setup import NullAdapter
from .mapping import MappingConfig
from .models import Action, ActionKind
from .paths import canonical, is_domain_root, parent_dn, rdn_value

OU_EXISTS = "exists"
OU_SCHEDULED = "scheduled"
OU_MISSING = "missing"


def _k(path: str) -> str:
    return canonical(path).casefold()


class ExistenceCache:
    """Thread-safe memo of OU paths known to exist, known missing, or scheduled."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._known: Set[str] = set()
        self._missing: Set[str] = set()
        self._scheduled: Set[str] = set()
        self._path_locks: Dict[str, threading.Lock] = {}

    def contains(self, path: str) -> bool:
        key = _k(path)
        with self._lock:
            return key in self._known or key in self._scheduled

    def add(self, path: str) -> None:
        key = _k(path)
        with self._lock:
            self._known.add(key)
            self._missing.discard(key)

    def is_scheduled(self, path: str) -> bool:
        with self._lock:
            return _k(path) in self._scheduled

    def schedule(self, path: str) -> bool:
        """Mark `path` as planned for creation. True only for the first caller."""
        key = _k(path)
        with self._lock:
            if key in self._scheduled or key in self._known:
                return False
            self._scheduled.add(key)
            self._missing.discard(key)
            return True

    def _path_lock(self, key: str) -> threading.Lock:
        with self._lock:
            return self._path_locks.setdefault(key, threading.Lock())

    def check(self, path: str, query: Callable[[str], bool]) -> bool:
        """
        Existence of `path`, querying the directory at most once per path.
        Query failures propagate and are not memoized.
        """
        key = _k(path)
        if self.contains(path):
            return True
        with self._path_lock(key):
            with self._lock:
                if key in self._known or key in self._scheduled:
                    return True
                if key in self._missing:
                    return False
            exists = bool(query(path))
            with self._lock:
                (self._known if exists else self._missing).add(key)
            return exists

    def __len__(self) -> int:
        with self._lock:
            return len(self._known) + len(self._scheduled)


class PlanningContext:
    """Explicit shared state for one analysis call."""

    def __init__(
        self,
        mapping: MappingConfig,
        ou_exists: Callable[[str], bool],
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.mapping = mapping
        self.cache = ExistenceCache()
        self._ou_exists = ou_exists
        self.log = logger or NullAdapter()
        self._lock = threading.Lock()
        self._scheduled_actions: List[Action] = []
        self._groups_by_ou: Dict[str, Tuple[str, ...]] = {}
        self._claims: Set[Tuple[ActionKind, str]] = set()
        self._targets: Set[str] = set()

    # ----- OU scheduling -----

    def _can_create(self) -> bool:
        return self.mapping.create_missing_ous and self.mapping.is_enabled(ActionKind.CREATE_OU)

    def ensure_ou(self, path: str) -> str:
        """
        Make sure `path` exists or is planned.

        Returns OU_EXISTS, OU_SCHEDULED (a CreateOU is planned, possibly by
        another row) or OU_MISSING (absent and creation not allowed).
        Missing ancestors are scheduled before the path itself.
        """
        if not path or is_domain_root(path):
            return OU_EXISTS
        if self.cache.check(path, self._ou_exists):
            return OU_SCHEDULED if self.cache.is_scheduled(path) else OU_EXISTS
        if not self._can_create():
            return OU_MISSING

        parent = parent_dn(path)
        if parent and not is_domain_root(parent):
            self.ensure_ou(parent)

        with self._lock:
            if not self.cache.schedule(path):
                return OU_SCHEDULED
            self._append_ou_actions(path, parent)
        self.log.info("OU scheduled for creation: %s", path)
        return OU_SCHEDULED

    def _append_ou_actions(self, path: str, parent: str) -> None:
        # caller holds self._lock
        name = rdn_value(path)
        self._scheduled_actions.append(
            Action(
                kind=ActionKind.CREATE_OU,
                object_name=name,
                path=path,
                message=f"Create organizational unit '{name}'",
                attributes={"ouName": name, "parentDn": parent},
            )
        )
        groups_cfg = self.mapping.ou_groups
        if not (groups_cfg.enabled and self.mapping.is_enabled(ActionKind.CREATE_GROUP)):
            return
        groups = []
        for label, security in (("Sec", True), ("Dist", False)):
            group = f"{groups_cfg.prefix}{label}_{name}"
            groups.append(group)
            self._scheduled_actions.append(
                Action(
                    kind=ActionKind.CREATE_GROUP,
                    object_name=group,
                    path=path,
                    message=f"Create {'security' if security else 'distribution'} group '{group}'",
                    attributes={
                        "groupName": group,
                        "ouDn": path,
                        "isSecurity": str(security).lower(),
                        "isGlobal": "true",
                    },
                )
            )
        self._groups_by_ou[_k(path)] = tuple(groups)

    def groups_for(self, path: str) -> Tuple[str, ...]:
        """Groups declared for auto-creation in `path` during this batch."""
        with self._lock:
            return self._groups_by_ou.get(_k(path), ())

    def scheduled_actions(self) -> List[Action]:
        with self._lock:
            return list(self._scheduled_actions)

    # ----- once-per-batch claims -----

    def claim(self, kind: ActionKind, name: str) -> bool:
        """True the first time (kind, name) is claimed in this batch."""
        key = (kind, name.strip().casefold())
        with self._lock:
            if key in self._claims:
                return False
            self._claims.add(key)
            return True

    # ----- row targets -----

    def note_target(self, path: str) -> None:
        with self._lock:
            self._targets.add(_k(path))

    def has_target_within(self, path: str) -> bool:
        """True when some row targets `path` or an OU below it."""
        key = _k(path)
        with self._lock:
            return any(t == key or t.endswith("," + key) for t in self._targets)
