"""
Directory collaborators consumed by the planning engine.

The engine only reads. Writes belong to the executor that later consumes
the planned actions.

- DirectoryReader / ShareInspector: the capability protocols.
- SnapshotDirectory: in-memory directory state (Python data or YAML file).
- UncShareInspector: checks per-user shares on a file server.
"""

from __future__ import annotations

import os
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

import yaml

from .paths import canonical, parent_dn, split_dn


class DirectoryError(RuntimeError):
    """Raised when the directory collaborator cannot answer a query."""


@dataclass(frozen=True)
class DirectoryIdentity:
    """One account found under a subtree."""
    account: str
    distinguished_name: str
    display_name: str = ""

    @property
    def ou(self) -> str:
        return parent_dn(self.distinguished_name)


class DirectoryReader(Protocol):
    def ou_exists(self, path: str) -> bool: ...

    def user_exists(self, account: str) -> bool: ...

    def get_current_ou(self, account: str) -> Optional[str]: ...

    def get_attributes(self, account: str, names: Sequence[str]) -> Dict[str, Optional[str]]: ...

    def list_identities_under(self, root: str) -> List[DirectoryIdentity]: ...


class ShareInspector(Protocol):
    def share_exists(self, server: str, account: str, local_path: str) -> bool: ...


def _key(value: str) -> str:
    return value.strip().casefold()


def _dn_key(dn: str) -> str:
    try:
        return canonical(dn).casefold()
    except ValueError as exc:
        raise DirectoryError(str(exc)) from exc


class SnapshotDirectory:
    """
    Read-only directory state held in memory.

    - `ous`: iterable of OU DNs.
    - `users`: iterable of {"account", "dn", "display_name"?, "attributes"?}.
    - `shares`: iterable of account names whose share already exists.

    Thread-safe; counts queries per capability in `calls`.
    """

    def __init__(
        self,
        ous: Iterable[str] = (),
        users: Iterable[Mapping[str, Any]] = (),
        shares: Iterable[str] = (),
    ) -> None:
        self._lock = threading.Lock()
        self.calls: Counter = Counter()
        self._ous = {_dn_key(o) for o in ous if str(o).strip()}
        self._users: Dict[str, Dict[str, Any]] = {}
        for u in users:
            account = str(u.get("account") or u.get("sAMAccountName") or "").strip()
            dn = str(u.get("dn") or "").strip()
            if not account or not dn:
                raise DirectoryError(f"Snapshot user needs 'account' and 'dn': {dict(u)!r}")
            attrs = {str(k).lower(): v for k, v in (u.get("attributes") or {}).items()}
            self._users[_key(account)] = {
                "account": account,
                "dn": dn,
                "display_name": str(u.get("display_name") or attrs.get("displayname") or ""),
                "attributes": attrs,
            }
            _dn_key(dn)
            # containers of known users exist too
            ou = parent_dn(dn)
            if ou:
                self._ous.add(_dn_key(ou))
        self._shares = {_key(s) for s in shares}

    @classmethod
    def from_yaml(cls, path: str) -> "SnapshotDirectory":
        if not os.path.exists(path):
            raise DirectoryError(f"Snapshot file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise DirectoryError(f"Invalid snapshot YAML {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise DirectoryError(f"Top-level YAML must be a mapping: {path}")
        return cls(
            ous=data.get("ous") or [],
            users=data.get("users") or [],
            shares=data.get("shares") or [],
        )

    def _count(self, name: str) -> None:
        with self._lock:
            self.calls[name] += 1

    def ou_exists(self, path: str) -> bool:
        self._count("ou_exists")
        return _dn_key(path) in self._ous

    def user_exists(self, account: str) -> bool:
        self._count("user_exists")
        return _key(account) in self._users

    def get_current_ou(self, account: str) -> Optional[str]:
        self._count("get_current_ou")
        user = self._users.get(_key(account))
        if user is None:
            return None
        return parent_dn(user["dn"]) or None

    def get_attributes(self, account: str, names: Sequence[str]) -> Dict[str, Optional[str]]:
        self._count("get_attributes")
        user = self._users.get(_key(account))
        if user is None:
            return {}
        attrs = user["attributes"]
        out: Dict[str, Optional[str]] = {}
        for n in names:
            v = attrs.get(n.lower())
            out[n] = None if v is None else str(v)
        return out

    def list_identities_under(self, root: str) -> List[DirectoryIdentity]:
        self._count("list_identities_under")
        suffix = split_dn(canonical(root).casefold())
        out: List[DirectoryIdentity] = []
        for user in self._users.values():
            parts = split_dn(canonical(user["dn"]).casefold())
            if suffix and parts[-len(suffix):] != suffix:
                continue
            out.append(DirectoryIdentity(user["account"], user["dn"], user["display_name"]))
        return out

    def share_exists(self, server: str, account: str, local_path: str) -> bool:
        self._count("share_exists")
        return _key(account) in self._shares


class UncShareInspector:
    """Looks for `\\\\<server>\\<account>$` on the file system."""

    def share_exists(self, server: str, account: str, local_path: str) -> bool:
        unc = f"\\\\{server}\\{account}$"
        try:
            return os.path.isdir(unc)
        except OSError as exc:
            raise DirectoryError(f"Cannot inspect share {unc}: {exc}") from exc
