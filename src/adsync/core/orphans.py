"""
Orphan detection: accounts present under the root OU but absent from the batch.

Runs once, after every row has been planned. Optionally follows up with
DeleteOU actions for OUs that would be left holding nothing but orphans.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Set

from .cache import PlanningContext
from .directory import DirectoryIdentity, DirectoryReader
from .logging_setup import NullAdapter
from .mapping import MappingConfig
from .models import Action, ActionKind, Row
from .paths import canonical, is_domain_root, rdn_value, same_path, split_dn
from .templates import build_attributes, identity_key


def _norm(account: str) -> str:
    return account.strip().casefold()


class OrphanDetector:
    def __init__(
        self,
        mapping: MappingConfig,
        directory: DirectoryReader,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.mapping = mapping
        self.directory = directory
        self.log = logger or NullAdapter()

    def input_keys(self, rows: Iterable[Row]) -> Set[str]:
        """Normalized account names of every row, including rows that planned as errors."""
        keys: Set[str] = set()
        for row in rows:
            account = identity_key(build_attributes(row, self.mapping), self.mapping)
            if account:
                keys.add(_norm(account))
        return keys

    def detect(self, rows: Iterable[Row], ctx: Optional[PlanningContext] = None) -> List[Action]:
        """
        DeleteUser for each orphan (then DeleteOU when enabled).
        Directory failures propagate: the caller treats them as batch-fatal.
        """
        root = self.mapping.default_ou.strip()
        if not root:
            self.log.error("Orphan cleanup skipped: no root OU configured")
            return [
                Action(
                    kind=ActionKind.ERROR,
                    object_name="orphan-cleanup",
                    path="",
                    message="Orphan cleanup requires a root OU (default_ou)",
                )
            ]

        keys = self.input_keys(rows)
        identities = self.directory.list_identities_under(root)
        orphans = [i for i in identities if _norm(i.account) not in keys]
        self.log.info(
            "Orphan scan under %s: %s accounts in directory, %s in batch, %s orphans",
            root, len(identities), len(keys), len(orphans),
        )

        actions: List[Action] = []
        if self.mapping.is_enabled(ActionKind.DELETE_USER):
            for ident in orphans:
                actions.append(
                    Action(
                        kind=ActionKind.DELETE_USER,
                        object_name=ident.account,
                        path=ident.distinguished_name,
                        message=f"Delete account '{ident.account}' (not in import)",
                        attributes={
                            "DistinguishedName": ident.distinguished_name,
                            "DisplayName": ident.display_name,
                        },
                    )
                )

        if (
            self.mapping.empty_ous_enabled
            and self.mapping.is_enabled(ActionKind.DELETE_OU)
            and self.mapping.is_enabled(ActionKind.DELETE_USER)
        ):
            actions.extend(self._empty_ous(root, identities, orphans, ctx))
        return actions

    def _empty_ous(
        self,
        root: str,
        identities: List[DirectoryIdentity],
        orphans: List[DirectoryIdentity],
        ctx: Optional[PlanningContext],
    ) -> List[Action]:
        orphan_dns = {canonical(o.distinguished_name).casefold() for o in orphans}
        kept_dns = [
            canonical(i.distinguished_name).casefold()
            for i in identities
            if canonical(i.distinguished_name).casefold() not in orphan_dns
        ]
        candidates: Dict[str, str] = {}
        for o in orphans:
            ou = o.ou
            if ou:
                candidates.setdefault(canonical(ou).casefold(), ou)

        emptied: List[str] = []
        for key, ou in candidates.items():
            if same_path(ou, root) or is_domain_root(ou):
                continue
            if ctx is not None and ctx.has_target_within(ou):
                continue
            if any(dn.endswith("," + key) for dn in kept_dns):
                continue
            emptied.append(ou)

        # deepest first so children go before parents
        emptied.sort(key=lambda p: len(split_dn(p)), reverse=True)
        actions = []
        for ou in emptied:
            self.log.info("OU will be empty after cleanup: %s", ou)
            actions.append(
                Action(
                    kind=ActionKind.DELETE_OU,
                    object_name=rdn_value(ou),
                    path=ou,
                    message=f"Delete organizational unit '{rdn_value(ou)}' (empty after cleanup)",
                    attributes={"ouDn": ou},
                )
            )
        return actions
