"""
Row planner: turns one input row into its planned actions.

Per row:
  build attributes -> account name (Error if blank) -> target OU (ensure/schedule)
  -> classify account: CreateUser / MoveUser / UpdateUser / no action
  -> group memberships for new accounts -> optional side effects

- Directory reads only; nothing is written.
- Row-level isolation: a failure while classifying an existing account
  degrades to a best-effort UpdateUser, never aborts the batch.
"""

from __future__ import annotations

import logging
from typing import List, Mapping, Optional

from .cache import OU_MISSING, PlanningContext
from .differ import changed_attributes, comparable_attributes
from .directory import DirectoryReader, ShareInspector
from .logging_setup import NullAdapter
from .models import Action, ActionKind, Row
from .paths import resolve_target_ou, same_path
from .side_effects import plan_side_effects
from .templates import build_attributes, identity_key


class RowPlanner:
    """
    Plans single rows against a directory reader and a shared PlanningContext.

    Safe to call from many worker threads at once: all cross-row state lives
    in the context.
    """

    def __init__(
        self,
        ctx: PlanningContext,
        directory: DirectoryReader,
        shares: Optional[ShareInspector] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.ctx = ctx
        self.mapping = ctx.mapping
        self.directory = directory
        self.shares = shares
        self.log = logger or NullAdapter()

    def plan(self, row: Row) -> List[Action]:
        m = self.mapping
        attrs = build_attributes(row, m)
        account = identity_key(attrs, m)
        if not account:
            self.log.error("Row %s: account name could not be resolved", row.index)
            return [
                Action(
                    kind=ActionKind.ERROR,
                    object_name="Unknown",
                    path=m.default_ou,
                    message=f"Row {row.index}: account name ({m.identity_attribute}) could not be resolved",
                    attributes=row.as_dict(),
                    row_index=row.index,
                )
            ]

        target = resolve_target_ou(row, m)
        try:
            state = self.ctx.ensure_ou(target)
        except Exception as exc:
            self.log.error("Row %s: cannot verify OU %s: %s", row.index, target, exc)
            return [
                Action(
                    kind=ActionKind.ERROR,
                    object_name=account,
                    path=target,
                    message=f"Cannot verify organizational unit '{target}': {exc}",
                    attributes=attrs,
                    row_index=row.index,
                )
            ]
        if state == OU_MISSING:
            self.log.warning(
                "Row %s: OU %s does not exist and will not be created; using %s",
                row.index, target, m.default_ou,
            )
            target = m.default_ou
        self.ctx.note_target(target)

        actions: List[Action] = []
        identity = self._classify(row, account, attrs, target)
        if identity is not None:
            actions.append(identity)
            if identity.kind is ActionKind.CREATE_USER:
                actions.extend(self._memberships(row, account, attrs, target))
        actions.extend(
            plan_side_effects(row, account, attrs, target, self.ctx, self.shares, self.log)
        )
        return actions

    # ----- identity classification -----

    def _classify(self, row: Row, account: str, attrs: Mapping[str, str], target: str) -> Optional[Action]:
        m = self.mapping
        try:
            if not self.directory.user_exists(account):
                self.log.info("Row %s: will create %s in %s", row.index, account, target)
                return self._action(ActionKind.CREATE_USER, row, account, target, attrs,
                                    f"Create account '{account}'")

            current_ou = self.directory.get_current_ou(account)
            if current_ou and not same_path(current_ou, target):
                self.log.info("Row %s: will move %s from %s to %s", row.index, account, current_ou, target)
                moved = dict(attrs)
                moved["SourceOU"] = current_ou
                return self._action(ActionKind.MOVE_USER, row, account, target, moved,
                                    f"Move account '{account}' from '{current_ou}'")
            if not current_ou:
                self.log.warning("Row %s: current OU of %s unresolved; comparing attributes", row.index, account)

            if not m.overwrite_existing:
                self.log.debug("Row %s: %s exists, updates disabled", row.index, account)
                return None

            compare = comparable_attributes(attrs, identity_attribute=m.identity_attribute)
            if not compare:
                return None
            current = self.directory.get_attributes(account, list(compare))
            if not current:
                self.log.warning("Row %s: no attributes returned for %s", row.index, account)
                return self._action(ActionKind.UPDATE_USER, row, account, target, attrs,
                                    f"Update account '{account}' (unable to compare attributes)")

            changed = changed_attributes(compare, current)
            if not changed:
                self.log.debug("Row %s: %s unchanged", row.index, account)
                return None
            self.log.info("Row %s: will update %s (%s)", row.index, account, ", ".join(changed))
            return self._action(ActionKind.UPDATE_USER, row, account, target, attrs,
                                f"Update account '{account}': {', '.join(sorted(changed))}")

        except Exception as exc:
            self.log.warning("Row %s: analysis of %s failed: %s", row.index, account, exc)
            note = "" if m.overwrite_existing else "; overwrite_existing is off, review before applying"
            return self._action(ActionKind.UPDATE_USER, row, account, target, attrs,
                                f"Update account '{account}' (analysis failed: {exc}{note})")

    def _memberships(self, row: Row, account: str, attrs: Mapping[str, str], target: str) -> List[Action]:
        if not self.mapping.is_enabled(ActionKind.ADD_USER_TO_GROUP):
            return []
        groups = self.ctx.groups_for(target)
        user_dn = f"CN={attrs.get('displayName') or account},{target}"
        return [
            self._action(
                ActionKind.ADD_USER_TO_GROUP, row, account, target,
                {"userDn": user_dn, "groupName": group, "ouDn": target},
                f"Add '{account}' to group '{group}'",
            )
            for group in groups
        ]

    @staticmethod
    def _action(kind: ActionKind, row: Row, account: str, path: str,
                attributes: Mapping[str, str], message: str) -> Action:
        return Action(
            kind=kind,
            object_name=account,
            path=path,
            message=message,
            attributes=attributes,
            row_index=row.index,
        )
