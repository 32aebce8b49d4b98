"""
Optional side-effect generators evaluated for every planned row.

Each generator is gated by its own mapping block (and, where configured,
a boolean flag column in the row). Missing parameters skip the generator
for that row only; they never fail the row.
"""

from __future__ import annotations

import json
import logging
from typing import List, Mapping, Optional

from .cache import PlanningContext
from .directory import ShareInspector
from .mapping import to_bool
from .models import Action, ActionKind, Row
from .templates import resolve_template


def _flag(row: Row, column: str) -> bool:
    if not column:
        return True
    return to_bool(row.get(column, ""))


def student_folder_action(
    row: Row,
    account: str,
    attrs: Mapping[str, str],
    ctx: PlanningContext,
    shares: Optional[ShareInspector],
    log: logging.LoggerAdapter,
) -> Optional[Action]:
    cfg = ctx.mapping.folders
    if not cfg.enabled or not ctx.mapping.is_enabled(ActionKind.CREATE_STUDENT_FOLDER):
        return None
    if not _flag(row, cfg.flag_column):
        return None
    missing = cfg.missing_parameters()
    if missing:
        log.warning("Row %s: folder provisioning skipped, missing %s", row.index, ", ".join(missing))
        return None

    if shares is not None:
        try:
            if shares.share_exists(cfg.server, account, cfg.local_path):
                log.debug("Row %s: share for '%s' already exists", row.index, account)
                return None
        except Exception as exc:
            # unknown state: plan the folder anyway
            log.warning("Row %s: share check for '%s' failed (%s); planning it", row.index, account, exc)

    share = f"{account}$"
    attributes = dict(attrs)
    attributes.update(
        {
            "ServerName": cfg.server,
            "LocalPathForUserShareOnServer": cfg.local_path,
            "ShareNameForUserFolders": cfg.share_name,
            "AccountAd": f"{cfg.netbios_domain}\\{account}",
            "Subfolders": json.dumps(list(cfg.subfolders)),
            "IndividualShareName": share,
        }
    )
    return Action(
        kind=ActionKind.CREATE_STUDENT_FOLDER,
        object_name=share,
        path=cfg.local_path,
        message=f"Create user share '{share}' on {cfg.server}",
        attributes=attributes,
        row_index=row.index,
    )


def class_group_folder_action(row: Row, ctx: PlanningContext, log: logging.LoggerAdapter) -> Optional[Action]:
    cfg = ctx.mapping.class_group_folders
    if not cfg.enabled or not ctx.mapping.is_enabled(ActionKind.CREATE_CLASS_GROUP_FOLDER):
        return None
    if not _flag(row, cfg.flag_column):
        return None
    group_id = row.get(cfg.id_column, "").strip()
    group_name = row.get(cfg.name_column, "").strip()
    if not group_id or not group_name:
        log.debug("Row %s: class-group folder skipped, id or name missing", row.index)
        return None
    if not ctx.claim(ActionKind.CREATE_CLASS_GROUP_FOLDER, group_name):
        return None
    template = row.get(cfg.template_column, "").strip() or cfg.default_template
    return Action(
        kind=ActionKind.CREATE_CLASS_GROUP_FOLDER,
        object_name=group_name,
        path="",
        message=f"Create class-group folder '{group_name}'",
        attributes={"Id": group_id, "Name": group_name, "TemplateName": template},
        row_index=row.index,
    )


def team_action(row: Row, target_ou: str, ctx: PlanningContext, log: logging.LoggerAdapter) -> Optional[Action]:
    cfg = ctx.mapping.teams
    if not cfg.enabled or not ctx.mapping.is_enabled(ActionKind.CREATE_TEAM):
        return None
    if not _flag(row, cfg.flag_column):
        return None
    if cfg.name_template:
        name = resolve_template(cfg.name_template, row).strip()
    else:
        name = row.get(cfg.name_column, "").strip()
    if not name:
        log.debug("Row %s: team creation skipped, no team name", row.index)
        return None
    if not ctx.claim(ActionKind.CREATE_TEAM, name):
        return None
    attributes = {"Name": name}
    if cfg.description_template:
        attributes["Description"] = resolve_template(cfg.description_template, row).strip()
    if cfg.owner_id:
        attributes["OwnerId"] = cfg.owner_id
    return Action(
        kind=ActionKind.CREATE_TEAM,
        object_name=name,
        path=target_ou,
        message=f"Create team '{name}'",
        attributes=attributes,
        row_index=row.index,
    )


def plan_side_effects(
    row: Row,
    account: str,
    attrs: Mapping[str, str],
    target_ou: str,
    ctx: PlanningContext,
    shares: Optional[ShareInspector],
    log: logging.LoggerAdapter,
) -> List[Action]:
    planned = [
        student_folder_action(row, account, attrs, ctx, shares, log),
        class_group_folder_action(row, ctx, log),
        team_action(row, target_ou, ctx, log),
    ]
    return [a for a in planned if a is not None]
