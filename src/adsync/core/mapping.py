"""
Mapping configuration for adsync.

A mapping profile declares how spreadsheet columns become directory
attributes, where accounts land in the OU tree, and which optional
side-effect actions are planned.

Profiles are YAML files `<name>.yml` looked up on a list of search paths,
with optional inheritance via `extends: "<parent>"`.
"""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import yaml
from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.dn import parse_dn

from .models import ActionKind


# =========================
# Exceptions
# =========================

class MappingError(Exception):
    """Base error for mapping-profile issues."""


class MappingValidationError(MappingError):
    """Raised when a mapping profile is structurally invalid."""


_TRUTHY = {"1", "true", "yes", "y", "on", "oui"}
_FALSY = {"0", "false", "no", "n", "off", "non", ""}


def to_bool(value: Any) -> bool:
    """Coerce common truthy strings to boolean."""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def _strict_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in _TRUTHY:
        return True
    if s in _FALSY:
        return False
    raise MappingValidationError(f"'{key}' must be a boolean, got {value!r}")


def _str(value: Any) -> str:
    return "" if value is None else str(value).strip()


# =========================
# Sub-configurations
# =========================

@dataclass(frozen=True)
class OuGroupsConfig:
    """Security + distribution groups created alongside every new OU."""
    enabled: bool = False
    prefix: str = ""


@dataclass(frozen=True)
class FolderConfig:
    """Per-user share provisioning (CreateStudentFolder)."""
    enabled: bool = False
    flag_column: str = ""
    server: str = ""
    local_path: str = ""
    share_name: str = ""
    netbios_domain: str = ""
    subfolders: Tuple[str, ...] = ()

    def missing_parameters(self) -> List[str]:
        names = ("server", "local_path", "share_name", "netbios_domain")
        return [n for n in names if not getattr(self, n)]


@dataclass(frozen=True)
class ClassGroupFolderConfig:
    enabled: bool = False
    flag_column: str = "CreateClassGroupFolder"
    id_column: str = "ClassGroupId"
    name_column: str = "ClassGroupName"
    template_column: str = "ClassGroupTemplateName"
    default_template: str = "DefaultClassGroupTemplate"


@dataclass(frozen=True)
class TeamConfig:
    enabled: bool = False
    flag_column: str = "CreateTeamGroup"
    name_column: str = "TeamGroupName"
    name_template: str = ""
    description_template: str = ""
    owner_id: str = ""


# =========================
# MappingConfig
# =========================

@dataclass(frozen=True)
class MappingConfig:
    """Typed, validated mapping profile."""

    name: str = "default"
    attributes: Dict[str, str] = field(default_factory=dict)
    identity_attribute: str = "sAMAccountName"
    ou_column: str = ""
    default_ou: str = "DC=domain,DC=local"
    delimiter: str = ";"
    upn_suffix: str = "domain.local"
    create_missing_ous: bool = True
    overwrite_existing: bool = True
    disabled_actions: FrozenSet[ActionKind] = frozenset()
    ou_groups: OuGroupsConfig = OuGroupsConfig()
    empty_ous_enabled: bool = False
    folders: FolderConfig = FolderConfig()
    class_group_folders: ClassGroupFolderConfig = ClassGroupFolderConfig()
    teams: TeamConfig = TeamConfig()

    @classmethod
    def defaults(cls) -> "MappingConfig":
        """Fallback used when no profile is supplied."""
        return cls()

    def is_enabled(self, kind: ActionKind) -> bool:
        if kind is ActionKind.ERROR:
            return True
        return kind not in self.disabled_actions

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], name: str = "default") -> "MappingConfig":
        """
        Build a MappingConfig from a (merged) profile dict.
        Unknown top-level keys are ignored; malformed known keys raise.
        """
        if data is None:
            return cls.defaults()
        if not isinstance(data, dict):
            raise MappingValidationError(f"Mapping '{name}' must be a mapping")

        attrs = data.get("attributes") or {}
        if not isinstance(attrs, dict):
            raise MappingValidationError(f"Mapping '{name}': 'attributes' must be a map")
        templates: Dict[str, str] = {}
        for attr, tpl in attrs.items():
            if not isinstance(tpl, (str, int, float)) or isinstance(tpl, bool):
                raise MappingValidationError(
                    f"Mapping '{name}': template for '{attr}' must be a string"
                )
            templates[str(attr)] = str(tpl)

        if "default_ou" in data and not _str(data.get("default_ou")):
            # an explicit blank root is allowed; orphan cleanup reports it
            default_ou = ""
        else:
            default_ou = _str(data.get("default_ou", cls.default_ou))
        if default_ou:
            try:
                parse_dn(default_ou)
            except LDAPInvalidDnError as exc:
                raise MappingValidationError(
                    f"Mapping '{name}': default_ou {default_ou!r} is not a valid DN ({exc})"
                ) from exc

        disabled = data.get("disabled_actions") or []
        if isinstance(disabled, str):
            disabled = [p for p in disabled.replace(";", ",").split(",") if p.strip()]
        if not isinstance(disabled, (list, tuple, set)):
            raise MappingValidationError(f"Mapping '{name}': 'disabled_actions' must be a list")
        kinds = set()
        for item in disabled:
            try:
                kind = ActionKind.parse(item)
            except ValueError as exc:
                raise MappingValidationError(f"Mapping '{name}': {exc}") from exc
            if kind is ActionKind.ERROR:
                raise MappingValidationError(f"Mapping '{name}': Error actions cannot be disabled")
            kinds.add(kind)

        groups = _section(data, "ou_groups", name)
        folders = _section(data, "folders", name)
        cgf = _section(data, "class_group_folders", name)
        teams = _section(data, "teams", name)
        empty_ous = _section(data, "empty_ous", name)

        subfolders = folders.get("subfolders") or []
        if not isinstance(subfolders, (list, tuple)):
            raise MappingValidationError(f"Mapping '{name}': 'folders.subfolders' must be a list")

        return cls(
            name=name,
            attributes=templates,
            identity_attribute=_str(data.get("identity_attribute")) or "sAMAccountName",
            ou_column=_str(data.get("ou_column")),
            default_ou=default_ou,
            delimiter=str(data.get("delimiter") or ";"),
            upn_suffix=_str(data.get("upn_suffix")) or "domain.local",
            create_missing_ous=_strict_bool(data.get("create_missing_ous", True), "create_missing_ous"),
            overwrite_existing=_strict_bool(data.get("overwrite_existing", True), "overwrite_existing"),
            disabled_actions=frozenset(kinds),
            ou_groups=OuGroupsConfig(
                enabled=_strict_bool(groups.get("enabled", False), "ou_groups.enabled"),
                prefix=_str(groups.get("prefix")),
            ),
            empty_ous_enabled=_strict_bool(empty_ous.get("enabled", False), "empty_ous.enabled"),
            folders=FolderConfig(
                enabled=_strict_bool(folders.get("enabled", False), "folders.enabled"),
                flag_column=_str(folders.get("flag_column")),
                server=_str(folders.get("server")),
                local_path=_str(folders.get("local_path")),
                share_name=_str(folders.get("share_name")),
                netbios_domain=_str(folders.get("netbios_domain")),
                subfolders=tuple(str(s) for s in subfolders),
            ),
            class_group_folders=ClassGroupFolderConfig(
                enabled=_strict_bool(cgf.get("enabled", False), "class_group_folders.enabled"),
                flag_column=_str(cgf.get("flag_column")) or ClassGroupFolderConfig.flag_column,
                id_column=_str(cgf.get("id_column")) or ClassGroupFolderConfig.id_column,
                name_column=_str(cgf.get("name_column")) or ClassGroupFolderConfig.name_column,
                template_column=_str(cgf.get("template_column")) or ClassGroupFolderConfig.template_column,
                default_template=_str(cgf.get("default_template")) or ClassGroupFolderConfig.default_template,
            ),
            teams=TeamConfig(
                enabled=_strict_bool(teams.get("enabled", False), "teams.enabled"),
                flag_column=_str(teams.get("flag_column")) or TeamConfig.flag_column,
                name_column=_str(teams.get("name_column")) or TeamConfig.name_column,
                name_template=_str(teams.get("name_template")),
                description_template=_str(teams.get("description_template")),
                owner_id=_str(teams.get("owner_id")),
            ),
        )


def _section(data: Dict[str, Any], key: str, name: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise MappingValidationError(f"Mapping '{name}': '{key}' must be a map")
    return value


# =========================
# Loader with inheritance
# =========================

def _deep_merge(base: Dict[str, Any], ext: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge: dicts merge recursively; lists/scalars override."""
    result = copy.deepcopy(base)
    for k, v in ext.items():
        if isinstance(v, dict) and isinstance(result.get(k), dict):
            result[k] = _deep_merge(result[k], v)  # type: ignore[index]
        else:
            result[k] = copy.deepcopy(v)
    return result


class MappingLoader:
    """
    Load mapping profiles from disk, supporting `extends: "<parent>"` inheritance.

    Search order: the provided `search_paths`, checked in order for `<name>.yml`
    then `<name>.yaml`.
    """

    def __init__(self, search_paths: Optional[List[str]] = None) -> None:
        self.search_paths = search_paths or ["resources/mappings"]

    def _find_path(self, name: str) -> str:
        for base in self.search_paths:
            for ext in (".yml", ".yaml"):
                candidate = os.path.join(base, f"{name}{ext}")
                if os.path.exists(candidate):
                    return candidate
        raise MappingError(f"Mapping '{name}' not found in {self.search_paths}")

    def _read_yaml(self, path: str) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise MappingValidationError(f"Invalid YAML in {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise MappingValidationError(f"Top-level YAML must be a mapping: {path}")
        return data

    def _load_recursive(self, name: str, stack: Optional[List[str]] = None) -> Dict[str, Any]:
        stack = stack or []
        if name in stack:
            cycle = " -> ".join(stack + [name])
            raise MappingValidationError(f"Inheritance cycle detected: {cycle}")
        data = self._read_yaml(self._find_path(name))
        parent = data.get("extends")
        if parent:
            merged_parent = self._load_recursive(str(parent), stack + [name])
            data = _deep_merge(merged_parent, data)
        return data

    def load_dict(self, name: str) -> Dict[str, Any]:
        """Return the merged (inherited) raw profile."""
        data = self._load_recursive(name)
        data.pop("extends", None)
        return data

    def load(self, name: str) -> MappingConfig:
        """Load and validate a profile by name (without extension)."""
        data = self.load_dict(name)
        if not data.get("attributes"):
            raise MappingValidationError(f"Mapping '{name}' missing required section: attributes")
        return MappingConfig.from_dict(data, name=name)
