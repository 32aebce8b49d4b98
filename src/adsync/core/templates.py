"""
Template resolution and attribute building.

Templates are plain strings with `%column%` or `%column:mod1:mod2%`
placeholders. Columns are looked up case-insensitively; a missing column
resolves to "". Modifiers come from an allow-list and are applied left to
right; unknown modifiers leave the value unchanged.
"""

from __future__ import annotations

import logging
import hashlib
import re
import unicodedata
from typing import Callable, Dict, Mapping, Optional

from .mapping import MappingConfig

log = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"%([^:%]+)((?::[^:%]*)*)%")

MAX_ACCOUNT_LENGTH = 20
_FORBIDDEN = set('"/\\[]:;|=,+*?<>@#$%^&(){}!~`')


# =========================
# Account name normalization
# =========================

def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(c for c in decomposed if unicodedata.category(c) != "Mn")


def _shorten(name: str, limit: int) -> str:
    """Fit `first.last` into `limit` chars: trim the first name, then the last name."""
    if len(name) <= limit:
        return name
    parts = name.split(".")
    if len(parts) == 2 and all(parts):
        first, last = parts
        keep_first = max(1, limit - len(last) - 1)
        if keep_first < len(first):
            first = first[:keep_first]
        candidate = f"{first}.{last}"
        if len(candidate) > limit:
            candidate = f"{first}.{last[: max(1, limit - len(first) - 1)]}"
        name = candidate
    return name[:limit].rstrip(".")


def normalize_account_name(value: str, *, limit: int = MAX_ACCOUNT_LENGTH) -> str:
    """
    Turn a free-form name into a login-safe account name.

    "Jean-Éric O'Neil" -> "jean.eric.o.neil" (then capped at `limit` chars).
    Blank input stays blank; input that normalizes to nothing becomes
    "user" plus a digest of the input, the same on every run.
    """
    if not value or not value.strip():
        return value.strip() if value else ""
    s = strip_diacritics(value.lower()).strip()
    s = "".join(c for c in s if c not in _FORBIDDEN)
    for sep in (" ", "'", "-", "_"):
        s = s.replace(sep, ".")
    s = re.sub(r"\.+", ".", s).strip(".")
    if s and s[0].isdigit():
        s = "u" + s
    s = _shorten(s, limit)
    if not s:
        s = "user" + hashlib.sha1(value.strip().encode("utf-8")).hexdigest()[:6]
    return s


# =========================
# Modifier registry (allow-list)
# =========================

def _first(value: str) -> str:
    return value[:1]


def _camel(value: str) -> str:
    words = [w for w in value.split(" ") if w.strip()]
    return "".join(
        w.lower() if i == 0 else w[:1].upper() + w[1:].lower() for i, w in enumerate(words)
    )


def _pascal(value: str) -> str:
    return "".join(w[:1].upper() + w[1:].lower() for w in value.split(" ") if w.strip())


MODIFIER_REGISTRY: Dict[str, Callable[[str], str]] = {
    "lowercase": str.lower,
    "uppercase": str.upper,
    "capitalize": lambda v: v.lower().title(),
    "trim": str.strip,
    "username": normalize_account_name,
    "camelcase": _camel,
    "pascalcase": _pascal,
    "first": _first,
    "firstchar": _first,
    "firstcharlower": lambda v: v[:1].lower(),
    "firstcharupper": lambda v: v[:1].upper(),
}


def apply_modifier(value: str, modifier: str) -> str:
    if not value or not modifier:
        return value
    fn = MODIFIER_REGISTRY.get(modifier.strip().lower())
    if fn is None:
        log.debug("Unknown template modifier '%s' ignored", modifier)
        return value
    return fn(value)


def resolve_template(template: Optional[str], row: Mapping[str, str]) -> str:
    """
    Substitute every placeholder of `template` from `row`.

    >>> resolve_template("%prenom:first%.%nom:first%", {"prenom": "Jean", "nom": "Dupont"})
    'J.D'
    """
    if not template:
        return ""

    def repl(m: "re.Match[str]") -> str:
        column = m.group(1).strip()
        value = _lookup(row, column)
        for modifier in m.group(2).split(":")[1:]:
            value = apply_modifier(value, modifier)
        return value

    return _PLACEHOLDER.sub(repl, template)


def _lookup(row: Mapping[str, str], column: str) -> str:
    value = row.get(column)
    if value is None:
        # plain dicts: fall back to a case-insensitive scan
        wanted = column.casefold()
        for key, val in row.items():
            if str(key).casefold() == wanted:
                value = val
                break
    return "" if value is None else str(value)


# =========================
# Attribute building
# =========================

def normalize_attribute(name: str, value: str, *, upn_suffix: str = "domain.local",
                        identity_attribute: str = "sAMAccountName") -> str:
    if not value or not value.strip():
        return value
    key = name.lower()
    if key == identity_attribute.lower():
        return normalize_account_name(value)
    if key == "displayname":
        return " ".join(value.split()).title()
    if key == "givenname":
        v = value.strip()
        return v[:1].upper() + v[1:] if len(v) > 2 else v
    if key in ("mail", "email"):
        v = value.replace(" ", "").lower()
        return v if "@" in v else f"{v}@{upn_suffix}"
    return value.strip()


def _blank(attrs: Dict[str, str], key: str) -> bool:
    return not (attrs.get(key) or "").strip()


def _auto_complete(attrs: Dict[str, str], mapping: MappingConfig) -> None:
    ident = mapping.identity_attribute
    display = (attrs.get("displayName") or "").split()

    if _blank(attrs, "givenName") and display:
        attrs["givenName"] = display[0]
    if _blank(attrs, "sn") and display:
        attrs["sn"] = display[-1]

    given = (attrs.get("givenName") or "").strip()
    sn = (attrs.get("sn") or "").strip()

    if _blank(attrs, ident):
        source = ".".join(p for p in (given, sn) if p)
        if source:
            attrs[ident] = normalize_account_name(source)
            log.debug("Account name auto-completed: %s", attrs[ident])

    if _blank(attrs, "displayName") and (given or sn):
        attrs["displayName"] = f"{given} {sn}".strip()

    if _blank(attrs, "userPrincipalName") and not _blank(attrs, ident):
        if not _blank(attrs, "mail"):
            attrs["userPrincipalName"] = attrs["mail"]
        else:
            attrs["userPrincipalName"] = f"{attrs[ident]}@{mapping.upn_suffix}"


def build_attributes(row: Mapping[str, str], mapping: MappingConfig) -> Dict[str, str]:
    """
    Resolve every declared attribute for one row, normalize and auto-complete.
    Blank results (or results made only of separators, e.g. "." from
    "%prenom%.%nom%") are dropped rather than stored.
    """
    attrs: Dict[str, str] = {}
    for name, template in mapping.attributes.items():
        value = resolve_template(template, row)
        if not any(c.isalnum() for c in value):
            # every placeholder was blank, only literal separators remain
            continue
        attrs[name] = normalize_attribute(
            name,
            value,
            upn_suffix=mapping.upn_suffix,
            identity_attribute=mapping.identity_attribute,
        )
    _auto_complete(attrs, mapping)
    return attrs


def identity_key(attrs: Mapping[str, str], mapping: MappingConfig) -> str:
    """The trimmed account name of a resolved attribute map ("" when missing)."""
    return (attrs.get(mapping.identity_attribute) or "").strip()
