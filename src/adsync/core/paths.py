"""
OU path resolution and distinguished-name helpers.

Paths are LDAP distinguished names, innermost RDN first:
"OU=6A,OU=College,DC=test,DC=local". Parsing and escaping follow
RFC 4514 through ldap3; values stay escaped inside DNs and are only
unescaped by `rdn_value` for display names.
"""

from __future__ import annotations

import re
from string import hexdigits
from typing import List, Mapping

from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.dn import escape_rdn, parse_dn

from .mapping import MappingConfig


def _rdns(dn: str) -> List[List[tuple]]:
    """parse_dn output grouped per RDN (multi-valued RDNs joined by '+')."""
    if not (dn or "").strip():
        return []
    try:
        avas = parse_dn(dn.strip(), escape=False, strip=True)
    except LDAPInvalidDnError as exc:
        raise ValueError(f"Invalid distinguished name {dn!r}: {exc}") from exc
    groups: List[List[tuple]] = [[]]
    for attr, value, sep in avas:
        groups[-1].append((attr, value))
        if sep == ",":
            groups.append([])
    return [g for g in groups if g]


def split_dn(dn: str) -> List[str]:
    """RDNs of `dn` as canonical strings; raises ValueError on malformed input."""
    return ["+".join(f"{a.upper()}={v}" for a, v in rdn) for rdn in _rdns(dn)]


def looks_like_dn(value: str) -> bool:
    v = (value or "").upper()
    return "DC=" in v or ("OU=" in v and "," in v) or v.startswith("OU=")


def canonical(dn: str) -> str:
    """Whitespace-normalized DN used for comparisons and cache keys."""
    return ",".join(split_dn(dn))


def same_path(a: str, b: str) -> bool:
    return canonical(a).casefold() == canonical(b).casefold()


def unescape_value(value: str) -> str:
    """Undo RFC 4514 escaping: "6A\\, option" -> "6A, option", "\\C3\\A9" -> "é"."""
    out = bytearray()
    i = 0
    while i < len(value):
        c = value[i]
        if c == "\\" and i + 1 < len(value):
            pair = value[i + 1:i + 3]
            if len(pair) == 2 and all(ch in hexdigits for ch in pair):
                out += bytes.fromhex(pair)
                i += 3
                continue
            out += value[i + 1].encode("utf-8")
            i += 2
            continue
        out += c.encode("utf-8")
        i += 1
    return out.decode("utf-8", errors="replace")


def rdn_value(dn: str) -> str:
    """Unescaped value of the first RDN: "OU=6A,DC=x" -> "6A"."""
    rdns = _rdns(dn)
    if not rdns:
        return ""
    return unescape_value(rdns[0][0][1])


def parent_dn(dn: str) -> str:
    """Drop the first RDN: "CN=a,OU=6A,DC=x" -> "OU=6A,DC=x"."""
    return ",".join(split_dn(dn)[1:])


def is_domain_root(dn: str) -> bool:
    """True for an empty path or one made only of DC= components."""
    return all(a.upper() == "DC" for rdn in _rdns(dn) for a, _ in rdn)


def build_ou_path(value: str, default_ou: str) -> str:
    """
    Compose an OU value under `default_ou`.

    - "" -> default_ou
    - "6A" -> "OU=6A,<default_ou>"
    - "College/6A" (or with backslashes) -> "OU=6A,OU=College,<default_ou>"
    - "6A, option" -> "OU=6A\\, option,<default_ou>" (special characters escaped)
    - a DN keeps only its OU=/DC= components and is not re-rooted
    """
    value = (value or "").strip()
    if not value:
        return default_ou
    if looks_like_dn(value):
        try:
            kept = [p for p in split_dn(value) if p.startswith(("OU=", "DC="))]
        except ValueError:
            kept = []
        if kept:
            return ",".join(kept)
    segments = [s.strip() for s in re.split(r"[/\\]", value) if s.strip()]
    if not segments:
        return default_ou
    ous = ",".join(f"OU={escape_rdn(s)}" for s in reversed(segments))
    return canonical(f"{ous},{default_ou}" if default_ou else ous)


def resolve_target_ou(row: Mapping[str, str], mapping: MappingConfig) -> str:
    """Destination OU of a row; the default OU when the OU column is unset or blank."""
    if not mapping.ou_column:
        return mapping.default_ou
    value = row.get(mapping.ou_column)
    if value is None or not str(value).strip():
        return mapping.default_ou
    return build_ou_path(str(value), mapping.default_ou)
