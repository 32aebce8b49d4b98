"""
Attribute differencer.

Decides whether the attributes resolved from a row materially differ
from what the directory currently holds for an existing account.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional

# never compared: secrets, object class/identifiers, timestamps,
# the naming attribute and the account-name attribute
EXCLUDED_ATTRIBUTES = frozenset(
    {
        "password",
        "userpassword",
        "unicodepwd",
        "objectclass",
        "objectguid",
        "objectsid",
        "whencreated",
        "whenchanged",
        "lastlogon",
        "lastlogontimestamp",
        "pwdlastset",
        "distinguishedname",
        "cn",
        "name",
        "samaccountname",
    }
)

CASE_INSENSITIVE_ATTRIBUTES = frozenset(
    {
        "mail",
        "userprincipalname",
        "displayname",
        "givenname",
        "sn",
        "department",
        "company",
        "title",
        "physicaldeliveryofficename",
    }
)

# attributes compared case-sensitively; empty by default
CASE_SENSITIVE_ATTRIBUTES: frozenset = frozenset()


def comparable_attributes(
    attributes: Mapping[str, str],
    *,
    identity_attribute: str = "sAMAccountName",
) -> Dict[str, str]:
    """
    Attributes worth comparing: excluded names and blank values dropped,
    keys lower-cased, values trimmed.
    """
    excluded = EXCLUDED_ATTRIBUTES | {identity_attribute.lower()}
    out: Dict[str, str] = {}
    for name, value in attributes.items():
        key = name.lower()
        if key in excluded:
            continue
        v = (value or "").strip()
        if not v:
            continue
        out[key] = v
    return out


def values_equal(name: str, new: Optional[str], current: Optional[str]) -> bool:
    a = (new or "").strip()
    b = (current or "").strip()
    if not a and not b:
        return True
    if not a or not b:
        return False
    key = name.lower()
    if key in CASE_INSENSITIVE_ATTRIBUTES or key not in CASE_SENSITIVE_ATTRIBUTES:
        return a.casefold() == b.casefold()
    return a == b


def changed_attributes(new: Mapping[str, str], current: Mapping[str, Optional[str]]) -> List[str]:
    """Names (as given in `new`) whose value differs from `current`."""
    lowered = {str(k).lower(): v for k, v in current.items()}
    return [name for name, value in new.items() if not values_equal(name, value, lowered.get(name.lower()))]


def has_changes(new: Mapping[str, str], current: Mapping[str, Optional[str]]) -> bool:
    return bool(changed_attributes(new, current))
