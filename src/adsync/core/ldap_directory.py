"""
ldap3-backed directory reader.

Read-only: OU existence (BASE search), account lookups by escaped
sAMAccountName under `search_base`, attribute fetches, and a paged listing
of accounts under a subtree. Every LDAP failure surfaces as DirectoryError.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Sequence

import ldap3
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from .directory import DirectoryError, DirectoryIdentity
from .logging_setup import NullAdapter
from .paths import parent_dn

_NO_SUCH_OBJECT = 32


def _first(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        if not value:
            return None
        value = value[0]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class LdapDirectory:
    """
    DirectoryReader over an ldap3 Connection.

    ldap3 connections are not safe to share between threads, so every query
    holds the instance lock.
    """

    def __init__(
        self,
        connection: ldap3.Connection,
        *,
        search_base: str,
        account_attribute: str = "sAMAccountName",
        user_filter: str = "(objectClass=user)",
        page_size: int = 500,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self._conn = connection
        self.search_base = search_base
        self.account_attribute = account_attribute
        self.user_filter = user_filter
        self.page_size = page_size
        self.log = logger or NullAdapter()
        self._lock = threading.Lock()

    @classmethod
    def connect(
        cls,
        *,
        server: str,
        bind_dn: str,
        password: str,
        search_base: str,
        port: Optional[int] = None,
        use_ssl: bool = False,
        timeout_sec: int = 30,
        account_attribute: str = "sAMAccountName",
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> "LdapDirectory":
        """Open and bind a connection; raises DirectoryError when unreachable."""
        try:
            srv = ldap3.Server(server, port=port, use_ssl=use_ssl, get_info=ldap3.NONE,
                               connect_timeout=timeout_sec)
            conn = ldap3.Connection(
                srv,
                user=bind_dn,
                password=password,
                auto_bind=True,
                receive_timeout=timeout_sec,
            )
        except LDAPException as exc:
            raise DirectoryError(f"LDAP bind to {server} failed: {exc}") from exc
        if logger:
            logger.info("Connected to LDAP server %s as %s", server, bind_dn)
        return cls(conn, search_base=search_base, account_attribute=account_attribute, logger=logger)

    def close(self) -> None:
        try:
            self._conn.unbind()
        except LDAPException as exc:
            self.log.debug("LDAP unbind failed: %s", exc)

    # ----- low level -----

    def _search(self, base: str, flt: str, scope: Any, attributes: Sequence[str]) -> List[Dict[str, Any]]:
        with self._lock:
            try:
                ok = self._conn.search(
                    search_base=base,
                    search_filter=flt,
                    search_scope=scope,
                    attributes=list(attributes) or None,
                )
            except LDAPException as exc:
                raise DirectoryError(f"LDAP search under '{base}' failed: {exc}") from exc
            result = self._conn.result or {}
            if not ok and result.get("result") not in (0, _NO_SUCH_OBJECT, None):
                raise DirectoryError(
                    f"LDAP search under '{base}' failed: {result.get('description')}"
                )
            return [e for e in (self._conn.response or []) if e.get("type") == "searchResEntry"]

    def _find_account(self, account: str, attributes: Sequence[str] = ()) -> Optional[Dict[str, Any]]:
        flt = f"(&{self.user_filter}({self.account_attribute}={escape_filter_chars(account.strip())}))"
        entries = self._search(self.search_base, flt, ldap3.SUBTREE, attributes)
        if len(entries) > 1:
            self.log.warning("Account '%s' matches %s entries; using the first", account, len(entries))
        return entries[0] if entries else None

    # ----- DirectoryReader -----

    def ou_exists(self, path: str) -> bool:
        if not path:
            return True
        return bool(self._search(path, "(objectClass=*)", ldap3.BASE, []))

    def user_exists(self, account: str) -> bool:
        return self._find_account(account) is not None

    def get_current_ou(self, account: str) -> Optional[str]:
        entry = self._find_account(account)
        if entry is None:
            return None
        return parent_dn(entry.get("dn") or "") or None

    def get_attributes(self, account: str, names: Sequence[str]) -> Dict[str, Optional[str]]:
        entry = self._find_account(account, names)
        if entry is None:
            return {}
        raw = {str(k).lower(): v for k, v in (entry.get("attributes") or {}).items()}
        return {n: _first(raw.get(n.lower())) for n in names}

    def list_identities_under(self, root: str) -> List[DirectoryIdentity]:
        attrs = [self.account_attribute, "displayName"]
        out: List[DirectoryIdentity] = []
        with self._lock:
            try:
                entries = self._conn.extend.standard.paged_search(
                    search_base=root,
                    search_filter=self.user_filter,
                    search_scope=ldap3.SUBTREE,
                    attributes=attrs,
                    paged_size=self.page_size,
                    generator=True,
                )
                for entry in entries:
                    if entry.get("type") != "searchResEntry":
                        continue
                    raw = {str(k).lower(): v for k, v in (entry.get("attributes") or {}).items()}
                    account = _first(raw.get(self.account_attribute.lower()))
                    if not account:
                        continue
                    out.append(
                        DirectoryIdentity(
                            account=account,
                            distinguished_name=entry.get("dn") or "",
                            display_name=_first(raw.get("displayname")) or "",
                        )
                    )
            except LDAPException as exc:
                raise DirectoryError(f"LDAP listing under '{root}' failed: {exc}") from exc
        self.log.debug("Listed %s accounts under %s", len(out), root)
        return out
