"""Security principals and account-name resolution.

A :class:`Principal` is the canonical form of an account reference used in
private key ACL entries: a ``DOMAIN\\name`` string plus an optional SID.
:class:`PrincipalResolver` turns the many spellings an operator may type
(SID, ``DOMAIN\\user``, ``user@corp.example.com``, bare ``user``, well-known
names such as ``Administrators``) into that canonical form.

Resolution results are memoized in a :class:`PrincipalCache` that the
caller owns and can reset; nothing is cached at module level.
"""
from __future__ import annotations

import getpass
import os
import re
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator

from cms_vault.errors import PrincipalResolutionError

_SID_RE = re.compile(r"^S-1-\d+(-\d+)+$", re.IGNORECASE)
_INVALID_ACCOUNT_CHARS = set('"/\\[]:;|=,+*?<>')


@dataclass(frozen=True)
class Principal:
    """A resolved account or group.

    Parameters
    ----------
    name:
        Canonical ``DOMAIN\\name`` form (or a bare well-known name such as
        ``Everyone``).
    sid:
        Security identifier when known.
    groups:
        Groups the account is a member of. Only meaningful for the calling
        principal, whose group memberships take part in access checks.
    """

    name: str
    sid: str | None = None
    groups: tuple["Principal", ...] = field(default=(), compare=False)

    def matches(self, other: "Principal") -> bool:
        """Return True if *other* designates the same account."""
        if self.sid and other.sid:
            return self.sid.upper() == other.sid.upper()
        return self.name.casefold() == other.name.casefold()

    def identities(self) -> Iterator["Principal"]:
        """Yield this principal followed by every group it belongs to."""
        yield self
        yield from self.groups

    def with_groups(self, *groups: "Principal") -> "Principal":
        """Return a copy of this principal that is also a member of *groups*."""
        return Principal(name=self.name, sid=self.sid, groups=self.groups + groups)

    def to_dict(self) -> dict[str, object]:
        """Serialize to a plain dictionary (group memberships are not stored)."""
        return {"name": self.name, "sid": self.sid}

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Principal":
        """Rebuild a principal from :meth:`to_dict` output."""
        sid = data.get("sid")
        return cls(name=str(data["name"]), sid=str(sid) if sid else None)

    @classmethod
    def current(cls, machine_name: str | None = None) -> "Principal":
        """Return the principal of the user running this process.

        Accounts are qualified with ``USERDOMAIN`` when it is set, otherwise
        with the machine name. Membership of the built-in Administrators group
        is reported only for a POSIX process whose effective UID is 0; no
        elevation check is made on Windows.
        """
        domain = os.environ.get("USERDOMAIN") or machine_name or local_machine_name()
        account = cls(name=f"{domain.upper()}\\{getpass.getuser()}")
        groups = [USERS, AUTHENTICATED_USERS, EVERYONE]
        geteuid = getattr(os, "geteuid", None)
        if geteuid is not None and geteuid() == 0:
            groups.append(ADMINISTRATORS)
        return account.with_groups(*groups)

    def __str__(self) -> str:
        return self.name


SYSTEM = Principal("NT AUTHORITY\\SYSTEM", "S-1-5-18")
LOCAL_SERVICE = Principal("NT AUTHORITY\\LOCAL SERVICE", "S-1-5-19")
NETWORK_SERVICE = Principal("NT AUTHORITY\\NETWORK SERVICE", "S-1-5-20")
AUTHENTICATED_USERS = Principal("NT AUTHORITY\\Authenticated Users", "S-1-5-11")
ADMINISTRATORS = Principal("BUILTIN\\Administrators", "S-1-5-32-544")
USERS = Principal("BUILTIN\\Users", "S-1-5-32-545")
EVERYONE = Principal("Everyone", "S-1-1-0")

WELL_KNOWN: tuple[Principal, ...] = (
    SYSTEM,
    LOCAL_SERVICE,
    NETWORK_SERVICE,
    AUTHENTICATED_USERS,
    ADMINISTRATORS,
    USERS,
    EVERYONE,
)

# Groups that exist only in an Active Directory domain, keyed by relative ID.
DOMAIN_ONLY_GROUPS: dict[str, int] = {
    "domain admins": 512,
    "domain users": 513,
    "domain guests": 514,
    "domain computers": 515,
    "domain controllers": 516,
}


def _well_known_aliases() -> dict[str, Principal]:
    aliases: dict[str, Principal] = {}
    for principal in WELL_KNOWN:
        aliases[principal.name.casefold()] = principal
        aliases[principal.name.rsplit("\\", 1)[-1].casefold()] = principal
    aliases["local system"] = SYSTEM
    aliases["localsystem"] = SYSTEM
    return aliases


_ALIASES = _well_known_aliases()
_BY_SID = {principal.sid: principal for principal in WELL_KNOWN if principal.sid}


def local_machine_name() -> str:
    """Return the short, upper-cased host name."""
    return socket.gethostname().split(".")[0].upper()


class PrincipalCache:
    """TTL cache for resolved principals.

    Parameters
    ----------
    ttl_seconds:
        How long a resolution stays valid.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Principal]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Principal | None:
        """Return the cached principal for *key*, or None if absent or stale."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, principal = entry
            if self._clock() - stored_at > self._ttl:
                del self._entries[key]
                return None
            return principal

    def put(self, key: str, principal: Principal) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), principal)

    def reset(self) -> None:
        """Drop every cached resolution."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class PrincipalResolver:
    """Resolve account names into canonical :class:`Principal` values.

    Parameters
    ----------
    default_domain:
        NetBIOS name of the domain this host is joined to, or None for a
        workgroup host. Bare names resolve against it. A domain-only
        group such as ``Domain Admins`` keeps an explicit ``DOMAIN\\`` or
        ``@dns`` qualifier and otherwise resolves only when this is set.
    machine_name:
        Name used for local accounts. Defaults to the short host name.
    cache:
        Resolution cache; a private one is created when omitted.
    """

    def __init__(
        self,
        default_domain: str | None = None,
        machine_name: str | None = None,
        cache: PrincipalCache | None = None,
    ) -> None:
        self._default_domain = default_domain.upper() if default_domain else None
        self._machine_name = (machine_name or local_machine_name()).upper()
        self._cache = cache if cache is not None else PrincipalCache()

    @property
    def domain_joined(self) -> bool:
        return self._default_domain is not None

    @property
    def cache(self) -> PrincipalCache:
        return self._cache

    def resolve(self, value: str | Principal) -> Principal:
        """Resolve a single account reference.

        Raises
        ------
        PrincipalResolutionError
            If the value is empty, malformed, or names a domain-only group on
            a host that is not domain-joined.
        """
        if isinstance(value, Principal):
            return value
        text = value.strip()
        if not text:
            raise PrincipalResolutionError(value, "empty account name")

        key = text.casefold()
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        principal = self._resolve_uncached(text)
        self._cache.put(key, principal)
        return principal

    def resolve_many(self, values: Iterable[str | Principal]) -> list[Principal]:
        """Resolve every value, preserving order and dropping duplicates."""
        resolved: list[Principal] = []
        for value in values:
            principal = self.resolve(value)
            if not any(principal.matches(existing) for existing in resolved):
                resolved.append(principal)
        return resolved

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _resolve_uncached(self, text: str) -> Principal:
        if _SID_RE.match(text):
            sid = text.upper()
            return _BY_SID.get(sid, Principal(name=sid, sid=sid))

        alias = _ALIASES.get(text.casefold())
        if alias is not None:
            return alias

        explicit_domain = True
        if "\\" in text:
            domain, _, account = text.partition("\\")
            if domain == ".":
                domain = self._machine_name
                explicit_domain = False
        elif "@" in text:
            account, _, dns_domain = text.rpartition("@")
            domain = dns_domain.split(".", 1)[0]
            if not domain:
                raise PrincipalResolutionError(text, "user principal name has no domain")
        else:
            account = text
            domain = self._default_domain or self._machine_name
            explicit_domain = False

        if not domain or not account:
            raise PrincipalResolutionError(text, "expected DOMAIN\\name")
        if account.casefold() in DOMAIN_ONLY_GROUPS:
            return self._domain_group(text, account, domain if explicit_domain else None)
        if _INVALID_ACCOUNT_CHARS & set(account):
            raise PrincipalResolutionError(text, "account name contains invalid characters")
        return Principal(name=f"{domain.upper()}\\{account}")

    def _domain_group(self, text: str, account: str, domain: str | None) -> Principal:
        domain = domain or self._default_domain
        if domain is None:
            raise PrincipalResolutionError(
                text, "this group only resolves on domain-joined hosts"
            )
        display = " ".join(part.capitalize() for part in account.casefold().split())
        return Principal(name=f"{domain.upper()}\\{display}")
