"""Typed view of a private key's discretionary ACL.

An :class:`AclSnapshot` is an ordered, immutable list of
(principal, permission, allow/deny) entries. Conversion to and from the
stored document happens only through :meth:`AclSnapshot.to_bytes` and
:meth:`AclSnapshot.from_bytes`.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from cms_vault.acl.principals import ADMINISTRATORS, SYSTEM, Principal

ACL_FORMAT_VERSION = 1


class Permission(str, Enum):
    """Rights that can be granted on a private key."""

    READ = "Read"
    FULL_CONTROL = "FullControl"

    def includes(self, other: "Permission") -> bool:
        """Return True if holding this right also satisfies *other*."""
        return self is Permission.FULL_CONTROL or self is other


class AccessType(str, Enum):
    ALLOW = "Allow"
    DENY = "Deny"


@dataclass(frozen=True)
class AclEntry:
    """A single access control entry."""

    principal: Principal
    permission: Permission
    access_type: AccessType = AccessType.ALLOW

    def to_dict(self) -> dict[str, object]:
        return {
            "principal": self.principal.to_dict(),
            "permission": self.permission.value,
            "access_type": self.access_type.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "AclEntry":
        return cls(
            principal=Principal.from_dict(data["principal"]),  # type: ignore[arg-type]
            permission=Permission(data["permission"]),
            access_type=AccessType(data.get("access_type", AccessType.ALLOW.value)),
        )


@dataclass(frozen=True)
class AclSnapshot:
    """Ordered DACL entries read from (or about to be written to) a key."""

    entries: tuple[AclEntry, ...] = ()

    @classmethod
    def trusted_default(cls) -> "AclSnapshot":
        """Return the minimal ACL: SYSTEM and Administrators with full control."""
        return cls(
            entries=(
                AclEntry(SYSTEM, Permission.FULL_CONTROL),
                AclEntry(ADMINISTRATORS, Permission.FULL_CONTROL),
            )
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def principals(self) -> list[Principal]:
        """Return the distinct principals referenced by the entries, in order."""
        seen: list[Principal] = []
        for entry in self.entries:
            if not any(entry.principal.matches(existing) for existing in seen):
                seen.append(entry.principal)
        return seen

    def entries_for(self, principal: Principal) -> list[AclEntry]:
        return [entry for entry in self.entries if entry.principal.matches(principal)]

    def allows(self, caller: Principal, permission: Permission = Permission.READ) -> bool:
        """Evaluate whether *caller* (or one of its groups) holds *permission*.

        Deny entries take precedence over allow entries, as on Windows
        canonical ACLs.
        """
        identities = list(caller.identities())
        allowed = False
        for entry in self.entries:
            if not any(entry.principal.matches(identity) for identity in identities):
                continue
            if not entry.permission.includes(permission):
                # Denying a narrower right also denies the broader one.
                if entry.access_type is AccessType.DENY and permission.includes(entry.permission):
                    return False
                continue
            if entry.access_type is AccessType.DENY:
                return False
            allowed = True
        return allowed

    # ------------------------------------------------------------------
    # Mutation (returns new snapshots)
    # ------------------------------------------------------------------

    def with_entries(self, new_entries: Iterable[AclEntry]) -> "AclSnapshot":
        """Return a snapshot with *new_entries* appended, skipping exact duplicates."""
        merged = list(self.entries)
        for entry in new_entries:
            if not any(
                existing.principal.matches(entry.principal)
                and existing.permission is entry.permission
                and existing.access_type is entry.access_type
                for existing in merged
            ):
                merged.append(entry)
        return AclSnapshot(entries=tuple(merged))

    def without_principals(self, principals: Iterable[Principal]) -> "AclSnapshot":
        """Return a snapshot with every entry for *principals* removed."""
        targets = list(principals)
        kept = tuple(
            entry
            for entry in self.entries
            if not any(entry.principal.matches(target) for target in targets)
        )
        return AclSnapshot(entries=kept)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_bytes(self) -> bytes:
        document = {
            "version": ACL_FORMAT_VERSION,
            "entries": [entry.to_dict() for entry in self.entries],
        }
        return json.dumps(document, indent=2).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "AclSnapshot":
        """Parse a stored ACL document.

        Raises
        ------
        ValueError
            If the document is not valid JSON or has an unsupported version.
        """
        document = json.loads(raw.decode("utf-8"))
        version = document.get("version")
        if version != ACL_FORMAT_VERSION:
            raise ValueError(f"Unsupported ACL document version: {version!r}")
        return cls(entries=tuple(AclEntry.from_dict(item) for item in document["entries"]))

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):  # type: ignore[no-untyped-def]
        return iter(self.entries)
