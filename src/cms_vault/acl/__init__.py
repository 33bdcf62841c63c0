"""Private key access control: principals, ACL snapshots, and mutation."""
from __future__ import annotations

from cms_vault.acl.backend import AclBackend, FileAclBackend, PrivateKeyHandle
from cms_vault.acl.principals import (
    ADMINISTRATORS,
    EVERYONE,
    SYSTEM,
    USERS,
    Principal,
    PrincipalCache,
    PrincipalResolver,
)
from cms_vault.acl.private_key_acl import PrivateKeyAcl
from cms_vault.acl.snapshot import AccessType, AclEntry, AclSnapshot, Permission

__all__ = [
    "ADMINISTRATORS",
    "AccessType",
    "AclBackend",
    "AclEntry",
    "AclSnapshot",
    "EVERYONE",
    "FileAclBackend",
    "Permission",
    "Principal",
    "PrincipalCache",
    "PrincipalResolver",
    "PrivateKeyAcl",
    "PrivateKeyHandle",
    "SYSTEM",
    "USERS",
]
