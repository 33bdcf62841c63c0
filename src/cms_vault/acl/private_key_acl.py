"""Grant, revoke, and reset access to a private key.

Every mutation is a read-modify-write of the key's ACL through an
:class:`~cms_vault.acl.backend.AclBackend`. Concurrent writers on the same
key are not coordinated; the last write wins.
"""
from __future__ import annotations

import logging
from typing import Iterable

from cms_vault.acl.backend import AclBackend, FileAclBackend, PrivateKeyHandle
from cms_vault.acl.principals import ADMINISTRATORS, SYSTEM, Principal, PrincipalResolver
from cms_vault.acl.snapshot import AccessType, AclEntry, AclSnapshot, Permission

logger = logging.getLogger(__name__)

_TRUSTED = (SYSTEM, ADMINISTRATORS)


class PrivateKeyAcl:
    """Manipulates the discretionary ACL of private key objects.

    Parameters
    ----------
    backend:
        Where ACLs are read from and written to.
    resolver:
        Turns account names into principals.
    """

    def __init__(
        self,
        backend: AclBackend | None = None,
        resolver: PrincipalResolver | None = None,
    ) -> None:
        self._backend = backend or FileAclBackend()
        self._resolver = resolver or PrincipalResolver()

    @property
    def resolver(self) -> PrincipalResolver:
        return self._resolver

    def read(self, handle: PrivateKeyHandle) -> AclSnapshot:
        """Return the current ACL entries of the key."""
        return self._backend.read(handle)

    def grant(
        self,
        handle: PrivateKeyHandle,
        principals: Iterable[str | Principal],
        permission: Permission = Permission.READ,
    ) -> AclSnapshot:
        """Add an allow entry per principal, keeping existing entries.

        Returns
        -------
        AclSnapshot
            The ACL as written.
        """
        resolved = self._resolver.resolve_many(principals)
        current = self._backend.read(handle)
        updated = current.with_entries(
            AclEntry(principal, permission, AccessType.ALLOW) for principal in resolved
        )
        self._backend.write(handle, updated)
        logger.info(
            "Granted %s on %s to %s",
            permission.value,
            handle.subject,
            ", ".join(str(p) for p in resolved),
        )
        return updated

    def revoke(
        self,
        handle: PrivateKeyHandle,
        principals: Iterable[str | Principal],
    ) -> AclSnapshot:
        """Remove every entry (allow or deny) for each principal.

        SYSTEM and Administrators may be revoked explicitly; doing so without
        restoring access can lock every administrator out of the key.
        """
        resolved = self._resolver.resolve_many(principals)
        for principal in resolved:
            if any(principal.matches(trusted) for trusted in _TRUSTED):
                logger.warning(
                    "Revoking %s from %s; run reset to restore administrative access",
                    principal,
                    handle.subject,
                )
        current = self._backend.read(handle)
        updated = current.without_principals(resolved)
        self._backend.write(handle, updated)
        logger.info(
            "Revoked %s on %s (%d entries removed)",
            ", ".join(str(p) for p in resolved),
            handle.subject,
            len(current) - len(updated),
        )
        return updated

    def reset(self, handle: PrivateKeyHandle) -> AclSnapshot:
        """Purge all entries and leave only SYSTEM and Administrators (full control)."""
        current = self._backend.read(handle)
        updated = current.without_principals(current.principals())
        updated = updated.with_entries(AclSnapshot.trusted_default().entries)
        self._backend.write(handle, updated)
        logger.info("Reset ACL on %s to SYSTEM and Administrators", handle.subject)
        return updated
