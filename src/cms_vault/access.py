"""AccessCoordinator — grant, revoke, and reset who may decrypt a credential.

Authorization is the ACL on the protecting certificate's private key: a
principal that cannot read the key cannot decrypt the credential file.
"""
from __future__ import annotations

import logging
from typing import Iterable

from cms_vault.acl.principals import Principal
from cms_vault.acl.private_key_acl import PrivateKeyAcl
from cms_vault.acl.snapshot import AclSnapshot, Permission
from cms_vault.audit import VaultAuditLogger
from cms_vault.certificates.protection_cert import ProtectionCertificate
from cms_vault.certificates.store import KeyStore
from cms_vault.errors import ConfirmationRequiredError, NotFoundError
from cms_vault.lifecycle import ConfirmCallback, resolve_certificate

logger = logging.getLogger(__name__)


class AccessCoordinator:
    """Resolves a certificate and applies ACL changes to its private key.

    Parameters
    ----------
    store:
        Certificate store used to resolve certificates and key handles.
    acl:
        ACL manipulator for private key objects.
    actor:
        Principal recorded in audit events.
    audit:
        Optional audit logger.
    """

    def __init__(
        self,
        store: KeyStore,
        acl: PrivateKeyAcl,
        actor: Principal | None = None,
        audit: VaultAuditLogger | None = None,
    ) -> None:
        self._store = store
        self._acl = acl
        self._actor = actor
        self._audit = audit

    def read(self, identity: str | None = None, thumbprint: str | None = None) -> AclSnapshot:
        """Return the current ACL of the resolved certificate's private key."""
        cert = self._resolve(identity, thumbprint)
        return self._acl.read(self._store.locate_private_key(cert))

    def grant(
        self,
        principals: Iterable[str | Principal],
        identity: str | None = None,
        thumbprint: str | None = None,
        permission: Permission = Permission.READ,
    ) -> AclSnapshot:
        """Give *principals* read access to the credential.

        Raises
        ------
        NotFoundError
            If no certificate resolves.
        NoPrivateKeyError
            If the certificate's private key cannot be located.
        """
        cert = self._resolve(identity, thumbprint)
        handle = self._store.locate_private_key(cert)
        names = list(principals)
        snapshot = self._acl.grant(handle, names, permission)
        self._record("access_granted", cert, names)
        return snapshot

    def revoke(
        self,
        principals: Iterable[str | Principal],
        identity: str | None = None,
        thumbprint: str | None = None,
    ) -> AclSnapshot:
        """Remove every ACL entry of *principals* from the credential's key."""
        cert = self._resolve(identity, thumbprint)
        handle = self._store.locate_private_key(cert)
        names = list(principals)
        snapshot = self._acl.revoke(handle, names)
        self._record("access_revoked", cert, names)
        return snapshot

    def reset(
        self,
        identity: str | None = None,
        thumbprint: str | None = None,
        force: bool = False,
        confirm: ConfirmCallback | None = None,
    ) -> AclSnapshot:
        """Reset the key's ACL to SYSTEM and Administrators only.

        Reset removes every other principal's access, so it requires either
        *force* or a positive answer from *confirm*.

        Raises
        ------
        ConfirmationRequiredError
            If neither *force* nor confirmation was given.
        """
        cert = self._resolve(identity, thumbprint)
        handle = self._store.locate_private_key(cert)
        if not force and (confirm is None or not confirm(cert.subject)):
            raise ConfirmationRequiredError(
                f"Resetting the ACL of {cert.subject!r} was not confirmed"
            )
        snapshot = self._acl.reset(handle)
        self._record("access_reset", cert, [str(p) for p in snapshot.principals()])
        return snapshot

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _resolve(self, identity: str | None, thumbprint: str | None) -> ProtectionCertificate:
        cert = resolve_certificate(self._store, identity, thumbprint)
        if cert is None:
            raise NotFoundError(f"No certificate protects identity {identity!r}")
        return cert

    def _record(self, event_type: str, cert: ProtectionCertificate, principals: list) -> None:
        if self._audit is None:
            return
        self._audit.log_access_change(
            event_type,
            identity=cert.identity,
            subject=cert.subject,
            actor=self._actor.name if self._actor else "system",
            principals=[str(p) for p in principals],
        )
