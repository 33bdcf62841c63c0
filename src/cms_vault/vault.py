"""CredentialVault — one object wiring every vault component together.

Example
-------
::

    from cms_vault import CredentialVault, Secret, VaultSettings

    vault = CredentialVault.from_settings(VaultSettings(home=Path("/tmp/vault")))
    vault.lifecycle.protect("Zenoss", Secret(username="svc", password="s3cret"))
    print(vault.lifecycle.get("Zenoss").username)
"""
from __future__ import annotations

from typing import Any

from cms_vault.access import AccessCoordinator
from cms_vault.acl.principals import Principal, PrincipalCache, PrincipalResolver
from cms_vault.acl.private_key_acl import PrivateKeyAcl
from cms_vault.audit import VaultAuditLogger
from cms_vault.certificates.store import FilesystemKeyStore, KeyFactory, generate_rsa_key
from cms_vault.config import VaultSettings
from cms_vault.dispatch.descriptor import OperationDescriptor
from cms_vault.dispatch.dispatcher import HostDispatcher
from cms_vault.dispatch.operations import execute_operation
from cms_vault.dispatch.remote import RemoteExecutor
from cms_vault.files import CredentialFileStore
from cms_vault.lifecycle import CredentialLifecycle
from cms_vault.secrets.codec import SecretCodec


class CredentialVault:
    """Facade over the store, codec, lifecycle, access and dispatch components.

    Use :meth:`from_settings` rather than calling the constructor directly.
    """

    def __init__(
        self,
        settings: VaultSettings,
        store: FilesystemKeyStore,
        files: CredentialFileStore,
        codec: SecretCodec,
        acl: PrivateKeyAcl,
        lifecycle: CredentialLifecycle,
        access: AccessCoordinator,
        audit: VaultAuditLogger,
        remote: RemoteExecutor | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.files = files
        self.codec = codec
        self.acl = acl
        self.lifecycle = lifecycle
        self.access = access
        self.audit = audit
        self.dispatcher = HostDispatcher(local_runner=self.execute, remote=remote)

    @classmethod
    def from_settings(
        cls,
        settings: VaultSettings | None = None,
        principal: Principal | None = None,
        key_factory: KeyFactory = generate_rsa_key,
        remote: RemoteExecutor | None = None,
        principal_cache: PrincipalCache | None = None,
    ) -> "CredentialVault":
        """Build a vault from settings.

        Parameters
        ----------
        settings:
            Locations and policy; defaults to :meth:`VaultSettings.from_env`.
        principal:
            Caller identity; defaults to :meth:`Principal.current`.
        key_factory:
            RSA key generator for new certificates.
        remote:
            Transport for remote hosts.
        principal_cache:
            Cache shared by principal resolution.
        """
        settings = settings or VaultSettings.from_env()
        principal = principal or Principal.current()
        resolver = PrincipalResolver(default_domain=settings.default_domain, cache=principal_cache)
        store = FilesystemKeyStore(
            base_dir=settings.store_dir,  # type: ignore[arg-type]
            key_size=settings.key_size,
            validity_years=settings.validity_years,
            key_factory=key_factory,
        )
        files = CredentialFileStore(settings.credential_dir)  # type: ignore[arg-type]
        codec = SecretCodec(store)
        acl = PrivateKeyAcl(backend=store.acl_backend, resolver=resolver)
        audit = VaultAuditLogger(settings.audit_log)
        lifecycle = CredentialLifecycle(
            store=store,
            files=files,
            codec=codec,
            principal=principal,
            exportable=settings.exportable,
            audit=audit,
        )
        access = AccessCoordinator(store=store, acl=acl, actor=principal, audit=audit)
        return cls(
            settings=settings,
            store=store,
            files=files,
            codec=codec,
            acl=acl,
            lifecycle=lifecycle,
            access=access,
            audit=audit,
            remote=remote,
        )

    def execute(self, descriptor: OperationDescriptor) -> Any:
        """Run an operation descriptor on this machine."""
        return execute_operation(self, descriptor)
