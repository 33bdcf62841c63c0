"""cms-vault — certificate-backed credential protection.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import cms_vault
>>> cms_vault.__version__
'0.1.0'

Quick start
-----------
::

    from cms_vault import CredentialVault, Secret, VaultSettings

    vault = CredentialVault.from_settings(VaultSettings(home=Path("/srv/vault")))
    vault.lifecycle.protect("Zenoss", Secret(username="svc", password="s3cret"))
    vault.access.grant(["CORP\\\\monitoring"], identity="Zenoss")
    credential = vault.lifecycle.get("Zenoss")
"""
from __future__ import annotations

__version__: str = "0.1.0"

# ------------------------------------------------------------------
# Errors and configuration
# ------------------------------------------------------------------
from cms_vault.config import VaultSettings
from cms_vault.errors import (
    AccessDeniedError,
    CertificateCreationError,
    CleanupError,
    ConfirmationRequiredError,
    DecryptionError,
    IoError,
    KeyGenerationError,
    MalformedSecretError,
    NoPrivateKeyError,
    NotFoundError,
    PrincipalResolutionError,
    RemoteExecutionError,
    StoreAccessError,
    VaultError,
)

# ------------------------------------------------------------------
# Certificates and access control
# ------------------------------------------------------------------
from cms_vault.acl import (
    AccessType,
    AclEntry,
    AclSnapshot,
    Permission,
    Principal,
    PrincipalCache,
    PrincipalResolver,
    PrivateKeyAcl,
)
from cms_vault.certificates import FilesystemKeyStore, KeyStore, ProtectionCertificate

# ------------------------------------------------------------------
# Secrets, files, lifecycle
# ------------------------------------------------------------------
from cms_vault.access import AccessCoordinator
from cms_vault.audit import AuditEvent, VaultAuditLogger
from cms_vault.files import CredentialFileStore
from cms_vault.lifecycle import CredentialLifecycle, RemovalReport, ShowEntry
from cms_vault.secrets import Credential, PlainCredential, Secret, SecretCodec

# ------------------------------------------------------------------
# Dispatch and facade
# ------------------------------------------------------------------
from cms_vault.dispatch import HostDispatcher, HostResult, OperationDescriptor, SshRemoteExecutor
from cms_vault.vault import CredentialVault

__all__ = [
    "__version__",
    # errors and configuration
    "AccessDeniedError",
    "CertificateCreationError",
    "CleanupError",
    "ConfirmationRequiredError",
    "DecryptionError",
    "IoError",
    "KeyGenerationError",
    "MalformedSecretError",
    "NoPrivateKeyError",
    "NotFoundError",
    "PrincipalResolutionError",
    "RemoteExecutionError",
    "StoreAccessError",
    "VaultError",
    "VaultSettings",
    # certificates and access control
    "AccessType",
    "AclEntry",
    "AclSnapshot",
    "FilesystemKeyStore",
    "KeyStore",
    "Permission",
    "Principal",
    "PrincipalCache",
    "PrincipalResolver",
    "PrivateKeyAcl",
    "ProtectionCertificate",
    # secrets, files, lifecycle
    "AccessCoordinator",
    "AuditEvent",
    "Credential",
    "CredentialFileStore",
    "CredentialLifecycle",
    "PlainCredential",
    "RemovalReport",
    "Secret",
    "SecretCodec",
    "ShowEntry",
    "VaultAuditLogger",
    # dispatch and facade
    "CredentialVault",
    "HostDispatcher",
    "HostResult",
    "OperationDescriptor",
    "SshRemoteExecutor",
]
