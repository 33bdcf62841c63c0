"""Exception hierarchy for cms-vault.

Every failure raised by the library derives from :class:`VaultError` so
callers (and the CLI) can catch the whole family in one place. Errors are
never retried internally; retry policy belongs to the caller.
"""
from __future__ import annotations


class VaultError(Exception):
    """Base class for all cms-vault errors."""


class NotFoundError(VaultError, LookupError):
    """Raised when no certificate, credential file, or identity matches."""

    def __str__(self) -> str:
        # LookupError subclasses render their argument with repr() otherwise.
        return str(self.args[0]) if self.args else ""


class PrincipalResolutionError(NotFoundError):
    """Raised when an account name cannot be resolved to a principal."""

    def __init__(self, name: str, reason: str = "unknown account") -> None:
        self.name = name
        super().__init__(f"Cannot resolve principal {name!r}: {reason}")


class CertificateCreationError(VaultError):
    """Raised when a protection certificate cannot be created or persisted."""


class KeyGenerationError(CertificateCreationError):
    """Raised when the platform cannot generate the asymmetric key pair."""


class NoPrivateKeyError(VaultError):
    """Raised when a certificate has no private key reachable by the caller."""


class AccessDeniedError(NoPrivateKeyError):
    """Raised when the private key ACL does not grant the caller read access."""

    def __init__(self, subject: str, principal: str) -> None:
        self.subject = subject
        self.principal = principal
        super().__init__(
            f"Access to the private key of {subject!r} is denied for {principal!r}"
        )


class DecryptionError(VaultError):
    """Raised when a ciphertext cannot be decrypted with any accessible key."""


class MalformedSecretError(VaultError):
    """Raised when a decrypted payload does not match the secret schema."""


class IoError(VaultError):
    """Raised on file, registry, or ACL document I/O failure."""


class StoreAccessError(VaultError):
    """Raised when the certificate store refuses an operation."""


class ConfirmationRequiredError(VaultError):
    """Raised when a destructive action was not confirmed by the caller."""


class CleanupError(VaultError):
    """Raised when retention cleanup fails after a successful protect.

    The newly written credential is kept; ``certificate`` is the certificate
    it was protected with and ``__cause__`` holds the underlying failure.
    """

    def __init__(self, identity: str, certificate: object, cause: Exception) -> None:
        self.identity = identity
        self.certificate = certificate
        super().__init__(
            f"Credential for {identity!r} was protected, but cleanup of older "
            f"generations failed: {cause}"
        )


class RemoteExecutionError(VaultError):
    """Raised when a remote host fails during a multi-host dispatch.

    ``completed`` holds the results of every host that finished before the
    failure; those hosts are left in their new state.
    """

    def __init__(self, host: str, message: str, completed: list | None = None) -> None:
        self.host = host
        self.completed = list(completed or [])
        super().__init__(f"Remote execution on {host!r} failed: {message}")
