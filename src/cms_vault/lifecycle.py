"""Credential lifecycle: protect, get, remove, and show.

The state of an identity is never stored separately; it is inferred from
the certificate store and the credential directory. An identity with no
certificate is in the NoCertificate state; otherwise its *current*
certificate is the newest generation by ``not_before``, unless the caller
pins an older one by thumbprint.
"""
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Sequence, TypeVar

from cms_vault.acl.principals import Principal
from cms_vault.audit import VaultAuditLogger
from cms_vault.certificates.protection_cert import (
    ProtectionCertificate,
    parse_subject,
    validate_identity,
)
from cms_vault.certificates.store import KeyStore
from cms_vault.errors import (
    CleanupError,
    ConfirmationRequiredError,
    NotFoundError,
    VaultError,
)
from cms_vault.files import CredentialFileStore
from cms_vault.secrets.codec import SecretCodec
from cms_vault.secrets.secret import Credential, PlainCredential, Secret

logger = logging.getLogger(__name__)

T = TypeVar("T")

ConfirmCallback = Callable[[str], bool]


def select_certificate(certs: Iterable[ProtectionCertificate]) -> ProtectionCertificate | None:
    """Return the newest certificate by ``not_before`` (subject breaks ties)."""
    ordered = sorted(certs, key=ProtectionCertificate.sort_key, reverse=True)
    return ordered[0] if ordered else None


def resolve_certificate(
    store: KeyStore,
    identity: str | None,
    thumbprint: str | None = None,
    force_reset: bool = False,
) -> ProtectionCertificate | None:
    """Pick the certificate an operation should use.

    An explicit *thumbprint* wins. Otherwise the newest generation of
    *identity* is used, unless *force_reset* asks for a fresh one (None is
    returned so the caller creates it).

    Raises
    ------
    NotFoundError
        If the thumbprint is unknown or belongs to a different identity.
    ValueError
        If neither an identity nor a thumbprint is given.
    """
    if thumbprint:
        cert = store.get_certificate(thumbprint)
        if identity is not None and cert.identity != identity:
            raise NotFoundError(
                f"Certificate {cert.thumbprint} protects {cert.identity!r}, not {identity!r}"
            )
        return cert
    if identity is None:
        raise ValueError("Either an identity or a thumbprint is required")
    if force_reset:
        return None
    return select_certificate(store.certificates_for(identity))


def _split_retained(
    items: Sequence[T], retain_count: int, pinned: Callable[[T], bool]
) -> tuple[list[T], list[T]]:
    """Split oldest-first *items* into (deleted, retained)."""
    newest = set(range(max(len(items) - retain_count, 0), len(items)))
    deleted: list[T] = []
    retained: list[T] = []
    for index, item in enumerate(items):
        (retained if index in newest or pinned(item) else deleted).append(item)
    return deleted, retained


@dataclass(frozen=True)
class RemovalReport:
    """What a retention cleanup deleted and kept."""

    identity: str
    deleted_files: list[Path] = field(default_factory=list)
    deleted_certificates: list[str] = field(default_factory=list)
    retained_files: list[Path] = field(default_factory=list)
    retained_certificates: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "identity": self.identity,
            "deleted_files": [str(path) for path in self.deleted_files],
            "deleted_certificates": list(self.deleted_certificates),
            "retained_files": [str(path) for path in self.retained_files],
            "retained_certificates": list(self.retained_certificates),
        }


@dataclass(frozen=True)
class ShowEntry:
    """One row of the Show listing: a certificate, its file, or an orphan file."""

    identity: str
    subject: str
    thumbprint: str | None
    not_before: datetime.datetime | None
    exportable: bool | None
    has_private_key: bool
    credential_file: Path | None

    def to_dict(self) -> dict[str, object]:
        return {
            "identity": self.identity,
            "subject": self.subject,
            "thumbprint": self.thumbprint,
            "not_before": self.not_before.isoformat() if self.not_before else None,
            "exportable": self.exportable,
            "has_private_key": self.has_private_key,
            "credential_file": str(self.credential_file) if self.credential_file else None,
        }


class CredentialLifecycle:
    """Orchestrates protect, get, remove and show for protected identities.

    Parameters
    ----------
    store:
        Certificate store holding the protection certificates.
    files:
        Credential file storage.
    codec:
        Envelope encryption codec.
    principal:
        The caller; owner of newly created keys and subject of decrypt
        access checks.
    exportable:
        Export policy applied to newly created certificates.
    audit:
        Optional audit logger.
    """

    def __init__(
        self,
        store: KeyStore,
        files: CredentialFileStore,
        codec: SecretCodec,
        principal: Principal,
        exportable: bool = False,
        audit: VaultAuditLogger | None = None,
    ) -> None:
        self._store = store
        self._files = files
        self._codec = codec
        self._principal = principal
        self._exportable = exportable
        self._audit = audit

    @property
    def principal(self) -> Principal:
        return self._principal

    # ------------------------------------------------------------------
    # Protect
    # ------------------------------------------------------------------

    def protect(
        self,
        identity: str,
        secret: Secret,
        thumbprint: str | None = None,
        force_reset: bool = False,
        skip_cleanup: bool = False,
        overwrite: bool = False,
        confirm: ConfirmCallback | None = None,
    ) -> ProtectionCertificate:
        """Encrypt *secret* for *identity* and persist it.

        Parameters
        ----------
        identity:
            Logical secret name.
        secret:
            Username and password to protect.
        thumbprint:
            Pin a specific existing certificate instead of the newest.
        force_reset:
            Always create a new certificate generation.
        skip_cleanup:
            Keep older generations instead of pruning to the newest one.
        overwrite:
            Replace an existing credential file without asking.
        confirm:
            Called with the file path when an existing file would be
            replaced and *overwrite* is False.

        Returns
        -------
        ProtectionCertificate
            The certificate the secret was encrypted to.

        Raises
        ------
        ConfirmationRequiredError
            If an existing file would be replaced without confirmation.
        CleanupError
            If the credential was written but pruning older generations failed.
        """
        validate_identity(identity)
        cert = resolve_certificate(self._store, identity, thumbprint, force_reset)
        created = cert is None
        if cert is None:
            cert = self._store.create_certificate(
                identity, exportable=self._exportable, owner=self._principal
            )

        try:
            path = self._files.path_for(cert.subject)
            if path.exists() and not overwrite:
                if confirm is None or not confirm(str(path)):
                    raise ConfirmationRequiredError(
                        f"Credential file {str(path)!r} already exists; overwrite was not confirmed"
                    )
                overwrite = True
            ciphertext = self._codec.encrypt(secret, cert)
            self._files.write(cert.subject, ciphertext, overwrite=overwrite)
        except VaultError:
            if created:
                self._discard_new_certificate(cert)
            raise

        logger.info("Protected credential for %s with %s", identity, cert.subject)
        if self._audit is not None:
            self._audit.log_protected(
                identity, cert.subject, cert.thumbprint, self._principal.name, created
            )

        if not skip_cleanup:
            try:
                self.remove(identity, retain_count=1, keep_subject=cert.subject)
            except VaultError as exc:
                raise CleanupError(identity, cert, exc) from exc
        return cert

    # ------------------------------------------------------------------
    # Get
    # ------------------------------------------------------------------

    def get(
        self,
        identity: str | None = None,
        path: Path | str | None = None,
        plain_text: bool = False,
    ) -> Credential | PlainCredential:
        """Decrypt the newest credential of *identity*, or the file at *path*.

        Raises
        ------
        NotFoundError
            If there is no credential file to read.
        DecryptionError
            If no private key readable by the caller matches.
        MalformedSecretError
            If the decrypted payload fails validation.
        """
        if path is not None:
            target = Path(path)
        elif identity is not None:
            latest = self._files.find_latest(identity)
            if latest is None:
                raise NotFoundError(f"No credential stored for identity {identity!r}")
            target = latest
        else:
            raise ValueError("Either an identity or a credential file path is required")

        ciphertext = self._files.read(target)
        secret = self._codec.decrypt(ciphertext, self._principal, hint=target.stem)

        if self._audit is not None:
            self._audit.log_retrieved(
                identity or parse_subject(target.stem) or target.stem,
                str(target),
                self._principal.name,
            )
        return secret.to_plain() if plain_text else secret.to_credential()

    # ------------------------------------------------------------------
    # Remove
    # ------------------------------------------------------------------

    def remove(
        self,
        identity: str,
        retain_count: int = 0,
        keep_subject: str | None = None,
    ) -> RemovalReport:
        """Delete all but the newest *retain_count* files and certificates.

        Files are ordered by write time and certificates by ``not_before``.
        The generation named by *keep_subject* is never deleted. Deletion is
        fail-fast and not transactional: the first failure propagates and
        items already deleted stay deleted.
        """
        if retain_count < 0:
            raise ValueError(f"retain_count must be >= 0, got {retain_count}")

        deleted_files, retained_files = _split_retained(
            self._files.list_all(identity),
            retain_count,
            lambda path: path.stem == keep_subject,
        )
        for path in deleted_files:
            self._files.delete(path)
            if self._audit is not None:
                self._audit.log_removed(identity, "file", path.name, self._principal.name)

        deleted_certs, retained_certs = _split_retained(
            self._store.certificates_for(identity),
            retain_count,
            lambda cert: cert.subject == keep_subject,
        )
        for cert in deleted_certs:
            self._store.delete_certificate(cert)
            if self._audit is not None:
                self._audit.log_removed(identity, "certificate", cert.subject, self._principal.name)

        if deleted_files or deleted_certs:
            logger.info(
                "Removed %d file(s) and %d certificate(s) for %s",
                len(deleted_files),
                len(deleted_certs),
                identity,
            )
        return RemovalReport(
            identity=identity,
            deleted_files=deleted_files,
            deleted_certificates=[cert.subject for cert in deleted_certs],
            retained_files=retained_files,
            retained_certificates=[cert.subject for cert in retained_certs],
        )

    # ------------------------------------------------------------------
    # Show
    # ------------------------------------------------------------------

    def show(self, identity: str | None = None) -> list[ShowEntry]:
        """List certificates and credential files without decrypting anything.

        Credential files whose certificate is gone are listed as orphans.
        """
        if identity is not None:
            certs = self._store.certificates_for(identity)
            identities = [identity]
        else:
            certs = self._store.all_certificates()
            identities = sorted({cert.identity for cert in certs} | set(self._files.list_identities()))

        entries: list[ShowEntry] = []
        subjects = {cert.subject for cert in certs}
        for cert in certs:
            path = self._files.path_for(cert.subject)
            entries.append(
                ShowEntry(
                    identity=cert.identity,
                    subject=cert.subject,
                    thumbprint=cert.thumbprint,
                    not_before=cert.not_before,
                    exportable=cert.exportable,
                    has_private_key=cert.has_private_key,
                    credential_file=path if path.exists() else None,
                )
            )
        for name in identities:
            for path in self._files.list_all(name):
                if path.stem not in subjects:
                    entries.append(
                        ShowEntry(
                            identity=name,
                            subject=path.stem,
                            thumbprint=None,
                            not_before=None,
                            exportable=None,
                            has_private_key=False,
                            credential_file=path,
                        )
                    )
        return entries

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _discard_new_certificate(self, cert: ProtectionCertificate) -> None:
        try:
            self._store.delete_certificate(cert)
        except VaultError:
            logger.warning("Could not remove unused certificate %s", cert.subject, exc_info=True)
