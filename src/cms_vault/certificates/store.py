"""Certificate storage — abstract interface and filesystem implementation.

KeyStore defines the certificate store contract the vault needs: create a
key pair with a self-signed certificate, enumerate certificates by subject
prefix, delete them, and locate the private key object whose ACL decides
who may decrypt. FilesystemKeyStore persists everything under a base
directory, one group of files per certificate subject.
"""
from __future__ import annotations

import datetime
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from cms_vault.acl.backend import AclBackend, FileAclBackend, PrivateKeyHandle
from cms_vault.acl.principals import Principal
from cms_vault.acl.snapshot import AclEntry, AclSnapshot, Permission
from cms_vault.certificates.protection_cert import (
    SUBJECT_PREFIX,
    ProtectionCertificate,
    identity_prefix,
    normalize_thumbprint,
    subject_belongs_to,
    validate_identity,
)
from cms_vault.config import DEFAULT_VALIDITY_YEARS, MIN_KEY_SIZE
from cms_vault.errors import (
    AccessDeniedError,
    CertificateCreationError,
    IoError,
    KeyGenerationError,
    NoPrivateKeyError,
    NotFoundError,
    StoreAccessError,
)

logger = logging.getLogger(__name__)

KeyFactory = Callable[[int], RSAPrivateKey]


def generate_rsa_key(key_size: int) -> RSAPrivateKey:
    """Default key factory: a fresh RSA key with the standard public exponent."""
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


class KeyStore(ABC):
    """Abstract base class for certificate store backends."""

    @abstractmethod
    def create_certificate(
        self,
        identity: str,
        exportable: bool = False,
        owner: Principal | None = None,
    ) -> ProtectionCertificate:
        """Generate a key pair and self-signed certificate for *identity*.

        Raises
        ------
        KeyGenerationError
            If the key pair cannot be generated.
        CertificateCreationError
            If the certificate cannot be persisted.
        """

    @abstractmethod
    def find_certificates(self, subject_prefix: str) -> list[ProtectionCertificate]:
        """Return certificates whose subject starts with *subject_prefix*, oldest first."""

    @abstractmethod
    def delete_certificate(self, cert: ProtectionCertificate) -> None:
        """Remove the certificate and its key material.

        Raises
        ------
        NotFoundError
            If the certificate is no longer in the store.
        StoreAccessError
            If removal is denied.
        """

    @abstractmethod
    def locate_private_key(self, cert: ProtectionCertificate) -> PrivateKeyHandle:
        """Return the storage object holding the certificate's private key.

        Raises
        ------
        NoPrivateKeyError
            If the certificate has no accessible private key.
        """

    @abstractmethod
    def load_private_key(
        self, cert: ProtectionCertificate, principal: Principal
    ) -> RSAPrivateKey:
        """Load the private key on behalf of *principal*.

        Raises
        ------
        AccessDeniedError
            If the key's ACL does not grant *principal* read access.
        NoPrivateKeyError
            If the certificate has no private key.
        """

    # ------------------------------------------------------------------
    # Derived queries
    # ------------------------------------------------------------------

    def certificates_for(self, identity: str) -> list[ProtectionCertificate]:
        """Return every generation of exactly *identity*, oldest first."""
        return [
            cert
            for cert in self.find_certificates(identity_prefix(identity))
            if subject_belongs_to(cert.subject, identity)
        ]

    def all_certificates(self) -> list[ProtectionCertificate]:
        return self.find_certificates(SUBJECT_PREFIX)

    def get_certificate(self, thumbprint: str) -> ProtectionCertificate:
        """Return the certificate with the given thumbprint.

        Raises
        ------
        NotFoundError
            If no certificate in the store has that thumbprint.
        """
        wanted = normalize_thumbprint(thumbprint)
        for cert in self.all_certificates():
            if cert.thumbprint == wanted:
                return cert
        raise NotFoundError(f"No certificate with thumbprint {wanted!r} in the store")


class FilesystemKeyStore(KeyStore):
    """Filesystem-backed certificate store.

    Each certificate is kept as ``{subject}.pem`` (certificate),
    ``{subject}.key`` (private key, owner-only file mode), ``{subject}.json``
    (metadata), and ``{subject}.acl`` (the private key's ACL document).

    Parameters
    ----------
    base_dir:
        Root directory for the store.
    key_size:
        RSA modulus size for new keys; at least 4096.
    validity_years:
        Validity window of new certificates.
    key_factory:
        Callable producing a new RSA private key for a given size.
    acl_backend:
        Backend used to write the initial ACL and to check read access.
    """

    def __init__(
        self,
        base_dir: Path,
        key_size: int = MIN_KEY_SIZE,
        validity_years: int = DEFAULT_VALIDITY_YEARS,
        key_factory: KeyFactory = generate_rsa_key,
        acl_backend: AclBackend | None = None,
    ) -> None:
        if key_size < MIN_KEY_SIZE:
            raise ValueError(f"key_size must be at least {MIN_KEY_SIZE} bits, got {key_size}")
        self._base_dir = Path(base_dir)
        self._key_size = key_size
        self._validity_years = validity_years
        self._key_factory = key_factory
        self._acl_backend = acl_backend or FileAclBackend()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def acl_backend(self) -> AclBackend:
        return self._acl_backend

    # ------------------------------------------------------------------
    # KeyStore interface
    # ------------------------------------------------------------------

    def create_certificate(
        self,
        identity: str,
        exportable: bool = False,
        owner: Principal | None = None,
    ) -> ProtectionCertificate:
        """Generate, self-sign, and persist a new protection certificate.

        The initial ACL grants full control to SYSTEM, Administrators and,
        when given, the creating *owner*.
        """
        validate_identity(identity)
        try:
            key = self._key_factory(self._key_size)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise KeyGenerationError(f"Cannot generate a {self._key_size}-bit RSA key: {exc}") from exc
        if not isinstance(key, RSAPrivateKey) or key.key_size < MIN_KEY_SIZE:
            raise KeyGenerationError(
                f"Key factory must produce RSA keys of at least {MIN_KEY_SIZE} bits"
            )

        cert = ProtectionCertificate.generate(
            identity=identity,
            private_key=key,
            validity_years=self._validity_years,
            exportable=exportable,
        )

        acl = AclSnapshot.trusted_default()
        if owner is not None:
            acl = acl.with_entries([AclEntry(owner, Permission.FULL_CONTROL)])

        handle = self._handle(cert.subject)
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            self._cert_path(cert.subject).write_bytes(cert.cert_pem)
            self._write_private_key(handle.key_path, key)
            self._acl_backend.write(handle, acl)
            self._write_meta(cert)
        except (OSError, IoError) as exc:
            self._discard(cert.subject)
            raise CertificateCreationError(
                f"Cannot persist certificate {cert.subject!r}: {exc}"
            ) from exc

        logger.info(
            "Created protection certificate %s (thumbprint=%s, exportable=%s)",
            cert.subject,
            cert.thumbprint,
            exportable,
        )
        return cert

    def find_certificates(self, subject_prefix: str) -> list[ProtectionCertificate]:
        """Enumerate stored certificates by subject prefix, ordered by not_before."""
        if not self._base_dir.is_dir():
            return []
        certs = []
        for meta_path in self._base_dir.glob("*.json"):
            if not meta_path.stem.startswith(subject_prefix):
                continue
            try:
                certs.append(self._load(meta_path))
            except StoreAccessError as exc:
                logger.warning("Skipping unreadable store entry: %s", exc)
        return sorted(certs, key=ProtectionCertificate.sort_key)

    def delete_certificate(self, cert: ProtectionCertificate) -> None:
        """Remove every file belonging to *cert*.

        The metadata file goes last, so a partially failed deletion leaves
        the certificate enumerable and a later retry can finish the job.
        """
        meta_path = self._meta_path(cert.subject)
        if not meta_path.exists():
            raise NotFoundError(f"Certificate {cert.subject!r} is not in the store")
        try:
            for path in self._files(cert.subject)[1:]:
                path.unlink(missing_ok=True)
            meta_path.unlink()
        except OSError as exc:
            raise StoreAccessError(f"Cannot delete certificate {cert.subject!r}: {exc}") from exc
        logger.info("Deleted protection certificate %s", cert.subject)

    def locate_private_key(self, cert: ProtectionCertificate) -> PrivateKeyHandle:
        handle = self._handle(cert.subject)
        if not cert.has_private_key or not handle.key_path.exists():
            raise NoPrivateKeyError(f"Certificate {cert.subject!r} has no private key")
        return handle

    def load_private_key(
        self, cert: ProtectionCertificate, principal: Principal
    ) -> RSAPrivateKey:
        handle = self.locate_private_key(cert)
        if not self._acl_backend.read(handle).allows(principal, Permission.READ):
            raise AccessDeniedError(cert.subject, principal.name)
        try:
            key_pem = handle.key_path.read_bytes()
        except OSError as exc:
            raise IoError(f"Cannot read private key of {cert.subject!r}: {exc}") from exc
        try:
            key = serialization.load_pem_private_key(key_pem, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise StoreAccessError(f"Private key of {cert.subject!r} is unreadable: {exc}") from exc
        if not isinstance(key, RSAPrivateKey):
            raise StoreAccessError(f"Private key of {cert.subject!r} is not an RSA key")
        return key

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def import_certificate(self, cert_pem: bytes) -> ProtectionCertificate:
        """Add a public-key-only certificate (e.g. exported from another host).

        Secrets protected with it can only be decrypted where its private
        key lives.

        Raises
        ------
        ValueError
            If the PEM is not a cms-vault certificate.
        StoreAccessError
            If a certificate with the same subject is already stored or the
            files cannot be written.
        """
        cert = ProtectionCertificate.from_pem(
            cert_pem,
            not_before=datetime.datetime.now(datetime.timezone.utc),
        )
        if self._meta_path(cert.subject).exists():
            raise StoreAccessError(f"Certificate {cert.subject!r} is already in the store")
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            self._cert_path(cert.subject).write_bytes(cert.cert_pem)
            self._write_meta(cert)
        except OSError as exc:
            self._discard(cert.subject)
            raise StoreAccessError(f"Cannot import certificate {cert.subject!r}: {exc}") from exc
        logger.info("Imported public certificate %s", cert.subject)
        return cert

    def export_certificate(self, cert: ProtectionCertificate) -> bytes:
        """Return the stored PEM of the public certificate.

        Raises
        ------
        NotFoundError
            If the certificate is no longer in the store.
        """
        try:
            return self._cert_path(cert.subject).read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Certificate {cert.subject!r} is not in the store") from exc
        except OSError as exc:
            raise StoreAccessError(f"Cannot read certificate {cert.subject!r}: {exc}") from exc

    def export_private_key(
        self,
        cert: ProtectionCertificate,
        principal: Principal,
        password: bytes,
    ) -> bytes:
        """Return the private key as password-protected PKCS#8 PEM.

        Raises
        ------
        StoreAccessError
            If the certificate was created non-exportable.
        """
        if not cert.exportable:
            raise StoreAccessError(f"Private key of {cert.subject!r} is not exportable")
        key = self.load_private_key(cert, principal)
        return key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(password),
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _cert_path(self, subject: str) -> Path:
        return self._base_dir / f"{subject}.pem"

    def _meta_path(self, subject: str) -> Path:
        return self._base_dir / f"{subject}.json"

    def _handle(self, subject: str) -> PrivateKeyHandle:
        return PrivateKeyHandle(
            subject=subject,
            key_path=self._base_dir / f"{subject}.key",
            acl_path=self._base_dir / f"{subject}.acl",
        )

    def _files(self, subject: str) -> list[Path]:
        handle = self._handle(subject)
        return [
            self._meta_path(subject),
            handle.key_path,
            handle.acl_path,
            self._cert_path(subject),
        ]

    def _discard(self, subject: str) -> None:
        for path in self._files(subject):
            try:
                path.unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not remove partial file %s", path)

    @staticmethod
    def _write_private_key(path: Path, key: RSAPrivateKey) -> None:
        key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as fh:
            fh.write(key_pem)

    def _write_meta(self, cert: ProtectionCertificate) -> None:
        meta = {
            "identity": cert.identity,
            "subject": cert.subject,
            "thumbprint": cert.thumbprint,
            "not_before": cert.not_before.isoformat(),
            "not_after": cert.not_after.isoformat(),
            "exportable": cert.exportable,
            "has_private_key": cert.has_private_key,
        }
        meta_path = self._meta_path(cert.subject)
        tmp_path = meta_path.with_name(meta_path.name + ".tmp")
        tmp_path.write_text(json.dumps(meta, indent=2), encoding="utf-8")
        os.replace(tmp_path, meta_path)

    def _load(self, meta_path: Path) -> ProtectionCertificate:
        subject = meta_path.stem
        try:
            meta = json.loads(meta_path.read_text(encoding="utf-8"))
            cert_pem = self._cert_path(subject).read_bytes()
            return ProtectionCertificate(
                identity=meta["identity"],
                subject=meta["subject"],
                thumbprint=meta["thumbprint"],
                not_before=datetime.datetime.fromisoformat(meta["not_before"]),
                not_after=datetime.datetime.fromisoformat(meta["not_after"]),
                exportable=bool(meta["exportable"]),
                cert_pem=cert_pem,
                has_private_key=bool(meta.get("has_private_key", True)),
            )
        except (OSError, ValueError, KeyError) as exc:
            raise StoreAccessError(f"Cannot read certificate {subject!r} from the store: {exc}") from exc
