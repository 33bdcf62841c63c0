"""Protection certificate dataclass and X.509 generation.

Every protected identity is backed by one or more self-signed RSA
certificates. Each rotation generation gets a fresh subject of the form
``cms-{identity}-{uuid}``; the identity part groups the generations and
the UUID keeps them apart.
"""
from __future__ import annotations

import datetime
import re
import uuid
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.x509.oid import NameOID, ObjectIdentifier

SUBJECT_PREFIX = "cms-"

# Microsoft "Document Encryption" EKU, required by CMS message tooling.
DOCUMENT_ENCRYPTION_OID = ObjectIdentifier("1.3.6.1.4.1.311.80.1")

_UUID_PATTERN = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"
_SUBJECT_RE = re.compile(rf"^{re.escape(SUBJECT_PREFIX)}(?P<identity>.+)-(?P<guid>{_UUID_PATTERN})$")
_FORBIDDEN_IDENTITY_CHARS = set('/\\:*?"<>|')


def validate_identity(identity: str) -> str:
    """Return *identity* unchanged if it can be used in a subject and file name.

    Raises
    ------
    ValueError
        If the identity is empty or contains path or control characters.
    """
    if not identity or not identity.strip():
        raise ValueError("identity must be a non-empty string")
    if _FORBIDDEN_IDENTITY_CHARS & set(identity) or any(ord(ch) < 32 for ch in identity):
        raise ValueError(f"identity {identity!r} contains characters not allowed in a subject")
    return identity


def identity_prefix(identity: str) -> str:
    """Return the subject prefix shared by every generation of *identity*."""
    return f"{SUBJECT_PREFIX}{identity}-"


def build_subject(identity: str) -> str:
    """Return a new, unique subject for *identity*."""
    return f"{identity_prefix(validate_identity(identity))}{uuid.uuid4()}"


def parse_subject(subject: str) -> str | None:
    """Return the identity encoded in *subject*, or None if it is not a vault subject."""
    match = _SUBJECT_RE.match(subject)
    return match.group("identity") if match else None


def subject_belongs_to(subject: str, identity: str) -> bool:
    """Return True only if *subject* is a generation of exactly *identity*."""
    return parse_subject(subject) == identity


def compute_thumbprint(cert: x509.Certificate) -> str:
    """Return the upper-case hex SHA-1 fingerprint of the certificate."""
    return cert.fingerprint(hashes.SHA1()).hex().upper()


def normalize_thumbprint(thumbprint: str) -> str:
    return "".join(thumbprint.split()).replace(":", "").upper()


@dataclass(frozen=True)
class ProtectionCertificate:
    """A protection certificate as recorded in the key store.

    Parameters
    ----------
    identity:
        Logical secret name this certificate protects.
    subject:
        ``cms-{identity}-{uuid}``; also the credential file's base name.
    thumbprint:
        SHA-1 fingerprint of the DER certificate, upper-case hex.
    not_before:
        Creation instant. Generations are ordered by this value.
    not_after:
        End of the validity window.
    exportable:
        Whether the private key may be exported. Fixed at creation.
    cert_pem:
        PEM-encoded certificate.
    has_private_key:
        False for public-key-only certificates imported from elsewhere.
    """

    identity: str
    subject: str
    thumbprint: str
    not_before: datetime.datetime
    not_after: datetime.datetime
    exportable: bool
    cert_pem: bytes
    has_private_key: bool = True

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def generate(
        cls,
        identity: str,
        private_key: RSAPrivateKey,
        validity_years: int = 100,
        exportable: bool = False,
    ) -> "ProtectionCertificate":
        """Build a self-signed encryption certificate around *private_key*.

        Parameters
        ----------
        identity:
            Logical secret name; becomes part of the subject.
        private_key:
            Freshly generated RSA key the certificate certifies.
        validity_years:
            Length of the validity window.
        exportable:
            Export policy recorded with the certificate.

        Returns
        -------
        ProtectionCertificate
            Populated dataclass; the key itself is not embedded.
        """
        subject = build_subject(identity)
        now = datetime.datetime.now(datetime.timezone.utc)
        not_after = now + datetime.timedelta(days=365 * validity_years + validity_years // 4)

        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, subject)])
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now.replace(microsecond=0))
            .not_valid_after(not_after.replace(microsecond=0))
            .add_extension(
                x509.BasicConstraints(ca=False, path_length=None),
                critical=True,
            )
            .add_extension(
                x509.KeyUsage(
                    digital_signature=False,
                    key_encipherment=True,
                    content_commitment=False,
                    data_encipherment=True,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([DOCUMENT_ENCRYPTION_OID]),
                critical=False,
            )
            .sign(private_key, hashes.SHA256())
        )

        return cls(
            identity=identity,
            subject=subject,
            thumbprint=compute_thumbprint(cert),
            not_before=now,
            not_after=not_after,
            exportable=exportable,
            cert_pem=cert.public_bytes(serialization.Encoding.PEM),
        )

    @classmethod
    def from_pem(
        cls,
        cert_pem: bytes,
        exportable: bool = False,
        has_private_key: bool = False,
        not_before: datetime.datetime | None = None,
    ) -> "ProtectionCertificate":
        """Describe an existing PEM certificate whose CN is a vault subject.

        Raises
        ------
        ValueError
            If the PEM cannot be parsed or its CN is not ``cms-{identity}-{uuid}``.
        """
        cert = x509.load_pem_x509_certificate(cert_pem)
        cn_attrs = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        subject = str(cn_attrs[0].value) if cn_attrs else ""
        identity = parse_subject(subject)
        if identity is None:
            raise ValueError(f"Certificate subject {subject!r} is not a cms-vault subject")
        return cls(
            identity=identity,
            subject=subject,
            thumbprint=compute_thumbprint(cert),
            not_before=not_before or cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            exportable=exportable,
            cert_pem=cert_pem,
            has_private_key=has_private_key,
        )

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    def load_x509(self) -> x509.Certificate:
        """Parse and return the X.509 certificate object."""
        return x509.load_pem_x509_certificate(self.cert_pem)

    def is_expired(self) -> bool:
        """Return True if the certificate has passed its not_after date."""
        return datetime.datetime.now(datetime.timezone.utc) > self.not_after

    def sort_key(self) -> tuple[datetime.datetime, str]:
        """Generation ordering: oldest first, subject breaks ties."""
        return (self.not_before, self.subject)
