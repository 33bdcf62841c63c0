"""Protection certificates and the certificate store.

Provides creation, enumeration, and deletion of the self-signed RSA
certificates that protect credential files, plus access to the private
key object each one owns.
"""
from __future__ import annotations

from cms_vault.certificates.protection_cert import (
    ProtectionCertificate,
    build_subject,
    identity_prefix,
    parse_subject,
)
from cms_vault.certificates.store import FilesystemKeyStore, KeyStore, generate_rsa_key

__all__ = [
    "FilesystemKeyStore",
    "KeyStore",
    "ProtectionCertificate",
    "build_subject",
    "generate_rsa_key",
    "identity_prefix",
    "parse_subject",
]
