"""Envelope encryption of secrets with CMS (PKCS#7 enveloped-data).

A secret is serialized to its canonical JSON form and enveloped to the
public key of a protection certificate. Decryption looks for a private key
in the store that the caller is allowed to read and that matches the
envelope's recipient.
"""
from __future__ import annotations

import logging

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs7

from cms_vault.acl.principals import Principal
from cms_vault.certificates.protection_cert import ProtectionCertificate
from cms_vault.certificates.store import KeyStore
from cms_vault.errors import AccessDeniedError, DecryptionError, NoPrivateKeyError
from cms_vault.secrets.secret import Secret

logger = logging.getLogger(__name__)


class SecretCodec:
    """Encrypts secrets to certificates and decrypts them with stored keys.

    Parameters
    ----------
    store:
        Certificate store searched for matching private keys on decrypt.
    """

    def __init__(self, store: KeyStore) -> None:
        self._store = store

    def encrypt(self, secret: Secret, recipient: ProtectionCertificate) -> bytes:
        """Return a PEM-armoured CMS envelope of *secret* for *recipient*."""
        return (
            pkcs7.PKCS7EnvelopeBuilder()
            .set_data(secret.to_canonical())
            .add_recipient(recipient.load_x509())
            .encrypt(serialization.Encoding.PEM, [pkcs7.PKCS7Options.Binary])
        )

    def decrypt(
        self,
        ciphertext: bytes,
        principal: Principal,
        hint: str | None = None,
    ) -> Secret:
        """Decrypt *ciphertext* with any private key *principal* may read.

        Parameters
        ----------
        ciphertext:
            PEM CMS envelope produced by :meth:`encrypt`.
        principal:
            The caller; keys whose ACL does not grant it read access are
            skipped.
        hint:
            Subject of the certificate most likely to be the recipient. It is
            tried first.

        Raises
        ------
        DecryptionError
            If no accessible private key matches the envelope.
        MalformedSecretError
            If the decrypted payload fails schema validation.
        """
        candidates = [cert for cert in self._store.all_certificates() if cert.has_private_key]
        if hint is not None:
            candidates.sort(key=lambda cert: cert.subject != hint)

        denied: list[str] = []
        for cert in candidates:
            try:
                key = self._store.load_private_key(cert, principal)
            except AccessDeniedError:
                denied.append(cert.subject)
                continue
            except NoPrivateKeyError:
                continue
            try:
                plaintext = pkcs7.pkcs7_decrypt_pem(ciphertext, cert.load_x509(), key, [])
            except (ValueError, UnsupportedAlgorithm):
                continue
            logger.debug("Decrypted envelope with %s", cert.subject)
            return Secret.from_canonical(plaintext)

        if hint is not None and hint in denied:
            raise DecryptionError(
                f"Access to the private key of {hint!r} is denied for {principal.name!r}"
            )
        if denied:
            raise DecryptionError(
                f"No private key readable by {principal.name!r} can decrypt this message "
                f"({len(denied)} key(s) denied by their ACL)"
            )
        raise DecryptionError("No private key in the store matches this message")
