"""ACL storage backends for private key objects.

The :class:`AclBackend` contract is the platform boundary: ``read`` parses
whatever object holds the key's security descriptor into an
:class:`~cms_vault.acl.snapshot.AclSnapshot` and ``write`` stores one back.
:class:`FileAclBackend` keeps the descriptor as a document next to the key
file, which is what :class:`~cms_vault.certificates.store.FilesystemKeyStore`
uses.
"""
from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from cms_vault.acl.snapshot import AclSnapshot
from cms_vault.errors import IoError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrivateKeyHandle:
    """Locator for the storage object behind a certificate's private key.

    Parameters
    ----------
    subject:
        Subject of the owning certificate.
    key_path:
        File holding the private key material.
    acl_path:
        File holding the key's security descriptor.
    """

    subject: str
    key_path: Path
    acl_path: Path


class AclBackend(ABC):
    """Read and write the discretionary ACL of a private key object."""

    @abstractmethod
    def read(self, handle: PrivateKeyHandle) -> AclSnapshot:
        """Return the current ACL of the key behind *handle*."""

    @abstractmethod
    def write(self, handle: PrivateKeyHandle, snapshot: AclSnapshot) -> None:
        """Replace the ACL of the key behind *handle* with *snapshot*."""


class FileAclBackend(AclBackend):
    """Stores each key's ACL as a JSON document beside the key file."""

    def read(self, handle: PrivateKeyHandle) -> AclSnapshot:
        """Read and parse the ACL document.

        A key without a document has an empty ACL, which grants nothing.

        Raises
        ------
        IoError
            If the document cannot be read or parsed.
        """
        try:
            raw = handle.acl_path.read_bytes()
        except FileNotFoundError:
            return AclSnapshot()
        except OSError as exc:
            raise IoError(f"Cannot read ACL of {handle.subject!r}: {exc}") from exc
        try:
            return AclSnapshot.from_bytes(raw)
        except (ValueError, KeyError, TypeError) as exc:
            raise IoError(f"Corrupt ACL document for {handle.subject!r}: {exc}") from exc

    def write(self, handle: PrivateKeyHandle, snapshot: AclSnapshot) -> None:
        """Atomically replace the ACL document.

        Raises
        ------
        IoError
            If the document cannot be written.
        """
        tmp_path = handle.acl_path.with_name(handle.acl_path.name + ".tmp")
        try:
            tmp_path.write_bytes(snapshot.to_bytes())
            os.replace(tmp_path, handle.acl_path)
        except OSError as exc:
            raise IoError(f"Cannot write ACL of {handle.subject!r}: {exc}") from exc
        logger.debug("Wrote %d ACL entries for %s", len(snapshot), handle.subject)
