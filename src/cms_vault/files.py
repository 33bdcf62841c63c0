"""On-disk storage of encrypted credential files.

Each credential file is named after the subject of the certificate that
protects it (``cms-{identity}-{uuid}.txt``) and holds a PEM CMS envelope.
Files of one identity are ordered by modification time; the newest one is
what Get reads by default.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

from cms_vault.certificates.protection_cert import SUBJECT_PREFIX, parse_subject
from cms_vault.errors import ConfirmationRequiredError, IoError, NotFoundError

logger = logging.getLogger(__name__)

CREDENTIAL_SUFFIX = ".txt"

# Smallest step used to keep write order strict on coarse filesystem clocks.
_STAMP_STEP_NS = 1_000


class CredentialFileStore:
    """Reads, writes, enumerates and deletes credential files.

    Parameters
    ----------
    directory:
        Folder holding the credential files. Created on first write.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, subject: str) -> Path:
        """Return the credential file path for a certificate subject."""
        return self._directory / f"{subject}{CREDENTIAL_SUFFIX}"

    def exists(self, subject: str) -> bool:
        return self.path_for(subject).exists()

    # ------------------------------------------------------------------
    # Write / read / delete
    # ------------------------------------------------------------------

    def write(self, subject: str, ciphertext: bytes, overwrite: bool = False) -> Path:
        """Write *ciphertext* as the credential file for *subject*.

        The new file's modification time is made strictly greater than that
        of every other file of the same identity.

        Raises
        ------
        ConfirmationRequiredError
            If the file exists and *overwrite* is False.
        IoError
            If the directory or file cannot be written.
        """
        path = self.path_for(subject)
        if path.exists() and not overwrite:
            raise ConfirmationRequiredError(
                f"Credential file {str(path)!r} already exists; overwrite was not confirmed"
            )
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(ciphertext)
            os.replace(tmp_path, path)
            self._stamp_newest(path, subject)
        except OSError as exc:
            raise IoError(f"Cannot write credential file {str(path)!r}: {exc}") from exc
        logger.info("Wrote credential file %s", path)
        return path

    def read(self, path: Path) -> bytes:
        """Return the raw contents of a credential file.

        Raises
        ------
        NotFoundError
            If the file does not exist.
        IoError
            If it cannot be read.
        """
        try:
            return Path(path).read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Credential file {str(path)!r} does not exist") from exc
        except OSError as exc:
            raise IoError(f"Cannot read credential file {str(path)!r}: {exc}") from exc

    def delete(self, path: Path) -> None:
        """Delete one credential file.

        Raises
        ------
        IoError
            If the file cannot be removed.
        """
        try:
            Path(path).unlink()
        except OSError as exc:
            raise IoError(f"Cannot delete credential file {str(path)!r}: {exc}") from exc
        logger.info("Deleted credential file %s", path)

    # ------------------------------------------------------------------
    # Enumeration
    # ------------------------------------------------------------------

    def list_all(self, identity: str) -> list[Path]:
        """Return every credential file of *identity*, oldest write first."""
        if not self._directory.is_dir():
            return []
        paths = [
            path
            for path in self._directory.glob(f"{SUBJECT_PREFIX}*{CREDENTIAL_SUFFIX}")
            if parse_subject(path.stem) == identity
        ]
        try:
            return sorted(paths, key=lambda path: (path.stat().st_mtime_ns, path.name))
        except OSError as exc:
            raise IoError(f"Cannot list credential files in {str(self._directory)!r}: {exc}") from exc

    def find_latest(self, identity: str) -> Path | None:
        """Return the most recently written file of *identity*, or None."""
        paths = self.list_all(identity)
        return paths[-1] if paths else None

    def list_identities(self) -> list[str]:
        """Return the identities that have at least one credential file."""
        if not self._directory.is_dir():
            return []
        identities = {
            parse_subject(path.stem)
            for path in self._directory.glob(f"{SUBJECT_PREFIX}*{CREDENTIAL_SUFFIX}")
        }
        return sorted(identity for identity in identities if identity is not None)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _stamp_newest(self, path: Path, subject: str) -> None:
        identity = parse_subject(subject)
        if identity is None:
            return
        others = [
            other.stat().st_mtime_ns for other in self.list_all(identity) if other != path
        ]
        if not others:
            return
        newest_other = max(others)
        if path.stat().st_mtime_ns <= newest_other:
            stamp = newest_other + _STAMP_STEP_NS
            os.utime(path, ns=(stamp, stamp))
