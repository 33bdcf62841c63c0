"""Runtime configuration for cms-vault.

Settings are a plain dataclass. Defaults point at a per-machine
application-data location; :meth:`VaultSettings.from_env` lets deployments
relocate everything through ``CMS_VAULT_*`` environment variables.
"""
from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path

MIN_KEY_SIZE = 4096
DEFAULT_VALIDITY_YEARS = 100
APP_FOLDER_WINDOWS = "CmsCredentials"
APP_FOLDER_POSIX = "cms-vault"


def default_home() -> Path:
    """Return the well-known per-machine data directory for this platform."""
    if sys.platform.startswith("win"):
        program_data = os.environ.get("ProgramData", r"C:\ProgramData")
        return Path(program_data) / APP_FOLDER_WINDOWS
    return Path("/var/lib") / APP_FOLDER_POSIX


@dataclass(frozen=True)
class VaultSettings:
    """Locations and policy knobs shared by every vault component.

    Parameters
    ----------
    home:
        Root directory; the other paths default to sub-folders of it.
    credential_dir:
        Directory holding the encrypted credential files.
    store_dir:
        Directory backing the certificate store.
    audit_log:
        JSONL audit log path. None keeps audit events in memory.
    key_size:
        RSA modulus size for new protection certificates (at least 4096).
    validity_years:
        Validity window written into new certificates.
    exportable:
        Whether newly created private keys may be exported later.
    default_domain:
        Domain used to resolve bare account names and domain-only groups.
        None means the host is not domain-joined.
    """

    home: Path = field(default_factory=default_home)
    credential_dir: Path | None = None
    store_dir: Path | None = None
    audit_log: Path | None = None
    key_size: int = MIN_KEY_SIZE
    validity_years: int = DEFAULT_VALIDITY_YEARS
    exportable: bool = False
    default_domain: str | None = None

    def __post_init__(self) -> None:
        if self.key_size < MIN_KEY_SIZE:
            raise ValueError(
                f"key_size must be at least {MIN_KEY_SIZE} bits, got {self.key_size}"
            )
        if self.validity_years < 1:
            raise ValueError(f"validity_years must be positive, got {self.validity_years}")
        if self.credential_dir is None:
            object.__setattr__(self, "credential_dir", self.home / "credentials")
        if self.store_dir is None:
            object.__setattr__(self, "store_dir", self.home / "certstore")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "VaultSettings":
        """Build settings from ``CMS_VAULT_*`` environment variables."""
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}
        if env.get("CMS_VAULT_HOME"):
            kwargs["home"] = Path(env["CMS_VAULT_HOME"])
        if env.get("CMS_VAULT_CREDENTIAL_DIR"):
            kwargs["credential_dir"] = Path(env["CMS_VAULT_CREDENTIAL_DIR"])
        if env.get("CMS_VAULT_STORE_DIR"):
            kwargs["store_dir"] = Path(env["CMS_VAULT_STORE_DIR"])
        if env.get("CMS_VAULT_AUDIT_LOG"):
            kwargs["audit_log"] = Path(env["CMS_VAULT_AUDIT_LOG"])
        if env.get("CMS_VAULT_DOMAIN"):
            kwargs["default_domain"] = env["CMS_VAULT_DOMAIN"]
        return cls(**kwargs)  # type: ignore[arg-type]

    def with_overrides(self, **changes: object) -> "VaultSettings":
        """Return a copy with every non-None override applied."""
        applied = {key: value for key, value in changes.items() if value is not None}
        if "home" in applied:
            # Derived directories follow a relocated home unless set explicitly.
            applied.setdefault("credential_dir", None)
            applied.setdefault("store_dir", None)
        return replace(self, **applied)  # type: ignore[arg-type]
