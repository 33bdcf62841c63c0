"""Secret schema and CMS envelope codec."""
from __future__ import annotations

from cms_vault.secrets.codec import SecretCodec
from cms_vault.secrets.secret import Credential, PlainCredential, Secret

__all__ = ["Credential", "PlainCredential", "Secret", "SecretCodec"]
