"""Pydantic models for the protected secret and the credentials returned by Get."""
from __future__ import annotations

import json
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

from cms_vault.errors import MalformedSecretError


class Secret(BaseModel):
    """Plaintext secret; exists only in memory around encrypt and decrypt.

    The canonical text form is compact JSON with sorted keys, e.g.
    ``{"Password":"...","Username":"..."}``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, strict=True)

    username: str = Field(alias="Username", min_length=1)
    password: str = Field(alias="Password", min_length=1, repr=False)

    def to_canonical(self) -> bytes:
        """Serialize to the canonical UTF-8 JSON form."""
        document = {"Password": self.password, "Username": self.username}
        return json.dumps(
            document, sort_keys=True, separators=(",", ":"), ensure_ascii=False
        ).encode("utf-8")

    @classmethod
    def from_canonical(cls, raw: bytes) -> "Secret":
        """Parse and validate a decrypted payload.

        Raises
        ------
        MalformedSecretError
            If the payload is not a JSON object with non-empty string
            ``Username`` and ``Password`` fields.
        """
        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MalformedSecretError(f"Decrypted payload is not valid JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise MalformedSecretError("Decrypted payload is not a JSON object")
        try:
            return cls.model_validate(
                {key: document.get(key) for key in ("Username", "Password")}
            )
        except ValidationError as exc:
            missing = sorted(
                str(error["loc"][0]) for error in exc.errors() if error.get("loc")
            )
            raise MalformedSecretError(
                f"Decrypted payload is missing or has empty fields: {', '.join(missing)}"
            ) from exc

    def to_credential(self) -> "Credential":
        return Credential(username=self.username, password=SecretStr(self.password))

    def to_plain(self) -> "PlainCredential":
        return PlainCredential(username=self.username, password=self.password)


class Credential(BaseModel):
    """Structured credential returned by Get; the password never prints."""

    model_config = ConfigDict(frozen=True)

    username: str
    password: SecretStr

    def get_password(self) -> str:
        return self.password.get_secret_value()


class PlainCredential(NamedTuple):
    """Raw username/password pair, returned only when explicitly requested."""

    username: str
    password: str
