"""Shared fixtures: temporary vaults and a pool of pre-generated RSA keys."""
from __future__ import annotations

import itertools
from pathlib import Path
from typing import Callable

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from cms_vault.acl.principals import Principal
from cms_vault.config import VaultSettings
from cms_vault.lifecycle import CredentialLifecycle
from cms_vault.vault import CredentialVault

KEY_POOL_SIZE = 3


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def rsa_key_pool() -> list[RSAPrivateKey]:
    """4096-bit keys generated once per session; key generation is slow."""
    return [
        rsa.generate_private_key(public_exponent=65537, key_size=4096)
        for _ in range(KEY_POOL_SIZE)
    ]


@pytest.fixture()
def key_factory(rsa_key_pool: list[RSAPrivateKey]) -> Callable[[int], RSAPrivateKey]:
    """Key factory handing out pool keys in rotation.

    Certificates sharing a key are still distinct CMS recipients because
    each one has its own issuer and serial number.
    """
    pool = itertools.cycle(rsa_key_pool)

    def factory(key_size: int) -> RSAPrivateKey:
        return next(pool)

    return factory


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


@pytest.fixture()
def operator() -> Principal:
    """The principal running the vault in tests (owner of new keys)."""
    return Principal("TESTHOST\\operator")


@pytest.fixture()
def outsider() -> Principal:
    """A principal with no grants and no administrative rights."""
    return Principal("DOMAIN\\User2")


# ---------------------------------------------------------------------------
# Vault
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings(tmp_path: Path) -> VaultSettings:
    return VaultSettings(home=tmp_path / "vault", default_domain="DOMAIN")


@pytest.fixture()
def vault(
    settings: VaultSettings,
    operator: Principal,
    key_factory: Callable[[int], RSAPrivateKey],
) -> CredentialVault:
    return CredentialVault.from_settings(settings, principal=operator, key_factory=key_factory)


@pytest.fixture()
def lifecycle_as(vault: CredentialVault) -> Callable[[Principal], CredentialLifecycle]:
    """Build a lifecycle sharing the vault's stores but running as another principal."""

    def build(principal: Principal) -> CredentialLifecycle:
        return CredentialLifecycle(
            store=vault.store,
            files=vault.files,
            codec=vault.codec,
            principal=principal,
        )

    return build
