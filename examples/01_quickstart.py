#!/usr/bin/env python3
"""Example: Quickstart

Protects a service account credential in a throwaway vault, grants a
second account read access, rotates the protection certificate, and reads
the credential back.

Usage:
    python examples/01_quickstart.py

Requirements:
    pip install cms-vault
"""
from __future__ import annotations

import tempfile
from pathlib import Path

import cms_vault
from cms_vault import CredentialVault, DecryptionError, Principal, Secret, VaultSettings


def main() -> None:
    print(f"cms-vault version: {cms_vault.__version__}")

    with tempfile.TemporaryDirectory() as tmp:
        operator = Principal("EXAMPLE\\operator")
        vault = CredentialVault.from_settings(
            VaultSettings(home=Path(tmp), default_domain="EXAMPLE"),
            principal=operator,
        )

        # Step 1: Protect a credential (generates a 4096-bit key, so this takes a moment)
        cert = vault.lifecycle.protect("svc1", Secret(username="admin", password="P@ss1"))
        print(f"Protected svc1 with {cert.subject} ({cert.thumbprint[:12]}...)")

        # Step 2: Grant a monitoring account read access to the private key
        vault.access.grant(["monitoring"], identity="svc1")
        print("Granted EXAMPLE\\monitoring read access")

        # Step 3: Read it back as the operator and as the granted account
        credential = vault.lifecycle.get("svc1")
        print(f"Operator sees username={credential.username}")

        monitor = CredentialVault.from_settings(
            vault.settings, principal=Principal("EXAMPLE\\monitoring")
        )
        print(f"Monitoring sees username={monitor.lifecycle.get('svc1').username}")

        # Step 4: Rotate; older generations are cleaned up and the grant does not carry over
        vault.lifecycle.protect(
            "svc1", Secret(username="admin", password="P@ss2"), force_reset=True
        )
        print(f"Generations left: {len(vault.store.certificates_for('svc1'))}")
        try:
            monitor.lifecycle.get("svc1")
        except DecryptionError:
            print("Monitoring lost access after rotation, as expected")

    print("\nQuickstart complete.")


if __name__ == "__main__":
    main()
