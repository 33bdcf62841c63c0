"""Tests for cms_vault.cli.main — CLI commands via Click test runner."""
from __future__ import annotations

import json
from typing import Callable

import pytest
from click.testing import CliRunner, Result
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from cms_vault.acl.principals import Principal
from cms_vault.cli.main import cli
from cms_vault.config import VaultSettings
from cms_vault.dispatch import HostResult, OperationDescriptor, RemoteExecutor
from cms_vault.secrets import Secret
from cms_vault.vault import CredentialVault

Invoke = Callable[..., Result]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


class StubExecutor(RemoteExecutor):
    def __init__(self, fail: bool = False) -> None:
        self.calls: list[tuple[str, str]] = []
        self._fail = fail

    def execute(self, host: str, descriptor: OperationDescriptor) -> HostResult:
        self.calls.append((host, descriptor.operation))
        if self._fail:
            return HostResult(host=host, success=False, error="host unreachable")
        return HostResult(host=host, output=[])


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def invoke(runner: CliRunner, vault: CredentialVault) -> Invoke:
    def run(args: list[str], **kwargs: object) -> Result:
        return runner.invoke(cli, args, obj={"vault": vault}, **kwargs)

    return run


def _vault_with_remote(
    settings: VaultSettings,
    operator: Principal,
    key_factory: Callable[[int], RSAPrivateKey],
    executor: RemoteExecutor,
) -> CredentialVault:
    return CredentialVault.from_settings(
        settings, principal=operator, key_factory=key_factory, remote=executor
    )


# ---------------------------------------------------------------------------
# Root CLI
# ---------------------------------------------------------------------------


class TestRootCLI:
    def test_help_exits_zero(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "protect" in result.output

    def test_version_command(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert "cms-vault" in result.output

    def test_invoke_is_hidden(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--help"])
        assert "invoke" not in result.output


# ---------------------------------------------------------------------------
# protect / get
# ---------------------------------------------------------------------------


class TestProtectCommand:
    def test_protect_then_get(self, invoke: Invoke, vault: CredentialVault) -> None:
        result = invoke(["protect", "svc1", "-u", "admin", "--password", "P@ss1"])
        assert result.exit_code == 0, result.output
        assert "Protected" in result.output
        (cert,) = vault.store.certificates_for("svc1")
        assert cert.thumbprint in result.output

        result = invoke(["get", "svc1", "--plain-text", "--json"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {"username": "admin", "password": "P@ss1"}

    def test_invalid_identity_is_reported(self, invoke: Invoke, vault: CredentialVault) -> None:
        result = invoke(["protect", "bad/id", "-u", "x", "--password", "y"])
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "bad/id" in result.output
        assert vault.store.all_certificates() == []

    def test_password_prompt(self, invoke: Invoke) -> None:
        result = invoke(["protect", "svc1", "-u", "admin"], input="P@ss1\nP@ss1\n")
        assert result.exit_code == 0, result.output

    def test_get_masks_password_by_default(self, invoke: Invoke, vault: CredentialVault) -> None:
        vault.lifecycle.protect("svc1", Secret(username="admin", password="P@ss1"))
        result = invoke(["get", "svc1"])
        assert result.exit_code == 0
        assert "admin" in result.output
        assert "P@ss1" not in result.output
        assert "********" in result.output

    def test_get_by_path(self, invoke: Invoke, vault: CredentialVault) -> None:
        cert = vault.lifecycle.protect("svc1", Secret(username="admin", password="P@ss1"))
        path = vault.files.path_for(cert.subject)
        result = invoke(["get", "--path", str(path), "--plain-text", "--json"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["password"] == "P@ss1"

    def test_get_unknown_identity(self, invoke: Invoke) -> None:
        result = invoke(["get", "ghost"])
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_get_without_target(self, invoke: Invoke) -> None:
        result = invoke(["get"])
        assert result.exit_code == 1

    def test_overwrite_prompt_declined(self, invoke: Invoke, vault: CredentialVault) -> None:
        vault.lifecycle.protect("svc1", Secret(username="admin", password="P@ss1"))
        result = invoke(["protect", "svc1", "-u", "admin", "--password", "P@ss2"], input="n\n")
        assert result.exit_code == 1
        assert vault.lifecycle.get("svc1", plain_text=True).password == "P@ss1"

    def test_overwrite_prompt_accepted(self, invoke: Invoke, vault: CredentialVault) -> None:
        vault.lifecycle.protect("svc1", Secret(username="admin", password="P@ss1"))
        result = invoke(["protect", "svc1", "-u", "admin", "--password", "P@ss2"], input="y\n")
        assert result.exit_code == 0, result.output
        assert vault.lifecycle.get("svc1", plain_text=True).password == "P@ss2"

    def test_force_overwrites(self, invoke: Invoke, vault: CredentialVault) -> None:
        vault.lifecycle.protect("svc1", Secret(username="admin", password="P@ss1"))
        result = invoke(["protect", "svc1", "-u", "admin", "--password", "P@ss2", "--force"])
        assert result.exit_code == 0, result.output
        assert vault.lifecycle.get("svc1", plain_text=True).password == "P@ss2"

    def test_reset_rotates(self, invoke: Invoke, vault: CredentialVault) -> None:
        first = vault.lifecycle.protect("svc1", Secret(username="admin", password="P@ss1"))
        result = invoke(["protect", "svc1", "-u", "admin", "--password", "P@ss2", "--reset"])
        assert result.exit_code == 0, result.output
        (current,) = vault.store.certificates_for("svc1")
        assert current.subject != first.subject


# ---------------------------------------------------------------------------
# remove / show
# ---------------------------------------------------------------------------


class TestRemoveAndShow:
    def test_show_empty(self, invoke: Invoke) -> None:
        result = invoke(["show"])
        assert result.exit_code == 0
        assert "no credentials found" in result.output

    def test_show_lists_identity(self, invoke: Invoke, vault: CredentialVault) -> None:
        vault.lifecycle.protect("svc1", Secret(username="admin", password="P@ss1"))
        result = invoke(["show", "svc1"])
        assert result.exit_code == 0
        assert "Credentials on" in result.output
        assert "no credentials found" not in result.output
        assert "P@ss1" not in result.output

    def test_remove_all(self, invoke: Invoke, vault: CredentialVault) -> None:
        for n in range(3):
            vault.lifecycle.protect(
                "svc1", Secret(username="admin", password=f"p{n}"), force_reset=True, skip_cleanup=True
            )
        result = invoke(["remove", "svc1", "--retain", "1"])
        assert result.exit_code == 0, result.output
        assert "removed 2 file(s) and 2 certificate(s)" in " ".join(result.output.split())
        assert len(vault.store.certificates_for("svc1")) == 1

    def test_remove_rejects_negative_retain(self, invoke: Invoke) -> None:
        result = invoke(["remove", "svc1", "--retain", "-1"])
        assert result.exit_code == 2

    def test_local_value_error_is_reported(
        self, invoke: Invoke, vault: CredentialVault, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def reject(identity: str | None = None) -> list[object]:
            raise ValueError(f"identity {identity!r} is not valid")

        monkeypatch.setattr(vault.lifecycle, "show", reject)
        result = invoke(["show", "bad/id"])
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert not isinstance(result.exception, ValueError)


# ---------------------------------------------------------------------------
# grant / revoke / reset
# ---------------------------------------------------------------------------


class TestAccessCommands:
    def test_grant_and_revoke(self, invoke: Invoke, vault: CredentialVault) -> None:
        vault.lifecycle.protect("svc1", Secret(username="admin", password="P@ss1"))

        result = invoke(["grant", "svc1", "-p", "DOMAIN\\User1"])
        assert result.exit_code == 0, result.output
        assert vault.access.read(identity="svc1").allows(Principal("DOMAIN\\User1"))

        result = invoke(["revoke", "svc1", "-p", "DOMAIN\\User1"])
        assert result.exit_code == 0, result.output
        assert not vault.access.read(identity="svc1").allows(Principal("DOMAIN\\User1"))

    def test_grant_requires_principal(self, invoke: Invoke) -> None:
        result = invoke(["grant", "svc1"])
        assert result.exit_code == 2

    def test_grant_requires_target(self, invoke: Invoke) -> None:
        result = invoke(["grant", "-p", "DOMAIN\\User1"])
        assert result.exit_code == 1

    def test_grant_unknown_identity(self, invoke: Invoke) -> None:
        result = invoke(["grant", "ghost", "-p", "DOMAIN\\User1"])
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_reset_with_force(self, invoke: Invoke, vault: CredentialVault) -> None:
        vault.lifecycle.protect("svc1", Secret(username="admin", password="P@ss1"))
        vault.access.grant(["DOMAIN\\User1"], identity="svc1")
        result = invoke(["reset", "svc1", "--force"])
        assert result.exit_code == 0, result.output
        assert len(vault.access.read(identity="svc1")) == 2

    def test_reset_cancelled(self, invoke: Invoke, vault: CredentialVault) -> None:
        vault.lifecycle.protect("svc1", Secret(username="admin", password="P@ss1"))
        result = invoke(["reset", "svc1"], input="n\n")
        assert result.exit_code == 1
        assert len(vault.access.read(identity="svc1")) == 3


# ---------------------------------------------------------------------------
# Multi-host dispatch
# ---------------------------------------------------------------------------


class TestHosts:
    def test_show_on_remote_host(
        self,
        runner: CliRunner,
        settings: VaultSettings,
        operator: Principal,
        key_factory: Callable[[int], RSAPrivateKey],
    ) -> None:
        executor = StubExecutor()
        vault = _vault_with_remote(settings, operator, key_factory, executor)
        result = runner.invoke(cli, ["show", "--host", "db01"], obj={"vault": vault})
        assert result.exit_code == 0, result.output
        assert executor.calls == [("db01", "show")]
        assert "db01: no credentials found" in result.output

    def test_remote_failure_exits_nonzero(
        self,
        runner: CliRunner,
        settings: VaultSettings,
        operator: Principal,
        key_factory: Callable[[int], RSAPrivateKey],
    ) -> None:
        executor = StubExecutor(fail=True)
        vault = _vault_with_remote(settings, operator, key_factory, executor)
        result = runner.invoke(
            cli,
            ["protect", "svc1", "-u", "admin", "--password", "P@ss1", "--host", "db01"],
            obj={"vault": vault},
        )
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_remote_without_executor(self, invoke: Invoke) -> None:
        result = invoke(["show", "--host", "db01"])
        assert result.exit_code == 1
        assert "Error:" in result.output


# ---------------------------------------------------------------------------
# invoke
# ---------------------------------------------------------------------------


class TestInvokeCommand:
    def test_runs_descriptor_from_stdin(self, invoke: Invoke, vault: CredentialVault) -> None:
        descriptor = OperationDescriptor(
            operation="protect",
            arguments={"identity": "svc1", "username": "admin", "password": "P@ss1"},
        )
        result = invoke(["invoke"], input=descriptor.model_dump_json())
        assert result.exit_code == 0, result.output

        host_result = HostResult.model_validate_json(result.output)
        assert host_result.success
        assert host_result.output["subject"].startswith("cms-svc1-")
        assert vault.lifecycle.get("svc1", plain_text=True).password == "P@ss1"

    def test_failure_is_reported_as_json(self, invoke: Invoke) -> None:
        descriptor = OperationDescriptor(operation="remove", arguments={})
        result = invoke(["invoke"], input=descriptor.model_dump_json())
        assert result.exit_code == 1
        assert HostResult.model_validate_json(result.output).success is False

    def test_invalid_descriptor(self, invoke: Invoke) -> None:
        result = invoke(["invoke"], input='{"operation": "format_disk"}')
        assert result.exit_code == 1
        assert "invalid descriptor" in HostResult.model_validate_json(result.output).error
