"""CLI entry point for cms-vault.

Invoked as::

    cms-vault [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m cms_vault.cli.main

Commands
--------
protect   Encrypt a username/password pair for an identity
get       Decrypt the newest credential of an identity
remove    Delete old certificate and credential generations
show      List certificates and credential files
grant     Give principals read access to a credential's private key
revoke    Remove principals from a credential's private key ACL
reset     Reset a private key ACL to SYSTEM and Administrators
invoke    (internal) Run an operation descriptor read from stdin
"""
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from cms_vault.config import VaultSettings
from cms_vault.dispatch.descriptor import HostResult, OperationDescriptor
from cms_vault.errors import RemoteExecutionError, VaultError

console = Console()
err_console = Console(stderr=True)


# ------------------------------------------------------------------
# Root group
# ------------------------------------------------------------------


@click.group()
@click.version_option(package_name="cms-vault")
@click.option("--home", type=click.Path(path_type=Path), default=None, help="Vault data directory.")
@click.option(
    "--credential-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory holding encrypted credential files.",
)
@click.option(
    "--store-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory backing the certificate store.",
)
@click.option("--domain", default=None, help="Default domain for bare account names.")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    home: Path | None,
    credential_dir: Path | None,
    store_dir: Path | None,
    domain: str | None,
    log_level: str,
) -> None:
    """Certificate-backed credential protection"""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )
    ctx.ensure_object(dict)
    ctx.obj.setdefault(
        "settings",
        VaultSettings.from_env().with_overrides(
            home=home,
            credential_dir=credential_dir,
            store_dir=store_dir,
            default_domain=domain,
        ),
    )


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from cms_vault import __version__

    console.print(f"[bold]cms-vault[/bold] v{__version__}")


# ------------------------------------------------------------------
# protect
# ------------------------------------------------------------------


@cli.command(name="protect")
@click.argument("identity")
@click.option("--username", "-u", required=True, help="Account name to protect.")
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    help="Password to protect (prompted when omitted).",
)
@click.option("--thumbprint", default=None, help="Encrypt to this existing certificate.")
@click.option("--reset", "force_reset", is_flag=True, default=False, help="Create a new certificate generation.")
@click.option("--skip-cleanup", is_flag=True, default=False, help="Keep older generations.")
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing file without asking.")
@click.option("--host", "hosts", multiple=True, help="Target host (repeatable).")
@click.pass_context
def protect_command(
    ctx: click.Context,
    identity: str,
    username: str,
    password: str,
    thumbprint: str | None,
    force_reset: bool,
    skip_cleanup: bool,
    force: bool,
    hosts: tuple[str, ...],
) -> None:
    """Encrypt a username/password pair for IDENTITY."""
    from cms_vault.secrets.secret import Secret

    try:
        secret = Secret(username=username, password=password)
    except ValidationError as exc:
        _fail(f"Invalid credential: {exc.errors()[0]['msg']}")

    vault = _vault(ctx)
    try:
        if hosts:
            descriptor = OperationDescriptor(
                operation="protect",
                arguments={
                    "identity": identity,
                    "username": username,
                    "password": password,
                    "thumbprint": thumbprint,
                    "force_reset": force_reset,
                    "skip_cleanup": skip_cleanup,
                    "overwrite": force,
                },
            )
            _print_results(vault.dispatcher.dispatch(descriptor, hosts))
            return
        cert = vault.lifecycle.protect(
            identity,
            secret,
            thumbprint=thumbprint,
            force_reset=force_reset,
            skip_cleanup=skip_cleanup,
            overwrite=force,
            confirm=lambda path: click.confirm(f"Overwrite existing credential file {path}?"),
        )
    except RemoteExecutionError as exc:
        _print_results(exc.completed)
        _fail(str(exc))
    except (VaultError, ValueError) as exc:
        _fail(str(exc))

    console.print(f"[green]Protected[/green] credential for [bold]{identity}[/bold]")
    console.print(f"  Subject:    {cert.subject}")
    console.print(f"  Thumbprint: {cert.thumbprint}")


# ------------------------------------------------------------------
# get
# ------------------------------------------------------------------


@cli.command(name="get")
@click.argument("identity", required=False)
@click.option(
    "--path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Decrypt this credential file instead of looking one up.",
)
@click.option("--plain-text", is_flag=True, default=False, help="Print the password in clear text.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit JSON.")
@click.pass_context
def get_command(
    ctx: click.Context,
    identity: str | None,
    path: Path | None,
    plain_text: bool,
    as_json: bool,
) -> None:
    """Decrypt the newest credential of IDENTITY."""
    if identity is None and path is None:
        _fail("Provide an IDENTITY or --path.")

    vault = _vault(ctx)
    try:
        credential = vault.lifecycle.get(identity=identity, path=path, plain_text=True)
    except (VaultError, ValueError) as exc:
        _fail(str(exc))

    password = credential.password if plain_text else "********"
    if as_json:
        click.echo(json.dumps({"username": credential.username, "password": password}))
        return
    console.print(f"  Username: {credential.username}")
    console.print(f"  Password: {password}", markup=False)


# ------------------------------------------------------------------
# remove
# ------------------------------------------------------------------


@cli.command(name="remove")
@click.argument("identity")
@click.option(
    "--retain",
    "retain_count",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Number of newest generations to keep.",
)
@click.option("--host", "hosts", multiple=True, help="Target host (repeatable).")
@click.pass_context
def remove_command(ctx: click.Context, identity: str, retain_count: int, hosts: tuple[str, ...]) -> None:
    """Delete all but the newest --retain generations of IDENTITY."""
    descriptor = OperationDescriptor(
        operation="remove",
        arguments={"identity": identity, "retain_count": retain_count},
    )
    for result in _dispatch(ctx, descriptor, hosts):
        report = result.output
        console.print(
            f"[bold]{result.host}[/bold]: removed {len(report['deleted_files'])} file(s) and "
            f"{len(report['deleted_certificates'])} certificate(s); "
            f"{len(report['retained_certificates'])} certificate(s) kept"
        )


# ------------------------------------------------------------------
# show
# ------------------------------------------------------------------


@cli.command(name="show")
@click.argument("identity", required=False)
@click.option("--host", "hosts", multiple=True, help="Target host (repeatable).")
@click.pass_context
def show_command(ctx: click.Context, identity: str | None, hosts: tuple[str, ...]) -> None:
    """List certificates and credential files, optionally for one IDENTITY."""
    descriptor = OperationDescriptor(operation="show", arguments={"identity": identity})
    for result in _dispatch(ctx, descriptor, hosts):
        entries = result.output or []
        if not entries:
            console.print(f"[yellow]{result.host}: no credentials found.[/yellow]")
            continue
        table = Table(title=f"Credentials on {result.host}", show_header=True)
        table.add_column("Identity", style="cyan")
        table.add_column("Subject")
        table.add_column("Thumbprint")
        table.add_column("Created")
        table.add_column("Key", justify="center")
        table.add_column("File")
        for entry in entries:
            table.add_row(
                entry["identity"],
                entry["subject"],
                entry["thumbprint"] or "(missing)",
                entry["not_before"] or "",
                "[green]Yes[/green]" if entry["has_private_key"] else "[red]No[/red]",
                entry["credential_file"] or "(none)",
            )
        console.print(table)


# ------------------------------------------------------------------
# grant / revoke / reset
# ------------------------------------------------------------------


@cli.command(name="grant")
@click.argument("identity", required=False)
@click.option("--thumbprint", default=None, help="Target this certificate instead of the newest.")
@click.option("--principal", "-p", "principals", multiple=True, required=True, help="Account to grant (repeatable).")
@click.option("--host", "hosts", multiple=True, help="Target host (repeatable).")
@click.pass_context
def grant_command(
    ctx: click.Context,
    identity: str | None,
    thumbprint: str | None,
    principals: tuple[str, ...],
    hosts: tuple[str, ...],
) -> None:
    """Give principals read access to IDENTITY's private key."""
    _require_target(identity, thumbprint)
    descriptor = OperationDescriptor(
        operation="grant",
        arguments={"identity": identity, "thumbprint": thumbprint, "principals": list(principals)},
    )
    _print_acls(_dispatch(ctx, descriptor, hosts))


@cli.command(name="revoke")
@click.argument("identity", required=False)
@click.option("--thumbprint", default=None, help="Target this certificate instead of the newest.")
@click.option("--principal", "-p", "principals", multiple=True, required=True, help="Account to revoke (repeatable).")
@click.option("--host", "hosts", multiple=True, help="Target host (repeatable).")
@click.pass_context
def revoke_command(
    ctx: click.Context,
    identity: str | None,
    thumbprint: str | None,
    principals: tuple[str, ...],
    hosts: tuple[str, ...],
) -> None:
    """Remove principals from IDENTITY's private key ACL."""
    _require_target(identity, thumbprint)
    descriptor = OperationDescriptor(
        operation="revoke",
        arguments={"identity": identity, "thumbprint": thumbprint, "principals": list(principals)},
    )
    _print_acls(_dispatch(ctx, descriptor, hosts))


@cli.command(name="reset")
@click.argument("identity", required=False)
@click.option("--thumbprint", default=None, help="Target this certificate instead of the newest.")
@click.option("--force", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.option("--host", "hosts", multiple=True, help="Target host (repeatable).")
@click.pass_context
def reset_command(
    ctx: click.Context,
    identity: str | None,
    thumbprint: str | None,
    force: bool,
    hosts: tuple[str, ...],
) -> None:
    """Reset IDENTITY's private key ACL to SYSTEM and Administrators."""
    _require_target(identity, thumbprint)
    if not force and not click.confirm(
        f"Remove every principal except SYSTEM and Administrators from "
        f"{identity or thumbprint}?"
    ):
        _fail("Reset cancelled.")
    descriptor = OperationDescriptor(
        operation="reset",
        arguments={"identity": identity, "thumbprint": thumbprint, "force": True},
    )
    _print_acls(_dispatch(ctx, descriptor, hosts))


# ------------------------------------------------------------------
# invoke (remote side of a dispatch)
# ------------------------------------------------------------------


@cli.command(name="invoke", hidden=True)
@click.pass_context
def invoke_command(ctx: click.Context) -> None:
    """Run an operation descriptor read as JSON from stdin; print a JSON result."""
    import socket

    from cms_vault.dispatch.operations import invoke_operation

    host = socket.gethostname()
    try:
        descriptor = OperationDescriptor.model_validate_json(sys.stdin.read())
    except ValidationError as exc:
        result = HostResult(host=host, local=True, success=False, error=f"invalid descriptor: {exc}")
    else:
        result = invoke_operation(_vault(ctx), descriptor, host)
    click.echo(result.model_dump_json())
    if not result.success:
        sys.exit(1)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _vault(ctx: click.Context):  # type: ignore[no-untyped-def]
    """Return the vault for this invocation, building it from settings once."""
    from cms_vault.vault import CredentialVault

    obj = ctx.find_root().ensure_object(dict)
    if "vault" not in obj:
        obj["vault"] = CredentialVault.from_settings(obj["settings"])
    return obj["vault"]


def _dispatch(ctx: click.Context, descriptor: OperationDescriptor, hosts: tuple[str, ...]) -> list[HostResult]:
    """Dispatch *descriptor*, turning vault failures into a CLI error exit."""
    vault = _vault(ctx)
    try:
        return vault.dispatcher.dispatch(descriptor, hosts)
    except RemoteExecutionError as exc:
        _print_results(exc.completed)
        _fail(str(exc))
    except (VaultError, ValueError) as exc:
        _fail(str(exc))
    return []  # unreachable; _fail exits


def _require_target(identity: str | None, thumbprint: str | None) -> None:
    if identity is None and thumbprint is None:
        _fail("Provide an IDENTITY or --thumbprint.")


def _print_results(results: list[HostResult]) -> None:
    for result in results:
        status = "[green]OK[/green]" if result.success else f"[red]FAILED[/red] {result.error}"
        where = "local" if result.local else "remote"
        console.print(f"  {result.host} ({where}): {status}")


def _print_acls(results: list[HostResult]) -> None:
    for result in results:
        table = Table(title=f"Private key ACL on {result.host}", show_header=True)
        table.add_column("Principal", style="cyan")
        table.add_column("Permission")
        table.add_column("Type")
        for entry in result.output or []:
            table.add_row(entry["principal"]["name"], entry["permission"], entry["access_type"])
        console.print(table)


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {escape(message)}", highlight=False)
    sys.exit(1)


if __name__ == "__main__":
    cli()
