"""Maps operation descriptors onto local vault calls.

Both the in-process branch of :class:`~cms_vault.dispatch.dispatcher.HostDispatcher`
and the remote ``cms-vault invoke`` entry point go through
:func:`execute_operation`, so every host runs the same logic.
Outputs are plain JSON-compatible values and never contain secrets.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

from cms_vault.dispatch.descriptor import HostResult, OperationDescriptor
from cms_vault.errors import VaultError
from cms_vault.secrets.secret import Secret

if TYPE_CHECKING:
    from cms_vault.vault import CredentialVault


def _acl_output(snapshot) -> list[dict[str, object]]:  # type: ignore[no-untyped-def]
    return [entry.to_dict() for entry in snapshot]


def _protect(vault: "CredentialVault", args: dict[str, Any]) -> Any:
    secret = Secret(username=args["username"], password=args["password"])
    cert = vault.lifecycle.protect(
        args["identity"],
        secret,
        thumbprint=args.get("thumbprint"),
        force_reset=bool(args.get("force_reset", False)),
        skip_cleanup=bool(args.get("skip_cleanup", False)),
        overwrite=bool(args.get("overwrite", False)),
    )
    return {"subject": cert.subject, "thumbprint": cert.thumbprint}


def _remove(vault: "CredentialVault", args: dict[str, Any]) -> Any:
    report = vault.lifecycle.remove(args["identity"], retain_count=int(args.get("retain_count", 0)))
    return report.to_dict()


def _show(vault: "CredentialVault", args: dict[str, Any]) -> Any:
    return [entry.to_dict() for entry in vault.lifecycle.show(args.get("identity"))]


def _grant(vault: "CredentialVault", args: dict[str, Any]) -> Any:
    snapshot = vault.access.grant(
        args["principals"], identity=args.get("identity"), thumbprint=args.get("thumbprint")
    )
    return _acl_output(snapshot)


def _revoke(vault: "CredentialVault", args: dict[str, Any]) -> Any:
    snapshot = vault.access.revoke(
        args["principals"], identity=args.get("identity"), thumbprint=args.get("thumbprint")
    )
    return _acl_output(snapshot)


def _reset(vault: "CredentialVault", args: dict[str, Any]) -> Any:
    snapshot = vault.access.reset(
        identity=args.get("identity"),
        thumbprint=args.get("thumbprint"),
        force=bool(args.get("force", False)),
    )
    return _acl_output(snapshot)


_HANDLERS: dict[str, Callable[["CredentialVault", dict[str, Any]], Any]] = {
    "protect": _protect,
    "remove": _remove,
    "show": _show,
    "grant": _grant,
    "revoke": _revoke,
    "reset": _reset,
}


def execute_operation(vault: "CredentialVault", descriptor: OperationDescriptor) -> Any:
    """Run *descriptor* against *vault* in this process and return its output.

    Raises
    ------
    VaultError
        Whatever the underlying operation raises.
    KeyError
        If a required argument is missing from the descriptor.
    """
    return _HANDLERS[descriptor.operation](vault, descriptor.arguments)


def invoke_operation(vault: "CredentialVault", descriptor: OperationDescriptor, host: str) -> HostResult:
    """Run *descriptor* and package the outcome, failures included, as a HostResult.

    Used on the receiving side of a remote dispatch, where the result has to
    travel back as data.
    """
    try:
        output = execute_operation(vault, descriptor)
    except KeyError as exc:
        return HostResult(host=host, local=True, success=False, error=f"missing argument {exc}")
    except (VaultError, ValueError) as exc:
        return HostResult(host=host, local=True, success=False, error=f"{type(exc).__name__}: {exc}")
    return HostResult(host=host, local=True, output=output)
