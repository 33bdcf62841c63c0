"""Remote execution of vault operations.

:class:`RemoteExecutor` is the transport contract: given a host and an
:class:`~cms_vault.dispatch.descriptor.OperationDescriptor`, run it there
synchronously and return a :class:`~cms_vault.dispatch.descriptor.HostResult`.
:class:`SshRemoteExecutor` pipes the descriptor as JSON into
``cms-vault invoke`` on the target host over ssh.
"""
from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from typing import Callable, Sequence

from pydantic import ValidationError

from cms_vault.dispatch.descriptor import HostResult, OperationDescriptor

logger = logging.getLogger(__name__)


class RemoteExecutor(ABC):
    """Runs an operation descriptor on a remote host."""

    @abstractmethod
    def execute(self, host: str, descriptor: OperationDescriptor) -> HostResult:
        """Run *descriptor* on *host* and block until it finishes.

        Transport failures are reported as an unsuccessful result rather
        than raised.
        """


class SshRemoteExecutor(RemoteExecutor):
    """Runs operations through ``ssh <host> cms-vault invoke``.

    Parameters
    ----------
    remote_command:
        Command executed on the remote host; it reads the descriptor JSON
        from stdin and prints a HostResult as JSON.
    ssh_binary:
        ssh client executable.
    ssh_options:
        Extra options placed before the host name (e.g. ``-o BatchMode=yes``).
    timeout:
        Seconds to wait per host. None waits indefinitely.
    runner:
        ``subprocess.run`` compatible callable, injectable for tests.
    """

    def __init__(
        self,
        remote_command: Sequence[str] = ("cms-vault", "invoke"),
        ssh_binary: str = "ssh",
        ssh_options: Sequence[str] = ("-o", "BatchMode=yes"),
        timeout: float | None = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self._remote_command = list(remote_command)
        self._ssh_binary = ssh_binary
        self._ssh_options = list(ssh_options)
        self._timeout = timeout
        self._runner = runner

    def execute(self, host: str, descriptor: OperationDescriptor) -> HostResult:
        argv = [self._ssh_binary, *self._ssh_options, host, *self._remote_command]
        logger.debug("Running %s on %s", descriptor.operation, host)
        try:
            completed = self._runner(
                argv,
                input=descriptor.model_dump_json(),
                capture_output=True,
                text=True,
                check=False,
                timeout=self._timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            return HostResult(host=host, success=False, error=f"transport failure: {exc}")

        stdout = (completed.stdout or "").strip()
        if not stdout:
            stderr = (completed.stderr or "").strip()
            return HostResult(
                host=host,
                success=False,
                error=stderr or f"remote command exited with status {completed.returncode}",
            )
        try:
            result = HostResult.model_validate_json(stdout)
        except ValidationError as exc:
            return HostResult(host=host, success=False, error=f"unreadable remote response: {exc}")
        return result.model_copy(update={"host": host, "local": False})
