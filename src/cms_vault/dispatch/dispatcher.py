"""HostDispatcher — fan one operation out across a set of hosts.

Hosts naming this machine run in-process; every other host is handed to a
:class:`~cms_vault.dispatch.remote.RemoteExecutor`, one at a time, in the
order given. The first failure stops the dispatch. Hosts that already
finished are not rolled back, so a multi-host dispatch is not atomic.
"""
from __future__ import annotations

import logging
import socket
from typing import Any, Callable, Iterable

from cms_vault.dispatch.descriptor import HostResult, OperationDescriptor
from cms_vault.dispatch.remote import RemoteExecutor
from cms_vault.errors import RemoteExecutionError

logger = logging.getLogger(__name__)

LocalRunner = Callable[[OperationDescriptor], Any]


def local_host_names() -> set[str]:
    """Return the case-folded names that designate this machine."""
    hostname = socket.gethostname()
    names = {
        hostname,
        hostname.split(".")[0],
        socket.getfqdn(),
        "localhost",
        ".",
        "127.0.0.1",
        "::1",
    }
    return {name.casefold() for name in names if name}


class HostDispatcher:
    """Runs operation descriptors locally or on remote hosts.

    Parameters
    ----------
    local_runner:
        Executes a descriptor in this process and returns its output.
    remote:
        Transport for non-local hosts. Dispatching to a remote host without
        one raises :class:`RemoteExecutionError`.
    local_names:
        Names treated as this machine; defaults to :func:`local_host_names`.
    """

    def __init__(
        self,
        local_runner: LocalRunner,
        remote: RemoteExecutor | None = None,
        local_names: Iterable[str] | None = None,
    ) -> None:
        self._local_runner = local_runner
        self._remote = remote
        self._local_names = (
            {name.casefold() for name in local_names}
            if local_names is not None
            else local_host_names()
        )

    def is_local(self, host: str) -> bool:
        return host.strip().casefold() in self._local_names

    def dispatch(
        self,
        descriptor: OperationDescriptor,
        hosts: Iterable[str] | None = None,
    ) -> list[HostResult]:
        """Run *descriptor* on every host and return the per-host results.

        With no hosts the operation runs on this machine only. Duplicate host
        names (case-insensitive) run once.

        Raises
        ------
        RemoteExecutionError
            On the first remote failure; ``completed`` holds earlier results.
        """
        targets = _unique_hosts(hosts or [])
        if not targets:
            return [self._run_local(descriptor, socket.gethostname())]

        results: list[HostResult] = []
        for host in targets:
            if self.is_local(host):
                results.append(self._run_local(descriptor, host))
                continue
            if self._remote is None:
                raise RemoteExecutionError(host, "no remote executor is configured", results)
            logger.info("Dispatching %s to %s", descriptor.operation, host)
            result = self._remote.execute(host, descriptor)
            if not result.success:
                raise RemoteExecutionError(host, result.error or "unknown error", results)
            results.append(result)
        return results

    def _run_local(self, descriptor: OperationDescriptor, host: str) -> HostResult:
        logger.debug("Running %s locally as %s", descriptor.operation, host)
        output = self._local_runner(descriptor)
        return HostResult(host=host, local=True, output=output)


def _unique_hosts(hosts: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for host in hosts:
        name = host.strip()
        if name and name.casefold() not in seen:
            seen.add(name.casefold())
            unique.append(name)
    return unique
