"""Multi-host dispatch of vault operations."""
from __future__ import annotations

from cms_vault.dispatch.descriptor import DESCRIPTOR_VERSION, HostResult, OperationDescriptor
from cms_vault.dispatch.dispatcher import HostDispatcher, local_host_names
from cms_vault.dispatch.operations import execute_operation, invoke_operation
from cms_vault.dispatch.remote import RemoteExecutor, SshRemoteExecutor

__all__ = [
    "DESCRIPTOR_VERSION",
    "HostDispatcher",
    "HostResult",
    "OperationDescriptor",
    "RemoteExecutor",
    "SshRemoteExecutor",
    "execute_operation",
    "invoke_operation",
    "local_host_names",
]
