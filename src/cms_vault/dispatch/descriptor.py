"""Pydantic models exchanged with remote hosts.

An :class:`OperationDescriptor` names one vault operation and its
arguments; the remote side runs the same code as a local call. A
:class:`HostResult` carries the per-host outcome back.
"""
from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

DESCRIPTOR_VERSION = 1

OperationName = Literal["protect", "remove", "show", "grant", "revoke", "reset"]


class OperationDescriptor(BaseModel):
    """Serializable description of a vault operation."""

    version: int = DESCRIPTOR_VERSION
    operation: OperationName
    arguments: dict[str, Any] = Field(default_factory=dict)

    @field_validator("version")
    @classmethod
    def _supported_version(cls, value: int) -> int:
        if value != DESCRIPTOR_VERSION:
            raise ValueError(
                f"unsupported descriptor version {value} (expected {DESCRIPTOR_VERSION})"
            )
        return value

    def __repr__(self) -> str:
        # Arguments may carry a password.
        return f"OperationDescriptor(version={self.version}, operation={self.operation!r})"


class HostResult(BaseModel):
    """Outcome of running one operation on one host."""

    host: str
    local: bool = False
    success: bool = True
    output: Any = None
    error: Optional[str] = None
