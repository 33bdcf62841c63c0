"""VaultAuditLogger — JSONL audit logging for credential and access events.

Every security-relevant vault event (credential protected or retrieved,
generation removed, private key access granted, revoked, or reset) is
appended as a single JSON line to the configured log file. Secret values
never appear in an event.

Without a configured path, events are kept in an in-memory buffer
that can be drained via :meth:`VaultAuditLogger.drain_buffer`.
"""
from __future__ import annotations

import datetime
import json
import threading
from dataclasses import dataclass, field
from pathlib import Path

from cms_vault.errors import IoError


@dataclass
class AuditEvent:
    """A single auditable vault event.

    Parameters
    ----------
    event_type:
        Short snake_case string identifying the event (e.g. "access_granted").
    identity:
        The logical secret the event concerns.
    actor:
        The principal that triggered the event. Defaults to "system".
    details:
        Event-specific fields such as subject, thumbprint or principals.
    timestamp:
        When the event happened (UTC). Filled in at construction.
    """

    event_type: str
    identity: str
    actor: str = "system"
    details: dict[str, object] = field(default_factory=dict)
    timestamp: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    def to_dict(self) -> dict[str, object]:
        """Serialize to a plain dictionary suitable for JSON encoding."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "identity": self.identity,
            "actor": self.actor,
            "details": self.details,
        }


class VaultAuditLogger:
    """Append-only JSONL audit logger for vault events.

    Parameters
    ----------
    log_path:
        Path to the JSONL log file. Parent directories are created on the
        first write. If None, events are buffered in memory only.
    """

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = log_path
        self._buffer: list[str] = []
        self._lock = threading.Lock()

    def log(self, event: AuditEvent) -> None:
        """Append an audit event to the log.

        Raises
        ------
        IoError
            If the log file cannot be written.
        """
        line = json.dumps(event.to_dict(), separators=(",", ":"), default=str)
        with self._lock:
            if self._log_path is None:
                self._buffer.append(line)
                return
            try:
                self._log_path.parent.mkdir(parents=True, exist_ok=True)
                with self._log_path.open("a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
            except OSError as exc:
                raise IoError(f"Cannot write audit log {str(self._log_path)!r}: {exc}") from exc

    def log_event(
        self,
        event_type: str,
        identity: str,
        actor: str = "system",
        **details: object,
    ) -> None:
        """Log a simple event without constructing an :class:`AuditEvent`."""
        self.log(AuditEvent(event_type=event_type, identity=identity, actor=actor, details=dict(details)))

    # ------------------------------------------------------------------
    # Convenience event loggers
    # ------------------------------------------------------------------

    def log_protected(self, identity: str, subject: str, thumbprint: str, actor: str, created: bool) -> None:
        self.log_event(
            "credential_protected",
            identity=identity,
            actor=actor,
            subject=subject,
            thumbprint=thumbprint,
            new_certificate=created,
        )

    def log_retrieved(self, identity: str, path: str, actor: str) -> None:
        self.log_event("credential_retrieved", identity=identity, actor=actor, path=path)

    def log_removed(self, identity: str, kind: str, name: str, actor: str) -> None:
        """Log removal of one file or certificate generation."""
        self.log_event("generation_removed", identity=identity, actor=actor, kind=kind, name=name)

    def log_access_change(
        self,
        event_type: str,
        identity: str,
        subject: str,
        actor: str,
        principals: list[str],
    ) -> None:
        """Log an access_granted, access_revoked or access_reset event."""
        self.log_event(event_type, identity=identity, actor=actor, subject=subject, principals=principals)

    # ------------------------------------------------------------------
    # Buffer access
    # ------------------------------------------------------------------

    def drain_buffer(self) -> list[dict[str, object]]:
        """Return and clear buffered events (in-memory mode only)."""
        with self._lock:
            events = [json.loads(line) for line in self._buffer]
            self._buffer.clear()
        return events

    def read_events(self) -> list[dict[str, object]]:
        """Return every event currently in the log file or buffer."""
        with self._lock:
            if self._log_path is None:
                return [json.loads(line) for line in self._buffer]
            if not self._log_path.exists():
                return []
            lines = self._log_path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]
