"""Audit logging for provisioning runs.

Provides:
- JSON-lines audit log with session ids
- Per-step success / failure records
- Sensitive data redaction
- Size-based log rotation

Audit logging is best effort: a log that cannot be written never aborts
provisioning.
"""

import fcntl
import json
import os
import pwd
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Generator, Optional

from dbprov.core.output import console


DEFAULT_LOG_PATH = Path("/var/log/dbprov/audit.log")
DEFAULT_MAX_SIZE_MB = 20
DEFAULT_BACKUP_COUNT = 5


class AuditEventType(Enum):
    """Types of auditable events."""
    SESSION_START = "session.start"
    SESSION_END = "session.end"

    PREFLIGHT = "security.preflight"
    SECRET_RESOLVE = "secret.resolve"

    PACKAGE_INSTALL = "package.install"
    CONFIG_MODIFY = "config.modify"
    SERVICE_START = "service.start"

    DATABASE_BOOTSTRAP = "database.bootstrap"

    ACCOUNT_CREATE = "account.create"
    SSH_HARDEN = "ssh.harden"
    SUDOERS_WRITE = "sudoers.write"
    ARTIFACT_WRITE = "artifact.write"

    PROVISION = "provision.run"
    VERIFY = "provision.verify"


class AuditResult(Enum):
    """Result of an audited operation."""
    SUCCESS = "success"
    FAILURE = "failure"
    DRY_RUN = "dry_run"


SENSITIVE_KEYS = frozenset({
    "password", "secret", "token", "credential", "passwd", "key",
})


def _sanitize_value(key: str, value: Any) -> Any:
    """Redact values whose key name suggests a secret."""
    if any(s in key.lower() for s in SENSITIVE_KEYS):
        return "***REDACTED***"

    if isinstance(value, dict):
        return {k: _sanitize_value(k, v) for k, v in value.items()}

    if isinstance(value, list):
        return [_sanitize_value(key, v) for v in value]

    return value


def _current_username() -> str:
    try:
        return pwd.getpwuid(os.getuid()).pw_name
    except KeyError:
        return str(os.getuid())


@dataclass
class AuditEvent:
    """Represents a single audit event."""
    event_type: AuditEventType
    result: AuditResult
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    actor_uid: int = field(default_factory=os.getuid)
    actor_username: str = field(default_factory=_current_username)
    actor_sudo_user: Optional[str] = field(default_factory=lambda: os.environ.get("SUDO_USER"))

    target: Optional[str] = None
    parameters: dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None
    error: Optional[str] = None

    session_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "result": self.result.value,
            "timestamp": self.timestamp.isoformat(),
            "actor": {
                "uid": self.actor_uid,
                "username": self.actor_username,
                "sudo_user": self.actor_sudo_user,
            },
            "target": self.target,
            "parameters": {k: _sanitize_value(k, v) for k, v in self.parameters.items()},
            "message": self.message,
            "error": self.error,
            "session_id": self.session_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class AuditLogger:
    """Append-only JSON audit log with file locking and rotation."""

    def __init__(
        self,
        log_path: Optional[Path] = None,
        max_size_mb: int = DEFAULT_MAX_SIZE_MB,
        backup_count: int = DEFAULT_BACKUP_COUNT,
        enabled: bool = True,
    ) -> None:
        self.log_path = log_path or DEFAULT_LOG_PATH
        self.max_size_bytes = max_size_mb * 1024 * 1024
        self.backup_count = backup_count
        self.enabled = enabled
        self.session_id = str(uuid.uuid4())

    def _ensure_log_directory(self) -> bool:
        try:
            self.log_path.parent.mkdir(mode=0o750, parents=True, exist_ok=True)
            if not self.log_path.exists():
                self.log_path.touch(mode=0o640)
            return True
        except OSError as e:
            console.debug(f"Cannot create audit log directory: {e}")
            return False

    def log(self, event: AuditEvent) -> None:
        """Append an event to the log."""
        if not self.enabled:
            return

        event.session_id = self.session_id
        line = event.to_json() + "\n"

        if not self._ensure_log_directory():
            return

        try:
            fd = os.open(self.log_path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o640)
            with os.fdopen(fd, "a") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                f.write(line)
                f.flush()
        except OSError as e:
            console.debug(f"Failed to write audit log: {e}")
            return

        self._rotate_if_needed()

    def _rotate_if_needed(self) -> None:
        try:
            if self.log_path.stat().st_size <= self.max_size_bytes:
                return
        except OSError:
            return

        oldest = self.log_path.with_name(f"{self.log_path.name}.{self.backup_count}")
        if oldest.exists():
            oldest.unlink()

        for i in range(self.backup_count - 1, 0, -1):
            src = self.log_path.with_name(f"{self.log_path.name}.{i}")
            if src.exists():
                src.rename(self.log_path.with_name(f"{self.log_path.name}.{i + 1}"))

        self.log_path.rename(self.log_path.with_name(f"{self.log_path.name}.1"))
        self.log_path.touch(mode=0o640)

    def record(
        self,
        event_type: AuditEventType,
        result: AuditResult,
        *,
        target: Optional[str] = None,
        parameters: Optional[dict[str, Any]] = None,
        message: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Log an event with common fields."""
        self.log(AuditEvent(
            event_type=event_type,
            result=result,
            target=target,
            parameters=parameters or {},
            message=message,
            error=error,
        ))

    @contextmanager
    def step(
        self,
        event_type: AuditEventType,
        target: str,
        *,
        dry_run: bool = False,
        parameters: Optional[dict[str, Any]] = None,
    ) -> Generator[None, None, None]:
        """Record the outcome of the wrapped block.

        Usage:
            with audit.step(AuditEventType.SUDOERS_WRITE, "/etc/sudoers.d/techcorp"):
                write_sudoers()
        """
        try:
            yield
        except Exception as e:
            self.record(event_type, AuditResult.FAILURE, target=target, parameters=parameters, error=str(e))
            raise
        self.record(
            event_type,
            AuditResult.DRY_RUN if dry_run else AuditResult.SUCCESS,
            target=target,
            parameters=parameters,
        )

    def log_success(self, event_type: AuditEventType, target: str, message: Optional[str] = None, **parameters: Any) -> None:
        self.record(event_type, AuditResult.SUCCESS, target=target, parameters=parameters, message=message)

    def log_failure(self, event_type: AuditEventType, target: str, error: str, **parameters: Any) -> None:
        self.record(event_type, AuditResult.FAILURE, target=target, parameters=parameters, error=error)

    def log_session_start(self, command: str, args: list[str]) -> None:
        self.record(AuditEventType.SESSION_START, AuditResult.SUCCESS, target=command, parameters={"args": args})

    def log_session_end(self, exit_code: int) -> None:
        self.record(
            AuditEventType.SESSION_END,
            AuditResult.SUCCESS if exit_code == 0 else AuditResult.FAILURE,
            parameters={"exit_code": exit_code},
        )


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get or create global audit logger."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def configure_audit_logger(log_path: Optional[Path] = None, enabled: bool = True) -> AuditLogger:
    """Configure and return the global audit logger."""
    global _audit_logger
    _audit_logger = AuditLogger(log_path=log_path, enabled=enabled)
    return _audit_logger
