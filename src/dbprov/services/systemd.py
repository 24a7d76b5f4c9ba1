"""Systemd unit control for the database and SSH daemons."""

from dataclasses import dataclass
from typing import Optional

from dbprov.core.context import ExecutionContext
from dbprov.core.exceptions import ExecutionError, ServiceError
from dbprov.core.executor import CommandExecutor


@dataclass
class ServiceStatus:
    """Status of a systemd unit."""
    name: str
    active: bool
    enabled: bool


class SystemdService:
    """Thin wrapper around systemctl.

    State queries run even in dry-run mode; state changes are only
    announced there.
    """

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    def _query(self, *args: str) -> bool:
        try:
            result = self.executor.run(["systemctl", *args], check=False, read_only=True)
        except ExecutionError:
            return False
        return result.success

    def is_active(self, service: str) -> bool:
        return self._query("is-active", "--quiet", service)

    def is_enabled(self, service: str) -> bool:
        return self._query("is-enabled", "--quiet", service)

    def status(self, service: str) -> ServiceStatus:
        return ServiceStatus(
            name=service,
            active=self.is_active(service),
            enabled=self.is_enabled(service),
        )

    def _change(self, verb: str, service: str, description: str, hint: Optional[str] = None) -> None:
        self.ctx.console.step(description)

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"systemctl {verb} {service}")
            return

        try:
            self.executor.run(["systemctl", verb, service])
        except ExecutionError as e:
            raise ServiceError(
                f"Failed to {verb} {service}",
                service=service,
                details=e.details,
                hint=hint or f"Check logs: journalctl -xeu {service}",
            ) from e

    def start(self, service: str, *, description: Optional[str] = None) -> None:
        """Start a service.

        Raises:
            ServiceError: If service fails to start
        """
        self._change("start", service, description or f"Starting {service}")

    def restart(self, service: str, *, description: Optional[str] = None) -> None:
        """Restart a service.

        Raises:
            ServiceError: If service fails to restart
        """
        self._change("restart", service, description or f"Restarting {service}")

    def enable(self, service: str, *, description: Optional[str] = None) -> None:
        """Enable a service to start on boot."""
        self._change("enable", service, description or f"Enabling {service}")

    def ensure_running(self, service: str) -> None:
        """Start and enable a service, skipping whatever already holds."""
        if self.is_active(service):
            self.ctx.console.info(f"{service} is already running")
        else:
            self.start(service)

        if self.is_enabled(service):
            self.ctx.console.debug(f"{service} is already enabled")
        else:
            self.enable(service)
