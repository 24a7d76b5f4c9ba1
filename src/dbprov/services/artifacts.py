"""Operator hand-off files and the completion log."""

from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from dbprov.core.config import AppConfig, PASSWORD_ENV
from dbprov.core.context import ExecutionContext
from dbprov.core.exceptions import ExecutionError
from dbprov.core.executor import CommandExecutor
from dbprov.core.rendering import render


def format_completion_time(now: datetime) -> str:
    """Render a timestamp the way date(1) prints it by default."""
    return f"{now:%a %b} {now.day:>2} {now:%H:%M:%S} {now.tzname() or 'UTC'} {now.year}"


def completion_lines(now: datetime) -> str:
    return (
        f"Database server setup completed at {format_completion_time(now)}\n"
        "PostgreSQL is running and configured\n"
    )


class ArtifactWriter:
    """Writes the connection test script and README into the account's home."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        app_config: AppConfig,
        *,
        server_version: Optional[str] = None,
        clock: Callable[[], datetime] = lambda: datetime.now().astimezone(),
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.app_config = app_config
        self.server_version = server_version
        self.clock = clock

    @property
    def home(self) -> Path:
        return self.app_config.account.home_dir

    def primary_ip(self) -> str:
        """First address reported by ``hostname -I``."""
        try:
            result = self.executor.run(["hostname", "-I"], check=False, read_only=True)
        except ExecutionError:
            return "localhost"
        fields = result.stdout.split()
        return fields[0] if result.success and fields else "localhost"

    def template_context(self) -> dict:
        cfg = self.app_config
        return {
            "host": cfg.postgres.host,
            "port": cfg.postgres.port,
            "database": cfg.database.name,
            "owner": cfg.database.owner,
            "table": cfg.database.table,
            "server_version": self.server_version or "unknown",
            "secrets_manager_id": cfg.secret_store.secrets_manager_id,
            "ssm_parameter": cfg.secret_store.ssm_parameter,
            "password_env": PASSWORD_ENV,
            "primary_ip": self.primary_ip(),
            "test_script": cfg.artifacts.test_script,
            "generated_at": format_completion_time(self.clock()),
        }

    def write(self) -> list[Path]:
        """Write both files, owned by the operator account.

        Returns:
            Paths written
        """
        account = self.app_config.account.name
        context = self.template_context()

        script = self.home / self.app_config.artifacts.test_script
        self.executor.write_file(
            script,
            render("artifacts/test_db_connection.sh.j2", **context),
            description=f"Writing {script}",
            permissions=0o755,
            owner=account,
        )

        readme = self.home / self.app_config.artifacts.readme
        self.executor.write_file(
            readme,
            render("artifacts/DATABASE_INFO.txt.j2", **context),
            description=f"Writing {readme}",
            permissions=0o640,
            owner=account,
        )

        return [script, readme]

    def log_completion(self) -> None:
        """Append the two completion lines to the provisioning log."""
        log_file = self.app_config.artifacts.log_file
        self.ctx.console.step(f"Recording completion in {log_file}")
        self.executor.append_file(log_file, completion_lines(self.clock()))
