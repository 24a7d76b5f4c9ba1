"""yum package installation for the PostgreSQL server."""

import shutil

from dbprov.core.config import PostgresConfig
from dbprov.core.context import ExecutionContext
from dbprov.core.exceptions import ExecutionError
from dbprov.core.executor import CommandExecutor


class PackageService:
    """Installs the server packages with yum.

    Only packages ``rpm`` does not already report as installed are passed
    to ``yum install``.
    """

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    def is_installed(self, package: str) -> bool:
        try:
            result = self.executor.run(["rpm", "-q", package], check=False, read_only=True)
        except ExecutionError:
            return False
        return result.success

    def update_system(self) -> None:
        self.executor.run(["yum", "update", "-y"], description="Updating system packages")

    def enable_extras(self, topic: str) -> bool:
        """Enable an amazon-linux-extras topic.

        Returns:
            False when the host has no amazon-linux-extras (non-Amazon RHEL)
        """
        if shutil.which("amazon-linux-extras") is None:
            self.ctx.console.info(f"amazon-linux-extras not available, skipping topic {topic}")
            return False

        self.executor.run(
            ["amazon-linux-extras", "enable", topic],
            description=f"Enabling amazon-linux-extras topic {topic}",
        )
        return True

    def install(self, packages: list[str]) -> list[str]:
        """Install whichever of the packages are missing.

        Returns:
            The packages that were (or in dry-run would be) installed
        """
        missing = [p for p in packages if not self.is_installed(p)]
        if not missing:
            self.ctx.console.info(f"Already installed: {', '.join(packages)}")
            return []

        self.executor.run(
            ["yum", "install", "-y", *missing],
            description=f"Installing {', '.join(missing)}",
        )
        return missing

    def provision(self, config: PostgresConfig) -> list[str]:
        """Run the full package step for the configured server."""
        if config.update_system:
            self.update_system()

        if config.extras_topic:
            self.enable_extras(config.extras_topic)

        return self.install(config.packages)
