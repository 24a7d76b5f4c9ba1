"""Operator OS account and its SSH key."""

import pwd
from pathlib import Path
from typing import Optional

from dbprov.core.config import AccountConfig, PUBLIC_KEY_ENV
from dbprov.core.context import ExecutionContext
from dbprov.core.executor import CommandExecutor


class AccountService:
    """Creates the operator account and installs its authorized key."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor, config: AccountConfig) -> None:
        self.ctx = ctx
        self.executor = executor
        self.config = config

    @property
    def authorized_keys(self) -> Path:
        return self.config.ssh_dir / "authorized_keys"

    def exists(self) -> bool:
        try:
            pwd.getpwnam(self.config.name)
        except KeyError:
            return False
        return True

    def ensure_account(self) -> bool:
        """Create the account with a home directory unless it exists.

        Returns:
            True if the account was created
        """
        if self.exists():
            self.ctx.console.info(f"Account '{self.config.name}' already exists")
            return False

        command = ["useradd", "-m", "-s", self.config.shell]
        if self.config.home:
            command += ["-d", str(self.config.home)]
        command.append(self.config.name)

        self.executor.run(command, description=f"Creating account '{self.config.name}'")
        return True

    def ensure_ssh_dir(self) -> Path:
        ssh_dir = self.config.ssh_dir
        self.executor.ensure_directory(ssh_dir, permissions=0o700)
        self.executor.chown(ssh_dir, self.config.name)
        return ssh_dir

    def ensure_authorized_key(self, public_key: Optional[str]) -> bool:
        """Add the key to authorized_keys unless it is already listed.

        Returns:
            True if the key was added
        """
        if not public_key:
            self.ctx.console.warn(
                f"{PUBLIC_KEY_ENV} not set; SSH key access for '{self.config.name}' "
                "must be provisioned separately"
            )
            return False

        path = self.authorized_keys
        existing = path.read_text() if path.exists() else ""

        added = False
        if public_key in (line.strip() for line in existing.splitlines()):
            self.ctx.console.info(f"Key already present in {path}")
        else:
            prefix = "\n" if existing and not existing.endswith("\n") else ""
            self.ctx.console.step(f"Adding SSH key to {path}")
            self.executor.append_file(path, f"{prefix}{public_key}\n", permissions=0o600)
            added = True

        self.executor.chmod(path, 0o600)
        self.executor.chown(self.config.ssh_dir, self.config.name, recursive=True)
        return added

    def provision(self, public_key: Optional[str]) -> dict[str, bool]:
        created = self.ensure_account()
        self.ensure_ssh_dir()
        key_added = self.ensure_authorized_key(public_key)
        return {"account": created, "key": key_added}
