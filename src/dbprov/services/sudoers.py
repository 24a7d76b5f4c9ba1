"""Scoped sudo grant for the operator account."""

from pathlib import Path

from dbprov.core.config import SudoConfig
from dbprov.core.context import ExecutionContext
from dbprov.core.exceptions import ExecutionError
from dbprov.core.executor import CommandExecutor
from dbprov.core.rendering import render
from dbprov.core.validation import validate_os_username, validate_sudo_command


SUDOERS_MODE = 0o440


def render_sudoers(account: str, config: SudoConfig) -> str:
    """Render the sudoers fragment for one account.

    Every command is a fully enumerated absolute path; wildcards and
    sudoers metacharacters are rejected before rendering.
    """
    return render(
        "sudoers/sudoers.j2",
        account=validate_os_username(account),
        nopasswd_commands=[validate_sudo_command(c) for c in config.nopasswd_commands],
        password_commands=[validate_sudo_command(c) for c in config.password_commands],
    )


class SudoersService:
    """Installs /etc/sudoers.d/<account> after ``visudo -c`` accepts it."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor, config: SudoConfig) -> None:
        self.ctx = ctx
        self.executor = executor
        self.config = config

    def path_for(self, account: str) -> Path:
        return self.config.sudoers_dir / account

    def install(self, account: str) -> bool:
        """Write the fragment unless the installed one already matches.

        Returns:
            True if the fragment was written

        Raises:
            ValidationError: If visudo rejects the rendered fragment
        """
        content = render_sudoers(account, self.config)
        path = self.path_for(account)

        if path.exists() and path.read_text() == content:
            if (path.stat().st_mode & 0o777) != SUDOERS_MODE:
                self.executor.chmod(path, SUDOERS_MODE)
            self.ctx.console.info(f"{path} already up to date")
            return False

        self.executor.write_file(
            path,
            content,
            description=f"Writing sudoers fragment {path}",
            permissions=SUDOERS_MODE,
            owner="root",
            group="root",
            validate=["visudo", "-c", "-q", "-f", "%s"],
        )
        return True

    def check(self, account: str) -> bool:
        """Whether the installed fragment passes ``visudo -c``."""
        path = self.path_for(account)
        if not path.exists():
            return False
        try:
            result = self.executor.run(["visudo", "-c", "-q", "-f", str(path)], check=False, read_only=True)
        except ExecutionError:
            return False
        return result.success
