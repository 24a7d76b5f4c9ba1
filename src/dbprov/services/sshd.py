"""SSH daemon hardening.

Turns off password authentication host-wide. sshd uses the first value it
reads for a keyword, so drop-ins under sshd_config.d are rewritten too.
Edited files are checked with ``sshd -t`` before the daemon is restarted;
a rejected configuration is rolled back from the backups.
"""

import re
from pathlib import Path
from typing import Optional

from dbprov.core.config import SshConfig
from dbprov.core.context import ExecutionContext
from dbprov.core.exceptions import ExecutionError, ValidationError
from dbprov.core.executor import CommandExecutor
from dbprov.services.pgconfig import replace_lines
from dbprov.services.systemd import SystemdService


DIRECTIVE = "PasswordAuthentication no"

ACTIVE_PATTERN = re.compile(r"^\s*PasswordAuthentication\s+(?P<value>\S+)", re.IGNORECASE)
COMMENTED_NO_PATTERN = re.compile(r"^\s*#\s*PasswordAuthentication\s+no\b", re.IGNORECASE)
MATCH_PATTERN = re.compile(r"^\s*Match\s", re.IGNORECASE)


def active_values(text: str) -> list[str]:
    values = []
    for line in text.splitlines():
        match = ACTIVE_PATTERN.match(line)
        if match:
            values.append(match.group("value").lower())
    return values


def split_global(text: str) -> tuple[str, str]:
    """Split a config into its global part and everything from the first Match on."""
    lines = text.splitlines(keepends=True)
    for i, line in enumerate(lines):
        if MATCH_PATTERN.match(line):
            return "".join(lines[:i]), "".join(lines[i:])
    return text, ""


def global_values(text: str) -> list[str]:
    """PasswordAuthentication values that apply outside any Match block."""
    return active_values(split_global(text)[0])


def disable_password_auth(text: str, *, insert_if_missing: bool = True) -> tuple[str, bool]:
    """Force every PasswordAuthentication directive to ``no``.

    Values inside Match blocks are rewritten too but do not count as the
    host-wide setting. With no global directive, a commented
    ``#PasswordAuthentication no`` ahead of the first Match is uncommented;
    failing that the directive is inserted at the top so it precedes any
    Include or Match block.
    """
    changed = False
    if any(v != "no" for v in active_values(text)):
        text, count = replace_lines(text, r"(?i)^\s*PasswordAuthentication\s+(?!no\b)\S+", DIRECTIVE)
        changed = count > 0

    if global_values(text) or not insert_if_missing:
        return text, changed

    head, tail = split_global(text)
    lines = head.splitlines(keepends=True)
    for i, line in enumerate(lines):
        if COMMENTED_NO_PATTERN.match(line):
            lines[i] = DIRECTIVE + (line[len(line.rstrip("\r\n")):] or "\n")
            return "".join(lines) + tail, True

    return f"{DIRECTIVE}\n{text}", True


class SshdHardener:
    """Applies and checks the sshd password-authentication setting."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        systemd: SystemdService,
        config: SshConfig,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.systemd = systemd
        self.config = config

    def config_files(self) -> list[Path]:
        """Main config first, then drop-ins in the order sshd reads them."""
        drop_in_dir = self.config.sshd_config.parent / "sshd_config.d"
        drop_ins = sorted(drop_in_dir.glob("*.conf")) if drop_in_dir.is_dir() else []
        return [self.config.sshd_config, *drop_ins]

    def test_config(self) -> None:
        """Run ``sshd -t`` against the live configuration.

        Raises:
            ValidationError: If sshd rejects it
        """
        try:
            self.executor.run(
                ["sshd", "-t", "-f", str(self.config.sshd_config)],
                description="Checking sshd configuration",
            )
        except ExecutionError as e:
            raise ValidationError(
                "sshd rejected the updated configuration",
                details=e.details,
                hint="The previous configuration was restored",
            ) from e

    def effective_password_auth(self) -> Optional[str]:
        """Value sshd would actually use, from ``sshd -T``."""
        try:
            result = self.executor.run(["sshd", "-T"], check=False, read_only=True)
        except ExecutionError:
            return None
        if not result.success:
            return None
        for line in result.stdout.splitlines():
            key, _, value = line.partition(" ")
            if key.lower() == "passwordauthentication":
                return value.strip().lower()
        return None

    def apply(self) -> list[Path]:
        """Disable password logins and restart sshd if anything changed.

        Returns:
            Files that were (or in dry-run would be) rewritten
        """
        if not self.config.disable_password_auth:
            self.ctx.console.info("SSH password authentication left unchanged (disabled in config)")
            return []

        self.ctx.console.warn("SSH password authentication is being disabled for every account on this host")

        main = self.config.sshd_config
        if not main.exists():
            if self.ctx.dry_run:
                self.ctx.console.dry_run_msg(f"Disable password authentication in {main} once it exists")
                return [main]
            raise ValidationError(
                f"sshd configuration not found: {main}",
                hint="Install openssh-server or set ssh.sshd_config",
            )

        changed = []
        for path in self.config_files():
            updated, was_changed = disable_password_auth(path.read_text(), insert_if_missing=path == main)
            if not was_changed:
                continue
            self.executor.backup_file(path)
            self.executor.replace_file(path, updated, description=f"Disabling password authentication in {path}")
            changed.append(path)

        if not changed:
            self.ctx.console.info("SSH password authentication already disabled")
            return changed

        try:
            self.test_config()
        except ValidationError:
            for path in changed:
                self.executor.restore_backup(path)
            raise

        self.systemd.restart(self.config.service)
        return changed
