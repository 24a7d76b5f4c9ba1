"""Text patching of postgresql.conf and pg_hba.conf.

The edit functions are pure (text in, text out) so they can be checked
without a cluster. ``PostgresConfigPatcher`` applies them to the files on
disk, taking a ``.backup`` copy of a file just before it is rewritten.
"""

import re
from pathlib import Path
from typing import Optional

from dbprov.core.config import AccessConfig, PostgresConfig
from dbprov.core.context import ExecutionContext
from dbprov.core.exceptions import PostgresError
from dbprov.core.executor import CommandExecutor
from dbprov.core.validation import validate_cidr


HBA_COMMENT = "# Allow connections from VPC"

LISTEN_PATTERN = re.compile(
    r"^\s*(?P<comment>#\s*)?listen_addresses\s*=\s*(?P<value>'[^']*'|[^\s#]+)"
)


def replace_lines(text: str, pattern: str, replacement: str) -> tuple[str, int]:
    """Replace every line matching a regex with a fixed line.

    Returns:
        Tuple of (new text, number of lines replaced)
    """
    regex = re.compile(pattern)
    count = 0
    out = []
    for line in text.splitlines(keepends=True):
        if regex.search(line) and line.rstrip("\r\n") != replacement:
            newline = line[len(line.rstrip("\r\n")):] or "\n"
            out.append(replacement + newline)
            count += 1
        else:
            out.append(line)
    return "".join(out), count


def _append(text: str, block: str) -> str:
    if text and not text.endswith("\n"):
        text += "\n"
    return text + block


def set_listen_addresses(text: str, value: str = "*") -> tuple[str, bool]:
    """Make ``listen_addresses`` take the given value.

    Active settings are rewritten in place. With no active setting the
    first commented-out one is uncommented, and failing that the setting
    is appended.
    """
    desired = f"listen_addresses = '{value}'"
    lines = text.splitlines(keepends=True)

    active = []
    commented = []
    for i, line in enumerate(lines):
        match = LISTEN_PATTERN.match(line)
        if not match:
            continue
        if match.group("comment"):
            commented.append(i)
        else:
            active.append((i, match.group("value").strip("'")))

    if active and all(v == value for _, v in active):
        return text, False

    targets = [i for i, _ in active] or commented[:1]
    if not targets:
        return _append(text, desired + "\n"), True

    for i in targets:
        newline = lines[i][len(lines[i].rstrip("\r\n")):] or "\n"
        lines[i] = desired + newline
    return "".join(lines), True


def format_hba_entry(cidr: str, method: str) -> str:
    return f"{'host':<8}{'all':<16}{'all':<16}{cidr:<24}{method}"


def _hba_tokens(line: str) -> list[str]:
    return line.split("#", 1)[0].split()


def ensure_hba_entry(text: str, cidr: str, method: str = "md5") -> tuple[str, bool]:
    """Ensure a ``host all all <cidr> <method>`` rule exists.

    A rule for the same CIDR with a different method is rewritten rather
    than shadowed, because pg_hba.conf is first-match.
    """
    cidr = validate_cidr(cidr)
    entry = format_hba_entry(cidr, method)
    lines = text.splitlines(keepends=True)

    changed = False
    found = False
    for i, line in enumerate(lines):
        tokens = _hba_tokens(line)
        if tokens[:4] != ["host", "all", "all", cidr] or len(tokens) < 5:
            continue
        found = True
        if tokens[4:] != [method]:
            newline = line[len(line.rstrip("\r\n")):] or "\n"
            lines[i] = entry + newline
            changed = True

    if found:
        return "".join(lines), changed

    return _append(text, f"\n{HBA_COMMENT}\n{entry}\n"), True


def read_setting(text: str, name: str) -> Optional[str]:
    """Return the last active value of a postgresql.conf setting."""
    pattern = re.compile(rf"^\s*{re.escape(name)}\s*=\s*('(?P<quoted>[^']*)'|(?P<bare>[^\s#]+))")
    value = None
    for line in text.splitlines():
        match = pattern.match(line)
        if match:
            value = match.group("quoted") if match.group("quoted") is not None else match.group("bare")
    return value


def has_hba_entry(text: str, cidr: str, method: str) -> bool:
    return any(_hba_tokens(line) == ["host", "all", "all", cidr, method] for line in text.splitlines())


class PostgresConfigPatcher:
    """Applies the network access settings to a cluster's config files."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        postgres: PostgresConfig,
        access: AccessConfig,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.postgres = postgres
        self.access = access

    def _patch(self, path: Path, edit) -> bool:
        if not path.exists():
            if self.ctx.dry_run:
                self.ctx.console.dry_run_msg(f"Patch {path} once the cluster is initialized")
                return True
            raise PostgresError(
                f"Configuration file not found: {path}",
                hint="Initialize the cluster first: postgresql-setup --initdb",
            )

        original = path.read_text()
        updated, changed = edit(original)

        if not changed:
            self.ctx.console.info(f"{path.name} already configured")
            return False

        self.executor.backup_file(path)
        self.executor.replace_file(path, updated, description=f"Updating {path.name}")
        return True

    def apply(self) -> list[Path]:
        """Patch both files.

        Returns:
            Files that were (or in dry-run would be) rewritten
        """
        changed = []

        conf = self.postgres.postgresql_conf
        if self._patch(conf, lambda t: set_listen_addresses(t, self.access.listen_addresses)):
            changed.append(conf)

        hba = self.postgres.hba_conf
        if self._patch(hba, lambda t: ensure_hba_entry(t, self.access.allowed_cidr, self.access.auth_method)):
            changed.append(hba)

        return changed
