"""Command execution and file writes with dry-run support.

Provides:
- Safe command execution with output capture
- SQL execution via psql
- Atomic file writes with mode and ownership
- Single-copy config backups
"""

import contextlib
import grp
import os
import pwd
import secrets
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generator, Optional

from dbprov.core.context import ExecutionContext
from dbprov.core.exceptions import ExecutionError, ValidationError


BACKUP_SUFFIX = ".backup"


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.return_code == 0


class AtomicFileWriter:
    """Atomic file writer using temp file and rename.

    The target is either completely written or not modified at all.
    """

    def __init__(
        self,
        target_path: Path,
        permissions: int = 0o644,
        owner_uid: Optional[int] = None,
        owner_gid: Optional[int] = None,
        validator: Optional[Callable[[Path], None]] = None,
    ) -> None:
        self.target_path = Path(target_path)
        self.permissions = permissions
        self.owner_uid = owner_uid
        self.owner_gid = owner_gid
        self.validator = validator

    @contextlib.contextmanager
    def open(self, mode: str = "w") -> Generator:
        """Open for atomic writing.

        Usage:
            with AtomicFileWriter(path).open() as f:
                f.write("content")
            # File is atomically replaced here
        """
        self.target_path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)

        tmp_path = self.target_path.with_name(
            f".{self.target_path.name}.tmp_{secrets.token_hex(8)}"
        )

        success = False
        fd = None

        try:
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, self.permissions)

            with os.fdopen(fd, mode) as f:
                fd = None  # fdopen takes ownership
                yield f
                f.flush()
                os.fsync(f.fileno())

            # umask may have narrowed the mode passed to os.open
            os.chmod(tmp_path, self.permissions)

            if self.owner_uid is not None or self.owner_gid is not None:
                os.chown(
                    tmp_path,
                    -1 if self.owner_uid is None else self.owner_uid,
                    -1 if self.owner_gid is None else self.owner_gid,
                )

            # Raising here leaves the target untouched
            if self.validator is not None:
                self.validator(tmp_path)

            os.rename(tmp_path, self.target_path)
            success = True

        finally:
            if fd is not None:
                os.close(fd)
            if not success and tmp_path.exists():
                with contextlib.suppress(OSError):
                    tmp_path.unlink()


def resolve_owner(owner: Optional[str], group: Optional[str]) -> tuple[Optional[int], Optional[int]]:
    """Translate account/group names into numeric ids.

    An owner without a group gets the owner's primary group.

    Raises:
        ExecutionError: If the account or group does not exist
    """
    try:
        entry = pwd.getpwnam(owner) if owner else None
        if group:
            gid = grp.getgrnam(group).gr_gid
        else:
            gid = entry.pw_gid if entry else None
    except KeyError as e:
        raise ExecutionError(
            f"Unknown account or group: {e.args[0]}",
            hint="Create the account before assigning file ownership",
        ) from e
    return (entry.pw_uid if entry else None), gid


class CommandExecutor:
    """Runs external commands and writes files on behalf of services.

    Every mutating call honours dry-run mode.
    """

    def __init__(self, ctx: ExecutionContext) -> None:
        self.ctx = ctx

    def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = True,
        capture: bool = True,
        as_user: Optional[str] = None,
        sensitive: bool = False,
        timeout: Optional[int] = None,
        env: Optional[dict[str, str]] = None,
        input_text: Optional[str] = None,
        read_only: bool = False,
    ) -> CommandResult:
        """Execute a command safely.

        Args:
            command: Command as list of strings
            description: Human-readable description for logging
            check: Raise exception on non-zero exit
            capture: Capture stdout/stderr
            as_user: Run as different user (via sudo -u)
            sensitive: Don't log the actual command
            timeout: Command timeout in seconds
            env: Additional environment variables
            input_text: Data fed to the command's stdin
            read_only: Command has no side effects and also runs in dry-run

        Returns:
            CommandResult with output

        Raises:
            ExecutionError: If command fails and check=True
        """
        if as_user:
            command = ["sudo", "-u", as_user] + command

        if description:
            self.ctx.console.step(description)

        cmd_display = "<sensitive command>" if sensitive else shlex.join(command)
        self.ctx.console.debug(f"Running: {cmd_display}")

        if self.ctx.dry_run and not read_only:
            self.ctx.console.dry_run_msg(f"Run: {cmd_display}")
            return CommandResult(command=command, return_code=0, stdout="", stderr="")

        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        try:
            result = subprocess.run(
                command,
                capture_output=capture,
                text=True,
                timeout=timeout,
                env=run_env,
                input=input_text,
            )
        except subprocess.TimeoutExpired:
            raise ExecutionError(
                f"Command timed out after {timeout}s: {description or cmd_display}",
                command=cmd_display,
            )
        except FileNotFoundError as e:
            raise ExecutionError(
                f"Command not found: {command[0]}",
                command=cmd_display,
                hint="Install the package that provides it",
            ) from e

        cmd_result = CommandResult(
            command=command,
            return_code=result.returncode,
            stdout=result.stdout if capture else "",
            stderr=result.stderr if capture else "",
        )

        if check and result.returncode != 0:
            raise ExecutionError(
                f"Command failed: {description or cmd_display}",
                command=cmd_display,
                return_code=result.returncode,
                stderr=result.stderr if capture else None,
            )

        return cmd_result

    def run_sql(
        self,
        sql: str,
        *,
        database: str = "postgres",
        as_user: str = "postgres",
        description: Optional[str] = None,
        check: bool = True,
        sensitive: bool = False,
    ) -> str:
        """Execute SQL via psql as a local superuser.

        Args:
            sql: SQL statement(s) to execute
            database: Database to connect to
            as_user: OS account psql runs as (peer authentication)
            description: Human-readable description
            check: Raise exception on error
            sensitive: SQL embeds a secret and must never be displayed

        Returns:
            Query output (tuples only, unaligned)
        """
        command = [
            "psql",
            "-X",
            "-v", "ON_ERROR_STOP=1",
            "-d", database,
            "-t",
            "-A",
        ]
        # Secrets go through stdin so they never show up in the process list
        if sensitive:
            command += ["-1", "-f", "-"]
        else:
            command += ["-c", sql]

        if description:
            self.ctx.console.step(description)

        sql_display = "<redacted: contains credentials>" if sensitive else sql

        if self.ctx.dry_run:
            short = sql_display[:200] + "..." if len(sql_display) > 200 else sql_display
            self.ctx.console.dry_run_msg(f"Execute SQL on {database}: {short}")
            if self.ctx.is_verbose and not sensitive:
                self.ctx.console.sql(sql)
            return ""

        self.ctx.console.debug(f"SQL ({database}): {sql_display}")

        try:
            result = self.run(
                command,
                as_user=as_user,
                check=check,
                sensitive=True,
                input_text=sql if sensitive else None,
            )
        except ExecutionError as e:
            if not sensitive:
                raise
            # psql error context can quote the failing statement
            raise ExecutionError(
                f"Command failed: {description or 'psql'}",
                command="<sensitive command>",
                return_code=e.return_code,
                hint="Re-run the statement manually to see the server error",
            ) from None
        return result.stdout.strip()

    def query_sql(
        self,
        sql: str,
        *,
        database: str = "postgres",
        as_user: str = "postgres",
    ) -> Optional[str]:
        """Run a read-only query, returning None when psql fails.

        Used for existence and verification checks, which also run in
        dry-run mode.
        """
        try:
            result = self.run(
                ["psql", "-d", database, "-t", "-A", "-c", sql],
                as_user=as_user,
                check=False,
                read_only=True,
            )
        except ExecutionError as e:
            self.ctx.console.debug(f"Query not run on {database}: {e.message}")
            return None
        if not result.success:
            self.ctx.console.debug(f"Query failed on {database}: {result.stderr.strip()}")
            return None
        return result.stdout.strip()

    def write_file(
        self,
        path: Path,
        content: str,
        *,
        description: Optional[str] = None,
        permissions: int = 0o644,
        owner: Optional[str] = None,
        group: Optional[str] = None,
        sensitive: bool = False,
        validate: Optional[list[str]] = None,
    ) -> None:
        """Write content to a file atomically.

        Args:
            path: Destination path
            content: File content
            description: Human-readable description
            permissions: File mode
            owner: File owner
            group: File group
            sensitive: Never preview the content
            validate: Checker command run against the staged file before it
                replaces the target; "%s" is substituted with its path

        Raises:
            ValidationError: If the checker rejects the staged file
        """
        self.ctx.console.step(description or f"Write {path}")

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(
                f"Write {len(content)} bytes to {path} (mode {oct(permissions)})"
            )
            if self.ctx.is_verbose and not sensitive:
                preview = content[:500] + "..." if len(content) > 500 else content
                self.ctx.console.print(f"[dim]{preview}[/dim]", markup=True)
            return

        uid, gid = resolve_owner(owner, group)
        validator = self._command_validator(validate, path) if validate else None
        with AtomicFileWriter(
            path,
            permissions=permissions,
            owner_uid=uid,
            owner_gid=gid,
            validator=validator,
        ).open() as f:
            f.write(content)

    def _command_validator(self, template: list[str], target: Path) -> Callable[[Path], None]:
        def check(staged: Path) -> None:
            command = [str(staged) if part == "%s" else part for part in template]
            result = self.run(command, check=False, read_only=True)
            if not result.success:
                raise ValidationError(
                    f"Refusing to install invalid {target}",
                    details=[line for line in (result.stderr or result.stdout).splitlines() if line.strip()],
                    hint=f"The existing {target} was left unchanged",
                )
        return check

    def replace_file(self, path: Path, content: str, *, description: Optional[str] = None) -> None:
        """Rewrite an existing file, keeping its mode and ownership."""
        if self.ctx.dry_run or not path.exists():
            self.write_file(path, content, description=description)
            return

        st = path.stat()
        self.ctx.console.step(description or f"Update {path}")
        with AtomicFileWriter(
            path,
            permissions=st.st_mode & 0o7777,
            owner_uid=st.st_uid,
            owner_gid=st.st_gid,
        ).open() as f:
            f.write(content)

    def append_file(self, path: Path, content: str, *, permissions: int = 0o644) -> None:
        """Append to a file, creating it if needed."""
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Append {len(content)} bytes to {path}")
            return

        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, permissions)
        with os.fdopen(fd, "a") as f:
            f.write(content)

    def ensure_directory(
        self,
        path: Path,
        *,
        permissions: int = 0o755,
        owner: Optional[str] = None,
        group: Optional[str] = None,
    ) -> None:
        """Create a directory (if missing) and enforce mode and ownership."""
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Ensure directory {path} (mode {oct(permissions)})")
            return

        path.mkdir(parents=True, exist_ok=True)
        os.chmod(path, permissions)
        if owner or group:
            uid, gid = resolve_owner(owner, group)
            os.chown(path, -1 if uid is None else uid, -1 if gid is None else gid)

    def chmod(self, path: Path, permissions: int) -> None:
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"chmod {oct(permissions)} {path}")
            return
        os.chmod(path, permissions)

    def chown(self, path: Path, owner: str, group: Optional[str] = None, *, recursive: bool = False) -> None:
        """Change ownership of a path (optionally the whole tree)."""
        if self.ctx.dry_run:
            flag = "-R " if recursive else ""
            self.ctx.console.dry_run_msg(f"chown {flag}{owner}:{group or owner} {path}")
            return

        uid, gid = resolve_owner(owner, group)
        paths = [path]
        if recursive and path.is_dir():
            paths.extend(path.rglob("*"))
        for p in paths:
            os.chown(p, uid, gid, follow_symlinks=False)

    def backup_file(self, path: Path, *, suffix: str = BACKUP_SUFFIX) -> Optional[Path]:
        """Copy a file next to itself with a fixed suffix.

        Only one backup is kept; re-running overwrites it.

        Returns:
            Path to backup file, or None if the original doesn't exist
        """
        backup_path = path.with_name(path.name + suffix)

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Backup {path} to {backup_path}")
            return backup_path

        if not path.exists():
            return None

        shutil.copy2(path, backup_path)
        self.ctx.console.debug(f"Backed up {path} to {backup_path}")
        return backup_path

    def restore_backup(self, path: Path, *, suffix: str = BACKUP_SUFFIX) -> bool:
        """Put a file back from its backup copy.

        Returns:
            True if a backup existed and was restored
        """
        backup_path = path.with_name(path.name + suffix)

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Restore {path} from {backup_path}")
            return True

        if not backup_path.exists():
            return False

        shutil.copy2(backup_path, path)
        self.ctx.console.warn(f"Restored {path} from {backup_path}")
        return True
