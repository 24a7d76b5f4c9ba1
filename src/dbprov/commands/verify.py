"""Post-provisioning checks of a database host.

Re-reads the host state and compares it with the configuration. Nothing
is modified.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dbprov.core.audit import AuditEventType, get_audit_logger
from dbprov.core.context import ExecutionContext
from dbprov.core.credentials import resolve_public_key
from dbprov.core.exceptions import VerificationError
from dbprov.core.executor import CommandExecutor
from dbprov.services.accounts import AccountService
from dbprov.services.pgconfig import has_hba_entry, read_setting
from dbprov.services.postgresql import PostgreSQLService
from dbprov.services.sshd import SshdHardener, global_values
from dbprov.services.sudoers import SUDOERS_MODE, SudoersService, render_sudoers
from dbprov.services.systemd import SystemdService


@dataclass
class VerificationResult:
    """Result of one host check."""
    name: str
    passed: bool
    detail: str


def _read(path: Path) -> Optional[str]:
    try:
        return path.read_text()
    except OSError:
        return None


class HostVerifier:
    """Runs the post-provisioning checks."""

    def __init__(self, ctx: ExecutionContext) -> None:
        self.ctx = ctx
        self.config = ctx.config
        self.executor = CommandExecutor(ctx)
        self.systemd = SystemdService(ctx, self.executor)
        self.postgres = PostgreSQLService(ctx, self.executor, self.config.postgres)

    def check_listen_addresses(self) -> VerificationResult:
        name = "listen_addresses"
        text = _read(self.config.postgres.postgresql_conf)
        if text is None:
            return VerificationResult(name, False, f"cannot read {self.config.postgres.postgresql_conf}")
        value = read_setting(text, "listen_addresses")
        expected = self.config.access.listen_addresses
        return VerificationResult(name, value == expected, f"'{value}'" if value is not None else "not set")

    def check_hba(self) -> VerificationResult:
        access = self.config.access
        name = "pg_hba.conf entry"
        text = _read(self.config.postgres.hba_conf)
        if text is None:
            return VerificationResult(name, False, f"cannot read {self.config.postgres.hba_conf}")
        passed = has_hba_entry(text, access.allowed_cidr, access.auth_method)
        detail = f"host all all {access.allowed_cidr} {access.auth_method}"
        return VerificationResult(name, passed, detail if passed else f"missing: {detail}")

    def check_service(self) -> VerificationResult:
        service = self.config.postgres.service
        status = self.systemd.status(service)
        passed = status.active and status.enabled and self.postgres.is_ready()
        detail = f"active={status.active} enabled={status.enabled}"
        return VerificationResult(f"{service} service", passed, detail)

    def check_seed_rows(self) -> VerificationResult:
        db = self.config.database
        name = f"{db.table} table"
        usernames = self.postgres.table_usernames(db.name, db.table)
        if usernames is None:
            return VerificationResult(name, False, f"cannot query {db.name}.{db.table}")
        expected = [u.username for u in db.seed_users]
        passed = sorted(usernames) == sorted(expected)
        return VerificationResult(name, passed, f"{len(usernames)} rows: {', '.join(usernames) or '-'}")

    def check_sshd(self) -> VerificationResult:
        name = "SSH password auth"
        hardener = SshdHardener(self.ctx, self.executor, self.systemd, self.config.ssh)
        value = hardener.effective_password_auth()
        if value is None:
            text = _read(self.config.ssh.sshd_config) or ""
            values = global_values(text)
            value = values[0] if values else None
        if not self.config.ssh.disable_password_auth:
            return VerificationResult(name, True, f"not managed ({value or 'default'})")
        return VerificationResult(name, value == "no", value or "not set")

    def check_authorized_keys(self) -> VerificationResult:
        name = "authorized_keys"
        path = AccountService(self.ctx, self.executor, self.config.account).authorized_keys
        key = resolve_public_key(self.config)
        text = _read(path)

        if key is None:
            passed = not text or not text.strip()
            return VerificationResult(name, passed, "no key supplied, file empty" if passed else "unexpected keys present")

        if text is None:
            return VerificationResult(name, False, f"{path} missing")
        passed = key in (line.strip() for line in text.splitlines())
        mode = path.stat().st_mode & 0o777
        return VerificationResult(name, passed and mode == 0o600, f"key present={passed} mode={oct(mode)}")

    def check_sudoers(self) -> VerificationResult:
        account = self.config.account.name
        sudoers = SudoersService(self.ctx, self.executor, self.config.sudo)
        path = sudoers.path_for(account)
        if not path.exists():
            return VerificationResult("sudoers fragment", False, f"{path} missing")
        mode = path.stat().st_mode & 0o777
        valid = sudoers.check(account)
        # Anything beyond the configured commands is a wider grant
        matches = _read(path) == render_sudoers(account, self.config.sudo)
        return VerificationResult(
            "sudoers fragment",
            valid and matches and mode == SUDOERS_MODE,
            f"visudo={'ok' if valid else 'failed'} content={'ok' if matches else 'differs from config'} mode={oct(mode)}",
        )

    def run_all(self) -> list[VerificationResult]:
        return [
            self.check_listen_addresses(),
            self.check_hba(),
            self.check_service(),
            self.check_seed_rows(),
            self.check_sshd(),
            self.check_authorized_keys(),
            self.check_sudoers(),
        ]


def run_verify(ctx: ExecutionContext, verifier: Optional[HostVerifier] = None) -> list[VerificationResult]:
    """Check the host and print a result table.

    Raises:
        VerificationError: If any check fails
    """
    verifier = verifier or HostVerifier(ctx)
    results = verifier.run_all()

    rows = []
    for r in results:
        status = "[green]PASS[/green]" if r.passed else "[red]FAIL[/red]"
        rows.append([r.name, status, r.detail])
    ctx.console.table("Host Verification", ["Check", "Result", "Detail"], rows)

    failed = [r for r in results if not r.passed]
    audit = get_audit_logger()
    if failed:
        audit.log_failure(AuditEventType.VERIFY, "host", f"{len(failed)} checks failed")
        raise VerificationError(
            f"{len(failed)} of {len(results)} checks failed",
            details=[f"{r.name}: {r.detail}" for r in failed],
            hint="Re-run: sudo dbprov provision -y",
        )

    audit.log_success(AuditEventType.VERIFY, "host", message="All checks passed")
    ctx.console.success(f"All {len(results)} checks passed")
    return results
