"""End-to-end provisioning of the database host.

Steps run strictly in order and the first failure aborts the run. Each
step checks the host before changing it, so a re-run converges instead of
failing on objects that already exist.
"""

from dataclasses import dataclass
from typing import Optional

from dbprov.core.audit import AuditEventType, get_audit_logger
from dbprov.core.config import PASSWORD_ENV
from dbprov.core.context import ExecutionContext
from dbprov.core.credentials import resolve_db_password, resolve_public_key
from dbprov.core.executor import CommandExecutor
from dbprov.core.output import console
from dbprov.core.safety import PreflightRunner, run_preflight_checks
from dbprov.services.accounts import AccountService
from dbprov.services.artifacts import ArtifactWriter
from dbprov.services.packages import PackageService
from dbprov.services.pgconfig import PostgresConfigPatcher
from dbprov.services.postgresql import PostgreSQLService
from dbprov.services.sshd import SshdHardener
from dbprov.services.sudoers import SudoersService
from dbprov.services.systemd import SystemdService


@dataclass
class StepResult:
    """Outcome of one pipeline step, for the final summary."""
    name: str
    changed: bool
    detail: str = ""


@dataclass
class Credentials:
    password: str
    public_key: Optional[str]


def resolve_credentials(ctx: ExecutionContext) -> Credentials:
    """Fetch the role password and optional SSH key.

    Runs before anything on the host is touched.

    Raises:
        MissingSecretError: If no source supplies the password
    """
    console.step("Resolving database credentials")
    password = resolve_db_password(ctx.config)
    public_key = resolve_public_key(ctx.config)
    console.success(f"{PASSWORD_ENV} resolved")
    return Credentials(password=password, public_key=public_key)


def install_server(ctx: ExecutionContext, executor: CommandExecutor, postgres: PostgreSQLService) -> StepResult:
    packages = PackageService(ctx, executor)
    installed = packages.provision(ctx.config.postgres)
    initialized = postgres.init_cluster()

    parts = []
    if installed:
        parts.append(f"installed {', '.join(installed)}")
    if initialized:
        parts.append("cluster initialized")
    return StepResult("Packages", bool(installed) or initialized, "; ".join(parts) or "up to date")


def configure_access(ctx: ExecutionContext, executor: CommandExecutor) -> StepResult:
    patcher = PostgresConfigPatcher(ctx, executor, ctx.config.postgres, ctx.config.access)
    changed = patcher.apply()
    detail = ", ".join(p.name for p in changed) if changed else "already configured"
    return StepResult("Network access", bool(changed), detail)


def start_server(
    ctx: ExecutionContext,
    systemd: SystemdService,
    postgres: PostgreSQLService,
    *,
    config_changed: bool,
) -> StepResult:
    """Start and enable the server, then wait until it accepts connections.

    A server that was already running is restarted when its configuration
    changed, since listen_addresses only applies at startup.
    """
    service = ctx.config.postgres.service
    was_active = systemd.is_active(service)

    if was_active and config_changed:
        systemd.restart(service, description=f"Restarting {service} to apply configuration")
    systemd.ensure_running(service)

    waited = postgres.wait_until_ready()
    console.success(f"PostgreSQL is accepting connections on port {ctx.config.postgres.port}")

    changed = not was_active or config_changed
    return StepResult("Service", changed, f"ready after {waited:.1f}s" if waited else "running")


def bootstrap_database(ctx: ExecutionContext, postgres: PostgreSQLService, password: str) -> StepResult:
    database = ctx.config.database
    created = postgres.bootstrap(database, password)
    console.success(f"Database '{database.name}' and role '{database.owner}' ready")

    made = [kind for kind, new in created.items() if new]
    detail = f"created {', '.join(made)}" if made else "existing objects converged"
    return StepResult("Database", bool(made), detail)


def provision_account(ctx: ExecutionContext, executor: CommandExecutor, public_key: Optional[str]) -> StepResult:
    accounts = AccountService(ctx, executor, ctx.config.account)
    outcome = accounts.provision(public_key)

    if outcome["key"]:
        detail = "key installed"
    elif public_key:
        detail = "key already present"
    else:
        detail = "no key supplied"
    return StepResult("OS account", any(outcome.values()), detail)


def restrict_privileges(ctx: ExecutionContext, executor: CommandExecutor, systemd: SystemdService) -> StepResult:
    audit = get_audit_logger()

    hardener = SshdHardener(ctx, executor, systemd, ctx.config.ssh)
    with audit.step(AuditEventType.SSH_HARDEN, str(ctx.config.ssh.sshd_config), dry_run=ctx.dry_run):
        sshd_changed = hardener.apply()

    sudoers = SudoersService(ctx, executor, ctx.config.sudo)
    fragment = sudoers.path_for(ctx.config.account.name)
    with audit.step(AuditEventType.SUDOERS_WRITE, str(fragment), dry_run=ctx.dry_run):
        sudoers_changed = sudoers.install(ctx.config.account.name)

    parts = []
    if sshd_changed:
        parts.append("sshd password auth disabled")
    if sudoers_changed:
        parts.append(f"sudoers fragment {fragment}")
    return StepResult("Privileges", bool(sshd_changed) or sudoers_changed, "; ".join(parts) or "up to date")


def write_artifacts(ctx: ExecutionContext, executor: CommandExecutor, postgres: PostgreSQLService) -> ArtifactWriter:
    writer = ArtifactWriter(ctx, executor, ctx.config, server_version=postgres.server_version())
    writer.write()
    return writer


def run_provision(
    ctx: ExecutionContext,
    *,
    creds: Optional[Credentials] = None,
    preflight_runner: Optional[PreflightRunner] = None,
) -> list[StepResult]:
    """Run every provisioning step.

    Args:
        ctx: Execution context
        creds: Already resolved credentials; resolved here when omitted
        preflight_runner: Checks to run instead of the default set

    Returns:
        One result per step, in execution order
    """
    app_config = ctx.config
    audit = get_audit_logger()
    dry_run = ctx.dry_run

    if creds is None:
        with audit.step(AuditEventType.SECRET_RESOLVE, PASSWORD_ENV, dry_run=dry_run):
            creds = resolve_credentials(ctx)

    with audit.step(AuditEventType.PREFLIGHT, "host", dry_run=dry_run):
        run_preflight_checks(dry_run=dry_run, verbose=ctx.is_verbose, runner=preflight_runner)

    executor = CommandExecutor(ctx)
    systemd = SystemdService(ctx, executor)
    postgres = PostgreSQLService(ctx, executor, app_config.postgres)
    results: list[StepResult] = []

    try:
        console.rule("PostgreSQL server")
        with audit.step(AuditEventType.PACKAGE_INSTALL, ", ".join(app_config.postgres.packages), dry_run=dry_run):
            results.append(install_server(ctx, executor, postgres))

        with audit.step(
            AuditEventType.CONFIG_MODIFY,
            str(app_config.postgres.data_dir),
            dry_run=dry_run,
            parameters={"allowed_cidr": app_config.access.allowed_cidr},
        ):
            access = configure_access(ctx, executor)
            results.append(access)

        with audit.step(AuditEventType.SERVICE_START, app_config.postgres.service, dry_run=dry_run):
            results.append(start_server(ctx, systemd, postgres, config_changed=access.changed))

        with audit.step(
            AuditEventType.DATABASE_BOOTSTRAP,
            app_config.database.name,
            dry_run=dry_run,
            parameters={"owner": app_config.database.owner, "table": app_config.database.table},
        ):
            results.append(bootstrap_database(ctx, postgres, creds.password))

        console.rule("Operator access")
        with audit.step(AuditEventType.ACCOUNT_CREATE, app_config.account.name, dry_run=dry_run):
            results.append(provision_account(ctx, executor, creds.public_key))

        results.append(restrict_privileges(ctx, executor, systemd))

        with audit.step(AuditEventType.ARTIFACT_WRITE, str(app_config.account.home_dir), dry_run=dry_run):
            writer = write_artifacts(ctx, executor, postgres)
            results.append(StepResult("Artifacts", True, str(app_config.account.home_dir)))

        writer.log_completion()

    except Exception as e:
        audit.log_failure(AuditEventType.PROVISION, app_config.database.name, str(e))
        raise

    audit.log_success(
        AuditEventType.PROVISION,
        app_config.database.name,
        message="Database server provisioning completed",
        dry_run=dry_run,
    )
    return results


def show_summary(ctx: ExecutionContext, results: list[StepResult]) -> None:
    """Print the per-step outcome and connection details."""
    cfg = ctx.config

    ctx.console.print()
    ctx.console.table(
        "Provisioning Steps",
        ["Step", "Changed", "Detail"],
        [[r.name, "yes" if r.changed else "no", r.detail] for r in results],
    )
    ctx.console.summary(
        "Database Server",
        {
            "Database": cfg.database.name,
            "Role": cfg.database.owner,
            "Allowed network": cfg.access.allowed_cidr,
            "Operator account": cfg.account.name,
            "Password auth (SSH)": "disabled" if cfg.ssh.disable_password_auth else "unchanged",
        },
    )
