"""Main CLI entry point using Typer.

This module defines the root CLI application, the shared options and the
provision / verify / config commands.
"""

import sys
from pathlib import Path
from typing import Optional, Annotated

import typer
from rich.console import Console

from dbprov import __version__
from dbprov.core.audit import AuditEventType, configure_audit_logger
from dbprov.core.config import (
    DEFAULT_CONFIG_PATH,
    PASSWORD_ENV,
    PUBLIC_KEY_ENV,
    AppConfig,
    get_example_config,
    init_config,
)
from dbprov.core.context import ExecutionContext, create_context
from dbprov.core.exceptions import DbProvError, PrerequisiteError
from dbprov.core.output import console as app_console


app = typer.Typer(
    name="dbprov",
    help="Database host provisioner - PostgreSQL server setup for RHEL / Amazon Linux.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

config_app = typer.Typer(
    name="config",
    help="Configuration management.",
    no_args_is_help=True,
)

app.add_typer(config_app, name="config")


# Type aliases for common options
DryRunOption = Annotated[
    bool,
    typer.Option(
        "--dry-run",
        help="Preview changes without executing. Shows what would happen.",
        is_flag=True,
    ),
]

YesOption = Annotated[
    bool,
    typer.Option(
        "--yes",
        "-y",
        help="Skip confirmation prompts (required when run unattended).",
        is_flag=True,
    ),
]

ForceOption = Annotated[
    bool,
    typer.Option(
        "--force",
        "-f",
        help="Overwrite an existing file.",
        is_flag=True,
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase output verbosity. Can be repeated (-v, -vv).",
    ),
]

QuietOption = Annotated[
    bool,
    typer.Option(
        "--quiet",
        "-q",
        help="Suppress non-essential output. Only show errors.",
        is_flag=True,
    ),
]

NoColorOption = Annotated[
    bool,
    typer.Option(
        "--no-color",
        help="Disable colored output.",
        is_flag=True,
    ),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Path to configuration file. Default: {DEFAULT_CONFIG_PATH}",
        exists=False,
        file_okay=True,
        dir_okay=False,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console = Console()
        console.print(f"dbprov version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Database host provisioner.

    Installs PostgreSQL, opens it to the application network, bootstraps
    the application database and role, and sets up a locked-down operator
    account.

    [bold]Examples:[/bold]
        TECHCORP_DB_PASSWORD=... sudo -E dbprov provision -y
        dbprov provision --dry-run
        sudo dbprov verify
        dbprov config show
    """
    pass


def get_context(
    dry_run: bool = False,
    yes: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Create execution context from CLI options."""
    return create_context(
        dry_run=dry_run,
        yes=yes,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=config,
    )


def stdin_is_tty() -> bool:
    return sys.stdin.isatty()


def handle_error(error: DbProvError) -> None:
    """Handle a DbProvError by printing formatted error and exiting."""
    app_console.error(error.message)

    for detail in error.details:
        app_console.detail(detail)

    if error.hint:
        app_console.hint(error.hint)

    raise typer.Exit(error.exit_code)


# ============================================================================
# Provisioning
# ============================================================================

@app.command("provision")
def provision_cmd(
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Provision this host as the PostgreSQL database server.

    Runs, in order:
    - Credential check (TECHCORP_DB_PASSWORD must be set)
    - Pre-flight checks (root, OS family, disk space)
    - Package install and cluster initialization
    - listen_addresses / pg_hba.conf configuration
    - Service start, enable and readiness wait
    - Database, role, table and seed rows
    - Operator account with SSH key
    - SSH password auth off, scoped sudoers
    - Connection test script and README

    Every step checks the host first, so re-running is safe.

    [bold]Examples:[/bold]

        # Unattended (instance user data)
        TECHCORP_DB_PASSWORD=... TECHCORP_PUBLIC_KEY="ssh-ed25519 ..." sudo -E dbprov provision -y

        # Preview what would happen
        TECHCORP_DB_PASSWORD=x dbprov provision --dry-run
    """
    from dbprov.commands.provision import resolve_credentials, run_provision, show_summary

    ctx = get_context(
        dry_run=dry_run,
        yes=yes,
        verbose=verbose,
        quiet=quiet,
        config=config,
        no_color=no_color,
    )

    try:
        app_config = ctx.config
    except DbProvError as e:
        handle_error(e)
        return

    audit = configure_audit_logger(app_config.audit_log)
    audit.log_session_start("provision", sys.argv[1:])

    # Fail before prompting or touching the host
    try:
        with audit.step(AuditEventType.SECRET_RESOLVE, PASSWORD_ENV, dry_run=dry_run):
            creds = resolve_credentials(ctx)
    except DbProvError as e:
        audit.log_session_end(e.exit_code)
        handle_error(e)
        return

    ctx.console.print()
    ctx.console.print("[bold]Database Server Provisioning[/bold]")
    ctx.console.print(f"  Database:         {app_config.database.name}")
    ctx.console.print(f"  Role:             {app_config.database.owner}")
    ctx.console.print(f"  Allowed network:  {app_config.access.allowed_cidr}")
    ctx.console.print(f"  Operator account: {app_config.account.name}")
    ctx.console.print()

    if not yes and not dry_run:
        if not stdin_is_tty():
            error = PrerequisiteError(
                "Confirmation required but stdin is not a terminal",
                hint="Re-run with -y (--yes) for unattended provisioning",
            )
            audit.log_session_end(error.exit_code)
            handle_error(error)
            return
        if not ctx.console.confirm("Proceed with provisioning?"):
            ctx.console.warn("Operation cancelled")
            audit.log_session_end(1)
            raise typer.Exit(1)

    try:
        results = run_provision(ctx, creds=creds)
    except DbProvError as e:
        audit.log_session_end(e.exit_code)
        handle_error(e)
        return

    audit.log_session_end(0)
    show_summary(ctx, results)
    if dry_run:
        ctx.console.info("Dry run complete - no changes were made")
    else:
        ctx.console.success("Database server setup completed")


@app.command("verify")
def verify_cmd(
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Check that this host is provisioned as configured.

    Read-only. Exits non-zero when any check fails.

    [bold]Examples:[/bold]

        sudo dbprov verify
    """
    from dbprov.commands.verify import run_verify

    ctx = get_context(verbose=verbose, quiet=quiet, config=config, no_color=no_color)

    try:
        configure_audit_logger(ctx.config.audit_log)
        run_verify(ctx)
    except DbProvError as e:
        handle_error(e)


# ============================================================================
# Config commands
# ============================================================================

@config_app.command("show")
def config_show(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show current configuration.

    Displays the loaded configuration (defaults when no file exists).
    Secrets are not shown.
    """
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        app_config = ctx.config

        ctx.console.print()
        ctx.console.print(f"[bold]Configuration file:[/bold] {ctx.config_path}")
        ctx.console.print(f"[bold]File exists:[/bold] {ctx.config_path.exists()}")
        ctx.console.print()

        ctx.console.yaml(app_config.config.to_yaml(), title="Configuration")

        ctx.console.summary("Secrets (from environment)", {
            PASSWORD_ENV: "Set" if app_config.secrets.db_password else "Not set",
            PUBLIC_KEY_ENV: "Set" if app_config.secrets.public_key else "Not set",
        })

    except DbProvError as e:
        handle_error(e)


@config_app.command("init")
def config_init(
    config: ConfigOption = None,
    force: ForceOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Initialize a new configuration file.

    Creates a configuration file with the stock defaults and comments.
    """
    ctx = get_context(no_color=no_color, config=config)

    try:
        init_config(ctx.config_path, force=force)
        ctx.console.success(f"Configuration file created: {ctx.config_path}")
        ctx.console.info("Edit the file to customize settings, then run: dbprov provision")
        ctx.console.hint(f"Set secrets via environment variables ({PASSWORD_ENV}, {PUBLIC_KEY_ENV})")

    except DbProvError as e:
        handle_error(e)


@config_app.command("validate")
def config_validate(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Validate configuration file.

    Checks that the configuration file exists, is valid YAML,
    and all values pass validation.
    """
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        from dbprov.core.config import ProvisionConfig

        # Raises ConfigurationError if missing or invalid
        loaded = ProvisionConfig.load(ctx.config_path)
        app_config = AppConfig(config_path=ctx.config_path, config=loaded)

        ctx.console.success(f"Configuration is valid: {ctx.config_path}")

        if ctx.is_verbose:
            ctx.console.yaml(app_config.config.to_yaml())

        warnings = []
        if not app_config.secrets.db_password and not (
            app_config.secret_store.use_secrets_manager or app_config.secret_store.use_ssm
        ):
            warnings.append(f"{PASSWORD_ENV} not set and no secret store enabled")
        if not app_config.secrets.public_key:
            warnings.append(f"{PUBLIC_KEY_ENV} not set; operator SSH key must be provisioned separately")

        if warnings:
            ctx.console.print()
            for warning in warnings:
                ctx.console.warn(warning)

    except DbProvError as e:
        handle_error(e)


@config_app.command("example")
def config_example(no_color: NoColorOption = False) -> None:
    """Print example configuration file.

    Outputs a complete example configuration with comments.
    """
    ctx = get_context(no_color=no_color)
    ctx.console.print(get_example_config(), markup=False)


if __name__ == "__main__":
    app()
