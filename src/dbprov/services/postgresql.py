"""PostgreSQL cluster and bootstrap operations.

Provides cluster initialization, readiness polling and the convergent
database / role / table bootstrap. All SQL runs as the postgres OS user
through psql. Statements that carry the role password are never echoed.
"""

import secrets
import time
from pathlib import Path
from typing import Callable, Optional

from dbprov.core.config import DatabaseConfig, PostgresConfig
from dbprov.core.context import ExecutionContext
from dbprov.core.exceptions import ExecutionError, PostgresError, ServiceError
from dbprov.core.executor import CommandExecutor
from dbprov.core.rendering import render
from dbprov.core.validation import validate_identifier, validate_password


def _unique_dollar_tag(avoid: str) -> str:
    """Generate a dollar-quote tag that does not occur in ``avoid``."""
    while True:
        tag = f"p{secrets.token_hex(4)}"
        if f"${tag}$" not in avoid:
            return tag


def build_role_sql(role: str, password: str) -> str:
    """Create-or-update a login role in one DO block.

    The password is dollar-quoted under a random tag so it needs no
    escaping, and is stored as a SCRAM verifier.
    """
    role = validate_identifier(role, "role")
    password = validate_password(password)

    body_tag = _unique_dollar_tag(password)
    pw_tag = _unique_dollar_tag(password + body_tag)
    quoted = f"${pw_tag}${password}${pw_tag}$"

    return (
        "SET password_encryption = 'scram-sha-256';\n"
        f"DO ${body_tag}$\n"
        "BEGIN\n"
        f"    IF EXISTS (SELECT FROM pg_catalog.pg_roles WHERE rolname = '{role}') THEN\n"
        f'        ALTER ROLE "{role}" WITH LOGIN PASSWORD {quoted};\n'
        "    ELSE\n"
        f'        CREATE ROLE "{role}" WITH LOGIN PASSWORD {quoted};\n'
        "    END IF;\n"
        "END\n"
        f"${body_tag}$;"
    )


def build_bootstrap_sql(database: DatabaseConfig) -> str:
    """Render the table, seed rows and grants for the application database."""
    return render(
        "postgresql/bootstrap.sql.j2",
        table=validate_identifier(database.table, "table"),
        owner=validate_identifier(database.owner, "role"),
        seed_users=database.seed_users,
    )


class PostgreSQLService:
    """Operations against the local PostgreSQL server.

    Existence checks run even in dry-run mode (they are read-only); on a
    host without a running server they report "absent", so a dry run
    shows the full set of statements a first run would execute.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        config: PostgresConfig,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.config = config

    # =========================================================================
    # Cluster
    # =========================================================================

    @property
    def version_file(self) -> Path:
        return self.config.data_dir / "PG_VERSION"

    def is_initialized(self) -> bool:
        return self.version_file.exists()

    def init_cluster(self) -> bool:
        """Initialize the data directory unless it already holds a cluster.

        Returns:
            True if initdb ran (or would run in dry-run)
        """
        if self.is_initialized():
            self.ctx.console.info(f"Cluster already initialized in {self.config.data_dir}")
            return False

        try:
            self.executor.run(
                ["postgresql-setup", "--initdb"],
                description=f"Initializing cluster in {self.config.data_dir}",
            )
        except ExecutionError as e:
            raise PostgresError(
                "Cluster initialization failed",
                details=e.details,
                hint="Check /var/lib/pgsql/initdb_postgresql.log",
            ) from e
        return True

    def is_ready(self) -> bool:
        try:
            result = self.executor.run(
                ["pg_isready", "-h", self.config.host, "-p", str(self.config.port)],
                check=False,
                read_only=True,
            )
        except ExecutionError:
            return False
        return result.success

    def wait_until_ready(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> float:
        """Poll pg_isready until the server accepts connections.

        Returns:
            Seconds waited

        Raises:
            ServiceError: If the server is not ready within ready_timeout
        """
        timeout = self.config.ready_timeout
        self.ctx.console.step(f"Waiting for PostgreSQL to accept connections (up to {timeout}s)")

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(
                f"Poll pg_isready every {self.config.poll_interval}s for up to {timeout}s"
            )
            return 0.0

        start = clock()
        deadline = start + timeout
        while True:
            if self.is_ready():
                waited = clock() - start
                self.ctx.console.debug(f"PostgreSQL ready after {waited:.1f}s")
                return waited
            if clock() >= deadline:
                raise ServiceError(
                    f"PostgreSQL not ready after {timeout}s",
                    service=self.config.service,
                    hint=f"Check logs: journalctl -xeu {self.config.service}",
                )
            sleep(self.config.poll_interval)

    def server_version(self) -> Optional[str]:
        """Return the ``psql --version`` banner, or None if psql is missing."""
        try:
            result = self.executor.run(["psql", "--version"], check=False, read_only=True)
        except ExecutionError:
            return None
        return result.stdout.strip() or None

    # =========================================================================
    # Bootstrap
    # =========================================================================

    def database_exists(self, name: str) -> bool:
        name = validate_identifier(name, "database")
        return self.executor.query_sql(f"SELECT 1 FROM pg_database WHERE datname = '{name}'") == "1"

    def role_exists(self, name: str) -> bool:
        name = validate_identifier(name, "role")
        return self.executor.query_sql(f"SELECT 1 FROM pg_roles WHERE rolname = '{name}'") == "1"

    def ensure_database(self, name: str) -> bool:
        """Create the database if it is missing.

        CREATE DATABASE cannot run inside a transaction block, so it is
        always issued on its own.

        Returns:
            True if the database was created
        """
        name = validate_identifier(name, "database")
        if self.database_exists(name):
            self.ctx.console.info(f"Database '{name}' already exists")
            return False

        self.executor.run_sql(f'CREATE DATABASE "{name}"', description=f"Creating database '{name}'")
        return True

    def ensure_role(self, name: str, password: str) -> bool:
        """Create the login role, or reset its password if it exists.

        Returns:
            True if the role was created
        """
        existed = self.role_exists(name)
        self.executor.run_sql(
            build_role_sql(name, password),
            description=f"{'Updating' if existed else 'Creating'} role '{name}'",
            sensitive=True,
        )
        return not existed

    def grant_database(self, database: str, role: str) -> None:
        database = validate_identifier(database, "database")
        role = validate_identifier(role, "role")
        self.executor.run_sql(
            f'GRANT ALL PRIVILEGES ON DATABASE "{database}" TO "{role}"',
            description=f"Granting '{role}' all privileges on '{database}'",
        )

    def bootstrap_schema(self, database: DatabaseConfig) -> None:
        """Create the sample table, seed it and grant the role access."""
        self.executor.run_sql(
            build_bootstrap_sql(database),
            database=database.name,
            description=f"Bootstrapping table '{database.table}' in '{database.name}'",
        )

    def bootstrap(self, database: DatabaseConfig, password: str) -> dict[str, bool]:
        """Converge database, role, grants and table.

        Returns:
            Which objects were newly created
        """
        created_db = self.ensure_database(database.name)
        created_role = self.ensure_role(database.owner, password)
        self.grant_database(database.name, database.owner)
        self.bootstrap_schema(database)
        return {"database": created_db, "role": created_role}

    def table_usernames(self, database: str, table: str) -> Optional[list[str]]:
        """Usernames stored in the sample table, in insertion order.

        Returns:
            None if the table cannot be queried
        """
        database = validate_identifier(database, "database")
        table = validate_identifier(table, "table")
        output = self.executor.query_sql(f'SELECT username FROM "{table}" ORDER BY id', database=database)
        if output is None:
            return None
        return [line for line in output.splitlines() if line]
