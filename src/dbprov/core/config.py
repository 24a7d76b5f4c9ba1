"""Configuration management using Pydantic.

Provides:
- Typed configuration models with validation
- YAML file loading with defaults
- Environment variables for secrets
- Configuration initialization and display

Defaults reproduce the stock TechCorp database host layout, so a host can
be provisioned without any config file at all.
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dbprov.core.exceptions import ConfigurationError
from dbprov.core.validation import (
    validate_cidr,
    validate_identifier,
    validate_os_username,
    validate_port,
    validate_sudo_command,
)


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/dbprov/config.yaml")
DEFAULT_AUDIT_LOG = Path("/var/log/dbprov/audit.log")

PASSWORD_ENV = "TECHCORP_DB_PASSWORD"
PUBLIC_KEY_ENV = "TECHCORP_PUBLIC_KEY"


class PostgresConfig(BaseModel):
    """PostgreSQL packages, cluster location and service."""

    extras_topic: Optional[str] = "postgresql14"
    packages: list[str] = Field(default_factory=lambda: ["postgresql", "postgresql-server"])
    update_system: bool = True
    data_dir: Path = Path("/var/lib/pgsql/data")
    service: str = "postgresql"
    host: str = "localhost"
    port: int = 5432
    ready_timeout: int = 30
    poll_interval: float = 1.0

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        return validate_port(v)

    @field_validator("ready_timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v < 1:
            raise ValueError("ready_timeout must be at least 1 second")
        return v

    @property
    def postgresql_conf(self) -> Path:
        return self.data_dir / "postgresql.conf"

    @property
    def hba_conf(self) -> Path:
        return self.data_dir / "pg_hba.conf"


class AccessConfig(BaseModel):
    """Network access to the database server."""

    listen_addresses: str = "*"
    allowed_cidr: str = "10.0.0.0/16"
    auth_method: str = "md5"

    @field_validator("allowed_cidr")
    @classmethod
    def validate_allowed_cidr(cls, v: str) -> str:
        return validate_cidr(v)

    @field_validator("auth_method")
    @classmethod
    def validate_auth_method(cls, v: str) -> str:
        valid = {"md5", "scram-sha-256"}
        if v not in valid:
            raise ValueError(f"auth_method must be one of: {sorted(valid)}")
        return v


class SeedUser(BaseModel):
    """One row seeded into the application users table."""

    username: str
    email: str

    @field_validator("username", "email")
    @classmethod
    def validate_plain(cls, v: str) -> str:
        # Values are rendered inside single-quoted literals in bootstrap.sql.j2
        if not v or "'" in v or len(v) > 100:
            raise ValueError("seed values must be non-empty, quote-free and at most 100 chars")
        return v


def _default_seed_users() -> list[SeedUser]:
    return [
        SeedUser(username="admin", email="admin@techcorp.com"),
        SeedUser(username="user1", email="user1@techcorp.com"),
        SeedUser(username="user2", email="user2@techcorp.com"),
    ]


class DatabaseConfig(BaseModel):
    """Application database, role and sample table."""

    name: str = "techcorp_db"
    owner: str = "techcorp_user"
    table: str = "users"
    seed_users: list[SeedUser] = Field(default_factory=_default_seed_users)

    @field_validator("name", "owner", "table")
    @classmethod
    def validate_names(cls, v: str) -> str:
        return validate_identifier(v)


class AccountConfig(BaseModel):
    """Unprivileged OS account for database administration."""

    name: str = "techcorp"
    shell: str = "/bin/bash"
    home: Optional[Path] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_os_username(v)

    @property
    def home_dir(self) -> Path:
        return self.home or Path("/home") / self.name

    @property
    def ssh_dir(self) -> Path:
        return self.home_dir / ".ssh"


class SudoConfig(BaseModel):
    """Scoped sudo grant for the operator account."""

    sudoers_dir: Path = Path("/etc/sudoers.d")
    nopasswd_commands: list[str] = Field(default_factory=lambda: [
        "/bin/systemctl restart postgresql",
        "/bin/systemctl stop postgresql",
        "/bin/systemctl start postgresql",
        "/bin/systemctl status postgresql",
    ])
    password_commands: list[str] = Field(default_factory=lambda: [
        "/usr/bin/psql",
        "/usr/bin/pg_dump",
    ])

    @field_validator("nopasswd_commands", "password_commands")
    @classmethod
    def validate_commands(cls, v: list[str]) -> list[str]:
        return [validate_sudo_command(c) for c in v]


class SshConfig(BaseModel):
    """SSH daemon hardening."""

    sshd_config: Path = Path("/etc/ssh/sshd_config")
    service: str = "sshd"
    disable_password_auth: bool = True


class SecretStoreConfig(BaseModel):
    """External secret stores consulted after the environment.

    Both lookups are off by default; the environment variable is then the
    only source.
    """

    use_secrets_manager: bool = False
    secrets_manager_id: str = "techcorp-db-password"
    use_ssm: bool = False
    ssm_parameter: str = "/techcorp/db/password"
    region: Optional[str] = None


class ArtifactsConfig(BaseModel):
    """Files handed to the operator account."""

    test_script: str = "test_db_connection.sh"
    readme: str = "DATABASE_INFO.txt"
    log_file: Path = Path("/var/log/user-data.log")


class ProvisionConfig(BaseModel):
    """Root configuration model for one database host.

    Loaded from /etc/dbprov/config.yaml when present. Secrets are NOT
    stored in this file - they come from environment variables or an
    external secret store.
    """

    postgres: PostgresConfig = Field(default_factory=PostgresConfig)
    access: AccessConfig = Field(default_factory=AccessConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    account: AccountConfig = Field(default_factory=AccountConfig)
    sudo: SudoConfig = Field(default_factory=SudoConfig)
    ssh: SshConfig = Field(default_factory=SshConfig)
    secrets: SecretStoreConfig = Field(default_factory=SecretStoreConfig)
    artifacts: ArtifactsConfig = Field(default_factory=ArtifactsConfig)

    @classmethod
    def load(cls, path: Path) -> "ProvisionConfig":
        """Load configuration from YAML file.

        Raises:
            ConfigurationError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Create it with: dbprov config init",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions or run with sudo",
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration root must be a mapping: {path}",
            )

        try:
            return cls(**data)
        except Exception as e:
            raise ConfigurationError(
                f"Invalid configuration: {path}",
                details=[str(e)],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "ProvisionConfig":
        """Load configuration, falling back to defaults if file doesn't exist."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self) -> str:
        """Convert configuration to YAML string."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class SecretsConfig(BaseSettings):
    """Secrets loaded from environment variables.

    These are NEVER stored in config files.
    """

    db_password: Optional[str] = Field(None, alias=PASSWORD_ENV)
    public_key: Optional[str] = Field(None, alias=PUBLIC_KEY_ENV)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class AppConfig:
    """Config file plus environment secrets.

    This is the main interface for accessing configuration throughout the app.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[ProvisionConfig] = None,
        secrets: Optional[SecretsConfig] = None,
    ) -> None:
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = config or ProvisionConfig.load_or_default(self.config_path)
        self._secrets = secrets or SecretsConfig()

    @property
    def config(self) -> ProvisionConfig:
        return self._config

    @property
    def secrets(self) -> SecretsConfig:
        return self._secrets

    @property
    def postgres(self) -> PostgresConfig:
        return self._config.postgres

    @property
    def access(self) -> AccessConfig:
        return self._config.access

    @property
    def database(self) -> DatabaseConfig:
        return self._config.database

    @property
    def account(self) -> AccountConfig:
        return self._config.account

    @property
    def sudo(self) -> SudoConfig:
        return self._config.sudo

    @property
    def ssh(self) -> SshConfig:
        return self._config.ssh

    @property
    def secret_store(self) -> SecretStoreConfig:
        return self._config.secrets

    @property
    def artifacts(self) -> ArtifactsConfig:
        return self._config.artifacts

    @property
    def audit_log(self) -> Path:
        return DEFAULT_AUDIT_LOG


def get_example_config() -> str:
    """Generate example configuration file content."""
    return """# Database host provisioning configuration
# Secrets are loaded from the environment (TECHCORP_DB_PASSWORD,
# TECHCORP_PUBLIC_KEY) or an external secret store, NOT stored here.

postgres:
  extras_topic: postgresql14   # amazon-linux-extras topic, null to skip
  packages: [postgresql, postgresql-server]
  update_system: true
  data_dir: /var/lib/pgsql/data
  service: postgresql
  port: 5432
  ready_timeout: 30            # seconds to wait for pg_isready

access:
  listen_addresses: "*"
  allowed_cidr: 10.0.0.0/16    # application subnet
  auth_method: md5             # md5 or scram-sha-256

database:
  name: techcorp_db
  owner: techcorp_user
  table: users

account:
  name: techcorp
  shell: /bin/bash

sudo:
  nopasswd_commands:
    - /bin/systemctl restart postgresql
    - /bin/systemctl stop postgresql
    - /bin/systemctl start postgresql
    - /bin/systemctl status postgresql
  password_commands:
    - /usr/bin/psql
    - /usr/bin/pg_dump

ssh:
  sshd_config: /etc/ssh/sshd_config
  service: sshd
  disable_password_auth: true

secrets:
  use_secrets_manager: false
  secrets_manager_id: techcorp-db-password
  use_ssm: false
  ssm_parameter: /techcorp/db/password
  # region: us-east-1

artifacts:
  log_file: /var/log/user-data.log
"""


def init_config(path: Path, force: bool = False) -> None:
    """Write the example configuration file.

    Raises:
        ConfigurationError: If file exists and force is False
    """
    if path.exists() and not force:
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            hint="Use --force to overwrite",
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_example_config())
    os.chmod(path, 0o600)
