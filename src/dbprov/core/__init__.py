"""Core framework components for the database host provisioner."""

from dbprov.core.exceptions import (
    DbProvError,
    ConfigurationError,
    ValidationError,
    ExecutionError,
    PrerequisiteError,
    PostgresError,
    ServiceError,
    CredentialError,
    MissingSecretError,
    VerificationError,
)

from dbprov.core.context import ExecutionContext, create_context
from dbprov.core.output import console, Console, Verbosity
from dbprov.core.config import AppConfig, ProvisionConfig
from dbprov.core.safety import PreflightRunner, run_preflight_checks
from dbprov.core.credentials import CredentialResolver, resolve_db_password, resolve_public_key
from dbprov.core.audit import AuditLogger, AuditEvent, AuditEventType, AuditResult, get_audit_logger
from dbprov.core.executor import CommandExecutor, CommandResult

__all__ = [
    # Exceptions
    "DbProvError",
    "ConfigurationError",
    "ValidationError",
    "ExecutionError",
    "PrerequisiteError",
    "PostgresError",
    "ServiceError",
    "CredentialError",
    "MissingSecretError",
    "VerificationError",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "ProvisionConfig",
    # Safety
    "PreflightRunner",
    "run_preflight_checks",
    # Credentials
    "CredentialResolver",
    "resolve_db_password",
    "resolve_public_key",
    # Audit
    "AuditLogger",
    "AuditEvent",
    "AuditEventType",
    "AuditResult",
    "get_audit_logger",
    # Executor
    "CommandExecutor",
    "CommandResult",
]
