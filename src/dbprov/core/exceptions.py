"""Custom exceptions for the database host provisioner.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- Exit codes for proper shell integration
"""

from typing import Optional


class DbProvError(Exception):
    """Base exception for all provisioning errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        exit_code: Shell exit code (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class ConfigurationError(DbProvError):
    """Configuration file or settings errors.

    Raised when:
    - Config file unreadable
    - Invalid YAML syntax
    - Invalid configuration values
    """
    exit_code = 2


class ValidationError(DbProvError):
    """Input validation errors.

    Raised when:
    - Invalid PostgreSQL identifiers
    - Invalid CIDR notation
    - Malformed SSH public key
    - Sudoers fragment rejected by visudo
    """
    exit_code = 3


class ExecutionError(DbProvError):
    """Command execution failures.

    Raised when:
    - Shell command returns non-zero exit code
    - Command times out
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr.strip()}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class PrerequisiteError(DbProvError):
    """Missing prerequisites.

    Raised when:
    - Not running as root
    - Unsupported OS
    - Insufficient disk space
    """
    exit_code = 6


class PostgresError(DbProvError):
    """PostgreSQL-specific errors.

    Raised when:
    - Cluster initialization fails
    - Bootstrap SQL fails
    """
    exit_code = 10


class ServiceError(DbProvError):
    """Systemd service errors.

    Raised when:
    - Start/stop/restart fails
    - Service never becomes ready
    """
    exit_code = 13

    def __init__(
        self,
        message: str,
        *,
        service: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.service = service


class CredentialError(DbProvError):
    """Credential resolution errors."""
    exit_code = 14


class MissingSecretError(CredentialError):
    """A required secret could not be resolved from any source."""
    exit_code = 1


class VerificationError(DbProvError):
    """Post-provisioning verification found mismatches."""
    exit_code = 20
