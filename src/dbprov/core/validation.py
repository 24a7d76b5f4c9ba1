"""Input validation utilities.

Validates everything that ends up interpolated into SQL, config files,
sudoers fragments or authorized_keys:
- PostgreSQL identifiers (database, role and table names)
- OS account names
- Network ranges (CIDR) and ports
- OpenSSH public keys
- Sudo command entries

All validators return the validated value or raise ValidationError.
"""

import ipaddress
import re
from typing import Optional

from dbprov.core.exceptions import ValidationError


# Reserved words that cannot be used unquoted as identifiers
PG_RESERVED_WORDS: frozenset[str] = frozenset({
    "all", "analyse", "analyze", "and", "any", "array", "as", "asc",
    "asymmetric", "authorization", "both", "case", "cast", "check",
    "collate", "column", "constraint", "create", "current_catalog",
    "current_date", "current_role", "current_time", "current_timestamp",
    "current_user", "default", "deferrable", "desc", "distinct", "do",
    "else", "end", "except", "false", "fetch", "for", "foreign", "from",
    "grant", "group", "having", "in", "initially", "intersect", "into",
    "lateral", "leading", "limit", "localtime", "localtimestamp", "not",
    "null", "offset", "on", "only", "or", "order", "placing", "primary",
    "references", "returning", "select", "session_user", "some",
    "symmetric", "system_user", "table", "then", "to", "trailing", "true",
    "union", "unique", "user", "using", "variadic", "when", "where",
    "window", "with",
})

IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
MAX_IDENTIFIER_LENGTH = 63

# useradd(8) NAME_REGEX default
OS_USER_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]*\$?$")
MAX_OS_USER_LENGTH = 32

SSH_KEY_TYPES: frozenset[str] = frozenset({
    "ssh-rsa",
    "ssh-dss",
    "ssh-ed25519",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
    "sk-ssh-ed25519@openssh.com",
    "sk-ecdsa-sha2-nistp256@openssh.com",
})

BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/]+={0,3}$")

# Characters sudoers treats specially inside a command entry
SUDO_FORBIDDEN_CHARS = ("*", "?", "[", "]", ",", ":", "=", "\\", "\n", "!")


def validate_identifier(value: str, identifier_type: str = "identifier") -> str:
    """Validate a PostgreSQL identifier (database, role or table name).

    Rules:
    - Must start with letter or underscore
    - Can contain letters, digits, underscores
    - Cannot be a reserved word
    - Max 63 characters

    Raises:
        ValidationError: If validation fails
    """
    if not value:
        raise ValidationError(
            f"{identifier_type.title()} name cannot be empty",
            hint="Provide a valid name",
        )

    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError(
            f"{identifier_type.title()} name exceeds maximum length "
            f"({len(value)} > {MAX_IDENTIFIER_LENGTH})",
            hint=f"Use a name with {MAX_IDENTIFIER_LENGTH} or fewer characters",
        )

    if not IDENTIFIER_PATTERN.match(value):
        raise ValidationError(
            f"Invalid {identifier_type} name: '{value}'",
            hint="Must start with a letter or underscore, contain only letters, digits, and underscores",
        )

    if value.lower() in PG_RESERVED_WORDS:
        raise ValidationError(
            f"'{value}' is a PostgreSQL reserved word",
            hint=f"Try '{value}_db' or '{value}_user' instead",
        )

    return value


def validate_os_username(value: str) -> str:
    """Validate a Linux account name as accepted by useradd."""
    if not value or len(value) > MAX_OS_USER_LENGTH or not OS_USER_PATTERN.match(value):
        raise ValidationError(
            f"Invalid OS account name: '{value}'",
            hint="Use lowercase letters, digits, '_' or '-', starting with a letter (max 32 chars)",
        )
    if value == "root":
        raise ValidationError(
            "Refusing to provision the root account",
            hint="Choose a dedicated, unprivileged account name",
        )
    return value


def validate_cidr(value: str, allow_any: bool = False) -> str:
    """Validate CIDR notation for network ranges.

    Args:
        value: CIDR string to validate (e.g., "10.0.0.0/16")
        allow_any: Permit 0.0.0.0/0 and ::/0

    Returns:
        The validated CIDR string

    Raises:
        ValidationError: If validation fails
    """
    value = value.strip()

    try:
        ipaddress.ip_network(value, strict=False)
    except ValueError as e:
        raise ValidationError(
            f"Invalid CIDR notation: {value}",
            hint="Use format like 10.0.0.0/16 or 192.168.1.0/24",
            details=[str(e)],
        ) from e

    if "/" not in value:
        raise ValidationError(
            f"CIDR must include a prefix length: {value}",
            hint=f"Use {value}/32 for a single host",
        )

    if not allow_any and value in ("0.0.0.0/0", "::/0"):
        raise ValidationError(
            f"'{value}' allows database access from ANYWHERE",
            hint="Use your VPC CIDR or specific application subnets",
        )

    return value


def validate_port(value: int) -> int:
    """Validate a TCP port number."""
    if not 1 <= value <= 65535:
        raise ValidationError(
            f"Invalid port number: {value}",
            hint="Port must be between 1 and 65535",
        )
    return value


def validate_path(value: str, must_be_absolute: bool = True) -> str:
    """Validate a filesystem path, rejecting traversal and shell metacharacters."""
    for pattern in ("..", "$", "`", "|", ";", "&", "\n", "\r", "\x00"):
        if pattern in value:
            raise ValidationError(
                f"Path contains dangerous pattern: {repr(pattern)}",
                hint="Use a simple path without special characters",
            )

    if must_be_absolute and not value.startswith("/"):
        raise ValidationError(
            f"Path must be absolute: {value}",
            hint=f"Use /{value}",
        )

    return value


def validate_public_key(value: str) -> str:
    """Validate a single OpenSSH public key line.

    Accepts ``<type> <base64> [comment]``. Options prefixes (``from=...``)
    are rejected so the key cannot widen its own access.

    Returns:
        The key with surrounding whitespace stripped

    Raises:
        ValidationError: If the key is malformed
    """
    key = value.strip()

    if not key:
        raise ValidationError("SSH public key is empty")

    if "\n" in key or "\r" in key:
        raise ValidationError(
            "SSH public key must be a single line",
            hint="Provide exactly one key per provisioning run",
        )

    parts = key.split()
    if len(parts) < 2:
        raise ValidationError(
            "SSH public key is incomplete",
            hint="Expected format: ssh-ed25519 AAAA... comment",
        )

    key_type, key_body = parts[0], parts[1]
    if key_type not in SSH_KEY_TYPES:
        raise ValidationError(
            f"Unsupported SSH key type: {key_type}",
            hint=f"Supported: {', '.join(sorted(SSH_KEY_TYPES))}",
        )

    if not BASE64_PATTERN.match(key_body):
        raise ValidationError(
            "SSH public key body is not valid base64",
            details=[f"Key type: {key_type}"],
        )

    return key


def validate_sudo_command(value: str) -> str:
    """Validate one fully enumerated sudo command entry.

    The command must be an absolute path with literal arguments only, so
    the resulting grant cannot match more than the listed invocation.
    """
    command = value.strip()
    validate_path(command.split()[0] if command else "")

    for char in SUDO_FORBIDDEN_CHARS:
        if char in command:
            raise ValidationError(
                f"Sudo command contains forbidden character {char!r}: {command}",
                hint="List each command explicitly, without wildcards or aliases",
            )

    return command


def validate_password(password: Optional[str], name: str = "password") -> str:
    """Validate a secret that will be embedded in SQL.

    The value is dollar-quoted, so only emptiness and control characters
    are rejected.
    """
    if not password:
        raise ValidationError(f"The {name} is empty")

    if any(c in password for c in ("\x00", "\n", "\r")):
        raise ValidationError(
            f"The {name} contains control characters",
            hint="Use a single-line value without NUL bytes",
        )

    return password
