"""Unit tests for the validation module."""

import pytest

from dbprov.core.validation import (
    validate_identifier,
    validate_os_username,
    validate_cidr,
    validate_port,
    validate_path,
    validate_public_key,
    validate_sudo_command,
    validate_password,
    MAX_IDENTIFIER_LENGTH,
    PG_RESERVED_WORDS,
)
from dbprov.core.exceptions import ValidationError


ED25519_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIGq8a4mB0u6yS5XkqQ3uY9pZ0b7r0v1v8d2x4c6e8f0a ops@bastion"


class TestValidateIdentifier:
    """Tests for PostgreSQL identifier validation."""

    def test_valid_identifier(self):
        """Valid identifiers should pass."""
        assert validate_identifier("techcorp_db") == "techcorp_db"
        assert validate_identifier("techcorp_user") == "techcorp_user"
        assert validate_identifier("users") == "users"
        assert validate_identifier("_private") == "_private"

    def test_empty_identifier(self):
        """Empty identifiers should fail."""
        with pytest.raises(ValidationError) as exc:
            validate_identifier("", "database")
        assert "Database name cannot be empty" in str(exc.value)

    def test_too_long_identifier(self):
        """Identifiers exceeding 63 chars should fail."""
        with pytest.raises(ValidationError) as exc:
            validate_identifier("a" * (MAX_IDENTIFIER_LENGTH + 1))
        assert "exceeds maximum length" in str(exc.value)

    def test_max_length_identifier(self):
        """Identifiers of exactly 63 chars should pass."""
        name = "a" * MAX_IDENTIFIER_LENGTH
        assert validate_identifier(name) == name

    def test_injection_attempt(self):
        """Quotes and statement separators are rejected."""
        for bad in ("db'; DROP TABLE users; --", 'role"x', "my-db", "1db", "db name"):
            with pytest.raises(ValidationError):
                validate_identifier(bad)

    def test_reserved_word(self):
        """Reserved words should fail with a suggestion."""
        assert "user" in PG_RESERVED_WORDS
        with pytest.raises(ValidationError) as exc:
            validate_identifier("user")
        assert "reserved word" in str(exc.value)
        assert "user_db" in exc.value.hint

    def test_reserved_word_case_insensitive(self):
        """Reserved word check ignores case."""
        with pytest.raises(ValidationError):
            validate_identifier("SELECT")


class TestValidateOsUsername:
    """Tests for OS account name validation."""

    def test_valid_names(self):
        assert validate_os_username("techcorp") == "techcorp"
        assert validate_os_username("db-admin") == "db-admin"
        assert validate_os_username("_svc") == "_svc"

    def test_root_refused(self):
        """The root account is never provisioned."""
        with pytest.raises(ValidationError) as exc:
            validate_os_username("root")
        assert "root" in str(exc.value)

    @pytest.mark.parametrize("name", ["", "TechCorp", "1user", "user name", "a" * 33, "user;id"])
    def test_invalid_names(self, name):
        with pytest.raises(ValidationError):
            validate_os_username(name)


class TestValidateCidr:
    """Tests for CIDR notation validation."""

    def test_valid_cidr(self):
        assert validate_cidr("10.0.0.0/16") == "10.0.0.0/16"
        assert validate_cidr("192.168.1.0/24") == "192.168.1.0/24"
        assert validate_cidr("10.0.1.15/32") == "10.0.1.15/32"

    def test_strips_whitespace(self):
        assert validate_cidr("  10.0.0.0/16 ") == "10.0.0.0/16"

    def test_ipv6_cidr(self):
        assert validate_cidr("fd00::/8") == "fd00::/8"

    def test_missing_prefix(self):
        """A bare address needs an explicit prefix length."""
        with pytest.raises(ValidationError) as exc:
            validate_cidr("10.0.0.5")
        assert "prefix length" in str(exc.value)
        assert "10.0.0.5/32" in exc.value.hint

    def test_garbage(self):
        with pytest.raises(ValidationError) as exc:
            validate_cidr("not-a-network")
        assert "Invalid CIDR" in str(exc.value)

    def test_open_world_rejected(self):
        """0.0.0.0/0 should fail unless explicitly allowed."""
        with pytest.raises(ValidationError) as exc:
            validate_cidr("0.0.0.0/0")
        assert "ANYWHERE" in str(exc.value)

    def test_open_world_allowed(self):
        assert validate_cidr("0.0.0.0/0", allow_any=True) == "0.0.0.0/0"


class TestValidatePort:
    """Tests for port validation."""

    def test_valid_ports(self):
        assert validate_port(5432) == 5432
        assert validate_port(1) == 1
        assert validate_port(65535) == 65535

    @pytest.mark.parametrize("port", [0, -1, 65536])
    def test_invalid_ports(self, port):
        with pytest.raises(ValidationError):
            validate_port(port)


class TestValidatePath:
    """Tests for path validation."""

    def test_valid_path(self):
        assert validate_path("/etc/sudoers.d/techcorp") == "/etc/sudoers.d/techcorp"

    def test_traversal(self):
        with pytest.raises(ValidationError) as exc:
            validate_path("/etc/../root")
        assert "dangerous pattern" in str(exc.value)

    def test_relative_path(self):
        with pytest.raises(ValidationError) as exc:
            validate_path("usr/bin/psql")
        assert "absolute" in str(exc.value)

    def test_relative_allowed(self):
        assert validate_path("usr/bin/psql", must_be_absolute=False) == "usr/bin/psql"


class TestValidatePublicKey:
    """Tests for OpenSSH public key validation."""

    def test_valid_key(self):
        assert validate_public_key(ED25519_KEY) == ED25519_KEY

    def test_key_without_comment(self):
        key = " ".join(ED25519_KEY.split()[:2])
        assert validate_public_key(key) == key

    def test_strips_surrounding_whitespace(self):
        assert validate_public_key(f"  {ED25519_KEY}\n") == ED25519_KEY

    def test_empty_key(self):
        with pytest.raises(ValidationError) as exc:
            validate_public_key("   ")
        assert "empty" in str(exc.value)

    def test_multiple_lines(self):
        """Only one key per run."""
        with pytest.raises(ValidationError) as exc:
            validate_public_key(f"{ED25519_KEY}\n{ED25519_KEY}")
        assert "single line" in str(exc.value)

    def test_incomplete_key(self):
        with pytest.raises(ValidationError) as exc:
            validate_public_key("ssh-ed25519")
        assert "incomplete" in str(exc.value)

    def test_unknown_type(self):
        with pytest.raises(ValidationError) as exc:
            validate_public_key("ssh-foo AAAAB3NzaC1yc2E= me")
        assert "Unsupported SSH key type" in str(exc.value)

    def test_options_prefix_rejected(self):
        """Keys carrying authorized_keys options are refused."""
        with pytest.raises(ValidationError):
            validate_public_key('from="10.0.0.1" ' + ED25519_KEY)

    def test_bad_base64(self):
        with pytest.raises(ValidationError) as exc:
            validate_public_key("ssh-rsa not*base64 me")
        assert "base64" in str(exc.value)


class TestValidateSudoCommand:
    """Tests for sudo command entry validation."""

    def test_valid_commands(self):
        assert validate_sudo_command("/bin/systemctl restart postgresql") == "/bin/systemctl restart postgresql"
        assert validate_sudo_command("/usr/bin/pg_dump") == "/usr/bin/pg_dump"

    def test_relative_command(self):
        with pytest.raises(ValidationError):
            validate_sudo_command("systemctl restart postgresql")

    @pytest.mark.parametrize("command", [
        "/bin/systemctl * postgresql",
        "/bin/systemctl restart postgresql, /bin/bash",
        "/usr/bin/psql ?",
        "/bin/systemctl restart [a-z]*",
        "!/bin/su",
    ])
    def test_forbidden_characters(self, command):
        """Wildcards and list separators could widen the grant."""
        with pytest.raises(ValidationError):
            validate_sudo_command(command)

    def test_shell_metacharacters(self):
        with pytest.raises(ValidationError) as exc:
            validate_sudo_command("/usr/bin/psql; rm -rf /")
        assert "dangerous pattern" in str(exc.value)


class TestValidatePassword:
    """Tests for password validation."""

    def test_any_printable_password(self):
        """Quotes and dollar signs are fine, the value is dollar-quoted."""
        password = "p'a$$w\"o$rd$"
        assert validate_password(password) == password

    def test_empty_password(self):
        with pytest.raises(ValidationError) as exc:
            validate_password("")
        assert "empty" in str(exc.value)

    def test_none_password(self):
        with pytest.raises(ValidationError):
            validate_password(None)

    @pytest.mark.parametrize("password", ["line1\nline2", "a\rb", "nul\x00byte"])
    def test_control_characters(self, password):
        with pytest.raises(ValidationError) as exc:
            validate_password(password, name="TECHCORP_DB_PASSWORD")
        assert "TECHCORP_DB_PASSWORD" in str(exc.value)
