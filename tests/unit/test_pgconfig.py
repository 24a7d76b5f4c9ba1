"""Unit tests for postgresql.conf / pg_hba.conf patching."""

import pytest

from dbprov.core.config import AccessConfig, PostgresConfig
from dbprov.core.context import ExecutionContext
from dbprov.core.exceptions import PostgresError, ValidationError
from dbprov.core.executor import CommandExecutor
from dbprov.services.pgconfig import (
    HBA_COMMENT,
    PostgresConfigPatcher,
    ensure_hba_entry,
    format_hba_entry,
    has_hba_entry,
    read_setting,
    replace_lines,
    set_listen_addresses,
)


STOCK_POSTGRESQL_CONF = """\
# - Connection Settings -

#listen_addresses = 'localhost'\t\t# what IP address(es) to listen on;
\t\t\t\t\t# comma-separated list of addresses;
#port = 5432\t\t\t\t# (change requires restart)
max_connections = 100\t\t\t# (change requires restart)
"""

STOCK_HBA_CONF = """\
# TYPE  DATABASE        USER            ADDRESS                 METHOD

# "local" is for Unix domain socket connections only
local   all             all                                     peer
# IPv4 local connections:
host    all             all             127.0.0.1/32            ident
"""

VPC_ENTRY = "host    all             all             10.0.0.0/16             md5"


class TestReplaceLines:
    """Tests for the line replacement helper."""

    def test_replaces_matching_lines(self):
        text = "a = 1\nb = 2\na = 3\n"
        updated, count = replace_lines(text, r"^a\s*=", "a = 9")
        assert updated == "a = 9\nb = 2\na = 9\n"
        assert count == 2

    def test_identical_line_not_counted(self):
        updated, count = replace_lines("a = 9\n", r"^a\s*=", "a = 9")
        assert updated == "a = 9\n"
        assert count == 0

    def test_keeps_crlf(self):
        updated, _ = replace_lines("a = 1\r\n", r"^a", "a = 2")
        assert updated == "a = 2\r\n"


class TestSetListenAddresses:
    """Tests for the listen_addresses edit."""

    def test_uncomments_stock_setting(self):
        updated, changed = set_listen_addresses(STOCK_POSTGRESQL_CONF)
        assert changed
        assert "listen_addresses = '*'\n" in updated
        assert "#listen_addresses" not in updated
        assert read_setting(updated, "listen_addresses") == "*"

    def test_other_lines_untouched(self):
        updated, _ = set_listen_addresses(STOCK_POSTGRESQL_CONF)
        assert "#port = 5432" in updated
        assert "max_connections = 100" in updated
        assert len(updated.splitlines()) == len(STOCK_POSTGRESQL_CONF.splitlines())

    def test_idempotent(self):
        once, _ = set_listen_addresses(STOCK_POSTGRESQL_CONF)
        twice, changed = set_listen_addresses(once)
        assert twice == once
        assert not changed

    def test_rewrites_active_setting(self):
        """An explicit non-wildcard value is replaced, wherever it sits."""
        text = "listen_addresses = 'localhost'\nport = 5432\nlisten_addresses='10.0.0.5'\n"
        updated, changed = set_listen_addresses(text)
        assert changed
        assert updated == "listen_addresses = '*'\nport = 5432\nlisten_addresses = '*'\n"

    def test_ignores_commented_when_active_exists(self):
        text = "#listen_addresses = 'localhost'\nlisten_addresses = 'localhost'\n"
        updated, _ = set_listen_addresses(text)
        assert updated == "#listen_addresses = 'localhost'\nlisten_addresses = '*'\n"

    def test_appends_when_absent(self):
        updated, changed = set_listen_addresses("port = 5432")
        assert changed
        assert updated == "port = 5432\nlisten_addresses = '*'\n"

    def test_custom_value(self):
        updated, _ = set_listen_addresses(STOCK_POSTGRESQL_CONF, "10.0.1.20")
        assert read_setting(updated, "listen_addresses") == "10.0.1.20"


class TestEnsureHbaEntry:
    """Tests for the pg_hba.conf edit."""

    def test_format(self):
        assert format_hba_entry("10.0.0.0/16", "md5") == VPC_ENTRY

    def test_appends_to_stock_file(self):
        updated, changed = ensure_hba_entry(STOCK_HBA_CONF, "10.0.0.0/16")
        assert changed
        assert updated == STOCK_HBA_CONF + f"\n{HBA_COMMENT}\n{VPC_ENTRY}\n"

    def test_idempotent(self):
        """Re-running never duplicates the entry."""
        once, _ = ensure_hba_entry(STOCK_HBA_CONF, "10.0.0.0/16")
        twice, changed = ensure_hba_entry(once, "10.0.0.0/16")
        assert twice == once
        assert not changed
        assert twice.count("10.0.0.0/16") == 1

    def test_existing_entry_with_other_spacing(self):
        text = STOCK_HBA_CONF + "host all all 10.0.0.0/16 md5\n"
        updated, changed = ensure_hba_entry(text, "10.0.0.0/16")
        assert updated == text
        assert not changed

    def test_rewrites_other_method(self):
        """pg_hba.conf is first-match, so a conflicting rule is replaced."""
        text = STOCK_HBA_CONF + "host    all    all    10.0.0.0/16    trust\n"
        updated, changed = ensure_hba_entry(text, "10.0.0.0/16")
        assert changed
        assert "trust" not in updated
        assert updated.endswith(VPC_ENTRY + "\n")
        assert HBA_COMMENT not in updated

    def test_commented_entry_does_not_count(self):
        text = STOCK_HBA_CONF + "# host all all 10.0.0.0/16 md5\n"
        updated, changed = ensure_hba_entry(text, "10.0.0.0/16")
        assert changed
        assert has_hba_entry(updated, "10.0.0.0/16", "md5")

    def test_other_networks_untouched(self):
        text = STOCK_HBA_CONF + "host all all 172.31.0.0/16 md5\n"
        updated, _ = ensure_hba_entry(text, "10.0.0.0/16")
        assert "host all all 172.31.0.0/16 md5\n" in updated
        assert has_hba_entry(updated, "10.0.0.0/16", "md5")

    def test_missing_trailing_newline(self):
        updated, _ = ensure_hba_entry("local all all peer", "10.0.0.0/16")
        assert updated == f"local all all peer\n\n{HBA_COMMENT}\n{VPC_ENTRY}\n"

    def test_invalid_cidr(self):
        with pytest.raises(ValidationError):
            ensure_hba_entry(STOCK_HBA_CONF, "10.0.0.0/33")


class TestReadSetting:
    """Tests for reading postgresql.conf values."""

    def test_quoted_value(self):
        assert read_setting("listen_addresses = '*'\t# comment\n", "listen_addresses") == "*"

    def test_bare_value(self):
        assert read_setting("port = 5433\n", "port") == "5433"

    def test_commented_ignored(self):
        assert read_setting(STOCK_POSTGRESQL_CONF, "listen_addresses") is None

    def test_last_value_wins(self):
        assert read_setting("port = 5432\nport = 6432\n", "port") == "6432"


class TestPostgresConfigPatcher:
    """Tests for applying the edits to files on disk."""

    @pytest.fixture
    def data_dir(self, tmp_path):
        (tmp_path / "postgresql.conf").write_text(STOCK_POSTGRESQL_CONF)
        (tmp_path / "pg_hba.conf").write_text(STOCK_HBA_CONF)
        return tmp_path

    def make_patcher(self, data_dir, dry_run=False):
        ctx = ExecutionContext(dry_run=dry_run)
        return PostgresConfigPatcher(
            ctx,
            CommandExecutor(ctx),
            PostgresConfig(data_dir=data_dir),
            AccessConfig(),
        )

    def test_apply_patches_both_files(self, data_dir):
        changed = self.make_patcher(data_dir).apply()

        assert changed == [data_dir / "postgresql.conf", data_dir / "pg_hba.conf"]
        assert read_setting((data_dir / "postgresql.conf").read_text(), "listen_addresses") == "*"
        assert has_hba_entry((data_dir / "pg_hba.conf").read_text(), "10.0.0.0/16", "md5")

    def test_backups_hold_original_content(self, data_dir):
        self.make_patcher(data_dir).apply()
        assert (data_dir / "postgresql.conf.backup").read_text() == STOCK_POSTGRESQL_CONF
        assert (data_dir / "pg_hba.conf.backup").read_text() == STOCK_HBA_CONF

    def test_second_run_changes_nothing(self, data_dir):
        """A converged file is neither rewritten nor backed up again."""
        self.make_patcher(data_dir).apply()
        patched = (data_dir / "pg_hba.conf").read_text()

        assert self.make_patcher(data_dir).apply() == []
        assert (data_dir / "pg_hba.conf").read_text() == patched
        assert (data_dir / "pg_hba.conf.backup").read_text() == STOCK_HBA_CONF

    def test_preserves_mode(self, data_dir):
        conf = data_dir / "postgresql.conf"
        conf.chmod(0o600)
        self.make_patcher(data_dir).apply()
        assert conf.stat().st_mode & 0o777 == 0o600

    def test_missing_file(self, tmp_path):
        with pytest.raises(PostgresError) as exc:
            self.make_patcher(tmp_path).apply()
        assert "postgresql.conf" in str(exc.value)
        assert "--initdb" in exc.value.hint

    def test_dry_run_leaves_files(self, data_dir):
        changed = self.make_patcher(data_dir, dry_run=True).apply()
        assert len(changed) == 2
        assert (data_dir / "postgresql.conf").read_text() == STOCK_POSTGRESQL_CONF
        assert not (data_dir / "postgresql.conf.backup").exists()

    def test_dry_run_before_initdb(self, tmp_path):
        """Dry runs on a fresh host report the edits without failing."""
        changed = self.make_patcher(tmp_path, dry_run=True).apply()
        assert len(changed) == 2
        assert not (tmp_path / "pg_hba.conf").exists()
