"""Unit tests for the systemd and package services."""

from unittest.mock import MagicMock, patch

import pytest

from dbprov.core.config import PostgresConfig
from dbprov.core.context import ExecutionContext
from dbprov.core.exceptions import ExecutionError, ServiceError
from dbprov.core.executor import CommandResult
from dbprov.services.packages import PackageService
from dbprov.services.systemd import SystemdService


def result(return_code: int = 0) -> CommandResult:
    return CommandResult(command=[], return_code=return_code, stdout="", stderr="")


@pytest.fixture
def executor() -> MagicMock:
    return MagicMock()


class TestSystemdService:
    """Tests for systemctl wrapping."""

    def test_status(self, executor):
        executor.run.side_effect = [result(0), result(1)]
        status = SystemdService(ExecutionContext(), executor).status("postgresql")
        assert status.active is True
        assert status.enabled is False

    def test_query_is_read_only(self, executor):
        executor.run.return_value = result(0)
        SystemdService(ExecutionContext(), executor).is_active("postgresql")
        args, kwargs = executor.run.call_args
        assert args[0] == ["systemctl", "is-active", "--quiet", "postgresql"]
        assert kwargs["read_only"] is True

    def test_query_error_is_false(self, executor):
        executor.run.side_effect = ExecutionError("Command not found: systemctl")
        assert SystemdService(ExecutionContext(), executor).is_enabled("postgresql") is False

    def test_ensure_running_from_stopped(self, executor):
        """A stopped, disabled unit is started and enabled."""
        service = SystemdService(ExecutionContext(), executor)
        with patch.object(service, "is_active", return_value=False), \
                patch.object(service, "is_enabled", return_value=False):
            service.ensure_running("postgresql")

        commands = [c[0][0] for c in executor.run.call_args_list]
        assert commands == [["systemctl", "start", "postgresql"], ["systemctl", "enable", "postgresql"]]

    def test_ensure_running_noop(self, executor):
        service = SystemdService(ExecutionContext(), executor)
        with patch.object(service, "is_active", return_value=True), \
                patch.object(service, "is_enabled", return_value=True):
            service.ensure_running("postgresql")
        executor.run.assert_not_called()

    def test_start_failure(self, executor):
        executor.run.side_effect = ExecutionError("Command failed", return_code=1)
        with pytest.raises(ServiceError) as exc:
            SystemdService(ExecutionContext(), executor).start("postgresql")
        assert str(exc.value) == "Failed to start postgresql"
        assert "journalctl -xeu postgresql" in exc.value.hint
        assert exc.value.service == "postgresql"

    def test_dry_run_restart(self, executor):
        SystemdService(ExecutionContext(dry_run=True), executor).restart("sshd")
        executor.run.assert_not_called()


class TestPackageService:
    """Tests for yum installs."""

    def test_install_only_missing(self, executor):
        service = PackageService(ExecutionContext(), executor)
        with patch.object(service, "is_installed", side_effect=lambda p: p == "postgresql"):
            installed = service.install(["postgresql", "postgresql-server"])

        assert installed == ["postgresql-server"]
        assert executor.run.call_args[0][0] == ["yum", "install", "-y", "postgresql-server"]

    def test_install_all_present(self, executor):
        service = PackageService(ExecutionContext(), executor)
        with patch.object(service, "is_installed", return_value=True):
            assert service.install(["postgresql", "postgresql-server"]) == []
        executor.run.assert_not_called()

    def test_is_installed(self, executor):
        executor.run.return_value = result(1)
        assert PackageService(ExecutionContext(), executor).is_installed("postgresql") is False
        assert executor.run.call_args[0][0] == ["rpm", "-q", "postgresql"]

    def test_extras_skipped_without_tool(self, executor):
        with patch("dbprov.services.packages.shutil.which", return_value=None):
            assert PackageService(ExecutionContext(), executor).enable_extras("postgresql14") is False
        executor.run.assert_not_called()

    def test_provision_order(self, executor):
        """update, extras, then install."""
        service = PackageService(ExecutionContext(), executor)
        with patch("dbprov.services.packages.shutil.which", return_value="/usr/bin/amazon-linux-extras"), \
                patch.object(service, "is_installed", return_value=False):
            installed = service.provision(PostgresConfig())

        commands = [c[0][0] for c in executor.run.call_args_list]
        assert commands == [
            ["yum", "update", "-y"],
            ["amazon-linux-extras", "enable", "postgresql14"],
            ["yum", "install", "-y", "postgresql", "postgresql-server"],
        ]
        assert installed == ["postgresql", "postgresql-server"]

    def test_provision_without_update_or_extras(self, executor):
        service = PackageService(ExecutionContext(), executor)
        with patch.object(service, "is_installed", return_value=True):
            service.provision(PostgresConfig(update_system=False, extras_topic=None))
        executor.run.assert_not_called()
