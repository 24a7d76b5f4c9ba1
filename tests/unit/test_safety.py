"""Unit tests for pre-flight checks."""

from unittest.mock import patch

import pytest

from dbprov.core.exceptions import PrerequisiteError
from dbprov.core.safety import (
    CheckResult,
    OSCompatibilityCheck,
    PreflightCheck,
    PreflightResult,
    PreflightRunner,
    RootCheck,
    parse_os_release,
    run_preflight_checks,
)


AMAZON_LINUX_2 = """\
NAME="Amazon Linux"
VERSION="2"
ID="amzn"
ID_LIKE="centos rhel fedora"
VERSION_ID="2"
PRETTY_NAME="Amazon Linux 2"
"""

UBUNTU = """\
NAME="Ubuntu"
ID=ubuntu
ID_LIKE=debian
PRETTY_NAME="Ubuntu 22.04.3 LTS"
"""


class FixedCheck(PreflightCheck):
    """Check with a predetermined outcome."""

    def __init__(self, result: CheckResult, critical: bool = True, name: str = "Fixed") -> None:
        self._result = result
        self._critical = critical
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def critical(self) -> bool:
        return self._critical

    def run(self) -> PreflightResult:
        return PreflightResult(
            check_name=self.name,
            result=self._result,
            message=f"{self.name} {self._result.value}",
            remediation="Fix it",
        )


class TestRootCheck:
    """Tests for the root privilege check."""

    def test_root(self):
        with patch("dbprov.core.safety.os.geteuid", return_value=0):
            assert RootCheck().run().result == CheckResult.PASS

    def test_non_root(self):
        with patch("dbprov.core.safety.os.geteuid", return_value=1000):
            result = RootCheck().run()
        assert result.result == CheckResult.FAIL
        assert "sudo" in result.remediation


class TestOSCompatibilityCheck:
    """Tests for OS family detection."""

    def test_amazon_linux(self, tmp_path):
        path = tmp_path / "os-release"
        path.write_text(AMAZON_LINUX_2)
        result = OSCompatibilityCheck(path).run()
        assert result.result == CheckResult.PASS
        assert result.message == "OS: Amazon Linux 2"
        assert result.details["distro"] == "amzn"

    def test_rhel_derivative_by_id_like(self, tmp_path):
        path = tmp_path / "os-release"
        path.write_text('ID="ol"\nID_LIKE="fedora"\nPRETTY_NAME="Oracle Linux Server 8.9"\n')
        assert OSCompatibilityCheck(path).run().result == CheckResult.PASS

    def test_unsupported(self, tmp_path):
        path = tmp_path / "os-release"
        path.write_text(UBUNTU)
        result = OSCompatibilityCheck(path).run()
        assert result.result == CheckResult.FAIL
        assert "Ubuntu 22.04.3 LTS" in result.message

    def test_missing_file(self, tmp_path):
        result = OSCompatibilityCheck(tmp_path / "os-release").run()
        assert result.result == CheckResult.FAIL

    def test_parse_os_release(self, tmp_path):
        path = tmp_path / "os-release"
        path.write_text("# comment\nID='amzn'\n\nVERSION_ID=\"2023\"\n")
        assert parse_os_release(path) == {"ID": "amzn", "VERSION_ID": "2023"}


class TestRunPreflightChecks:
    """Tests for the blocking semantics."""

    def test_all_pass(self):
        runner = PreflightRunner([FixedCheck(CheckResult.PASS)])
        assert run_preflight_checks(runner=runner) is True

    def test_critical_failure_raises(self):
        runner = PreflightRunner([
            FixedCheck(CheckResult.PASS, name="Disk"),
            FixedCheck(CheckResult.FAIL, name="Root"),
        ])
        with pytest.raises(PrerequisiteError) as exc:
            run_preflight_checks(runner=runner)
        assert exc.value.details == ["Root: Root fail"]
        assert exc.value.hint == "Fix it"
        assert exc.value.exit_code == 6

    def test_non_critical_failure_warns(self, capsys):
        runner = PreflightRunner([FixedCheck(CheckResult.FAIL, critical=False, name="Disk Space")])
        assert run_preflight_checks(runner=runner) is True
        assert "Disk Space" in capsys.readouterr().err

    def test_dry_run_never_raises(self):
        runner = PreflightRunner([FixedCheck(CheckResult.FAIL)])
        assert run_preflight_checks(dry_run=True, runner=runner) is False

    def test_default_checks(self):
        names = [check.name for check in PreflightRunner().checks]
        assert names == ["Root/Sudo Verification", "OS Compatibility", "Disk Space"]
