"""Integration tests for the verify and config commands."""

from pathlib import Path
from typing import Generator
from unittest.mock import PropertyMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from dbprov import __version__
from dbprov.cli import app
from dbprov.commands.verify import VerificationResult
from dbprov.core.config import AppConfig, ProvisionConfig


runner = CliRunner()


@pytest.fixture
def workdir(tmp_path, monkeypatch) -> Generator[Path, None, None]:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("TECHCORP_DB_PASSWORD", raising=False)
    monkeypatch.delenv("TECHCORP_PUBLIC_KEY", raising=False)
    with patch.object(AppConfig, "audit_log", new_callable=PropertyMock, return_value=tmp_path / "audit.log"):
        yield tmp_path


@pytest.fixture
def mock_verifier() -> Generator:
    with patch("dbprov.commands.verify.HostVerifier") as mock:
        yield mock.return_value


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"dbprov version {__version__}" in result.output


class TestVerifyCommand:
    """Tests for the verify command."""

    def test_all_pass(self, workdir, mock_verifier):
        mock_verifier.run_all.return_value = [
            VerificationResult("listen_addresses", True, "'*'"),
            VerificationResult("pg_hba.conf entry", True, "host all all 10.0.0.0/16 md5"),
        ]

        result = runner.invoke(app, ["verify", "--config", str(workdir / "config.yaml")])

        assert result.exit_code == 0
        assert "Host Verification" in result.output
        assert "All 2 checks passed" in result.output

    def test_failure(self, workdir, mock_verifier):
        """Should exit 20 and list the failed checks."""
        mock_verifier.run_all.return_value = [
            VerificationResult("listen_addresses", True, "'*'"),
            VerificationResult("sudoers fragment", False, "/etc/sudoers.d/techcorp missing"),
        ]

        result = runner.invoke(app, ["verify", "--config", str(workdir / "config.yaml")])

        assert result.exit_code == 20
        assert "[ERROR] 1 of 2 checks failed" in result.output
        assert "sudoers fragment: /etc/sudoers.d/techcorp missing" in result.output
        assert "dbprov provision -y" in result.output


class TestConfigCommands:
    """Tests for config show / init / validate / example."""

    def test_example(self):
        result = runner.invoke(app, ["config", "example"])
        assert result.exit_code == 0
        data = yaml.safe_load(result.output)
        assert data["access"]["allowed_cidr"] == "10.0.0.0/16"

    def test_init(self, workdir):
        path = workdir / "etc" / "config.yaml"
        result = runner.invoke(app, ["config", "init", "--config", str(path)])

        assert result.exit_code == 0
        assert path.exists()
        assert "Configuration file created" in result.output

    def test_init_existing(self, workdir):
        path = workdir / "config.yaml"
        path.write_text("access: {}\n")

        result = runner.invoke(app, ["config", "init", "--config", str(path)])

        assert result.exit_code == 2
        assert "already exists" in result.output
        assert path.read_text() == "access: {}\n"

    def test_init_force(self, workdir):
        path = workdir / "config.yaml"
        path.write_text("access: {}\n")

        result = runner.invoke(app, ["config", "init", "--force", "--config", str(path)])

        assert result.exit_code == 0
        assert ProvisionConfig.load(path) == ProvisionConfig()

    def test_validate_valid(self, workdir):
        path = workdir / "config.yaml"
        path.write_text("database:\n  name: orders\n")

        result = runner.invoke(app, ["config", "validate", "--config", str(path)])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.output
        assert "TECHCORP_DB_PASSWORD not set" in result.output

    def test_validate_missing(self, workdir):
        result = runner.invoke(app, ["config", "validate", "--config", str(workdir / "absent.yaml")])
        assert result.exit_code == 2
        assert "not found" in result.output

    def test_validate_invalid(self, workdir):
        path = workdir / "config.yaml"
        path.write_text("sudo:\n  nopasswd_commands: ['/bin/systemctl * postgresql']\n")

        result = runner.invoke(app, ["config", "validate", "--config", str(path)])

        assert result.exit_code == 2
        assert "Invalid configuration" in result.output

    def test_show_hides_secrets(self, workdir, monkeypatch):
        monkeypatch.setenv("TECHCORP_DB_PASSWORD", "s3cret")

        result = runner.invoke(app, ["config", "show", "--config", str(workdir / "config.yaml")])

        assert result.exit_code == 0
        assert "techcorp_db" in result.output
        assert "s3cret" not in result.output
        assert "TECHCORP_DB_PASSWORD" in result.output
