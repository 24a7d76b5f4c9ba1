"""Pre-flight checks run before any host mutation.

Provides:
- Root privilege verification
- OS family detection (RHEL / Amazon Linux)
- Free disk space check
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from dbprov.core.exceptions import PrerequisiteError
from dbprov.core.output import console


class CheckResult(Enum):
    """Result of a pre-flight check."""
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


@dataclass(frozen=True)
class PreflightResult:
    """Immutable result of a pre-flight check."""
    check_name: str
    result: CheckResult
    message: str
    details: Optional[dict[str, Any]] = None
    remediation: Optional[str] = None


class PreflightCheck(ABC):
    """Base class for all pre-flight checks."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def critical(self) -> bool:
        """If True, failure blocks provisioning."""
        ...

    @abstractmethod
    def run(self) -> PreflightResult:
        ...


class RootCheck(PreflightCheck):
    """Verify the process runs as root."""

    name = "Root/Sudo Verification"
    critical = True

    def run(self) -> PreflightResult:
        if os.geteuid() != 0:
            return PreflightResult(
                check_name=self.name,
                result=CheckResult.FAIL,
                message="Must be run as root or with sudo",
                remediation="Run with: sudo dbprov provision",
            )
        return PreflightResult(
            check_name=self.name,
            result=CheckResult.PASS,
            message="Running with root privileges",
        )


class OSCompatibilityCheck(PreflightCheck):
    """Verify the host belongs to the yum-based RHEL family."""

    name = "OS Compatibility"
    critical = True

    SUPPORTED_IDS = frozenset({"amzn", "rhel", "centos", "rocky", "almalinux", "fedora"})

    def __init__(self, os_release: Path = Path("/etc/os-release")) -> None:
        self.os_release = os_release

    def run(self) -> PreflightResult:
        info = parse_os_release(self.os_release)

        if info is None:
            return PreflightResult(
                check_name=self.name,
                result=CheckResult.FAIL,
                message=f"{self.os_release} not found",
                remediation="This tool requires Amazon Linux or a RHEL-family distribution",
            )

        distro_id = info.get("ID", "").lower()
        id_like = info.get("ID_LIKE", "").lower().split()
        pretty_name = info.get("PRETTY_NAME", distro_id)

        if distro_id not in self.SUPPORTED_IDS and not {"rhel", "fedora"} & set(id_like):
            return PreflightResult(
                check_name=self.name,
                result=CheckResult.FAIL,
                message=f"Unsupported OS: {pretty_name}",
                details={"detected_os": distro_id},
                remediation="Supported: Amazon Linux, RHEL, CentOS, Rocky, AlmaLinux, Fedora",
            )

        return PreflightResult(
            check_name=self.name,
            result=CheckResult.PASS,
            message=f"OS: {pretty_name}",
            details={"distro": distro_id, "version": info.get("VERSION_ID", "unknown")},
        )


class DiskSpaceCheck(PreflightCheck):
    """Verify there is room for packages and the cluster."""

    name = "Disk Space"
    critical = False

    REQUIREMENTS = {
        "/": 1.0,
        "/var": 2.0,
    }

    def run(self) -> PreflightResult:
        failures = []
        details = {}

        for path, min_gb in self.REQUIREMENTS.items():
            if not os.path.exists(path):
                continue

            st = os.statvfs(path)
            free_gb = (st.f_bavail * st.f_frsize) / (1024 ** 3)
            details[path] = {"free_gb": round(free_gb, 2), "required_gb": min_gb}

            if free_gb < min_gb:
                failures.append(f"{path}: {free_gb:.1f}GB free, need {min_gb}GB")

        if failures:
            return PreflightResult(
                check_name=self.name,
                result=CheckResult.FAIL,
                message="Insufficient disk space",
                details=details,
                remediation="; ".join(failures),
            )

        return PreflightResult(
            check_name=self.name,
            result=CheckResult.PASS,
            message="Sufficient disk space available",
            details=details,
        )


def parse_os_release(path: Path) -> Optional[dict[str, str]]:
    """Parse an os-release file into a dict, or None if missing."""
    try:
        result = {}
        for line in path.read_text().splitlines():
            line = line.strip()
            if "=" in line and not line.startswith("#"):
                key, _, value = line.partition("=")
                result[key] = value.strip('"').strip("'")
        return result
    except FileNotFoundError:
        return None


class PreflightRunner:
    """Runs a list of checks and summarizes them."""

    def __init__(self, checks: Optional[list[PreflightCheck]] = None) -> None:
        self.checks = checks if checks is not None else [
            RootCheck(),
            OSCompatibilityCheck(),
            DiskSpaceCheck(),
        ]

    def run_all(self) -> list[tuple[PreflightCheck, PreflightResult]]:
        return [(check, check.run()) for check in self.checks]

    def display_results(self, results: list[tuple[PreflightCheck, PreflightResult]]) -> None:
        rows = []
        for _, r in results:
            color = {"pass": "green", "warn": "yellow", "fail": "red"}[r.result.value]
            rows.append([r.check_name, f"[{color}]{r.result.value.upper()}[/{color}]", r.message])
        console.table("Pre-flight Checks", ["Check", "Result", "Message"], rows)


def run_preflight_checks(
    dry_run: bool = False,
    verbose: bool = False,
    runner: Optional[PreflightRunner] = None,
) -> bool:
    """Run pre-flight checks.

    Critical failures raise; non-critical failures only warn. In dry-run
    mode failures are reported but never raise.

    Raises:
        PrerequisiteError: If a critical check fails
    """
    runner = runner or PreflightRunner()
    results = runner.run_all()

    if verbose:
        runner.display_results(results)

    blocking = []
    for check, result in results:
        if result.result != CheckResult.FAIL:
            continue
        if check.critical:
            blocking.append(result)
        else:
            console.warn(f"{result.check_name}: {result.message}")

    if not blocking:
        return True

    if dry_run:
        for r in blocking:
            console.warn(f"{r.check_name}: {r.message} (ignored in dry-run)")
        return False

    raise PrerequisiteError(
        "Pre-flight checks failed",
        details=[f"{r.check_name}: {r.message}" for r in blocking],
        hint=blocking[0].remediation or "Fix the issues above and try again",
    )
