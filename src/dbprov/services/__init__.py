"""Host-level services used by the provisioning pipeline."""

from dbprov.services.accounts import AccountService
from dbprov.services.artifacts import ArtifactWriter
from dbprov.services.packages import PackageService
from dbprov.services.pgconfig import PostgresConfigPatcher
from dbprov.services.postgresql import PostgreSQLService
from dbprov.services.sshd import SshdHardener
from dbprov.services.sudoers import SudoersService
from dbprov.services.systemd import SystemdService

__all__ = [
    "AccountService",
    "ArtifactWriter",
    "PackageService",
    "PostgresConfigPatcher",
    "PostgreSQLService",
    "SshdHardener",
    "SudoersService",
    "SystemdService",
]
