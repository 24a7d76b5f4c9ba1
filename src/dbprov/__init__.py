"""
Database host provisioner - one-shot PostgreSQL server setup.

Installs and configures PostgreSQL, bootstraps the application database,
provisions the operator account and locks down SSH and sudo on
RHEL / Amazon Linux hosts.
"""

__version__ = "1.0.0"
__author__ = "Server Management Team"
