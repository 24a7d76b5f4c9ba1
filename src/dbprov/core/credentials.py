"""Secret resolution for provisioning.

The database password is looked up through an ordered chain of sources:
1. Environment variable TECHCORP_DB_PASSWORD
2. AWS Secrets Manager secret (when enabled in config)
3. AWS SSM Parameter Store parameter (when enabled in config)

The first non-empty value wins. When no source yields a value the run
aborts before touching the host.
"""

import os
from abc import ABC, abstractmethod
from typing import Any, Optional

from dbprov.core.config import (
    AppConfig,
    PASSWORD_ENV,
    SecretStoreConfig,
)
from dbprov.core.exceptions import CredentialError, MissingSecretError
from dbprov.core.output import console
from dbprov.core.validation import validate_password, validate_public_key


class SecretSource(ABC):
    """A place a secret value can come from."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable source name used in messages."""
        ...

    @abstractmethod
    def fetch(self) -> Optional[str]:
        """Return the secret, or None if this source does not have it.

        Raises:
            CredentialError: If the source exists but cannot be read
        """
        ...


class EnvironmentSource(SecretSource):
    """Secret read from a process environment variable."""

    def __init__(self, variable: str, environ: Optional[dict[str, str]] = None) -> None:
        self.variable = variable
        self._environ = environ

    @property
    def name(self) -> str:
        return f"environment variable {self.variable}"

    def fetch(self) -> Optional[str]:
        environ = self._environ if self._environ is not None else os.environ
        return environ.get(self.variable) or None


class _AwsSource(SecretSource):
    """Shared boto3 client handling for AWS-backed sources."""

    service_name = ""

    def __init__(self, region: Optional[str] = None, client: Any = None) -> None:
        self.region = region
        self._client = client

    @property
    def client(self) -> Any:
        """Lazy-initialize the boto3 client."""
        if self._client is None:
            import boto3
            from botocore.config import Config as BotoConfig

            self._client = boto3.client(
                self.service_name,
                region_name=self.region,
                config=BotoConfig(
                    retries={"max_attempts": 3, "mode": "standard"},
                    connect_timeout=10,
                    read_timeout=20,
                ),
            )
        return self._client


class SecretsManagerSource(_AwsSource):
    """Secret string stored in AWS Secrets Manager."""

    service_name = "secretsmanager"

    def __init__(self, secret_id: str, region: Optional[str] = None, client: Any = None) -> None:
        super().__init__(region=region, client=client)
        self.secret_id = secret_id

    @property
    def name(self) -> str:
        return f"AWS Secrets Manager secret '{self.secret_id}'"

    def fetch(self) -> Optional[str]:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self.client.get_secret_value(SecretId=self.secret_id)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ResourceNotFoundException":
                return None
            raise CredentialError(
                f"Cannot read {self.name}",
                details=[str(e)],
                hint="Check the instance role allows secretsmanager:GetSecretValue",
            ) from e
        except BotoCoreError as e:
            raise CredentialError("Cannot reach AWS Secrets Manager", details=[str(e)]) from e

        return response.get("SecretString") or None


class SsmParameterSource(_AwsSource):
    """SecureString parameter stored in AWS SSM Parameter Store."""

    service_name = "ssm"

    def __init__(self, parameter: str, region: Optional[str] = None, client: Any = None) -> None:
        super().__init__(region=region, client=client)
        self.parameter = parameter

    @property
    def name(self) -> str:
        return f"SSM parameter '{self.parameter}'"

    def fetch(self) -> Optional[str]:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self.client.get_parameter(Name=self.parameter, WithDecryption=True)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ParameterNotFound":
                return None
            raise CredentialError(
                f"Cannot read {self.name}",
                details=[str(e)],
                hint="Check the instance role allows ssm:GetParameter and kms:Decrypt",
            ) from e
        except BotoCoreError as e:
            raise CredentialError("Cannot reach AWS SSM", details=[str(e)]) from e

        return response.get("Parameter", {}).get("Value") or None


class CredentialResolver:
    """Walks secret sources in priority order.

    A source that errors is reported and skipped; the chain only fails
    when no source produced a value.
    """

    def __init__(self, sources: list[SecretSource], secret_label: str = PASSWORD_ENV) -> None:
        self.sources = sources
        self.secret_label = secret_label

    def resolve(self) -> str:
        """Return the first available secret value.

        Raises:
            MissingSecretError: If every source came up empty
        """
        for source in self.sources:
            try:
                value = source.fetch()
            except CredentialError as e:
                console.warn(f"{e.message}; trying next source")
                for detail in e.details:
                    console.debug(detail)
                continue

            if value:
                console.debug(f"Resolved {self.secret_label} from {source.name}")
                return validate_password(value, name=self.secret_label)

        raise MissingSecretError(
            f"{self.secret_label} environment variable is not set",
            hint="Please provide the database password via environment variable or AWS Secrets Manager",
        )


def build_password_sources(store: SecretStoreConfig, environ: Optional[dict[str, str]] = None) -> list[SecretSource]:
    """Build the source chain from configuration."""
    sources: list[SecretSource] = [EnvironmentSource(PASSWORD_ENV, environ)]
    if store.use_secrets_manager:
        sources.append(SecretsManagerSource(store.secrets_manager_id, region=store.region))
    if store.use_ssm:
        sources.append(SsmParameterSource(store.ssm_parameter, region=store.region))
    return sources


def resolve_db_password(app_config: AppConfig) -> str:
    """Resolve the application role password or fail fast."""
    # pydantic-settings also reads .env, so prefer its value for the env source
    environ = dict(os.environ)
    if app_config.secrets.db_password and not environ.get(PASSWORD_ENV):
        environ[PASSWORD_ENV] = app_config.secrets.db_password

    resolver = CredentialResolver(build_password_sources(app_config.secret_store, environ))
    return resolver.resolve()


def resolve_public_key(app_config: AppConfig) -> Optional[str]:
    """Return the validated operator SSH key, or None when not supplied."""
    key = app_config.secrets.public_key
    if not key or not key.strip():
        return None
    return validate_public_key(key)
