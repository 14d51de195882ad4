"""Configuration management for EUSign.

This module provides centralized configuration using Pydantic Settings,
supporting environment-based configuration (dev, staging, production).

All configuration is loaded from environment variables with the EUSIGN_
prefix. Nested settings use double underscore as delimiter
(e.g., EUSIGN_STORAGE__CERTIFICATES_DIR).

Example:
    export EUSIGN_ENVIRONMENT=dev
    export EUSIGN_STORAGE__CERTIFICATES_DIR=/var/lib/eusign/certificates
    export EUSIGN_STORAGE__SETTINGS_DIR=/var/lib/eusign/settings
"""

from __future__ import annotations

import codecs
import hashlib
import json
import logging
from datetime import timedelta
from enum import Enum
from functools import cached_property
from pathlib import Path
from typing import Annotated, Any, Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from eusign.services.provider import CtxSignAlgorithm

logger = logging.getLogger(__name__)

# Issuer templates shipped with the package
DEFAULT_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates" / "servers"


class Environment(str, Enum):
    """Deployment environment.

    Affects default behaviors and validation strictness.
    """

    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class ProviderKind(str, Enum):
    """Cryptographic provider implementation backing signing sessions."""

    SOFTWARE = "software"
    NATIVE = "native"


DEFAULT_SIGN_ALGORITHMS = {
    ProviderKind.SOFTWARE: CtxSignAlgorithm.ECDSA_WITH_SHA,
    ProviderKind.NATIVE: CtxSignAlgorithm.DSTU4145_WITH_GOST34311,
}
SOFTWARE_SIGN_ALGORITHMS = frozenset(
    {CtxSignAlgorithm.ECDSA_WITH_SHA, CtxSignAlgorithm.RSA_WITH_SHA}
)


class StorageSettings(BaseSettings):
    """On-disk staging directories for the provider.

    Certificates and provider configuration are kept in separate trees,
    both partitioned as <base>/<server_host>/<user_name>.
    """

    model_config = SettingsConfigDict(
        env_prefix="EUSIGN_STORAGE__",
        extra="ignore",
    )

    certificates_dir: Path = Field(
        default=Path("/var/lib/eusign/certificates"),
        description="Base directory for per-user certificate caches",
    )
    settings_dir: Path = Field(
        default=Path("/var/lib/eusign/settings"),
        description="Base directory for per-user provider configuration",
    )
    templates_dir: Path = Field(
        default=DEFAULT_TEMPLATES_DIR,
        description="Directory holding <issuer-host>.dist.ini templates",
    )
    cache_ttl_seconds: Annotated[int, Field(ge=0)] = Field(
        default=86400,
        description="Age after which cached certificates/configuration are stale",
    )

    @cached_property
    def cache_ttl(self) -> timedelta:
        """Cache time-to-live as a timedelta."""
        return timedelta(seconds=self.cache_ttl_seconds)


class ProviderSettings(BaseSettings):
    """Cryptographic provider settings."""

    model_config = SettingsConfigDict(
        env_prefix="EUSIGN_PROVIDER__",
        extra="ignore",
    )

    kind: ProviderKind = Field(
        default=ProviderKind.SOFTWARE,
        description="Provider implementation (software is non-qualified)",
    )
    error_charset: str = Field(
        default="cp1251",
        description="Charset of provider error descriptions that are not UTF-8",
    )
    sign_algorithm: CtxSignAlgorithm | None = Field(
        default=None,
        description="Algorithm suite used by signing contexts (default depends on kind)",
    )
    file_store_path: Path | None = Field(
        default=None,
        description="File store path reported by the software provider",
    )

    @field_validator("error_charset")
    @classmethod
    def validate_error_charset(cls, v: str) -> str:
        """Ensure the charset is known to the codec registry."""
        try:
            return codecs.lookup(v).name
        except LookupError as e:
            msg = f"Unknown charset: {v}"
            raise ValueError(msg) from e

    @field_validator("sign_algorithm", mode="before")
    @classmethod
    def parse_sign_algorithm(cls, v: Any) -> Any:
        """Accept algorithm names (as printed in the config snapshot) or values."""
        if not isinstance(v, str):
            return v
        if v.strip().isdigit():
            return int(v)
        try:
            return CtxSignAlgorithm[v.strip().upper()]
        except KeyError as e:
            allowed = ", ".join(a.name for a in CtxSignAlgorithm)
            msg = f"Sign algorithm must be one of: {allowed}"
            raise ValueError(msg) from e

    @model_validator(mode="after")
    def resolve_sign_algorithm(self) -> Self:
        """Default the algorithm from the provider kind.

        The software provider has no DSTU 4145 implementation, so that
        pairing is rejected instead of failing on every sign().
        """
        if self.sign_algorithm is None:
            self.sign_algorithm = DEFAULT_SIGN_ALGORITHMS[self.kind]
        elif (
            self.kind == ProviderKind.SOFTWARE
            and self.sign_algorithm not in SOFTWARE_SIGN_ALGORITHMS
        ):
            msg = (
                f"Software provider does not support {self.sign_algorithm.name}. "
                "Use ECDSA_WITH_SHA or RSA_WITH_SHA, or the native provider."
            )
            raise ValueError(msg)
        return self


class Settings(BaseSettings):
    """Main EUSign configuration container.

    Loads all configuration from environment variables with EUSIGN_ prefix.
    Nested settings use double underscore delimiter.

    Example environment variables:
        EUSIGN_ENVIRONMENT=production
        EUSIGN_LOG_LEVEL=INFO
        EUSIGN_STORAGE__CACHE_TTL_SECONDS=3600
        EUSIGN_PROVIDER__KIND=native
    """

    model_config = SettingsConfigDict(
        env_prefix="EUSIGN_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_default=True,
    )

    environment: Environment = Field(
        default=Environment.DEV,
        description="Deployment environment (dev, staging, production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    storage: StorageSettings = Field(default_factory=StorageSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)

    app_version: str = Field(
        default="0.1.0",
        description="Application version",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the logging level name."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            msg = f"Log level must be one of: {', '.join(sorted(allowed))}"
            raise ValueError(msg)
        return v.upper()

    @model_validator(mode="after")
    def validate_production_constraints(self) -> Self:
        """Enforce production environment constraints.

        The software provider produces non-qualified signatures and must
        not back a production deployment.
        """
        if self.environment == Environment.PRODUCTION:
            if self.provider.kind == ProviderKind.SOFTWARE:
                msg = (
                    "Production environment requires the native provider. "
                    "Set EUSIGN_PROVIDER__KIND=native or use a non-production environment."
                )
                raise ValueError(msg)
        return self

    @cached_property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    def get_config_snapshot(self) -> dict[str, Any]:
        """Generate a snapshot of non-sensitive configuration values.

        Returns:
            Dictionary suitable for logging at startup.
        """
        return {
            "environment": self.environment.value,
            "storage": {
                "certificates_dir": str(self.storage.certificates_dir),
                "settings_dir": str(self.storage.settings_dir),
                "templates_dir": str(self.storage.templates_dir),
                "cache_ttl_seconds": self.storage.cache_ttl_seconds,
            },
            "provider": {
                "kind": self.provider.kind.value,
                "sign_algorithm": self.provider.sign_algorithm.name,
            },
            "app_version": self.app_version,
        }

    def get_config_hash(self) -> str:
        """Compute a SHA-256 hex digest of the configuration snapshot."""
        snapshot_json = json.dumps(self.get_config_snapshot(), sort_keys=True)
        return hashlib.sha256(snapshot_json.encode()).hexdigest()


class ConfigValidationError(Exception):
    """Raised when configuration validation fails.

    This exception should cause fast failure at startup to prevent
    running with invalid configuration.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize with error details.

        Args:
            message: Human-readable error description.
            field: Optional field name that failed validation.
        """
        self.message = message
        self.field = field
        super().__init__(message)


def validate_settings(settings: Settings) -> None:
    """Perform runtime validation that cannot be expressed declaratively.

    Args:
        settings: Settings instance to validate.

    Raises:
        ConfigValidationError: If validation fails.
    """
    if not settings.storage.templates_dir.is_dir():
        raise ConfigValidationError(
            f"Issuer templates directory not found: {settings.storage.templates_dir}",
            field="storage.templates_dir",
        )

    if settings.storage.certificates_dir == settings.storage.settings_dir:
        raise ConfigValidationError(
            "Certificates and settings directories must differ.",
            field="storage.settings_dir",
        )

    logger.info(
        "Configuration validated. Config hash: %s",
        settings.get_config_hash(),
    )
