"""Per-user provider configuration generated from issuer templates.

The provider reads its settings from two files in a per-user directory:

    <settings_dir>/<server_host>/<user_name>/osplm.ini   (main config)
    <settings_dir>/<server_host>/<user_name>/osp_cu.ini  (cert-update, empty)

The main config is rendered once from the issuer's <host>.dist.ini
template, replacing the {dir} placeholder with the user's certificate
cache directory. Existing files are never rewritten.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from eusign.errors import DirectoryError, IssuerError
from eusign.services import issuers
from eusign.services.certificates import ensure_directory
from eusign.services.expiry import ExpiryPolicy

if TYPE_CHECKING:
    from eusign.core.config import StorageSettings
    from eusign.services.certificates import CertificateCache, User

logger = logging.getLogger(__name__)

MAIN_CONFIG_NAME = "osplm.ini"
CERT_UPDATE_CONFIG_NAME = "osp_cu.ini"
DIR_PLACEHOLDER = "{dir}"
CONFIG_FILE_MODE = 0o644


@dataclass(frozen=True, slots=True)
class ProviderConfigCache:
    """Handle on a user's staged provider configuration.

    Attributes:
        root_dir: Directory holding both configuration files.
        expiry: Staleness policy for the generated configuration.
    """

    root_dir: Path
    expiry: ExpiryPolicy

    @property
    def main_config_path(self) -> Path:
        return self.root_dir / MAIN_CONFIG_NAME

    @property
    def cert_update_config_path(self) -> Path:
        return self.root_dir / CERT_UPDATE_CONFIG_NAME

    def is_generated(self) -> bool:
        """Check whether the main configuration file exists."""
        return self.main_config_path.is_file()

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the generated configuration is older than the ttl."""
        return self.expiry.is_path_expired(self.main_config_path, now)


class ServerStorage:
    """Stages provider configuration for users of supported issuers.

    Example:
        storage = ServerStorage(Path("/var/lib/eusign/settings"), templates_dir)
        config = storage.prepare(user, certificate_cache)
    """

    def __init__(
        self,
        settings_dir: Path,
        templates_dir: Path,
        expiry: ExpiryPolicy | None = None,
    ) -> None:
        """Initialize the storage.

        Args:
            settings_dir: Base directory for per-user configuration.
            templates_dir: Directory holding issuer templates.
            expiry: Staleness policy, defaults to ExpiryPolicy().
        """
        self._settings_dir = Path(settings_dir)
        self._templates_dir = Path(templates_dir)
        self._expiry = expiry or ExpiryPolicy()

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> ServerStorage:
        """Create storage from StorageSettings configuration."""
        return cls(
            settings.settings_dir,
            settings.templates_dir,
            ExpiryPolicy(settings.cache_ttl),
        )

    @staticmethod
    def verify_host(host: str) -> bool:
        """Check that `host` is on the supported issuer list."""
        return issuers.is_known_issuer(host)

    def template_path(self, host: str) -> Path:
        """Locate the configuration template for an issuer.

        Raises:
            IssuerError: If no template exists for the host.
        """
        path = issuers.template_path(self._templates_dir, host)
        if not path.is_file():
            raise IssuerError(f"Missing template file {path.name}", host=host)
        return path

    def prepare(self, user: User, certificate_cache: CertificateCache) -> ProviderConfigCache:
        """Stage the provider configuration for a user.

        Args:
            user: Owner of the configuration.
            certificate_cache: The user's prepared certificate cache; its
                resolved directory is written into the configuration.

        Returns:
            Handle exposing both configuration file paths.

        Raises:
            IssuerError: If the host is unsupported or has no template.
            DirectoryError: If directories cannot be prepared or written.
        """
        host = user.server_host
        if not self.verify_host(host):
            raise IssuerError(
                f"Server name {host} is out of available list. Setup you server config first.",
                host=host,
            )

        config = ProviderConfigCache(
            root_dir=self._settings_dir / host / user.user_name,
            expiry=self._expiry,
        )
        ensure_directory(config.root_dir, kind="server settings")

        if config.is_generated():
            logger.debug("Provider configuration already staged in %s", config.root_dir)
            return config

        template = self.template_path(host).read_text(encoding="utf-8")
        content = template.replace(DIR_PLACEHOLDER, str(certificate_cache.resolved_path()))
        self._write_config(config, content)

        logger.info(
            "Generated provider configuration for user=%s issuer=%s",
            user.user_name,
            host,
        )
        return config

    def _write_config(self, config: ProviderConfigCache, content: str) -> None:
        """Write both configuration files.

        The placeholder is written first and the main config is moved into
        place last, so a failed attempt leaves no main config behind and the
        next prepare() regenerates both files.
        """
        tmp_path: str | None = None
        try:
            config.cert_update_config_path.write_text("", encoding="utf-8")
            fd, tmp_path = tempfile.mkstemp(dir=config.root_dir, prefix=".osplm-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.chmod(tmp_path, CONFIG_FILE_MODE)
            os.replace(tmp_path, config.main_config_path)
            tmp_path = None
        except OSError as e:
            logger.error("Cannot write provider configuration in %s: %s", config.root_dir, e)
            raise DirectoryError(
                "Can not write server settings.",
                path=str(config.root_dir),
            ) from e
        finally:
            if tmp_path is not None:
                Path(tmp_path).unlink(missing_ok=True)
