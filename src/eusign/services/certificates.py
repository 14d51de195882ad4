"""Per-user certificate cache.

Certificates downloaded from an issuer's server are kept in a directory
per server host and user name:

    <certificates_dir>/<server_host>/<user_name>/*.cer

The provider configuration points at this directory, so it must exist
before a configuration is generated for the user.

Example:
    storage = CertificateStorage(Path("/var/lib/eusign/certificates"))
    cache = storage.prepare(User(server_host="ca.iit.com.ua", user_name="alice"))
    if not cache.has_certificates():
        download_certificates(cache.resolved_path())
    blobs = cache.load_certificates()
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from eusign.errors import DirectoryError, LoadError
from eusign.services.expiry import ExpiryPolicy

if TYPE_CHECKING:
    from eusign.core.config import StorageSettings

logger = logging.getLogger(__name__)

CERTIFICATE_SUFFIX = ".cer"

# Full permissions before umask, the provider may run under another account
DIRECTORY_MODE = 0o777


@dataclass(frozen=True, slots=True)
class User:
    """Tenant namespace for staged files.

    Attributes:
        server_host: Host name of the issuer's certificate server.
        user_name: Name of the user owning the keys.
    """

    server_host: str
    user_name: str

    def __post_init__(self) -> None:
        for name, value in (("server_host", self.server_host), ("user_name", self.user_name)):
            if not value or value in {".", ".."} or "/" in value or os.sep in value:
                msg = f"Invalid {name}: {value!r}"
                raise ValueError(msg)


def ensure_directory(path: Path, *, kind: str) -> None:
    """Create `path` recursively unless it already exists.

    Args:
        path: Directory to create.
        kind: Directory role used in error messages.

    Raises:
        DirectoryError: If the directory cannot be created.
    """
    if path.is_dir():
        return
    try:
        path.mkdir(mode=DIRECTORY_MODE, parents=True, exist_ok=True)
    except OSError as e:
        logger.error("Cannot prepare %s directory %s: %s", kind, path, e)
        raise DirectoryError(f"Can not prepare {kind} dir.", path=str(path)) from e
    logger.debug("Created %s directory %s", kind, path)


class CertificateCache:
    """Directory of certificate files for one user."""

    def __init__(self, root_dir: Path, expiry: ExpiryPolicy | None = None) -> None:
        """Initialize the cache.

        Args:
            root_dir: Directory holding the user's certificate files.
            expiry: Staleness policy, defaults to ExpiryPolicy().
        """
        self._root_dir = Path(root_dir)
        self._expiry = expiry or ExpiryPolicy()

    @property
    def root_dir(self) -> Path:
        """Unresolved cache directory."""
        return self._root_dir

    @property
    def expiry(self) -> ExpiryPolicy:
        return self._expiry

    def ensure_directory(self) -> None:
        """Create the cache directory if it is missing.

        Raises:
            DirectoryError: If the directory cannot be created.
        """
        ensure_directory(self._root_dir, kind="certificates")

    def resolved_path(self) -> Path:
        """Get the canonical absolute cache directory.

        Raises:
            DirectoryError: If the directory does not exist.
        """
        try:
            resolved = self._root_dir.resolve(strict=True)
        except (OSError, RuntimeError) as e:
            raise DirectoryError("Can not find certificates dir.", path=str(self._root_dir)) from e
        if not resolved.is_dir():
            raise DirectoryError("Can not find certificates dir.", path=str(self._root_dir))
        return resolved

    def certificate_paths(self) -> list[Path]:
        """List resolved paths of certificate files, sorted by name.

        Raises:
            DirectoryError: If the directory cannot be listed.
        """
        try:
            entries = sorted(self._root_dir.iterdir())
        except OSError as e:
            raise DirectoryError("Can not list certificates dir.", path=str(self._root_dir)) from e

        paths = []
        for entry in entries:
            if entry.suffix != CERTIFICATE_SUFFIX:
                continue
            try:
                resolved = entry.resolve(strict=True)
            except OSError:
                # Dangling symlink
                continue
            if resolved.is_file():
                paths.append(resolved)
        return paths

    def has_certificates(self) -> bool:
        """Check whether at least one certificate file is cached."""
        return bool(self.certificate_paths())

    def load_certificates(self) -> list[bytes]:
        """Read the raw bytes of every cached certificate file.

        Returns:
            Non-empty list of certificate blobs, in file name order.

        Raises:
            LoadError: If no certificate files are present.
        """
        paths = self.certificate_paths()
        if not paths:
            raise LoadError("Certificates not found.", path=str(self._root_dir))

        certificates = [path.read_bytes() for path in paths]
        logger.debug("Loaded %d certificates from %s", len(certificates), self._root_dir)
        return certificates

    def last_updated(self) -> datetime | None:
        """Get the modification time of the newest certificate file."""
        mtimes = [path.stat().st_mtime for path in self.certificate_paths()]
        if not mtimes:
            return None
        return datetime.fromtimestamp(max(mtimes), UTC)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether cached certificates should be downloaded again.

        An empty cache is always expired.
        """
        return self._expiry.is_expired(self.last_updated(), now)


class CertificateStorage:
    """Factory of per-user certificate caches under a base directory."""

    def __init__(self, base_dir: Path, expiry: ExpiryPolicy | None = None) -> None:
        self._base_dir = Path(base_dir)
        self._expiry = expiry or ExpiryPolicy()

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> CertificateStorage:
        """Create storage from StorageSettings configuration."""
        return cls(settings.certificates_dir, ExpiryPolicy(settings.cache_ttl))

    def cache_for(self, user: User) -> CertificateCache:
        """Build the cache for `user` without touching the filesystem."""
        return CertificateCache(
            self._base_dir / user.server_host / user.user_name,
            self._expiry,
        )

    def prepare(self, user: User) -> CertificateCache:
        """Get the user's cache, creating its directory if needed.

        Raises:
            DirectoryError: If the directory cannot be created.
        """
        cache = self.cache_for(user)
        cache.ensure_directory()
        return cache
