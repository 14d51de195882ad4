"""Wiring of storages and sessions from configuration.

Example:
    settings = get_settings()
    staged = stage_user(User("ca.iit.com.ua", "alice"), settings)
    with create_signing_session(settings) as session:
        signature = session.sign(document, key_data, password)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from eusign.core.config import ProviderKind
from eusign.errors import IssuerError, SessionError
from eusign.services.certificates import CertificateStorage
from eusign.services.server_config import ServerStorage
from eusign.services.session import SigningSession
from eusign.services.software_provider import SoftwareProvider

if TYPE_CHECKING:
    from eusign.core.config import Settings
    from eusign.services.certificates import CertificateCache, User
    from eusign.services.provider import Provider
    from eusign.services.server_config import ProviderConfigCache

logger = logging.getLogger(__name__)


class NativeProviderNotAvailableError(SessionError):
    """Raised when the native provider is configured but not installed."""

    def __init__(self) -> None:
        super().__init__(
            "The native provider requires the issuer's certified library. "
            "Pass a Provider implementation explicitly or use the software provider.",
            command="create_provider",
        )


@dataclass(frozen=True, slots=True)
class StagedUser:
    """Directories staged for a user before a session is opened."""

    certificates: CertificateCache
    config: ProviderConfigCache


def create_provider(settings: Settings) -> Provider:
    """Build the configured provider.

    Raises:
        NativeProviderNotAvailableError: If the native provider is configured.
    """
    if settings.provider.kind == ProviderKind.NATIVE:
        raise NativeProviderNotAvailableError()
    logger.warning("Using software provider: signatures are NOT qualified")
    return SoftwareProvider(file_store_path=settings.provider.file_store_path)


def create_signing_session(
    settings: Settings,
    provider: Provider | None = None,
) -> SigningSession:
    """Create a closed signing session.

    Args:
        settings: Application settings.
        provider: Provider to use instead of the configured one.
    """
    return SigningSession.from_settings(provider or create_provider(settings), settings.provider)


def stage_user(user: User, settings: Settings) -> StagedUser:
    """Prepare the certificate cache and provider configuration of a user.

    Raises:
        IssuerError: If the user's issuer is unsupported.
        DirectoryError: If a directory cannot be prepared.
    """
    if not ServerStorage.verify_host(user.server_host):
        raise IssuerError(
            f"Server name {user.server_host} is out of available list.",
            host=user.server_host,
        )
    certificates = CertificateStorage.from_settings(settings.storage).prepare(user)
    config = ServerStorage.from_settings(settings.storage).prepare(user, certificates)
    return StagedUser(certificates=certificates, config=config)
