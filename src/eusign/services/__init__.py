"""EUSign service layer.

This package contains the provider orchestration and on-disk staging:
- ExpiryPolicy: staleness predicate shared by the caches
- CertificateStorage/CertificateCache: per-user certificate directories
- ServerStorage/ProviderConfigCache: per-user provider configuration
- SigningSession: provider session state machine
- SoftwareProvider: non-qualified in-process provider
"""

from eusign.services.certificates import CertificateCache, CertificateStorage, User
from eusign.services.expiry import ExpiryPolicy
from eusign.services.server_config import ProviderConfigCache, ServerStorage
from eusign.services.session import SessionState, SigningSession
from eusign.services.software_provider import SoftwareProvider

__all__ = [
    "CertificateCache",
    "CertificateStorage",
    "ExpiryPolicy",
    "ProviderConfigCache",
    "ServerStorage",
    "SessionState",
    "SigningSession",
    "SoftwareProvider",
    "User",
]
