"""Pytest configuration and shared fixtures."""

import pytest

from eusign.core.config import ProviderSettings
from eusign.core.settings import clear_settings_cache
from eusign.services.certificates import CertificateStorage, User
from eusign.services.session import SigningSession
from eusign.services.software_provider import SoftwareProvider

from tests.factories import create_certificate, create_key_blob

KEY_PASSWORD = "correct horse"


@pytest.fixture(autouse=True)
def clean_settings_cache():
    """Clear settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def certificates_dir(tmp_path):
    return tmp_path / "certificates"


@pytest.fixture
def settings_dir(tmp_path):
    return tmp_path / "settings"


@pytest.fixture
def alice():
    return User(server_host="ca.iit.com.ua", user_name="alice")


@pytest.fixture
def certificate_storage(certificates_dir):
    return CertificateStorage(certificates_dir)


# ---------------------------------------------------------------------------
# Provider fixtures
# ---------------------------------------------------------------------------
@pytest.fixture(scope="session")
def signer_material():
    """End-user certificate and key shared across the test session."""
    return create_certificate("Alice Signer")


@pytest.fixture(scope="session")
def key_blob(signer_material):
    certificate, key = signer_material
    return create_key_blob(certificate, key, KEY_PASSWORD)


@pytest.fixture
def key_password():
    return KEY_PASSWORD


@pytest.fixture
def software_provider(tmp_path):
    return SoftwareProvider(file_store_path=tmp_path / "store")


@pytest.fixture
def software_session(software_provider):
    """Open session over the software provider."""
    session = SigningSession.from_settings(software_provider, ProviderSettings())
    session.open()
    yield session
    session.close()
