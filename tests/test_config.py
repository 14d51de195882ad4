"""Tests for configuration management.

Tests cover:
- Loading configuration from environment variables
- Validation of invalid configuration
- Production environment constraints
- Settings singleton behavior
- Configuration snapshot generation
"""

import os
from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from eusign.core.config import (
    DEFAULT_TEMPLATES_DIR,
    ConfigValidationError,
    Environment,
    ProviderKind,
    ProviderSettings,
    Settings,
    StorageSettings,
    validate_settings,
)
from eusign.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)
from eusign.services.provider import CtxSignAlgorithm


@pytest.fixture
def storage_env(tmp_path):
    """Provide storage directories under a temporary path."""
    return {
        "EUSIGN_STORAGE__CERTIFICATES_DIR": str(tmp_path / "certificates"),
        "EUSIGN_STORAGE__SETTINGS_DIR": str(tmp_path / "settings"),
    }


class TestEnums:
    """Tests for configuration enums."""

    def test_environment_values(self):
        assert Environment.DEV.value == "dev"
        assert Environment.STAGING.value == "staging"
        assert Environment.PRODUCTION.value == "production"

    def test_provider_kind_from_string(self):
        assert ProviderKind("software") == ProviderKind.SOFTWARE
        assert ProviderKind("native") == ProviderKind.NATIVE


class TestStorageSettings:
    """Tests for StorageSettings."""

    def test_defaults(self):
        """Test storage defaults point at the packaged templates."""
        settings = StorageSettings()
        assert settings.certificates_dir == Path("/var/lib/eusign/certificates")
        assert settings.settings_dir == Path("/var/lib/eusign/settings")
        assert settings.templates_dir == DEFAULT_TEMPLATES_DIR
        assert settings.cache_ttl == timedelta(days=1)

    def test_from_env(self, storage_env):
        with patch.dict(
            os.environ,
            {**storage_env, "EUSIGN_STORAGE__CACHE_TTL_SECONDS": "3600"},
            clear=False,
        ):
            settings = StorageSettings()
            expected = Path(storage_env["EUSIGN_STORAGE__CERTIFICATES_DIR"])
            assert settings.certificates_dir == expected
            assert settings.cache_ttl == timedelta(hours=1)

    def test_negative_ttl_rejected(self):
        with patch.dict(os.environ, {"EUSIGN_STORAGE__CACHE_TTL_SECONDS": "-1"}, clear=False):
            with pytest.raises(ValidationError):
                StorageSettings()


class TestProviderSettings:
    """Tests for ProviderSettings."""

    def test_defaults(self):
        """Test the software provider defaults to an algorithm it implements."""
        settings = ProviderSettings()
        assert settings.kind == ProviderKind.SOFTWARE
        assert settings.error_charset == "cp1251"
        assert settings.sign_algorithm == CtxSignAlgorithm.ECDSA_WITH_SHA
        assert settings.file_store_path is None

    def test_native_default_algorithm(self):
        settings = ProviderSettings(kind=ProviderKind.NATIVE)
        assert settings.sign_algorithm == CtxSignAlgorithm.DSTU4145_WITH_GOST34311

    def test_software_rejects_dstu(self):
        with pytest.raises(ValidationError) as exc_info:
            ProviderSettings(
                kind=ProviderKind.SOFTWARE,
                sign_algorithm=CtxSignAlgorithm.DSTU4145_WITH_GOST34311,
            )
        assert "does not support DSTU4145_WITH_GOST34311" in str(exc_info.value)

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("RSA_WITH_SHA", CtxSignAlgorithm.RSA_WITH_SHA),
            ("ecdsa_with_sha", CtxSignAlgorithm.ECDSA_WITH_SHA),
            ("2", CtxSignAlgorithm.RSA_WITH_SHA),
        ],
    )
    def test_sign_algorithm_from_env(self, value, expected):
        """Test the algorithm is accepted by name or by value."""
        with patch.dict(
            os.environ,
            {"EUSIGN_PROVIDER__SIGN_ALGORITHM": value},
            clear=False,
        ):
            assert ProviderSettings().sign_algorithm == expected

    def test_native_algorithm_name_from_env(self):
        with patch.dict(
            os.environ,
            {
                "EUSIGN_PROVIDER__KIND": "native",
                "EUSIGN_PROVIDER__SIGN_ALGORITHM": "DSTU4145_WITH_GOST34311",
            },
            clear=False,
        ):
            settings = ProviderSettings()
        assert settings.sign_algorithm == CtxSignAlgorithm.DSTU4145_WITH_GOST34311

    def test_unknown_sign_algorithm_rejected(self):
        with patch.dict(
            os.environ,
            {"EUSIGN_PROVIDER__SIGN_ALGORITHM": "GOST_2012"},
            clear=False,
        ):
            with pytest.raises(ValidationError) as exc_info:
                ProviderSettings()
            assert "Sign algorithm must be one of" in str(exc_info.value)

    def test_charset_normalized(self):
        """Test charset aliases are normalized by the codec registry."""
        with patch.dict(
            os.environ,
            {"EUSIGN_PROVIDER__ERROR_CHARSET": "windows-1251"},
            clear=False,
        ):
            assert ProviderSettings().error_charset == "cp1251"

    def test_unknown_charset_rejected(self):
        with patch.dict(os.environ, {"EUSIGN_PROVIDER__ERROR_CHARSET": "klingon"}, clear=False):
            with pytest.raises(ValidationError) as exc_info:
                ProviderSettings()
            assert "Unknown charset" in str(exc_info.value)


class TestMainSettings:
    """Tests for the main Settings container."""

    def test_nested_from_env(self, storage_env):
        with patch.dict(
            os.environ,
            {
                **storage_env,
                "EUSIGN_ENVIRONMENT": "staging",
                "EUSIGN_PROVIDER__KIND": "native",
            },
            clear=False,
        ):
            settings = Settings()
            assert settings.environment == Environment.STAGING
            assert settings.provider.kind == ProviderKind.NATIVE
            expected = Path(storage_env["EUSIGN_STORAGE__SETTINGS_DIR"])
            assert settings.storage.settings_dir == expected

    def test_log_level_normalized(self):
        with patch.dict(os.environ, {"EUSIGN_LOG_LEVEL": "debug"}, clear=False):
            assert Settings().log_level == "DEBUG"

    def test_invalid_log_level(self):
        with patch.dict(os.environ, {"EUSIGN_LOG_LEVEL": "verbose"}, clear=False):
            with pytest.raises(ValidationError) as exc_info:
                Settings()
            assert "Log level must be one of" in str(exc_info.value)

    def test_production_rejects_software_provider(self):
        """Test that production cannot run with non-qualified signatures."""
        with patch.dict(
            os.environ,
            {"EUSIGN_ENVIRONMENT": "production", "EUSIGN_PROVIDER__KIND": "software"},
            clear=False,
        ):
            with pytest.raises(ValidationError) as exc_info:
                Settings()
            assert "requires the native provider" in str(exc_info.value)

    def test_production_with_native_provider(self):
        with patch.dict(
            os.environ,
            {"EUSIGN_ENVIRONMENT": "production", "EUSIGN_PROVIDER__KIND": "native"},
            clear=False,
        ):
            settings = Settings()
            assert settings.is_production is True

    def test_config_snapshot(self, storage_env):
        with patch.dict(os.environ, storage_env, clear=False):
            snapshot = Settings().get_config_snapshot()
        assert snapshot["environment"] == "dev"
        certificates_dir = storage_env["EUSIGN_STORAGE__CERTIFICATES_DIR"]
        assert snapshot["storage"]["certificates_dir"] == certificates_dir
        assert snapshot["provider"] == {
            "kind": "software",
            "sign_algorithm": "ECDSA_WITH_SHA",
        }

    def test_snapshot_algorithm_reloads_from_env(self, storage_env):
        """Test the algorithm name printed in the snapshot is a valid setting."""
        with patch.dict(
            os.environ,
            {**storage_env, "EUSIGN_PROVIDER__KIND": "native"},
            clear=False,
        ):
            name = Settings().get_config_snapshot()["provider"]["sign_algorithm"]
            with patch.dict(os.environ, {"EUSIGN_PROVIDER__SIGN_ALGORITHM": name}, clear=False):
                settings = Settings()
        assert name == "DSTU4145_WITH_GOST34311"
        assert settings.provider.sign_algorithm == CtxSignAlgorithm.DSTU4145_WITH_GOST34311

    def test_config_hash_tracks_changes(self, storage_env):
        with patch.dict(os.environ, storage_env, clear=False):
            first = Settings().get_config_hash()
            again = Settings().get_config_hash()
        with patch.dict(
            os.environ,
            {**storage_env, "EUSIGN_STORAGE__CACHE_TTL_SECONDS": "60"},
            clear=False,
        ):
            changed = Settings().get_config_hash()
        assert first == again
        assert first != changed
        assert len(first) == 64


class TestValidateSettings:
    """Tests for runtime settings validation."""

    def test_valid_settings(self, storage_env):
        with patch.dict(os.environ, storage_env, clear=False):
            validate_settings(Settings())

    def test_missing_templates_dir(self, storage_env, tmp_path):
        with patch.dict(
            os.environ,
            {**storage_env, "EUSIGN_STORAGE__TEMPLATES_DIR": str(tmp_path / "missing")},
            clear=False,
        ):
            with pytest.raises(ConfigValidationError) as exc_info:
                validate_settings(Settings())
            assert exc_info.value.field == "storage.templates_dir"

    def test_shared_directories_rejected(self, tmp_path):
        shared = str(tmp_path / "shared")
        with patch.dict(
            os.environ,
            {"EUSIGN_STORAGE__CERTIFICATES_DIR": shared, "EUSIGN_STORAGE__SETTINGS_DIR": shared},
            clear=False,
        ):
            with pytest.raises(ConfigValidationError) as exc_info:
                validate_settings(Settings())
            assert exc_info.value.field == "storage.settings_dir"


class TestSettingsSingleton:
    """Tests for the cached settings accessor."""

    def test_get_settings_is_cached(self, storage_env):
        with patch.dict(os.environ, storage_env, clear=False):
            assert get_settings() is get_settings()

    def test_clear_settings_cache(self, storage_env):
        with patch.dict(os.environ, storage_env, clear=False):
            first = get_settings()
            clear_settings_cache()
            assert get_settings() is not first

    def test_invalid_settings_exit(self):
        with patch.dict(os.environ, {"EUSIGN_LOG_LEVEL": "verbose"}, clear=False):
            with pytest.raises(SystemExit) as exc_info:
                get_settings()
            assert exc_info.value.code == 1

    def test_runtime_validation_failure_exits(self, tmp_path):
        with patch.dict(
            os.environ,
            {"EUSIGN_STORAGE__TEMPLATES_DIR": str(tmp_path / "missing")},
            clear=False,
        ):
            with pytest.raises(SystemExit):
                get_settings()

    def test_get_settings_safe(self):
        with patch.dict(os.environ, {"EUSIGN_LOG_LEVEL": "verbose"}, clear=False):
            assert get_settings_safe() is None
