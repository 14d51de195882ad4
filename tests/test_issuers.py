"""Tests for the issuer registry."""

import pytest

from eusign.core.config import DEFAULT_TEMPLATES_DIR
from eusign.services import issuers


class TestIssuerRegistry:
    """Tests for issuer lookups."""

    def test_exactly_four_issuers(self):
        assert set(issuers.known_issuers()) == {
            "acsk.privatbank.ua",
            "acskidd.gov.ua",
            "ca.iit.com.ua",
            "ca.ksystems.com.ua",
        }

    @pytest.mark.parametrize("host", issuers.known_issuers())
    def test_known_issuer(self, host):
        assert issuers.is_known_issuer(host) is True
        assert issuers.display_name(host)

    @pytest.mark.parametrize(
        "host",
        ["unknown.host", "", "CA.IIT.COM.UA", "ca.iit.com.ua.", "iit.com.ua", "acsk.privatbank"],
    )
    def test_unknown_issuer(self, host):
        assert issuers.is_known_issuer(host) is False
        assert issuers.display_name(host) is None

    def test_display_name(self):
        assert issuers.display_name(issuers.IDD) == "КНЕДП - ІДД ДПС"

    def test_registry_is_read_only(self):
        with pytest.raises(TypeError):
            issuers.KNOWN_ISSUERS["evil.example"] = "Evil CA"


class TestIssuerTemplates:
    """Tests for the packaged issuer templates."""

    def test_template_path(self, tmp_path):
        path = issuers.template_path(tmp_path, "ca.iit.com.ua")
        assert path == tmp_path / "ca.iit.com.ua.dist.ini"

    @pytest.mark.parametrize("host", issuers.known_issuers())
    def test_template_shipped_with_placeholder(self, host):
        """Test every known issuer has a template with one {dir} placeholder."""
        content = issuers.template_path(DEFAULT_TEMPLATES_DIR, host).read_text(encoding="utf-8")
        assert content.count("{dir}") == 1
        assert host in content
