"""Tests for logging setup."""

import logging
from unittest.mock import patch

from eusign.core.logging import LOG_FORMAT, configure_logging


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_level_and_format(self):
        with patch("eusign.core.logging.logging.basicConfig") as basic_config:
            configure_logging("debug")
        basic_config.assert_called_once_with(level=logging.DEBUG, format=LOG_FORMAT)

    def test_unknown_level_falls_back_to_info(self):
        with patch("eusign.core.logging.logging.basicConfig") as basic_config:
            configure_logging("chatty")
        basic_config.assert_called_once_with(level=logging.INFO, format=LOG_FORMAT)

    def test_format_names_logger(self):
        assert "%(name)s" in LOG_FORMAT
        assert "%(levelname)s" in LOG_FORMAT
