"""Unit tests for configuration loading."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from config import DEFAULT_DATA_DIR, load_config


@pytest.fixture(autouse=True)
def no_dotenv():
    """Keep a developer's .env file out of the tests."""
    with patch("config.load_dotenv"):
        yield


class TestLoadConfig:
    """Tests for load_config function."""

    def test_defaults(self):
        """Test config loading with no environment variables set."""
        with patch.dict(os.environ, {}, clear=True):
            config = load_config()

        assert config.data_dir == str(DEFAULT_DATA_DIR)
        assert config.log_level == "INFO"
        assert config.use_mock_client is False
        assert config.slack_webhook_url is None
        assert config.holidays_country == "US"
        assert config.page_size == 20
        assert config.api_timeout == 30

    def test_with_optional_vars(self, tmp_path):
        """Test config loading with every variable set."""
        with patch.dict(
            os.environ,
            {
                "LOG_LEVEL": "debug",
                "PR_PULSE_DATA_DIR": str(tmp_path),
                "PR_PULSE_USE_MOCK": "TRUE",
                "SLACK_WEBHOOK_URL": "https://hooks.slack.com/services/T000/B000/XXXX",
                "HOLIDAYS_COUNTRY": "kr",
                "GH_PAGE_SIZE": "50",
                "API_TIMEOUT": "10",
            },
            clear=True,
        ):
            config = load_config()

        assert config.log_level == "DEBUG"
        assert config.data_dir == str(tmp_path)
        assert config.use_mock_client is True
        assert config.slack_webhook_url == "https://hooks.slack.com/services/T000/B000/XXXX"
        assert config.holidays_country == "KR"
        assert config.page_size == 50
        assert config.api_timeout == 10

    def test_data_dir_expands_user(self):
        with patch.dict(os.environ, {"PR_PULSE_DATA_DIR": "~/pulse"}, clear=True):
            config = load_config()
        assert not config.data_dir.startswith("~")

    def test_invalid_log_level(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "VERBOSE"}, clear=True):
            with pytest.raises(ValueError, match="Invalid LOG_LEVEL"):
                load_config()

    def test_invalid_mock_flag(self):
        with patch.dict(os.environ, {"PR_PULSE_USE_MOCK": "yes"}, clear=True):
            with pytest.raises(ValueError, match="PR_PULSE_USE_MOCK"):
                load_config()

    def test_invalid_webhook_url(self):
        """Test that only Slack webhook URLs are accepted."""
        with patch.dict(
            os.environ, {"SLACK_WEBHOOK_URL": "https://example.com/hook"}, clear=True
        ):
            with pytest.raises(ValueError, match="SLACK_WEBHOOK_URL"):
                load_config()

    def test_invalid_holidays_country(self):
        with patch.dict(os.environ, {"HOLIDAYS_COUNTRY": "XX"}, clear=True):
            with pytest.raises(ValueError, match="Invalid HOLIDAYS_COUNTRY 'XX'"):
                load_config()

    @pytest.mark.parametrize(
        "name,value",
        [
            ("GH_PAGE_SIZE", "0"),
            ("GH_PAGE_SIZE", "101"),
            ("GH_PAGE_SIZE", "twenty"),
            ("API_TIMEOUT", "0"),
            ("API_TIMEOUT", "301"),
        ],
    )
    def test_out_of_range_integers(self, name, value):
        with patch.dict(os.environ, {name: value}, clear=True):
            with pytest.raises(ValueError, match=f"Invalid {name}"):
                load_config()
