"""Tests for service configuration.

These tests cover:
1. Default values
2. Environment variable loading
3. Validation rules
4. The global configuration store
"""

import logging
import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from library_circulation.config import (
    DEFAULT_JWT_SECRET,
    ServerConfig,
    get_config,
    reset_config,
    set_config,
)


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """The default SQLite path is relative to the working directory."""
    monkeypatch.chdir(tmp_path)
    yield
    reset_config()


class TestServerConfig:
    """Test configuration behavior."""

    def test_default_configuration(self, tmp_path):
        """Defaults match the documented circulation policy."""
        config = ServerConfig(_env_file=None)

        assert config.service_name == "library-circulation"
        assert config.loan_period_days == 14
        assert config.default_page_size == 25
        assert config.max_page_size == 100
        assert config.overdue_checks_enabled is True
        assert config.overdue_check_interval_minutes == 60
        assert config.pool_timeout_seconds == 10.0
        assert config.http_port == 3001
        assert config.is_sqlite
        assert (tmp_path / "data").is_dir()

    def test_environment_variable_loading(self):
        """LIBRARY_ prefixed variables override defaults."""
        env_vars = {
            "LIBRARY_DATABASE_URL": "postgresql+psycopg://lib:lib@db/library",
            "LIBRARY_LOAN_PERIOD_DAYS": "21",
            "LIBRARY_MAX_PAGE_SIZE": "50",
            "LIBRARY_OVERDUE_CHECKS_ENABLED": "false",
            "LIBRARY_OVERDUE_CHECK_INTERVAL_MINUTES": "5",
            "LIBRARY_LOG_LEVEL": "DEBUG",
        }

        with patch.dict(os.environ, env_vars):
            config = ServerConfig(_env_file=None)

        assert config.database_url == "postgresql+psycopg://lib:lib@db/library"
        assert not config.is_sqlite
        assert config.loan_period_days == 21
        assert config.max_page_size == 50
        assert config.overdue_checks_enabled is False
        assert config.overdue_check_interval_minutes == 5
        assert config.log_level == "DEBUG"

    def test_jwt_secret_hidden_from_repr(self):
        config = ServerConfig(_env_file=None, jwt_secret="s" * 40)
        assert "s" * 40 not in repr(config)

    def test_default_jwt_secret_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="library_circulation.config"):
            ServerConfig(_env_file=None, jwt_secret=DEFAULT_JWT_SECRET)
        assert "insecure default" in caplog.text

    def test_short_jwt_secret_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="library_circulation.config"):
            ServerConfig(_env_file=None, jwt_secret="short")
        assert "shorter than 32" in caplog.text

    def test_empty_jwt_secret_rejected(self):
        with pytest.raises(ValidationError):
            ServerConfig(_env_file=None, jwt_secret="")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"loan_period_days": 0},
            {"default_page_size": 0},
            {"max_page_size": 1001},
            {"default_page_size": 50, "max_page_size": 20},
            {"overdue_check_interval_minutes": 0},
            {"environment": "staging"},
            {"log_level": "TRACE"},
            {"pool_timeout_seconds": 0},
        ],
    )
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValidationError):
            ServerConfig(_env_file=None, **overrides)


class TestConfigStore:
    """Test the global configuration singleton."""

    def test_get_config_is_cached(self):
        first = get_config()
        assert get_config() is first

    def test_set_and_reset(self):
        custom = ServerConfig(_env_file=None, loan_period_days=7)
        set_config(custom)
        assert get_config() is custom

        reset_config()
        assert get_config() is not custom
