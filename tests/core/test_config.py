"""
Tests for settings parsing and the config structs built from them.
"""

import pytest
from datetime import timedelta
from pydantic import ValidationError

from elby_dashboard.core.config import Settings
from elby_dashboard.core.sdms_config import CacheConfig, SDMSClientConfig, utcnow


class TestCacheConfig:

    def test_never_synced_is_stale(self):
        assert CacheConfig(ttl_seconds=3600).is_stale(None) is True

    def test_staleness_boundary(self):
        config = CacheConfig(ttl_seconds=3600)
        now = utcnow()

        assert config.is_stale(now - timedelta(seconds=3599), now) is False
        assert config.is_stale(now - timedelta(seconds=3600), now) is False
        assert config.is_stale(now - timedelta(seconds=3601), now) is True

    def test_zero_ttl_makes_everything_stale(self):
        now = utcnow()
        assert CacheConfig(ttl_seconds=0).is_stale(now - timedelta(seconds=1), now) is True

    def test_frozen(self):
        with pytest.raises(ValidationError):
            CacheConfig().ttl_seconds = 5


class TestSDMSClientConfig:

    def test_rejects_non_http_url(self):
        with pytest.raises(ValidationError):
            SDMSClientConfig(base_url="ftp://sdms.example")

    def test_empty_url_allowed(self):
        assert SDMSClientConfig().base_url == ""


class TestSettings:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("AUTO_LINK_EMAIL_DOMAINS", raising=False)
        settings = Settings(_env_file=None)

        assert settings.SDMS_CACHE_TTL == 604800
        assert settings.cache_config().ttl == timedelta(days=7)
        assert settings.auto_link_config().email_domains == ["rtb.ac.rw", "rtb.gov.rw"]

    def test_domains_from_environment(self, monkeypatch):
        monkeypatch.setenv("AUTO_LINK_EMAIL_DOMAINS", " School.EDU , ,example.org")

        settings = Settings(_env_file=None)

        assert settings.AUTO_LINK_EMAIL_DOMAINS == ["school.edu", "example.org"]

    def test_structs_carry_settings(self):
        settings = Settings(
            _env_file=None,
            SDMS_API_URL="https://sdms.example/api",
            SDMS_MAX_RETRIES=5,
            SESSION_GAP_SECONDS=900,
            SYNC_LOG_RETENTION_DAYS=14,
            REFRESH_USER_BATCH=25,
        )

        assert settings.sdms_client_config().max_retries == 5
        assert settings.sdms_client_config().base_url == "https://sdms.example/api"
        assert settings.metrics_config().session_gap_seconds == 900
        assert settings.retention_config().sync_log_days == 14
        assert settings.cache_config().refresh_user_batch == 25

    def test_database_url_required(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, DATABASE_URL="")
