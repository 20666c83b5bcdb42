"""
Unit Tests - Configuration
"""
import pytest
from pydantic import ValidationError

from scout_analytics.config.settings import (
    AccessSettings,
    AnomalySettings,
    DatabaseSettings,
    RefreshSettings,
    Settings,
)


class TestSettings:
    """Tests for application settings"""

    def test_defaults(self):
        """Test documented defaults"""
        settings = Settings(app_env="testing")

        assert settings.aggregation.daily_sales_days == 90
        assert settings.aggregation.segment_days == 365
        assert settings.anomaly.z_threshold == 3.0
        assert settings.access.analyst_window_days == 90
        assert settings.access.store_manager_window_days == 30
        assert settings.access.business_timezone == "Asia/Manila"
        assert settings.retention.transaction_months == 12
        assert not settings.is_production

    def test_environment_is_normalized(self):
        """Test app_env is lowercased"""
        settings = Settings(app_env="PRODUCTION")
        assert settings.app_env == "production"
        assert settings.is_production

    def test_invalid_environment(self):
        """Test unknown environments are rejected"""
        with pytest.raises(ValidationError):
            Settings(app_env="qa")

    def test_section_environment_variables(self, monkeypatch):
        """Test each section reads its own prefix"""
        monkeypatch.setenv("ANOMALY_Z_THRESHOLD", "2.5")
        monkeypatch.setenv("ACCESS_BUSINESS_HOURS_END", "18")
        monkeypatch.setenv("REFRESH_VIEW_TIMEOUT_SECONDS", "12")

        assert AnomalySettings().z_threshold == 2.5
        assert AccessSettings().business_hours_end == 18
        assert RefreshSettings().view_timeout_seconds == 12.0

    def test_database_url_override(self, monkeypatch):
        """Test DATABASE_URL wins over host settings"""
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///scout.db")
        assert DatabaseSettings().async_url == "sqlite+aiosqlite:///scout.db"

    def test_database_url_from_parts(self, monkeypatch):
        """Test the asyncpg URL is assembled from host settings"""
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("POSTGRES_HOST", "db")
        monkeypatch.setenv("POSTGRES_PASSWORD", "pw")

        url = DatabaseSettings().async_url
        assert url == "postgresql+asyncpg://scout:pw@db:5432/scout_analytics"
