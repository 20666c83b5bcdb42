"""
Scout Retail Analytics Pipeline
Centralized Configuration Management

Pydantic settings with environment variable support for every subsystem:
database, aggregation windows, refresh cadences, anomaly thresholds,
access policy and retention.
"""

from functools import lru_cache
from typing import Optional
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL Database Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="scout_analytics", description="Database name")
    user: str = Field(default="scout", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    pool_size: int = Field(default=20, description="Connection pool size")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, alias="DATABASE_URL", description="Full async URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """Async database URL for asyncpg"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class AggregationSettings(BaseSettings):
    """Derived view windows and classification thresholds"""

    model_config = SettingsConfigDict(env_prefix="AGGREGATION_")

    # Lookback windows (days)
    daily_sales_days: int = Field(default=90, description="Daily sales rollup window")
    product_days: int = Field(default=90, description="Product performance window")
    regional_days: int = Field(default=90, description="Regional performance window")
    brand_days: int = Field(default=30, description="Brand competition window")
    category_days: int = Field(default=30, description="Category performance window")
    store_days: int = Field(default=30, description="Store performance window")
    hourly_days: int = Field(default=30, description="Hourly pattern window")
    segment_days: int = Field(default=365, description="Customer segmentation window")

    # RFM thresholds
    recent_days: int = Field(default=30, description="Recency: recent if last purchase within N days")
    active_days: int = Field(default=90, description="Recency: active if last purchase within N days")
    loyal_recency_days: int = Field(default=60, description="Loyal segment recency bound")
    frequent_transactions: int = Field(default=10, description="Frequency: frequent lower bound")
    regular_transactions: int = Field(default=5, description="Frequency: regular lower bound")
    premium_spend: float = Field(default=10000.0, description="Monetary: premium lower bound")
    standard_spend: float = Field(default=5000.0, description="Monetary: standard lower bound")

    # Product tiers (units sold, strict lower bounds)
    high_performer_units: int = Field(default=1000, description="High performer units")
    medium_performer_units: int = Field(default=500, description="Medium performer units")

    # Store tiers (revenue, inclusive lower bounds)
    top_store_revenue: float = Field(default=50000.0, description="Top performer revenue")
    strong_store_revenue: float = Field(default=25000.0, description="Strong performer revenue")
    average_store_revenue: float = Field(default=10000.0, description="Average performer revenue")
    device_stale_hours: int = Field(default=24, description="Hours before a device counts as disconnected")


class RefreshSettings(BaseSettings):
    """Refresh scheduling and timeouts"""

    model_config = SettingsConfigDict(env_prefix="REFRESH_")

    view_timeout_seconds: float = Field(default=300.0, description="Max seconds per view rebuild")
    detection_timeout_seconds: float = Field(default=300.0, description="Max seconds per detection run")

    # Cron schedules
    hourly_cron: str = Field(default="0 * * * *", description="Hourly view refresh")
    nightly_cron: str = Field(default="0 2 * * *", description="Nightly view refresh")
    detection_cron: str = Field(default="0 8-20 * * *", description="Anomaly detection")
    purge_cron: str = Field(default="0 3 * * 0", description="Weekly retention purge")
    grant_sweep_cron: str = Field(default="0 1 * * *", description="Expired grant sweep")
    fmcg_flag_cron: str = Field(default="0 */4 * * *", description="FMCG transaction flagging")


class AnomalySettings(BaseSettings):
    """Anomaly detection thresholds"""

    model_config = SettingsConfigDict(env_prefix="ANOMALY_")

    enabled: bool = Field(default=True, description="Enable anomaly detection")
    z_threshold: float = Field(default=3.0, description="Std deviations above mean for a suspicious amount")
    high_severity_multiplier: float = Field(default=2.0, description="Threshold multiple for high severity")
    store_deviation_sigma: float = Field(default=2.0, description="Std deviations for unusual store averages")
    baseline_days: int = Field(default=30, description="Amount distribution window")
    scan_days: int = Field(default=7, description="Recent scan window")
    pattern_min_transactions: int = Field(default=5, description="Min store transactions for pattern rule")
    substitution_min_transactions: int = Field(default=10, description="Min store transactions for substitution rule")
    substitution_rate_percent: float = Field(default=25.0, description="Substitution rate alert threshold")

    # System alerts
    zero_revenue_store_limit: int = Field(default=5, description="Stores with zero revenue today before alerting")
    high_severity_limit: int = Field(default=10, description="Active high severity anomalies before alerting")


class AccessSettings(BaseSettings):
    """Row-level access policy"""

    model_config = SettingsConfigDict(env_prefix="ACCESS_")

    analyst_window_days: int = Field(default=90, description="Analyst visibility window")
    store_manager_window_days: int = Field(default=30, description="Store manager visibility window")
    business_hours_start: int = Field(default=8, description="First hour of access (inclusive)")
    business_hours_end: int = Field(default=20, description="Last hour of access (inclusive)")
    business_timezone: str = Field(default="Asia/Manila", description="Time zone the business hours are read in")


class RetentionSettings(BaseSettings):
    """Data retention windows"""

    model_config = SettingsConfigDict(env_prefix="RETENTION_")

    transaction_months: int = Field(default=12, description="Months of transactions to keep")
    audit_months: int = Field(default=6, description="Months of audit log to keep")
    resolved_anomaly_months: int = Field(default=3, description="Months to keep resolved anomalies")


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="scout-analytics", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")

    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)
    refresh: RefreshSettings = Field(default_factory=RefreshSettings)
    anomaly: AnomalySettings = Field(default_factory=AnomalySettings)
    access: AccessSettings = Field(default_factory=AccessSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
