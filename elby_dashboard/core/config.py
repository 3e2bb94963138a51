from pydantic_settings import BaseSettings, SettingsConfigDict, NoDecode
from pydantic import field_validator
from typing import Annotated, List

from elby_dashboard.core.sdms_config import (
    SDMSClientConfig, CacheConfig, MetricsConfig, RetentionConfig, AutoLinkConfig
)


class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "Elby Dashboard"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./elby_dashboard.db"
    DATABASE_ECHO: bool = False

    # SDMS API settings
    SDMS_API_URL: str = ""
    SDMS_TIMEOUT: int = 30
    SDMS_MAX_RETRIES: int = 3
    SDMS_RETRY_BASE_DELAY: float = 2.0
    SDMS_CACHE_TTL: int = 604800  # 7 days

    # Metrics settings
    SESSION_GAP_SECONDS: int = 1800
    AT_RISK_INACTIVITY_DAYS: int = 7

    # Retention settings
    WEEKLY_METRICS_RETENTION_DAYS: int = 90
    MONTHLY_METRICS_RETENTION_DAYS: int = 365
    SYNC_LOG_RETENTION_DAYS: int = 30

    # Batch caps for scheduled jobs
    REFRESH_USER_BATCH: int = 100
    REFRESH_SCHOOL_BATCH: int = 50
    AUTO_LINK_BATCH: int = 200
    AUTO_LINK_EMAIL_DOMAINS: Annotated[List[str], NoDecode] = ["rtb.ac.rw", "rtb.gov.rw"]

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    @field_validator("AUTO_LINK_EMAIL_DOMAINS", mode="before")
    @classmethod
    def parse_domains(cls, v):
        if isinstance(v, str):
            return [domain.strip().lower() for domain in v.split(",") if domain.strip()]
        return v

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        return v

    def sdms_client_config(self) -> SDMSClientConfig:
        return SDMSClientConfig(
            base_url=self.SDMS_API_URL,
            timeout=self.SDMS_TIMEOUT,
            max_retries=self.SDMS_MAX_RETRIES,
            retry_base_delay=self.SDMS_RETRY_BASE_DELAY,
        )

    def cache_config(self) -> CacheConfig:
        return CacheConfig(
            ttl_seconds=self.SDMS_CACHE_TTL,
            refresh_user_batch=self.REFRESH_USER_BATCH,
            refresh_school_batch=self.REFRESH_SCHOOL_BATCH,
        )

    def metrics_config(self) -> MetricsConfig:
        return MetricsConfig(
            session_gap_seconds=self.SESSION_GAP_SECONDS,
            at_risk_inactivity_days=self.AT_RISK_INACTIVITY_DAYS,
        )

    def retention_config(self) -> RetentionConfig:
        return RetentionConfig(
            weekly_metrics_days=self.WEEKLY_METRICS_RETENTION_DAYS,
            monthly_metrics_days=self.MONTHLY_METRICS_RETENTION_DAYS,
            sync_log_days=self.SYNC_LOG_RETENTION_DAYS,
        )

    def auto_link_config(self) -> AutoLinkConfig:
        return AutoLinkConfig(
            email_domains=self.AUTO_LINK_EMAIL_DOMAINS,
            batch_size=self.AUTO_LINK_BATCH,
        )


def get_settings() -> Settings:
    """Build settings from the environment."""
    return Settings()
