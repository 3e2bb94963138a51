"""
Configuration structs handed to the SDMS sync engine, the metrics engine
and the scheduled jobs.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class SDMSClientConfig(BaseModel):
    """Connection settings for the SDMS API."""
    base_url: str = ""
    timeout: int = Field(default=30, ge=1, le=300)
    max_retries: int = Field(default=3, ge=1, le=10)
    retry_base_delay: float = Field(default=2.0, ge=0)

    model_config = ConfigDict(frozen=True)

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v):
        if v and not v.startswith(('http://', 'https://')):
            raise ValueError('Base URL must start with http:// or https://')
        return v.rstrip('/')


class CacheConfig(BaseModel):
    """Freshness policy for cached SDMS records."""
    ttl_seconds: int = Field(default=604800, ge=0)
    refresh_user_batch: int = Field(default=100, ge=1)
    refresh_school_batch: int = Field(default=50, ge=1)

    model_config = ConfigDict(frozen=True)

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.ttl_seconds)

    def is_stale(self, last_synced: Optional[datetime], now: Optional[datetime] = None) -> bool:
        """A record never synced is always stale."""
        if last_synced is None:
            return True
        now = now or utcnow()
        return (now - last_synced) > self.ttl


class MetricsConfig(BaseModel):
    """Tuning for the engagement metrics engine."""
    session_gap_seconds: int = Field(default=1800, gt=0)
    at_risk_inactivity_days: int = Field(default=7, ge=1)

    model_config = ConfigDict(frozen=True)


class RetentionConfig(BaseModel):
    """Retention windows applied by the cleanup job."""
    weekly_metrics_days: int = Field(default=90, ge=1)
    monthly_metrics_days: int = Field(default=365, ge=1)
    sync_log_days: int = Field(default=30, ge=1)

    model_config = ConfigDict(frozen=True)


class AutoLinkConfig(BaseModel):
    """Settings for linking users by institutional email address."""
    email_domains: List[str] = Field(default_factory=lambda: ["rtb.ac.rw", "rtb.gov.rw"])
    batch_size: int = Field(default=200, ge=1)

    model_config = ConfigDict(frozen=True)


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
