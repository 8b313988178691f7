"""Monitor schemas for API."""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import AnyHttpUrl, BaseModel, Field, TypeAdapter, ValidationError, field_validator

from ..policy import (
    MAX_INTERVAL_SECONDS,
    MAX_TIMEOUT_SECONDS,
    MIN_INTERVAL_SECONDS,
    MIN_TIMEOUT_SECONDS,
)

HttpMethod = Literal["GET", "POST", "DELETE", "HEAD"]


class CustomHeader(BaseModel):
    key: str = Field(..., min_length=1)
    value: str = ""


_http_url = TypeAdapter(AnyHttpUrl)


def _validate_url(value: Optional[str]) -> Optional[str]:
    """Reject anything that is not an absolute http(s) URL; keep the text as given."""
    if value is None:
        return value
    value = value.strip()
    try:
        _http_url.validate_python(value)
    except ValidationError:
        raise ValueError("invalid URL format")
    return value


class MonitorCreate(BaseModel):
    """Schema for creating a new monitor."""
    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1)
    method: HttpMethod = "GET"
    interval_seconds: int = Field(default=300, ge=MIN_INTERVAL_SECONDS, le=MAX_INTERVAL_SECONDS)
    timeout_seconds: int = Field(default=30, ge=MIN_TIMEOUT_SECONDS, le=MAX_TIMEOUT_SECONDS)
    expected_status_code: int = Field(default=200, ge=100, le=599)
    custom_headers: List[CustomHeader] = Field(default_factory=list)
    alerts_enabled: bool = True
    alert_email: bool = True
    slack_webhook: str = ""
    discord_webhook: str = ""

    @field_validator("url")
    @classmethod
    def check_url(cls, v):
        return _validate_url(v)


class MonitorUpdate(BaseModel):
    """Schema for updating a monitor."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    url: Optional[str] = Field(None, min_length=1)
    method: Optional[HttpMethod] = None
    interval_seconds: Optional[int] = Field(None, ge=MIN_INTERVAL_SECONDS, le=MAX_INTERVAL_SECONDS)
    timeout_seconds: Optional[int] = Field(None, ge=MIN_TIMEOUT_SECONDS, le=MAX_TIMEOUT_SECONDS)
    expected_status_code: Optional[int] = Field(None, ge=100, le=599)
    custom_headers: Optional[List[CustomHeader]] = None
    alerts_enabled: Optional[bool] = None
    alert_email: Optional[bool] = None
    slack_webhook: Optional[str] = None
    discord_webhook: Optional[str] = None

    @field_validator("url")
    @classmethod
    def check_url(cls, v):
        return _validate_url(v)


class MonitorResponse(BaseModel):
    """Schema for monitor in API responses."""
    id: int
    user_id: int
    name: str
    url: str
    method: str
    interval_seconds: int
    timeout_seconds: int
    expected_status_code: int
    custom_headers: List[CustomHeader] = Field(default_factory=list)
    alerts_enabled: bool
    status: str
    is_active: bool
    last_check_at: Optional[datetime] = None
    last_downtime_at: Optional[datetime] = None
    total_downtime: int
    created_at: datetime

    class Config:
        from_attributes = True


class CheckResponse(BaseModel):
    """A single probe result."""
    id: int
    monitor_id: int
    success: bool
    response_time_ms: int
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    location: Optional[dict] = None
    checked_at: datetime

    class Config:
        from_attributes = True


UptimePeriod = Literal["1d", "7d", "30d"]
UPTIME_PERIOD_DAYS = {"1d": 1, "7d": 7, "30d": 30}


class UptimeResponse(BaseModel):
    """Availability summary over a trailing window."""
    period: UptimePeriod
    uptime_percentage: float
    avg_response_time_ms: int
    total_checks: int
    successful_checks: int
