"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .duration import DurationParseError, parse_duration, validate_duration_range


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


def _checked_duration(value: str, minimum: int, maximum: int, label: str) -> int:
    try:
        seconds = parse_duration(value)
        validate_duration_range(seconds, min_seconds=minimum, max_seconds=maximum, label=label)
    except DurationParseError as e:
        raise ValueError(str(e)) from e
    return seconds


class ScheduleConfig(BaseModel):
    """Intervals for the in-process scheduler."""

    queue_interval: str = Field("1m", description="How often the notification queue is drained")
    alert_interval: str = Field("30m", description="How often plate alerts are checked")
    run_on_startup: bool = Field(True, description="Run both jobs once immediately on start")

    queue_interval_seconds: Optional[int] = None
    alert_interval_seconds: Optional[int] = None

    @model_validator(mode="after")
    def compute_seconds(self):
        """Parse both intervals into seconds."""
        self.queue_interval_seconds = _checked_duration(
            self.queue_interval, 10, 3600, "queue_interval"
        )
        self.alert_interval_seconds = _checked_duration(
            self.alert_interval, 60, 86400, "alert_interval"
        )
        return self


class AlertsConfig(BaseModel):
    """Plate and insurance alert thresholds and notification cooldown."""

    overdue_urgent_days: int = Field(
        3, ge=1, le=60, description="Days overdue at which a rental alert becomes urgent"
    )
    expiring_window_days: int = Field(
        14, ge=1, le=90, description="Buyer's tags expiring within this many days are flagged"
    )
    expiring_urgent_days: int = Field(
        7, ge=0, le=90, description="Buyer's tags expiring within this many days are urgent"
    )
    insurance_expiring_days: int = Field(
        7, ge=1, le=90, description="Rental insurance expiring within this many days is flagged"
    )
    insurance_urgent_days: int = Field(
        3, ge=0, le=90, description="Rental insurance expiring within this many days is urgent"
    )
    notification_cooldown: str = Field(
        "24h", description="Minimum time between notifications for the same open alert"
    )
    timezone: str = Field(
        "UTC", description="IANA time zone used for calendar-day comparisons"
    )

    notification_cooldown_seconds: Optional[int] = None

    @model_validator(mode="after")
    def validate_thresholds(self):
        """Urgent window must sit inside the detection window."""
        if self.expiring_urgent_days > self.expiring_window_days:
            raise ValueError(
                "expiring_urgent_days cannot exceed expiring_window_days "
                f"({self.expiring_urgent_days} > {self.expiring_window_days})"
            )
        if self.insurance_urgent_days > self.insurance_expiring_days:
            raise ValueError(
                "insurance_urgent_days cannot exceed insurance_expiring_days "
                f"({self.insurance_urgent_days} > {self.insurance_expiring_days})"
            )
        self.notification_cooldown_seconds = _checked_duration(
            self.notification_cooldown, 60, 7 * 86400, "notification_cooldown"
        )
        return self


class QueueConfig(BaseModel):
    """Notification queue writer and processor settings."""

    debounce: str = Field("5m", description="Delay before a stage change is delivered")
    batch_limit: int = Field(100, ge=1, le=1000, description="Maximum items drained per run")

    debounce_seconds: Optional[int] = None

    @model_validator(mode="after")
    def compute_debounce(self):
        self.debounce_seconds = _checked_duration(self.debounce, 1, 86400, "debounce")
        return self


class MessagingConfig(BaseModel):
    """Branding and transport settings shared by both pipelines."""

    brand_name: str = Field("Triple J Auto Investment", min_length=1)
    sms_brand: str = Field("Triple J", min_length=1, description="Short brand used in SMS")
    support_phone: str = Field("(832) 400-9760", min_length=1)
    dealer_license: str = Field("P171632")
    dealer_address: str = Field("8774 Almeda Genoa Road, Houston, TX 77075")
    dashboard_path: str = Field(
        "/#/admin/plates", description="Path of the plates dashboard on the public site"
    )
    http_timeout: int = Field(
        15, ge=1, le=120, description="Timeout for provider HTTP calls (seconds)"
    )

    @field_validator("brand_name", "sms_brand", "support_phone")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Field cannot be empty or whitespace-only")
        return stripped


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True, "validate_default": True}


class AppConfig(BaseModel):
    """Root configuration object for the registration notifier.

    Every section has defaults, so an empty document is a valid configuration.
    """

    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    messaging: MessagingConfig = Field(default_factory=MessagingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
