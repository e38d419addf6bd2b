"""Configuration management module for the registration notifier."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, parse_app_config, validate_config_file
from .models import (
    AlertsConfig,
    AppConfig,
    LogFormat,
    LogLevel,
    LoggingConfig,
    MessagingConfig,
    QueueConfig,
    ScheduleConfig,
)

__all__ = [
    # Main loader functions
    "load_config",
    "parse_app_config",
    "validate_config_file",
    "load_environment_config",
    # Configuration models
    "AppConfig",
    "ScheduleConfig",
    "AlertsConfig",
    "QueueConfig",
    "MessagingConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    # Enums
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
]
