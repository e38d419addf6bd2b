"""Additional validation utilities for configuration."""

import warnings
from typing import Any, Dict, List

# Sections understood by AppConfig
KNOWN_SECTIONS = {"schedule", "alerts", "queue", "messaging", "logging"}


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Check configuration for likely mistakes that are still valid.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    for key in sorted(set(config_dict) - KNOWN_SECTIONS):
        warning_messages.append(f"Unknown configuration section '{key}' will be ignored")

    alerts = config_dict.get("alerts") or {}
    if isinstance(alerts, dict):
        cooldown = str(alerts.get("notification_cooldown", "24h")).strip().lower()
        if cooldown in {"1m", "5m", "10m", "pt1m", "pt5m", "pt10m"}:
            warning_messages.append(
                f"Short notification_cooldown ({cooldown}) will page the admin on every alert run"
            )

    queue = config_dict.get("queue") or {}
    if isinstance(queue, dict):
        debounce = str(queue.get("debounce", "5m")).strip().lower()
        if debounce in {"1s", "5s", "10s", "pt1s", "pt5s", "pt10s"}:
            warning_messages.append(
                f"Short queue debounce ({debounce}) sends one message per rapid stage change"
            )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit warning messages using Python's warnings module."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
