"""Environment variable loading and validation."""

import os
from typing import List, Optional

from email_validator import EmailNotValidError, validate_email

from regnotify.utils.phone import normalize_phone

from .exceptions import ConfigurationError

DEFAULT_EMAIL_FROM = "Triple J Auto Investment <notifications@triplejautoinvestment.com>"
DEFAULT_SITE_URL = "https://triplejautoinvestment.com"
DEFAULT_DATABASE_URL = "sqlite:///./data/regnotify.db"


class EnvironmentConfig:
    """Environment variable configuration holder.

    Provider credentials are optional: a missing credential disables that
    channel at send time instead of failing startup.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        twilio_account_sid: Optional[str] = None,
        twilio_auth_token: Optional[str] = None,
        twilio_phone_number: Optional[str] = None,
        resend_api_key: Optional[str] = None,
        email_from: Optional[str] = None,
        admin_phone: Optional[str] = None,
        admin_email: Optional[str] = None,
        public_site_url: Optional[str] = None,
        functions_base_url: Optional[str] = None,
        log_level: Optional[str] = None,
        environment: Optional[str] = None,
    ):
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.twilio_account_sid = twilio_account_sid
        self.twilio_auth_token = twilio_auth_token
        self.twilio_phone_number = twilio_phone_number
        self.resend_api_key = resend_api_key
        self.email_from = email_from or DEFAULT_EMAIL_FROM
        self.admin_phone = admin_phone
        self.admin_email = admin_email
        self.public_site_url = (public_site_url or DEFAULT_SITE_URL).rstrip("/")
        # Unsubscribe links point at this service; defaults to the public site
        self.functions_base_url = (functions_base_url or self.public_site_url).rstrip("/")
        self.log_level = log_level
        self.environment = environment or "local"

    @property
    def sms_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)

    @property
    def email_configured(self) -> bool:
        return bool(self.resend_api_key)

    def missing_sms_settings(self) -> List[str]:
        """Names of the Twilio variables that are not set."""
        return [
            name
            for name, value in (
                ("TWILIO_ACCOUNT_SID", self.twilio_account_sid),
                ("TWILIO_AUTH_TOKEN", self.twilio_auth_token),
                ("TWILIO_PHONE_NUMBER", self.twilio_phone_number),
            )
            if not value
        ]


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    Optional environment variables:
    - DATABASE_URL: SQLAlchemy URL (default: sqlite:///./data/regnotify.db)
    - TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER: SMS provider
    - RESEND_API_KEY: Email provider API key
    - EMAIL_FROM: Default From address for outbound email
    - ADMIN_PHONE, ADMIN_EMAIL: Plate alert destinations
    - PUBLIC_SITE_URL: Base URL for tracking links
    - FUNCTIONS_BASE_URL: Base URL of this service for unsubscribe links
    - LOG_LEVEL: Override log level
    - ENVIRONMENT: Environment label for logs

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If any value is malformed (all problems reported at once)
    """
    errors = []

    twilio_account_sid = _getenv("TWILIO_ACCOUNT_SID")
    twilio_auth_token = _getenv("TWILIO_AUTH_TOKEN")
    twilio_phone_number = _getenv("TWILIO_PHONE_NUMBER")
    admin_phone = _getenv("ADMIN_PHONE")
    admin_email = _getenv("ADMIN_EMAIL")
    public_site_url = _getenv("PUBLIC_SITE_URL")
    functions_base_url = _getenv("FUNCTIONS_BASE_URL")
    log_level = _getenv("LOG_LEVEL")

    # A partial Twilio set is almost always a deployment mistake
    twilio_values = [twilio_account_sid, twilio_auth_token, twilio_phone_number]
    if any(twilio_values) and not all(twilio_values):
        missing = [
            name
            for name, value in zip(
                ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER"),
                twilio_values,
            )
            if not value
        ]
        errors.append(
            f"Incomplete Twilio configuration, missing: {', '.join(missing)}. "
            "Set all three or none."
        )

    if twilio_phone_number:
        normalized = normalize_phone(twilio_phone_number)
        if normalized is None:
            errors.append(f"Invalid TWILIO_PHONE_NUMBER: '{twilio_phone_number}'")
        else:
            twilio_phone_number = normalized

    if admin_phone:
        normalized = normalize_phone(admin_phone)
        if normalized is None:
            errors.append(f"Invalid ADMIN_PHONE: '{admin_phone}'")
        else:
            admin_phone = normalized

    if admin_email and not _is_valid_email(admin_email):
        errors.append(f"Invalid email address format in ADMIN_EMAIL: '{admin_email}'")

    for name, url in (("PUBLIC_SITE_URL", public_site_url), ("FUNCTIONS_BASE_URL", functions_base_url)):
        if url and not url.startswith(("http://", "https://")):
            errors.append(f"Invalid {name}: '{url}'. Must start with http:// or https://")

    if log_level:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level.upper() not in valid_levels:
            errors.append(
                f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(valid_levels)}"
            )

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in your credentials",
                "Phone numbers must be 10-digit US numbers or E.164 (+18325551234)",
                "Leave provider variables unset to disable that channel",
            ],
        )

    return EnvironmentConfig(
        database_url=_getenv("DATABASE_URL"),
        twilio_account_sid=twilio_account_sid,
        twilio_auth_token=twilio_auth_token,
        twilio_phone_number=twilio_phone_number,
        resend_api_key=_getenv("RESEND_API_KEY"),
        email_from=_getenv("EMAIL_FROM"),
        admin_phone=admin_phone,
        admin_email=admin_email,
        public_site_url=public_site_url,
        functions_base_url=functions_base_url,
        log_level=log_level.upper() if log_level else None,
        environment=_getenv("ENVIRONMENT"),
    )


def _getenv(name: str) -> Optional[str]:
    """Read a variable, treating blank values as unset."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _is_valid_email(email: str) -> bool:
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True
