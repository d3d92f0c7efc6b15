import os
from typing import Dict, Any, Tuple, List
from pydantic_settings import BaseSettings, SettingsConfigDict
from resume_billing.log.logging import logger


def parse_comma_list(value: str) -> List[str]:
    """Split a comma-separated setting into a list of trimmed, non-empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Environment-level configuration for the billing service.

    Business knobs that operators tune at runtime (credit costs, plan prices,
    allotments) live in the ``app_settings`` table instead; see
    ``resume_billing.core.billing_config``.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    debug: bool = os.getenv("DEBUG", "False").lower() == "true"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./resume_billing.db")

    # Bearer token verification
    secret_key: str = os.getenv("SECRET_KEY", "change-me")
    algorithm: str = os.getenv("ALGORITHM", "HS256")

    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

    # Stripe
    STRIPE_SECRET_KEY: str = os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    STRIPE_API_VERSION: str = os.getenv("STRIPE_API_VERSION", "2024-06-20")
    STRIPE_TIMEOUT_SECONDS: float = float(os.getenv("STRIPE_TIMEOUT_SECONDS", "20"))
    STRIPE_MAX_NETWORK_RETRIES: int = int(os.getenv("STRIPE_MAX_NETWORK_RETRIES", "2"))
    STRIPE_MONTHLY_PRICE_ID: str = os.getenv("STRIPE_MONTHLY_PRICE_ID", "")
    STRIPE_YEARLY_PRICE_ID: str = os.getenv("STRIPE_YEARLY_PRICE_ID", "")

    # Service-to-service authentication for the credit-debit contract
    INTERNAL_API_KEY: str = os.getenv("INTERNAL_API_KEY", "")

    REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))

    # CORS
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "http://localhost:3000")
    CORS_ALLOW_CREDENTIALS: bool = os.getenv("CORS_ALLOW_CREDENTIALS", "true").lower() == "true"
    CORS_ALLOW_METHODS: str = os.getenv("CORS_ALLOW_METHODS", "GET,POST,PUT,DELETE,OPTIONS,PATCH")
    CORS_ALLOW_HEADERS: str = os.getenv("CORS_ALLOW_HEADERS", "Authorization,Content-Type,X-API-Key")

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
    RATE_LIMIT_DEFAULT: str = os.getenv("RATE_LIMIT_DEFAULT", "100/minute")
    RATE_LIMIT_STORAGE_URI: str = os.getenv("RATE_LIMIT_STORAGE_URI", "memory://")

    @property
    def cors_origins_list(self) -> List[str]:
        return parse_comma_list(self.CORS_ORIGINS)

    @property
    def cors_methods_list(self) -> List[str]:
        return parse_comma_list(self.CORS_ALLOW_METHODS)

    @property
    def cors_headers_list(self) -> List[str]:
        return parse_comma_list(self.CORS_ALLOW_HEADERS)


settings = Settings()


def validate_stripe_config() -> Tuple[bool, Dict[str, Any]]:
    """
    Validate the Stripe settings the billing flows depend on.

    Returns:
        Tuple[bool, Dict[str, Any]]:
            - Boolean indicating if configuration is valid
            - Dictionary with validation details
    """
    valid = True
    issues = []
    warnings = []

    for setting in ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"):
        if not getattr(settings, setting):
            issue = f"Stripe setting not configured ({setting})"
            logger.error(issue, event_type="config_error", setting=setting)
            issues.append(issue)
            valid = False

    # Price ids may also come from the app_settings table
    for setting in ("STRIPE_MONTHLY_PRICE_ID", "STRIPE_YEARLY_PRICE_ID"):
        if not getattr(settings, setting):
            warning = f"Stripe price id not set in environment ({setting})"
            logger.warning(warning, event_type="config_warning", setting=setting)
            warnings.append(warning)

    if not settings.FRONTEND_URL:
        warning = "Frontend URL not configured (FRONTEND_URL)"
        logger.warning(warning, event_type="config_warning", setting="FRONTEND_URL")
        warnings.append(warning)

    return valid, {
        "valid": valid,
        "issues": issues,
        "warnings": warnings
    }


def validate_internal_api_key() -> Tuple[bool, Dict[str, Any]]:
    """
    Validate internal service API key configuration.

    Returns:
        Tuple[bool, Dict[str, Any]]:
            - Boolean indicating if configuration is valid
            - Dictionary with validation details
    """
    valid = True
    issues = []
    warnings = []

    if not settings.INTERNAL_API_KEY:
        issue = "Internal API key not configured (INTERNAL_API_KEY)"
        logger.error(issue, event_type="config_error", setting="INTERNAL_API_KEY")
        issues.append(issue)
        valid = False
    elif len(settings.INTERNAL_API_KEY) < 32:
        warning = "Internal API key may be too short for security (INTERNAL_API_KEY)"
        logger.warning(warning, event_type="config_warning", setting="INTERNAL_API_KEY")
        warnings.append(warning)

    return valid, {
        "valid": valid,
        "issues": issues,
        "warnings": warnings
    }
