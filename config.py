"""
config.py
Environment configuration, logging setup and the stored billing settings.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

import db
from errors import ValidationError
from models import BillingSettings

logger = logging.getLogger(__name__)

DEFAULT_MONTHLY_AMOUNT = Decimal("250")


class Config(BaseSettings):
    """
    Deployment settings loaded from environment variables or a .env file.
    Gateway credentials are optional; without them online payment is disabled.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    cron_secret: str | None = Field(default=None, description="Bearer token for the billing cron")
    razorpay_key_id: str | None = None
    razorpay_key_secret: str | None = None
    razorpay_webhook_secret: str | None = None
    app_url: str = Field(default="http://localhost:8501", description="Public URL of the portal")
    admin_username: str = Field(
        default="admin", validation_alias=AliasChoices("PORTAL_ADMIN_USERNAME", "admin_username")
    )
    committee_name: str = Field(
        default="Community Committee",
        validation_alias=AliasChoices("PORTAL_COMMITTEE_NAME", "committee_name"),
    )
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("PORTAL_LOG_LEVEL", "log_level"))
    currency: str = "INR"

    @field_validator("cron_secret", "razorpay_key_id", "razorpay_key_secret", "razorpay_webhook_secret")
    @classmethod
    def blank_is_unset(cls, v: str | None) -> str | None:
        return v or None

    @field_validator("app_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


@lru_cache
def get_config() -> Config:
    return Config()


def setup_logging(level: str | None = None) -> None:
    level = (level or get_config().log_level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def get_billing_settings() -> BillingSettings:
    """
    Read the billing settings row. Missing or unreadable values fall back to
    the defaults (250 per month, reminders on).
    """
    raw_amount = db.get_setting("monthly_amount")
    try:
        amount = Decimal(raw_amount) if raw_amount else DEFAULT_MONTHLY_AMOUNT
    except InvalidOperation:
        logger.warning("Ignoring malformed monthly_amount setting %r", raw_amount)
        amount = DEFAULT_MONTHLY_AMOUNT
    if not amount.is_finite() or amount <= 0:
        amount = DEFAULT_MONTHLY_AMOUNT
    reminders = db.get_setting("reminders_enabled", "1") == "1"
    return BillingSettings(monthly_amount=amount, reminders_enabled=reminders)


def update_billing_settings(monthly_amount, reminders_enabled: bool) -> BillingSettings:
    try:
        amount = Decimal(str(monthly_amount).strip())
    except InvalidOperation:
        raise ValidationError("Please provide a valid positive number.") from None
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Please provide a valid positive number.")

    db.set_setting("monthly_amount", str(amount))
    db.set_setting("reminders_enabled", "1" if reminders_enabled else "0")
    logger.info("Billing settings updated: monthly_amount=%s reminders=%s", amount, reminders_enabled)
    return BillingSettings(monthly_amount=amount, reminders_enabled=reminders_enabled)
