"""Configuration module for the referral platform."""

from .database import DatabaseSettings, get_database_settings
from .settings import (
    AISettings,
    PaymentSettings,
    ReferralSettings,
    Settings,
    get_settings,
)

__all__ = [
    "AISettings",
    "DatabaseSettings",
    "get_database_settings",
    "PaymentSettings",
    "ReferralSettings",
    "Settings",
    "get_settings",
]
