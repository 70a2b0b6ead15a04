"""
COMPANY SETTINGS

Reads company-wide settings from the company_settings collection
({key, value} documents) with fallback to defaults.

Usage:
    settings = CompanySettings(ttl_seconds=60)
    threshold = await settings.receipt_required_threshold(store)
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional
import logging

from finance_core.financial_precision import round_financial, to_decimal

logger = logging.getLogger(__name__)


DEFAULT_SETTINGS = {
    "default_currency": "USD",
    "receipt_required_threshold": Decimal("100.00"),
}


class CompanySettings:
    """
    Cached access to company settings.

    Values are cached per key for `ttl_seconds`; a refresh reads through the
    store passed by the caller.
    """

    def __init__(self, ttl_seconds: int = 60, clock: Callable[[], datetime] = datetime.utcnow):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: Dict[str, Any] = {}
        self._cache_timestamps: Dict[str, datetime] = {}

    def invalidate(self) -> None:
        self._cache.clear()
        self._cache_timestamps.clear()

    async def get(self, store, key: str, force_refresh: bool = False) -> Any:
        """Stored value for `key`, or its default."""
        now = self._clock()
        cached_at = self._cache_timestamps.get(key)
        if (
            not force_refresh
            and cached_at is not None
            and (now - cached_at).total_seconds() < self._ttl_seconds
        ):
            return self._cache[key]

        value = await store.get_setting(key)
        if value is None:
            value = DEFAULT_SETTINGS.get(key)
            logger.debug(f"[SETTINGS] {key}: using default {value}")
        else:
            logger.debug(f"[SETTINGS] {key}: loaded {value}")

        self._cache[key] = value
        self._cache_timestamps[key] = now
        return value

    async def default_currency(self, store) -> str:
        value = await self.get(store, "default_currency")
        return str(value).upper()

    async def receipt_required_threshold(self, store) -> Decimal:
        value = await self.get(store, "receipt_required_threshold")
        return round_financial(to_decimal(value, "receipt_required_threshold"))


def default_settings_documents(overrides: Optional[Dict[str, Any]] = None):
    """{key, value} documents for seeding the settings collection."""
    values = {**DEFAULT_SETTINGS, **(overrides or {})}
    return [{"key": key, "value": value} for key, value in values.items()]
