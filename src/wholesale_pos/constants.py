"""Enumerations and defaults shared across the wholesale POS modules.

Keeps slot names and schema identifiers in one place so the data layer, the
ledger logic, and the CLI agree on them.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Schema version written to, and expected from, every master workbook.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_CURRENCY = "RS"
DEFAULT_LOW_STOCK_THRESHOLD = 50
UNKNOWN_LABEL = "Unknown"

MAX_DISCOUNT_PERCENTAGE = Decimal("100")


class SlotName(str, Enum):
    """Enumerate the persisted entity collections (one worksheet each)."""

    ITEMS = "items"
    CUSTOMERS = "customers"
    DISCOUNTS = "discounts"
    SALES = "sales"
    PURCHASES = "purchases"
    PAYMENTS = "payments"


class RecordPrefix(str, Enum):
    """Enumerate identifier prefixes for immutable ledger records."""

    SALE = "sale"
    PURCHASE = "purchase"
    PAYMENT = "payment"


META_SHEET = "Meta"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_CURRENCY",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "UNKNOWN_LABEL",
    "MAX_DISCOUNT_PERCENTAGE",
    "SlotName",
    "RecordPrefix",
    "META_SHEET",
]
