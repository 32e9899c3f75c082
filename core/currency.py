"""
currency.py
------------
Currency bucketing helpers.

The dashboard shows one "primary" currency: the one with the most payment
records in the window. Totals in other currencies are reported separately,
never converted or summed into the primary figures.
"""

from collections import Counter
from typing import Any, Iterable

from config.config_loader import get_default_currency
from core.coercion import is_blank


def normalize_currency(value: Any) -> str:
    """Upper-cased currency code; blank/missing values become the default (BYN)."""
    if is_blank(value):
        return get_default_currency()
    return str(value).strip().upper()


def pick_primary_currency(records: Iterable) -> str:
    """
    Returns the most frequent currency among the records.

    Ties go to the currency encountered first (Counter preserves insertion
    order and most_common() is a stable sort). Empty input -> default.
    """
    counts = Counter(normalize_currency(getattr(r, "currency", None)) for r in records)
    if not counts:
        return get_default_currency()
    return counts.most_common(1)[0][0]


def other_currencies(totals: dict[str, float], primary: str) -> dict[str, float]:
    """Non-primary currencies with a nonzero total, in insertion order."""
    return {c: v for c, v in totals.items() if c != primary and v > 0}


def add_to_bucket(bucket: dict[str, float], currency: str, amount: float) -> None:
    bucket[currency] = bucket.get(currency, 0.0) + amount
