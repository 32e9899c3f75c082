"""
fee_resolver.py
----------------
Processing-fee resolution for successful payments.

Priority chain (first match wins):
    1. Fee reported by the provider inside provider_response, in minor units.
       Several payload shapes are seen in the wild, so a fixed, ordered list
       of accessors is probed.
    2. The flat provider_fee_amount column (already in major units).
    3. A fallback estimate from the fee rule table, keyed by
       (channel, issuer country, currency).
    4. None: the fee is unknown.

Malformed values never raise; they are treated as absent and resolution
falls through to the next step.
"""

import logging
from typing import Any, Callable, Iterable, Optional

from config.config_loader import get_fee_rules_config
from core.coercion import is_blank, to_number, to_positive_number
from core.currency import normalize_currency
from core.models import FeeResolution, UnifiedPayment

logger = logging.getLogger(__name__)

WILDCARD = "*"

FeeRuleKey = tuple[str, str, str]


# =============================================================================
# PROVIDER FEE ACCESSORS
# =============================================================================

def _dig(data: Any, *path: str) -> Any:
    """Walks nested dicts; returns None as soon as a step is missing."""
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _transaction_fee(response: dict) -> Any:
    return _dig(response, "transaction", "fee")


def _processing_fee(response: dict) -> Any:
    return _dig(response, "transaction", "processing", "fee")


def _payment_fee(response: dict) -> Any:
    return _dig(response, "transaction", "payment", "fee")


def _top_level_fee(response: dict) -> Any:
    return _dig(response, "fee")


PROVIDER_FEE_ACCESSORS: tuple[Callable[[dict], Any], ...] = (
    _transaction_fee,
    _processing_fee,
    _payment_fee,
    _top_level_fee,
)


def extract_provider_fee(provider_response: Optional[dict]) -> float | None:
    """
    Returns the provider-reported fee in major units, or None.

    A zero or non-numeric value at one path counts as absent and the next
    path is probed.
    """
    if not isinstance(provider_response, dict):
        return None

    for accessor in PROVIDER_FEE_ACCESSORS:
        fee = to_positive_number(accessor(provider_response))
        if fee is not None:
            return fee / 100

    return None


# =============================================================================
# CHANNEL & ISSUER COUNTRY
# =============================================================================

def detect_payment_channel(
    payment_method: Optional[str],
    transaction_type: Optional[str],
    provider_response: Optional[dict] = None,
) -> str:
    """
    Best-effort payment channel: "erip", "apple_pay", "google_pay" or "card".
    """
    hints = [
        payment_method,
        transaction_type,
        _dig(provider_response, "transaction", "payment_method_type"),
        _dig(provider_response, "transaction", "credit_card", "token_provider"),
        _dig(provider_response, "payment_method_type"),
    ]
    text = " ".join(str(h).lower() for h in hints if isinstance(h, str))

    if "erip" in text:
        return "erip"
    if "apple" in text:
        return "apple_pay"
    if "google" in text:
        return "google_pay"
    return "card"


_ISSUER_COUNTRY_PATHS: tuple[tuple[str, ...], ...] = (
    ("transaction", "credit_card", "issuer_country"),
    ("credit_card", "issuer_country"),
    ("transaction", "billing_address", "country"),
)


def extract_issuer_country(provider_response: Optional[dict]) -> str | None:
    """Upper-cased ISO country of the card issuer, if the payload carries one."""
    for path in _ISSUER_COUNTRY_PATHS:
        value = _dig(provider_response, *path)
        if isinstance(value, str) and value.strip():
            return value.strip().upper()
    return None


# =============================================================================
# FALLBACK RULE TABLE
# =============================================================================

class FeeRuleTable:
    """
    Immutable lookup (channel, issuer_country, currency) -> fee formula.

    A formula is a dict with percent, fixed and min_fee. Keys may be "*".
    Lookup goes from the most specific key to the catch-all.

    Usage:
        rules = FeeRuleTable.from_config()
        rule = rules.lookup("card", "BY", "BYN")
    """

    def __init__(self, rules: dict[FeeRuleKey, dict[str, float]]):
        self._rules = dict(rules)

    @classmethod
    def from_records(cls, rows: Iterable[dict]) -> "FeeRuleTable":
        """
        Builds a table from rule rows (config.yaml or an integration
        settings export). Rows without a usable percent/fixed part are
        skipped with a warning. Later rows override earlier ones.
        """
        rules: dict[FeeRuleKey, dict[str, float]] = {}
        for row in rows:
            key = (
                cls._key_part(row.get("channel"), lower=True),
                cls._key_part(row.get("issuer_country")),
                cls._key_part(row.get("currency")),
            )
            percent = to_number(row.get("percent")) or 0.0
            fixed = to_number(row.get("fixed")) or 0.0
            min_fee = to_number(row.get("min_fee")) or 0.0
            if percent <= 0 and fixed <= 0 and min_fee <= 0:
                logger.warning(f"Skipping fee rule without a positive component: {row}")
                continue
            rules[key] = {"percent": percent, "fixed": fixed, "min_fee": min_fee}
        return cls(rules)

    @classmethod
    def from_config(cls) -> "FeeRuleTable":
        return cls.from_records(get_fee_rules_config())

    @staticmethod
    def _key_part(value: Any, lower: bool = False) -> str:
        if is_blank(value):
            return WILDCARD
        text = str(value).strip()
        return text.lower() if lower else text.upper()

    def lookup(self, channel: str, issuer_country: str | None, currency: str) -> dict[str, float] | None:
        channel = self._key_part(channel, lower=True)
        country = self._key_part(issuer_country)
        currency = self._key_part(currency)

        candidates = [
            (channel, country, currency),
            (channel, country, WILDCARD),
            (channel, WILDCARD, currency),
            (channel, WILDCARD, WILDCARD),
            (WILDCARD, WILDCARD, currency),
            (WILDCARD, WILDCARD, WILDCARD),
        ]
        for key in candidates:
            if key in self._rules:
                return self._rules[key]
        return None

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"FeeRuleTable(rules={len(self)})"


def calculate_fallback_fee(
    amount: float,
    currency: str,
    channel: str,
    issuer_country: str | None,
    fee_rules: FeeRuleTable | None,
) -> float | None:
    """
    Estimated fee: max(amount * percent / 100 + fixed, min_fee), rounded
    to 2 decimals. None when there is no table, no matching rule, or the
    amount is unusable.
    """
    if fee_rules is None:
        return None

    base = to_positive_number(amount)
    if base is None:
        return None

    rule = fee_rules.lookup(channel, issuer_country, currency)
    if rule is None:
        return None

    fee = max(base * rule["percent"] / 100 + rule["fixed"], rule["min_fee"])
    fee = round(fee, 2)
    return fee if fee > 0 else None


# =============================================================================
# RESOLVER
# =============================================================================

def resolve_fee(payment: UnifiedPayment, fee_rules: FeeRuleTable | None = None) -> FeeResolution | None:
    """
    Resolve the processing fee for one successful payment.

    Args:
        payment: A payment already classified as successful.
        fee_rules: Fallback rule table. If None, the fallback step is skipped.

    Returns:
        FeeResolution(amount, source) or None if no fee could be resolved.
    """
    provider_fee = extract_provider_fee(payment.provider_response)
    if provider_fee is not None:
        return FeeResolution(amount=provider_fee, source="provider")

    flat_fee = to_positive_number(payment.provider_fee_amount)
    if flat_fee is not None:
        return FeeResolution(amount=flat_fee, source="provider")

    if fee_rules is None:
        return None

    fallback_fee = calculate_fallback_fee(
        payment.amount,
        normalize_currency(payment.currency),
        detect_payment_channel(payment.payment_method, payment.transaction_type, payment.provider_response),
        extract_issuer_country(payment.provider_response),
        fee_rules,
    )
    if fallback_fee is not None:
        return FeeResolution(amount=fallback_fee, source="fallback")

    return None
