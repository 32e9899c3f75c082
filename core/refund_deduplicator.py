"""
refund_deduplicator.py
-----------------------
Counts refunded money once per real-world refund.

The merged payment list comes from two tables and a single refund can show
up twice:
    - payments_v2 rows carry total_refunded on the original payment (Rule A);
    - queue rows can hold the refund as its own transaction (Rule B).

Rule A always wins. To keep the result independent of the list order, all
payments_v2 refunds are indexed by provider:uid before the fold, so a queue
refund is suppressed even when it comes before its payments_v2 row.
"""

from typing import Iterable

from config.config_loader import get_sources_config
from core.coercion import to_amount
from core.currency import add_to_bucket, normalize_currency
from core.models import UnifiedPayment
from core.payment_status import is_refund_marker


def _primary_source() -> str:
    return get_sources_config()["primary"]


def _queue_source() -> str:
    return get_sources_config()["queue"]


def has_primary_refund(record: UnifiedPayment) -> bool:
    """Rule A applies: a payments_v2 row with a positive total_refunded."""
    return record.raw_source == _primary_source() and to_amount(record.total_refunded) > 0


def is_queue_refund(record: UnifiedPayment) -> bool:
    """Rule B applies: a queue row that is itself a refund transaction."""
    if record.raw_source != _queue_source():
        return False
    status = (record.status_normalized or "").strip().lower()
    return is_refund_marker(record.transaction_type) or status == "refunded"


def refund_key(record: UnifiedPayment) -> str | None:
    """provider:uid, the same key the source merge dedups on. None without a uid."""
    if not record.uid:
        return None
    return f"{record.provider or get_sources_config()['default_provider']}:{record.uid}"


def index_primary_refund_uids(records: Iterable[UnifiedPayment]) -> frozenset[str]:
    """Refund keys (provider:uid) already covered by a payments_v2 total_refunded."""
    return frozenset(refund_key(r) for r in records if r.uid and has_primary_refund(r))


def accumulate_refund(
    record: UnifiedPayment,
    currency_totals: dict[str, float],
    seen_uids: set[str],
    primary_refund_uids: frozenset[str] = frozenset(),
) -> None:
    """
    Adds the record's refund contribution (if any) to currency_totals.

    Args:
        record: One merged payment.
        currency_totals: Running refunded totals, mutated in place.
        seen_uids: Refund keys already accounted for in this pass, mutated in place.
        primary_refund_uids: Pre-built index from index_primary_refund_uids().
    """
    currency = normalize_currency(record.currency)
    key = refund_key(record)

    if has_primary_refund(record):
        if key and key in seen_uids:
            # Same payments_v2 row listed twice
            return
        add_to_bucket(currency_totals, currency, to_amount(record.total_refunded))
        if key:
            seen_uids.add(key)
        return

    if is_queue_refund(record):
        if key and (key in primary_refund_uids or key in seen_uids):
            return
        add_to_bucket(currency_totals, currency, to_amount(record.amount))
        if key:
            seen_uids.add(key)
