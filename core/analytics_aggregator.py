"""
analytics_aggregator.py
------------------------
Unified payments analytics: one stateless fold over a snapshot of merged
payments, producing the five dashboard figures.

    successful   sum of amounts with a successful status, refund and cancel
                 transactions excluded
    refunded     deduplicated refunds (see refund_deduplicator)
    failed       sum of amounts with a failed status
    fees         resolved processing fees of successful payments
    net          successful - refunded - fees, primary currency only

Statuses that are neither successful nor failed (pending, processing, ...)
contribute to no bucket. The filter states are plain UI toggles used to
narrow a separately rendered list; they never change the totals.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List

from config.config_loader import get_currency_config
from core.coercion import to_amount
from core.currency import add_to_bucket, normalize_currency, pick_primary_currency
from core.fee_resolver import FeeRuleTable, resolve_fee
from core.models import AnalyticsSummary, UnifiedPayment
from core.payment_status import (
    is_cancel_transaction_type,
    is_failed_status,
    is_refund_transaction_type,
    is_successful_status,
)
from core.refund_deduplicator import (
    accumulate_refund,
    has_primary_refund,
    index_primary_refund_uids,
    is_queue_refund,
)

logger = logging.getLogger(__name__)


class AnalyticsFilter(str, Enum):
    SUCCESSFUL = "successful"
    REFUNDED = "refunded"
    FAILED = "failed"
    FEES = "fees"
    NET = "net"
    NONE = "none"


# =============================================================================
# AGGREGATION
# =============================================================================

def build_summary(
    records: Iterable[UnifiedPayment],
    fee_rules: FeeRuleTable | None = None,
) -> AnalyticsSummary:
    """
    Aggregate a list of merged payments into per-currency totals.

    Args:
        records: Merged payments from both sources. Not mutated.
        fee_rules: Fallback fee table. None disables fallback fees; such
            payments are then counted as "fee unknown".

    Returns:
        AnalyticsSummary. Empty input yields zero totals in BYN.
    """
    records = list(records)
    known = get_currency_config()["known"]
    summary = AnalyticsSummary(
        successful=dict.fromkeys(known, 0.0),
        refunded=dict.fromkeys(known, 0.0),
        failed=dict.fromkeys(known, 0.0),
        fees=dict.fromkeys(known, 0.0),
        primary_currency=pick_primary_currency(records),
    )

    primary_refund_uids = index_primary_refund_uids(records)
    seen_refund_uids: set[str] = set()

    for p in records:
        currency = normalize_currency(p.currency)

        if is_revenue_payment(p):
            add_to_bucket(summary.successful, currency, to_amount(p.amount))
            _accumulate_fee(summary, p, currency, fee_rules)
        elif is_failed_status(p.status_normalized):
            add_to_bucket(summary.failed, currency, to_amount(p.amount))

        accumulate_refund(p, summary.refunded, seen_refund_uids, primary_refund_uids)

    logger.debug(
        f"Aggregated {len(records):,} payments. Primary currency: {summary.primary_currency}. "
        f"Fees known/fallback/unknown: {summary.fees_known_count}/"
        f"{summary.fees_fallback_count}/{summary.fees_unknown_count}."
    )
    return summary


def is_revenue_payment(payment: UnifiedPayment) -> bool:
    """
    A successful payment that brings money in. Refund and cancel transactions
    carry a successful status too (the refund itself went through), but they
    belong to the refunded bucket only and are never charged a fee.
    """
    if not is_successful_status(payment.status_normalized):
        return False
    if is_queue_refund(payment):
        return False
    return not (
        is_refund_transaction_type(payment.transaction_type)
        or is_cancel_transaction_type(payment.transaction_type)
    )


def _accumulate_fee(
    summary: AnalyticsSummary,
    payment: UnifiedPayment,
    currency: str,
    fee_rules: FeeRuleTable | None,
) -> None:
    resolution = resolve_fee(payment, fee_rules)
    if resolution is None:
        summary.fees_unknown_count += 1
        return

    add_to_bucket(summary.fees, currency, resolution.amount)
    if resolution.source == "provider":
        summary.fees_known_count += 1
    else:
        summary.fees_fallback_count += 1


# =============================================================================
# FILTERS
# =============================================================================

def toggle_filter(active: AnalyticsFilter, clicked: AnalyticsFilter) -> AnalyticsFilter:
    """Clicking the active card clears the filter; any other click selects it."""
    if active == clicked:
        return AnalyticsFilter.NONE
    return clicked


def filter_payments(
    records: Iterable[UnifiedPayment],
    active: AnalyticsFilter,
    fee_rules: FeeRuleTable | None = None,
) -> List[UnifiedPayment]:
    """
    Narrows a payment list to the rows behind the selected card.

    "net" keeps everything that moves net revenue (successful or refunded
    rows); "fees" keeps successful rows with a resolvable fee.
    """
    active = AnalyticsFilter(active)
    records = list(records)
    if active == AnalyticsFilter.NONE:
        return records

    def refunded(p: UnifiedPayment) -> bool:
        return has_primary_refund(p) or is_queue_refund(p)

    if active == AnalyticsFilter.SUCCESSFUL:
        return [p for p in records if is_revenue_payment(p)]
    if active == AnalyticsFilter.FAILED:
        return [p for p in records if is_failed_status(p.status_normalized)]
    if active == AnalyticsFilter.REFUNDED:
        return [p for p in records if refunded(p)]
    if active == AnalyticsFilter.FEES:
        return [
            p for p in records
            if is_revenue_payment(p) and resolve_fee(p, fee_rules) is not None
        ]
    return [p for p in records if is_revenue_payment(p) or refunded(p)]


# =============================================================================
# PRESENTATION
# =============================================================================

@dataclass
class SummaryCard:
    """One dashboard figure, as plain data."""
    filter: AnalyticsFilter
    title: str
    amount: float
    currency: str
    caption: str = ""


def summary_cards(summary: AnalyticsSummary) -> List[SummaryCard]:
    """The five dashboard figures in display order, all in the primary currency."""
    currency = summary.primary_currency
    fees_caption = (
        f"Fee unknown for {summary.fees_unknown_count} payments"
        if summary.fees_unknown_count > 0 else ""
    )
    if summary.fees_fallback_count > 0:
        estimated = f"{summary.fees_fallback_count} estimated"
        fees_caption = f"{fees_caption}; {estimated}" if fees_caption else estimated

    return [
        SummaryCard(AnalyticsFilter.SUCCESSFUL, "Successful payments", summary.total("successful"), currency),
        SummaryCard(AnalyticsFilter.REFUNDED, "Refunds", summary.total("refunded"), currency),
        SummaryCard(AnalyticsFilter.FAILED, "Failed", summary.total("failed"), currency),
        SummaryCard(AnalyticsFilter.FEES, "Fees", summary.total("fees"), currency, fees_caption),
        SummaryCard(
            AnalyticsFilter.NET, "Net revenue", summary.net_revenue, currency,
            "Successful minus refunds and fees",
        ),
    ]
