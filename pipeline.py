"""
pipeline.py
------------
Main orchestration layer. Wires together:
    1. merge_sources()   →  unified list of payments from payments_v2 + queue
    2. build_summary()   →  per-currency totals with deduplicated refunds and fees
    3. Output serialization → one row per currency, ready for CSV

This is the single entry point for running the analytics. Everything else
is internal machinery.

Usage:
    from pipeline import PaymentsAnalyticsPipeline

    pipeline = PaymentsAnalyticsPipeline()
    summary = pipeline.run(payments_v2_df, queue_df)
    summary_df = pipeline.summary_to_frame(summary)
"""

import logging
from typing import List

import pandas as pd

from core.analytics_aggregator import AnalyticsFilter, build_summary, filter_payments
from core.fee_resolver import FeeRuleTable
from core.models import AnalyticsSummary, PaymentsStats, UnifiedPayment
from core.unified_payments import compute_stats, frame_to_rows, merge_sources

logger = logging.getLogger(__name__)


SUMMARY_COLUMNS = [
    "currency", "is_primary", "successful", "refunded", "failed", "fees", "net_revenue",
]


class PaymentsAnalyticsPipeline:
    """
    End-to-end payments analytics pipeline.

    Holds the fee rule table for the run; every call recomputes from the
    given snapshot, nothing is cached between runs.
    """

    def __init__(
        self,
        fee_rules: FeeRuleTable | None = None,
        use_config_fee_rules: bool = True,
        strict_statuses: bool = False,
    ):
        """
        Args:
            fee_rules: Explicit fallback fee table (e.g. from integration settings).
            use_config_fee_rules: When no table is given, fall back to the
                rules in config.yaml. False disables fallback fees entirely.
            strict_statuses: Reject rows whose status maps to no canonical
                status (ValueError) instead of passing the raw value through.
        """
        if fee_rules is None and use_config_fee_rules:
            fee_rules = FeeRuleTable.from_config()
        self.fee_rules = fee_rules
        self.strict_statuses = strict_statuses

        logger.info(
            f"Pipeline initialized. "
            f"Fallback fee rules: {len(self.fee_rules) if self.fee_rules is not None else 'disabled'}."
        )

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(self, payments_v2: pd.DataFrame, queue: pd.DataFrame | None = None) -> AnalyticsSummary:
        """
        Run the full analytics pipeline.

        Args:
            payments_v2: Ledger rows (see payment_from_ledger_row for columns).
            queue: Reconciliation queue rows. Optional.

        Returns:
            AnalyticsSummary for the whole snapshot.
        """
        payments = self.run_merge_only(payments_v2, queue)
        logger.info(f"Stage 1 complete. Unified payments: {len(payments):,}.")

        summary = self.summarize(payments)
        logger.info(
            f"Stage 2 complete. Primary currency: {summary.primary_currency}. "
            f"Net revenue: {summary.net_revenue:,.2f}."
        )
        return summary

    def run_merge_only(self, payments_v2: pd.DataFrame, queue: pd.DataFrame | None = None) -> List[UnifiedPayment]:
        """Run only Stage 1 (source merge). Useful for inspecting the unified list."""
        _require_columns(payments_v2, ["amount"], "payments_v2")
        if queue is not None and not queue.empty:
            _require_columns(queue, ["amount"], "queue")
        return merge_sources(frame_to_rows(payments_v2), frame_to_rows(queue), self.strict_statuses)

    def summarize(self, payments: List[UnifiedPayment]) -> AnalyticsSummary:
        return build_summary(payments, self.fee_rules)

    def stats(self, payments: List[UnifiedPayment]) -> PaymentsStats:
        return compute_stats(payments)

    def filter(self, payments: List[UnifiedPayment], active: AnalyticsFilter) -> List[UnifiedPayment]:
        return filter_payments(payments, active, self.fee_rules)

    # -------------------------------------------------------------------------
    # OUTPUT SERIALIZATION
    # -------------------------------------------------------------------------

    @staticmethod
    def summary_to_frame(summary: AnalyticsSummary) -> pd.DataFrame:
        """
        One row per currency with any nonzero total, plus the primary
        currency. Net revenue is only filled on the primary currency row.
        """
        currencies: list[str] = []
        for bucket in (summary.successful, summary.refunded, summary.failed, summary.fees):
            for currency, amount in bucket.items():
                if amount > 0 and currency not in currencies:
                    currencies.append(currency)
        if summary.primary_currency not in currencies:
            currencies.insert(0, summary.primary_currency)

        rows = []
        for currency in currencies:
            is_primary = currency == summary.primary_currency
            rows.append({
                "currency": currency,
                "is_primary": is_primary,
                "successful": round(summary.total("successful", currency), 2),
                "refunded": round(summary.total("refunded", currency), 2),
                "failed": round(summary.total("failed", currency), 2),
                "fees": round(summary.total("fees", currency), 2),
                "net_revenue": round(summary.net_revenue, 2) if is_primary else None,
            })

        df = pd.DataFrame(rows, columns=SUMMARY_COLUMNS)

        # Primary first, then the rest in first-seen order
        df = df.sort_values("is_primary", ascending=False, kind="stable").reset_index(drop=True)
        return df

    @staticmethod
    def payments_to_frame(payments: List[UnifiedPayment]) -> pd.DataFrame:
        """Flat export of unified payments (provider_response dropped)."""
        rows = []
        for p in payments:
            row = dict(p.__dict__)
            row.pop("provider_response", None)
            rows.append(row)
        return pd.DataFrame(rows)


def _require_columns(df: pd.DataFrame, columns: list[str], name: str) -> None:
    if df is None:
        raise ValueError(f"No {name} table given")
    if df.empty and len(df.columns) == 0:
        return
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns in {name}: {missing}")
