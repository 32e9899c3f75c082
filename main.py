"""
main.py
--------
Entry point for the unified payments analytics.

Reads a payments_v2 export and (optionally) a reconciliation queue export,
runs the analytics pipeline, and writes the per-currency summary to the
outputs/ folder.

Usage (from the project root):
    python main.py --payments payments_v2.csv --queue queue.csv

    # With optional arguments:
    python main.py --payments payments_v2.jsonl --fee-rules fee_rules.csv
    python main.py --payments payments_v2.csv --no-fallback-fees
    python main.py --payments payments_v2.csv --filter refunded
"""

import sys
import os
import argparse
import logging
import pandas as pd
from datetime import datetime

# Ensure project root is on path (for runs from any working directory)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from pipeline import PaymentsAnalyticsPipeline
from core.analytics_aggregator import AnalyticsFilter, summary_cards
from core.fee_resolver import FeeRuleTable
from core.models import AnalyticsSummary, PaymentsStats
from core.unified_payments import frame_to_rows


# =============================================================================
# LOGGING SETUP
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("main")


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Unified Payments Analytics: successful, refunded, failed, fees and net revenue."
    )
    parser.add_argument(
        "--payments", type=str, required=True,
        help="Path to the payments_v2 export (CSV, JSON or JSON lines)."
    )
    parser.add_argument(
        "--queue", type=str, default=None,
        help="Path to the reconciliation queue export (CSV, JSON or JSON lines)."
    )
    parser.add_argument(
        "--fee-rules", type=str, default=None,
        help="CSV of fallback fee rules (channel, issuer_country, currency, percent, fixed, min_fee). "
             "Defaults to the rules in config.yaml."
    )
    parser.add_argument(
        "--no-fallback-fees", action="store_true", default=False,
        help="Disable fallback fee estimation; payments without a provider fee count as unknown."
    )
    parser.add_argument(
        "--strict-statuses", action="store_true", default=False,
        help="Fail on payment statuses that map to no known status instead of passing them through."
    )
    parser.add_argument(
        "--filter", type=str, default=AnalyticsFilter.NONE.value,
        choices=[f.value for f in AnalyticsFilter],
        help="Also export the payments behind one dashboard figure."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in project root."
    )
    return parser.parse_args(argv)


# =============================================================================
# INPUT
# =============================================================================

def load_table(path: str) -> pd.DataFrame:
    """Loads a CSV, JSON array or JSON lines file into a DataFrame."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Input file not found: {path}")

    lowered = path.lower()
    if lowered.endswith((".jsonl", ".ndjson")):
        return pd.read_json(path, lines=True, dtype=False)
    if lowered.endswith(".json"):
        return pd.read_json(path, dtype=False)
    return pd.read_csv(path, dtype={"provider_payment_id": str, "bepaid_uid": str})


# =============================================================================
# MAIN
# =============================================================================

def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    output_dir = args.output_dir or os.path.join(PROJECT_ROOT, "outputs")
    os.makedirs(output_dir, exist_ok=True)

    # --- Load inputs ---
    try:
        logger.info(f"Loading payments from: {args.payments}")
        payments_df = load_table(args.payments)
        queue_df = None
        if args.queue:
            logger.info(f"Loading queue from: {args.queue}")
            queue_df = load_table(args.queue)
        fee_rules = None
        if args.fee_rules and not args.no_fallback_fees:
            logger.info(f"Loading fee rules from: {args.fee_rules}")
            fee_rules = FeeRuleTable.from_records(frame_to_rows(load_table(args.fee_rules)))
    except FileNotFoundError as e:
        logger.error(str(e))
        return 1

    logger.info(
        f"Loaded {len(payments_df):,} ledger rows"
        f"{f' and {len(queue_df):,} queue rows' if queue_df is not None else ''}."
    )

    # --- Run pipeline ---
    pipeline = PaymentsAnalyticsPipeline(
        fee_rules=fee_rules,
        use_config_fee_rules=not args.no_fallback_fees,
        strict_statuses=args.strict_statuses,
    )
    try:
        payments = pipeline.run_merge_only(payments_df, queue_df)
    except ValueError as e:
        logger.error(str(e))
        return 1

    summary = pipeline.summarize(payments)
    stats = pipeline.stats(payments)

    # --- Output: summary ---
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    summary_path = os.path.join(output_dir, f"summary_{timestamp}.csv")
    pipeline.summary_to_frame(summary).to_csv(summary_path, index=False)
    logger.info(f"Summary saved to: {summary_path}")

    # --- Output: filtered payments ---
    active = AnalyticsFilter(args.filter)
    if active != AnalyticsFilter.NONE:
        filtered = pipeline.filter(payments, active)
        filtered_path = os.path.join(output_dir, f"filtered_{active.value}_{timestamp}.csv")
        pipeline.payments_to_frame(filtered).to_csv(filtered_path, index=False)
        logger.info(f"{len(filtered):,} '{active.value}' payments saved to: {filtered_path}")

    _print_summary(summary, stats)
    return 0


def _print_summary(summary: AnalyticsSummary, stats: PaymentsStats):
    """Prints a clean summary table to the console."""
    print("\n" + "=" * 80)
    print("  PAYMENTS SUMMARY")
    print("=" * 80)

    if stats.total == 0:
        print("\n  No payments in the selected period.\n")

    print(f"\n  Figures in {summary.primary_currency}:")
    print("  " + "-" * 60)
    for card in summary_cards(summary):
        print(f"    {card.title:25s}  {card.amount:>15,.2f} {card.currency}")
        if card.caption:
            print(f"    {'':25s}  {card.caption}")

    others = summary.other_currencies()
    if others:
        print("\n  Other currencies:")
        print("    " + "   ".join(f"+{amount:.2f} {currency}" for currency, amount in others.items()))

    print(f"\n  Payments: {stats.total:,} (processed: {stats.processed:,}, in queue: {stats.in_queue:,})")
    print(f"  Successful: {stats.successful:,}  Refunded: {stats.refunded:,}  "
          f"Failed: {stats.failed:,}  Pending: {stats.pending:,}")
    print("=" * 80 + "\n")


if __name__ == "__main__":
    sys.exit(main())
