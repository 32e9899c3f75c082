"""
unified_payments.py
--------------------
Merges the two payment sources into one list of UnifiedPayment records and
computes the dashboard header counters.

Sources:
    - payments_v2: the processed payment ledger. Carries refunded_amount,
      the refunds list and the raw provider_response.
    - queue: the reconciliation queue (webhooks, API polling, file imports).
      May contain payments not yet processed and standalone refunds.

A queue row is dropped when a payments_v2 row already exists for the same
provider:uid, so every real payment appears once.
"""

import json
import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional

import pandas as pd

from config.config_loader import get_sources_config
from core.coercion import is_blank, to_amount, to_number
from core.currency import normalize_currency
from core.models import PaymentsStats, UnifiedPayment
from core.payment_status import (
    is_refund_transaction_type,
    require_canonical_status,
    to_canonical_status,
)

logger = logging.getLogger(__name__)


_QUEUE_SOURCE_MAP = {
    "api": "api",
    "api_polling": "api",
    "file_import": "file_import",
    "csv": "file_import",
    "webhook": "webhook",
}


# =============================================================================
# FIELD HELPERS
# =============================================================================

def _text(value: Any) -> Optional[str]:
    if is_blank(value):
        return None
    return str(value).strip()


def _flag(value: Any) -> bool:
    if is_blank(value):
        return False
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "t")
    return bool(value)


def _timestamp(value: Any) -> Optional[datetime]:
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value
    parsed = pd.to_datetime(value, errors="coerce", utc=True)
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


def _json_field(value: Any) -> Any:
    """provider_response / refunds may arrive as JSON text from CSV exports."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            logger.warning("Ignoring unparseable JSON payload.")
            return None
    if isinstance(value, (dict, list)):
        return value
    return None


def _status(raw: str, strict: bool = False, context: str | None = None) -> str:
    """
    Canonical status for a source row. Unrecognized statuses are kept as
    lower-cased raw text, or rejected when strict.
    """
    if strict:
        return require_canonical_status(raw, context)
    return to_canonical_status(raw) or raw.strip().lower()


def _sort_key(p: UnifiedPayment) -> float:
    moment = p.paid_at or p.created_at
    return moment.timestamp() if moment is not None else float("-inf")


# =============================================================================
# ROW TRANSFORMS
# =============================================================================

def payment_from_ledger_row(row: dict, strict_statuses: bool = False) -> UnifiedPayment:
    """Builds a UnifiedPayment from a payments_v2 row."""
    sources = get_sources_config()
    provider_response = _json_field(row.get("provider_response"))
    refunds = _json_field(row.get("refunds")) or []
    payment_id = _text(row.get("id"))

    return UnifiedPayment(
        uid=_text(row.get("provider_payment_id")) or payment_id or "",
        raw_source=sources["primary"],
        amount=to_amount(row.get("amount")),
        currency=normalize_currency(row.get("currency")),
        total_refunded=to_amount(row.get("refunded_amount")),
        status_normalized=_status(
            _text(row.get("status")) or "pending", strict_statuses, f"payments_v2 row {payment_id}",
        ),
        transaction_type=_text(row.get("transaction_type")) or "payment",
        provider_response=provider_response if isinstance(provider_response, dict) else None,
        provider_fee_amount=to_number(row.get("provider_fee_amount")),
        payment_method=_text(row.get("payment_method")),
        id=payment_id,
        source="processed",
        provider=_text(row.get("provider")) or sources["default_provider"],
        paid_at=_timestamp(row.get("paid_at")),
        created_at=_timestamp(row.get("created_at")),
        customer_email=_text(row.get("customer_email")),
        card_last4=_text(row.get("card_last4")),
        card_brand=_text(row.get("card_brand")),
        profile_id=_text(row.get("profile_id")),
        order_id=_text(row.get("order_id")),
        receipt_url=_text(row.get("receipt_url")),
        refunds_count=len(refunds) if isinstance(refunds, list) else 0,
    )


def payment_from_queue_row(row: dict, strict_statuses: bool = False) -> UnifiedPayment:
    """
    Builds a UnifiedPayment from a reconciliation queue row.

    The queue's own status is a job status; a job cancelled before the
    payment status was known is reported as pending.
    """
    sources = get_sources_config()
    raw_status = (_text(row.get("status")) or "").lower()
    status = _text(row.get("status_normalized"))
    if status is None:
        status = "pending" if raw_status == "cancelled" else (raw_status or "pending")

    raw_ui_source = (_text(row.get("source")) or "").lower()
    queue_id = _text(row.get("id"))

    return UnifiedPayment(
        uid=_text(row.get("bepaid_uid")) or queue_id or "",
        raw_source=sources["queue"],
        amount=to_amount(row.get("amount")),
        currency=normalize_currency(row.get("currency")),
        total_refunded=0.0,
        status_normalized=_status(status, strict_statuses, f"queue row {queue_id}"),
        transaction_type=_text(row.get("transaction_type")) or "payment",
        provider_response=None,
        provider_fee_amount=to_number(row.get("provider_fee_amount")),
        payment_method=_text(row.get("payment_method")),
        id=queue_id,
        source=_QUEUE_SOURCE_MAP.get(raw_ui_source, "webhook"),
        provider=_text(row.get("provider")) or sources["default_provider"],
        paid_at=_timestamp(row.get("paid_at")),
        created_at=_timestamp(row.get("created_at")),
        customer_email=_text(row.get("customer_email")),
        card_last4=_text(row.get("card_last4")),
        card_brand=_text(row.get("card_brand")),
        profile_id=_text(row.get("matched_profile_id")),
        order_id=_text(row.get("matched_order_id")),
        receipt_url=_text(row.get("receipt_url")),
        tracking_id=_text(row.get("tracking_id")),
        is_external=_flag(row.get("is_external")),
        has_conflict=_flag(row.get("has_conflict")),
    )


# =============================================================================
# MERGE
# =============================================================================

def merge_sources(
    ledger_rows: Iterable[dict],
    queue_rows: Iterable[dict],
    strict_statuses: bool = False,
) -> List[UnifiedPayment]:
    """
    Merge payments_v2 and queue rows into one list, newest first.

    Args:
        ledger_rows: payments_v2 rows as dicts.
        queue_rows: payment_reconcile_queue rows as dicts.
        strict_statuses: Raise on a status that maps to no canonical status
            instead of passing it through.

    Returns:
        List of UnifiedPayment sorted by paid_at (or created_at) descending.

    Raises:
        ValueError: Unknown status while strict_statuses is set.
    """
    ledger_rows = list(ledger_rows)
    ledger = [payment_from_ledger_row(r, strict_statuses) for r in ledger_rows]

    # Dedup by provider:provider_payment_id only, never by the internal row id
    processed_keys = {
        f"{p.provider}:{_text(row.get('provider_payment_id'))}"
        for p, row in zip(ledger, ledger_rows)
        if _text(row.get("provider_payment_id"))
    }

    queue: List[UnifiedPayment] = []
    skipped = 0
    for row in queue_rows:
        payment = payment_from_queue_row(row, strict_statuses)
        uid = _text(row.get("bepaid_uid"))
        if uid and f"{payment.provider}:{uid}" in processed_keys:
            skipped += 1
            continue
        queue.append(payment)

    logger.info(
        f"Merged {len(ledger):,} ledger rows and {len(queue):,} queue rows "
        f"({skipped:,} queue rows already processed)."
    )

    return sorted(ledger + queue, key=_sort_key, reverse=True)


def frame_to_rows(df: pd.DataFrame | None) -> List[dict]:
    """DataFrame -> list of dicts with NaN cells turned into None."""
    if df is None or df.empty:
        return []
    return df.astype(object).where(pd.notna(df), None).to_dict(orient="records")


# =============================================================================
# STATS
# =============================================================================

def compute_stats(records: Iterable[UnifiedPayment]) -> PaymentsStats:
    """Header counters for the merged list."""
    records = list(records)
    sources = get_sources_config()

    def is_refund_row(p: UnifiedPayment) -> bool:
        return p.status_normalized in ("refunded", "refund") or is_refund_transaction_type(p.transaction_type)

    return PaymentsStats(
        total=len(records),
        in_queue=sum(1 for p in records if p.raw_source == sources["queue"]),
        processed=sum(1 for p in records if p.raw_source == sources["primary"]),
        with_contact=sum(1 for p in records if p.profile_id),
        without_contact=sum(1 for p in records if not p.profile_id),
        with_deal=sum(1 for p in records if p.order_id),
        without_deal=sum(1 for p in records if not p.order_id),
        with_receipt=sum(1 for p in records if p.receipt_url),
        without_receipt=sum(1 for p in records if not p.receipt_url),
        with_refunds=sum(1 for p in records if p.refunds_count > 0),
        external=sum(1 for p in records if p.is_external),
        conflicts=sum(1 for p in records if p.has_conflict),
        total_amount=sum(p.amount for p in records if not is_refund_row(p)),
        total_refunded=(
            sum(p.amount for p in records if p.raw_source == sources["queue"] and is_refund_row(p))
            + sum(p.total_refunded for p in records)
        ),
        pending=sum(1 for p in records if p.status_normalized == "pending"),
        failed=sum(1 for p in records if p.status_normalized in ("failed", "error", "declined")),
        successful=sum(
            1 for p in records
            if p.status_normalized in ("successful", "succeeded") and not is_refund_row(p)
        ),
        refunded=sum(1 for p in records if is_refund_row(p)),
        cancelled=sum(
            1 for p in records
            if p.status_normalized in ("cancelled", "canceled", "expired", "voided")
        ),
    )
