"""
payment_status.py
------------------
Payment status and transaction-type vocabulary.

Provider exports, webhooks and manual imports use many spellings for the
same outcome ("successful", "Успешно", "captured", ...). This module folds
them into five canonical statuses (applied to every row by the source merge),
and classifies free-text transaction types as refund or cancel.

The analytics buckets themselves (successful vs failed) are driven by the
status sets in config.yaml, see is_successful_status() / is_failed_status().
"""

from typing import Optional

from config.config_loader import (
    get_failed_statuses,
    get_refund_markers,
    get_successful_statuses,
)


CANONICAL_STATUSES: tuple[str, ...] = ("succeeded", "refunded", "canceled", "failed", "pending")

# Exact synonyms, matched after trim + lower-case.
_STATUS_SYNONYMS: dict[str, str] = {
    # succeeded
    "successful": "succeeded",
    "succeeded": "succeeded",
    "success": "succeeded",
    "успешно": "succeeded",
    "completed": "succeeded",
    "processed": "succeeded",
    "captured": "succeeded",
    # refunded
    "refund": "refunded",
    "refunded": "refunded",
    "возврат": "refunded",
    "возврат средств": "refunded",
    # canceled
    "cancel": "canceled",
    "canceled": "canceled",
    "cancelled": "canceled",
    "void": "canceled",
    "voided": "canceled",
    "authorization_void": "canceled",
    "отмена": "canceled",
    # failed
    "failed": "failed",
    "declined": "failed",
    "expired": "failed",
    "incomplete": "failed",
    "error": "failed",
    "ошибка": "failed",
    # pending
    "pending": "pending",
    "processing": "pending",
    "ожидание": "pending",
}

# Substring fallbacks, checked in order when no exact synonym matched.
_STATUS_FRAGMENTS: tuple[tuple[str, str], ...] = (
    ("возврат", "refunded"),
    ("refund", "refunded"),
    ("отмен", "canceled"),
    ("cancel", "canceled"),
    ("void", "canceled"),
    ("fail", "failed"),
    ("declin", "failed"),
    ("ошибк", "failed"),
    ("success", "succeeded"),
    ("succeed", "succeeded"),
    ("успеш", "succeeded"),
    ("pending", "pending"),
    ("ожидан", "pending"),
)


def _clean(value: Optional[str]) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


# -----------------------------------------------------------------------------
# CANONICAL STATUS
# -----------------------------------------------------------------------------

def to_canonical_status(raw: Optional[str]) -> Optional[str]:
    """
    Map a raw status string to one of CANONICAL_STATUSES.

    Returns None for empty input or an unrecognized status.
    """
    status = _clean(raw)
    if not status:
        return None

    if status in _STATUS_SYNONYMS:
        return _STATUS_SYNONYMS[status]

    for fragment, canonical in _STATUS_FRAGMENTS:
        if fragment in status:
            return canonical

    return None


def require_canonical_status(raw: Optional[str], context: str | None = None) -> str:
    """
    Strict variant of to_canonical_status() for import paths.

    Raises:
        ValueError: If the status cannot be mapped. The message includes
            `context` when given.
    """
    canonical = to_canonical_status(raw)
    if canonical is None:
        where = f" ({context})" if context else ""
        raise ValueError(
            f"Unknown payment status {raw!r}{where}. "
            f"Expected one of: {list(CANONICAL_STATUSES)} or a known synonym."
        )
    return canonical


# -----------------------------------------------------------------------------
# ANALYTICS BUCKETS
# -----------------------------------------------------------------------------

def is_successful_status(status_normalized: Optional[str]) -> bool:
    return _clean(status_normalized) in get_successful_statuses()


def is_failed_status(status_normalized: Optional[str]) -> bool:
    return _clean(status_normalized) in get_failed_statuses()


# -----------------------------------------------------------------------------
# TRANSACTION TYPES
# -----------------------------------------------------------------------------

def is_refund_marker(transaction_type: Optional[str]) -> bool:
    """True if transaction_type is exactly one of the configured refund markers."""
    tx_type = _clean(transaction_type)
    return bool(tx_type) and tx_type in {m.strip().lower() for m in get_refund_markers()}


def is_refund_transaction_type(transaction_type: Optional[str]) -> bool:
    tx_type = _clean(transaction_type)
    return "возврат" in tx_type or "refund" in tx_type


def is_cancel_transaction_type(transaction_type: Optional[str]) -> bool:
    tx_type = _clean(transaction_type)
    return "отмен" in tx_type or "cancel" in tx_type or "void" in tx_type

