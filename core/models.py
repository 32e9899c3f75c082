"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- UnifiedPayment: One payment attempt, merged from either the payments_v2
  ledger or the reconciliation queue. Read-only input to analytics.

- FeeResolution: Output of the fee resolver for a single successful payment.

- AnalyticsSummary: Per-currency totals produced by one aggregation pass.

- PaymentsStats: Record counters over the merged list (dashboard header).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from core.currency import other_currencies


@dataclass
class UnifiedPayment:
    """
    Normalized payment record consumed by the analytics pipeline.

    Produced by merge_sources() (or by a caller that already holds merged
    data). Never mutated during aggregation.
    """

    # Identity
    uid: str                         # Provider payment id. Refund dedup key.
    raw_source: str                  # "payments_v2" | "queue"

    # Money
    amount: float                    # Major units, non-negative.
    currency: str = "BYN"
    total_refunded: float = 0.0      # Only populated on payments_v2 rows.

    # Classification
    status_normalized: str = "pending"
    transaction_type: Optional[str] = None

    # Fee inputs
    provider_response: Optional[dict] = None
    provider_fee_amount: Optional[float] = None
    payment_method: Optional[str] = None

    # Display / bookkeeping
    id: Optional[str] = None
    source: str = "processed"        # "webhook" | "api" | "file_import" | "processed"
    provider: str = "bepaid"
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    customer_email: Optional[str] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    profile_id: Optional[str] = None
    order_id: Optional[str] = None
    receipt_url: Optional[str] = None
    tracking_id: Optional[str] = None
    refunds_count: int = 0
    is_external: bool = False
    has_conflict: bool = False


@dataclass
class FeeResolution:
    """A resolved processing fee and where it came from."""
    amount: float
    source: str                      # "provider" | "fallback"


@dataclass
class AnalyticsSummary:
    """
    Result of one aggregation pass over a snapshot of payments.

    Each bucket maps currency code -> non-negative total. Net revenue is
    only meaningful in the primary currency and is never summed across
    currencies.
    """

    successful: dict[str, float] = field(default_factory=dict)
    refunded: dict[str, float] = field(default_factory=dict)
    failed: dict[str, float] = field(default_factory=dict)
    fees: dict[str, float] = field(default_factory=dict)

    fees_known_count: int = 0        # Provider-reported fees
    fees_fallback_count: int = 0     # Fees estimated from the rule table
    fees_unknown_count: int = 0      # Successful payments with no fee at all

    primary_currency: str = "BYN"

    def total(self, bucket: str, currency: str | None = None) -> float:
        """Returns a bucket total for a currency (primary by default)."""
        totals: dict[str, float] = getattr(self, bucket)
        return totals.get(currency or self.primary_currency, 0.0)

    @property
    def net_revenue(self) -> float:
        return (
            self.total("successful")
            - self.total("refunded")
            - self.total("fees")
        )

    def other_currencies(self) -> dict[str, float]:
        """Successful totals in every non-primary currency with a nonzero amount."""
        return other_currencies(self.successful, self.primary_currency)


@dataclass
class PaymentsStats:
    """Record counters over the merged payment list."""
    total: int = 0
    in_queue: int = 0
    processed: int = 0
    with_contact: int = 0
    without_contact: int = 0
    with_deal: int = 0
    without_deal: int = 0
    with_receipt: int = 0
    without_receipt: int = 0
    with_refunds: int = 0
    external: int = 0
    conflicts: int = 0
    total_amount: float = 0.0
    total_refunded: float = 0.0
    pending: int = 0
    failed: int = 0
    successful: int = 0
    refunded: int = 0
    cancelled: int = 0

    def as_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)
