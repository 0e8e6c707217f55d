"""Provider-agnostic payment outcomes.

Every gateway parses its own callback body into one of the ``ProviderOutcome``
variants below; reconciliation only ever sees these types.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Iterable, Optional


class Outcome(str, enum.Enum):
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    UNRECOGNIZED = "unrecognized"


def classify(
    raw_status: Optional[str],
    paid: Iterable[str],
    failed: Iterable[str] = (),
    cancelled: Iterable[str] = (),
) -> Outcome:
    """Map a provider status string onto an ``Outcome`` (case-insensitive)."""
    value = (raw_status or "").strip().lower()
    if value in {s.lower() for s in paid}:
        return Outcome.PAID
    if value in {s.lower() for s in failed}:
        return Outcome.FAILED
    if value in {s.lower() for s in cancelled}:
        return Outcome.CANCELLED
    return Outcome.UNRECOGNIZED


@dataclass(frozen=True)
class ProviderOutcome:
    """A verified provider callback resolved to one order and one reference."""

    provider: ClassVar[str] = ""

    order_id: str
    provider_reference: str
    outcome: Outcome
    raw_status: str
    # Amount the provider says was charged, in cents; None when not reported
    amount_cents: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.outcome is not Outcome.UNRECOGNIZED


@dataclass(frozen=True)
class CardLinkOutcome(ProviderOutcome):
    provider: ClassVar[str] = "cardlink"

    event_type: Optional[str] = None


@dataclass(frozen=True)
class QRPayOutcome(ProviderOutcome):
    provider: ClassVar[str] = "qrpay"

    merchant_id: str = ""
    transaction_id: Optional[str] = None


@dataclass(frozen=True)
class FormPayOutcome(ProviderOutcome):
    provider: ClassVar[str] = "formpay"

    provider_payment_id: Optional[str] = None
