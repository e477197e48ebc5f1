"""Source-agnostic transaction record produced by every statement parser."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from portfolio_ledger.db.models import TransactionKind


@dataclass(slots=True)
class CanonicalTransaction:
    date: date
    kind: TransactionKind
    symbol: str | None
    description: str
    amount: Decimal
    currency: str
    fingerprint: str
    source_format: str
    quantity: Decimal | None = None
    price: Decimal | None = None
    fees: Decimal | None = None
    category: str | None = None
    merchant: str | None = None
    is_recurring: bool | None = None
    raw_fields: dict[str, str] = field(default_factory=dict)
