from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from hashlib import sha256
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from portfolio_ledger.db.models import Transaction
from portfolio_ledger.ingest.canonical import CanonicalTransaction

FINGERPRINT_LENGTH = 32

FINGERPRINT_REASON = "Duplicate (fingerprint match)"
BATCH_REASON = "Duplicate (fingerprint repeated earlier in this file)"
NATURAL_KEY_REASON = "Duplicate: matching date, kind, symbol, amount and quantity"


def _normalize_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        value = value.value
    return str(value).strip()


def _normalize_decimal(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if value == 0:
        return "0"
    return format(value.normalize(), "f")


def row_fingerprint(*parts: Any) -> str:
    """Stable content hash over raw source fields, joined with ``|``."""
    payload = "|".join(_normalize_text(part) for part in parts)
    return sha256(payload.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def opening_balance_fingerprint(source: str, day: date, amount: Decimal) -> str:
    payload = f"{source}_opening_balance_{day.isoformat()}_{_normalize_decimal(amount)}"
    return sha256(payload.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


@dataclass(frozen=True, slots=True)
class DedupeDecision:
    is_duplicate: bool
    existing_id: int | None = None
    reason: str | None = None


NEW = DedupeDecision(is_duplicate=False)


class DuplicateDetector:
    """Classifies parsed rows against what is already stored for one account.

    Fingerprints are fetched once up front. Rows that carry a symbol also get a
    natural-key lookup (date, kind, symbol, amount, quantity) so re-exports
    with a different fingerprint scheme are still caught. Cash-only bank rows
    skip that lookup: two identical card payments on one day are legitimate.
    """

    def __init__(self, session: Session, account_id: str) -> None:
        self.session = session
        self.account_id = account_id
        rows = session.execute(
            select(Transaction.fingerprint, Transaction.id).where(
                Transaction.account_id == account_id
            )
        ).all()
        self._persisted: dict[str, int] = {fingerprint: tx_id for fingerprint, tx_id in rows}
        self._seen_in_batch: set[str] = set()

    def classify(self, tx: CanonicalTransaction) -> DedupeDecision:
        existing_id = self._persisted.get(tx.fingerprint)
        if tx.fingerprint in self._seen_in_batch:
            return DedupeDecision(True, existing_id, BATCH_REASON)
        if existing_id is not None:
            return DedupeDecision(True, existing_id, FINGERPRINT_REASON)

        if tx.symbol:
            existing_id = self._natural_key_match(tx)
            if existing_id is not None:
                return DedupeDecision(True, existing_id, NATURAL_KEY_REASON)
        return NEW

    def remember(self, tx: CanonicalTransaction, transaction_id: int | None = None) -> None:
        self._seen_in_batch.add(tx.fingerprint)
        if transaction_id is not None:
            self._persisted[tx.fingerprint] = transaction_id

    def _natural_key_match(self, tx: CanonicalTransaction) -> int | None:
        stmt = select(Transaction.id).where(
            Transaction.account_id == self.account_id,
            Transaction.date == tx.date,
            Transaction.kind == tx.kind,
            Transaction.symbol == tx.symbol,
            Transaction.amount == tx.amount,
        )
        if tx.quantity is None:
            stmt = stmt.where(Transaction.quantity.is_(None))
        else:
            stmt = stmt.where(Transaction.quantity == tx.quantity)
        return self.session.scalar(stmt.order_by(Transaction.id).limit(1))
