"""Chase checking/savings activity export.

Rows are newest first, so the first row with a balance is the closing
balance of the statement.
"""

from __future__ import annotations

from decimal import Decimal

from portfolio_ledger.db.models import TransactionKind
from portfolio_ledger.ingest.canonical import CanonicalTransaction
from portfolio_ledger.ingest.categorize import categorize
from portfolio_ledger.ingest.dedupe import row_fingerprint
from portfolio_ledger.ingest.parsers.base import (
    StatementParser,
    opening_balance_adjustment,
    read_table,
    sign_direction,
)
from portfolio_ledger.utils.dates import MDY_RE, parse_mdy
from portfolio_ledger.utils.logging import get_logger
from portfolio_ledger.utils.money import parse_decimal

logger = get_logger(__name__)

K = TransactionKind

CHASE_TYPE_MAP: dict[str, TransactionKind] = {
    "ACH_CREDIT": K.DEPOSIT,
    "ACH_DEBIT": K.WITHDRAWAL,
    "DEBIT_CARD": K.WITHDRAWAL,
    "CHECK_DEPOSIT": K.DEPOSIT,
    "CHECK_PAID": K.WITHDRAWAL,
    "WIRE_INCOMING": K.TRANSFER_IN,
    "WIRE_OUTGOING": K.TRANSFER_OUT,
    "FEE_TRANSACTION": K.FEE,
    "ATM_WITHDRAWAL": K.WITHDRAWAL,
    "ATM_DEPOSIT": K.DEPOSIT,
    "LOAN_PAYMENT": K.WITHDRAWAL,
    "BILL_PAYMENT": K.WITHDRAWAL,
}


def map_type(chase_type: str, details: str, amount: Decimal) -> TransactionKind:
    mapped = CHASE_TYPE_MAP.get(chase_type.strip().upper())
    if mapped is not None:
        return mapped
    details_upper = details.strip().upper()
    if details_upper == "CREDIT":
        return K.DEPOSIT
    if details_upper in {"DEBIT", "CHECK"}:
        return K.WITHDRAWAL
    return sign_direction(amount, K.DEPOSIT, K.WITHDRAWAL)


class ChaseParser(StatementParser):
    name = "chase_bank"
    label = "Chase"
    header_tokens = ("Details", "Posting Date", "Description", "Amount", "Type", "Balance")
    expected_headers = (
        "Details",
        "Posting Date",
        "Description",
        "Amount",
        "Type",
        "Balance",
        "Check or Slip #",
    )

    def parse(self, text: str, currency: str | None = None) -> list[CanonicalTransaction]:
        ccy = self.resolve_currency(currency)
        transactions: list[CanonicalTransaction] = []
        final_balance: Decimal | None = None

        for row in read_table(text):
            raw_date = row.get("Posting Date", "")
            if not raw_date or not MDY_RE.match(raw_date):
                continue
            tx_date = parse_mdy(raw_date)
            if tx_date is None:
                continue

            balance = parse_decimal(row.get("Balance"))
            if final_balance is None and balance:
                final_balance = balance

            amount = parse_decimal(row.get("Amount"))
            if not amount:
                continue

            description = row.get("Description", "")
            hint = categorize(description)
            transactions.append(
                CanonicalTransaction(
                    date=tx_date,
                    kind=map_type(row.get("Type", ""), row.get("Details", ""), amount),
                    symbol=None,
                    description=description,
                    amount=amount,
                    currency=ccy,
                    fingerprint=row_fingerprint(
                        raw_date, description, row.get("Amount", ""), row.get("Type", "")
                    ),
                    source_format=self.name,
                    category=hint.category,
                    merchant=hint.merchant,
                    is_recurring=hint.is_recurring,
                    raw_fields=dict(row),
                )
            )

        opening = opening_balance_adjustment(
            transactions, final_balance, source=self.name, label=self.label, currency=ccy
        )
        if opening is not None:
            transactions.insert(0, opening)
        return transactions
