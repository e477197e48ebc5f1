"""Bank of America checking export.

The file opens with a short summary block (beginning/ending balance, totals)
followed by the transaction table::

    Description,,Summary Amt.
    Beginning balance as of 01/01/2025,,"1,000.00"
    ...

    Date,Description,Amount,Running Bal.
"""

from __future__ import annotations

import re
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
from portfolio_ledger.utils.money import parse_decimal

K = TransactionKind

TABLE_HEADER = "Date,Description,Amount,Running Bal."

BOFA_TYPE_PATTERNS: list[tuple[re.Pattern[str], TransactionKind]] = [
    (re.compile(r"WIRE TYPE:WIRE OUT", re.I), K.TRANSFER_OUT),
    (re.compile(r"WIRE TYPE:INTL IN", re.I), K.TRANSFER_IN),
    (re.compile(r"WIRE TYPE:WIRE IN", re.I), K.TRANSFER_IN),
    (re.compile(r"Wire Transfer Fee", re.I), K.FEE),
    (re.compile(r"^TRANSFER\s+.*Confirmation#", re.I), K.TRANSFER_OUT),
    (re.compile(r"SCHWAB BROKERAGE.*MONEYLINK", re.I), K.TRANSFER_OUT),
    (re.compile(r"INTERACTIVE BROK.*ACH TRANSF", re.I), K.TRANSFER_OUT),
    (re.compile(r"Fee Waiver", re.I), K.ADJUSTMENT),
    (re.compile(r"Settlement", re.I), K.DEPOSIT),
    (re.compile(r"Direct Deposit|PAYROLL", re.I), K.DEPOSIT),
]

_OUTFLOW_ONLY = {K.TRANSFER_OUT, K.FEE}
_INFLOW_ONLY = {K.TRANSFER_IN, K.DEPOSIT}


def map_description(description: str, amount: Decimal) -> TransactionKind:
    for pattern, kind in BOFA_TYPE_PATTERNS:
        if pattern.search(description):
            # A description hit never overrides the direction of the cash.
            if (kind in _OUTFLOW_ONLY and amount > 0) or (kind in _INFLOW_ONLY and amount < 0):
                break
            return kind
    return sign_direction(amount, K.DEPOSIT, K.WITHDRAWAL)


def _table_text(text: str) -> str | None:
    lines = text.lstrip("\ufeff").splitlines()
    for index, line in enumerate(lines):
        if TABLE_HEADER in line:
            return "\n".join(lines[index:])
    return None


class BofAParser(StatementParser):
    name = "bofa"
    label = "Bank of America"
    header_tokens = ("Description", "Summary Amt.")
    expected_headers = ("Date", "Description", "Amount", "Running Bal.")

    def parse(self, text: str, currency: str | None = None) -> list[CanonicalTransaction]:
        ccy = self.resolve_currency(currency)
        table = _table_text(text)
        if table is None:
            return []

        transactions: list[CanonicalTransaction] = []
        final_balance: Decimal | None = None

        for row in read_table(table):
            raw_date = row.get("Date", "")
            if not raw_date or not MDY_RE.match(raw_date):
                continue
            tx_date = parse_mdy(raw_date)
            if tx_date is None:
                continue

            # Oldest first: the last running balance closes the statement.
            balance = parse_decimal(row.get("Running Bal."))
            if balance is not None:
                final_balance = balance

            description = row.get("Description", "")
            amount = parse_decimal(row.get("Amount"))
            if not amount or description.lower().startswith("beginning balance"):
                continue

            hint = categorize(description)
            transactions.append(
                CanonicalTransaction(
                    date=tx_date,
                    kind=map_description(description, amount),
                    symbol=None,
                    description=description,
                    amount=amount,
                    currency=ccy,
                    fingerprint=row_fingerprint(
                        raw_date, description, row.get("Amount", ""), row.get("Running Bal.", "")
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
