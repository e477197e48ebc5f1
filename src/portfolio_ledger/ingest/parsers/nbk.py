"""National Bank of Kuwait account statement export (KWD, three decimals)."""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal

from portfolio_ledger.db.models import TransactionKind
from portfolio_ledger.ingest.canonical import CanonicalTransaction
from portfolio_ledger.ingest.dedupe import row_fingerprint
from portfolio_ledger.ingest.parsers.base import (
    StatementParser,
    opening_balance_adjustment,
    read_table,
    sign_direction,
)
from portfolio_ledger.utils.dates import DMY_DASH_RE, parse_dmy_dash
from portfolio_ledger.utils.money import parse_decimal

K = TransactionKind

NBK_TYPE_PATTERNS: list[tuple[re.Pattern[str], TransactionKind]] = [
    (re.compile(r"^Credit Int$", re.I), K.INTEREST),
    (re.compile(r"Bank Transfer Fee", re.I), K.FEE),
    (re.compile(r"^Debit-NBK\s+Transfer$", re.I), K.TRANSFER_OUT),
    (re.compile(r"^Credit-NBK\s+Transfer$", re.I), K.TRANSFER_IN),
    (re.compile(r"^Debit-Bank Transfer$", re.I), K.TRANSFER_OUT),
    (re.compile(r"^Credit-Bank Transfer$", re.I), K.TRANSFER_IN),
    (re.compile(r"^Debit-\s*MOB$", re.I), K.TRANSFER_OUT),
    (re.compile(r"^Credit-\s*MOB$", re.I), K.TRANSFER_IN),
    (re.compile(r"^Debit-\s*WAMD Transfer$", re.I), K.TRANSFER_OUT),
    (re.compile(r"^Credit-\s*WAMD Transfer$", re.I), K.TRANSFER_IN),
    (re.compile(r"^Debit-Transfer$", re.I), K.TRANSFER_OUT),
    (re.compile(r"^Credit-Transfer$", re.I), K.TRANSFER_IN),
    (re.compile(r"Salary|Payroll", re.I), K.DEPOSIT),
]

_SKIP_PART_RE = re.compile(r"^(TRANSFER (TO|FROM)|COUNTERPARTY|PURPOSE|SWIFT|IPS)", re.I)
_NAME_RE = re.compile(r"^[A-Z\s]+$", re.I)


@dataclass(frozen=True, slots=True)
class DetailsInfo:
    purpose: str
    counterparty: str | None
    category: str | None


def map_description(description: str, amount: Decimal) -> TransactionKind:
    text = description.strip()
    for pattern, kind in NBK_TYPE_PATTERNS:
        if pattern.search(text):
            return kind
    return sign_direction(amount, K.DEPOSIT, K.WITHDRAWAL)


def extract_details(details: str) -> DetailsInfo:
    """Split ``purpose|TRANSFER TO 123|NAME`` style Details cells."""
    if not details:
        return DetailsInfo("", None, None)

    parts = [part.strip() for part in details.split("|")]
    purpose = parts[0]

    counterparty = None
    for part in parts[1:]:
        if _SKIP_PART_RE.match(part) or part.isdigit() or re.fullmatch(r"[A-Z]{2}", part):
            continue
        if _NAME_RE.match(part) and len(part) > 3:
            counterparty = part
            break

    lowered = purpose.lower()
    category = None
    if "salary" in lowered or "payroll" in lowered:
        category = "SALARY"
    elif "transfer" in lowered or "family" in lowered:
        category = "TRANSFER"
    elif "interest" in lowered:
        category = "INVESTMENT_INCOME"
    elif "bill" in lowered or "payment" in lowered:
        category = "BILLS"
    return DetailsInfo(purpose, counterparty, category)


class NBKParser(StatementParser):
    name = "nbk"
    label = "NBK"
    default_currency = "KWD"
    header_tokens = ("Posting Date", "Description", "Details", "Transaction Date", "Amount", "Balance")
    expected_headers = header_tokens

    def parse(self, text: str, currency: str | None = None) -> list[CanonicalTransaction]:
        ccy = self.resolve_currency(currency)
        transactions: list[CanonicalTransaction] = []
        final_balance: Decimal | None = None

        for row in read_table(text):
            raw_date = row.get("Posting Date", "")
            description = row.get("Description", "")
            if not raw_date or not description or not DMY_DASH_RE.match(raw_date):
                continue
            tx_date = parse_dmy_dash(raw_date)
            if tx_date is None:
                continue

            # Newest first: the first non-zero balance closes the statement.
            balance = parse_decimal(row.get("Balance"))
            if final_balance is None and balance:
                final_balance = balance

            amount = parse_decimal(row.get("Amount"))
            if not amount:
                continue

            info = extract_details(row.get("Details", ""))
            full_description = f"{description} - {info.purpose}" if info.purpose else description
            transactions.append(
                CanonicalTransaction(
                    date=tx_date,
                    kind=map_description(description, amount),
                    symbol=None,
                    description=full_description,
                    amount=amount,
                    currency=ccy,
                    fingerprint=row_fingerprint(
                        raw_date, description, row.get("Amount", ""), row.get("Balance", "")
                    ),
                    source_format=self.name,
                    category=info.category,
                    merchant=info.counterparty,
                    is_recurring=False,
                    raw_fields=dict(row),
                )
            )

        opening = opening_balance_adjustment(
            transactions, final_balance, source=self.name, label=self.label, currency=ccy
        )
        if opening is not None:
            transactions.insert(0, opening)
        return transactions
