"""Hand-prepared CSV following the published transaction template."""

from __future__ import annotations

import csv
from decimal import Decimal

from portfolio_ledger.db.models import TransactionKind
from portfolio_ledger.ingest.canonical import CanonicalTransaction
from portfolio_ledger.ingest.dedupe import row_fingerprint
from portfolio_ledger.ingest.parsers.base import StatementParser, first_line, is_empty_row, read_table
from portfolio_ledger.utils.dates import parse_flexible
from portfolio_ledger.utils.logging import get_logger
from portfolio_ledger.utils.money import parse_decimal

logger = get_logger(__name__)

K = TransactionKind

TEMPLATE_HEADERS = ("Date", "Type", "Symbol", "Quantity", "Price", "Amount", "Fees", "Notes")

FIELD_ALIASES: dict[str, set[str]] = {
    "date": {"date", "trade date", "transaction date"},
    "type": {"type", "transaction type"},
    "symbol": {"symbol", "ticker"},
    "quantity": {"quantity", "qty", "shares"},
    "price": {"price", "unit price"},
    "amount": {"amount", "net amount", "total"},
    "fees": {"fees", "fee", "commission"},
    "notes": {"notes", "description", "memo"},
}
REQUIRED_FIELDS = ("date", "type", "amount")

TYPE_ALIASES: dict[str, TransactionKind] = {
    "buy": K.BUY,
    "purchase": K.BUY,
    "bought": K.BUY,
    "sell": K.SELL,
    "sold": K.SELL,
    "sale": K.SELL,
    "dividend": K.DIVIDEND,
    "div": K.DIVIDEND,
    "reinvest": K.REINVEST_DIVIDEND,
    "reinvest dividend": K.REINVEST_DIVIDEND,
    "drip": K.REINVEST_DIVIDEND,
    "deposit": K.DEPOSIT,
    "contribution": K.DEPOSIT,
    "withdrawal": K.WITHDRAWAL,
    "withdraw": K.WITHDRAWAL,
    "transfer in": K.TRANSFER_IN,
    "transfer out": K.TRANSFER_OUT,
    "interest": K.INTEREST,
    "fee": K.FEE,
    "tax": K.TAX_WITHHOLDING,
    "withholding": K.TAX_WITHHOLDING,
    "split": K.SPLIT,
    "adjustment": K.ADJUSTMENT,
    "forex": K.FOREX,
}

OUTFLOW_KINDS = {K.BUY, K.WITHDRAWAL, K.TRANSFER_OUT, K.FEE, K.TAX_WITHHOLDING}
INFLOW_KINDS = {K.SELL, K.DIVIDEND, K.INTEREST, K.DEPOSIT, K.TRANSFER_IN}


def _normalize_header(name: str) -> str:
    return " ".join(str(name).strip().strip('"').lower().replace("_", " ").split())


def infer_mapping(headers: list[str]) -> dict[str, str]:
    normalized = {_normalize_header(header): header for header in headers}
    mapping: dict[str, str] = {}
    for canonical, aliases in FIELD_ALIASES.items():
        for alias in sorted(aliases):
            if alias in normalized:
                mapping[canonical] = normalized[alias]
                break
    return mapping


def map_type(raw_type: str, amount: Decimal | None) -> TransactionKind:
    token = _normalize_header(raw_type)
    mapped = TYPE_ALIASES.get(token)
    if mapped is None:
        try:
            mapped = TransactionKind(token.upper().replace(" ", "_"))
        except ValueError:
            logger.warning("Unknown transaction type %r; classifying by amount sign", raw_type)
            mapped = K.WITHDRAWAL if amount is not None and amount < 0 else K.DEPOSIT
    return mapped


def signed_amount(kind: TransactionKind, amount: Decimal) -> Decimal:
    """Hand-entered amounts are often unsigned; the kind decides the direction."""
    if kind in OUTFLOW_KINDS:
        return -abs(amount)
    if kind in INFLOW_KINDS:
        return abs(amount)
    return amount


class GenericParser(StatementParser):
    name = "generic"
    label = "Generic CSV"
    expected_headers = TEMPLATE_HEADERS

    def detect(self, text: str) -> bool:
        line = first_line(text)
        if not line:
            return False
        headers = next(csv.reader([line]))
        mapping = infer_mapping(headers)
        return all(field in mapping for field in REQUIRED_FIELDS)

    def parse(self, text: str, currency: str | None = None) -> list[CanonicalTransaction]:
        ccy = self.resolve_currency(currency)
        rows = read_table(text)
        if not rows:
            return []
        mapping = infer_mapping(list(rows[0].keys()))

        def cell(row: dict[str, str], field: str) -> str:
            column = mapping.get(field)
            return row.get(column, "") if column else ""

        transactions: list[CanonicalTransaction] = []
        for index, row in enumerate(rows, start=2):
            raw_date = cell(row, "date")
            tx_date = parse_flexible(raw_date)
            if tx_date is None:
                continue

            amount = parse_decimal(cell(row, "amount"))
            quantity = parse_decimal(cell(row, "quantity"))
            price = parse_decimal(cell(row, "price"))
            if amount is None and quantity is not None and price is not None:
                amount = quantity * price
            if is_empty_row(amount, quantity):
                continue

            kind = map_type(cell(row, "type"), amount)
            if amount is None:
                logger.warning("Row %s: no amount, using 0", index)
                amount = Decimal("0")
            fees = parse_decimal(cell(row, "fees"))
            transactions.append(
                CanonicalTransaction(
                    date=tx_date,
                    kind=kind,
                    symbol=cell(row, "symbol").upper() or None,
                    description=cell(row, "notes"),
                    quantity=abs(quantity) if quantity is not None and kind != K.SPLIT else quantity,
                    price=price,
                    amount=signed_amount(kind, amount),
                    fees=abs(fees) if fees else None,
                    currency=ccy,
                    fingerprint=row_fingerprint(
                        raw_date,
                        cell(row, "type"),
                        cell(row, "symbol"),
                        cell(row, "amount"),
                        cell(row, "quantity"),
                    ),
                    source_format=self.name,
                    raw_fields=dict(row),
                )
            )
        return transactions
