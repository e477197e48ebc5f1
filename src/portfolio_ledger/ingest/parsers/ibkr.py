"""Interactive Brokers multi-section transaction history export.

The file is a stack of sections (``Statement``, ``Summary``,
``Transaction History`` ...). Every line starts with the section name and a
row type (``Header`` or ``Data``); only Transaction History data rows become
transactions.

Forex conversion rows (``EUR.USD``) are booked in the pair's quote currency
rather than the currency passed by the caller.
"""

from __future__ import annotations

import re
from decimal import Decimal

from portfolio_ledger.db.models import TransactionKind
from portfolio_ledger.ingest.canonical import CanonicalTransaction
from portfolio_ledger.ingest.dedupe import row_fingerprint
from portfolio_ledger.ingest.parsers.base import (
    StatementParser,
    first_line,
    header_matches,
    is_empty_row,
    read_rows,
    sign_direction,
)
from portfolio_ledger.utils.dates import ISO_RE, parse_iso
from portfolio_ledger.utils.logging import get_logger
from portfolio_ledger.utils.money import parse_decimal

logger = get_logger(__name__)

K = TransactionKind

SECTION = "Transaction History"
FOREX_PAIR_RE = re.compile(r"^[A-Z]{3}\.[A-Z]{3}$")

IBKR_TYPE_MAP: dict[str, TransactionKind] = {
    "Buy": K.BUY,
    "Sell": K.SELL,
    "Dividend": K.DIVIDEND,
    "Payment in Lieu of Dividends": K.DIVIDEND,
    "Credit Interest": K.INTEREST,
    "Debit Interest": K.INTEREST,
    "Foreign Tax Withholding": K.TAX_WITHHOLDING,
    "Withholding Tax": K.TAX_WITHHOLDING,
    "Forex Trade Component": K.FOREX,
    "Adjustment": K.ADJUSTMENT,
    "Other Fee": K.FEE,
}

SIGNED_TYPES: dict[str, tuple[TransactionKind, TransactionKind]] = {
    "Electronic Fund Transfer": (K.DEPOSIT, K.WITHDRAWAL),
    "Withdrawal": (K.DEPOSIT, K.WITHDRAWAL),
}

# "Transfer to/from" in the description decides direction, otherwise the sign.
TRANSFER_TYPES = {"Deposit", "System Transfer"}

COLUMN_DEFAULTS = (
    "Date",
    "Account",
    "Description",
    "Transaction Type",
    "Symbol",
    "Quantity",
    "Price",
    "Gross Amount",
    "Commission",
    "Net Amount",
    "Transaction Fees",
)


def map_transaction_type(ibkr_type: str, net_amount: Decimal | None, description: str) -> TransactionKind:
    if ibkr_type in TRANSFER_TYPES:
        if "Transfer to" in description:
            return K.TRANSFER_OUT
        if "Transfer from" in description:
            return K.TRANSFER_IN
        return sign_direction(net_amount, K.DEPOSIT, K.WITHDRAWAL)

    mapped = IBKR_TYPE_MAP.get(ibkr_type)
    if mapped is not None:
        return mapped
    signed = SIGNED_TYPES.get(ibkr_type)
    if signed is not None:
        return sign_direction(net_amount, *signed)

    lowered = ibkr_type.lower()
    if "dividend" in lowered:
        return K.DIVIDEND
    if "interest" in lowered:
        return K.INTEREST
    if "tax" in lowered:
        return K.TAX_WITHHOLDING
    if "forex" in lowered or "fx" in lowered:
        return K.FOREX
    if "adjustment" in lowered:
        return K.ADJUSTMENT
    if "buy" in lowered:
        return K.BUY
    if "sell" in lowered:
        return K.SELL
    if "deposit" in lowered or "withdrawal" in lowered or "transfer" in lowered:
        return sign_direction(net_amount, K.DEPOSIT, K.WITHDRAWAL)
    if "fee" in lowered:
        return K.FEE

    logger.warning("Unknown IBKR transaction type %r; classifying by amount sign", ibkr_type)
    return sign_direction(net_amount, K.DEPOSIT, K.WITHDRAWAL)


def normalize_symbol(symbol: str, ibkr_type: str) -> str | None:
    """``BTC.USD-ZEROHASH`` becomes ``BTC``; forex pairs get no symbol."""
    text = (symbol or "").strip().upper()
    if not text or text == "-":
        return None
    if "-ZEROHASH" in text:
        return text.split(".")[0]
    if ibkr_type == "Forex Trade Component" or FOREX_PAIR_RE.match(text):
        return None
    return text


def quote_currency(symbol: str, fallback: str) -> str:
    """Amounts on a ``EUR.USD`` row are in the quote currency."""
    text = (symbol or "").strip().upper()
    if FOREX_PAIR_RE.match(text):
        return text.split(".")[1]
    return fallback


def _sum_fees(*values: Decimal | None) -> Decimal | None:
    present = [abs(value) for value in values if value is not None]
    total = sum(present, Decimal("0"))
    return total if total else None


class IBKRParser(StatementParser):
    name = "ibkr"
    label = "Interactive Brokers"
    header_variants: tuple[tuple[str, ...], ...] = (
        ("Statement", "Header", "Field Name"),
        (SECTION, "Header"),
    )
    expected_headers = COLUMN_DEFAULTS

    def detect(self, text: str) -> bool:
        line = first_line(text)
        return any(
            line.startswith(tokens[0]) and header_matches(line, tokens)
            for tokens in self.header_variants
        )

    def parse(self, text: str, currency: str | None = None) -> list[CanonicalTransaction]:
        ccy = self.resolve_currency(currency)
        transactions: list[CanonicalTransaction] = []
        columns: list[str] | None = None

        for fields in read_rows(text):
            if len(fields) < 2 or fields[0] != SECTION:
                continue
            if fields[1] == "Header":
                columns = fields[2:] or list(COLUMN_DEFAULTS)
                continue
            if fields[1] != "Data" or columns is None:
                continue

            values = fields[2:]
            row = {name: values[index] if index < len(values) else "" for index, name in enumerate(columns)}
            tx = self._convert(row, ccy)
            if tx is not None:
                transactions.append(tx)
        return transactions

    def _convert(self, row: dict[str, str], ccy: str) -> CanonicalTransaction | None:
        raw_date = row.get("Date", "")
        ibkr_type = row.get("Transaction Type", "")
        if not raw_date or not ibkr_type or not ISO_RE.match(raw_date):
            return None
        tx_date = parse_iso(raw_date)
        if tx_date is None:
            return None

        net_amount = parse_decimal(row.get("Net Amount"))
        quantity = parse_decimal(row.get("Quantity"))
        if is_empty_row(net_amount, quantity):
            return None

        description = row.get("Description", "")
        kind = map_transaction_type(ibkr_type, net_amount, description)
        raw_symbol = row.get("Symbol", "")
        symbol = normalize_symbol(raw_symbol, ibkr_type)
        if kind == K.FOREX:
            symbol = None
        if quantity is not None and kind in {K.BUY, K.SELL}:
            quantity = abs(quantity)

        return CanonicalTransaction(
            date=tx_date,
            kind=kind,
            symbol=symbol,
            description=description,
            quantity=quantity,
            price=parse_decimal(row.get("Price")),
            amount=net_amount if net_amount is not None else Decimal("0"),
            fees=_sum_fees(parse_decimal(row.get("Commission")), parse_decimal(row.get("Transaction Fees"))),
            currency=quote_currency(raw_symbol, ccy),
            fingerprint=row_fingerprint(
                raw_date, ibkr_type, raw_symbol, row.get("Net Amount", ""), row.get("Quantity", "")
            ),
            source_format=self.name,
            raw_fields=dict(row),
        )
