"""Charles Schwab brokerage transaction history export."""

from __future__ import annotations

from decimal import Decimal

from portfolio_ledger.db.models import TransactionKind
from portfolio_ledger.ingest.canonical import CanonicalTransaction
from portfolio_ledger.ingest.dedupe import row_fingerprint
from portfolio_ledger.ingest.parsers.base import (
    StatementParser,
    is_empty_row,
    read_table,
    sign_direction,
)
from portfolio_ledger.utils.dates import MDY_RE, parse_mdy
from portfolio_ledger.utils.logging import get_logger
from portfolio_ledger.utils.money import parse_decimal

logger = get_logger(__name__)

K = TransactionKind

SCHWAB_ACTION_MAP: dict[str, TransactionKind] = {
    "Buy": K.BUY,
    "Sell": K.SELL,
    "Qualified Dividend": K.DIVIDEND,
    "Cash Dividend": K.DIVIDEND,
    "Reinvest Dividend": K.REINVEST_DIVIDEND,
    "Qual Div Reinvest": K.REINVEST_DIVIDEND,
    "Reinvest Shares": K.BUY,
    "NRA Tax Adj": K.TAX_WITHHOLDING,
    "Credit Interest": K.INTEREST,
    "Bank Interest": K.INTEREST,
    # Schwab reports a forward split as the extra shares received.
    "Stock Split": K.TRANSFER_IN,
}

# Direction for these follows the cash (or share) sign.
SIGNED_ACTIONS: dict[str, tuple[TransactionKind, TransactionKind]] = {
    "MoneyLink Transfer": (K.DEPOSIT, K.WITHDRAWAL),
    "Wire Transfer": (K.DEPOSIT, K.WITHDRAWAL),
    "Journal": (K.TRANSFER_IN, K.TRANSFER_OUT),
    "Journaled Shares": (K.TRANSFER_IN, K.TRANSFER_OUT),
}


def map_action(action: str, amount: Decimal | None, quantity: Decimal | None = None) -> TransactionKind:
    mapped = SCHWAB_ACTION_MAP.get(action)
    if mapped is not None:
        return mapped

    signed = SIGNED_ACTIONS.get(action)
    if signed is not None:
        direction = amount if amount else quantity
        return sign_direction(direction, *signed)

    lowered = action.lower()
    if "dividend" in lowered:
        return K.REINVEST_DIVIDEND if "reinvest" in lowered else K.DIVIDEND
    if "buy" in lowered:
        return K.BUY
    if "sell" in lowered:
        return K.SELL
    if "interest" in lowered:
        return K.INTEREST
    if "tax" in lowered:
        return K.TAX_WITHHOLDING
    if "journal" in lowered:
        return sign_direction(amount if amount else quantity, K.TRANSFER_IN, K.TRANSFER_OUT)
    if "transfer" in lowered or "wire" in lowered:
        return sign_direction(amount, K.DEPOSIT, K.WITHDRAWAL)
    if "fee" in lowered:
        return K.FEE

    logger.warning("Unknown Schwab action %r; classifying by amount sign", action)
    return sign_direction(amount, K.DEPOSIT, K.WITHDRAWAL)


class SchwabParser(StatementParser):
    name = "schwab"
    label = "Charles Schwab"
    header_tokens = ('"Date"', '"Action"', '"Symbol"', '"Amount"')
    expected_headers = (
        "Date",
        "Action",
        "Symbol",
        "Description",
        "Quantity",
        "Price",
        "Fees & Comm",
        "Amount",
    )

    def parse(self, text: str, currency: str | None = None) -> list[CanonicalTransaction]:
        ccy = self.resolve_currency(currency)
        transactions: list[CanonicalTransaction] = []

        for row in read_table(text):
            raw_date = row.get("Date", "")
            action = row.get("Action", "")
            # Footer rows such as "Transactions Total" carry no date.
            if not raw_date or not action or not MDY_RE.match(raw_date):
                continue
            tx_date = parse_mdy(raw_date)
            if tx_date is None:
                continue

            amount = parse_decimal(row.get("Amount"))
            quantity = parse_decimal(row.get("Quantity"))
            if is_empty_row(amount, quantity):
                continue
            if amount is None and row.get("Amount"):
                logger.warning("Schwab row %s %s: unreadable amount %r, using 0", raw_date, action, row["Amount"])

            kind = map_action(action, amount, quantity)
            if quantity is not None and kind in {K.BUY, K.SELL, K.REINVEST_DIVIDEND, K.TRANSFER_IN, K.TRANSFER_OUT}:
                quantity = abs(quantity)

            symbol = row.get("Symbol", "").strip().upper() or None
            fees = parse_decimal(row.get("Fees & Comm"))
            transactions.append(
                CanonicalTransaction(
                    date=tx_date,
                    kind=kind,
                    symbol=symbol,
                    description=row.get("Description", ""),
                    quantity=quantity,
                    price=parse_decimal(row.get("Price")),
                    amount=amount if amount is not None else Decimal("0"),
                    fees=abs(fees) if fees else None,
                    currency=ccy,
                    fingerprint=row_fingerprint(
                        raw_date, action, row.get("Symbol", ""), row.get("Amount", ""), row.get("Quantity", "")
                    ),
                    source_format=self.name,
                    raw_fields=dict(row),
                )
            )
        return transactions
