"""Shared plumbing for statement parsers."""

from __future__ import annotations

import csv
import io
import warnings
from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from typing import ClassVar

import pandas as pd
from pandas.errors import EmptyDataError, ParserWarning

from portfolio_ledger.db.models import TransactionKind
from portfolio_ledger.ingest.canonical import CanonicalTransaction
from portfolio_ledger.ingest.dedupe import opening_balance_fingerprint
from portfolio_ledger.utils.dates import day_before
from portfolio_ledger.utils.logging import get_logger
from portfolio_ledger.utils.money import ZERO, balance_epsilon, round_money

logger = get_logger(__name__)


def first_line(text: str) -> str:
    stripped = (text or "").lstrip("\ufeff")
    return stripped.splitlines()[0] if stripped else ""


def header_matches(line: str, tokens: Iterable[str]) -> bool:
    """True when every token occurs in ``line``, in the given order."""
    position = 0
    for token in tokens:
        found = line.find(token, position)
        if found < 0:
            return False
        position = found + len(token)
    return True


def read_table(text: str, skip_lines: int = 0) -> list[dict[str, str]]:
    """Read a single-table CSV into string records with stripped headers and values.

    Lines with more fields than the header are dropped and logged.
    """
    if not (text or "").lstrip("\ufeff").strip():
        return []
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ParserWarning)
        try:
            frame = pd.read_csv(
                io.StringIO(text.lstrip("\ufeff")),
                dtype=str,
                keep_default_na=False,
                skiprows=skip_lines,
                index_col=False,
                skip_blank_lines=True,
                on_bad_lines="warn",
            )
        except EmptyDataError:
            return []
    for warning in caught:
        if issubclass(warning.category, ParserWarning):
            logger.warning("Malformed statement line dropped: %s", str(warning.message).strip())
        else:
            warnings.warn_explicit(warning.message, warning.category, warning.filename, warning.lineno)
    frame = frame.fillna("")
    frame.columns = [str(column).strip() for column in frame.columns]
    records = frame.to_dict(orient="records")
    return [{key: str(value).strip() for key, value in row.items()} for row in records]


def read_rows(text: str) -> list[list[str]]:
    """Read a ragged multi-section CSV as plain field lists."""
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
    return [[field.strip() for field in row] for row in reader if any(cell.strip() for cell in row)]


def sign_direction(
    amount: Decimal | None,
    positive: TransactionKind,
    negative: TransactionKind,
) -> TransactionKind:
    if amount is not None and amount < 0:
        return negative
    return positive


def is_empty_row(amount: Decimal | None, quantity: Decimal | None) -> bool:
    return (amount is None or amount == 0) and (quantity is None or quantity == 0)


def opening_balance_adjustment(
    transactions: list[CanonicalTransaction],
    final_balance: Decimal | None,
    *,
    source: str,
    label: str,
    currency: str,
) -> CanonicalTransaction | None:
    """Synthesize the balance carried into a partial-history statement.

    ``final_balance - sum(amounts)`` is what the account held before the
    earliest parsed row; it is dated the day before that row.
    """
    if final_balance is None or not transactions:
        return None

    total = sum((tx.amount for tx in transactions), ZERO)
    opening = round_money(final_balance - total, currency)
    if abs(opening) <= balance_epsilon(currency):
        return None

    opening_date: date = day_before(min(tx.date for tx in transactions))
    logger.info(
        "%s statement: opening balance %s %s (final %s, transactions %s)",
        label,
        currency,
        opening,
        final_balance,
        total,
    )
    return CanonicalTransaction(
        date=opening_date,
        kind=TransactionKind.ADJUSTMENT,
        symbol=None,
        description=f"Opening Balance (imported from {label} statement)",
        amount=opening,
        currency=currency,
        fingerprint=opening_balance_fingerprint(source, opening_date, opening),
        source_format=source,
        category="TRANSFER",
        merchant="Opening Balance",
        is_recurring=False,
        raw_fields={"type": "OPENING_BALANCE", "amount": str(opening)},
    )


class StatementParser:
    """One statement format: header sniffing plus row conversion."""

    name: ClassVar[str]
    label: ClassVar[str]
    default_currency: ClassVar[str] = "USD"
    header_tokens: ClassVar[tuple[str, ...]] = ()
    expected_headers: ClassVar[tuple[str, ...]] = ()

    def detect(self, text: str) -> bool:
        return bool(self.header_tokens) and header_matches(first_line(text), self.header_tokens)

    def parse(self, text: str, currency: str | None = None) -> list[CanonicalTransaction]:
        raise NotImplementedError

    def resolve_currency(self, currency: str | None) -> str:
        return (currency or self.default_currency).strip().upper()
