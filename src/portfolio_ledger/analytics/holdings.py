"""Holdings replay: quantity, average cost and cash rebuilt from the ledger.

Holdings are derived state. Every function here recomputes from the account's
transactions in date order and overwrites what is stored.
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import case, delete, select, update
from sqlalchemy.orm import Session

from portfolio_ledger.db.models import AssetType, Holding, TaxLot, Transaction, TransactionKind
from portfolio_ledger.db.repository import get_account
from portfolio_ledger.utils.logging import get_logger
from portfolio_ledger.utils.money import ZERO, round_money, round_quantity, round_unit_price

logger = get_logger(__name__)

K = TransactionKind

CASH_PREFIX = "CASH."
CRYPTO_SYMBOLS = frozenset({"BTC", "ETH", "SOL", "DOGE", "ADA", "XRP", "DOT", "LINK"})
ETF_RE = re.compile(r"^(SPY|QQQ|IWM|DIA|VTI|VOO|VGT|VUG|VTV|BND|TIP|SCHD|XL[A-Z]|IJ[A-Z]|EW[A-Z])$")
FOREX_PAIR_RE = re.compile(r"^[A-Z]{3}\.[A-Z]{3}$")

ACQUIRE_KINDS = (K.BUY, K.TRANSFER_IN, K.REINVEST_DIVIDEND)
DISPOSE_KINDS = (K.SELL, K.TRANSFER_OUT)
NON_CASH_KINDS = (K.REINVEST_DIVIDEND,)


@dataclass(frozen=True, slots=True)
class HoldingState:
    quantity: Decimal
    cost_basis: Decimal
    avg_cost_per_unit: Decimal


@dataclass(slots=True)
class AccountRecalculation:
    account_id: str
    holdings: dict[str, HoldingState] = field(default_factory=dict)
    cash_balances: dict[str, Decimal] = field(default_factory=dict)


def cash_symbol(currency: str) -> str:
    return f"{CASH_PREFIX}{currency.upper()}"


def infer_asset_type(symbol: str) -> AssetType:
    upper = symbol.upper()
    if upper.startswith(CASH_PREFIX):
        return AssetType.CASH
    if upper in CRYPTO_SYMBOLS:
        return AssetType.CRYPTO
    if ETF_RE.match(upper):
        return AssetType.ETF
    return AssetType.STOCK


def chronological_order() -> tuple:
    """Date, then acquisitions before disposals on the same day, then insertion order."""
    same_day_rank = case(
        (Transaction.kind.in_([K.BUY, K.REINVEST_DIVIDEND, K.TRANSFER_IN]), 0),
        (Transaction.kind == K.SPLIT, 1),
        else_=2,
    )
    return (Transaction.date, same_day_rank, Transaction.id)


def ensure_holding(session: Session, account_id: str, symbol: str, currency: str = "USD") -> Holding:
    holding = session.scalar(
        select(Holding).where(Holding.account_id == account_id, Holding.symbol == symbol)
    )
    if holding is not None:
        return holding
    holding = Holding(
        account_id=account_id,
        symbol=symbol,
        asset_type=infer_asset_type(symbol),
        currency=currency,
        quantity=ZERO,
        cost_basis=ZERO,
        avg_cost_per_unit=ZERO,
    )
    session.add(holding)
    session.flush()
    return holding


def replay(transactions: Iterable[Transaction], currency: str | None = None) -> HoldingState:
    """Average-cost fold over one holding's transactions, already in date order."""
    quantity = ZERO
    total_cost = ZERO

    for tx in transactions:
        qty = abs(tx.quantity) if tx.quantity is not None else ZERO
        price = tx.price if tx.price is not None else ZERO

        if tx.kind in ACQUIRE_KINDS:
            quantity += qty
            if qty > 0 and price > 0:
                total_cost += qty * price
        elif tx.kind in DISPOSE_KINDS:
            if quantity > 0 and qty > 0:
                total_cost -= qty * (total_cost / quantity)
            quantity -= qty
        elif tx.kind == K.SPLIT:
            factor = tx.quantity
            if factor is not None and factor > 0:
                quantity *= factor

    quantity = max(quantity, ZERO)
    total_cost = max(total_cost, ZERO)
    avg = total_cost / quantity if quantity > 0 else ZERO
    return HoldingState(
        quantity=round_quantity(quantity),
        cost_basis=round_money(total_cost, currency),
        avg_cost_per_unit=round_unit_price(avg),
    )


def recompute_holding(session: Session, holding_id: int) -> HoldingState:
    holding = session.get(Holding, holding_id)
    if holding is None:
        raise ValueError(f"Holding not found: {holding_id}")

    transactions = session.scalars(
        select(Transaction).where(Transaction.holding_id == holding_id).order_by(*chronological_order())
    ).all()
    state = replay(transactions, holding.currency)
    holding.quantity = state.quantity
    holding.cost_basis = state.cost_basis
    holding.avg_cost_per_unit = state.avg_cost_per_unit
    session.flush()
    return state


def recompute_cash_balances(session: Session, account_id: str) -> dict[str, Decimal]:
    """Sum signed amounts per currency into ``CASH.<currency>`` holdings held at par."""
    account = get_account(session, account_id)

    balances: dict[str, Decimal] = defaultdict(lambda: ZERO)
    balances[account.currency.upper()] = ZERO
    rows = session.execute(
        select(Transaction.currency, Transaction.amount).where(
            Transaction.account_id == account_id,
            Transaction.kind.not_in(NON_CASH_KINDS),
        )
    ).all()
    for currency, amount in rows:
        balances[(currency or account.currency).upper()] += amount or ZERO

    existing_cash = session.scalars(
        select(Holding).where(
            Holding.account_id == account_id, Holding.asset_type == AssetType.CASH
        )
    ).all()
    for holding in existing_cash:
        balances.setdefault(holding.symbol.removeprefix(CASH_PREFIX), ZERO)

    result: dict[str, Decimal] = {}
    for currency, balance in sorted(balances.items()):
        rounded = round_money(balance, currency)
        holding = ensure_holding(session, account_id, cash_symbol(currency), currency)
        holding.asset_type = AssetType.CASH
        holding.quantity = rounded
        holding.cost_basis = rounded
        holding.avg_cost_per_unit = Decimal("1")
        result[currency] = rounded
    session.flush()
    return result


def cleanup_spurious_holdings(session: Session, account_id: str) -> int:
    """Drop non-cash holdings with no transactions and holdings for forex pairs."""
    holdings = session.scalars(
        select(Holding).where(
            Holding.account_id == account_id, Holding.asset_type != AssetType.CASH
        )
    ).all()
    referenced = set(
        session.scalars(
            select(Transaction.holding_id)
            .where(Transaction.account_id == account_id, Transaction.holding_id.is_not(None))
            .distinct()
        ).all()
    )
    doomed = [
        holding.id
        for holding in holdings
        if holding.id not in referenced or FOREX_PAIR_RE.match(holding.symbol)
    ]
    _delete_holdings(session, doomed)
    if doomed:
        logger.info("Removed %s spurious holding(s) from account %s", len(doomed), account_id)
    return len(doomed)


def purge_sold_out_holdings(session: Session, account_id: str) -> int:
    """Delete non-cash holdings whose replayed quantity is zero and that have no open lots."""
    open_lot_holdings = select(TaxLot.holding_id).where(TaxLot.remaining_quantity > 0)
    doomed = list(
        session.scalars(
            select(Holding.id).where(
                Holding.account_id == account_id,
                Holding.asset_type != AssetType.CASH,
                Holding.quantity == 0,
                Holding.id.not_in(open_lot_holdings),
            )
        ).all()
    )
    _delete_holdings(session, doomed)
    return len(doomed)


def _delete_holdings(session: Session, holding_ids: list[int]) -> None:
    if not holding_ids:
        return
    session.execute(
        update(Transaction)
        .where(Transaction.holding_id.in_(holding_ids))
        .values(holding_id=None)
        .execution_options(synchronize_session="fetch")
    )
    session.execute(
        delete(TaxLot)
        .where(TaxLot.holding_id.in_(holding_ids))
        .execution_options(synchronize_session="fetch")
    )
    session.execute(
        delete(Holding)
        .where(Holding.id.in_(holding_ids))
        .execution_options(synchronize_session="fetch")
    )
    session.flush()


def recalculate_account(session: Session, account_id: str) -> AccountRecalculation:
    """Replay every non-cash holding of the account, then its cash balances."""
    get_account(session, account_id)
    result = AccountRecalculation(account_id=account_id)
    holdings = session.scalars(
        select(Holding)
        .where(Holding.account_id == account_id, Holding.asset_type != AssetType.CASH)
        .order_by(Holding.symbol)
    ).all()
    for holding in holdings:
        result.holdings[holding.symbol] = recompute_holding(session, holding.id)
    result.cash_balances = recompute_cash_balances(session, account_id)
    return result
