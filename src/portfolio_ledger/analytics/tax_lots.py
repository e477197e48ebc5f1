"""FIFO tax lots backed by the ``tax_lots`` table.

BUY and REINVEST_DIVIDEND rows open one lot each; SELL rows consume the
oldest open lots first and record cost basis used, realized gain/loss and a
quantity-weighted holding period on the SELL itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portfolio_ledger.analytics.holdings import chronological_order
from portfolio_ledger.db.models import Holding, TaxLot, Transaction, TransactionKind
from portfolio_ledger.db.repository import account_ids_for_portfolio, get_portfolio
from portfolio_ledger.utils.dates import days_between, year_bounds
from portfolio_ledger.utils.logging import get_logger
from portfolio_ledger.utils.money import (
    ZERO,
    round_money,
    round_quantity,
    round_unit_price,
    round_whole,
)

logger = get_logger(__name__)

K = TransactionKind

LOT_OPENING_KINDS = (K.BUY, K.REINVEST_DIVIDEND)
LONG_TERM_MIN_DAYS = 365


def holding_term(days: int | None) -> str:
    if days is None:
        return "UNKNOWN"
    return "SHORT_TERM" if days < LONG_TERM_MIN_DAYS else "LONG_TERM"


@dataclass(frozen=True, slots=True)
class LotConsumption:
    lot_id: int
    quantity: Decimal
    cost_basis: Decimal
    days_held: int


@dataclass(slots=True)
class ConsumptionResult:
    transaction_id: int
    quantity_sold: Decimal
    quantity_matched: Decimal
    shortfall: Decimal
    proceeds: Decimal
    cost_basis_used: Decimal
    realized_gain_loss: Decimal
    holding_period_days: int
    consumptions: list[LotConsumption] = field(default_factory=list)

    @property
    def has_shortfall(self) -> bool:
        return self.shortfall > 0

    @property
    def term(self) -> str:
        return holding_term(self.holding_period_days)


@dataclass(slots=True)
class LotProcessResult:
    lot: TaxLot | None = None
    lot_created: bool = False
    consumption: ConsumptionResult | None = None


@dataclass(slots=True)
class BackfillResult:
    created: int = 0
    consumed: int = 0
    already_processed: int = 0
    unmatched: int = 0
    shortfalls: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class RealizedSale:
    transaction_id: int
    account_id: str
    symbol: str | None
    date: object
    quantity: Decimal
    proceeds: Decimal
    cost_basis_used: Decimal
    realized_gain_loss: Decimal
    holding_period_days: int | None
    term: str
    lot_shortfall: Decimal | None


@dataclass(slots=True)
class RealizedGainsSummary:
    total: Decimal = ZERO
    short_term: Decimal = ZERO
    long_term: Decimal = ZERO
    sales: list[RealizedSale] = field(default_factory=list)


def is_processed_sale(tx: Transaction) -> bool:
    return tx.kind == K.SELL and tx.realized_gain_loss is not None


def _existing_lot(session: Session, transaction_id: int) -> TaxLot | None:
    return session.scalar(select(TaxLot).where(TaxLot.transaction_id == transaction_id))


def _ensure_lot(session: Session, tx: Transaction) -> tuple[TaxLot | None, bool]:
    if tx.kind not in LOT_OPENING_KINDS or tx.holding_id is None:
        return None, False
    if not tx.quantity or not tx.price:
        return None, False

    existing = _existing_lot(session, tx.id)
    if existing is not None:
        return existing, False

    quantity = round_quantity(abs(tx.quantity))
    cost_basis = round_money(quantity * tx.price + (tx.fees or ZERO), tx.currency)
    lot = TaxLot(
        holding_id=tx.holding_id,
        transaction_id=tx.id,
        original_quantity=quantity,
        remaining_quantity=quantity,
        cost_basis=cost_basis,
        cost_per_unit=round_unit_price(cost_basis / quantity),
        acquired_at=tx.date,
    )
    session.add(lot)
    session.flush()
    return lot, True


def create_lot(session: Session, tx: Transaction) -> TaxLot | None:
    """Open a lot for an acquisition; returns the existing lot if one already references ``tx``."""
    lot, _created = _ensure_lot(session, tx)
    return lot


def open_lots(session: Session, holding_id: int) -> list[TaxLot]:
    return list(
        session.scalars(
            select(TaxLot)
            .where(TaxLot.holding_id == holding_id, TaxLot.remaining_quantity > 0)
            .order_by(TaxLot.acquired_at, TaxLot.id)
        ).all()
    )


def consume_lots(session: Session, tx: Transaction) -> ConsumptionResult | None:
    if tx.kind != K.SELL or tx.holding_id is None:
        return None
    if not tx.quantity or not tx.price:
        return None
    if is_processed_sale(tx):
        logger.debug("Transaction %s already matched against lots", tx.id)
        return None

    lots = open_lots(session, tx.holding_id)
    if not lots:
        logger.warning(
            "SELL %s (%s %s on %s) has no open lots to match",
            tx.id,
            abs(tx.quantity),
            tx.symbol,
            tx.date,
        )
        return None

    sell_quantity = abs(tx.quantity)
    still_to_sell = sell_quantity
    matched = ZERO
    cost_total = ZERO
    weighted_days = ZERO
    consumptions: list[LotConsumption] = []

    for lot in lots:
        if still_to_sell <= 0:
            break
        take = min(lot.remaining_quantity, still_to_sell)
        cost = take * lot.cost_per_unit
        days = days_between(lot.acquired_at, tx.date)

        lot.remaining_quantity = round_quantity(lot.remaining_quantity - take)
        # One flush per lot so an interruption leaves every lot consistent.
        session.flush()

        still_to_sell -= take
        matched += take
        cost_total += cost
        weighted_days += take * days
        consumptions.append(LotConsumption(lot.id, take, round_money(cost, tx.currency), days))

    shortfall = round_quantity(max(still_to_sell, ZERO))
    proceeds = round_money(sell_quantity * tx.price - (tx.fees or ZERO), tx.currency)
    cost_basis_used = round_money(cost_total, tx.currency)
    # Averaged over the full quantity sold; an unmatched remainder counts as zero days.
    holding_days = round_whole(weighted_days / sell_quantity) if matched > 0 else 0

    if shortfall > 0:
        logger.warning(
            "SELL %s of %s %s exceeds open lots by %s; cost basis is partial",
            tx.id,
            sell_quantity,
            tx.symbol,
            shortfall,
        )

    tx.cost_basis_used = cost_basis_used
    tx.realized_gain_loss = proceeds - cost_basis_used
    tx.holding_period_days = holding_days
    tx.lot_shortfall = shortfall if shortfall > 0 else None
    session.flush()

    return ConsumptionResult(
        transaction_id=tx.id,
        quantity_sold=sell_quantity,
        quantity_matched=round_quantity(matched),
        shortfall=shortfall,
        proceeds=proceeds,
        cost_basis_used=cost_basis_used,
        realized_gain_loss=proceeds - cost_basis_used,
        holding_period_days=holding_days,
        consumptions=consumptions,
    )


def process_transaction(session: Session, tx: Transaction) -> LotProcessResult:
    if tx.kind in LOT_OPENING_KINDS:
        lot, created = _ensure_lot(session, tx)
        return LotProcessResult(lot=lot, lot_created=created)
    if tx.kind == K.SELL:
        return LotProcessResult(consumption=consume_lots(session, tx))
    return LotProcessResult()


def _lot_transactions(session: Session, account_ids: list[str]) -> list[Transaction]:
    return list(
        session.scalars(
            select(Transaction)
            .where(
                Transaction.account_id.in_(account_ids),
                Transaction.kind.in_([*LOT_OPENING_KINDS, K.SELL]),
                Transaction.holding_id.is_not(None),
            )
            .order_by(*chronological_order())
        ).all()
    )


def backfill_portfolio(session: Session, portfolio_id: str) -> BackfillResult:
    """Open and consume lots for every acquisition and sale in the portfolio, oldest first.

    Safe to repeat: existing lots are reused and already-matched sales are skipped.
    """
    get_portfolio(session, portfolio_id)
    account_ids = account_ids_for_portfolio(session, portfolio_id)
    result = BackfillResult()
    if not account_ids:
        return result

    for tx in _lot_transactions(session, account_ids):
        tx_id = tx.id
        if is_processed_sale(tx):
            result.already_processed += 1
            continue
        try:
            with session.begin_nested():
                outcome = process_transaction(session, tx)
        except (SQLAlchemyError, ArithmeticError) as exc:
            logger.warning("Tax-lot processing failed for transaction %s: %s", tx_id, exc)
            result.errors.append(f"Transaction {tx_id}: {exc}")
            continue

        if outcome.lot_created:
            result.created += 1
        if tx.kind == K.SELL:
            if outcome.consumption is None:
                result.unmatched += 1
            else:
                result.consumed += 1
                if outcome.consumption.has_shortfall:
                    result.shortfalls += 1

    logger.info(
        "Backfill for portfolio %s: %s lot(s) created, %s sale(s) matched, %s error(s)",
        portfolio_id,
        result.created,
        result.consumed,
        len(result.errors),
    )
    return result


def backfill_tax_lots(session: Session, portfolio_id: str, user_id: str) -> BackfillResult:
    """Backfill entry point scoped to the portfolio's owner."""
    get_portfolio(session, portfolio_id, owner_id=user_id)
    return backfill_portfolio(session, portfolio_id)


def rebuild_portfolio_lots(session: Session, portfolio_id: str) -> BackfillResult:
    """Discard every lot and sale match in the portfolio, then backfill from scratch."""
    get_portfolio(session, portfolio_id)
    account_ids = account_ids_for_portfolio(session, portfolio_id)
    if account_ids:
        holding_ids = select(Holding.id).where(Holding.account_id.in_(account_ids))
        session.execute(
            delete(TaxLot)
            .where(TaxLot.holding_id.in_(holding_ids))
            .execution_options(synchronize_session="fetch")
        )
        session.execute(
            update(Transaction)
            .where(Transaction.account_id.in_(account_ids), Transaction.kind == K.SELL)
            .values(
                cost_basis_used=None,
                realized_gain_loss=None,
                holding_period_days=None,
                lot_shortfall=None,
            )
            .execution_options(synchronize_session="fetch")
        )
        session.flush()
    return backfill_portfolio(session, portfolio_id)


def realized_gains_summary(
    session: Session,
    portfolio_id: str,
    year: int | None = None,
) -> RealizedGainsSummary:
    get_portfolio(session, portfolio_id)
    account_ids = account_ids_for_portfolio(session, portfolio_id)
    summary = RealizedGainsSummary()
    if not account_ids:
        return summary

    stmt = select(Transaction).where(
        Transaction.account_id.in_(account_ids),
        Transaction.kind == K.SELL,
        Transaction.realized_gain_loss.is_not(None),
    )
    if year is not None:
        start, end = year_bounds(year)
        stmt = stmt.where(Transaction.date >= start, Transaction.date <= end)

    for tx in session.scalars(stmt.order_by(Transaction.date, Transaction.id)).all():
        gain = round_money(tx.realized_gain_loss or ZERO, tx.currency)
        cost = round_money(tx.cost_basis_used or ZERO, tx.currency)
        term = holding_term(tx.holding_period_days)
        summary.sales.append(
            RealizedSale(
                transaction_id=tx.id,
                account_id=tx.account_id,
                symbol=tx.symbol,
                date=tx.date,
                quantity=abs(tx.quantity or ZERO),
                proceeds=cost + gain,
                cost_basis_used=cost,
                realized_gain_loss=gain,
                holding_period_days=tx.holding_period_days,
                term=term,
                lot_shortfall=tx.lot_shortfall,
            )
        )
        summary.total += gain
        if term == "LONG_TERM":
            summary.long_term += gain
        else:
            summary.short_term += gain
    return summary
