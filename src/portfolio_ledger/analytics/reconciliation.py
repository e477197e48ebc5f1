"""Cross-checks between the average-cost holdings and the FIFO lot table."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from portfolio_ledger.db.models import AssetType, Holding, TaxLot
from portfolio_ledger.db.repository import get_account
from portfolio_ledger.utils.logging import get_logger
from portfolio_ledger.utils.money import ZERO, QUANTITY_STEP, round_money, round_quantity

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class LotConsistencyIssue:
    holding_id: int
    symbol: str
    holding_quantity: Decimal
    lot_quantity: Decimal
    average_cost_basis: Decimal
    fifo_cost_basis: Decimal

    @property
    def quantity_difference(self) -> Decimal:
        return self.holding_quantity - self.lot_quantity

    @property
    def cost_basis_difference(self) -> Decimal:
        return self.average_cost_basis - self.fifo_cost_basis


def check_lot_consistency(session: Session, account_id: str) -> list[LotConsistencyIssue]:
    """Holdings whose quantity disagrees with the remaining quantity of their lots.

    Cost basis is reported alongside but not compared: average cost and FIFO
    legitimately diverge once a position has been partially sold.
    """
    get_account(session, account_id)
    holdings = session.scalars(
        select(Holding)
        .where(Holding.account_id == account_id, Holding.asset_type != AssetType.CASH)
        .order_by(Holding.symbol)
    ).all()

    issues: list[LotConsistencyIssue] = []
    for holding in holdings:
        lots = session.execute(
            select(TaxLot.remaining_quantity, TaxLot.cost_per_unit).where(
                TaxLot.holding_id == holding.id
            )
        ).all()
        lot_quantity = round_quantity(sum((remaining for remaining, _ in lots), ZERO))
        fifo_cost = round_money(
            sum((remaining * unit for remaining, unit in lots), ZERO), holding.currency
        )
        if abs(holding.quantity - lot_quantity) <= QUANTITY_STEP:
            continue
        issue = LotConsistencyIssue(
            holding_id=holding.id,
            symbol=holding.symbol,
            holding_quantity=holding.quantity,
            lot_quantity=lot_quantity,
            average_cost_basis=holding.cost_basis,
            fifo_cost_basis=fifo_cost,
        )
        logger.warning(
            "%s in account %s: holding quantity %s but open lots hold %s",
            holding.symbol,
            account_id,
            holding.quantity,
            lot_quantity,
        )
        issues.append(issue)
    return issues


def count_open_lots(session: Session, holding_id: int) -> int:
    return session.scalar(
        select(func.count(TaxLot.id)).where(
            TaxLot.holding_id == holding_id, TaxLot.remaining_quantity > 0
        )
    ) or 0
