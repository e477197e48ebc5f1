from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from portfolio_ledger.analytics.holdings import ensure_holding
from portfolio_ledger.db.migrate import build_engine
from portfolio_ledger.db.models import Base, Transaction
from portfolio_ledger.db.repository import create_account, create_portfolio


@dataclass(frozen=True)
class LedgerFixture:
    owner_id: str
    portfolio_id: str
    account_id: str


@pytest.fixture
def db_session() -> Session:
    engine = build_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    engine.dispose()


@pytest.fixture
def ledger(db_session: Session) -> LedgerFixture:
    portfolio = create_portfolio(db_session, "user-1", "Main")
    account = create_account(db_session, portfolio.id, "Schwab", "Brokerage", "USD")
    return LedgerFixture(owner_id="user-1", portfolio_id=portfolio.id, account_id=account.id)


@pytest.fixture
def schwab_csv() -> str:
    return "\n".join(
        [
            '"Date","Action","Symbol","Description","Quantity","Price","Fees & Comm","Amount"',
            '"01/02/2025","MoneyLink Transfer","","Tfr BANK","","","","$5,000.00"',
            '"01/03/2025","Buy","AAPL","APPLE INC","10","$150.00","$1.00","-$1,501.00"',
            '"01/10/2025","Buy","AAPL","APPLE INC","5","$160.00","","-$800.00"',
            '"02/14/2025","Qualified Dividend","AAPL","APPLE INC","","","","$3.75"',
            '"03/03/2025","Sell","AAPL","APPLE INC","-8","$170.00","$0.65","$1,359.35"',
            '"Transactions Total","","","","","","","$2,062.10"',
        ]
    )


@pytest.fixture
def add_transaction(db_session: Session, ledger: LedgerFixture):
    """Factory inserting ledger rows directly, attaching a holding for symbol rows."""
    counter = {"n": 0}

    def _add(
        kind,
        day: date,
        amount: str,
        symbol: str | None = None,
        quantity: str | None = None,
        price: str | None = None,
        fees: str | None = None,
        account_id: str | None = None,
        fingerprint: str | None = None,
        batch: str | None = None,
        currency: str = "USD",
    ) -> Transaction:
        counter["n"] += 1
        target = account_id or ledger.account_id
        holding_id = ensure_holding(db_session, target, symbol, currency).id if symbol else None
        tx = Transaction(
            account_id=target,
            holding_id=holding_id,
            kind=kind,
            date=day,
            symbol=symbol,
            description="",
            quantity=Decimal(quantity) if quantity is not None else None,
            price=Decimal(price) if price is not None else None,
            amount=Decimal(amount),
            fees=Decimal(fees) if fees is not None else None,
            currency=currency,
            fingerprint=fingerprint or f"fp-{counter['n']}",
            import_batch=batch,
        )
        db_session.add(tx)
        db_session.flush()
        return tx

    return _add
