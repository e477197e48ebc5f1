from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from portfolio_ledger.db.models import Account, Holding, Portfolio, Transaction


@contextmanager
def session_scope(engine: Engine):
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_portfolio(session: Session, owner_id: str, name: str) -> Portfolio:
    portfolio = Portfolio(owner_id=owner_id.strip(), name=name.strip())
    session.add(portfolio)
    session.flush()
    return portfolio


def create_account(
    session: Session,
    portfolio_id: str,
    broker: str,
    account_label: str,
    currency: str = "USD",
) -> Account:
    if session.get(Portfolio, portfolio_id) is None:
        raise ValueError(f"Portfolio not found: {portfolio_id}")
    account = Account(
        portfolio_id=portfolio_id,
        broker=broker.strip(),
        account_label=account_label.strip(),
        currency=currency.strip().upper(),
    )
    session.add(account)
    session.flush()
    return account


def get_account(session: Session, account_id: str) -> Account:
    account = session.get(Account, account_id)
    if account is None:
        raise ValueError(f"Account not found: {account_id}")
    return account


def get_portfolio(session: Session, portfolio_id: str, owner_id: str | None = None) -> Portfolio:
    portfolio = session.get(Portfolio, portfolio_id)
    if portfolio is None or (owner_id is not None and portfolio.owner_id != owner_id):
        raise ValueError(f"Portfolio not found: {portfolio_id}")
    return portfolio


def account_ids_for_portfolio(session: Session, portfolio_id: str) -> list[str]:
    return list(
        session.scalars(
            select(Account.id).where(Account.portfolio_id == portfolio_id).order_by(Account.id)
        ).all()
    )


def list_holdings(session: Session, account_id: str) -> list[Holding]:
    return list(
        session.scalars(
            select(Holding).where(Holding.account_id == account_id).order_by(Holding.symbol)
        ).all()
    )


def get_holding(session: Session, account_id: str, symbol: str) -> Holding | None:
    return session.scalar(
        select(Holding).where(Holding.account_id == account_id, Holding.symbol == symbol)
    )


def list_transactions(session: Session, account_id: str) -> list[Transaction]:
    return list(
        session.scalars(
            select(Transaction)
            .where(Transaction.account_id == account_id)
            .order_by(Transaction.date, Transaction.id)
        ).all()
    )
