from __future__ import annotations

import datetime as dt
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid4())


def _fixed() -> Numeric:
    return Numeric(20, 8, asdecimal=True)


class Base(DeclarativeBase):
    pass


class TransactionKind(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"
    REINVEST_DIVIDEND = "REINVEST_DIVIDEND"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    INTEREST = "INTEREST"
    FEE = "FEE"
    TAX_WITHHOLDING = "TAX_WITHHOLDING"
    ADJUSTMENT = "ADJUSTMENT"
    SPLIT = "SPLIT"
    FOREX = "FOREX"
    OTHER = "OTHER"


class AssetType(str, Enum):
    STOCK = "STOCK"
    ETF = "ETF"
    CRYPTO = "CRYPTO"
    CASH = "CASH"


class Portfolio(Base):
    __tablename__ = "portfolios"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("portfolio_id", "account_label", name="uq_accounts_portfolio_label"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    portfolio_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False, index=True
    )
    broker: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    account_label: Mapped[str] = mapped_column(String(128), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class Holding(Base):
    __tablename__ = "holdings"
    __table_args__ = (
        UniqueConstraint("account_id", "symbol", name="uq_holdings_account_symbol"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    asset_type: Mapped[AssetType] = mapped_column(
        SqlEnum(AssetType, native_enum=False), nullable=False, default=AssetType.STOCK
    )
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    quantity: Mapped[Decimal] = mapped_column(_fixed(), nullable=False, default=Decimal("0"))
    cost_basis: Mapped[Decimal] = mapped_column(_fixed(), nullable=False, default=Decimal("0"))
    avg_cost_per_unit: Mapped[Decimal] = mapped_column(
        _fixed(), nullable=False, default=Decimal("0")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("account_id", "fingerprint", name="uq_transactions_account_fingerprint"),
        Index("ix_transactions_account_date", "account_id", "date", "id"),
        Index("ix_transactions_holding_date", "holding_id", "date", "id"),
        Index(
            "ix_transactions_natural_key",
            "account_id",
            "date",
            "kind",
            "symbol",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    holding_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("holdings.id", ondelete="SET NULL"), nullable=True
    )
    kind: Mapped[TransactionKind] = mapped_column(
        SqlEnum(TransactionKind, native_enum=False), nullable=False, index=True
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    symbol: Mapped[str | None] = mapped_column(String(32), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    quantity: Mapped[Decimal | None] = mapped_column(_fixed(), nullable=True)
    price: Mapped[Decimal | None] = mapped_column(_fixed(), nullable=True)
    amount: Mapped[Decimal] = mapped_column(_fixed(), nullable=False)
    fees: Mapped[Decimal | None] = mapped_column(_fixed(), nullable=True)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    import_batch: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    import_source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    merchant: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_recurring: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    raw_fields: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    cost_basis_used: Mapped[Decimal | None] = mapped_column(_fixed(), nullable=True)
    realized_gain_loss: Mapped[Decimal | None] = mapped_column(_fixed(), nullable=True)
    holding_period_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lot_shortfall: Mapped[Decimal | None] = mapped_column(_fixed(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class TaxLot(Base):
    __tablename__ = "tax_lots"
    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_tax_lots_transaction"),
        CheckConstraint("remaining_quantity >= 0", name="ck_tax_lots_remaining_non_negative"),
        CheckConstraint(
            "remaining_quantity <= original_quantity", name="ck_tax_lots_remaining_le_original"
        ),
        Index("ix_tax_lots_holding_acquired", "holding_id", "acquired_at", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    holding_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("holdings.id", ondelete="CASCADE"), nullable=False
    )
    transaction_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    original_quantity: Mapped[Decimal] = mapped_column(_fixed(), nullable=False)
    remaining_quantity: Mapped[Decimal] = mapped_column(_fixed(), nullable=False)
    cost_basis: Mapped[Decimal] = mapped_column(_fixed(), nullable=False)
    cost_per_unit: Mapped[Decimal] = mapped_column(_fixed(), nullable=False)
    acquired_at: Mapped[dt.date] = mapped_column(Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
