from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from portfolio_ledger.analytics.holdings import (
    cleanup_spurious_holdings,
    ensure_holding,
    infer_asset_type,
    purge_sold_out_holdings,
    recalculate_account,
    recompute_cash_balances,
    recompute_holding,
)
from portfolio_ledger.db.models import AssetType, TransactionKind as K
from portfolio_ledger.db.repository import create_account, get_holding


def test_average_cost_replay(db_session, ledger, add_transaction):
    buy = add_transaction(K.BUY, date(2025, 1, 2), "-1000", "MSFT", "10", "100")
    add_transaction(K.BUY, date(2025, 1, 5), "-1200", "MSFT", "10", "120")
    add_transaction(K.SELL, date(2025, 1, 9), "650", "MSFT", "5", "130")

    state = recompute_holding(db_session, buy.holding_id)

    assert state.quantity == Decimal("15")
    assert state.cost_basis == Decimal("1650.00")
    assert state.avg_cost_per_unit == Decimal("110")


def test_replay_is_deterministic_regardless_of_insert_order(db_session, ledger, add_transaction):
    # Inserted out of date order; the same-day buy must still precede the sell.
    sell = add_transaction(K.SELL, date(2025, 2, 1), "300", "NVDA", "2", "150")
    add_transaction(K.BUY, date(2025, 2, 1), "-200", "NVDA", "2", "100")
    add_transaction(K.BUY, date(2025, 1, 15), "-90", "NVDA", "1", "90")

    first = recompute_holding(db_session, sell.holding_id)
    second = recompute_holding(db_session, sell.holding_id)

    assert first == second
    assert first.quantity == Decimal("1")
    assert first.cost_basis == Decimal("96.67")


def test_quantity_never_goes_negative(db_session, ledger, add_transaction):
    sell = add_transaction(K.SELL, date(2025, 1, 2), "500", "TSLA", "5", "100")

    state = recompute_holding(db_session, sell.holding_id)

    assert state.quantity == Decimal("0")
    assert state.cost_basis == Decimal("0")
    assert state.avg_cost_per_unit == Decimal("0")


def test_split_multiplies_quantity_and_keeps_cost(db_session, ledger, add_transaction):
    buy = add_transaction(K.BUY, date(2025, 1, 2), "-1000", "NVDA", "10", "100")
    add_transaction(K.SPLIT, date(2025, 6, 10), "0", "NVDA", "10")

    state = recompute_holding(db_session, buy.holding_id)

    assert state.quantity == Decimal("100")
    assert state.cost_basis == Decimal("1000.00")
    assert state.avg_cost_per_unit == Decimal("10")


def test_transfers_and_reinvested_dividends_move_quantity(db_session, ledger, add_transaction):
    first = add_transaction(K.TRANSFER_IN, date(2025, 1, 2), "0", "VTI", "4", "200")
    add_transaction(K.REINVEST_DIVIDEND, date(2025, 3, 2), "-10", "VTI", "0.05", "200")
    add_transaction(K.TRANSFER_OUT, date(2025, 4, 2), "0", "VTI", "1")

    state = recompute_holding(db_session, first.holding_id)

    assert state.quantity == Decimal("3.05")
    assert state.cost_basis == Decimal("610.00")


def test_unknown_holding_raises(db_session):
    with pytest.raises(ValueError):
        recompute_holding(db_session, 999)


def test_cash_balance_is_per_currency_and_skips_reinvestment(db_session, ledger, add_transaction):
    add_transaction(K.DEPOSIT, date(2025, 1, 1), "1000")
    add_transaction(K.BUY, date(2025, 1, 2), "-400", "AAPL", "2", "200")
    add_transaction(K.REINVEST_DIVIDEND, date(2025, 1, 3), "-5", "AAPL", "0.02", "250")
    add_transaction(K.DIVIDEND, date(2025, 1, 3), "5", "AAPL")
    add_transaction(K.DEPOSIT, date(2025, 1, 4), "50.125", currency="KWD")

    balances = recompute_cash_balances(db_session, ledger.account_id)

    assert balances == {"KWD": Decimal("50.125"), "USD": Decimal("605.00")}
    cash = get_holding(db_session, ledger.account_id, "CASH.USD")
    assert cash.asset_type == AssetType.CASH
    assert cash.quantity == cash.cost_basis == Decimal("605.00")
    assert cash.avg_cost_per_unit == Decimal("1")


def test_cash_balance_exists_for_empty_account(db_session, ledger):
    account = create_account(db_session, ledger.portfolio_id, "NBK", "Savings", "KWD")
    assert recompute_cash_balances(db_session, account.id) == {"KWD": Decimal("0.000")}


def test_cleanup_removes_orphans_and_forex_pairs(db_session, ledger, add_transaction):
    ensure_holding(db_session, ledger.account_id, "GHOST")
    add_transaction(K.BUY, date(2025, 1, 2), "-100", "EUR.USD", "100", "1")
    add_transaction(K.BUY, date(2025, 1, 2), "-400", "BRK.B", "1", "400")
    recompute_cash_balances(db_session, ledger.account_id)

    assert cleanup_spurious_holdings(db_session, ledger.account_id) == 2

    assert get_holding(db_session, ledger.account_id, "GHOST") is None
    assert get_holding(db_session, ledger.account_id, "EUR.USD") is None
    assert get_holding(db_session, ledger.account_id, "BRK.B") is not None
    assert get_holding(db_session, ledger.account_id, "CASH.USD") is not None


def test_recalculate_account_and_purge_sold_out(db_session, ledger, add_transaction):
    add_transaction(K.DEPOSIT, date(2025, 1, 1), "1000")
    add_transaction(K.BUY, date(2025, 1, 2), "-300", "AMD", "3", "100")
    add_transaction(K.SELL, date(2025, 1, 5), "330", "AMD", "3", "110")
    add_transaction(K.BUY, date(2025, 1, 6), "-50", "QQQ", "0.1", "500")

    result = recalculate_account(db_session, ledger.account_id)

    assert result.holdings["AMD"].quantity == Decimal("0")
    assert result.holdings["QQQ"].quantity == Decimal("0.1")
    assert result.cash_balances == {"USD": Decimal("980.00")}

    assert purge_sold_out_holdings(db_session, ledger.account_id) == 1
    assert get_holding(db_session, ledger.account_id, "AMD") is None
    assert get_holding(db_session, ledger.account_id, "QQQ") is not None


def test_asset_type_inference():
    assert infer_asset_type("CASH.USD") == AssetType.CASH
    assert infer_asset_type("btc") == AssetType.CRYPTO
    assert infer_asset_type("SPY") == AssetType.ETF
    assert infer_asset_type("XLK") == AssetType.ETF
    assert infer_asset_type("AAPL") == AssetType.STOCK
