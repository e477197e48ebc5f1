from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from portfolio_ledger.analytics.holdings import recalculate_account
from portfolio_ledger.analytics.reconciliation import check_lot_consistency, count_open_lots
from portfolio_ledger.analytics.tax_lots import backfill_portfolio
from portfolio_ledger.db.models import TransactionKind as K


def test_consistent_account_reports_nothing(db_session, ledger, add_transaction):
    add_transaction(K.BUY, date(2025, 1, 2), "-100", "AMD", "1", "100")
    add_transaction(K.BUY, date(2025, 1, 3), "-120", "AMD", "1", "120")
    sell = add_transaction(K.SELL, date(2025, 1, 4), "130", "AMD", "1", "130")
    recalculate_account(db_session, ledger.account_id)
    backfill_portfolio(db_session, ledger.portfolio_id)

    assert check_lot_consistency(db_session, ledger.account_id) == []
    assert count_open_lots(db_session, sell.holding_id) == 1


def test_mismatch_reports_both_cost_models(db_session, ledger, add_transaction):
    # Transferred-in shares move quantity but never open a lot.
    add_transaction(K.TRANSFER_IN, date(2025, 1, 1), "0", "AMD", "2", "90")
    add_transaction(K.BUY, date(2025, 1, 2), "-100", "AMD", "1", "100")
    recalculate_account(db_session, ledger.account_id)
    backfill_portfolio(db_session, ledger.portfolio_id)

    (issue,) = check_lot_consistency(db_session, ledger.account_id)

    assert issue.symbol == "AMD"
    assert issue.holding_quantity == Decimal("3")
    assert issue.lot_quantity == Decimal("1")
    assert issue.quantity_difference == Decimal("2")
    assert issue.average_cost_basis == Decimal("280.00")
    assert issue.fifo_cost_basis == Decimal("100.00")
    assert issue.cost_basis_difference == Decimal("180.00")


def test_unknown_account_raises(db_session):
    with pytest.raises(ValueError):
        check_lot_consistency(db_session, "missing")
