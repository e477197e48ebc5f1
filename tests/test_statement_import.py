from __future__ import annotations

import logging
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from portfolio_ledger.db.models import TaxLot, Transaction, TransactionKind as K
from portfolio_ledger.db.repository import get_holding, list_holdings, list_transactions
from portfolio_ledger.ingest.dedupe import FINGERPRINT_REASON
from portfolio_ledger.ingest.statement_import import (
    DRY_RUN_REASON,
    ImportOptions,
    RowStatus,
    import_history,
    import_statement,
    new_batch_id,
    rollback_import,
)

LATER_SELL_CSV = "\n".join(
    [
        "Date,Type,Symbol,Quantity,Price,Amount,Fees,Notes",
        "2025-03-10,Sell,AAPL,2,170,340,,trim",
    ]
)


def _count_batch(session, batch_id: str) -> int:
    return session.scalar(select(func.count(Transaction.id)).where(Transaction.import_batch == batch_id))


def test_import_persists_rows_and_rebuilds_derived_state(db_session, ledger, schwab_csv):
    summary = import_statement(db_session, schwab_csv, ImportOptions(account_id=ledger.account_id))

    assert summary.format == "schwab"
    assert (summary.total, summary.imported, summary.skipped, summary.errors) == (5, 5, 0, 0)
    assert [holding.symbol for holding in list_holdings(db_session, ledger.account_id)] == ["AAPL", "CASH.USD"]
    assert summary.batch_id.startswith("import-")
    assert [row.row for row in summary.rows] == [1, 2, 3, 4, 5]
    assert _count_batch(db_session, summary.batch_id) == 5
    assert not summary.post_import_errors

    aapl = get_holding(db_session, ledger.account_id, "AAPL")
    assert aapl.quantity == Decimal("7")
    assert aapl.cost_basis == Decimal("1073.33")
    cash = get_holding(db_session, ledger.account_id, "CASH.USD")
    assert cash.quantity == Decimal("4062.10")

    assert summary.backfill.created == 2
    assert summary.backfill.consumed == 1
    sell = next(tx for tx in list_transactions(db_session, ledger.account_id) if tx.kind == K.SELL)
    assert sell.realized_gain_loss == Decimal("158.55")
    assert sell.import_source == "schwab"


def test_reimport_is_idempotent(db_session, ledger, schwab_csv):
    options = ImportOptions(account_id=ledger.account_id)
    import_statement(db_session, schwab_csv, options)
    again = import_statement(db_session, schwab_csv, options)

    assert (again.total, again.imported, again.skipped) == (5, 0, 5)
    assert {row.reason for row in again.rows} == {FINGERPRINT_REASON}
    assert all(row.transaction_id is not None for row in again.rows)
    assert again.backfill is None
    assert len(list_transactions(db_session, ledger.account_id)) == 5
    assert db_session.scalar(select(func.count(TaxLot.id))) == 2


def test_dry_run_writes_nothing(db_session, ledger, schwab_csv):
    summary = import_statement(
        db_session, schwab_csv, ImportOptions(account_id=ledger.account_id, dry_run=True)
    )

    assert summary.dry_run
    assert summary.imported == 5
    assert {row.reason for row in summary.rows} == {DRY_RUN_REASON}
    assert list_transactions(db_session, ledger.account_id) == []
    assert get_holding(db_session, ledger.account_id, "AAPL") is None


def test_dry_run_reports_repeats_within_file(db_session, ledger):
    text = "\n".join(
        [
            "Date,Type,Symbol,Quantity,Price,Amount,Fees,Notes",
            "2025-01-02,Deposit,,,,100,,",
            "2025-01-02,Deposit,,,,100,,",
        ]
    )
    summary = import_statement(db_session, text, ImportOptions(account_id=ledger.account_id, dry_run=True))
    assert [row.status for row in summary.rows] == [RowStatus.IMPORTED, RowStatus.SKIPPED]


def test_failed_row_does_not_abort_batch(db_session, ledger):
    text = "\n".join(
        [
            "Date,Type,Symbol,Quantity,Price,Amount,Fees,Notes",
            "2025-01-02,Deposit,,,,100,,",
            "2025-01-02,Deposit,,,,100,,",
            "2025-01-03,Withdrawal,,,,40,,",
        ]
    )
    summary = import_statement(
        db_session, text, ImportOptions(account_id=ledger.account_id, skip_duplicates=False)
    )

    assert (summary.total, summary.imported, summary.errors) == (3, 2, 1)
    assert summary.rows[1].status == RowStatus.ERROR
    assert summary.rows[1].reason
    assert _count_batch(db_session, summary.batch_id) == 2
    assert get_holding(db_session, ledger.account_id, "CASH.USD").quantity == Decimal("60")


def test_malformed_line_is_dropped_and_rest_imported(db_session, ledger, caplog):
    text = "\n".join(
        [
            '"Date","Action","Symbol","Description","Quantity","Price","Fees & Comm","Amount"',
            '"01/02/2025","MoneyLink Transfer","","Tfr BANK","","","","$5,000.00"',
            '"01/03/2025","Buy","AAPL",APPLE, INC,"10","$150.00","$1.00","-$1,501.00"',
            '"01/06/2025","Buy","MSFT","MICROSOFT CORP","2","$100.00","","-$200.00"',
        ]
    )
    with caplog.at_level(logging.WARNING):
        summary = import_statement(db_session, text, ImportOptions(account_id=ledger.account_id))

    assert summary.format == "schwab"
    assert (summary.total, summary.imported, summary.errors) == (2, 2, 0)
    assert [holding.symbol for holding in list_holdings(db_session, ledger.account_id)] == ["CASH.USD", "MSFT"]
    assert get_holding(db_session, ledger.account_id, "CASH.USD").quantity == Decimal("4800")
    assert "Malformed statement line dropped" in caplog.text


def test_unrecognized_text_reports_format_error(db_session, ledger):
    summary = import_statement(db_session, "foo,bar\n1,2", ImportOptions(account_id=ledger.account_id))
    assert summary.format_error
    assert summary.total == 0
    assert summary.batch_id is None


def test_unknown_account_raises(db_session, schwab_csv):
    with pytest.raises(ValueError, match="Account not found"):
        import_statement(db_session, schwab_csv, ImportOptions(account_id="missing"))


def test_rollback_removes_batch_and_rebuilds(db_session, ledger, schwab_csv):
    first = import_statement(db_session, schwab_csv, ImportOptions(account_id=ledger.account_id))
    second = import_statement(db_session, LATER_SELL_CSV, ImportOptions(account_id=ledger.account_id))

    later_sell = db_session.scalar(select(Transaction).where(Transaction.import_batch == second.batch_id))
    assert later_sell.realized_gain_loss == Decimal("39.80")

    deleted = rollback_import(db_session, first.batch_id)

    assert deleted == first.imported
    assert _count_batch(db_session, first.batch_id) == 0
    assert db_session.scalar(select(func.count(TaxLot.id))) == 0

    db_session.refresh(later_sell)
    assert later_sell.realized_gain_loss is None
    assert later_sell.cost_basis_used is None

    aapl = get_holding(db_session, ledger.account_id, "AAPL")
    assert aapl.quantity == Decimal("0")
    assert get_holding(db_session, ledger.account_id, "CASH.USD").quantity == Decimal("340")


def test_rollback_without_rebuild_only_deletes(db_session, ledger, schwab_csv):
    summary = import_statement(db_session, schwab_csv, ImportOptions(account_id=ledger.account_id))

    assert rollback_import(db_session, summary.batch_id, rebuild=False) == 5
    assert list_transactions(db_session, ledger.account_id) == []
    # Derived state is stale until the caller replays.
    assert get_holding(db_session, ledger.account_id, "AAPL").quantity == Decimal("7")


def test_rollback_of_unknown_batch_is_noop(db_session, ledger):
    assert rollback_import(db_session, "import-nope") == 0


def test_import_history_lists_batches_newest_first(db_session, ledger, schwab_csv):
    first = import_statement(db_session, schwab_csv, ImportOptions(account_id=ledger.account_id))
    second = import_statement(db_session, LATER_SELL_CSV, ImportOptions(account_id=ledger.account_id))

    history = import_history(db_session, ledger.account_id)
    assert [item.batch_id for item in history] == [second.batch_id, first.batch_id]
    assert [item.source for item in history] == ["generic", "schwab"]
    assert [item.transaction_count for item in history] == [1, 5]


def test_batch_ids_are_unique():
    assert new_batch_id() != new_batch_id()
