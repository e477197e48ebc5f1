"""Statement import: parse, dedupe, persist under a batch id, then rebuild derived state."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portfolio_ledger.analytics.holdings import (
    cleanup_spurious_holdings,
    ensure_holding,
    recalculate_account,
)
from portfolio_ledger.analytics.tax_lots import (
    BackfillResult,
    backfill_portfolio,
    rebuild_portfolio_lots,
)
from portfolio_ledger.db.models import Account, TaxLot, Transaction
from portfolio_ledger.db.repository import get_account
from portfolio_ledger.ingest.canonical import CanonicalTransaction
from portfolio_ledger.ingest.dedupe import DuplicateDetector
from portfolio_ledger.ingest.detect import UnknownFormatError, parse_statement
from portfolio_ledger.utils.dates import utc_now_naive
from portfolio_ledger.utils.logging import get_logger

logger = get_logger(__name__)

DRY_RUN_REASON = "Dry run - would be imported"
NO_FORMAT_ERROR = "Could not detect statement format"


class RowStatus(str, Enum):
    IMPORTED = "imported"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class ImportOptions:
    account_id: str
    format: str | None = None
    dry_run: bool = False
    skip_duplicates: bool = True
    currency: str | None = None


@dataclass(frozen=True)
class RowResult:
    row: int
    transaction: CanonicalTransaction
    status: RowStatus
    reason: str | None = None
    transaction_id: int | None = None


@dataclass
class ImportSummary:
    total: int = 0
    imported: int = 0
    skipped: int = 0
    errors: int = 0
    rows: list[RowResult] = field(default_factory=list)
    batch_id: str | None = None
    format: str | None = None
    format_error: str | None = None
    dry_run: bool = False
    post_import_errors: list[str] = field(default_factory=list)
    backfill: BackfillResult | None = None

    def record(self, result: RowResult) -> None:
        self.rows.append(result)
        if result.status == RowStatus.IMPORTED:
            self.imported += 1
        elif result.status == RowStatus.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1


@dataclass(frozen=True)
class ImportBatchInfo:
    batch_id: str
    source: str | None
    transaction_count: int
    imported_at: datetime | None


def new_batch_id(now: datetime | None = None) -> str:
    stamp = (now or utc_now_naive()).strftime("%Y%m%dT%H%M%S")
    return f"import-{stamp}-{uuid.uuid4().hex[:6]}"


def _to_model(tx: CanonicalTransaction, account_id: str, holding_id: int | None, batch_id: str) -> Transaction:
    return Transaction(
        account_id=account_id,
        holding_id=holding_id,
        kind=tx.kind,
        date=tx.date,
        symbol=tx.symbol,
        description=tx.description,
        quantity=tx.quantity,
        price=tx.price,
        amount=tx.amount,
        fees=tx.fees,
        currency=tx.currency,
        fingerprint=tx.fingerprint,
        import_batch=batch_id,
        import_source=tx.source_format,
        category=tx.category,
        merchant=tx.merchant,
        is_recurring=tx.is_recurring,
        raw_fields=tx.raw_fields or None,
    )


def _persist_row(session: Session, tx: CanonicalTransaction, account_id: str, batch_id: str) -> int:
    with session.begin_nested():
        holding_id = None
        if tx.symbol:
            holding_id = ensure_holding(session, account_id, tx.symbol, tx.currency).id
        model = _to_model(tx, account_id, holding_id, batch_id)
        session.add(model)
        session.flush()
        return model.id


def _post_import(session: Session, account: Account, summary: ImportSummary) -> None:
    try:
        with session.begin_nested():
            cleanup_spurious_holdings(session, account.id)
            recalculate_account(session, account.id)
            summary.backfill = backfill_portfolio(session, account.portfolio_id)
    except (SQLAlchemyError, ValueError, ArithmeticError) as exc:
        logger.error("Post-import processing failed for account %s: %s", account.id, exc)
        summary.post_import_errors.append(str(exc))
        return

    if summary.backfill.errors:
        logger.warning("Tax-lot processing errors: %s", summary.backfill.errors)


def import_statement(session: Session, text: str, options: ImportOptions) -> ImportSummary:
    """Import one statement into an account.

    Rows are handled in the order the parser emits them. A row that fails to
    persist is rolled back to its own savepoint and reported; the rest of the
    batch carries on. After a real import that stored at least one row, the
    account's holdings are replayed and the portfolio's tax lots backfilled.
    """
    account = get_account(session, options.account_id)
    summary = ImportSummary(dry_run=options.dry_run)

    try:
        format_name, parsed = parse_statement(text, options.format, options.currency)
    except UnknownFormatError as exc:
        summary.format_error = str(exc)
        return summary
    if format_name is None:
        summary.format_error = NO_FORMAT_ERROR
        return summary

    summary.format = format_name
    summary.total = len(parsed)
    if not parsed:
        return summary

    batch_id = new_batch_id()
    summary.batch_id = batch_id
    detector = DuplicateDetector(session, account.id)
    logger.info(
        "Importing %s %s row(s) into account %s as %s%s",
        len(parsed),
        format_name,
        account.id,
        batch_id,
        " (dry run)" if options.dry_run else "",
    )

    for index, tx in enumerate(parsed, start=1):
        decision = detector.classify(tx)
        if decision.is_duplicate and options.skip_duplicates:
            summary.record(
                RowResult(index, tx, RowStatus.SKIPPED, decision.reason, decision.existing_id)
            )
            continue

        if options.dry_run:
            detector.remember(tx)
            summary.record(RowResult(index, tx, RowStatus.IMPORTED, DRY_RUN_REASON))
            continue

        try:
            transaction_id = _persist_row(session, tx, account.id, batch_id)
        except (SQLAlchemyError, ValueError) as exc:
            logger.warning("Row %s (%s %s) not imported: %s", index, tx.date, tx.kind.value, exc)
            summary.record(RowResult(index, tx, RowStatus.ERROR, str(exc)))
            continue

        detector.remember(tx, transaction_id)
        summary.record(RowResult(index, tx, RowStatus.IMPORTED, transaction_id=transaction_id))

    logger.info(
        "Batch %s: %s imported, %s skipped, %s error(s)",
        batch_id,
        summary.imported,
        summary.skipped,
        summary.errors,
    )

    if not options.dry_run and summary.imported > 0:
        _post_import(session, account, summary)
    return summary


def rollback_import(session: Session, batch_id: str, rebuild: bool = True) -> int:
    """Delete every transaction of ``batch_id``; returns how many were deleted.

    With ``rebuild`` the affected accounts are replayed and the affected
    portfolios get their tax lots rebuilt from the remaining ledger.
    """
    tx_ids = list(
        session.scalars(select(Transaction.id).where(Transaction.import_batch == batch_id)).all()
    )
    if not tx_ids:
        return 0
    affected = session.execute(
        select(Account.id, Account.portfolio_id)
        .join(Transaction, Transaction.account_id == Account.id)
        .where(Transaction.import_batch == batch_id)
        .distinct()
    ).all()

    session.execute(
        delete(TaxLot)
        .where(TaxLot.transaction_id.in_(tx_ids))
        .execution_options(synchronize_session="fetch")
    )
    session.execute(
        delete(Transaction)
        .where(Transaction.id.in_(tx_ids))
        .execution_options(synchronize_session="fetch")
    )
    session.flush()
    deleted = len(tx_ids)
    logger.info("Rolled back batch %s: %s transaction(s) deleted", batch_id, deleted)

    if rebuild:
        for account_id, _portfolio_id in affected:
            cleanup_spurious_holdings(session, account_id)
            recalculate_account(session, account_id)
        for portfolio_id in sorted({portfolio_id for _account_id, portfolio_id in affected}):
            rebuild_portfolio_lots(session, portfolio_id)
    return deleted


def import_history(session: Session, account_id: str) -> list[ImportBatchInfo]:
    get_account(session, account_id)
    rows = session.execute(
        select(
            Transaction.import_batch,
            Transaction.import_source,
            func.count(Transaction.id),
            func.min(Transaction.created_at).label("imported_at"),
        )
        .where(Transaction.account_id == account_id, Transaction.import_batch.is_not(None))
        .group_by(Transaction.import_batch, Transaction.import_source)
        .order_by(func.min(Transaction.created_at).desc(), Transaction.import_batch.desc())
    ).all()
    return [
        ImportBatchInfo(batch_id=batch, source=source, transaction_count=count, imported_at=imported_at)
        for batch, source, count, imported_at in rows
    ]
