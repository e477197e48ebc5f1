from __future__ import annotations

import argparse
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from portfolio_ledger.config.settings import get_settings
from portfolio_ledger.utils.logging import configure_logging


def _database_url(args: argparse.Namespace) -> str:
    return args.database_url or get_settings().database_url


def _open_engine(args: argparse.Namespace):
    from portfolio_ledger.db.migrate import build_engine

    return build_engine(_database_url(args))


def _cmd_init_db(args: argparse.Namespace) -> int:
    from portfolio_ledger.db.migrate import migrate

    migrate(_database_url(args))
    print("Initialized database schema.")
    return 0


def _cmd_create_portfolio(args: argparse.Namespace) -> int:
    from portfolio_ledger.db.repository import create_portfolio, session_scope

    with session_scope(_open_engine(args)) as session:
        portfolio = create_portfolio(session, args.owner, args.name)
        print(portfolio.id)
    return 0


def _cmd_create_account(args: argparse.Namespace) -> int:
    from portfolio_ledger.db.repository import create_account, session_scope

    with session_scope(_open_engine(args)) as session:
        account = create_account(session, args.portfolio, args.broker, args.label, args.currency)
        print(account.id)
    return 0


def _cmd_import(args: argparse.Namespace) -> int:
    from portfolio_ledger.db.repository import session_scope
    from portfolio_ledger.ingest.statement_import import ImportOptions, RowStatus, import_statement

    text = Path(args.path).read_text(encoding="utf-8-sig")
    options = ImportOptions(
        account_id=args.account,
        format=args.format,
        dry_run=args.dry_run,
        skip_duplicates=not args.keep_duplicates,
        currency=args.currency,
    )
    with session_scope(_open_engine(args)) as session:
        summary = import_statement(session, text, options)

    if summary.format_error:
        print(f"Import failed: {summary.format_error}", file=sys.stderr)
        return 2
    verb = "would be imported" if summary.dry_run else "imported"
    print(
        f"{summary.format}: {summary.total} row(s), {summary.imported} {verb}, "
        f"{summary.skipped} skipped, {summary.errors} error(s)"
    )
    if summary.batch_id and not summary.dry_run:
        print(f"batch={summary.batch_id}")
    for row in summary.rows:
        if row.status == RowStatus.ERROR:
            print(f"  row {row.row}: {row.reason}")
    for message in summary.post_import_errors:
        print(f"  post-import: {message}")
    return 1 if summary.errors or summary.post_import_errors else 0


def _cmd_rollback(args: argparse.Namespace) -> int:
    from portfolio_ledger.db.repository import session_scope
    from portfolio_ledger.ingest.statement_import import rollback_import

    with session_scope(_open_engine(args)) as session:
        deleted = rollback_import(session, args.batch, rebuild=not args.no_rebuild)
    print(f"Deleted {deleted} transaction(s) from {args.batch}.")
    return 0


def _cmd_history(args: argparse.Namespace) -> int:
    from portfolio_ledger.db.repository import session_scope
    from portfolio_ledger.ingest.statement_import import import_history

    with session_scope(_open_engine(args)) as session:
        batches = import_history(session, args.account)
        for batch in batches:
            print(f"{batch.batch_id}\t{batch.source}\t{batch.transaction_count}\t{batch.imported_at}")
    return 0


def _cmd_recalculate(args: argparse.Namespace) -> int:
    from portfolio_ledger.analytics.holdings import (
        cleanup_spurious_holdings,
        purge_sold_out_holdings,
        recalculate_account,
    )
    from portfolio_ledger.db.repository import session_scope

    with session_scope(_open_engine(args)) as session:
        cleanup_spurious_holdings(session, args.account)
        result = recalculate_account(session, args.account)
        if args.purge:
            purge_sold_out_holdings(session, args.account)
        for symbol, state in result.holdings.items():
            print(f"{symbol}\t{state.quantity}\t{state.cost_basis}\t{state.avg_cost_per_unit}")
        for currency, balance in result.cash_balances.items():
            print(f"CASH.{currency}\t{balance}")
    return 0


def _cmd_backfill_lots(args: argparse.Namespace) -> int:
    from portfolio_ledger.analytics.tax_lots import backfill_portfolio, rebuild_portfolio_lots
    from portfolio_ledger.db.repository import session_scope

    with session_scope(_open_engine(args)) as session:
        if args.rebuild:
            result = rebuild_portfolio_lots(session, args.portfolio)
        else:
            result = backfill_portfolio(session, args.portfolio)
    print(
        f"{result.created} lot(s) created, {result.consumed} sale(s) matched, "
        f"{result.unmatched} unmatched, {result.shortfalls} with shortfall"
    )
    for message in result.errors:
        print(f"  {message}")
    return 1 if result.errors else 0


def _cmd_gains(args: argparse.Namespace) -> int:
    from portfolio_ledger.analytics.tax_lots import realized_gains_summary
    from portfolio_ledger.db.repository import session_scope

    with session_scope(_open_engine(args)) as session:
        summary = realized_gains_summary(session, args.portfolio, args.year)
        for sale in summary.sales:
            flag = " (partial basis)" if sale.lot_shortfall else ""
            print(
                f"{sale.date}\t{sale.symbol}\t{sale.quantity}\t{sale.realized_gain_loss}\t{sale.term}{flag}"
            )
        print(f"short_term={summary.short_term} long_term={summary.long_term} total={summary.total}")
    return 0


def _cmd_check_lots(args: argparse.Namespace) -> int:
    from portfolio_ledger.analytics.reconciliation import check_lot_consistency
    from portfolio_ledger.db.repository import session_scope

    with session_scope(_open_engine(args)) as session:
        issues = check_lot_consistency(session, args.account)
        for issue in issues:
            print(
                f"{issue.symbol}: holding={issue.holding_quantity} lots={issue.lot_quantity} "
                f"avg_cost={issue.average_cost_basis} fifo_cost={issue.fifo_cost_basis}"
            )
    if not issues:
        print("Holdings and tax lots agree.")
    return 1 if issues else 0


def _cmd_templates(_: argparse.Namespace) -> int:
    from portfolio_ledger.ingest.templates import format_templates

    for name, template in format_templates().items():
        print(f"{name} ({template['label']}): {', '.join(template['headers'])}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Portfolio Ledger developer CLI")
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy URL; defaults to DATABASE_URL or the local SQLite file.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sp_init_db = subparsers.add_parser("init-db", help="Create/update local database schema")
    sp_init_db.set_defaults(func=_cmd_init_db)

    sp_portfolio = subparsers.add_parser("create-portfolio", help="Create a portfolio and print its id")
    sp_portfolio.add_argument("--owner", required=True)
    sp_portfolio.add_argument("--name", required=True)
    sp_portfolio.set_defaults(func=_cmd_create_portfolio)

    sp_account = subparsers.add_parser("create-account", help="Create an account and print its id")
    sp_account.add_argument("--portfolio", required=True)
    sp_account.add_argument("--broker", required=True)
    sp_account.add_argument("--label", required=True)
    sp_account.add_argument("--currency", default="USD")
    sp_account.set_defaults(func=_cmd_create_account)

    sp_import = subparsers.add_parser("import", help="Import a statement file into an account")
    sp_import.add_argument("path")
    sp_import.add_argument("--account", required=True)
    sp_import.add_argument("--format", default=None, help="Skip detection and use this format.")
    sp_import.add_argument("--currency", default=None)
    sp_import.add_argument("--dry-run", action="store_true", help="Report without writing.")
    sp_import.add_argument(
        "--keep-duplicates",
        action="store_true",
        help="Attempt to insert rows flagged as duplicates.",
    )
    sp_import.set_defaults(func=_cmd_import)

    sp_rollback = subparsers.add_parser("rollback", help="Delete every transaction of an import batch")
    sp_rollback.add_argument("batch")
    sp_rollback.add_argument(
        "--no-rebuild",
        action="store_true",
        help="Only delete; skip holdings replay and tax-lot rebuild.",
    )
    sp_rollback.set_defaults(func=_cmd_rollback)

    sp_history = subparsers.add_parser("history", help="List import batches for an account")
    sp_history.add_argument("--account", required=True)
    sp_history.set_defaults(func=_cmd_history)

    sp_recalc = subparsers.add_parser("recalculate", help="Replay holdings and cash for an account")
    sp_recalc.add_argument("--account", required=True)
    sp_recalc.add_argument("--purge", action="store_true", help="Also drop sold-out holdings.")
    sp_recalc.set_defaults(func=_cmd_recalculate)

    sp_backfill = subparsers.add_parser("backfill-lots", help="Backfill FIFO tax lots for a portfolio")
    sp_backfill.add_argument("--portfolio", required=True)
    sp_backfill.add_argument("--rebuild", action="store_true", help="Discard existing lots first.")
    sp_backfill.set_defaults(func=_cmd_backfill_lots)

    sp_gains = subparsers.add_parser("gains", help="Realized gains for a portfolio")
    sp_gains.add_argument("--portfolio", required=True)
    sp_gains.add_argument("--year", type=int, default=None)
    sp_gains.set_defaults(func=_cmd_gains)

    sp_check = subparsers.add_parser("check-lots", help="Compare holdings with open tax lots")
    sp_check.add_argument("--account", required=True)
    sp_check.set_defaults(func=_cmd_check_lots)

    sp_templates = subparsers.add_parser("templates", help="Print expected headers per format")
    sp_templates.set_defaults(func=_cmd_templates)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(get_settings().log_level)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
