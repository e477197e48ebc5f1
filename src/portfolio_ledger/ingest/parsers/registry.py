"""Registered statement parsers in detection priority order."""

from __future__ import annotations

from portfolio_ledger.ingest.parsers.base import StatementParser
from portfolio_ledger.ingest.parsers.bofa import BofAParser
from portfolio_ledger.ingest.parsers.chase import ChaseParser
from portfolio_ledger.ingest.parsers.generic import GenericParser
from portfolio_ledger.ingest.parsers.ibkr import IBKRParser
from portfolio_ledger.ingest.parsers.nbk import NBKParser
from portfolio_ledger.ingest.parsers.schwab import SchwabParser


def default_parsers() -> list[StatementParser]:
    return [
        SchwabParser(),
        IBKRParser(),
        ChaseParser(),
        NBKParser(),
        BofAParser(),
        GenericParser(),
    ]
