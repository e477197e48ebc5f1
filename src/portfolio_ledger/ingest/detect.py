"""Statement format detection and dispatch."""

from __future__ import annotations

from collections.abc import Sequence

from portfolio_ledger.ingest.canonical import CanonicalTransaction
from portfolio_ledger.ingest.parsers.base import StatementParser
from portfolio_ledger.ingest.parsers.registry import default_parsers


class UnknownFormatError(ValueError):
    pass


def detect_format(text: str, parsers: Sequence[StatementParser] | None = None) -> str | None:
    """Name of the first parser whose header sniffing accepts ``text``."""
    for parser in parsers or default_parsers():
        if parser.detect(text):
            return parser.name
    return None


def get_parser(name: str, parsers: Sequence[StatementParser] | None = None) -> StatementParser:
    for parser in parsers or default_parsers():
        if parser.name == name:
            return parser
    raise UnknownFormatError(f"Unknown statement format: {name}")


def supported_formats() -> list[str]:
    return [parser.name for parser in default_parsers()]


def parse_statement(
    text: str,
    format_name: str | None = None,
    currency: str | None = None,
) -> tuple[str | None, list[CanonicalTransaction]]:
    """Parse ``text`` with an explicit format or the detected one.

    Returns ``(None, [])`` when no format matches.
    """
    name = format_name or detect_format(text)
    if name is None:
        return None, []
    return name, get_parser(name).parse(text, currency)
