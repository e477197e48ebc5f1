"""Expected column layouts for every import format."""

from __future__ import annotations

from portfolio_ledger.ingest.parsers.generic import TEMPLATE_HEADERS
from portfolio_ledger.ingest.parsers.registry import default_parsers

GENERIC_TRANSACTIONS_SAMPLE = "\n".join(
    [
        ",".join(TEMPLATE_HEADERS),
        "2025-01-15,Buy,AAPL,10,150.00,-1500.00,0.00,Initial purchase",
        "2025-02-01,Dividend,AAPL,,,15.00,,Quarterly dividend",
        "2025-03-10,Sell,AAPL,5,170.00,850.00,0.65,Partial sale",
        "2025-03-31,Interest,,,,2.10,,Cash sweep interest",
    ]
)


def format_templates() -> dict[str, dict[str, object]]:
    """Per format: display label, expected headers and, for ``generic``, a sample file."""
    templates: dict[str, dict[str, object]] = {}
    for parser in default_parsers():
        entry: dict[str, object] = {
            "label": parser.label,
            "headers": list(parser.expected_headers),
            "default_currency": parser.default_currency,
        }
        if parser.name == "generic":
            entry["sample"] = GENERIC_TRANSACTIONS_SAMPLE
        templates[parser.name] = entry
    return templates
