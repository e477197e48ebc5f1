from __future__ import annotations

from datetime import date
from decimal import Decimal

from portfolio_ledger.db.models import TransactionKind as K
from portfolio_ledger.ingest.parsers.ibkr import (
    IBKRParser,
    map_transaction_type,
    normalize_symbol,
    quote_currency,
)
from portfolio_ledger.ingest.parsers.schwab import SchwabParser, map_action

IBKR_CSV = "\n".join(
    [
        "Statement,Header,Field Name,Field Value",
        "Statement,Data,Title,Transaction History",
        "Summary,Header,Field Name,Field Value",
        "Summary,Data,Base Currency,USD",
        "Transaction History,Header,Date,Account,Description,Transaction Type,Symbol,Quantity,Price,"
        "Price Currency,Gross Amount ,Commission,Net Amount",
        "Transaction History,Data,2025-01-06,U***1234,APPLE INC,Buy,AAPL,10,150.25,USD,-1502.5,-1.0,-1503.5",
        "Transaction History,Data,2025-01-15,U***1234,AAPL Cash Dividend,Dividend,AAPL,-,-,USD,2.5,-,2.5",
        "Transaction History,Data,2025-01-20,U***1234,Net Amount in CAD from Forex,"
        "Forex Trade Component,USD.CAD,-100,1.43,CAD,143,-,143",
        "Transaction History,Data,2025-01-21,U***1234,BTC purchase,Buy,BTC.USD-ZEROHASH,0.01,95000,USD,-950,-,-950",
        "Transaction History,Data,2025-01-22,U***1234,Electronic Fund Transfer,Deposit,-,-,-,USD,1000,-,1000",
        "Transaction History,Data,2025-01-23,U***1234,Disbursement,Withdrawal,-,-,-,USD,-200,-,-200",
        "Transaction History,Data,2025-01-24,U***1234,Placeholder,Other Fee,-,-,-,USD,0,-,0",
        "Transaction History,Data,2025-01-27,U***1234,APPLE INC,Sell,AAPL,-4,160,USD,640,-1.0,639",
    ]
)


def test_schwab_parser_maps_rows_and_skips_footer(schwab_csv: str):
    parser = SchwabParser()
    assert parser.detect(schwab_csv)

    rows = parser.parse(schwab_csv)
    assert [row.kind for row in rows] == [K.DEPOSIT, K.BUY, K.BUY, K.DIVIDEND, K.SELL]

    buy = rows[1]
    assert buy.date == date(2025, 1, 3)
    assert buy.symbol == "AAPL"
    assert buy.quantity == Decimal("10")
    assert buy.price == Decimal("150.00")
    assert buy.fees == Decimal("1.00")
    assert buy.amount == Decimal("-1501.00")
    assert buy.currency == "USD"
    assert buy.source_format == "schwab"

    sell = rows[4]
    assert sell.quantity == Decimal("8")
    assert sell.fees == Decimal("0.65")
    assert sell.amount == Decimal("1359.35")

    deposit = rows[0]
    assert deposit.symbol is None
    assert deposit.amount == Decimal("5000.00")


def test_schwab_fingerprints_are_stable_and_distinct(schwab_csv: str):
    first = [row.fingerprint for row in SchwabParser().parse(schwab_csv)]
    second = [row.fingerprint for row in SchwabParser().parse(schwab_csv)]
    assert first == second
    assert len(set(first)) == len(first)
    assert all(len(value) == 32 for value in first)


def test_schwab_action_mapping_uses_sign_for_transfers():
    assert map_action("MoneyLink Transfer", Decimal("-250")) == K.WITHDRAWAL
    assert map_action("MoneyLink Transfer", Decimal("250")) == K.DEPOSIT
    assert map_action("Journaled Shares", None, Decimal("-3")) == K.TRANSFER_OUT
    assert map_action("Reinvest Dividend", Decimal("-12")) == K.REINVEST_DIVIDEND
    assert map_action("Stock Split", None, Decimal("10")) == K.TRANSFER_IN
    assert map_action("Something New", Decimal("-1")) == K.WITHDRAWAL


def test_schwab_currency_override():
    text = "\n".join(
        [
            '"Date","Action","Symbol","Description","Quantity","Price","Fees & Comm","Amount"',
            '"01/03/2025","Buy","SHOP","SHOPIFY","2","$100.00","","-$200.00"',
        ]
    )
    (row,) = SchwabParser().parse(text, currency="cad")
    assert row.currency == "CAD"


def test_ibkr_parser_reads_transaction_history_section():
    parser = IBKRParser()
    assert parser.detect(IBKR_CSV)

    rows = parser.parse(IBKR_CSV)
    assert [row.kind for row in rows] == [
        K.BUY,
        K.DIVIDEND,
        K.FOREX,
        K.BUY,
        K.DEPOSIT,
        K.WITHDRAWAL,
        K.SELL,
    ]

    buy = rows[0]
    assert buy.date == date(2025, 1, 6)
    assert buy.symbol == "AAPL"
    assert buy.quantity == Decimal("10")
    assert buy.price == Decimal("150.25")
    assert buy.fees == Decimal("1.0")
    assert buy.amount == Decimal("-1503.5")

    dividend = rows[1]
    assert dividend.quantity is None
    assert dividend.fees is None

    forex = rows[2]
    assert forex.symbol is None
    assert forex.currency == "CAD"

    assert rows[3].symbol == "BTC"
    assert rows[6].quantity == Decimal("4")


def test_ibkr_detects_bare_transaction_history_header():
    text = "\n".join(
        [
            "Transaction History,Header,Date,Account,Description,Transaction Type,Symbol,Quantity,Price,"
            "Gross Amount,Commission,Net Amount",
            "Transaction History,Data,2025-02-03,U1,Credit Interest,Credit Interest,-,-,-,1.2,-,1.2",
        ]
    )
    parser = IBKRParser()
    assert parser.detect(text)
    (row,) = parser.parse(text)
    assert row.kind == K.INTEREST
    assert row.amount == Decimal("1.2")


def test_ibkr_type_and_symbol_helpers():
    assert map_transaction_type("Deposit", Decimal("100"), "Transfer to U999") == K.TRANSFER_OUT
    assert map_transaction_type("Deposit", Decimal("100"), "Transfer from U999") == K.TRANSFER_IN
    assert map_transaction_type("Payment in Lieu of Dividends", Decimal("1"), "") == K.DIVIDEND
    assert map_transaction_type("Unheard Of", Decimal("-5"), "") == K.WITHDRAWAL

    assert normalize_symbol("ETH.USD-ZEROHASH", "Buy") == "ETH"
    assert normalize_symbol("EUR.USD", "Buy") is None
    assert normalize_symbol("BRK.B", "Buy") == "BRK.B"
    assert normalize_symbol("-", "Dividend") is None

    assert quote_currency("GBP.USD", "EUR") == "USD"
    assert quote_currency("AAPL", "EUR") == "EUR"
