from __future__ import annotations

import importlib.util
from pathlib import Path

import pytest

CLI_PATH = Path(__file__).resolve().parents[1] / "tools" / "dev_cli.py"


@pytest.fixture
def dev_cli():
    spec = importlib.util.spec_from_file_location("dev_cli", CLI_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_parser_exposes_every_command(dev_cli):
    parser = dev_cli.build_parser()
    commands = {
        "init-db": [],
        "create-portfolio": ["--owner", "u", "--name", "n"],
        "create-account": ["--portfolio", "p", "--broker", "b", "--label", "l"],
        "import": ["file.csv", "--account", "a", "--dry-run"],
        "rollback": ["import-1"],
        "history": ["--account", "a"],
        "recalculate": ["--account", "a"],
        "backfill-lots": ["--portfolio", "p"],
        "gains": ["--portfolio", "p", "--year", "2024"],
        "check-lots": ["--account", "a"],
        "templates": [],
    }
    for command, extra in commands.items():
        args = parser.parse_args([command, *extra])
        assert callable(args.func), command

    args = parser.parse_args(["gains", "--portfolio", "p", "--year", "2024"])
    assert args.year == 2024


def test_end_to_end_import_flow(dev_cli, tmp_path, capsys, schwab_csv):
    db_url = f"sqlite:///{(tmp_path / 'ledger.sqlite').as_posix()}"
    base = ["--database-url", db_url]

    assert dev_cli.main([*base, "init-db"]) == 0
    assert dev_cli.main([*base, "create-portfolio", "--owner", "me", "--name", "Main"]) == 0
    portfolio_id = capsys.readouterr().out.strip().splitlines()[-1]
    assert dev_cli.main([*base, "create-account", "--portfolio", portfolio_id, "--broker", "Schwab", "--label", "Brokerage"]) == 0
    account_id = capsys.readouterr().out.strip().splitlines()[-1]

    statement = tmp_path / "schwab.csv"
    statement.write_text(schwab_csv, encoding="utf-8")
    assert dev_cli.main([*base, "import", str(statement), "--account", account_id]) == 0
    out = capsys.readouterr().out
    assert "5 imported" in out
    batch_id = next(line for line in out.splitlines() if line.startswith("batch=")).split("=", 1)[1]

    assert dev_cli.main([*base, "gains", "--portfolio", portfolio_id]) == 0
    assert "total=158.55" in capsys.readouterr().out

    assert dev_cli.main([*base, "check-lots", "--account", account_id]) == 0
    assert dev_cli.main([*base, "rollback", batch_id]) == 0
    assert "Deleted 5 transaction(s)" in capsys.readouterr().out


def test_templates_command_lists_formats(dev_cli, capsys):
    assert dev_cli.main(["templates"]) == 0
    out = capsys.readouterr().out
    assert "generic (Generic CSV): Date, Type, Symbol" in out
    assert out.count("\n") == 6
