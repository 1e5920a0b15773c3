"""Tests for the positionbook command-line interface."""

import json
import sys

import pytest

from positionbook.cli import common
from positionbook.cli.main import main


@pytest.fixture
def cli(tmp_path, monkeypatch):
    """Run the CLI against a temporary data directory and return (exit code, stdout)."""
    for name in ("SUPABASE_URL", "SUPABASE_ANON_KEY", "POSITIONBOOK_BASE_CURRENCY", "POSITIONBOOK_DATA_DIR"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(common.console, "width", 200)

    def invoke(capsys, *argv):
        base = ["positionbook", "--data-dir", str(tmp_path), "--config", str(tmp_path / "config.json")]
        monkeypatch.setattr(sys, "argv", base + list(argv))
        code = main()
        return code, capsys.readouterr().out

    return invoke


def test_no_command_prints_help(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["positionbook"])
    assert main() == 0
    assert "commands" in capsys.readouterr().out


def test_version(cli, capsys, tmp_path):
    code, out = cli(capsys, "version")
    assert code == 0
    assert "positionbook Version:" in out
    assert f"Data directory: {tmp_path}" in out
    assert "Mirror: none" in out


def test_buy_then_log_and_report(cli, capsys, tmp_path):
    """A recorded buy shows up in the log, the report and the primary JSON files."""
    code, out = cli(capsys, "buy", "aapl", "10", "150", "--date", "2024-03-05", "--asset-type", "Stock")
    assert code == 0
    assert "Recorded buy 10 AAPL @ 150 USD" in out

    code, out = cli(capsys, "log", "--month", "3")
    assert code == 0
    assert "AAPL" in out
    assert "Transactions: 1" in out

    code, out = cli(capsys, "log", "--month", "4")
    assert "Transactions: 0" in out

    code, out = cli(capsys, "report", "--currency", "USD")
    assert code == 0
    assert "Total Value: $1,500.00" in out

    stored = json.loads((tmp_path / "portfolio_assets.json").read_text(encoding="utf-8"))
    assert stored[0]["symbol"] == "AAPL"
    assert stored[0]["type"] == "Stock"


def test_sell_then_delete_restores_position(cli, capsys, tmp_path):
    cli(capsys, "buy", "VTI", "4", "200")
    code, out = cli(capsys, "sell", "VTI", "4", "250")
    assert code == 0
    assert json.loads((tmp_path / "portfolio_assets.json").read_text(encoding="utf-8")) == []

    sale_id = json.loads((tmp_path / "investment_logs.json").read_text(encoding="utf-8"))[0]["id"]
    code, out = cli(capsys, "delete", sale_id)
    assert code == 0
    assert f"Deleted transaction {sale_id}" in out
    assert json.loads((tmp_path / "portfolio_assets.json").read_text(encoding="utf-8"))[0]["quantity"] == "4"


def test_sell_of_unheld_symbol_warns(cli, capsys):
    with pytest.warns(UserWarning):
        code, out = cli(capsys, "sell", "GHOST", "1", "10")
    assert code == 0
    assert "Warning: Sell of GHOST ignored" in out


def test_invalid_input_returns_error(cli, capsys):
    code, out = cli(capsys, "buy", "AAPL", "0", "150")
    assert code == 1
    assert "Error:" in out

    code, out = cli(capsys, "delete", "missing-id")
    assert code == 1
    assert "Transaction not found: missing-id" in out

    code, out = cli(capsys, "quote", "AAPL190")
    assert code == 1
    assert "SYMBOL=PRICE" in out


def test_quote_rebuild_and_status(cli, capsys, tmp_path):
    cli(capsys, "buy", "005930", "2", "70000")

    code, out = cli(capsys, "quote", "005930=75000", "MSFT=400")
    assert code == 0
    assert "Updated 1 of 2 quotes" in out
    assert "Skipped MSFT" in out

    code, out = cli(capsys, "rebuild")
    assert code == 0
    stored = json.loads((tmp_path / "portfolio_assets.json").read_text(encoding="utf-8"))
    assert stored[0]["currency"] == "KRW"
    assert stored[0]["currentPrice"] == "75000"

    code, out = cli(capsys, "status")
    assert code == 0
    assert "Mirror: none" in out


def test_principal(cli, capsys, tmp_path):
    code, out = cli(capsys, "principal", "ISA", "--principal", "1000000", "--remaining", "50000")
    assert code == 0
    stored = json.loads((tmp_path / "account_principals.json").read_text(encoding="utf-8"))
    assert stored == {"ISA": {"principal": "1000000", "remaining": "50000", "note": ""}}

    cli(capsys, "principal", "ISA", "--delete")
    assert json.loads((tmp_path / "account_principals.json").read_text(encoding="utf-8")) == {}
