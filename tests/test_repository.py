"""Tests for the primary repositories."""

import json

from positionbook.storage import InMemoryRepository, JsonFileRepository


def test_in_memory_repository_isolates_stored_values():
    """Mutating a value after writing it, or after reading it, does not change what is stored."""
    repo = InMemoryRepository({"settings:theme": "dark"})
    value = [{"symbol": "AAPL"}]
    repo.write("portfolio_assets", value)
    value.append({"symbol": "MSFT"})

    loaded = repo.read("portfolio_assets")
    loaded[0]["symbol"] = "CHANGED"

    assert repo.read("portfolio_assets") == [{"symbol": "AAPL"}]
    assert repo.read("settings:theme") == "dark"
    assert repo.read("missing") is None
    assert not repo.has("missing")


def test_json_file_repository_round_trip(tmp_path):
    repo = JsonFileRepository(tmp_path / "data")
    assert repo.read("investment_logs") is None

    repo.write("investment_logs", [{"id": "t1", "price": "1.10"}])

    assert repo.read("investment_logs") == [{"id": "t1", "price": "1.10"}]
    assert (tmp_path / "data" / "investment_logs.json").exists()
    assert not (tmp_path / "data" / "investment_logs.json.tmp").exists()


def test_json_file_repository_sanitizes_names(tmp_path):
    repo = JsonFileRepository(tmp_path)
    repo.write("settings:base/currency", "KRW")
    assert repo.path_for("settings:base/currency").name == "settings_base_currency.json"
    assert repo.read("settings:base/currency") == "KRW"


def test_json_file_repository_treats_corrupt_file_as_absent(tmp_path, capsys):
    (tmp_path / "portfolio_assets.json").write_text("{not json", encoding="utf-8")
    repo = JsonFileRepository(tmp_path)

    assert repo.read("portfolio_assets") is None
    assert "[Storage] Ignoring unreadable portfolio_assets.json" in capsys.readouterr().out


def test_json_file_repository_writes_readable_unicode(tmp_path):
    repo = JsonFileRepository(tmp_path)
    repo.write("account_principals", {"연금": {"principal": "1000"}})
    text = (tmp_path / "account_principals.json").read_text(encoding="utf-8")
    assert "연금" in text
    assert json.loads(text) == {"연금": {"principal": "1000"}}
