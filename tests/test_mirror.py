"""Tests for mirror backends: a second JSON directory and Supabase over PostgREST."""

import pytest
import requests

from positionbook.storage import (
    ACCOUNT_PRINCIPALS,
    INVESTMENT_LOGS,
    PORTFOLIO_ASSETS,
    JsonDirectoryMirror,
    SupabaseMirror,
)


class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    """Records requests and replays canned responses for GETs."""

    def __init__(self, rows=None, status_code=200):
        self.rows = rows or []
        self.status_code = status_code
        self.calls = []

    def _record(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return FakeResponse(self.rows if method == "GET" else None, self.status_code)

    def get(self, url, **kwargs):
        return self._record("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._record("POST", url, **kwargs)

    def delete(self, url, **kwargs):
        return self._record("DELETE", url, **kwargs)


def test_directory_mirror_available_only_when_directory_exists(tmp_path):
    mirror = JsonDirectoryMirror(tmp_path / "sync")
    assert not mirror.is_available()
    (tmp_path / "sync").mkdir()
    assert mirror.is_available()


def test_directory_mirror_position_operations(tmp_path):
    """Verify single and bulk position operations match records by symbol."""
    mirror = JsonDirectoryMirror(tmp_path)
    mirror.sync_all(PORTFOLIO_ASSETS, [{"symbol": "AAPL", "quantity": "1"}, {"symbol": "MSFT", "quantity": "2"}])

    mirror.add_position({"symbol": "AAPL", "quantity": "5"})
    mirror.add_position({"symbol": "VTI", "quantity": "3"})
    assert mirror.get_all(PORTFOLIO_ASSETS) == [
        {"symbol": "MSFT", "quantity": "2"},
        {"symbol": "AAPL", "quantity": "5"},
        {"symbol": "VTI", "quantity": "3"},
    ]

    mirror.delete_position("MSFT")
    mirror.bulk_delete_positions(["AAPL", "NOPE"])
    assert mirror.get_all(PORTFOLIO_ASSETS) == [{"symbol": "VTI", "quantity": "3"}]


def test_supabase_unconfigured_is_unavailable():
    assert not SupabaseMirror(None, None, session=FakeSession()).is_available()
    assert SupabaseMirror("https://x.supabase.co", "key", session=FakeSession()).is_available()


def test_supabase_get_positions_maps_columns():
    session = FakeSession(rows=[{"symbol": "AAPL", "avg_price": 100, "current_price": 120, "quantity": 2, "type": "Stock"}])
    mirror = SupabaseMirror("https://x.supabase.co/", "key", session=session)

    records = mirror.get_all(PORTFOLIO_ASSETS)

    assert records[0]["avgPrice"] == 100
    assert records[0]["currentPrice"] == 120
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("GET", "https://x.supabase.co/rest/v1/portfolios")
    assert kwargs["params"]["user_id"] == "eq.default_user"
    assert kwargs["headers"]["apikey"] == "key"
    assert kwargs["timeout"] == 10.0


def test_supabase_sync_replaces_rows():
    """Verify sync_all deletes the user's rows, then inserts the new ones with user_id set."""
    session = FakeSession()
    mirror = SupabaseMirror("https://x.supabase.co", "key", user_id="me", session=session)

    mirror.sync_all(INVESTMENT_LOGS, [{"id": "t1", "date": "2024-01-01", "type": "buy", "symbol": "AAPL", "assetType": "Stock"}])

    assert [call[0] for call in session.calls] == ["DELETE", "POST"]
    rows = session.calls[1][2]["json"]
    assert rows[0]["user_id"] == "me"
    assert rows[0]["asset_type"] == "Stock"
    assert session.calls[1][1].endswith("/rest/v1/investment_logs")


def test_supabase_account_principals_round_trip_shape():
    session = FakeSession(rows=[{"account_name": "ISA", "principal": 1000, "remaining": None, "note": None}])
    mirror = SupabaseMirror("https://x.supabase.co", "key", session=session)

    assert mirror.get_all(ACCOUNT_PRINCIPALS) == {"ISA": {"principal": 1000, "remaining": 0, "note": ""}}

    mirror.sync_all(ACCOUNT_PRINCIPALS, {"ISA": {"principal": "2000", "remaining": "10", "note": "n"}})
    inserted = session.calls[-1][2]["json"]
    assert inserted == [{"account_name": "ISA", "principal": "2000", "remaining": "10", "note": "n", "user_id": "default_user"}]


def test_supabase_settings_use_upsert():
    session = FakeSession(rows=[{"key": "theme", "value": "dark"}])
    mirror = SupabaseMirror("https://x.supabase.co", "key", session=session)

    assert mirror.get_all("settings:theme") == "dark"
    mirror.sync_all("settings:theme", "light")

    method, url, kwargs = session.calls[-1]
    assert url.endswith("/rest/v1/app_settings")
    assert kwargs["params"]["on_conflict"] == "user_id,key"
    assert "merge-duplicates" in kwargs["headers"]["Prefer"]


def test_supabase_bulk_delete_uses_in_filter():
    session = FakeSession()
    mirror = SupabaseMirror("https://x.supabase.co", "key", session=session)
    mirror.bulk_delete_positions(["AAPL", "MSFT"])
    assert session.calls[0][2]["params"]["symbol"] == "in.(AAPL,MSFT)"


def test_supabase_http_errors_raise():
    mirror = SupabaseMirror("https://x.supabase.co", "key", session=FakeSession(status_code=503))
    with pytest.raises(requests.HTTPError):
        mirror.get_all(PORTFOLIO_ASSETS)


def test_supabase_rejects_unknown_collection():
    mirror = SupabaseMirror("https://x.supabase.co", "key", session=FakeSession())
    with pytest.raises(ValueError, match="not mirrored"):
        mirror.sync_all("something_else", [])
