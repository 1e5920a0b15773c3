"""Secondary mirror stores: best-effort, never authoritative.

Mirror methods are plain blocking calls. The gateway runs them in an
executor and bounds each one with a timeout.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import requests

from .repository import JsonFileRepository

PORTFOLIO_ASSETS = "portfolio_assets"
INVESTMENT_LOGS = "investment_logs"
ACCOUNT_PRINCIPALS = "account_principals"
SETTINGS_PREFIX = "settings:"


class MirrorStore(ABC):
    """Capability set every mirror backend provides."""

    name = "mirror"

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the backend is configured and believes it can serve requests."""
        ...

    @abstractmethod
    def get_all(self, collection: str) -> Any | None:
        """Return the mirrored value of a collection (None or empty if absent)."""
        ...

    @abstractmethod
    def sync_all(self, collection: str, value: Any) -> None:
        """Replace the mirrored value of a collection."""
        ...

    @abstractmethod
    def add_position(self, record: dict[str, Any]) -> None:
        """Insert or replace one position record, matched by symbol."""
        ...

    @abstractmethod
    def delete_position(self, symbol: str) -> None:
        ...

    def bulk_delete_positions(self, symbols: list[str]) -> None:
        for symbol in symbols:
            self.delete_position(symbol)


class JsonDirectoryMirror(MirrorStore):
    """Mirror kept as JSON files in a second directory, e.g. a synced folder.

    The mirror is available only while its directory exists, so an
    unmounted drive or missing sync folder reads as "unreachable".
    """

    name = "directory"

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self._files = JsonFileRepository(self.directory)

    def is_available(self) -> bool:
        return self.directory.is_dir()

    def get_all(self, collection: str) -> Any | None:
        return self._files.read(collection)

    def sync_all(self, collection: str, value: Any) -> None:
        self._files.write(collection, value)

    def add_position(self, record: dict[str, Any]) -> None:
        records = [r for r in (self._files.read(PORTFOLIO_ASSETS) or []) if r.get("symbol") != record["symbol"]]
        records.append(record)
        self._files.write(PORTFOLIO_ASSETS, records)

    def delete_position(self, symbol: str) -> None:
        self.bulk_delete_positions([symbol])

    def bulk_delete_positions(self, symbols: list[str]) -> None:
        doomed = set(symbols)
        records = [r for r in (self._files.read(PORTFOLIO_ASSETS) or []) if r.get("symbol") not in doomed]
        self._files.write(PORTFOLIO_ASSETS, records)


# Collection field name -> table column name
_POSITION_COLUMNS = {
    "symbol": "symbol",
    "name": "name",
    "type": "type",
    "quantity": "quantity",
    "avgPrice": "avg_price",
    "currentPrice": "current_price",
    "totalValue": "total_value",
    "profit": "profit",
    "currency": "currency",
    "account": "account",
    "category": "category",
}

_LOG_COLUMNS = {
    "id": "id",
    "date": "date",
    "type": "type",
    "symbol": "symbol",
    "quantity": "quantity",
    "price": "price",
    "amount": "amount",
    "currency": "currency",
    "account": "account",
    "note": "note",
    "name": "name",
    "assetType": "asset_type",
    "category": "category",
}


def _to_row(record: dict[str, Any], columns: dict[str, str]) -> dict[str, Any]:
    return {column: record.get(key) for key, column in columns.items()}


def _from_row(row: dict[str, Any], columns: dict[str, str]) -> dict[str, Any]:
    return {key: row.get(column) for key, column in columns.items()}


class SupabaseMirror(MirrorStore):
    """Mirror backed by Supabase tables, through its PostgREST API.

    Tables: ``portfolios``, ``investment_logs``, ``account_principals`` and
    ``app_settings`` (key/value jsonb), each scoped by a ``user_id`` column.
    Collections are synced by deleting the user's rows and inserting the new
    ones; there is no diffing and no conflict detection.
    """

    name = "supabase"

    TABLES = {
        PORTFOLIO_ASSETS: "portfolios",
        INVESTMENT_LOGS: "investment_logs",
        ACCOUNT_PRINCIPALS: "account_principals",
    }
    SETTINGS_TABLE = "app_settings"

    def __init__(
        self,
        url: str | None,
        api_key: str | None,
        user_id: str = "default_user",
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ):
        """Initialize the Supabase mirror.

        Args:
            url: Project URL, e.g. ``https://xyz.supabase.co``. None leaves
                the mirror unconfigured (never available).
            api_key: The project's anon or service key.
            user_id: Value of the ``user_id`` column rows are scoped to.
            timeout: Per-request timeout in seconds.
            session: Optional requests session (used by tests).
        """
        self.url = (url or "").rstrip("/")
        self.api_key = api_key or ""
        self.user_id = user_id
        self.timeout = timeout
        self._session = session or requests.Session()

    def is_available(self) -> bool:
        return bool(self.url and self.api_key)

    def _headers(self, **extra: str) -> dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        headers.update(extra)
        return headers

    def _endpoint(self, table: str) -> str:
        return f"{self.url}/rest/v1/{table}"

    def _table_for(self, collection: str) -> str:
        if collection.startswith(SETTINGS_PREFIX):
            return self.SETTINGS_TABLE
        if collection not in self.TABLES:
            raise ValueError(f"Collection '{collection}' is not mirrored")
        return self.TABLES[collection]

    def _select(self, table: str, **filters: str) -> list[dict[str, Any]]:
        params = {"select": "*", "user_id": f"eq.{self.user_id}"}
        params.update(filters)
        response = self._session.get(self._endpoint(table), headers=self._headers(), params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def _delete(self, table: str, **filters: str) -> None:
        params = {"user_id": f"eq.{self.user_id}"}
        params.update(filters)
        response = self._session.delete(self._endpoint(table), headers=self._headers(), params=params, timeout=self.timeout)
        response.raise_for_status()

    def _insert(self, table: str, rows: list[dict[str, Any]], upsert_on: str | None = None) -> None:
        if not rows:
            return
        params = {}
        headers = self._headers(Prefer="return=minimal")
        if upsert_on:
            params["on_conflict"] = upsert_on
            headers["Prefer"] = "resolution=merge-duplicates,return=minimal"
        for row in rows:
            row["user_id"] = self.user_id
        response = self._session.post(self._endpoint(table), headers=headers, params=params, json=rows, timeout=self.timeout)
        response.raise_for_status()

    def get_all(self, collection: str) -> Any | None:
        table = self._table_for(collection)

        if collection.startswith(SETTINGS_PREFIX):
            rows = self._select(table, key=f"eq.{collection[len(SETTINGS_PREFIX):]}")
            return rows[0].get("value") if rows else None

        if collection == ACCOUNT_PRINCIPALS:
            return {
                row["account_name"]: {
                    "principal": row.get("principal") or 0,
                    "remaining": row.get("remaining") or 0,
                    "note": row.get("note") or "",
                }
                for row in self._select(table)
            }

        if collection == INVESTMENT_LOGS:
            rows = self._select(table, order="date.desc")
            return [_from_row(row, _LOG_COLUMNS) for row in rows]

        rows = self._select(table, order="created_at.asc")
        return [_from_row(row, _POSITION_COLUMNS) for row in rows]

    def sync_all(self, collection: str, value: Any) -> None:
        table = self._table_for(collection)

        if collection.startswith(SETTINGS_PREFIX):
            key = collection[len(SETTINGS_PREFIX):]
            self._insert(table, [{"key": key, "value": value}], upsert_on="user_id,key")
            return

        if collection == ACCOUNT_PRINCIPALS:
            rows = [
                {
                    "account_name": account,
                    "principal": data.get("principal", 0),
                    "remaining": data.get("remaining", 0),
                    "note": data.get("note", ""),
                }
                for account, data in value.items()
            ]
        elif collection == INVESTMENT_LOGS:
            rows = [_to_row(record, _LOG_COLUMNS) for record in value]
        else:
            rows = [_to_row(record, _POSITION_COLUMNS) for record in value]

        self._delete(table)
        self._insert(table, rows)

    def add_position(self, record: dict[str, Any]) -> None:
        self._insert(self.TABLES[PORTFOLIO_ASSETS], [_to_row(record, _POSITION_COLUMNS)], upsert_on="user_id,symbol")

    def delete_position(self, symbol: str) -> None:
        self._delete(self.TABLES[PORTFOLIO_ASSETS], symbol=f"eq.{symbol}")

    def bulk_delete_positions(self, symbols: list[str]) -> None:
        if not symbols:
            return
        self._delete(self.TABLES[PORTFOLIO_ASSETS], symbol=f"in.({','.join(symbols)})")
