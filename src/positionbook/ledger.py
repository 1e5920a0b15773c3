"""The position ledger: current holdings keyed by symbol."""

from __future__ import annotations

from typing import Any, Iterable, Iterator

from .models import Position, normalize_symbol


class PositionLedger:
    """Holds one Position per symbol, in first-opened order.

    A symbol is either held with a positive quantity or absent; put() with a
    None position removes the symbol.
    """

    def __init__(self, positions: Iterable[Position] | None = None):
        self._positions: dict[str, Position] = {}
        for position in positions or []:
            self.put(position)

    def __len__(self) -> int:
        return len(self._positions)

    def __iter__(self) -> Iterator[Position]:
        return iter(list(self._positions.values()))

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and normalize_symbol(symbol) in self._positions

    def get(self, symbol: str) -> Position | None:
        return self._positions.get(normalize_symbol(symbol))

    def put(self, position: Position | None, symbol: str | None = None) -> None:
        """Store a position, or remove the symbol when position is None.

        Args:
            position: The new state, or None for "no longer held".
            symbol: Required when position is None.
        """
        if position is None:
            if symbol is None:
                raise ValueError("symbol is required when removing a position")
            self._positions.pop(normalize_symbol(symbol), None)
            return
        if position.quantity <= 0:
            self._positions.pop(position.symbol, None)
            return
        self._positions[position.symbol] = position

    def remove(self, symbol: str) -> Position | None:
        return self._positions.pop(normalize_symbol(symbol), None)

    def symbols(self) -> list[str]:
        return list(self._positions)

    def positions(self) -> list[Position]:
        return list(self._positions.values())

    def snapshot(self) -> dict[str, Position]:
        """Deep copy of the current state, for restore()."""
        return {symbol: position.copy() for symbol, position in self._positions.items()}

    def restore(self, snapshot: dict[str, Position]) -> None:
        self._positions = {symbol: position.copy() for symbol, position in snapshot.items()}

    def replace_all(self, positions: Iterable[Position]) -> None:
        self._positions = {}
        for position in positions:
            self.put(position)

    def to_records(self) -> list[dict[str, Any]]:
        return [position.to_dict() for position in self._positions.values()]

    @classmethod
    def from_records(cls, records: Iterable[dict[str, Any]]) -> PositionLedger:
        return cls(Position.from_dict(record) for record in records)

    def __repr__(self):
        return f"PositionLedger({', '.join(self._positions)})"
