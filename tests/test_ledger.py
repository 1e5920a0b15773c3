"""Tests for the position ledger."""

from decimal import Decimal

import pytest

from positionbook.ledger import PositionLedger
from positionbook.models import Position


def make_position(symbol, quantity="10", avg="100"):
    return Position(symbol, Decimal(quantity), Decimal(avg), Decimal(avg))


def test_put_get_and_lookup_is_case_insensitive():
    ledger = PositionLedger([make_position("AAPL")])
    assert ledger.get("aapl").quantity == Decimal("10")
    assert "aapl" in ledger
    assert ledger.symbols() == ["AAPL"]


def test_put_none_or_zero_quantity_removes():
    """Verify a symbol is absent once its position is gone or empty."""
    ledger = PositionLedger([make_position("AAPL"), make_position("MSFT")])
    ledger.put(None, symbol="aapl")
    ledger.put(make_position("MSFT", quantity="0"))
    assert len(ledger) == 0


def test_put_none_requires_symbol():
    with pytest.raises(ValueError):
        PositionLedger().put(None)


def test_snapshot_is_isolated_from_later_changes():
    ledger = PositionLedger([make_position("AAPL")])
    snapshot = ledger.snapshot()

    ledger.get("AAPL").quantity = Decimal("99")
    ledger.put(make_position("MSFT"))

    ledger.restore(snapshot)
    assert ledger.symbols() == ["AAPL"]
    assert ledger.get("AAPL").quantity == Decimal("10")


def test_records_round_trip_preserves_order():
    ledger = PositionLedger([make_position("VTI"), make_position("AAPL", "2.5", "180.25")])
    restored = PositionLedger.from_records(ledger.to_records())
    assert restored.positions() == ledger.positions()
