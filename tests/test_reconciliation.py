"""Tests for weighted-average reconciliation: apply, revert, edit and rebuild."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from positionbook import reconciliation
from positionbook.currency import Currency
from positionbook.errors import PartialReconciliationError, ReconciliationWarning, ValidationError
from positionbook.ledger import PositionLedger
from positionbook.models import AssetMetadata, KnownAsset, NewAsset, Position, Transaction, TransactionKind
from positionbook.reconciliation import (
    EditCommand,
    ReconciliationEngine,
    apply_buy,
    apply_sell,
    infer_currency_from_symbol,
    make_symbol_shape_policy,
    realized_profit,
    resolve_metadata,
    revert_buy,
    revert_sell,
)

BUY = TransactionKind.BUY
SELL = TransactionKind.SELL


def txn(kind, quantity, price, symbol="X", txn_id=None, **kwargs):
    return Transaction(txn_id, date(2024, 1, 1), kind, symbol, Decimal(quantity), Decimal(price), **kwargs)


# ── Pure functions ───────────────────────────────────────


def test_apply_buy_opens_then_pools():
    """Verify a first buy opens the position and later buys pool the average cost."""
    meta = AssetMetadata(symbol="X", currency=Currency.USD, name="Example")
    opened = apply_buy(None, Decimal("10"), Decimal("100"), meta)
    assert (opened.quantity, opened.avg_cost, opened.current_price) == (Decimal("10"), Decimal("100"), Decimal("100"))
    assert opened.name == "Example"

    pooled = apply_buy(opened, Decimal("10"), Decimal("120"), meta)
    assert (pooled.quantity, pooled.avg_cost) == (Decimal("20"), Decimal("110"))
    # Current price only moves with a quote.
    assert pooled.current_price == Decimal("100")
    assert opened.quantity == Decimal("10")

    quoted = apply_buy(pooled, Decimal("1"), Decimal("110"), meta, quote=Decimal("130"))
    assert quoted.current_price == Decimal("130")


def test_apply_sell_keeps_average_and_removes_on_full_exit():
    position = Position("X", Decimal("10"), Decimal("80"), Decimal("90"))
    partial = apply_sell(position, Decimal("4"), Decimal("100"))
    assert (partial.quantity, partial.avg_cost, partial.current_price) == (Decimal("6"), Decimal("80"), Decimal("90"))

    assert apply_sell(position, Decimal("10"), Decimal("50")) is None


def test_oversell_is_not_rejected():
    """Selling more than is held removes the position rather than raising."""
    position = Position("X", Decimal("5"), Decimal("80"), Decimal("80"))
    assert apply_sell(position, Decimal("8"), Decimal("50")) is None


def test_revert_buy_floors_cost_at_zero():
    position = Position("X", Decimal("10"), Decimal("1"), Decimal("1"))
    reverted = revert_buy(position, Decimal("5"), Decimal("100"))
    assert reverted.quantity == Decimal("5")
    assert reverted.avg_cost == Decimal("0")
    assert revert_buy(position, Decimal("10"), Decimal("1")) is None


def test_revert_sell_of_full_exit_reconstructs_from_metadata():
    """Verify reverting the sale that closed a position reopens it from cached metadata."""
    meta = AssetMetadata(symbol="005930", currency=Currency.KRW, name="Samsung", asset_type="Stock", account="ISA")
    reopened = revert_sell(None, Decimal("10"), Decimal("72000"), meta)
    assert reopened.symbol == "005930"
    assert reopened.quantity == Decimal("10")
    assert reopened.avg_cost == Decimal("72000")
    assert reopened.currency == Currency.KRW
    assert (reopened.name, reopened.asset_type, reopened.account) == ("Samsung", "Stock", "ISA")


def test_realized_profit_scenario():
    """Sell 10 @ 50 against avg 80: position removed, realized profit -300."""
    position = Position("X", Decimal("10"), Decimal("80"), Decimal("80"))
    assert realized_profit(position, Decimal("10"), Decimal("50")) == Decimal("-300")
    assert apply_sell(position, Decimal("10"), Decimal("50")) is None


def test_weighted_average_invariant_over_buys():
    """avg_cost * quantity tracks the running sum of qty * price after every buy."""
    meta = AssetMetadata(symbol="X", currency=Currency.USD)
    buys = [("3", "10.10"), ("7", "9.37"), ("1", "12.01"), ("13", "8.333"), ("2", "15")]
    position = None
    spent = Decimal("0")
    for quantity, price in buys:
        position = apply_buy(position, Decimal(quantity), Decimal(price), meta)
        spent += Decimal(quantity) * Decimal(price)
        assert abs(position.avg_cost * position.quantity - spent) < Decimal("1e-20")


@pytest.mark.parametrize(
    "quantity,avg,qty,price",
    [("10", "100", "10", "120"), ("4", "25", "4", "35"), ("1", "3", "3", "7")],
)
def test_buy_apply_revert_round_trip(quantity, avg, qty, price):
    position = Position("X", Decimal(quantity), Decimal(avg), Decimal(avg))
    meta = AssetMetadata(symbol="X")
    applied = apply_buy(position, Decimal(qty), Decimal(price), meta)
    assert revert_buy(applied, Decimal(qty), Decimal(price)) == position


def test_sell_apply_revert_round_trip():
    position = Position("X", Decimal("15"), Decimal("110"), Decimal("120"))
    applied = apply_sell(position, Decimal("5"), Decimal("150"))
    assert revert_sell(applied, Decimal("5"), Decimal("150"), AssetMetadata(symbol="X")) == position


# ── Currency policy and asset references ─────────────────


def test_symbol_shape_policy():
    """Verify 5-6 digit codes are local listings and everything else is foreign."""
    assert infer_currency_from_symbol("005930") == Currency.KRW
    assert infer_currency_from_symbol("35720") == Currency.KRW
    assert infer_currency_from_symbol("AAPL") == Currency.USD
    assert infer_currency_from_symbol("1234567") == Currency.USD

    policy = make_symbol_shape_policy(Currency.VND, Currency.EUR)
    assert policy("123456") == Currency.VND
    assert policy("SAP") == Currency.EUR


def test_resolve_metadata_for_new_and_known_assets():
    ledger = PositionLedger([Position("VTI", Decimal("1"), Decimal("200"), Decimal("200"), Currency.USD, "Vanguard Total", "ETF")])

    known = resolve_metadata(KnownAsset("vti"), ledger=ledger)
    assert (known.name, known.asset_type, known.currency) == ("Vanguard Total", "ETF", Currency.USD)

    unheld = resolve_metadata(KnownAsset("069500"), ledger=ledger, account="ISA")
    assert (unheld.currency, unheld.name, unheld.account) == (Currency.KRW, "069500", "ISA")

    new = resolve_metadata(NewAsset(AssetMetadata(symbol="btc", name="Bitcoin", asset_type="Crypto")))
    assert (new.symbol, new.currency, new.name) == ("BTC", Currency.USD, "Bitcoin")

    explicit = resolve_metadata(NewAsset(AssetMetadata(symbol="123456", currency=Currency.USD)))
    assert explicit.currency == Currency.USD


def test_resolve_metadata_falls_back_to_cached_metadata_for_unheld_symbols():
    cached = AssetMetadata(symbol="SAP", currency=Currency.EUR, name="SAP SE", asset_type="Stock", account="Brokerage")

    exited = resolve_metadata(KnownAsset("sap"), ledger=PositionLedger(), cached=cached)
    assert (exited.currency, exited.name, exited.asset_type, exited.account) == (Currency.EUR, "SAP SE", "Stock", "Brokerage")

    other = resolve_metadata(KnownAsset("069500"), ledger=PositionLedger(), cached=cached)
    assert (other.currency, other.name) == (Currency.KRW, "069500")


# ── Engine ───────────────────────────────────────────────


def test_engine_scenario():
    """Buy, buy, sell, then revert the sell and the second buy."""
    engine = ReconciliationEngine()
    first = txn(BUY, "10", "100", txn_id="1")
    second = txn(BUY, "10", "120", txn_id="2")
    sale = txn(SELL, "5", "150", txn_id="3")

    engine.apply(first)
    assert (engine.ledger.get("X").quantity, engine.ledger.get("X").avg_cost) == (Decimal("10"), Decimal("100"))
    engine.apply(second)
    assert (engine.ledger.get("X").quantity, engine.ledger.get("X").avg_cost) == (Decimal("20"), Decimal("110"))
    result = engine.apply(sale)
    assert result.realized_profit == Decimal("200")
    assert (engine.ledger.get("X").quantity, engine.ledger.get("X").avg_cost) == (Decimal("15"), Decimal("110"))

    engine.revert(sale)
    assert (engine.ledger.get("X").quantity, engine.ledger.get("X").avg_cost) == (Decimal("20"), Decimal("110"))
    engine.revert(second)
    assert (engine.ledger.get("X").quantity, engine.ledger.get("X").avg_cost) == (Decimal("10"), Decimal("100"))


def test_engine_full_exit_and_revert():
    engine = ReconciliationEngine()
    engine.apply(txn(BUY, "10", "80", name="Example", asset_type="Stock"))
    sale = txn(SELL, "10", "50")

    result = engine.apply(sale)
    assert result.removed
    assert result.realized_profit == Decimal("-300")
    assert "X" not in engine.ledger

    reverted = engine.revert(sale)
    assert reverted.created
    position = engine.ledger.get("X")
    assert position.quantity == Decimal("10")
    assert position.avg_cost == Decimal("50")


def test_sell_of_unheld_symbol_warns_and_leaves_ledger():
    engine = ReconciliationEngine()
    with pytest.warns(ReconciliationWarning, match="not held"):
        result = engine.apply(txn(SELL, "1", "10", symbol="GHOST"))
    assert result.warning
    assert len(engine.ledger) == 0


def test_revert_buy_of_unheld_symbol_warns():
    engine = ReconciliationEngine()
    with pytest.warns(ReconciliationWarning):
        result = engine.revert(txn(BUY, "1", "10", symbol="GHOST", txn_id="g1"))
    assert result.after is None
    assert len(engine.ledger) == 0


def test_engine_rejects_invalid_transaction():
    engine = ReconciliationEngine()
    with pytest.raises(ValidationError):
        engine.apply(txn(BUY, "0", "10"))
    assert len(engine.ledger) == 0


def test_edit_replaces_effect():
    """Verify editing a buy's quantity and price re-pools the average cost."""
    engine = ReconciliationEngine()
    old = txn(BUY, "10", "100", txn_id="1")
    engine.apply(old)
    engine.apply(txn(BUY, "10", "120", txn_id="2"))

    engine.edit(old, txn(BUY, "20", "90", txn_id="1"))

    position = engine.ledger.get("X")
    assert position.quantity == Decimal("30")
    assert position.avg_cost == Decimal("100")


def test_edit_can_move_trade_to_another_symbol():
    engine = ReconciliationEngine()
    old = txn(BUY, "5", "10", symbol="AAA", txn_id="1")
    engine.apply(old)

    engine.edit(old, txn(BUY, "5", "10", symbol="BBB", txn_id="1"))

    assert "AAA" not in engine.ledger
    assert engine.ledger.get("BBB").quantity == Decimal("5")


def test_edit_failure_leaves_ledger_untouched(monkeypatch):
    """If the apply step fails after the revert, nothing is committed."""
    engine = ReconciliationEngine()
    old = txn(BUY, "10", "100", txn_id="1")
    engine.apply(old)
    engine.apply(txn(BUY, "10", "120", txn_id="2"))
    before = engine.ledger.snapshot()

    def broken_apply_buy(*args, **kwargs):
        raise RuntimeError("quote feed exploded")

    monkeypatch.setattr(reconciliation, "apply_buy", broken_apply_buy)

    with pytest.raises(PartialReconciliationError, match="quote feed exploded") as excinfo:
        EditCommand(engine, old, txn(BUY, "20", "90", txn_id="1")).execute()

    assert excinfo.value.old_transaction_id == "1"
    assert engine.ledger.snapshot() == before


def test_rebuild_replays_oldest_first_and_keeps_quotes():
    engine = ReconciliationEngine()
    engine.ledger.put(Position("X", Decimal("999"), Decimal("1"), Decimal("140")))
    engine.ledger.put(Position("STALE", Decimal("1"), Decimal("1"), Decimal("1")))

    replay = [txn(BUY, "10", "100"), txn(BUY, "10", "120"), txn(SELL, "5", "150"), txn(SELL, "1", "1", symbol="NOPE")]
    with pytest.warns(ReconciliationWarning):
        warnings = engine.rebuild(replay)

    assert len(warnings) == 1
    assert engine.ledger.symbols() == ["X"]
    position = engine.ledger.get("X")
    assert (position.quantity, position.avg_cost, position.current_price) == (Decimal("15"), Decimal("110"), Decimal("140"))


def test_refresh_quotes_updates_only_held_symbols():
    engine = ReconciliationEngine()
    engine.apply(txn(BUY, "1", "100", symbol="AAPL"))
    updated = engine.refresh_quotes({"aapl": Decimal("190"), "MSFT": Decimal("400")})
    assert updated == ["AAPL"]
    assert engine.ledger.get("AAPL").current_price == Decimal("190")
    assert "MSFT" not in engine.ledger


def test_symbol_locks_serialize_read_modify_write():
    """Two coroutines updating one symbol under locked() never lose an update."""
    engine = ReconciliationEngine()
    engine.apply(txn(BUY, "1", "100"))

    async def bump(quantity):
        async with engine.locked("x"):
            position = engine.ledger.get("X").copy()
            await asyncio.sleep(0)
            position.quantity += Decimal(quantity)
            engine.ledger.put(position)

    async def main():
        await asyncio.gather(bump("1"), bump("2"), bump("3"))

    asyncio.run(main())
    assert engine.ledger.get("X").quantity == Decimal("7")
    assert engine.symbol_lock("x") is engine.symbol_lock("X")
