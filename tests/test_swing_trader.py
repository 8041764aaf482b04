"""
Swing trader tests: entry rails (capacity, held tokens, cooldown,
momentum, drift) and the position it records.
"""

import pytest

from conftest import FakeExecutionClient, make_position, make_token
from analyzer.token_scorer import score_token
from database.models import PositionStatus, Strategy
from database.store import JsonDocumentStore, PositionStore
from execution.base import TradeResult
from trader.safety_rails import entry_drift_pct, momentum_rejection
from trader.swing_trader import SwingTrader


def _write_scores(settings, *tokens, score=80):
    scores = []
    for token in tokens:
        s = score_token(token)
        s.score = score
        scores.append(s.to_dict())
    JsonDocumentStore(settings.scores_path, "scores").write(scores)


async def _trader(settings, client):
    trader = SwingTrader(settings, client)
    await trader.sessions.start()
    return trader


def _fill_swing(settings, count):
    store = PositionStore(settings.swing_positions_path)
    for i in range(count):
        store.add(make_position(position_id=f"swing-{i}", address=f"Held{i}", symbol=f"HELD{i}"))


class TestCapacity:

    @pytest.mark.asyncio
    async def test_buys_with_four_open(self, settings):
        _fill_swing(settings, 4)
        _write_scores(settings, make_token(address="New1", symbol="NEW"))
        client = FakeExecutionClient(prices={"New1": 0.0001})
        trader = await _trader(settings, client)

        await trader.tick()

        assert client.buys == [("New1", 5_000_000)]
        opened = [p for p in trader.positions.open_positions() if p.address == "New1"]
        assert len(opened) == 1
        assert opened[0].strategy == Strategy.SWING
        assert opened[0].exit_stage == 0
        assert opened[0].amount_remaining == opened[0].amount_total
        assert opened[0].score == 80

    @pytest.mark.asyncio
    async def test_score_just_above_threshold_buys(self, settings):
        _fill_swing(settings, 4)
        _write_scores(settings, make_token(address="New1", symbol="NEW"), score=61)
        client = FakeExecutionClient(prices={"New1": 0.0001})
        trader = await _trader(settings, client)

        await trader.tick()

        assert client.buys == [("New1", 5_000_000)]
        assert len(trader.positions.open_positions()) == 5

    @pytest.mark.asyncio
    async def test_no_buy_with_five_open(self, settings):
        _fill_swing(settings, 5)
        _write_scores(settings, make_token(address="New1", symbol="NEW"))
        client = FakeExecutionClient(prices={"New1": 0.0001})
        trader = await _trader(settings, client)

        await trader.tick()

        assert client.buys == []
        assert len(trader.positions.open_positions()) == 5


class TestCandidateSelection:

    @pytest.mark.asyncio
    async def test_threshold_is_strict(self, settings):
        _write_scores(settings, make_token(address="New1"), score=60)
        client = FakeExecutionClient(prices={"New1": 0.0001})
        trader = await _trader(settings, client)
        await trader.tick()
        assert client.buys == []

    @pytest.mark.asyncio
    async def test_symbol_held_by_scalper_is_skipped(self, settings):
        PositionStore(settings.scalp_positions_path).add(
            make_position(position_id="scalp-1", strategy=Strategy.SCALP, address="OtherMint", symbol="pepe")
        )
        _write_scores(settings, make_token(address="New1", symbol="PEPE"))
        client = FakeExecutionClient(prices={"New1": 0.0001})
        trader = await _trader(settings, client)

        await trader.tick()
        assert client.buys == []

    @pytest.mark.asyncio
    async def test_cooldown_after_failed_buy(self, settings):
        _write_scores(settings, make_token(address="New1"))
        client = FakeExecutionClient(prices={"New1": 0.0001})
        client.buy_results = [TradeResult.rejected("insufficient balance")]
        trader = await _trader(settings, client)

        await trader.tick()
        await trader.tick()

        assert len(client.buys) == 1
        assert trader.positions.all() == []

    @pytest.mark.asyncio
    async def test_best_score_wins(self, settings):
        low = score_token(make_token(address="Low1", symbol="LOW"))
        low.score = 70
        high = score_token(make_token(address="High1", symbol="HIGH"))
        high.score = 95
        JsonDocumentStore(settings.scores_path, "scores").write([low.to_dict(), high.to_dict()])
        client = FakeExecutionClient(prices={"Low1": 0.0001, "High1": 0.0001})
        trader = await _trader(settings, client)

        await trader.tick()
        assert [address for address, _ in client.buys] == ["High1"]


class TestEntryDrift:

    @pytest.mark.asyncio
    async def test_live_price_down_10pct_aborts(self, settings):
        _write_scores(settings, make_token(address="New1", price=0.0001))
        client = FakeExecutionClient(prices={"New1": 0.00009})
        trader = await _trader(settings, client)

        await trader.tick()

        assert client.buys == []
        assert trader.rails.in_cooldown("New1")

    @pytest.mark.asyncio
    async def test_entry_uses_live_quote(self, settings):
        _write_scores(settings, make_token(address="New1", price=0.0001))
        client = FakeExecutionClient(prices={"New1": 0.000102})
        trader = await _trader(settings, client)

        position = await trader.buy(trader._load_scores()[0])
        assert position.entry_price == 0.000102
        assert position.status == PositionStatus.OPEN

    def test_drift_math(self):
        assert entry_drift_pct(0.0001, None) is None
        assert round(entry_drift_pct(0.0001, 0.00009), 6) == -10.0


class TestMomentumRail:

    def test_m5_dump_rejected(self, settings):
        assert momentum_rejection(1.0, None, -6, settings).startswith("m5")

    def test_price_below_previous_rejected(self, settings):
        assert momentum_rejection(0.94, 1.0, None, settings) is not None

    def test_mild_dip_allowed(self, settings):
        assert momentum_rejection(0.96, 1.0, -4, settings) is None
