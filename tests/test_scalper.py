"""
Scalper tests: the fresh-listing candidate filter, entry selection and
the peak-tracking trailing exit.
"""

import pytest

from conftest import FakeExecutionClient, make_position, make_token
from database.models import ExitReason, PositionStatus, Strategy, TokenSecurities
from database.store import JsonDocumentStore, PositionStore, TradeLog
from execution.base import FeedMessage
from trader.scalper import Scalper, is_scalp_candidate


async def _scalper(settings, client):
    scalper = Scalper(settings, client)
    await scalper.sessions.start()
    return scalper


def _scalp_position(settings, **kwargs):
    store = PositionStore(settings.scalp_positions_path)
    store.add(make_position(position_id="scalp-1", strategy=Strategy.SCALP, held_seconds=5, **kwargs))
    return store


class TestCandidateFilter:

    def test_fresh_active_token_qualifies(self, settings):
        assert is_scalp_candidate(make_token(age_seconds=60, tx_count=10, bonding_curve=5, market_cap=800), settings)

    @pytest.mark.parametrize("overrides", [
        {"age_seconds": 150},
        {"tx_count": 4},
        {"bonding_curve": 2},
        {"market_cap": 400},
        {"price": 0},
        {"securities": TokenSecurities(freeze_ability=True)},
        {"prev_price": 0.00012, "price": 0.0001},
    ])
    def test_rejections(self, settings, overrides):
        assert not is_scalp_candidate(make_token(**overrides), settings)

    def test_token_2022_rejected(self, settings):
        token = make_token()
        token.is_token_2022 = True
        assert not is_scalp_candidate(token, settings)


class TestEntry:

    @pytest.mark.asyncio
    async def test_buys_most_active_candidate(self, settings):
        JsonDocumentStore(settings.watchlist_path, "tokens").write([
            make_token(address="Quiet1", symbol="QUIET", tx_count=8).to_dict(),
            make_token(address="Busy1", symbol="BUSY", tx_count=90).to_dict(),
        ])
        client = FakeExecutionClient()
        scalper = await _scalper(settings, client)

        position = await scalper.check_entry()

        assert position.address == "Busy1"
        assert position.peak_price == position.entry_price
        assert [a for a, _ in client.buys] == ["Busy1"]
        assert scalper.rails.in_cooldown("Busy1")

    @pytest.mark.asyncio
    async def test_capacity_blocks_entry(self, settings):
        store = PositionStore(settings.scalp_positions_path)
        for i in range(3):
            store.add(make_position(position_id=f"scalp-{i}", strategy=Strategy.SCALP, address=f"S{i}", symbol=f"S{i}"))
        JsonDocumentStore(settings.watchlist_path, "tokens").write([make_token(address="Busy1").to_dict()])
        client = FakeExecutionClient()
        scalper = await _scalper(settings, client)

        assert await scalper.check_entry() is None
        assert client.buys == []

    @pytest.mark.asyncio
    async def test_swing_holding_blocks_entry(self, settings):
        PositionStore(settings.swing_positions_path).add(make_position(address="Busy1", symbol="BUSY"))
        JsonDocumentStore(settings.watchlist_path, "tokens").write([make_token(address="Busy1", symbol="BUSY").to_dict()])
        client = FakeExecutionClient()
        scalper = await _scalper(settings, client)

        assert await scalper.check_entry() is None


class TestExits:

    @pytest.mark.asyncio
    async def test_trailing_exit_through_the_feed(self, settings):
        store = _scalp_position(settings)
        client = FakeExecutionClient()
        scalper = await _scalper(settings, client)

        await scalper.on_feed_message(FeedMessage(price_updates=[{"address": "Mint111", "priceUsd": 1.05}]))
        assert store.get("scalp-1").peak_price == 1.05
        assert client.sells == []

        await scalper.on_feed_message(FeedMessage(price_updates=[{"address": "Mint111", "priceUsd": 1.029}]))

        record = store.get("scalp-1")
        assert record.status == PositionStatus.CLOSED
        assert record.exit_reason == ExitReason.TAKE_PROFIT
        [entry] = TradeLog(settings.trade_log_path).entries()
        assert entry.strategy == Strategy.SCALP
        assert entry.pnl_pct == pytest.approx(2.9)

    @pytest.mark.asyncio
    async def test_poll_stop_loss(self, settings):
        store = _scalp_position(settings)
        client = FakeExecutionClient(prices={"Mint111": 0.96})
        scalper = await _scalper(settings, client)

        await scalper.check_exits()

        assert store.get("scalp-1").exit_reason == ExitReason.STOP_LOSS

    @pytest.mark.asyncio
    async def test_poll_time_expiry_with_stale_price(self, settings):
        store = PositionStore(settings.scalp_positions_path)
        store.add(make_position(position_id="scalp-1", strategy=Strategy.SCALP, held_seconds=45, current_price=1.01))
        client = FakeExecutionClient()
        scalper = await _scalper(settings, client)

        await scalper.check_exits()

        record = store.get("scalp-1")
        assert record.exit_reason == ExitReason.TIME_EXPIRY
        assert record.exit_price == 1.01
