"""
Risk Manager
============
Agent 5: runs the staged exit state machine on open swing positions.

States: stage 0 -> 1 -> 2 -> closed, or straight to closed from any
stage on stop-loss or time-expiry. The decision itself lives in
exit_rules.evaluate_swing(); this agent feeds it prices from two paths:
- the push feed, on every price update for a held token
- a RISK_INTERVAL poll (8 s) that quotes every open position

Both paths share one ExitExecutor, whose in-flight set keeps the two
from selling the same position twice.

Prices seen on either path are written back to the positions file
(current_price only, open records only) so the dashboard shows live
unrealized P&L.
"""

import asyncio

from agent.runtime import TradingAgent
from config.settings import Settings
from database.models import ExitReason, Position
from database.store import PositionStore, TradeLog
from discovery.scanner import raw_price
from execution.base import ExecutionClient, FeedMessage
from trader.exit_executor import ExitExecutor
from trader.exit_rules import effective_stop_loss, evaluate_swing, pnl_pct
from utils.clock import utc_now
from utils.logger import get_logger

logger = get_logger(__name__)


class RiskManager(TradingAgent):
    """
    Usage:
        risk = RiskManager(settings, client)
        await run_agent(risk)
    """

    name = "risk"
    uses_feed = True

    def __init__(self, settings: Settings, client: ExecutionClient):
        super().__init__(settings, settings.risk_interval, client)
        self.positions = PositionStore(settings.swing_positions_path)
        self.trade_log = TradeLog(settings.trade_log_path)
        self.exits = ExitExecutor(settings, client, self.sessions, self.positions, self.trade_log)

    # =========================================================================
    # Poll path
    # =========================================================================

    async def tick(self) -> None:
        open_positions = self.positions.open_positions()
        if not open_positions:
            return

        logger.debug("risk_poll", open=len(open_positions))
        prices: dict[str, float] = {}

        for position in open_positions:
            if self.exits.is_closing(position.id):
                continue
            try:
                price = await self.client.quote(position.address, self.settings.chain_id)
                await self.check_position(position, price, prices)
            except Exception as e:
                logger.error("risk_position_check_error", token=position.symbol, error=str(e))

        if prices:
            self.positions.refresh_prices(prices)

    async def check_position(self, position: Position, price: float | None, prices: dict[str, float]) -> None:
        """Evaluate one position at one price and act on the decision."""
        now = utc_now()

        if price is None or price <= 0:
            # Without a quote only the clock can still force an exit
            decision = evaluate_swing(position, position.current_price, now, self.settings)
            if decision is None or decision.reason != ExitReason.TIME_EXPIRY:
                logger.info("risk_price_unavailable", token=position.symbol)
                return
            price = position.current_price
        else:
            prices[position.id] = price
            decision = evaluate_swing(position, price, now, self.settings)

        logger.debug(
            "risk_position",
            token=position.symbol,
            pnl=f"{pnl_pct(position.entry_price, price):+.1f}%",
            stage=position.exit_stage,
            stop=f"{effective_stop_loss(position.exit_stage, self.settings):g}%",
        )
        if decision is None:
            return

        logger.info(
            "swing_exit_triggered",
            token=position.symbol,
            reason=decision.reason.value,
            trigger=decision.note,
            pnl=f"{decision.pnl_pct:+.1f}%",
            path="poll",
        )
        # Persist the prices seen so far before the sell suspends this tick
        if prices:
            self.positions.refresh_prices(prices)
            prices.clear()
        await self.exits.execute(position, price, decision)

    # =========================================================================
    # Push path
    # =========================================================================

    async def on_feed_message(self, message: FeedMessage) -> None:
        if not message.price_updates:
            return
        open_by_address = {p.address: p for p in self.positions.open_positions()}
        if not open_by_address:
            return

        now = utc_now()
        prices: dict[str, float] = {}
        exits = []
        for update in message.price_updates:
            position = open_by_address.get(update.get("address") or "")
            if position is None:
                continue
            price = raw_price(update)
            if price <= 0:
                continue
            prices[position.id] = price
            if self.exits.is_closing(position.id):
                continue
            decision = evaluate_swing(position, price, now, self.settings)
            if decision is not None:
                logger.info(
                    "swing_exit_triggered",
                    token=position.symbol,
                    reason=decision.reason.value,
                    trigger=decision.note,
                    pnl=f"{decision.pnl_pct:+.1f}%",
                    path="feed",
                )
                exits.append(self.exits.execute(position, price, decision))

        if prices:
            self.positions.refresh_prices(prices)
        if exits:
            await asyncio.gather(*exits)
