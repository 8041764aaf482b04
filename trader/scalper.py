"""
Scalper
=======
Agent 4: quick in-and-out trades on listings under 2 minutes old.

Reads the watchlist directly (not the scores) and runs its own exits.

Entry, every SCALP_INTERVAL seconds (5 by default), after the exit pass:
- at most MAX_SCALP_POSITIONS (3) open scalps
- candidate filter: no mint/freeze authority, not Token-2022, 0-2 min
  since first seen, 5+ transactions, bonding curve 3%+, market cap
  $500+, a real price, and not down 5%+ since the previous observation
- not held by either strategy, not tried in the last 3 minutes
- the most active candidate (highest tx count) is bought

Exits (exit_rules.evaluate_scalp), on every push price update and on
the poll: +10% take-profit, -3% stop, trailing stop once the peak is +3%
up and the price falls 2% off that peak, and a hard 30 s max hold.
The peak is tracked on every price seen and only ever moves up.
"""

import asyncio
import uuid
from datetime import datetime

from agent.runtime import TradingAgent
from config.settings import LAMPORTS_PER_SOL, Settings
from database.models import Position, Strategy, WatchedToken
from database.store import JsonDocumentStore, PositionStore, TradeLog
from discovery.scanner import raw_price
from execution.base import ExecutionClient, FeedMessage
from trader.exit_executor import ExitExecutor
from trader.exit_rules import evaluate_scalp, next_peak
from trader.safety_rails import SafetyRails, momentum_rejection
from utils.clock import now_iso, seconds_since, utc_now
from utils.logger import get_logger

logger = get_logger(__name__)


def is_scalp_candidate(token: WatchedToken, settings: Settings, now: datetime | None = None) -> bool:
    sec = token.securities
    if sec and (sec.mint_ability or sec.freeze_ability):
        return False
    if token.is_token_2022:
        return False
    age = seconds_since(token.first_seen, now)
    if age is None or age < 0 or age > settings.scalp_max_age_seconds:
        return False
    if token.tx_count < settings.scalp_min_tx_count:
        return False
    if token.bonding_curve_progress < settings.scalp_min_bonding_curve:
        return False
    if token.market_cap < settings.scalp_min_market_cap_usd:
        return False
    if token.price <= 0:
        return False
    return momentum_rejection(token.price, token.prev_price, None, settings) is None


class Scalper(TradingAgent):
    """
    Usage:
        scalper = Scalper(settings, client)
        await run_agent(scalper)
    """

    name = "scalper"
    uses_feed = True

    def __init__(self, settings: Settings, client: ExecutionClient):
        super().__init__(settings, settings.scalp_interval, client)
        self.watchlist = JsonDocumentStore(settings.watchlist_path, "tokens")
        self.positions = PositionStore(settings.scalp_positions_path)
        self.trade_log = TradeLog(settings.trade_log_path)
        self.exits = ExitExecutor(settings, client, self.sessions, self.positions, self.trade_log)
        self.rails = SafetyRails(
            settings,
            own_store=self.positions,
            other_store=PositionStore(settings.swing_positions_path),
            cooldown_seconds=settings.scalp_retry_cooldown,
            max_open=settings.max_scalp_positions,
        )

    async def tick(self) -> None:
        await self.check_exits()
        await self.check_entry()

    # =========================================================================
    # Exits
    # =========================================================================

    async def check_exits(self) -> None:
        for position in self.positions.open_positions():
            if self.exits.is_closing(position.id):
                continue
            try:
                price = await self.client.quote(position.address, self.settings.chain_id)
                if price is None or price <= 0:
                    # Stale price still lets the clock and the known levels act
                    price = position.current_price
                else:
                    self._record_price(position, price)
                await self.evaluate(position, price, path="poll")
            except Exception as e:
                logger.error("scalp_exit_check_error", token=position.symbol, error=str(e))

    def _record_price(self, position: Position, price: float) -> None:
        peak = next_peak(position, price)
        self.positions.refresh_prices({position.id: price}, peaks={position.id: peak})
        position.current_price = price
        position.peak_price = peak

    async def evaluate(self, position: Position, price: float, path: str) -> None:
        decision = evaluate_scalp(position, price, utc_now(), self.settings)
        if decision is None:
            return
        logger.info(
            "scalp_exit_triggered",
            token=position.symbol,
            reason=decision.reason.value,
            trigger=decision.note,
            pnl=f"{decision.pnl_pct:+.1f}%",
            path=path,
        )
        await self.exits.execute(position, price, decision)

    async def on_feed_message(self, message: FeedMessage) -> None:
        if not message.price_updates:
            return
        open_by_address = {p.address: p for p in self.positions.open_positions()}
        if not open_by_address:
            return

        exits = []
        for update in message.price_updates:
            position = open_by_address.get(update.get("address") or "")
            if position is None:
                continue
            price = raw_price(update)
            if price <= 0:
                continue
            self._record_price(position, price)
            if not self.exits.is_closing(position.id):
                exits.append(self.evaluate(position, price, path="feed"))
        if exits:
            await asyncio.gather(*exits)

    # =========================================================================
    # Entries
    # =========================================================================

    def select_candidate(self, tokens: list[WatchedToken]) -> WatchedToken | None:
        held = self.rails.held_tokens()
        now = utc_now()
        candidates = [
            t for t in tokens
            if not held.holds(t.address, t.symbol)
            and not self.rails.in_cooldown(t.address)
            and is_scalp_candidate(t, self.settings, now)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda t: t.tx_count)

    async def check_entry(self) -> Position | None:
        if self.rails.at_capacity():
            return None

        tokens = [WatchedToken.from_dict(item) for item in self.watchlist.read()]
        target = self.select_candidate(tokens)
        if target is None:
            return None

        age = seconds_since(target.first_seen) or 0
        logger.info(
            "SCALP_SIGNAL",
            token=target.symbol,
            address=target.address[:8],
            age=f"{age:.0f}s",
            tx=target.tx_count,
            bc=f"{target.bonding_curve_progress:.0f}%",
            mcap=f"${target.market_cap / 1000:.1f}K",
        )
        self.rails.mark_attempt(target.address)

        amount = int(self.settings.scalp_buy_amount_sol * LAMPORTS_PER_SOL)
        result = await self.sessions.execute(
            lambda session: self.client.buy(session, target.address, amount, self.settings.chain_id),
            "buy",
        )
        if not result.success:
            logger.error("SCALP_BUY_FAILED", token=target.symbol, message=result.message)
            return None

        position = Position(
            id=f"scalp-{uuid.uuid4().hex[:12]}",
            strategy=Strategy.SCALP,
            address=target.address,
            name=target.name,
            symbol=target.symbol,
            entry_price=target.price,
            current_price=target.price,
            peak_price=target.price,
            entry_time=now_iso(),
            amount_total=amount,
            amount_remaining=amount,
            sol_spent=self.settings.scalp_buy_amount_sol,
            tx_ref=result.tx_ref,
        )
        self.positions.add(position)
        logger.info(
            "SCALP_BOUGHT",
            token=target.symbol,
            spent=f"{self.settings.scalp_buy_amount_sol} SOL",
            entry=f"${target.price:.10g}",
            tx=result.tx_ref,
        )
        return position
