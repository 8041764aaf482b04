"""
Swing Trader
============
Agent 3: buys the best-scored token, one per cycle.

Every TRADER_INTERVAL seconds (10 by default):
1. Copy fresh prices from the scores file into our open positions
2. Stop if we already hold MAX_SWING_POSITIONS (5) open positions
3. Candidates: score above SCORE_THRESHOLD (60), not held by us or the
   scalper (address or symbol), not tried in the last 5 minutes, and
   not already dumping (anti-rug momentum rail)
4. Take the highest score, mark it attempted (starts the cooldown)
5. Re-quote it live. If the price fell more than 5% since scoring, abort
6. Buy with the session retry discipline
7. On success, append an open Position (stage 0, remaining = total)

Exits belong to the RiskManager. This agent only ever writes prices
into existing positions, through a fresh re-read of the store so a
concurrent stage transition is never overwritten.
"""

import uuid

from agent.runtime import TradingAgent
from config.settings import LAMPORTS_PER_SOL, Settings
from database.models import Position, Strategy, TokenScore
from database.store import JsonDocumentStore, PositionStore
from execution.base import ExecutionClient
from trader.safety_rails import SafetyRails, entry_drift_pct, momentum_rejection
from utils.clock import now_iso
from utils.logger import get_logger

logger = get_logger(__name__)


class SwingTrader(TradingAgent):
    """
    Usage:
        trader = SwingTrader(settings, client)
        await run_agent(trader)
    """

    name = "trader"

    def __init__(self, settings: Settings, client: ExecutionClient):
        super().__init__(settings, settings.trader_interval, client)
        self.scores = JsonDocumentStore(settings.scores_path, "scores")
        self.positions = PositionStore(settings.swing_positions_path)
        self.rails = SafetyRails(
            settings,
            own_store=self.positions,
            other_store=PositionStore(settings.scalp_positions_path),
            cooldown_seconds=settings.swing_retry_cooldown,
            max_open=settings.max_swing_positions,
        )

    def _load_scores(self) -> list[TokenScore]:
        scores = []
        for item in self.scores.read():
            try:
                scores.append(TokenScore.from_dict(item))
            except (TypeError, ValueError) as e:
                logger.warning("score_entry_skipped", error=str(e))
        return scores

    async def tick(self) -> None:
        scores = self._load_scores()
        if not scores:
            return

        self.refresh_position_prices(scores)

        if self.rails.at_capacity():
            logger.info("trader_max_positions", max=self.settings.max_swing_positions)
            return

        candidates = self.select_candidates(scores)
        if not candidates:
            return

        await self.buy(candidates[0])

    def refresh_position_prices(self, scores: list[TokenScore]) -> None:
        by_address = {s.address: s.current_price for s in scores if s.current_price > 0}
        prices = {
            p.id: by_address[p.address]
            for p in self.positions.open_positions()
            if p.address in by_address and by_address[p.address] != p.current_price
        }
        if prices:
            self.positions.refresh_prices(prices)

    def select_candidates(self, scores: list[TokenScore]) -> list[TokenScore]:
        """Eligible scores, best first."""
        held = self.rails.held_tokens()
        candidates = []
        for score in scores:
            if score.score <= self.settings.score_threshold:
                continue
            if held.holds(score.address, score.symbol):
                continue
            if self.rails.in_cooldown(score.address):
                continue
            m5 = score.price_changes.m5 if score.price_changes else None
            rejection = momentum_rejection(score.current_price, score.prev_price, m5, self.settings)
            if rejection:
                logger.info("trader_skip", token=score.symbol, reason=rejection)
                continue
            candidates.append(score)
        candidates.sort(key=lambda s: s.score, reverse=True)
        return candidates

    async def buy(self, target: TokenScore) -> Position | None:
        logger.info(
            "BUY_SIGNAL",
            token=target.symbol,
            address=target.address[:8],
            score=target.score,
            price=f"${target.current_price:.10g}",
        )
        self.rails.mark_attempt(target.address)

        entry_price = target.current_price
        try:
            live_price = await self.client.quote(target.address, self.settings.chain_id)
        except Exception as e:
            logger.warning("pre_buy_quote_failed", token=target.symbol, error=str(e))
            live_price = None
        drift = entry_drift_pct(target.current_price, live_price)
        if drift is not None:
            if drift < self.settings.max_entry_drift_pct:
                logger.warning(
                    "BUY_ABORTED",
                    token=target.symbol,
                    drift=f"{drift:.1f}%",
                    scored_price=target.current_price,
                    live_price=live_price,
                )
                return None
            entry_price = live_price

        amount = int(self.settings.swing_buy_amount_sol * LAMPORTS_PER_SOL)
        result = await self.sessions.execute(
            lambda session: self.client.buy(session, target.address, amount, self.settings.chain_id),
            "buy",
        )
        if not result.success:
            logger.error("BUY_FAILED", token=target.symbol, message=result.message, retryable=result.retryable)
            return None

        position = Position(
            id=f"swing-{uuid.uuid4().hex[:12]}",
            strategy=Strategy.SWING,
            address=target.address,
            name=target.name,
            symbol=target.symbol,
            entry_price=entry_price,
            current_price=entry_price,
            entry_time=now_iso(),
            amount_total=amount,
            amount_remaining=amount,
            sol_spent=self.settings.swing_buy_amount_sol,
            exit_stage=0,
            tx_ref=result.tx_ref,
            score=target.score,
        )
        self.positions.add(position)
        logger.info(
            "BOUGHT",
            token=target.symbol,
            spent=f"{self.settings.swing_buy_amount_sol} SOL",
            entry=f"${entry_price:.10g}",
            tx=result.tx_ref,
        )
        return position
