"""
Exit Executor
=============
Turns an ExitDecision into a sell, a committed position record and a
trade-log entry. Shared by the RiskManager (swing) and the Scalper.

Every exit goes through the same verify-then-act sequence:
1. Skip if this process is already closing the position (in-flight set).
   The push feed and the poll loop run interleaved, so both may decide
   to exit the same position within the same second.
2. Re-read the position from disk. Skip if it is gone, already closed,
   or (for a partial) already at or past the target stage.
3. Sell, with the session retry discipline (re-auth once, retry once).
   A failed sell leaves the position open for the next cycle.
4. Commit through compare_and_swap on the version read in step 2.
5. Append the trade-log entry. A completed sell is always logged, even
   when the commit lost a race, because the tokens are already gone.

Realized P&L is proportional to the fraction of the original size sold.
"""

from config.settings import LAMPORTS_PER_SOL, Settings
from database.models import ExitReason, Position, PositionStatus, TradeLogEntry
from database.store import PositionStore, TradeLog
from execution.base import ExecutionClient
from execution.session import SessionProvider
from trader.exit_rules import ExitDecision, pnl_pct
from utils.clock import now_iso
from utils.logger import get_logger

logger = get_logger(__name__)


class ExitExecutor:
    """
    Usage:
        executor = ExitExecutor(settings, client, sessions, store, trade_log)
        decision = evaluate_swing(position, price, now, settings)
        if decision:
            await executor.execute(position, price, decision)
    """

    def __init__(
        self,
        settings: Settings,
        client: ExecutionClient,
        sessions: SessionProvider,
        store: PositionStore,
        trade_log: TradeLog,
    ):
        self.settings = settings
        self.client = client
        self.sessions = sessions
        self.store = store
        self.trade_log = trade_log
        self.in_flight: set[str] = set()

    def is_closing(self, position_id: str) -> bool:
        return position_id in self.in_flight

    async def execute(self, position: Position, price: float, decision: ExitDecision) -> Position | None:
        """
        Run one exit. Returns the committed record, or None when the exit
        was skipped, the sell failed, or the commit lost a race.
        """
        if position.id in self.in_flight:
            return None
        self.in_flight.add(position.id)
        try:
            return await self._execute(position.id, price, decision)
        finally:
            self.in_flight.discard(position.id)

    async def _execute(self, position_id: str, price: float, decision: ExitDecision) -> Position | None:
        fresh = self.store.get(position_id)
        if fresh is None or not fresh.is_open:
            return None
        if decision.is_partial and fresh.exit_stage >= decision.new_stage:
            return None

        if decision.is_partial:
            sell_amount = min(fresh.amount_total // 3, fresh.amount_remaining)
        else:
            sell_amount = fresh.amount_remaining
        if sell_amount <= 0:
            logger.warning("exit_nothing_to_sell", token=fresh.symbol, position=fresh.id)
            return None

        result = await self.sessions.execute(
            lambda session: self.client.sell(session, fresh.address, sell_amount, self.settings.chain_id),
            "sell",
        )
        if not result.success:
            logger.error(
                "SELL_FAILED",
                token=fresh.symbol,
                position=fresh.id,
                reason=decision.reason.value,
                message=result.message,
                note="position stays open for the next cycle",
            )
            return None

        exit_time = now_iso()
        realized_pct = pnl_pct(fresh.entry_price, price)
        fraction = sell_amount / fresh.amount_total if fresh.amount_total > 0 else 1.0
        sol_sold = fresh.sol_spent * fraction

        def mutate(record: Position) -> None:
            record.current_price = price
            record.amount_remaining = max(0, record.amount_remaining - sell_amount)
            if decision.is_partial:
                record.exit_stage = decision.new_stage
                return
            record.status = PositionStatus.CLOSED
            record.exit_price = price
            record.exit_time = exit_time
            record.exit_reason = decision.reason
            record.exit_tx_ref = result.tx_ref

        committed = self.store.compare_and_swap(fresh.id, fresh.version, mutate)
        if committed is None:
            logger.error(
                "position_commit_conflict",
                token=fresh.symbol,
                position=fresh.id,
                expected_version=fresh.version,
                tx=result.tx_ref,
            )

        entry_id = f"{fresh.id}-partial{decision.new_stage}" if decision.is_partial else fresh.id
        self.trade_log.append(TradeLogEntry(
            id=entry_id,
            address=fresh.address,
            name=fresh.name,
            symbol=fresh.symbol,
            strategy=fresh.strategy,
            entry_price=fresh.entry_price,
            exit_price=price,
            entry_time=fresh.entry_time,
            exit_time=exit_time,
            exit_reason=decision.reason,
            fraction=round(fraction, 6),
            sol_spent=sol_sold,
            pnl_sol=sol_sold * realized_pct / 100,
            pnl_pct=realized_pct,
            exit_tx_ref=result.tx_ref,
            stage=decision.new_stage if decision.is_partial else fresh.exit_stage,
            stop_target_pct=decision.stop_pct,
            score=fresh.score,
        ))

        if decision.is_partial:
            logger.info(
                "PARTIAL_EXIT",
                token=fresh.symbol,
                stage=f"{fresh.exit_stage}->{decision.new_stage}",
                pnl=f"{realized_pct:+.1f}%",
                sold_sol=f"{sell_amount / LAMPORTS_PER_SOL:.4f}",
                trigger=decision.note,
                tx=result.tx_ref,
            )
        else:
            log = logger.warning if decision.reason == ExitReason.STOP_LOSS else logger.info
            log(
                "POSITION_CLOSED",
                token=fresh.symbol,
                strategy=fresh.strategy.value,
                reason=decision.reason.value,
                pnl=f"{realized_pct:+.1f}%",
                pnl_sol=f"{sol_sold * realized_pct / 100:+.5f}",
                trigger=decision.note,
                tx=result.tx_ref,
            )
        return committed
