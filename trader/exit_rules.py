"""
Exit Rules
==========
Pure exit decisions for both strategies. No I/O and no clock reads:
the caller passes the price and the current time, so replaying the same
price ticks against the same position always gives the same decisions.

Swing ("de-risk, then ride"), evaluated in this order:
- held >= SWING_MAX_HOLD_SECONDS      -> close, time_expiry (any P&L)
- stage 0 and P&L >= +25%             -> sell 1/3, stage 1
- stage 1 and P&L >= +50%             -> sell 1/3, stage 2
- stage 2 and P&L >= +100%            -> close the rest, take_profit
- P&L <= stop for the current stage   -> close the rest, stop_loss

The stop ratchets with the stage: -5% at stage 0, breakeven (0%) at
stage 1, +15% at stage 2. It is a function of the stage alone.

Scalp, evaluated in this order:
- P&L >= +10%                                      -> take_profit
- P&L <= -3%                                       -> stop_loss
- peak gain >= +3% and price >= 2% below the peak  -> take_profit (trailing)
- held >= 30 s                                     -> time_expiry
"""

from dataclasses import dataclass
from datetime import datetime

from config.settings import Settings
from database.models import ExitReason, Position
from utils.clock import seconds_since

# Percent thresholds are compared with a small tolerance so that prices
# sitting exactly on a level (1.25 -> +25%) trigger despite float rounding.
EPSILON = 1e-9


@dataclass(frozen=True)
class ExitDecision:
    reason: ExitReason
    pnl_pct: float
    new_stage: int | None = None      # set for a partial exit
    stop_pct: float | None = None     # stop level in force when decided
    note: str = ""

    @property
    def is_partial(self) -> bool:
        return self.new_stage is not None


def pnl_pct(entry_price: float, price: float) -> float:
    if entry_price <= 0:
        return 0.0
    return (price - entry_price) / entry_price * 100


def effective_stop_loss(stage: int, settings: Settings) -> float:
    stops = settings.swing_stop_loss_pcts
    return stops[max(0, min(stage, len(stops) - 1))]


def evaluate_swing(position: Position, price: float, now: datetime, settings: Settings) -> ExitDecision | None:
    """Next swing transition for this price, or None to keep holding."""
    stage = position.exit_stage
    stop = effective_stop_loss(stage, settings)
    pnl = pnl_pct(position.entry_price, price)

    held = seconds_since(position.entry_time, now)
    if held is not None and held >= settings.swing_max_hold_seconds:
        return ExitDecision(ExitReason.TIME_EXPIRY, pnl, stop_pct=stop, note=f"held {held / 60:.0f}min")

    partials = settings.swing_partial_tp_pcts
    if stage < len(partials) and pnl >= partials[stage] - EPSILON:
        return ExitDecision(
            ExitReason.TAKE_PROFIT, pnl,
            new_stage=stage + 1, stop_pct=stop,
            note=f"+{partials[stage]:g}% partial",
        )
    if stage >= len(partials) and pnl >= settings.swing_final_tp_pct - EPSILON:
        return ExitDecision(ExitReason.TAKE_PROFIT, pnl, stop_pct=stop, note=f"+{settings.swing_final_tp_pct:g}% final")
    if pnl <= stop + EPSILON:
        return ExitDecision(ExitReason.STOP_LOSS, pnl, stop_pct=stop, note=f"stop {stop:g}% at stage {stage}")

    return None


def next_peak(position: Position, price: float) -> float:
    """Peak only moves up. Without a recorded peak the entry price is the floor."""
    peak = position.peak_price if position.peak_price is not None else position.entry_price
    return max(peak, price)


def evaluate_scalp(position: Position, price: float, now: datetime, settings: Settings) -> ExitDecision | None:
    """Scalp exit for this price, or None to keep holding."""
    stop = settings.scalp_stop_loss_pct
    pnl = pnl_pct(position.entry_price, price)

    if pnl >= settings.scalp_take_profit_pct - EPSILON:
        return ExitDecision(ExitReason.TAKE_PROFIT, pnl, stop_pct=stop, note="target")
    if pnl <= stop + EPSILON:
        return ExitDecision(ExitReason.STOP_LOSS, pnl, stop_pct=stop, note="stop")

    peak = next_peak(position, price)
    peak_gain = pnl_pct(position.entry_price, peak)
    if peak_gain >= settings.scalp_trail_activate_pct - EPSILON:
        drop_from_peak = (peak - price) / peak * 100
        if drop_from_peak >= settings.scalp_trail_drop_pct - EPSILON:
            return ExitDecision(
                ExitReason.TAKE_PROFIT, pnl, stop_pct=stop,
                note=f"trailing: peak +{peak_gain:.1f}%, -{drop_from_peak:.1f}% off peak",
            )

    held = seconds_since(position.entry_time, now)
    if held is not None and held >= settings.scalp_max_hold_seconds:
        return ExitDecision(ExitReason.TIME_EXPIRY, pnl, stop_pct=stop, note=f"held {held:.0f}s")

    return None
