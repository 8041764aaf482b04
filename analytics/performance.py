"""
Performance Analytics
=====================
Agent 6: turns closed trades into statistics and strategy signals.

Every ANALYTICS_INTERVAL seconds (30 by default) everything is
recomputed from scratch, never patched incrementally, from:
- the trade log (one entry per partial or full exit, both strategies)
- both position stores (only for the ghost-position integrity check)

What comes out:
- win rate / average P&L / net SOL overall, for swing and for scalp
- the same stats bucketed by exit reason, score band, hold time, UTC
  entry hour and a qualitative tag per trade
- stop-loss overshoot: how far past its stop level a stop-loss exit
  actually filled (slippage and latency)
- rolling last-10 / last-30 windows, expectancy and payoff ratio
- plain-text signals when something needs a human look

A trade is a win when its P&L is strictly positive.

Writes analytics.json (machine-readable) and strategy-report.txt.
With no trades yet nothing is written.
"""

from datetime import timezone
from statistics import mean, median
from typing import Any

from agent.runtime import Agent
from config.settings import Settings
from database.models import ExitReason, Position, Strategy, TradeLogEntry
from database.store import JsonDocumentStore, PositionStore, TradeLog, write_text_atomic
from utils.clock import now_iso, parse_iso
from utils.logger import get_logger

logger = get_logger(__name__)

SCORE_BANDS = ["90-100", "80-89", "70-79", "60-69", "<60"]
HOLD_BANDS = ["<10s", "10-30s", "30s-1m", "1-5m", "5-20m", ">20m"]

OVERSHOOT_FLAG_PCT = -5
COLD_STREAK_WIN_RATE = 25
SL_OVERSHOOT_AVG_PCT = -20
LOW_PAYOFF_RATIO = 1.5
INSTANT_RUG_COUNT = 3
SCALP_MIN_TRADES = 5
SCALP_MIN_WIN_RATE = 20
SCORE_BAND_MIN_TRADES = 3
SCORE_BAND_MAX_LOSS_SOL = -0.005


# =============================================================================
# Classification
# =============================================================================

def score_band(score: int | None) -> str:
    score = score or 0
    if score >= 90:
        return "90-100"
    if score >= 80:
        return "80-89"
    if score >= 70:
        return "70-79"
    if score >= 60:
        return "60-69"
    return "<60"


def hold_band(seconds: float) -> str:
    if seconds < 10:
        return "<10s"
    if seconds < 30:
        return "10-30s"
    if seconds < 60:
        return "30s-1m"
    if seconds < 300:
        return "1-5m"
    if seconds < 1200:
        return "5-20m"
    return ">20m"


def hold_seconds(entry: TradeLogEntry) -> float:
    entered = parse_iso(entry.entry_time)
    exited = parse_iso(entry.exit_time)
    if entered is None or exited is None:
        return 0.0
    return (exited - entered).total_seconds()


def stop_target(entry: TradeLogEntry, settings: Settings) -> float:
    if entry.stop_target_pct is not None:
        return entry.stop_target_pct
    return settings.default_stop_target_pct


def tag_trade(entry: TradeLogEntry, settings: Settings) -> str:
    """Qualitative label from hold time, exit reason and P&L size."""
    held = hold_seconds(entry)
    if entry.exit_reason == ExitReason.TAKE_PROFIT:
        return "instant_pump" if held < 30 else "clean_tp"
    if entry.exit_reason == ExitReason.TIME_EXPIRY:
        return "timeout"
    if held < 15:
        return "instant_rug" if entry.pnl_pct < -50 else "fast_dump"
    if entry.pnl_pct < -50:
        return "crash"
    if entry.pnl_pct >= stop_target(entry, settings):
        return "clean_stop"
    return "slow_bleed"


# =============================================================================
# Statistics
# =============================================================================

def bucket_stats(entries: list[TradeLogEntry]) -> dict[str, Any]:
    if not entries:
        return {"count": 0, "wins": 0, "losses": 0, "win_rate": 0.0, "avg_pnl_pct": 0.0, "total_pnl_sol": 0.0}
    wins = sum(1 for e in entries if e.pnl_pct > 0)
    return {
        "count": len(entries),
        "wins": wins,
        "losses": len(entries) - wins,
        "win_rate": wins / len(entries) * 100,
        "avg_pnl_pct": mean(e.pnl_pct for e in entries),
        "total_pnl_sol": sum(e.pnl_sol for e in entries),
    }


def rolling_window(entries: list[TradeLogEntry], size: int) -> dict[str, float]:
    window = entries[-size:]
    stats = bucket_stats(window)
    return {"win_rate": stats["win_rate"], "avg_pnl_pct": stats["avg_pnl_pct"], "net_sol": stats["total_pnl_sol"]}


def expectancy(entries: list[TradeLogEntry]) -> dict[str, float]:
    wins = [e.pnl_sol for e in entries if e.pnl_pct > 0]
    losses = [e.pnl_sol for e in entries if e.pnl_pct <= 0]
    win_avg = mean(wins) if wins else 0.0
    loss_avg = abs(mean(losses)) if losses else 0.0
    return {
        "per_trade_sol": mean(e.pnl_sol for e in entries) if entries else 0.0,
        "win_avg_sol": win_avg,
        "loss_avg_sol": loss_avg,
        "payoff_ratio": win_avg / loss_avg if loss_avg > 0 else 0.0,
    }


def stop_overshoot(entries: list[TradeLogEntry], settings: Settings) -> dict[str, Any]:
    stops = [e for e in entries if e.exit_reason == ExitReason.STOP_LOSS]
    overshoots = [e.pnl_pct - stop_target(e, settings) for e in stops]
    return {
        "avg_pct": mean(overshoots) if overshoots else 0.0,
        "median_pct": median(overshoots) if overshoots else 0.0,
        "worst_pct": min(overshoots) if overshoots else 0.0,
        "flag_pct": OVERSHOOT_FLAG_PCT,
        "overshot": sum(1 for o in overshoots if o < OVERSHOOT_FLAG_PCT),
        "total": len(stops),
    }


def group_by(entries: list[TradeLogEntry], key, order: list[str] | None = None) -> dict[str, dict[str, Any]]:
    groups: dict[str, list[TradeLogEntry]] = {label: [] for label in order or []}
    for entry in entries:
        groups.setdefault(key(entry), []).append(entry)
    return {label: bucket_stats(items) for label, items in groups.items()}


def find_ghosts(positions: list[Position]) -> list[Position]:
    """Closed positions with neither an exit reason nor an exit transaction."""
    return [p for p in positions if not p.is_open and not p.exit_reason and not p.exit_tx_ref]


def compute_analytics(
    entries: list[TradeLogEntry],
    positions: list[Position],
    settings: Settings,
    generated_at: str | None = None,
) -> dict[str, Any] | None:
    """Full snapshot from scratch. None when there are no trades."""
    if not entries:
        return None

    swing = [e for e in entries if e.strategy == Strategy.SWING]
    scalp = [e for e in entries if e.strategy == Strategy.SCALP]
    ghosts = find_ghosts(positions)
    tags = {id(e): tag_trade(e, settings) for e in entries}

    def entry_hour(entry: TradeLogEntry) -> str:
        entered = parse_iso(entry.entry_time)
        return f"{entered.astimezone(timezone.utc).hour:02d}:00" if entered else "unknown"

    by_hour = group_by(entries, entry_hour)
    snapshot: dict[str, Any] = {
        "generated_at": generated_at or now_iso(),
        "total_trades": len(entries),
        "swing_trades": len(swing),
        "scalp_trades": len(scalp),
        "ghost_positions": len(ghosts),
        "overall": bucket_stats(entries),
        "swing": bucket_stats(swing),
        "scalp": bucket_stats(scalp),
        "by_exit_reason": group_by(entries, lambda e: e.exit_reason.value, [r.value for r in ExitReason]),
        "by_score_band": group_by(entries, lambda e: score_band(e.score), SCORE_BANDS),
        "by_hold_time": group_by(entries, lambda e: hold_band(hold_seconds(e)), HOLD_BANDS),
        "by_hour": dict(sorted(by_hour.items())),
        "by_tag": group_by(entries, lambda e: tags[id(e)]),
        "sl_overshoot": stop_overshoot(entries, settings),
        "rolling10": rolling_window(entries, 10),
        "rolling30": rolling_window(entries, 30),
        "expectancy": expectancy(entries),
        "tagged_trades": [
            {
                "id": e.id,
                "symbol": e.symbol,
                "strategy": e.strategy.value,
                "exit_reason": e.exit_reason.value,
                "pnl_pct": e.pnl_pct,
                "pnl_sol": e.pnl_sol,
                "hold_seconds": hold_seconds(e),
                "tag": tags[id(e)],
                "score": e.score,
                "sl_overshoot": e.pnl_pct - stop_target(e, settings)
                if e.exit_reason == ExitReason.STOP_LOSS else 0.0,
            }
            for e in entries
        ],
    }
    snapshot["signals"] = build_signals(snapshot, ghosts)
    return snapshot


def build_signals(snapshot: dict[str, Any], ghosts: list[Position]) -> list[str]:
    signals = []

    rolling10 = snapshot["rolling10"]
    if rolling10["win_rate"] < COLD_STREAK_WIN_RATE:
        signals.append(
            f"COLD_STREAK: last 10 win rate {rolling10['win_rate']:.0f}%, consider pausing or tightening filters"
        )

    overshoot = snapshot["sl_overshoot"]
    if overshoot["avg_pct"] < SL_OVERSHOOT_AVG_PCT:
        signals.append(
            f"SL_OVERSHOOT: stops fill {abs(overshoot['avg_pct']):.0f}% past target on average, "
            "price falls faster than the exit"
        )

    payoff = snapshot["expectancy"]["payoff_ratio"]
    if payoff < LOW_PAYOFF_RATIO:
        signals.append(f"LOW_PAYOFF: win/loss ratio {payoff:.2f}x, wins too small to cover losses")

    rugs = sum(1 for t in snapshot["tagged_trades"] if t["tag"] == "instant_rug")
    if rugs >= INSTANT_RUG_COUNT:
        signals.append(f"INSTANT_RUGS: {rugs} trades lost >50% within 15s, entries are landing mid-crash")

    if ghosts:
        symbols = ", ".join(p.symbol for p in ghosts)
        signals.append(
            f"GHOST_POSITIONS: {len(ghosts)} positions closed without an exit record ({symbols}), "
            "tokens may still be in the wallet"
        )

    scalp = snapshot["scalp"]
    if scalp["count"] >= SCALP_MIN_TRADES and scalp["win_rate"] < SCALP_MIN_WIN_RATE:
        signals.append(f"SCALP_UNDERPERFORM: scalp win rate {scalp['win_rate']:.0f}%, consider pausing the scalper")

    for band, stats in snapshot["by_score_band"].items():
        if stats["count"] >= SCORE_BAND_MIN_TRADES and stats["total_pnl_sol"] < SCORE_BAND_MAX_LOSS_SOL:
            signals.append(
                f"SCORE_{band}_LOSING: {stats['count']} trades, net {stats['total_pnl_sol']:.4f} SOL, "
                "consider raising the threshold past this band"
            )

    return signals


# =============================================================================
# Report
# =============================================================================

def _signed(value: float, digits: int) -> str:
    return f"{value:+.{digits}f}"


def render_report(snapshot: dict[str, Any]) -> str:
    hr = "-" * 60
    overall = snapshot["overall"]
    exp = snapshot["expectancy"]
    sl = snapshot["sl_overshoot"]
    lines = [
        f"PUMP.FUN ALPHA HUNTER STRATEGY REPORT  {snapshot['generated_at']}",
        hr,
        "",
        "OVERALL",
        f"  Trades: {snapshot['total_trades']} ({snapshot['swing_trades']} swing, {snapshot['scalp_trades']} scalp)",
        f"  Win rate: {overall['win_rate']:.1f}% ({overall['wins']}W / {overall['losses']}L)",
        f"  Net P&L: {_signed(overall['total_pnl_sol'], 4)} SOL",
        f"  Avg P&L per trade: {_signed(overall['avg_pnl_pct'], 1)}%",
        f"  Ghost positions: {snapshot['ghost_positions']}",
        "",
        "EXPECTANCY",
        f"  Per trade: {_signed(exp['per_trade_sol'], 5)} SOL",
        f"  Avg win: +{exp['win_avg_sol']:.5f} SOL",
        f"  Avg loss: -{exp['loss_avg_sol']:.5f} SOL",
        f"  Payoff ratio: {exp['payoff_ratio']:.2f}x",
        "",
        "SL OVERSHOOT",
        f"  Avg: {sl['avg_pct']:.1f}% past target",
        f"  Median: {sl['median_pct']:.1f}%",
        f"  Worst: {sl['worst_pct']:.1f}%",
        f"  Beyond {abs(sl['flag_pct'])}%: {sl['overshot']}/{sl['total']} stop-loss exits",
        "",
        "ROLLING PERFORMANCE",
    ]
    for label in ("rolling10", "rolling30"):
        r = snapshot[label]
        lines.append(
            f"  Last {label[7:]}: {r['win_rate']:.0f}% WR, avg {r['avg_pnl_pct']:.1f}%, "
            f"net {_signed(r['net_sol'], 4)} SOL"
        )

    sections = [
        ("BY EXIT REASON", "by_exit_reason"),
        ("BY SCORE BAND", "by_score_band"),
        ("BY HOLD TIME", "by_hold_time"),
        ("BY TRADE TAG", "by_tag"),
        ("BY HOUR (UTC)", "by_hour"),
    ]
    for title, key in sections:
        lines += ["", title]
        for label, stats in snapshot[key].items():
            if stats["count"] == 0:
                continue
            lines.append(
                f"  {label}: {stats['count']} trades, {stats['win_rate']:.0f}% WR, "
                f"avg {stats['avg_pnl_pct']:.1f}%, net {stats['total_pnl_sol']:.4f} SOL"
            )

    if snapshot["signals"]:
        lines += ["", "STRATEGY SIGNALS"]
        lines += [f"  ! {signal}" for signal in snapshot["signals"]]

    lines += ["", hr]
    return "\n".join(lines) + "\n"


# =============================================================================
# Agent
# =============================================================================

class AnalyticsAgent(Agent):
    """
    Usage:
        analytics = AnalyticsAgent(settings)
        await run_agent(analytics)
    """

    name = "analytics"

    def __init__(self, settings: Settings):
        super().__init__(settings, settings.analytics_interval)
        self.trade_log = TradeLog(settings.trade_log_path)
        self.swing_positions = PositionStore(settings.swing_positions_path)
        self.scalp_positions = PositionStore(settings.scalp_positions_path)
        self.snapshot = JsonDocumentStore(settings.analytics_path, "analytics")

    async def tick(self) -> None:
        positions = self.swing_positions.all() + self.scalp_positions.all()
        snapshot = compute_analytics(self.trade_log.entries(), positions, self.settings)
        if snapshot is None:
            logger.info("analytics_no_trades_yet")
            return

        self.snapshot.write_document({"analytics": snapshot})
        write_text_atomic(self.settings.report_path, render_report(snapshot))

        overall = snapshot["overall"]
        logger.info(
            "analytics_updated",
            trades=overall["count"],
            win_rate=f"{overall['win_rate']:.0f}%",
            net=f"{overall['total_pnl_sol']:+.4f} SOL",
            rolling10=f"{snapshot['rolling10']['win_rate']:.0f}%",
            signals=len(snapshot["signals"]),
        )
        for signal in snapshot["signals"]:
            logger.warning("strategy_signal", signal=signal)

