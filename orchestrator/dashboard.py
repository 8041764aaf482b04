"""
Terminal Dashboard
==================
The orchestrator's live view of every shared file.

Every RENDER_INTERVAL seconds (10 by default, first render 5 s after the
agents are up) all store files are re-read and drawn with rich:

    header      wallet, balance, mode, which agents are alive
    stats bar   watchlist / scored / open / closed / win rate / net SOL
    watchlist   most active tokens (by tx count)
    scores      best scores with the reasoning behind them
    swing       open swing positions with unrealized P&L and stop level
    scalps      open scalps with their peak
    trades      most recent exits first
    analytics   one-line summary plus up to 3 signals (when there is room)
    agent log   tail of agents.log, takes whatever rows are left

Row counts come from plan_layout(), a pure function of the terminal size
and how many positions are open, so resizing the terminal just changes
the plan at the next render.

The dashboard never writes trading state.
"""

import asyncio
import signal
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from rich import box
from rich.console import Console, Group
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from config.settings import Settings
from database.models import Position, TokenScore, TradeLogEntry, WatchedToken
from database.store import JsonDocumentStore, PositionStore, TradeLog
from orchestrator.supervisor import AgentLogTail, AgentSupervisor
from trader.exit_rules import effective_stop_loss, pnl_pct
from utils.clock import parse_iso, seconds_since
from utils.logger import get_logger

logger = get_logger(__name__)

MIN_WIDTH = 80
MAX_WIDTH = 200

# Panel borders, blank top and bottom edges, header and head separator of a table panel
TABLE_CHROME = 6
# Header and stats panels, five table panels and the log panel borders
CHROME_ROWS = 3 + 3 + 5 * TABLE_CHROME + 2
# Columns needed before names and reasoning are shown
WIDE_LAYOUT = 120

MAX_SIGNALS = 3


# =============================================================================
# Layout planning
# =============================================================================

@dataclass(frozen=True)
class LayoutPlan:
    width: int
    watchlist_rows: int
    score_rows: int
    swing_rows: int
    scalp_rows: int
    trade_rows: int
    log_rows: int
    analytics_rows: int = 0

    @property
    def show_analytics(self) -> bool:
        return self.analytics_rows > 0


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def plan_layout(
    height: int,
    width: int,
    open_swing: int = 0,
    open_scalp: int = 0,
    analytics_rows: int = 0,
) -> LayoutPlan:
    """
    Split the terminal rows between the panels.

    Positions always get one row each (at least one). Analytics is shown
    only if 6+ flexible rows survive it. The flexible rows go 28% to the
    watchlist (max 10), 18% to scores (max 8), 22% to trades (max 8) and
    everything else to the agent log (at least 2).
    """
    width = max(MIN_WIDTH, min(width, MAX_WIDTH))
    swing_rows = max(1, open_swing)
    scalp_rows = max(1, open_scalp)

    available = height - CHROME_ROWS - swing_rows - scalp_rows

    show_analytics = analytics_rows > 0 and available - analytics_rows >= 6
    if show_analytics:
        available -= analytics_rows

    flex = max(4, available)
    watchlist_rows = max(1, min(10, _round_half_up(flex * 0.28)))
    score_rows = max(1, min(8, _round_half_up(flex * 0.18)))
    trade_rows = max(1, min(8, _round_half_up(flex * 0.22)))
    log_rows = max(2, flex - watchlist_rows - score_rows - trade_rows)

    return LayoutPlan(
        width=width,
        watchlist_rows=watchlist_rows,
        score_rows=score_rows,
        swing_rows=swing_rows,
        scalp_rows=scalp_rows,
        trade_rows=trade_rows,
        log_rows=log_rows,
        analytics_rows=analytics_rows if show_analytics else 0,
    )


# =============================================================================
# Formatting helpers
# =============================================================================

def format_duration(seconds: float | None) -> str:
    if seconds is None or seconds < 0:
        return "-"
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m{seconds % 60}s"
    return f"{minutes // 60}h{minutes % 60}m"


def format_price(price: float) -> str:
    if price <= 0:
        return "-"
    return f"${price:.4g}" if price >= 0.01 else f"${price:.3e}"


def format_usd(value: float) -> str:
    if value >= 1_000_000:
        return f"${value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"${value / 1_000:.1f}K"
    return f"${value:.0f}"


def pnl_text(value: float, suffix: str = "%", digits: int = 1) -> Text:
    style = "green" if value > 0 else "red" if value < 0 else "white"
    return Text(f"{value:+.{digits}f}{suffix}", style=style)


def short_address(address: str) -> str:
    if len(address) <= 10:
        return address
    return f"{address[:4]}...{address[-4:]}"


# =============================================================================
# Data snapshot
# =============================================================================

@dataclass
class DashboardData:
    """Everything one frame needs, read from the store in one pass."""

    tokens: list[WatchedToken] = field(default_factory=list)
    scores: list[TokenScore] = field(default_factory=list)
    swing: list[Position] = field(default_factory=list)
    scalps: list[Position] = field(default_factory=list)
    trades: list[TradeLogEntry] = field(default_factory=list)
    balance: dict[str, Any] = field(default_factory=dict)
    analytics: dict[str, Any] | None = None

    @property
    def open_swing(self) -> list[Position]:
        return [p for p in self.swing if p.is_open]

    @property
    def open_scalps(self) -> list[Position]:
        return [p for p in self.scalps if p.is_open]

    def analytics_rows(self) -> int:
        if not self.analytics or not self.analytics.get("total_trades"):
            return 0
        return 2 + min(MAX_SIGNALS, len(self.analytics.get("signals") or []))


def _parse_all(items: list[dict[str, Any]], factory) -> list:
    parsed = []
    for item in items:
        try:
            parsed.append(factory(item))
        except (TypeError, ValueError, KeyError):
            continue
    return parsed


def load_dashboard_data(settings: Settings) -> DashboardData:
    analytics = JsonDocumentStore(settings.analytics_path, "analytics").read_document().get("analytics")
    return DashboardData(
        tokens=_parse_all(JsonDocumentStore(settings.watchlist_path, "tokens").read(), WatchedToken.from_dict),
        scores=_parse_all(JsonDocumentStore(settings.scores_path, "scores").read(), TokenScore.from_dict),
        swing=PositionStore(settings.swing_positions_path).all(),
        scalps=PositionStore(settings.scalp_positions_path).all(),
        trades=TradeLog(settings.trade_log_path).entries(),
        balance=JsonDocumentStore(settings.balance_path, "holdings").read_document(),
        analytics=analytics if isinstance(analytics, dict) else None,
    )


# =============================================================================
# Dashboard
# =============================================================================

class Dashboard:
    """
    Builds one rich renderable per frame.

    Usage:
        dashboard = Dashboard(settings, tail, supervisor)
        live.update(dashboard.render(), refresh=True)
    """

    def __init__(
        self,
        settings: Settings,
        tail: AgentLogTail,
        supervisor: AgentSupervisor | None = None,
        console: Console | None = None,
    ):
        self.settings = settings
        self.tail = tail
        self.supervisor = supervisor
        self.console = console or Console()

    def render(self, data: DashboardData | None = None) -> Layout:
        data = data or load_dashboard_data(self.settings)
        width, height = self.console.size
        plan = plan_layout(
            height,
            width,
            open_swing=len(data.open_swing),
            open_scalp=len(data.open_scalps),
            analytics_rows=data.analytics_rows(),
        )

        sections = [
            Layout(self._header(data), name="header", size=3),
            Layout(self._stats(data), name="stats", size=3),
            Layout(self._watchlist(data, plan), name="watchlist", size=plan.watchlist_rows + TABLE_CHROME),
            Layout(self._scores(data, plan), name="scores", size=plan.score_rows + TABLE_CHROME),
            Layout(self._swing(data, plan), name="swing", size=plan.swing_rows + TABLE_CHROME),
            Layout(self._scalps(data, plan), name="scalps", size=plan.scalp_rows + TABLE_CHROME),
            Layout(self._trades(data, plan), name="trades", size=plan.trade_rows + TABLE_CHROME),
        ]
        if plan.show_analytics:
            sections.append(Layout(self._analytics(data), name="analytics", size=plan.analytics_rows + 2))
        sections.append(Layout(self._log(plan), name="log", minimum_size=4))

        layout = Layout(name="root")
        layout.split_column(*sections)
        return layout

    def splash(self) -> Panel:
        return Panel(
            Text("Starting agents...", justify="center", style="bold yellow"),
            title="PUMP.FUN ALPHA HUNTER",
            box=box.DOUBLE,
            border_style="cyan",
        )

    # =========================================================================
    # Panels
    # =========================================================================

    def _header(self, data: DashboardData) -> Panel:
        line = Text()
        address = data.balance.get("custodial_address") or ""
        line.append("Wallet ", style="dim")
        line.append(short_address(address) if address else "-", style="bold")

        holdings = data.balance.get("holdings")
        line.append("  Balance ", style="dim")
        if isinstance(holdings, list):
            sol = next((h for h in holdings if str(h.get("symbol", "")).upper() == "SOL"), None)
            balance = float(sol.get("balance", 0)) if sol else 0.0
            line.append(f"{balance:.4f} SOL", style="bold green")
        else:
            line.append("unavailable", style="yellow")

        line.append(f"  Mode {self.settings.trading_mode.upper()}", style="magenta")
        line.append("  |  ")
        alive = self.supervisor.running() if self.supervisor else {}
        for agent, running in alive.items():
            line.append(agent.upper(), style="green" if running else "red strike")
            line.append(" ")
        line.append(f" {datetime.now().strftime('%H:%M:%S')}", style="dim")
        return Panel(line, title="PUMP.FUN ALPHA HUNTER", box=box.DOUBLE, border_style="cyan")

    def _stats(self, data: DashboardData) -> Panel:
        wins = sum(1 for t in data.trades if t.pnl_pct > 0)
        win_rate = f"{wins / len(data.trades) * 100:.0f}%" if data.trades else "-"
        net = sum(t.pnl_sol for t in data.trades)

        line = Text()
        line.append(f"Watchlist {len(data.tokens)}  ")
        line.append(f"Scored {len(data.scores)}  ")
        line.append(f"Swing {len(data.open_swing)}/{self.settings.max_swing_positions}  ")
        line.append(f"Scalps {len(data.open_scalps)}/{self.settings.max_scalp_positions}  ")
        line.append(f"Exits {len(data.trades)}  ")
        line.append(f"Win rate {win_rate}  ")
        line.append("Net ")
        line.append_text(pnl_text(net, suffix=" SOL", digits=4))
        return Panel(line, box=box.ROUNDED)

    def _watchlist(self, data: DashboardData, plan: LayoutPlan) -> Panel:
        wide = plan.width >= WIDE_LAYOUT
        table = Table(box=box.SIMPLE_HEAD, expand=True, pad_edge=False)
        table.add_column("Symbol", style="cyan bold", no_wrap=True)
        if wide:
            table.add_column("Name", no_wrap=True, max_width=24)
        table.add_column("Age", justify="right")
        table.add_column("Price", justify="right")
        table.add_column("MCap", justify="right")
        table.add_column("Tx", justify="right")
        table.add_column("BC", justify="right")
        table.add_column("5m", justify="right")

        top = sorted(data.tokens, key=lambda t: t.tx_count, reverse=True)[: plan.watchlist_rows]
        for token in top:
            m5 = token.price_changes.m5 if token.price_changes else None
            row = [Text(token.symbol)]
            if wide:
                row.append(Text(token.name))
            row += [
                format_duration(seconds_since(token.first_seen)),
                format_price(token.price),
                format_usd(token.market_cap),
                str(token.tx_count),
                f"{token.bonding_curve_progress:.0f}%",
            ]
            table.add_row(*row, pnl_text(m5) if m5 is not None else "-")
        return Panel(table, title=f"Watchlist (top {len(top)} of {len(data.tokens)} by tx)", box=box.ROUNDED)

    def _scores(self, data: DashboardData, plan: LayoutPlan) -> Panel:
        wide = plan.width >= WIDE_LAYOUT
        table = Table(box=box.SIMPLE_HEAD, expand=True, pad_edge=False)
        table.add_column("Symbol", style="cyan bold", no_wrap=True)
        table.add_column("Score", justify="right", style="bold")
        table.add_column("Price", justify="right")
        table.add_column("BC", justify="right")
        table.add_column("Tx", justify="right")
        if wide:
            table.add_column("Why", no_wrap=True, overflow="ellipsis", ratio=1)

        top = sorted(data.scores, key=lambda s: s.score, reverse=True)[: plan.score_rows]
        for score in top:
            style = "green" if score.score > self.settings.score_threshold else "dim"
            row = [
                Text(score.symbol),
                Text(str(score.score), style=style),
                format_price(score.current_price),
                f"{score.bonding_curve_progress:.0f}%",
                str(score.tx_count),
            ]
            if wide:
                row.append(Text(score.reasoning))
            table.add_row(*row)
        return Panel(table, title=f"Scores (threshold {self.settings.score_threshold})", box=box.ROUNDED)

    def _swing(self, data: DashboardData, plan: LayoutPlan) -> Panel:
        table = Table(box=box.SIMPLE_HEAD, expand=True, pad_edge=False)
        table.add_column("Symbol", style="cyan bold", no_wrap=True)
        table.add_column("Entry", justify="right")
        table.add_column("Now", justify="right")
        table.add_column("P&L", justify="right")
        table.add_column("Stage", justify="center")
        table.add_column("Stop", justify="right")
        table.add_column("Left", justify="right")
        table.add_column("Held", justify="right")

        positions = data.open_swing
        for p in positions:
            stop = effective_stop_loss(p.exit_stage, self.settings)
            left = p.amount_remaining / p.amount_total * 100 if p.amount_total else 0
            table.add_row(
                Text(p.symbol),
                format_price(p.entry_price),
                format_price(p.current_price),
                pnl_text(pnl_pct(p.entry_price, p.current_price)),
                str(p.exit_stage),
                f"{stop:+g}%",
                f"{left:.0f}%",
                format_duration(seconds_since(p.entry_time)),
            )
        if not positions:
            table.add_row(Text("no open positions", style="dim"))
        return Panel(table, title=f"Swing positions ({len(positions)})", box=box.ROUNDED, border_style="magenta")

    def _scalps(self, data: DashboardData, plan: LayoutPlan) -> Panel:
        table = Table(box=box.SIMPLE_HEAD, expand=True, pad_edge=False)
        table.add_column("Symbol", style="cyan bold", no_wrap=True)
        table.add_column("Entry", justify="right")
        table.add_column("Now", justify="right")
        table.add_column("Peak", justify="right")
        table.add_column("P&L", justify="right")
        table.add_column("Held", justify="right")

        positions = data.open_scalps
        for p in positions:
            table.add_row(
                Text(p.symbol),
                format_price(p.entry_price),
                format_price(p.current_price),
                format_price(p.peak_price or p.entry_price),
                pnl_text(pnl_pct(p.entry_price, p.current_price)),
                format_duration(seconds_since(p.entry_time)),
            )
        if not positions:
            table.add_row(Text("no open scalps", style="dim"))
        return Panel(table, title=f"Scalps ({len(positions)})", box=box.ROUNDED, border_style="cyan")

    def _trades(self, data: DashboardData, plan: LayoutPlan) -> Panel:
        table = Table(box=box.SIMPLE_HEAD, expand=True, pad_edge=False)
        table.add_column("Time", style="dim")
        table.add_column("Symbol", style="cyan bold", no_wrap=True)
        table.add_column("Strategy", no_wrap=True)
        table.add_column("Exit", no_wrap=True)
        table.add_column("P&L", justify="right")
        table.add_column("SOL", justify="right")

        recent = list(reversed(data.trades[-plan.trade_rows:]))
        for trade in recent:
            exited = parse_iso(trade.exit_time)
            stage = f" s{trade.stage}" if trade.stage else ""
            table.add_row(
                exited.astimezone().strftime("%H:%M:%S") if exited else "-",
                Text(trade.symbol),
                trade.strategy.value,
                f"{trade.exit_reason.value}{stage}",
                pnl_text(trade.pnl_pct),
                pnl_text(trade.pnl_sol, suffix="", digits=4),
            )
        return Panel(table, title=f"Recent exits ({len(data.trades)} total)", box=box.ROUNDED)

    def _analytics(self, data: DashboardData) -> Panel:
        snapshot = data.analytics or {}
        overall = snapshot.get("overall", {})
        swing = snapshot.get("swing", {})
        scalp = snapshot.get("scalp", {})
        expectancy = snapshot.get("expectancy", {})

        lines = [
            Text(
                f"{snapshot.get('total_trades', 0)} trades  "
                f"WR {overall.get('win_rate', 0):.0f}%  "
                f"avg {overall.get('avg_pnl_pct', 0):+.1f}%  "
                f"net {overall.get('total_pnl_sol', 0):+.4f} SOL  "
                f"E {expectancy.get('per_trade_sol', 0):+.5f} SOL/trade  "
                f"payoff {expectancy.get('payoff_ratio', 0):.2f}x"
            ),
            Text(
                f"swing {swing.get('count', 0)} @ {swing.get('win_rate', 0):.0f}%  |  "
                f"scalp {scalp.get('count', 0)} @ {scalp.get('win_rate', 0):.0f}%  |  "
                f"ghosts {snapshot.get('ghost_positions', 0)}",
                style="dim",
            ),
        ]
        for sig in (snapshot.get("signals") or [])[:MAX_SIGNALS]:
            lines.append(Text(f"! {sig}", style="yellow", no_wrap=True, overflow="ellipsis"))
        return Panel(Group(*lines), title="Analytics", box=box.ROUNDED, border_style="blue")

    def _log(self, plan: LayoutPlan) -> Panel:
        lines = self.tail.lines(plan.log_rows)
        body = Text("\n".join(lines), no_wrap=True, overflow="ellipsis") if lines else Text("waiting for agents...", style="dim")
        return Panel(body, title="Agent log", box=box.ROUNDED)


# =============================================================================
# Orchestrator entry point
# =============================================================================

async def run_orchestrator(settings: Settings) -> None:
    """
    Spawn the agents and draw the dashboard until SIGINT/SIGTERM.

    The alternate screen is restored and every child is terminated on the
    way out, whatever ended the loop.
    """
    tail = AgentLogTail(settings.agents_log_path, max_lines=settings.log_tail_lines)
    tail.append(None, "PUMP.FUN ALPHA HUNTER - STARTING UP")
    supervisor = AgentSupervisor(settings, tail)
    dashboard = Dashboard(settings, tail, supervisor)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    logger.info("orchestrator_starting", agents=len(supervisor.agents), mode=settings.trading_mode)
    try:
        with Live(dashboard.splash(), console=dashboard.console, screen=True, auto_refresh=False) as live:
            await supervisor.start_all(stop)

            delay = settings.first_render_delay
            while not stop.is_set():
                try:
                    await asyncio.wait_for(stop.wait(), timeout=delay)
                    break
                except asyncio.TimeoutError:
                    pass
                delay = settings.render_interval
                try:
                    live.update(dashboard.render(), refresh=True)
                except Exception as e:
                    logger.error("dashboard_render_error", error=str(e))
    except asyncio.CancelledError:
        pass
    finally:
        await supervisor.stop()
        tail.close()
        logger.info("orchestrator_stopped")
