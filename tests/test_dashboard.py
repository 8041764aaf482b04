"""
Orchestrator tests: the pure layout planner, a full frame render from a
populated store, and the agent log tail.
"""

import asyncio
import io

import pytest
from rich.console import Console

from conftest import make_position, make_token
from analyzer.token_scorer import score_token
from database.models import Strategy
from database.store import JsonDocumentStore, PositionStore
from orchestrator.dashboard import CHROME_ROWS, Dashboard, format_duration, load_dashboard_data, plan_layout
from orchestrator.supervisor import AgentLogTail, AgentSupervisor


class TestPlanLayout:

    def test_width_is_clamped(self):
        assert plan_layout(50, 40).width == 80
        assert plan_layout(50, 400).width == 200
        assert plan_layout(50, 132).width == 132

    def test_flex_rows_split(self):
        # 50 flexible rows once chrome and one row per position group are paid
        plan = plan_layout(CHROME_ROWS + 2 + 50, 120)
        assert plan.watchlist_rows == 10      # 28% = 14, capped
        assert plan.score_rows == 8           # 18% = 9, capped
        assert plan.trade_rows == 8           # 22% = 11, capped
        assert plan.log_rows == 50 - 26

    def test_small_terminal_keeps_minimums(self):
        plan = plan_layout(10, 80)
        assert plan.watchlist_rows >= 1
        assert plan.score_rows >= 1
        assert plan.trade_rows >= 1
        assert plan.log_rows >= 2

    def test_positions_take_rows_from_flex(self):
        roomy = plan_layout(CHROME_ROWS + 40, 120)
        crowded = plan_layout(CHROME_ROWS + 40, 120, open_swing=5, open_scalp=3)
        assert crowded.swing_rows == 5
        assert crowded.scalp_rows == 3
        assert crowded.log_rows < roomy.log_rows

    def test_analytics_only_when_room_left(self):
        assert plan_layout(CHROME_ROWS + 2 + 20, 120, analytics_rows=5).show_analytics
        assert not plan_layout(CHROME_ROWS + 2 + 8, 120, analytics_rows=5).show_analytics

    def test_deterministic(self):
        assert plan_layout(60, 150, 2, 1, 4) == plan_layout(60, 150, 2, 1, 4)


class TestRender:

    def test_frame_renders_every_panel(self, settings, tmp_path):
        token = make_token(symbol="PEPE", tx_count=77)
        JsonDocumentStore(settings.watchlist_path, "tokens").write([token.to_dict()])
        JsonDocumentStore(settings.scores_path, "scores").write([score_token(token).to_dict()])
        PositionStore(settings.swing_positions_path).add(make_position(symbol="SWNG", current_price=1.2))
        PositionStore(settings.scalp_positions_path).add(
            make_position(position_id="scalp-1", strategy=Strategy.SCALP, symbol="SCLP")
        )
        JsonDocumentStore(settings.balance_path, "holdings").write_document({
            "custodial_address": "Custody1111111111111111",
            "holdings": [{"symbol": "SOL", "balance": 0.75}],
        })

        tail = AgentLogTail(tmp_path / "agents.log", max_lines=50)
        tail.append("scanner", "watchlist_updated tokens=1")

        output = io.StringIO()
        console = Console(file=output, width=140, height=70, force_terminal=False, color_system=None)
        dashboard = Dashboard(settings, tail, console=console)
        console.print(dashboard.render())
        tail.close()

        text = output.getvalue()
        for expected in ("PUMP.FUN ALPHA HUNTER", "PEPE", "SWNG", "SCLP", "0.7500 SOL", "[SCANNER]"):
            assert expected in text

    def test_every_open_position_is_listed(self, settings, tmp_path):
        swing = PositionStore(settings.swing_positions_path)
        for i in range(3):
            swing.add(make_position(position_id=f"swing-{i}", address=f"Swing{i}", symbol=f"SWG{i}"))
        PositionStore(settings.scalp_positions_path).add(
            make_position(position_id="scalp-1", strategy=Strategy.SCALP, address="Scalp1", symbol="SCLP")
        )
        tail = AgentLogTail(tmp_path / "agents.log")

        output = io.StringIO()
        console = Console(file=output, width=140, height=70, force_terminal=False, color_system=None)
        console.print(Dashboard(settings, tail, console=console).render())
        tail.close()

        text = output.getvalue()
        for symbol in ("SWG0", "SWG1", "SWG2", "SCLP"):
            assert symbol in text

    def test_empty_store_loads(self, settings):
        data = load_dashboard_data(settings)
        assert data.tokens == []
        assert data.analytics is None
        assert data.analytics_rows() == 0


class TestLogTail:

    def test_lines_are_tagged_and_bounded(self, tmp_path):
        tail = AgentLogTail(tmp_path / "agents.log", max_lines=3)
        for i in range(5):
            tail.append("risk", f"line {i}")
        tail.close()

        lines = tail.lines(10)
        assert len(lines) == 3
        assert lines[-1].endswith("[RISK] line 4")
        assert len((tmp_path / "agents.log").read_text(encoding="utf-8").splitlines()) == 5

    def test_log_truncated_on_start(self, tmp_path):
        path = tmp_path / "agents.log"
        path.write_text("old run\n", encoding="utf-8")
        AgentLogTail(path).close()
        assert path.read_text(encoding="utf-8") == ""

    def test_agent_command(self, settings, tmp_path):
        tail = AgentLogTail(tmp_path / "agents.log")
        supervisor = AgentSupervisor(settings, tail)
        command = supervisor.command("risk")
        tail.close()
        assert command[-4:] == ["--agent", "risk", "--mode", "dry_run"]
        assert command[1].endswith("main.py")

    @pytest.mark.asyncio
    async def test_oversized_stderr_line_is_dropped(self, settings, tmp_path):
        tail = AgentLogTail(tmp_path / "agents.log")
        supervisor = AgentSupervisor(settings, tail)
        stream = asyncio.StreamReader(limit=32)
        stream.feed_data(b"first line\n" + b"x" * 200 + b"\nlast line\n")
        stream.feed_eof()

        await supervisor._copy_stream("scanner", stream)
        tail.close()

        lines = tail.lines(10)
        assert lines[0].endswith("[SCANNER] first line")
        assert "dropped" in lines[1]
        assert lines[-1].endswith("[SCANNER] last line")

    @pytest.mark.parametrize("seconds,text", [(5, "5s"), (75, "1m15s"), (3720, "1h2m"), (None, "-")])
    def test_format_duration(self, seconds, text):
        assert format_duration(seconds) == text
