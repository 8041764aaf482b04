"""
Agent Supervisor
================
Runs every agent as its own OS process and collects what they say.

Each agent is started as `python main.py --agent <name>` with the same
trading mode as the orchestrator. Agents are started one at a time, a
couple of seconds apart, so they don't all authenticate at once.

Agents log to stderr. Every line is tagged with the time and the agent
name, appended to agents.log (truncated when the orchestrator starts)
and kept in a bounded in-memory tail for the dashboard. Spawns and
exits are written to the same log. A dead agent is not restarted.
"""

import asyncio
import sys
from collections import deque
from datetime import datetime
from pathlib import Path

from config.settings import PROJECT_ROOT, Settings
from utils.logger import get_logger

logger = get_logger(__name__)

AGENT_NAMES = ["scanner", "analyst", "trader", "risk", "scalper", "analytics"]

# Seconds a child gets to exit after SIGTERM before it is killed
TERMINATE_TIMEOUT = 5

# Longest stderr line read from a child, in bytes
STDERR_LINE_LIMIT = 1024 * 1024


class AgentLogTail:
    """
    The rolling agents.log plus its last lines in memory.

    Usage:
        tail = AgentLogTail(settings.agents_log_path, max_lines=200)
        tail.append("scanner", "watchlist_written tokens=42")
        lines = tail.lines(20)
    """

    def __init__(self, path: str | Path, max_lines: int = 200):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lines: deque[str] = deque(maxlen=max_lines)
        # Previous run's log is dropped
        self._file = open(self.path, "w", encoding="utf-8", buffering=1)

    def append(self, agent: str | None, message: str) -> str:
        stamp = datetime.now().strftime("%H:%M:%S")
        tag = f"[{agent.upper()}] " if agent else ""
        line = f"{stamp} {tag}{message.rstrip()}"
        self._lines.append(line)
        if not self._file.closed:
            self._file.write(line + "\n")
        return line

    def lines(self, count: int) -> list[str]:
        if count <= 0:
            return []
        return list(self._lines)[-count:]

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()


class AgentSupervisor:
    """
    Usage:
        supervisor = AgentSupervisor(settings, tail)
        await supervisor.start_all()
        ...
        await supervisor.stop()
    """

    def __init__(self, settings: Settings, tail: AgentLogTail, agents: list[str] | None = None):
        self.settings = settings
        self.tail = tail
        self.agents = agents or list(AGENT_NAMES)
        self.processes: dict[str, asyncio.subprocess.Process] = {}
        self._readers: list[asyncio.Task] = []

    def command(self, agent: str) -> list[str]:
        return [
            sys.executable,
            str(PROJECT_ROOT / "main.py"),
            "--agent", agent,
            "--mode", self.settings.trading_mode,
        ]

    async def spawn(self, agent: str) -> asyncio.subprocess.Process:
        process = await asyncio.create_subprocess_exec(
            *self.command(agent),
            cwd=str(PROJECT_ROOT),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
            limit=STDERR_LINE_LIMIT,
        )
        self.processes[agent] = process
        self.tail.append(agent, f"spawned (pid={process.pid})")
        logger.info("agent_spawned", agent=agent, pid=process.pid)
        self._readers.append(asyncio.create_task(self._pump(agent, process)))
        return process

    async def _pump(self, agent: str, process: asyncio.subprocess.Process) -> None:
        """Copy one child's stderr into the tail until it exits."""
        try:
            if process.stderr is not None:
                await self._copy_stream(agent, process.stderr)
            code = await process.wait()
            self.tail.append(agent, f"exited (code={code})")
            logger.warning("agent_exited", agent=agent, code=code)
        except asyncio.CancelledError:
            pass

    async def _copy_stream(self, agent: str, stream: asyncio.StreamReader) -> None:
        """Tail lines until EOF. Oversized lines are dropped, not fatal."""
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                self.tail.append(agent, "[line over stderr limit dropped]")
                logger.warning("agent_log_line_too_long", agent=agent)
                continue
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                self.tail.append(agent, line)

    async def start_all(self, stop: asyncio.Event | None = None) -> None:
        """Spawn every agent, waiting the stagger between them."""
        for index, agent in enumerate(self.agents):
            if stop is not None and stop.is_set():
                return
            await self.spawn(agent)
            if index < len(self.agents) - 1:
                await asyncio.sleep(self.settings.agent_spawn_stagger)
        self.tail.append(
            None,
            f"All agents running. Dashboard renders every {self.settings.render_interval}s",
        )

    def running(self) -> dict[str, bool]:
        """Which agents are still alive, by name."""
        return {
            agent: agent in self.processes and self.processes[agent].returncode is None
            for agent in self.agents
        }

    async def stop(self) -> None:
        """SIGTERM every live child, then kill whatever ignores it."""
        for agent, process in self.processes.items():
            if process.returncode is None:
                try:
                    process.terminate()
                except ProcessLookupError:
                    continue

        for agent, process in self.processes.items():
            try:
                await asyncio.wait_for(process.wait(), timeout=TERMINATE_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("agent_kill", agent=agent, pid=process.pid)
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        for reader in self._readers:
            reader.cancel()
        await asyncio.gather(*self._readers, return_exceptions=True)
        self._readers.clear()
        logger.info("agents_stopped", count=len(self.processes))
