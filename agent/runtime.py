"""
Agent Runtime
=============
The shared skeleton of every agent process.

Each agent is a long-lived OS process running one cooperative tick loop:
- tick() does one cycle of work (poll, score, buy, check exits...)
- a failing tick is logged and the loop carries on at the next interval
- only failing to authenticate at startup stops the process

Trading agents (anything that talks to the execution collaborator) also
run two background loops next to the tick loop:
- proactive session refresh on a fixed interval
- the push feed, if the collaborator has one; losing it is never fatal,
  the poll path is authoritative

SIGINT/SIGTERM cancel every loop, then close() releases resources.
"""

import asyncio
import signal
from typing import Any, Coroutine

from config.settings import Settings
from execution.base import ExecutionClient, FeedMessage
from execution.session import SessionProvider
from utils.logger import get_logger

logger = get_logger(__name__)

FEED_RECONNECT_DELAY = 5


class Agent:
    """
    Base class for a periodic agent.

    Usage:
        agent = SomeAgent(settings, ...)
        await run_agent(agent)
    """

    name = "agent"

    def __init__(self, settings: Settings, interval: float):
        self.settings = settings
        self.interval = interval

    async def initialize(self) -> None:
        """Set up resources before the first tick."""

    async def close(self) -> None:
        """Release resources after the last tick."""

    async def tick(self) -> None:
        raise NotImplementedError

    def background(self) -> list[Coroutine[Any, Any, None]]:
        """Extra loops to run alongside the tick loop."""
        return []

    async def start(self) -> None:
        """Run tick() every `interval` seconds until cancelled."""
        logger.info(f"{self.name}_started", interval=f"{self.interval}s")

        while True:
            try:
                await self.tick()
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                logger.info(f"{self.name}_stopping")
                break
            except Exception as e:
                logger.error(f"{self.name}_tick_error", error=str(e), type=type(e).__name__)
                await asyncio.sleep(self.interval)


class TradingAgent(Agent):
    """An agent holding an authenticated session with the execution collaborator."""

    uses_feed = False

    def __init__(self, settings: Settings, interval: float, client: ExecutionClient):
        super().__init__(settings, interval)
        self.client = client
        self.sessions = SessionProvider(client, settings.chain_id, settings.session_refresh_interval)

    async def initialize(self) -> None:
        await self.client.initialize()
        await self.sessions.start()

    async def close(self) -> None:
        await self.client.close()

    def background(self) -> list[Coroutine[Any, Any, None]]:
        loops = [self.sessions.run_refresh_loop()]
        if self.uses_feed:
            loops.append(self.run_feed())
        return loops

    async def on_feed_message(self, message: FeedMessage) -> None:
        """Handle one push event. Runs interleaved with tick()."""

    async def run_feed(self) -> None:
        """
        Consume the push feed, reconnecting after losses.

        A subscription that ends without delivering anything means the
        collaborator has no feed; the agent then runs on polling alone.
        """
        while True:
            received = 0
            try:
                async for message in self.client.subscribe(self.sessions.session, self.settings.chain_id):
                    received += 1
                    try:
                        await self.on_feed_message(message)
                    except Exception as e:
                        logger.error(f"{self.name}_feed_handler_error", error=str(e))
                if received == 0:
                    logger.info("push_feed_unavailable", note="poll path only")
                    return
                logger.warning("push_feed_lost", messages=received)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("push_feed_error", error=str(e))
            try:
                await asyncio.sleep(FEED_RECONNECT_DELAY)
            except asyncio.CancelledError:
                break


async def run_agent(agent: Agent) -> None:
    """
    Initialize an agent, run its loops until a termination signal, then
    close it. Initialization errors propagate to the caller after the
    agent has been closed.
    """
    loop = asyncio.get_running_loop()
    tasks: list[asyncio.Task] = []

    def _shutdown(signame: str) -> None:
        logger.info("agent_signal_received", signal=signame)
        for task in tasks:
            task.cancel()

    try:
        await agent.initialize()

        tasks.append(asyncio.create_task(agent.start()))
        tasks.extend(asyncio.create_task(coro) for coro in agent.background())

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _shutdown, sig.name)
            except (NotImplementedError, RuntimeError):
                pass  # not supported on this platform/loop

        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        pass
    finally:
        for task in tasks:
            task.cancel()
        await agent.close()
        logger.info(f"{agent.name}_stopped")
