"""
Agent runtime tests: tick isolation and cleanup on the fatal startup path.
"""

import asyncio

import pytest

from conftest import FakeExecutionClient
from agent.runtime import Agent, TradingAgent, run_agent
from execution.base import AuthenticationError


class TrackedClient(FakeExecutionClient):
    def __init__(self, refuse_login: bool = False):
        super().__init__()
        self.refuse_login = refuse_login
        self.opened = False
        self.closed = False

    async def initialize(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self.closed = True

    async def authenticate(self, chain_id):
        if self.refuse_login:
            raise RuntimeError("login refused")
        return await super().authenticate(chain_id)


class IdleTradingAgent(TradingAgent):
    name = "idle"

    async def tick(self) -> None:
        pass


class FlakyAgent(Agent):
    name = "flaky"

    def __init__(self, settings):
        super().__init__(settings, interval=0)
        self.calls = 0
        self.recovered = asyncio.Event()

    async def tick(self) -> None:
        self.calls += 1
        if self.calls == 1:
            raise ValueError("bad tick")
        self.recovered.set()


class TestRunAgent:

    @pytest.mark.asyncio
    async def test_failed_login_still_closes_client(self, settings):
        client = TrackedClient(refuse_login=True)
        agent = IdleTradingAgent(settings, 1, client)

        with pytest.raises(AuthenticationError):
            await run_agent(agent)

        assert client.opened
        assert client.closed

    @pytest.mark.asyncio
    async def test_tick_error_does_not_stop_the_loop(self, settings):
        agent = FlakyAgent(settings)
        task = asyncio.create_task(agent.start())

        await asyncio.wait_for(agent.recovered.wait(), timeout=2)
        task.cancel()
        await task

        assert agent.calls >= 2
