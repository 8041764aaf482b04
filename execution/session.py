"""
Session Provider
================
Owns the one authenticated session of an agent process.

Agents never keep their own copy of the session. They ask the provider
for it at call time, so a refresh is a single swap under a lock and
every later call picks up the new session.

Retry discipline for order calls (execute()):
1. run the call with the current session
2. success or business rejection -> return as is
3. transport/auth failure -> re-authenticate once, retry exactly once
4. still failing -> return the failure, the caller waits for its next cycle

The session is also refreshed proactively every SESSION_REFRESH_INTERVAL
seconds, independent of failures.
"""

import asyncio
from typing import Awaitable, Callable

from execution.base import AuthenticationError, ExecutionClient, Session, TradeResult
from utils.logger import get_logger

logger = get_logger(__name__)

SessionCall = Callable[[Session], Awaitable[TradeResult]]


class SessionProvider:
    """
    Usage:
        provider = SessionProvider(client, settings.chain_id, settings.session_refresh_interval)
        await provider.start()                      # raises AuthenticationError
        result = await provider.execute(lambda s: client.buy(s, ...), "buy")
    """

    def __init__(self, client: ExecutionClient, chain_id: int, refresh_interval: float):
        self.client = client
        self.chain_id = chain_id
        self.refresh_interval = refresh_interval
        self._session: Session | None = None
        self._lock = asyncio.Lock()

    @property
    def session(self) -> Session:
        if self._session is None:
            raise AuthenticationError("session requested before authentication")
        return self._session

    async def start(self) -> Session:
        """First authentication. Any failure here is fatal for the agent."""
        try:
            return await self.refresh()
        except AuthenticationError:
            raise
        except Exception as e:
            raise AuthenticationError(str(e)) from e

    async def refresh(self) -> Session:
        async with self._lock:
            session = await self.client.authenticate(self.chain_id)
            self._session = session
        logger.info("session_refreshed", wallet=session.wallet_address[:8], chain=self.chain_id)
        return session

    async def run_refresh_loop(self) -> None:
        """Proactive refresh on a fixed interval. Runs until cancelled."""
        while True:
            try:
                await asyncio.sleep(self.refresh_interval)
                await self.refresh()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("session_refresh_failed", error=str(e))

    async def execute(self, call: SessionCall, action: str) -> TradeResult:
        result = await self._attempt(call)
        if result.success or not result.retryable:
            return result

        logger.warning(f"{action}_failed_reauthenticating", message=result.message)
        try:
            await self.refresh()
        except Exception as e:
            logger.error(f"{action}_reauth_failed", error=str(e))
            return TradeResult.failed(f"re-auth failed: {e}")

        result = await self._attempt(call)
        if not result.success:
            logger.error(f"{action}_retry_failed", message=result.message)
        return result

    async def _attempt(self, call: SessionCall) -> TradeResult:
        try:
            return await call(self.session)
        except Exception as e:
            return TradeResult.failed(str(e) or e.__class__.__name__)
