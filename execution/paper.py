"""
Paper Execution Client
======================
Dry-run stand-in for the trading platform.

- Listings and quotes come from GeckoTerminal (free, no key)
- Buys and sells "fill" instantly at the current quote
- Nothing is signed, nothing leaves the machine
- There is no push feed, so every agent runs on its poll path alone

Each agent process has its own instance, so paper fills are not tracked
across agents. The holdings snapshot is a flat simulated SOL balance.
"""

import uuid
from typing import Any

import aiohttp

from config.settings import LAMPORTS_PER_SOL, Settings
from discovery.geckoterminal_client import GeckoTerminalClient
from execution.base import ExecutionClient, Session, TradeResult
from utils.logger import get_logger

logger = get_logger(__name__)


class PaperExecutionClient(ExecutionClient):

    def __init__(self, settings: Settings):
        self.settings = settings
        self.http: aiohttp.ClientSession | None = None
        self.market: GeckoTerminalClient | None = None

    async def initialize(self) -> None:
        self.http = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=15))
        self.market = GeckoTerminalClient(self.http, network=self.settings.market_data_network)
        logger.info("paper_execution_initialized", network=self.settings.market_data_network)

    async def close(self) -> None:
        if self.http:
            await self.http.close()
            self.http = None

    async def authenticate(self, chain_id: int) -> Session:
        return Session(
            wallet_address="paper-wallet",
            custodial_address="paper-custodial",
            token=uuid.uuid4().hex,
            chain_id=chain_id,
        )

    async def quote(self, token_address: str, chain_id: int) -> float | None:
        return await self.market.get_token_price(token_address)

    async def buy(self, session: Session, token_address: str, amount: int, chain_id: int) -> TradeResult:
        return await self._fill("buy", token_address, amount)

    async def sell(self, session: Session, token_address: str, amount: int, chain_id: int) -> TradeResult:
        return await self._fill("sell", token_address, amount)

    async def newest_tokens(self, session: Session, chain_id: int, page: int, limit: int) -> list[dict[str, Any]]:
        return await self.market.get_new_listings(page=page, limit=limit)

    async def holdings(self, session: Session, chain_id: int) -> list[dict[str, Any]] | None:
        return [{
            "symbol": "SOL",
            "name": "Solana",
            "balance": self.settings.paper_balance_sol,
            "lamports": int(self.settings.paper_balance_sol * LAMPORTS_PER_SOL),
        }]

    async def _fill(self, side: str, token_address: str, amount: int) -> TradeResult:
        price = await self.market.get_token_price(token_address)
        if price is None:
            return TradeResult.failed(f"no quote for {token_address}")
        tx_ref = f"paper-{uuid.uuid4().hex[:16]}"
        logger.info(
            "paper_fill",
            side=side,
            token=token_address[:8],
            amount_sol=amount / LAMPORTS_PER_SOL,
            price=f"${price:.10f}",
            tx=tx_ref,
        )
        return TradeResult.ok(tx_ref, message=f"paper {side} at {price}")
