"""
GeckoTerminal Client
====================
Market data for paper trading: free, no auth, no Cloudflare.

In dry-run mode there is no trading platform to ask for new listings or
quotes, so the paper execution client gets them here instead:
- New pools on the network (recently created = fresh listings)
- Spot USD price of a single token

Pools are translated into the same raw listing shape the trading
platform returns (address, priceUsd, marketCap, txCount, ...), so the
scanner's normalizer does not care where a listing came from.

GeckoTerminal has no bonding-curve figure. For pump.fun pools it is
estimated from market cap against the ~$69K graduation cap; pools on any
other DEX are treated as already graduated.

API docs: https://www.geckoterminal.com/dex-api
"""

import asyncio
from typing import Any

import aiohttp

from utils.logger import get_logger

logger = get_logger(__name__)

PUMPFUN_DEX_IDS = {"pump-fun", "pumpfun", "pump_fun"}
GRADUATION_MARKET_CAP_USD = 69_000


class GeckoTerminalClient:
    """
    Client for the GeckoTerminal API.

    Usage:
        client = GeckoTerminalClient(session, network="solana")
        listings = await client.get_new_listings(page=1)
        price = await client.get_token_price(address)
    """

    BASE_URL = "https://api.geckoterminal.com/api/v2"

    HEADERS = {
        "Accept": "application/json;version=20230302",
    }

    MAX_RATE_LIMIT_RETRIES = 3

    def __init__(self, session: aiohttp.ClientSession, network: str = "solana"):
        self.session = session
        self.network = network

    async def _get(self, endpoint: str, params: dict | None = None, attempt: int = 0) -> dict:
        """Make a GET request to the GeckoTerminal API. Failures return {}."""
        url = f"{self.BASE_URL}{endpoint}"
        try:
            async with self.session.get(url, headers=self.HEADERS, params=params) as response:
                if response.status == 200:
                    return await response.json()
                elif response.status == 429 and attempt < self.MAX_RATE_LIMIT_RETRIES:
                    logger.warning("geckoterminal_rate_limited", endpoint=endpoint, attempt=attempt + 1)
                    await asyncio.sleep(3)
                    return await self._get(endpoint, params, attempt + 1)
                else:
                    error_text = await response.text()
                    logger.error("geckoterminal_error", status=response.status, endpoint=endpoint, error=error_text[:200])
                    return {}
        except aiohttp.ClientError as e:
            logger.error("geckoterminal_request_exception", endpoint=endpoint, error=str(e))
            return {}

    async def get_new_listings(self, page: int = 1, limit: int = 50) -> list[dict]:
        """Recently created pools, newest first, as raw listing dicts."""
        data = await self._get(
            f"/networks/{self.network}/new_pools",
            params={"include": "base_token,dex", "page": str(page)},
        )
        listings = self._extract_listings(data)
        logger.debug("geckoterminal_new_listings_fetched", page=page, count=len(listings))
        return listings[:limit]

    async def get_token_price(self, token_address: str) -> float | None:
        """Current USD price of a token, None when unknown."""
        data = await self._get(f"/networks/{self.network}/tokens/{token_address}")
        attrs = (data.get("data") or {}).get("attributes") or {}
        try:
            price = float(attrs.get("price_usd") or 0)
        except (TypeError, ValueError):
            return None
        return price if price > 0 else None

    def _extract_listings(self, data: dict) -> list[dict]:
        """
        Flatten pool attributes plus the included base token into one
        listing per pool.
        """
        if not data:
            return []

        token_map = {}
        for included in data.get("included", []):
            if included.get("type") == "token":
                token_map[included.get("id", "")] = included.get("attributes", {})

        listings = []
        for item in data.get("data", []):
            attrs = item.get("attributes", {})
            relationships = item.get("relationships", {})

            base_token_id = relationships.get("base_token", {}).get("data", {}).get("id", "")
            base_token = token_map.get(base_token_id, {})
            if not base_token.get("address"):
                continue

            dex_id = relationships.get("dex", {}).get("data", {}).get("id", "")
            price_changes = attrs.get("price_change_percentage", {}) or {}
            transactions = (attrs.get("transactions", {}) or {}).get("h24", {}) or {}
            market_cap = _to_float(attrs.get("market_cap_usd") or attrs.get("fdv_usd"))
            on_curve = dex_id in PUMPFUN_DEX_IDS

            listings.append({
                "address": base_token["address"],
                "name": base_token.get("name"),
                "symbol": base_token.get("symbol"),
                "priceUsd": attrs.get("base_token_price_usd"),
                "marketCap": market_cap,
                "txCount": int(transactions.get("buys") or 0) + int(transactions.get("sells") or 0),
                "bondingCurveProgress": _curve_progress(market_cap) if on_curve else 100.0,
                "isListedOnDex": not on_curve,
                "isToken2022": False,
                "priceChanges": {
                    "m5": _to_float(price_changes.get("m5")),
                    "h1": _to_float(price_changes.get("h1")),
                },
                "poolCreatedAt": attrs.get("pool_created_at"),
            })

        return listings


def _to_float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _curve_progress(market_cap: float) -> float:
    return round(min(100.0, max(0.0, market_cap / GRADUATION_MARKET_CAP_USD * 100)), 2)
