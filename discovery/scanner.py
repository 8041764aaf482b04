"""
Token Scanner
=============
Agent 1: finds fresh listings and keeps the shared watchlist.

Every SCAN_INTERVAL seconds (30 by default):
1. Fetch the newest listings from the execution collaborator (paged)
2. Normalize each raw listing into a WatchedToken
3. Merge into the address-keyed watchlist:
   - first_seen is kept from the first observation
   - prev_price is the price we had stored before this observation
   - securities / price changes survive when a payload omits them
4. Sort by first_seen (newest first) and keep only MAX_WATCHLIST_TOKENS
5. Write watchlist.json atomically, then the balance snapshot

A best-effort push feed applies the same merge incrementally:
- new listings go through the merge above
- price updates touch tokens already on the watchlist, and the file is
  only rewritten when something actually changed

The poll path is authoritative. Losing the feed only costs latency.
"""

from datetime import datetime
from typing import Any

from agent.runtime import TradingAgent
from config.settings import Settings
from database.models import BalanceSnapshot, PriceChanges, TokenSecurities, WatchedToken
from database.store import JsonDocumentStore
from execution.base import ExecutionClient, FeedMessage
from utils.clock import to_iso, utc_now
from utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Normalization (pure)
# =============================================================================

def _number(value: Any, default: float = 0.0) -> float:
    """Numbers from the platform arrive as numbers or numeric strings."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def raw_price(raw: dict[str, Any]) -> float:
    price = raw.get("priceUsd")
    if price is None:
        price = raw.get("priceNative")
    return _number(price)


def normalize_securities(raw: dict[str, Any] | None) -> TokenSecurities | None:
    if not isinstance(raw, dict):
        return None
    return TokenSecurities(
        mint_ability=bool(raw.get("mintAbility")),
        freeze_ability=bool(raw.get("freezeAbility")),
        buy_tax=_number(raw.get("buyTax"), 0.0),
        sell_tax=_number(raw.get("sellTax"), 0.0),
        top_holders_pct=_number(raw.get("topHoldersPercentage"), 100.0),
        lp_lock_pct=_number(raw.get("lpLockPercentage"), 0.0),
        contract_verified=int(_number(raw.get("contractVerified"), 0)),
    )


def normalize_price_changes(raw: dict[str, Any] | None, previous: PriceChanges | None = None) -> PriceChanges | None:
    if not isinstance(raw, dict):
        return previous
    return PriceChanges(
        m5=_number(raw.get("m5"), previous.m5 if previous else 0.0),
        h1=_number(raw.get("h1"), previous.h1 if previous else 0.0),
    )


def normalize_token(raw: dict[str, Any], previous: WatchedToken | None, seen_at: str) -> WatchedToken | None:
    """Turn one raw listing into a WatchedToken. None when it has no address."""
    address = raw.get("address")
    if not address:
        return None

    return WatchedToken(
        address=address,
        name=raw.get("name") or raw.get("symbol") or "Unknown",
        symbol=raw.get("symbol") or "???",
        price=raw_price(raw),
        prev_price=previous.price if previous else None,
        market_cap=_number(raw.get("marketCap")),
        tx_count=int(_number(raw.get("txCount"))),
        bonding_curve_progress=_number(raw.get("bondingCurveProgress")),
        is_listed_on_dex=bool(raw.get("isListedOnDex")),
        is_token_2022=bool(raw.get("isToken2022")),
        first_seen=previous.first_seen if previous and previous.first_seen else seen_at,
        securities=normalize_securities(raw.get("securities")) or (previous.securities if previous else None),
        price_changes=normalize_price_changes(raw.get("priceChanges"), None) or (
            previous.price_changes if previous else None
        ),
    )


def merge_listings(
    existing: list[WatchedToken],
    raw_listings: list[dict[str, Any]],
    max_tokens: int,
    now: datetime | None = None,
) -> list[WatchedToken]:
    """
    Merge raw listings into the watchlist and apply the size bound.

    Retention is most-recent-first by first_seen. An older token is
    evicted even if it is still very active.
    """
    seen_at = to_iso(now or utc_now())
    by_address = {token.address: token for token in existing}

    for raw in raw_listings:
        if not isinstance(raw, dict):
            continue
        token = normalize_token(raw, by_address.get(raw.get("address") or ""), seen_at)
        if token is not None:
            by_address[token.address] = token

    tokens = sorted(by_address.values(), key=lambda t: t.first_seen, reverse=True)
    return tokens[:max_tokens]


def apply_price_updates(tokens: list[WatchedToken], updates: list[dict[str, Any]]) -> bool:
    """
    Apply push price updates in place to tokens already on the watchlist.
    Returns True when at least one token changed.
    """
    by_address = {token.address: token for token in tokens}
    changed = False

    for update in updates:
        if not isinstance(update, dict):
            continue
        token = by_address.get(update.get("address") or "")
        if token is None:
            continue
        price = raw_price(update)
        if price <= 0 or price == token.price:
            continue

        token.prev_price = token.price
        token.price = price
        if isinstance(update.get("priceChanges"), dict):
            token.price_changes = normalize_price_changes(
                update["priceChanges"], token.price_changes or PriceChanges()
            )
        if isinstance(update.get("txCount"), (int, float)) and not isinstance(update.get("txCount"), bool):
            token.tx_count = int(update["txCount"])
        changed = True

    return changed


# =============================================================================
# Agent
# =============================================================================

class ScannerAgent(TradingAgent):
    """
    Usage:
        scanner = ScannerAgent(settings, client)
        await run_agent(scanner)
    """

    name = "scanner"
    uses_feed = True

    def __init__(self, settings: Settings, client: ExecutionClient):
        super().__init__(settings, settings.scan_interval, client)
        self.watchlist = JsonDocumentStore(settings.watchlist_path, "tokens")
        self.balance = JsonDocumentStore(settings.balance_path, "holdings")

    def _load(self) -> list[WatchedToken]:
        tokens = []
        for item in self.watchlist.read():
            try:
                tokens.append(WatchedToken.from_dict(item))
            except (TypeError, ValueError) as e:
                logger.warning("watchlist_entry_skipped", error=str(e))
        return tokens

    def _save(self, tokens: list[WatchedToken]) -> None:
        self.watchlist.write([t.to_dict() for t in tokens])

    async def initialize(self) -> None:
        await super().initialize()
        await self.write_balance()

    async def fetch_listings(self) -> list[dict[str, Any]]:
        session = self.sessions.session
        listings: list[dict[str, Any]] = []
        for page in range(1, self.settings.scan_pages + 1):
            batch = await self.client.newest_tokens(
                session, self.settings.chain_id, page, self.settings.scan_page_size
            )
            if not batch:
                break
            listings.extend(batch)
        return listings

    async def tick(self) -> None:
        raw = await self.fetch_listings()
        if not raw:
            logger.info("scanner_no_tokens_returned")
        else:
            tokens = merge_listings(self._load(), raw, self.settings.max_watchlist_tokens)
            self._save(tokens)
            logger.info("watchlist_updated", tokens=len(tokens), fetched=len(raw))
        await self.write_balance()

    async def write_balance(self) -> None:
        """Publish the custodial holdings snapshot. holdings=None when unavailable."""
        session = self.sessions.session
        holdings = None
        try:
            holdings = await self.client.holdings(session, self.settings.chain_id)
        except Exception as e:
            logger.warning("holdings_fetch_failed", error=str(e))
        if holdings is not None and not isinstance(holdings, list):
            holdings = None

        snapshot = BalanceSnapshot(custodial_address=session.custodial_address, holdings=holdings)
        self.balance.write_document(snapshot.to_dict())

    async def on_feed_message(self, message: FeedMessage) -> None:
        if message.new_tokens:
            tokens = merge_listings(self._load(), message.new_tokens, self.settings.max_watchlist_tokens)
            self._save(tokens)
            logger.debug("watchlist_feed_listings", received=len(message.new_tokens))

        if message.price_updates:
            tokens = self._load()
            if apply_price_updates(tokens, message.price_updates):
                self._save(tokens)
