"""
Safety Rails
=============
Pre-trade checks shared by the swing Trader and the Scalper.

The rails:
1. Capacity: max concurrent open positions per strategy
2. No double entry: a token held by EITHER strategy (same address, or the
   same symbol case-insensitively) is never bought again
3. Retry cooldown: a token we tried to buy is left alone for a while,
   whatever the outcome of the attempt
4. Anti-rug momentum: skip tokens already dumping (m5 down hard, or the
   price well below the previous observation)
5. Entry drift: skip a buy when the live quote has fallen too far below
   the price the candidate was selected at

Rail 2 reads the other strategy's store at decision time. The two
strategies run in different processes, so this is best effort: both can
still pass the check in the same instant.
"""

from dataclasses import dataclass, field
import time

from config.settings import Settings
from database.store import PositionStore
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class HeldTokens:
    addresses: set[str] = field(default_factory=set)
    symbols: set[str] = field(default_factory=set)

    def holds(self, address: str, symbol: str) -> bool:
        return address in self.addresses or (symbol or "").upper() in self.symbols


def momentum_rejection(
    price: float,
    prev_price: float | None,
    m5: float | None,
    settings: Settings,
) -> str | None:
    """Return why a falling token should be skipped, or None."""
    if m5 is not None and m5 < settings.min_m5_change_pct:
        return f"m5 {m5:.1f}% (falling)"
    if prev_price and prev_price > 0 and price < prev_price * settings.min_prev_price_ratio:
        return f"price dropped since last scan ({price:.10g} < {prev_price:.10g})"
    return None


def entry_drift_pct(selected_price: float, live_price: float | None) -> float | None:
    if live_price is None or live_price <= 0 or selected_price <= 0:
        return None
    return (live_price - selected_price) / selected_price * 100


class SafetyRails:
    """
    Usage:
        rails = SafetyRails(settings, own_store, other_store, cooldown=300, max_open=5)
        if rails.at_capacity(): return
        held = rails.held_tokens()
        if held.holds(addr, sym) or rails.in_cooldown(addr): skip
        rails.mark_attempt(addr)
    """

    def __init__(
        self,
        settings: Settings,
        own_store: PositionStore,
        other_store: PositionStore,
        cooldown_seconds: float,
        max_open: int,
    ):
        self.settings = settings
        self.own_store = own_store
        self.other_store = other_store
        self.cooldown_seconds = cooldown_seconds
        self.max_open = max_open
        self._attempted: dict[str, float] = {}

    def open_count(self) -> int:
        return len(self.own_store.open_positions())

    def at_capacity(self) -> bool:
        return self.open_count() >= self.max_open

    def held_tokens(self) -> HeldTokens:
        held = HeldTokens()
        for store in (self.own_store, self.other_store):
            for position in store.open_positions():
                held.addresses.add(position.address)
                held.symbols.add((position.symbol or "").upper())
        return held

    def mark_attempt(self, address: str, now: float | None = None) -> None:
        self._attempted[address] = time.monotonic() if now is None else now

    def in_cooldown(self, address: str, now: float | None = None) -> bool:
        last = self._attempted.get(address)
        if last is None:
            return False
        now = time.monotonic() if now is None else now
        return now - last < self.cooldown_seconds
