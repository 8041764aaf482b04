"""
Root conftest.py for pytest configuration.

Puts the project root on sys.path (the packages are flat, no src/) and
provides the shared fixtures: Settings pointed at a temp store, a fake
execution collaborator, and builders for positions and tokens.
"""

import sys
from datetime import timedelta
from pathlib import Path

import pytest

root_dir = Path(__file__).parent.parent
if str(root_dir) not in sys.path:
    sys.path.insert(0, str(root_dir))

from config.settings import LAMPORTS_PER_SOL, Settings  # noqa: E402
from database.models import Position, Strategy, TokenSecurities, WatchedToken, PriceChanges  # noqa: E402
from execution.base import ExecutionClient, Session, TradeResult  # noqa: E402
from utils.clock import to_iso, utc_now  # noqa: E402

pytest_plugins = ('pytest_asyncio',)


class FakeExecutionClient(ExecutionClient):
    """
    Scriptable collaborator. Prices come from `prices`, order outcomes
    are popped from `buy_results` / `sell_results` (default: success).
    """

    def __init__(self, prices: dict[str, float] | None = None):
        self.prices = prices or {}
        self.buy_results: list[TradeResult] = []
        self.sell_results: list[TradeResult] = []
        self.listings: list[dict] = []
        self.buys: list[tuple[str, int]] = []
        self.sells: list[tuple[str, int]] = []
        self.auth_count = 0

    async def authenticate(self, chain_id: int) -> Session:
        self.auth_count += 1
        return Session(
            wallet_address="FakeWallet1111111111111111111111",
            custodial_address="FakeCustody111111111111111111111",
            token=f"token-{self.auth_count}",
            chain_id=chain_id,
        )

    async def quote(self, token_address: str, chain_id: int) -> float | None:
        return self.prices.get(token_address)

    async def buy(self, session: Session, token_address: str, amount: int, chain_id: int) -> TradeResult:
        self.buys.append((token_address, amount))
        if self.buy_results:
            return self.buy_results.pop(0)
        return TradeResult.ok(f"buy-{len(self.buys)}")

    async def sell(self, session: Session, token_address: str, amount: int, chain_id: int) -> TradeResult:
        self.sells.append((token_address, amount))
        if self.sell_results:
            return self.sell_results.pop(0)
        return TradeResult.ok(f"sell-{len(self.sells)}")

    async def newest_tokens(self, session: Session, chain_id: int, page: int, limit: int) -> list[dict]:
        return self.listings if page == 1 else []


@pytest.fixture
def settings(tmp_path):
    return Settings(store_dir=str(tmp_path / "store"), trading_mode="dry_run")


@pytest.fixture
def fake_client():
    return FakeExecutionClient()


def make_position(
    position_id: str = "swing-abc",
    strategy: Strategy = Strategy.SWING,
    address: str = "Mint111",
    symbol: str = "PEPE",
    entry_price: float = 1.0,
    current_price: float | None = None,
    held_seconds: float = 60,
    exit_stage: int = 0,
    amount: int = int(0.005 * LAMPORTS_PER_SOL),
    peak_price: float | None = None,
    now=None,
) -> Position:
    now = now or utc_now()
    return Position(
        id=position_id,
        strategy=strategy,
        address=address,
        name=symbol.title(),
        symbol=symbol,
        entry_price=entry_price,
        current_price=entry_price if current_price is None else current_price,
        entry_time=to_iso(now - timedelta(seconds=held_seconds)),
        amount_total=amount,
        amount_remaining=amount,
        sol_spent=amount / LAMPORTS_PER_SOL,
        exit_stage=exit_stage,
        peak_price=peak_price,
        score=75,
    )


def make_token(
    address: str = "Mint111",
    symbol: str = "PEPE",
    price: float = 0.0001,
    age_seconds: float = 60,
    tx_count: int = 40,
    bonding_curve: float = 50,
    market_cap: float = 10_000,
    prev_price: float | None = None,
    m5: float | None = None,
    securities: TokenSecurities | None = None,
    now=None,
) -> WatchedToken:
    now = now or utc_now()
    return WatchedToken(
        address=address,
        name=symbol.title(),
        symbol=symbol,
        price=price,
        prev_price=prev_price,
        market_cap=market_cap,
        tx_count=tx_count,
        bonding_curve_progress=bonding_curve,
        first_seen=to_iso(now - timedelta(seconds=age_seconds)),
        securities=securities or TokenSecurities(),
        price_changes=PriceChanges(m5=m5) if m5 is not None else None,
    )
