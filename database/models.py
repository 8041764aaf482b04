"""
Shared Records
==============
Every record the agents exchange through the shared JSON store.

Think of this as the pipeline's filing system:
- WatchedToken: a fresh listing the scanner is tracking
- TokenScore: the analyst's verdict on one watchlist token
- Position: one swing or scalp trade from buy until final exit
- TradeLogEntry: one realized (partial) exit, append-only

Records are plain dataclasses. to_dict() gives the JSON form written to
disk, from_dict() accepts whatever an older or newer writer left there
(unknown keys are ignored, missing keys fall back to defaults).
"""

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any


class Strategy(str, Enum):
    SWING = "swing"
    SCALP = "scalp"


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ExitReason(str, Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    TIME_EXPIRY = "time_expiry"


def _known(cls, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


# =============================================================================
# Watchlist
# =============================================================================

@dataclass
class TokenSecurities:
    mint_ability: bool = False
    freeze_ability: bool = False
    buy_tax: float = 0.0
    sell_tax: float = 0.0
    top_holders_pct: float = 100.0  # unknown concentration counts as worst case
    lp_lock_pct: float = 0.0
    contract_verified: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenSecurities":
        return cls(**_known(cls, data))


@dataclass
class PriceChanges:
    m5: float = 0.0
    h1: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PriceChanges":
        return cls(**_known(cls, data))


@dataclass
class WatchedToken:
    address: str
    name: str = "Unknown"
    symbol: str = "???"
    price: float = 0.0
    prev_price: float | None = None
    market_cap: float = 0.0
    tx_count: int = 0
    bonding_curve_progress: float = 0.0
    is_listed_on_dex: bool = False
    is_token_2022: bool = False
    first_seen: str = ""
    securities: TokenSecurities | None = None
    price_changes: PriceChanges | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WatchedToken":
        values = _known(cls, data)
        if isinstance(values.get("securities"), dict):
            values["securities"] = TokenSecurities.from_dict(values["securities"])
        if isinstance(values.get("price_changes"), dict):
            values["price_changes"] = PriceChanges.from_dict(values["price_changes"])
        return cls(**values)


# =============================================================================
# Scores
# =============================================================================

@dataclass
class ScoreBreakdown:
    bonding_curve: int = 0
    tx_count: int = 0
    market_cap: int = 0
    velocity: int = 0
    security: int = 0

    @property
    def total(self) -> int:
        return self.bonding_curve + self.tx_count + self.market_cap + self.velocity + self.security


@dataclass
class TokenScore:
    address: str
    name: str
    symbol: str
    score: int
    breakdown: ScoreBreakdown
    reasoning: str
    current_price: float
    prev_price: float | None = None
    price_changes: PriceChanges | None = None
    market_cap: float = 0.0
    tx_count: int = 0
    bonding_curve_progress: float = 0.0
    is_graduation_candidate: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenScore":
        values = _known(cls, data)
        values["breakdown"] = ScoreBreakdown(**_known(ScoreBreakdown, values.get("breakdown") or {}))
        if isinstance(values.get("price_changes"), dict):
            values["price_changes"] = PriceChanges.from_dict(values["price_changes"])
        return cls(**values)


# =============================================================================
# Positions
# =============================================================================

@dataclass
class Position:
    """
    One trade from confirmed buy to final exit.

    Amounts are base units (lamports of SOL spent). amount_remaining only
    shrinks at exit boundaries, exit_stage only grows, and once status is
    closed the record is frozen. version is bumped on every committed
    mutation and is the compare-and-swap token for concurrent writers.
    """

    id: str
    strategy: Strategy
    address: str
    name: str
    symbol: str
    entry_price: float
    current_price: float
    entry_time: str
    amount_total: int
    amount_remaining: int
    sol_spent: float
    status: PositionStatus = PositionStatus.OPEN
    exit_stage: int = 0
    peak_price: float | None = None
    tx_ref: str = ""
    score: int | None = None
    version: int = 0
    exit_price: float | None = None
    exit_time: str | None = None
    exit_reason: ExitReason | None = None
    exit_tx_ref: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def to_dict(self) -> dict[str, Any]:
        return {k: _plain(v) for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Position":
        values = _known(cls, data)
        values["strategy"] = Strategy(values.get("strategy", Strategy.SWING.value))
        values["status"] = PositionStatus(values.get("status", PositionStatus.OPEN.value))
        if values.get("exit_reason"):
            values["exit_reason"] = ExitReason(values["exit_reason"])
        return cls(**values)


# =============================================================================
# Trade log
# =============================================================================

@dataclass
class TradeLogEntry:
    id: str
    address: str
    name: str
    symbol: str
    strategy: Strategy
    entry_price: float
    exit_price: float
    entry_time: str
    exit_time: str
    exit_reason: ExitReason
    fraction: float
    sol_spent: float
    pnl_sol: float
    pnl_pct: float
    exit_tx_ref: str = ""
    stage: int = 0
    stop_target_pct: float | None = None
    score: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: _plain(v) for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TradeLogEntry":
        values = _known(cls, data)
        values["strategy"] = Strategy(values.get("strategy", Strategy.SWING.value))
        values["exit_reason"] = ExitReason(values["exit_reason"])
        return cls(**values)


@dataclass
class BalanceSnapshot:
    custodial_address: str = ""
    holdings: list[dict[str, Any]] | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
