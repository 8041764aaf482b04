"""
Configuration Manager
=====================
Single source of truth for every agent's tunable parameters.

How it works:
- On startup, it reads the .env file in the project root
- Every setting has a default taken from the live strategy, so a fresh
  checkout runs in dry-run (paper) mode with no configuration at all
- Anything can be overridden through .env or plain environment variables
- One Settings object is created per process and handed to every agent

All agents of one deployment must agree on STORE_DIR, because the JSON
files in that directory are the only channel between them.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).parent.parent

# Load environment variables from .env file in the project root
load_dotenv(PROJECT_ROOT / ".env")

LAMPORTS_PER_SOL = 1_000_000_000


def _get_env(key: str, default: str = "") -> str:
    """Get an environment variable, returning default if not set."""
    return os.getenv(key, default)


def _get_env_float(key: str, default: float) -> float:
    """Get an environment variable as a float number."""
    val = os.getenv(key)
    return float(val) if val else default


def _get_env_int(key: str, default: int) -> int:
    """Get an environment variable as a whole number."""
    val = os.getenv(key)
    return int(val) if val else default


def _get_env_pcts(key: str, default: list[float]) -> list[float]:
    """Get a comma separated list of percentages, e.g. "-5,0,15"."""
    val = os.getenv(key)
    if not val:
        return list(default)
    return [float(part) for part in val.split(",") if part.strip()]


@dataclass
class Settings:
    """
    All agent configuration in one place.

    Sections:
    - Execution: which collaborator fills orders and on which chain
    - Store: where the shared JSON documents live
    - One section per agent: poll interval, thresholds, sizes
    - System: logging
    """

    # =========================================================================
    # Execution
    # =========================================================================

    # "dry_run" = paper fills at GeckoTerminal prices, nothing leaves the box
    # "live"    = orders go through the collaborator named by EXECUTION_CLIENT
    trading_mode: str = field(default_factory=lambda: _get_env("TRADING_MODE", "dry_run"))

    # Dotted path "package.module:ClassName" of the live ExecutionClient
    execution_client: str = field(default_factory=lambda: _get_env("EXECUTION_CLIENT"))

    # Platform chain id for Solana
    chain_id: int = field(default_factory=lambda: _get_env_int("CHAIN_ID", 622112261))

    # Network name used by the public market-data API in paper mode
    market_data_network: str = field(default_factory=lambda: _get_env("MARKET_DATA_NETWORK", "solana"))

    # Simulated custodial balance reported by the paper client
    paper_balance_sol: float = field(default_factory=lambda: _get_env_float("PAPER_BALANCE_SOL", 1.0))

    # Sessions expire server side after ~30 min, refresh a little earlier
    session_refresh_interval: int = field(
        default_factory=lambda: _get_env_int("SESSION_REFRESH_INTERVAL", 25 * 60)
    )

    # =========================================================================
    # Shared Store
    # =========================================================================

    store_dir: str = field(
        default_factory=lambda: _get_env("STORE_DIR", str(PROJECT_ROOT / "data"))
    )

    # =========================================================================
    # Scanner
    # =========================================================================

    scan_interval: int = field(default_factory=lambda: _get_env_int("SCAN_INTERVAL", 30))
    scan_pages: int = field(default_factory=lambda: _get_env_int("SCAN_PAGES", 1))
    scan_page_size: int = field(default_factory=lambda: _get_env_int("SCAN_PAGE_SIZE", 50))

    # Watchlist bound. Newest first-seen tokens are kept, older ones evicted.
    max_watchlist_tokens: int = field(
        default_factory=lambda: _get_env_int("MAX_WATCHLIST_TOKENS", 100)
    )

    # =========================================================================
    # Analyst
    # =========================================================================

    analyst_interval: int = field(default_factory=lambda: _get_env_int("ANALYST_INTERVAL", 15))
    max_token_age_minutes: float = field(
        default_factory=lambda: _get_env_float("MAX_TOKEN_AGE_MINUTES", 60)
    )
    min_market_cap_usd: float = field(
        default_factory=lambda: _get_env_float("MIN_MARKET_CAP_USD", 1_000)
    )
    max_tax_pct: float = field(default_factory=lambda: _get_env_float("MAX_TAX_PCT", 5))

    # =========================================================================
    # Trader (swing entries)
    # =========================================================================

    trader_interval: int = field(default_factory=lambda: _get_env_int("TRADER_INTERVAL", 10))
    swing_buy_amount_sol: float = field(
        default_factory=lambda: _get_env_float("SWING_BUY_AMOUNT_SOL", 0.005)
    )
    max_swing_positions: int = field(
        default_factory=lambda: _get_env_int("MAX_SWING_POSITIONS", 5)
    )
    score_threshold: float = field(default_factory=lambda: _get_env_float("SCORE_THRESHOLD", 60))
    swing_retry_cooldown: int = field(
        default_factory=lambda: _get_env_int("SWING_RETRY_COOLDOWN", 5 * 60)
    )

    # Anti-rug: skip a buy when the live quote is this far below the scored price
    max_entry_drift_pct: float = field(
        default_factory=lambda: _get_env_float("MAX_ENTRY_DRIFT_PCT", -5)
    )
    # Skip candidates already dumping over the last 5 minutes
    min_m5_change_pct: float = field(
        default_factory=lambda: _get_env_float("MIN_M5_CHANGE_PCT", -5)
    )
    # Skip candidates whose price fell below this ratio of the previous observation
    min_prev_price_ratio: float = field(
        default_factory=lambda: _get_env_float("MIN_PREV_PRICE_RATIO", 0.95)
    )

    # =========================================================================
    # Risk Manager (swing exits)
    # =========================================================================

    risk_interval: int = field(default_factory=lambda: _get_env_int("RISK_INTERVAL", 8))

    # Stop-loss by exit stage: stage 0, stage 1 (breakeven), stage 2 (locked profit)
    swing_stop_loss_pcts: list[float] = field(
        default_factory=lambda: _get_env_pcts("SWING_STOP_LOSS_PCTS", [-5, 0, 15])
    )
    # Partial take-profit levels, each sells a third of the original size
    swing_partial_tp_pcts: list[float] = field(
        default_factory=lambda: _get_env_pcts("SWING_PARTIAL_TP_PCTS", [25, 50])
    )
    swing_final_tp_pct: float = field(
        default_factory=lambda: _get_env_float("SWING_FINAL_TP_PCT", 100)
    )
    swing_max_hold_seconds: int = field(
        default_factory=lambda: _get_env_int("SWING_MAX_HOLD_SECONDS", 20 * 60)
    )

    # =========================================================================
    # Scalper
    # =========================================================================

    scalp_interval: int = field(default_factory=lambda: _get_env_int("SCALP_INTERVAL", 5))
    scalp_buy_amount_sol: float = field(
        default_factory=lambda: _get_env_float("SCALP_BUY_AMOUNT_SOL", 0.005)
    )
    max_scalp_positions: int = field(
        default_factory=lambda: _get_env_int("MAX_SCALP_POSITIONS", 3)
    )
    scalp_max_age_seconds: int = field(
        default_factory=lambda: _get_env_int("SCALP_MAX_AGE_SECONDS", 2 * 60)
    )
    scalp_min_tx_count: int = field(default_factory=lambda: _get_env_int("SCALP_MIN_TX_COUNT", 5))
    scalp_min_bonding_curve: float = field(
        default_factory=lambda: _get_env_float("SCALP_MIN_BONDING_CURVE", 3)
    )
    scalp_min_market_cap_usd: float = field(
        default_factory=lambda: _get_env_float("SCALP_MIN_MARKET_CAP_USD", 500)
    )
    scalp_retry_cooldown: int = field(
        default_factory=lambda: _get_env_int("SCALP_RETRY_COOLDOWN", 3 * 60)
    )
    scalp_take_profit_pct: float = field(
        default_factory=lambda: _get_env_float("SCALP_TAKE_PROFIT_PCT", 10)
    )
    scalp_stop_loss_pct: float = field(
        default_factory=lambda: _get_env_float("SCALP_STOP_LOSS_PCT", -3)
    )
    scalp_trail_activate_pct: float = field(
        default_factory=lambda: _get_env_float("SCALP_TRAIL_ACTIVATE_PCT", 3)
    )
    scalp_trail_drop_pct: float = field(
        default_factory=lambda: _get_env_float("SCALP_TRAIL_DROP_PCT", 2)
    )
    scalp_max_hold_seconds: int = field(
        default_factory=lambda: _get_env_int("SCALP_MAX_HOLD_SECONDS", 30)
    )

    # =========================================================================
    # Analytics
    # =========================================================================

    analytics_interval: int = field(default_factory=lambda: _get_env_int("ANALYTICS_INTERVAL", 30))

    # Stop target used for overshoot when a trade-log entry predates stop tracking
    default_stop_target_pct: float = field(
        default_factory=lambda: _get_env_float("DEFAULT_STOP_TARGET_PCT", -8)
    )

    # =========================================================================
    # Orchestrator
    # =========================================================================

    render_interval: int = field(default_factory=lambda: _get_env_int("RENDER_INTERVAL", 10))
    first_render_delay: int = field(default_factory=lambda: _get_env_int("FIRST_RENDER_DELAY", 5))
    agent_spawn_stagger: float = field(
        default_factory=lambda: _get_env_float("AGENT_SPAWN_STAGGER", 2)
    )
    log_tail_lines: int = field(default_factory=lambda: _get_env_int("LOG_TAIL_LINES", 200))

    # =========================================================================
    # System
    # =========================================================================

    # Logging level: DEBUG, INFO, WARNING, ERROR
    log_level: str = field(default_factory=lambda: _get_env("LOG_LEVEL", "INFO"))

    # Optional directory for a per-process log file (besides stderr)
    log_dir: str = field(default_factory=lambda: _get_env("LOG_DIR"))

    # =========================================================================
    # Derived paths
    # =========================================================================

    @property
    def store_path(self) -> Path:
        return Path(self.store_dir)

    @property
    def watchlist_path(self) -> Path:
        return self.store_path / "watchlist.json"

    @property
    def scores_path(self) -> Path:
        return self.store_path / "scores.json"

    @property
    def swing_positions_path(self) -> Path:
        return self.store_path / "positions.json"

    @property
    def scalp_positions_path(self) -> Path:
        return self.store_path / "scalp-positions.json"

    @property
    def trade_log_path(self) -> Path:
        return self.store_path / "trade-log.json"

    @property
    def balance_path(self) -> Path:
        return self.store_path / "balance.json"

    @property
    def analytics_path(self) -> Path:
        return self.store_path / "analytics.json"

    @property
    def report_path(self) -> Path:
        return self.store_path / "strategy-report.txt"

    @property
    def agents_log_path(self) -> Path:
        return self.store_path / "agents.log"

    def validate(self) -> list[str]:
        """
        Check that the settings make sense.
        Returns a list of problems found (empty list = all good).
        """
        problems = []

        if self.trading_mode not in ("dry_run", "live"):
            problems.append(f"TRADING_MODE must be dry_run or live, got {self.trading_mode!r}")
        if self.trading_mode == "live" and not self.execution_client:
            problems.append("EXECUTION_CLIENT is not set, needed for live trading")

        if len(self.swing_stop_loss_pcts) != 3:
            problems.append("SWING_STOP_LOSS_PCTS needs one value per stage (3 values)")
        elif self.swing_stop_loss_pcts != sorted(self.swing_stop_loss_pcts):
            problems.append("SWING_STOP_LOSS_PCTS must only ratchet upwards")
        if len(self.swing_partial_tp_pcts) != 2:
            problems.append("SWING_PARTIAL_TP_PCTS needs exactly 2 values")
        elif self.swing_partial_tp_pcts[-1] >= self.swing_final_tp_pct:
            problems.append("SWING_FINAL_TP_PCT must be above the partial take-profit levels")

        if self.scalp_stop_loss_pct >= 0:
            problems.append("SCALP_STOP_LOSS_PCT should be negative (e.g. -3)")
        if self.scalp_trail_drop_pct <= 0:
            problems.append("SCALP_TRAIL_DROP_PCT should be positive")
        if self.max_watchlist_tokens <= 0:
            problems.append("MAX_WATCHLIST_TOKENS must be positive")

        return problems


# Create a global settings instance that other modules can import
# Usage: from config.settings import settings
settings = Settings()
