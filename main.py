"""
Pump.fun Alpha Hunter — Main Entry Point
========================================
Runs either the whole pipeline or one of its agents.

Without --agent this process is the orchestrator: it spawns one process
per agent (each of them is this same file with --agent) and draws the
live dashboard until Ctrl+C.

With --agent it runs exactly that agent until SIGINT/SIGTERM:
    scanner    newest listings -> watchlist.json (+ balance.json)
    analyst    watchlist.json -> scores.json
    trader     scores.json -> positions.json (swing entries)
    risk       staged exits on positions.json -> trade-log.json
    scalper    watchlist.json -> scalp-positions.json (entries and exits)
    analytics  trade-log.json -> analytics.json + strategy-report.txt

Usage:
    python main.py                          # Orchestrator + dashboard
    python main.py --agent scanner          # One agent, logs on stderr
    python main.py --mode live              # Override TRADING_MODE
"""

import asyncio
import argparse
import sys

from config.settings import settings
from execution.base import AuthenticationError
from utils.logger import setup_logging, get_logger

logger = get_logger(__name__)

AGENTS = ["scanner", "analyst", "trader", "risk", "scalper", "analytics"]


def build_agent(name: str):
    """Construct one agent, with an execution client where it trades."""
    if name == "analyst":
        from analyzer.token_scorer import TokenAnalyst
        return TokenAnalyst(settings)
    if name == "analytics":
        from analytics.performance import AnalyticsAgent
        return AnalyticsAgent(settings)

    from execution.base import load_execution_client
    client = load_execution_client(settings)

    if name == "scanner":
        from discovery.scanner import ScannerAgent
        return ScannerAgent(settings, client)
    if name == "trader":
        from trader.swing_trader import SwingTrader
        return SwingTrader(settings, client)
    if name == "risk":
        from trader.risk_manager import RiskManager
        return RiskManager(settings, client)
    if name == "scalper":
        from trader.scalper import Scalper
        return Scalper(settings, client)
    raise ValueError(f"unknown agent {name!r}")


async def main() -> None:
    """Main async entry point."""

    parser = argparse.ArgumentParser(description="Pump.fun Alpha Hunter")
    parser.add_argument("--agent", choices=AGENTS, help="Run a single agent instead of the orchestrator")
    parser.add_argument("--mode", choices=["dry_run", "live"], help="Override trading mode")
    args = parser.parse_args()

    if args.mode:
        settings.trading_mode = args.mode

    # The orchestrator owns the terminal, so it only logs to a file
    setup_logging(
        log_level=settings.log_level,
        log_dir=settings.log_dir or None,
        agent=args.agent,
        console=args.agent is not None,
    )

    problems = settings.validate()
    if problems:
        for problem in problems:
            logger.warning("config_issue", issue=problem)
        if settings.trading_mode == "live":
            logger.error("cannot_start_live_mode", issues=len(problems))
            sys.exit(1)

    if args.agent is None:
        from orchestrator.dashboard import run_orchestrator
        await run_orchestrator(settings)
        return

    from agent.runtime import run_agent

    logger.info(
        "agent_starting",
        agent=args.agent,
        mode=settings.trading_mode,
        store=str(settings.store_path),
    )

    try:
        agent = build_agent(args.agent)
        await run_agent(agent)
    except AuthenticationError as e:
        logger.error("authentication_failed", agent=args.agent, error=str(e))
        sys.exit(1)
    except (ValueError, TypeError, ImportError) as e:
        logger.error("agent_setup_failed", agent=args.agent, error=str(e))
        sys.exit(1)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
