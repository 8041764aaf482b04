"""
Logging Setup
=============
Structured logging shared by every agent process.

Each agent runs as its own OS process and writes its log lines to
stderr. The orchestrator reads that stream, tags every line with the
agent name and appends it to the shared agents.log, which is what the
dashboard tails. That is why logs go to stderr and not stdout here.

Log levels (from most to least detail):
- DEBUG: every skipped candidate, every price tick
- INFO: normal operations (watchlist written, buy filled, partial exit)
- WARNING: something unexpected but not broken (feed lost, stale quote)
- ERROR: something broke (sell failed twice, store conflict)
"""

import sys
import logging
from pathlib import Path

import structlog


def setup_logging(
    log_level: str = "INFO",
    log_dir: str | None = None,
    agent: str | None = None,
    console: bool = True,
) -> None:
    """
    Configure logging for one process.

    Args:
        log_level: How much detail to show (DEBUG, INFO, WARNING, ERROR)
        log_dir: Optional directory to also save logs to a file
        agent: Agent name bound into every log line (scanner, risk, ...)
        console: Write to stderr. The orchestrator turns this off while it
            owns the terminal.
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr) if console else logging.NullHandler()]
    logging.basicConfig(
        format="%(message)s",
        handlers=handlers,
        level=numeric_level,
        force=True,
    )

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path / f"{agent or 'alpha'}.log")
        file_handler.setLevel(numeric_level)
        logging.getLogger().addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            # Colours only when a human is watching, never inside agents.log
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if agent:
        structlog.contextvars.bind_contextvars(agent=agent)


def get_logger(module_name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a logger for a specific module.

    Usage:
        from utils.logger import get_logger
        logger = get_logger(__name__)
        logger.info("buy_filled", token="PEPE", amount_sol=0.005)
    """
    return structlog.get_logger(module_name)
