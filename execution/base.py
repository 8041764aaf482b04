"""
Execution Collaborator Interface
================================
Everything the agents need from the trading platform, and nothing more.

The agents never talk to a platform SDK directly. They hold an
ExecutionClient and ask it to:
- authenticate(chain)                 -> Session
- quote(token, chain)                 -> live price or None
- buy / sell(session, token, amount)  -> TradeResult
- newest_tokens(session, chain, ...)  -> raw listing dicts
- holdings(session, chain)            -> custodial holdings or None
- subscribe(session, chain)           -> async stream of FeedMessage

Two implementations exist: PaperExecutionClient (dry_run, the default)
and whatever live client EXECUTION_CLIENT points at. The live client is
loaded by dotted path so the platform SDK and its signing layer stay
outside this repository.

Every call is fallible. Order calls never raise for a refused trade;
they return TradeResult with success=False, and mark whether a fresh
session is worth a retry (transport/auth) or not (insufficient balance,
slippage).
"""

import importlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from config.settings import Settings


class AuthenticationError(Exception):
    """The platform refused to hand out a session. Fatal at startup."""


@dataclass(frozen=True)
class TradeResult:
    success: bool
    tx_ref: str = ""
    message: str = ""
    retryable: bool = False

    @classmethod
    def ok(cls, tx_ref: str, message: str = "") -> "TradeResult":
        return cls(success=True, tx_ref=tx_ref, message=message)

    @classmethod
    def failed(cls, message: str, retryable: bool = True) -> "TradeResult":
        return cls(success=False, message=message, retryable=retryable)

    @classmethod
    def rejected(cls, message: str) -> "TradeResult":
        """Business rejection: a new session would not change the answer."""
        return cls(success=False, message=message, retryable=False)


@dataclass(frozen=True)
class Session:
    wallet_address: str
    custodial_address: str
    token: str
    chain_id: int


@dataclass
class FeedMessage:
    """One push event. Either list may be empty."""
    new_tokens: list[dict[str, Any]] = field(default_factory=list)
    price_updates: list[dict[str, Any]] = field(default_factory=list)


class ExecutionClient(ABC):
    """
    Base class for execution collaborators.

    Usage:
        client = load_execution_client(settings)
        await client.initialize()
        session = await client.authenticate(settings.chain_id)
        result = await client.buy(session, address, lamports, settings.chain_id)
        await client.close()
    """

    async def initialize(self) -> None:
        """Open network resources."""

    async def close(self) -> None:
        """Release network resources."""

    @abstractmethod
    async def authenticate(self, chain_id: int) -> Session:
        """Return a fresh session or raise AuthenticationError."""

    @abstractmethod
    async def quote(self, token_address: str, chain_id: int) -> float | None:
        """Live USD price, None when unavailable."""

    @abstractmethod
    async def buy(self, session: Session, token_address: str, amount: int, chain_id: int) -> TradeResult:
        """Spend `amount` base units (lamports) of the native coin on the token."""

    @abstractmethod
    async def sell(self, session: Session, token_address: str, amount: int, chain_id: int) -> TradeResult:
        """Sell the token position worth `amount` base units at entry."""

    @abstractmethod
    async def newest_tokens(self, session: Session, chain_id: int, page: int, limit: int) -> list[dict[str, Any]]:
        """Newest listings, platform shaped, newest first."""

    async def holdings(self, session: Session, chain_id: int) -> list[dict[str, Any]] | None:
        return None

    async def subscribe(self, session: Session, chain_id: int) -> AsyncIterator[FeedMessage]:
        """Push feed. Clients without one yield nothing and return."""
        return
        yield


def load_execution_client(settings: Settings) -> ExecutionClient:
    """
    Build the execution client for the configured trading mode.

    dry_run -> PaperExecutionClient
    live    -> class named by EXECUTION_CLIENT ("package.module:ClassName"),
               constructed with the Settings object
    """
    if settings.trading_mode != "live":
        from execution.paper import PaperExecutionClient
        return PaperExecutionClient(settings)

    module_name, _, class_name = settings.execution_client.partition(":")
    if not module_name or not class_name:
        raise ValueError(f"EXECUTION_CLIENT must look like 'module:ClassName', got {settings.execution_client!r}")
    client_cls = getattr(importlib.import_module(module_name), class_name)
    client = client_cls(settings)
    if not isinstance(client, ExecutionClient):
        raise TypeError(f"{settings.execution_client} is not an ExecutionClient")
    return client
