"""
Shared JSON Store
=================
The only channel between agents. Each agent is its own OS process, so
nothing is shared in memory; every hand-off goes through one JSON
document per channel inside STORE_DIR.

Rules every writer follows:
- A document is always replaced whole: write a temp file in the same
  directory, then os.replace() it over the old one. Readers never see a
  half-written file.
- A missing or corrupt document reads as "no data yet".
- Every document carries lastUpdated plus one named collection.
- Read-modify-write sequences (positions, trade log) run under an
  advisory fcntl lock on a sidecar .lock file where the platform has one.

Positions carry a version counter. compare_and_swap() re-reads the
record, checks it is still open at the expected version, applies the
mutation and bumps the version. Price and peak refreshes do not bump it:
the version only counts exit transitions, so a concurrent price refresh
never invalidates a sell that is already on the wire.
"""

import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

from database.models import Position, TradeLogEntry
from utils.clock import now_iso
from utils.logger import get_logger

logger = get_logger(__name__)


class JsonDocumentStore:
    """
    One JSON document at a fixed path.

    Usage:
        store = JsonDocumentStore(settings.watchlist_path, "tokens")
        tokens = store.read()
        store.write(tokens)
    """

    def __init__(self, path: str | Path, collection: str):
        self.path = Path(path)
        self.collection = collection

    # =========================================================================
    # Raw document access
    # =========================================================================

    def read_document(self) -> dict[str, Any]:
        """Return the whole document, or {} when missing or unreadable."""
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("store_document_unreadable", path=str(self.path), error=str(e))
            return {}
        if not isinstance(data, dict):
            logger.warning("store_document_malformed", path=str(self.path))
            return {}
        return data

    def write_document(self, document: dict[str, Any]) -> None:
        """Atomically replace the document. lastUpdated is always refreshed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"lastUpdated": now_iso(), **document}
        tmp = self.path.with_name(f"{self.path.name}.{os.getpid()}.tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp, self.path)
        finally:
            if tmp.exists():
                tmp.unlink()

    # =========================================================================
    # Collection access
    # =========================================================================

    def read(self) -> list[dict[str, Any]]:
        items = self.read_document().get(self.collection)
        return items if isinstance(items, list) else []

    def write(self, items: list[dict[str, Any]]) -> None:
        self.write_document({self.collection: items})

    def last_updated(self) -> str | None:
        return self.read_document().get("lastUpdated")

    @contextmanager
    def locked(self) -> Iterator[None]:
        """
        Hold an exclusive advisory lock on <document>.lock.

        Only cooperating writers honour it. On platforms without fcntl
        the body still runs, protected by the atomic replace alone.
        """
        lock_path = self.path.with_name(self.path.name + ".lock")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if os.name != "posix":
            yield
            return

        import fcntl

        with open(lock_path, "a", encoding="utf-8") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


class PositionStore(JsonDocumentStore):
    """
    Swing or scalp positions. Records are never deleted and a closed
    record is never rewritten.

    Usage:
        store = PositionStore(settings.swing_positions_path)
        store.add(position)
        updated = store.compare_and_swap(pos.id, pos.version, mutate)
    """

    def __init__(self, path: str | Path):
        super().__init__(path, "positions")

    def _load(self) -> list[Position]:
        positions = []
        for item in self.read():
            try:
                positions.append(Position.from_dict(item))
            except (TypeError, ValueError, KeyError) as e:
                logger.warning("position_record_skipped", path=str(self.path), error=str(e))
        return positions

    def _save(self, positions: list[Position]) -> None:
        self.write([p.to_dict() for p in positions])

    def all(self) -> list[Position]:
        return self._load()

    def open_positions(self) -> list[Position]:
        return [p for p in self._load() if p.is_open]

    def get(self, position_id: str) -> Position | None:
        for position in self._load():
            if position.id == position_id:
                return position
        return None

    def add(self, position: Position) -> None:
        with self.locked():
            positions = self._load()
            positions.append(position)
            self._save(positions)

    def compare_and_swap(
        self,
        position_id: str,
        expected_version: int,
        mutate: Callable[[Position], None],
    ) -> Position | None:
        """
        Apply an exit transition if the record is still open and unchanged.

        Returns the committed record, or None when the position is gone,
        already closed, or was transitioned by another writer.
        """
        with self.locked():
            positions = self._load()
            for index, position in enumerate(positions):
                if position.id != position_id:
                    continue
                if not position.is_open or position.version != expected_version:
                    return None
                mutate(position)
                position.version = expected_version + 1
                positions[index] = position
                self._save(positions)
                return position
        return None

    def refresh_prices(self, prices: dict[str, float], peaks: dict[str, float] | None = None) -> int:
        """
        Write fresh prices (and scalp peaks) into open records only.

        Re-reads the document right before writing, so a stage transition
        committed in the meantime is kept. Peaks only ever move up.
        Returns the number of records changed.
        """
        peaks = peaks or {}
        with self.locked():
            positions = self._load()
            changed = 0
            for position in positions:
                if not position.is_open:
                    continue
                price = prices.get(position.id)
                if price is not None and price > 0 and price != position.current_price:
                    position.current_price = price
                    changed += 1
                peak = peaks.get(position.id)
                if peak is not None and (position.peak_price is None or peak > position.peak_price):
                    position.peak_price = peak
                    changed += 1
            if changed:
                self._save(positions)
            return changed


class TradeLog(JsonDocumentStore):
    """Append-only log of realized exits shared by both strategies."""

    def __init__(self, path: str | Path):
        super().__init__(path, "trades")

    def entries(self) -> list[TradeLogEntry]:
        entries = []
        for item in self.read():
            try:
                entries.append(TradeLogEntry.from_dict(item))
            except (TypeError, ValueError, KeyError) as e:
                logger.warning("trade_log_entry_skipped", error=str(e))
        return entries

    def append(self, entry: TradeLogEntry) -> None:
        with self.locked():
            items = self.read()
            items.append(entry.to_dict())
            self.write(items)


def write_text_atomic(path: str | Path, text: str) -> None:
    """Replace a plain-text document (the strategy report) atomically."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.{os.getpid()}.tmp")
    tmp.write_text(text, encoding="utf-8")
    os.replace(tmp, path)
