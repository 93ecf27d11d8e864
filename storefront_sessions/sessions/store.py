"""
Sessions - Session storage abstraction.

Defines SessionStore protocol and concrete implementations:
- MemoryStore: In-memory storage (dev/testing)
- FileStore: File-based storage (single host)

Stores persist SessionRecords keyed by customer id. They never share a
record object with the caller: ``put`` and ``get`` both copy.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import re
import time
from collections import OrderedDict
from pathlib import Path
from typing import Any, Callable, Protocol

from .core import SessionRecord
from .faults import (
    SessionStoreUnavailableFault,
    SessionStoreCorruptedFault,
)


logger = logging.getLogger("storefront_sessions.sessions.store")

Clock = Callable[[], float]


# ============================================================================
# SessionStore Protocol
# ============================================================================

class SessionStore(Protocol):
    """
    Abstract session storage interface.

    Stores are responsible ONLY for persistence - they do NOT verify tokens
    or decide expiry. That happens in SessionTokenManager.

    All methods must be async and cancellation-safe.
    """

    async def get(self, customer_id: str) -> SessionRecord | None:
        """
        Load a record.

        Returns:
            SessionRecord if found and not expired, None otherwise

        Raises:
            SessionStoreUnavailableFault: Store is unavailable
            SessionStoreCorruptedFault: Data is corrupted
        """
        ...

    async def put(self, customer_id: str, record: SessionRecord) -> None:
        """
        Save a record (last write wins).

        Raises:
            SessionStoreUnavailableFault: Store is unavailable
        """
        ...

    async def delete(self, customer_id: str) -> None:
        """Delete a record (no-op if absent)."""
        ...

    async def exists(self, customer_id: str) -> bool:
        """Check if a live record exists."""
        ...

    async def cleanup_expired(self) -> int:
        """
        Remove expired records.

        Returns:
            Number of records removed
        """
        ...

    async def shutdown(self) -> None:
        """Gracefully shutdown store (close connections, flush buffers)."""
        ...


# ============================================================================
# MemoryStore - In-Memory Storage
# ============================================================================

class MemoryStore:
    """
    In-memory session storage for development and testing.

    Features:
    - Fast in-memory dict storage
    - Expired records invisible to ``get``
    - Max record limit (LRU eviction)

    NOT suitable for multi-process deployments (no sharing, no persistence).

    Example:
        >>> store = MemoryStore(max_sessions=10000)
        >>> await store.put("t_abc", SessionRecord(expires_at=173800))
        >>> (await store.get("t_abc")).expires_at
        173800
    """

    def __init__(self, max_sessions: int = 10000, clock: Clock = time.time):
        """
        Initialize memory store.

        Args:
            max_sessions: Maximum records to keep (LRU eviction)
            clock: Time source for expiry checks
        """
        self.max_sessions = max_sessions
        self._clock = clock
        self._records: OrderedDict[str, SessionRecord] = OrderedDict()
        self._lock = asyncio.Lock()

    def _now(self) -> int:
        return int(self._clock())

    async def get(self, customer_id: str) -> SessionRecord | None:
        """Load record from memory."""
        async with self._lock:
            record = self._records.get(customer_id)
            if record is None:
                return None

            if record.is_expired(self._now()):
                del self._records[customer_id]
                return None

            self._records.move_to_end(customer_id)
            return record.copy()

    async def put(self, customer_id: str, record: SessionRecord) -> None:
        """Save record to memory."""
        async with self._lock:
            # Evict if at capacity and this is a new record
            if customer_id not in self._records and len(self._records) >= self.max_sessions:
                self._evict_lru()

            stored = record.copy()
            stored.dirty = False
            self._records[customer_id] = stored
            self._records.move_to_end(customer_id)

    async def delete(self, customer_id: str) -> None:
        """Delete record from memory."""
        async with self._lock:
            self._records.pop(customer_id, None)

    async def exists(self, customer_id: str) -> bool:
        """Check if a live record exists."""
        async with self._lock:
            record = self._records.get(customer_id)
            return record is not None and not record.is_expired(self._now())

    async def cleanup_expired(self) -> int:
        """Remove expired records."""
        now = self._now()
        async with self._lock:
            expired = [cid for cid, record in self._records.items() if record.is_expired(now)]
            for customer_id in expired:
                del self._records[customer_id]

        if expired:
            logger.debug("Removed %d expired session records", len(expired))
        return len(expired)

    async def shutdown(self) -> None:
        """Shutdown store (clear memory)."""
        async with self._lock:
            self._records.clear()

    def _evict_lru(self) -> None:
        """Evict least recently used record."""
        if not self._records:
            return
        evicted, _ = self._records.popitem(last=False)
        logger.info(
            "Session store full, evicted least recently used record",
            extra={"customer_id_hash": _hash(evicted), "max_sessions": self.max_sessions},
        )

    def __len__(self) -> int:
        return len(self._records)

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
        return {
            "total_sessions": len(self._records),
            "max_sessions": self.max_sessions,
            "utilization": len(self._records) / self.max_sessions if self.max_sessions > 0 else 0,
        }


# ============================================================================
# FileStore - File-Based Storage
# ============================================================================

_SAFE_ID = re.compile(r"^[A-Za-z0-9_@-]{1,128}$")


class FileStore:
    """
    File-based session storage.

    Features:
    - One JSON file per customer id
    - Atomic writes (temp file, then rename)
    - Human-readable format

    NOT suitable for multiple hosts (no shared locking).

    Example:
        >>> store = FileStore(directory="/tmp/sessions")
        >>> await store.put("t_abc", SessionRecord(expires_at=173800))
        >>> await store.exists("t_abc")
        True
    """

    def __init__(self, directory: str | Path, clock: Clock = time.time):
        """
        Initialize file store.

        Args:
            directory: Directory to store session files
            clock: Time source for expiry checks
        """
        self.directory = Path(directory)
        self._clock = clock
        self._lock = asyncio.Lock()
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SessionStoreUnavailableFault(store_name="file", cause=str(e))

    def _now(self) -> int:
        return int(self._clock())

    def _get_path(self, customer_id: str) -> Path:
        """Get file path for a customer id (hashed when not filename-safe)."""
        if _SAFE_ID.match(customer_id):
            name = customer_id
        else:
            name = "h_" + hashlib.sha256(customer_id.encode()).hexdigest()
        return self.directory / f"{name}.json"

    def _read(self, path: Path, customer_id: str | None = None) -> SessionRecord | None:
        try:
            data = path.read_text()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error("Could not read session file %s: %s", path.name, e)
            raise SessionStoreUnavailableFault(store_name="file", cause=str(e))

        try:
            return SessionRecord.from_dict(json.loads(data))
        except (ValueError, TypeError, AttributeError) as e:
            raise SessionStoreCorruptedFault(
                message=f"Session file corrupted: {e}",
                customer_id=customer_id,
            )

    async def get(self, customer_id: str) -> SessionRecord | None:
        """Load record from file."""
        path = self._get_path(customer_id)

        async with self._lock:
            record = self._read(path, customer_id)
            if record is None:
                return None

            if record.is_expired(self._now()):
                self._unlink(path)
                return None

            return record

    async def put(self, customer_id: str, record: SessionRecord) -> None:
        """Save record to file."""
        path = self._get_path(customer_id)
        payload = dict(record.to_dict(), customer_id=customer_id)

        try:
            data = json.dumps(payload, indent=2, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise SessionStoreUnavailableFault(
                store_name="file",
                cause=f"session data is not JSON serializable: {e}",
            )

        async with self._lock:
            # Write file atomically (write to temp, then rename)
            temp_path = path.with_suffix(".tmp")
            try:
                temp_path.write_text(data)
                os.replace(temp_path, path)
            except OSError as e:
                logger.error("Could not write session file %s: %s", path.name, e)
                raise SessionStoreUnavailableFault(store_name="file", cause=str(e))

    async def delete(self, customer_id: str) -> None:
        """Delete session file."""
        async with self._lock:
            self._unlink(self._get_path(customer_id))

    async def exists(self, customer_id: str) -> bool:
        """Check if a live record file exists."""
        return await self.get(customer_id) is not None

    async def cleanup_expired(self) -> int:
        """Remove expired session files."""
        now = self._now()
        removed = 0

        async with self._lock:
            for path in self.directory.glob("*.json"):
                try:
                    record = self._read(path)
                except SessionStoreCorruptedFault:
                    logger.warning("Skipping corrupted session file %s", path.name)
                    continue

                if record is not None and record.is_expired(now):
                    self._unlink(path)
                    removed += 1

        return removed

    async def shutdown(self) -> None:
        """Shutdown store (no-op for files)."""
        pass

    def _unlink(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise SessionStoreUnavailableFault(store_name="file", cause=str(e))

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
        files = list(self.directory.glob("*.json"))
        return {
            "total_sessions": len(files),
            "total_size_bytes": sum(p.stat().st_size for p in files),
            "directory": str(self.directory),
        }


# ============================================================================
# Store Factory
# ============================================================================

def create_store(
    store_type: str = "memory",
    *,
    directory: str | Path | None = None,
    max_sessions: int = 10000,
    clock: Clock = time.time,
) -> MemoryStore | FileStore:
    """
    Create a session store from configuration values.

    Raises:
        ValueError: If store type is unsupported or misconfigured
    """
    if store_type == "memory":
        return MemoryStore(max_sessions=max_sessions, clock=clock)
    elif store_type == "file":
        if not directory:
            raise ValueError("File store requires a directory")
        return FileStore(directory=directory, clock=clock)
    else:
        raise ValueError(f"Unsupported session store: {store_type}")


def _hash(customer_id: str) -> str:
    return f"sha256:{hashlib.sha256(customer_id.encode()).hexdigest()[:16]}"
