"""
OpsDesk — Snapshot Store

Single source of truth for every entity collection. The whole entity graph is
persisted as one JSON document behind an injected repository; every mutation
is a full load → transform → persist cycle.

Within one process mutations are serialized by an asyncio lock, so sequential
callers always observe a monotonically updated view. Across processes the
document revision acts as a version stamp: a write whose loaded revision is
stale is rejected with ConcurrentModification instead of overwriting.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Callable, NamedTuple, Optional, Tuple, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from database import close_db, create_session_maker, init_db
from entities import Snapshot
from errors import ConcurrentModification, PersistenceError
from models import SnapshotDocument, utcnow
from telemetry import traced

logger = logging.getLogger("opsdesk.store")

SNAPSHOT_KEY = os.getenv("SNAPSHOT_KEY", "primary")

T = TypeVar("T")

# Failures of the backing store we translate; anything else is a bug and propagates
STORAGE_ERRORS = (SQLAlchemyError, OSError)


class StoredDocument(NamedTuple):
    payload: str
    revision: int


# ============================================================
# REPOSITORIES
# ============================================================

class SnapshotRepository(ABC):
    """Durable keyed storage for one serialized snapshot document"""

    async def open(self) -> None:
        """Prepare the backing store (called once at process start)"""

    @abstractmethod
    async def read(self) -> Optional[StoredDocument]:
        """Return the stored document, or None if nothing was written yet"""

    @abstractmethod
    async def write(self, payload: str, expected_revision: int) -> int:
        """Replace the stored document if it is still at `expected_revision`.

        Returns the new revision; raises ConcurrentModification otherwise.
        """

    async def close(self) -> None:
        """Release the backing store (called once at shutdown)"""


class SQLSnapshotRepository(SnapshotRepository):
    """Stores the document as a single row of `snapshot_documents`"""

    def __init__(self, engine: AsyncEngine, key: str = SNAPSHOT_KEY):
        self.engine = engine
        self.key = key
        self._session_maker = create_session_maker(engine)

    async def open(self) -> None:
        await init_db(self.engine)

    async def read(self) -> Optional[StoredDocument]:
        async with self._session_maker() as session:
            row = await session.get(SnapshotDocument, self.key)
            if row is None:
                return None
            return StoredDocument(row.payload, row.revision or 0)

    async def write(self, payload: str, expected_revision: int) -> int:
        async with self._session_maker() as session:
            async with session.begin():
                row = await session.get(SnapshotDocument, self.key)
                current = (row.revision or 0) if row is not None else 0
                if current != expected_revision:
                    raise ConcurrentModification(
                        f"Snapshot '{self.key}' is at revision {current}, expected {expected_revision}"
                    )
                if row is None:
                    row = SnapshotDocument(key=self.key, payload=payload, revision=1)
                    session.add(row)
                else:
                    row.payload = payload
                    row.revision = current + 1
                    row.updated_at = utcnow()
            return row.revision

    async def close(self) -> None:
        await close_db(self.engine)


# ============================================================
# STORE
# ============================================================

class SnapshotStore:
    """Atomic load and read-modify-write over the snapshot document"""

    def __init__(self, repository: SnapshotRepository):
        self.repository = repository
        self.revision = 0
        self._lock = asyncio.Lock()

    async def open(self) -> None:
        await self.repository.open()
        try:
            existing = await self.repository.read()
        except STORAGE_ERRORS as e:
            logger.error(f"Snapshot read failed during open: {e}")
            return
        if existing is None:
            await self._persist(Snapshot(), expected_revision=0)
            logger.info("Initialised empty snapshot document")
        else:
            self.revision = existing.revision

    async def close(self) -> None:
        await self.repository.close()

    async def load(self) -> Snapshot:
        """Current full snapshot; falls back to an empty one if unreadable"""
        snapshot, _ = await self._load()
        return snapshot

    async def mutate(self, transform: Callable[[Snapshot], T]) -> T:
        """Apply `transform` to a fresh snapshot and persist the result whole.

        If `transform` raises, nothing is written. If the write fails, the
        in-memory changes are discarded and PersistenceError is raised.
        """
        async with self._lock:
            with traced("snapshot.mutate", tracer_name="opsdesk.store"):
                snapshot, revision = await self._load()
                result = transform(snapshot)
                await self._persist(snapshot, expected_revision=revision)
                return result

    # --- internals ---

    async def _load(self) -> Tuple[Snapshot, int]:
        try:
            stored = await self.repository.read()
        except STORAGE_ERRORS as e:
            logger.error(f"Snapshot read failed, continuing with empty snapshot: {e}")
            return Snapshot(), self.revision
        if stored is None:
            return Snapshot(), 0
        return self._decode(stored.payload), stored.revision

    @staticmethod
    def _decode(raw: str) -> Snapshot:
        try:
            return Snapshot.model_validate_json(raw)
        except ValueError as e:
            logger.error(f"Snapshot document is corrupted, continuing with empty snapshot: {e}")
            return Snapshot()

    async def _persist(self, snapshot: Snapshot, expected_revision: int) -> None:
        payload = snapshot.model_dump_json()
        try:
            self.revision = await self.repository.write(payload, expected_revision)
        except ConcurrentModification as e:
            logger.warning(f"Snapshot write rejected: {e}")
            raise
        except STORAGE_ERRORS as e:
            logger.error(f"Snapshot write failed: {e}")
            raise PersistenceError(f"Failed to persist snapshot: {e}") from e
        logger.debug(f"Snapshot persisted (revision={self.revision}, bytes={len(payload)})")
