# vibe_cache.py
# (place id, mood) -> EnrichedVibe cache with a 7 day TTL.
# Best effort only: read failures are misses, write failures are dropped.

from __future__ import annotations
import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Protocol, Sequence, Tuple

from pydantic import ValidationError

from models import EnrichedVibe

log = logging.getLogger("moodspot.cache")

CACHE_TTL_S = 7 * 24 * 60 * 60


class PersistentCacheStore(Protocol):
    async def query(self, ids: Sequence[str], mood: str, now: float) -> List[Tuple[str, str]]:
        """Rows (place_id, vibe_json) for mood, id in ids, expires_at > now."""
        ...

    async def upsert(self, place_id: str, mood: str, vibe_json: str, expires_at: float) -> None:
        ...


@dataclass
class CacheEntry:
    expires: float
    data: str


class MemoryVibeStore:
    """Per-process store. Expiry is checked at read time, nothing sweeps it."""

    def __init__(self):
        self._store: dict[tuple[str, str], CacheEntry] = {}

    async def query(self, ids: Sequence[str], mood: str, now: float) -> List[Tuple[str, str]]:
        rows = []
        for place_id in ids:
            entry = self._store.get((place_id, mood))
            if entry and entry.expires > now:
                rows.append((place_id, entry.data))
        return rows

    async def upsert(self, place_id: str, mood: str, vibe_json: str, expires_at: float) -> None:
        self._store[(place_id, mood)] = CacheEntry(expires=expires_at, data=vibe_json)


class SQLiteVibeStore:
    """sqlite3 backed store. Each call opens its own connection in a worker thread."""

    def __init__(self, path: str):
        self.path = path
        conn = self._connect()
        try:
            with conn:
                conn.execute("""
                CREATE TABLE IF NOT EXISTS vibe_places_cache (
                    place_id TEXT NOT NULL,
                    mood TEXT NOT NULL,
                    vibe_json TEXT NOT NULL,
                    expires_at REAL NOT NULL,
                    PRIMARY KEY (place_id, mood)
                )
            """)
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=5.0)

    def _query(self, ids: Sequence[str], mood: str, now: float) -> List[Tuple[str, str]]:
        placeholders = ",".join("?" for _ in ids)
        conn = self._connect()
        try:
            cur = conn.execute(
                f"SELECT place_id, vibe_json FROM vibe_places_cache "
                f"WHERE mood = ? AND place_id IN ({placeholders}) AND expires_at > ?",
                (mood, *ids, now),
            )
            return [(row[0], row[1]) for row in cur.fetchall()]
        finally:
            conn.close()

    def _upsert(self, place_id: str, mood: str, vibe_json: str, expires_at: float) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    "INSERT OR REPLACE INTO vibe_places_cache (place_id, mood, vibe_json, expires_at) "
                    "VALUES (?, ?, ?, ?)",
                    (place_id, mood, vibe_json, expires_at),
                )
        finally:
            conn.close()

    async def query(self, ids: Sequence[str], mood: str, now: float) -> List[Tuple[str, str]]:
        return await asyncio.to_thread(self._query, ids, mood, now)

    async def upsert(self, place_id: str, mood: str, vibe_json: str, expires_at: float) -> None:
        await asyncio.to_thread(self._upsert, place_id, mood, vibe_json, expires_at)


@dataclass
class CacheWrite:
    place_id: str
    mood: str
    vibe: EnrichedVibe


class VibeCache:
    def __init__(
        self,
        store: PersistentCacheStore,
        ttl_seconds: int = CACHE_TTL_S,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ttl = ttl_seconds
        self._clock = clock

    async def get_cached(self, place_ids: List[str], mood: str) -> Dict[str, EnrichedVibe]:
        if not place_ids:
            return {}

        try:
            rows = await self.store.query(place_ids, mood, self._clock())
        except Exception as e:
            log.warning("cache read failed, treating as miss: %s", e)
            return {}

        cached: Dict[str, EnrichedVibe] = {}
        for place_id, vibe_json in rows:
            try:
                # validating through the model backfills fields added after the row was written
                cached[place_id] = EnrichedVibe.model_validate_json(vibe_json)
            except ValidationError:
                log.debug("skipping corrupt cache row %s/%s", place_id, mood)
        return cached

    async def set_cached(self, entries: List[CacheWrite]) -> None:
        if not entries:
            return

        expires_at = self._clock() + self.ttl
        try:
            for entry in entries:
                await self.store.upsert(entry.place_id, entry.mood, entry.vibe.model_dump_json(), expires_at)
        except Exception as e:
            log.warning("cache write failed (ignored): %s", e)


def make_store(db_path: str) -> PersistentCacheStore:
    if db_path:
        return SQLiteVibeStore(db_path)
    return MemoryVibeStore()
