# spot_search.py
# Free text search over curated spots: embed the query, nearest neighbours by
# cosine distance, then keep what is within walking-ish range of the caller.
# Vectors are stored as float32 blobs and compared in one numpy batch.

from __future__ import annotations
import asyncio
import logging
import sqlite3
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from config import (
    DEFAULT_RADIUS_KM,
    DEFAULT_SETTINGS,
    EMBEDDING_MODEL,
    EMBEDDING_TIMEOUT_S,
    MAX_QUERY_LENGTH,
    MAX_VECTOR_DISTANCE,
    MIN_QUERY_LENGTH,
    VECTOR_TOP_K,
    Settings,
)
from models import Spot, SpotMatch, SpotSearchError, SpotSearchResponse
from providers.embeddings import embed_text
from utils import distance_km

log = logging.getLogger("moodspot.spots")

SPOT_COLUMNS = (
    "id", "name", "lat", "lng", "category", "description", "magazine_context",
    "google_place_id", "rating", "address", "opening_hours", "source",
)

GENERIC_FAILURE = "Search failed. Please try again."

# (api_key, text, model) -> vector
Embed = Callable[..., Awaitable[List[float]]]


def cosine_distances(query: Sequence[float], vectors: np.ndarray) -> np.ndarray:
    """0 = same direction, 2 = opposite. Zero vectors come out as unrelated (1)."""
    query_vec = np.asarray(query, dtype=np.float32).reshape(1, -1)
    return 1.0 - cosine_similarity(query_vec, vectors).flatten()


def to_blob(embedding: Sequence[float]) -> bytes:
    return np.asarray(embedding, dtype=np.float32).tobytes()


def from_blob(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


class SpotIndex:
    """Curated spots with their embeddings, stored in sqlite."""

    def __init__(self, path: str):
        self.path = path
        conn = self._connect()
        try:
            with conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS spots (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        lat REAL NOT NULL,
                        lng REAL NOT NULL,
                        category TEXT NOT NULL,
                        description TEXT,
                        magazine_context TEXT,
                        embedding BLOB,
                        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                        google_place_id TEXT,
                        rating REAL,
                        address TEXT,
                        opening_hours TEXT,
                        source TEXT DEFAULT 'manual'
                    )
                """)
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=5.0)

    def add_spot(self, spot: Spot, embedding: Sequence[float]) -> int:
        """Insert a spot (its id is ignored) and return the new row id."""
        values = spot.model_dump(exclude={"id"})
        cols = list(values) + ["embedding"]
        conn = self._connect()
        try:
            with conn:
                cur = conn.execute(
                    f"INSERT INTO spots ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
                    (*values.values(), to_blob(embedding)),
                )
                return int(cur.lastrowid)
        finally:
            conn.close()

    def nearest(self, embedding: Sequence[float], top_k: int, max_distance: float) -> List[Tuple[Spot, float]]:
        """Top-k spots by cosine distance, keeping only those under max_distance."""
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT {', '.join(SPOT_COLUMNS)}, embedding FROM spots WHERE embedding IS NOT NULL"
            ).fetchall()
        finally:
            conn.close()

        if not rows:
            return []

        # all stored vectors share the embedding model dimension
        matrix = np.vstack([from_blob(row[-1]) for row in rows])
        distances = cosine_distances(embedding, matrix)
        order = np.argsort(distances, kind="stable")[:top_k]

        hits: List[Tuple[Spot, float]] = []
        for i in order:
            d = float(distances[i])
            if d >= max_distance:
                break
            row = rows[i]
            spot = Spot(**{k: v for k, v in zip(SPOT_COLUMNS, row) if v is not None})
            hits.append((spot, d))
        return hits


def _fail(code: str, message: str = GENERIC_FAILURE) -> SpotSearchResponse:
    return SpotSearchResponse(success=False, error=SpotSearchError(code=code, message=message))


async def search_spots(
    query: str,
    user_lat: float,
    user_lng: float,
    *,
    index: SpotIndex,
    settings: Settings = DEFAULT_SETTINGS,
    embed: Embed = embed_text,
) -> SpotSearchResponse:
    try:
        q = (query or "").strip()
        if not (MIN_QUERY_LENGTH <= len(q) <= MAX_QUERY_LENGTH):
            return _fail(
                "VALIDATION_ERROR",
                f"Search text must be between {MIN_QUERY_LENGTH} and {MAX_QUERY_LENGTH} characters.",
            )
        if not (-90 <= user_lat <= 90) or not (-180 <= user_lng <= 180):
            return _fail("VALIDATION_ERROR", "Invalid coordinates.")

        try:
            vector = await asyncio.wait_for(
                embed(settings.openai_api_key, q, EMBEDDING_MODEL), timeout=EMBEDDING_TIMEOUT_S
            )
        except Exception as e:
            log.warning("embedding failed: %s", e)
            return _fail("EMBEDDING_ERROR")

        try:
            hits = await asyncio.to_thread(index.nearest, vector, VECTOR_TOP_K, MAX_VECTOR_DISTANCE)
        except Exception as e:
            log.warning("spot index lookup failed: %s", e)
            return _fail("DB_ERROR")

        matches: List[SpotMatch] = []
        for spot, vector_distance in hits:
            d = distance_km(user_lat, user_lng, spot.lat, spot.lng)
            if d <= DEFAULT_RADIUS_KM:
                matches.append(SpotMatch(**spot.model_dump(), distance=d, vector_distance=vector_distance))
        # most similar first
        matches.sort(key=lambda m: m.vector_distance)
        return SpotSearchResponse(success=True, data=matches)
    except Exception:
        log.exception("unexpected spot search failure")
        return _fail("UNKNOWN_ERROR", "An unexpected error occurred. Please try again.")


_index: Optional[SpotIndex] = None


def get_index(settings: Settings = DEFAULT_SETTINGS) -> SpotIndex:
    global _index
    if _index is None:
        _index = SpotIndex(settings.spots_db_path)
    return _index
