# pipeline.py
# Mood search: places -> chain filter (+ radius fallback) -> cache -> enrich
# misses -> build vibes -> background cache write -> filter -> score sort.

from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set

from chain_filter import filter_chain_stores
from config import (
    DEFAULT_RADIUS_KM,
    DEFAULT_SETTINGS,
    MAX_ENRICH_PLACES,
    PLACES_MAX_RESULTS,
    RADIUS_EXPANSION_FACTOR,
    SCORE_MAX_DISTANCE_KM,
    Settings,
)
from models import EnrichedVibe, SearchFilters, Venue, VibeResult, VibeSearchResponse
from photo_curator import select_hero_photo
from providers.places import PlacesError, map_place_type, photo_url, search_by_text
from scoring import sort_by_score
from utils import dedupe, distance_km
from vibe_cache import CacheWrite, VibeCache, make_store
from vibe_enricher import VibeEnricher

log = logging.getLogger("moodspot.pipeline")

# one bilingual text query per mood
MOOD_QUERIES: Dict[str, str] = {
    "chill": "静かな カフェ 落ち着いた雰囲気 quiet cozy cafe",
    "party": "にぎやか バー ナイトライフ 音楽 lively bar nightlife music",
    "focus": "作業 カフェ ワークスペース 静か work cafe workspace quiet",
}

MSG_KEYS_MISSING = "API keys not configured."
MSG_NO_PLACES = "No places found nearby."
MSG_NO_MATCHES = "No places matched your mood and filters."
MSG_PROVIDER_DOWN = "Place search is temporarily unavailable. Please try again."

SearchPlaces = Callable[..., Awaitable[List[Venue]]]


def build_vibe(venue: Venue, vibe: VibeResult, user_lat: float, user_lng: float, places_api_key: str) -> EnrichedVibe:
    hero = select_hero_photo(venue.photos)
    return EnrichedVibe(
        id=venue.id,
        name=venue.name,
        catchphrase=vibe.catchphrase,
        vibe_tags=vibe.vibe_tags,
        hero_image_url=photo_url(hero.name, places_api_key) if hero else "",
        mood_score=vibe.mood_score,
        hidden_gems_info=vibe.hidden_gems_info,
        is_rejected=vibe.is_rejected,
        lat=venue.lat,
        lng=venue.lng,
        category=map_place_type(venue.types),
        rating=venue.rating,
        address=venue.address,
        opening_hours=venue.opening_hours,
        open_now=venue.open_now,
        price_level=venue.price_level,
        distance=distance_km(user_lat, user_lng, venue.lat, venue.lng),
    )


def apply_filters(vibes: List[EnrichedVibe], filters: Optional[SearchFilters]) -> List[EnrichedVibe]:
    """open now, then price cap, then keyword. Unknown data always passes."""
    if filters is None:
        return vibes
    out = vibes
    if filters.open_now:
        out = [v for v in out if v.open_now is not False]
    if filters.max_price_level is not None:
        out = [v for v in out if v.price_level is None or v.price_level <= filters.max_price_level]
    keyword = (filters.keyword or "").strip().lower()
    if keyword:
        out = [v for v in out if keyword in v.name.lower()]
    return out


class MoodSearchPipeline:
    def __init__(
        self,
        settings: Settings = DEFAULT_SETTINGS,
        enricher: Optional[VibeEnricher] = None,
        cache: Optional[VibeCache] = None,
        search_places: SearchPlaces = search_by_text,
    ):
        self.settings = settings
        self.enricher = enricher or VibeEnricher()
        self.cache = cache or VibeCache(make_store(settings.cache_db_path))
        self._search_places = search_places
        self._cache_writes: Set[asyncio.Task] = set()

    async def _search(self, query: str, lat: float, lng: float, radius_km: float) -> List[Venue]:
        venues = await self._search_places(
            self.settings.places_api_key, query, (lat, lng), radius_km * 1000, PLACES_MAX_RESULTS
        )
        return dedupe(venues)

    async def _find_candidates(self, mood: str, lat: float, lng: float) -> tuple[List[Venue], bool]:
        """
        Returns (venues, chain_fallback). Order is fixed: base search with the
        chain filter, then one wider search with the filter, then the
        unfiltered base results. An empty result is worse than a chain.
        """
        query = MOOD_QUERIES[mood]
        original = await self._search(query, lat, lng, DEFAULT_RADIUS_KM)
        if not original:
            return [], False

        venues = filter_chain_stores(original)
        if venues:
            return venues, False

        log.info("all %d places were chains, widening search", len(original))
        expanded = await self._search(query, lat, lng, DEFAULT_RADIUS_KM * RADIUS_EXPANSION_FACTOR)
        venues = filter_chain_stores(expanded)
        if venues:
            return venues, False

        log.info("wider search still only chains, falling back to unfiltered results")
        return original, True

    def _queue_cache_write(self, entries: List[CacheWrite]) -> None:
        if not entries:
            return
        task = asyncio.create_task(self.cache.set_cached(entries))
        self._cache_writes.add(task)
        task.add_done_callback(self._cache_writes.discard)

    async def wait_for_cache_writes(self) -> None:
        """Drain pending background cache writes (tests, shutdown)."""
        if self._cache_writes:
            await asyncio.gather(*list(self._cache_writes), return_exceptions=True)

    async def search_by_mood(
        self, mood: str, lat: float, lng: float, filters: Optional[SearchFilters] = None
    ) -> VibeSearchResponse:
        s = self.settings
        if not s.places_api_key or not s.gemini_api_key:
            return VibeSearchResponse(success=False, data=[], message=MSG_KEYS_MISSING)

        # a previous request's failures shouldn't poison this one
        self.enricher.reset_circuit_breaker()

        try:
            venues, chain_fallback = await self._find_candidates(mood, lat, lng)
        except PlacesError as e:
            log.warning("places search failed: %s", e)
            return VibeSearchResponse(success=False, data=[], message=MSG_PROVIDER_DOWN)

        if not venues:
            return VibeSearchResponse(success=True, data=[], message=MSG_NO_PLACES)

        candidates = venues[:MAX_ENRICH_PLACES]

        cached = await self.cache.get_cached([v.id for v in candidates], mood)
        uncached = [v for v in candidates if v.id not in cached]

        fresh: Dict[str, VibeResult] = {}
        if uncached:
            fresh = await self.enricher.batch_convert_to_vibe(uncached, s.gemini_api_key, 5)
        log.info("mood=%s candidates=%d cached=%d enriched=%d", mood, len(candidates), len(cached), len(fresh))

        vibes: List[EnrichedVibe] = []
        to_cache: List[CacheWrite] = []
        for venue in candidates:
            hit = cached.get(venue.id)
            if hit is not None:
                # cached distance was measured from wherever the last caller stood
                vibes.append(hit.model_copy(update={"distance": distance_km(lat, lng, hit.lat, hit.lng)}))
                continue

            result = fresh.get(venue.id)
            if result is None:
                continue
            vibe = build_vibe(venue, result, lat, lng, s.places_api_key)
            vibes.append(vibe)
            to_cache.append(CacheWrite(place_id=venue.id, mood=mood, vibe=vibe))

        self._queue_cache_write(to_cache)

        if not chain_fallback:
            vibes = [v for v in vibes if not v.is_rejected]
        vibes = apply_filters(vibes, filters)
        vibes = sort_by_score(vibes, mood, SCORE_MAX_DISTANCE_KM)

        if not vibes:
            return VibeSearchResponse(success=True, data=[], message=MSG_NO_MATCHES)
        return VibeSearchResponse(success=True, data=vibes)
