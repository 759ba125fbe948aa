import asyncio
import functools
import json

import httpx
import pytest

from config import Settings
from factories import USER_LAT, USER_LNG, make_venue, make_vibe
from models import Photo, SearchFilters
from pipeline import (
    MOOD_QUERIES,
    MSG_KEYS_MISSING,
    MSG_NO_MATCHES,
    MSG_NO_PLACES,
    MSG_PROVIDER_DOWN,
    MoodSearchPipeline,
    apply_filters,
)
from providers.places import PlacesRateLimitError, search_by_text
from utils import distance_km
from vibe_cache import CacheWrite, MemoryVibeStore, VibeCache
from vibe_enricher import VibeEnricher

SETTINGS = Settings(places_api_key="places-key", gemini_api_key="gemini-key", cache_db_path="")

BASE_VIBE = {
    "catchphrase": "夜風と低音",
    "vibe_tags": ["#AfterWork", "#Dance", "#Friends"],
    "mood_score": {"chill": 40, "party": 90, "focus": 10},
    "hidden_gems_info": "",
    "is_rejected": False,
}


class FakePlaces:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def __call__(self, api_key, text_query, center, radius_m, max_results):
        self.calls.append({
            "api_key": api_key, "query": text_query, "center": center,
            "radius_m": radius_m, "max_results": max_results,
        })
        r = self.responses[len(self.calls) - 1]
        if isinstance(r, Exception):
            raise r
        return r


class FakeModel:
    """Generative provider stand-in; per venue-name overrides of the answer."""

    def __init__(self, overrides=None):
        self.overrides = overrides or {}
        self.names = []

    async def __call__(self, api_key, system_prompt, payload):
        name = json.loads(payload)["name"]
        self.names.append(name)
        return json.dumps({**BASE_VIBE, **self.overrides.get(name, {})})


class BrokenStore:
    async def query(self, ids, mood, now):
        raise ConnectionError("nope")

    async def upsert(self, place_id, mood, vibe_json, expires_at):
        raise ConnectionError("nope")


def _pipeline(places, model=None, store=None, settings=SETTINGS):
    model = model or FakeModel()
    enricher = VibeEnricher(model, retry_base_s=0)
    cache = VibeCache(store if store is not None else MemoryVibeStore())
    return MoodSearchPipeline(settings, enricher=enricher, cache=cache, search_places=places)


def _run(pipeline, mood="party", lat=USER_LAT, lng=USER_LNG, filters=None):
    async def go():
        resp = await pipeline.search_by_mood(mood, lat, lng, filters)
        await pipeline.wait_for_cache_writes()
        return resp

    return asyncio.run(go())


def test_missing_keys_fail_fast():
    places = FakePlaces([make_venue()])
    model = FakeModel()
    p = _pipeline(places, model, settings=Settings(places_api_key="", gemini_api_key="g"))

    resp = _run(p)

    assert resp.success is False
    assert resp.data == []
    assert resp.message == MSG_KEYS_MISSING
    assert places.calls == []
    assert model.names == []


def test_builds_scores_and_sorts():
    near = make_venue(id="near", name="Bar Hibiki", lat=35.6815, lng=139.7671,
                      types=["bar"], rating=4.5, open_now=True, price_level=2,
                      photos=[Photo(name="places/near/photos/a", width_px=1600, height_px=900)])
    far = make_venue(id="far", name="Club Umi", lat=35.7300, lng=139.8000, rating=3.0)
    places = FakePlaces([far, near])
    model = FakeModel()
    p = _pipeline(places, model)

    resp = _run(p)

    assert resp.success is True
    assert resp.message is None
    assert [v.id for v in resp.data] == ["near", "far"]
    top = resp.data[0]
    assert top.category == "Bar"
    assert top.open_now is True
    assert top.price_level == 2
    assert top.distance == pytest.approx(distance_km(USER_LAT, USER_LNG, 35.6815, 139.7671))
    assert top.hero_image_url.startswith("https://places.googleapis.com/v1/places/near/photos/a/media")
    assert resp.data[1].hero_image_url == ""
    assert sorted(model.names) == ["Bar Hibiki", "Club Umi"]

    call = places.calls[0]
    assert call["query"] == MOOD_QUERIES["party"]
    assert call["center"] == (USER_LAT, USER_LNG)
    assert call["radius_m"] == 10_000
    assert call["api_key"] == "places-key"


def test_new_results_are_cached():
    store = MemoryVibeStore()
    places = FakePlaces([make_venue(id="p1")], [make_venue(id="p1")])
    model = FakeModel()
    p = _pipeline(places, model, store=store)

    _run(p)
    _run(p)

    # second run served from cache
    assert model.names == ["Quiet Corner"]
    assert ("p1", "party") in store._store


def test_chain_only_results_trigger_one_wider_search():
    chains = [make_venue(id="c1", name="Starbucks Shibuya"), make_venue(id="c2", name="マクドナルド 渋谷店")]
    indie = make_venue(id="i1", name="Bar Kotoba")
    places = FakePlaces(chains, [indie])

    resp = _run(_pipeline(places))

    assert [v.id for v in resp.data] == ["i1"]
    assert len(places.calls) == 2
    assert places.calls[1]["radius_m"] == pytest.approx(15_000)


def test_raw_empty_search_does_not_expand():
    places = FakePlaces([])

    resp = _run(_pipeline(places))

    assert resp.success is True
    assert resp.data == []
    assert resp.message == MSG_NO_PLACES
    assert len(places.calls) == 1


def test_falls_back_to_unfiltered_chains():
    chains = [make_venue(id="c1", name="Doutor Coffee"), make_venue(id="c2", name="ローソン 横浜店")]
    places = FakePlaces(chains, [make_venue(id="c3", name="KFC Yokohama")])
    # the model flags chains as rejected; the fallback still shows them
    model = FakeModel({"Doutor Coffee": {"is_rejected": True}, "ローソン 横浜店": {"is_rejected": True}})

    resp = _run(_pipeline(places, model))

    assert resp.success is True
    assert sorted(v.id for v in resp.data) == ["c1", "c2"]
    assert all(v.is_rejected for v in resp.data)
    assert len(places.calls) == 2


def test_expanded_search_empty_also_falls_back():
    chains = [make_venue(id="c1", name="Doutor Coffee")]
    places = FakePlaces(chains, [])

    resp = _run(_pipeline(places))

    assert [v.id for v in resp.data] == ["c1"]


def test_cached_distance_is_recomputed():
    store = MemoryVibeStore()
    cache = VibeCache(store)
    stale = make_vibe(id="p1", lat=35.6850, lng=139.7671, distance=3.0)
    asyncio.run(cache.set_cached([CacheWrite("p1", "party", stale)]))

    model = FakeModel()
    places = FakePlaces([make_venue(id="p1")])
    p = MoodSearchPipeline(SETTINGS, enricher=VibeEnricher(model, retry_base_s=0), cache=cache, search_places=places)

    # Shibuya this time
    resp = _run(p, lat=35.6580, lng=139.7016)

    assert model.names == []
    assert len(resp.data) == 1
    expected = distance_km(35.6580, 139.7016, 35.6850, 139.7671)
    assert resp.data[0].distance == pytest.approx(expected)
    assert resp.data[0].distance != pytest.approx(3.0)


def test_open_now_filter_keeps_unknown():
    venues = [
        make_venue(id="open", name="Open Bar", open_now=True),
        make_venue(id="unknown", name="Mystery Bar", open_now=None),
        make_venue(id="closed", name="Closed Bar", open_now=False),
    ]
    resp = _run(_pipeline(FakePlaces(venues)), filters=SearchFilters(open_now=True))

    assert sorted(v.id for v in resp.data) == ["open", "unknown"]


def test_price_and_keyword_filters():
    venues = [
        make_venue(id="cheap", name="Standing Bar Ume", price_level=1),
        make_venue(id="posh", name="Bar Luxe", price_level=4),
        make_venue(id="unknown", name="bar nameless", price_level=None),
        make_venue(id="other", name="Jazz Kissa", price_level=1),
    ]
    resp = _run(_pipeline(FakePlaces(venues)), filters=SearchFilters(max_price_level=2, keyword="BAR"))

    assert sorted(v.id for v in resp.data) == ["cheap", "unknown"]


def test_rejected_are_dropped():
    venues = [make_venue(id="keep", name="Bar Kotoba"), make_venue(id="drop", name="Generic Grill")]
    model = FakeModel({"Generic Grill": {"is_rejected": True}})

    resp = _run(_pipeline(FakePlaces(venues), model))

    assert [v.id for v in resp.data] == ["keep"]


def test_everything_filtered_has_distinct_message():
    venues = [make_venue(id="drop", name="Generic Grill")]
    model = FakeModel({"Generic Grill": {"is_rejected": True}})

    resp = _run(_pipeline(FakePlaces(venues), model))

    assert resp.success is True
    assert resp.data == []
    assert resp.message == MSG_NO_MATCHES
    assert resp.message != MSG_NO_PLACES


def test_places_failure_is_sanitized():
    places = FakePlaces(PlacesRateLimitError("Places API rate limited (429): max retries exceeded"))

    resp = _run(_pipeline(places))

    assert resp.success is False
    assert resp.message == MSG_PROVIDER_DOWN
    assert "429" not in resp.message


def test_unreadable_places_payload_is_sanitized():
    transport = httpx.MockTransport(lambda r: httpx.Response(200, text="<html>oops</html>"))
    places = functools.partial(search_by_text, backoff_base_s=0, transport=transport)
    model = FakeModel()

    resp = _run(_pipeline(places, model), mood="chill")

    assert resp.success is False
    assert resp.data == []
    assert resp.message == MSG_PROVIDER_DOWN
    assert model.names == []


def test_candidates_capped_before_enrichment():
    venues = [make_venue(id=f"p{i}", name=f"Bar {i}") for i in range(25)]
    model = FakeModel()

    resp = _run(_pipeline(FakePlaces(venues), model))

    assert len(model.names) == 20
    assert len(resp.data) == 20


def test_duplicate_places_are_enriched_once():
    venues = [make_venue(id="p1", name="Bar One"), make_venue(id="p1", name="Bar One")]
    model = FakeModel()

    resp = _run(_pipeline(FakePlaces(venues), model))

    assert model.names == ["Bar One"]
    assert len(resp.data) == 1


def test_cache_failures_do_not_affect_results():
    resp = _run(_pipeline(FakePlaces([make_venue()]), store=BrokenStore()))

    assert resp.success is True
    assert [v.id for v in resp.data] == ["p1"]


def test_circuit_breaker_is_reset_per_request():
    model = FakeModel()
    p = _pipeline(FakePlaces([make_venue()]), model)
    p.enricher.consecutive_rate_limits = 99

    resp = _run(p)

    assert model.names == ["Quiet Corner"]
    assert resp.data[0].catchphrase == BASE_VIBE["catchphrase"]


def test_missing_enrichment_entry_is_excluded():
    class LossyEnricher(VibeEnricher):
        async def batch_convert_to_vibe(self, venues, api_key, concurrency=5):
            results = await super().batch_convert_to_vibe(venues, api_key, concurrency)
            results.pop("lost", None)
            return results

    venues = [make_venue(id="kept", name="Bar Kotoba"), make_venue(id="lost", name="Bar Ghost")]
    p = MoodSearchPipeline(
        SETTINGS,
        enricher=LossyEnricher(FakeModel(), retry_base_s=0),
        cache=VibeCache(MemoryVibeStore()),
        search_places=FakePlaces(venues),
    )

    resp = _run(p)

    assert [v.id for v in resp.data] == ["kept"]


def test_apply_filters_without_filters_is_identity():
    vibes = [make_vibe(id="a"), make_vibe(id="b", open_now=False)]
    assert apply_filters(vibes, None) == vibes
    assert apply_filters(vibes, SearchFilters()) == vibes
