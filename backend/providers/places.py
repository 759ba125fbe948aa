# providers/places.py
# Google Places (New) text search with center bias + 429 backoff.

import asyncio
import logging
import httpx
from typing import List, Optional
from pydantic import ValidationError
from models import Photo, Review, Venue

log = logging.getLogger("moodspot.places")

SEARCH_TEXT_URL = "https://places.googleapis.com/v1/places:searchText"
PHOTO_URL = "https://places.googleapis.com/v1/{name}/media"

FIELD_MASK = ",".join([
    "places.id",
    "places.displayName",
    "places.location",
    "places.types",
    "places.editorialSummary",
    "places.rating",
    "places.formattedAddress",
    "places.regularOpeningHours",
    "places.priceLevel",
    "places.photos",
    "places.reviews",
])

HEADERS = {
    "User-Agent": "MoodSpot/0.1",
    "Accept": "application/json",
    "Content-Type": "application/json",
}

MAX_RETRIES = 3
BACKOFF_BASE_S = 1.0  # 1s, 2s, 4s

# the API caps a locationBias circle at 50 km
MAX_BIAS_RADIUS_M = 50_000.0

PRICE_LEVELS = {
    "PRICE_LEVEL_FREE": 0,
    "PRICE_LEVEL_INEXPENSIVE": 1,
    "PRICE_LEVEL_MODERATE": 2,
    "PRICE_LEVEL_EXPENSIVE": 3,
    "PRICE_LEVEL_VERY_EXPENSIVE": 4,
}

PLACE_TYPE_MAP = {
    "cafe": "Cafe",
    "coffee_shop": "Cafe",
    "restaurant": "Restaurant",
    "bar": "Bar",
    "park": "Park",
    "museum": "Museum",
    "art_gallery": "Gallery",
    "book_store": "Bookstore",
    "library": "Library",
    "tourist_attraction": "Attraction",
    "bakery": "Cafe",
    "night_club": "Bar",
    "spa": "Wellness",
    "shopping_mall": "Shopping",
}


class PlacesError(Exception):
    """Places search failed. Message is for logs, not for end users."""


class PlacesPermissionError(PlacesError):
    pass


class PlacesBadRequestError(PlacesError):
    pass


class PlacesRateLimitError(PlacesError):
    pass


class PlacesServerError(PlacesError):
    pass


def map_place_type(types: List[str]) -> str:
    for t in types:
        if t in PLACE_TYPE_MAP:
            return PLACE_TYPE_MAP[t]
    return "Other"


def photo_url(photo_name: str, api_key: str, max_width_px: int = 800) -> str:
    return f"{PHOTO_URL.format(name=photo_name)}?maxWidthPx={max_width_px}&key={api_key}"


def parse_place(p: dict) -> Optional[Venue]:
    """Provider JSON -> Venue. Places without an id or coordinates are skipped."""
    loc = p.get("location") or {}
    try:
        lat = float(loc["latitude"])
        lng = float(loc["longitude"])
    except (KeyError, TypeError, ValueError):
        return None
    if not p.get("id"):
        return None

    hours = p.get("regularOpeningHours") or {}
    photos = [
        Photo(name=ph["name"], width_px=ph.get("widthPx") or 0, height_px=ph.get("heightPx") or 0)
        for ph in (p.get("photos") or [])
        if ph.get("name")
    ]
    reviews = [
        Review(rating=r.get("rating"), text=((r.get("text") or {}).get("text")))
        for r in (p.get("reviews") or [])
    ]

    return Venue(
        id=p["id"],
        name=(p.get("displayName") or {}).get("text") or "Place",
        lat=lat,
        lng=lng,
        types=p.get("types") or [],
        rating=p.get("rating"),
        address=p.get("formattedAddress"),
        price_level=PRICE_LEVELS.get(p.get("priceLevel") or ""),
        open_now=hours.get("openNow"),
        opening_hours=hours.get("weekdayDescriptions"),
        photos=photos,
        reviews=reviews,
        editorial_summary=(p.get("editorialSummary") or {}).get("text"),
    )


async def search_by_text(
    api_key: str,
    text_query: str,
    center: tuple[float, float],
    radius_m: float,
    max_results: int = 20,
    *,
    backoff_base_s: float = BACKOFF_BASE_S,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[Venue]:
    """
    Center-biased text search. Raises a PlacesError subclass once retries
    are exhausted or on a non-retryable status.
    """
    lat, lng = center
    body = {
        "textQuery": text_query,
        "maxResultCount": max_results,
        "languageCode": "ja",
        "locationBias": {
            "circle": {
                "center": {"latitude": lat, "longitude": lng},
                "radius": min(float(radius_m), MAX_BIAS_RADIUS_M),
            }
        },
    }
    headers = {**HEADERS, "X-Goog-Api-Key": api_key, "X-Goog-FieldMask": FIELD_MASK}

    async with httpx.AsyncClient(timeout=20.0, headers=headers, transport=transport) as client:
        # only 429 is retried
        for attempt in range(MAX_RETRIES + 1):
            try:
                r = await client.post(SEARCH_TEXT_URL, json=body)
            except httpx.HTTPError as e:
                raise PlacesServerError(f"Places API transport error: {e}") from e

            if r.status_code == 200:
                # a 200 with a body we cannot read is as good as an outage
                try:
                    places = (r.json() or {}).get("places") or []
                    out = [v for v in (parse_place(p) for p in places) if v is not None]
                except (ValueError, AttributeError, TypeError, ValidationError) as e:
                    raise PlacesServerError(f"Places API returned an unusable payload: {e}") from e
                log.info("places: %d results for %r within %.0fm", len(out), text_query, radius_m)
                return out

            if r.status_code == 429:
                if attempt < MAX_RETRIES:
                    delay = backoff_base_s * (2 ** attempt)
                    log.warning("places rate limited (429), retrying in %.1fs", delay)
                    await asyncio.sleep(delay)
                    continue
                raise PlacesRateLimitError("Places API rate limited (429): max retries exceeded")

            if r.status_code == 403:
                raise PlacesPermissionError(f"Places API permission denied (403): {r.text[:400]}")
            if r.status_code == 400:
                raise PlacesBadRequestError(f"Places API bad request (400): {r.text[:400]}")
            raise PlacesServerError(f"Places API error {r.status_code}: {r.text[:400]}")

    raise PlacesRateLimitError("Places API: max retries exceeded")
