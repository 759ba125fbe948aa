# utils.py
# Helpers: haversine distance, venue dedupe, text truncation

from __future__ import annotations
from typing import List
from math import asin, cos, radians, sin, sqrt
from models import Venue

EARTH_RADIUS_KM = 6371.0


def distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle (haversine) distance between two points in km."""
    d_lat = radians(lat2 - lat1)
    d_lng = radians(lng2 - lng1)
    a = sin(d_lat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * asin(min(1.0, sqrt(a)))


def dedupe(venues: List[Venue]) -> List[Venue]:
    """Deduplicate by provider id, falling back to (name + approx coords)."""
    seen = set()
    out: List[Venue] = []
    for v in venues:
        k = v.id or f"{v.name.lower()}|{v.lat:.4f}|{v.lng:.4f}"
        if k not in seen:
            seen.add(k)
            out.append(v)
    return out


def truncate(text: str | None, limit: int) -> str:
    if not text:
        return ""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"
