# scoring.py
# Weighted relevance score used to order mood results

from typing import List
from models import EnrichedVibe

# weights sum to 1.0 so the score stays in [0, 1]
W_DISTANCE = 0.45
W_OPEN_NOW = 0.25
W_RATING = 0.20
W_MOOD = 0.10


def calculate_score(vibe: EnrichedVibe, mood: str, max_distance_km: float) -> float:
    """
    distance 0.45, open_now 0.25, rating 0.20, mood match 0.10.
    Unknown open_now / rating count as neutral 0.5, never as a penalty.
    """
    # closer is better, anything at or past max distance contributes 0
    dist_score = max(0.0, 1 - vibe.distance / max_distance_km)

    if vibe.open_now is True:
        open_score = 1.0
    elif vibe.open_now is False:
        open_score = 0.0
    else:
        open_score = 0.5

    rating_score = vibe.rating / 5 if vibe.rating is not None else 0.5

    mood_score = getattr(vibe.mood_score, mood) / 100

    score = (
        dist_score * W_DISTANCE
        + open_score * W_OPEN_NOW
        + rating_score * W_RATING
        + mood_score * W_MOOD
    )
    # float error can push a perfect place a hair past 1, odd provider ratings below 0
    return max(0.0, min(1.0, score))


def sort_by_score(vibes: List[EnrichedVibe], mood: str, max_distance_km: float) -> List[EnrichedVibe]:
    return sorted(vibes, key=lambda v: calculate_score(v, mood, max_distance_km), reverse=True)
