# photo_curator.py
# Pick the photo most likely to show the room rather than a plate of food.

from typing import List, Optional
from models import Photo


def select_best_photos(photos: Optional[List[Photo]], max_photos: int = 3) -> List[Photo]:
    """
    Landscape shots (+10) and wide ones >= 1000px (+5) first. The provider
    lists its most representative photos first, so each position costs 1.
    """
    if not photos:
        return []

    scored = []
    for index, photo in enumerate(photos):
        score = 0
        if photo.width_px > photo.height_px:
            score += 10
        if photo.width_px >= 1000:
            score += 5
        score -= index
        scored.append((photo, score))

    # sorted() is stable so equal scores keep array order
    scored.sort(key=lambda t: t[1], reverse=True)
    return [p for p, _ in scored][:max_photos]


def select_hero_photo(photos: Optional[List[Photo]]) -> Optional[Photo]:
    best = select_best_photos(photos, 1)
    return best[0] if best else None
