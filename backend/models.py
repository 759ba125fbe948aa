# models.py
# typed venue / vibe models shared by the pipeline, cache and API

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr, field_validator
from typing import List, Literal, Optional, Union

Mood = Literal["chill", "party", "focus"]

MOODS: tuple[str, ...] = ("chill", "party", "focus")

# bools are not scores
Score = Union[StrictInt, StrictFloat]


class Photo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    width_px: int = 0
    height_px: int = 0


class Review(BaseModel):
    model_config = ConfigDict(frozen=True)

    rating: Optional[float] = None
    text: Optional[str] = None


class Venue(BaseModel):
    """Raw place record as returned by the places provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    lat: float
    lng: float
    types: List[str] = Field(default_factory=list)
    rating: Optional[float] = None
    address: Optional[str] = None
    price_level: Optional[int] = None
    open_now: Optional[bool] = None
    opening_hours: Optional[List[str]] = None
    photos: List[Photo] = Field(default_factory=list)
    reviews: List[Review] = Field(default_factory=list)
    editorial_summary: Optional[str] = None


class MoodScore(BaseModel):
    # NaN / Infinity would poison scoring and sorting
    model_config = ConfigDict(allow_inf_nan=False)

    chill: Score
    party: Score
    focus: Score

    @field_validator("chill", "party", "focus")
    @classmethod
    def clamp_to_percent(cls, v):
        return min(100, max(0, v))

    @classmethod
    def neutral(cls) -> "MoodScore":
        # stands in whenever the model gave us nothing usable
        return cls(chill=50, party=50, focus=50)


class VibeResult(BaseModel):
    """Atmosphere fragment produced by the generative model.

    Strict types so that a wrongly shaped answer (numbers as strings, missing
    keys, empty tag list) fails validation instead of being coerced.
    """

    catchphrase: StrictStr
    vibe_tags: List[StrictStr] = Field(min_length=1)
    mood_score: MoodScore
    hidden_gems_info: StrictStr
    is_rejected: StrictBool


class EnrichedVibe(BaseModel):
    id: str
    name: str
    catchphrase: str
    vibe_tags: List[str]
    hero_image_url: str = ""
    mood_score: MoodScore = Field(default_factory=MoodScore.neutral)
    hidden_gems_info: str = ""
    is_rejected: bool = False

    # straight from the places provider
    lat: float
    lng: float
    category: str
    rating: Optional[float] = None
    address: Optional[str] = None
    opening_hours: Optional[List[str]] = None
    # added after the first cache schema, older rows backfill to None
    open_now: Optional[bool] = None
    price_level: Optional[int] = None

    # km from the caller, recomputed on every request
    distance: float = 0.0


class SearchFilters(BaseModel):
    open_now: bool = False
    max_price_level: Optional[int] = Field(default=None, ge=0, le=4)
    keyword: Optional[str] = None


class VibeSearchRequest(BaseModel):
    mood: Mood
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    filters: Optional[SearchFilters] = None


class VibeSearchResponse(BaseModel):
    success: bool
    data: List[EnrichedVibe] = Field(default_factory=list)
    message: Optional[str] = None


class Spot(BaseModel):
    id: int
    name: str
    lat: float
    lng: float
    category: str
    description: Optional[str] = None
    magazine_context: Optional[str] = None
    google_place_id: Optional[str] = None
    rating: Optional[float] = None
    address: Optional[str] = None
    opening_hours: Optional[str] = None
    source: Literal["manual", "google_places"] = "manual"


class SpotMatch(Spot):
    distance: float
    vector_distance: float


class SpotSearchError(BaseModel):
    code: Literal["VALIDATION_ERROR", "EMBEDDING_ERROR", "DB_ERROR", "UNKNOWN_ERROR"]
    message: str


class SpotSearchRequest(BaseModel):
    query: str
    lat: float
    lng: float


class SpotSearchResponse(BaseModel):
    success: bool
    data: List[SpotMatch] = Field(default_factory=list)
    error: Optional[SpotSearchError] = None
