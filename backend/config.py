# config.py
# env-driven settings + the fixed knobs of the mood pipeline

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    places_api_key: str = os.getenv("GOOGLE_PLACES_API_KEY", "")
    gemini_api_key: str = os.getenv("GEMINI_API_KEY", "")
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    # empty -> per process memory store
    cache_db_path: str = os.getenv("VIBE_CACHE_DB", "")
    spots_db_path: str = os.getenv("SPOTS_DB", "spots.sqlite")
    frontend_prod: str = os.getenv("FRONTEND_PROD", "")


DEFAULT_SETTINGS = Settings()

# places search
DEFAULT_RADIUS_KM = 10.0
RADIUS_EXPANSION_FACTOR = 1.5
PLACES_MAX_RESULTS = 20

# enrichment cost cap per request
MAX_ENRICH_PLACES = 20

# distance normalisation for scoring
SCORE_MAX_DISTANCE_KM = DEFAULT_RADIUS_KM

# free text spot search
VECTOR_TOP_K = 50
MAX_VECTOR_DISTANCE = 0.85  # cosine distance, 0 = identical, 2 = opposite
MIN_QUERY_LENGTH = 1
MAX_QUERY_LENGTH = 200
EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_TIMEOUT_S = 5.0
