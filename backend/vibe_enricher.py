# vibe_enricher.py
# Venue -> atmosphere fragment via the generative model, with timeout,
# backoff retries and a rate-limit circuit breaker. Never raises.

import asyncio
import json
import logging
from typing import Awaitable, Callable, Dict, List

from pydantic import ValidationError

from models import MoodScore, Venue, VibeResult
from providers.gemini import GeminiRateLimitError, generate_content
from utils import truncate

log = logging.getLogger("moodspot.enricher")

TIMEOUT_S = 10.0
MAX_RETRIES = 2
RETRY_BASE_S = 1.0
CIRCUIT_BREAKER_THRESHOLD = 5
MAX_REVIEWS = 5
REVIEW_CHARS = 200

SYSTEM_PROMPT = """You are a specialized 'City Curator' editor for a high-end lifestyle magazine.

Analyze the raw Google Maps data (reviews, photos, attributes) and output a JSON object describing the 'Vibe' of the place.

Rules:
- Ignore generic praises like 'good food' or 'nice staff'. Focus on ATMOSPHERE.
- Catchphrase must be poetic, emotional, and short (max 30 chars in Japanese).
- If the place is a chain store or fast food, set 'is_rejected' to true.
- Extract exactly 3 hashtags that describe the *situation* to use this place (e.g., #FirstDate, #SoloWork, #DeepTalk).
- mood_score must include 'chill', 'party', 'focus' dimensions (each 0-100).

Output ONLY a valid JSON object with this exact schema:
{
  "catchphrase": "string (max 30 chars in Japanese)",
  "vibe_tags": ["string", "string", "string"],
  "mood_score": { "chill": number, "party": number, "focus": number },
  "hidden_gems_info": "string",
  "is_rejected": boolean
}"""

# (api_key, system_prompt, payload) -> raw model text
Generate = Callable[[str, str, str], Awaitable[str]]


def _reject_constant(name: str):
    # json.loads lets NaN / Infinity through, they are not JSON
    raise ValueError(f"non-finite number {name} in model output")


def degraded_vibe() -> VibeResult:
    """Valid-shaped placeholder used whenever the model can't give us a real answer."""
    return VibeResult(
        catchphrase="ここにしかない空気がある",
        vibe_tags=["#隠れ家", "#散策", "#発見"],
        mood_score=MoodScore.neutral(),
        hidden_gems_info="",
        is_rejected=False,
    )


def build_place_prompt(venue: Venue) -> str:
    reviews = "\n".join(
        f"[{r.rating if r.rating is not None else '-'}★] {truncate(r.text, REVIEW_CHARS) or '(no text)'}"
        for r in venue.reviews[:MAX_REVIEWS]
    )
    return json.dumps({
        "name": venue.name,
        "types": venue.types,
        "rating": venue.rating,
        "address": venue.address,
        "editorial_summary": venue.editorial_summary,
        "reviews": reviews or "(no reviews)",
        "photo_count": len(venue.photos),
    }, ensure_ascii=False)


class VibeEnricher:
    """
    Holds the consecutive rate-limit counter for one process. The counter is
    shared by every request using this instance: one caller's burst of 429s
    opens the breaker for everybody until a call succeeds or it is reset.
    """

    def __init__(
        self,
        generate: Generate = generate_content,
        *,
        timeout_s: float = TIMEOUT_S,
        max_retries: int = MAX_RETRIES,
        retry_base_s: float = RETRY_BASE_S,
        breaker_threshold: int = CIRCUIT_BREAKER_THRESHOLD,
    ):
        self._generate = generate
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.retry_base_s = retry_base_s
        self.breaker_threshold = breaker_threshold
        self.consecutive_rate_limits = 0

    @property
    def circuit_open(self) -> bool:
        return self.consecutive_rate_limits >= self.breaker_threshold

    def reset_circuit_breaker(self) -> None:
        self.consecutive_rate_limits = 0

    async def convert_to_vibe(self, venue: Venue, api_key: str) -> VibeResult:
        if self.circuit_open:
            log.warning("gemini circuit breaker open, degraded vibe for %s", venue.id)
            return degraded_vibe()

        payload = build_place_prompt(venue)

        for attempt in range(self.max_retries + 1):
            try:
                text = await asyncio.wait_for(
                    self._generate(api_key, SYSTEM_PROMPT, payload), timeout=self.timeout_s
                )
                # any answer at all closes the breaker again
                self.consecutive_rate_limits = 0
                data = json.loads(text, parse_constant=_reject_constant)
            except GeminiRateLimitError as e:
                self.consecutive_rate_limits += 1
                if self.circuit_open:
                    log.warning("gemini circuit breaker triggered after %d rate limits", self.consecutive_rate_limits)
                    return degraded_vibe()
                err: Exception = e
            except Exception as e:
                # timeout, transport or unparseable text, all retryable
                err = e
            else:
                try:
                    return VibeResult.model_validate(data)
                except ValidationError:
                    # shape failures are not retried
                    log.warning("gemini returned invalid structure for %s, using degraded vibe", venue.id)
                    return degraded_vibe()

            if attempt < self.max_retries:
                delay = self.retry_base_s * (2 ** attempt)
                log.warning("gemini attempt %d for %s failed (%s), retrying in %.1fs",
                            attempt + 1, venue.id, type(err).__name__, delay)
                await asyncio.sleep(delay)
                continue

            log.error("gemini conversion failed after retries for %s: %s", venue.id, err)

        return degraded_vibe()

    async def batch_convert_to_vibe(
        self, venues: List[Venue], api_key: str, concurrency: int = 5
    ) -> Dict[str, VibeResult]:
        """Fixed-size concurrent batches, run one after the other."""
        results: Dict[str, VibeResult] = {}

        for i in range(0, len(venues), concurrency):
            batch = venues[i:i + concurrency]
            batch_results = await asyncio.gather(
                *(self.convert_to_vibe(v, api_key) for v in batch)
            )
            for venue, result in zip(batch, batch_results):
                results[venue.id] = result

            # breaker tripped: don't spend calls on the rest
            if self.circuit_open:
                remaining = venues[i + concurrency:]
                for venue in remaining:
                    results[venue.id] = degraded_vibe()
                if remaining:
                    log.warning("gemini circuit breaker open, skipped %d venues", len(remaining))
                break

        return results
