# providers/gemini.py
# Gemini generateContent over REST, JSON response mode. Single shot, no retries here.

import httpx
from typing import Optional

GENERATE_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_MODEL = "gemini-2.5-flash"

HEADERS = {
    "User-Agent": "MoodSpot/0.1",
    "Accept": "application/json",
    "Content-Type": "application/json",
}


class GeminiError(Exception):
    pass


class GeminiRateLimitError(GeminiError):
    pass


async def generate_content(
    api_key: str,
    system_prompt: str,
    payload: str,
    *,
    model: str = DEFAULT_MODEL,
    timeout_s: float = 30.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Return the model's raw text. The caller parses it as JSON."""
    body = {
        "systemInstruction": {"parts": [{"text": system_prompt}]},
        "contents": [
            {"role": "user", "parts": [{"text": f"Analyze this place and output JSON:\n\n{payload}"}]}
        ],
        "generationConfig": {"responseMimeType": "application/json"},
    }
    headers = {**HEADERS, "x-goog-api-key": api_key}

    async with httpx.AsyncClient(timeout=timeout_s, headers=headers, transport=transport) as client:
        try:
            r = await client.post(GENERATE_URL.format(model=model), json=body)
        except httpx.HTTPError as e:
            raise GeminiError(f"Gemini transport error: {e}") from e

    if r.status_code == 429:
        raise GeminiRateLimitError("Gemini rate limited (429)")
    if r.status_code != 200:
        raise GeminiError(f"Gemini error {r.status_code}: {r.text[:400]}")

    js = r.json() or {}
    candidates = js.get("candidates") or []
    if not candidates:
        return ""
    parts = ((candidates[0].get("content") or {}).get("parts")) or []
    return "".join(p.get("text") or "" for p in parts)
