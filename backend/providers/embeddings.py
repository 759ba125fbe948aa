# providers/embeddings.py
# OpenAI embeddings over REST (read-only, one input per call)

import httpx
from typing import List, Optional

EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"

HEADERS = {
    "User-Agent": "MoodSpot/0.1",
    "Accept": "application/json",
}


class EmbeddingError(Exception):
    pass


async def embed_text(
    api_key: str,
    text: str,
    model: str,
    *,
    timeout_s: float = 5.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[float]:
    headers = {**HEADERS, "Authorization": f"Bearer {api_key}"}
    async with httpx.AsyncClient(timeout=timeout_s, headers=headers, transport=transport) as client:
        try:
            r = await client.post(EMBEDDINGS_URL, json={"model": model, "input": text})
        except httpx.HTTPError as e:
            raise EmbeddingError(f"embedding transport error: {e}") from e
    if r.status_code != 200:
        raise EmbeddingError(f"embedding error {r.status_code}: {r.text[:400]}")
    data = (r.json() or {}).get("data") or []
    if not data or not data[0].get("embedding"):
        raise EmbeddingError("embedding response had no vector")
    return [float(x) for x in data[0]["embedding"]]
