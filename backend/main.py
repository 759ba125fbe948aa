# main.py
# FastAPI app exposing POST /vibes (mood search) and POST /search (free text)

import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from config import DEFAULT_SETTINGS
from models import SpotSearchRequest, SpotSearchResponse, VibeSearchRequest, VibeSearchResponse
from pipeline import MoodSearchPipeline
from spot_search import get_index, search_spots

app = FastAPI(title="MoodSpot API", version="0.1.0")
# CORS origins
FRONTEND_LOCAL = "http://localhost:3000"

origins = [FRONTEND_LOCAL]
if DEFAULT_SETTINGS.frontend_prod:
    origins.append(DEFAULT_SETTINGS.frontend_prod)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# logging
logging.basicConfig(level=logging.INFO)
log = logging.getLogger("moodspot")

# one pipeline per process: it owns the enricher's circuit breaker and the cache
pipeline = MoodSearchPipeline(DEFAULT_SETTINGS)

# global JSON error handling
# - HTTPException -> { "error": <detail> }
# - any other exception -> { "error": "Server error" }
@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    log.warning("HTTP %s: %s", exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    # log stack once. do not leak details to client
    log.exception("Unhandled exception")
    return JSONResponse(status_code=500, content={"error": "Server error"})

@app.post("/vibes", response_model=VibeSearchResponse)
async def vibes(req: VibeSearchRequest):
    """
    Mood search around (lat, lng). Empty results are a 200 with a message;
    missing keys or an unavailable places provider are a 503.
    """
    resp = await pipeline.search_by_mood(req.mood, req.lat, req.lng, req.filters)
    if not resp.success:
        return JSONResponse(status_code=503, content=resp.model_dump())
    return resp

@app.post("/search", response_model=SpotSearchResponse)
async def search(req: SpotSearchRequest):
    resp = await search_spots(req.query, req.lat, req.lng, index=get_index(DEFAULT_SETTINGS))
    if not resp.success:
        status = 400 if resp.error and resp.error.code == "VALIDATION_ERROR" else 503
        return JSONResponse(status_code=status, content=resp.model_dump())
    return resp

@app.get("/health")
def health():
    return {"ok": True}
