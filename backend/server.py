from fastapi import FastAPI, APIRouter, HTTPException, Depends, Query, Request
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import logging
from pathlib import Path
from typing import Optional

# Load env before other imports
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from config import Settings
from models import (
    Track, TrackPage, QualityReport, GENRES, MOODS, CatalogResponse
)
from audio_api import audio_router
from services.audio_loader import AudioFallbackLoader
from services.generator import RiffusionGenerator
from services.library_cache import LibraryCache
from services.quality_gate import verify_track_quality
from services.quality_verifier import AudioQualityVerifier

settings = Settings.from_env()

# Create the main app
app = FastAPI(title="Composition Converter API", version="1.0.0")

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_services(app: FastAPI, settings: Settings) -> None:
    verifier = AudioQualityVerifier(probe=settings.quality_probe)
    app.state.verifier = verifier
    # A single attempt keeps the fixed generation score and skips the extra HEAD.
    generator = RiffusionGenerator(
        settings.stability_api_key,
        settings.stability_api_url,
        verifier=verifier if settings.generation_quality_attempts > 1 else None,
        quality_attempts=settings.generation_quality_attempts,
    )
    app.state.generator = generator
    app.state.library = LibraryCache(
        generator,
        ttl=settings.library_cache_ttl,
        batch_size=settings.library_batch_size,
        history_size=settings.remix_history_size,
    )
    app.state.audio_loader = AudioFallbackLoader(
        retry_delay=settings.audio_retry_delay,
        max_fallbacks=settings.audio_max_fallbacks,
        overall_timeout=settings.audio_load_timeout,
        download_dir=settings.download_dir,
    )


def get_library(request: Request) -> LibraryCache:
    return request.app.state.library


def get_verifier(request: Request) -> AudioQualityVerifier:
    return request.app.state.verifier


def get_generator(request: Request) -> RiffusionGenerator:
    return request.app.state.generator

# ============== Library Routes ==============

@api_router.get("/library", response_model=TrackPage)
async def get_library_tracks(
    filter: str = "all",
    genre: str = "",
    mood: str = "",
    search: str = "",
    limit: Optional[int] = Query(None),
    library: LibraryCache = Depends(get_library),
):
    return await library.query_library(filter=filter, genre=genre, mood=mood, search=search, limit=limit)

@api_router.get("/remix-history", response_model=TrackPage)
async def get_remix_history(
    filter: str = "all",
    search: str = "",
    limit: Optional[int] = Query(None),
    library: LibraryCache = Depends(get_library),
):
    return await library.query_remix_history(filter=filter, search=search, limit=limit)

@api_router.get("/tracks/{track_id}", response_model=Track)
async def get_track(track_id: str, library: LibraryCache = Depends(get_library)):
    try:
        track = await library.get_track_by_id(track_id)
    except Exception as e:
        logger.error(f"Error getting track {track_id}: {e}")
        raise HTTPException(status_code=502, detail="Track lookup failed")
    if not track:
        raise HTTPException(status_code=404, detail="Track not found")
    return track

@api_router.get("/tracks/{track_id}/quality", response_model=QualityReport)
async def get_track_quality(
    track_id: str,
    library: LibraryCache = Depends(get_library),
    verifier: AudioQualityVerifier = Depends(get_verifier),
    generator: RiffusionGenerator = Depends(get_generator),
):
    return await verify_track_quality(track_id, library, verifier, generator)

# ============== Catalog Routes ==============

@api_router.get("/genres", response_model=CatalogResponse)
async def get_genres():
    return CatalogResponse(items=GENRES)

@api_router.get("/moods", response_model=CatalogResponse)
async def get_moods():
    return CatalogResponse(items=MOODS)

# ============== Health Check ==============

@api_router.get("/")
async def root():
    return {"message": "Composition Converter API", "version": "1.0.0"}

@api_router.get("/health")
async def health_check():
    return {"status": "healthy"}

# Include the routers
app.include_router(api_router)
app.include_router(audio_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_services():
    build_services(app, settings)

@app.on_event("shutdown")
async def shutdown_services():
    app.state.library.dispose()
    await app.state.audio_loader.aclose()
    await app.state.generator.aclose()
    await app.state.verifier.aclose()
