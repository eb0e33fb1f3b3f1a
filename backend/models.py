from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Literal
from datetime import datetime, timezone
import uuid

# Track Models
class Track(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    description: Optional[str] = None
    type: Literal["generated", "remix"] = "generated"
    genre: str
    mood: str
    bpm: int = 120
    duration: int = 180
    date_created: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="dateCreated")
    audio_url: str = Field(alias="audioUrl")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    quality_score: float = Field(default=0, ge=0, le=100, alias="qualityScore")
    is_generated: bool = Field(default=True, alias="isGenerated")
    seed: Optional[int] = None
    original: Optional[str] = None

class TrackPage(BaseModel):
    tracks: List[Track] = Field(default_factory=list)
    total: int = 0
    degraded: bool = False

# Quality Models
class QualityThresholds(BaseModel):
    min_duration: float = 1          # seconds
    max_noise_level: float = 0.15    # 0-1
    min_bitrate: int = 128           # kbps
    min_sample_rate: int = 22050     # Hz

PROFESSIONAL_QUALITY = QualityThresholds()

class AudioMetadata(BaseModel):
    duration: Optional[float] = None
    bitrate: Optional[int] = None
    sample_rate: Optional[int] = None
    noise_level: Optional[float] = None
    content_length: Optional[int] = None
    content_type: Optional[str] = None

class QualityResult(BaseModel):
    passes: bool
    quality_score: float
    issues: List[str] = Field(default_factory=list)
    metadata: Optional[AudioMetadata] = None

class QualityReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    is_quality_verified: bool = Field(alias="isQualityVerified")
    quality_score: float = Field(alias="qualityScore")
    track: Optional[Track] = None
    issues: List[str] = Field(default_factory=list)

# Audio Models
class PreloadRequest(BaseModel):
    primary_url: str
    fallback_urls: List[str] = Field(default_factory=list)

class PreloadResponse(BaseModel):
    id: str
    loaded: bool
    progress: int = 0
    error: Optional[str] = None

class AudioStatus(BaseModel):
    id: str
    loaded: bool
    src: Optional[str] = None
    playing: bool = False

# Catalog Options
GENRES = [
    "electronic", "house", "dubstep", "trance",
    "hiphop", "rock", "ambient", "jazz",
    "pop", "classical", "lofi", "cinematic",
]

MOODS = [
    "neutral", "cheerful", "sad", "professional",
    "excited", "calm", "energetic", "relaxed",
    "dark", "uplifting", "mysterious", "epic",
]

class CatalogResponse(BaseModel):
    items: List[str]


def format_duration(seconds: float) -> str:
    """Format a duration in seconds as M:SS."""
    minutes = int(seconds // 60)
    remaining = int(seconds % 60)
    return f"{minutes}:{remaining:02d}"
