import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).parent
DEFAULT_DOWNLOAD_DIR = ROOT_DIR / "downloads"
DEFAULT_STABILITY_URL = "https://api.stability.ai/v2/generation/stable-audio"


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    stability_api_key: Optional[str] = None
    stability_api_url: str = DEFAULT_STABILITY_URL
    library_cache_ttl: float = 60 * 60
    library_batch_size: int = 16
    remix_history_size: int = 8
    audio_retry_delay: float = 1.0
    audio_max_fallbacks: Optional[int] = None
    audio_load_timeout: Optional[float] = None
    download_dir: Path = DEFAULT_DOWNLOAD_DIR
    quality_probe: bool = False
    generation_quality_attempts: int = 1
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            stability_api_key=os.environ.get("STABILITY_API_KEY"),
            stability_api_url=os.environ.get("STABILITY_API_URL", DEFAULT_STABILITY_URL),
            library_cache_ttl=_env_float("LIBRARY_CACHE_TTL", 60 * 60),
            library_batch_size=_env_int("LIBRARY_BATCH_SIZE", 16),
            remix_history_size=_env_int("REMIX_HISTORY_SIZE", 8),
            audio_retry_delay=_env_float("AUDIO_RETRY_DELAY", 1.0),
            audio_max_fallbacks=_env_int("AUDIO_MAX_FALLBACKS", None),
            audio_load_timeout=_env_float("AUDIO_LOAD_TIMEOUT", None),
            download_dir=Path(os.environ.get("DOWNLOAD_DIR", str(DEFAULT_DOWNLOAD_DIR))),
            quality_probe=_env_bool("QUALITY_PROBE", False),
            generation_quality_attempts=_env_int("GENERATION_QUALITY_ATTEMPTS", 1),
            cors_origins=os.environ.get("CORS_ORIGINS", "*").split(","),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
