import asyncio
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from models import Track, TrackPage

logger = logging.getLogger(__name__)

CACHE_TTL = 60 * 60  # seconds
DEFAULT_LIMIT = 20
LIBRARY_BATCH_SIZE = 16
REMIX_HISTORY_SIZE = 8
REMIX_HISTORY_WINDOW = timedelta(days=30)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_limit(limit: Optional[int]) -> int:
    if not limit or limit <= 0:
        return DEFAULT_LIMIT
    return limit


def _matches_search(track: Track, search: str) -> bool:
    needle = search.lower()
    if needle in track.title.lower():
        return True
    return bool(track.description) and needle in track.description.lower()


def _paginate(tracks: List[Track], search: str, limit: Optional[int]) -> TrackPage:
    if search:
        tracks = [t for t in tracks if _matches_search(t, search)]
    return TrackPage(tracks=tracks[:_normalize_limit(limit)], total=len(tracks))


class LibraryCache:
    """In-memory library of generated tracks plus a derived remix history.

    Both collections are replaced together on refresh, which happens lazily
    once the snapshot is older than ``ttl`` seconds.
    """

    def __init__(
        self,
        generator,
        ttl: float = CACHE_TTL,
        batch_size: int = LIBRARY_BATCH_SIZE,
        history_size: int = REMIX_HISTORY_SIZE,
        history_window: timedelta = REMIX_HISTORY_WINDOW,
        clock: Callable[[], datetime] = _utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.generator = generator
        self.ttl = ttl
        self.batch_size = batch_size
        self.history_size = history_size
        self.history_window = history_window
        self.clock = clock
        self.rng = rng or random.Random()

        self.library_tracks: List[Track] = []
        self.remix_history_tracks: List[Track] = []
        self.last_refreshed_at: Optional[datetime] = None
        self._refresh_lock = asyncio.Lock()

    # ============== Lifecycle ==============

    async def init(self) -> None:
        await self.refresh()

    def dispose(self) -> None:
        self.library_tracks = []
        self.remix_history_tracks = []
        self.last_refreshed_at = None

    def is_stale(self, collection: List[Track]) -> bool:
        if not collection or self.last_refreshed_at is None:
            return True
        age = (self.clock() - self.last_refreshed_at).total_seconds()
        return age > self.ttl

    async def refresh(self) -> None:
        logger.info("Refreshing library cache...")
        tracks = list(await self.generator.generate_batch(self.batch_size))

        now = self.clock()
        window = self.history_window.total_seconds()
        history = [
            track.model_copy(update={
                "type": "remix",
                "title": f"{track.title} (Remix)",
                "date_created": now - timedelta(seconds=self.rng.random() * window),
            })
            for track in tracks[:self.history_size]
        ]

        self.library_tracks = tracks
        self.remix_history_tracks = history
        self.last_refreshed_at = now
        logger.info(
            f"Library cache refreshed with {len(tracks)} tracks and "
            f"{len(history)} remix history tracks"
        )

    async def _ensure_fresh(self, collection_name: str) -> None:
        if not self.is_stale(getattr(self, collection_name)):
            return
        async with self._refresh_lock:
            # Another caller may have refreshed while we waited.
            if self.is_stale(getattr(self, collection_name)):
                await self.refresh()

    # ============== Queries ==============

    async def query_library(
        self,
        filter: str = "all",
        genre: str = "",
        mood: str = "",
        search: str = "",
        limit: Optional[int] = DEFAULT_LIMIT,
    ) -> TrackPage:
        try:
            await self._ensure_fresh("library_tracks")
        except Exception as e:
            logger.error(f"Error getting library tracks: {e}")
            return TrackPage(tracks=[], total=0, degraded=True)

        tracks = list(self.library_tracks)
        if filter == "remixes":
            tracks = [t for t in tracks if t.type == "remix"]
        elif filter == "generated":
            tracks = [t for t in tracks if t.type == "generated"]

        if genre and genre.lower() != "all":
            tracks = [t for t in tracks if t.genre.lower() == genre.lower()]
        if mood and mood.lower() != "all":
            tracks = [t for t in tracks if t.mood.lower() == mood.lower()]

        return _paginate(tracks, search, limit)

    async def query_remix_history(
        self,
        filter: str = "all",
        search: str = "",
        limit: Optional[int] = DEFAULT_LIMIT,
    ) -> TrackPage:
        try:
            await self._ensure_fresh("remix_history_tracks")
        except Exception as e:
            logger.error(f"Error getting remix history tracks: {e}")
            return TrackPage(tracks=[], total=0, degraded=True)

        tracks = list(self.remix_history_tracks)
        if filter == "recent":
            tracks.sort(key=lambda t: t.date_created, reverse=True)
        elif filter == "oldest":
            tracks.sort(key=lambda t: t.date_created)
        elif filter == "a-z":
            tracks.sort(key=lambda t: t.title)

        return _paginate(tracks, search, limit)

    async def get_track_by_id(self, track_id: str) -> Optional[Track]:
        for track in [*self.library_tracks, *self.remix_history_tracks]:
            if track.id == track_id:
                return track
        try:
            return await self.generator.fetch_one(track_id)
        except Exception as e:
            logger.error(f"Error getting track {track_id}: {e}")
            return None
