import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import List, Optional

import httpx

from models import GENRES, MOODS, Track
from services.errors import UpstreamFailure
from services.quality_verifier import AudioQualityVerifier, retry_until_quality_met

logger = logging.getLogger(__name__)

TITLE_PREFIXES = ["Rifussion", "AI", "Neural", "Deep", "Quantum", "Synthetic"]
TITLE_SUFFIXES = ["Beats", "Waves", "Pulse", "Rhythm", "Flow", "Harmony"]

NEGATIVE_PROMPT = "low quality, noise, distortion, amateur recording, clipping, low bitrate, compression artifacts"

MAX_RETRIES = 3


def build_prompt(genre: str, mood: str, bpm: int) -> str:
    return (
        f"{genre} music with {mood} mood, {bpm} BPM, professional studio recording, "
        "mastered audio, pristine clarity, audiophile quality, perfect mix, high fidelity, "
        "48kHz sample rate, 24-bit depth"
    )


def parse_track_id(track_id: str):
    """Pull (genre, mood) hints out of ids shaped like ``x-<genre>-<mood>-...``."""
    genre = mood = None
    parts = track_id.split("-")
    if len(parts) >= 3:
        if parts[1].lower() in GENRES:
            genre = parts[1].lower()
        if parts[2].lower() in MOODS:
            mood = parts[2].lower()
    return genre, mood


class RiffusionGenerator:
    """Generates library tracks through the Stability audio API.

    Any API failure for a single track is replaced with a bundled sample so
    callers always get a playable track back.
    """

    def __init__(
        self,
        api_key: Optional[str],
        api_url: str,
        client: Optional[httpx.AsyncClient] = None,
        rng: Optional[random.Random] = None,
        sleep=asyncio.sleep,
        verifier: Optional[AudioQualityVerifier] = None,
        quality_attempts: int = 1,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.client = client or httpx.AsyncClient(timeout=60.0)
        self.rng = rng or random.Random()
        self.sleep = sleep
        self.verifier = verifier
        self.quality_attempts = quality_attempts

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request_audio(self, prompt: str, steps: int = 90) -> dict:
        if not self.api_key:
            raise UpstreamFailure("Stability API key not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        payload = {
            "prompt": prompt,
            "negative_prompt": NEGATIVE_PROMPT,
            "seed": self.rng.randrange(1_000_000),
            "audio_file_format": "mp3",
            "duration_in_seconds": 8,
            "mode": "music",
            "generation_config": {
                "preset": "FAST",
                "model": "stable-audio-v2",
                "steps": steps,
                "samples": 1,
            },
        }

        response = None
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self.client.post(self.api_url, headers=headers, json=payload)
                break
            except httpx.TransportError as e:
                logger.error(f"API fetch error (attempt {attempt}/{MAX_RETRIES}): {e}")
                if attempt >= MAX_RETRIES:
                    raise UpstreamFailure(str(e)) from e
                await self.sleep(2 ** (attempt - 1))

        if response.status_code >= 400:
            message = f"Stability AI API error: {response.status_code}"
            try:
                detail = response.json().get("message")
            except ValueError:
                detail = response.text
            if detail:
                message += f" - {detail}"
            raise UpstreamFailure(message)

        data = response.json()
        if not data.get("audio_file"):
            raise UpstreamFailure("Stability AI response did not include an audio file")
        return {
            "audio_url": data["audio_file"],
            "image_url": data.get("image_url") or None,
            "seed": data.get("seed", 0),
        }

    async def generate_track(
        self,
        title: str,
        genre: str,
        mood: str,
        bpm: int,
        track_id: Optional[str] = None,
    ) -> Track:
        quality_score = 80.0
        is_generated = True
        try:
            prompt = build_prompt(genre, mood, bpm)
            if self.verifier is None:
                result = await self._request_audio(prompt)
            else:
                result, quality = await retry_until_quality_met(
                    lambda: self._request_audio(prompt),
                    lambda r: r["audio_url"],
                    self.verifier,
                    self.quality_attempts,
                )
                quality_score = quality.quality_score
        except UpstreamFailure as e:
            logger.error(f'API error generating track "{title}": {e}')
            result = {
                "audio_url": f"/samples/music-{mood}.mp3",
                "image_url": f"/images/covers/{genre}.jpg",
                "seed": self.rng.randrange(1_000_000),
            }
            quality_score = 75.0
            is_generated = False

        now = datetime.now(timezone.utc)
        return Track(
            id=track_id or f"rifussion-{int(now.timestamp() * 1000)}-{self.rng.randrange(1000)}",
            title=title,
            genre=genre,
            mood=mood,
            bpm=bpm,
            duration=self.rng.randrange(120, 240),
            date_created=now,
            audio_url=result["audio_url"],
            image_url=result["image_url"] or f"/images/covers/{genre}.jpg",
            quality_score=quality_score,
            is_generated=is_generated,
            seed=result["seed"],
            type="remix" if self.rng.random() > 0.5 else "generated",
            description=f"Professional {genre} track with {mood} mood at {bpm} BPM",
            original="Original Creation" if self.rng.random() > 0.5 else "AI Generated",
        )

    async def generate_batch(self, count: int = 10) -> List[Track]:
        logger.info(f"Generating library with {count} tracks...")
        jobs = []
        for _ in range(count):
            genre = self.rng.choice(GENRES)
            mood = self.rng.choice(MOODS)
            bpm = self.rng.randrange(90, 150)
            title = f"{self.rng.choice(TITLE_PREFIXES)} {genre.capitalize()} {self.rng.choice(TITLE_SUFFIXES)}"
            jobs.append(self.generate_track(title, genre, mood, bpm))

        tracks: List[Track] = []
        for result in await asyncio.gather(*jobs, return_exceptions=True):
            if isinstance(result, Exception):
                logger.error(f"Failed to generate track: {result}")
            else:
                tracks.append(result)

        if count > 0 and not tracks:
            raise UpstreamFailure(f"Generator produced none of the {count} requested tracks")
        logger.info(f"Generated {len(tracks)} library tracks")
        return tracks

    async def fetch_one(self, track_id: str) -> Optional[Track]:
        if not track_id or not track_id.strip():
            return None

        genre, mood = parse_track_id(track_id)
        genre = genre or self.rng.choice(GENRES)
        mood = mood or self.rng.choice(MOODS)
        # Structured ids get a descriptive title even when the hints are unknown.
        if len(track_id.split("-")) >= 3:
            title = f"{genre.capitalize()} {mood.capitalize()} Track"
        else:
            title = "Rifussion Track"
        bpm = self.rng.randrange(90, 150)
        return await self.generate_track(title, genre, mood, bpm, track_id=track_id)
