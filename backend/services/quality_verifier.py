"""
Audio quality verification for generated tracks.

A cheap HEAD check scores the asset by size; an optional probe decodes the
first seconds with PyAV to read duration, bitrate and sample rate and to
estimate the noise floor.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

import av
import httpx
import numpy as np

from models import PROFESSIONAL_QUALITY, AudioMetadata, QualityResult, QualityThresholds
from services.errors import UpstreamFailure
from services.http_utils import content_length

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROBE_SECONDS = 10.0
BYTES_FOR_FULL_SCORE = 1_000_000


def _score_from_size(content_length: int) -> float:
    return float(round(min(100.0, (content_length / (BYTES_FOR_FULL_SCORE / 2)) * 50)))


def _estimate_noise_level(samples: np.ndarray, frame_len: int = 1024) -> float:
    """Ratio of the quietest frames' RMS to the peak, in 0-1."""
    if samples.size < frame_len:
        return 0.0
    peak = float(np.max(np.abs(samples)))
    if peak == 0:
        return 0.0
    frames = samples[: samples.size - samples.size % frame_len].reshape(-1, frame_len)
    rms = np.sqrt(np.mean(frames * frames, axis=1))
    return float(min(1.0, np.percentile(rms, 10) / peak))


def probe_audio(url: str, seconds: float = PROBE_SECONDS) -> AudioMetadata:
    container = av.open(url)
    try:
        stream = next((s for s in container.streams if s.type == "audio"), None)
        if stream is None:
            raise ValueError("No audio stream found")

        sample_rate = stream.codec_context.sample_rate or stream.rate
        duration = None
        if container.duration is not None:
            duration = container.duration / float(av.time_base)
        bitrate = container.bit_rate or stream.codec_context.bit_rate

        chunks: List[np.ndarray] = []
        decoded = 0
        limit = int(seconds * sample_rate) if sample_rate else None
        for frame in container.decode(stream):
            arr = frame.to_ndarray().astype(np.float32)
            if arr.ndim > 1:
                arr = arr.mean(axis=0)
            chunks.append(arr)
            decoded += arr.size
            if limit and decoded >= limit:
                break
    finally:
        container.close()

    noise = _estimate_noise_level(np.concatenate(chunks)) if chunks else None
    return AudioMetadata(
        duration=duration,
        bitrate=int(bitrate / 1000) if bitrate else None,
        sample_rate=sample_rate,
        noise_level=noise,
    )


def check_thresholds(metadata: AudioMetadata, thresholds: QualityThresholds) -> List[str]:
    issues = []
    if metadata.duration is not None and metadata.duration < thresholds.min_duration:
        issues.append(f"Duration {metadata.duration:.1f}s below {thresholds.min_duration}s")
    if metadata.bitrate is not None and metadata.bitrate < thresholds.min_bitrate:
        issues.append(f"Bitrate {metadata.bitrate}kbps below {thresholds.min_bitrate}kbps")
    if metadata.sample_rate is not None and metadata.sample_rate < thresholds.min_sample_rate:
        issues.append(f"Sample rate {metadata.sample_rate}Hz below {thresholds.min_sample_rate}Hz")
    if metadata.noise_level is not None and metadata.noise_level > thresholds.max_noise_level:
        issues.append(f"Noise level {metadata.noise_level:.2f} above {thresholds.max_noise_level}")
    return issues


class AudioQualityVerifier:
    def __init__(self, client: Optional[httpx.AsyncClient] = None, probe: bool = False):
        self.client = client or httpx.AsyncClient(timeout=30.0, follow_redirects=True)
        self.probe = probe

    async def aclose(self) -> None:
        await self.client.aclose()

    async def verify(
        self,
        audio_url: str,
        thresholds: QualityThresholds = PROFESSIONAL_QUALITY,
    ) -> QualityResult:
        # Bundled fallback samples are served by the frontend and trusted.
        if audio_url.startswith("/"):
            return QualityResult(
                passes=True,
                quality_score=80,
                metadata=AudioMetadata(duration=30, bitrate=192),
            )

        logger.info(f"Verifying audio quality for: {audio_url}")
        try:
            response = await self.client.head(audio_url)
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Quality check failed for {audio_url}: {e}") from e

        if response.status_code >= 400:
            return QualityResult(passes=True, quality_score=60)

        size = content_length(response)
        metadata = AudioMetadata(
            content_length=size,
            content_type=response.headers.get("content-type"),
        )
        issues: List[str] = []
        if self.probe:
            try:
                probed = await asyncio.to_thread(probe_audio, audio_url)
            except (av.FFmpegError, ValueError) as e:
                raise UpstreamFailure(f"Could not decode {audio_url}: {e}") from e
            metadata = probed.model_copy(update={
                "content_length": size,
                "content_type": metadata.content_type,
            })
            issues = check_thresholds(metadata, thresholds)

        return QualityResult(
            passes=not issues,
            quality_score=_score_from_size(size),
            issues=issues,
            metadata=metadata,
        )


async def retry_until_quality_met(
    generate_fn: Callable[[], Awaitable[T]],
    get_audio_url: Callable[[T], str],
    verifier: AudioQualityVerifier,
    max_attempts: int = 1,
    thresholds: Optional[QualityThresholds] = None,
) -> Tuple[T, QualityResult]:
    """Generate until the verifier passes the result or attempts run out."""
    thresholds = thresholds or PROFESSIONAL_QUALITY
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        result = await generate_fn()
        quality = await verifier.verify(get_audio_url(result), thresholds)
        if quality.passes:
            return result, quality
        logger.warning(
            f"Quality attempt {attempt}/{attempts} scored {quality.quality_score}: {quality.issues}"
        )
    return result, quality
