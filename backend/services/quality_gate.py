import logging

from models import PROFESSIONAL_QUALITY, QualityReport

logger = logging.getLogger(__name__)

VERIFIER_FALLBACK_FLOOR = 60
FALLBACK_TRACK_SCORE = 70


async def verify_track_quality(track_id: str, cache, verifier, generator) -> QualityReport:
    """Verify a track's audio, degrading instead of raising.

    Tiers: live verification, then the track's cached score floored at 60,
    then a fresh fetch from the generator, then an empty failure report.
    """
    try:
        track = await cache.get_track_by_id(track_id)
        if track is None:
            logger.warning(f"Track not found: {track_id}")
            return QualityReport(
                is_quality_verified=False,
                quality_score=0,
                track=None,
                issues=["Track not found"],
            )

        try:
            result = await verifier.verify(track.audio_url, PROFESSIONAL_QUALITY)
        except Exception as quality_error:
            logger.error(f"Error verifying audio quality for {track_id}: {quality_error}")
            return QualityReport(
                is_quality_verified=False,
                quality_score=max(track.quality_score or 0, VERIFIER_FALLBACK_FLOOR),
                track=track,
                issues=[str(quality_error)],
            )

        return QualityReport(
            is_quality_verified=result.passes,
            quality_score=result.quality_score,
            track=track,
            issues=result.issues,
        )
    except Exception as e:
        logger.error(f"Error verifying track quality for {track_id}: {e}")

    try:
        fallback_track = await generator.fetch_one(track_id)
    except Exception as fallback_error:
        logger.error(f"Error getting fallback track for {track_id}: {fallback_error}")
        return QualityReport(
            is_quality_verified=False,
            quality_score=0,
            track=None,
            issues=["Failed to get track or fallback"],
        )

    return QualityReport(
        is_quality_verified=False,
        quality_score=FALLBACK_TRACK_SCORE if fallback_track else 0,
        track=fallback_track,
        issues=["Using fallback track due to error"],
    )
