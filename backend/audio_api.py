from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
import logging
import aiofiles

from models import PreloadRequest, PreloadResponse, AudioStatus
from services.audio_loader import AudioFallbackLoader
from services.errors import AudioNotFound, ConverterError, DownloadFailed

# Setup logging
logger = logging.getLogger(__name__)

audio_router = APIRouter(prefix="/api/audio")


def get_audio_loader(request: Request) -> AudioFallbackLoader:
    return request.app.state.audio_loader


@audio_router.post("/{audio_id}/preload", response_model=PreloadResponse)
async def preload_audio(
    audio_id: str,
    body: PreloadRequest,
    loader: AudioFallbackLoader = Depends(get_audio_loader),
):
    """
    Load an audio id, walking the fallback URLs until one succeeds.
    """
    state = {"progress": 0, "error": None}

    def on_progress(progress: int):
        state["progress"] = progress

    def on_error(error: Exception):
        state["error"] = str(error)

    loaded = await loader.preload(
        audio_id,
        body.primary_url,
        body.fallback_urls,
        on_error=on_error,
        on_progress=on_progress,
    )
    return PreloadResponse(id=audio_id, loaded=loaded, progress=state["progress"], error=state["error"])


@audio_router.post("/{audio_id}/play", response_model=AudioStatus)
async def play_audio(audio_id: str, loader: AudioFallbackLoader = Depends(get_audio_loader)):
    try:
        await loader.play(audio_id)
    except AudioNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConverterError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return _status(audio_id, loader)


@audio_router.post("/{audio_id}/pause", response_model=AudioStatus)
async def pause_audio(audio_id: str, loader: AudioFallbackLoader = Depends(get_audio_loader)):
    loader.pause(audio_id)
    return _status(audio_id, loader)


@audio_router.get("/{audio_id}/status", response_model=AudioStatus)
async def audio_status(audio_id: str, loader: AudioFallbackLoader = Depends(get_audio_loader)):
    return _status(audio_id, loader)


@audio_router.get("/{audio_id}/download")
async def download_audio(
    audio_id: str,
    filename: str = "track",
    loader: AudioFallbackLoader = Depends(get_audio_loader),
):
    """
    Fetch the loaded audio and return it as an mp3 attachment.
    """
    async def deliver(path):
        async with aiofiles.open(path, "rb") as f:
            content = await f.read()
        return Response(
            content=content,
            media_type="audio/mpeg",
            headers={"Content-Disposition": f'attachment; filename="{path.name}"'},
        )

    try:
        return await loader.download(audio_id, filename, deliver)
    except AudioNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DownloadFailed as e:
        logger.error(f"Download error: {e}")
        raise HTTPException(status_code=502, detail=str(e))


@audio_router.delete("/")
async def cleanup_audio(loader: AudioFallbackLoader = Depends(get_audio_loader)):
    loader.cleanup()
    return {"message": "Audio cache cleared"}


def _status(audio_id: str, loader: AudioFallbackLoader) -> AudioStatus:
    handle = loader.get_handle(audio_id)
    return AudioStatus(
        id=audio_id,
        loaded=handle is not None,
        src=handle.src if handle else None,
        playing=bool(handle and handle.playing),
    )
