"""
Audio Fallback Loader (audio_loader.py)
=======================================
Loads playable audio for a logical id from an ordered list of candidate URLs.

- Strictly sequential fallback: URL 0, then 1, ... with a fixed delay between attempts
- One cached handle per id, replaced only by a successful load
- Play retries once against the first fallback URL
- Downloads are written to a temporary file that is removed shortly after delivery
"""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import aiofiles
import httpx

from services.errors import (
    AudioNotFound,
    ConverterError,
    DownloadFailed,
    ExhaustedFallbacks,
    LoadCancelled,
    LoadTimeout,
    PlaybackError,
    UpstreamFailure,
)
from services.http_utils import content_length

logger = logging.getLogger(__name__)

RETRY_DELAY = 1.0
RELEASE_DELAY = 0.1

ProgressCallback = Callable[[int], None]
ErrorCallback = Callable[[Exception], None]


class HttpMediaHandle:
    """Playable handle backed by an HTTP fetch of the audio file.

    The handle is ready to play once the whole body has been buffered.
    """

    def __init__(self, client: httpx.AsyncClient):
        self.client = client
        self.src: Optional[str] = None
        self.data = b""
        self.position = 0.0
        self.playing = False
        self.loaded = False

    async def load(self, url: str, on_progress: Optional[ProgressCallback] = None) -> None:
        self.src = url
        self.loaded = False
        self.data = b""
        buffer = bytearray()
        try:
            async with self.client.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise UpstreamFailure(f"Audio source {url} returned {response.status_code}")
                total = content_length(response)
                async for chunk in response.aiter_bytes():
                    buffer.extend(chunk)
                    if on_progress and total:
                        on_progress(min(100, round(len(buffer) / total * 100)))
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Error loading audio from {url}: {e}") from e

        self.data = bytes(buffer)
        self.loaded = True

    async def play(self) -> None:
        if not self.loaded or not self.data:
            raise PlaybackError(f"Audio source {self.src} is not playable")
        self.playing = True

    def pause(self) -> None:
        self.playing = False

    def seek(self, position: float) -> None:
        self.position = position

    def close(self) -> None:
        self.playing = False
        self.loaded = False
        self.data = b""
        self.src = None


class AudioFallbackLoader:
    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        handle_factory: Optional[Callable[[], HttpMediaHandle]] = None,
        retry_delay: float = RETRY_DELAY,
        max_fallbacks: Optional[int] = None,
        overall_timeout: Optional[float] = None,
        release_delay: float = RELEASE_DELAY,
        download_dir: Optional[Path] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client or httpx.AsyncClient(timeout=60.0, follow_redirects=True)
        self.handle_factory = handle_factory or (lambda: HttpMediaHandle(self.client))
        self.retry_delay = retry_delay
        self.max_fallbacks = max_fallbacks
        self.overall_timeout = overall_timeout
        self.release_delay = release_delay
        self.download_dir = Path(download_dir) if download_dir else None
        self.sleep = sleep

        self._handles: Dict[str, HttpMediaHandle] = {}
        self._urls: Dict[str, List[str]] = {}
        self._tasks: Dict[asyncio.Task, Tuple[str, Optional[ErrorCallback]]] = {}

    async def aclose(self) -> None:
        self.cleanup()
        await self.client.aclose()

    # ============== Loading ==============

    def preload(
        self,
        audio_id: str,
        primary_url: str,
        fallback_urls: Sequence[str] = (),
        on_loaded: Optional[Callable[[], None]] = None,
        on_error: Optional[ErrorCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> "asyncio.Task[bool]":
        """Start loading ``audio_id``; the returned task resolves to whether it loaded."""
        urls = [primary_url, *fallback_urls]
        if self.max_fallbacks is not None:
            urls = urls[: 1 + max(0, self.max_fallbacks)]
        self._urls[audio_id] = urls

        task = asyncio.create_task(self._run(audio_id, on_loaded, on_error, on_progress))
        self._tasks[task] = (audio_id, on_error)
        task.add_done_callback(lambda t: self._tasks.pop(t, None))
        return task

    async def _run(self, audio_id, on_loaded, on_error, on_progress) -> bool:
        chain = self._load_from(audio_id, 0, on_progress)
        try:
            if self.overall_timeout is not None:
                error = await asyncio.wait_for(chain, self.overall_timeout)
            else:
                error = await chain
        except asyncio.TimeoutError:
            error = LoadTimeout(audio_id, self.overall_timeout)
            logger.error(str(error))

        if error is None:
            if on_loaded:
                on_loaded()
            return True
        if on_error:
            on_error(error)
        return False

    async def _load_from(self, audio_id: str, index: int, on_progress) -> Optional[Exception]:
        urls = self._urls.get(audio_id, [])
        while index < len(urls):
            url = urls[index]
            if await self._load_at(audio_id, url, on_progress):
                return None

            index += 1
            if index < len(urls):
                logger.info(f"Trying fallback URL {index} for audio {audio_id}")
                await self.sleep(self.retry_delay)
        return ExhaustedFallbacks(audio_id, len(urls))

    async def _load_at(self, audio_id: str, url: str, on_progress) -> bool:
        handle = self.handle_factory()
        try:
            await handle.load(url, on_progress)
        except ConverterError as e:
            logger.warning(f"Error loading audio {audio_id} from URL {url}: {e}")
            handle.close()
            return False

        previous = self._handles.get(audio_id)
        if previous is not None and previous is not handle:
            previous.pause()
            previous.close()
        self._handles[audio_id] = handle
        return True

    # ============== Playback ==============

    async def play(self, audio_id: str) -> None:
        handle = self._handles.get(audio_id)
        if handle is None:
            raise AudioNotFound(audio_id)

        handle.seek(0)
        try:
            await handle.play()
        except ConverterError as e:
            logger.error(f"Error playing audio {audio_id}: {e}")
            urls = self._urls.get(audio_id, [])
            if len(urls) < 2:
                raise
            logger.info(f"Trying to reload audio {audio_id} with fallback URL")
            await handle.load(urls[1])
            await self.sleep(self.retry_delay)
            await handle.play()

    def pause(self, audio_id: str) -> None:
        handle = self._handles.get(audio_id)
        if handle is not None:
            handle.pause()

    def is_loaded(self, audio_id: str) -> bool:
        return audio_id in self._handles

    def get_handle(self, audio_id: str) -> Optional[HttpMediaHandle]:
        return self._handles.get(audio_id)

    # ============== Download ==============

    async def download(
        self,
        audio_id: str,
        filename: str,
        deliver: Optional[Callable[[Path], Awaitable]] = None,
    ):
        """Write the cached audio to ``<filename>.mp3`` and hand it to ``deliver``.

        The temporary file is removed ``release_delay`` seconds after delivery.
        Without ``deliver`` the path is returned and the caller owns the file.
        """
        handle = self._handles.get(audio_id)
        if handle is None:
            raise AudioNotFound(audio_id)

        try:
            response = await self.client.get(handle.src)
        except httpx.HTTPError as e:
            logger.error(f"Download error: {e}")
            raise DownloadFailed(str(e)) from e
        if response.status_code >= 400:
            raise DownloadFailed(f"HTTP error! status: {response.status_code}", response.status_code)

        if self.download_dir is not None:
            self.download_dir.mkdir(parents=True, exist_ok=True)
        tmp_dir = Path(tempfile.mkdtemp(prefix="download_", dir=self.download_dir))
        path = tmp_dir / f"{Path(filename).name}.mp3"
        async with aiofiles.open(path, "wb") as f:
            await f.write(response.content)

        if deliver is None:
            logger.info(f"Download ready for audio {audio_id} at {path}")
            return path

        try:
            return await deliver(path)
        finally:
            asyncio.get_running_loop().call_later(
                self.release_delay, shutil.rmtree, tmp_dir, True
            )

    # ============== Teardown ==============

    def cleanup(self) -> None:
        for task, (audio_id, on_error) in list(self._tasks.items()):
            if task.done():
                continue
            task.cancel()
            logger.info(f"Cancelled loading audio {audio_id}")
            if on_error:
                on_error(LoadCancelled(audio_id))
        self._tasks.clear()

        for handle in self._handles.values():
            handle.pause()
            handle.close()
        self._handles.clear()
        self._urls.clear()
