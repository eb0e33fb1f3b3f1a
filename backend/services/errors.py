from typing import Optional


class ConverterError(Exception):
    """Base class for library and audio service failures."""


class NotFound(ConverterError):
    pass


class AudioNotFound(NotFound):
    def __init__(self, audio_id: str):
        super().__init__(f"Audio {audio_id} not found in cache")
        self.audio_id = audio_id


class UpstreamFailure(ConverterError):
    """A generator or verifier call failed."""


class ExhaustedFallbacks(ConverterError):
    def __init__(self, audio_id: str, attempts: int):
        super().__init__(f"Failed to load audio {audio_id} after trying all URLs ({attempts} attempted)")
        self.audio_id = audio_id
        self.attempts = attempts


class LoadTimeout(ConverterError):
    def __init__(self, audio_id: str, timeout: float):
        super().__init__(f"Loading audio {audio_id} did not finish within {timeout}s")
        self.audio_id = audio_id
        self.timeout = timeout


class PlaybackError(ConverterError):
    pass


class DownloadFailed(ConverterError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class LoadCancelled(ConverterError):
    def __init__(self, audio_id: str):
        super().__init__(f"Loading audio {audio_id} was cancelled")
        self.audio_id = audio_id
