import logging
import os
import tempfile
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

MIME_TYPES = {
    "OGG": "audio/ogg",
    "FLAC": "audio/flac",
    "WAV": "audio/wav",
}

FILE_EXTENSIONS = {
    "audio/ogg": ".ogg",
    "audio/flac": ".flac",
    "audio/wav": ".wav",
}


@dataclass
class RecordingArtifact:
    """Encoded audio produced once per session by the capture sink."""

    data: bytes
    mime_type: str
    sample_rate: int
    duration_seconds: float
    _playback_path: str | None = field(default=None, repr=False)
    _released: bool = field(default=False, repr=False)

    @property
    def released(self) -> bool:
        return self._released

    @property
    def extension(self) -> str:
        return FILE_EXTENSIONS.get(self.mime_type, ".bin")

    def playback_path(self) -> str:
        """Spill the blob to a temporary file once and return its path."""
        if self._released:
            raise ValueError("Recording artifact already released")
        if self._playback_path is None:
            fd, path = tempfile.mkstemp(prefix="live-transcriber-", suffix=self.extension)
            with os.fdopen(fd, "wb") as f:
                f.write(self.data)
            self._playback_path = path
        return self._playback_path

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self.data = b""
        if self._playback_path:
            try:
                os.unlink(self._playback_path)
            except FileNotFoundError:
                pass
            logger.debug("Removed playback file %s", self._playback_path)
            self._playback_path = None
