from typing import AsyncIterator, Protocol

from live_transcriber.domain.audio import AudioFrame, CaptureConstraints
from live_transcriber.domain.recording import RecordingArtifact


class AudioCapturePort(Protocol):
    async def start(self, constraints: CaptureConstraints | None = None) -> None: ...
    def frames(self) -> AsyncIterator[AudioFrame]: ...
    def level(self) -> float: ...
    async def stop(self) -> RecordingArtifact | None: ...
