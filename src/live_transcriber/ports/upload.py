from typing import Protocol

from live_transcriber.domain.recording import RecordingArtifact


class RecordingUploaderPort(Protocol):
    async def upload(self, transcript: str, artifact: RecordingArtifact | None) -> None: ...
