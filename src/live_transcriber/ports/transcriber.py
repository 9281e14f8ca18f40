from typing import AsyncIterator, Protocol

from live_transcriber.domain.audio import AudioFrame
from live_transcriber.domain.messages import ProtocolMessage


class RecognitionClientPort(Protocol):
    @property
    def last_seq(self) -> int: ...
    async def connect(self, credential: str) -> None: ...
    async def send_audio(self, frame: AudioFrame) -> None: ...
    async def end_stream(self) -> bool: ...
    def messages(self) -> AsyncIterator[ProtocolMessage]: ...
    async def close(self) -> None: ...
