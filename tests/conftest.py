import asyncio
import json
from collections.abc import AsyncIterator

import numpy as np
import pytest

from live_transcriber.domain.audio import AudioFrame, CaptureConstraints
from live_transcriber.domain.errors import UploadError
from live_transcriber.domain.messages import ProtocolMessage
from live_transcriber.domain.recording import RecordingArtifact


SAMPLE_RATE = 16000
FRAME_SAMPLES = 4096


def generate_silence(duration_ms: int = 32, sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    num_samples = int(sample_rate * duration_ms / 1000)
    return np.zeros(num_samples, dtype=np.float32)


def generate_sine_wave(
    frequency: float = 440.0,
    duration_ms: int = 32,
    amplitude: float = 0.8,
    sample_rate: int = SAMPLE_RATE,
) -> np.ndarray:
    num_samples = int(sample_rate * duration_ms / 1000)
    t = np.arange(num_samples) / sample_rate
    return (np.sin(2 * np.pi * frequency * t) * amplitude).astype(np.float32)


def generate_white_noise(
    duration_ms: int = 32,
    amplitude: float = 0.5,
    sample_rate: int = SAMPLE_RATE,
) -> np.ndarray:
    num_samples = int(sample_rate * duration_ms / 1000)
    return (np.random.uniform(-1, 1, num_samples) * amplitude).astype(np.float32)


def make_frames(count: int, payload_size: int = 8) -> list[AudioFrame]:
    return [
        AudioFrame(seq=i, pcm=bytes([i % 256]) * payload_size, sample_count=payload_size // 2)
        for i in range(1, count + 1)
    ]


def make_artifact(data: bytes = b"OggS-fake-audio") -> RecordingArtifact:
    return RecordingArtifact(
        data=data,
        mime_type="audio/ogg",
        sample_rate=SAMPLE_RATE,
        duration_seconds=1.5,
    )


async def wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.001)


class FakeCapture:
    def __init__(
        self,
        frames: list[AudioFrame] | None = None,
        level: float = 0.25,
        start_error: Exception | None = None,
        artifact: RecordingArtifact | None = None,
    ) -> None:
        self._initial_frames = frames or []
        self._level = level
        self._start_error = start_error
        self._artifact = artifact if artifact is not None else make_artifact()
        self._queue: asyncio.Queue[AudioFrame | None] = asyncio.Queue()
        self.started = False
        self.stopped = False
        self.constraints: CaptureConstraints | None = None

    @property
    def artifact(self) -> RecordingArtifact:
        return self._artifact

    async def start(self, constraints: CaptureConstraints | None = None) -> None:
        if self._start_error is not None:
            raise self._start_error
        self.constraints = constraints
        self.started = True
        for frame in self._initial_frames:
            self._queue.put_nowait(frame)

    async def frames(self) -> AsyncIterator[AudioFrame]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame

    def feed(self, frames: list[AudioFrame]) -> None:
        for frame in frames:
            self._queue.put_nowait(frame)

    def level(self) -> float:
        return self._level

    async def stop(self) -> RecordingArtifact | None:
        if not self.started or self.stopped:
            return None
        self.stopped = True
        self._queue.put_nowait(None)
        return self._artifact


class FakeRecognitionClient:
    def __init__(
        self,
        connect_error: Exception | None = None,
        replies_on_end: list[ProtocolMessage] | None = None,
    ) -> None:
        self._connect_error = connect_error
        self._replies_on_end = replies_on_end or []
        self._queue: asyncio.Queue[ProtocolMessage | None] = asyncio.Queue()
        self._last_seq = 0
        self.credential: str | None = None
        self.sent: list[AudioFrame] = []
        self.end_stream_calls = 0
        self.closed = False

    @property
    def last_seq(self) -> int:
        return self._last_seq

    async def connect(self, credential: str) -> None:
        if self._connect_error is not None:
            raise self._connect_error
        self.credential = credential

    async def send_audio(self, frame: AudioFrame) -> None:
        if self.closed:
            return
        self.sent.append(frame)
        self._last_seq += 1

    async def end_stream(self) -> bool:
        self.end_stream_calls += 1
        if self.end_stream_calls > 1 or self.closed:
            return False
        for message in self._replies_on_end:
            self.push(message)
        return True

    async def messages(self) -> AsyncIterator[ProtocolMessage]:
        while True:
            message = await self._queue.get()
            if message is None:
                return
            yield message

    def push(self, message: ProtocolMessage) -> None:
        self._queue.put_nowait(message)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(None)


class FakeCredentialProvider:
    def __init__(self, credential: str = "temp-key", error: Exception | None = None) -> None:
        self._credential = credential
        self._error = error
        self.release = asyncio.Event()
        self.release.set()
        self.calls = 0

    async def get_short_lived_credential(self) -> str:
        self.calls += 1
        await self.release.wait()
        if self._error is not None:
            raise self._error
        return self._credential


class FakeUploader:
    def __init__(self, failures: int = 0, error: Exception | None = None) -> None:
        self._failures = failures
        self._error = error
        self.uploads: list[tuple[str, RecordingArtifact | None]] = []
        self.attempts = 0

    async def upload(self, transcript: str, artifact: RecordingArtifact | None) -> None:
        self.attempts += 1
        if self._failures > 0:
            self._failures -= 1
            raise self._error or UploadError("Upload failed: service unavailable")
        self.uploads.append((transcript, artifact))


class FakeSocket:
    """Stands in for a websockets client connection."""

    def __init__(self, incoming: list[str | bytes] | None = None) -> None:
        self._incoming: asyncio.Queue[str | bytes | None] = asyncio.Queue()
        for item in incoming or []:
            self._incoming.put_nowait(item)
        self.sent: list[str | bytes] = []
        self.close_code: int | None = None
        self.close_reason = ""
        self.closed = False

    def feed(self, raw: str | bytes | dict) -> None:
        if isinstance(raw, dict):
            raw = json.dumps(raw)
        self._incoming.put_nowait(raw)

    def drop(self, code: int | None = None, reason: str = "") -> None:
        self.close_code = code
        self.close_reason = reason
        self._incoming.put_nowait(None)

    @property
    def sent_json(self) -> list[dict]:
        return [json.loads(m) for m in self.sent if isinstance(m, str)]

    @property
    def sent_audio(self) -> list[bytes]:
        return [m for m in self.sent if isinstance(m, bytes)]

    async def send(self, message: str | bytes) -> None:
        self.sent.append(message)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.close_code = self.close_code or 1000
            self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str | bytes:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


@pytest.fixture
def fake_capture():
    return FakeCapture()


@pytest.fixture
def fake_client():
    return FakeRecognitionClient()


@pytest.fixture
def fake_credentials():
    return FakeCredentialProvider()


@pytest.fixture
def fake_uploader():
    return FakeUploader()


@pytest.fixture
def speech_samples():
    return generate_sine_wave(duration_ms=256)


@pytest.fixture
def silence_samples():
    return generate_silence(duration_ms=256)
