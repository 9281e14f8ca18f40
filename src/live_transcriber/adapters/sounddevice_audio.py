import asyncio
import io
import logging
from collections.abc import AsyncIterator

import janus
import numpy as np
import sounddevice as sd
import soundfile as sf

from live_transcriber.domain.audio import (
    LEVEL_WINDOW_SAMPLES,
    AudioEncoding,
    AudioFrame,
    CaptureConstraints,
    encode_samples,
    normalized_level,
)
from live_transcriber.domain.errors import ConfigError, DeviceError
from live_transcriber.domain.recording import MIME_TYPES, RecordingArtifact

logger = logging.getLogger(__name__)


class SounddeviceCapture:
    def __init__(
        self,
        device: str | int | None = None,
        frame_samples: int = 4096,
        encoding: AudioEncoding = "pcm_s16le",
        container_format: str = "OGG",
        container_subtype: str = "VORBIS",
        queue_size: int = 100,
    ) -> None:
        self._device = device
        self._frame_samples = frame_samples
        self._encoding = encoding
        self._container_format = container_format
        self._container_subtype = container_subtype
        self._queue_size = queue_size

        self._sample_rate = 16000
        self._stream: sd.InputStream | None = None
        self._queue: janus.Queue[np.ndarray] | None = None
        self._frames: asyncio.Queue[AudioFrame | None] | None = None
        self._pump_task: asyncio.Task | None = None
        self._sink: sf.SoundFile | None = None
        self._sink_buffer: io.BytesIO | None = None
        self._level_samples = np.zeros(0, dtype=np.float32)
        self._seq = 0
        self._samples_written = 0
        self._dropped_blocks = 0

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def frame_samples(self) -> int:
        return self._frame_samples

    @property
    def active(self) -> bool:
        return self._stream is not None

    async def start(self, constraints: CaptureConstraints | None = None) -> None:
        if self._stream is not None:
            logger.debug("Capture already started")
            return

        constraints = constraints or CaptureConstraints()
        if constraints.channels != 1:
            raise ConfigError(f"Only mono capture is supported, got {constraints.channels} channels")
        self._sample_rate = constraints.sample_rate

        device = self._resolve_device()
        self._check_device(device)

        self._seq = 0
        self._samples_written = 0
        self._dropped_blocks = 0
        self._level_samples = np.zeros(0, dtype=np.float32)
        self._queue = janus.Queue(maxsize=self._queue_size)
        self._frames = asyncio.Queue()
        try:
            self._open_sink()
        except (sf.LibsndfileError, ValueError, TypeError) as exc:
            await self._release()
            raise ConfigError(
                f"Unsupported recording format {self._container_format}/{self._container_subtype}: {exc}"
            ) from exc

        sync_q = self._queue.sync_q

        def audio_callback(indata: np.ndarray, frames: int, time_info, status) -> None:
            if status:
                logger.warning("Audio capture status: %s", status)
            try:
                sync_q.put_nowait(indata[:, 0].copy())
            except janus.SyncQueueFull:
                self._dropped_blocks += 1
            except janus.SyncQueueShutDown:
                pass

        try:
            self._stream = sd.InputStream(
                device=device,
                samplerate=self._sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self._frame_samples,
                callback=audio_callback,
            )
            self._stream.start()
        except sd.PortAudioError as exc:
            await self._release()
            raise DeviceError(f"Could not open microphone: {exc}") from exc
        except (ValueError, TypeError) as exc:
            await self._release()
            raise ConfigError(f"Invalid capture settings: {exc}") from exc

        self._pump_task = asyncio.create_task(self._pump())
        logger.info(
            "Audio capture started (device=%s, rate=%d, block=%d samples, sink=%s/%s)",
            device, self._sample_rate, self._frame_samples,
            self._container_format, self._container_subtype,
        )

    async def frames(self) -> AsyncIterator[AudioFrame]:
        frames = self._frames
        if frames is None:
            return
        while True:
            frame = await frames.get()
            if frame is None:
                break
            yield frame

    def level(self) -> float:
        return normalized_level(self._level_samples)

    async def stop(self) -> RecordingArtifact | None:
        if self._stream is None and self._queue is None:
            return None
        return await self._release()

    async def _pump(self) -> None:
        queue = self._queue
        frames = self._frames
        while True:
            try:
                block = await queue.async_q.get()
            except janus.AsyncQueueShutDown:
                break
            if self._sink is not None:
                self._sink.write(block)
            self._samples_written += block.size
            self._level_samples = block[-LEVEL_WINDOW_SAMPLES:]
            self._seq += 1
            await frames.put(AudioFrame(
                seq=self._seq,
                pcm=encode_samples(block, self._encoding),
                sample_count=block.size,
            ))

    async def _release(self) -> RecordingArtifact | None:
        stream = self._stream
        self._stream = None
        try:
            if stream is not None:
                try:
                    stream.stop()
                finally:
                    stream.close()
        finally:
            if self._queue is not None:
                self._queue.shutdown()
            if self._pump_task is not None:
                try:
                    await self._pump_task
                except Exception:
                    logger.exception("Audio pump failed")
                self._pump_task = None
            if self._queue is not None:
                await self._queue.aclose()
                self._queue = None
            if self._frames is not None:
                self._frames.put_nowait(None)
                self._frames = None
            self._level_samples = np.zeros(0, dtype=np.float32)

        artifact = self._close_sink()
        if self._dropped_blocks:
            logger.warning("Dropped %d audio blocks (queue full)", self._dropped_blocks)
        logger.info("Audio capture stopped (%d frames)", self._seq)
        return artifact

    def _open_sink(self) -> None:
        self._sink_buffer = io.BytesIO()
        self._sink = sf.SoundFile(
            self._sink_buffer,
            mode="w",
            samplerate=self._sample_rate,
            channels=1,
            format=self._container_format,
            subtype=self._container_subtype,
        )

    def _close_sink(self) -> RecordingArtifact | None:
        sink = self._sink
        buffer = self._sink_buffer
        self._sink = None
        self._sink_buffer = None
        if sink is None or buffer is None:
            return None
        sink.close()
        return RecordingArtifact(
            data=buffer.getvalue(),
            mime_type=MIME_TYPES.get(self._container_format.upper(), "application/octet-stream"),
            sample_rate=self._sample_rate,
            duration_seconds=self._samples_written / self._sample_rate,
        )

    def _check_device(self, device: str | int | None) -> None:
        try:
            info = sd.query_devices(device, kind="input")
        except (ValueError, sd.PortAudioError) as exc:
            raise DeviceError(f"No audio input device available: {exc}") from exc
        if info["max_input_channels"] < 1:
            raise DeviceError(f"Device '{info['name']}' has no input channels")
        try:
            sd.check_input_settings(
                device=device,
                channels=1,
                dtype="float32",
                samplerate=self._sample_rate,
            )
        except (ValueError, sd.PortAudioError) as exc:
            raise ConfigError(
                f"Unsupported capture settings ({self._sample_rate} Hz mono): {exc}"
            ) from exc

    def _resolve_device(self) -> str | int | None:
        if self._device is None or self._device == "":
            return None
        if isinstance(self._device, int):
            return self._device
        try:
            return int(self._device)
        except ValueError:
            pass
        for i, dev in enumerate(sd.query_devices()):
            if self._device.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                logger.info("Resolved device '%s' -> %d (%s)", self._device, i, dev["name"])
                return i
        raise DeviceError(f"No input device matching '{self._device}'")
