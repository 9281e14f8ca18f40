import asyncio
import collections
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum, auto
from typing import Any
from urllib.parse import urlencode

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus, InvalidURI

from live_transcriber.domain.audio import AudioFrame
from live_transcriber.domain.errors import ConnectError, ProtocolError
from live_transcriber.domain.messages import (
    AudioAdded,
    AudioFormat,
    ConnectionClosed as ConnectionClosedEvent,
    EndOfStream,
    ProtocolMessage,
    RecognitionStarted,
    StartRecognition,
    TranscriptionOptions,
    encode_message,
    parse_message,
)

logger = logging.getLogger(__name__)

DEFAULT_URL = "wss://eu2.rt.speechmatics.com/v2"
NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006

Connector = Callable[..., Awaitable[Any]]


class ClientState(Enum):
    IDLE = auto()
    CONNECTING = auto()
    OPEN = auto()
    CLOSING = auto()
    CLOSED = auto()


class SpeechmaticsRealtimeClient:
    """Single-use real-time recognition connection.

    The credential travels as the ``jwt`` query parameter. Audio frames are
    held back until ``RecognitionStarted`` arrives, in a buffer capped at
    ``max_buffered_frames``; overflow drops the oldest frame.
    """

    def __init__(
        self,
        url: str = DEFAULT_URL,
        audio_format: AudioFormat | None = None,
        transcription: TranscriptionOptions | None = None,
        max_buffered_frames: int = 12,
        open_timeout: float = 10.0,
        connector: Connector | None = None,
    ) -> None:
        self._url = url
        self._audio_format = audio_format or AudioFormat()
        self._transcription = transcription or TranscriptionOptions()
        self._open_timeout = open_timeout
        self._connector = connector or connect

        self._state = ClientState.IDLE
        self._socket: Any = None
        self._receiver_task: asyncio.Task | None = None
        self._send_lock = asyncio.Lock()
        self._pending: collections.deque[AudioFrame] = collections.deque(maxlen=max_buffered_frames)
        self._dropped_frames = 0
        self._messages: asyncio.Queue[ProtocolMessage | None] = asyncio.Queue()
        self._recognition_started = False
        self._end_of_stream_sent = False
        self._close_emitted = False
        self._last_seq = 0
        self._acknowledged_seq = 0

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def last_seq(self) -> int:
        return self._last_seq

    @property
    def acknowledged_seq(self) -> int:
        return self._acknowledged_seq

    @property
    def recognition_started(self) -> bool:
        return self._recognition_started

    @property
    def dropped_frames(self) -> int:
        return self._dropped_frames

    async def connect(self, credential: str) -> None:
        if self._state is not ClientState.IDLE:
            raise ConnectError(f"Client already used (state={self._state.name})")

        self._state = ClientState.CONNECTING
        url = f"{self._url}?{urlencode({'jwt': credential})}"
        try:
            self._socket = await self._connector(url, open_timeout=self._open_timeout)
        except InvalidStatus as exc:
            self._state = ClientState.CLOSED
            status = exc.response.status_code
            raise ConnectError(
                f"Recognition service rejected connection (HTTP {status})",
                transient=status >= 500 or status == 429,
            ) from exc
        except (InvalidURI, InvalidHandshake) as exc:
            self._state = ClientState.CLOSED
            raise ConnectError(f"Recognition handshake failed: {exc}") from exc
        except (OSError, TimeoutError) as exc:
            self._state = ClientState.CLOSED
            raise ConnectError(f"Recognition service unreachable: {exc}", transient=True) from exc
        except asyncio.CancelledError:
            self._state = ClientState.CLOSED
            raise

        self._state = ClientState.OPEN
        start = StartRecognition(
            audio_format=self._audio_format,
            transcription_config=self._transcription,
        )
        try:
            await self._socket.send(encode_message(start))
        except ConnectionClosed as exc:
            await self.close()
            raise ConnectError("Connection closed during handshake", transient=True) from exc
        logger.info(
            "Recognition socket open (language=%s, encoding=%s, rate=%d)",
            self._transcription.language,
            self._audio_format.encoding,
            self._audio_format.sample_rate,
        )
        self._receiver_task = asyncio.create_task(self._receive_loop())

    async def send_audio(self, frame: AudioFrame) -> None:
        if self._state is not ClientState.OPEN:
            logger.debug("Dropping frame %d, socket is %s", frame.seq, self._state.name)
            return
        if not self._recognition_started:
            if len(self._pending) == self._pending.maxlen:
                self._dropped_frames += 1
                logger.warning("Pre-recognition buffer full, dropping oldest frame")
            self._pending.append(frame)
            return
        async with self._send_lock:
            await self._transmit(frame)

    async def end_stream(self) -> bool:
        if self._end_of_stream_sent or self._state is not ClientState.OPEN:
            return False
        self._end_of_stream_sent = True
        message = EndOfStream(last_seq=self._last_seq)
        async with self._send_lock:
            try:
                await self._socket.send(encode_message(message))
            except ConnectionClosed:
                logger.debug("Socket closed before EndOfStream could be sent")
                return False
        logger.info("EndOfStream sent (last_seq_no=%d)", self._last_seq)
        return True

    async def messages(self) -> AsyncIterator[ProtocolMessage]:
        while True:
            message = await self._messages.get()
            if message is None:
                return
            yield message

    async def close(self) -> None:
        if self._state in (ClientState.CLOSING, ClientState.CLOSED):
            return
        if self._state is ClientState.IDLE or self._socket is None:
            self._state = ClientState.CLOSED
            self._messages.put_nowait(None)
            return

        self._state = ClientState.CLOSING
        if self._receiver_task and self._receiver_task is not asyncio.current_task():
            self._receiver_task.cancel()
            try:
                await self._receiver_task
            except asyncio.CancelledError:
                pass
        self._receiver_task = None

        try:
            await self._socket.close()
        except (ConnectionClosed, OSError):
            logger.debug("Socket already gone while closing")
        self._mark_closed(
            getattr(self._socket, "close_code", None) or NORMAL_CLOSURE,
            getattr(self._socket, "close_reason", None) or "",
        )

    async def _receive_loop(self) -> None:
        try:
            async for raw in self._socket:
                if isinstance(raw, bytes):
                    logger.debug("Ignoring %d-byte binary message", len(raw))
                    continue
                try:
                    message = parse_message(raw)
                except ProtocolError as exc:
                    logger.warning("Ignoring unparsable message: %s", exc.detail)
                    continue
                await self._dispatch(message)
        except ConnectionClosed:
            pass
        self._mark_closed(
            getattr(self._socket, "close_code", None) or ABNORMAL_CLOSURE,
            getattr(self._socket, "close_reason", None) or "",
        )

    async def _dispatch(self, message: ProtocolMessage) -> None:
        if isinstance(message, RecognitionStarted):
            if self._recognition_started:
                logger.warning("Duplicate RecognitionStarted ignored")
                return
            await self._flush_pending()
        elif isinstance(message, AudioAdded):
            self._acknowledged_seq = max(self._acknowledged_seq, message.seq_no)
            return
        await self._messages.put(message)

    async def _flush_pending(self) -> None:
        flushed = 0
        async with self._send_lock:
            while self._pending:
                await self._transmit(self._pending.popleft())
                flushed += 1
            self._recognition_started = True
        if flushed:
            logger.info("Flushed %d buffered frames", flushed)

    async def _transmit(self, frame: AudioFrame) -> None:
        try:
            await self._socket.send(frame.pcm)
        except ConnectionClosed:
            logger.debug("Socket closed while sending frame %d", frame.seq)
            return
        self._last_seq += 1

    def _mark_closed(self, code: int, reason: str) -> None:
        if self._close_emitted:
            return
        self._close_emitted = True
        self._state = ClientState.CLOSED
        if self._pending:
            logger.info("Discarding %d unsent frames", len(self._pending))
            self._pending.clear()
        logger.info("Recognition socket closed (code=%s, reason=%r)", code, reason)
        self._messages.put_nowait(ConnectionClosedEvent(code=code, reason=reason))
        self._messages.put_nowait(None)
