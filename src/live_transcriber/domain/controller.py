import asyncio
import logging
from collections.abc import AsyncIterator, Callable

from live_transcriber.domain.audio import CaptureConstraints
from live_transcriber.domain.errors import (
    ConfigError,
    ConnectError,
    DeviceError,
    ProtocolError,
    TranscriberError,
    UploadError,
)
from live_transcriber.domain.events import (
    AudioLevelChanged,
    ConnectionStatusChanged,
    DeletingChanged,
    FinalSegmentAdded,
    PartialTranscriptUpdated,
    SavingChanged,
    SessionErrorRaised,
    SessionEvent,
    StateChanged,
    TranscriptFinalized,
)
from live_transcriber.domain.messages import (
    ConnectionClosed,
    EndOfTranscript,
    FinalTranscript,
    PartialTranscript,
    ProtocolMessage,
    RecognitionStarted,
    ServiceError,
    ServiceInfo,
    ServiceWarning,
)
from live_transcriber.domain.reconciler import ReconcilerSettings, TranscriptReconciler
from live_transcriber.domain.recording import RecordingArtifact
from live_transcriber.domain.session import Session
from live_transcriber.domain.state import (
    LIVE_CONNECTION_STATES,
    ConnectionStatus,
    SessionState,
    connection_status_for,
    validate_transition,
)
from live_transcriber.ports.audio import AudioCapturePort
from live_transcriber.ports.credentials import CredentialProviderPort
from live_transcriber.ports.transcriber import RecognitionClientPort
from live_transcriber.ports.upload import RecordingUploaderPort

logger = logging.getLogger(__name__)

DEFAULT_STOP_GRACE_SECONDS = 5.0
DEFAULT_LEVEL_METER_INTERVAL_SECONDS = 1 / 30
MAX_PENDING_EVENTS = 256


class SessionController:
    def __init__(
        self,
        capture_factory: Callable[[], AudioCapturePort],
        client_factory: Callable[[], RecognitionClientPort],
        credentials: CredentialProviderPort,
        uploader: RecordingUploaderPort,
        reconciler_settings: ReconcilerSettings | None = None,
        constraints: CaptureConstraints | None = None,
        stop_grace_seconds: float = DEFAULT_STOP_GRACE_SECONDS,
        level_meter_interval_seconds: float = DEFAULT_LEVEL_METER_INTERVAL_SECONDS,
    ) -> None:
        self._capture_factory = capture_factory
        self._client_factory = client_factory
        self._credentials = credentials
        self._uploader = uploader
        self._constraints = constraints or CaptureConstraints()
        self._stop_grace_seconds = stop_grace_seconds
        self._level_meter_interval_seconds = level_meter_interval_seconds

        self._session: Session | None = None
        self._capture: AudioCapturePort | None = None
        self._client: RecognitionClientPort | None = None
        self._reconciler = TranscriptReconciler(reconciler_settings)
        self._artifact: RecordingArtifact | None = None
        self._error: TranscriberError | None = None
        self._audio_level = 0.0
        self._end_of_transcript_received = False
        self._stop_deadline: float | None = None

        self._events: asyncio.Queue[SessionEvent] = asyncio.Queue(maxsize=MAX_PENDING_EVENTS)
        self._level_event_pending = False
        self._state_waiters: list[tuple[frozenset[SessionState], asyncio.Future]] = []
        self._settled = asyncio.Event()

        self._connect_task: asyncio.Task | None = None
        self._listener_task: asyncio.Task | None = None
        self._pump_task: asyncio.Task | None = None
        self._level_task: asyncio.Task | None = None
        self._grace_task: asyncio.Task | None = None

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def state(self) -> SessionState:
        if self._session is None:
            return SessionState.IDLE
        return self._session.state

    @property
    def status(self) -> ConnectionStatus:
        return connection_status_for(self.state)

    @property
    def partial_text(self) -> str:
        return self._reconciler.tentative

    @property
    def confirmed_text(self) -> str:
        return self._reconciler.confirmed

    @property
    def finalized_text(self) -> str | None:
        return self._reconciler.finalized

    @property
    def audio_level(self) -> float:
        return self._audio_level

    @property
    def error(self) -> TranscriberError | None:
        return self._error

    @property
    def artifact(self) -> RecordingArtifact | None:
        return self._artifact

    @property
    def is_saving(self) -> bool:
        return self.state == SessionState.SAVING

    @property
    def is_deleting(self) -> bool:
        return self.state == SessionState.DISCARDING

    async def events(self) -> AsyncIterator[SessionEvent]:
        while True:
            event = await self._events.get()
            yield self._take_event(event)

    def pending_events(self) -> list[SessionEvent]:
        drained: list[SessionEvent] = []
        while not self._events.empty():
            drained.append(self._take_event(self._events.get_nowait()))
        return drained

    async def wait_for_state(self, *states: SessionState) -> SessionState:
        if self.state in states:
            return self.state
        future = asyncio.get_running_loop().create_future()
        self._state_waiters.append((frozenset(states), future))
        return await future

    def playback_path(self) -> str | None:
        if self._artifact is None or self._artifact.released:
            return None
        return self._artifact.playback_path()

    async def start(self) -> None:
        if self.state not in (SessionState.IDLE, SessionState.ERROR):
            logger.info("Start ignored, session is %s", self.state.name)
            return

        self._session = Session()
        self._error = None
        self._artifact = None
        self._audio_level = 0.0
        self._end_of_transcript_received = False
        self._stop_deadline = None
        self._settled = asyncio.Event()
        self._reconciler.reset()
        logger.info("Session %s starting", self._session.session_id)

        self._transition_to(SessionState.CONNECTING)
        self._connect_task = asyncio.create_task(self._establish_connection())
        await asyncio.wait({self._connect_task})

    async def stop(self) -> None:
        state = self.state
        if state in (SessionState.CONNECTING, SessionState.AWAITING_START):
            await self._abort_connection()
            return
        if state == SessionState.STOPPING:
            await self._settled.wait()
            return
        if state != SessionState.RECORDING:
            logger.debug("Stop ignored, session is %s", state.name)
            return

        await self._begin_stopping(send_end_of_stream=True)
        await self._settled.wait()

    async def save(self) -> bool:
        if self.state != SessionState.REVIEWING:
            logger.info("Save ignored, session is %s", self.state.name)
            return False

        self._transition_to(SessionState.SAVING)
        self._emit(SavingChanged(active=True))
        transcript = self._reconciler.finalized or ""
        try:
            await self._uploader.upload(transcript, self._artifact)
        except UploadError as exc:
            self._save_failed(exc)
            return False
        except Exception as exc:
            logger.exception("Unexpected error while saving")
            self._save_failed(UploadError(f"Upload failed: {str(exc) or type(exc).__name__}"))
            return False

        logger.info("Saved recording (%d chars)", len(transcript))
        self._emit(SavingChanged(active=False))
        self._clear_review()
        self._transition_to(SessionState.IDLE)
        self._end_session()
        return True

    async def discard(self) -> None:
        if self.state != SessionState.REVIEWING:
            logger.info("Discard ignored, session is %s", self.state.name)
            return

        self._transition_to(SessionState.DISCARDING)
        self._emit(DeletingChanged(active=True))
        self._clear_review()
        self._emit(DeletingChanged(active=False))
        self._transition_to(SessionState.IDLE)
        self._end_session()

    async def shutdown(self) -> None:
        if self._session is None:
            return
        logger.info("Shutting down session %s", self._session.session_id)
        await self._release_resources()
        self._reconciler.reset()
        previous = self.state
        if previous != SessionState.IDLE:
            self._session.state = SessionState.IDLE
            self._emit(StateChanged(previous=previous, current=SessionState.IDLE))
            if connection_status_for(previous) != ConnectionStatus.DISCONNECTED:
                self._emit(ConnectionStatusChanged(status=ConnectionStatus.DISCONNECTED))
            self._notify_state_waiters(SessionState.IDLE)
        self._end_session()
        self._settled.set()

    def _transition_to(self, target: SessionState) -> None:
        current = self.state
        validate_transition(current, target)
        logger.info("State: %s -> %s", current.name, target.name)
        self._session.state = target
        self._emit(StateChanged(previous=current, current=target))
        status = connection_status_for(target)
        if status != connection_status_for(current):
            self._emit(ConnectionStatusChanged(status=status))
        self._notify_state_waiters(target)

    def _notify_state_waiters(self, target: SessionState) -> None:
        remaining = []
        for states, future in self._state_waiters:
            if future.done():
                continue
            if target in states:
                future.set_result(target)
            else:
                remaining.append((states, future))
        self._state_waiters = remaining

    def _save_failed(self, error: UploadError) -> None:
        logger.warning("Save failed: %s", error.detail)
        self._error = error
        self._transition_to(SessionState.REVIEWING)
        self._emit(SavingChanged(active=False))
        self._emit(SessionErrorRaised(message=error.detail, fatal=False, retryable=True))

    def _emit(self, event: SessionEvent) -> None:
        # At most one level event waits in the queue; it is refreshed when taken.
        is_level = isinstance(event, AudioLevelChanged)
        if is_level and self._level_event_pending:
            return
        if self._events.full():
            dropped = self._events.get_nowait()
            if isinstance(dropped, AudioLevelChanged):
                self._level_event_pending = False
            logger.debug("Event queue full, dropped %s", type(dropped).__name__)
        if is_level:
            self._level_event_pending = True
        self._events.put_nowait(event)

    def _take_event(self, event: SessionEvent) -> SessionEvent:
        if isinstance(event, AudioLevelChanged):
            self._level_event_pending = False
            return AudioLevelChanged(level=self._audio_level)
        return event

    async def _establish_connection(self) -> None:
        try:
            credential = await self._credentials.get_short_lived_credential()
            self._client = self._client_factory()
            await self._client.connect(credential)
        except ConnectError as exc:
            await self._fail(exc)
            return
        except Exception as exc:
            logger.exception("Unexpected error while connecting")
            await self._fail(ConnectError(str(exc) or type(exc).__name__))
            return

        self._transition_to(SessionState.AWAITING_START)
        self._listener_task = asyncio.create_task(self._listen(self._client))

    async def _abort_connection(self) -> None:
        logger.info("Stop requested while connecting, aborting")
        await self._release_resources()
        self._reconciler.reset()
        if self.state in (SessionState.CONNECTING, SessionState.AWAITING_START):
            self._transition_to(SessionState.IDLE)
            self._end_session()

    async def _listen(self, client: RecognitionClientPort) -> None:
        try:
            async for message in client.messages():
                await self._handle_message(message)
        except Exception as exc:
            logger.exception("Error while handling recognition messages")
            await self._fail(ProtocolError(str(exc) or type(exc).__name__, fatal=True))

    async def _handle_message(self, message: ProtocolMessage) -> None:
        if isinstance(message, RecognitionStarted):
            await self._on_recognition_started(message)
        elif isinstance(message, PartialTranscript):
            if self.state in (SessionState.RECORDING, SessionState.STOPPING):
                logger.debug("Partial: %s", message.text)
                self._reconciler.on_partial(message.text)
                self._emit(PartialTranscriptUpdated(
                    text=message.text,
                    display_text=self._reconciler.display_text,
                ))
        elif isinstance(message, FinalTranscript):
            if self.state in (SessionState.RECORDING, SessionState.STOPPING):
                logger.info("Final: %s", message.text)
                self._reconciler.on_final(message.text)
                self._emit(FinalSegmentAdded(
                    text=message.text,
                    confirmed=self._reconciler.confirmed,
                ))
        elif isinstance(message, EndOfTranscript):
            await self._on_end_of_transcript()
        elif isinstance(message, ServiceError):
            if message.fatal:
                await self._fail(ProtocolError(f"Recognition error: {message.reason}", fatal=True))
            else:
                logger.warning("Recognition error (non-fatal): %s", message.reason)
                self._emit(SessionErrorRaised(
                    message=f"Recognition error: {message.reason}",
                    fatal=False,
                    retryable=False,
                ))
        elif isinstance(message, ServiceWarning):
            logger.warning("Recognition warning [%s]: %s", message.type, message.reason)
        elif isinstance(message, ServiceInfo):
            logger.info("Recognition info [%s]: %s", message.type, message.reason)
        elif isinstance(message, ConnectionClosed):
            await self._on_connection_closed(message)

    async def _on_recognition_started(self, message: RecognitionStarted) -> None:
        if self.state != SessionState.AWAITING_START:
            logger.warning("RecognitionStarted ignored, session is %s", self.state.name)
            return

        logger.info("Recognition started (id=%s)", message.session_ref)
        self._capture = self._capture_factory()
        try:
            await self._capture.start(self._constraints)
        except (DeviceError, ConfigError) as exc:
            await self._fail(exc)
            return

        self._transition_to(SessionState.RECORDING)
        self._pump_task = asyncio.create_task(self._pump_frames(self._capture, self._client))
        self._level_task = asyncio.create_task(self._level_meter_loop(self._capture))

    async def _on_end_of_transcript(self) -> None:
        self._end_of_transcript_received = True
        state = self.state
        if state == SessionState.RECORDING:
            logger.info("Service ended the transcript while recording")
            await self._begin_stopping(send_end_of_stream=False)
        elif state == SessionState.STOPPING and self._grace_task is not None:
            await self._finish_stopping("end of transcript")

    async def _on_connection_closed(self, message: ConnectionClosed) -> None:
        state = self.state
        if state not in LIVE_CONNECTION_STATES:
            return
        if state == SessionState.STOPPING and not message.abnormal:
            logger.info("Connection closed normally while stopping")
            await self._on_end_of_transcript()
            return
        await self._fail(ConnectError(
            f"Connection closed unexpectedly (code={message.code}, reason={message.reason!r})",
            transient=True,
        ))

    async def _pump_frames(
        self,
        capture: AudioCapturePort,
        client: RecognitionClientPort,
    ) -> None:
        async for frame in capture.frames():
            await client.send_audio(frame)

    async def _level_meter_loop(self, capture: AudioCapturePort) -> None:
        try:
            while True:
                self._audio_level = capture.level()
                self._emit(AudioLevelChanged(level=self._audio_level))
                await asyncio.sleep(self._level_meter_interval_seconds)
        except asyncio.CancelledError:
            pass

    async def _begin_stopping(self, send_end_of_stream: bool) -> None:
        self._transition_to(SessionState.STOPPING)
        self._stop_deadline = asyncio.get_running_loop().time() + self._stop_grace_seconds
        await self._cancel_task(self._level_task)
        self._level_task = None
        self._audio_level = 0.0
        self._emit(AudioLevelChanged(level=0.0))

        capture = self._capture
        self._capture = None
        if capture is not None:
            artifact = await capture.stop()
            if self.state != SessionState.STOPPING:
                if artifact is not None:
                    artifact.release()
                return
            self._artifact = artifact
        await self._drain_pump()

        if self.state != SessionState.STOPPING:
            return
        if send_end_of_stream and self._client is not None:
            await self._client.end_stream()
        if self.state != SessionState.STOPPING:
            return

        if self._end_of_transcript_received:
            await self._finish_stopping("end of transcript")
            return
        self._grace_task = asyncio.create_task(self._grace_timer())

    async def _drain_pump(self) -> None:
        task = self._pump_task
        self._pump_task = None
        if task is None:
            return
        done, _ = await asyncio.wait({task}, timeout=self._stop_time_remaining())
        if not done:
            logger.warning("Frame pump did not drain in time, cancelling")
            await self._cancel_task(task)
        elif not task.cancelled() and task.exception() is not None:
            logger.error("Frame pump failed: %s", task.exception())

    def _stop_time_remaining(self) -> float:
        if self._stop_deadline is None:
            return self._stop_grace_seconds
        return max(0.0, self._stop_deadline - asyncio.get_running_loop().time())

    async def _grace_timer(self) -> None:
        try:
            await asyncio.sleep(self._stop_time_remaining())
        except asyncio.CancelledError:
            return
        logger.info("Grace period expired without EndOfTranscript")
        await self._finish_stopping("grace period expired")

    async def _finish_stopping(self, reason: str) -> None:
        if self.state != SessionState.STOPPING:
            return
        grace_task = self._grace_task
        self._grace_task = None
        await self._cancel_task(grace_task)

        text = self._reconciler.finalize()
        logger.info("Transcript finalized after %s (%d chars)", reason, len(text))
        self._transition_to(SessionState.REVIEWING)
        self._emit(TranscriptFinalized(text=text))

        await self._close_client()
        await self._cancel_task(self._listener_task)
        self._listener_task = None
        self._settled.set()

    async def _fail(self, error: TranscriberError) -> None:
        state = self.state
        if state in (SessionState.IDLE, SessionState.ERROR):
            logger.debug("Ignoring error in %s: %s", state.name, error.detail)
            return

        logger.error("Session failed in %s: %s", state.name, error.detail)
        self._error = error
        self._transition_to(SessionState.ERROR)
        await self._release_resources()
        self._reconciler.reset()
        self._emit(SessionErrorRaised(
            message=error.detail,
            fatal=not error.retryable,
            retryable=error.retryable,
        ))
        self._settled.set()

    async def _release_resources(self) -> None:
        for name in ("_grace_task", "_level_task", "_connect_task", "_pump_task", "_listener_task"):
            task = getattr(self, name)
            setattr(self, name, None)
            await self._cancel_task(task)

        capture = self._capture
        self._capture = None
        if capture is not None:
            artifact = await capture.stop()
            if artifact is not None:
                artifact.release()
        if self._artifact is not None:
            self._artifact.release()
            self._artifact = None

        await self._close_client()
        self._audio_level = 0.0

    async def _close_client(self) -> None:
        client = self._client
        self._client = None
        if client is not None:
            await client.close()

    async def _cancel_task(self, task: asyncio.Task | None) -> None:
        if task is None or task is asyncio.current_task():
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Background task failed")

    def _clear_review(self) -> None:
        if self._artifact is not None:
            self._artifact.release()
            self._artifact = None
        self._reconciler.reset()
        self._error = None

    def _end_session(self) -> None:
        if self._session is not None:
            self._session.end()
            self._session = None
