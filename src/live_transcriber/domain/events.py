from dataclasses import dataclass, field
from time import time

from live_transcriber.domain.state import ConnectionStatus, SessionState


@dataclass(frozen=True)
class SessionEvent:
    timestamp: float = field(default_factory=time)


@dataclass(frozen=True)
class StateChanged(SessionEvent):
    previous: SessionState = SessionState.IDLE
    current: SessionState = SessionState.IDLE


@dataclass(frozen=True)
class ConnectionStatusChanged(SessionEvent):
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED


@dataclass(frozen=True)
class PartialTranscriptUpdated(SessionEvent):
    text: str = ""
    display_text: str = ""


@dataclass(frozen=True)
class FinalSegmentAdded(SessionEvent):
    text: str = ""
    confirmed: str = ""


@dataclass(frozen=True)
class TranscriptFinalized(SessionEvent):
    text: str = ""


@dataclass(frozen=True)
class AudioLevelChanged(SessionEvent):
    level: float = 0.0


@dataclass(frozen=True)
class SessionErrorRaised(SessionEvent):
    message: str = ""
    fatal: bool = True
    retryable: bool = False


@dataclass(frozen=True)
class SavingChanged(SessionEvent):
    active: bool = False


@dataclass(frozen=True)
class DeletingChanged(SessionEvent):
    active: bool = False
