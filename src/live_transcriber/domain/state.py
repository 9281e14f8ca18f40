from enum import Enum, auto


class SessionState(Enum):
    IDLE = auto()
    CONNECTING = auto()
    AWAITING_START = auto()
    RECORDING = auto()
    STOPPING = auto()
    REVIEWING = auto()
    SAVING = auto()
    DISCARDING = auto()
    ERROR = auto()


class ConnectionStatus(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.CONNECTING},
    SessionState.CONNECTING: {SessionState.AWAITING_START, SessionState.IDLE, SessionState.ERROR},
    SessionState.AWAITING_START: {SessionState.RECORDING, SessionState.IDLE, SessionState.ERROR},
    SessionState.RECORDING: {SessionState.STOPPING, SessionState.ERROR},
    SessionState.STOPPING: {SessionState.REVIEWING, SessionState.ERROR},
    SessionState.REVIEWING: {SessionState.SAVING, SessionState.DISCARDING, SessionState.ERROR},
    SessionState.SAVING: {SessionState.IDLE, SessionState.REVIEWING, SessionState.ERROR},
    SessionState.DISCARDING: {SessionState.IDLE, SessionState.ERROR},
    SessionState.ERROR: set(),
}

# States in which an unexpected socket close or fatal protocol error ends the session.
LIVE_CONNECTION_STATES = frozenset({
    SessionState.CONNECTING,
    SessionState.AWAITING_START,
    SessionState.RECORDING,
    SessionState.STOPPING,
})


class InvalidTransitionError(Exception):
    pass


def validate_transition(current: SessionState, target: SessionState) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {target.name}")


def connection_status_for(state: SessionState) -> ConnectionStatus:
    if state in (SessionState.CONNECTING, SessionState.AWAITING_START):
        return ConnectionStatus.CONNECTING
    if state in (SessionState.RECORDING, SessionState.STOPPING):
        return ConnectionStatus.CONNECTED
    if state == SessionState.ERROR:
        return ConnectionStatus.ERROR
    return ConnectionStatus.DISCONNECTED
