"""Error taxonomy for recording sessions.

Adapters translate library exceptions into these types; the session
controller is the only place that decides what a given error does to the
session state.
"""


class TranscriberError(Exception):
    """Base class for every error a recording session can surface."""

    retryable: bool = False

    def __init__(self, detail: str = "Recording session failed") -> None:
        self.detail = detail
        super().__init__(detail)


class DeviceError(TranscriberError):
    """No microphone, permission denied, or the device could not be opened."""


class ConfigError(TranscriberError):
    """The requested sample rate or channel count is not supported."""


class ConnectError(TranscriberError):
    """The recognition service could not be reached.

    ``transient`` errors (network, timeouts, 5xx) may succeed on a new
    ``start()``; fatal ones (bad credentials, bad URL) will not.
    """

    def __init__(self, detail: str = "Connection failed", transient: bool = False) -> None:
        super().__init__(detail)
        self.transient = transient
        self.retryable = transient


class AuthError(ConnectError):
    """The short-lived credential could not be obtained."""


class ProtocolError(TranscriberError):
    """A message from the recognition service was malformed or reported failure."""

    def __init__(self, detail: str = "Protocol error", fatal: bool = False) -> None:
        super().__init__(detail)
        self.fatal = fatal


class UploadError(TranscriberError):
    """Saving the recording failed; the session stays reviewable."""

    retryable = True
