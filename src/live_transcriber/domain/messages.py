"""Recognition service messages, parsed into tagged variants at the socket boundary.

Control and transcript traffic is JSON text; audio travels as binary frames
and never passes through this module.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Literal

from live_transcriber.domain.audio import AudioEncoding
from live_transcriber.domain.errors import ProtocolError

FATAL_ERROR_TYPES = frozenset({
    "not_authorised",
    "invalid_model",
    "invalid_config",
    "invalid_audio_type",
    "insufficient_funds",
    "not_allowed",
    "job_error",
    "quota_exceeded",
    "timelimit_exceeded",
})


@dataclass(frozen=True)
class AudioFormat:
    encoding: AudioEncoding = "pcm_s16le"
    sample_rate: int = 16000
    type: str = "raw"

    def to_wire(self) -> dict[str, Any]:
        return {"type": self.type, "encoding": self.encoding, "sample_rate": self.sample_rate}


@dataclass(frozen=True)
class TranscriptionOptions:
    language: str = "en"
    operating_point: str = "enhanced"
    output_locale: str = "en-US"
    enable_partials: bool = True
    max_delay: float = 1.0
    diarization: Literal["none", "speaker"] = "none"
    enable_entities: bool = False

    def to_wire(self) -> dict[str, Any]:
        config: dict[str, Any] = {
            "language": self.language,
            "operating_point": self.operating_point,
            "enable_partials": self.enable_partials,
            "max_delay": self.max_delay,
        }
        if self.output_locale:
            config["output_locale"] = self.output_locale
        if self.diarization != "none":
            config["diarization"] = self.diarization
        if self.enable_entities:
            config["enable_entities"] = True
        return config


@dataclass(frozen=True)
class ProtocolMessage:
    pass


@dataclass(frozen=True)
class StartRecognition(ProtocolMessage):
    audio_format: AudioFormat = field(default_factory=AudioFormat)
    transcription_config: TranscriptionOptions = field(default_factory=TranscriptionOptions)

    def to_wire(self) -> dict[str, Any]:
        return {
            "message": "StartRecognition",
            "audio_format": self.audio_format.to_wire(),
            "transcription_config": self.transcription_config.to_wire(),
        }


@dataclass(frozen=True)
class EndOfStream(ProtocolMessage):
    last_seq: int = 0

    def to_wire(self) -> dict[str, Any]:
        return {"message": "EndOfStream", "last_seq_no": self.last_seq}


@dataclass(frozen=True)
class RecognitionStarted(ProtocolMessage):
    session_ref: str = ""


@dataclass(frozen=True)
class PartialTranscript(ProtocolMessage):
    text: str = ""
    start_time: float | None = None
    end_time: float | None = None


@dataclass(frozen=True)
class FinalTranscript(ProtocolMessage):
    text: str = ""
    start_time: float | None = None
    end_time: float | None = None


@dataclass(frozen=True)
class AudioAdded(ProtocolMessage):
    seq_no: int = 0


@dataclass(frozen=True)
class EndOfTranscript(ProtocolMessage):
    pass


@dataclass(frozen=True)
class ServiceError(ProtocolMessage):
    reason: str = ""
    type: str = ""
    fatal: bool = False


@dataclass(frozen=True)
class ServiceWarning(ProtocolMessage):
    reason: str = ""
    type: str = ""


@dataclass(frozen=True)
class ServiceInfo(ProtocolMessage):
    reason: str = ""
    type: str = ""
    payload: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ConnectionClosed(ProtocolMessage):
    """Transport event: the socket is gone. Emitted once per client."""

    code: int | None = None
    reason: str = ""

    @property
    def abnormal(self) -> bool:
        return self.code != 1000


def parse_message(raw: str | bytes) -> ProtocolMessage:
    """Classify one incoming text frame.

    Raises ``ProtocolError`` when the payload is not a JSON object with a
    ``message`` field. Unknown ``message`` values come back as ``ServiceInfo``.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError("Binary payload is not UTF-8 JSON") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Invalid JSON: {exc.msg}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("message"), str):
        raise ProtocolError("Payload has no 'message' field")

    kind = data["message"]
    if kind == "RecognitionStarted":
        return RecognitionStarted(session_ref=str(data.get("id", "")))
    if kind == "AddPartialTranscript":
        return PartialTranscript(**_transcript_fields(data))
    if kind == "AddTranscript":
        return FinalTranscript(**_transcript_fields(data))
    if kind == "AudioAdded":
        return AudioAdded(seq_no=_as_int(data.get("seq_no")))
    if kind == "EndOfTranscript":
        return EndOfTranscript()
    if kind == "Error":
        error_type = str(data.get("type", ""))
        fatal = data.get("fatal")
        if not isinstance(fatal, bool):
            fatal = error_type in FATAL_ERROR_TYPES
        return ServiceError(reason=str(data.get("reason", "")), type=error_type, fatal=fatal)
    if kind == "Warning":
        return ServiceWarning(reason=str(data.get("reason", "")), type=str(data.get("type", "")))
    return ServiceInfo(
        reason=str(data.get("reason", "")),
        type=str(data.get("type", kind if kind != "Info" else "")),
        payload=data,
    )


def encode_message(message: StartRecognition | EndOfStream) -> str:
    return json.dumps(message.to_wire())


def _transcript_fields(data: dict[str, Any]) -> dict[str, Any]:
    metadata = data.get("metadata")
    if not isinstance(metadata, dict) or not isinstance(metadata.get("transcript"), str):
        raise ProtocolError(f"{data['message']} without metadata.transcript")
    return {
        "text": metadata["transcript"],
        "start_time": _as_float(metadata.get("start_time")),
        "end_time": _as_float(metadata.get("end_time")),
    }


def _as_float(value: Any) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


def _as_int(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0
