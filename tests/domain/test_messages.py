import json

import pytest

from live_transcriber.domain.errors import ProtocolError
from live_transcriber.domain.messages import (
    AudioAdded,
    AudioFormat,
    ConnectionClosed,
    EndOfStream,
    EndOfTranscript,
    FinalTranscript,
    PartialTranscript,
    RecognitionStarted,
    ServiceError,
    ServiceInfo,
    ServiceWarning,
    StartRecognition,
    TranscriptionOptions,
    encode_message,
    parse_message,
)


def transcript_payload(kind: str, text: str, **metadata) -> str:
    return json.dumps({
        "message": kind,
        "metadata": {"transcript": text, **metadata},
        "results": [],
    })


class TestParseMessage:
    def test_recognition_started(self):
        message = parse_message(json.dumps({"message": "RecognitionStarted", "id": "abc-123"}))
        assert message == RecognitionStarted(session_ref="abc-123")

    def test_partial_transcript(self):
        message = parse_message(transcript_payload("AddPartialTranscript", "hell", start_time=0.1, end_time=0.4))
        assert isinstance(message, PartialTranscript)
        assert message.text == "hell"
        assert message.start_time == pytest.approx(0.1)
        assert message.end_time == pytest.approx(0.4)

    def test_final_transcript(self):
        message = parse_message(transcript_payload("AddTranscript", "Hello there."))
        assert message == FinalTranscript(text="Hello there.")

    def test_transcript_without_metadata_is_protocol_error(self):
        with pytest.raises(ProtocolError):
            parse_message(json.dumps({"message": "AddTranscript", "results": []}))

    def test_audio_added(self):
        assert parse_message(json.dumps({"message": "AudioAdded", "seq_no": 7})) == AudioAdded(seq_no=7)

    def test_end_of_transcript(self):
        assert parse_message('{"message": "EndOfTranscript"}') == EndOfTranscript()

    def test_known_fatal_error_type(self):
        message = parse_message(json.dumps({
            "message": "Error", "type": "not_authorised", "reason": "bad key",
        }))
        assert message == ServiceError(reason="bad key", type="not_authorised", fatal=True)

    def test_unknown_error_type_is_not_fatal(self):
        message = parse_message(json.dumps({
            "message": "Error", "type": "buffer_error", "reason": "slow down",
        }))
        assert isinstance(message, ServiceError)
        assert not message.fatal

    def test_explicit_fatal_flag_wins(self):
        message = parse_message(json.dumps({
            "message": "Error", "type": "buffer_error", "reason": "gone", "fatal": True,
        }))
        assert message.fatal

    def test_warning(self):
        message = parse_message(json.dumps({
            "message": "Warning", "type": "duration_limit_exceeded", "reason": "soon",
        }))
        assert message == ServiceWarning(reason="soon", type="duration_limit_exceeded")

    def test_info(self):
        message = parse_message(json.dumps({
            "message": "Info", "type": "recognition_quality", "reason": "telephony",
        }))
        assert isinstance(message, ServiceInfo)
        assert message.type == "recognition_quality"

    def test_unknown_message_becomes_info(self):
        message = parse_message(json.dumps({"message": "AddTranslation", "results": []}))
        assert isinstance(message, ServiceInfo)
        assert message.type == "AddTranslation"
        assert message.payload["results"] == []

    def test_bytes_payload(self):
        assert parse_message(b'{"message": "EndOfTranscript"}') == EndOfTranscript()

    def test_invalid_json(self):
        with pytest.raises(ProtocolError):
            parse_message("not json")

    def test_missing_message_field(self):
        with pytest.raises(ProtocolError):
            parse_message('{"type": "x"}')

    def test_non_object_payload(self):
        with pytest.raises(ProtocolError):
            parse_message("[1, 2, 3]")


class TestEncodeMessage:
    def test_start_recognition_shape(self):
        start = StartRecognition(
            audio_format=AudioFormat(encoding="pcm_s16le", sample_rate=16000),
            transcription_config=TranscriptionOptions(language="de", output_locale=""),
        )
        wire = json.loads(encode_message(start))

        assert wire["message"] == "StartRecognition"
        assert wire["audio_format"] == {"type": "raw", "encoding": "pcm_s16le", "sample_rate": 16000}
        config = wire["transcription_config"]
        assert config["language"] == "de"
        assert config["enable_partials"] is True
        assert config["max_delay"] == 1.0
        assert "output_locale" not in config
        assert "diarization" not in config

    def test_optional_transcription_features(self):
        options = TranscriptionOptions(diarization="speaker", enable_entities=True)
        config = options.to_wire()

        assert config["diarization"] == "speaker"
        assert config["enable_entities"] is True
        assert config["output_locale"] == "en-US"

    def test_end_of_stream_carries_last_seq_no(self):
        wire = json.loads(encode_message(EndOfStream(last_seq=42)))
        assert wire == {"message": "EndOfStream", "last_seq_no": 42}


class TestConnectionClosed:
    def test_normal_close(self):
        assert not ConnectionClosed(code=1000).abnormal

    def test_abnormal_close(self):
        assert ConnectionClosed(code=1006).abnormal
        assert ConnectionClosed(code=None).abnormal
