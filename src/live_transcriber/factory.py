import logging
from collections.abc import Callable

from live_transcriber.config import TranscriberConfig
from live_transcriber.adapters.recording_uploaders import (
    DirectoryRecordingUploader,
    HttpRecordingUploader,
)
from live_transcriber.adapters.sounddevice_audio import SounddeviceCapture
from live_transcriber.adapters.speechmatics_client import SpeechmaticsRealtimeClient
from live_transcriber.adapters.speechmatics_credentials import SpeechmaticsTemporaryKeyProvider
from live_transcriber.domain.audio import CaptureConstraints
from live_transcriber.domain.controller import SessionController
from live_transcriber.domain.messages import AudioFormat, TranscriptionOptions
from live_transcriber.domain.reconciler import ReconcilerSettings
from live_transcriber.ports.credentials import CredentialProviderPort
from live_transcriber.ports.upload import RecordingUploaderPort

logger = logging.getLogger(__name__)


def create_capture(config: TranscriberConfig) -> SounddeviceCapture:
    return SounddeviceCapture(
        device=config.capture_device or None,
        frame_samples=config.frame_samples,
        encoding=config.audio_encoding,
        container_format=config.recording_format,
        container_subtype=config.recording_subtype,
    )


def create_client_factory(
    config: TranscriberConfig,
) -> Callable[[], SpeechmaticsRealtimeClient]:
    audio_format = AudioFormat(
        encoding=config.audio_encoding,
        sample_rate=config.sample_rate,
    )
    transcription = TranscriptionOptions(
        language=config.language,
        operating_point=config.operating_point,
        output_locale=config.output_locale,
        enable_partials=config.enable_partials,
        max_delay=config.max_delay,
        diarization=config.diarization,
        enable_entities=config.enable_entities,
    )

    def factory() -> SpeechmaticsRealtimeClient:
        return SpeechmaticsRealtimeClient(
            url=config.recognition_url,
            audio_format=audio_format,
            transcription=transcription,
            max_buffered_frames=config.max_buffered_frames,
            open_timeout=config.connect_timeout_seconds,
        )

    return factory


def create_credential_provider(config: TranscriberConfig) -> CredentialProviderPort:
    return SpeechmaticsTemporaryKeyProvider(
        api_key=config.read_secret(config.api_key_file),
        token_url=config.token_url,
        ttl_seconds=config.token_ttl_seconds,
        timeout=config.connect_timeout_seconds,
    )


def create_uploader(config: TranscriberConfig) -> RecordingUploaderPort:
    if config.upload_target == "http":
        return HttpRecordingUploader(
            api_base_url=config.api_base_url,
            token=config.read_secret(config.api_token_file),
        )
    return DirectoryRecordingUploader(output_dir=config.output_dir)


def create_session_controller(config: TranscriberConfig) -> SessionController:
    logger.debug(
        "Building session controller (upload=%s, language=%s)",
        config.upload_target, config.language,
    )
    return SessionController(
        capture_factory=lambda: create_capture(config),
        client_factory=create_client_factory(config),
        credentials=create_credential_provider(config),
        uploader=create_uploader(config),
        reconciler_settings=ReconcilerSettings(
            min_final_length=config.min_final_length,
            min_trailing_word_length=config.min_trailing_word_length,
        ),
        constraints=CaptureConstraints(sample_rate=config.sample_rate, channels=1),
        stop_grace_seconds=config.stop_grace_seconds,
        level_meter_interval_seconds=config.level_meter_interval_ms / 1000,
    )
