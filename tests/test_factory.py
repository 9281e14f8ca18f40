from live_transcriber.adapters.recording_uploaders import (
    DirectoryRecordingUploader,
    HttpRecordingUploader,
)
from live_transcriber.adapters.sounddevice_audio import SounddeviceCapture
from live_transcriber.adapters.speechmatics_client import SpeechmaticsRealtimeClient
from live_transcriber.config import TranscriberConfig
from live_transcriber.domain.controller import SessionController
from live_transcriber.domain.state import SessionState
from live_transcriber.factory import (
    create_capture,
    create_client_factory,
    create_session_controller,
    create_uploader,
)


class TestFactory:
    def test_capture_uses_configured_container(self):
        config = TranscriberConfig(_env_file=None, recording_format="FLAC", recording_subtype="PCM_16")
        capture = create_capture(config)

        assert isinstance(capture, SounddeviceCapture)
        assert capture.frame_samples == config.frame_samples

    def test_client_factory_builds_fresh_clients(self):
        factory = create_client_factory(TranscriberConfig(_env_file=None))

        first, second = factory(), factory()

        assert isinstance(first, SpeechmaticsRealtimeClient)
        assert first is not second

    def test_uploader_selection(self, tmp_path):
        directory = create_uploader(TranscriberConfig(_env_file=None, output_dir=str(tmp_path)))
        http = create_uploader(TranscriberConfig(_env_file=None, upload_target="http"))

        assert isinstance(directory, DirectoryRecordingUploader)
        assert directory.output_dir == tmp_path
        assert isinstance(http, HttpRecordingUploader)

    def test_session_controller_starts_idle(self):
        controller = create_session_controller(TranscriberConfig(_env_file=None))

        assert isinstance(controller, SessionController)
        assert controller.state == SessionState.IDLE
