from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE_PATH = Path.home() / ".config" / "live-transcriber" / "env"


class TranscriberConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LIVE_TRANSCRIBER_",
        env_file=(".env", ENV_FILE_PATH),
        extra="ignore",
    )

    recognition_url: str = "wss://eu2.rt.speechmatics.com/v2"
    token_url: str = "https://mp.speechmatics.com/v1/api_keys"
    token_ttl_seconds: int = 60
    api_key_file: str = ""

    language: str = "en"
    operating_point: str = "enhanced"
    output_locale: str = "en-US"
    enable_partials: bool = True
    max_delay: float = 1.0
    diarization: Literal["none", "speaker"] = "none"
    enable_entities: bool = False

    audio_encoding: Literal["pcm_s16le", "pcm_f32le"] = "pcm_s16le"
    sample_rate: int = 16000
    frame_samples: int = 4096
    capture_device: str = ""
    recording_format: str = "OGG"
    recording_subtype: str = "VORBIS"

    max_buffered_audio_seconds: float = 3.0
    connect_timeout_seconds: float = 10.0
    stop_grace_seconds: float = 5.0
    level_meter_interval_ms: int = 33

    min_final_length: int = 3
    min_trailing_word_length: int = 3

    upload_target: Literal["directory", "http"] = "directory"
    output_dir: str = "~/Recordings/live-transcriber"
    api_base_url: str = "http://localhost:3000"
    api_token_file: str = ""

    log_file: str = ""

    @property
    def max_buffered_frames(self) -> int:
        frames = self.max_buffered_audio_seconds * self.sample_rate / self.frame_samples
        return max(1, int(frames + 0.999))

    def read_secret(self, path: str) -> str:
        if not path:
            return ""
        try:
            with open(Path(path).expanduser()) as f:
                return f.read().strip()
        except FileNotFoundError:
            return ""
