import asyncio
import logging
from datetime import datetime
from pathlib import Path

import httpx

from live_transcriber.domain.errors import UploadError
from live_transcriber.domain.recording import RecordingArtifact

logger = logging.getLogger(__name__)


class DirectoryRecordingUploader:
    """Saves the transcript and audio side by side in a local directory."""

    def __init__(self, output_dir: str | Path) -> None:
        self._output_dir = Path(output_dir).expanduser()

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    async def upload(self, transcript: str, artifact: RecordingArtifact | None) -> None:
        stem = datetime.now().strftime("recording_%Y%m%d_%H%M%S_%f")
        try:
            paths = await asyncio.to_thread(self._write, stem, transcript, artifact)
        except OSError as exc:
            raise UploadError(f"Could not save recording to {self._output_dir}: {exc}") from exc
        logger.info("Saved %s", ", ".join(str(p) for p in paths))

    def _write(
        self,
        stem: str,
        transcript: str,
        artifact: RecordingArtifact | None,
    ) -> list[Path]:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        text_path = self._output_dir / f"{stem}.txt"
        text_path.write_text(transcript + "\n", encoding="utf-8")
        paths = [text_path]
        if artifact is not None and artifact.data:
            audio_path = self._output_dir / f"{stem}{artifact.extension}"
            audio_path.write_bytes(artifact.data)
            paths.append(audio_path)
        return paths


class HttpRecordingUploader:
    """Posts the transcript and audio as multipart form data to the notes API."""

    def __init__(
        self,
        api_base_url: str,
        token: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_base_url = api_base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport

    async def upload(self, transcript: str, artifact: RecordingArtifact | None) -> None:
        headers = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        files = None
        if artifact is not None and artifact.data:
            files = {
                "audio": (f"recording{artifact.extension}", artifact.data, artifact.mime_type),
            }

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            ) as client:
                response = await client.post(
                    f"{self._api_base_url}/recordings",
                    data={"transcript": transcript},
                    files=files,
                    headers=headers,
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise UploadError(f"Upload rejected (HTTP {exc.response.status_code})") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise UploadError(f"Upload failed: {exc}") from exc
        logger.info("Uploaded recording to %s", self._api_base_url)
