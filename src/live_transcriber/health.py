import logging
from dataclasses import dataclass
from pathlib import Path

import sounddevice as sd
import soundfile as sf

from live_transcriber.config import TranscriberConfig

logger = logging.getLogger(__name__)

CRITICAL_CHECKS = {"audio_device", "input_settings", "api_key", "recording_format"}


@dataclass
class HealthCheckResult:
    name: str
    passed: bool
    detail: str


def run_startup_checks(config: TranscriberConfig) -> list[HealthCheckResult]:
    results = [
        _check_audio_device(config),
        _check_input_settings(config),
        _check_api_key(config),
        _check_recording_format(config),
        _check_upload_target(config),
    ]

    passed = sum(1 for r in results if r.passed)

    logger.info("Health check: %d/%d passed", passed, len(results))
    for result in results:
        level = logging.INFO if result.passed else logging.WARNING
        symbol = "OK" if result.passed else "FAIL"
        logger.log(level, "  [%s] %s: %s", symbol, result.name, result.detail)

    return results


def has_critical_failures(results: list[HealthCheckResult]) -> bool:
    return any(not r.passed and r.name in CRITICAL_CHECKS for r in results)


def _find_input_device(name: str) -> tuple[int, str] | None:
    try:
        return int(name), ""
    except ValueError:
        pass
    for i, dev in enumerate(sd.query_devices()):
        if name.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
            return i, dev["name"]
    return None


def _check_audio_device(config: TranscriberConfig) -> HealthCheckResult:
    name = "audio_device"
    try:
        if config.capture_device:
            match = _find_input_device(config.capture_device)
            if match is None:
                return HealthCheckResult(
                    name=name,
                    passed=False,
                    detail=f"No input device matching '{config.capture_device}'",
                )
            info = sd.query_devices(match[0], kind="input")
        else:
            info = sd.query_devices(kind="input")
        return HealthCheckResult(name=name, passed=True, detail=f"Input device: {info['name']}")
    except (ValueError, sd.PortAudioError) as exc:
        return HealthCheckResult(name=name, passed=False, detail=f"No input devices available: {exc}")


def _check_input_settings(config: TranscriberConfig) -> HealthCheckResult:
    name = "input_settings"
    device = None
    try:
        if config.capture_device:
            match = _find_input_device(config.capture_device)
            device = match[0] if match else None
        sd.check_input_settings(
            device=device,
            channels=1,
            dtype="float32",
            samplerate=config.sample_rate,
        )
    except (ValueError, sd.PortAudioError) as exc:
        return HealthCheckResult(
            name=name,
            passed=False,
            detail=f"{config.sample_rate} Hz mono not supported: {exc}",
        )
    return HealthCheckResult(name=name, passed=True, detail=f"{config.sample_rate} Hz mono")


def _check_api_key(config: TranscriberConfig) -> HealthCheckResult:
    name = "api_key"
    if not config.read_secret(config.api_key_file):
        return HealthCheckResult(
            name=name,
            passed=False,
            detail=f"Missing recognition API key ({config.api_key_file or 'not configured'})",
        )
    return HealthCheckResult(name=name, passed=True, detail="Recognition API key loaded")


def _check_recording_format(config: TranscriberConfig) -> HealthCheckResult:
    name = "recording_format"
    fmt = config.recording_format.upper()
    subtype = config.recording_subtype.upper()
    if not sf.check_format(fmt, subtype):
        return HealthCheckResult(
            name=name,
            passed=False,
            detail=f"libsndfile cannot write {fmt}/{subtype}",
        )
    return HealthCheckResult(name=name, passed=True, detail=f"{fmt}/{subtype}")


def _check_upload_target(config: TranscriberConfig) -> HealthCheckResult:
    name = "upload_target"
    if config.upload_target == "http":
        if not config.api_base_url.startswith(("http://", "https://")):
            return HealthCheckResult(
                name=name,
                passed=False,
                detail=f"Invalid API base URL: {config.api_base_url!r}",
            )
        token = config.read_secret(config.api_token_file)
        auth = "with token" if token else "without token"
        return HealthCheckResult(name=name, passed=True, detail=f"HTTP {config.api_base_url} ({auth})")

    output_dir = Path(config.output_dir).expanduser()
    parent = output_dir
    while not parent.exists() and parent != parent.parent:
        parent = parent.parent
    if not parent.is_dir():
        return HealthCheckResult(name=name, passed=False, detail=f"{parent} is not a directory")
    return HealthCheckResult(name=name, passed=True, detail=f"Directory {output_dir}")
