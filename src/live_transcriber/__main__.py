import argparse
import asyncio
import logging
import signal
import sys

from live_transcriber.config import TranscriberConfig
from live_transcriber.domain.controller import SessionController
from live_transcriber.domain.events import (
    FinalSegmentAdded,
    PartialTranscriptUpdated,
    SessionErrorRaised,
    SessionEvent,
)
from live_transcriber.domain.state import SessionState
from live_transcriber.log_format import configure_logging

logger = logging.getLogger("live_transcriber")


def main() -> None:
    parser = argparse.ArgumentParser(description="Real-time microphone transcription")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.add_argument("--language", help="Recognition language (e.g. en, de)")
    parser.add_argument("--device", help="Input device index or name substring")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("record", help="Record and transcribe (default)")
    subparsers.add_parser("check", help="Run startup health checks")
    subparsers.add_parser("devices", help="List audio input devices")

    args = parser.parse_args()

    config = TranscriberConfig()
    if args.language:
        config.language = args.language
    if args.device:
        config.capture_device = args.device

    configure_logging(verbose=args.verbose, log_file=config.log_file)

    if args.command == "check":
        sys.exit(_run_checks(config))
    if args.command == "devices":
        _list_devices()
        return
    asyncio.run(_run_recorder(config))


def _run_checks(config: TranscriberConfig) -> int:
    from live_transcriber.health import has_critical_failures, run_startup_checks

    results = run_startup_checks(config)
    for result in results:
        symbol = "OK" if result.passed else "FAIL"
        print(f"[{symbol:>4}] {result.name}: {result.detail}")
    return 1 if has_critical_failures(results) else 0


def _list_devices() -> None:
    import sounddevice as sd

    default_input = sd.default.device[0]
    for i, dev in enumerate(sd.query_devices()):
        if dev["max_input_channels"] < 1:
            continue
        marker = "*" if i == default_input else " "
        print(f"{marker} {i:>3}  {dev['name']} ({int(dev['default_samplerate'])} Hz)")


async def _read_line(prompt: str = "") -> str:
    if prompt:
        print(prompt, end="", flush=True)
    line = await asyncio.to_thread(sys.stdin.readline)
    return line.strip().lower()


async def _print_events(controller: SessionController) -> None:
    async for event in controller.events():
        _render_event(event)


def _render_event(event: SessionEvent) -> None:
    if isinstance(event, PartialTranscriptUpdated):
        print(f"\r\033[K{event.display_text}", end="", flush=True)
    elif isinstance(event, FinalSegmentAdded):
        print(f"\r\033[K{event.confirmed}", end="", flush=True)
    elif isinstance(event, SessionErrorRaised):
        print(f"\n! {event.message}", file=sys.stderr)


async def _review(controller: SessionController, pending: asyncio.Task | None = None) -> None:
    print(f"\n\nTranscript:\n  {controller.finalized_text or '(empty)'}\n")
    while controller.state == SessionState.REVIEWING:
        if pending is not None:
            print("[s]ave, [d]iscard or [p]lay path? ", end="", flush=True)
            answer = await pending
            pending = None
        else:
            answer = await _read_line("[s]ave, [d]iscard or [p]lay path? ")
        if answer.startswith("s"):
            if await controller.save():
                print("Saved.")
            else:
                print("Save failed, try again or discard.")
        elif answer.startswith("d"):
            await controller.discard()
            print("Discarded.")
        elif answer.startswith("p"):
            print(controller.playback_path() or "(no recording)")


async def _run_recorder(config: TranscriberConfig) -> None:
    from live_transcriber.factory import create_session_controller
    from live_transcriber.health import has_critical_failures, run_startup_checks

    results = run_startup_checks(config)
    if has_critical_failures(results):
        logger.error("Critical health check failures, aborting startup")
        sys.exit(1)

    controller = create_session_controller(config)
    shutdown_event = asyncio.Event()
    shutdown_triggered = False

    def handle_signal() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            logger.warning("Forced exit")
            sys.exit(1)
        shutdown_triggered = True
        logger.info("Shutting down...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    printer_task = asyncio.create_task(_print_events(controller))

    async def session_flow() -> None:
        await controller.start()
        state = await controller.wait_for_state(SessionState.RECORDING, SessionState.ERROR)
        if state == SessionState.ERROR:
            return
        print("Recording. Press Enter to stop.")
        stop_requested = asyncio.create_task(_read_line())
        ended = asyncio.create_task(controller.wait_for_state(SessionState.STOPPING, SessionState.ERROR))
        await asyncio.wait({stop_requested, ended}, return_when=asyncio.FIRST_COMPLETED)
        ended.cancel()
        await controller.stop()
        pending = None if stop_requested.done() else stop_requested
        if controller.state == SessionState.REVIEWING:
            await _review(controller, pending)
        elif pending is not None:
            print("\nSession ended. Press Enter to exit.")
            await pending

    flow_task = asyncio.create_task(session_flow())
    shutdown_task = asyncio.create_task(shutdown_event.wait())
    try:
        await asyncio.wait({flow_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (flow_task, shutdown_task):
            task.cancel()
        try:
            await asyncio.wait_for(flow_task, timeout=3.0)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            pass
        await controller.shutdown()
        printer_task.cancel()
        try:
            await printer_task
        except asyncio.CancelledError:
            pass
        if controller.error is not None:
            print(f"Session ended with error: {controller.error.detail}", file=sys.stderr)


if __name__ == "__main__":
    main()
