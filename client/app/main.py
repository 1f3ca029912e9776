"""
voice-client command line entry point.

Subcommands:
- run:     connect to the backend, play incoming audio, optionally stream
           the microphone while the session is registered
- devices: list audio input/output devices
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import replace
from typing import Any, Sequence

from app.voice_client import VoiceClient
from audio.devices import DeviceId, DeviceInfo
from audio.errors import AudioError
from config import AppConfig
from observability.logger import log_event, set_enabled
from session.channel import Channel


def _device_arg(value: str) -> DeviceId:
    """sounddevice accepts either an index or a name substring."""
    return int(value) if value.isdigit() else value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voice-client",
        description="Realtime voice session client",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="connect and play backend audio")
    run.add_argument("--url", help="backend WebSocket URL (overrides VOICE_SERVER_URL)")
    run.add_argument("--client-id", help="registration id (overrides VOICE_CLIENT_ID)")
    run.add_argument("--capture", action="store_true", help="stream the microphone while registered")
    run.add_argument("--input-device", type=_device_arg, default=None)
    run.add_argument("--output-device", type=_device_arg, default=None)
    run.add_argument("--duration", type=float, default=None, help="seconds to run (default: until interrupted)")

    sub.add_parser("devices", help="list audio devices")
    return parser


async def _next_value(channel: Channel[Any]) -> Any:
    fut: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

    def _listener(value: Any) -> None:
        if not fut.done():
            fut.set_result(value)

    sub = channel.subscribe(_listener)
    try:
        return await fut
    finally:
        sub.cancel()


async def _capture_loop(client: VoiceClient, device_id: DeviceId) -> None:
    """Keep the microphone running whenever the session is ready."""
    while True:
        await client.session.wait_for(lambda status: status.ready)
        await client.start_capture(device_id)
        reason = await _next_value(client.capture.auto_stop_channel)
        log_event({
            "event_type": "CLI_CAPTURE_PAUSED",
            "reason": reason,
        })


def _log_text_frame(frame: str | bytes) -> None:
    if isinstance(frame, str):
        log_event({
            "event_type": "SERVER_TEXT",
            "text": frame,
        })


async def _run(config: AppConfig, args: argparse.Namespace) -> int:
    client = VoiceClient(config)
    if args.output_device is not None:
        client.set_output_device(args.output_device)
    client.on_message(_log_text_frame)
    client.connect()

    work: asyncio.Future[Any]
    if args.capture:
        work = asyncio.ensure_future(_capture_loop(client, args.input_device))
    else:
        work = asyncio.get_running_loop().create_future()

    try:
        await asyncio.wait_for(work, timeout=args.duration)
    except asyncio.TimeoutError:
        pass
    except AudioError as e:
        log_event({
            "event_type": "CLI_CAPTURE_FAILED",
            "error": str(e),
            "error_type": type(e).__name__,
        })
        return 1
    finally:
        work.cancel()
        await client.disconnect()
    return 0


def _print_devices(title: str, devices: list[DeviceInfo]) -> None:
    print(title)
    for dev in devices:
        marker = "*" if dev.is_default else " "
        print(f" {marker} [{dev.index}] {dev.name} ({dev.channels} ch, {dev.default_samplerate:.0f} Hz)")


def _list_devices(config: AppConfig) -> int:
    client = VoiceClient(config)
    try:
        inputs = client.list_input_devices()
        outputs = client.list_output_devices()
    except AudioError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    _print_devices("Input devices:", inputs)
    _print_devices("Output devices:", outputs)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    overrides: dict[str, Any] = {}
    if getattr(args, "url", None):
        overrides["server_url"] = args.url
    if getattr(args, "client_id", None):
        overrides["client_id"] = args.client_id

    try:
        config = AppConfig.load_from_env()
        if overrides:
            config = replace(config, **overrides)
    except ValueError as e:
        print(f"invalid configuration: {e}", file=sys.stderr)
        return 2

    set_enabled(config.enable_json_logs)

    if args.command == "devices":
        return _list_devices(config)

    try:
        return asyncio.run(_run(config, args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
