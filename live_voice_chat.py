# live_voice_chat.py
"""
Hands-free voice chat with the relay server over /api/voice.

    microphone -> calibrated VAD -> one clip per utterance -> /api/voice
               -> transcript + reply + audio -> speakers (barge-in enabled)

No push-to-talk: after a short ambient calibration the client listens
continuously. Speaking while a reply plays stops the reply.

Quit: Ctrl+C.
"""

import argparse
import asyncio
from typing import Optional

from voicebot.audio.capture import (
    DEFAULT_CHANNELS,
    DEFAULT_SAMPLE_RATE,
    MicrophoneSource,
    list_input_devices,
)
from voicebot.audio.playback import AudioPlayer
from voicebot.client.dispatch import DEFAULT_GREETING, DispatchController, PipelineClient
from voicebot.client.session import VoiceSession
from voicebot.config.settings import load_client_settings
from voicebot.errors import CapabilityError
from voicebot.utils.logging import get_logger, set_debug
from voicebot.vad.state_machine import VadConfig

logger = get_logger("voicebot.live")


# =============================================================================
# Device helper
# =============================================================================

def list_devices_and_exit() -> int:
    print("=== Available audio devices ===")
    try:
        lines = list_input_devices()
    except Exception as e:
        print(f"[fatal] Could not query audio devices: {e}")
        return 1
    for line in lines:
        print(line)
    print("================================")
    return 0


def choose_prompt(client: PipelineClient, requested: Optional[str]) -> str:
    """Use the requested prompt if the server knows it, else 'default'."""
    try:
        prompts = client.list_prompts()
    except Exception as e:
        logger.warning("Error loading prompts: %s", e)
        return requested or "default"

    logger.info("Available prompts: %s", ", ".join(prompts) or "(none)")
    if requested and requested in prompts:
        return requested
    if requested:
        logger.warning("Unknown prompt %r; using 'default'.", requested)
    return "default"


def build_parser(defaults) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Live voice chat client (calibrated VAD, per-utterance recording, barge-in)."
    )
    parser.add_argument("--api-base", default=defaults.api_base,
                        help=f"Base URL for the relay server (default: {defaults.api_base})")
    parser.add_argument("--user-id", default="anonymous", help="User id for conversation history.")
    parser.add_argument("--prompt", default="default", help="System prompt name on the server.")
    parser.add_argument("--input-device-index", type=int, default=None,
                        help="Input device index for microphone. Use --list-devices to inspect.")
    parser.add_argument("--output-device-index", type=int, default=None, help="Output device index.")
    parser.add_argument("--list-devices", action="store_true", help="List available audio devices and exit.")
    parser.add_argument("--greeting", default=DEFAULT_GREETING, help="Text spoken when the session starts.")
    parser.add_argument("--no-greeting", action="store_true", help="Skip the spoken greeting.")
    parser.add_argument("--tick-ms", type=int, default=defaults.tick_ms, help="VAD sampling interval.")
    parser.add_argument("--min-speech-ms", type=int, default=defaults.min_speech_ms,
                        help="Sustained energy needed to start an utterance.")
    parser.add_argument("--end-silence-ms", type=int, default=defaults.end_silence_ms,
                        help="Sustained quiet needed to end an utterance.")
    parser.add_argument("--calibration-ms", type=int, default=defaults.calibration_ms,
                        help="Ambient calibration window.")
    parser.add_argument("--rms-floor", type=float, default=defaults.rms_floor,
                        help="Lowest allowed detection threshold.")
    parser.add_argument("--threshold-multiplier", type=float, default=defaults.threshold_multiplier,
                        help="Threshold = max(floor, ambient * multiplier).")
    parser.add_argument("--debug", action="store_true", help="Verbose diagnostics (per-event VAD logs).")
    return parser


async def run_session(session: VoiceSession) -> None:
    try:
        await session.run()
    finally:
        await session.stop()


def main(argv=None) -> int:
    defaults = load_client_settings()
    args = build_parser(defaults).parse_args(argv)

    if args.list_devices:
        return list_devices_and_exit()

    set_debug(args.debug)

    try:
        config = VadConfig(
            tick_ms=args.tick_ms,
            min_speech_ms=args.min_speech_ms,
            end_silence_ms=args.end_silence_ms,
            calibration_ms=args.calibration_ms,
            rms_floor=args.rms_floor,
            threshold_multiplier=args.threshold_multiplier,
        )
    except ValueError as e:
        print(f"[fatal] {e}")
        return 2

    client = PipelineClient(args.api_base)
    try:
        h = client.health()
        logger.info("[health] OK. Response: %s", h)
    except Exception as e:
        print(f"[fatal] Health check failed: {e}")
        return 1

    prompt_name = choose_prompt(client, args.prompt)
    player = AudioPlayer(device=args.output_device_index)
    dispatcher = DispatchController(client, player, user_id=args.user_id, prompt_name=prompt_name)
    source = MicrophoneSource(
        samplerate=DEFAULT_SAMPLE_RATE,
        channels=DEFAULT_CHANNELS,
        blocksize=max(1, int(DEFAULT_SAMPLE_RATE * config.tick_seconds)),
        device=args.input_device_index,
    )
    session = VoiceSession(
        source,
        dispatcher,
        config=config,
        greeting=None if args.no_greeting else args.greeting,
    )

    print("\n=== Live voice chat ===")
    print(f"API base:     {client.api_base}")
    print(f"User id:      {dispatcher.user_id}")
    print(f"Prompt:       {prompt_name}")
    print(
        f"VAD:          tick={config.tick_ms}ms start={config.min_speech_frames} frames "
        f"end={config.end_silence_frames} frames calibration={config.calibration_ms}ms"
    )
    print("Stay quiet for a moment while the microphone calibrates. Ctrl+C to quit.\n")

    try:
        asyncio.run(run_session(session))
    except CapabilityError as e:
        print(f"[fatal] {e}")
        return 1
    except KeyboardInterrupt:
        print("\n[info] KeyboardInterrupt received. Exiting…")
    finally:
        player.stop()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
