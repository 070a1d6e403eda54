#!/usr/bin/env python3
"""
RevoltBot CLI - Command Line Interface for RevoltBot
"""
import argparse
import importlib.util
import logging
import os
import sys
import threading
import time
from typing import List, Optional

import yaml

from . import config as CFG
from .error_handler import ConfigurationError
from .logging_utils import enable_structured_logging, log_error_with_context, set_log_level, setup_logger

logger = setup_logger("revoltbot.cli", "logs/revoltbot.log")

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_UNSUPPORTED = 2

CONSOLE_HELP = """Commands:
  m            start/stop listening
  r            replay the last answer
  s            stop speaking
  l <tag>      switch language (e.g. l hi-IN)
  langs        list supported languages
  q            quit"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="revoltbot",
        description="RevoltBot - voice assistant for Revolt Motors",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  revoltbot server                 # Start the relay server (needs GEMINI_API_KEY)
  revoltbot client                 # Talk to the assistant through the microphone
  revoltbot client --text          # Type questions instead of speaking them
  revoltbot client --language hi-IN
        """
    )

    parser.add_argument(
        'command',
        choices=['server', 'client'],
        help='Command to run'
    )

    parser.add_argument(
        '--config',
        default=None,
        help='Path to configuration file (default: config/config.yaml or $REVOLTBOT_CONFIG)'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    parser.add_argument(
        '--text',
        action='store_true',
        help='Client: read typed lines from stdin instead of the microphone'
    )

    parser.add_argument(
        '--language',
        default=None,
        help='Client: initial language tag (default: client.language)'
    )

    return parser


def _configure(args: argparse.Namespace) -> None:
    if args.config:
        if not os.path.exists(args.config):
            raise ConfigurationError(f"Config file not found: {args.config}",
                                     component="cli", operation="configure")
        try:
            CFG.use_config_file(args.config)
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(str(e), component="cli", operation="configure") from e

    ok, problems = CFG.validate_config_silent()
    if not ok:
        raise ConfigurationError("; ".join(problems), component="cli", operation="configure")

    if args.debug:
        os.environ['DEBUG'] = '1'
        set_log_level(logging.DEBUG)
    if CFG.structured_logging():
        enable_structured_logging()


def missing_capabilities(text_mode: bool = False) -> List[str]:
    """Python modules the client needs that are not installed"""
    required = ["pyttsx3", "soundfile", "sounddevice"]
    if not text_mode:
        required.append("speech_recognition")
    return [name for name in required if importlib.util.find_spec(name) is None]


def run_server() -> int:
    from .chat_session import GeminiProvider
    from .relay_server import RelayServer

    try:
        api_key = CFG.require_api_key()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    host, port = CFG.get_server_host_port()
    provider = GeminiProvider(
        api_key=api_key,
        model=CFG.get_provider_model(),
        max_output_tokens=CFG.get_provider_max_output_tokens(),
        timeout=CFG.get_provider_timeout(),
        base_url=CFG.get_provider_base_url(),
    )
    server = RelayServer(
        provider,
        CFG.get_system_instruction(),
        host=host,
        port=port,
        path=CFG.get_server_path(),
        allowed_origin=CFG.get_allowed_origin(),
    )
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        server.stop()
    return EXIT_OK


def _print_supported(controller) -> None:
    supported = controller.supported
    if not supported:
        print("No reference languages have an installed voice")
        return
    for lang in supported:
        marker = "*" if lang.code == controller.preference.code else " "
        print(f" {marker} {lang.code:6} {lang.name}")


def _console_loop(controller) -> None:
    print(CONSOLE_HELP)
    for line in sys.stdin:
        command = line.strip()
        if not command:
            continue
        if command == 'q':
            return
        if command == 'm':
            controller.toggle_capture()
        elif command == 'r':
            controller.replay_last_assistant_message()
        elif command == 's':
            controller.interrupt()
        elif command == 'langs':
            _print_supported(controller)
        elif command.startswith('l '):
            controller.select_language(command[2:].strip())
        else:
            print(CONSOLE_HELP)


def run_client(text_mode: bool = False, language: Optional[str] = None) -> int:
    missing = missing_capabilities(text_mode)
    if missing:
        print("This system does not support the speech features RevoltBot needs.", file=sys.stderr)
        print(f"Missing: {', '.join(missing)}. Install with: pip install 'revoltbot[voice]'", file=sys.stderr)
        return EXIT_UNSUPPORTED

    from .audio_interrupt import InterruptibleAudioPlayer
    from .conversation_manager import ConversationController
    from .language import LanguagePreference, VoiceCatalog
    from .relay_client import RelayClient
    from .speech_capture import ABORTED, CaptureSupervisor, SpeechRecognitionEngine, TypedInputEngine
    from .speech_output import Pyttsx3Synthesizer, SpeechOutput

    synthesizer = Pyttsx3Synthesizer(rate=CFG.get_speech_rate(), volume=CFG.get_speech_volume())
    catalog = VoiceCatalog(loader=synthesizer.load_voices)
    catalog.refresh()

    if text_mode:
        engine = TypedInputEngine()
    else:
        engine = SpeechRecognitionEngine(timeout=CFG.get_capture_timeout(),
                                         phrase_time_limit=CFG.get_capture_phrase_time_limit())
    capture = CaptureSupervisor(engine, restart_delay=CFG.get_capture_restart_delay())
    output = SpeechOutput(synthesizer, InterruptibleAudioPlayer())
    client = RelayClient(
        url=CFG.get_client_server_url(),
        origin=CFG.get_client_origin(),
        reconnect_delay=CFG.get_reconnect_delay(),
    )

    input_closed = threading.Event()

    def on_status(status: str) -> None:
        print(f"-- {status}")
        if status == f"Error: {ABORTED}":
            input_closed.set()

    def on_message(message) -> None:
        who = "You" if message.sender.value == "user" else "Assistant"
        print(f"{who}: {message.text}")

    controller = ConversationController(
        capture,
        output,
        client,
        catalog,
        preference=LanguagePreference(language or CFG.get_client_language()),
        baseline_language=CFG.get_baseline_language(),
        on_status=on_status,
        on_message=on_message,
    )
    controller.attach_channel(client)
    controller.start()
    client.start()

    try:
        if text_mode:
            controller.toggle_capture()
            while not input_closed.wait(0.5):
                pass
            # Let the last answer arrive and finish playing
            deadline = time.time() + CFG.get_provider_timeout() + 5.0
            while time.time() < deadline and (controller.pending_turns or output.is_speaking()):
                time.sleep(0.1)
        else:
            _console_loop(controller)
    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        capture.stop()
        output.shutdown()
        client.stop()
        controller.stop()
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        _configure(args)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    try:
        if args.command == 'server':
            return run_server()
        return run_client(text_mode=args.text, language=args.language)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except Exception as e:
        log_error_with_context(logger, e, component="cli", operation=args.command)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG


def server_main() -> int:
    return main(["server"] + sys.argv[1:])


def client_main() -> int:
    return main(["client"] + sys.argv[1:])


if __name__ == '__main__':
    sys.exit(main())
