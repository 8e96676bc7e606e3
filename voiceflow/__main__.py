"""Entry point for running voiceflow as a module: python -m voiceflow"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from voiceflow.config import Config, Theme, TranscriptionMode
from voiceflow.errors import InjectionError, RegistrationError
from voiceflow.hotkey import parse_binding
from voiceflow.models import TriggerMode
from voiceflow.store import HistoryStore, SettingsStore

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity setting."""
    # Only show warnings and above unless explicitly verbose
    level = logging.DEBUG if verbose else logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    # Reduce noise from all third-party libraries
    for name in ("urllib3", "httpx", "httpcore", "websockets", "sounddevice"):
        logging.getLogger(name).setLevel(logging.ERROR)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voiceflow",
        description="Hold a global hotkey, speak, and have the text typed where your cursor is.",
    )
    parser.add_argument("--list-devices", action="store_true", help="list audio input devices and exit")
    parser.add_argument("--set-key", metavar="KEY", help="store the Deepgram API key")
    parser.add_argument("--set-hotkey", metavar="COMBO", help='store the global hotkey, e.g. "Ctrl+Shift+F9"')
    parser.add_argument("--theme", choices=[t.value for t in Theme], help="store the preferred theme")
    parser.add_argument("--history", action="store_true", help="print the transcript history and exit")
    parser.add_argument("--clear-history", action="store_true", help="delete the transcript history and exit")
    parser.add_argument("--retype", metavar="N", type=int, help="type history item N (0 is newest) and exit")
    parser.add_argument("--mode", choices=[m.value for m in TriggerMode], help="hotkey trigger mode")
    parser.add_argument(
        "--transcription",
        choices=[m.value for m in TranscriptionMode],
        help="send audio once on release (batch) or live while speaking (stream)",
    )
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    return parser


def _print_history(history: HistoryStore) -> None:
    items = history.items()
    if not items:
        print("Your transcripts will appear here.")
        return
    for index, item in enumerate(items):
        print(f"[{index}] {item.text}")


def _store_settings(args: argparse.Namespace, settings: SettingsStore) -> bool:
    """Persist any settings given on the command line. Returns True if any were."""
    changed = False
    if args.set_key is not None:
        settings.set_credential(args.set_key.strip())
        print("✅ API key saved.")
        changed = True
    if args.set_hotkey is not None:
        parse_binding(args.set_hotkey)
        settings.set_hotkey(args.set_hotkey)
        print(f"✅ Hotkey saved: {args.set_hotkey}")
        changed = True
    if args.theme is not None:
        settings.set_theme(args.theme)
        print(f"✅ Theme saved: {args.theme}")
        changed = True
    return changed


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    # Load .env file if it exists (before reading configuration)
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    args = build_parser().parse_args(argv)

    settings = SettingsStore()
    try:
        if _store_settings(args, settings):
            return EXIT_OK
    except RegistrationError as e:
        print(f"❌ {e}")
        return EXIT_CONFIG

    config = Config.from_env(settings.load())
    if args.mode:
        config.hotkey.mode = TriggerMode(args.mode)
    if args.transcription:
        config.transcription = TranscriptionMode(args.transcription)
    if args.verbose:
        config.verbose = True

    setup_logging(config.verbose)

    history = HistoryStore(max_size=config.history_max)

    if args.list_devices:
        from voiceflow.audio import list_input_devices

        print("\n🎤 Available audio input devices:")
        print("-" * 50)
        for device in list_input_devices():
            print(f"  {device}")
        print("-" * 50)
        return EXIT_OK

    if args.history:
        _print_history(history)
        return EXIT_OK

    if args.clear_history:
        history.clear()
        print("🗑️ History cleared.")
        return EXIT_OK

    # Imported late: pulls in the keyboard and audio backends
    from voiceflow.app import VoiceFlowApp

    app = VoiceFlowApp(config, settings_store=settings, history_store=history)

    if args.retype is not None:
        try:
            app.retype(args.retype).result()
            return EXIT_OK
        except IndexError as e:
            print(f"❌ {e}")
            return EXIT_CONFIG
        except InjectionError as e:
            print(f"❌ {e}")
            return EXIT_FATAL
        finally:
            app.shutdown()

    try:
        app.run()
        return EXIT_OK
    except KeyboardInterrupt:
        print("\n👋 Interrupted")
        return EXIT_INTERRUPTED
    except Exception as e:
        logging.exception("Fatal error: %s", e)
        return EXIT_FATAL
    finally:
        app.shutdown()


if __name__ == "__main__":
    sys.exit(main())
