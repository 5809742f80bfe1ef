from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from keyring.errors import KeyringError

from bodhi_stream.app.file_runner import HeadlessFileRunner
from bodhi_stream.app.mic_runner import HeadlessMicRunner
from bodhi_stream.app.wiring import (
    create_secret_store,
    forget_credentials,
    load_credentials,
    save_credentials,
)
from bodhi_stream.config.paths import default_settings_path
from bodhi_stream.config.settings import AppSettings, SecretsBackend, load_settings, save_settings
from bodhi_stream.core.storage.secrets import KeyringSecretStore
from bodhi_stream.domain.models import Credentials
from bodhi_stream.errors import ConfigError

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(*, verbose: bool = False, log_file: Path | None = None) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)
    # websockets logs every frame at DEBUG
    logging.getLogger("websockets").setLevel(logging.INFO)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bodhi-stream",
        description="Stream audio to the Bodhi speech recognition API over WebSocket",
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument(
        "--config",
        type=Path,
        default=default_settings_path(),
        help="Path to settings JSON (default: user config dir)",
    )
    parser.add_argument("-u", "--uri", help="Override the service URI")
    parser.add_argument("--model", help="Override the recognition model")
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Disable TLS certificate verification (not recommended)",
    )
    parser.add_argument("--log-file", type=Path, help="Also write logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command")

    run_file = sub.add_parser("run-file", help="Stream a prerecorded WAV file")
    run_file.add_argument("file", type=Path, help="WAV file to stream")

    mic = sub.add_parser("run-mic", help="Stream live microphone audio until Ctrl+C")
    mic.add_argument("--sample-rate", type=int, help="Capture sample rate in Hz")
    mic.add_argument("--device", help="Input device index or name")

    login = sub.add_parser(
        "login", help="Store credentials in the OS keyring and switch settings to use it"
    )
    login.add_argument("--api-key", help="API key (prompted if omitted)")
    login.add_argument("--customer-id", help="Customer id (prompted if omitted)")

    sub.add_parser("logout", help="Remove stored credentials from the OS keyring")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from . import __version__

        print(__version__)
        return 0

    if args.command is None:
        parser.print_help()
        return 2

    configure_logging(verbose=args.verbose, log_file=args.log_file)

    try:
        settings = _load_settings_or_default(args.config)
        _apply_overrides(settings, args)
    except (ConfigError, ValueError) as exc:
        print(f"Error: {exc}", flush=True)
        return 2

    if args.command == "login":
        return _login(args, settings)
    if args.command == "logout":
        return _logout()

    try:
        credentials = load_credentials(create_secret_store(settings.secrets))
    except (ConfigError, KeyringError) as exc:
        print(f"Error: {exc}", flush=True)
        return 2

    if args.command == "run-file":
        if not args.file.exists():
            print(f"Error: file not found: {args.file}", flush=True)
            return 2
        runner = HeadlessFileRunner(settings=settings, credentials=credentials, path=args.file)
        try:
            return asyncio.run(runner.run())
        except ConfigError as exc:
            print(f"Error: {exc}", flush=True)
            return 2

    if args.command == "run-mic":
        device = _parse_device(args.device)
        mic_runner = HeadlessMicRunner(settings=settings, credentials=credentials, device=device)
        try:
            return asyncio.run(mic_runner.run())
        except KeyboardInterrupt:
            return 0
        except ConfigError as exc:
            print(f"Error: {exc}", flush=True)
            return 2

    parser.print_help()
    return 2


def _login(args: argparse.Namespace, settings: AppSettings) -> int:
    api_key = args.api_key or getpass.getpass("API key: ")
    customer_id = args.customer_id or input("Customer id: ")
    try:
        credentials = Credentials(api_key=api_key.strip(), customer_id=customer_id.strip())
    except ConfigError as exc:
        print(f"Error: {exc}", flush=True)
        return 2

    try:
        save_credentials(KeyringSecretStore(), credentials)
    except KeyringError as exc:
        print(f"Error: cannot write to the keyring: {exc}", flush=True)
        return 1

    settings.secrets.backend = SecretsBackend.KEYRING
    save_settings(args.config, settings)
    print(
        f"Saved credentials for customer {credentials.customer_id} to the keyring; "
        f"settings written to {args.config}",
        flush=True,
    )
    return 0


def _logout() -> int:
    try:
        forget_credentials(KeyringSecretStore())
    except KeyringError as exc:
        print(f"Error: cannot write to the keyring: {exc}", flush=True)
        return 1
    print("Removed stored credentials", flush=True)
    return 0


def _load_settings_or_default(path: Path) -> AppSettings:
    if path.exists():
        return load_settings(path)
    return AppSettings()


def _apply_overrides(settings: AppSettings, args: argparse.Namespace) -> None:
    if args.uri:
        settings.connection.uri = args.uri
    if args.model:
        settings.stream.model = args.model
    if args.insecure:
        settings.connection.verify_tls = False
    if getattr(args, "sample_rate", None):
        settings.stream.mic_sample_rate_hz = args.sample_rate
    settings.validate()


def _parse_device(value: str | None) -> int | str | None:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return value


if __name__ == "__main__":
    raise SystemExit(main())
