import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from pydantic import ValidationError

from telegram_repl_bot.bot import run
from telegram_repl_bot.settings import CONFIG_FILENAME, BotSettings, load_settings

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Configure root logging from REPL_BOT_LOG_LEVEL ("NONE" silences)."""
    level = os.environ.get("REPL_BOT_LOG_LEVEL", "DEBUG" if verbose else "INFO").upper()
    logging.basicConfig(
        level="CRITICAL" if level == "NONE" else level,
        format=_LOG_FORMAT,
        stream=sys.stderr,
    )


def _default_config_path() -> Path | None:
    path = Path.cwd() / CONFIG_FILENAME
    return path if path.is_file() else None


def build_settings(argv: list[str] | None = None) -> BotSettings:
    parser = argparse.ArgumentParser(description="Telegram bot for a Clojure REPL")
    parser.add_argument(
        "--config",
        type=Path,
        help=f"JSON config file (default: ./{CONFIG_FILENAME} if present)",
    )
    parser.add_argument(
        "--protocol",
        type=str,
        choices=["prepl", "nrepl"],
        help="REPL wire protocol. Default is 'prepl'.",
    )
    parser.add_argument(
        "--host",
        type=str,
        help="REPL host address",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="REPL port",
    )
    parser.add_argument(
        "--exec-path",
        type=str,
        help="Executable that launches the REPL when none is running "
        "(default: clojure for prepl, lein for nrepl)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=None,
        help="Log REPL requests and responses",
    )
    args = parser.parse_args(argv)

    return load_settings(
        args.config or _default_config_path(),
        protocol=args.protocol,
        repl_host=args.host,
        repl_port=args.port,
        repl_exec_path=args.exec_path,
        is_verbose=args.verbose,
    )


def main():
    try:
        settings = build_settings()
    except (OSError, ValueError, ValidationError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    configure_logging(settings.is_verbose)
    if not settings.api_token:
        logging.getLogger(__name__).critical("No Telegram API token configured")
        return 2

    try:
        return asyncio.run(run(settings))
    except KeyboardInterrupt:
        return 130
