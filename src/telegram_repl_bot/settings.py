"""Bot configuration.

Values come from (highest precedence first) command line flags, a JSON config
file, environment variables with the ``REPL_BOT_`` prefix and a ``.env`` file.

Environment variables:
    REPL_BOT_API_TOKEN - Telegram bot token
    REPL_BOT_PROTOCOL - REPL wire protocol, "prepl" or "nrepl" (default: prepl)
    REPL_BOT_REPL_EXEC_PATH - Executable that launches the REPL (default: clojure / lein)
    REPL_BOT_REPL_HOST, REPL_BOT_REPL_PORT - REPL address (default: localhost:5555)
    REPL_BOT_ALLOWED_IDS - JSON list of Telegram usernames allowed to use the bot
    REPL_BOT_MONITOR_INTERVAL - Seconds between update polls (default: 3)
    REPL_BOT_IS_VERBOSE - Log requests and responses (default: false)
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Any, List, Literal

import orjson
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"

DEFAULT_MONITOR_INTERVAL = 3

DEFAULT_EXECUTABLES = {
    "prepl": "clojure",
    "nrepl": "lein",
}

# Keys used by older config files
_LEGACY_KEYS = {
    "lein_exec_path": "repl_exec_path",
    "clojure_bin_path": "repl_exec_path",
}


class BotSettings(BaseSettings):
    """Immutable configuration, built once at startup."""

    api_token: str = ""

    protocol: Literal["prepl", "nrepl"] = "prepl"
    repl_exec_path: str = ""
    repl_host: str = "localhost"
    repl_port: int = 5555

    allowed_ids: List[str] = []
    monitor_interval: int = DEFAULT_MONITOR_INTERVAL
    is_verbose: bool = False

    # Supervisor windows, in seconds (one dial per second)
    connect_timeout: int = 10
    bootup_timeout: int = 60

    # Reply reading
    read_timeout: float = 1.0
    read_retries: int = 10
    read_chunk_size: int = 10 * 1024

    temp_dir: Path = Path(tempfile.gettempdir())

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="REPL_BOT_",
        extra="ignore",
        frozen=True,
    )

    @field_validator("monitor_interval", mode="before")
    @classmethod
    def _parse_monitor_interval(cls, v: int | str) -> int:
        if isinstance(v, str) and v.strip() == "":
            return DEFAULT_MONITOR_INTERVAL
        v = int(v)
        return v if v > 0 else DEFAULT_MONITOR_INTERVAL

    @field_validator("read_retries", "read_chunk_size")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @property
    def executable(self) -> str:
        """Executable used to launch the REPL."""
        return self.repl_exec_path or DEFAULT_EXECUTABLES[self.protocol]

    @property
    def repl_address(self) -> str:
        return f"{self.repl_host}:{self.repl_port}"


def read_config_file(path: Path) -> dict[str, Any]:
    """Read a JSON config file, mapping legacy keys to current names."""
    data = orjson.loads(path.read_bytes())
    if not isinstance(data, dict):
        raise ValueError(f"{path}: config must be a JSON object")
    for old, new in _LEGACY_KEYS.items():
        if old in data:
            data.setdefault(new, data.pop(old))
    return data


def load_settings(config_path: Path | None = None, **overrides: Any) -> BotSettings:
    """Build settings from an optional config file plus explicit overrides."""
    data: dict[str, Any] = {}
    if config_path is not None:
        data.update(read_config_file(config_path))
        logger.debug("Read config from %s", config_path)
    data.update({k: v for k, v in overrides.items() if v is not None})
    return BotSettings(**data)
