"""
Client configuration.

Read from ``~/.chatsync/config.json``; ``CHATSYNC_*`` environment variables
win over the file.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from chatsync.transport.socketio import (
    DEFAULT_RECONNECTION_ATTEMPTS,
    DEFAULT_RECONNECTION_DELAY,
    DEFAULT_SERVER_URL,
)

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".chatsync"
CONFIG_FILE = CONFIG_DIR / "config.json"
ENV_PREFIX = "CHATSYNC_"


class ClientConfig(BaseModel):
    server_url: str = DEFAULT_SERVER_URL
    supabase_url: str = ""
    supabase_key: str = ""
    reconnection_attempts: int = DEFAULT_RECONNECTION_ATTEMPTS
    reconnection_delay: float = DEFAULT_RECONNECTION_DELAY
    transports: list[str] = ["websocket"]
    session_file: Path = CONFIG_DIR / "session.json"

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def _from_env(environ: Optional[dict[str, str]] = None) -> dict[str, Any]:
    environ = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    for name in ClientConfig.model_fields:
        raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is None:
            continue
        values[name] = raw.split(",") if name == "transports" else raw
    return values


def load_config(path: Path = CONFIG_FILE, environ: Optional[dict[str, str]] = None) -> ClientConfig:
    try:
        data = json.loads(path.read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        data = {}
    if not isinstance(data, dict):
        data = {}
    data.update(_from_env(environ))
    try:
        return ClientConfig.model_validate(data)
    except ValidationError as e:
        logger.warning("Ignoring invalid configuration in %s: %s", path, e)
        return ClientConfig.model_validate(_from_env(environ))


def save_config(config: ClientConfig, path: Path = CONFIG_FILE) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(config.model_dump_json(indent=2))
