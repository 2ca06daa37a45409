"""
Settings — environment configuration and logging setup.

Values come from the process environment, with a ``.env`` file loaded
first if present. Nothing here raises: a bad number is logged and the
default is used instead.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from models.session import MAX_PLAYERS

logger = logging.getLogger("Settings")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

DEFAULT_JOIN_TIMEOUT = 20.0
DEFAULT_MAX_STATE_BYTES = 4_000_000
DEFAULT_SESSIONS_FILE = "~/.novel_forge/sessions.json"
DEFAULT_MODEL_ID = "gemini-2.5-flash"


class Settings(BaseModel):
    database_url: Optional[str] = None
    auth_token: Optional[str] = None
    max_players: int = MAX_PLAYERS
    join_timeout: float = DEFAULT_JOIN_TIMEOUT
    max_state_bytes: int = DEFAULT_MAX_STATE_BYTES
    sessions_file: str = DEFAULT_SESSIONS_FILE
    gemini_api_key: Optional[str] = None
    model_id: str = DEFAULT_MODEL_ID
    log_level: str = "INFO"
    log_file: Optional[str] = None


def _env_number(name: str, default, cast=int, minimum=1):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not a number, using {default}")
        return default
    if value < minimum:
        logger.warning(f"{name}={raw!r} is below {minimum}, using {default}")
        return default
    return value


def load_settings(dotenv_path: Optional[str] = None) -> Settings:
    """Build ``Settings`` from the environment (and ``.env``)."""
    load_dotenv(dotenv_path)

    log_level = (os.getenv("FORGE_LOG_LEVEL") or "INFO").upper()
    if not isinstance(logging.getLevelName(log_level), int):
        logger.warning(f"Unknown FORGE_LOG_LEVEL {log_level!r}, using INFO")
        log_level = "INFO"

    return Settings(
        database_url=os.getenv("FORGE_DATABASE_URL") or None,
        auth_token=os.getenv("FORGE_AUTH_TOKEN") or None,
        max_players=_env_number("FORGE_MAX_PLAYERS", MAX_PLAYERS),
        join_timeout=_env_number("FORGE_JOIN_TIMEOUT", DEFAULT_JOIN_TIMEOUT, cast=float, minimum=0.1),
        max_state_bytes=_env_number("FORGE_MAX_STATE_BYTES", DEFAULT_MAX_STATE_BYTES),
        sessions_file=os.getenv("FORGE_SESSIONS_FILE") or DEFAULT_SESSIONS_FILE,
        gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
        model_id=os.getenv("FORGE_MODEL_ID") or DEFAULT_MODEL_ID,
        log_level=log_level,
        log_file=os.getenv("FORGE_LOG_FILE") or None,
    )


def configure_logging(settings: Settings) -> None:
    """Install the root handlers: console always, a UTF-8 file if configured."""
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        log_dir = os.path.dirname(os.path.abspath(settings.log_file))
        if not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.append(logging.FileHandler(settings.log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
