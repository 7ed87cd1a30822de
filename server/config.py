"""
Centralized configuration for the Dutch game server.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.PORT)
    print(config.TURN_TIMEOUT_SECONDS)
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from constants import TIE_BREAK_RULES, TIE_BREAK_SHARED

# Load .env file if it exists
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


@dataclass
class ServerConfig:
    """Server configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Storage / fan-out. Empty REDIS_URL keeps everything in process memory.
    REDIS_URL: str = ""
    SERVER_ID: str = "default"

    # Identity (signing key for bearer tokens)
    SECRET_KEY: str = ""

    # Room settings
    MAX_PLAYERS_PER_ROOM: int = 6
    DEFAULT_MAX_PLAYERS: int = 4
    ROOM_CODE_LENGTH: int = 6

    # Turn flow
    TURN_TIMEOUT_SECONDS: int = 30
    MEMORIZE_SECONDS: int = 10
    # Full rounds of timed-out turns before an idle game is abandoned (0 = never)
    IDLE_ROUNDS_LIMIT: int = 2

    # Action log
    ACTION_LOG_LIMIT: int = 50
    ACTION_LOG_RETENTION: int = 500

    # Seconds between sweeps for rooms idle longer than the room TTL
    ROOM_SWEEP_SECONDS: int = 300

    # Scoring: "shared" or "caller_loses_ties"
    TIE_BREAK: str = TIE_BREAK_SHARED

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Load configuration from environment variables.

        Raises:
            ValueError: TIE_BREAK names an unknown rule.
        """
        tie_break = get_env("TIE_BREAK") or TIE_BREAK_SHARED
        if tie_break not in TIE_BREAK_RULES:
            raise ValueError(
                f"TIE_BREAK must be one of {', '.join(TIE_BREAK_RULES)}, got {tie_break!r}"
            )

        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 8000),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            REDIS_URL=get_env("REDIS_URL", ""),
            SERVER_ID=get_env("SERVER_ID", "default"),
            SECRET_KEY=get_env("SECRET_KEY", ""),
            MAX_PLAYERS_PER_ROOM=get_env_int("MAX_PLAYERS_PER_ROOM", 6),
            DEFAULT_MAX_PLAYERS=get_env_int("DEFAULT_MAX_PLAYERS", 4),
            ROOM_CODE_LENGTH=get_env_int("ROOM_CODE_LENGTH", 6),
            TURN_TIMEOUT_SECONDS=get_env_int("TURN_TIMEOUT_SECONDS", 30),
            MEMORIZE_SECONDS=get_env_int("MEMORIZE_SECONDS", 10),
            IDLE_ROUNDS_LIMIT=get_env_int("IDLE_ROUNDS_LIMIT", 2),
            ACTION_LOG_LIMIT=get_env_int("ACTION_LOG_LIMIT", 50),
            ACTION_LOG_RETENTION=get_env_int("ACTION_LOG_RETENTION", 500),
            ROOM_SWEEP_SECONDS=get_env_int("ROOM_SWEEP_SECONDS", 300),
            TIE_BREAK=tie_break,
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()


def reload_config() -> ServerConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = ServerConfig.from_env()
    return config
