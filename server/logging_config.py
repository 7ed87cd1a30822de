"""
Structured logging configuration for the Dutch game server.

Provides:
- JSONFormatter for production (machine-readable logs)
- Human-readable formatter for development
- Contextual logging (request_id, player_id, room_id)

Card values never go into INFO-level lines; the only card logged is the
acting player's own draw, at DEBUG.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator, Optional

# Context variables for request-scoped data
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
player_id_var: ContextVar[Optional[str]] = ContextVar("player_id", default=None)
room_id_var: ContextVar[Optional[str]] = ContextVar("room_id", default=None)

CONTEXT_VARS = {
    "request_id": request_id_var,
    "player_id": player_id_var,
    "room_id": room_id_var,
}


def _context_value(name: str, record: logging.LogRecord) -> Optional[str]:
    """Context variable first, then an `extra=` field on the record."""
    return CONTEXT_VARS[name].get() or getattr(record, name, None)


class JSONFormatter(logging.Formatter):
    """
    Format logs as JSON for production log aggregation.

    Output format is compatible with common log aggregation systems
    (ELK, CloudWatch, Datadog, etc.).
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in CONTEXT_VARS:
            value = _context_value(name, record)
            if value:
                log_data[name] = value

        # Add source location for errors
        if record.levelno >= logging.ERROR:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        # Add exception info
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """
    Human-readable formatter for development.

    Includes colors and context for easy debugging.
    """

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        reset = self.RESET if color else ""

        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

        context_parts = []
        request_id = _context_value("request_id", record)
        if request_id:
            context_parts.append(f"req={request_id[:8]}")

        player_id = _context_value("player_id", record)
        if player_id:
            context_parts.append(f"player={player_id[:8]}")

        room_id = _context_value("room_id", record)
        if room_id:
            context_parts.append(f"room={room_id[:8]}")

        context = f" [{', '.join(context_parts)}]" if context_parts else ""

        output = f"{timestamp} {color}{record.levelname:8}{reset} {record.name}{context} - {record.getMessage()}"

        if record.exc_info:
            output += "\n" + self.formatException(record.exc_info)

        return output


def setup_logging(
    level: str = "INFO",
    environment: str = "development",
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        environment: Environment name (production uses JSON, else human-readable).
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)

    if environment == "production":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(DevelopmentFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured: level={level}, environment={environment}")


@contextmanager
def log_context(
    player_id: Optional[str] = None,
    room_id: Optional[str] = None,
) -> Iterator[None]:
    """
    Bind player/room context for every log line inside the block.

    Usage:
        with log_context(player_id=pid, room_id=room.id):
            logger.info("Player drew a card")
    """
    tokens = []
    if player_id is not None:
        tokens.append((player_id_var, player_id_var.set(player_id)))
    if room_id is not None:
        tokens.append((room_id_var, room_id_var.set(room_id)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
