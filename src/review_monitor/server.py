"""FastMCP server entry point for the review monitor."""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastmcp import FastMCP

from review_monitor.config_schema import default_user_config_dir
from review_monitor.service import caller_tag, monitor_lifespan
from review_monitor.sync import sync_mode

LOG_DIR_ENV_VAR = "MONITOR_LOG_DIR"
LOG_MAX_BYTES_ENV_VAR = "MONITOR_LOG_MAX_BYTES"
LOG_BACKUPS_ENV_VAR = "MONITOR_LOG_BACKUPS"
DEFAULT_LOG_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_LOG_BACKUPS = 5
DEFAULT_PORT = 3000

mcp = FastMCP(
    "review-monitor",
    instructions=(
        "Review monitor for Gerrit. "
        "Reports which open changes are blocked, on whom, and for how long."
    ),
    lifespan=monitor_lifespan,
)

# Import tools to register them with @mcp.tool.
# This import MUST come AFTER mcp is created to avoid circular imports.
from review_monitor import tools  # noqa: F401, E402
from review_monitor.dashboard import register_dashboard_routes  # noqa: E402

register_dashboard_routes(mcp)


class _CallerFormatter(logging.Formatter):
    """Console formatter; tags lines with the caller and, inside a sync, the fetch mode."""

    def format(self, record: logging.LogRecord) -> str:
        tag = caller_tag.get("monitor")
        mode = sync_mode.get()
        record.caller_tag = f"{tag}:{mode}" if mode else tag  # type: ignore[attr-defined]
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """Structured JSON formatter for monitor logfile events.

    Lines written during a sync iteration carry a `sync_mode` field
    ("full" or "incremental").
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "ts": datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "caller_tag": caller_tag.get("monitor"),
            "message": record.getMessage(),
        }
        mode = sync_mode.get()
        if mode:
            payload["sync_mode"] = mode
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"))


def _resolve_log_dir() -> Path:
    override = os.environ.get(LOG_DIR_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return default_user_config_dir() / "logs"


def _read_positive_int_env(name: str, default: int, minimum: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value < minimum:
        return default
    return value


def _configure_logging(verbose: bool = False) -> None:
    """Configure concise console logs plus a structured rotating logfile."""
    logger = logging.getLogger("review_monitor")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    if not any(getattr(handler, "_monitor_stream_handler", False) for handler in logger.handlers):
        handler = logging.StreamHandler()
        handler._monitor_stream_handler = True  # type: ignore[attr-defined]
        handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        handler.setFormatter(
            _CallerFormatter(
                "%(asctime)s [%(caller_tag)s] %(message)s",
                "%H:%M:%S",
            )
        )
        logger.addHandler(handler)

    if not any(getattr(handler, "_monitor_file_handler", False) for handler in logger.handlers):
        log_dir = _resolve_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / "monitor.jsonl",
            maxBytes=_read_positive_int_env(LOG_MAX_BYTES_ENV_VAR, DEFAULT_LOG_MAX_BYTES, 1024),
            backupCount=_read_positive_int_env(LOG_BACKUPS_ENV_VAR, DEFAULT_LOG_BACKUPS, 1),
            encoding="utf-8",
        )
        file_handler._monitor_file_handler = True  # type: ignore[attr-defined]
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(_JsonFormatter())
        logger.addHandler(file_handler)


def main() -> None:
    """Run the monitor server.

    Set MONITOR_HOST / MONITOR_PORT to override the bind address
    (default 0.0.0.0:3000) and MONITOR_VERBOSE=1 for debug logging.

    Gerrit credentials are read from GERRIT_USERNAME and GERRIT_PASSWORD;
    without them the server starts with an empty store and no sync.
    """
    _configure_logging(verbose=os.environ.get("MONITOR_VERBOSE") == "1")
    host = os.environ.get("MONITOR_HOST", "0.0.0.0")
    port = _read_positive_int_env("MONITOR_PORT", DEFAULT_PORT, 1)
    uvicorn_log_level = os.environ.get("MONITOR_UVICORN_LOG_LEVEL", "warning")
    mcp.run(
        transport="streamable-http",
        host=host,
        port=port,
        log_level=uvicorn_log_level,
        stateless_http=True,
    )


if __name__ == "__main__":
    main()
