from __future__ import annotations

import os

from pydantic import BaseModel

from castlink import __version__

__all__ = [
    "APP_ALIASES",
    "APP_BACKDROP",
    "APP_DEFAULT_MEDIA_RECEIVER",
    "APP_YOUTUBE",
    "BROADCAST_ID",
    "CAST_COMMAND_TIMEOUT",
    "CAST_CONNECT_TIMEOUT",
    "CAST_DEBUG",
    "CAST_EVENT_QUEUE_SIZE",
    "CAST_HEARTBEAT_INTERVAL",
    "CAST_HEARTBEAT_MISS_THRESHOLD",
    "CAST_LAUNCH_TIMEOUT",
    "CAST_LOG_FORMAT",
    "CAST_LOG_HUMAN_OUTPUT",
    "CAST_LOG_JSON_FILE",
    "CAST_MAX_FRAME_SIZE",
    "CAST_METRICS_PORT",
    "CAST_PORT",
    "CAST_SENDER_ID",
    "CAST_STATUS_TIMEOUT",
    "CAST_USER_AGENT",
    "CAST_VERSION",
    "PLATFORM_DESTINATION_ID",
    "YES_ANSWER",
    "CastEnv",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
CAST_VERSION: str = __version__

# Well-known transport ids
PLATFORM_DESTINATION_ID: str = "receiver-0"
BROADCAST_ID: str = "*"
CAST_USER_AGENT: str = f"castlink/{__version__}"

# Built-in receiver applications
APP_DEFAULT_MEDIA_RECEIVER: str = "CC1AD845"
APP_BACKDROP: str = "E8C28D3C"
APP_YOUTUBE: str = "233637DE"
APP_ALIASES: dict[str, str] = {
    "default": APP_DEFAULT_MEDIA_RECEIVER,
    "backdrop": APP_BACKDROP,
    "youtube": APP_YOUTUBE,
}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


class CastEnv(BaseModel):
    """Runtime settings read from ``CAST_*`` environment variables.

    Bad or non-positive numeric values fall back to the defaults.
    """

    debug: bool = False
    port: int = 8009
    sender_id: str = "sender-0"
    max_frame_size: int = 65536
    heartbeat_interval: float = 5.0
    heartbeat_miss_threshold: int = 3
    status_timeout: float = 5.0
    command_timeout: float = 10.0
    launch_timeout: float = 20.0
    connect_timeout: float = 5.0
    event_queue_size: int = 256
    metrics_port: int = 0
    log_format: str = "human"
    log_json_file: str | None = None
    log_human_output: str = "stderr"

    @classmethod
    def from_env(cls) -> CastEnv:
        log_format = os.environ.get("CAST_LOG_FORMAT", "human").casefold()
        return cls(
            debug=os.environ.get("CAST_DEBUG", "0").casefold() in YES_ANSWER,
            port=_env_int("CAST_PORT", 8009),
            sender_id=os.environ.get("CAST_SENDER_ID") or "sender-0",
            # Device-imposed ceiling on a single encoded message
            max_frame_size=_env_int("CAST_MAX_FRAME_SIZE", 65536),
            heartbeat_interval=_env_float("CAST_HEARTBEAT_INTERVAL", 5.0),
            heartbeat_miss_threshold=max(1, _env_int("CAST_HEARTBEAT_MISS_THRESHOLD", 3)),
            status_timeout=_env_float("CAST_STATUS_TIMEOUT", 5.0),
            command_timeout=_env_float("CAST_COMMAND_TIMEOUT", 10.0),
            launch_timeout=_env_float("CAST_LAUNCH_TIMEOUT", 20.0),
            connect_timeout=_env_float("CAST_CONNECT_TIMEOUT", 5.0),
            event_queue_size=max(1, _env_int("CAST_EVENT_QUEUE_SIZE", 256)),
            metrics_port=max(0, _env_int("CAST_METRICS_PORT", 0)),
            log_format=log_format if log_format in ("human", "json", "both") else "human",
            log_json_file=os.environ.get("CAST_LOG_JSON_FILE") or None,
            log_human_output=os.environ.get("CAST_LOG_HUMAN_OUTPUT") or "stderr",
        )


_env = CastEnv.from_env()

CAST_DEBUG: bool = _env.debug
CAST_PORT: int = _env.port
CAST_SENDER_ID: str = _env.sender_id
CAST_MAX_FRAME_SIZE: int = _env.max_frame_size
CAST_HEARTBEAT_INTERVAL: float = _env.heartbeat_interval
CAST_HEARTBEAT_MISS_THRESHOLD: int = _env.heartbeat_miss_threshold
CAST_STATUS_TIMEOUT: float = _env.status_timeout
CAST_COMMAND_TIMEOUT: float = _env.command_timeout
CAST_LAUNCH_TIMEOUT: float = _env.launch_timeout
CAST_CONNECT_TIMEOUT: float = _env.connect_timeout
CAST_EVENT_QUEUE_SIZE: int = _env.event_queue_size
CAST_METRICS_PORT: int = _env.metrics_port
CAST_LOG_FORMAT: str = _env.log_format
CAST_LOG_JSON_FILE: str | None = _env.log_json_file
CAST_LOG_HUMAN_OUTPUT: str = _env.log_human_output
