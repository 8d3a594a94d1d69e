"""
chatstream - Configuration

Runtime settings for stream sessions, read from the environment.
"""

import os
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _is_truthy(value: Optional[str], default: bool) -> bool:
    """Parse an environment flag."""
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class StreamSettings(BaseModel):
    """
    Settings shared by stream sessions.

    end_of_body_leniency: finalize a turn still open when the body ends
        as `complete` if it accumulated content (empty turns are dropped).
        Some providers omit the terminal marker; callers rely on still
        receiving the message.
    strict_protocol: raise ProtocolViolationError for a delta that arrives
        after its turn finished, instead of logging and dropping it.
    """

    model_config = ConfigDict(frozen=True)

    log_level: str = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")
    strict_protocol: bool = Field(default=False)
    end_of_body_leniency: bool = Field(default=True)
    metrics_enabled: bool = Field(default=True)
    tracing_enabled: bool = Field(default=True)

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = str(value).strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(
                "Invalid log level. Use one of: DEBUG, INFO, WARNING, ERROR, CRITICAL"
            )
        return level

    @field_validator("log_format", mode="before")
    @classmethod
    def normalize_log_format(cls, value: str) -> str:
        return str(value).strip().lower()

    @classmethod
    def from_env(cls) -> "StreamSettings":
        """
        Build settings from CHATSTREAM_* variables.

        LOG_LEVEL and LOG_FORMAT are honored as fallbacks for the logging
        fields.
        """
        return cls(
            log_level=os.getenv("CHATSTREAM_LOG_LEVEL") or os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("CHATSTREAM_LOG_FORMAT") or os.getenv("LOG_FORMAT", "json"),
            strict_protocol=_is_truthy(os.getenv("CHATSTREAM_STRICT_PROTOCOL"), False),
            end_of_body_leniency=_is_truthy(
                os.getenv("CHATSTREAM_END_OF_BODY_LENIENCY"), True
            ),
            metrics_enabled=_is_truthy(os.getenv("CHATSTREAM_METRICS_ENABLED"), True),
            tracing_enabled=_is_truthy(os.getenv("CHATSTREAM_TRACING_ENABLED"), True),
        )


_settings: Optional[StreamSettings] = None


def get_settings() -> StreamSettings:
    """Get the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = StreamSettings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings (for testing)."""
    global _settings
    _settings = None
