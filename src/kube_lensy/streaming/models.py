"""Log-line and stream event models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LogLevel(str, Enum):
    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    DEBUG = "debug"


class LogLine(BaseModel):
    """One container log line; the level is derived once, at ingestion."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    raw_message: str
    derived_level: LogLevel = LogLevel.INFO
    container: str | None = None
    namespace: str
    pod: str
    cluster: str = "local"

    @property
    def dedup_key(self) -> tuple[str, datetime, str]:
        return (self.pod, self.timestamp, self.raw_message)


class LogBatch(BaseModel):
    """Lines flushed to a subscriber together."""

    model_config = ConfigDict(frozen=True)

    lines: list[LogLine] = Field(default_factory=list)


class StreamEnd(BaseModel):
    """Terminal event of a subscription; ``graceful=False`` signals an error."""

    model_config = ConfigDict(frozen=True)

    graceful: bool
    reason: str | None = None


class StreamState(str, Enum):
    STARTING = "starting"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"
