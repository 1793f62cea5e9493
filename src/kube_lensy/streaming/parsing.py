"""Turn ``kubectl logs --timestamps`` output into LogLine records."""

from __future__ import annotations

import re
from datetime import datetime, timezone

from kube_lensy.streaming.models import LogLevel, LogLine

_TIMESTAMPED = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})\s?(.*)$"
)

# Checked in order; first keyword group found wins.
_LEVEL_KEYWORDS: tuple[tuple[LogLevel, tuple[str, ...]], ...] = (
    (LogLevel.ERROR, ("error", "fatal", "panic", "exception")),
    (LogLevel.WARN, ("warn",)),
    (LogLevel.DEBUG, ("debug", "trace")),
)


def derive_level(message: str) -> LogLevel:
    lower = message.lower()
    for level, keywords in _LEVEL_KEYWORDS:
        if any(k in lower for k in keywords):
            return level
    return LogLevel.INFO


def split_timestamp(line: str) -> tuple[datetime | None, str]:
    """Split an RFC3339 prefix (nanosecond precision allowed) from the message."""
    match = _TIMESTAMPED.match(line)
    if not match:
        return None, line
    base, fraction, tz, message = match.groups()
    micros = (fraction or "").ljust(6, "0")[:6]
    offset = "+00:00" if tz == "Z" else tz
    try:
        ts = datetime.fromisoformat(f"{base}.{micros}{offset}")
    except ValueError:
        return None, line
    return ts, message


def parse_line(
    line: str,
    *,
    namespace: str,
    pod: str,
    container: str | None = None,
    cluster: str = "local",
    arrival: datetime | None = None,
) -> LogLine:
    """Build a LogLine; lines without a timestamp prefix take the arrival time."""
    line = line.rstrip("\r")
    ts, message = split_timestamp(line)
    return LogLine(
        timestamp=ts or arrival or datetime.now(timezone.utc),
        raw_message=message,
        derived_level=derive_level(message),
        container=container,
        namespace=namespace,
        pod=pod,
        cluster=cluster,
    )


def parse_text(
    text: str,
    *,
    namespace: str,
    pod: str,
    container: str | None = None,
    cluster: str = "local",
) -> list[LogLine]:
    arrival = datetime.now(timezone.utc)
    return [
        parse_line(
            line,
            namespace=namespace,
            pod=pod,
            container=container,
            cluster=cluster,
            arrival=arrival,
        )
        for line in text.splitlines()
        if line.strip()
    ]
