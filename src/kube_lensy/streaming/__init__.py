"""Streaming layer: live container log tails."""

from kube_lensy.streaming.coordinator import LogSubscription, SubscriptionKey, TailStreamCoordinator
from kube_lensy.streaming.models import LogBatch, LogLevel, LogLine, StreamEnd, StreamState
from kube_lensy.streaming.parsing import derive_level, parse_line, parse_text

__all__ = [
    "LogBatch",
    "LogLevel",
    "LogLine",
    "LogSubscription",
    "StreamEnd",
    "StreamState",
    "SubscriptionKey",
    "TailStreamCoordinator",
    "derive_level",
    "parse_line",
    "parse_text",
]
