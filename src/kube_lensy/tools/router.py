"""Keyword router from free text to a diagnostic tool and its parameters."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any

from kube_lensy.catalog import DEFAULT_TOOL, ToolName

logger = logging.getLogger(__name__)

# Words that follow "pod", "namespace" etc. in questions without being names.
STOPWORDS = frozenset(
    {
        "health",
        "healthy",
        "status",
        "logs",
        "log",
        "events",
        "event",
        "is",
        "are",
        "in",
        "the",
        "a",
        "an",
        "for",
        "of",
        "and",
        "with",
        "failing",
        "failed",
        "crash",
        "crashing",
        "memory",
        "usage",
        "issues",
        "problems",
        "errors",
        "check",
        "name",
        "named",
    }
)

PARAM_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("pod_name", re.compile(r"\bpod[:\s]+([a-z0-9-]+)")),
    ("namespace", re.compile(r"\b(?:namespace|ns)[:\s]+([a-z0-9-]+)")),
    ("namespace", re.compile(r"\bin\s+(?:the\s+)?([a-z0-9-]+)\s+namespace\b")),
    ("deployment_name", re.compile(r"\bdeployment[:\s]+([a-z0-9-]+)")),
    ("service_name", re.compile(r"\bservice[:\s]+([a-z0-9-]+)")),
    ("release_name", re.compile(r"\brelease[:\s]+([a-z0-9-]+)")),
    ("container", re.compile(r"\bcontainer[:\s]+([a-z0-9-]+)")),
    ("pvc_name", re.compile(r"\bpvc[:\s]+([a-z0-9-]+)")),
)


def _has(*words: str) -> Callable[[str], bool]:
    return lambda text: any(w in text for w in words)


def _both(first: Callable[[str], bool], second: Callable[[str], bool]) -> Callable[[str], bool]:
    return lambda text: first(text) and second(text)


# Checked in order; the first predicate that matches picks the tool.
ROUTES: tuple[tuple[Callable[[str], bool], ToolName], ...] = (
    (_has("troubleshoot", "debug"), ToolName.TROUBLESHOOT_POD),
    (_has("failing", "failed", "crash"), ToolName.LIST_FAILING_PODS),
    (_both(_has("health", "check"), _has("pod")), ToolName.CHECK_POD_HEALTH),
    (_has("event"), ToolName.ANALYZE_EVENTS),
    (_has("log"), ToolName.ANALYZE_LOGS),
    (_has("memory", "oom"), ToolName.ANALYZE_MEMORY_USAGE),
    (_has("usage", "cpu", "top"), ToolName.GET_RESOURCE_USAGE),
    (_has("overview"), ToolName.GET_CLUSTER_OVERVIEW),
    (_has("network polic", "networkpolic"), ToolName.GET_NETWORK_POLICIES),
    (_has("endpoint", "service"), ToolName.CHECK_SERVICE_ENDPOINTS),
    (_has("pvc", "volume", "storage"), ToolName.CHECK_PVC_STATUS),
    (_both(_has("helm"), _has("history")), ToolName.HELM_HISTORY),
    (_has("helm", "release"), ToolName.HELM_LIST),
    (_has("rollout"), ToolName.ROLLOUT_STATUS),
    (_has("deployment"), ToolName.ANALYZE_DEPLOYMENT),
    (_has("ingress"), ToolName.GET_INGRESS),
    (_has("configmap", "config map"), ToolName.GET_CONFIGMAPS),
    (_has("secret"), ToolName.GET_SECRETS),
    (_has("describe"), ToolName.DESCRIBE_RESOURCE),
    (_has("port forward", "port-forward"), ToolName.PORT_FORWARD_INFO),
    (_has("health", "check"), ToolName.DIAGNOSE_CLUSTER),
)


def extract_params(text: str) -> dict[str, str]:
    """Pull named parameters out of lowercased text; unmatched ones are left out."""
    params: dict[str, str] = {}
    for name, pattern in PARAM_PATTERNS:
        if name in params:
            continue
        for match in pattern.finditer(text):
            value = match.group(1)
            if value not in STOPWORDS:
                params[name] = value
                break
    return params


def route(free_text: str, hints: dict[str, Any] | None = None) -> tuple[ToolName, dict[str, Any]]:
    """Resolve free text to ``(tool, params)``; falls back to the default tool.

    ``hints`` supply structured defaults such as the selected namespace;
    values extracted from the text override them.

    Parameter keys are snake_case (``pod_name``); ``ToolParams`` also accepts
    the camelCase aliases (``podName``), so either form validates.
    """
    text = free_text.lower()
    tool = next((t for matches, t in ROUTES if matches(text)), DEFAULT_TOOL)
    params = {k: v for k, v in (hints or {}).items() if v is not None}
    params.update(extract_params(text))
    logger.debug("routed %r to %s with %s", free_text, tool.value, params)
    return tool, params
