"""One handler per diagnostic tool."""

from __future__ import annotations

import logging
import re
import shlex
from collections.abc import Awaitable, Callable
from typing import Union

from kube_lensy.catalog import REQUIRED_PARAMS, ToolName, ToolParams
from kube_lensy.config import Settings
from kube_lensy.diagnosis import DiagnosticResult, RawText, diagnose
from kube_lensy.errors import CLIError, ToolParameterError
from kube_lensy.observation.collector import SnapshotCollector
from kube_lensy.observation.describe import parse_describe
from kube_lensy.observation.models import Snapshot

logger = logging.getLogger(__name__)

ToolResult = Union[DiagnosticResult, RawText]
Handler = Callable[[SnapshotCollector, Settings, ToolName, ToolParams], Awaitable[ToolResult]]

BLOCKED_COMMANDS = (
    re.compile(r"rm\s+-rf"),
    re.compile(r"mkfs"),
    re.compile(r"dd\s+if="),
    re.compile(r":\(\)\s*\{"),
    re.compile(r">\s*/dev"),
)

METRICS_UNAVAILABLE = "Metrics server not available. Install metrics-server to view resource usage."


async def run_snapshot_tool(
    collector: SnapshotCollector, settings: Settings, tool: ToolName, params: ToolParams
) -> DiagnosticResult:
    snapshot = await collector.collect(tool, params)
    return diagnose(snapshot, settings, tool)


async def get_resource_usage(
    collector: SnapshotCollector, settings: Settings, tool: ToolName, params: ToolParams
) -> RawText:
    kind = (params.resource_type or "").lower()
    if kind not in ("nodes", "pods"):
        raise ToolParameterError("resource_type must be 'nodes' or 'pods'")
    try:
        out = await collector.top(kind, params.namespace)
    except CLIError as e:
        logger.warning("kubectl top %s failed: %s", kind, e)
        return RawText(tool=tool.value, text=METRICS_UNAVAILABLE)
    return RawText(tool=tool.value, text=f"Resource Usage:\n\n{out}")


def check_command(command: str) -> list[str]:
    """Split an exec command, refusing destructive ones."""
    if any(p.search(command) for p in BLOCKED_COMMANDS):
        raise ToolParameterError("This command is blocked for safety reasons")
    try:
        argv = shlex.split(command)
    except ValueError as e:
        raise ToolParameterError(f"cannot parse command: {e}") from e
    if not argv:
        raise ToolParameterError("command is empty")
    return argv


async def exec_in_pod(
    collector: SnapshotCollector, settings: Settings, tool: ToolName, params: ToolParams
) -> RawText:
    argv = check_command(params.command or "")
    out = await collector.exec_in_pod(params.pod_name, params.namespace, argv, params.container)
    return RawText(tool=tool.value, text=out)


async def describe_resource(
    collector: SnapshotCollector, settings: Settings, tool: ToolName, params: ToolParams
) -> RawText:
    text = await collector.describe(params.resource_type, params.resource_name, params.namespace)
    return RawText(tool=tool.value, text=text, sections=parse_describe(text))


def port_forward_commands(resource_type: str, name: str, namespace: str, snapshot: Snapshot) -> list[str]:
    if resource_type == "pod":
        ports = [p.get("containerPort") for pod in snapshot.pods for c in pod.containers for p in c.ports]
    else:
        ports = [p.get("port") for svc in snapshot.service_endpoints for p in svc.ports]
    return [
        f"kubectl port-forward {resource_type}/{name} -n {namespace} {port}:{port}"
        for port in ports
        if port is not None
    ]


async def port_forward_info(
    collector: SnapshotCollector, settings: Settings, tool: ToolName, params: ToolParams
) -> RawText:
    snapshot = await collector.collect(tool, params)
    kind = (params.resource_type or "").lower()
    target = f"{kind}/{params.resource_name}"
    commands = port_forward_commands(kind, params.resource_name, params.namespace, snapshot)
    if not commands:
        return RawText(tool=tool.value, text=f"No ports declared on {target}")
    lines = [
        f"Port-forward commands for {target}:",
        *commands,
        "",
        "Run one of the commands above to forward the port locally",
    ]
    return RawText(tool=tool.value, text="\n".join(lines))


HANDLERS: dict[ToolName, Handler] = {
    ToolName.DIAGNOSE_CLUSTER: run_snapshot_tool,
    ToolName.CHECK_POD_HEALTH: run_snapshot_tool,
    ToolName.ANALYZE_EVENTS: run_snapshot_tool,
    ToolName.GET_RESOURCE_USAGE: get_resource_usage,
    ToolName.TROUBLESHOOT_POD: run_snapshot_tool,
    ToolName.LIST_FAILING_PODS: run_snapshot_tool,
    ToolName.GET_CLUSTER_OVERVIEW: run_snapshot_tool,
    ToolName.ANALYZE_LOGS: run_snapshot_tool,
    ToolName.EXEC_IN_POD: exec_in_pod,
    ToolName.DESCRIBE_RESOURCE: describe_resource,
    ToolName.GET_NETWORK_POLICIES: run_snapshot_tool,
    ToolName.CHECK_SERVICE_ENDPOINTS: run_snapshot_tool,
    ToolName.GET_CONFIGMAPS: run_snapshot_tool,
    ToolName.GET_SECRETS: run_snapshot_tool,
    ToolName.ROLLOUT_STATUS: run_snapshot_tool,
    ToolName.PORT_FORWARD_INFO: port_forward_info,
    ToolName.GET_INGRESS: run_snapshot_tool,
    ToolName.CHECK_PVC_STATUS: run_snapshot_tool,
    ToolName.HELM_LIST: run_snapshot_tool,
    ToolName.HELM_HISTORY: run_snapshot_tool,
    ToolName.ANALYZE_DEPLOYMENT: run_snapshot_tool,
    ToolName.ANALYZE_MEMORY_USAGE: run_snapshot_tool,
}

_unhandled = set(ToolName) - set(HANDLERS)
if _unhandled:
    raise RuntimeError(f"tools without a handler: {sorted(t.value for t in _unhandled)}")


async def run_tool(
    collector: SnapshotCollector, settings: Settings, tool: ToolName | str, params: ToolParams
) -> ToolResult:
    """Validate required parameters and dispatch to the tool's handler."""
    tool = ToolName(tool)
    params.require(tool, *REQUIRED_PARAMS.get(tool, ()))
    return await HANDLERS[tool](collector, settings, tool, params)
