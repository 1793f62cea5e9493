"""Closed catalog of diagnostic tools and their parameters."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from kube_lensy.errors import ToolParameterError


class ToolName(str, Enum):
    """Every diagnostic operation the pipeline can run."""

    DIAGNOSE_CLUSTER = "diagnose_cluster"
    CHECK_POD_HEALTH = "check_pod_health"
    ANALYZE_EVENTS = "analyze_events"
    GET_RESOURCE_USAGE = "get_resource_usage"
    TROUBLESHOOT_POD = "troubleshoot_pod"
    LIST_FAILING_PODS = "list_failing_pods"
    GET_CLUSTER_OVERVIEW = "get_cluster_overview"
    ANALYZE_LOGS = "analyze_logs"
    EXEC_IN_POD = "exec_in_pod"
    DESCRIBE_RESOURCE = "describe_resource"
    GET_NETWORK_POLICIES = "get_network_policies"
    CHECK_SERVICE_ENDPOINTS = "check_service_endpoints"
    GET_CONFIGMAPS = "get_configmaps"
    GET_SECRETS = "get_secrets"
    ROLLOUT_STATUS = "rollout_status"
    PORT_FORWARD_INFO = "port_forward_info"
    GET_INGRESS = "get_ingress"
    CHECK_PVC_STATUS = "check_pvc_status"
    HELM_LIST = "helm_list"
    HELM_HISTORY = "helm_history"
    ANALYZE_DEPLOYMENT = "analyze_deployment"
    ANALYZE_MEMORY_USAGE = "analyze_memory_usage"


# Tools whose results are pure reads and may be served from the result cache.
CACHEABLE_TOOLS = frozenset(ToolName) - {
    ToolName.EXEC_IN_POD,
    ToolName.ANALYZE_LOGS,
    ToolName.TROUBLESHOOT_POD,
}

DEFAULT_TOOL = ToolName.DIAGNOSE_CLUSTER


class ToolParams(BaseModel):
    """Parameters shared by the tool catalog.

    Field names are snake_case; the camelCase names used by JSON callers are
    accepted as aliases. Missing optional parameters mean "apply to all".
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    namespace: str | None = None
    pod_name: str | None = Field(default=None, alias="podName")
    container: str | None = None
    lines: int | None = Field(default=None, ge=1)
    command: str | None = None
    severity: str | None = None
    resource_type: str | None = Field(default=None, alias="resourceType")
    resource_name: str | None = Field(default=None, alias="resourceName")
    service_name: str | None = Field(default=None, alias="serviceName")
    deployment_name: str | None = Field(default=None, alias="deploymentName")
    release_name: str | None = Field(default=None, alias="releaseName")
    pvc_name: str | None = Field(default=None, alias="pvcName")
    config_map_name: str | None = Field(default=None, alias="configMapName")
    secret_name: str | None = Field(default=None, alias="secretName")
    ingress_name: str | None = Field(default=None, alias="ingressName")

    def require(self, tool: ToolName, *fields: str) -> None:
        missing = [f for f in fields if getattr(self, f) in (None, "")]
        if missing:
            raise ToolParameterError(f"{tool.value} requires: {', '.join(missing)}")

    def key_items(self) -> tuple[tuple[str, Any], ...]:
        """Set parameters as a sorted tuple, for cache keys."""
        return tuple(sorted(self.model_dump(exclude_none=True).items()))


REQUIRED_PARAMS: dict[ToolName, tuple[str, ...]] = {
    ToolName.CHECK_POD_HEALTH: ("pod_name", "namespace"),
    ToolName.GET_RESOURCE_USAGE: ("resource_type",),
    ToolName.TROUBLESHOOT_POD: ("pod_name", "namespace"),
    ToolName.ANALYZE_LOGS: ("pod_name", "namespace"),
    ToolName.EXEC_IN_POD: ("pod_name", "namespace", "command"),
    ToolName.DESCRIBE_RESOURCE: ("resource_type", "resource_name", "namespace"),
    ToolName.CHECK_SERVICE_ENDPOINTS: ("service_name", "namespace"),
    ToolName.GET_CONFIGMAPS: ("namespace",),
    ToolName.GET_SECRETS: ("namespace",),
    ToolName.ROLLOUT_STATUS: ("resource_type", "resource_name", "namespace"),
    ToolName.PORT_FORWARD_INFO: ("resource_type", "resource_name", "namespace"),
    ToolName.HELM_HISTORY: ("release_name", "namespace"),
    ToolName.ANALYZE_DEPLOYMENT: ("deployment_name", "namespace"),
}
