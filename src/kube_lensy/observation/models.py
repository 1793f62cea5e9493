"""Structured models for Kubernetes cluster state used by the pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

ALL_NAMESPACES = "all"


class _Record(BaseModel):
    """Read-only projection of an external object."""

    model_config = ConfigDict(frozen=True)


class Condition(_Record):
    """Pod or node condition summary."""

    type: str
    status: str
    reason: str | None = None
    message: str | None = None
    last_transition: datetime | None = None


class Termination(_Record):
    """A terminated container state (current or last)."""

    reason: str | None = None
    message: str | None = None
    exit_code: int | None = None
    finished_at: datetime | None = None


class ContainerStatus(_Record):
    """Container state summary (waiting, running, terminated)."""

    name: str
    ready: bool = False
    restart_count: int = 0
    state: str = "unknown"  # waiting | running | terminated | unknown
    reason: str | None = None
    message: str | None = None
    terminated: Termination | None = None
    last_terminated: Termination | None = None


class ContainerSpec(_Record):
    """Declared container: resources and ports."""

    name: str
    image: str | None = None
    requests: dict[str, str] = Field(default_factory=dict)
    limits: dict[str, str] = Field(default_factory=dict)
    ports: list[dict[str, Any]] = Field(default_factory=list)


class Pod(_Record):
    """Summary of a pod for diagnosis."""

    name: str
    namespace: str
    uid: str | None = None
    phase: str = "Unknown"
    reason: str | None = None
    node_name: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    conditions: list[Condition] = Field(default_factory=list)
    containers: list[ContainerSpec] = Field(default_factory=list)
    container_statuses: list[ContainerStatus] = Field(default_factory=list)
    creation_timestamp: datetime | None = None

    @property
    def restart_count(self) -> int:
        return sum(c.restart_count for c in self.container_statuses)

    @property
    def all_ready(self) -> bool:
        return all(c.ready for c in self.container_statuses)

    @property
    def ready_text(self) -> str:
        """kubectl-style READY column, e.g. ``1/2``."""
        ready = sum(1 for c in self.container_statuses if c.ready)
        total = len(self.container_statuses) or len(self.containers)
        return f"{ready}/{total}"

    def container(self, name: str) -> ContainerSpec | None:
        for c in self.containers:
            if c.name == name:
                return c
        return None


class Node(_Record):
    """Cluster-scoped node; carries no namespace."""

    name: str
    conditions: list[Condition] = Field(default_factory=list)
    unschedulable: bool = False

    @property
    def ready(self) -> bool:
        return any(c.type == "Ready" and c.status == "True" for c in self.conditions)


class Event(_Record):
    """Kubernetes event summary."""

    type: str  # Normal | Warning
    reason: str
    message: str
    namespace: str
    involved_kind: str = ""
    involved_name: str = ""
    count: int = 1
    last_timestamp: datetime | None = None

    @property
    def involved_object(self) -> str:
        return f"{self.involved_kind}/{self.involved_name}"


class Deployment(_Record):
    """Deployment (or other rolled-out workload) state summary."""

    name: str
    namespace: str
    kind: str = "Deployment"
    desired_replicas: int = 0
    updated_replicas: int = 0
    ready_replicas: int = 0
    available_replicas: int = 0
    unavailable_replicas: int = 0
    strategy: str | None = None
    selector: dict[str, str] = Field(default_factory=dict)
    conditions: list[Condition] = Field(default_factory=list)


class EndpointAddress(_Record):
    ip: str
    target: str | None = None


class ServiceEndpoints(_Record):
    """A service joined with its Endpoints object."""

    name: str
    namespace: str
    type: str | None = None
    cluster_ip: str | None = None
    ports: list[dict[str, Any]] = Field(default_factory=list)
    selector: dict[str, str] = Field(default_factory=dict)
    ready_addresses: list[EndpointAddress] = Field(default_factory=list)
    not_ready_addresses: list[EndpointAddress] = Field(default_factory=list)


class NetworkPolicy(_Record):
    name: str
    namespace: str
    pod_selector: dict[str, Any] = Field(default_factory=dict)
    ingress_rules: int = 0
    egress_rules: int = 0
    policy_types: list[str] = Field(default_factory=list)


class PVC(_Record):
    """PersistentVolumeClaim summary."""

    name: str
    namespace: str
    phase: str = "Unknown"
    capacity: str | None = None
    access_modes: list[str] = Field(default_factory=list)
    storage_class: str | None = None
    volume_name: str | None = None


class Release(_Record):
    """Helm release as reported by ``helm list``."""

    name: str
    namespace: str
    revision: str | None = None
    updated: str | None = None
    status: str = "unknown"
    chart: str | None = None
    app_version: str | None = None


class ReleaseRevision(_Record):
    revision: int
    updated: str | None = None
    status: str = "unknown"
    chart: str | None = None
    app_version: str | None = None
    description: str | None = None


class ConfigMap(_Record):
    name: str
    namespace: str
    data_keys: list[str] = Field(default_factory=list)
    created: datetime | None = None


class Secret(_Record):
    """Secret metadata; values are never captured."""

    name: str
    namespace: str
    type: str | None = None
    data_keys: list[str] = Field(default_factory=list)
    created: datetime | None = None


class IngressPath(_Record):
    path: str | None = None
    path_type: str | None = None
    service_name: str | None = None
    service_port: str | None = None


class IngressRule(_Record):
    host: str | None = None
    paths: list[IngressPath] = Field(default_factory=list)


class Ingress(_Record):
    name: str
    namespace: str
    class_name: str | None = None
    rules: list[IngressRule] = Field(default_factory=list)
    tls_hosts: list[str] = Field(default_factory=list)
    load_balancer: list[str] = Field(default_factory=list)


class UsageSample(_Record):
    """One row of ``kubectl top pods --containers``."""

    pod: str
    namespace: str
    container: str | None = None
    cpu: str | None = None
    memory: str | None = None


class Snapshot(BaseModel):
    """Immutable bundle of resource collections captured for one request."""

    model_config = ConfigDict(frozen=True)

    scope: str = ALL_NAMESPACES
    collected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    pods: list[Pod] = Field(default_factory=list)
    nodes: list[Node] = Field(default_factory=list)
    events: list[Event] = Field(default_factory=list)
    deployments: list[Deployment] = Field(default_factory=list)
    service_endpoints: list[ServiceEndpoints] = Field(default_factory=list)
    network_policies: list[NetworkPolicy] = Field(default_factory=list)
    pvcs: list[PVC] = Field(default_factory=list)
    releases: list[Release] = Field(default_factory=list)
    release_history: list[ReleaseRevision] = Field(default_factory=list)
    config_maps: list[ConfigMap] = Field(default_factory=list)
    secrets: list[Secret] = Field(default_factory=list)
    ingresses: list[Ingress] = Field(default_factory=list)
    usage: list[UsageSample] = Field(default_factory=list)
    namespace_count: int | None = None
    rollout_message: str | None = None
    logs: dict[str, str] = Field(
        default_factory=dict,
        description="pod_name[/container] -> tail of recent logs",
    )
    partial_failures: dict[str, str] = Field(
        default_factory=dict,
        description="collection -> reason it could not be fetched",
    )

    @property
    def is_partial(self) -> bool:
        return bool(self.partial_failures)


class ClusterContext(BaseModel):
    """An entry of ``kubectl config get-contexts``."""

    id: str
    name: str
    status: str  # connected | disconnected


class NamespaceRef(BaseModel):
    name: str
    cluster: str


class PodRef(BaseModel):
    """Pod row for the log viewer's pod picker."""

    name: str
    namespace: str
    cluster: str
    status: str
    containers: list[str] = Field(default_factory=list)
    restart_count: int = 0
    creation_timestamp: datetime | None = None
    ready: str = "0/0"
