"""Collect Kubernetes cluster state (pods, events, releases, logs) for diagnosis."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from kube_lensy.catalog import ToolName, ToolParams
from kube_lensy.config import Settings
from kube_lensy.errors import CLIError, CLIParseError, CollectionError, ToolParameterError
from kube_lensy.observation.adapter import ClusterCLI
from kube_lensy.observation.fallback import FallbackPolicy, container_not_running
from kube_lensy.observation.models import (
    ALL_NAMESPACES,
    PVC,
    ClusterContext,
    Condition,
    ConfigMap,
    ContainerSpec,
    ContainerStatus,
    Deployment,
    EndpointAddress,
    Event,
    Ingress,
    IngressPath,
    IngressRule,
    NetworkPolicy,
    Node,
    Pod,
    PodRef,
    Release,
    ReleaseRevision,
    Secret,
    ServiceEndpoints,
    Snapshot,
    Termination,
    UsageSample,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

WORKLOAD_KINDS = ("deployment", "statefulset", "daemonset")


def is_forbidden(error: CLIError) -> bool:
    return "forbidden" in error.text.lower()


def is_no_resources(error: CLIError) -> bool:
    return "no resources found" in error.text.lower()


def _items(data: Any) -> list[dict[str, Any]]:
    """Normalize a List object, a bare list, or a single object into a list."""
    if isinstance(data, list):
        return [d for d in data if isinstance(d, dict)]
    if not isinstance(data, dict):
        return []
    if "items" in data:
        return [i for i in data.get("items") or [] if isinstance(i, dict)]
    return [data]


def _build_all(build: Callable[[dict[str, Any]], T], data: Any, command: Sequence[str]) -> list[T]:
    try:
        return [build(item) for item in _items(data)]
    except (ValueError, TypeError, AttributeError) as e:
        raise CLIParseError(f"unexpected resource shape: {e}", list(command)) from e


def _ns_args(namespace: str | None) -> list[str]:
    return ["-n", namespace] if namespace else ["--all-namespaces"]


def _scope(namespace: str | None) -> str:
    return namespace or ALL_NAMESPACES


def _conditions(raw: Any) -> list[Condition]:
    return [
        Condition(
            type=c.get("type") or "",
            status=c.get("status") or "",
            reason=c.get("reason"),
            message=c.get("message"),
            last_transition=c.get("lastTransitionTime"),
        )
        for c in raw or []
        if isinstance(c, dict)
    ]


def _termination(state: dict[str, Any]) -> Termination | None:
    term = state.get("terminated")
    if not isinstance(term, dict):
        return None
    return Termination(
        reason=term.get("reason"),
        message=term.get("message"),
        exit_code=term.get("exitCode"),
        finished_at=term.get("finishedAt"),
    )


def _build_container_status(cs: dict[str, Any]) -> ContainerStatus:
    """Extract container state from a containerStatuses entry."""
    state = cs.get("state") or {}
    kind, detail = "unknown", {}
    for candidate in ("waiting", "running", "terminated"):
        if isinstance(state.get(candidate), dict):
            kind, detail = candidate, state[candidate]
            break
    return ContainerStatus(
        name=cs.get("name") or "",
        ready=bool(cs.get("ready")),
        restart_count=cs.get("restartCount") or 0,
        state=kind,
        reason=detail.get("reason"),
        message=detail.get("message"),
        terminated=_termination(state),
        last_terminated=_termination(cs.get("lastState") or {}),
    )


def _build_container_spec(c: dict[str, Any]) -> ContainerSpec:
    resources = c.get("resources") or {}
    return ContainerSpec(
        name=c.get("name") or "",
        image=c.get("image"),
        requests={k: str(v) for k, v in (resources.get("requests") or {}).items()},
        limits={k: str(v) for k, v in (resources.get("limits") or {}).items()},
        ports=[p for p in c.get("ports") or [] if isinstance(p, dict)],
    )


def _build_pod(obj: dict[str, Any]) -> Pod:
    meta = obj.get("metadata") or {}
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    return Pod(
        name=meta.get("name") or "<unknown>",
        namespace=meta.get("namespace") or "default",
        uid=meta.get("uid"),
        phase=status.get("phase") or "Unknown",
        reason=status.get("reason"),
        node_name=spec.get("nodeName"),
        labels=dict(meta.get("labels") or {}),
        conditions=_conditions(status.get("conditions")),
        containers=[_build_container_spec(c) for c in spec.get("containers") or []],
        container_statuses=[_build_container_status(cs) for cs in status.get("containerStatuses") or []],
        creation_timestamp=meta.get("creationTimestamp"),
    )


def _build_node(obj: dict[str, Any]) -> Node:
    return Node(
        name=(obj.get("metadata") or {}).get("name") or "<unknown>",
        conditions=_conditions((obj.get("status") or {}).get("conditions")),
        unschedulable=bool((obj.get("spec") or {}).get("unschedulable")),
    )


def _build_event(ev: dict[str, Any]) -> Event:
    obj = ev.get("involvedObject") or {}
    return Event(
        type=ev.get("type") or "Normal",
        reason=ev.get("reason") or "",
        message=ev.get("message") or "",
        namespace=(ev.get("metadata") or {}).get("namespace") or obj.get("namespace") or "default",
        involved_kind=obj.get("kind") or "",
        involved_name=obj.get("name") or "Unknown",
        count=ev.get("count") or 1,
        last_timestamp=ev.get("lastTimestamp") or ev.get("eventTime"),
    )


def _build_workload(obj: dict[str, Any]) -> Deployment:
    """Build a Deployment record from a Deployment, StatefulSet or DaemonSet."""
    meta = obj.get("metadata") or {}
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    kind = obj.get("kind") or "Deployment"
    if kind == "DaemonSet":
        desired = status.get("desiredNumberScheduled") or 0
        counts = dict(
            updated_replicas=status.get("updatedNumberScheduled") or 0,
            ready_replicas=status.get("numberReady") or 0,
            available_replicas=status.get("numberAvailable") or 0,
            unavailable_replicas=status.get("numberUnavailable") or 0,
        )
    else:
        desired = spec.get("replicas", status.get("replicas")) or 0
        counts = dict(
            updated_replicas=status.get("updatedReplicas") or 0,
            ready_replicas=status.get("readyReplicas") or 0,
            available_replicas=status.get("availableReplicas") or 0,
            unavailable_replicas=status.get("unavailableReplicas") or 0,
        )
    return Deployment(
        name=meta.get("name") or "<unknown>",
        namespace=meta.get("namespace") or "default",
        kind=kind,
        desired_replicas=desired,
        strategy=(spec.get("strategy") or spec.get("updateStrategy") or {}).get("type"),
        selector=dict((spec.get("selector") or {}).get("matchLabels") or {}),
        conditions=_conditions(status.get("conditions")),
        **counts,
    )


def _addresses(endpoints: dict[str, Any], field: str) -> list[EndpointAddress]:
    return [
        EndpointAddress(ip=a.get("ip") or "", target=(a.get("targetRef") or {}).get("name"))
        for subset in endpoints.get("subsets") or []
        for a in subset.get(field) or []
    ]


def _build_service_endpoints(svc: dict[str, Any], endpoints: dict[str, Any] | None) -> ServiceEndpoints:
    meta = svc.get("metadata") or {}
    spec = svc.get("spec") or {}
    endpoints = endpoints or {}
    return ServiceEndpoints(
        name=meta.get("name") or "<unknown>",
        namespace=meta.get("namespace") or "default",
        type=spec.get("type"),
        cluster_ip=spec.get("clusterIP"),
        ports=[p for p in spec.get("ports") or [] if isinstance(p, dict)],
        selector=dict(spec.get("selector") or {}),
        ready_addresses=_addresses(endpoints, "addresses"),
        not_ready_addresses=_addresses(endpoints, "notReadyAddresses"),
    )


def _service_record(svc: Any, endpoints: Any) -> ServiceEndpoints:
    try:
        return _build_service_endpoints(svc, endpoints)
    except (ValueError, TypeError, AttributeError) as e:
        raise CollectionError("service", CLIParseError(f"unexpected resource shape: {e}")) from e


def _build_network_policy(obj: dict[str, Any]) -> NetworkPolicy:
    meta = obj.get("metadata") or {}
    spec = obj.get("spec") or {}
    return NetworkPolicy(
        name=meta.get("name") or "<unknown>",
        namespace=meta.get("namespace") or "default",
        pod_selector=spec.get("podSelector") or {},
        ingress_rules=len(spec.get("ingress") or []),
        egress_rules=len(spec.get("egress") or []),
        policy_types=list(spec.get("policyTypes") or []),
    )


def _build_pvc(obj: dict[str, Any]) -> PVC:
    meta = obj.get("metadata") or {}
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    return PVC(
        name=meta.get("name") or "<unknown>",
        namespace=meta.get("namespace") or "default",
        phase=status.get("phase") or "Unknown",
        capacity=(status.get("capacity") or {}).get("storage"),
        access_modes=list(status.get("accessModes") or []),
        storage_class=spec.get("storageClassName"),
        volume_name=spec.get("volumeName"),
    )


def _build_release(r: dict[str, Any]) -> Release:
    return Release(
        name=r.get("name") or "<unknown>",
        namespace=r.get("namespace") or "default",
        revision=str(r["revision"]) if r.get("revision") is not None else None,
        updated=r.get("updated"),
        status=r.get("status") or "unknown",
        chart=r.get("chart"),
        app_version=r.get("app_version"),
    )


def _build_revision(h: dict[str, Any]) -> ReleaseRevision:
    return ReleaseRevision(
        revision=int(h.get("revision") or 0),
        updated=h.get("updated"),
        status=h.get("status") or "unknown",
        chart=h.get("chart"),
        app_version=h.get("app_version"),
        description=h.get("description"),
    )


def _build_config_map(obj: dict[str, Any]) -> ConfigMap:
    meta = obj.get("metadata") or {}
    keys = list(obj.get("data") or {}) + list(obj.get("binaryData") or {})
    return ConfigMap(
        name=meta.get("name") or "<unknown>",
        namespace=meta.get("namespace") or "default",
        data_keys=keys,
        created=meta.get("creationTimestamp"),
    )


def _build_secret(obj: dict[str, Any]) -> Secret:
    meta = obj.get("metadata") or {}
    return Secret(
        name=meta.get("name") or "<unknown>",
        namespace=meta.get("namespace") or "default",
        type=obj.get("type"),
        data_keys=list(obj.get("data") or {}),
        created=meta.get("creationTimestamp"),
    )


def _build_ingress(obj: dict[str, Any]) -> Ingress:
    meta = obj.get("metadata") or {}
    spec = obj.get("spec") or {}
    rules = []
    for r in spec.get("rules") or []:
        paths = []
        for p in (r.get("http") or {}).get("paths") or []:
            service = (p.get("backend") or {}).get("service") or {}
            port = service.get("port") or {}
            paths.append(
                IngressPath(
                    path=p.get("path"),
                    path_type=p.get("pathType"),
                    service_name=service.get("name"),
                    service_port=str(port.get("number") or port.get("name") or "") or None,
                )
            )
        rules.append(IngressRule(host=r.get("host"), paths=paths))
    lb = ((obj.get("status") or {}).get("loadBalancer") or {}).get("ingress") or []
    return Ingress(
        name=meta.get("name") or "<unknown>",
        namespace=meta.get("namespace") or "default",
        class_name=spec.get("ingressClassName"),
        rules=rules,
        tls_hosts=[h for t in spec.get("tls") or [] for h in t.get("hosts") or []],
        load_balancer=[i.get("ip") or i.get("hostname") or "" for i in lb],
    )


def parse_top_pods(text: str, namespace: str | None) -> list[UsageSample]:
    """Parse ``kubectl top pods [--containers] [-A]`` tabular output."""
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return []
    header = [h.split("(")[0].upper() for h in lines[0].split()]
    samples = []
    for line in lines[1:]:
        cols = line.split()
        if len(cols) != len(header):
            continue
        row = dict(zip(header, cols))
        with_containers = "POD" in row
        samples.append(
            UsageSample(
                pod=row["POD"] if with_containers else row.get("NAME", ""),
                namespace=row.get("NAMESPACE") or namespace or "default",
                container=row.get("NAME") if with_containers else None,
                cpu=row.get("CPU"),
                memory=row.get("MEMORY"),
            )
        )
    return samples


@dataclass(frozen=True)
class SubQuery:
    """One adapter call feeding one snapshot collection.

    ``essential`` marks the query naming the requested resource; its failure
    fails the whole collection. ``listing`` queries treat forbidden and
    "no resources found" as an empty result.
    """

    name: str
    fetch: Callable[[], Awaitable[Any]]
    essential: bool = False
    listing: bool = True


class SnapshotCollector:
    """Collects cluster state for one diagnostic tool through the CLI adapter."""

    def __init__(self, cli: ClusterCLI, settings: Settings) -> None:
        self.cli = cli
        self.settings = settings
        self._plans: dict[ToolName, Callable[[ToolParams], Awaitable[Snapshot]]] = {
            ToolName.DIAGNOSE_CLUSTER: self._diagnose_cluster,
            ToolName.CHECK_POD_HEALTH: self._pod_health,
            ToolName.ANALYZE_EVENTS: self._events_only,
            ToolName.TROUBLESHOOT_POD: self._troubleshoot_pod,
            ToolName.LIST_FAILING_PODS: self._pods_only,
            ToolName.GET_CLUSTER_OVERVIEW: self._cluster_overview,
            ToolName.ANALYZE_LOGS: self._logs_only,
            ToolName.GET_NETWORK_POLICIES: self._network_policies,
            ToolName.CHECK_SERVICE_ENDPOINTS: self._service_endpoints,
            ToolName.GET_CONFIGMAPS: self._config_maps,
            ToolName.GET_SECRETS: self._secrets,
            ToolName.ROLLOUT_STATUS: self._rollout_status,
            ToolName.PORT_FORWARD_INFO: self._port_forward_target,
            ToolName.GET_INGRESS: self._ingresses,
            ToolName.CHECK_PVC_STATUS: self._pvcs,
            ToolName.HELM_LIST: self._releases,
            ToolName.HELM_HISTORY: self._release_history,
            ToolName.ANALYZE_DEPLOYMENT: self._deployment,
            ToolName.ANALYZE_MEMORY_USAGE: self._memory,
        }

    def produces_snapshot(self, tool: ToolName) -> bool:
        return tool in self._plans

    async def collect(self, tool: ToolName, params: ToolParams) -> Snapshot:
        """Issue the sub-queries ``tool`` needs, concurrently, and bundle them."""
        plan = self._plans.get(ToolName(tool))
        if plan is None:
            raise ValueError(f"{tool} does not produce a snapshot")
        return await plan(params)

    async def _gather(self, queries: Sequence[SubQuery]) -> tuple[dict[str, Any], dict[str, str]]:
        """Run sub-queries concurrently; classify each failure once all have settled."""
        results = await asyncio.gather(*(q.fetch() for q in queries), return_exceptions=True)
        collected: dict[str, Any] = {}
        failures: dict[str, str] = {}
        for query, result in zip(queries, results):
            if not isinstance(result, BaseException):
                collected[query.name] = result
                continue
            if not isinstance(result, CLIError):
                raise result
            if query.listing and (is_forbidden(result) or is_no_resources(result)):
                logger.warning("%s: treating %r as empty", query.name, result.text[:200])
                collected[query.name] = []
            elif query.essential:
                raise CollectionError(query.name, result)
            else:
                logger.warning("%s unavailable: %s", query.name, result)
                collected[query.name] = None
                failures[query.name] = str(result)
        return collected, failures

    async def _snapshot(self, scope: str, queries: Sequence[SubQuery], **extra: Any) -> Snapshot:
        collected, failures = await self._gather(queries)
        fields = {name: value for name, value in collected.items() if value is not None}
        return Snapshot(scope=scope, partial_failures=failures, **fields, **extra)

    # Fetch primitives

    async def _get(self, build: Callable[[dict[str, Any]], T], *args: str) -> list[T]:
        data = await self.cli.kubectl_json("get", *args, timeout=self.settings.query_timeout)
        return _build_all(build, data, args)

    async def _get_raw(self, *args: str) -> dict[str, Any]:
        data = await self.cli.kubectl_json("get", *args, timeout=self.settings.query_timeout)
        if not isinstance(data, dict):
            raise CLIParseError("expected a JSON object", list(args))
        return data

    def _pods(self, namespace: str | None, *extra: str) -> Awaitable[list[Pod]]:
        return self._get(_build_pod, "pods", *_ns_args(namespace), *extra)

    def _events(self, namespace: str | None, involved: str | None = None) -> Awaitable[list[Event]]:
        args = ["events", *_ns_args(namespace), "--sort-by=.lastTimestamp"]
        if involved:
            args.append(f"--field-selector=involvedObject.name={involved}")
        return self._get(_build_event, *args)

    async def _namespace_names(self) -> list[str]:
        data = await self.cli.kubectl_json("get", "namespaces", timeout=self.settings.query_timeout)
        return [(ns.get("metadata") or {}).get("name") or "" for ns in _items(data)]

    async def _top_pods(self, namespace: str | None) -> list[UsageSample]:
        text = await self.cli.kubectl(
            "top", "pods", "--containers", *_ns_args(namespace), timeout=self.settings.query_timeout
        )
        return parse_top_pods(text, namespace)

    async def fetch_logs(
        self,
        pod: str,
        namespace: str,
        container: str | None = None,
        tail: int | None = None,
        previous: bool = False,
    ) -> str:
        """One-shot ``kubectl logs --timestamps`` for a pod/container."""
        args = ["logs", pod, "-n", namespace, f"--tail={tail or self.settings.initial_tail_lines}", "--timestamps"]
        if container:
            args.extend(["-c", container])
        if previous:
            args.append("--previous")
        return await self.cli.kubectl(*args, timeout=self.settings.log_timeout)

    def logs_policy(
        self, pod: str, namespace: str, container: str | None, tail: int
    ) -> FallbackPolicy[str]:
        """Current logs, else the previous container's logs when the current one is not running."""
        return FallbackPolicy(
            primary=lambda: self.fetch_logs(pod, namespace, container, tail),
            fallback_on=container_not_running,
            fallback=lambda: self.fetch_logs(pod, namespace, container, tail, previous=True),
        )

    async def _logs(self, pod: str, namespace: str, container: str | None, tail: int) -> dict[str, str]:
        key = f"{pod}/{container}" if container else pod
        return {key: await self.logs_policy(pod, namespace, container, tail).run()}

    # Snapshot plans

    async def _diagnose_cluster(self, p: ToolParams) -> Snapshot:
        return await self._snapshot(
            _scope(p.namespace),
            [
                SubQuery("pods", lambda: self._pods(p.namespace), essential=True),
                SubQuery("events", lambda: self._events(p.namespace)),
            ],
        )

    async def _pod_health(self, p: ToolParams) -> Snapshot:
        return await self._snapshot(
            p.namespace,
            [
                SubQuery(
                    "pods",
                    lambda: self._get(_build_pod, "pod", p.pod_name, "-n", p.namespace),
                    essential=True,
                    listing=False,
                ),
                SubQuery("events", lambda: self._events(p.namespace, involved=p.pod_name)),
            ],
        )

    async def _events_only(self, p: ToolParams) -> Snapshot:
        return await self._snapshot(
            _scope(p.namespace),
            [SubQuery("events", lambda: self._events(p.namespace), essential=True)],
        )

    async def _troubleshoot_pod(self, p: ToolParams) -> Snapshot:
        return await self._snapshot(
            p.namespace,
            [
                SubQuery(
                    "pods",
                    lambda: self._get(_build_pod, "pod", p.pod_name, "-n", p.namespace),
                    essential=True,
                    listing=False,
                ),
                SubQuery("events", lambda: self._events(p.namespace, involved=p.pod_name)),
                SubQuery(
                    "logs",
                    lambda: self._logs(
                        p.pod_name, p.namespace, p.container, self.settings.troubleshoot_log_lines
                    ),
                    listing=False,
                ),
            ],
        )

    async def _pods_only(self, p: ToolParams) -> Snapshot:
        return await self._snapshot(
            _scope(p.namespace),
            [SubQuery("pods", lambda: self._pods(p.namespace), essential=True)],
        )

    async def _cluster_overview(self, p: ToolParams) -> Snapshot:
        collected, failures = await self._gather(
            [
                SubQuery("nodes", lambda: self._get(_build_node, "nodes")),
                SubQuery("pods", lambda: self._pods(None), essential=True),
                SubQuery("namespaces", self._namespace_names),
            ]
        )
        namespaces = collected.get("namespaces")
        return Snapshot(
            scope=ALL_NAMESPACES,
            nodes=collected.get("nodes") or [],
            pods=collected.get("pods") or [],
            namespace_count=len(namespaces) if namespaces is not None else None,
            partial_failures=failures,
        )

    async def _logs_only(self, p: ToolParams) -> Snapshot:
        lines = p.lines or self.settings.analyze_log_lines
        return await self._snapshot(
            p.namespace,
            [
                SubQuery(
                    "logs",
                    lambda: self._logs(p.pod_name, p.namespace, p.container, lines),
                    essential=True,
                    listing=False,
                )
            ],
        )

    async def _network_policies(self, p: ToolParams) -> Snapshot:
        return await self._snapshot(
            _scope(p.namespace),
            [
                SubQuery(
                    "network_policies",
                    lambda: self._get(_build_network_policy, "networkpolicies", *_ns_args(p.namespace)),
                    essential=True,
                )
            ],
        )

    async def _service_endpoints(self, p: ToolParams) -> Snapshot:
        collected, failures = await self._gather(
            [
                SubQuery(
                    "service",
                    lambda: self._get_raw("service", p.service_name, "-n", p.namespace),
                    essential=True,
                    listing=False,
                ),
                SubQuery(
                    "endpoints",
                    lambda: self._get_raw("endpoints", p.service_name, "-n", p.namespace),
                    listing=False,
                ),
            ]
        )
        record = _service_record(collected["service"], collected.get("endpoints"))
        return Snapshot(scope=p.namespace, service_endpoints=[record], partial_failures=failures)

    def _named_or_listed(
        self, name: str, resource: str, item: str | None, namespace: str | None, build: Callable[[dict[str, Any]], T]
    ) -> SubQuery:
        if item and namespace:
            fetch = lambda: self._get(build, resource, item, "-n", namespace)  # noqa: E731
        else:
            fetch = lambda: self._get(build, resource, *_ns_args(namespace))  # noqa: E731
        return SubQuery(name, fetch, essential=True, listing=not (item and namespace))

    async def _config_maps(self, p: ToolParams) -> Snapshot:
        query = self._named_or_listed("config_maps", "configmap", p.config_map_name, p.namespace, _build_config_map)
        return await self._snapshot(p.namespace, [query])

    async def _secrets(self, p: ToolParams) -> Snapshot:
        query = self._named_or_listed("secrets", "secret", p.secret_name, p.namespace, _build_secret)
        return await self._snapshot(p.namespace, [query])

    async def _ingresses(self, p: ToolParams) -> Snapshot:
        query = self._named_or_listed("ingresses", "ingress", p.ingress_name, p.namespace, _build_ingress)
        return await self._snapshot(_scope(p.namespace), [query])

    async def _pvcs(self, p: ToolParams) -> Snapshot:
        query = self._named_or_listed("pvcs", "pvc", p.pvc_name, p.namespace, _build_pvc)
        return await self._snapshot(_scope(p.namespace), [query])

    async def _rollout_message(self, kind: str, name: str, namespace: str) -> str:
        try:
            out = await self.cli.kubectl(
                "rollout", "status", f"{kind}/{name}", "-n", namespace, "--timeout=5s",
                timeout=self.settings.rollout_timeout,
            )
        except CLIError as e:
            return str(e)
        return out.strip()

    async def _rollout_status(self, p: ToolParams) -> Snapshot:
        kind = (p.resource_type or "").lower()
        if kind not in WORKLOAD_KINDS:
            raise ToolParameterError(f"resource_type must be one of {', '.join(WORKLOAD_KINDS)}")
        collected, failures = await self._gather(
            [
                SubQuery(
                    "deployments",
                    lambda: self._get(_build_workload, kind, p.resource_name, "-n", p.namespace),
                    essential=True,
                    listing=False,
                ),
                SubQuery("rollout", lambda: self._rollout_message(kind, p.resource_name, p.namespace)),
            ]
        )
        return Snapshot(
            scope=p.namespace,
            deployments=collected["deployments"],
            rollout_message=collected.get("rollout"),
            partial_failures=failures,
        )

    async def _port_forward_target(self, p: ToolParams) -> Snapshot:
        kind = (p.resource_type or "").lower()
        if kind == "pod":
            query = SubQuery(
                "pods",
                lambda: self._get(_build_pod, "pod", p.resource_name, "-n", p.namespace),
                essential=True,
                listing=False,
            )
            return await self._snapshot(p.namespace, [query])
        if kind == "service":
            svc = await self._gather(
                [
                    SubQuery(
                        "service",
                        lambda: self._get_raw("service", p.resource_name, "-n", p.namespace),
                        essential=True,
                        listing=False,
                    )
                ]
            )
            return Snapshot(
                scope=p.namespace,
                service_endpoints=[_service_record(svc[0]["service"], None)],
            )
        raise ToolParameterError("resource_type must be 'pod' or 'service'")

    async def _releases(self, p: ToolParams) -> Snapshot:
        ns_args = ["-n", p.namespace] if p.namespace else ["-A"]

        async def fetch() -> list[Release]:
            data = await self.cli.helm_json("list", *ns_args, timeout=self.settings.query_timeout)
            return _build_all(_build_release, data, ["helm", "list"])

        return await self._snapshot(_scope(p.namespace), [SubQuery("releases", fetch, essential=True)])

    async def _release_history(self, p: ToolParams) -> Snapshot:
        async def fetch() -> list[ReleaseRevision]:
            data = await self.cli.helm_json(
                "history", p.release_name, "-n", p.namespace, timeout=self.settings.query_timeout
            )
            return _build_all(_build_revision, data, ["helm", "history"])

        return await self._snapshot(
            p.namespace, [SubQuery("release_history", fetch, essential=True, listing=False)]
        )

    async def _deployment(self, p: ToolParams) -> Snapshot:
        return await self._snapshot(
            p.namespace,
            [
                SubQuery(
                    "deployments",
                    lambda: self._get(_build_workload, "deployment", p.deployment_name, "-n", p.namespace),
                    essential=True,
                    listing=False,
                ),
                SubQuery("pods", lambda: self._pods(p.namespace, "-l", f"app={p.deployment_name}")),
                SubQuery("events", lambda: self._events(p.namespace, involved=p.deployment_name)),
            ],
        )

    async def _memory(self, p: ToolParams) -> Snapshot:
        return await self._snapshot(
            _scope(p.namespace),
            [
                SubQuery("usage", lambda: self._top_pods(p.namespace)),
                SubQuery("pods", lambda: self._pods(p.namespace), essential=True),
            ],
        )

    # Raw-text reads

    async def describe(self, resource_type: str, name: str, namespace: str) -> str:
        return await self.cli.kubectl(
            "describe", resource_type, name, "-n", namespace, timeout=self.settings.query_timeout
        )

    async def exec_in_pod(
        self, pod: str, namespace: str, command: Sequence[str], container: str | None = None
    ) -> str:
        args = ["exec", pod, "-n", namespace]
        if container:
            args.extend(["-c", container])
        return await self.cli.kubectl(*args, "--", *command, timeout=self.settings.query_timeout)

    async def top(self, resource_type: str, namespace: str | None = None) -> str:
        if resource_type == "nodes":
            return await self.cli.kubectl("top", "nodes", timeout=self.settings.query_timeout)
        return await self.cli.kubectl("top", "pods", *_ns_args(namespace), timeout=self.settings.query_timeout)

    # Log-viewer listing reads

    async def current_context(self) -> str:
        if self.cli.context:
            return self.cli.context
        out = await self.cli.kubectl("config", "current-context", timeout=self.settings.context_timeout)
        return out.strip()

    async def list_contexts(self) -> list[ClusterContext]:
        names_out, current = await asyncio.gather(
            self.cli.kubectl("config", "get-contexts", "-o", "name", timeout=self.settings.context_timeout),
            self.current_context(),
        )
        return [
            ClusterContext(id=name, name=name, status="connected" if name == current else "disconnected")
            for name in names_out.splitlines()
            if name.strip()
        ]

    async def use_context(self, name: str) -> None:
        await self.cli.kubectl("config", "use-context", name, timeout=self.settings.context_timeout)
        if self.cli.context:
            self.cli.context = name

    async def list_namespaces(self) -> list[str]:
        try:
            return await self._namespace_names()
        except CLIError as e:
            if is_forbidden(e):
                logger.warning("Listing namespaces forbidden, falling back to 'default' namespace")
                return ["default"]
            raise

    async def list_pods(self, namespace: str | None, cluster: str) -> list[PodRef]:
        try:
            pods = await self._pods(namespace)
        except CLIError as e:
            if is_forbidden(e) or is_no_resources(e):
                logger.warning("Listing pods in %s forbidden", _scope(namespace))
                return []
            raise
        return [
            PodRef(
                name=pod.name,
                namespace=pod.namespace,
                cluster=cluster,
                status=pod.phase,
                containers=[c.name for c in pod.containers],
                restart_count=pod.restart_count,
                creation_timestamp=pod.creation_timestamp,
                ready=pod.ready_text,
            )
            for pod in pods
        ]
