"""Deterministic rules that classify snapshot collections into issues.

Each rule reads one collection and returns issues in collection order.
``evaluate`` runs them in a fixed order, drops duplicates and stably sorts the
result by severity, so equal inputs always produce equal output.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from kubernetes.utils.quantity import parse_quantity

from kube_lensy.diagnosis.models import Issue, Severity
from kube_lensy.observation.models import Deployment, Pod, Snapshot, Termination

IMAGE_PULL_REASONS = ("ImagePullBackOff", "ErrImagePull")
OOM_REASON = "OOMKilled"


@dataclass(frozen=True)
class RuleConfig:
    restart_threshold: int = 5
    event_issue_limit: int = 10


def _pod_resource(pod: Pod) -> str:
    return f"Pod: {pod.namespace}/{pod.name}"


def pod_rules(snapshot: Snapshot, config: RuleConfig) -> list[Issue]:
    issues: list[Issue] = []
    for pod in snapshot.pods:
        resource = _pod_resource(pod)
        waiting = [(c.name, c.reason) for c in pod.container_statuses if c.state == "waiting" and c.reason]
        crash_looping = any(reason == "CrashLoopBackOff" for _, reason in waiting)

        if pod.phase == "Pending":
            issues.append(
                Issue(
                    severity=Severity.HIGH,
                    resource=resource,
                    message="Pod is stuck in Pending state",
                    recommendation="Check for resource constraints or scheduling issues",
                )
            )
        elif pod.phase == "Failed" or crash_looping:
            state = "Failed" if pod.phase == "Failed" else "CrashLoopBackOff"
            issues.append(
                Issue(
                    severity=Severity.CRITICAL,
                    resource=resource,
                    message=f"Pod is in {state} state",
                    recommendation="Check pod logs and events immediately",
                )
            )

        for name, reason in waiting:
            if reason in IMAGE_PULL_REASONS:
                issues.append(
                    Issue(
                        severity=Severity.HIGH,
                        resource=resource,
                        message=f"Container {name} cannot pull its image ({reason})",
                        recommendation="Verify image name and registry credentials",
                    )
                )

        if pod.phase == "Running" and not pod.all_ready:
            issues.append(
                Issue(
                    severity=Severity.MEDIUM,
                    resource=resource,
                    message="Pod is running but not all containers are ready",
                    recommendation="Check container logs and readiness probes",
                )
            )

        if pod.restart_count > config.restart_threshold:
            issues.append(
                Issue(
                    severity=Severity.HIGH,
                    resource=resource,
                    message=f"High restart count: {pod.restart_count}",
                    recommendation="Investigate pod logs and events for crash reasons",
                )
            )
    return issues


def oom_termination(last: Termination | None, current: Termination | None) -> Termination | None:
    """The OOMKilled termination of a container, preferring its last state."""
    for term in (last, current):
        if term is not None and term.reason == OOM_REASON:
            return term
    return None


def memory_comparison(usage: str, limit: str) -> str:
    """Describe usage against limit, as a percentage when both quantities parse."""
    try:
        used, cap = parse_quantity(usage), parse_quantity(limit)
    except ValueError:
        return f"Memory usage {usage} against limit {limit}"
    if cap <= 0:
        return f"Memory usage {usage} against limit {limit}"
    return f"Memory usage {usage} is {used / cap * 100:.0f}% of limit {limit}"


def memory_rules(snapshot: Snapshot, config: RuleConfig) -> list[Issue]:
    by_container = {(u.namespace, u.pod, u.container): u for u in snapshot.usage}
    issues: list[Issue] = []
    for pod in snapshot.pods:
        for status in pod.container_statuses:
            resource = f"Container: {pod.namespace}/{pod.name}/{status.name}"
            term = oom_termination(status.last_terminated, status.terminated)
            if term is not None:
                finished = term.finished_at.isoformat() if term.finished_at else "unknown"
                issues.append(
                    Issue(
                        severity=Severity.CRITICAL,
                        resource=resource,
                        message=f"Container was OOMKilled (exit code {term.exit_code}, finished {finished})",
                        recommendation="Increase memory limits in deployment spec",
                    )
                )

            spec = pod.container(status.name)
            limit = spec.limits.get("memory") if spec else None
            sample = by_container.get((pod.namespace, pod.name, status.name)) or by_container.get(
                (pod.namespace, pod.name, None)
            )
            if limit and sample is not None and sample.memory:
                issues.append(
                    Issue(
                        severity=Severity.LOW,
                        resource=resource,
                        message=memory_comparison(sample.memory, limit),
                    )
                )
    return issues


def event_rules(snapshot: Snapshot, config: RuleConfig) -> list[Issue]:
    if config.event_issue_limit <= 0:
        return []
    warnings = [e for e in snapshot.events if e.type == "Warning"]
    return [
        Issue(
            severity=Severity.MEDIUM,
            resource=f"Event: {e.involved_name or 'Unknown'}",
            message=f"{e.reason}: {e.message}",
        )
        for e in warnings[-config.event_issue_limit:]
    ]


def owned_pods(deployment: Deployment, pods: list[Pod]) -> list[Pod]:
    """Pods in the deployment's namespace matched by its selector (``app=<name>`` when it has none)."""
    selector = deployment.selector or {"app": deployment.name}
    return [
        p
        for p in pods
        if p.namespace == deployment.namespace and all(p.labels.get(k) == v for k, v in selector.items())
    ]


def deployment_rules(snapshot: Snapshot, config: RuleConfig) -> list[Issue]:
    issues: list[Issue] = []
    for d in snapshot.deployments:
        resource = f"{d.kind}: {d.namespace}/{d.name}"
        if d.unavailable_replicas > 0:
            issues.append(
                Issue(
                    severity=Severity.HIGH,
                    resource=resource,
                    message=f"{d.unavailable_replicas} replicas are unavailable",
                    recommendation="Check the rollout status and the events of its pods",
                )
            )
        restarts = sum(p.restart_count for p in owned_pods(d, snapshot.pods))
        if restarts > 0:
            issues.append(
                Issue(
                    severity=Severity.MEDIUM,
                    resource=resource,
                    message=f"Multiple pod restarts detected ({restarts} total)",
                )
            )
    return issues


def endpoint_rules(snapshot: Snapshot, config: RuleConfig) -> list[Issue]:
    return [
        Issue(
            severity=Severity.HIGH,
            resource=f"Service: {s.namespace}/{s.name}",
            message="Service has no ready endpoints",
            recommendation="Check that the service selector matches running, ready pods",
        )
        for s in snapshot.service_endpoints
        if not s.ready_addresses
    ]


def node_rules(snapshot: Snapshot, config: RuleConfig) -> list[Issue]:
    return [
        Issue(
            severity=Severity.CRITICAL,
            resource=f"Node: {n.name}",
            message="Node is not Ready",
            recommendation="Check kubelet status and node conditions",
        )
        for n in snapshot.nodes
        if not n.ready
    ]


def pvc_rules(snapshot: Snapshot, config: RuleConfig) -> list[Issue]:
    return [
        Issue(
            severity=Severity.HIGH,
            resource=f"PVC: {p.namespace}/{p.name}",
            message=f"PVC is {p.phase}, not Bound",
            recommendation="Check the storage class and available persistent volumes",
        )
        for p in snapshot.pvcs
        if p.phase != "Bound"
    ]


def release_rules(snapshot: Snapshot, config: RuleConfig) -> list[Issue]:
    issues: list[Issue] = []
    for r in snapshot.releases:
        if r.status == "deployed":
            continue
        issues.append(
            Issue(
                severity=Severity.CRITICAL if r.status == "failed" else Severity.HIGH,
                resource=f"Release: {r.namespace}/{r.name}",
                message=f"Release status is {r.status}",
                recommendation="Inspect helm history and roll back if needed",
            )
        )
    return issues


Rule = Callable[[Snapshot, RuleConfig], list[Issue]]

RULES: tuple[Rule, ...] = (
    pod_rules,
    memory_rules,
    event_rules,
    deployment_rules,
    endpoint_rules,
    node_rules,
    pvc_rules,
    release_rules,
)


def evaluate(snapshot: Snapshot, config: RuleConfig | None = None) -> list[Issue]:
    """Run every rule in order; dedupe, then sort highest severity first."""
    config = config or RuleConfig()
    issues = [issue for rule in RULES for issue in rule(snapshot, config)]
    unique = list(dict.fromkeys(issues))
    return sorted(unique, key=lambda i: -i.severity.rank)
