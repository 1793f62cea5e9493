"""Rule-based diagnosis over cluster snapshots, with per-tool summaries."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any

from kube_lensy.catalog import ToolName
from kube_lensy.config import Settings
from kube_lensy.diagnosis.models import DiagnosticResult, Issue, status_for
from kube_lensy.diagnosis.rules import RuleConfig, evaluate, oom_termination, owned_pods
from kube_lensy.observation.models import Condition, Event, Pod, Snapshot

logger = logging.getLogger(__name__)

_ERROR_LINE = re.compile(r"error|exception|fatal|panic", re.IGNORECASE)
_WARNING_LINE = re.compile(r"warn", re.IGNORECASE)

UNAVAILABLE_LOGS = "Unable to fetch logs"

Summarizer = Callable[[Snapshot, list[Issue], RuleConfig], tuple[str, dict[str, Any]]]


def summarize_logs(text: str) -> str:
    lines = text.split("\n")
    errors = sum(1 for line in lines if _ERROR_LINE.search(line))
    warnings = sum(1 for line in lines if _WARNING_LINE.search(line))
    return f"Total lines: {len(lines)}, Errors: {errors}, Warnings: {warnings}"


def extract_errors(text: str, limit: int = 10) -> list[str]:
    return [line for line in text.split("\n") if _ERROR_LINE.search(line)][-limit:]


def extract_warnings(text: str, limit: int = 10) -> list[str]:
    return [line for line in text.split("\n") if _WARNING_LINE.search(line)][-limit:]


def pod_recommendations(pod: Pod, restart_threshold: int = 5) -> list[str]:
    """Human next steps for one pod, or a single all-clear line."""
    recs: list[str] = []
    if pod.phase == "Pending":
        recs.append("Check if there are sufficient resources in the cluster")
        recs.append("Verify node selectors and affinity rules")
        recs.append("Check for PersistentVolumeClaim binding issues")
    if pod.phase == "Failed":
        recs.append("Review pod logs for error messages")
        recs.append("Check container exit codes")
        recs.append("Verify image pull secrets and registry access")
    for c in pod.container_statuses:
        if c.state == "waiting" and c.reason == "ImagePullBackOff":
            recs.append(f"Container {c.name}: Verify image name and registry credentials")
        if c.state == "waiting" and c.reason == "CrashLoopBackOff":
            recs.append(f"Container {c.name}: Application is crashing, check logs for errors")
        if c.restart_count > restart_threshold:
            recs.append(f"Container {c.name}: High restart count, investigate stability issues")
    return recs or ["Pod appears healthy"]


def pod_findings(pod: Pod, events: list[Event]) -> list[str]:
    findings: list[str] = []
    if pod.phase not in ("Running", "Succeeded"):
        findings.append(f"Pod is in {pod.phase} state")
    for c in pod.container_statuses:
        if not c.ready:
            findings.append(f"Container {c.name} is not ready")
        if c.state == "waiting":
            findings.append(f"Container {c.name} is waiting: {c.reason}")
        if c.terminated is not None:
            findings.append(
                f"Container {c.name} terminated: {c.terminated.reason} (exit code: {c.terminated.exit_code})"
            )
    for e in events:
        if e.type == "Warning":
            findings.append(f"Event: {e.reason} - {e.message}")
    return findings


def _conditions(conditions: list[Condition]) -> list[dict[str, Any]]:
    return [
        {"type": c.type, "status": c.status, "reason": c.reason, "message": c.message}
        for c in conditions
    ]


def _event_row(e: Event) -> dict[str, Any]:
    return {
        "type": e.type,
        "reason": e.reason,
        "message": e.message,
        "object": e.involved_object,
        "namespace": e.namespace,
        "timestamp": e.last_timestamp.isoformat() if e.last_timestamp else None,
    }


def _healthy(pod: Pod) -> bool:
    return pod.phase == "Running" and pod.all_ready


def _single_pod(snapshot: Snapshot) -> Pod | None:
    return snapshot.pods[0] if snapshot.pods else None


# Per-tool summaries


def _cluster(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    total = len(snapshot.pods)
    healthy = sum(1 for p in snapshot.pods if _healthy(p))
    status = status_for(issues).value
    summary = (
        f"Cluster Health: {status.upper()}\nTotal Pods: {total}\n"
        f"Healthy Pods: {healthy}\nIssues Found: {len(issues)}"
    )
    return summary, {"totalPods": total, "healthyPods": healthy, "unhealthyPods": total - healthy}


def _pod_health(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    pod = _single_pod(snapshot)
    if pod is None:
        return "Pod not found", {}
    return f"Pod {pod.namespace}/{pod.name} is {pod.phase}", {
        "podName": pod.name,
        "namespace": pod.namespace,
        "phase": pod.phase,
        "conditions": _conditions(pod.conditions),
        "containers": [
            {"name": c.name, "ready": c.ready, "restartCount": c.restart_count, "state": c.state}
            for c in pod.container_statuses
        ],
        "recommendations": pod_recommendations(pod, config.restart_threshold),
    }


def _events(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    warnings = sum(1 for e in snapshot.events if e.type == "Warning")
    total = len(snapshot.events)
    return f"{total} events, {warnings} warnings", {
        "totalEvents": total,
        "warnings": warnings,
        "recentEvents": [_event_row(e) for e in snapshot.events[-20:]],
    }


def _troubleshoot(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    pod = _single_pod(snapshot)
    if pod is None:
        return "Pod not found", {}
    logs = next(iter(snapshot.logs.values()), UNAVAILABLE_LOGS)
    return f"Troubleshooting {pod.namespace}/{pod.name} ({pod.phase})", {
        "podName": pod.name,
        "namespace": pod.namespace,
        "status": pod.phase,
        "findings": pod_findings(pod, snapshot.events),
        "recentEvents": [
            {"type": e.type, "reason": e.reason, "message": e.message} for e in snapshot.events[-10:]
        ],
        "logSummary": summarize_logs(logs),
        "recommendations": pod_recommendations(pod, config.restart_threshold),
    }


def _failing_pods(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    failing = [
        {
            "name": p.name,
            "namespace": p.namespace,
            "phase": p.phase,
            "reason": p.reason,
            "restarts": p.restart_count,
        }
        for p in snapshot.pods
        if p.phase != "Running"
        or any(not c.ready for c in p.container_statuses)
        or any(c.restart_count > 0 for c in p.container_statuses)
    ]
    return f"{len(failing)} failing pods", {"count": len(failing), "pods": failing}


def _overview(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    phases = [p.phase for p in snapshot.pods]
    nodes_ready = sum(1 for n in snapshot.nodes if n.ready)
    metrics = {
        "nodes": {"total": len(snapshot.nodes), "ready": nodes_ready},
        "namespaces": snapshot.namespace_count,
        "pods": {
            "total": len(phases),
            "running": phases.count("Running"),
            "pending": phases.count("Pending"),
            "failed": phases.count("Failed"),
        },
    }
    summary = f"{nodes_ready}/{len(snapshot.nodes)} nodes ready, {len(phases)} pods"
    return summary, {"cluster": metrics}


def _logs(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    key, text = next(iter(snapshot.logs.items()), ("", ""))
    pod, _, container = key.partition("/")
    return summarize_logs(text), {
        "podName": pod,
        "namespace": snapshot.scope,
        "container": container or "default",
        "errors": extract_errors(text),
        "warnings": extract_warnings(text),
    }


def _network_policies(
    snapshot: Snapshot, issues: list[Issue], config: RuleConfig
) -> tuple[str, dict[str, Any]]:
    policies = [p.model_dump(mode="json") for p in snapshot.network_policies]
    return f"{len(policies)} network policies", {"count": len(policies), "policies": policies}


def _service(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    if not snapshot.service_endpoints:
        return "Service not found", {}
    svc = snapshot.service_endpoints[0]
    health = "healthy" if svc.ready_addresses else "no endpoints"
    return f"Service {svc.namespace}/{svc.name}: {health}", {
        "service": {
            "name": svc.name,
            "namespace": svc.namespace,
            "type": svc.type,
            "clusterIP": svc.cluster_ip,
            "ports": svc.ports,
            "selector": svc.selector,
        },
        "endpoints": {
            "ready": [a.model_dump() for a in svc.ready_addresses],
            "notReady": [a.model_dump() for a in svc.not_ready_addresses],
        },
        "health": health,
    }


def _config_maps(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    items = [c.model_dump(mode="json") for c in snapshot.config_maps]
    return f"{len(items)} config maps", {"count": len(items), "configMaps": items}


def _secrets(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    items = [s.model_dump(mode="json") for s in snapshot.secrets]
    return f"{len(items)} secrets", {
        "count": len(items),
        "secrets": items,
        "note": "Secret values are not displayed for security reasons",
    }


def _rollout(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    if not snapshot.deployments:
        return snapshot.rollout_message or "Workload not found", {}
    d = snapshot.deployments[0]
    return snapshot.rollout_message or f"{d.kind} {d.name}", {
        "resourceType": d.kind,
        "resourceName": d.name,
        "namespace": d.namespace,
        "status": snapshot.rollout_message,
        "replicas": {
            "desired": d.desired_replicas,
            "ready": d.ready_replicas,
            "available": d.available_replicas,
            "updated": d.updated_replicas,
        },
        "conditions": _conditions(d.conditions),
    }


def _ingresses(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    items = [i.model_dump(mode="json") for i in snapshot.ingresses]
    return f"{len(items)} ingresses", {"count": len(items), "ingresses": items}


def _pvcs(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    problems = sum(1 for p in snapshot.pvcs if p.phase != "Bound")
    total = len(snapshot.pvcs)
    return f"{total - problems}/{total} PVCs bound", {
        "count": total,
        "healthy": total - problems,
        "problems": problems,
        "pvcs": [p.model_dump(mode="json") for p in snapshot.pvcs],
    }


def _releases(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    items = [r.model_dump(mode="json") for r in snapshot.releases]
    return f"{len(items)} releases", {"count": len(items), "releases": items}


def _history(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    history = [h.model_dump(mode="json") for h in snapshot.release_history]
    latest = snapshot.release_history[-1] if snapshot.release_history else None
    summary = f"Revision {latest.revision}: {latest.status}" if latest else "No history"
    return summary, {"namespace": snapshot.scope, "history": history}


def _deployment(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    if not snapshot.deployments:
        return "Deployment not found", {}
    d = snapshot.deployments[0]
    restarts = sum(p.restart_count for p in owned_pods(d, snapshot.pods))
    return f"Deployment {d.namespace}/{d.name}: {d.ready_replicas}/{d.desired_replicas} ready", {
        "name": d.name,
        "namespace": d.namespace,
        "replicas": {
            "desired": d.desired_replicas,
            "updated": d.updated_replicas,
            "ready": d.ready_replicas,
            "available": d.available_replicas,
            "unavailable": d.unavailable_replicas,
        },
        "strategy": d.strategy,
        "conditions": _conditions(d.conditions),
        "podRestarts": restarts,
        "recentEvents": [
            {"reason": e.reason, "message": e.message, "type": e.type} for e in snapshot.events[-5:]
        ],
    }


def _memory(snapshot: Snapshot, issues: list[Issue], config: RuleConfig) -> tuple[str, dict[str, Any]]:
    ooms = [
        {
            "pod": f"{p.namespace}/{p.name}",
            "container": c.name,
            "exitCode": term.exit_code,
            "finishedAt": term.finished_at.isoformat() if term.finished_at else None,
        }
        for p in snapshot.pods
        for c in p.container_statuses
        if (term := oom_termination(c.last_terminated, c.terminated)) is not None
    ]
    note = None if snapshot.usage else "Metrics server is required for live usage data"
    return f"{len(ooms)} OOMKilled containers", {
        "namespace": snapshot.scope,
        "oomEventsFound": len(ooms),
        "details": ooms,
        "note": note,
    }


SUMMARIZERS: dict[ToolName, Summarizer] = {
    ToolName.DIAGNOSE_CLUSTER: _cluster,
    ToolName.CHECK_POD_HEALTH: _pod_health,
    ToolName.ANALYZE_EVENTS: _events,
    ToolName.TROUBLESHOOT_POD: _troubleshoot,
    ToolName.LIST_FAILING_PODS: _failing_pods,
    ToolName.GET_CLUSTER_OVERVIEW: _overview,
    ToolName.ANALYZE_LOGS: _logs,
    ToolName.GET_NETWORK_POLICIES: _network_policies,
    ToolName.CHECK_SERVICE_ENDPOINTS: _service,
    ToolName.GET_CONFIGMAPS: _config_maps,
    ToolName.GET_SECRETS: _secrets,
    ToolName.ROLLOUT_STATUS: _rollout,
    ToolName.GET_INGRESS: _ingresses,
    ToolName.CHECK_PVC_STATUS: _pvcs,
    ToolName.HELM_LIST: _releases,
    ToolName.HELM_HISTORY: _history,
    ToolName.ANALYZE_DEPLOYMENT: _deployment,
    ToolName.ANALYZE_MEMORY_USAGE: _memory,
}


def rule_config(settings: Settings | None) -> RuleConfig:
    if settings is None:
        return RuleConfig()
    return RuleConfig(
        restart_threshold=settings.restart_threshold,
        event_issue_limit=settings.event_issue_limit,
    )


def diagnose(
    snapshot: Snapshot,
    settings: Settings | None = None,
    tool: ToolName = ToolName.DIAGNOSE_CLUSTER,
) -> DiagnosticResult:
    """Classify a snapshot into prioritized issues and summarize it for ``tool``.

    Pure and deterministic: the same snapshot always yields the same result.
    """
    config = rule_config(settings)
    issues = evaluate(snapshot, config)
    summarize = SUMMARIZERS.get(tool, _cluster)
    summary, metrics = summarize(snapshot, issues, config)
    if snapshot.is_partial:
        metrics = {**metrics, "partialFailures": dict(snapshot.partial_failures)}
        logger.debug("diagnosing partial snapshot: %s", ", ".join(snapshot.partial_failures))
    return DiagnosticResult.from_issues(summary, issues, metrics)
