from kube_lensy.catalog import ToolName
from kube_lensy.diagnosis import DiagnosticStatus, diagnose
from kube_lensy.diagnosis.analyzer import (
    UNAVAILABLE_LOGS,
    extract_errors,
    pod_recommendations,
    summarize_logs,
)
from kube_lensy.observation.models import (
    ContainerStatus,
    Deployment,
    Node,
    Condition,
    Pod,
    ReleaseRevision,
    Snapshot,
    Termination,
)


def _pod(name, phase="Running", ready=True, restarts=0, **status):
    return Pod(
        name=name,
        namespace="default",
        phase=phase,
        labels={"app": "web"},
        container_statuses=[
            ContainerStatus(name="main", ready=ready, restart_count=restarts, state="running", **status)
        ],
    )


LOG_TEXT = "\n".join(
    [
        "2024-01-01T00:00:00Z starting server",
        "2024-01-01T00:00:01Z WARN slow response",
        "2024-01-01T00:00:02Z ERROR connection refused",
        "2024-01-01T00:00:03Z panic: nil pointer",
    ]
)


class TestLogHelpers:

    def test_summarize_logs(self):
        assert summarize_logs(LOG_TEXT) == "Total lines: 4, Errors: 2, Warnings: 1"

    def test_extract_errors_keeps_most_recent(self):
        text = "\n".join(f"error {i}" for i in range(15))

        errors = extract_errors(text)

        assert len(errors) == 10
        assert errors[-1] == "error 14"


class TestDiagnoseCluster:

    def test_counts_healthy_pods(self):
        snapshot = Snapshot(pods=[_pod("a"), _pod("b", ready=False), Pod(name="c", namespace="default", phase="Pending")])

        result = diagnose(snapshot)

        assert result.metrics == {"totalPods": 3, "healthyPods": 1, "unhealthyPods": 2}
        assert result.summary.startswith("Cluster Health: WARNING\nTotal Pods: 3")
        assert "Issues Found: 2" in result.summary

    def test_partial_snapshot_is_reported(self):
        snapshot = Snapshot(pods=[_pod("a")], partial_failures={"events": "kubectl timed out after 30s"})

        result = diagnose(snapshot)

        assert result.status is DiagnosticStatus.HEALTHY
        assert result.metrics["partialFailures"] == {"events": "kubectl timed out after 30s"}

    def test_complete_snapshot_has_no_partial_key(self):
        result = diagnose(Snapshot(pods=[_pod("a")]))
        assert "partialFailures" not in result.metrics

    def test_settings_threshold(self, settings):
        tuned = settings.model_copy(update={"restart_threshold": 1})

        result = diagnose(Snapshot(pods=[_pod("a", restarts=2)]), tuned)

        assert result.issues[0].message == "High restart count: 2"

    def test_recommendations_follow_settings_threshold(self, settings):
        tuned = settings.model_copy(update={"restart_threshold": 1})
        snapshot = Snapshot(pods=[_pod("a", restarts=2)])

        tuned_result = diagnose(snapshot, tuned, ToolName.CHECK_POD_HEALTH)
        default_result = diagnose(snapshot, settings, ToolName.CHECK_POD_HEALTH)

        assert tuned_result.metrics["recommendations"] == [
            "Container main: High restart count, investigate stability issues"
        ]
        assert default_result.metrics["recommendations"] == ["Pod appears healthy"]


class TestToolSummaries:

    def test_list_failing_pods(self):
        snapshot = Snapshot(
            pods=[_pod("ok"), _pod("flaky", restarts=1), Pod(name="stuck", namespace="default", phase="Pending")]
        )

        result = diagnose(snapshot, tool=ToolName.LIST_FAILING_PODS)

        assert result.metrics["count"] == 2
        assert [p["name"] for p in result.metrics["pods"]] == ["flaky", "stuck"]

    def test_overview(self):
        snapshot = Snapshot(
            pods=[_pod("a"), Pod(name="b", namespace="default", phase="Failed")],
            nodes=[Node(name="n1", conditions=[Condition(type="Ready", status="True")]), Node(name="n2")],
            namespace_count=4,
        )

        result = diagnose(snapshot, tool=ToolName.GET_CLUSTER_OVERVIEW)

        cluster = result.metrics["cluster"]
        assert cluster["nodes"] == {"total": 2, "ready": 1}
        assert cluster["namespaces"] == 4
        assert cluster["pods"] == {"total": 2, "running": 1, "pending": 0, "failed": 1}

    def test_troubleshoot_without_logs(self):
        snapshot = Snapshot(scope="default", pods=[_pod("web-1", ready=False)])

        result = diagnose(snapshot, tool=ToolName.TROUBLESHOOT_POD)

        assert result.metrics["logSummary"] == summarize_logs(UNAVAILABLE_LOGS)
        assert "Container main is not ready" in result.metrics["findings"]

    def test_analyze_logs(self):
        snapshot = Snapshot(scope="default", logs={"web-1/main": LOG_TEXT})

        result = diagnose(snapshot, tool=ToolName.ANALYZE_LOGS)

        assert result.summary == "Total lines: 4, Errors: 2, Warnings: 1"
        assert result.metrics["podName"] == "web-1"
        assert result.metrics["container"] == "main"
        assert len(result.metrics["errors"]) == 2

    def test_memory_counts_oom(self):
        term = Termination(reason="OOMKilled", exit_code=137)
        snapshot = Snapshot(scope="default", pods=[_pod("a", last_terminated=term), _pod("b")])

        result = diagnose(snapshot, tool=ToolName.ANALYZE_MEMORY_USAGE)

        assert result.metrics["oomEventsFound"] == 1
        assert result.metrics["details"][0]["exitCode"] == 137
        assert result.metrics["note"] == "Metrics server is required for live usage data"
        assert result.status is DiagnosticStatus.CRITICAL

    def test_deployment_restarts(self):
        deployment = Deployment(name="web", namespace="default", desired_replicas=2, ready_replicas=2)
        snapshot = Snapshot(scope="default", deployments=[deployment], pods=[_pod("web-1", restarts=3)])

        result = diagnose(snapshot, tool=ToolName.ANALYZE_DEPLOYMENT)

        assert result.metrics["podRestarts"] == 3
        assert result.summary == "Deployment default/web: 2/2 ready"

    def test_helm_history_latest(self):
        history = [ReleaseRevision(revision=1, status="superseded"), ReleaseRevision(revision=2, status="deployed")]

        result = diagnose(Snapshot(scope="default", release_history=history), tool=ToolName.HELM_HISTORY)

        assert result.summary == "Revision 2: deployed"


def test_pod_recommendations_healthy():
    assert pod_recommendations(_pod("a")) == ["Pod appears healthy"]


def test_pod_recommendations_pending():
    recs = pod_recommendations(Pod(name="a", namespace="default", phase="Pending"))
    assert "Check if there are sufficient resources in the cluster" in recs
