import pytest

from conftest import exit_error, items, make_event, make_pod
from kube_lensy.catalog import ToolName, ToolParams
from kube_lensy.errors import CLIParseError, CLITimeout, CollectionError, ToolParameterError
from kube_lensy.observation.collector import parse_top_pods
from kube_lensy.observation.models import ALL_NAMESPACES

FORBIDDEN = 'Error from server (Forbidden): events is forbidden: User "dev" cannot list resource "events"'


class TestDiagnoseClusterCollection:

    @pytest.mark.asyncio
    async def test_builds_typed_records(self, fake_cli, collector):
        fake_cli.on("get", "pods", result=items(make_pod(), make_pod("stuck", phase="Pending", ready=False)))
        fake_cli.on("get", "events", result=items(make_event()))

        snapshot = await collector.collect(ToolName.DIAGNOSE_CLUSTER, ToolParams())

        assert snapshot.scope == ALL_NAMESPACES
        assert [p.name for p in snapshot.pods] == ["test-pod", "stuck"]
        assert snapshot.pods[0].container_statuses[0].state == "running"
        assert snapshot.pods[1].phase == "Pending"
        assert snapshot.events[0].involved_object == "Pod/test-pod"
        assert not snapshot.is_partial
        assert fake_cli.calls_with("--all-namespaces")

    @pytest.mark.asyncio
    async def test_namespaced_scope(self, fake_cli, collector):
        fake_cli.on("get", "pods", result=items(make_pod()))
        fake_cli.on("get", "events", result=items())

        snapshot = await collector.collect(ToolName.DIAGNOSE_CLUSTER, ToolParams(namespace="prod"))

        assert snapshot.scope == "prod"
        assert fake_cli.calls_with("get", "pods", "-n", "prod")

    @pytest.mark.asyncio
    async def test_forbidden_events_are_empty_not_partial(self, fake_cli, collector):
        fake_cli.on("get", "pods", result=items(make_pod()))
        fake_cli.on("get", "events", result=exit_error(FORBIDDEN))

        snapshot = await collector.collect(ToolName.DIAGNOSE_CLUSTER, ToolParams())

        assert snapshot.events == []
        assert len(snapshot.pods) == 1
        assert snapshot.partial_failures == {}

    @pytest.mark.asyncio
    async def test_no_resources_found_is_empty(self, fake_cli, collector):
        fake_cli.on("get", "pods", result=exit_error("No resources found in default namespace."))
        fake_cli.on("get", "events", result=items())

        snapshot = await collector.collect(ToolName.DIAGNOSE_CLUSTER, ToolParams(namespace="default"))

        assert snapshot.pods == []

    @pytest.mark.asyncio
    async def test_non_essential_failure_is_recorded(self, fake_cli, collector):
        fake_cli.on("get", "pods", result=items(make_pod()))
        fake_cli.on("get", "events", result=CLITimeout("kubectl timed out after 30s"))

        snapshot = await collector.collect(ToolName.DIAGNOSE_CLUSTER, ToolParams())

        assert snapshot.events == []
        assert snapshot.is_partial
        assert "timed out" in snapshot.partial_failures["events"]

    @pytest.mark.asyncio
    async def test_essential_failure_raises(self, fake_cli, collector):
        fake_cli.on("get", "pods", result=exit_error("Unable to connect to the server"))
        fake_cli.on("get", "events", result=items())

        with pytest.raises(CollectionError) as exc_info:
            await collector.collect(ToolName.DIAGNOSE_CLUSTER, ToolParams())

        assert exc_info.value.collection == "pods"

    @pytest.mark.asyncio
    async def test_malformed_json_is_an_adapter_failure(self, fake_cli, collector):
        fake_cli.on("get", "pods", result="{oops")
        fake_cli.on("get", "events", result=items())

        with pytest.raises(CollectionError) as exc_info:
            await collector.collect(ToolName.DIAGNOSE_CLUSTER, ToolParams())

        assert isinstance(exc_info.value.cause, CLIParseError)

    @pytest.mark.asyncio
    async def test_missing_fields_default(self, fake_cli, collector):
        fake_cli.on("get", "pods", result=items({"metadata": {"name": "bare", "namespace": "default"}}))
        fake_cli.on("get", "events", result=items())

        snapshot = await collector.collect(ToolName.DIAGNOSE_CLUSTER, ToolParams())

        pod = snapshot.pods[0]
        assert pod.phase == "Unknown"
        assert pod.container_statuses == []


class TestPodCollections:

    @pytest.mark.asyncio
    async def test_pod_health_fetches_single_pod_and_its_events(self, fake_cli, collector):
        fake_cli.on("get", "pod", "web-1", result=make_pod("web-1"))
        fake_cli.on("get", "events", result=items(make_event(name="web-1")))

        snapshot = await collector.collect(
            ToolName.CHECK_POD_HEALTH, ToolParams(pod_name="web-1", namespace="default")
        )

        assert [p.name for p in snapshot.pods] == ["web-1"]
        assert fake_cli.calls_with("--field-selector=involvedObject.name=web-1")

    @pytest.mark.asyncio
    async def test_missing_pod_is_essential(self, fake_cli, collector):
        fake_cli.on("get", "pod", "gone", result=exit_error('Error from server (NotFound): pods "gone" not found'))
        fake_cli.on("get", "events", result=items())

        with pytest.raises(CollectionError):
            await collector.collect(ToolName.CHECK_POD_HEALTH, ToolParams(pod_name="gone", namespace="default"))

    @pytest.mark.asyncio
    async def test_troubleshoot_falls_back_to_previous_logs(self, fake_cli, collector):
        fake_cli.on("get", "pod", "web-1", result=make_pod("web-1", waiting_reason="CrashLoopBackOff"))
        fake_cli.on("get", "events", result=items())
        fake_cli.on(
            "logs",
            "web-1",
            result=exit_error('container "main" in pod "web-1" is waiting to start: CrashLoopBackOff'),
        )
        fake_cli.on("--previous", result="2024-01-01T00:00:00Z panic: boom\n")

        snapshot = await collector.collect(
            ToolName.TROUBLESHOOT_POD, ToolParams(pod_name="web-1", namespace="default")
        )

        assert "panic: boom" in snapshot.logs["web-1"]
        assert len(fake_cli.calls_with("logs", "web-1")) == 2

    @pytest.mark.asyncio
    async def test_troubleshoot_without_logs_is_partial(self, fake_cli, collector):
        fake_cli.on("get", "pod", "web-1", result=make_pod("web-1"))
        fake_cli.on("get", "events", result=items())
        fake_cli.on("logs", "web-1", result=exit_error("Unable to retrieve container logs"))

        snapshot = await collector.collect(
            ToolName.TROUBLESHOOT_POD, ToolParams(pod_name="web-1", namespace="default")
        )

        assert snapshot.logs == {}
        assert "logs" in snapshot.partial_failures


class TestOtherCollections:

    @pytest.mark.asyncio
    async def test_service_endpoints(self, fake_cli, collector, sample_service, sample_endpoints):
        fake_cli.on("get", "service", "web", result=sample_service)
        fake_cli.on("get", "endpoints", "web", result=sample_endpoints)

        snapshot = await collector.collect(
            ToolName.CHECK_SERVICE_ENDPOINTS, ToolParams(service_name="web", namespace="default")
        )

        svc = snapshot.service_endpoints[0]
        assert svc.cluster_ip == "10.0.0.10"
        assert [a.target for a in svc.ready_addresses] == ["web-1"]
        assert [a.ip for a in svc.not_ready_addresses] == ["10.1.0.6"]

    @pytest.mark.asyncio
    async def test_service_without_endpoints_object(self, fake_cli, collector, sample_service):
        fake_cli.on("get", "service", "web", result=sample_service)
        fake_cli.on("get", "endpoints", "web", result=exit_error('endpoints "web" not found'))

        snapshot = await collector.collect(
            ToolName.CHECK_SERVICE_ENDPOINTS, ToolParams(service_name="web", namespace="default")
        )

        assert snapshot.service_endpoints[0].ready_addresses == []
        assert "endpoints" in snapshot.partial_failures

    @pytest.mark.asyncio
    async def test_deployment_with_pods(self, fake_cli, collector, sample_deployment):
        fake_cli.on("get", "deployment", "web", result=sample_deployment)
        fake_cli.on("get", "pods", result=items(make_pod("web-1", labels={"app": "web"}, restarts=2)))
        fake_cli.on("get", "events", result=items())

        snapshot = await collector.collect(
            ToolName.ANALYZE_DEPLOYMENT, ToolParams(deployment_name="web", namespace="default")
        )

        deployment = snapshot.deployments[0]
        assert deployment.desired_replicas == 3
        assert deployment.unavailable_replicas == 1
        assert deployment.strategy == "RollingUpdate"
        assert fake_cli.calls_with("-l", "app=web")

    @pytest.mark.asyncio
    async def test_rollout_status_keeps_error_message(self, fake_cli, collector, sample_deployment):
        fake_cli.on("get", "deployment", "web", result=sample_deployment)
        fake_cli.on("rollout", "status", result=exit_error("error: timed out waiting for the condition"))

        snapshot = await collector.collect(
            ToolName.ROLLOUT_STATUS,
            ToolParams(resource_type="deployment", resource_name="web", namespace="default"),
        )

        assert "timed out waiting" in snapshot.rollout_message
        assert snapshot.deployments[0].name == "web"

    @pytest.mark.asyncio
    async def test_rollout_status_rejects_other_kinds(self, collector):
        with pytest.raises(ToolParameterError):
            await collector.collect(
                ToolName.ROLLOUT_STATUS,
                ToolParams(resource_type="pod", resource_name="web", namespace="default"),
            )

    @pytest.mark.asyncio
    async def test_helm_releases(self, fake_cli, collector):
        fake_cli.on(
            "list",
            "-A",
            result=[
                {"name": "web", "namespace": "default", "revision": "3", "status": "deployed", "chart": "web-1.0.0"},
                {"name": "db", "namespace": "data", "revision": "1", "status": "failed", "chart": "db-2.0.0"},
            ],
        )

        snapshot = await collector.collect(ToolName.HELM_LIST, ToolParams())

        assert [(r.name, r.status) for r in snapshot.releases] == [("web", "deployed"), ("db", "failed")]

    @pytest.mark.asyncio
    async def test_named_config_map(self, fake_cli, collector):
        fake_cli.on(
            "get",
            "configmap",
            "settings",
            result={"metadata": {"name": "settings", "namespace": "default"}, "data": {"a": "1", "b": "2"}},
        )

        snapshot = await collector.collect(
            ToolName.GET_CONFIGMAPS, ToolParams(namespace="default", config_map_name="settings")
        )

        assert snapshot.config_maps[0].data_keys == ["a", "b"]

    @pytest.mark.asyncio
    async def test_secrets_never_carry_values(self, fake_cli, collector):
        fake_cli.on(
            "get",
            "secret",
            result=items({"metadata": {"name": "creds", "namespace": "default"}, "type": "Opaque", "data": {"password": "aHVudGVyMg=="}}),
        )

        snapshot = await collector.collect(ToolName.GET_SECRETS, ToolParams(namespace="default"))

        secret = snapshot.secrets[0]
        assert secret.data_keys == ["password"]
        assert "aHVudGVyMg==" not in secret.model_dump_json()

    @pytest.mark.asyncio
    async def test_memory_usage_without_metrics_server(self, fake_cli, collector):
        fake_cli.on("get", "pods", result=items(make_pod(memory_limit="128Mi")))
        fake_cli.on("top", "pods", result=exit_error("error: Metrics API not available"))

        snapshot = await collector.collect(ToolName.ANALYZE_MEMORY_USAGE, ToolParams())

        assert snapshot.usage == []
        assert "usage" in snapshot.partial_failures
        assert snapshot.pods[0].containers[0].limits == {"memory": "128Mi"}


class TestViewerReads:

    @pytest.mark.asyncio
    async def test_list_contexts_marks_current(self, fake_cli, collector):
        fake_cli.on("get-contexts", result="dev\nprod\n")
        fake_cli.on("current-context", result="prod\n")

        contexts = await collector.list_contexts()

        assert [(c.name, c.status) for c in contexts] == [("dev", "disconnected"), ("prod", "connected")]

    @pytest.mark.asyncio
    async def test_pinned_context_is_current(self, fake_cli, collector):
        fake_cli.context = "staging"

        assert await collector.current_context() == "staging"
        assert fake_cli.calls == []

    @pytest.mark.asyncio
    async def test_namespaces_forbidden_fall_back_to_default(self, fake_cli, collector):
        fake_cli.on("get", "namespaces", result=exit_error("namespaces is forbidden"))

        assert await collector.list_namespaces() == ["default"]

    @pytest.mark.asyncio
    async def test_namespaces_other_errors_propagate(self, fake_cli, collector):
        fake_cli.on("get", "namespaces", result=exit_error("Unable to connect to the server"))

        with pytest.raises(Exception, match="Unable to connect"):
            await collector.list_namespaces()

    @pytest.mark.asyncio
    async def test_list_pods(self, fake_cli, collector):
        fake_cli.on("get", "pods", result=items(make_pod("web-1", restarts=3)))

        pods = await collector.list_pods("default", "prod")

        ref = pods[0]
        assert (ref.name, ref.cluster, ref.status) == ("web-1", "prod", "Running")
        assert ref.containers == ["main"]
        assert ref.restart_count == 3
        assert ref.ready == "1/1"

    @pytest.mark.asyncio
    async def test_list_pods_forbidden_is_empty(self, fake_cli, collector):
        fake_cli.on("get", "pods", result=exit_error("pods is forbidden"))

        assert await collector.list_pods("kube-system", "prod") == []


def test_parse_top_pods_with_containers():
    text = (
        "POD     NAME   CPU(cores)   MEMORY(bytes)\n"
        "web-1   main   3m           96Mi\n"
        "web-1   sidecar 1m          12Mi\n"
    )

    samples = parse_top_pods(text, "default")

    assert [(s.pod, s.container, s.memory) for s in samples] == [
        ("web-1", "main", "96Mi"),
        ("web-1", "sidecar", "12Mi"),
    ]


def test_parse_top_pods_all_namespaces():
    text = "NAMESPACE   POD     NAME   CPU(cores)   MEMORY(bytes)\nprod        web-1   main   3m   96Mi\n"

    samples = parse_top_pods(text, None)

    assert samples[0].namespace == "prod"
    assert samples[0].cpu == "3m"


def test_parse_top_pods_empty():
    assert parse_top_pods("", None) == []
