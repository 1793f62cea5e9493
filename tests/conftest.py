import asyncio
import json
from typing import Any

import pytest

from kube_lensy.config import Settings
from kube_lensy.errors import CLIError, CLIExitError
from kube_lensy.observation.adapter import ClusterCLI
from kube_lensy.observation.collector import SnapshotCollector


class FakeProcess:
    """Stands in for a ``kubectl logs -f`` process."""

    def __init__(self):
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.returncode = None
        self.killed = False
        self._exited = asyncio.Event()

    def push(self, text: str) -> None:
        self.stdout.feed_data(text.encode())

    def exit(self, code: int = 0, stderr: str = "") -> None:
        if stderr:
            self.stderr.feed_data(stderr.encode())
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self.returncode = code
        self._exited.set()

    def kill(self) -> None:
        self.killed = True
        if self.returncode is None:
            self.exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeCLI(ClusterCLI):
    """In-memory adapter: answers invocations whose argv contains a registered fragment."""

    def __init__(self, context=None):
        super().__init__(context=context)
        self.responses: list[tuple[tuple[str, ...], Any]] = []
        self.calls: list[list[str]] = []
        self.spawned: list[list[str]] = []
        self.processes: list[FakeProcess] = []
        self.spawn_error: CLIError | None = None

    def on(self, *fragment: str, result: Any) -> None:
        self.responses.append((fragment, result))

    def calls_with(self, *fragment: str) -> list[list[str]]:
        return [argv for argv in self.calls if _contains(argv, fragment)]

    async def invoke(self, command, timeout):
        argv = list(command)
        self.calls.append(argv)
        for fragment, result in reversed(self.responses):
            if not _contains(argv, fragment):
                continue
            if callable(result):
                result = result(argv)
            if isinstance(result, BaseException):
                raise result
            if isinstance(result, (dict, list)):
                return json.dumps(result)
            return result
        raise CLIExitError(1, f"no fake response for {' '.join(argv)}", argv)

    async def spawn(self, command):
        argv = list(command)
        self.spawned.append(argv)
        if self.spawn_error is not None:
            raise self.spawn_error
        process = FakeProcess()
        self.processes.append(process)
        return process


def _contains(argv: list[str], fragment: tuple[str, ...]) -> bool:
    n = len(fragment)
    return any(tuple(argv[i : i + n]) == fragment for i in range(len(argv) - n + 1))


def exit_error(stderr: str, code: int = 1) -> CLIExitError:
    return CLIExitError(code, stderr, ["kubectl"])


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        flush_window=0.0,
        poll_interval=3600.0,
        tool_result_ttl=5.0,
    )


@pytest.fixture
def fake_cli():
    return FakeCLI()


@pytest.fixture
def collector(fake_cli, settings):
    return SnapshotCollector(fake_cli, settings)


def make_pod(
    name: str = "test-pod",
    namespace: str = "default",
    phase: str = "Running",
    ready: bool = True,
    restarts: int = 0,
    waiting_reason: str | None = None,
    last_terminated: dict | None = None,
    labels: dict | None = None,
    memory_limit: str | None = None,
) -> dict:
    state: dict = {"running": {"startedAt": "2024-01-01T00:00:00Z"}}
    if waiting_reason:
        state = {"waiting": {"reason": waiting_reason, "message": f"{waiting_reason} message"}}
    container: dict = {"name": "main", "image": "nginx:latest", "ports": [{"containerPort": 8080}]}
    if memory_limit:
        container["resources"] = {"limits": {"memory": memory_limit}}
    status: dict = {
        "phase": phase,
        "conditions": [{"type": "Ready", "status": "True" if ready else "False"}],
        "containerStatuses": [
            {
                "name": "main",
                "ready": ready,
                "restartCount": restarts,
                "state": state,
                "lastState": {"terminated": last_terminated} if last_terminated else {},
            }
        ],
    }
    if phase == "Pending":
        status.pop("containerStatuses")
    return {
        "kind": "Pod",
        "apiVersion": "v1",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": f"uid-{name}",
            "labels": labels or {"app": "test"},
            "creationTimestamp": "2024-01-01T00:00:00Z",
        },
        "spec": {"nodeName": "node-1", "containers": [container]},
        "status": status,
    }


def make_event(
    reason: str = "BackOff",
    message: str = "Back-off restarting failed container",
    type_: str = "Warning",
    name: str = "test-pod",
    namespace: str = "default",
    timestamp: str = "2024-01-01T00:00:00Z",
) -> dict:
    return {
        "metadata": {"name": f"{name}.1", "namespace": namespace},
        "type": type_,
        "reason": reason,
        "message": message,
        "count": 1,
        "involvedObject": {"kind": "Pod", "name": name, "namespace": namespace},
        "lastTimestamp": timestamp,
    }


def items(*objs: dict) -> dict:
    return {"kind": "List", "apiVersion": "v1", "items": list(objs)}


@pytest.fixture
def sample_pod():
    return make_pod()


@pytest.fixture
def sample_pending_pod():
    return make_pod(name="stuck-pod", phase="Pending", ready=False)


@pytest.fixture
def sample_deployment():
    return {
        "kind": "Deployment",
        "apiVersion": "apps/v1",
        "metadata": {"name": "web", "namespace": "default", "labels": {"app": "web"}},
        "spec": {
            "replicas": 3,
            "selector": {"matchLabels": {"app": "web"}},
            "strategy": {"type": "RollingUpdate"},
        },
        "status": {
            "replicas": 3,
            "updatedReplicas": 3,
            "readyReplicas": 2,
            "availableReplicas": 2,
            "unavailableReplicas": 1,
            "conditions": [{"type": "Available", "status": "False", "reason": "MinimumReplicasUnavailable"}],
        },
    }


@pytest.fixture
def sample_service():
    return {
        "kind": "Service",
        "metadata": {"name": "web", "namespace": "default"},
        "spec": {
            "type": "ClusterIP",
            "clusterIP": "10.0.0.10",
            "ports": [{"name": "http", "port": 80, "targetPort": 8080}],
            "selector": {"app": "web"},
        },
    }


@pytest.fixture
def sample_endpoints():
    return {
        "kind": "Endpoints",
        "metadata": {"name": "web", "namespace": "default"},
        "subsets": [
            {
                "addresses": [{"ip": "10.1.0.5", "targetRef": {"kind": "Pod", "name": "web-1"}}],
                "notReadyAddresses": [{"ip": "10.1.0.6", "targetRef": {"kind": "Pod", "name": "web-2"}}],
            }
        ],
    }


@pytest.fixture
def sample_describe_output():
    return (
        "Name:             test-pod\n"
        "Namespace:        default\n"
        "Priority:         0\n"
        "Labels:           app=test\n"
        "                  version=v1\n"
        "Annotations:      <none>\n"
        "Status:           Running\n"
        "IP:               10.1.0.5\n"
        "Containers:\n"
        "  main:\n"
        "    Image:          nginx:latest\n"
        "    State:          Running\n"
        "Events:\n"
        "  Type    Reason     Age   From               Message\n"
        "  ----    ------     ----  ----               -------\n"
        "  Normal  Scheduled  10s   default-scheduler  Successfully assigned default/test-pod\n"
    )
