"""Service facade: owns the CLI adapter, result cache and live log subscriptions."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from kube_lensy.cache import GLOBAL_SCOPE, ResultCache, make_key
from kube_lensy.catalog import CACHEABLE_TOOLS, REQUIRED_PARAMS, ToolName, ToolParams
from kube_lensy.config import Settings, get_settings
from kube_lensy.diagnosis import DiagnosticResult, diagnose
from kube_lensy.errors import KubeLensyError, ToolExecutionError
from kube_lensy.observation import ClusterCLI, ClusterContext, PodRef, Snapshot, SnapshotCollector
from kube_lensy.observation.models import NamespaceRef
from kube_lensy.streaming import LogLine, LogSubscription, TailStreamCoordinator, parse_text
from kube_lensy.tools import ToolResult, route, run_tool

logger = logging.getLogger(__name__)


def _coerce_params(params: ToolParams | Mapping[str, Any] | None) -> ToolParams:
    if isinstance(params, ToolParams):
        return params
    return ToolParams.model_validate(dict(params or {}))


class ObservabilityService:
    """Entry point for diagnostics and log viewing against one kubeconfig.

    The cache and the subscription registry live here and nowhere else;
    construct one service per process and call ``aclose`` when done.
    """

    def __init__(self, settings: Settings | None = None, cli: ClusterCLI | None = None) -> None:
        self.settings = settings or get_settings()
        self.cli = cli or ClusterCLI(
            kubectl_bin=self.settings.kubectl_bin,
            helm_bin=self.settings.helm_bin,
            context=self.settings.context,
        )
        self.collector = SnapshotCollector(self.cli, self.settings)
        self.cache = ResultCache(max_entries=self.settings.cache_max_entries)
        self.streams = TailStreamCoordinator(self.collector, self.settings)
        self._manual_namespaces: dict[str, set[str]] = {}

    async def current_context(self) -> str:
        key = make_key(GLOBAL_SCOPE, "current_context")
        return await self.cache.cached(key, self.settings.cluster_list_ttl, self.collector.current_context)

    # Diagnostics

    async def collect(self, tool: ToolName | str, params: ToolParams | Mapping[str, Any] | None = None) -> Snapshot:
        tool = ToolName(tool)
        p = _coerce_params(params)
        p.require(tool, *REQUIRED_PARAMS.get(tool, ()))
        return await self.collector.collect(tool, p)

    def diagnose(self, snapshot: Snapshot, tool: ToolName | str = ToolName.DIAGNOSE_CLUSTER) -> DiagnosticResult:
        return diagnose(snapshot, self.settings, ToolName(tool))

    async def run_diagnostic_tool(
        self, name: ToolName | str, params: ToolParams | Mapping[str, Any] | None = None
    ) -> ToolResult:
        """Run one catalog tool; any failure surfaces as a single ToolExecutionError."""
        try:
            tool = ToolName(name)
        except ValueError:
            raise ToolExecutionError(str(name), "unknown tool") from None
        try:
            p = _coerce_params(params)
        except ValidationError as e:
            raise ToolExecutionError(tool.value, f"invalid parameters: {e}") from e

        try:
            if tool not in CACHEABLE_TOOLS:
                return await run_tool(self.collector, self.settings, tool, p)
            scope = await self.current_context()
            key = make_key(scope, tool.value, p.key_items())
            return await self.cache.cached(
                key,
                self.settings.tool_result_ttl,
                lambda: run_tool(self.collector, self.settings, tool, p),
            )
        except ToolExecutionError:
            raise
        except KubeLensyError as e:
            logger.debug("%s failed", tool.value, exc_info=True)
            raise ToolExecutionError(tool.value, str(e)) from e

    def route(self, free_text: str, hints: Mapping[str, Any] | None = None) -> tuple[ToolName, dict[str, Any]]:
        return route(free_text, dict(hints or {}))

    async def ask(
        self, free_text: str, hints: Mapping[str, Any] | None = None
    ) -> tuple[ToolName, ToolResult]:
        """Route free text to a tool and run it."""
        tool, params = self.route(free_text, hints)
        return tool, await self.run_diagnostic_tool(tool, params)

    # Log-viewer reads

    async def list_clusters(self) -> list[ClusterContext]:
        key = make_key(GLOBAL_SCOPE, "list_clusters")
        return await self.cache.cached(key, self.settings.cluster_list_ttl, self.collector.list_contexts)

    async def use_context(self, name: str) -> None:
        """Switch the active context and drop results cached for the old and new one."""
        previous = await self.current_context()
        await self.collector.use_context(name)
        self.cache.invalidate_scope(GLOBAL_SCOPE)
        self.cache.invalidate_scope(previous)
        self.cache.invalidate_scope(name)
        logger.info("switched context %s -> %s", previous, name)

    async def list_namespaces(self) -> list[NamespaceRef]:
        cluster = await self.current_context()

        async def fetch() -> list[NamespaceRef]:
            names = await self.collector.list_namespaces()
            extra = sorted(self._manual_namespaces.get(cluster, set()) - set(names))
            return [NamespaceRef(name=n, cluster=cluster) for n in [*names, *extra]]

        key = make_key(cluster, "list_namespaces")
        return await self.cache.cached(key, self.settings.namespace_list_ttl, fetch)

    async def add_namespace(self, name: str) -> None:
        """Register a namespace the user can read but not list."""
        cluster = await self.current_context()
        self._manual_namespaces.setdefault(cluster, set()).add(name)
        self.cache.invalidate_scope(cluster)

    async def list_pods(self, namespace: str | None = None) -> list[PodRef]:
        cluster = await self.current_context()
        key = make_key(cluster, "list_pods", namespace or "")
        return await self.cache.cached(
            key,
            self.settings.pod_list_ttl,
            lambda: self.collector.list_pods(namespace, cluster),
        )

    async def fetch_logs(
        self,
        namespace: str,
        pod: str,
        container: str | None = None,
        tail: int | None = None,
    ) -> list[LogLine]:
        """One-shot log read, falling back to the previous container; never cached."""
        cluster = await self.current_context()
        policy = self.collector.logs_policy(pod, namespace, container, tail or self.settings.initial_tail_lines)
        text = await policy.run()
        return parse_text(text, namespace=namespace, pod=pod, container=container, cluster=cluster)

    async def subscribe_logs(self, namespace: str, pod: str, container: str | None = None) -> LogSubscription:
        cluster = await self.current_context()
        return await self.streams.subscribe(namespace, pod, container, cluster=cluster)

    async def aclose(self) -> None:
        self.cache.invalidate_all()
        await self.streams.close_all()
