"""Observation layer: collect Kubernetes cluster state through kubectl and helm."""

from kube_lensy.observation.adapter import ClusterCLI
from kube_lensy.observation.collector import SnapshotCollector
from kube_lensy.observation.describe import DescribeSection, parse_describe
from kube_lensy.observation.fallback import FallbackPolicy
from kube_lensy.observation.models import (
    ALL_NAMESPACES,
    ClusterContext,
    Event,
    Pod,
    PodRef,
    Snapshot,
)

__all__ = [
    "ALL_NAMESPACES",
    "ClusterCLI",
    "ClusterContext",
    "DescribeSection",
    "Event",
    "FallbackPolicy",
    "Pod",
    "PodRef",
    "Snapshot",
    "SnapshotCollector",
    "parse_describe",
]
