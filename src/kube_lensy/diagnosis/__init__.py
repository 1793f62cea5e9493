"""Diagnosis layer: deterministic rule-based classification of snapshots."""

from kube_lensy.diagnosis.analyzer import diagnose
from kube_lensy.diagnosis.models import (
    DiagnosticResult,
    DiagnosticStatus,
    Issue,
    RawText,
    Severity,
)
from kube_lensy.diagnosis.rules import RuleConfig, evaluate

__all__ = [
    "diagnose",
    "evaluate",
    "DiagnosticResult",
    "DiagnosticStatus",
    "Issue",
    "RawText",
    "RuleConfig",
    "Severity",
]
