"""Structured outputs from the diagnosis layer."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from kube_lensy.observation.describe import DescribeSection


class Severity(str, Enum):
    """Issue severity, lowest to highest."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RANK[self]


_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2, Severity.CRITICAL: 3}


class DiagnosticStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class Issue(BaseModel):
    """A single classified finding."""

    model_config = ConfigDict(frozen=True)

    severity: Severity
    resource: str = Field(..., description="Resource the issue is about, e.g. pod/web-1")
    message: str = Field(..., description="What is wrong")
    recommendation: str | None = Field(default=None, description="Suggested next step")


def status_for(issues: list[Issue]) -> DiagnosticStatus:
    """critical iff any issue is critical, else warning iff any issue, else healthy."""
    if any(i.severity is Severity.CRITICAL for i in issues):
        return DiagnosticStatus.CRITICAL
    if issues:
        return DiagnosticStatus.WARNING
    return DiagnosticStatus.HEALTHY


class DiagnosticResult(BaseModel):
    """Result of running the rule engine over a snapshot."""

    model_config = ConfigDict(frozen=True)

    status: DiagnosticStatus
    summary: str = Field(..., description="One-line summary for the tool that produced it")
    issues: list[Issue] = Field(default_factory=list, description="Highest severity first")
    metrics: dict[str, Any] | None = Field(
        default=None,
        description="Tool-specific counters and listings",
    )

    @classmethod
    def from_issues(
        cls, summary: str, issues: list[Issue], metrics: dict[str, Any] | None = None
    ) -> DiagnosticResult:
        return cls(status=status_for(issues), summary=summary, issues=issues, metrics=metrics)


class RawText(BaseModel):
    """Output of a text-only tool (describe, exec, usage tables)."""

    model_config = ConfigDict(frozen=True)

    tool: str
    text: str
    sections: list[DescribeSection] | None = None
