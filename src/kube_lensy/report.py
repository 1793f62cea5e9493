"""Report templates and rich rendering for tool results and log lines."""

from __future__ import annotations

import json
from collections.abc import Iterable

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from kube_lensy.diagnosis import DiagnosticResult, DiagnosticStatus, RawText, Severity
from kube_lensy.observation import ClusterContext, PodRef
from kube_lensy.observation.describe import DescribeSection
from kube_lensy.observation.models import NamespaceRef
from kube_lensy.streaming import LogLevel, LogLine

REPORT_HEADER = """
# {title}
"""

REPORT_SECTION_SUMMARY = """
## Summary
{summary}
"""

REPORT_SECTION_ISSUES = """
## Issues
{issues}
"""

REPORT_NO_ISSUE = """
## Result
No issues detected.
"""

REPORT_SECTION_METRICS = """
## Details
```json
{metrics}
```
"""

STATUS_STYLES = {
    DiagnosticStatus.HEALTHY: "green",
    DiagnosticStatus.WARNING: "yellow",
    DiagnosticStatus.CRITICAL: "red",
}

LEVEL_STYLES = {
    LogLevel.ERROR: "red",
    LogLevel.WARN: "yellow",
    LogLevel.INFO: "",
    LogLevel.DEBUG: "dim",
}

SEVERITY_MARKS = {
    Severity.CRITICAL: "CRITICAL",
    Severity.HIGH: "HIGH",
    Severity.MEDIUM: "MEDIUM",
    Severity.LOW: "LOW",
}


def build_report(tool: str, result: DiagnosticResult) -> str:
    """Markdown report for a diagnostic result."""
    parts = [REPORT_HEADER.format(title=tool.replace("_", " ").title())]
    parts.append(REPORT_SECTION_SUMMARY.format(summary=result.summary.replace("\n", "  \n")))
    if result.issues:
        lines = []
        for issue in result.issues:
            line = f"- **{SEVERITY_MARKS[issue.severity]}** `{issue.resource}`: {issue.message}"
            if issue.recommendation:
                line += f"  \n  _{issue.recommendation}_"
            lines.append(line)
        parts.append(REPORT_SECTION_ISSUES.format(issues="\n".join(lines)))
    else:
        parts.append(REPORT_NO_ISSUE)
    if result.metrics:
        parts.append(REPORT_SECTION_METRICS.format(metrics=json.dumps(result.metrics, indent=2, default=str)))
    return "\n".join(parts)


def _print_sections(sections: list[DescribeSection], c: Console) -> None:
    for section in sections:
        if section.is_table and isinstance(section.content, list):
            table = Table(title=section.title, show_header=False)
            table.add_column("Key", style="bold")
            table.add_column("Value")
            for row in section.content:
                table.add_row(row.get("key", ""), row.get("value", ""))
            c.print(table)
        else:
            c.print(Panel(str(section.content), title=section.title, border_style="cyan"))


def print_result(tool: str, result: DiagnosticResult | RawText, console: Console | None = None) -> None:
    """Print a tool result to console using Rich."""
    c = console or Console()
    if isinstance(result, RawText):
        if result.sections:
            _print_sections(result.sections, c)
        else:
            c.print(Panel(result.text, title=tool, border_style="blue"))
        return
    style = STATUS_STYLES[result.status]
    c.print(Panel(Markdown(build_report(tool, result)), title="kube-lensy", border_style=style))
    c.print(f"\n[bold]Status:[/bold] [{style}]{result.status.value}[/{style}]")


def print_clusters(clusters: Iterable[ClusterContext], console: Console | None = None) -> None:
    c = console or Console()
    table = Table(title="Contexts")
    table.add_column("Name")
    table.add_column("Status")
    for cluster in clusters:
        style = "green" if cluster.status == "connected" else "dim"
        table.add_row(cluster.name, f"[{style}]{cluster.status}[/{style}]")
    c.print(table)


def print_namespaces(namespaces: Iterable[NamespaceRef], console: Console | None = None) -> None:
    c = console or Console()
    table = Table(title="Namespaces")
    table.add_column("Name")
    table.add_column("Cluster", style="dim")
    for ns in namespaces:
        table.add_row(ns.name, ns.cluster)
    c.print(table)


def print_pods(pods: Iterable[PodRef], console: Console | None = None) -> None:
    c = console or Console()
    table = Table(title="Pods")
    for column in ("Namespace", "Name", "Ready", "Status", "Restarts", "Containers"):
        table.add_column(column)
    for pod in pods:
        table.add_row(
            pod.namespace,
            pod.name,
            pod.ready,
            pod.status,
            str(pod.restart_count),
            ", ".join(pod.containers),
        )
    c.print(table)


def print_log_lines(lines: Iterable[LogLine], console: Console | None = None) -> None:
    c = console or Console()
    for line in lines:
        style = LEVEL_STYLES[line.derived_level]
        stamp = line.timestamp.strftime("%H:%M:%S.%f")[:-3]
        c.print(f"[dim]{stamp}[/dim] ", end="")
        c.print(line.raw_message, style=style or None, markup=False, highlight=False)
