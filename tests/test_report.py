from datetime import datetime, timezone

import pytest
from rich.console import Console

from kube_lensy.diagnosis import DiagnosticResult, Issue, RawText, Severity
from kube_lensy.main import _exit_code, _parse_args
from kube_lensy.observation.describe import parse_describe
from kube_lensy.report import build_report, print_log_lines, print_result
from kube_lensy.streaming import parse_line


@pytest.fixture
def console():
    return Console(record=True, width=120)


def _result():
    issues = [
        Issue(
            severity=Severity.HIGH,
            resource="Pod: default/stuck",
            message="Pod is stuck in Pending state",
            recommendation="Check for resource constraints or scheduling issues",
        )
    ]
    return DiagnosticResult.from_issues("Cluster Health: WARNING", issues, {"totalPods": 1})


class TestBuildReport:

    def test_issues_and_metrics(self):
        report = build_report("diagnose_cluster", _result())

        assert "# Diagnose Cluster" in report
        assert "**HIGH** `Pod: default/stuck`: Pod is stuck in Pending state" in report
        assert "_Check for resource constraints or scheduling issues_" in report
        assert '"totalPods": 1' in report

    def test_no_issues(self):
        report = build_report("list_failing_pods", DiagnosticResult.from_issues("0 failing pods", []))

        assert "No issues detected." in report
        assert "## Details" not in report


class TestPrinting:

    def test_print_diagnostic_result(self, console):
        print_result("diagnose_cluster", _result(), console)

        text = console.export_text()
        assert "Pod is stuck in Pending state" in text
        assert "Status: warning" in text

    def test_print_describe_sections(self, console, sample_describe_output):
        raw = RawText(tool="describe_resource", text=sample_describe_output, sections=parse_describe(sample_describe_output))

        print_result("describe_resource", raw, console)

        text = console.export_text()
        assert "Common Metadata" in text
        assert "test-pod" in text
        assert "Successfully assigned" in text

    def test_print_log_lines_without_markup(self, console):
        line = parse_line(
            "2024-01-01T12:30:45.123Z [ERROR] failed [bold]",
            namespace="default",
            pod="web-1",
            arrival=datetime.now(timezone.utc),
        )

        print_log_lines([line], console)

        text = console.export_text()
        assert "12:30:45.123" in text
        assert "[ERROR] failed [bold]" in text


class TestCli:

    def test_tool_params(self):
        args = _parse_args(["tool", "check_pod_health", "-p", "pod_name=web-1", "-p", "namespace=default"])

        assert args.name == "check_pod_health"
        assert dict(args.param) == {"pod_name": "web-1", "namespace": "default"}

    def test_rejects_unknown_tool(self):
        with pytest.raises(SystemExit):
            _parse_args(["tool", "delete_cluster"])

    def test_rejects_malformed_param(self):
        with pytest.raises(SystemExit):
            _parse_args(["tool", "diagnose_cluster", "-p", "namespace"])

    def test_ask_joins_words(self):
        args = _parse_args(["--context", "prod", "ask", "show", "failing", "pods", "-n", "default"])

        assert args.context == "prod"
        assert args.question == ["show", "failing", "pods"]
        assert args.namespace == "default"

    def test_exit_codes(self):
        assert _exit_code(_result()) == 1
        assert _exit_code(DiagnosticResult.from_issues("ok", [])) == 0
        assert _exit_code(RawText(tool="exec_in_pod", text="")) == 0
