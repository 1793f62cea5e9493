"""CLI entrypoint for kube-lensy."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler

from kube_lensy import __version__
from kube_lensy.catalog import ToolName
from kube_lensy.config import get_settings
from kube_lensy.diagnosis import DiagnosticResult, DiagnosticStatus
from kube_lensy.errors import KubeLensyError
from kube_lensy.report import print_clusters, print_log_lines, print_namespaces, print_pods, print_result
from kube_lensy.service import ObservabilityService
from kube_lensy.streaming import LogBatch, StreamEnd


def _key_value(text: str) -> tuple[str, str]:
    key, sep, value = text.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected key=value, got {text!r}")
    return key, value


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="kube-lensy: stream Kubernetes logs and diagnose cluster health.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--context",
        default=None,
        help="Kubernetes context to use (default: kubectl's current context)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("clusters", help="List kubeconfig contexts")

    use = sub.add_parser("use-context", help="Switch the active context")
    use.add_argument("name")

    ns = sub.add_parser("namespaces", help="List namespaces")
    ns.add_argument("--add", default=None, help="Register a namespace you can read but not list")

    pods = sub.add_parser("pods", help="List pods")
    pods.add_argument("--namespace", "-n", default=None, help="Namespace (default: all)")

    tool = sub.add_parser("tool", help="Run a diagnostic tool")
    tool.add_argument("name", choices=[t.value for t in ToolName])
    tool.add_argument(
        "--param",
        "-p",
        action="append",
        type=_key_value,
        default=[],
        help="Tool parameter as key=value (repeatable)",
    )

    ask = sub.add_parser("ask", help="Route a free-text question to a diagnostic tool")
    ask.add_argument("question", nargs="+")
    ask.add_argument("--namespace", "-n", default=None, help="Namespace hint")

    logs = sub.add_parser("logs", help="Show or follow container logs")
    logs.add_argument("pod")
    logs.add_argument("--namespace", "-n", default=None, help="Namespace (default: from settings)")
    logs.add_argument("--container", "-c", default=None)
    logs.add_argument("--tail", type=int, default=None, help="Lines to fetch")
    logs.add_argument("--follow", "-f", action="store_true", help="Stream new lines until interrupted")

    describe = sub.add_parser("describe", help="Describe a resource")
    describe.add_argument("resource_type")
    describe.add_argument("resource_name")
    describe.add_argument("--namespace", "-n", default=None)

    return parser.parse_args(argv)


def _exit_code(result: object) -> int:
    if isinstance(result, DiagnosticResult) and result.status is not DiagnosticStatus.HEALTHY:
        return 1
    return 0


async def _follow(service: ObservabilityService, args: argparse.Namespace, console: Console) -> int:
    subscription = await service.subscribe_logs(args.namespace, args.pod, args.container)
    try:
        async for event in subscription:
            if isinstance(event, LogBatch):
                print_log_lines(event.lines, console)
            elif isinstance(event, StreamEnd):
                if not event.graceful:
                    console.print(f"[red]Stream ended: {event.reason}[/red]")
                    return 1
                if event.reason:
                    console.print(f"[dim]Stream ended: {event.reason}[/dim]")
    finally:
        await subscription.close()
    return 0


async def _run(args: argparse.Namespace, console: Console) -> int:
    settings = get_settings()
    if args.context:
        settings.context = args.context
    service = ObservabilityService(settings)
    try:
        if args.command == "clusters":
            print_clusters(await service.list_clusters(), console)
        elif args.command == "use-context":
            await service.use_context(args.name)
            console.print(f"Switched to context [bold]{args.name}[/bold]")
        elif args.command == "namespaces":
            if args.add:
                await service.add_namespace(args.add)
            print_namespaces(await service.list_namespaces(), console)
        elif args.command == "pods":
            print_pods(await service.list_pods(args.namespace), console)
        elif args.command == "tool":
            result = await service.run_diagnostic_tool(args.name, dict(args.param))
            print_result(args.name, result, console)
            return _exit_code(result)
        elif args.command == "ask":
            hints = {"namespace": args.namespace} if args.namespace else {}
            tool, result = await service.ask(" ".join(args.question), hints)
            print_result(tool.value, result, console)
            return _exit_code(result)
        elif args.command == "logs":
            args.namespace = args.namespace or settings.namespace
            if args.follow:
                return await _follow(service, args, console)
            lines = await service.fetch_logs(args.namespace, args.pod, args.container, args.tail)
            print_log_lines(lines, console)
        elif args.command == "describe":
            params = {
                "resource_type": args.resource_type,
                "resource_name": args.resource_name,
                "namespace": args.namespace or settings.namespace,
            }
            result = await service.run_diagnostic_tool(ToolName.DESCRIBE_RESOURCE, params)
            print_result(ToolName.DESCRIBE_RESOURCE.value, result, console)
        return 0
    finally:
        await service.aclose()


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for kube-lensy CLI."""
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )
    logger = logging.getLogger("kube_lensy")
    if not args.verbose:
        logger.setLevel(logging.WARNING)

    try:
        return asyncio.run(_run(args, Console()))
    except KeyboardInterrupt:
        return 130
    except KubeLensyError as e:
        logger.debug("command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
