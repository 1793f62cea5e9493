"""Run kubectl and helm as subprocesses with a hard timeout."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from typing import Any

from kube_lensy.errors import (
    CLIExitError,
    CLIParseError,
    CLISpawnError,
    CLITimeout,
)

logger = logging.getLogger(__name__)


class ClusterCLI:
    """Adapter over the external cluster CLIs.

    Every call spawns exactly one process and either returns its stdout or
    raises a ``CLIError`` subclass within ``timeout``. Nothing here retries.
    """

    def __init__(
        self,
        kubectl_bin: str = "kubectl",
        helm_bin: str = "helm",
        context: str | None = None,
    ) -> None:
        self.kubectl_bin = kubectl_bin
        self.helm_bin = helm_bin
        self.context = context

    async def invoke(self, command: Sequence[str], timeout: float) -> str:
        """Run ``command`` to completion and return decoded stdout."""
        argv = list(command)
        logger.debug("invoke: %s (timeout=%.1fs)", " ".join(argv), timeout)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CLISpawnError(f"failed to start {argv[0]}: {e}", argv) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            kill_process(process)
            await process.wait()
            raise CLITimeout(f"{argv[0]} timed out after {timeout:g}s", argv) from None
        except asyncio.CancelledError:
            kill_process(process)
            raise

        if process.returncode != 0:
            raise CLIExitError(
                process.returncode or -1,
                stderr.decode("utf-8", errors="replace"),
                argv,
            )
        return stdout.decode("utf-8", errors="replace")

    async def invoke_json(self, command: Sequence[str], timeout: float) -> Any:
        """Run ``command`` and parse stdout as JSON."""
        out = await self.invoke(command, timeout)
        try:
            return json.loads(out)
        except json.JSONDecodeError as e:
            raise CLIParseError(f"malformed JSON from {command[0]}: {e}", list(command)) from e

    def kubectl_args(self, *args: str) -> list[str]:
        """Build a kubectl argv, pinning the active context when one is set."""
        if self.context and args and args[0] != "config":
            return [self.kubectl_bin, "--context", self.context, *args]
        return [self.kubectl_bin, *args]

    def helm_args(self, *args: str) -> list[str]:
        if self.context:
            return [self.helm_bin, "--kube-context", self.context, *args]
        return [self.helm_bin, *args]

    async def kubectl(self, *args: str, timeout: float) -> str:
        return await self.invoke(self.kubectl_args(*args), timeout)

    async def kubectl_json(self, *args: str, timeout: float) -> Any:
        return await self.invoke_json(self.kubectl_args(*args, "-o", "json"), timeout)

    async def helm_json(self, *args: str, timeout: float) -> Any:
        return await self.invoke_json(self.helm_args(*args, "-o", "json"), timeout)

    async def spawn(self, command: Sequence[str]) -> asyncio.subprocess.Process:
        """Start a long-running process with piped stdout/stderr; the caller owns it."""
        argv = list(command)
        logger.debug("spawn: %s", " ".join(argv))
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CLISpawnError(f"failed to start {argv[0]}: {e}", argv) from e


def kill_process(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
