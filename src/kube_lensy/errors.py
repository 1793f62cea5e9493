"""Exception hierarchy shared across the pipeline."""

from __future__ import annotations


class KubeLensyError(Exception):
    """Base class for all kube-lensy errors."""


class CLIError(KubeLensyError):
    """An external CLI invocation did not produce usable output."""

    def __init__(self, message: str, command: list[str] | None = None) -> None:
        super().__init__(message)
        self.command = command or []

    @property
    def text(self) -> str:
        """Error text used for benign-failure classification."""
        return str(self)


class CLITimeout(CLIError):
    """The process did not finish within its timeout and was killed."""


class CLISpawnError(CLIError):
    """The executable could not be started."""


class CLIExitError(CLIError):
    """The process exited with a non-zero status."""

    def __init__(self, returncode: int, stderr: str, command: list[str] | None = None) -> None:
        super().__init__(stderr.strip() or f"exited with status {returncode}", command)
        self.returncode = returncode
        self.stderr = stderr


class CLIParseError(CLIError):
    """The process succeeded but its output could not be deserialized."""


class CollectionError(KubeLensyError):
    """The essential sub-query of a collection failed."""

    def __init__(self, collection: str, cause: CLIError) -> None:
        super().__init__(f"{collection}: {cause}")
        self.collection = collection
        self.cause = cause


class ToolParameterError(KubeLensyError):
    """A diagnostic tool was called without a required parameter."""


class ToolExecutionError(KubeLensyError):
    """A diagnostic tool failed; the message is scoped to the tool."""

    def __init__(self, tool: str, reason: str) -> None:
        super().__init__(f"Error executing {tool}: {reason}")
        self.tool = tool
        self.reason = reason
