"""Diagnostic tools: handlers and the free-text router."""

from kube_lensy.tools.handlers import HANDLERS, ToolResult, run_tool
from kube_lensy.tools.router import route

__all__ = ["HANDLERS", "ToolResult", "route", "run_tool"]
