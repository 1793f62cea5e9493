"""Split ``kubectl describe`` output into titled sections."""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict

METADATA_TITLE = "Common Metadata"

# Keys whose value spans the following indented lines even when a value is inline.
BLOCK_KEYS = frozenset(
    {
        "Annotations",
        "Conditions",
        "Containers",
        "Controlled By",
        "Endpoints",
        "Events",
        "IPs",
        "Init Containers",
        "Labels",
        "Node-Selectors",
        "Pod Template",
        "QoS Class",
        "Replicas",
        "Selector",
        "Spec",
        "Status",
        "Strategy",
        "Template",
        "Tolerations",
        "Volumes",
    }
)

_KEY_LINE = re.compile(r"^([A-Za-z][A-Za-z -]*):\s*(.*)$")
_HEADER_LINE = re.compile(r"^([A-Z][A-Za-z ]+)$")


class DescribeSection(BaseModel):
    """One titled section; table sections hold key/value rows."""

    model_config = ConfigDict(frozen=True)

    title: str
    is_table: bool = False
    content: str | list[dict[str, str]] = ""


class _State(str, Enum):
    TOP_LEVEL_KEY = "top_level_key"
    IN_BLOCK = "in_block"
    IN_TABLE = "in_table"


def _is_top_level(line: str) -> bool:
    return bool(line.strip()) and not line[0].isspace()


def parse_describe(text: str) -> list[DescribeSection]:
    """Parse describe output.

    Plain ``Key: value`` lines at column zero are collected into one leading
    metadata table. Block keys, and keys with no inline value, open a block
    that runs until the next top-level key. A capitalised header line without
    a colon (``Events`` style tables) opens a section that runs until the next
    unindented line.
    """
    if not text:
        return []

    sections: list[DescribeSection] = []
    metadata: list[dict[str, str]] = []
    state = _State.TOP_LEVEL_KEY
    title = ""
    body: list[str] = []

    def close() -> None:
        sections.append(DescribeSection(title=title, content="\n".join(body).strip()))

    for line in text.splitlines():
        if state is _State.IN_BLOCK:
            if _is_top_level(line) and ":" in line:
                close()
                state = _State.TOP_LEVEL_KEY
            else:
                body.append(line)
                continue
        elif state is _State.IN_TABLE:
            if _is_top_level(line):
                close()
                state = _State.TOP_LEVEL_KEY
            else:
                body.append(line)
                continue

        if not _is_top_level(line):
            continue
        match = _KEY_LINE.match(line)
        if match:
            key, value = match.group(1).strip(), match.group(2).strip()
            if key in BLOCK_KEYS or not value:
                title, body = key, [value] if value else []
                state = _State.IN_BLOCK
            else:
                metadata.append({"key": key, "value": value})
            continue
        header = _HEADER_LINE.match(line)
        if header:
            title, body = header.group(1).strip(), []
            state = _State.IN_TABLE

    if state is not _State.TOP_LEVEL_KEY:
        close()
    if metadata:
        sections.insert(0, DescribeSection(title=METADATA_TITLE, is_table=True, content=metadata))
    return sections
