"""
Output classification for notebook steps.

``parse_output`` never raises: anything it cannot place is plain text.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class OutputKind(str, Enum):
    TEXT = "text"
    JSON = "json"
    TABLE = "table"


class ParsedOutput(BaseModel):
    kind: OutputKind
    formatted: str
    rows: Optional[list[list[str]]] = None  # table cells, header first

    model_config = {"extra": "forbid"}


# Tried in order; the first that splits every row consistently wins
DELIMITERS = [
    ("\t", re.compile(r"\t")),
    ("|", re.compile(r"\s*\|\s*")),
    (",", re.compile(r"\s*,\s*")),
    ("  ", re.compile(r"\s{2,}")),
]


def parse_output(raw: str) -> ParsedOutput:
    """Classify raw output as JSON, table or text, with a normalized rendering."""
    text = raw.strip()
    if not text:
        return ParsedOutput(kind=OutputKind.TEXT, formatted="")

    parsed_json = _try_json(text)
    if parsed_json is not None:
        return parsed_json

    rows = _try_table(text)
    if rows is not None:
        return ParsedOutput(kind=OutputKind.TABLE, formatted=render_markdown_table(rows), rows=rows)

    return ParsedOutput(kind=OutputKind.TEXT, formatted=text)


def _try_json(text: str) -> Optional[ParsedOutput]:
    # Bare scalars ("3.0", "true") are text for display purposes
    if text[0] not in "{[":
        return None
    try:
        value = json.loads(text)
    except ValueError:
        return None
    if not isinstance(value, (dict, list)):
        return None
    return ParsedOutput(
        kind=OutputKind.JSON,
        formatted=json.dumps(value, indent=2, ensure_ascii=False),
    )


def _split_row(line: str, splitter: re.Pattern, delimiter: str) -> list[str]:
    stripped = line.strip()
    if delimiter == "|":
        stripped = stripped.strip("|")
    return [cell.strip() for cell in splitter.split(stripped)]


def _is_rule(line: str) -> bool:
    """Separator rows like |---|---| or ----- ----."""
    return bool(line.strip()) and set(line.strip()) <= set("-|+=: ")


def _try_table(text: str) -> Optional[list[list[str]]]:
    lines = [line for line in text.splitlines() if line.strip() and not _is_rule(line)]
    if len(lines) < 2:
        return None

    for delimiter, splitter in DELIMITERS:
        if delimiter != "  " and not all(delimiter in line for line in lines):
            continue
        rows = [_split_row(line, splitter, delimiter) for line in lines]
        body_width = len(rows[1])
        if body_width < 2:
            continue
        if any(len(row) != body_width for row in rows[1:]):
            continue
        header = rows[0]
        if len(header) == body_width:
            return rows
        # pandas frames print the index column without a header cell
        if delimiter == "  " and len(header) == body_width - 1:
            return [[""] + header] + rows[1:]
    return None


def render_markdown_table(rows: list[list[str]]) -> str:
    header, body = rows[0], rows[1:]
    lines = [
        "| " + " | ".join(header) + " |",
        "| " + " | ".join("---" for _ in header) + " |",
    ]
    lines.extend("| " + " | ".join(row) + " |" for row in body)
    return "\n".join(lines)
