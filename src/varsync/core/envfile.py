"""Reading and writing ``KEY=value`` override files.

Parsing is delegated to python-dotenv (comments, blank lines, quoted values
with ``\\n``/``\\r``/``\\\\``/``\\"`` escapes, multi-line quoted values) with
interpolation turned off. Writing is done here so output is deterministic:
keys sorted, quoting only where needed, exactly one trailing newline.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

from dotenv import dotenv_values

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

logger = logging.getLogger(__name__)

_NEEDS_QUOTES = frozenset(" \t\n\r#\"'\\")


def parse_env(content: str) -> dict[str, str]:
    """Parse env-file *content* into an ordered ``{key: value}`` mapping.

    Keys declared without ``=`` carry no value and are dropped.
    """
    values = dotenv_values(stream=io.StringIO(content), interpolate=False)
    return {k: v for k, v in values.items() if v is not None}


def read_env_file(path: Path) -> dict[str, str]:
    """Read an env file; a missing file is an empty mapping."""
    if not path.is_file():
        return {}
    return parse_env(path.read_text(encoding="utf-8-sig"))


def needs_quotes(value: str) -> bool:
    return value == "" or any(ch in _NEEDS_QUOTES for ch in value)


def format_value(value: str) -> str:
    """Quote and escape *value* when it would not survive a bare round trip."""
    if not needs_quotes(value):
        return value
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )
    return f'"{escaped}"'


def render_env(values: Mapping[str, str]) -> str:
    """Render *values* as env-file text; empty input renders as an empty string."""
    if not values:
        return ""
    lines = [f"{key}={format_value(values[key])}" for key in sorted(values)]
    return "\n".join(lines) + "\n"
