"""NDJSON encoding for column-store rows."""

import json
from collections.abc import Iterable, Mapping
from typing import Any


def encode_rows(rows: Iterable[Mapping[str, Any]]) -> str:
    """Encode rows to newline-delimited JSON.

    Args:
        rows: An iterable of JSON-serializable mappings.

    Returns:
        NDJSON string with one JSON object per line.
        Empty string if no rows.
    """
    lines = [json.dumps(row, separators=(",", ":"), default=str) for row in rows]
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def decode_rows(text: str) -> list[dict[str, Any]]:
    """Decode newline-delimited JSON into a list of rows.

    Blank lines are skipped.

    Raises:
        json.JSONDecodeError: If a line is not valid JSON.
    """
    return [json.loads(line) for line in text.splitlines() if line.strip()]
