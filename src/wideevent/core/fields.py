"""Field path resolution and value escaping for column-store queries.

This module is the only place where caller-supplied names or values are turned
into query text. Everything that builds a query goes through ``resolve_field``
and ``escape_value``.

Fields starting with ``_`` address system columns (``_project_id``,
``_timestamp``, ``_status_code`` ...). Every other field addresses the
semi-structured ``event`` column, with dotted paths reaching into nested
objects: ``error.code`` becomes ``event.error.code``.
"""

import math
import re
from datetime import UTC, datetime

from wideevent.core.errors import ValidationError

FIELD_PATTERN = re.compile(r"^[A-Za-z0-9_.]+$")

PAYLOAD_COLUMN = "event"


def is_valid_field(field: str) -> bool:
    """Return True if ``field`` is safe to place into a query as a path.

    Besides the character class, every dot-separated segment must be non-empty.
    """
    if not isinstance(field, str) or FIELD_PATTERN.fullmatch(field) is None:
        return False
    return all(field.split("."))


def _quote_segment(segment: str) -> str:
    # Subcolumn names starting with a digit are not bare identifiers.
    return f"`{segment}`" if segment[0].isdigit() else segment


def resolve_field(field: str) -> str:
    """Map a logical field name to its physical access expression.

    Args:
        field: System column (``_``-prefixed) or dotted payload path.

    Returns:
        The column or ``event.<path>`` access expression.

    Raises:
        ValidationError: If the name contains characters outside ``[A-Za-z0-9_.]``
            or an empty path segment.
    """
    if not is_valid_field(field):
        raise ValidationError(f"Invalid field name: {field!r}")
    if field.startswith("_"):
        return field
    path = ".".join(_quote_segment(segment) for segment in field.split("."))
    return f"{PAYLOAD_COLUMN}.{path}"


def escape_value(value: object) -> str:
    """Serialize a scalar as a query literal.

    Numbers are emitted bare, booleans as ``true``/``false``, strings are
    single-quoted with backslashes and quotes backslash-escaped.

    Raises:
        ValidationError: For None, non-finite numbers and non-scalar values.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError(f"Non-finite number: {value!r}")
        return repr(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace("'", "\\'")
        return f"'{escaped}'"
    raise ValidationError(f"Unsupported value type: {type(value).__name__}")


def escape_like_contains(term: str) -> str:
    """Build a quoted ``LIKE`` pattern matching ``term`` as a literal substring."""
    literal = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escape_value(f"%{literal}%")


def escape_datetime(value: datetime) -> str:
    """Serialize a datetime as a millisecond-precision UTC timestamp literal."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    text = value.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
    return f"toDateTime64({escape_value(text)}, 3, 'UTC')"
