"""Filter compiler: turns query options and filter conditions into a predicate.

The compiled predicate is a conjunction. The tenant conjunct is always first,
followed by the optional time window, event type and status shortcut, then one
conjunct per accepted filter condition in input order.

Conditions that cannot be placed safely into a query (bad field name, unknown
operator, unsupported value) are dropped rather than raised, so read paths keep
working when callers pass stray query-string noise.
"""

import logging
from collections.abc import Iterable, Sequence

from wideevent.core.errors import ValidationError
from wideevent.core.fields import (
    escape_datetime,
    escape_value,
    resolve_field,
)
from wideevent.core.models import FILTER_OPERATORS, FilterCondition, QueryOptions

logger = logging.getLogger(__name__)

# Server errors or an explicit error outcome. Used by aggregates and error analysis.
SERVER_ERROR_PREDICATE = "(_status_code >= 500 OR _outcome = 'error')"

# Any client or server error, or an explicit error outcome.
# Used by the status shortcut and stats.
ERROR_PREDICATE = "(_status_code >= 400 OR _outcome = 'error')"

SUCCESS_PREDICATE = (
    "((_status_code >= 200 AND _status_code < 400) OR _outcome = 'success')"
)


def compile_condition(condition: FilterCondition) -> str:
    """Compile one filter condition into a single conjunct.

    Raises:
        ValidationError: If the field, operator or value cannot be compiled.
    """
    if condition.op not in FILTER_OPERATORS:
        raise ValidationError(f"Unsupported operator: {condition.op!r}")
    column = resolve_field(condition.field)
    value = condition.value
    if condition.op == "IN":
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            value = [value]
        if not value:
            return "1 = 0"
        items = ", ".join(escape_value(item) for item in value)
        return f"{column} IN ({items})"
    if isinstance(value, (list, tuple, set, dict)):
        raise ValidationError(f"Operator {condition.op} takes a scalar value")
    return f"{column} {condition.op} {escape_value(value)}"


def _status_conjunct(status: object) -> str:
    if status == "error":
        return ERROR_PREDICATE
    if status == "success":
        return SUCCESS_PREDICATE
    if isinstance(status, bool) or not isinstance(status, int):
        raise ValidationError(f"Invalid status filter: {status!r}")
    return f"_status_code = {escape_value(status)}"


def compile_conjuncts(
    options: QueryOptions, filters: Iterable[FilterCondition] = ()
) -> list[str]:
    """Compile options and filters into the list of conjuncts.

    Args:
        options: Tenant, window, event type and status shortcut.
        filters: Caller conditions. Invalid ones are dropped.

    Returns:
        Conjuncts in a deterministic order, tenant equality first.
    """
    conjuncts = [f"_project_id = {escape_value(options.project_id)}"]
    if options.start_time is not None:
        conjuncts.append(f"_timestamp >= {escape_datetime(options.start_time)}")
    if options.end_time is not None:
        conjuncts.append(f"_timestamp <= {escape_datetime(options.end_time)}")
    if options.event_type:
        conjuncts.append(f"_event_type = {escape_value(options.event_type)}")
    if options.status is not None:
        conjuncts.append(_status_conjunct(options.status))

    for condition in filters:
        try:
            conjuncts.append(compile_condition(condition))
        except ValidationError as exc:
            logger.debug("Dropping filter on %r: %s", condition.field, exc.message)
    return conjuncts


def compile_predicate(
    options: QueryOptions, filters: Iterable[FilterCondition] = ()
) -> str:
    """Compile options and filters into a WHERE predicate string."""
    return " AND ".join(compile_conjuncts(options, filters))
