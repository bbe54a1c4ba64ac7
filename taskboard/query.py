"""
Task list pipeline: filter, scope, search, sort, project and paginate.

``list_tasks`` turns the query parameters of a list request into one
ownership-scoped predicate, runs a count and a fetch with that same
predicate, and returns the page together with pagination metadata.

Reserved control parameters (``select``, ``sort``, ``page``, ``limit``,
``search``) steer the pipeline; every other parameter is a field filter.
Filters are either plain equality (``status=pending``), inclusion when a
key is repeated (``status=low&status=high``), or a comparison written in
bracket form (``due_date[lte]=2025-01-31``, ``priority[in]=low,high``).
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import selectinload
from sqlalchemy.sql.elements import ColumnElement
from werkzeug.datastructures import MultiDict

from . import db
from .errors import BadRequest
from .models import SQL_INTEGER_MAX, Task, ensure_utc

logger = logging.getLogger(__name__)

CONTROL_PARAMS = ("select", "sort", "page", "limit", "search")
COMPARISON_OPERATORS = ("gt", "gte", "lt", "lte", "in")
OPERATOR_MARKER = "$"
# Any of these supplied by a client is dropped; ownership always comes
# from the authenticated requester.
OWNERSHIP_KEYS = ("user", "owner", "owner_id")

DEFAULT_PAGE = 1
DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 100

FILTERABLE_COLUMNS = {
    "id": Task.id,
    "title": Task.title,
    "description": Task.description,
    "status": Task.status,
    "priority": Task.priority,
    "due_date": Task.due_date,
    "owner_id": Task.owner_id,
    "created_at": Task.created_at,
    "updated_at": Task.updated_at,
}
SORTABLE_COLUMNS = FILTERABLE_COLUMNS

_INTEGER_FIELDS = frozenset({"id", "owner_id"})
_DATETIME_FIELDS = frozenset({"due_date", "created_at", "updated_at"})

_BRACKET_KEY = re.compile(r"^([^\[\]]+)\[([^\[\]]+)\]$")
_LIKE_ESCAPE = "\\"


@dataclass(frozen=True)
class PageRequest:
    """Validated page number and page size."""

    page: int
    limit: int

    @property
    def start_index(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class TaskPage:
    """One page of serialised tasks plus the total match count."""

    tasks: list[dict[str, Any]]
    total: int
    pagination: dict[str, Any]


# =====================================================================
# Parameter parsing
# =====================================================================


def parse_query_args(args: MultiDict) -> dict[str, Any]:
    """
    Convert request query arguments into the raw parameter mapping.

    ``field[op]=value`` becomes ``{"field": {"op": "value"}}`` and a key
    that appears more than once becomes a list of its values.

    Raises:
        BadRequest: For malformed bracket keys or a key used both plain
            and in bracket form.
    """
    raw: dict[str, Any] = {}
    for key in args.keys():
        values = args.getlist(key)
        value: Any = values[0] if len(values) == 1 else values

        if "[" not in key and "]" not in key:
            if key in raw:
                raise BadRequest(f"Conflicting query parameter '{key}'")
            raw[key] = value
            continue

        match = _BRACKET_KEY.match(key)
        if match is None:
            raise BadRequest(f"Malformed query parameter '{key}'")
        field, operator = match.groups()
        nested = raw.setdefault(field, {})
        if not isinstance(nested, dict):
            raise BadRequest(f"Conflicting query parameter '{field}'")
        nested[operator] = value
    return raw


def _control_value(raw_params: Mapping[str, Any], name: str) -> str | None:
    """Return a control parameter as a single string (first value wins)."""
    value = raw_params.get(name)
    if value is None:
        return None
    if isinstance(value, Mapping):
        raise BadRequest(f"'{name}' must be a plain value")
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    return None if value is None else str(value)


# =====================================================================
# Filter construction
# =====================================================================


def extract_filters(raw_params: Mapping[str, Any]) -> dict[str, Any]:
    """Return every parameter that is not a control parameter."""
    return {key: value for key, value in raw_params.items() if key not in CONTROL_PARAMS}


def rewrite_operators(filters: Mapping[str, Any]) -> dict[str, Any]:
    """
    Rewrite comparison selectors nested under a field to operator tokens.

    Only a nested key that equals one of ``gt``, ``gte``, ``lt``, ``lte``
    or ``in`` is rewritten (``{"due_date": {"gte": x}}`` becomes
    ``{"due_date": {"$gte": x}}``).  Field names and values are never
    touched, so a field called ``ingredient`` or a value ``"in"`` keeps
    its text.

    Raises:
        BadRequest: If a nested key is not a supported operator.
    """
    rewritten: dict[str, Any] = {}
    for field, value in filters.items():
        if not isinstance(value, Mapping):
            rewritten[field] = value
            continue
        if not value:
            raise BadRequest(f"Empty operator filter for field '{field}'")
        operators: dict[str, Any] = {}
        for operator, operand in value.items():
            if operator not in COMPARISON_OPERATORS:
                raise BadRequest(f"Unsupported operator '{operator}' for field '{field}'")
            operators[OPERATOR_MARKER + operator] = operand
        rewritten[field] = operators
    return rewritten


def scope_to_owner(filters: Mapping[str, Any], requester_id: int) -> dict[str, Any]:
    """Replace any client-supplied ownership filter with the requester's id."""
    scoped = {key: value for key, value in filters.items() if key not in OWNERSHIP_KEYS}
    scoped["owner_id"] = requester_id
    return scoped


def _coerce(field: str, value: Any) -> Any:
    if isinstance(value, (Mapping, list, tuple)):
        raise BadRequest(f"Invalid value for field '{field}'")
    if field in _INTEGER_FIELDS:
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            raise BadRequest(f"Invalid integer for field '{field}': {value!r}") from None
        if abs(parsed) > SQL_INTEGER_MAX:
            raise BadRequest(f"Integer out of range for field '{field}': {value!r}")
        return parsed
    if field in _DATETIME_FIELDS:
        if isinstance(value, datetime):
            return ensure_utc(value)
        try:
            return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
        except ValueError:
            raise BadRequest(f"Invalid date for field '{field}': {value!r}") from None
    return str(value)


def _inclusion_values(field: str, operand: Any) -> list[Any]:
    if isinstance(operand, (list, tuple)):
        items = list(operand)
    elif isinstance(operand, str):
        items = [item for item in operand.split(",") if item != ""]
    else:
        items = [operand]
    return [_coerce(field, item) for item in items]


def _compile_operator(field: str, token: str, operand: Any) -> ColumnElement:
    column = FILTERABLE_COLUMNS[field]
    if token == "$in":
        return column.in_(_inclusion_values(field, operand))
    value = _coerce(field, operand)
    if token == "$gt":
        return column > value
    if token == "$gte":
        return column >= value
    if token == "$lt":
        return column < value
    if token == "$lte":
        return column <= value
    raise BadRequest(f"Unsupported operator '{token}' for field '{field}'")


def compile_filters(filters: Mapping[str, Any]) -> list[ColumnElement]:
    """
    Compile a rewritten filter mapping into SQLAlchemy expressions.

    Raises:
        BadRequest: For an unknown field, an unsupported operator token or
            a value that cannot be coerced to the column's type.
    """
    clauses: list[ColumnElement] = []
    for field, value in filters.items():
        column = FILTERABLE_COLUMNS.get(field)
        if column is None:
            raise BadRequest(f"Unknown filter field '{field}'")
        if isinstance(value, Mapping):
            clauses.extend(
                _compile_operator(field, token, operand) for token, operand in value.items()
            )
        elif isinstance(value, (list, tuple)):
            clauses.append(column.in_(_inclusion_values(field, value)))
        else:
            clauses.append(column == _coerce(field, value))
    return clauses


def _escape_like(term: str) -> str:
    return (
        term.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )


def build_search_clause(term: str) -> ColumnElement:
    """Case-insensitive substring match on title OR description."""
    pattern = f"%{_escape_like(term)}%"
    return or_(
        Task.title.ilike(pattern, escape=_LIKE_ESCAPE),
        Task.description.ilike(pattern, escape=_LIKE_ESCAPE),
    )


# =====================================================================
# Projection, ordering, pagination
# =====================================================================


def parse_projection(select_param: str | None) -> list[str] | None:
    """Split ``select`` into field names; ``None`` means every field."""
    if not select_param:
        return None
    fields = [name.strip() for name in select_param.split(",") if name.strip()]
    return fields or None


def parse_sort(sort_param: str | None) -> list[ColumnElement]:
    """
    Build ORDER BY clauses from ``sort``.

    ``sort=priority,-due_date`` orders by priority ascending, then due date
    descending.  Without ``sort`` the order is newest first.  An ``id``
    tie-break in the direction of the leading key keeps pages stable.

    Raises:
        BadRequest: For an unknown sort field.
    """
    clauses: list[ColumnElement] = []
    names: list[str] = []
    leading_descending = True
    for part in (sort_param or "").split(","):
        name = part.strip()
        if not name:
            continue
        descending = name.startswith("-")
        if descending:
            name = name[1:]
        column = SORTABLE_COLUMNS.get(name)
        if column is None:
            raise BadRequest(f"Unknown sort field '{name}'")
        if not clauses:
            leading_descending = descending
        names.append(name)
        clauses.append(column.desc() if descending else column.asc())

    if not clauses:
        names.append("created_at")
        clauses.append(Task.created_at.desc())
    if "id" not in names:
        clauses.append(Task.id.desc() if leading_descending else Task.id.asc())
    return clauses


def _positive_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def parse_pagination(
    page: str | None,
    limit: str | None,
    default_limit: int = DEFAULT_PAGE_LIMIT,
    max_limit: int = MAX_PAGE_LIMIT,
) -> PageRequest:
    """
    Parse ``page`` and ``limit``.

    Absent, non-numeric and non-positive values fall back to the defaults;
    ``limit`` is capped at *max_limit* and ``page`` is capped so the row
    offset still fits in a SQL integer.
    """
    limit = min(_positive_int(limit, default_limit), max_limit)
    page_number = min(_positive_int(page, DEFAULT_PAGE), SQL_INTEGER_MAX // limit)
    return PageRequest(page=page_number, limit=limit)


def build_pagination(page_request: PageRequest, total: int) -> dict[str, Any]:
    """Pagination metadata with optional ``next`` / ``prev`` hints."""
    page, limit = page_request.page, page_request.limit
    pagination: dict[str, Any] = {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit),
    }
    if page * limit < total:
        pagination["next"] = {"page": page + 1, "limit": limit}
    if page_request.start_index > 0:
        pagination["prev"] = {"page": page - 1, "limit": limit}
    return pagination


# =====================================================================
# Pipeline
# =====================================================================


def build_task_predicate(requester_id: int, raw_params: Mapping[str, Any]) -> ColumnElement:
    """
    Combine filters, ownership scope and search into one predicate.

    The same predicate is used for counting and fetching.
    """
    filters = rewrite_operators(extract_filters(raw_params))
    clauses = compile_filters(scope_to_owner(filters, requester_id))

    search = _control_value(raw_params, "search")
    if search and search.strip():
        clauses.append(build_search_clause(search.strip()))
    return and_(*clauses)


def list_tasks(
    requester_id: int,
    requester_role: str,
    raw_params: Mapping[str, Any],
    *,
    default_limit: int = DEFAULT_PAGE_LIMIT,
    max_limit: int = MAX_PAGE_LIMIT,
) -> TaskPage:
    """
    Return one page of the requester's tasks.

    The listing is always restricted to tasks owned by *requester_id*,
    admins included.

    Args:
        requester_id: Id of the authenticated caller.
        requester_role: Role of the authenticated caller.
        raw_params: Raw parameter mapping (see ``parse_query_args``).
        default_limit: Page size when ``limit`` is absent or invalid.
        max_limit: Upper bound for ``limit``.

    Raises:
        BadRequest: For malformed filters, sort fields or control values.
    """
    predicate = build_task_predicate(requester_id, raw_params)
    order_by = parse_sort(_control_value(raw_params, "sort"))
    fields = parse_projection(_control_value(raw_params, "select"))
    page_request = parse_pagination(
        _control_value(raw_params, "page"),
        _control_value(raw_params, "limit"),
        default_limit=default_limit,
        max_limit=max_limit,
    )

    total = db.session.scalar(select(func.count(Task.id)).where(predicate)) or 0
    stmt = (
        select(Task)
        .options(selectinload(Task.owner))
        .where(predicate)
        .order_by(*order_by)
        .offset(page_request.start_index)
        .limit(page_request.limit)
    )
    tasks = db.session.scalars(stmt).all()

    logger.info(
        "Listed %d of %d tasks for user_id=%s (role=%s), page=%d limit=%d",
        len(tasks),
        total,
        requester_id,
        requester_role,
        page_request.page,
        page_request.limit,
    )
    return TaskPage(
        tasks=[task.to_dict(fields) for task in tasks],
        total=total,
        pagination=build_pagination(page_request, total),
    )
