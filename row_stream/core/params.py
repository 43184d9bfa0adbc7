"""SQL parameter binding.

Converts `:name` parameter syntax to the adapter's paramstyle and renders the
values to text with the conversion engine. Handles string literal exclusion
and PostgreSQL `::typecast` syntax.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from functools import lru_cache
from typing import Any

from row_stream.core.conversion import ConverterRegistry, default_registry
from row_stream.core.exceptions import ParameterBindingError, RowStreamError

# Matches :name but not ::typecast and not inside words
# Negative lookbehind for : (handles ::), \w (handles mid-word colons)
_PARAM_PATTERN = re.compile(r"(?<![:\w]):([a-zA-Z_]\w*)")

# Matches single-quoted string literals. Quotes are escaped by doubling;
# backslash escapes only apply inside E'...' strings
_STRING_LITERAL_PATTERN = re.compile(r"(?<!\w)[Ee]'(?:[^'\\]|\\.|'')*'|'(?:[^']|'')*'")

BoundParams = list[str | None] | dict[str, str | None]


def _segments(sql: str) -> list[tuple[bool, str]]:
    """Split *sql* into ``(is_literal, text)`` segments."""
    parts: list[tuple[bool, str]] = []
    last_end = 0
    for match in _STRING_LITERAL_PATTERN.finditer(sql):
        start, end = match.span()
        if start > last_end:
            parts.append((False, sql[last_end:start]))
        parts.append((True, match.group()))
        last_end = end
    if last_end < len(sql):
        parts.append((False, sql[last_end:]))
    return parts


def param_names(sql: str) -> list[str]:
    """Return placeholder names in order of first appearance."""
    return list(_convert_to_numeric(sql)[1])


@lru_cache(maxsize=256)
def _convert_to_numeric(sql: str) -> tuple[str, tuple[str, ...]]:
    """Convert :name params to $n, preserving string literals.

    A repeated name reuses the number of its first occurrence.
    """
    order: dict[str, int] = {}

    def _number(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in order:
            order[name] = len(order) + 1
        return f"${order[name]}"

    parts = [text if literal else _PARAM_PATTERN.sub(_number, text) for literal, text in _segments(sql)]
    return "".join(parts), tuple(order)


def normalize_params(sql: str, paramstyle: str) -> str:
    """Convert :name parameters to the target param style.

    Args:
        sql: SQL string with :name parameters.
        paramstyle: Target style - 'named' (no conversion) or 'numeric' ($1).

    Returns:
        SQL with parameters converted to the target style.
    """
    if paramstyle == "named":
        return sql
    return _convert_to_numeric(sql)[0]


def bind_params(
    sql: str,
    params: Mapping[str, Any] | None,
    paramstyle: str,
    registry: ConverterRegistry = default_registry,
    render: Callable[[Any], str | None] | None = None,
) -> tuple[str, BoundParams | None]:
    """Return ``(sql, bound)`` ready for the adapter.

    Without *params* the SQL is passed through untouched. Otherwise every
    placeholder must have a value; values are rendered with *render*, or with
    *registry* when no renderer is given.

    Raises:
        ParameterBindingError: On a missing value or an unconvertible one.
    """
    if params is None:
        return sql, None

    converted_sql, names = _convert_to_numeric(sql)
    missing = [name for name in names if name not in params]
    if missing:
        raise ParameterBindingError(sql, f"no value for {missing}")

    to_text = render if render is not None else registry.to_text
    try:
        texts = {name: to_text(params[name]) for name in names}
    except RowStreamError as e:
        raise ParameterBindingError(sql, str(e)) from e

    if paramstyle == "named":
        return sql, texts
    return converted_sql, [texts[name] for name in names]
