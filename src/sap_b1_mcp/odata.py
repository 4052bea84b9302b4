# SAP B1 Query MCP Server
# File: odata.py
# Version: v2

"""Helpers for OData query-option strings.

The query generator hands back strings such as::

    $filter=DocDate ge '2024-01-01'&$orderby=DocDate desc&$top=10

These helpers split them into (option, value) pairs, pull out or strip the
row-limit clause, and rebuild the params used for each page request.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Tuple

QueryOptions = List[Tuple[str, str]]

# Options owned by the paginator; never forwarded from the caller in paged mode.
PAGINATION_OPTIONS = frozenset({"$top", "$skip", "$count", "$inlinecount"})

_OPTION_SPLIT = re.compile(r"&(?=\$)")
_TOP_RE = re.compile(r"\$top=(\d+)")


def parse_query_options(expression: str | None) -> QueryOptions:
    """Split an option string into ordered (name, value) pairs.

    A bare expression without any ``$option=`` prefix is treated as the value
    of ``$filter``.
    """
    text = (expression or "").strip().lstrip("?").strip()
    if not text:
        return []

    if not text.startswith("$"):
        return [("$filter", text)]

    options: QueryOptions = []
    for part in _OPTION_SPLIT.split(text):
        part = part.strip().strip("&")
        if not part:
            continue
        name, sep, value = part.partition("=")
        if not sep:
            continue
        options.append((name.strip(), value.strip()))
    return options


def format_query_options(options: Iterable[Tuple[str, str]]) -> str:
    return "&".join(f"{name}={value}" for name, value in options)


def extract_top(expression: str | None) -> Optional[int]:
    """Return the explicit ``$top`` row limit, if the expression has one."""
    match = _TOP_RE.search(expression or "")
    if not match:
        return None
    return int(match.group(1))


def strip_options(expression: str | None, names: Iterable[str]) -> str:
    drop = set(names)
    return format_query_options(
        (name, value) for name, value in parse_query_options(expression) if name not in drop
    )


def page_params(expression: str | None, skip: int, top: int) -> QueryOptions:
    """Build params for one page: the caller's options minus any row limit, plus paging."""
    params = [
        (name, value)
        for name, value in parse_query_options(expression)
        if name not in PAGINATION_OPTIONS
    ]
    params.extend(
        [
            ("$skip", str(int(skip))),
            ("$top", str(int(top))),
            ("$count", "true"),
            ("$inlinecount", "allpages"),
        ]
    )
    return params


def limit_only(expression: str | None) -> str:
    """Reduce an expression to just its explicit row limit (or nothing)."""
    top = extract_top(expression)
    return f"$top={top}" if top is not None else ""
