"""
tokenization.matcher — Decides whether a request is intercepted.

Two gates: the request URI must match one of the configured patterns, and
on GraphQL routes the operation name must be on the allow-list.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

from tokenization.models import TokenizationConfig

_OPERATION_RE = re.compile(r"(?:mutation|query)\s+(\w+)")


def matches(uri: str, patterns: Iterable[str | re.Pattern[str]]) -> bool:
    """True iff any pattern (case-sensitive regex) matches somewhere in uri.

    Accepts pattern strings or the compiled TokenizationConfig.compiled_patterns.
    """
    return any(re.search(pattern, uri) for pattern in patterns)


def extract_operation_name(query: str) -> str | None:
    match = _OPERATION_RE.search(query)
    return match.group(1) if match else None


def should_intercept_graphql(conf: TokenizationConfig, parsed_body: Any) -> bool:
    """Apply the GraphQL operation allow-list.

    Non-GraphQL routes always pass. A GraphQL body whose operation name
    cannot be extracted is never intercepted.
    """
    if not conf.is_graphql_request:
        return True
    if not isinstance(parsed_body, Mapping):
        return False
    query = parsed_body.get("query")
    if not isinstance(query, str):
        return False
    operation_name = extract_operation_name(query)
    if operation_name is None:
        return False
    if not conf.graphql_operation_names:
        return True
    return operation_name in conf.graphql_operation_names
