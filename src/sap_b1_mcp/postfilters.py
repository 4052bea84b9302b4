# SAP B1 Query MCP Server
# File: postfilters.py
# Version: v1

"""Client-side row predicates for query intents OData cannot express.

The Service Layer cannot compare two fields of the same row in ``$filter``
(e.g. "stock below minimum"), so such intents are applied locally after the
fetch. Rules are declarative: a resource, trigger phrases, and a predicate.
"""

from __future__ import annotations

import logging
import operator
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .models import Row

logger = logging.getLogger(__name__)

_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "lt": operator.lt,
    "le": operator.le,
    "gt": operator.gt,
    "ge": operator.ge,
    "eq": operator.eq,
    "ne": operator.ne,
}


def _number(row: Row, fields: Sequence[str], default: float) -> float:
    """First truthy numeric value among ``fields`` (mirrors ``a || b || 0``)."""
    for name in fields:
        value = row.get(name)
        if value in (None, "", 0):
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return default


@dataclass(frozen=True)
class FieldComparison:
    """``left <op> right`` where each side is the first populated of several fields."""

    left: Tuple[str, ...]
    op: str
    right: Tuple[str, ...]
    default: float = 0.0

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported comparison operator: {self.op}")

    def __call__(self, row: Row) -> bool:
        return _OPERATORS[self.op](
            _number(row, self.left, self.default),
            _number(row, self.right, self.default),
        )

    def describe(self) -> str:
        return f"{'|'.join(self.left)} {self.op} {'|'.join(self.right)}"


@dataclass(frozen=True)
class PostFilterRule:
    name: str
    resource_name: str
    phrases: Tuple[str, ...]
    predicate: FieldComparison

    def applies_to(self, resource_name: str, query_text: str) -> bool:
        if resource_name != self.resource_name:
            return False
        lowered = (query_text or "").lower()
        return any(p in lowered for p in self.phrases)


DEFAULT_RULES: Tuple[PostFilterRule, ...] = (
    PostFilterRule(
        name="items_below_minimum_stock",
        resource_name="Items",
        phrases=("below minimum", "below min", "low stock", "minimum stock"),
        predicate=FieldComparison(
            left=("QuantityOnStock", "OnHand"),
            op="lt",
            right=("MinInventory",),
        ),
    ),
)


def apply_post_filters(
    resource_name: str,
    query_text: str,
    rows: List[Row],
    rules: Optional[Sequence[PostFilterRule]] = None,
) -> Tuple[List[Row], List[str]]:
    """Apply every matching rule; returns (rows, names of applied rules)."""
    applied: List[str] = []
    for rule in DEFAULT_RULES if rules is None else rules:
        if not rule.applies_to(resource_name, query_text):
            continue
        before = len(rows)
        rows = [row for row in rows if rule.predicate(row)]
        applied.append(rule.name)
        logger.info(
            "Post-filter %s (%s): %d -> %d rows",
            rule.name, rule.predicate.describe(), before, len(rows),
        )
    return rows, applied
