"""
Search criteria for the monitoring store.

Criteria are a small expression tree:

    Compare(key, op, value)   one attribute test
    And(items) / Or(items)    boolean groups

`parse_criteria` builds a tree from the nested list/dict shape used by callers
and dashboards:

    [{"status": "finished"}, "AND", [{"error_code": "0"}, "OR", {"error_code": "1"}]]

- a `{key: value}` mapping is a comparison (several keys are AND-ed),
- "AND" / "OR" (any case) are infix tokens between list items,
- list items with no token between them are AND-ed,
- AND binds tighter than OR, as in SQL,
- a list holding a single list unwraps (`[[...]]` is `[...]`).

String values may start with a comparison operator (`">1450428401"`,
`"LIKE %math%"`); the operator is stripped from the value, `=` otherwise.

`compile_criteria` turns a tree into a parameterized WHERE fragment. Keys that
are columns of the primary table test `t.<key>`; any other key tests the joined
key/value row `kv_t`.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Sequence, Tuple, Union

from delivery_monitoring.errors import CriteriaError
from delivery_monitoring.monitoring.schema import KV_COLUMN_KEY, KV_COLUMN_VALUE, MonitoringSchema
from delivery_monitoring.utils.logging import get_logger

log = get_logger(__name__)

PRIMARY_ALIAS = "t"
KV_ALIAS = "kv_t"


class Operator(str, enum.Enum):
    NE = "<>"
    LE = "<="
    GE = ">="
    LT = "<"
    GT = ">"
    EQ = "="
    LIKE = "LIKE"
    NOT_LIKE = "NOT LIKE"


# Longest tokens first so "<=" is not read as "<".
_OPERATOR_PATTERN = re.compile(r"^(?:\s*(<>|<=|>=|<|>|=|LIKE|NOT\s+LIKE))?(.*)$", re.DOTALL)
_BOOLEAN_TOKENS = ("AND", "OR")


@dataclass(frozen=True)
class Compare:
    key: str
    op: Operator = Operator.EQ
    value: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.key, str) or not self.key.strip():
            raise CriteriaError(f"Criteria key must be a non-empty string, got {self.key!r}")
        object.__setattr__(self, "key", self.key.strip())
        try:
            object.__setattr__(self, "op", Operator(self.op))
        except ValueError:
            raise CriteriaError(f"Unknown comparison operator {self.op!r}") from None
        if self.value is None and self.op not in (Operator.EQ, Operator.NE):
            raise CriteriaError(f"Operator {self.op.value} cannot be applied to NULL ({self.key})")

    @classmethod
    def parse(cls, key: str, value: Any) -> "Compare":
        """
        Build a comparison from a `{key: value}` pair, reading a leading
        operator out of string values.
        """
        if value is None or not isinstance(value, str):
            return cls(key, Operator.EQ, value)
        match = _OPERATOR_PATTERN.match(value)
        token, rest = match.group(1), match.group(2)
        op = Operator(" ".join(token.split())) if token else Operator.EQ
        return cls(key, op, rest.strip())


@dataclass(frozen=True)
class And:
    items: Tuple["Criteria", ...] = ()

    def __init__(self, *items: "Criteria") -> None:
        object.__setattr__(self, "items", tuple(items))


@dataclass(frozen=True)
class Or:
    items: Tuple["Criteria", ...] = ()

    def __init__(self, *items: "Criteria") -> None:
        object.__setattr__(self, "items", tuple(items))


Criteria = Union[Compare, And, Or]

# Matches everything.
EMPTY = And()


def _is_token(item: Any) -> bool:
    return isinstance(item, str) and item.strip().upper() in _BOOLEAN_TOKENS


def _group(items: List[Criteria], node: type) -> Criteria:
    return items[0] if len(items) == 1 else node(*items)


def parse_criteria(raw: Any) -> Criteria:
    """
    Build an expression tree from the nested list/dict criteria shape.

    Trees are returned unchanged and `None` or an empty list matches everything.
    Malformed input is not rejected: stray operator tokens are dropped and
    unrecognised elements are skipped with a warning.
    """
    if isinstance(raw, (Compare, And, Or)):
        return raw
    if raw is None:
        return EMPTY
    if isinstance(raw, Mapping):
        comparisons = []
        for key, value in raw.items():
            if not isinstance(key, str) or not key.strip():
                log.warning("Ignoring unrecognised criteria element", extra={"element": repr({key: value})})
                continue
            comparisons.append(Compare.parse(key, value))
        if not comparisons:
            return EMPTY
        return _group(comparisons, And)
    if isinstance(raw, (list, tuple)):
        return _parse_sequence(raw)
    log.warning("Ignoring unrecognised criteria element", extra={"element": repr(raw)})
    return EMPTY


def _parse_sequence(raw: Sequence[Any]) -> Criteria:
    items = list(raw)
    while len(items) == 1 and isinstance(items[0], (list, tuple)):
        items = list(items[0])

    # Each inner list is an AND group; groups are OR-ed.
    groups: List[List[Criteria]] = [[]]
    for item in items:
        if _is_token(item):
            if item.strip().upper() == "OR" and groups[-1]:
                groups.append([])
            continue
        if isinstance(item, (Mapping, list, tuple, Compare, And, Or)):
            node = parse_criteria(item)
            if node != EMPTY:
                groups[-1].append(node)
            continue
        log.warning("Ignoring unrecognised criteria element", extra={"element": repr(item)})

    branches = [_group(group, And) for group in groups if group]
    if not branches:
        return EMPTY
    return _group(branches, Or)


def compile_criteria(criteria: Criteria, schema: MonitoringSchema) -> Tuple[str, List[Any]]:
    """
    Compile a tree into a WHERE fragment and its positional parameters.

    An empty fragment means "no condition".
    """
    parameters: List[Any] = []
    clause = _compile(criteria, schema, parameters)
    return clause, parameters


def _compile(node: Criteria, schema: MonitoringSchema, parameters: List[Any]) -> str:
    if isinstance(node, Compare):
        return _compile_compare(node, schema, parameters)
    if isinstance(node, (And, Or)):
        joiner = " AND " if isinstance(node, And) else " OR "
        parts = [part for part in (_compile(item, schema, parameters) for item in node.items) if part]
        if not parts:
            return ""
        if len(parts) == 1:
            return parts[0]
        return "(" + joiner.join(parts) + ")"
    raise CriteriaError(f"Not a criteria node: {node!r}")


def _test(node: Compare) -> str:
    if node.value is None:
        return "IS NOT NULL" if node.op is Operator.NE else "IS NULL"
    return f"{node.op.value} %s"


def _compile_compare(node: Compare, schema: MonitoringSchema, parameters: List[Any]) -> str:
    if schema.is_fixed(node.key):
        clause = f"{PRIMARY_ALIAS}.{node.key} {_test(node)}"
    else:
        # Only rows that carry the key can match, whatever the operator.
        clause = f"({KV_ALIAS}.{KV_COLUMN_KEY} = %s AND {KV_ALIAS}.{KV_COLUMN_VALUE} {_test(node)})"
        parameters.append(node.key)
    if node.value is not None:
        parameters.append(node.value)
    return clause


__all__ = [
    "Operator",
    "Compare",
    "And",
    "Or",
    "Criteria",
    "EMPTY",
    "PRIMARY_ALIAS",
    "KV_ALIAS",
    "parse_criteria",
    "compile_criteria",
]
