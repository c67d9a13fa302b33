"""
Structured filters for narrowing lead candidates.

``status=new, score>=50`` keeps only leads that satisfy every condition.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Literal, Mapping, TypeVar


FilterOperator = Literal["eq", "ne", "gt", "gte", "lt", "lte", "in", "contains"]
Scalar = str | bool | int | float

LEAD_FILTER_FIELDS: frozenset[str] = frozenset(
    {"name", "company", "email", "phone", "title", "status", "source", "score"}
)

_IDENTIFIER = re.compile(r"\A[a-z_]\w*\Z", flags=re.IGNORECASE)
_NUMERIC = re.compile(r"\A-?\d+(\.\d+)?\Z")
_IN_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s+in\s+(.+)\s*$", flags=re.IGNORECASE)
_OP_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*(<=|>=|!=|=|<|>|~|:)\s*(.+)\s*$")
# Quoted strings and bracketed lists are kept whole; "and" only counts as a word.
_TOKEN_RE = re.compile(
    r"""
    (?P<quoted>"[^"]*"|'[^']*')
    | (?P<group>\([^)]*\)|\[[^\]]*\])
    | (?P<separator>,|(?<!\S)and(?!\S))
    | (?P<text>[^"'(\[,a]+|.)
    """,
    flags=re.IGNORECASE | re.VERBOSE | re.DOTALL,
)

_OPERATORS: dict[str, FilterOperator] = {
    "=": "eq",
    ":": "eq",
    "!=": "ne",
    ">": "gt",
    ">=": "gte",
    "<": "lt",
    "<=": "lte",
    "~": "contains",
}

T = TypeVar("T")


class FilterParseError(ValueError):
    """Raised when filter syntax is invalid."""


@dataclass(frozen=True)
class Filter:
    """One normalized filter condition."""

    field: str
    operator: FilterOperator
    value: Scalar | list[Scalar]

    def matches(self, record: Mapping[str, Any] | Any) -> bool:
        """Evaluate the condition against a row dict or a result model."""
        if isinstance(record, Mapping):
            actual = record.get(self.field)
        else:
            actual = getattr(record, self.field, None)
        if actual is None:
            return False

        if self.operator in {"gt", "gte", "lt", "lte"}:
            number = _as_number(actual)
            if number is None:
                return False
            target = float(self.value)  # type: ignore[arg-type]
            return {
                "gt": number > target,
                "gte": number >= target,
                "lt": number < target,
                "lte": number <= target,
            }[self.operator]

        if self.operator == "contains":
            return str(self.value).lower() in str(actual).lower()

        if isinstance(self.value, list):
            return any(_equals(actual, item) for item in self.value)

        equal = _equals(actual, self.value)
        return equal if self.operator == "eq" else not equal


def supported_filter_syntax() -> str:
    """One-line help for the ``--filters`` option."""
    return (
        "Lead filters: field=value, field!=value, field>N, field>=N, field<N, "
        "field<=N, field~text (substring), field in (a, b); separate conditions "
        f"with commas or 'and'. Fields: {', '.join(sorted(LEAD_FILTER_FIELDS))}."
    )


def parse_filters(
    raw_filters: str | None,
    *,
    allowed_fields: Iterable[str] | None = LEAD_FILTER_FIELDS,
) -> list[Filter]:
    """Parse a raw filter string into normalized conditions."""
    if raw_filters is None or not raw_filters.strip():
        return []
    allowed = frozenset(allowed_fields) if allowed_fields is not None else None
    return [_parse_condition(part, allowed) for part in _split_conditions(raw_filters)]


def apply_filters(records: list[T], filters: list[Filter]) -> list[T]:
    """Keep records satisfying every filter, preserving order."""
    if not filters:
        return list(records)
    return [record for record in records if all(f.matches(record) for f in filters)]


def _parse_condition(condition: str, allowed: frozenset[str] | None) -> Filter:
    text = condition.strip()
    if not text:
        raise FilterParseError("Empty filter condition.")

    in_match = _IN_RE.match(text)
    if in_match:
        field = _check_field(in_match.group(1), allowed)
        values = _parse_list(in_match.group(2))
        if not values:
            raise FilterParseError(f"`in` filter has no values: {text!r}")
        return Filter(field=field, operator="in", value=values)

    op_match = _OP_RE.match(text)
    if not op_match:
        raise FilterParseError(f"Invalid filter syntax: {text!r}")

    field = _check_field(op_match.group(1), allowed)
    symbol = op_match.group(2)
    operator = _OPERATORS[symbol]
    value = _parse_scalar(op_match.group(3))

    if operator in {"gt", "gte", "lt", "lte"} and (
        isinstance(value, bool) or not isinstance(value, (int, float))
    ):
        raise FilterParseError(f"Operator `{symbol}` requires a numeric value: {text!r}")

    return Filter(field=field, operator=operator, value=value)


def _check_field(field: str, allowed: frozenset[str] | None) -> str:
    if not _IDENTIFIER.match(field):
        raise FilterParseError(f"Invalid field name: {field!r}")
    if allowed is not None and field not in allowed:
        names = ", ".join(sorted(allowed)) if allowed else "<none>"
        raise FilterParseError(f"Unknown filter field {field!r}. Allowed fields: {names}")
    return field


def _split_conditions(raw: str) -> list[str]:
    """Split on commas and the word ``and``, ignoring quoted or bracketed text."""
    parts: list[str] = []
    current: list[str] = []
    for token in _TOKEN_RE.finditer(raw):
        if token.lastgroup == "separator":
            _flush(parts, current)
        else:
            current.append(token.group())
    _flush(parts, current)
    return parts


def _flush(parts: list[str], current: list[str]) -> None:
    text = "".join(current).strip()
    if text:
        parts.append(text)
    current.clear()


def _parse_list(raw_value: str) -> list[Scalar]:
    text = raw_value.strip()
    if (text.startswith("(") and text.endswith(")")) or (
        text.startswith("[") and text.endswith("]")
    ):
        text = text[1:-1]
    if not text.strip():
        return []
    return [_parse_scalar(item) for item in _split_conditions(text)]


def _parse_scalar(raw_value: str) -> Scalar:
    text = raw_value.strip()
    if not text:
        raise FilterParseError("Missing filter value.")
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {"'", '"'}:
        return text[1:-1]
    lower = text.lower()
    if lower == "true":
        return True
    if lower == "false":
        return False
    if _NUMERIC.match(text):
        return float(text) if "." in text else int(text)
    return text


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and _NUMERIC.match(value.strip()):
        return float(value)
    return None


def _equals(actual: Any, expected: Scalar) -> bool:
    if isinstance(expected, bool):
        return str(actual).lower() == str(expected).lower()
    if isinstance(expected, (int, float)):
        number = _as_number(actual)
        return number is not None and number == float(expected)
    return str(actual).lower() == str(expected).lower()
