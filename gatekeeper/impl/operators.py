from datetime import datetime, timezone
from typing import Any, Callable, Optional

from gatekeeper.impl.model.value_parsing import (compare_versions, parse_number,
                                                 parse_time, regex_matches)


def _numeric_operator(fn: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def op(value: Any, target: Any) -> bool:
        a = parse_number(value)
        b = parse_number(target)
        return a is not None and b is not None and fn(a, b)
    return op


def _version_operator(fn: Callable[[int], bool]) -> Callable[[Any, Any], bool]:
    def op(value: Any, target: Any) -> bool:
        result = compare_versions(value, target)
        return result is not None and fn(result)
    return op


def _string_compare(ignore_case: bool, fn: Callable[[str, str], bool]) -> Callable[[Any, Any], bool]:
    def compare(a: Any, b: Any) -> bool:
        if a is None or b is None:
            return False
        sa, sb = _stringify(a), _stringify(b)
        if ignore_case:
            return fn(sa.lower(), sb.lower())
        return fn(sa, sb)
    return compare


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _any_of(compare: Callable[[Any, Any], bool], negate: bool = False) -> Callable[[Any, Any], bool]:
    def op(value: Any, target: Any) -> bool:
        if not isinstance(target, list):
            return negate
        found = any(compare(value, item) for item in target)
        return not found if negate else found
    return op


def _time_operator(fn: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def op(value: Any, target: Any) -> bool:
        if value is None or target is None:
            return False
        a = parse_time(value)
        b = parse_time(target)
        return a is not None and b is not None and fn(a, b)
    return op


def _same_day(a: float, b: float) -> bool:
    try:
        day_a = datetime.fromtimestamp(a / 1000.0, timezone.utc).date()
        day_b = datetime.fromtimestamp(b / 1000.0, timezone.utc).date()
    except (OverflowError, OSError, ValueError):
        # outside the range of dates the platform can represent
        return False
    return day_a == day_b


def _loose_equals(value: Any, target: Any) -> bool:
    if value is None or target is None:
        return value is None and target is None
    if isinstance(value, (str, int, float)) and isinstance(target, (str, int, float)) and not isinstance(value, bool) and not isinstance(target, bool):
        if isinstance(value, str) != isinstance(target, str):
            a, b = parse_number(value), parse_number(target)
            return a is not None and a == b
    return value == target


def _array_membership(require_all: bool, negate: bool) -> Callable[[Any, Any], bool]:
    def op(value: Any, target: Any) -> bool:
        if not isinstance(value, list) or not isinstance(target, list):
            return False
        members = set(_hashable(v) for v in value)

        def contains(item: Any) -> bool:
            if _hashable(item) in members:
                return True
            as_int = _as_int(item)
            return as_int is not None and as_int in members

        matched = all(contains(t) for t in target) if require_all else any(contains(t) for t in target)
        return not matched if negate else matched
    return op


def _hashable(value: Any) -> Any:
    return value if isinstance(value, (str, int, float, bool, type(None))) else str(value)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


ops = {
    # numeric
    "gt": _numeric_operator(lambda a, b: a > b),
    "gte": _numeric_operator(lambda a, b: a >= b),
    "lt": _numeric_operator(lambda a, b: a < b),
    "lte": _numeric_operator(lambda a, b: a <= b),
    # version
    "version_gt": _version_operator(lambda r: r > 0),
    "version_gte": _version_operator(lambda r: r >= 0),
    "version_lt": _version_operator(lambda r: r < 0),
    "version_lte": _version_operator(lambda r: r <= 0),
    "version_eq": _version_operator(lambda r: r == 0),
    "version_neq": _version_operator(lambda r: r != 0),
    # list
    "any": _any_of(_string_compare(True, lambda a, b: a == b)),
    "none": _any_of(_string_compare(True, lambda a, b: a == b), negate=True),
    "any_case_sensitive": _any_of(_string_compare(False, lambda a, b: a == b)),
    "none_case_sensitive": _any_of(_string_compare(False, lambda a, b: a == b), negate=True),
    # string
    "str_starts_with_any": _any_of(_string_compare(True, lambda a, b: a.startswith(b))),
    "str_ends_with_any": _any_of(_string_compare(True, lambda a, b: a.endswith(b))),
    "str_contains_any": _any_of(_string_compare(True, lambda a, b: b in a)),
    "str_contains_none": _any_of(_string_compare(True, lambda a, b: b in a), negate=True),
    "str_matches": lambda value, target: regex_matches(target, value),
    # equality
    "eq": _loose_equals,
    "neq": lambda value, target: not _loose_equals(value, target),
    # dates
    "before": _time_operator(lambda a, b: a < b),
    "after": _time_operator(lambda a, b: a > b),
    "on": _time_operator(_same_day),
    # arrays
    "array_contains_any": _array_membership(require_all=False, negate=False),
    "array_contains_none": _array_membership(require_all=False, negate=True),
    "array_contains_all": _array_membership(require_all=True, negate=False),
    "not_array_contains_all": _array_membership(require_all=True, negate=True),
}

# operators that need the current ID lists, and so are applied by the evaluator itself
ID_LIST_OPERATORS = frozenset(["in_segment_list", "not_in_segment_list"])
