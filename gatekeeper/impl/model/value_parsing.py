import re
from datetime import datetime, timezone
from numbers import Number
from re import Pattern
from typing import Any, Optional, Tuple

import pyrfc3339

_epoch = datetime.fromtimestamp(0, timezone.utc)

# numeric timestamps below this are taken to be in seconds rather than milliseconds
_SECONDS_THRESHOLD = 10_000_000_000

_MAX_REGEX_INPUT_LENGTH = 1000


def is_number(input: Any) -> bool:
    # bool is a subtype of int, and we don't want to try and treat it as a number.
    return isinstance(input, Number) and not isinstance(input, bool)


def parse_number(input: Any) -> Optional[float]:
    """Converts a number or a numeric string to a float, or returns None."""
    if is_number(input):
        return float(input)
    if isinstance(input, str):
        try:
            return float(input.strip())
        except ValueError:
            return None
    return None


def parse_regex(input: Any) -> Optional[Pattern]:
    if isinstance(input, str):
        try:
            return re.compile(input)
        except re.error:
            return None
    return None


def regex_matches(pattern: Any, value: Any) -> bool:
    if value is None:
        return False
    text = str(value)
    if len(text) >= _MAX_REGEX_INPUT_LENGTH:
        return False
    compiled = pattern if isinstance(pattern, Pattern) else parse_regex(pattern)
    return compiled is not None and compiled.search(text) is not None


def parse_time(input: Any) -> Optional[float]:
    """
    :param input: Either a number as seconds or milliseconds since Unix epoch, or a string as an
      RFC3339 timestamp or a numeric string
    :return: milliseconds since Unix epoch, or None if input was invalid.
    """
    if isinstance(input, str):
        try:
            parsed_time = pyrfc3339.parse(input)
            return (parsed_time - _epoch).total_seconds() * 1000.0
        except (ValueError, TypeError):
            pass
        try:
            # dates without a time or zone, such as "2024-05-01", are read as UTC
            parsed_date = datetime.fromisoformat(input)
            if parsed_date.tzinfo is None:
                parsed_date = parsed_date.replace(tzinfo=timezone.utc)
            return (parsed_date - _epoch).total_seconds() * 1000.0
        except ValueError:
            input = parse_number(input)

    if is_number(input):
        ms = float(input)
        return ms * 1000.0 if ms < _SECONDS_THRESHOLD else ms

    return None


def parse_version(input: Any) -> Optional[Tuple[int, ...]]:
    """
    Parses a dotted version string such as "1.2.3-beta" into a tuple of integers, ignoring
    anything after the first hyphen. Returns None if any component is not numeric.
    """
    if not isinstance(input, str):
        return None
    version = input.split('-', 1)[0]
    if version == '':
        return None
    parts = []
    for part in version.split('.'):
        try:
            parts.append(int(part))
        except ValueError:
            return None
    return tuple(parts)


def compare_versions(a: Any, b: Any) -> Optional[int]:
    """Returns -1, 0 or 1 comparing two version strings, or None if either is invalid."""
    va = parse_version(a)
    vb = parse_version(b)
    if va is None or vb is None:
        return None
    width = max(len(va), len(vb))
    va = va + (0,) * (width - len(va))
    vb = vb + (0,) * (width - len(vb))
    return (va > vb) - (va < vb)
