"""
Trims event payloads to the sizes the log endpoint accepts. Oversized values are shortened or
replaced with an error marker; an event is never dropped for its size.
"""

import json
from typing import Any, Optional

from gatekeeper.impl.events.types import LogEvent
from gatekeeper.impl.util import log

MAX_STRING_LENGTH = 64
MAX_OBJECT_SIZE = 4096
METADATA_ERROR = {'statsig_error': 'Metadata length too large'}
CUSTOM_ERROR = {'statsig_error': 'User object length too large'}


def trim_string(value: Any) -> Any:
    if isinstance(value, str) and len(value) > MAX_STRING_LENGTH:
        return value[:MAX_STRING_LENGTH]
    return value


def serialized_size(value: Any) -> int:
    try:
        return len(json.dumps(value, separators=(',', ':')).encode('utf-8'))
    except (TypeError, ValueError):
        return len(str(value).encode('utf-8'))


def trim_metadata(metadata: Optional[dict]) -> Optional[dict]:
    if metadata is None:
        return None
    if serialized_size(metadata) > MAX_OBJECT_SIZE:
        return dict(METADATA_ERROR)
    return metadata


def trim_user(user: Optional[dict]) -> Optional[dict]:
    """Shortens long top-level string fields and drops private attributes from a wire-form user."""
    if user is None:
        return None
    out = {}
    for key, value in user.items():
        if key == 'privateAttributes':
            continue
        if key == 'custom' and isinstance(value, dict) and serialized_size(value) > MAX_OBJECT_SIZE:
            out[key] = dict(CUSTOM_ERROR)
        else:
            out[key] = trim_string(value)
    return out


def validate_event(event: LogEvent) -> LogEvent:
    if isinstance(event.event_name, str) and len(event.event_name) > MAX_STRING_LENGTH:
        log.warning("Event name is longer than %d characters and was trimmed" % MAX_STRING_LENGTH)
    event.event_name = trim_string(event.event_name)
    event.value = trim_string(event.value)
    metadata = trim_metadata(event.metadata)
    if metadata is not event.metadata:
        log.warning("Event metadata is larger than %d bytes and was replaced" % MAX_OBJECT_SIZE)
    event.metadata = metadata
    event.user = trim_user(event.user)
    return event
