from typing import List

from gatekeeper.impl.events.types import LogEvent
from gatekeeper.impl.util import log


class EventBuffer:
    """Events waiting for the next flush. Only the event processor's main thread touches it."""

    def __init__(self, capacity: int):
        self._capacity = capacity
        self._events = []  # type: List[LogEvent]
        self._exceeded_capacity = False
        self._dropped_events = 0

    def __len__(self) -> int:
        return len(self._events)

    def add_event(self, event: LogEvent):
        if len(self._events) >= self._capacity:
            self._dropped_events += 1
            if not self._exceeded_capacity:
                log.warning("Exceeded event queue capacity; increase event_queue_capacity to avoid dropping exposures.")
                self._exceeded_capacity = True
        else:
            self._events.append(event)
            self._exceeded_capacity = False

    def get_and_clear_dropped_count(self) -> int:
        dropped_count = self._dropped_events
        self._dropped_events = 0
        return dropped_count

    def get_events(self) -> List[LogEvent]:
        return self._events

    def clear(self):
        self._events = []
