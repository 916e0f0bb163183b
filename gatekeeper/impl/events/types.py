import json
from typing import Any, List, Optional

from gatekeeper.impl.util import current_time_millis

INTERNAL_EVENT_PREFIX = 'statsig::'
GATE_EXPOSURE_EVENT = INTERNAL_EVENT_PREFIX + 'gate_exposure'
CONFIG_EXPOSURE_EVENT = INTERNAL_EVENT_PREFIX + 'config_exposure'
LAYER_EXPOSURE_EVENT = INTERNAL_EVENT_PREFIX + 'layer_exposure'

# Events are created for every exposed evaluation, so like the other high-volume types in this
# package they use slots rather than dictionaries until they are serialized for a flush.


class LogEvent:
    __slots__ = ['event_name', 'user', 'value', 'metadata', 'secondary_exposures', 'time', 'dedup_key']

    def __init__(
        self,
        event_name: str,
        user: Optional[dict] = None,
        value: Any = None,
        metadata: Optional[dict] = None,
        secondary_exposures: Optional[List[dict]] = None,
        time: Optional[int] = None,
        dedup_key: Optional[str] = None,
    ):
        """
        :param user: the user in its wire form, without private attributes
        :param dedup_key: identifies repeats of the same exposure; None means never deduplicated
        """
        self.event_name = event_name
        self.user = user
        self.value = value
        self.metadata = metadata
        self.secondary_exposures = secondary_exposures
        self.time = current_time_millis() if time is None else time
        self.dedup_key = dedup_key

    def to_dict(self) -> dict:
        out = {'eventName': self.event_name, 'time': self.time}  # type: dict
        if self.user is not None:
            out['user'] = self.user
        if self.value is not None:
            out['value'] = self.value
        if self.metadata is not None:
            out['metadata'] = self.metadata
        if self.secondary_exposures is not None:
            out['secondaryExposures'] = self.secondary_exposures
        return out

    def __repr__(self) -> str:  # used only in test debugging
        return "LogEvent(%s)" % json.dumps(self.to_dict())

    def __eq__(self, other) -> bool:  # used only in tests
        return isinstance(other, LogEvent) and self.to_dict() == other.to_dict()
