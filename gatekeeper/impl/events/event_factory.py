from typing import Any, Callable, List, Optional

from gatekeeper.evaluation import EvaluationResult
from gatekeeper.impl.events.types import (CONFIG_EXPOSURE_EVENT,
                                          GATE_EXPOSURE_EVENT,
                                          LAYER_EXPOSURE_EVENT, LogEvent)
from gatekeeper.impl.util import current_time_millis
from gatekeeper.user import User

# Event constructors are centralized here so that exposure metadata is built the same way for
# every caller. The dedup key is computed from the identifying metadata only; evaluation details
# such as the server time are added afterwards so that they do not defeat deduplication.


def dedup_key(user: Optional[User], event_name: str, metadata: Optional[dict]) -> Optional[str]:
    if user is None:
        return None
    parts = ['' if user.user_id is None else str(user.user_id)]
    parts.extend(str(v) for v in user.custom_ids.values())
    parts.append(event_name)
    if metadata:
        parts.extend(str(v) for v in metadata.values())
    return '|'.join(parts)


class EventFactory:
    def __init__(self, timestamp_fn: Callable[[], int] = current_time_millis):
        self._timestamp_fn = timestamp_fn

    def new_gate_exposure(self, user: User, gate_name: str, result: EvaluationResult, is_manual: bool = False) -> LogEvent:
        metadata = {'gate': gate_name, 'gateValue': 'true' if result.value is True else 'false', 'ruleID': result.rule_id}
        return self._exposure(user, GATE_EXPOSURE_EVENT, metadata, result, result.secondary_exposures, is_manual)

    def new_config_exposure(self, user: User, config_name: str, result: EvaluationResult, is_manual: bool = False) -> LogEvent:
        metadata = {'config': config_name, 'ruleID': result.rule_id}
        return self._exposure(user, CONFIG_EXPOSURE_EVENT, metadata, result, result.secondary_exposures, is_manual)

    def new_layer_exposure(self, user: User, layer_name: str, parameter_name: str, result: EvaluationResult, is_manual: bool = False) -> LogEvent:
        """
        An explicit parameter belongs to the allocated experiment and carries the full secondary
        exposures; any other parameter belongs to the layer itself.
        """
        is_explicit = parameter_name in result.explicit_parameters
        allocated_experiment = (result.config_delegate or '') if is_explicit else ''
        exposures = result.secondary_exposures if is_explicit else result.undelegated_secondary_exposures
        metadata = {
            'config': layer_name,
            'ruleID': result.rule_id,
            'allocatedExperiment': allocated_experiment,
            'parameterName': parameter_name,
            'isExplicitParameter': 'true' if is_explicit else 'false',
        }
        return self._exposure(user, LAYER_EXPOSURE_EVENT, metadata, result, exposures, is_manual)

    def new_custom_event(self, user: Optional[User], event_name: str, value: Any = None, metadata: Optional[dict] = None) -> LogEvent:
        return LogEvent(
            event_name,
            user=None if user is None else user.to_dict(),
            value=value,
            metadata=metadata,
            time=self._timestamp_fn(),
            dedup_key=None,
        )

    def _exposure(self, user: User, event_name: str, metadata: dict, result: EvaluationResult, exposures: List[dict], is_manual: bool) -> LogEvent:
        if is_manual:
            metadata['isManualExposure'] = 'true'
        key = dedup_key(user, event_name, metadata)
        if result.evaluation_details is not None:
            metadata.update(result.evaluation_details.to_metadata())
        return LogEvent(
            event_name,
            user=user.to_dict(),
            metadata=metadata,
            secondary_exposures=list(exposures),
            time=self._timestamp_fn(),
            dedup_key=key,
        )
