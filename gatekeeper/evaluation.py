"""
This submodule contains the result types returned by evaluations.
"""

from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from gatekeeper.impl.util import current_time_millis


class EvaluationReason(str, Enum):
    """Describes where the data behind an evaluation came from."""

    NETWORK = 'Network'
    BOOTSTRAP = 'Bootstrap'
    PERSISTED = 'Persisted'
    DATA_ADAPTER = 'DataAdapter'
    LOCAL_OVERRIDE = 'LocalOverride'
    UNRECOGNIZED = 'Unrecognized'
    UNSUPPORTED = 'Unsupported'
    UNINITIALIZED = 'Uninitialized'


class EvaluationDetails:
    __slots__ = ['_reason', '_config_sync_time', '_init_time', '_server_time']

    def __init__(self, reason: EvaluationReason, config_sync_time: int, init_time: int, server_time: Optional[int] = None):
        self._reason = reason
        self._config_sync_time = config_sync_time
        self._init_time = init_time
        self._server_time = current_time_millis() if server_time is None else server_time

    @property
    def reason(self) -> EvaluationReason:
        return self._reason

    @property
    def config_sync_time(self) -> int:
        """The sync time of the rulesets used for the evaluation, or 0 if there were none."""
        return self._config_sync_time

    @property
    def init_time(self) -> int:
        """The time at which rulesets were first applied, or 0 if they never were."""
        return self._init_time

    @property
    def server_time(self) -> int:
        """The time of the evaluation."""
        return self._server_time

    def to_metadata(self) -> dict:
        return {'reason': self._reason.value, 'configSyncTime': self._config_sync_time, 'initTime': self._init_time, 'serverTime': self._server_time}

    def __eq__(self, other) -> bool:
        return isinstance(other, EvaluationDetails) and self._reason == other._reason and self._config_sync_time == other._config_sync_time and self._init_time == other._init_time

    def __repr__(self) -> str:
        return "(reason=%s, config_sync_time=%d, init_time=%d)" % (self._reason.value, self._config_sync_time, self._init_time)


class EvaluationResult:
    """
    The full outcome of evaluating one gate, config, experiment or layer for one user.

    ``value`` is the pass/fail outcome; ``json_value`` is the returned value for configs,
    experiments and layers. Secondary exposures record the nested gate checks that contributed
    to the outcome, in the wire form ``{"gate", "gateValue", "ruleID"}``.
    """

    __slots__ = ['value', 'json_value', 'rule_id', 'group_name', 'secondary_exposures', 'undelegated_secondary_exposures', 'explicit_parameters', 'config_delegate',
                 'is_experiment_group', 'id_type', 'unsupported', 'config_version', 'evaluation_details']

    def __init__(
        self,
        value: bool = False,
        rule_id: str = '',
        group_name: Optional[str] = None,
        json_value: Optional[Any] = None,
        secondary_exposures: Optional[List[dict]] = None,
        undelegated_secondary_exposures: Optional[List[dict]] = None,
        explicit_parameters: Optional[List[str]] = None,
        config_delegate: Optional[str] = None,
        is_experiment_group: bool = False,
        id_type: Optional[str] = None,
        unsupported: bool = False,
        config_version: Optional[int] = None,
        evaluation_details: Optional[EvaluationDetails] = None,
    ):
        self.value = value
        self.rule_id = rule_id
        self.group_name = group_name
        self.json_value = {} if json_value is None else json_value
        self.secondary_exposures = secondary_exposures or []
        self.undelegated_secondary_exposures = undelegated_secondary_exposures if undelegated_secondary_exposures is not None else list(self.secondary_exposures)
        self.explicit_parameters = explicit_parameters or []
        self.config_delegate = config_delegate
        self.is_experiment_group = is_experiment_group
        self.id_type = id_type
        self.unsupported = unsupported
        self.config_version = config_version
        self.evaluation_details = evaluation_details

    @property
    def reason(self) -> Optional[EvaluationReason]:
        return None if self.evaluation_details is None else self.evaluation_details.reason

    def with_details(self, details: EvaluationDetails) -> 'EvaluationResult':
        self.evaluation_details = details
        return self

    def to_sticky_values(self, time: Optional[int] = None) -> dict:
        """Returns the representation stored by a :class:`gatekeeper.interfaces.StickyBucketStore`."""
        return {
            'value': self.value,
            'json_value': self.json_value,
            'rule_id': self.rule_id,
            'group_name': self.group_name,
            'secondary_exposures': self.secondary_exposures,
            'undelegated_secondary_exposures': self.undelegated_secondary_exposures,
            'config_delegate': self.config_delegate,
            'explicit_parameters': self.explicit_parameters,
            'time': current_time_millis() if time is None else time,
            'config_version': self.config_version,
        }

    @staticmethod
    def from_sticky_values(data: dict, config_sync_time: int, init_time: int) -> Optional['EvaluationResult']:
        """
        Rebuilds a result from stored sticky values, or returns None if the stored data is not a
        dictionary in the expected shape.
        """
        if not isinstance(data, dict):
            return None
        return EvaluationResult(
            value=data.get('value') is True,
            rule_id=data.get('rule_id') or '',
            group_name=data.get('group_name'),
            json_value=data.get('json_value'),
            secondary_exposures=data.get('secondary_exposures'),
            undelegated_secondary_exposures=data.get('undelegated_secondary_exposures'),
            explicit_parameters=data.get('explicit_parameters'),
            config_delegate=data.get('config_delegate'),
            is_experiment_group=True,
            config_version=data.get('config_version'),
            evaluation_details=EvaluationDetails(EvaluationReason.PERSISTED, config_sync_time, init_time),
        )

    def __repr__(self) -> str:
        return "(value=%s, json_value=%s, rule_id=%s, group_name=%s, details=%s)" % (self.value, self.json_value, self.rule_id, self.group_name, self.evaluation_details)


class FeatureGate:
    """The result of checking a feature gate."""

    def __init__(self, name: str, result: EvaluationResult):
        self.__name = name
        self.__result = result

    @property
    def name(self) -> str:
        return self.__name

    @property
    def value(self) -> bool:
        return self.__result.value is True

    @property
    def rule_id(self) -> str:
        return self.__result.rule_id

    @property
    def group_name(self) -> Optional[str]:
        return self.__result.group_name

    @property
    def evaluation_details(self) -> Optional[EvaluationDetails]:
        return self.__result.evaluation_details


class DynamicConfig:
    """The result of evaluating a dynamic config or an experiment: a dictionary of values."""

    def __init__(self, name: str, result: EvaluationResult):
        self.__name = name
        self.__result = result
        self.__value = result.json_value if isinstance(result.json_value, dict) else {}

    @property
    def name(self) -> str:
        return self.__name

    @property
    def value(self) -> dict:
        return self.__value

    @property
    def rule_id(self) -> str:
        return self.__result.rule_id

    @property
    def group_name(self) -> Optional[str]:
        return self.__result.group_name

    @property
    def evaluation_details(self) -> Optional[EvaluationDetails]:
        return self.__result.evaluation_details

    def get(self, key: str, default: Any = None) -> Any:
        """
        Returns the value for ``key``, or ``default`` if it is absent. When a default is given,
        a value of a different type is also replaced by the default.
        """
        value = self.__value.get(key)
        if value is None:
            return default
        if default is not None and not _same_json_type(value, default):
            return default
        return value


class Layer:
    """
    The result of evaluating a layer. Reading a parameter with :func:`get()` logs an exposure for
    that parameter the first time it is read.
    """

    def __init__(self, name: str, result: EvaluationResult, on_parameter_exposure: Optional[Callable[['Layer', str], None]] = None):
        self.__name = name
        self.__result = result
        self.__value = result.json_value if isinstance(result.json_value, dict) else {}
        self.__on_parameter_exposure = on_parameter_exposure
        self.__exposed = set()  # type: set
        self.__lock = Lock()

    @property
    def name(self) -> str:
        return self.__name

    @property
    def rule_id(self) -> str:
        return self.__result.rule_id

    @property
    def group_name(self) -> Optional[str]:
        return self.__result.group_name

    @property
    def allocated_experiment(self) -> Optional[str]:
        return self.__result.config_delegate

    @property
    def evaluation_details(self) -> Optional[EvaluationDetails]:
        return self.__result.evaluation_details

    @property
    def result(self) -> EvaluationResult:
        return self.__result

    def get(self, key: str, default: Any = None) -> Any:
        value = self.__value.get(key)
        if value is None:
            return default
        if default is not None and not _same_json_type(value, default):
            return default
        self._expose(key)
        return value

    def get_values(self) -> Dict[str, Any]:
        """Returns all parameter values without logging exposures."""
        return dict(self.__value)

    def _expose(self, key: str):
        if self.__on_parameter_exposure is None:
            return
        with self.__lock:
            if key in self.__exposed:
                return
            self.__exposed.add(key)
        self.__on_parameter_exposure(self, key)


def _same_json_type(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool)
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return True
    return type(a) == type(b)


__all__ = ['EvaluationReason', 'EvaluationDetails', 'EvaluationResult', 'FeatureGate', 'DynamicConfig', 'Layer']
