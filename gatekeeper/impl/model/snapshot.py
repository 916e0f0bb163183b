from typing import Any, Dict, FrozenSet, Mapping, Optional

from gatekeeper.evaluation import EvaluationReason
from gatekeeper.impl.model.config_spec import ConfigSpec


class IDList:
    """
    The synced state of one ID list. Instances are never modified once published in a
    :class:`Snapshot`; the sync process builds replacements instead.
    """

    __slots__ = ['_name', '_url', '_file_id', '_creation_time', '_read_bytes', '_ids']

    def __init__(self, name: str, url: str, file_id: str, creation_time: int, read_bytes: int = 0, ids: Optional[FrozenSet[str]] = None):
        self._name = name
        self._url = url
        self._file_id = file_id
        self._creation_time = creation_time
        self._read_bytes = read_bytes
        self._ids = ids if ids is not None else frozenset()

    @property
    def name(self) -> str:
        return self._name

    @property
    def url(self) -> str:
        return self._url

    @property
    def file_id(self) -> str:
        return self._file_id

    @property
    def creation_time(self) -> int:
        return self._creation_time

    @property
    def read_bytes(self) -> int:
        return self._read_bytes

    @property
    def ids(self) -> FrozenSet[str]:
        return self._ids

    def with_content(self, read_bytes: int, ids: FrozenSet[str]) -> 'IDList':
        return IDList(self._name, self._url, self._file_id, self._creation_time, read_bytes, ids)

    def __repr__(self) -> str:
        return "IDList(%s, file_id=%s, read_bytes=%d, size=%d)" % (self._name, self._file_id, self._read_bytes, len(self._ids))


class Snapshot:
    """
    An immutable view of everything evaluation needs: the rulesets, the experiment to layer
    mapping and the ID lists, together with the sync time and origin of the rulesets.
    """

    __slots__ = ['_gates', '_configs', '_layers', '_experiment_to_layer', '_id_lists', '_time', '_init_time', '_reason']

    def __init__(
        self,
        gates: Mapping[str, ConfigSpec],
        configs: Mapping[str, ConfigSpec],
        layers: Mapping[str, ConfigSpec],
        experiment_to_layer: Mapping[str, str],
        id_lists: Mapping[str, IDList],
        time: int,
        init_time: int,
        reason: EvaluationReason,
    ):
        self._gates = gates
        self._configs = configs
        self._layers = layers
        self._experiment_to_layer = experiment_to_layer
        self._id_lists = id_lists
        self._time = time
        self._init_time = init_time
        self._reason = reason

    @staticmethod
    def empty() -> 'Snapshot':
        return Snapshot({}, {}, {}, {}, {}, 0, 0, EvaluationReason.UNINITIALIZED)

    @staticmethod
    def from_payload(payload: Any, reason: EvaluationReason, previous: 'Snapshot', init_time: int) -> Optional['Snapshot']:
        """
        Builds a snapshot from a decoded ruleset payload. Returns None if the payload reports no
        updates; raises ValueError if it is malformed. ID lists are carried over from ``previous``.
        """
        if not isinstance(payload, dict) or not payload.get('has_updates'):
            return None
        gate_list = payload.get('feature_gates')
        config_list = payload.get('dynamic_configs')
        layer_list = payload.get('layer_configs')
        if not isinstance(gate_list, list) or not isinstance(config_list, list) or not isinstance(layer_list, list):
            raise ValueError('ruleset payload is missing feature_gates, dynamic_configs or layer_configs')

        gates = _specs_by_name(gate_list)
        configs = _specs_by_name(config_list)
        layers = _specs_by_name(layer_list)

        experiment_to_layer = {}  # type: Dict[str, str]
        layer_map = payload.get('layers')
        if isinstance(layer_map, dict):
            for layer_name, experiments in layer_map.items():
                if isinstance(experiments, list):
                    for experiment_name in experiments:
                        experiment_to_layer[experiment_name] = layer_name

        time = payload.get('time')
        if not isinstance(time, int) or isinstance(time, bool):
            time = previous.time

        return Snapshot(gates, configs, layers, experiment_to_layer, previous.id_lists, time, previous.init_time or init_time, reason)

    def with_id_lists(self, id_lists: Mapping[str, IDList]) -> 'Snapshot':
        return Snapshot(self._gates, self._configs, self._layers, self._experiment_to_layer, id_lists, self._time, self._init_time, self._reason)

    @property
    def initialized(self) -> bool:
        return self._reason != EvaluationReason.UNINITIALIZED

    @property
    def time(self) -> int:
        return self._time

    @property
    def init_time(self) -> int:
        return self._init_time

    @property
    def reason(self) -> EvaluationReason:
        return self._reason

    @property
    def gates(self) -> Mapping[str, ConfigSpec]:
        return self._gates

    @property
    def configs(self) -> Mapping[str, ConfigSpec]:
        return self._configs

    @property
    def layers(self) -> Mapping[str, ConfigSpec]:
        return self._layers

    @property
    def id_lists(self) -> Mapping[str, IDList]:
        return self._id_lists

    def get_gate(self, name: str) -> Optional[ConfigSpec]:
        return self._gates.get(name)

    def get_config(self, name: str) -> Optional[ConfigSpec]:
        return self._configs.get(name)

    def get_layer(self, name: str) -> Optional[ConfigSpec]:
        return self._layers.get(name)

    def get_experiment_layer(self, experiment_name: str) -> Optional[str]:
        return self._experiment_to_layer.get(experiment_name)

    def get_id_list(self, name: str) -> Optional[IDList]:
        return self._id_lists.get(name)


def _specs_by_name(items: list) -> Dict[str, ConfigSpec]:
    specs = {}
    for item in items:
        if not isinstance(item, dict):
            raise ValueError('error in ruleset data: spec should be an object but was %s' % item.__class__)
        spec = ConfigSpec(item)
        specs[spec.name] = spec
    return specs
