import base64
import hashlib
from collections import namedtuple
from typing import Any, Callable, Dict, List, Optional

from gatekeeper.evaluation import EvaluationDetails, EvaluationReason, EvaluationResult
from gatekeeper.impl.model import Condition, ConditionKind, ConfigSpec, Rule
from gatekeeper.impl.model.snapshot import Snapshot
from gatekeeper.impl.operators import ID_LIST_OPERATORS, ops
from gatekeeper.impl.rwlock import ReadWriteLock
from gatekeeper.impl.sticky import StickyAssignmentHandler
from gatekeeper.impl.util import current_time_millis, log
from gatekeeper.user import User

# For consistency with the rule authoring service and other implementations, these constants
# must not change: they determine which bucket every unit id falls into.
PASS_PERCENTAGE_BUCKETS = 10000
USER_BUCKET_COUNT = 1000

# gate checks nested through pass_gate/fail_gate conditions deeper than this are Unsupported,
# which also stops gates that reference each other in a cycle
MAX_NESTED_GATE_DEPTH = 32

_HASH_CACHE_LIMIT = 100000
_hash_cache = {}  # type: Dict[str, int]

# user agent fields may be named either way in conditions
_UA_FIELD_ALIASES = {'os': 'os_name', 'browser': 'browser_name'}


def compute_user_hash(value: str) -> int:
    """Returns the first 8 bytes of the SHA-256 digest of ``value`` as an unsigned big-endian integer."""
    cached = _hash_cache.get(value)
    if cached is not None:
        return cached
    if len(_hash_cache) > _HASH_CACHE_LIMIT:
        _hash_cache.clear()
    h = int.from_bytes(hashlib.sha256(value.encode('utf-8')).digest()[:8], 'big')
    _hash_cache[value] = h
    return h


def hash_unit_id_for_id_list(unit_id: Any) -> str:
    """ID lists store the first 8 characters of the base64-encoded SHA-256 digest of each id."""
    digest = hashlib.sha256(str(unit_id).encode('utf-8')).digest()
    return base64.b64encode(digest).decode('ascii')[:8]


def clean_exposures(exposures: List[dict]) -> List[dict]:
    """Drops segment gates and repeated (gate, gateValue, ruleID) entries, keeping the first of each."""
    seen = set()
    cleaned = []
    for exposure in exposures:
        gate = exposure.get('gate') or ''
        if gate.startswith('segment:'):
            continue
        key = '%s|%s|%s' % (gate, exposure.get('gateValue'), exposure.get('ruleID'))
        if key in seen:
            continue
        seen.add(key)
        cleaned.append(exposure)
    return cleaned


_ConditionResult = namedtuple('_ConditionResult', ['passes', 'unsupported', 'exposures'])

_UNSUPPORTED = _ConditionResult(False, True, [])


class Evaluator:
    """
    Evaluates gates, configs, experiments and layers against a snapshot of the rulesets.

    The snapshot is obtained once at the start of each public call, so a concurrent sync never
    changes the rules partway through an evaluation. Only the sticky assignment handler and the
    host-supplied lookup callables have side effects.
    """

    def __init__(
        self,
        get_snapshot: Callable[[], Snapshot],
        sticky_handler: Optional[StickyAssignmentHandler] = None,
        user_agent_parser: Optional[Callable[[str], Optional[dict]]] = None,
        ip_country_lookup: Optional[Callable[[str], Optional[str]]] = None,
    ):
        """
        :param get_snapshot: function that returns the current :class:`Snapshot`
        :param sticky_handler: persists experiment assignments; None disables sticky bucketing
        :param user_agent_parser: maps a user agent string to a dict of fields such as ``os_name``
        :param ip_country_lookup: maps an IP address to a country code
        """
        self.__get_snapshot = get_snapshot
        self.__sticky = sticky_handler or StickyAssignmentHandler(None)
        self.__user_agent_parser = user_agent_parser
        self.__ip_country_lookup = ip_country_lookup
        self.__overrides_lock = ReadWriteLock()
        self.__gate_overrides = {}  # type: Dict[str, Dict[str, bool]]
        self.__config_overrides = {}  # type: Dict[str, Dict[str, dict]]
        self.__layer_overrides = {}  # type: Dict[str, Dict[str, dict]]

    # Public evaluation entry points

    def check_gate(self, user: User, name: str) -> EvaluationResult:
        snapshot = self.__get_snapshot()
        override = self._lookup_override(self.__gate_overrides, user, name)
        if override is not None:
            return self._override_result(snapshot, override is True, None)
        if not snapshot.initialized:
            return self._uninitialized_result(snapshot)
        spec = snapshot.get_gate(name)
        if spec is None:
            return self._unrecognized_result(snapshot)
        return self._eval_spec(snapshot, user, spec, 0)

    def get_config(self, user: User, name: str, persisted_values: Optional[dict] = None) -> EvaluationResult:
        """
        Evaluates a dynamic config or experiment. ``persisted_values`` are the user's stored sticky
        assignments; passing None opts this call out of sticky bucketing.
        """
        snapshot = self.__get_snapshot()
        override = self._lookup_override(self.__config_overrides, user, name)
        if override is not None:
            return self._override_result(snapshot, True, override)
        if not snapshot.initialized:
            return self._uninitialized_result(snapshot)
        spec = snapshot.get_config(name)
        if spec is None:
            return self._unrecognized_result(snapshot)
        return self._eval_config(snapshot, user, spec, persisted_values)

    def get_layer(self, user: User, name: str, persisted_values: Optional[dict] = None) -> EvaluationResult:
        snapshot = self.__get_snapshot()
        override = self._lookup_override(self.__layer_overrides, user, name)
        if override is not None:
            return self._override_result(snapshot, True, override)
        if not snapshot.initialized:
            return self._uninitialized_result(snapshot)
        spec = snapshot.get_layer(name)
        if spec is None:
            return self._unrecognized_result(snapshot)
        return self._eval_layer(snapshot, user, spec, persisted_values)

    def evaluate(self, user: User, name: str, persisted_values: Optional[dict] = None) -> EvaluationResult:
        """Evaluates whatever kind of spec is named ``name``: gates first, then configs, then layers."""
        snapshot = self.__get_snapshot()
        if snapshot.get_gate(name) is not None:
            return self.check_gate(user, name)
        if snapshot.get_layer(name) is not None:
            return self.get_layer(user, name, persisted_values)
        return self.get_config(user, name, persisted_values)

    # Local overrides

    def override_gate(self, name: str, value: bool, user_id: Optional[str] = None):
        with self.__overrides_lock.write():
            self.__gate_overrides.setdefault(name, {})[user_id or ''] = value

    def override_config(self, name: str, value: dict, user_id: Optional[str] = None):
        with self.__overrides_lock.write():
            self.__config_overrides.setdefault(name, {})[user_id or ''] = value

    def override_layer(self, name: str, value: dict, user_id: Optional[str] = None):
        with self.__overrides_lock.write():
            self.__layer_overrides.setdefault(name, {})[user_id or ''] = value

    def remove_gate_override(self, name: str, user_id: Optional[str] = None):
        self._remove_override(self.__gate_overrides, name, user_id)

    def remove_config_override(self, name: str, user_id: Optional[str] = None):
        self._remove_override(self.__config_overrides, name, user_id)

    def remove_layer_override(self, name: str, user_id: Optional[str] = None):
        self._remove_override(self.__layer_overrides, name, user_id)

    def clear_all_gate_overrides(self):
        with self.__overrides_lock.write():
            self.__gate_overrides.clear()

    def clear_all_config_overrides(self):
        with self.__overrides_lock.write():
            self.__config_overrides.clear()

    def clear_all_layer_overrides(self):
        with self.__overrides_lock.write():
            self.__layer_overrides.clear()

    def _remove_override(self, table: dict, name: str, user_id: Optional[str]):
        with self.__overrides_lock.write():
            entries = table.get(name)
            if entries is None:
                return
            entries.pop(user_id or '', None)
            if not entries:
                del table[name]

    def _lookup_override(self, table: dict, user: User, name: str) -> Any:
        with self.__overrides_lock.read():
            entries = table.get(name)
            if not entries:
                return None
            if user.user_id is not None:
                value = entries.get(str(user.user_id))
                if value is not None:
                    return value
            for custom_id in user.custom_ids.values():
                value = entries.get(custom_id)
                if value is not None:
                    return value
            return entries.get('')

    # Fixed results

    def _override_result(self, snapshot: Snapshot, value: bool, json_value: Optional[dict]) -> EvaluationResult:
        result = EvaluationResult(value=value, rule_id='override', json_value=json_value)
        return result.with_details(EvaluationDetails(EvaluationReason.LOCAL_OVERRIDE, snapshot.time, snapshot.init_time))

    def _uninitialized_result(self, snapshot: Snapshot) -> EvaluationResult:
        return EvaluationResult().with_details(EvaluationDetails(EvaluationReason.UNINITIALIZED, snapshot.time, snapshot.init_time))

    def _unrecognized_result(self, snapshot: Snapshot) -> EvaluationResult:
        return EvaluationResult().with_details(EvaluationDetails(EvaluationReason.UNRECOGNIZED, snapshot.time, snapshot.init_time))

    # Sticky bucketing

    def _eval_config(self, snapshot: Snapshot, user: User, spec: ConfigSpec, persisted_values: Optional[dict]) -> EvaluationResult:
        if persisted_values is None or not spec.is_active:
            self.__sticky.delete(user, spec.id_type, spec.name)
            return self._eval_spec(snapshot, user, spec, 0)

        sticky = EvaluationResult.from_sticky_values(persisted_values.get(spec.name), snapshot.time, snapshot.init_time)
        if sticky is not None:
            return sticky

        result = self._eval_spec(snapshot, user, spec, 0)
        if result.is_experiment_group:
            self.__sticky.save(user, spec.id_type, spec.name, result)
        return result

    def _eval_layer(self, snapshot: Snapshot, user: User, spec: ConfigSpec, persisted_values: Optional[dict]) -> EvaluationResult:
        if persisted_values is None:
            self.__sticky.delete(user, spec.id_type, spec.name)
            return self._eval_spec(snapshot, user, spec, 0)

        sticky = EvaluationResult.from_sticky_values(persisted_values.get(spec.name), snapshot.time, snapshot.init_time)
        if sticky is not None:
            if self._is_experiment_active(snapshot, sticky.config_delegate):
                return sticky
            self.__sticky.delete(user, spec.id_type, spec.name)
            return self._eval_spec(snapshot, user, spec, 0)

        result = self._eval_spec(snapshot, user, spec, 0)
        if self._is_experiment_active(snapshot, result.config_delegate):
            if result.is_experiment_group:
                self.__sticky.save(user, spec.id_type, spec.name, result)
        else:
            self.__sticky.delete(user, spec.id_type, spec.name)
        return result

    def _is_experiment_active(self, snapshot: Snapshot, name: Optional[str]) -> bool:
        if not name:
            return False
        experiment = snapshot.get_config(name)
        return experiment is not None and experiment.is_active

    # Evaluation proper

    def _eval_spec(self, snapshot: Snapshot, user: User, spec: ConfigSpec, depth: int) -> EvaluationResult:
        try:
            result = self._eval(snapshot, user, spec, depth)
        except Exception as e:
            log.exception("Unexpected error evaluating %s: %s" % (spec.name, e))
            result = EvaluationResult(value=False, json_value=spec.default_value, id_type=spec.id_type, unsupported=True, config_version=spec.version)
        reason = EvaluationReason.UNSUPPORTED if result.unsupported else snapshot.reason
        return result.with_details(EvaluationDetails(reason, snapshot.time, snapshot.init_time))

    def _eval(self, snapshot: Snapshot, user: User, spec: ConfigSpec, depth: int) -> EvaluationResult:
        if not spec.enabled:
            return EvaluationResult(value=False, rule_id='disabled', json_value=spec.default_value, id_type=spec.id_type, config_version=spec.version)

        exposures = []  # type: List[dict]
        for rule in spec.rules:
            rule_result = self._eval_rule(snapshot, user, rule, depth)
            if rule_result.unsupported:
                return EvaluationResult(value=False, json_value=spec.default_value, id_type=spec.id_type, unsupported=True, config_version=spec.version)
            exposures.extend(rule_result.exposures)
            if not rule_result.passes:
                continue

            delegated = self._eval_delegate(snapshot, user, rule, exposures, depth)
            if delegated is not None:
                return delegated

            passed = self._eval_pass_percent(user, rule, spec)
            return EvaluationResult(
                value=passed,
                rule_id=rule.id,
                group_name=rule.group_name,
                json_value=rule.return_value if passed else spec.default_value,
                secondary_exposures=clean_exposures(exposures),
                is_experiment_group=rule.is_experiment_group,
                id_type=spec.id_type,
                config_version=spec.version,
            )

        return EvaluationResult(
            value=False,
            rule_id='default',
            json_value=spec.default_value,
            secondary_exposures=clean_exposures(exposures),
            id_type=spec.id_type,
            config_version=spec.version,
        )

    def _eval_delegate(self, snapshot: Snapshot, user: User, rule: Rule, exposures: List[dict], depth: int) -> Optional[EvaluationResult]:
        if not rule.config_delegate:
            return None
        delegate = snapshot.get_config(rule.config_delegate)
        if delegate is None:
            return None

        result = self._eval(snapshot, user, delegate, depth)
        if result.unsupported:
            return result
        result.config_delegate = rule.config_delegate
        result.undelegated_secondary_exposures = clean_exposures(exposures)
        result.explicit_parameters = list(delegate.explicit_parameters or [])
        result.secondary_exposures = clean_exposures(exposures + result.secondary_exposures)
        return result

    def _eval_pass_percent(self, user: User, rule: Rule, spec: ConfigSpec) -> bool:
        unit_id = user.get_unit_id(rule.id_type) or ''
        h = compute_user_hash('%s.%s.%s' % (spec.salt, rule.salt, unit_id))
        return (h % PASS_PERCENTAGE_BUCKETS) < rule.pass_percentage * 100

    def _eval_rule(self, snapshot: Snapshot, user: User, rule: Rule, depth: int) -> _ConditionResult:
        exposures = []  # type: List[dict]
        for condition in rule.conditions:
            result = self._eval_condition(snapshot, user, condition, depth)
            if result.unsupported:
                return _UNSUPPORTED
            exposures.extend(result.exposures)
            if not result.passes:
                return _ConditionResult(False, False, exposures)
        return _ConditionResult(True, False, exposures)

    def _eval_condition(self, snapshot: Snapshot, user: User, condition: Condition, depth: int) -> _ConditionResult:
        kind = condition.kind
        field = condition.field
        target = condition.target_value

        if kind == ConditionKind.PUBLIC:
            return _ConditionResult(True, False, [])
        if kind in (ConditionKind.PASS_GATE, ConditionKind.FAIL_GATE):
            return self._eval_gate_condition(snapshot, user, kind, target, depth)
        if kind in (ConditionKind.MULTI_PASS_GATE, ConditionKind.MULTI_FAIL_GATE):
            return self._eval_multi_gate_condition(snapshot, user, kind, target, depth)

        if kind == ConditionKind.IP_BASED:
            value = user.get_field(field)
            if value is None:
                value = self._get_from_ip(user, field)
        elif kind == ConditionKind.UA_BASED:
            value = user.get_field(field)
            if value is None:
                value = self._get_from_user_agent(user, field)
        elif kind == ConditionKind.USER_FIELD:
            value = user.get_field(field)
        elif kind == ConditionKind.ENVIRONMENT_FIELD:
            value = user.get_environment_field(field)
        elif kind == ConditionKind.CURRENT_TIME:
            value = current_time_millis()
        elif kind == ConditionKind.USER_BUCKET:
            salt = condition.additional_values.get('salt')
            unit_id = user.get_unit_id(condition.id_type) or ''
            value = compute_user_hash('%s.%s' % ('' if salt is None else salt, unit_id)) % USER_BUCKET_COUNT
        elif kind == ConditionKind.UNIT_ID:
            value = user.get_unit_id(condition.id_type)
        else:
            return _UNSUPPORTED

        op = condition.operator
        if op in ID_LIST_OPERATORS:
            id_list = snapshot.get_id_list(target) if isinstance(target, str) else None
            in_list = id_list is not None and value is not None and hash_unit_id_for_id_list(value) in id_list.ids
            passes = in_list if op == 'in_segment_list' else not in_list
            return _ConditionResult(passes, False, [])

        fn = ops.get(op) if op is not None else None
        if fn is None:
            return _UNSUPPORTED
        if op == 'str_matches':
            target = condition.target_regex
        return _ConditionResult(fn(value, target), False, [])

    def _eval_gate_condition(self, snapshot: Snapshot, user: User, kind: ConditionKind, target: Any, depth: int) -> _ConditionResult:
        if depth >= MAX_NESTED_GATE_DEPTH or not isinstance(target, str):
            return _UNSUPPORTED
        result = self._eval_nested_gate(snapshot, user, target, depth + 1)
        if result.unsupported:
            return _UNSUPPORTED
        exposures = list(result.secondary_exposures)
        exposures.append(_gate_exposure(target, result))
        passes = result.value if kind == ConditionKind.PASS_GATE else not result.value
        return _ConditionResult(passes, False, exposures)

    def _eval_multi_gate_condition(self, snapshot: Snapshot, user: User, kind: ConditionKind, target: Any, depth: int) -> _ConditionResult:
        if depth >= MAX_NESTED_GATE_DEPTH or not isinstance(target, list):
            return _UNSUPPORTED
        exposures = []  # type: List[dict]
        for gate_name in target:
            if not isinstance(gate_name, str):
                return _UNSUPPORTED
            result = self._eval_nested_gate(snapshot, user, gate_name, depth + 1)
            if result.unsupported:
                return _UNSUPPORTED
            exposures.append(_gate_exposure(gate_name, result))
            exposures.extend(result.secondary_exposures)
            if result.value is (kind == ConditionKind.MULTI_PASS_GATE):
                return _ConditionResult(True, False, exposures)
        return _ConditionResult(False, False, exposures)

    def _eval_nested_gate(self, snapshot: Snapshot, user: User, name: str, depth: int) -> EvaluationResult:
        spec = snapshot.get_gate(name)
        if spec is None:
            return EvaluationResult()
        return self._eval(snapshot, user, spec, depth)

    def _get_from_ip(self, user: User, field: Optional[str]) -> Optional[str]:
        ip = user.ip
        if ip is None or field is None or field.lower() != 'country' or self.__ip_country_lookup is None:
            return None
        try:
            return self.__ip_country_lookup(ip)
        except Exception as e:
            log.exception("IP country lookup failed: %s" % e)
            return None

    def _get_from_user_agent(self, user: User, field: Optional[str]) -> Any:
        ua = user.user_agent
        if ua is None or field is None or self.__user_agent_parser is None:
            return None
        try:
            parsed = self.__user_agent_parser(ua)
        except Exception as e:
            log.exception("User agent parsing failed: %s" % e)
            return None
        if not isinstance(parsed, dict):
            return None
        key = field.lower()
        value = parsed.get(key)
        if value is None and key in _UA_FIELD_ALIASES:
            value = parsed.get(_UA_FIELD_ALIASES[key])
        return value


def _gate_exposure(gate: str, result: EvaluationResult) -> dict:
    return {'gate': gate, 'gateValue': 'true' if result.value is True else 'false', 'ruleID': result.rule_id}
