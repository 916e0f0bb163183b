import pytest

from gatekeeper.evaluation import EvaluationReason
from gatekeeper.impl.model import ConditionKind, ConfigSpec
from gatekeeper.impl.model.snapshot import IDList, Snapshot
from gatekeeper.testing.builders import *


def test_rule_defaults():
    spec = ConfigSpec(SpecBuilder.gate('g').rule(RuleBuilder('r1')).build())
    rule = spec.rules[0]
    assert rule.salt == 'r1'
    assert rule.name == 'r1'
    assert rule.id_type == 'userID'
    assert rule.is_experiment_group is False


def test_condition_type_and_operator_are_case_insensitive():
    spec = ConfigSpec(SpecBuilder.gate('g').rule(RuleBuilder('r1').condition(ConditionBuilder('USER_FIELD').operator('ANY'))).build())
    condition = spec.rules[0].conditions[0]
    assert condition.kind == ConditionKind.USER_FIELD
    assert condition.type == 'USER_FIELD'
    assert condition.operator == 'any'


def test_unknown_condition_type_is_kept():
    spec = ConfigSpec(SpecBuilder.gate('g').rule(RuleBuilder('r1').condition(ConditionBuilder('target_app'))).build())
    assert spec.rules[0].conditions[0].kind == ConditionKind.UNKNOWN


def test_spec_keeps_original_data():
    data = SpecBuilder.config('c').default_value({'a': 1}).build()
    spec = ConfigSpec(data)
    assert spec.to_json_dict() == data
    assert spec['defaultValue'] == {'a': 1}
    assert 'rules' in spec


@pytest.mark.parametrize(
    "data",
    [
        {'type': 'feature_gate', 'rules': []},
        {'name': 'g', 'type': 'feature_gate', 'rules': 'not a list'},
        {'name': 'g', 'type': 'feature_gate', 'enabled': 'yes', 'rules': []},
        {'name': 'g', 'type': 'feature_gate', 'rules': [{'id': 'r', 'passPercentage': '50', 'conditions': []}]},
        {'name': 'g', 'type': 'feature_gate', 'rules': [{'id': 'r', 'conditions': [{'operator': 'eq'}]}]},
    ],
)
def test_malformed_spec_is_rejected(data):
    with pytest.raises(ValueError):
        ConfigSpec(data)


def test_snapshot_from_payload():
    payload = PayloadBuilder(123).gate(SpecBuilder.gate('g')).config(SpecBuilder.experiment('exp')).layer(SpecBuilder.layer('lay'), 'exp').build()
    snapshot = Snapshot.from_payload(payload, EvaluationReason.NETWORK, Snapshot.empty(), 999)
    assert snapshot.initialized is True
    assert snapshot.time == 123
    assert snapshot.init_time == 999
    assert snapshot.reason == EvaluationReason.NETWORK
    assert snapshot.get_gate('g').name == 'g'
    assert snapshot.get_config('exp').is_active is True
    assert snapshot.get_layer('lay').name == 'lay'
    assert snapshot.get_experiment_layer('exp') == 'lay'
    assert snapshot.get_gate('exp') is None


def test_snapshot_without_updates_is_none():
    assert Snapshot.from_payload({'has_updates': False}, EvaluationReason.NETWORK, Snapshot.empty(), 1) is None
    assert Snapshot.from_payload('nonsense', EvaluationReason.NETWORK, Snapshot.empty(), 1) is None


def test_snapshot_requires_spec_arrays():
    with pytest.raises(ValueError):
        Snapshot.from_payload({'has_updates': True, 'feature_gates': []}, EvaluationReason.NETWORK, Snapshot.empty(), 1)


def test_snapshot_rejects_spec_that_is_not_an_object():
    payload = PayloadBuilder().build()
    payload['feature_gates'] = ['g']
    with pytest.raises(ValueError):
        Snapshot.from_payload(payload, EvaluationReason.NETWORK, Snapshot.empty(), 1)


def test_snapshot_carries_over_id_lists_and_init_time():
    id_list = IDList('list', 'https://example/list', 'file1', 1, 10, frozenset(['abc']))
    first = PayloadBuilder(100).snapshot().with_id_lists({'list': id_list})
    payload = PayloadBuilder(200).build()
    del payload['time']
    second = Snapshot.from_payload(payload, EvaluationReason.NETWORK, first, 555)
    assert second.get_id_list('list') is id_list
    assert second.init_time == first.init_time
    assert second.time == 100


def test_str_matches_target_is_compiled_when_decoded():
    spec = ConfigSpec(SpecBuilder.gate('g').rule(RuleBuilder('r1').condition(ConditionBuilder('user_field').operator('str_matches').target('^a+$'))).build())
    condition = spec.rules[0].conditions[0]
    assert condition.target_regex.pattern == '^a+$'
    assert condition.target_value == '^a+$'


@pytest.mark.parametrize("operator,target", [("str_matches", "["), ("str_matches", 5), ("eq", "^a+$")])
def test_target_regex_is_absent_when_not_applicable(operator, target):
    spec = ConfigSpec(SpecBuilder.gate('g').rule(RuleBuilder('r1').condition(ConditionBuilder('user_field').operator(operator).target(target))).build())
    assert spec.rules[0].conditions[0].target_regex is None
