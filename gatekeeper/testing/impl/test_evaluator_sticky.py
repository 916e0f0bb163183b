from gatekeeper.evaluation import EvaluationReason
from gatekeeper.testing.impl.evaluator_util import *
from gatekeeper.testing.stub_util import MockStickyStore

store = None  # type: MockStickyStore

KEY = 'user-key:userID'


def setup_function():
    global store
    store = MockStickyStore()


def experiment_payload(group: str, active: bool = True, experiment_group: bool = True) -> PayloadBuilder:
    rule = RuleBuilder('rule_' + group).return_value({'group': group})
    if experiment_group:
        rule.experiment_group(group)
    return PayloadBuilder().config(SpecBuilder.experiment('exp').active(active).rule(rule))


def layer_payload(group: str, active: bool = True) -> PayloadBuilder:
    return (
        PayloadBuilder()
        .config(SpecBuilder.experiment('exp').active(active).explicit_parameters('group').rule(RuleBuilder('rule_' + group).experiment_group(group).return_value({'group': group})))
        .layer(SpecBuilder.layer('layer').rule(RuleBuilder('layer_rule').config_delegate('exp')), 'exp')
    )


def test_assignment_is_saved_for_experiment_group():
    result = make_evaluator(experiment_payload('Control'), store).get_config(basic_user, 'exp', {})
    assert result.group_name == 'Control'
    assert store.saves == [(KEY, 'exp')]
    assert store.data[KEY]['exp']['group_name'] == 'Control'
    assert store.data[KEY]['exp']['json_value'] == {'group': 'Control'}


def test_persisted_assignment_survives_rule_change():
    make_evaluator(experiment_payload('Control'), store).get_config(basic_user, 'exp', {})
    result = make_evaluator(experiment_payload('Test'), store).get_config(basic_user, 'exp', store.load(KEY))
    assert result.group_name == 'Control'
    assert result.json_value == {'group': 'Control'}
    assert result.is_experiment_group is True
    assert result.evaluation_details.reason == EvaluationReason.PERSISTED


def test_no_persisted_values_deletes_stored_assignment():
    make_evaluator(experiment_payload('Control'), store).get_config(basic_user, 'exp', {})
    result = make_evaluator(experiment_payload('Test'), store).get_config(basic_user, 'exp', None)
    assert result.group_name == 'Test'
    assert store.deletes == [(KEY, 'exp')]
    assert store.data[KEY] == {}


def test_inactive_experiment_ignores_persisted_assignment():
    make_evaluator(experiment_payload('Control'), store).get_config(basic_user, 'exp', {})
    persisted = store.load(KEY)
    result = make_evaluator(experiment_payload('Test', active=False), store).get_config(basic_user, 'exp', persisted)
    assert result.group_name == 'Test'
    assert result.evaluation_details.reason == EvaluationReason.NETWORK
    assert store.deletes == [(KEY, 'exp')]


def test_result_outside_experiment_group_is_not_saved():
    make_evaluator(experiment_payload('Control', experiment_group=False), store).get_config(basic_user, 'exp', {})
    assert store.saves == []


def test_malformed_persisted_value_is_ignored():
    result = make_evaluator(experiment_payload('Test'), store).get_config(basic_user, 'exp', {'exp': 'garbage'})
    assert result.group_name == 'Test'
    assert result.evaluation_details.reason == EvaluationReason.NETWORK


def test_store_errors_do_not_affect_evaluation():
    store.exception = Exception("store is down")
    result = make_evaluator(experiment_payload('Control'), store).get_config(basic_user, 'exp', {})
    assert result.group_name == 'Control'
    assert result.evaluation_details.reason == EvaluationReason.NETWORK


def test_layer_assignment_is_saved_when_delegate_is_active():
    result = make_evaluator(layer_payload('Control'), store).get_layer(basic_user, 'layer', {})
    assert result.config_delegate == 'exp'
    assert store.saves == [(KEY, 'layer')]
    assert store.data[KEY]['layer']['config_delegate'] == 'exp'
    assert store.data[KEY]['layer']['explicit_parameters'] == ['group']


def test_layer_persisted_assignment_is_used_while_delegate_is_active():
    make_evaluator(layer_payload('Control'), store).get_layer(basic_user, 'layer', {})
    result = make_evaluator(layer_payload('Test'), store).get_layer(basic_user, 'layer', store.load(KEY))
    assert result.group_name == 'Control'
    assert result.config_delegate == 'exp'
    assert result.evaluation_details.reason == EvaluationReason.PERSISTED


def test_layer_persisted_assignment_is_dropped_when_delegate_is_inactive():
    make_evaluator(layer_payload('Control'), store).get_layer(basic_user, 'layer', {})
    result = make_evaluator(layer_payload('Test', active=False), store).get_layer(basic_user, 'layer', store.load(KEY))
    assert result.group_name == 'Test'
    assert result.evaluation_details.reason == EvaluationReason.NETWORK
    assert store.deletes == [(KEY, 'layer')]


def test_layer_without_persisted_values_deletes_assignment():
    make_evaluator(layer_payload('Control'), store).get_layer(basic_user, 'layer', None)
    assert store.saves == []
    assert store.deletes == [(KEY, 'layer')]
