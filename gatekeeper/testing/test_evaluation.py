from gatekeeper.evaluation import DynamicConfig, EvaluationDetails, EvaluationReason, EvaluationResult, FeatureGate, Layer


def test_evaluation_details_metadata():
    details = EvaluationDetails(EvaluationReason.NETWORK, 1000, 900, 1234)
    assert details.to_metadata() == {'reason': 'Network', 'configSyncTime': 1000, 'initTime': 900, 'serverTime': 1234}


def test_feature_gate_value_is_strictly_boolean():
    assert FeatureGate('g', EvaluationResult(value=True)).value is True
    assert FeatureGate('g', EvaluationResult(value='true')).value is False


def test_dynamic_config_get():
    config = DynamicConfig('c', EvaluationResult(json_value={'n': 1, 's': 'x', 'b': False, 'l': [1]}))
    assert config.get('n') == 1
    assert config.get('n', 2.5) == 1
    assert config.get('n', 'str') == 'str'
    assert config.get('b', True) is False
    assert config.get('b', 0) == 0
    assert config.get('l', []) == [1]
    assert config.get('missing') is None
    assert config.get('missing', 'd') == 'd'


def test_dynamic_config_value_must_be_dict():
    assert DynamicConfig('c', EvaluationResult(json_value=[1, 2])).value == {}


def test_layer_exposes_each_parameter_once():
    exposed = []
    layer = Layer('l', EvaluationResult(json_value={'a': 1, 'b': 'x'}), lambda layer, name: exposed.append(name))
    assert layer.get('a') == 1
    assert layer.get('a') == 1
    assert layer.get('b', 0) == 0
    assert layer.get('missing', 3) == 3
    assert layer.get('b') == 'x'
    assert exposed == ['a', 'b']


def test_layer_get_values_does_not_expose():
    exposed = []
    layer = Layer('l', EvaluationResult(json_value={'a': 1}), lambda layer, name: exposed.append(name))
    assert layer.get_values() == {'a': 1}
    assert exposed == []


def test_sticky_values_round_trip():
    result = EvaluationResult(value=True, rule_id='r', group_name='Control', json_value={'a': 1}, config_delegate='exp', explicit_parameters=['a'])
    restored = EvaluationResult.from_sticky_values(result.to_sticky_values(5), 10, 20)
    assert restored.rule_id == 'r'
    assert restored.group_name == 'Control'
    assert restored.json_value == {'a': 1}
    assert restored.config_delegate == 'exp'
    assert restored.is_experiment_group is True
    assert restored.evaluation_details == EvaluationDetails(EvaluationReason.PERSISTED, 10, 20)


def test_sticky_values_must_be_dict():
    assert EvaluationResult.from_sticky_values('bad', 10, 20) is None
