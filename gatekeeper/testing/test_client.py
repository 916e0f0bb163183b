import json
import time

import pytest

from gatekeeper.client import Config, GatekeeperClient
from gatekeeper.errors import InvalidArgumentError, UninitializedError
from gatekeeper.evaluation import EvaluationReason, FeatureGate
from gatekeeper.impl.stubs import NullEventProcessor
from gatekeeper.interfaces import RULESETS_KEY
from gatekeeper.testing.builders import *
from gatekeeper.testing.stub_util import MockDataAdapter, MockEventProcessor, MockHttp, MockResponse, MockSpecRequester, MockStickyStore
from gatekeeper.testing.sync_util import wait_until
from gatekeeper.user import User

user = User('xyz', email='test@example.com')

client = None  # type: GatekeeperClient
mock_requester = None  # type: MockSpecRequester
mock_http = None  # type: MockHttp


def setup_function():
    global client, mock_requester, mock_http
    client = None
    mock_requester = MockSpecRequester()
    mock_http = MockHttp()


def teardown_function():
    if client is not None:
        client.close()


def default_payload() -> PayloadBuilder:
    return (
        PayloadBuilder(1000)
        .gate(SpecBuilder.gate('on_gate').rule(RuleBuilder('on_rule')))
        .gate(SpecBuilder.gate('off_gate').enabled(False))
        .config(SpecBuilder.config('config').default_value({'a': 0}).rule(RuleBuilder('config_rule').return_value({'a': 1, 'name': 'x'})))
        .config(
            SpecBuilder.experiment('exp').explicit_parameters('color')
            .rule(RuleBuilder('exp_rule').experiment_group('Test').return_value({'color': 'blue'}))
        )
        .layer(SpecBuilder.layer('layer').default_value({'color': 'red', 'size': 1}).rule(RuleBuilder('layer_rule').config_delegate('exp')), 'exp')
    )


def make_client(payload: PayloadBuilder = None, **kwargs) -> GatekeeperClient:
    global client
    mock_requester.config_specs = (payload or default_payload()).build()
    if 'init_timeout' not in kwargs:
        kwargs['init_timeout'] = 2
    config = Config('secret-test', **kwargs)
    client = GatekeeperClient(config, http=mock_http, spec_requester=mock_requester, event_processor=MockEventProcessor())
    return client


def events(c: GatekeeperClient):
    return c._event_processor.events


def test_client_initializes_from_network():
    c = make_client()
    assert c.is_initialized()
    assert mock_requester.request_count >= 1


def test_check_gate():
    c = make_client()
    assert c.check_gate(user, 'on_gate') is True
    assert c.check_gate(user, 'off_gate') is False
    assert c.check_gate(user, 'unknown_gate') is False


def test_gate_exposure_is_logged():
    c = make_client()
    gate = c.get_feature_gate(user, 'on_gate')
    assert gate.value is True
    assert gate.rule_id == 'on_rule'
    assert gate.evaluation_details.reason == EvaluationReason.NETWORK
    kind, exposed_user, name, result, is_manual = events(c)[0]
    assert (kind, exposed_user, name, is_manual) == ('gate', user, 'on_gate', False)
    assert result.rule_id == 'on_rule'


def test_exposure_logging_can_be_disabled():
    c = make_client()
    c.check_gate(user, 'on_gate', disable_exposure_logging=True)
    c.get_config(user, 'config', disable_exposure_logging=True)
    c.get_layer(user, 'layer', disable_exposure_logging=True).get('color')
    assert events(c) == []


def test_get_config():
    c = make_client()
    config = c.get_config(user, 'config')
    assert config.value == {'a': 1, 'name': 'x'}
    assert config.get('a') == 1
    assert config.get('a', 'wrong type') == 'wrong type'
    assert config.get('missing', 7) == 7
    assert config.rule_id == 'config_rule'
    assert events(c)[0][0:3] == ('config', user, 'config')


def test_unknown_config_is_empty():
    c = make_client()
    config = c.get_config(user, 'nothing')
    assert config.value == {}
    assert config.evaluation_details.reason == EvaluationReason.UNRECOGNIZED


def test_get_experiment():
    c = make_client()
    experiment = c.get_experiment(user, 'exp')
    assert experiment.value == {'color': 'blue'}
    assert experiment.group_name == 'Test'


def test_experiment_with_sticky_store():
    sticky = MockStickyStore()
    c = make_client(sticky_bucket_store=sticky)
    assert c.get_user_persisted_values(user) == {}
    c.get_experiment(user, 'exp', c.get_user_persisted_values(user))
    persisted = c.get_user_persisted_values(user)
    assert persisted['exp']['group_name'] == 'Test'
    assert c.get_experiment(user, 'exp', persisted).evaluation_details.reason == EvaluationReason.PERSISTED


def test_layer_logs_exposure_when_parameter_is_read():
    c = make_client()
    layer = c.get_layer(user, 'layer')
    assert events(c) == []
    assert layer.allocated_experiment == 'exp'
    assert layer.get('color') == 'blue'
    assert layer.get('color') == 'blue'
    assert layer.get('missing', 'default') == 'default'
    assert layer.get_values() == {'color': 'blue'}
    assert len(events(c)) == 1
    kind, exposed_user, name, parameter, result, is_manual = events(c)[0]
    assert (kind, name, parameter, is_manual) == ('layer', 'layer', 'color', False)
    assert result.config_delegate == 'exp'


def test_environment_tier_is_added_to_user():
    c = make_client(environment_tier='staging')
    c.check_gate(user, 'on_gate')
    assert events(c)[0][1].environment == {'tier': 'staging'}


def test_environment_field_condition_uses_tier():
    payload = PayloadBuilder().gate(
        SpecBuilder.gate('staging_only').rule(RuleBuilder('r').condition(ConditionBuilder('environment_field').field('tier').operator('any').target(['staging'])))
    )
    assert make_client(payload, environment_tier='staging').check_gate(user, 'staging_only') is True


@pytest.mark.parametrize('name', ['', None, 3])
def test_invalid_name_is_rejected(name):
    c = make_client()
    with pytest.raises(InvalidArgumentError):
        c.check_gate(user, name)


def test_user_without_ids_is_rejected():
    c = make_client()
    with pytest.raises(InvalidArgumentError):
        c.check_gate(User(email='a@example.com'), 'on_gate')
    with pytest.raises(InvalidArgumentError):
        c.get_config({'userID': 'xyz'}, 'config')


def test_user_with_only_custom_id_is_accepted():
    c = make_client()
    assert c.check_gate(User(custom_ids={'companyID': 'c1'}), 'on_gate') is True


def test_closed_client_rejects_calls():
    c = make_client()
    c.close()
    with pytest.raises(UninitializedError):
        c.check_gate(user, 'on_gate')
    with pytest.raises(UninitializedError):
        c.log_event(user, 'event')
    c.close()


def test_log_event():
    c = make_client()
    c.log_event(user, 'purchase', 'hat', {'price': '9.99'})
    assert events(c) == [('custom', user, 'purchase', 'hat', {'price': '9.99'})]


def test_log_event_rejects_metadata_that_is_not_a_dict():
    c = make_client()
    with pytest.raises(InvalidArgumentError):
        c.log_event(user, 'purchase', metadata=['a'])


def test_manual_exposures():
    c = make_client()
    c.manually_log_gate_exposure(user, 'on_gate')
    c.manually_log_config_exposure(user, 'config')
    c.manually_log_layer_parameter_exposure(user, 'layer', 'color')
    assert [(e[0], e[-1]) for e in events(c)] == [('gate', True), ('config', True), ('layer', True)]


def test_overrides():
    c = make_client()
    c.override_gate('on_gate', False)
    c.override_config('config', {'a': 99}, 'xyz')
    c.override_experiment('exp', {'color': 'green'})
    c.override_layer('layer', {'color': 'pink'})
    assert c.check_gate(user, 'on_gate') is False
    assert c.get_config(user, 'config').value == {'a': 99}
    assert c.get_config(User('other'), 'config').value == {'a': 1, 'name': 'x'}
    assert c.get_experiment(user, 'exp').value == {'color': 'green'}
    assert c.get_layer(user, 'layer').get('color') == 'pink'
    c.remove_gate_override('on_gate')
    c.remove_config_override('config', 'xyz')
    c.remove_layer_override('layer')
    assert c.check_gate(user, 'on_gate') is True
    assert c.get_config(user, 'config').value == {'a': 1, 'name': 'x'}
    c.clear_all_config_overrides()
    assert c.get_experiment(user, 'exp').value == {'color': 'blue'}
    assert c.get_layer(user, 'layer').get('color') == 'blue'


def test_clear_all_overrides():
    c = make_client()
    c.override_gate('on_gate', False)
    c.override_layer('layer', {'color': 'pink'})
    c.clear_all_gate_overrides()
    c.clear_all_layer_overrides()
    assert c.check_gate(user, 'on_gate') is True
    assert c.get_layer(user, 'layer').get('color') == 'blue'


def test_evaluation_callback():
    calls = []
    c = make_client(evaluation_callback=lambda kind, name, result: calls.append((kind, name, result)))
    c.check_gate(user, 'on_gate')
    c.get_config(user, 'config')
    c.get_experiment(user, 'exp')
    c.get_layer(user, 'layer')
    assert [(k, n) for k, n, _ in calls] == [('gate', 'on_gate'), ('config', 'config'), ('experiment', 'exp'), ('layer', 'layer')]
    assert isinstance(calls[0][2], FeatureGate)


def test_evaluation_callback_error_is_ignored():
    def callback(kind, name, result):
        raise Exception("sorry")

    c = make_client(evaluation_callback=callback)
    assert c.check_gate(user, 'on_gate') is True


def test_client_not_initialized_when_sync_fails():
    mock_requester.exception = Exception("bad")
    c = make_client(init_timeout=0.1)
    assert not c.is_initialized()
    gate = c.get_feature_gate(user, 'on_gate')
    assert gate.value is False
    assert gate.evaluation_details.reason == EvaluationReason.UNINITIALIZED


def test_sync_config_specs_picks_up_changes():
    c = make_client()
    assert c.check_gate(user, 'new_gate') is False
    mock_requester.config_specs = PayloadBuilder(2000).gate(SpecBuilder.gate('new_gate').rule(RuleBuilder('r'))).build()
    assert c.sync_config_specs() is True
    assert c.check_gate(user, 'new_gate') is True


def make_logging_client(**kwargs) -> GatekeeperClient:
    global client
    mock_requester.config_specs = default_payload().build()
    client = GatekeeperClient(Config('secret-test', init_timeout=2, **kwargs), http=mock_http, spec_requester=mock_requester)
    return client


def test_flush_delivers_events():
    c = make_logging_client()
    c.check_gate(user, 'on_gate')
    c.log_event(user, 'purchase', 'shoes')
    c.flush()
    method, uri, _, body = mock_http.recorded_requests[-1]
    assert (method, uri) == ('POST', 'https://statsigapi.net/v1/log_event')
    output = json.loads(body)['events']
    assert [e['eventName'] for e in output] == ['statsig::gate_exposure', 'purchase']
    assert output[0]['metadata']['gate'] == 'on_gate'
    assert output[1]['value'] == 'shoes'


def test_flush_gives_up_when_delivery_exceeds_timeout():
    def slow_response():
        time.sleep(1)
        return MockResponse(200)
    mock_http.set_response_func(slow_response)
    c = make_logging_client()
    c.log_event(user, 'purchase')
    start = time.time()
    c.flush(timeout=0.2)
    assert time.time() - start < 0.9
    assert len(mock_http.recorded_requests) == 1


def test_flush_passes_timeout_to_event_processor():
    c = make_client()
    c.flush()
    c.flush(timeout=0.5)
    assert c._event_processor._flush_timeouts == [None, 0.5]


def test_local_mode_makes_no_requests():
    global client
    client = GatekeeperClient(Config('secret-test', local_mode=True), http=mock_http)
    assert client.is_initialized()
    assert isinstance(client._event_processor, NullEventProcessor)
    gate = client.get_feature_gate(user, 'on_gate')
    assert gate.evaluation_details.reason == EvaluationReason.UNINITIALIZED
    client.override_gate('on_gate', True)
    assert client.check_gate(user, 'on_gate') is True
    assert mock_http.recorded_requests == []


def test_local_mode_with_bootstrap_values():
    global client
    client = GatekeeperClient(Config('secret-test', local_mode=True, bootstrap_values=default_payload().build()), http=mock_http)
    gate = client.get_feature_gate(user, 'on_gate')
    assert gate.value is True
    assert gate.evaluation_details.reason == EvaluationReason.BOOTSTRAP
    assert mock_http.recorded_requests == []


def test_disable_all_logging_uses_null_event_processor():
    global client
    mock_requester.config_specs = default_payload().build()
    client = GatekeeperClient(Config('secret-test', disable_all_logging=True, init_timeout=2), http=mock_http, spec_requester=mock_requester)
    assert isinstance(client._event_processor, NullEventProcessor)
    assert client.check_gate(user, 'on_gate') is True


def test_client_can_be_used_as_context_manager():
    mock_requester.config_specs = default_payload().build()
    with GatekeeperClient(Config('secret-test', init_timeout=2), http=mock_http, spec_requester=mock_requester, event_processor=MockEventProcessor()) as c:
        assert c.check_gate(user, 'on_gate') is True
    with pytest.raises(UninitializedError):
        c.check_gate(user, 'on_gate')


def test_client_returns_at_init_timeout_and_initializes_later():
    mock_requester.delay = 1
    start = time.time()
    c = make_client(init_timeout=0.25)
    assert time.time() - start < 0.9
    assert not c.is_initialized()
    assert c.get_feature_gate(user, 'on_gate').evaluation_details.reason == EvaluationReason.UNINITIALIZED
    wait_until(c.is_initialized)
    gate = c.get_feature_gate(user, 'on_gate')
    assert gate.value is True
    assert gate.evaluation_details.reason == EvaluationReason.NETWORK


def test_client_initializes_from_data_adapter():
    adapter = MockDataAdapter({RULESETS_KEY: json.dumps(default_payload().build())})
    c = make_client(PayloadBuilder(500), data_adapter=adapter)
    gate = c.get_feature_gate(user, 'on_gate')
    assert gate.value is True
    assert gate.evaluation_details.reason == EvaluationReason.DATA_ADAPTER
    assert mock_requester.request_count == 0
    c.close()
    assert adapter.shut_down


def test_get_experiment_layer():
    c = make_client()
    assert c.get_experiment_layer('exp') == 'layer'
    assert c.get_experiment_layer('config') is None
    assert c.get_experiment_layer('unknown') is None
