import json

import pytest

from gatekeeper.config import Config
from gatekeeper.impl.datasource.spec_requester import SpecRequesterImpl
from gatekeeper.impl.network import NetworkClient
from gatekeeper.impl.util import UnsuccessfulResponseException
from gatekeeper.testing.stub_util import MockHttp, MockResponse, json_response

mock_http = None  # type: MockHttp
network = None  # type: NetworkClient


def setup_function():
    global mock_http, network
    mock_http = MockHttp()
    network = None


def teardown_function():
    if network is not None:
        network.close()


def make_requester(**kwargs) -> SpecRequesterImpl:
    global network
    config = Config('secret-test', **kwargs)
    network = NetworkClient(config, session_id='session-1', http=mock_http)
    return SpecRequesterImpl(config, network)


def test_get_config_specs():
    mock_http.set_response_func(lambda: json_response({'has_updates': True, 'time': 5}))
    result = make_requester().get_config_specs(1234)
    assert result == {'has_updates': True, 'time': 5}
    method, uri, headers, body = mock_http.recorded_requests[0]
    assert method == 'POST'
    assert uri == 'https://statsigapi.net/v1/download_config_specs'
    assert json.loads(body) == {'statsigMetadata': network.metadata(), 'sinceTime': 1234}


def test_get_config_specs_uses_alternate_api():
    mock_http.set_response_func(lambda: json_response({'has_updates': False}))
    make_requester(api='https://proxy.example.com/v1/', api_for_download_config_specs='https://cdn.example.com/v1').get_config_specs(0)
    assert mock_http.recorded_requests[0][1] == 'https://cdn.example.com/v1/download_config_specs'


def test_get_id_list_lookup():
    mock_http.set_response_func(lambda: json_response({'beta': {'url': 'https://lists/beta'}}))
    result = make_requester(api='https://proxy.example.com/v1/').get_id_list_lookup()
    assert result == {'beta': {'url': 'https://lists/beta'}}
    assert mock_http.recorded_requests[0][1] == 'https://proxy.example.com/v1/get_id_lists'


def test_error_status_is_raised():
    mock_http.set_response_status(401)
    with pytest.raises(UnsuccessfulResponseException) as e:
        make_requester().get_config_specs(0)
    assert e.value.status == 401


def test_get_id_list_content_requests_range():
    mock_http.set_response_func(lambda: MockResponse(206, {'content-length': '4'}, b'+b\n+'))
    length, text = make_requester().get_id_list_content('https://lists/beta', 6)
    assert length == 4
    assert text == '+b\n+'
    method, uri, headers, body = mock_http.recorded_requests[0]
    assert method == 'GET'
    assert uri == 'https://lists/beta'
    assert headers['Range'] == 'bytes=6-'


def test_id_list_content_without_length_is_rejected():
    mock_http.set_response_func(lambda: MockResponse(200, {}, b'+a\n'))
    with pytest.raises(ValueError):
        make_requester().get_id_list_content('https://lists/beta', 0)
