"""
Default implementation of the ruleset and ID list fetches.
"""

import json
from typing import Tuple

from gatekeeper.impl.network import NetworkClient
from gatekeeper.impl.util import get_case_insensitive, log
from gatekeeper.interfaces import SpecRequester


class SpecRequesterImpl(SpecRequester):
    def __init__(self, config, network: NetworkClient):
        self._config = config
        self._network = network

    def get_config_specs(self, since_time: int) -> dict:
        uri = self._config.download_config_specs_uri
        log.debug("Fetching rulesets from %s since %d" % (uri, since_time))
        response = self._network.post(uri, {'statsigMetadata': self._network.metadata(), 'sinceTime': since_time})
        return _decode_json(response)

    def get_id_list_lookup(self) -> dict:
        uri = self._config.get_id_lists_uri
        log.debug("Fetching ID list index from %s" % uri)
        response = self._network.post(uri, {'statsigMetadata': self._network.metadata()})
        return _decode_json(response)

    def get_id_list_content(self, url: str, start: int) -> Tuple[int, str]:
        response = self._network.get(url, headers={'Range': 'bytes=%d-' % start})
        content_length = get_case_insensitive(dict(response.headers), 'Content-Length')
        if content_length is None:
            raise ValueError('ID list response from %s has no Content-Length' % url)
        return int(content_length), response.data.decode('UTF-8')


def _decode_json(response):
    data = json.loads(response.data.decode('UTF-8'))
    log.debug("Received response: %s" % (data,))
    return data
